"""
BaseService -- abstract base for billing module services.

Responsibility:
    Common constructor (session + clock) and the transaction-boundary
    helper every module service uses.  Module services (transactions,
    expenses, invoices, payments) own their transaction: they commit on
    success and roll back on any failure.  Kernel services such as
    SequenceService only flush inside the caller's transaction.

Invariants enforced:
    - A failed operation leaves no partial writes: rollback, then re-raise.
    - A stale optimistic-version write (StaleDataError) surfaces as the
      typed ConcurrentModificationError, never as a bare SQLAlchemy error.
"""

from abc import ABC
from contextlib import contextmanager
from typing import Generator, Generic, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from billing_kernel.db.base import Base
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.exceptions import ConcurrentModificationError
from billing_kernel.logging_config import get_logger

ModelType = TypeVar("ModelType", bound=Base)

logger = get_logger("services.base")


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for module services.

    Subclasses set ``entity_type`` for error reporting and wrap every
    mutating operation in ``self._unit_of_work(entity_id)``.
    """

    entity_type: str = "entity"

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    @contextmanager
    def _unit_of_work(self, entity_id: object = None) -> Generator[None, None, None]:
        """Commit on success; roll back and re-raise on failure."""
        try:
            yield
            self.session.commit()
        except StaleDataError as exc:
            self.session.rollback()
            logger.warning(
                "stale_write_rejected",
                extra={"entity_type": self.entity_type, "entity_id": str(entity_id)},
            )
            raise ConcurrentModificationError(self.entity_type, str(entity_id)) from exc
        except Exception:
            self.session.rollback()
            raise
