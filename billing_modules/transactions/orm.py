"""
Transaction ORM Models (``billing_modules.transactions.orm``).

Responsibility
--------------
SQLAlchemy persistence for collections/deliveries (one table, discriminated
by ``kind``) and driver expenses.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``billing_kernel.db.base``
and sibling ``models.py``.

Invariants enforced
-------------------
* Both tables carry an optimistic ``version`` column (``version_id_col``);
  a write against a stale version raises ``StaleDataError``, which the
  services surface as ``ConcurrentModificationError``.
* ``invoice_id`` and ``payment_id`` hold ids of rows in tables that point
  back here, so they are plain indexed columns rather than foreign keys.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TenantMixin, TrackedBase


class TransactionModel(TenantMixin, TrackedBase):
    """
    ORM model for collections and deliveries.

    Guarantees:
        - quantity_liters, rate and total_amount are the RateResolution
          triple; round2(quantity_liters * rate) == total_amount.
        - status stored as string enum value.
    """

    __tablename__ = "billable_transactions"

    __table_args__ = (
        Index(
            "idx_billable_txn_counterparty_status",
            "vendor_id", "counterparty_id", "status",
        ),
        Index("idx_billable_txn_occurred_at", "occurred_at"),
        Index("idx_billable_txn_invoice_id", "invoice_id"),
    )

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    counterparty_type: Mapped[str] = mapped_column(String(20), nullable=False)
    counterparty_id: Mapped[UUID] = mapped_column(
        ForeignKey("counterparties.id"), nullable=False
    )
    vehicle_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("vehicles.id"), nullable=True
    )
    driver_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("counterparties.id"), nullable=True
    )
    tanker_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    quantity_liters: Mapped[Decimal] = mapped_column(nullable=False)
    rate: Mapped[Decimal] = mapped_column(nullable=False)
    rate_basis: Mapped[str] = mapped_column(String(20), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="completed")
    invoice_id: Mapped[UUID | None] = mapped_column(nullable=True)
    collection_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("billable_transactions.id"), nullable=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.transactions.models import (
            TransactionKind,
            TransactionRecord,
            TransactionStatus,
        )

        return TransactionRecord(
            id=self.id,
            vendor_id=self.vendor_id,
            kind=TransactionKind(self.kind),
            counterparty_type=self.counterparty_type,
            counterparty_id=self.counterparty_id,
            quantity_liters=self.quantity_liters,
            rate=self.rate,
            rate_basis=self.rate_basis,
            total_amount=self.total_amount,
            currency=self.currency,
            occurred_at=self.occurred_at,
            status=TransactionStatus(self.status),
            vehicle_id=self.vehicle_id,
            driver_id=self.driver_id,
            tanker_count=self.tanker_count,
            invoice_id=self.invoice_id,
            collection_id=self.collection_id,
            notes=self.notes,
            version=self.version,
        )

    def __repr__(self) -> str:
        return f"<TransactionModel {self.kind} {self.id}: {self.total_amount}>"


class ExpenseModel(TenantMixin, TrackedBase):
    """
    ORM model for driver expenses.

    Guarantees:
        - amount > 0 (checked by the service).
        - charged_to is 'vendor' for every fuel expense.
    """

    __tablename__ = "expenses"

    __table_args__ = (
        Index("idx_expenses_vendor_driver", "vendor_id", "driver_id"),
        Index("idx_expenses_status", "status"),
    )

    driver_id: Mapped[UUID] = mapped_column(
        ForeignKey("counterparties.id"), nullable=False
    )
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    expense_date: Mapped[date] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    charged_to: Mapped[str] = mapped_column(String(20), default="vendor")
    approved_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_id: Mapped[UUID | None] = mapped_column(nullable=True)
    collection_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("billable_transactions.id"), nullable=True
    )
    delivery_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("billable_transactions.id"), nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.transactions.models import (
            ChargedTo,
            Expense,
            ExpenseCategory,
            ExpenseStatus,
        )

        return Expense(
            id=self.id,
            vendor_id=self.vendor_id,
            driver_id=self.driver_id,
            category=ExpenseCategory(self.category),
            amount=self.amount,
            currency=self.currency,
            expense_date=self.expense_date,
            status=ExpenseStatus(self.status),
            charged_to=ChargedTo(self.charged_to),
            description=self.description,
            approved_by_id=self.approved_by_id,
            approved_at=self.approved_at,
            rejection_reason=self.rejection_reason,
            payment_id=self.payment_id,
            collection_id=self.collection_id,
            delivery_id=self.delivery_id,
            version=self.version,
        )

    def __repr__(self) -> str:
        return f"<ExpenseModel {self.category} {self.id}: {self.amount}>"
