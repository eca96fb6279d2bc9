"""
Payment ORM Models (``billing_modules.payments.orm``).

Responsibility
--------------
SQLAlchemy persistence for payments and payment allocations, plus the
paid-amount query every balance computation is built on.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``billing_kernel.db.base``
and sibling ``models.py``.

Invariants enforced
-------------------
* An invoice's paid amount is the sum of allocations whose payment is
  COMPLETED.  Nothing else is stored.
* Sums are taken in Python over exact Decimals; SQLite keeps money as text
  and cannot sum it in SQL without going through float.
"""

from collections.abc import Iterable
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from billing_kernel.db.base import TenantMixin, TrackedBase


class PaymentModel(TenantMixin, TrackedBase):
    """
    ORM model for payments.

    Guarantees:
        - amount > 0.
        - status stored as string enum value.
        - unapplied_amount is the part not allocated to any invoice.
    """

    __tablename__ = "payments"

    __table_args__ = (
        Index("idx_payments_related", "vendor_id", "related_id"),
        Index("idx_payments_invoice_id", "invoice_id"),
        Index("idx_payments_status", "status"),
    )

    payment_type: Mapped[str] = mapped_column(String(20), nullable=False)
    related_to: Mapped[str] = mapped_column(String(20), nullable=False)
    related_id: Mapped[UUID] = mapped_column(
        ForeignKey("counterparties.id"), nullable=False
    )
    invoice_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("invoices.id"), nullable=True
    )
    expense_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("expenses.id"), nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_date: Mapped[date] = mapped_column(nullable=False)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="completed")
    unapplied_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    processed_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    allocations: Mapped[list["PaymentAllocationModel"]] = relationship(
        back_populates="payment",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.payments.models import (
            Payment,
            PaymentMethod,
            PaymentStatus,
            PaymentType,
        )

        return Payment(
            id=self.id,
            vendor_id=self.vendor_id,
            payment_type=PaymentType(self.payment_type),
            related_to=self.related_to,
            related_id=self.related_id,
            amount=self.amount,
            currency=self.currency,
            payment_method=PaymentMethod(self.payment_method),
            payment_date=self.payment_date,
            status=PaymentStatus(self.status),
            invoice_id=self.invoice_id,
            expense_id=self.expense_id,
            reference_number=self.reference_number,
            notes=self.notes,
            unapplied_amount=self.unapplied_amount,
            allocations=tuple(a.to_dto() for a in self.allocations),
            processed_by_id=self.processed_by_id,
            refunded_at=self.refunded_at,
            refund_reason=self.refund_reason,
        )

    def __repr__(self) -> str:
        return f"<PaymentModel {self.id}: {self.amount} {self.status}>"


class PaymentAllocationModel(TenantMixin, TrackedBase):
    """
    ORM model linking part of a payment to an invoice.

    Guarantees:
        - payment_id FK to payments.id, invoice_id FK to invoices.id.
        - amount > 0.
    """

    __tablename__ = "payment_allocations"

    __table_args__ = (
        Index("idx_payment_allocations_invoice_id", "invoice_id"),
        Index("idx_payment_allocations_payment_id", "payment_id"),
    )

    payment_id: Mapped[UUID] = mapped_column(
        ForeignKey("payments.id"), nullable=False
    )
    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoices.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    payment: Mapped["PaymentModel"] = relationship(back_populates="allocations")

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.payments.models import PaymentAllocation

        return PaymentAllocation(
            id=self.id,
            payment_id=self.payment_id,
            invoice_id=self.invoice_id,
            amount=self.amount,
        )

    @classmethod
    def completed_totals(
        cls,
        session: Session,
        invoice_ids: Iterable[UUID],
    ) -> dict[UUID, Decimal]:
        """Sum of completed allocations per invoice; zero for unpaid invoices."""
        ids = list(invoice_ids)
        totals: dict[UUID, Decimal] = {invoice_id: Decimal("0") for invoice_id in ids}
        if not ids:
            return totals
        rows = session.execute(
            select(cls.invoice_id, cls.amount)
            .join(PaymentModel, cls.payment_id == PaymentModel.id)
            .where(
                cls.invoice_id.in_(ids),
                PaymentModel.status == "completed",
            )
        ).all()
        for invoice_id, amount in rows:
            totals[invoice_id] += amount
        return totals

    def __repr__(self) -> str:
        return f"<PaymentAllocationModel {self.invoice_id}: {self.amount}>"
