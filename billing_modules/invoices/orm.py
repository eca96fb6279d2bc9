"""
Invoice ORM Models (``billing_modules.invoices.orm``).

Responsibility
--------------
SQLAlchemy persistence for invoices and invoice lines.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``billing_kernel.db.base``,
the outstanding engine (for DTO derivation) and sibling ``models.py``.

Invariants enforced
-------------------
* invoice_number is unique per vendor.
* The invoice row carries an optimistic ``version`` column.  Every payment
  allocation and every refund increments ``payment_revision``, so each one
  issues an UPDATE and moves the version even when no other column changes.
* Lines are kept after cancellation for audit; the overlap check ignores
  lines of cancelled invoices.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from billing_kernel.db.base import TenantMixin, TrackedBase
from billing_kernel.domain.context import RequestContext
from billing_kernel.exceptions import ConcurrentModificationError, InvoiceNotFoundError


class InvoiceModel(TenantMixin, TrackedBase):
    """
    ORM model for invoices.

    Guarantees:
        - Monetary fields use Decimal (exact on every backend).
        - status stores draft, sent, paid or cancelled; never overdue.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint(
            "vendor_id", "invoice_number", name="uq_invoices_vendor_number"
        ),
        Index("idx_invoices_related", "vendor_id", "related_id"),
        Index("idx_invoices_status", "status"),
        Index("idx_invoices_due_date", "due_date"),
    )

    related_to: Mapped[str] = mapped_column(String(20), nullable=False)
    related_id: Mapped[UUID] = mapped_column(
        ForeignKey("counterparties.id"), nullable=False
    )
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    period_start: Mapped[date] = mapped_column(nullable=False)
    period_end: Mapped[date] = mapped_column(nullable=False)
    due_date: Mapped[date] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    tax: Mapped[Decimal] = mapped_column(nullable=False)
    discount: Mapped[Decimal] = mapped_column(nullable=False)
    total: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="draft")
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_payment_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payment_revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Relationship to child lines
    lines: Mapped[list["InvoiceLineModel"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InvoiceLineModel.line_number",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self, amount_paid: Decimal, today: date):
        """
        Convert ORM model to frozen dataclass.

        ``amount_paid`` is the sum of completed payment allocations; the
        outstanding balance and the overdue view are derived from it here.
        """
        from billing_engines.outstanding import compute_outstanding, is_overdue
        from billing_kernel.domain.values import Money
        from billing_modules.invoices.models import Invoice, InvoiceStatus

        balance = compute_outstanding(
            Money.of(self.total, self.currency),
            [Money.of(amount_paid, self.currency)],
            reference=self.invoice_number,
        )
        status = InvoiceStatus(self.status)
        effective = status
        if status is InvoiceStatus.SENT and is_overdue(
            self.due_date, today, balance.outstanding.amount
        ):
            effective = InvoiceStatus.OVERDUE

        return Invoice(
            id=self.id,
            vendor_id=self.vendor_id,
            invoice_number=self.invoice_number,
            related_to=self.related_to,
            related_id=self.related_id,
            period_start=self.period_start,
            period_end=self.period_end,
            due_date=self.due_date,
            currency=self.currency,
            subtotal=self.subtotal,
            tax=self.tax,
            discount=self.discount,
            total=self.total,
            status=status,
            effective_status=effective,
            amount_paid=balance.paid.amount,
            outstanding=balance.outstanding.amount,
            is_overpaid=balance.is_overpaid,
            lines=tuple(line.to_dto() for line in self.lines),
            sent_at=self.sent_at,
            paid_at=self.paid_at,
            cancelled_at=self.cancelled_at,
            cancellation_reason=self.cancellation_reason,
            notes=self.notes,
            last_payment_at=self.last_payment_at,
            version=self.version,
        )

    def __repr__(self) -> str:
        return f"<InvoiceModel {self.invoice_number}: {self.total} {self.status}>"


class InvoiceLineModel(TrackedBase):
    """
    ORM model for invoice line items.

    Guarantees:
        - invoice_id FK to invoices.id (CASCADE via relationship).
        - source_transaction_id FK to billable_transactions.id.
    """

    __tablename__ = "invoice_lines"

    __table_args__ = (
        UniqueConstraint(
            "invoice_id", "line_number", name="uq_invoice_lines_invoice_line"
        ),
        Index("idx_invoice_lines_source_txn", "source_transaction_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoices.id"), nullable=False
    )
    source_transaction_id: Mapped[UUID] = mapped_column(
        ForeignKey("billable_transactions.id"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    item_date: Mapped[date] = mapped_column(nullable=False)
    quantity_liters: Mapped[Decimal] = mapped_column(nullable=False)
    rate: Mapped[Decimal] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    invoice: Mapped["InvoiceModel"] = relationship(back_populates="lines")

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.invoices.models import InvoiceLine

        return InvoiceLine(
            id=self.id,
            line_number=self.line_number,
            source_transaction_id=self.source_transaction_id,
            item_date=self.item_date,
            quantity_liters=self.quantity_liters,
            rate=self.rate,
            amount=self.amount,
        )

    def __repr__(self) -> str:
        return f"<InvoiceLineModel {self.line_number}: {self.amount}>"


def fetch_invoice(
    session: Session,
    ctx: RequestContext,
    invoice_id: UUID,
    for_update: bool = False,
) -> InvoiceModel:
    """Load an invoice owned by the requesting vendor or raise InvoiceNotFoundError."""
    stmt = select(InvoiceModel).where(
        InvoiceModel.id == invoice_id,
        InvoiceModel.vendor_id == ctx.tenant_id,
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    model = session.execute(stmt).scalar_one_or_none()
    if model is None:
        raise InvoiceNotFoundError(str(invoice_id))
    return model


def check_version(model: InvoiceModel, expected_version: int | None) -> None:
    """Raise ConcurrentModificationError if the caller read an older version."""
    if expected_version is not None and model.version != expected_version:
        raise ConcurrentModificationError(
            "invoice", str(model.id), expected_version, model.version
        )
