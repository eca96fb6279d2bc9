"""
Invoice Domain Models (``billing_modules.invoices.models``).

Responsibility
--------------
Frozen dataclass value objects for invoices and their line items, as
returned by ``InvoiceGenerator`` and read by the HTTP layer.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* ``total == subtotal + tax - discount``, fixed at generation.
* ``outstanding`` and ``effective_status`` are derived when the DTO is
  built; neither is a stored column.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class InvoiceStatus(str, Enum):
    """
    Invoice lifecycle states.

    OVERDUE is never stored; it is the read-time view of a SENT invoice
    past its due date with something still owed.
    """
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class InvoiceLine:
    """One billed collection or delivery."""
    id: UUID
    line_number: int
    source_transaction_id: UUID
    item_date: date
    quantity_liters: Decimal
    rate: Decimal
    amount: Decimal


@dataclass(frozen=True)
class Invoice:
    """An invoice with its derived balance."""
    id: UUID
    vendor_id: UUID
    invoice_number: str
    related_to: str
    related_id: UUID
    period_start: date
    period_end: date
    due_date: date
    currency: str
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    status: InvoiceStatus
    effective_status: InvoiceStatus
    amount_paid: Decimal
    outstanding: Decimal
    is_overpaid: bool = False
    lines: tuple[InvoiceLine, ...] = field(default_factory=tuple)
    sent_at: datetime | None = None
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    notes: str | None = None
    last_payment_at: datetime | None = None
    version: int = 1

    @property
    def is_overdue(self) -> bool:
        return self.effective_status is InvoiceStatus.OVERDUE

    @property
    def transaction_ids(self) -> tuple[UUID, ...]:
        return tuple(line.source_transaction_id for line in self.lines)
