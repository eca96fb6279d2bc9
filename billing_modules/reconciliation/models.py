"""
Reconciliation read models (``billing_modules.reconciliation.models``).

Frozen projections returned by ``ReconciliationView``.  Every figure is
derived at read time; none of these is ever persisted.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class UnpaidTransaction:
    """A completed collection/delivery not yet covered by a paid invoice."""
    transaction_id: UUID
    kind: str
    occurred_at: datetime
    quantity_liters: Decimal
    rate: Decimal
    total_amount: Decimal
    invoice_id: UUID | None = None
    invoice_number: str | None = None


@dataclass(frozen=True)
class MonthlySummary:
    """
    One counterparty's month.

    ``payment_due`` is the single lump payment that clears the month and
    everything carried over from before it.
    """
    counterparty_id: UUID
    month: str
    currency: str
    transaction_count: int
    quantity_liters: Decimal
    amount: Decimal
    outstanding: Decimal
    previous_outstanding: Decimal
    payment_due: Decimal


@dataclass(frozen=True)
class CounterpartyBalance:
    """Running account of one counterparty."""
    counterparty_type: str
    counterparty_id: UUID
    currency: str
    invoiced_total: Decimal
    paid_total: Decimal
    outstanding: Decimal
    overdue_amount: Decimal
    open_invoice_count: int
    unbilled_amount: Decimal
    unapplied_credit: Decimal
    net_balance: Decimal
    has_overpayment: bool
    unpaid_transactions: tuple[UnpaidTransaction, ...] = field(default_factory=tuple)
