"""
Module: billing_engines.invoicing
Responsibility:
    Turn an ordered set of billable transactions into an invoice draft:
    line items, subtotal, discount, tax, total, due date and the
    human-readable invoice number format.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The InvoiceGenerator
    service selects and locks the transactions; this module only computes.

Invariants enforced:
    - subtotal == sum(line.amount); total == subtotal + tax - discount.
    - Discount is capped at the subtotal, so total >= 0.
    - Lines are ordered by occurred_at ascending (ties broken by
      transaction id) and numbered from 1.
    - Every amount is rounded with round_money().

Failure modes:
    - ValueError on an empty item list, an inverted period, an item outside
      the period, a currency mismatch, or a policy percentage outside 0..100.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from uuid import UUID

from billing_engines.tracer import traced_engine
from billing_kernel.db.types import round_money, to_decimal
from billing_kernel.domain.values import Money
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.invoicing")

_HUNDRED = Decimal("100")


class PaymentTerms(str, Enum):
    """Counterparty payment terms."""

    CASH = "cash"
    CREDIT_7 = "credit_7"
    CREDIT_15 = "credit_15"
    CREDIT_30 = "credit_30"
    PER_COLLECTION = "per_collection"


DEFAULT_TERM_DAYS: dict[str, int] = {
    PaymentTerms.CASH.value: 0,
    PaymentTerms.CREDIT_7.value: 7,
    PaymentTerms.CREDIT_15.value: 15,
    PaymentTerms.CREDIT_30.value: 30,
    PaymentTerms.PER_COLLECTION.value: 0,
}


@dataclass(frozen=True)
class ChargePolicy:
    """
    Tax and discount applied to one counterparty's invoices.

    Percentages are 0..100.  ``discount_amount`` is a fixed amount taken
    off after the percentage discount.
    """

    tax_percent: Decimal = Decimal("0")
    discount_percent: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        for name in ("tax_percent", "discount_percent", "discount_amount"):
            value = to_decimal(getattr(self, name))
            if value < 0:
                raise ValueError(f"{name} must be non-negative")
            object.__setattr__(self, name, value)
        for name in ("tax_percent", "discount_percent"):
            if getattr(self, name) > _HUNDRED:
                raise ValueError(f"{name} must not exceed 100")


@dataclass(frozen=True)
class BillableItem:
    """One completed collection or delivery, as stored."""

    transaction_id: UUID
    occurred_at: datetime
    quantity_liters: Decimal
    rate: Decimal
    amount: Money


@dataclass(frozen=True)
class InvoiceLineDraft:
    line_number: int
    source_transaction_id: UUID
    item_date: date
    quantity_liters: Decimal
    rate: Decimal
    amount: Decimal


@dataclass(frozen=True)
class InvoiceDraft:
    """Computed invoice content, ready to persist."""

    period_start: date
    period_end: date
    due_date: date
    lines: tuple[InvoiceLineDraft, ...]
    subtotal: Money
    tax: Money
    discount: Money
    total: Money
    policy: ChargePolicy = field(default_factory=ChargePolicy)

    @property
    def currency(self) -> str:
        return self.total.currency.code

    @property
    def line_count(self) -> int:
        return len(self.lines)


def due_date_for(period_end: date, term_days: int) -> date:
    """Due date is the period end plus the payment-term days."""
    if term_days < 0:
        raise ValueError("term_days must be non-negative")
    return period_end + timedelta(days=term_days)


def format_invoice_number(prefix: str, billing_month: date, sequence: int) -> str:
    """
    Human-readable invoice number, e.g. ``MON-202607-0001``.

    The sequence is zero-padded to four digits and keeps growing past 9999.
    """
    if sequence <= 0:
        raise ValueError("sequence must be positive")
    return f"{prefix}-{billing_month:%Y%m}-{sequence:04d}"


class InvoiceCalculator:
    """
    Builds invoice drafts from billable items.

    Pure: the same items, policy and period always give the same draft.
    """

    @traced_engine(
        "invoicing", "1.0",
        fingerprint_fields=("items", "policy", "period_start", "period_end", "term_days"),
    )
    def build(
        self,
        items: Sequence[BillableItem],
        policy: ChargePolicy,
        period_start: date,
        period_end: date,
        term_days: int,
        currency: str,
    ) -> InvoiceDraft:
        if not items:
            raise ValueError("Cannot build an invoice with no items")
        if period_start > period_end:
            raise ValueError("period_start must not be after period_end")

        ordered = sorted(items, key=lambda i: (i.occurred_at, str(i.transaction_id)))
        lines: list[InvoiceLineDraft] = []
        subtotal = Decimal("0")
        for number, item in enumerate(ordered, start=1):
            if item.amount.currency.code != currency:
                raise ValueError(
                    f"Item {item.transaction_id} is in {item.amount.currency.code}, "
                    f"invoice is in {currency}"
                )
            item_date = item.occurred_at.date()
            if not (period_start <= item_date <= period_end):
                raise ValueError(
                    f"Item {item.transaction_id} dated {item_date} is outside the period"
                )
            amount = round_money(item.amount.amount)
            subtotal += amount
            lines.append(
                InvoiceLineDraft(
                    line_number=number,
                    source_transaction_id=item.transaction_id,
                    item_date=item_date,
                    quantity_liters=item.quantity_liters,
                    rate=item.rate,
                    amount=amount,
                )
            )

        subtotal = round_money(subtotal)
        discount, tax = self.charges(subtotal, policy)
        total = round_money(subtotal + tax - discount)

        logger.info(
            "invoice_draft_built",
            extra={
                "line_count": len(lines),
                "subtotal": str(subtotal),
                "tax": str(tax),
                "discount": str(discount),
                "total": str(total),
            },
        )

        return InvoiceDraft(
            period_start=period_start,
            period_end=period_end,
            due_date=due_date_for(period_end, term_days),
            lines=tuple(lines),
            subtotal=Money.of(subtotal, currency),
            tax=Money.of(tax, currency),
            discount=Money.of(discount, currency),
            total=Money.of(total, currency),
            policy=policy,
        )

    @staticmethod
    def charges(subtotal: Decimal, policy: ChargePolicy) -> tuple[Decimal, Decimal]:
        """
        (discount, tax) for a subtotal.

        Discount applies first and is capped at the subtotal; tax is charged
        on the discounted amount.
        """
        discount = round_money(subtotal * policy.discount_percent / _HUNDRED)
        discount = min(subtotal, discount + round_money(policy.discount_amount))
        tax = round_money((subtotal - discount) * policy.tax_percent / _HUNDRED)
        return discount, tax
