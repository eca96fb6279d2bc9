"""
Module: billing_engines.outstanding
Responsibility:
    Derive outstanding balances from an invoice total and the payments
    applied to it, and derive the read-time "overdue" condition.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - outstanding = total - sum(completed payments).  Nothing is stored.
    - The display value is clamped at zero; a negative raw value is an
      overpayment and is reported through ``is_overpaid`` and a WARNING log
      record, never hidden.
    - Overdue is a pure function of (due_date, today, outstanding).
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from billing_kernel.db.types import round_money
from billing_kernel.domain.values import Money
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.outstanding")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class OutstandingBalance:
    """
    Balance of one invoice (or one counterparty account).

    ``raw_outstanding`` may be negative; ``outstanding`` never is.
    """

    total: Money
    paid: Money
    raw_outstanding: Money

    @property
    def outstanding(self) -> Money:
        if self.raw_outstanding.is_negative:
            return Money.zero(self.total.currency)
        return self.raw_outstanding

    @property
    def is_overpaid(self) -> bool:
        return self.raw_outstanding.is_negative

    @property
    def is_settled(self) -> bool:
        return self.raw_outstanding.is_zero

    @property
    def overpaid_by(self) -> Money:
        if self.is_overpaid:
            return -self.raw_outstanding
        return Money.zero(self.total.currency)


def compute_outstanding(
    total: Money,
    completed_payments: Iterable[Money],
    reference: str | None = None,
) -> OutstandingBalance:
    """Outstanding for a total given the completed payment amounts against it."""
    paid = _ZERO
    for payment in completed_payments:
        if payment.currency != total.currency:
            raise ValueError(
                f"Payment currency {payment.currency} differs from {total.currency}"
            )
        paid += payment.amount
    paid = round_money(paid)
    raw = round_money(total.amount - paid)
    balance = OutstandingBalance(
        total=total,
        paid=Money.of(paid, total.currency),
        raw_outstanding=Money.of(raw, total.currency),
    )
    if balance.is_overpaid:
        logger.warning(
            "overpayment_detected",
            extra={
                "reference": reference,
                "total": str(total.amount),
                "paid": str(paid),
                "overpaid_by": str(-raw),
            },
        )
    return balance


def is_overdue(due_date: date | None, today: date, outstanding: Decimal) -> bool:
    """True when the due date has passed and something is still owed."""
    if due_date is None:
        return False
    return due_date < today and outstanding > _ZERO


@dataclass(frozen=True)
class CarryOver:
    """A period's bill split into the current amount and the arrears."""

    current_amount: Decimal
    previous_outstanding: Decimal
    payment_due: Decimal


def split_carry_over(outstanding: Decimal, current_amount: Decimal) -> CarryOver:
    """
    Split a counterparty's outstanding into this period and carried-over arrears.

    previous_outstanding = max(0, outstanding - current_amount)
    payment_due = current_amount + previous_outstanding
    """
    previous = max(_ZERO, round_money(outstanding - current_amount))
    return CarryOver(
        current_amount=round_money(current_amount),
        previous_outstanding=previous,
        payment_due=round_money(current_amount + previous),
    )
