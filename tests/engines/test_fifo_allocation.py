"""
Tests for FIFO payment allocation.

Covers:
- Oldest due date first
- Partial allocation and unallocated remainder
- Conservation of the source amount
- Error handling
"""

from datetime import date
from decimal import Decimal

import pytest

from billing_engines.allocation import AllocationEngine, AllocationTarget
from billing_kernel.domain.values import Money
from billing_kernel.exceptions import CurrencyMismatchError


def target(target_id, amount, due, priority=0, currency="INR"):
    return AllocationTarget(
        target_id=target_id,
        eligible_amount=Money.of(amount, currency),
        due_date=due,
        priority=priority,
    )


class TestFifoAllocation:
    def setup_method(self):
        self.engine = AllocationEngine()

    def test_oldest_due_date_paid_first(self):
        result = self.engine.allocate_fifo(
            Money.of("17000.00", "INR"),
            [
                target("july", "15000.00", date(2026, 8, 15)),
                target("june", "2000.00", date(2026, 7, 15)),
            ],
        )

        assert [line.target_id for line in result.lines] == ["june", "july"]
        assert result.lines[0].allocated == Money.of("2000.00", "INR")
        assert result.lines[1].allocated == Money.of("15000.00", "INR")
        assert result.is_fully_allocated

    def test_partial_payment_leaves_later_targets_untouched(self):
        result = self.engine.allocate_fifo(
            Money.of("3000.00", "INR"),
            [
                target("a", "2000.00", date(2026, 7, 15)),
                target("b", "5000.00", date(2026, 8, 15)),
                target("c", "1000.00", date(2026, 9, 15)),
            ],
        )

        assert result.allocation_count == 2
        assert result.lines[1].target_id == "b"
        assert result.lines[1].allocated.amount == Decimal("1000.00")
        assert result.lines[1].remaining.amount == Decimal("4000.00")
        assert not result.lines[1].is_fully_allocated

    def test_remainder_is_unallocated(self):
        result = self.engine.allocate_fifo(
            Money.of("5000.00", "INR"),
            [target("a", "1200.00", date(2026, 7, 15))],
        )

        assert result.total_allocated.amount == Decimal("1200.00")
        assert result.unallocated.amount == Decimal("3800.00")

    def test_no_targets(self):
        result = self.engine.allocate_fifo(Money.of("500.00", "INR"), [])

        assert result.lines == ()
        assert result.unallocated.amount == Decimal("500.00")

    def test_zero_eligible_targets_are_skipped(self):
        result = self.engine.allocate_fifo(
            Money.of("100.00", "INR"),
            [
                target("settled", "0", date(2026, 6, 15)),
                target("open", "400.00", date(2026, 7, 15)),
            ],
        )

        assert [line.target_id for line in result.lines] == ["open"]

    def test_priority_breaks_due_date_ties(self):
        result = self.engine.allocate_fifo(
            Money.of("100.00", "INR"),
            [
                target("second", "100.00", date(2026, 7, 15), priority=1),
                target("first", "100.00", date(2026, 7, 15), priority=0),
            ],
        )

        assert result.lines[0].target_id == "first"

    def test_conservation(self):
        amount = Money.of("9876.54", "INR")
        result = self.engine.allocate_fifo(
            amount,
            [
                target("a", "1234.56", date(2026, 5, 15)),
                target("b", "4321.00", date(2026, 6, 15)),
                target("c", "777.77", date(2026, 7, 15)),
            ],
        )

        assert result.total_allocated.amount + result.unallocated.amount == amount.amount


class TestErrors:
    def test_negative_amount(self):
        with pytest.raises(ValueError):
            AllocationEngine().allocate_fifo(Money.of("-1", "INR"), [])

    def test_negative_eligible_amount(self):
        with pytest.raises(ValueError):
            target("a", "-5", date(2026, 7, 15))

    def test_currency_mismatch(self):
        with pytest.raises(CurrencyMismatchError):
            AllocationEngine().allocate_fifo(
                Money.of("100", "INR"),
                [target("a", "100", date(2026, 7, 15), currency="USD")],
            )
