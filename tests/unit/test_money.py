"""
Unit tests for the money value objects and rounding helpers.
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_kernel.db.types import round_money, round_quantity, round_rate, to_decimal
from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.domain.context import RequestContext
from billing_kernel.domain.currency import CurrencyRegistry
from billing_kernel.domain.values import Currency, Money
from billing_kernel.domain.workflow import Transition, Workflow
from billing_kernel.exceptions import CurrencyMismatchError, InvalidCurrencyError


class TestToDecimal:
    @pytest.mark.parametrize(
        "value, expected",
        [(5, Decimal("5")), ("12.50", Decimal("12.50")), (Decimal("0.1"), Decimal("0.1"))],
    )
    def test_accepted(self, value, expected):
        assert to_decimal(value) == expected

    @pytest.mark.parametrize("value", [0.1, True, "abc", None, "NaN", "Infinity", [1]])
    def test_rejected(self, value):
        with pytest.raises(ValueError):
            to_decimal(value)


class TestRounding:
    def test_money_rounds_half_up(self):
        assert round_money(Decimal("0.005")) == Decimal("0.01")
        assert round_money(Decimal("2.344")) == Decimal("2.34")
        assert round_money(Decimal("-2.345")) == Decimal("-2.35")

    def test_rate_keeps_four_places(self):
        assert round_rate(Decimal("10000") / Decimal("3000")) == Decimal("3.3333")
        assert round_rate(Decimal("1.6")) == Decimal("1.6000")

    def test_quantity_keeps_two_places(self):
        assert round_quantity(Decimal("4999.995")) == Decimal("5000.00")


class TestCurrency:
    def test_normalized(self):
        assert Currency(" inr ").code == "INR"
        assert Currency("INR").symbol == "₹"
        assert Currency("KWD").decimal_places == 3

    def test_unknown(self):
        with pytest.raises(InvalidCurrencyError):
            Currency("XYZ")
        assert not CurrencyRegistry.is_valid("")


class TestMoney:
    def test_arithmetic(self):
        a = Money.of("6000.00", "INR")
        b = Money.of("4000", "INR")

        assert (a + b).amount == Decimal("10000.00")
        assert (a - b).amount == Decimal("2000.00")
        assert (-b).is_negative
        assert (b * 3).amount == Decimal("12000")
        assert b < a

    def test_currencies_do_not_mix(self):
        with pytest.raises(CurrencyMismatchError):
            Money.of("1", "INR") + Money.of("1", "USD")

    def test_float_amount_rejected(self):
        with pytest.raises(ValueError):
            Money.of(10.5, "INR")

    def test_round_and_format(self):
        amount = Money.of("4000.005", "INR")

        assert amount.round().amount == Decimal("4000.01")
        assert amount.format() == "₹4000.01"
        assert str(Money.of("12", "JPY").round()) == "12 JPY"

    def test_zero(self):
        assert Money.zero("INR").is_zero
        assert not Money.zero("INR").is_positive


class TestRequestContext:
    def test_ids_must_be_uuids(self):
        with pytest.raises(TypeError):
            RequestContext(tenant_id="vendor-1", actor_id=uuid4())

    def test_log_fields(self):
        ctx = RequestContext(uuid4(), uuid4(), correlation_id="req-42")

        assert ctx.log_fields() == {
            "correlation_id": "req-42",
            "tenant_id": str(ctx.tenant_id),
            "actor_id": str(ctx.actor_id),
        }

    def test_correlation_id_defaults_to_unique(self):
        assert RequestContext(uuid4(), uuid4()).correlation_id != RequestContext(
            uuid4(), uuid4()
        ).correlation_id


class TestDeterministicClock:
    def test_frozen_until_advanced(self):
        clock = DeterministicClock(datetime(2026, 7, 31, 23, 59, 59, tzinfo=UTC))

        assert clock.now() == clock.now()
        clock.tick()
        assert clock.today().isoformat() == "2026-08-01"
        clock.advance_days(14)
        assert clock.today().isoformat() == "2026-08-15"

    def test_set_time_resets_advance(self):
        clock = DeterministicClock()
        clock.advance_days(3)

        clock.set_time(datetime(2026, 9, 30, 18, 0, tzinfo=UTC))

        assert clock.now() == datetime(2026, 9, 30, 18, 0, tzinfo=UTC)
        assert clock.today().isoformat() == "2026-09-30"


class TestWorkflowDefinition:
    def test_undeclared_state(self):
        with pytest.raises(ValueError):
            Workflow(
                name="w", description="", initial_state="a", states=("a",),
                transitions=(Transition("a", "b", action="go"),),
            )

    def test_terminal_state_cannot_leave(self):
        with pytest.raises(ValueError):
            Workflow(
                name="w", description="", initial_state="a", states=("a", "b"),
                transitions=(Transition("b", "a", action="back"),),
                terminal_states=("b",),
            )

    def test_lookup(self):
        workflow = Workflow(
            name="w", description="", initial_state="a", states=("a", "b"),
            transitions=(Transition("a", "b", action="go"),),
        )

        assert workflow.allows("a", "go")
        assert not workflow.allows("b", "go")
        assert workflow.actions_from("a") == ("go",)
