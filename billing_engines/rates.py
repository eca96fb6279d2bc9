"""
Module: billing_engines.rates
Responsibility:
    Resolve heterogeneous rate input (a per-tanker or per-liter nominal rate,
    a tanker count and vehicle capacity, or a manually corrected liter
    quantity) into the canonical (quantity, per-liter rate, total) triple
    that every collection and delivery records.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - total_amount >= 0, always.
    - A tanker-scoped rate or a tanker-count quantity requires a vehicle
      capacity > 0.  Missing or zero capacity is an error, never a zero.
    - Explicit quantity beats tanker count when both are given: the explicit
      figure is the operator's manual correction.  The rule does not depend
      on argument order.
    - A per-liter rate derived from a tanker rate is rounded to 4 places
      BEFORE the total is computed, so the stored triple replays exactly:
      round2(quantity * rate) == total.
    - Purity: identical input -> identical output.

Failure modes:
    - InvalidRateInputError for every rejected input; the ``field`` attribute
      names the offending input.

Usage:
    from billing_engines.rates import RateResolver, RateInput, TankerRate

    resolution = RateResolver().resolve(
        RateInput(
            rate=TankerRate(Decimal("8000")),
            vehicle_capacity_liters=Decimal("5000"),
            tanker_count=3,
        )
    )
    resolution.per_liter_rate   # Decimal("1.6000")
    resolution.quantity_liters  # Decimal("15000.00")
    resolution.total_amount     # Money(Decimal("24000.00"), Currency('INR'))
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Union

from billing_engines.tracer import traced_engine
from billing_kernel.db.types import round_money, round_quantity, round_rate, to_decimal
from billing_kernel.domain.values import Money
from billing_kernel.exceptions import InvalidRateInputError
from billing_kernel.logging_config import get_logger

logger = get_logger("engines.rates")


class RateBasis(str, Enum):
    """What a counterparty's nominal rate is quoted per."""

    PER_TANKER = "per_tanker"
    PER_LITER = "per_liter"


class QuantitySource(str, Enum):
    """Which input the resolved quantity came from."""

    EXPLICIT = "explicit"
    TANKER_COUNT = "tanker_count"


def _positive_decimal(value: object, field: str) -> Decimal:
    try:
        result = to_decimal(value)
    except ValueError as exc:
        raise InvalidRateInputError(str(exc), field=field) from exc
    if result <= 0:
        raise InvalidRateInputError("must be greater than zero", field=field)
    return result


@dataclass(frozen=True)
class TankerRate:
    """Price per full tanker load."""

    rate_per_tanker: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "rate_per_tanker", _positive_decimal(self.rate_per_tanker, "rate_per_tanker")
        )


@dataclass(frozen=True)
class PerLiterRate:
    """Price per liter."""

    rate_per_liter: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "rate_per_liter", _positive_decimal(self.rate_per_liter, "rate_per_liter")
        )


NominalRate = Union[TankerRate, PerLiterRate]


def nominal_rate(amount: Decimal, basis: RateBasis | str) -> NominalRate:
    """Build the rate variant for a counterparty's configured basis."""
    basis = RateBasis(basis)
    if basis is RateBasis.PER_TANKER:
        return TankerRate(amount)
    return PerLiterRate(amount)


@dataclass(frozen=True)
class RateInput:
    """
    Validated input for one rate resolution.

    ``rate`` is a closed variant: TankerRate or PerLiterRate.  At least one
    quantity source (explicit liters or tanker count) must be present.
    """

    rate: NominalRate
    vehicle_capacity_liters: Decimal | None = None
    tanker_count: int | None = None
    explicit_quantity_liters: Decimal | None = None
    currency: str = "INR"

    def __post_init__(self) -> None:
        if not isinstance(self.rate, (TankerRate, PerLiterRate)):
            raise InvalidRateInputError(
                f"unsupported rate type {type(self.rate).__name__}", field="rate"
            )


@dataclass(frozen=True)
class RateResolution:
    """Canonical result: what gets persisted on the transaction."""

    quantity_liters: Decimal
    per_liter_rate: Decimal
    total_amount: Money
    rate_basis: RateBasis
    quantity_source: QuantitySource


class RateResolver:
    """
    Converts raw operator input into quantity, per-liter rate and total.

    Pure: no I/O, no clock, no database.
    """

    @traced_engine("rates", "1.0", fingerprint_fields=("rate_input",))
    def resolve(self, rate_input: RateInput) -> RateResolution:
        capacity = self._capacity(rate_input)
        quantity, source = self._quantity(rate_input, capacity)

        match rate_input.rate:
            case TankerRate(rate_per_tanker=per_tanker):
                if capacity is None:
                    raise InvalidRateInputError(
                        "vehicle capacity is required for a per-tanker rate",
                        field="vehicle_capacity_liters",
                    )
                per_liter = round_rate(per_tanker / capacity)
                basis = RateBasis.PER_TANKER
            case PerLiterRate(rate_per_liter=per_liter_nominal):
                per_liter = round_rate(per_liter_nominal)
                basis = RateBasis.PER_LITER
            case _:
                raise InvalidRateInputError("unsupported rate type", field="rate")

        total = round_money(quantity * per_liter)
        if total < 0:
            raise InvalidRateInputError("resolved amount is negative", field="total_amount")

        logger.debug(
            "rate_resolved",
            extra={
                "rate_basis": basis.value,
                "quantity_source": source.value,
                "quantity_liters": str(quantity),
                "per_liter_rate": str(per_liter),
                "total_amount": str(total),
            },
        )
        return RateResolution(
            quantity_liters=quantity,
            per_liter_rate=per_liter,
            total_amount=Money.of(total, rate_input.currency),
            rate_basis=basis,
            quantity_source=source,
        )

    @staticmethod
    def _capacity(rate_input: RateInput) -> Decimal | None:
        if rate_input.vehicle_capacity_liters is None:
            return None
        return _positive_decimal(rate_input.vehicle_capacity_liters, "vehicle_capacity_liters")

    @staticmethod
    def _quantity(
        rate_input: RateInput, capacity: Decimal | None
    ) -> tuple[Decimal, QuantitySource]:
        count = rate_input.tanker_count
        if count is not None and (isinstance(count, bool) or not isinstance(count, int) or count <= 0):
            raise InvalidRateInputError("must be a positive integer", field="tanker_count")

        if rate_input.explicit_quantity_liters is not None:
            explicit = _positive_decimal(
                rate_input.explicit_quantity_liters, "explicit_quantity_liters"
            )
            return round_quantity(explicit), QuantitySource.EXPLICIT

        if count is None:
            raise InvalidRateInputError(
                "either explicit_quantity_liters or tanker_count is required",
                field="tanker_count",
            )
        if capacity is None:
            raise InvalidRateInputError(
                "vehicle capacity is required to derive quantity from tanker count",
                field="vehicle_capacity_liters",
            )
        return round_quantity(capacity * count), QuantitySource.TANKER_COUNT
