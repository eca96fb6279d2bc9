"""
Module: billing_kernel.db.types
Responsibility: Precision constants and the sanctioned rounding functions for
    money, per-liter rates and liter quantities.  Centralizes precision so
    that RateResolver, invoicing and the payment ledger round identically.
Architecture position: Kernel > DB.  May be imported by every layer.  MUST NOT
    import from any of them.

Invariants enforced:
    - No floats anywhere in the billing core.  All amounts, rates and
      quantities are Decimal with explicit precision.
    - Money rounds to 2 places, per-liter rates to 4, liters to 2, all
      ROUND_HALF_UP.  Derived per-liter rates are rounded BEFORE they are
      multiplied, so a persisted (quantity, rate, total) triple replays to
      the same total.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

MONEY_DECIMAL_PLACES = 2
RATE_DECIMAL_PLACES = 4
QUANTITY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


def to_decimal(value: object) -> Decimal:
    """
    Convert int, str or Decimal input to Decimal.

    Floats are rejected: they carry binary drift into money math.

    Raises:
        ValueError: If value is a float, a bool, or not numeric.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"Expected Decimal, int or str, got {type(value).__name__}")
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value)
        except InvalidOperation as exc:
            raise ValueError(f"Not a number: {value!r}") from exc
    else:
        raise ValueError(f"Expected Decimal, int or str, got {type(value).__name__}")
    if not result.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return result


def _quantize(value: Decimal, decimal_places: int, rounding: str) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=rounding)


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the currency's decimal places.

    This is the ONLY sanctioned rounding function for amounts.  Every
    subtotal, tax, discount, total and payment amount passes through it.
    """
    return _quantize(value, decimal_places, rounding)


def round_rate(value: Decimal, rounding: str = DEFAULT_ROUNDING) -> Decimal:
    """Round a per-liter rate to RATE_DECIMAL_PLACES."""
    return _quantize(value, RATE_DECIMAL_PLACES, rounding)


def round_quantity(value: Decimal, rounding: str = DEFAULT_ROUNDING) -> Decimal:
    """Round a liter quantity to QUANTITY_DECIMAL_PLACES."""
    return _quantize(value, QUANTITY_DECIMAL_PLACES, rounding)
