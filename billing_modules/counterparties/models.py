"""
Counterparty Domain Models (``billing_modules.counterparties.models``).

Responsibility
--------------
Frozen dataclass value objects for the parties a vendor does business with
(suppliers, housing societies, drivers) and the vehicles whose capacity
turns a tanker count into liters.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* ``nominal_rate`` and ``capacity_liters`` are ``Decimal`` -- NEVER ``float``.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from billing_engines.invoicing import PaymentTerms
from billing_engines.rates import RateBasis


class CounterpartyType(str, Enum):
    """Who is on the other side of a transaction."""
    SUPPLIER = "supplier"
    SOCIETY = "society"
    DRIVER = "driver"


INVOICEABLE_TYPES: tuple[str, ...] = (
    CounterpartyType.SOCIETY.value,
    CounterpartyType.SUPPLIER.value,
)


@dataclass(frozen=True)
class Counterparty:
    """A supplier, society or driver owned by one vendor."""
    id: UUID
    vendor_id: UUID
    counterparty_type: CounterpartyType
    name: str
    nominal_rate: Decimal | None = None
    rate_basis: RateBasis = RateBasis.PER_LITER
    payment_terms: PaymentTerms = PaymentTerms.CREDIT_15
    phone: str | None = None
    address: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class Vehicle:
    """A tanker truck."""
    id: UUID
    vendor_id: UUID
    registration_number: str
    capacity_liters: Decimal
    is_active: bool = True
