"""
Counterparties Module.

Suppliers (water sources), societies (customers), drivers, and the vehicles
whose capacity converts tanker counts into liters.

The service lives in ``billing_modules.counterparties.service``.
"""

from billing_modules.counterparties.models import (
    INVOICEABLE_TYPES,
    Counterparty,
    CounterpartyType,
    Vehicle,
)

__all__ = [
    "INVOICEABLE_TYPES",
    "Counterparty",
    "CounterpartyType",
    "Vehicle",
]
