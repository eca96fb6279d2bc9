"""
Pure domain layer.

Value objects and abstractions with NO dependencies on the ORM, the
database, or I/O:
- Money / Currency
- Clock (injectable time)
- RequestContext (explicit tenant scoping)
- Workflow state machine definitions
"""

from billing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from billing_kernel.domain.context import RequestContext
from billing_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from billing_kernel.domain.values import Currency, Money
from billing_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "RequestContext",
    "CurrencyInfo",
    "CurrencyRegistry",
    "Currency",
    "Money",
    "Guard",
    "Transition",
    "Workflow",
]
