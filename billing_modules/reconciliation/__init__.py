"""
Reconciliation Module.

Read-only balances: per invoice, per counterparty and per month.
"""

from billing_modules.reconciliation.models import (
    CounterpartyBalance,
    MonthlySummary,
    UnpaidTransaction,
)

__all__ = [
    "CounterpartyBalance",
    "MonthlySummary",
    "UnpaidTransaction",
]
