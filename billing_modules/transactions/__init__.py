"""
Transactions Module.

Collections, deliveries and driver expenses.  Amounts are resolved once, at
creation, by the RateResolver engine.
"""

from billing_modules.transactions.models import (
    ChargedTo,
    Expense,
    ExpenseCategory,
    ExpenseStatus,
    TransactionKind,
    TransactionRecord,
    TransactionStatus,
)
from billing_modules.transactions.workflows import EXPENSE_WORKFLOW, TRANSACTION_WORKFLOW

__all__ = [
    "ChargedTo",
    "Expense",
    "ExpenseCategory",
    "ExpenseStatus",
    "TransactionKind",
    "TransactionRecord",
    "TransactionStatus",
    "EXPENSE_WORKFLOW",
    "TRANSACTION_WORKFLOW",
]
