"""
Payments Module.

The payment ledger: payments against invoices, running accounts and driver
expenses, with outstanding balances derived on every read.
"""

from billing_modules.payments.models import (
    Payment,
    PaymentAllocation,
    PaymentMethod,
    PaymentRequest,
    PaymentStatus,
    PaymentType,
)

__all__ = [
    "Payment",
    "PaymentAllocation",
    "PaymentMethod",
    "PaymentRequest",
    "PaymentStatus",
    "PaymentType",
]
