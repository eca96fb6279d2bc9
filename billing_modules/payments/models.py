"""
Payment Domain Models (``billing_modules.payments.models``).

Responsibility
--------------
Frozen dataclass value objects for payments, their invoice allocations,
and the validated request a caller hands to ``PaymentLedger``.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* ``PaymentRequest`` rejects a non-positive amount and unknown
  type/method/counterparty values at construction, before any row is
  locked.  Precision depends on the tenant currency, so ``PaymentLedger``
  checks it.
* ``amount == sum(allocations) + unapplied_amount`` on every payment.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from billing_kernel.db.types import to_decimal
from billing_kernel.exceptions import InvalidPaymentError


class PaymentType(str, Enum):
    PURCHASE = "purchase"
    DELIVERY = "delivery"
    EXPENSE = "expense"
    OTHER = "other"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    UPI = "upi"
    CHEQUE = "cheque"
    CARD = "card"
    NEFT = "neft"
    RTGS = "rtgs"


class PaymentStatus(str, Enum):
    """Payment states.  Only COMPLETED payments reduce an outstanding balance."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


_RELATED_TO = ("supplier", "society", "driver")


def _enum(enum_cls, value, field_name):
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise InvalidPaymentError(f"unknown {field_name} {value!r}", field=field_name) from exc


@dataclass(frozen=True)
class PaymentRequest:
    """
    A payment to record.

    With ``invoice_id`` the whole amount goes to that invoice.  With
    ``expense_id`` it settles that expense.  With neither, a society or
    supplier payment is spread over open invoices oldest first.
    """
    payment_type: PaymentType
    related_to: str
    related_id: UUID
    amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_date: date | None = None
    invoice_id: UUID | None = None
    expense_id: UUID | None = None
    reference_number: str | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "payment_type", _enum(PaymentType, self.payment_type, "type"))
        object.__setattr__(
            self, "payment_method", _enum(PaymentMethod, self.payment_method, "payment_method")
        )
        if self.related_to not in _RELATED_TO:
            raise InvalidPaymentError(
                f"related_to must be one of {', '.join(_RELATED_TO)}", field="related_to"
            )
        try:
            amount = to_decimal(self.amount)
        except ValueError as exc:
            raise InvalidPaymentError(str(exc), field="amount") from exc
        if amount <= 0:
            raise InvalidPaymentError("amount must be greater than zero", field="amount")
        object.__setattr__(self, "amount", amount)
        if self.invoice_id is not None and self.expense_id is not None:
            raise InvalidPaymentError(
                "a payment settles an invoice or an expense, not both", field="expense_id"
            )
        if self.expense_id is not None and self.related_to != "driver":
            raise InvalidPaymentError(
                "expense payments are made to drivers", field="related_to"
            )


@dataclass(frozen=True)
class PaymentAllocation:
    """Part of a payment applied to one invoice."""
    id: UUID
    payment_id: UUID
    invoice_id: UUID
    amount: Decimal


@dataclass(frozen=True)
class Payment:
    """A recorded payment."""
    id: UUID
    vendor_id: UUID
    payment_type: PaymentType
    related_to: str
    related_id: UUID
    amount: Decimal
    currency: str
    payment_method: PaymentMethod
    payment_date: date
    status: PaymentStatus
    invoice_id: UUID | None = None
    expense_id: UUID | None = None
    reference_number: str | None = None
    notes: str | None = None
    unapplied_amount: Decimal = Decimal("0")
    allocations: tuple[PaymentAllocation, ...] = field(default_factory=tuple)
    processed_by_id: UUID | None = None
    refunded_at: datetime | None = None
    refund_reason: str | None = None

    @property
    def allocated_amount(self) -> Decimal:
        return sum((a.amount for a in self.allocations), Decimal("0"))
