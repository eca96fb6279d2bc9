"""
Transaction Domain Models (``billing_modules.transactions.models``).

Responsibility
--------------
Frozen dataclass value objects for the three kinds of transaction record:
collections (water bought from a supplier), deliveries (water sold to a
society) and driver expenses.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* ``total_amount`` is written once, from a RateResolution, and never
  recomputed from the counterparty's current rate.
* ``invoice_id`` is the attachment marker: set while the record is on a
  non-cancelled invoice, cleared when that invoice is cancelled.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class TransactionKind(str, Enum):
    COLLECTION = "collection"
    DELIVERY = "delivery"


class TransactionStatus(str, Enum):
    """Collection/delivery lifecycle states."""
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ExpenseCategory(str, Enum):
    FUEL = "fuel"
    TOLL = "toll"
    MAINTENANCE = "maintenance"
    FOOD = "food"
    MEDICAL = "medical"
    PERSONAL = "personal"
    OTHER = "other"


class ExpenseStatus(str, Enum):
    """Expense lifecycle states."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


class ChargedTo(str, Enum):
    """Who bears an expense."""
    VENDOR = "vendor"
    DRIVER = "driver"


@dataclass(frozen=True)
class TransactionRecord:
    """A collection or delivery with its resolved quantity, rate and total."""
    id: UUID
    vendor_id: UUID
    kind: TransactionKind
    counterparty_type: str
    counterparty_id: UUID
    quantity_liters: Decimal
    rate: Decimal
    rate_basis: str
    total_amount: Decimal
    currency: str
    occurred_at: datetime
    status: TransactionStatus
    vehicle_id: UUID | None = None
    driver_id: UUID | None = None
    tanker_count: int | None = None
    invoice_id: UUID | None = None
    collection_id: UUID | None = None
    notes: str | None = None
    version: int = 1

    @property
    def is_billed(self) -> bool:
        return self.invoice_id is not None


@dataclass(frozen=True)
class Expense:
    """A driver expense claim."""
    id: UUID
    vendor_id: UUID
    driver_id: UUID
    category: ExpenseCategory
    amount: Decimal
    currency: str
    expense_date: date
    status: ExpenseStatus
    charged_to: ChargedTo = ChargedTo.VENDOR
    description: str | None = None
    approved_by_id: UUID | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    payment_id: UUID | None = None
    collection_id: UUID | None = None
    delivery_id: UUID | None = None
    version: int = 1
