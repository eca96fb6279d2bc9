"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Billing errors are recoverable by the caller: the HTTP boundary turns them
into user-facing messages ("Amount cannot exceed outstanding amount of
INR 4000.00") instead of failing the process. Callers must be able to catch
them by type and read their data without parsing message strings:

    try:
        ledger.record_payment(ctx, request)
    except OverpaymentRejectedError as e:
        return {"code": e.code, "outstanding": e.outstanding}

Every exception:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as public attributes

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BillingKernelError (base)
    |
    +-- CurrencyError
    |   +-- InvalidCurrencyError
    |   +-- CurrencyMismatchError
    |
    +-- RateError
    |   +-- InvalidRateInputError
    |
    +-- CounterpartyError
    |   +-- CounterpartyNotFoundError
    |   +-- InvalidCounterpartyTypeError
    |   +-- VehicleNotFoundError
    |
    +-- TransactionError
    |   +-- TransactionNotFoundError
    |   +-- InvalidTransactionError
    |   +-- InvalidTransactionStateError
    |
    +-- InvoiceError
    |   +-- NoBillableTransactionsError
    |   +-- InvoiceOverlapError
    |   +-- InvoiceNotFoundError
    |   +-- InvalidInvoiceTransitionError
    |   +-- InvalidInvoicePeriodError
    |
    +-- PaymentError
    |   +-- OverpaymentRejectedError
    |   +-- InvalidPaymentError
    |   +-- PaymentNotFoundError
    |
    +-- ExpenseError
    |   +-- ExpenseNotFoundError
    |   +-- InvalidExpenseError
    |   +-- InvalidExpenseStateError
    |   +-- ExpenseChargeNotAllowedError
    |
    +-- ConcurrencyError
        +-- ConcurrentModificationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Currency        | INVALID_CURRENCY            | Not a known ISO 4217 code
                | CURRENCY_MISMATCH           | Mixed currencies in one operation
----------------|-----------------------------|-----------------------------------------
Rate            | INVALID_RATE_INPUT          | Missing capacity, bad tanker count,
                |                             | non-positive rate, no quantity source
----------------|-----------------------------|-----------------------------------------
Counterparty    | COUNTERPARTY_NOT_FOUND      | Unknown id, or owned by another tenant
                | VEHICLE_NOT_FOUND           | Unknown vehicle for this tenant
                | INVALID_COUNTERPARTY_TYPE   | e.g. invoicing a driver
----------------|-----------------------------|-----------------------------------------
Transaction     | TRANSACTION_NOT_FOUND       | Unknown collection/delivery id
                | INVALID_TRANSACTION         | Naive occurred_at timestamp
                | INVALID_TRANSACTION_STATE   | Completing/cancelling in wrong state
----------------|-----------------------------|-----------------------------------------
Invoice         | NO_BILLABLE_TRANSACTIONS    | Nothing unbilled in the period
                | INVOICE_OVERLAP             | Candidate already on an overlapping
                |                             | non-cancelled invoice
                | INVOICE_NOT_FOUND           | Unknown invoice id
                | INVALID_INVOICE_TRANSITION  | e.g. sending a cancelled invoice
                | INVALID_INVOICE_PERIOD      | start after end
----------------|-----------------------------|-----------------------------------------
Payment         | OVERPAYMENT_REJECTED        | amount > outstanding
                | INVALID_PAYMENT             | amount <= 0, bad method, mismatch
                | PAYMENT_NOT_FOUND           | Unknown payment id
----------------|-----------------------------|-----------------------------------------
Expense         | EXPENSE_NOT_FOUND           | Unknown expense id
                | INVALID_EXPENSE             | amount <= 0, unknown category/status
                | INVALID_EXPENSE_STATE       | Paying a non-approved expense, etc.
                | EXPENSE_CHARGE_NOT_ALLOWED  | Fuel expense charged to driver
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONCURRENT_MODIFICATION     | Version conflict on invoice/expense

===============================================================================
TENANCY
===============================================================================

A row owned by another tenant is reported with the same *NotFoundError as a
row that does not exist. The error never reveals that the id is valid for
somebody else.

===============================================================================
"""

from datetime import date
from decimal import Decimal


class BillingKernelError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "BILLING_KERNEL_ERROR"


# Currency-related exceptions


class CurrencyError(BillingKernelError):
    """Base exception for currency-related errors."""

    code: str = "CURRENCY_ERROR"


class InvalidCurrencyError(CurrencyError):
    """Currency code is not a known ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid currency code: {currency}")


class CurrencyMismatchError(CurrencyError):
    """Operation mixes two currencies."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, expected: str, received: str):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Currency mismatch: expected {expected}, received {received}"
        )


# Rate-related exceptions


class RateError(BillingKernelError):
    """Base exception for rate resolution errors."""

    code: str = "RATE_ERROR"


class InvalidRateInputError(RateError):
    """
    Rate input cannot be resolved to a quantity and amount.

    Raised instead of coercing: a missing capacity for a tanker-scoped rate
    is never treated as zero.
    """

    code: str = "INVALID_RATE_INPUT"

    def __init__(self, reason: str, field: str | None = None):
        self.reason = reason
        self.field = field
        if field:
            super().__init__(f"Invalid rate input ({field}): {reason}")
        else:
            super().__init__(f"Invalid rate input: {reason}")


# Counterparty-related exceptions


class CounterpartyError(BillingKernelError):
    """Base exception for counterparty errors."""

    code: str = "COUNTERPARTY_ERROR"


class CounterpartyNotFoundError(CounterpartyError):
    """Counterparty does not exist for the requesting tenant."""

    code: str = "COUNTERPARTY_NOT_FOUND"

    def __init__(self, counterparty_type: str, counterparty_id: str):
        self.counterparty_type = counterparty_type
        self.counterparty_id = str(counterparty_id)
        super().__init__(
            f"{counterparty_type.capitalize()} not found: {counterparty_id}"
        )


class InvalidCounterpartyTypeError(CounterpartyError):
    """Counterparty type is not valid for the requested operation."""

    code: str = "INVALID_COUNTERPARTY_TYPE"

    def __init__(self, counterparty_type: str, allowed: tuple[str, ...]):
        self.counterparty_type = counterparty_type
        self.allowed = tuple(allowed)
        super().__init__(
            f"Counterparty type '{counterparty_type}' is not allowed here; "
            f"expected one of: {', '.join(self.allowed)}"
        )


class VehicleNotFoundError(CounterpartyError):
    """Vehicle does not exist for the requesting tenant."""

    code: str = "VEHICLE_NOT_FOUND"

    def __init__(self, vehicle_id: str):
        self.vehicle_id = str(vehicle_id)
        super().__init__(f"Vehicle not found: {vehicle_id}")


# Transaction-related exceptions


class TransactionError(BillingKernelError):
    """Base exception for collection/delivery errors."""

    code: str = "TRANSACTION_ERROR"


class TransactionNotFoundError(TransactionError):
    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = str(transaction_id)
        super().__init__(f"Transaction not found: {transaction_id}")


class InvalidTransactionError(TransactionError):
    """Collection or delivery input failed validation."""

    code: str = "INVALID_TRANSACTION"

    def __init__(self, reason: str, field: str | None = None):
        self.reason = reason
        self.field = field
        super().__init__(f"Invalid transaction: {reason}")


class InvalidTransactionStateError(TransactionError):
    """Transaction is not in a state that allows the requested action."""

    code: str = "INVALID_TRANSACTION_STATE"

    def __init__(self, transaction_id: str, current_status: str, action: str):
        self.transaction_id = str(transaction_id)
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} transaction {transaction_id} "
            f"in status '{current_status}'"
        )


# Invoice-related exceptions


class InvoiceError(BillingKernelError):
    """Base exception for invoice errors."""

    code: str = "INVOICE_ERROR"


class NoBillableTransactionsError(InvoiceError):
    """
    No completed, unbilled transactions exist for the counterparty/period.

    Callers decide whether this is an error or a no-op; a repeated
    generation over an already billed period raises this.
    """

    code: str = "NO_BILLABLE_TRANSACTIONS"

    def __init__(
        self,
        counterparty_type: str,
        counterparty_id: str,
        period_start: date,
        period_end: date,
    ):
        self.counterparty_type = counterparty_type
        self.counterparty_id = str(counterparty_id)
        self.period_start = period_start
        self.period_end = period_end
        super().__init__(
            f"No billable transactions for {counterparty_type} "
            f"{counterparty_id} between {period_start} and {period_end}"
        )


class InvoiceOverlapError(InvoiceError):
    """
    Candidate transactions already appear on an overlapping invoice.

    Guard against mis-generation: the attachment marker and the line items
    of an existing non-cancelled invoice disagree.
    """

    code: str = "INVOICE_OVERLAP"

    def __init__(
        self,
        transaction_ids: list[str],
        conflicting_invoice_numbers: list[str],
    ):
        self.transaction_ids = [str(t) for t in transaction_ids]
        self.conflicting_invoice_numbers = list(conflicting_invoice_numbers)
        super().__init__(
            f"{len(self.transaction_ids)} transaction(s) already billed on "
            f"overlapping invoice(s): {', '.join(self.conflicting_invoice_numbers)}"
        )


class InvoiceNotFoundError(InvoiceError):
    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = str(invoice_id)
        super().__init__(f"Invoice not found: {invoice_id}")


class InvalidInvoiceTransitionError(InvoiceError):
    """Invoice status transition is not allowed."""

    code: str = "INVALID_INVOICE_TRANSITION"

    def __init__(
        self,
        invoice_id: str,
        from_status: str,
        to_status: str,
        reason: str | None = None,
    ):
        self.invoice_id = str(invoice_id)
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        message = (
            f"Invoice {invoice_id} cannot move from "
            f"'{from_status}' to '{to_status}'"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InvalidInvoicePeriodError(InvoiceError):
    code: str = "INVALID_INVOICE_PERIOD"

    def __init__(self, period_start: date, period_end: date, reason: str):
        self.period_start = period_start
        self.period_end = period_end
        self.reason = reason
        super().__init__(
            f"Invalid billing period {period_start} to {period_end}: {reason}"
        )


# Payment-related exceptions


class PaymentError(BillingKernelError):
    """Base exception for payment errors."""

    code: str = "PAYMENT_ERROR"


class OverpaymentRejectedError(PaymentError):
    """
    Payment amount exceeds the invoice's current outstanding balance.

    Enforced server-side. The committed payments already on the invoice
    are unaffected by the rejection.
    """

    code: str = "OVERPAYMENT_REJECTED"

    def __init__(
        self,
        invoice_id: str,
        invoice_number: str,
        outstanding: Decimal,
        attempted: Decimal,
        currency: str,
    ):
        self.invoice_id = str(invoice_id)
        self.invoice_number = invoice_number
        self.outstanding = outstanding
        self.attempted = attempted
        self.currency = currency
        super().__init__(
            f"Amount cannot exceed outstanding amount of {currency} {outstanding}"
        )


class InvalidPaymentError(PaymentError):
    """Payment request failed validation."""

    code: str = "INVALID_PAYMENT"

    def __init__(self, reason: str, field: str | None = None):
        self.reason = reason
        self.field = field
        super().__init__(f"Invalid payment: {reason}")


class PaymentNotFoundError(PaymentError):
    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        self.payment_id = str(payment_id)
        super().__init__(f"Payment not found: {payment_id}")


# Expense-related exceptions


class ExpenseError(BillingKernelError):
    """Base exception for driver expense errors."""

    code: str = "EXPENSE_ERROR"


class ExpenseNotFoundError(ExpenseError):
    code: str = "EXPENSE_NOT_FOUND"

    def __init__(self, expense_id: str):
        self.expense_id = str(expense_id)
        super().__init__(f"Expense not found: {expense_id}")


class InvalidExpenseError(ExpenseError):
    """Expense submission or review failed validation."""

    code: str = "INVALID_EXPENSE"

    def __init__(self, reason: str, field: str | None = None):
        self.reason = reason
        self.field = field
        super().__init__(f"Invalid expense: {reason}")


class InvalidExpenseStateError(ExpenseError):
    """Expense is not in a state that allows the requested action."""

    code: str = "INVALID_EXPENSE_STATE"

    def __init__(self, expense_id: str, current_status: str, action: str):
        self.expense_id = str(expense_id)
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} expense {expense_id} in status '{current_status}'"
        )


class ExpenseChargeNotAllowedError(ExpenseError):
    """Expense category cannot be charged to the requested party."""

    code: str = "EXPENSE_CHARGE_NOT_ALLOWED"

    def __init__(self, expense_id: str, category: str, charged_to: str):
        self.expense_id = str(expense_id)
        self.category = category
        self.charged_to = charged_to
        super().__init__(
            f"{category.capitalize()} expenses must be charged to vendor, "
            f"not {charged_to}"
        )


# Concurrency-related exceptions


class ConcurrencyError(BillingKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """
    Row was modified by another transaction since it was read.

    Raised on a stale version_id write or on an explicit expected-version
    mismatch. The caller should re-read and retry.
    """

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.expected_version = expected_version
        self.actual_version = actual_version
        if expected_version is not None and actual_version is not None:
            super().__init__(
                f"Concurrent modification of {entity_type} {entity_id}: "
                f"expected version {expected_version}, found {actual_version}"
            )
        else:
            super().__init__(
                f"Concurrent modification of {entity_type} {entity_id}: "
                "entity was modified by another transaction"
            )
