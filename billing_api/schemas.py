"""
schemas.py - request and response bodies for the billing HTTP API.

JSON uses camelCase keys.  Money, rates and liters are exact Decimals in the
core and are written to JSON as numbers; request bodies accept numbers or
numeric strings.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from billing_modules.invoices.models import Invoice
from billing_modules.payments.models import Payment, PaymentMethod, PaymentType
from billing_modules.reconciliation.models import (
    CounterpartyBalance,
    MonthlySummary,
    UnpaidTransaction,
)
from billing_modules.transactions.models import Expense, TransactionRecord, TransactionStatus

# Decimal in, JSON number out.
Amount = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class GenerateInvoiceRequest(ApiModel):
    related_id: UUID = Field(description="Society or supplier id.")
    related_to: str = Field(description="'society' or 'supplier'.")
    start_date: date
    end_date: date
    notes: str | None = None


class CancelInvoiceRequest(ApiModel):
    reason: str | None = None
    expected_version: int | None = None


class RecordPaymentRequest(ApiModel):
    payment_type: PaymentType = Field(alias="type")
    related_to: str
    related_id: UUID
    invoice_id: UUID | None = None
    expense_id: UUID | None = None
    amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_date: date | None = None
    reference_number: str | None = None
    notes: str | None = None
    expected_invoice_version: int | None = None


class ReviewExpenseRequest(ApiModel):
    status: str = Field(description="'approved' or 'rejected'.")
    rejection_reason: str | None = None


class AssignExpenseRequest(ApiModel):
    charged_to: str = Field(description="'vendor' or 'driver'.")


class PayExpenseRequest(ApiModel):
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_date: date | None = None
    reference_number: str | None = None
    notes: str | None = None


class _TripRequest(ApiModel):
    vehicle_id: UUID | None = None
    driver_id: UUID | None = None
    tanker_count: int | None = None
    quantity_liters: Decimal | None = Field(
        default=None, description="Manual liter figure; beats tanker_count."
    )
    rate_per_liter: Decimal | None = Field(
        default=None, description="Overrides the counterparty's nominal rate."
    )
    occurred_at: datetime | None = Field(
        default=None, description="Naive values are taken as UTC."
    )
    status: TransactionStatus = TransactionStatus.COMPLETED
    notes: str | None = None


class CollectionRequest(_TripRequest):
    supplier_id: UUID


class DeliveryRequest(_TripRequest):
    society_id: UUID
    collection_id: UUID | None = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class InvoiceItemOut(ApiModel):
    line_number: int
    transaction_id: UUID
    item_date: date = Field(alias="date")
    quantity: Amount
    rate: Amount
    amount: Amount


class InvoiceOut(ApiModel):
    id: UUID
    invoice_number: str
    related_to: str
    related_id: UUID
    period_start: date
    period_end: date
    due_date: date
    currency: str
    items: list[InvoiceItemOut]
    subtotal: Amount
    tax: Amount
    discount: Amount
    total: Amount
    status: str
    amount_paid: Amount
    outstanding: Amount
    is_overpaid: bool
    sent_at: datetime | None = None
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    notes: str | None = None
    version: int

    @classmethod
    def from_invoice(cls, invoice: Invoice) -> "InvoiceOut":
        return cls(
            id=invoice.id,
            invoice_number=invoice.invoice_number,
            related_to=invoice.related_to,
            related_id=invoice.related_id,
            period_start=invoice.period_start,
            period_end=invoice.period_end,
            due_date=invoice.due_date,
            currency=invoice.currency,
            items=[
                InvoiceItemOut(
                    line_number=line.line_number,
                    transaction_id=line.source_transaction_id,
                    item_date=line.item_date,
                    quantity=line.quantity_liters,
                    rate=line.rate,
                    amount=line.amount,
                )
                for line in invoice.lines
            ],
            subtotal=invoice.subtotal,
            tax=invoice.tax,
            discount=invoice.discount,
            total=invoice.total,
            status=invoice.effective_status.value,
            amount_paid=invoice.amount_paid,
            outstanding=invoice.outstanding,
            is_overpaid=invoice.is_overpaid,
            sent_at=invoice.sent_at,
            paid_at=invoice.paid_at,
            cancelled_at=invoice.cancelled_at,
            cancellation_reason=invoice.cancellation_reason,
            notes=invoice.notes,
            version=invoice.version,
        )


class InvoiceOutstandingOut(ApiModel):
    invoice_id: UUID
    invoice_number: str
    total: Amount
    paid: Amount
    outstanding: Amount
    is_overpaid: bool


class AllocationOut(ApiModel):
    invoice_id: UUID
    amount: Amount


class PaymentOut(ApiModel):
    id: UUID
    payment_type: str = Field(alias="type")
    related_to: str
    related_id: UUID
    invoice_id: UUID | None = None
    expense_id: UUID | None = None
    amount: Amount
    currency: str
    payment_method: str
    payment_date: date
    reference_number: str | None = None
    status: str
    unapplied_amount: Amount
    allocations: list[AllocationOut]

    @classmethod
    def from_payment(cls, payment: Payment) -> "PaymentOut":
        return cls(
            id=payment.id,
            payment_type=payment.payment_type.value,
            related_to=payment.related_to,
            related_id=payment.related_id,
            invoice_id=payment.invoice_id,
            expense_id=payment.expense_id,
            amount=payment.amount,
            currency=payment.currency,
            payment_method=payment.payment_method.value,
            payment_date=payment.payment_date,
            reference_number=payment.reference_number,
            status=payment.status.value,
            unapplied_amount=payment.unapplied_amount,
            allocations=[
                AllocationOut(invoice_id=a.invoice_id, amount=a.amount)
                for a in payment.allocations
            ],
        )


class ExpenseOut(ApiModel):
    id: UUID
    driver_id: UUID
    category: str
    amount: Amount
    currency: str
    description: str | None = None
    expense_date: date
    status: str
    charged_to: str
    approved_by_id: UUID | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    payment_id: UUID | None = None

    @classmethod
    def from_expense(cls, expense: Expense) -> "ExpenseOut":
        return cls(
            id=expense.id,
            driver_id=expense.driver_id,
            category=expense.category.value,
            amount=expense.amount,
            currency=expense.currency,
            description=expense.description,
            expense_date=expense.expense_date,
            status=expense.status.value,
            charged_to=expense.charged_to.value,
            approved_by_id=expense.approved_by_id,
            approved_at=expense.approved_at,
            rejection_reason=expense.rejection_reason,
            payment_id=expense.payment_id,
        )


class TransactionOut(ApiModel):
    id: UUID
    kind: str
    counterparty_id: UUID
    vehicle_id: UUID | None = None
    driver_id: UUID | None = None
    tanker_count: int | None = None
    quantity_liters: Amount
    rate: Amount
    rate_basis: str
    total_amount: Amount
    currency: str
    occurred_at: datetime
    status: str
    invoice_id: UUID | None = None
    collection_id: UUID | None = None

    @classmethod
    def from_record(cls, record: TransactionRecord) -> "TransactionOut":
        return cls(
            id=record.id,
            kind=record.kind.value,
            counterparty_id=record.counterparty_id,
            vehicle_id=record.vehicle_id,
            driver_id=record.driver_id,
            tanker_count=record.tanker_count,
            quantity_liters=record.quantity_liters,
            rate=record.rate,
            rate_basis=record.rate_basis,
            total_amount=record.total_amount,
            currency=record.currency,
            occurred_at=record.occurred_at,
            status=record.status.value,
            invoice_id=record.invoice_id,
            collection_id=record.collection_id,
        )


class UnpaidCollectionOut(ApiModel):
    id: UUID
    quantity: Amount
    rate: Amount
    total_amount: Amount
    occurred_at: datetime
    invoice_id: UUID | None = None
    invoice_number: str | None = None

    @classmethod
    def from_unpaid(cls, item: UnpaidTransaction) -> "UnpaidCollectionOut":
        return cls(
            id=item.transaction_id,
            quantity=item.quantity_liters,
            rate=item.rate,
            total_amount=item.total_amount,
            occurred_at=item.occurred_at,
            invoice_id=item.invoice_id,
            invoice_number=item.invoice_number,
        )


class SupplierOutstandingOut(ApiModel):
    supplier_id: UUID
    currency: str
    invoiced_total: Amount
    paid_total: Amount
    outstanding: Amount
    overdue_amount: Amount
    unbilled_amount: Amount
    unapplied_credit: Amount
    net_balance: Amount
    has_overpayment: bool
    unpaid_collections: list[UnpaidCollectionOut]

    @classmethod
    def from_balance(cls, balance: CounterpartyBalance) -> "SupplierOutstandingOut":
        return cls(
            supplier_id=balance.counterparty_id,
            currency=balance.currency,
            invoiced_total=balance.invoiced_total,
            paid_total=balance.paid_total,
            outstanding=balance.outstanding,
            overdue_amount=balance.overdue_amount,
            unbilled_amount=balance.unbilled_amount,
            unapplied_credit=balance.unapplied_credit,
            net_balance=balance.net_balance,
            has_overpayment=balance.has_overpayment,
            unpaid_collections=[
                UnpaidCollectionOut.from_unpaid(item) for item in balance.unpaid_transactions
            ],
        )


class MonthlyOut(ApiModel):
    collections: int
    quantity: Amount
    amount: Amount


class SupplierStatsOut(ApiModel):
    month: str
    currency: str
    monthly: MonthlyOut
    outstanding: Amount
    previous_outstanding: Amount
    payment_due: Amount

    @classmethod
    def from_summary(cls, summary: MonthlySummary) -> "SupplierStatsOut":
        return cls(
            month=summary.month,
            currency=summary.currency,
            monthly=MonthlyOut(
                collections=summary.transaction_count,
                quantity=summary.quantity_liters,
                amount=summary.amount,
            ),
            outstanding=summary.outstanding,
            previous_outstanding=summary.previous_outstanding,
            payment_due=summary.payment_due,
        )
