"""
PaymentLedger - records payments and keeps invoice balances honest.

Thin glue layer that:
1. Locks the target invoice (or the counterparty's open invoices)
2. Derives the outstanding balance from completed allocations
3. Rejects anything that would take an invoice below zero
4. Calls AllocationEngine to spread account payments oldest first
5. Moves the invoice to ``paid`` exactly when its balance reaches zero

Outstanding is never stored.  It is recomputed from the invoice total and
the completed allocations on every read and every write.

A remainder with no open invoice to absorb it stays on the payment as
unapplied credit; ``apply_account_credit`` spends it on the next invoice
generated for the same counterparty.

Usage:
    ledger = PaymentLedger(session, clock)
    payment = ledger.record_payment(ctx, PaymentRequest(
        payment_type=PaymentType.DELIVERY, related_to="society",
        related_id=society_id, invoice_id=invoice.id,
        amount=Decimal("6000.00"), payment_method=PaymentMethod.UPI,
    ))
    ledger.outstanding(ctx, invoice.id)   # Decimal("4000.00")
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_config import BillingConfig, get_active_config
from billing_engines.allocation import AllocationEngine, AllocationTarget
from billing_engines.outstanding import OutstandingBalance, compute_outstanding
from billing_kernel.domain.clock import Clock
from billing_kernel.domain.context import RequestContext
from billing_kernel.domain.currency import CurrencyRegistry
from billing_kernel.domain.values import Money
from billing_kernel.exceptions import (
    InvalidExpenseStateError,
    InvalidPaymentError,
    OverpaymentRejectedError,
    PaymentNotFoundError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.services.base import BaseService
from billing_modules.counterparties.models import CounterpartyType
from billing_modules.counterparties.service import fetch_counterparty
from billing_modules.invoices.models import InvoiceStatus
from billing_modules.invoices.orm import InvoiceModel, check_version, fetch_invoice
from billing_modules.invoices.workflows import INVOICE_WORKFLOW
from billing_modules.payments.models import (
    Payment,
    PaymentMethod,
    PaymentRequest,
    PaymentStatus,
    PaymentType,
)
from billing_modules.payments.orm import PaymentAllocationModel, PaymentModel
from billing_modules.transactions.models import ExpenseStatus
from billing_modules.transactions.orm import ExpenseModel
from billing_modules.transactions.service import fetch_expense
from billing_modules.transactions.workflows import EXPENSE_WORKFLOW

logger = get_logger("modules.payments.service")

_OPEN_STATUSES = (InvoiceStatus.DRAFT.value, InvoiceStatus.SENT.value)


def fetch_payment(
    session: Session,
    ctx: RequestContext,
    payment_id: UUID,
    for_update: bool = False,
) -> PaymentModel:
    stmt = select(PaymentModel).where(
        PaymentModel.id == payment_id,
        PaymentModel.vendor_id == ctx.tenant_id,
    )
    if for_update:
        stmt = stmt.with_for_update()
    model = session.execute(stmt).scalar_one_or_none()
    if model is None:
        raise PaymentNotFoundError(str(payment_id))
    return model


def allocate(
    ctx: RequestContext,
    now: datetime,
    payment: PaymentModel,
    invoice: InvoiceModel,
    amount: Decimal,
    previously_paid: Decimal,
) -> None:
    """Apply ``amount`` of ``payment`` to ``invoice``; settle it when fully paid."""
    payment.allocations.append(
        PaymentAllocationModel(
            vendor_id=ctx.tenant_id,
            invoice_id=invoice.id,
            amount=amount,
            created_by_id=ctx.actor_id,
        )
    )
    invoice.last_payment_at = now
    invoice.payment_revision += 1
    invoice.updated_by_id = ctx.actor_id
    if previously_paid + amount == invoice.total:
        transition = INVOICE_WORKFLOW.find(invoice.status, "settle")
        if transition is not None:
            invoice.status = transition.to_state
            invoice.paid_at = now
            logger.info("invoice_paid", extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "total": str(invoice.total),
            })


def apply_account_credit(
    session: Session,
    ctx: RequestContext,
    now: datetime,
    invoice: InvoiceModel,
) -> Decimal:
    """
    Spend the counterparty's unapplied credit on ``invoice``, oldest payment first.

    Each credit payment keeps ``amount == sum(allocations) + unapplied_amount``.
    Returns the amount applied.
    """
    candidates = session.execute(
        select(PaymentModel)
        .where(
            PaymentModel.vendor_id == ctx.tenant_id,
            PaymentModel.related_to == invoice.related_to,
            PaymentModel.related_id == invoice.related_id,
            PaymentModel.status == PaymentStatus.COMPLETED.value,
        )
        .order_by(PaymentModel.payment_date, PaymentModel.created_at)
        .with_for_update()
    ).scalars().all()
    # Money columns are strings on SQLite, so the positive filter runs here.
    credits = [payment for payment in candidates if payment.unapplied_amount > 0]
    if not credits:
        return Decimal("0")

    paid = PaymentAllocationModel.completed_totals(session, [invoice.id])[invoice.id]
    remaining = invoice.total - paid
    applied = Decimal("0")
    for payment in credits:
        if remaining <= 0:
            break
        amount = min(payment.unapplied_amount, remaining)
        payment.unapplied_amount = payment.unapplied_amount - amount
        payment.updated_by_id = ctx.actor_id
        allocate(ctx, now, payment, invoice, amount, paid + applied)
        applied += amount
        remaining -= amount
        logger.info("account_credit_applied", extra={
            "payment_id": str(payment.id),
            "invoice_id": str(invoice.id),
            "invoice_number": invoice.invoice_number,
            "amount": str(amount),
            "unapplied_amount": str(payment.unapplied_amount),
        })
    return applied


class PaymentLedger(BaseService[PaymentModel]):
    """
    Records payments against invoices, accounts and driver expenses.

    Engine composition:
    - AllocationEngine: FIFO spread of a payment without an invoice
    - compute_outstanding: balance derivation and overpayment detection

    Transaction boundary: this service commits on success, rolls back on
    failure.  A rejected payment leaves every earlier payment untouched.
    """

    entity_type = "invoice"

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
        allocator: AllocationEngine | None = None,
    ):
        super().__init__(session, clock)
        self._config = config or get_active_config()
        self._allocator = allocator or AllocationEngine()

    # =========================================================================
    # Recording
    # =========================================================================

    def record_payment(
        self,
        ctx: RequestContext,
        request: PaymentRequest,
        expected_invoice_version: int | None = None,
    ) -> Payment:
        """
        Record a completed payment.

        Raises:
            CounterpartyNotFoundError: related_id unknown for this vendor.
            InvoiceNotFoundError: invoice_id unknown for this vendor.
            InvalidPaymentError: invoice of another counterparty, cancelled
                invoice, an expense amount mismatch, or an amount finer
                than the currency allows, or an expense amount mismatch.
            OverpaymentRejectedError: amount > outstanding on the invoice.
            ConcurrentModificationError: expected_invoice_version is stale.
        """
        self._check_precision(request.amount)
        if expected_invoice_version is not None and request.invoice_id is None:
            raise InvalidPaymentError(
                "expected_invoice_version needs an invoice_id", field="invoice_id"
            )
        with LogContext.bind(**ctx.log_fields()):
            with self._unit_of_work(request.invoice_id or request.expense_id):
                fetch_counterparty(self.session, ctx, request.related_id, request.related_to)
                if request.expense_id is not None:
                    expense = fetch_expense(self.session, ctx, request.expense_id, for_update=True)
                    payment = self._settle_expense(ctx, request, expense)
                elif request.invoice_id is not None:
                    payment = self._pay_invoice(ctx, request, expected_invoice_version)
                else:
                    payment = self._pay_account(ctx, request)
                self.session.flush()
                logger.info("payment_recorded", extra={
                    "payment_id": str(payment.id),
                    "payment_type": payment.payment_type,
                    "related_to": payment.related_to,
                    "related_id": str(payment.related_id),
                    "amount": str(payment.amount),
                    "unapplied_amount": str(payment.unapplied_amount),
                    "allocation_count": len(payment.allocations),
                })
        return payment.to_dto()

    def _check_precision(self, amount: Decimal) -> None:
        currency = self._config.currency
        if Money.of(amount, currency).round().amount != amount:
            places = CurrencyRegistry.get_decimal_places(currency)
            raise InvalidPaymentError(
                f"amount has more than {places} decimal places for {currency}",
                field="amount",
            )

    def _new_payment(
        self,
        ctx: RequestContext,
        request: PaymentRequest,
        unapplied_amount: Decimal = Decimal("0"),
    ) -> PaymentModel:
        payment = PaymentModel(
            vendor_id=ctx.tenant_id,
            payment_type=request.payment_type.value,
            related_to=request.related_to,
            related_id=request.related_id,
            invoice_id=request.invoice_id,
            expense_id=request.expense_id,
            amount=request.amount,
            currency=self._config.currency,
            payment_method=request.payment_method.value,
            payment_date=request.payment_date or self._clock.today(),
            reference_number=request.reference_number,
            notes=request.notes,
            status=PaymentStatus.COMPLETED.value,
            unapplied_amount=unapplied_amount,
            processed_by_id=ctx.actor_id,
            created_by_id=ctx.actor_id,
        )
        self.session.add(payment)
        return payment

    def _pay_invoice(
        self,
        ctx: RequestContext,
        request: PaymentRequest,
        expected_invoice_version: int | None,
    ) -> PaymentModel:
        invoice = fetch_invoice(self.session, ctx, request.invoice_id, for_update=True)
        check_version(invoice, expected_invoice_version)
        if invoice.related_id != request.related_id or invoice.related_to != request.related_to:
            raise InvalidPaymentError(
                "invoice belongs to a different counterparty", field="invoice_id"
            )
        if invoice.status == InvoiceStatus.CANCELLED.value:
            raise InvalidPaymentError("invoice is cancelled", field="invoice_id")

        paid = PaymentAllocationModel.completed_totals(self.session, [invoice.id])[invoice.id]
        balance = compute_outstanding(
            Money.of(invoice.total, invoice.currency),
            [Money.of(paid, invoice.currency)],
            reference=invoice.invoice_number,
        )
        outstanding = balance.outstanding.amount
        if request.amount > outstanding:
            logger.warning("overpayment_rejected", extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "outstanding": str(outstanding),
                "attempted": str(request.amount),
            })
            raise OverpaymentRejectedError(
                str(invoice.id), invoice.invoice_number, outstanding,
                request.amount, invoice.currency,
            )

        payment = self._new_payment(ctx, request)
        allocate(ctx, self._clock.now_utc(), payment, invoice, request.amount, paid)
        return payment

    def _pay_account(self, ctx: RequestContext, request: PaymentRequest) -> PaymentModel:
        """
        A payment with no invoice.

        Society and supplier payments are spread over open invoices, oldest
        due date first; the remainder stays on the payment as unapplied
        credit.  Driver payments are plain ledger entries.
        """
        if request.related_to == CounterpartyType.DRIVER.value:
            return self._new_payment(ctx, request)

        invoices = list(
            self.session.execute(
                select(InvoiceModel)
                .where(
                    InvoiceModel.vendor_id == ctx.tenant_id,
                    InvoiceModel.related_id == request.related_id,
                    InvoiceModel.status.in_(_OPEN_STATUSES),
                )
                .order_by(
                    InvoiceModel.due_date,
                    InvoiceModel.period_start,
                    InvoiceModel.invoice_number,
                )
                .with_for_update()
            ).scalars()
        )
        paid = PaymentAllocationModel.completed_totals(self.session, [i.id for i in invoices])
        currency = self._config.currency
        targets = [
            AllocationTarget(
                target_id=invoice.id,
                eligible_amount=Money.of(max(Decimal("0"), invoice.total - paid[invoice.id]), currency),
                due_date=invoice.due_date,
                priority=position,
            )
            for position, invoice in enumerate(invoices)
        ]
        result = self._allocator.allocate_fifo(Money.of(request.amount, currency), targets)

        payment = self._new_payment(ctx, request, unapplied_amount=result.unallocated.amount)
        by_id = {invoice.id: invoice for invoice in invoices}
        now = self._clock.now_utc()
        for line in result.lines:
            invoice = by_id[line.target_id]
            allocate(ctx, now, payment, invoice, line.allocated.amount, paid[invoice.id])
        if not result.unallocated.is_zero:
            logger.info("payment_unapplied_credit", extra={
                "related_id": str(request.related_id),
                "unapplied_amount": str(result.unallocated.amount),
            })
        return payment

    # =========================================================================
    # Driver expenses
    # =========================================================================

    def pay_expense(
        self,
        ctx: RequestContext,
        expense_id: UUID,
        payment_method: PaymentMethod | str = PaymentMethod.CASH,
        payment_date: date | None = None,
        reference_number: str | None = None,
        notes: str | None = None,
    ) -> Payment:
        """Pay an approved expense in full; the expense becomes ``paid``."""
        with LogContext.bind(**ctx.log_fields()):
            with self._unit_of_work(expense_id):
                expense = fetch_expense(self.session, ctx, expense_id, for_update=True)
                request = PaymentRequest(
                    payment_type=PaymentType.EXPENSE,
                    related_to=CounterpartyType.DRIVER.value,
                    related_id=expense.driver_id,
                    amount=expense.amount,
                    payment_method=payment_method,
                    payment_date=payment_date,
                    expense_id=expense.id,
                    reference_number=reference_number,
                    notes=notes,
                )
                payment = self._settle_expense(ctx, request, expense)
                self.session.flush()
                logger.info("payment_recorded", extra={
                    "payment_id": str(payment.id),
                    "payment_type": payment.payment_type,
                    "related_to": payment.related_to,
                    "related_id": str(payment.related_id),
                    "amount": str(payment.amount),
                    "expense_id": str(expense.id),
                })
        return payment.to_dto()

    def _settle_expense(
        self,
        ctx: RequestContext,
        request: PaymentRequest,
        expense: ExpenseModel,
    ) -> PaymentModel:
        if expense.driver_id != request.related_id:
            raise InvalidPaymentError(
                "expense belongs to a different driver", field="related_id"
            )
        transition = EXPENSE_WORKFLOW.find(expense.status, "pay")
        if transition is None:
            raise InvalidExpenseStateError(str(expense.id), expense.status, "pay")
        if request.amount != expense.amount:
            raise InvalidPaymentError(
                f"amount must equal the expense amount {expense.amount}", field="amount"
            )
        payment = self._new_payment(ctx, request)
        self.session.flush()
        expense.status = transition.to_state
        expense.payment_id = payment.id
        expense.updated_by_id = ctx.actor_id
        logger.info("expense_paid", extra={
            "expense_id": str(expense.id),
            "payment_id": str(payment.id),
            "amount": str(expense.amount),
        })
        return payment

    # =========================================================================
    # Refunds
    # =========================================================================

    def refund_payment(
        self,
        ctx: RequestContext,
        payment_id: UUID,
        reason: str | None = None,
    ) -> Payment:
        """
        completed -> refunded.

        The payment's allocations stop counting, so a paid invoice reopens
        (to ``sent``, or ``draft`` if it was never sent) and a paid expense
        returns to ``approved``.
        """
        with LogContext.bind(**ctx.log_fields(), payment_id=str(payment_id)):
            with self._unit_of_work(payment_id):
                payment = fetch_payment(self.session, ctx, payment_id, for_update=True)
                if payment.status != PaymentStatus.COMPLETED.value:
                    raise InvalidPaymentError(
                        f"only completed payments can be refunded, status is '{payment.status}'",
                        field="status",
                    )
                payment.status = PaymentStatus.REFUNDED.value
                payment.refunded_at = self._clock.now_utc()
                payment.refund_reason = reason
                payment.updated_by_id = ctx.actor_id

                for invoice_id in sorted({a.invoice_id for a in payment.allocations}, key=str):
                    invoice = fetch_invoice(self.session, ctx, invoice_id, for_update=True)
                    invoice.payment_revision += 1
                    invoice.updated_by_id = ctx.actor_id
                    if invoice.status != InvoiceStatus.PAID.value:
                        continue
                    action = "reopen" if invoice.sent_at is not None else "reopen_unsent"
                    transition = INVOICE_WORKFLOW.find(invoice.status, action)
                    invoice.status = transition.to_state
                    invoice.paid_at = None
                    logger.info("invoice_reopened", extra={
                        "invoice_id": str(invoice.id),
                        "invoice_number": invoice.invoice_number,
                        "status": invoice.status,
                    })

                if payment.expense_id is not None:
                    expense = fetch_expense(self.session, ctx, payment.expense_id, for_update=True)
                    transition = EXPENSE_WORKFLOW.find(expense.status, "refund")
                    if transition is not None:
                        expense.status = transition.to_state
                        expense.payment_id = None
                        expense.updated_by_id = ctx.actor_id

                self.session.flush()
                logger.info("payment_refunded", extra={
                    "amount": str(payment.amount),
                    "reason": reason,
                })
        return payment.to_dto()

    # =========================================================================
    # Balances and queries
    # =========================================================================

    def invoice_balance(self, ctx: RequestContext, invoice_id: UUID) -> OutstandingBalance:
        """Raw and display balance of one invoice."""
        invoice = fetch_invoice(self.session, ctx, invoice_id)
        paid = PaymentAllocationModel.completed_totals(self.session, [invoice.id])[invoice.id]
        return compute_outstanding(
            Money.of(invoice.total, invoice.currency),
            [Money.of(paid, invoice.currency)],
            reference=invoice.invoice_number,
        )

    def outstanding(self, ctx: RequestContext, invoice_id: UUID) -> Decimal:
        """total - sum(completed payments), never below zero."""
        return self.invoice_balance(ctx, invoice_id).outstanding.amount

    def get(self, ctx: RequestContext, payment_id: UUID) -> Payment:
        return fetch_payment(self.session, ctx, payment_id).to_dto()

    def list_payments(
        self,
        ctx: RequestContext,
        related_to: str | None = None,
        related_id: UUID | None = None,
        invoice_id: UUID | None = None,
    ) -> list[Payment]:
        stmt = select(PaymentModel).where(PaymentModel.vendor_id == ctx.tenant_id)
        if related_to is not None:
            stmt = stmt.where(PaymentModel.related_to == CounterpartyType(related_to).value)
        if related_id is not None:
            stmt = stmt.where(PaymentModel.related_id == related_id)
        if invoice_id is not None:
            stmt = stmt.where(
                PaymentModel.id.in_(
                    select(PaymentAllocationModel.payment_id).where(
                        PaymentAllocationModel.invoice_id == invoice_id
                    )
                )
            )
        stmt = stmt.order_by(PaymentModel.payment_date, PaymentModel.created_at)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]
