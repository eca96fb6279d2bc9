"""
InvoiceGenerator - bills a counterparty's completed transactions for a period.

Thin glue layer that:
1. Locks the counterparty row (one generator per counterparty at a time)
2. Selects and locks completed, unattached transactions in the period
3. Calls InvoiceCalculator for lines, tax, discount, total and due date
4. Takes the next invoice number from the locked SequenceService counter
5. Persists the invoice, attaches the transactions, spends any unapplied
   account credit of the counterparty on it, and commits

No-double-billing rests on two guards that hold even when they race: the
candidate filter (``invoice_id IS NULL``) under a counterparty lock, and the
optimistic ``version`` on every attached transaction.

Usage:
    generator = InvoiceGenerator(session, clock)
    invoice = generator.generate(
        ctx, "society", society_id, date(2026, 7, 1), date(2026, 7, 31),
    )
    invoice.invoice_number   # "MON-202608-0001"
    generator.send(ctx, invoice.id)
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_config import BillingConfig, get_active_config
from billing_engines.invoicing import BillableItem, InvoiceCalculator, format_invoice_number
from billing_kernel.domain.clock import Clock
from billing_kernel.domain.context import RequestContext
from billing_kernel.domain.values import Money
from billing_kernel.exceptions import (
    InvalidCounterpartyTypeError,
    InvalidInvoicePeriodError,
    InvalidInvoiceTransitionError,
    InvoiceOverlapError,
    NoBillableTransactionsError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.services.base import BaseService
from billing_kernel.services.sequence_service import SequenceService
from billing_modules.counterparties.models import INVOICEABLE_TYPES, CounterpartyType
from billing_modules.counterparties.service import fetch_counterparty
from billing_modules.invoices.models import Invoice, InvoiceStatus
from billing_modules.invoices.notifications import InvoiceNotifier, LoggingNotifier
from billing_modules.invoices.orm import (
    InvoiceLineModel,
    InvoiceModel,
    check_version,
    fetch_invoice,
)
from billing_modules.invoices.workflows import INVOICE_WORKFLOW
from billing_modules.payments.orm import PaymentAllocationModel
from billing_modules.payments.service import apply_account_credit
from billing_modules.transactions.models import TransactionStatus
from billing_modules.transactions.orm import TransactionModel

logger = get_logger("modules.invoices.service")


def period_bounds(period_start: date, period_end: date) -> tuple[datetime, datetime]:
    """Half-open UTC window [start 00:00, end+1 00:00) covering whole days."""
    start_at = datetime.combine(period_start, time.min, tzinfo=UTC)
    end_at = datetime.combine(period_end + timedelta(days=1), time.min, tzinfo=UTC)
    return start_at, end_at


def invoice_dto(session: Session, model: InvoiceModel, today: date) -> Invoice:
    paid = PaymentAllocationModel.completed_totals(session, [model.id])[model.id]
    return model.to_dto(paid, today)


class InvoiceGenerator(BaseService[InvoiceModel]):
    """
    Generates, sends, cancels and reads invoices.

    Engine composition:
    - InvoiceCalculator: lines, subtotal, tax, discount, total, due date
    - SequenceService: per-vendor, per-month invoice numbers

    Transaction boundary: this service commits on success, rolls back on
    failure.  Notification runs after the commit and cannot undo it.
    """

    entity_type = "invoice"

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
        notifier: InvoiceNotifier | None = None,
        calculator: InvoiceCalculator | None = None,
    ):
        super().__init__(session, clock)
        self._config = config or get_active_config()
        self._notifier = notifier or LoggingNotifier()
        self._calculator = calculator or InvoiceCalculator()

    # =========================================================================
    # Generation
    # =========================================================================

    def generate(
        self,
        ctx: RequestContext,
        counterparty_type: CounterpartyType | str,
        counterparty_id: UUID,
        period_start: date,
        period_end: date,
        notes: str | None = None,
    ) -> Invoice:
        """
        Bill every completed, unbilled transaction of the counterparty whose
        ``occurred_at`` falls in [period_start, period_end].

        Raises:
            InvalidCounterpartyTypeError: drivers are not invoiced.
            InvalidInvoicePeriodError: period_start after period_end.
            CounterpartyNotFoundError: unknown id or another vendor's.
            InvoiceOverlapError: a candidate is already a line item of an
                overlapping non-cancelled invoice.
            NoBillableTransactionsError: nothing left to bill.
        """
        try:
            cp_type = CounterpartyType(counterparty_type)
        except ValueError:
            raise InvalidCounterpartyTypeError(str(counterparty_type), INVOICEABLE_TYPES) from None
        if cp_type.value not in INVOICEABLE_TYPES:
            raise InvalidCounterpartyTypeError(cp_type.value, INVOICEABLE_TYPES)
        if period_start > period_end:
            raise InvalidInvoicePeriodError(
                period_start, period_end, "period_start is after period_end"
            )

        with LogContext.bind(**ctx.log_fields()):
            logger.info("invoice_generation_started", extra={
                "counterparty_type": cp_type.value,
                "counterparty_id": str(counterparty_id),
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
            })
            with self._unit_of_work():
                counterparty = fetch_counterparty(
                    self.session, ctx, counterparty_id, cp_type, for_update=True
                )
                candidates = self._candidates(ctx, counterparty.id, period_start, period_end)
                self._check_overlap(ctx, candidates, period_start, period_end)
                if not candidates:
                    logger.info("invoice_generation_no_billable", extra={
                        "counterparty_id": str(counterparty_id),
                    })
                    raise NoBillableTransactionsError(
                        cp_type.value, str(counterparty_id), period_start, period_end
                    )

                draft = self._calculator.build(
                    items=[
                        BillableItem(
                            transaction_id=txn.id,
                            occurred_at=txn.occurred_at,
                            quantity_liters=txn.quantity_liters,
                            rate=txn.rate,
                            amount=Money.of(txn.total_amount, txn.currency),
                        )
                        for txn in candidates
                    ],
                    policy=self._config.policy_for(cp_type.value, counterparty.id),
                    period_start=period_start,
                    period_end=period_end,
                    term_days=self._config.term_days(counterparty.payment_terms),
                    currency=self._config.currency,
                )

                invoice_number = self._next_invoice_number(ctx)
                model = InvoiceModel(
                    vendor_id=ctx.tenant_id,
                    related_to=cp_type.value,
                    related_id=counterparty.id,
                    invoice_number=invoice_number,
                    period_start=draft.period_start,
                    period_end=draft.period_end,
                    due_date=draft.due_date,
                    currency=draft.currency,
                    subtotal=draft.subtotal.amount,
                    tax=draft.tax.amount,
                    discount=draft.discount.amount,
                    total=draft.total.amount,
                    status=InvoiceStatus.DRAFT.value,
                    notes=notes,
                    created_by_id=ctx.actor_id,
                )
                model.lines = [
                    InvoiceLineModel(
                        source_transaction_id=line.source_transaction_id,
                        line_number=line.line_number,
                        item_date=line.item_date,
                        quantity_liters=line.quantity_liters,
                        rate=line.rate,
                        amount=line.amount,
                        created_by_id=ctx.actor_id,
                    )
                    for line in draft.lines
                ]
                self.session.add(model)
                self.session.flush()

                for txn in candidates:
                    txn.invoice_id = model.id
                    txn.updated_by_id = ctx.actor_id
                self.session.flush()
                credit = apply_account_credit(
                    self.session, ctx, self._clock.now_utc(), model
                )
                self.session.flush()

                logger.info("invoice_generated", extra={
                    "invoice_id": str(model.id),
                    "invoice_number": invoice_number,
                    "counterparty_id": str(counterparty.id),
                    "line_count": draft.line_count,
                    "subtotal": str(draft.subtotal.amount),
                    "tax": str(draft.tax.amount),
                    "discount": str(draft.discount.amount),
                    "total": str(draft.total.amount),
                    "due_date": draft.due_date.isoformat(),
                    "credit_applied": str(credit),
                })
            return invoice_dto(self.session, model, self._clock.today())

    def _candidates(
        self,
        ctx: RequestContext,
        counterparty_id: UUID,
        period_start: date,
        period_end: date,
    ) -> list[TransactionModel]:
        start_at, end_at = period_bounds(period_start, period_end)
        return list(
            self.session.execute(
                select(TransactionModel)
                .where(
                    TransactionModel.vendor_id == ctx.tenant_id,
                    TransactionModel.counterparty_id == counterparty_id,
                    TransactionModel.status == TransactionStatus.COMPLETED.value,
                    TransactionModel.invoice_id.is_(None),
                    TransactionModel.occurred_at >= start_at,
                    TransactionModel.occurred_at < end_at,
                )
                .order_by(TransactionModel.occurred_at, TransactionModel.id)
                .with_for_update()
            ).scalars()
        )

    def _check_overlap(
        self,
        ctx: RequestContext,
        candidates: list[TransactionModel],
        period_start: date,
        period_end: date,
    ) -> None:
        if not candidates:
            return
        rows = self.session.execute(
            select(InvoiceLineModel.source_transaction_id, InvoiceModel.invoice_number)
            .join(InvoiceModel, InvoiceLineModel.invoice_id == InvoiceModel.id)
            .where(
                InvoiceModel.vendor_id == ctx.tenant_id,
                InvoiceModel.status != InvoiceStatus.CANCELLED.value,
                InvoiceModel.period_start <= period_end,
                InvoiceModel.period_end >= period_start,
                InvoiceLineModel.source_transaction_id.in_([c.id for c in candidates]),
            )
        ).all()
        if rows:
            transaction_ids = sorted({str(r[0]) for r in rows})
            numbers = sorted({r[1] for r in rows})
            logger.error("invoice_overlap_detected", extra={
                "transaction_ids": transaction_ids,
                "invoice_numbers": numbers,
            })
            raise InvoiceOverlapError(transaction_ids, numbers)

    def _next_invoice_number(self, ctx: RequestContext) -> str:
        billing_month = self._clock.today()
        sequence = SequenceService(self.session).next_value(
            SequenceService.invoice_sequence_name(ctx.tenant_id, f"{billing_month:%Y%m}")
        )
        return format_invoice_number(self._config.invoice_prefix, billing_month, sequence)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def send(
        self,
        ctx: RequestContext,
        invoice_id: UUID,
        expected_version: int | None = None,
    ) -> Invoice:
        """
        draft -> sent, then notify the counterparty.

        Sending a sent invoice is an idempotent re-send: no state change,
        the notification goes out again.
        """
        with LogContext.bind(**ctx.log_fields(), invoice_id=str(invoice_id)):
            with self._unit_of_work(invoice_id):
                model = fetch_invoice(self.session, ctx, invoice_id, for_update=True)
                check_version(model, expected_version)
                resend = model.status == InvoiceStatus.SENT.value
                if not resend:
                    transition = INVOICE_WORKFLOW.find(model.status, "send")
                    if transition is None:
                        raise InvalidInvoiceTransitionError(
                            str(invoice_id), model.status, InvoiceStatus.SENT.value
                        )
                    model.status = transition.to_state
                    model.sent_at = self._clock.now_utc()
                    model.updated_by_id = ctx.actor_id
                    self.session.flush()
                logger.info("invoice_sent", extra={
                    "invoice_number": model.invoice_number,
                    "resend": resend,
                })
            invoice = invoice_dto(self.session, model, self._clock.today())
            self._notify(ctx, invoice)
        return invoice

    def _notify(self, ctx: RequestContext, invoice: Invoice) -> None:
        try:
            self._notifier.invoice_sent(ctx, invoice)
        except Exception:
            # The invoice stays sent; delivery can be retried by re-sending.
            logger.warning("invoice_notification_failed", extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
            }, exc_info=True)

    def cancel(
        self,
        ctx: RequestContext,
        invoice_id: UUID,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> Invoice:
        """
        Cancel a draft or sent invoice with no completed payments.

        The attached transactions are released and can be billed again.
        """
        with LogContext.bind(**ctx.log_fields(), invoice_id=str(invoice_id)):
            with self._unit_of_work(invoice_id):
                model = fetch_invoice(self.session, ctx, invoice_id, for_update=True)
                check_version(model, expected_version)
                transition = INVOICE_WORKFLOW.find(model.status, "cancel")
                if transition is None:
                    raise InvalidInvoiceTransitionError(
                        str(invoice_id), model.status, InvoiceStatus.CANCELLED.value
                    )
                paid = PaymentAllocationModel.completed_totals(self.session, [model.id])[model.id]
                if paid > 0:
                    raise InvalidInvoiceTransitionError(
                        str(invoice_id), model.status, InvoiceStatus.CANCELLED.value,
                        reason=f"completed payments of {paid} are allocated to it",
                    )

                released = self.session.execute(
                    select(TransactionModel)
                    .where(
                        TransactionModel.vendor_id == ctx.tenant_id,
                        TransactionModel.invoice_id == model.id,
                    )
                    .with_for_update()
                ).scalars().all()
                for txn in released:
                    txn.invoice_id = None
                    txn.updated_by_id = ctx.actor_id

                model.status = transition.to_state
                model.cancelled_at = self._clock.now_utc()
                model.cancellation_reason = reason
                model.updated_by_id = ctx.actor_id
                self.session.flush()
                logger.info("invoice_cancelled", extra={
                    "invoice_number": model.invoice_number,
                    "released_transactions": len(released),
                    "reason": reason,
                })
            return invoice_dto(self.session, model, self._clock.today())

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, ctx: RequestContext, invoice_id: UUID) -> Invoice:
        model = fetch_invoice(self.session, ctx, invoice_id)
        return invoice_dto(self.session, model, self._clock.today())

    def list_invoices(
        self,
        ctx: RequestContext,
        related_to: CounterpartyType | str | None = None,
        related_id: UUID | None = None,
        status: InvoiceStatus | str | None = None,
    ) -> list[Invoice]:
        """
        Invoices for the vendor, oldest period first.

        ``status`` filters on the effective status, so ``overdue`` works.
        """
        stmt = select(InvoiceModel).where(InvoiceModel.vendor_id == ctx.tenant_id)
        if related_to is not None:
            stmt = stmt.where(InvoiceModel.related_to == CounterpartyType(related_to).value)
        if related_id is not None:
            stmt = stmt.where(InvoiceModel.related_id == related_id)
        stmt = stmt.order_by(InvoiceModel.period_start, InvoiceModel.invoice_number)
        models = list(self.session.execute(stmt).scalars())

        paid = PaymentAllocationModel.completed_totals(self.session, [m.id for m in models])
        today = self._clock.today()
        invoices = [m.to_dto(paid[m.id], today) for m in models]
        if status is not None:
            wanted = InvoiceStatus(status)
            invoices = [i for i in invoices if i.effective_status is wanted]
        return invoices
