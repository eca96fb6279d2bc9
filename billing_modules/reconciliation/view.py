"""
ReconciliationView - read-only balances per counterparty and per month.

Responsibility:
    Match payments against obligations at read time: invoice outstanding,
    unbilled work, unapplied credit, and the monthly lump-payment figure.

Architecture position:
    Modules > selector.  Read-only: never adds, flushes or commits.

Invariants enforced:
    - Missing data yields zeros, never an error.  An id unknown to the
      requesting vendor reads as an empty account.
    - Outstanding per invoice is clamped at zero for display; an overpaid
      invoice is reported through ``has_overpayment`` and a WARNING log
      record from the outstanding engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_config import BillingConfig, get_active_config
from billing_engines.outstanding import split_carry_over
from billing_kernel.db.types import round_money, round_quantity
from billing_kernel.domain.clock import Clock
from billing_kernel.domain.context import RequestContext
from billing_kernel.logging_config import get_logger
from billing_kernel.selectors.base import BaseSelector
from billing_modules.counterparties.models import CounterpartyType
from billing_modules.invoices.models import Invoice, InvoiceStatus
from billing_modules.invoices.orm import InvoiceModel
from billing_modules.payments.models import PaymentStatus
from billing_modules.payments.orm import PaymentAllocationModel, PaymentModel
from billing_modules.reconciliation.models import (
    CounterpartyBalance,
    MonthlySummary,
    UnpaidTransaction,
)
from billing_modules.transactions.models import TransactionStatus
from billing_modules.transactions.orm import TransactionModel

logger = get_logger("modules.reconciliation.view")

_ZERO = Decimal("0")


def parse_month(month: str | date) -> date:
    """First day of a 'YYYY-MM' month (or of the month containing a date)."""
    if isinstance(month, date):
        return month.replace(day=1)
    try:
        return datetime.strptime(month, "%Y-%m").date()
    except ValueError as exc:
        raise ValueError(f"month must be YYYY-MM, got {month!r}") from exc


def _next_month(first: date) -> date:
    if first.month == 12:
        return date(first.year + 1, 1, 1)
    return date(first.year, first.month + 1, 1)


def _outstanding_before(invoice: Invoice, cutoff: date) -> Decimal:
    """
    Outstanding on the lines of ``invoice`` dated before ``cutoff``.

    Tax and discount follow the lines pro rata.  Payments settle the oldest
    lines first, so the later share keeps its balance longest.
    """
    if invoice.period_end < cutoff:
        return invoice.outstanding
    billed = sum((line.amount for line in invoice.lines if line.item_date < cutoff), _ZERO)
    if billed == invoice.subtotal:
        share = invoice.total
    elif invoice.subtotal == 0:
        share = _ZERO
    else:
        share = round_money(invoice.total * billed / invoice.subtotal)
    return max(_ZERO, share - invoice.amount_paid)


@dataclass(frozen=True)
class _InvoiceTotals:
    invoices: tuple[Invoice, ...]

    @property
    def live(self) -> tuple[Invoice, ...]:
        return tuple(i for i in self.invoices if i.status is not InvoiceStatus.CANCELLED)

    @property
    def outstanding(self) -> Decimal:
        return sum((i.outstanding for i in self.live), _ZERO)


class ReconciliationView(BaseSelector[InvoiceModel]):
    """
    Balances recomputed from invoices, allocations and transactions.

    Usage:
        view = ReconciliationView(session, clock)
        view.outstanding_by_counterparty(ctx, society_id)     # Decimal
        view.monthly_summary(ctx, supplier_id, "2026-07")     # MonthlySummary
        view.supplier_outstanding(ctx, supplier_id)           # CounterpartyBalance
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
    ):
        super().__init__(session, clock)
        self._config = config or get_active_config()

    # =========================================================================
    # Building blocks
    # =========================================================================

    def _invoices(
        self,
        ctx: RequestContext,
        counterparty_id: UUID,
        period_start_before: date | None = None,
    ) -> _InvoiceTotals:
        stmt = select(InvoiceModel).where(
            InvoiceModel.vendor_id == ctx.tenant_id,
            InvoiceModel.related_id == counterparty_id,
        )
        if period_start_before is not None:
            stmt = stmt.where(InvoiceModel.period_start < period_start_before)
        stmt = stmt.order_by(InvoiceModel.due_date, InvoiceModel.invoice_number)
        models = list(self.session.execute(stmt).scalars())
        paid = PaymentAllocationModel.completed_totals(self.session, [m.id for m in models])
        today = self._clock.today()
        return _InvoiceTotals(tuple(m.to_dto(paid[m.id], today) for m in models))

    def _completed_transactions(
        self,
        ctx: RequestContext,
        counterparty_id: UUID,
        occurred_from: datetime | None = None,
        occurred_before: datetime | None = None,
    ) -> list[TransactionModel]:
        stmt = select(TransactionModel).where(
            TransactionModel.vendor_id == ctx.tenant_id,
            TransactionModel.counterparty_id == counterparty_id,
            TransactionModel.status == TransactionStatus.COMPLETED.value,
        )
        if occurred_from is not None:
            stmt = stmt.where(TransactionModel.occurred_at >= occurred_from)
        if occurred_before is not None:
            stmt = stmt.where(TransactionModel.occurred_at < occurred_before)
        stmt = stmt.order_by(TransactionModel.occurred_at, TransactionModel.id)
        return list(self.session.execute(stmt).scalars())

    def _unapplied_credit(self, ctx: RequestContext, counterparty_id: UUID) -> Decimal:
        amounts = self.session.execute(
            select(PaymentModel.unapplied_amount).where(
                PaymentModel.vendor_id == ctx.tenant_id,
                PaymentModel.related_id == counterparty_id,
                PaymentModel.status == PaymentStatus.COMPLETED.value,
            )
        ).scalars()
        return round_money(sum(amounts, _ZERO))

    # =========================================================================
    # Public projections
    # =========================================================================

    def outstanding_by_counterparty(self, ctx: RequestContext, counterparty_id: UUID) -> Decimal:
        """Sum of outstanding over the counterparty's non-cancelled invoices."""
        return round_money(self._invoices(ctx, counterparty_id).outstanding)

    def monthly_summary(
        self,
        ctx: RequestContext,
        counterparty_id: UUID,
        month: str | date,
    ) -> MonthlySummary:
        """
        Completed work in the month plus what is carried over.

        ``outstanding`` is the account balance at month end: invoice
        outstanding on lines dated up to the month end, plus completed work
        not yet invoiced, less unapplied credit.  An invoice spanning the
        month end counts only its share for the earlier lines.
        previous_outstanding = max(0, outstanding - month amount);
        payment_due = month amount + previous_outstanding.
        """
        first = parse_month(month)
        following = _next_month(first)
        month_start = datetime.combine(first, datetime.min.time(), tzinfo=UTC)
        month_end = datetime.combine(following, datetime.min.time(), tzinfo=UTC)

        in_month = self._completed_transactions(ctx, counterparty_id, month_start, month_end)
        amount = round_money(sum((t.total_amount for t in in_month), _ZERO))
        quantity = round_quantity(sum((t.quantity_liters for t in in_month), _ZERO))

        invoiced = sum(
            (
                _outstanding_before(invoice, following)
                for invoice in self._invoices(
                    ctx, counterparty_id, period_start_before=following
                ).live
            ),
            _ZERO,
        )
        unbilled = sum(
            (
                t.total_amount
                for t in self._completed_transactions(
                    ctx, counterparty_id, occurred_before=month_end
                )
                if t.invoice_id is None
            ),
            _ZERO,
        )
        balance = round_money(invoiced + unbilled - self._unapplied_credit(ctx, counterparty_id))
        outstanding = max(_ZERO, balance)
        carry = split_carry_over(outstanding, amount)

        logger.debug("monthly_summary_computed", extra={
            **ctx.log_fields(),
            "counterparty_id": str(counterparty_id),
            "month": f"{first:%Y-%m}",
            "amount": str(amount),
            "outstanding": str(outstanding),
            "payment_due": str(carry.payment_due),
        })
        return MonthlySummary(
            counterparty_id=counterparty_id,
            month=f"{first:%Y-%m}",
            currency=self._config.currency,
            transaction_count=len(in_month),
            quantity_liters=quantity,
            amount=amount,
            outstanding=outstanding,
            previous_outstanding=carry.previous_outstanding,
            payment_due=carry.payment_due,
        )

    def counterparty_balance(
        self,
        ctx: RequestContext,
        counterparty_type: CounterpartyType | str,
        counterparty_id: UUID,
    ) -> CounterpartyBalance:
        """Invoiced, paid, unbilled and credit figures for one counterparty."""
        cp_type = CounterpartyType(counterparty_type)
        invoices = self._invoices(ctx, counterparty_id)
        live = invoices.live
        by_id = {i.id: i for i in invoices.invoices}

        unpaid: list[UnpaidTransaction] = []
        unbilled = _ZERO
        for txn in self._completed_transactions(ctx, counterparty_id):
            invoice = by_id.get(txn.invoice_id) if txn.invoice_id is not None else None
            if invoice is None:
                unbilled += txn.total_amount
            elif invoice.status is InvoiceStatus.PAID:
                continue
            unpaid.append(
                UnpaidTransaction(
                    transaction_id=txn.id,
                    kind=txn.kind,
                    occurred_at=txn.occurred_at,
                    quantity_liters=txn.quantity_liters,
                    rate=txn.rate,
                    total_amount=txn.total_amount,
                    invoice_id=invoice.id if invoice else None,
                    invoice_number=invoice.invoice_number if invoice else None,
                )
            )

        outstanding = round_money(invoices.outstanding)
        unbilled = round_money(unbilled)
        credit = self._unapplied_credit(ctx, counterparty_id)
        net = round_money(outstanding + unbilled - credit)
        overpaid = net < 0 or any(i.is_overpaid for i in live)
        if overpaid:
            logger.warning("counterparty_overpayment_detected", extra={
                **ctx.log_fields(),
                "counterparty_id": str(counterparty_id),
                "net_balance": str(net),
            })

        return CounterpartyBalance(
            counterparty_type=cp_type.value,
            counterparty_id=counterparty_id,
            currency=self._config.currency,
            invoiced_total=round_money(sum((i.total for i in live), _ZERO)),
            paid_total=round_money(sum((i.amount_paid for i in live), _ZERO)),
            outstanding=outstanding,
            overdue_amount=round_money(
                sum((i.outstanding for i in live if i.is_overdue), _ZERO)
            ),
            open_invoice_count=sum(1 for i in live if i.outstanding > 0),
            unbilled_amount=unbilled,
            unapplied_credit=credit,
            net_balance=net,
            has_overpayment=overpaid,
            unpaid_transactions=tuple(unpaid),
        )

    def supplier_outstanding(self, ctx: RequestContext, supplier_id: UUID) -> CounterpartyBalance:
        """What the vendor still owes a supplier, with the unpaid collections."""
        return self.counterparty_balance(ctx, CounterpartyType.SUPPLIER, supplier_id)
