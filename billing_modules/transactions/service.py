"""
Transaction Module Services - collections, deliveries and driver expenses.

Thin glue layer that:
1. Loads the counterparty (and vehicle) for the requesting vendor
2. Calls RateResolver to turn operator input into (quantity, rate, total)
3. Persists the record and owns the transaction boundary

Usage:
    service = TransactionService(session, clock)
    collection = service.log_collection(
        ctx, supplier_id, vehicle_id,
        tanker_count=3, occurred_at=datetime(2026, 7, 4, 6, 30, tzinfo=UTC),
    )
    collection.total_amount   # Decimal("24000.00") at 8000/tanker, 5000L
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_config import BillingConfig, get_active_config
from billing_engines.rates import (
    PerLiterRate,
    RateInput,
    RateResolution,
    RateResolver,
    nominal_rate,
)
from billing_kernel.db.types import round_money, to_decimal
from billing_kernel.domain.clock import Clock
from billing_kernel.domain.context import RequestContext
from billing_kernel.exceptions import (
    ExpenseChargeNotAllowedError,
    ExpenseNotFoundError,
    InvalidExpenseError,
    InvalidExpenseStateError,
    InvalidRateInputError,
    InvalidTransactionError,
    InvalidTransactionStateError,
    TransactionNotFoundError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.services.base import BaseService
from billing_modules.counterparties.models import CounterpartyType
from billing_modules.counterparties.orm import CounterpartyModel
from billing_modules.counterparties.service import fetch_counterparty, fetch_vehicle
from billing_modules.transactions.models import (
    ChargedTo,
    Expense,
    ExpenseCategory,
    ExpenseStatus,
    TransactionKind,
    TransactionRecord,
    TransactionStatus,
)
from billing_modules.transactions.orm import ExpenseModel, TransactionModel
from billing_modules.transactions.workflows import (
    EXPENSE_WORKFLOW,
    NOT_INVOICED,
    TRANSACTION_WORKFLOW,
)

logger = get_logger("modules.transactions.service")


def fetch_transaction(
    session: Session,
    ctx: RequestContext,
    transaction_id: UUID,
    for_update: bool = False,
) -> TransactionModel:
    stmt = select(TransactionModel).where(
        TransactionModel.id == transaction_id,
        TransactionModel.vendor_id == ctx.tenant_id,
    )
    if for_update:
        stmt = stmt.with_for_update()
    model = session.execute(stmt).scalar_one_or_none()
    if model is None:
        raise TransactionNotFoundError(str(transaction_id))
    return model


def fetch_expense(
    session: Session,
    ctx: RequestContext,
    expense_id: UUID,
    for_update: bool = False,
) -> ExpenseModel:
    stmt = select(ExpenseModel).where(
        ExpenseModel.id == expense_id,
        ExpenseModel.vendor_id == ctx.tenant_id,
    )
    if for_update:
        stmt = stmt.with_for_update()
    model = session.execute(stmt).scalar_one_or_none()
    if model is None:
        raise ExpenseNotFoundError(str(expense_id))
    return model


class TransactionService(BaseService[TransactionModel]):
    """
    Records collections and deliveries.

    Engine composition:
    - RateResolver: quantity, per-liter rate and total for every record

    Transaction boundary: this service commits on success, rolls back on
    failure.
    """

    entity_type = "transaction"

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
        resolver: RateResolver | None = None,
    ):
        super().__init__(session, clock)
        self._config = config or get_active_config()
        self._resolver = resolver or RateResolver()

    # =========================================================================
    # Logging trips
    # =========================================================================

    def log_collection(
        self,
        ctx: RequestContext,
        supplier_id: UUID,
        vehicle_id: UUID | None = None,
        driver_id: UUID | None = None,
        *,
        tanker_count: int | None = None,
        quantity_liters: Decimal | None = None,
        rate_per_liter: Decimal | None = None,
        occurred_at: datetime | None = None,
        status: TransactionStatus | str = TransactionStatus.COMPLETED,
        notes: str | None = None,
    ) -> TransactionRecord:
        """Record water collected from a supplier."""
        return self._log(
            ctx,
            kind=TransactionKind.COLLECTION,
            counterparty_type=CounterpartyType.SUPPLIER,
            counterparty_id=supplier_id,
            vehicle_id=vehicle_id,
            driver_id=driver_id,
            tanker_count=tanker_count,
            quantity_liters=quantity_liters,
            rate_per_liter=rate_per_liter,
            occurred_at=occurred_at,
            status=status,
            notes=notes,
            collection_id=None,
        )

    def log_delivery(
        self,
        ctx: RequestContext,
        society_id: UUID,
        vehicle_id: UUID | None = None,
        driver_id: UUID | None = None,
        *,
        tanker_count: int | None = None,
        quantity_liters: Decimal | None = None,
        rate_per_liter: Decimal | None = None,
        occurred_at: datetime | None = None,
        collection_id: UUID | None = None,
        status: TransactionStatus | str = TransactionStatus.COMPLETED,
        notes: str | None = None,
    ) -> TransactionRecord:
        """Record water delivered to a society, optionally from a collection."""
        return self._log(
            ctx,
            kind=TransactionKind.DELIVERY,
            counterparty_type=CounterpartyType.SOCIETY,
            counterparty_id=society_id,
            vehicle_id=vehicle_id,
            driver_id=driver_id,
            tanker_count=tanker_count,
            quantity_liters=quantity_liters,
            rate_per_liter=rate_per_liter,
            occurred_at=occurred_at,
            status=status,
            notes=notes,
            collection_id=collection_id,
        )

    def _log(
        self,
        ctx: RequestContext,
        *,
        kind: TransactionKind,
        counterparty_type: CounterpartyType,
        counterparty_id: UUID,
        vehicle_id: UUID | None,
        driver_id: UUID | None,
        tanker_count: int | None,
        quantity_liters: Decimal | None,
        rate_per_liter: Decimal | None,
        occurred_at: datetime | None,
        status: TransactionStatus | str,
        notes: str | None,
        collection_id: UUID | None,
    ) -> TransactionRecord:
        status = TransactionStatus(status)
        if status is TransactionStatus.CANCELLED:
            raise InvalidTransactionStateError("new", status.value, "create")
        occurred_at = occurred_at or self._clock.now_utc()
        if occurred_at.tzinfo is None:
            raise InvalidTransactionError(
                "occurred_at must be timezone-aware", field="occurred_at"
            )

        with self._unit_of_work():
            counterparty = fetch_counterparty(
                self.session, ctx, counterparty_id, counterparty_type
            )
            capacity = None
            if vehicle_id is not None:
                capacity = fetch_vehicle(self.session, ctx, vehicle_id).capacity_liters
            if driver_id is not None:
                fetch_counterparty(self.session, ctx, driver_id, CounterpartyType.DRIVER)
            if collection_id is not None:
                source = fetch_transaction(self.session, ctx, collection_id)
                if source.kind != TransactionKind.COLLECTION.value:
                    raise TransactionNotFoundError(str(collection_id))

            resolution = self.resolve_rate(
                counterparty,
                capacity=capacity,
                tanker_count=tanker_count,
                quantity_liters=quantity_liters,
                rate_per_liter=rate_per_liter,
            )

            model = TransactionModel(
                vendor_id=ctx.tenant_id,
                kind=kind.value,
                counterparty_type=counterparty_type.value,
                counterparty_id=counterparty.id,
                vehicle_id=vehicle_id,
                driver_id=driver_id,
                tanker_count=tanker_count,
                quantity_liters=resolution.quantity_liters,
                rate=resolution.per_liter_rate,
                rate_basis=resolution.rate_basis.value,
                total_amount=resolution.total_amount.amount,
                currency=resolution.total_amount.currency.code,
                occurred_at=occurred_at,
                status=status.value,
                collection_id=collection_id,
                notes=notes,
                created_by_id=ctx.actor_id,
            )
            self.session.add(model)
            self.session.flush()

            logger.info(f"{kind.value}_logged", extra={
                **ctx.log_fields(),
                "transaction_id": str(model.id),
                "counterparty_id": str(counterparty.id),
                "quantity_liters": str(resolution.quantity_liters),
                "rate": str(resolution.per_liter_rate),
                "total_amount": str(resolution.total_amount.amount),
                "quantity_source": resolution.quantity_source.value,
                "status": status.value,
            })
        return model.to_dto()

    def resolve_rate(
        self,
        counterparty: CounterpartyModel,
        *,
        capacity: Decimal | None,
        tanker_count: int | None,
        quantity_liters: Decimal | None,
        rate_per_liter: Decimal | None,
    ) -> RateResolution:
        """
        Resolve a trip's amount.

        An explicit per-liter rate from the operator wins; otherwise the
        counterparty's nominal rate and basis apply.
        """
        if rate_per_liter is not None:
            rate = PerLiterRate(rate_per_liter)
        elif counterparty.nominal_rate is not None:
            rate = nominal_rate(counterparty.nominal_rate, counterparty.rate_basis)
        else:
            raise InvalidRateInputError(
                "no rate given and the counterparty has no nominal rate",
                field="rate_per_liter",
            )
        return self._resolver.resolve(
            RateInput(
                rate=rate,
                vehicle_capacity_liters=capacity,
                tanker_count=tanker_count,
                explicit_quantity_liters=quantity_liters,
                currency=self._config.currency,
            )
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def complete(self, ctx: RequestContext, transaction_id: UUID) -> TransactionRecord:
        """pending -> completed.  Only completed records are billable."""
        return self._transition(ctx, transaction_id, "complete")

    def cancel(
        self,
        ctx: RequestContext,
        transaction_id: UUID,
        reason: str | None = None,
    ) -> TransactionRecord:
        """Cancel a record that is not on an invoice."""
        return self._transition(ctx, transaction_id, "cancel", reason)

    def _transition(
        self,
        ctx: RequestContext,
        transaction_id: UUID,
        action: str,
        reason: str | None = None,
    ) -> TransactionRecord:
        with self._unit_of_work(transaction_id):
            model = fetch_transaction(self.session, ctx, transaction_id, for_update=True)
            transition = TRANSACTION_WORKFLOW.find(model.status, action)
            if transition is None:
                raise InvalidTransactionStateError(str(transaction_id), model.status, action)
            if transition.guard is NOT_INVOICED and model.invoice_id is not None:
                logger.warning("transaction_guard_failed", extra={
                    **ctx.log_fields(),
                    "transaction_id": str(transaction_id),
                    "guard": transition.guard.name,
                    "invoice_id": str(model.invoice_id),
                })
                raise InvalidTransactionStateError(
                    str(transaction_id), "invoiced", action
                )
            previous = model.status
            model.status = transition.to_state
            model.updated_by_id = ctx.actor_id
            if reason:
                model.notes = f"{model.notes}\n{reason}" if model.notes else reason
            self.session.flush()
            logger.info("transaction_status_changed", extra={
                **ctx.log_fields(),
                "transaction_id": str(transaction_id),
                "from_status": previous,
                "to_status": transition.to_state,
            })
        return model.to_dto()

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, ctx: RequestContext, transaction_id: UUID) -> TransactionRecord:
        return fetch_transaction(self.session, ctx, transaction_id).to_dto()

    def list_for_counterparty(
        self,
        ctx: RequestContext,
        counterparty_id: UUID,
        status: TransactionStatus | str | None = None,
        unbilled_only: bool = False,
    ) -> list[TransactionRecord]:
        stmt = select(TransactionModel).where(
            TransactionModel.vendor_id == ctx.tenant_id,
            TransactionModel.counterparty_id == counterparty_id,
        )
        if status is not None:
            stmt = stmt.where(TransactionModel.status == TransactionStatus(status).value)
        if unbilled_only:
            stmt = stmt.where(TransactionModel.invoice_id.is_(None))
        stmt = stmt.order_by(TransactionModel.occurred_at, TransactionModel.id)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]


class ExpenseService(BaseService[ExpenseModel]):
    """
    Driver expense claims: submit, review, and charge assignment.

    Paying an approved expense is a ledger operation and lives on
    ``PaymentLedger.pay_expense``.
    """

    entity_type = "expense"

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
    ):
        super().__init__(session, clock)
        self._config = config or get_active_config()

    def submit(
        self,
        ctx: RequestContext,
        driver_id: UUID,
        category: ExpenseCategory | str,
        amount: Decimal,
        *,
        description: str | None = None,
        expense_date: date | None = None,
        collection_id: UUID | None = None,
        delivery_id: UUID | None = None,
    ) -> Expense:
        """Submit a claim.  New expenses are pending and charged to the vendor."""
        try:
            category = ExpenseCategory(category)
        except ValueError as exc:
            raise InvalidExpenseError(f"unknown category {category!r}", field="category") from exc
        try:
            value = to_decimal(amount)
        except ValueError as exc:
            raise InvalidExpenseError(str(exc), field="amount") from exc
        if value <= 0:
            raise InvalidExpenseError("amount must be greater than zero", field="amount")

        with self._unit_of_work():
            fetch_counterparty(self.session, ctx, driver_id, CounterpartyType.DRIVER)
            for linked in (collection_id, delivery_id):
                if linked is not None:
                    fetch_transaction(self.session, ctx, linked)
            model = ExpenseModel(
                vendor_id=ctx.tenant_id,
                driver_id=driver_id,
                category=category.value,
                amount=round_money(value),
                currency=self._config.currency,
                description=description,
                expense_date=expense_date or self._clock.today(),
                status=ExpenseStatus.PENDING.value,
                charged_to=ChargedTo.VENDOR.value,
                collection_id=collection_id,
                delivery_id=delivery_id,
                created_by_id=ctx.actor_id,
            )
            self.session.add(model)
            self.session.flush()
            logger.info("expense_submitted", extra={
                **ctx.log_fields(),
                "expense_id": str(model.id),
                "driver_id": str(driver_id),
                "category": category.value,
                "amount": str(model.amount),
            })
        return model.to_dto()

    def review(
        self,
        ctx: RequestContext,
        expense_id: UUID,
        status: ExpenseStatus | str,
        rejection_reason: str | None = None,
    ) -> Expense:
        """Approve or reject a pending expense."""
        try:
            target = ExpenseStatus(status)
        except ValueError as exc:
            raise InvalidExpenseError(f"unknown status {status!r}", field="status") from exc
        actions = {ExpenseStatus.APPROVED: "approve", ExpenseStatus.REJECTED: "reject"}
        if target not in actions:
            raise InvalidExpenseError(
                "status must be 'approved' or 'rejected'", field="status"
            )
        action = actions[target]

        with self._unit_of_work(expense_id):
            model = fetch_expense(self.session, ctx, expense_id, for_update=True)
            if not EXPENSE_WORKFLOW.allows(model.status, action):
                raise InvalidExpenseStateError(str(expense_id), model.status, action)
            model.status = target.value
            model.approved_by_id = ctx.actor_id
            model.approved_at = self._clock.now_utc()
            if target is ExpenseStatus.REJECTED:
                model.rejection_reason = rejection_reason
            model.updated_by_id = ctx.actor_id
            self.session.flush()
            logger.info(f"expense_{target.value}", extra={
                **ctx.log_fields(),
                "expense_id": str(expense_id),
                "rejection_reason": model.rejection_reason,
            })
        return model.to_dto()

    def assign_charge(
        self,
        ctx: RequestContext,
        expense_id: UUID,
        charged_to: ChargedTo | str,
    ) -> Expense:
        """
        Decide who bears an expense.

        Fuel is always the vendor's.  A paid expense can no longer be
        reassigned.
        """
        try:
            party = ChargedTo(charged_to)
        except ValueError as exc:
            raise InvalidExpenseError(
                "charged_to must be 'vendor' or 'driver'", field="charged_to"
            ) from exc

        with self._unit_of_work(expense_id):
            model = fetch_expense(self.session, ctx, expense_id, for_update=True)
            if model.category == ExpenseCategory.FUEL.value and party is not ChargedTo.VENDOR:
                logger.warning("expense_charge_rejected", extra={
                    **ctx.log_fields(),
                    "expense_id": str(expense_id),
                    "category": model.category,
                    "charged_to": party.value,
                })
                raise ExpenseChargeNotAllowedError(str(expense_id), model.category, party.value)
            if model.status == ExpenseStatus.PAID.value:
                raise InvalidExpenseStateError(str(expense_id), model.status, "reassign")
            model.charged_to = party.value
            model.updated_by_id = ctx.actor_id
            self.session.flush()
            logger.info("expense_charge_assigned", extra={
                **ctx.log_fields(),
                "expense_id": str(expense_id),
                "charged_to": party.value,
            })
        return model.to_dto()

    def get(self, ctx: RequestContext, expense_id: UUID) -> Expense:
        return fetch_expense(self.session, ctx, expense_id).to_dto()

    def list_expenses(
        self,
        ctx: RequestContext,
        driver_id: UUID | None = None,
        status: ExpenseStatus | str | None = None,
    ) -> list[Expense]:
        stmt = select(ExpenseModel).where(ExpenseModel.vendor_id == ctx.tenant_id)
        if driver_id is not None:
            stmt = stmt.where(ExpenseModel.driver_id == driver_id)
        if status is not None:
            stmt = stmt.where(ExpenseModel.status == ExpenseStatus(status).value)
        stmt = stmt.order_by(ExpenseModel.expense_date, ExpenseModel.id)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]
