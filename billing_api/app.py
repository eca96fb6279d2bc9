"""
app.py - FastAPI application for the tanker billing core.

Every route builds a RequestContext from the ``X-Tenant-Id`` and
``X-Actor-Id`` headers (set by the authenticating gateway in front of this
service), opens one session for the request, and delegates to a single
module service.  Typed kernel errors become JSON bodies carrying their
machine-readable ``code``.

Run locally:
    BILLING_DATABASE_URL=sqlite:///billing.db python -m billing_api.app
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from uuid import UUID

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billing_api.schemas import (
    AssignExpenseRequest,
    CancelInvoiceRequest,
    CollectionRequest,
    DeliveryRequest,
    ExpenseOut,
    GenerateInvoiceRequest,
    InvoiceOut,
    InvoiceOutstandingOut,
    PayExpenseRequest,
    PaymentOut,
    RecordPaymentRequest,
    ReviewExpenseRequest,
    SupplierOutstandingOut,
    SupplierStatsOut,
    TransactionOut,
)
from billing_config import BillingConfig, get_active_config
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.context import RequestContext
from billing_kernel.exceptions import (
    BillingKernelError,
    ConcurrencyError,
    CounterpartyNotFoundError,
    ExpenseNotFoundError,
    InvoiceNotFoundError,
    PaymentNotFoundError,
    TransactionNotFoundError,
    VehicleNotFoundError,
)
from billing_kernel.logging_config import get_logger
from billing_modules.counterparties.models import CounterpartyType
from billing_modules.counterparties.service import fetch_counterparty
from billing_modules.invoices.notifications import InvoiceNotifier
from billing_modules.invoices.service import InvoiceGenerator
from billing_modules.payments.models import PaymentRequest
from billing_modules.payments.service import PaymentLedger
from billing_modules.reconciliation.view import ReconciliationView, parse_month
from billing_modules.transactions.service import ExpenseService, TransactionService

logger = get_logger("api")

API_VERSION = "1.0.0"

_NOT_FOUND = (
    CounterpartyNotFoundError,
    VehicleNotFoundError,
    TransactionNotFoundError,
    InvoiceNotFoundError,
    PaymentNotFoundError,
    ExpenseNotFoundError,
)


def _status_for(exc: BillingKernelError) -> int:
    if isinstance(exc, _NOT_FOUND):
        return 404
    if isinstance(exc, ConcurrencyError):
        return 409
    return 400


def _error_body(exc: BillingKernelError) -> dict:
    details = {k: v for k, v in vars(exc).items() if not k.startswith("_")}
    return jsonable_encoder({"code": exc.code, "message": str(exc), "details": details})


def _parse_uuid_header(value: str | None, name: str) -> UUID:
    if not value:
        raise HTTPException(status_code=401, detail=f"Missing {name} header")
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Invalid {name} header") from None


def request_context(
    x_tenant_id: str | None = Header(default=None),
    x_actor_id: str | None = Header(default=None),
    x_correlation_id: str | None = Header(default=None),
) -> RequestContext:
    """RequestContext for the authenticated vendor and actor."""
    tenant_id = _parse_uuid_header(x_tenant_id, "X-Tenant-Id")
    actor_id = _parse_uuid_header(x_actor_id, "X-Actor-Id")
    if x_correlation_id:
        return RequestContext(tenant_id, actor_id, x_correlation_id)
    return RequestContext(tenant_id, actor_id)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_app(
    session_factory: Callable[[], Session],
    clock: Clock | None = None,
    config: BillingConfig | None = None,
    notifier: InvoiceNotifier | None = None,
) -> FastAPI:
    """
    Build the API around a session factory.

    The clock, config and notifier are shared by every request; tests pass
    a DeterministicClock and a recording notifier.
    """
    clock = clock or SystemClock()
    config = config or get_active_config()

    app = FastAPI(title="Tanker Billing API", version=API_VERSION)

    def get_session() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    # -------------------------------------------------------------------------
    # Error mapping
    # -------------------------------------------------------------------------

    @app.exception_handler(BillingKernelError)
    async def billing_error_handler(request: Request, exc: BillingKernelError) -> JSONResponse:
        status_code = _status_for(exc)
        logger.info("request_rejected", extra={
            "path": request.url.path,
            "status_code": status_code,
            "error_code": exc.code,
        })
        return JSONResponse(status_code=status_code, content=_error_body(exc))

    @app.exception_handler(SQLAlchemyError)
    async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("storage_error", extra={"path": request.url.path}, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"code": "STORAGE_ERROR", "message": "Internal storage error"},
        )

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "version": API_VERSION, "config_id": config.config_id}

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @app.post("/collections", status_code=201, response_model=TransactionOut, response_model_by_alias=True)
    def log_collection(
        body: CollectionRequest,
        ctx: RequestContext = Depends(request_context),
        session: Session = Depends(get_session),
    ) -> TransactionOut:
        record = TransactionService(session, clock, config).log_collection(
            ctx,
            body.supplier_id,
            body.vehicle_id,
            body.driver_id,
            tanker_count=body.tanker_count,
            quantity_liters=body.quantity_liters,
            rate_per_liter=body.rate_per_liter,
            occurred_at=_as_utc(body.occurred_at),
            status=body.status,
            notes=body.notes,
        )
        return TransactionOut.from_record(record)

    @app.post("/deliveries", status_code=201, response_model=TransactionOut, response_model_by_alias=True)
    def log_delivery(
        body: DeliveryRequest,
        ctx: RequestContext = Depends(request_context),
        session: Session = Depends(get_session),
    ) -> TransactionOut:
        record = TransactionService(session, clock, config).log_delivery(
            ctx,
            body.society_id,
            body.vehicle_id,
            body.driver_id,
            tanker_count=body.tanker_count,
            quantity_liters=body.quantity_liters,
            rate_per_liter=body.rate_per_liter,
            occurred_at=_as_utc(body.occurred_at),
            collection_id=body.collection_id,
            status=body.status,
            notes=body.notes,
        )
        return TransactionOut.from_record(record)

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    @app.post("/invoices/generate-monthly", status_code=201, response_model=InvoiceOut, response_model_by_alias=True)
    def generate_invoice(
        body: GenerateInvoiceRequest,
        ctx: RequestContext = Depends(request_context),
        session: Session = Depends(get_session),
    ) -> InvoiceOut:
        invoice = InvoiceGenerator(session, clock, config, notifier).generate(
            ctx, body.related_to, body.related_id, body.start_date, body.end_date, notes=body.notes
        )
        return InvoiceOut.from_invoice(invoice)

    @app.put("/invoices/{invoice_id}/send", response_model=InvoiceOut, response_model_by_alias=True)
    def send_invoice(
        invoice_id: UUID,
        expected_version: int | None = Query(default=None, alias="expectedVersion"),
        ctx: RequestContext = Depends(request_context),
        session: Session = Depends(get_session),
    ) -> InvoiceOut:
        invoice = InvoiceGenerator(session, clock, config, notifier).send(
            ctx, invoice_id, expected_version=expected_version
        )
        return InvoiceOut.from_invoice(invoice)

    @app.put("/invoices/{invoice_id}/cancel", response_model=InvoiceOut, response_model_by_alias=True)
    def cancel_invoice(
        invoice_id: UUID,
        body: CancelInvoiceRequest | None = None,
        ctx: RequestContext = Depends(request_context),
        session: Session = Depends(get_session),
    ) -> InvoiceOut:
        body = body or CancelInvoiceRequest()
        invoice = InvoiceGenerator(session, clock, config, notifier).cancel(
            ctx, invoice_id, reason=body.reason, expected_version=body.expected_version
        )
        return InvoiceOut.from_invoice(invoice)

    @app.get("/invoices/{invoice_id}", response_model=InvoiceOut, response_model_by_alias=True)
    def get_invoice(
        invoice_id: UUID,
        ctx: RequestContext = Depends(request_context),
        session: Session = Depends(get_session),
    ) -> InvoiceOut:
        invoice = InvoiceGenerator(session, clock, config, notifier).get(ctx, invoice_id)
        return InvoiceOut.from_invoice(invoice)

    @app.get(
        "/invoices/{invoice_id}/outstanding",
        response_model=InvoiceOutstandingOut,
        response_model_by_alias=True,
    )
    def invoice_outstanding(
        invoice_id: UUID,
        ctx: RequestContext = Depends(request_context),
        session: Session = Depends(get_session),
    ) -> InvoiceOutstandingOut:
        invoice = InvoiceGenerator(session, clock, config, notifier).get(ctx, invoice_id)
        return InvoiceOutstandingOut(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            total=invoice.total,
            paid=invoice.amount_paid,
            outstanding=invoice.outstanding,
            is_overpaid=invoice.is_overpaid,
        )

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    @app.post("/payments", status_code=201, response_model=PaymentOut, response_model_by_alias=True)
    def record_payment(
        body: RecordPaymentRequest,
        ctx: RequestContext = Depends(request_context),
        session: Session = Depends(get_session),
    ) -> PaymentOut:
        request = PaymentRequest(
            payment_type=body.payment_type,
            related_to=body.related_to,
            related_id=body.related_id,
            amount=body.amount,
            payment_method=body.payment_method,
            payment_date=body.payment_date,
            invoice_id=body.invoice_id,
            expense_id=body.expense_id,
            reference_number=body.reference_number,
            notes=body.notes,
        )
        payment = PaymentLedger(session, clock, config).record_payment(
            ctx, request, expected_invoice_version=body.expected_invoice_version
        )
        return PaymentOut.from_payment(payment)

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    @app.put("/expenses/{expense_id}/approve", response_model=ExpenseOut, response_model_by_alias=True)
    def review_expense(
        expense_id: UUID,
        body: ReviewExpenseRequest,
        ctx: RequestContext = Depends(request_context),
        session: Session = Depends(get_session),
    ) -> ExpenseOut:
        expense = ExpenseService(session, clock, config).review(
            ctx, expense_id, body.status, rejection_reason=body.rejection_reason
        )
        return ExpenseOut.from_expense(expense)

    @app.put("/expenses/{expense_id}/assign", response_model=ExpenseOut, response_model_by_alias=True)
    def assign_expense(
        expense_id: UUID,
        body: AssignExpenseRequest,
        ctx: RequestContext = Depends(request_context),
        session: Session = Depends(get_session),
    ) -> ExpenseOut:
        expense = ExpenseService(session, clock, config).assign_charge(ctx, expense_id, body.charged_to)
        return ExpenseOut.from_expense(expense)

    @app.post("/expenses/{expense_id}/pay", status_code=201, response_model=PaymentOut, response_model_by_alias=True)
    def pay_expense(
        expense_id: UUID,
        body: PayExpenseRequest | None = None,
        ctx: RequestContext = Depends(request_context),
        session: Session = Depends(get_session),
    ) -> PaymentOut:
        body = body or PayExpenseRequest()
        payment = PaymentLedger(session, clock, config).pay_expense(
            ctx,
            expense_id,
            payment_method=body.payment_method,
            payment_date=body.payment_date,
            reference_number=body.reference_number,
            notes=body.notes,
        )
        return PaymentOut.from_payment(payment)

    # -------------------------------------------------------------------------
    # Supplier reconciliation
    # -------------------------------------------------------------------------

    @app.get(
        "/suppliers/{supplier_id}/outstanding",
        response_model=SupplierOutstandingOut,
        response_model_by_alias=True,
    )
    def supplier_outstanding(
        supplier_id: UUID,
        ctx: RequestContext = Depends(request_context),
        session: Session = Depends(get_session),
    ) -> SupplierOutstandingOut:
        fetch_counterparty(session, ctx, supplier_id, CounterpartyType.SUPPLIER)
        balance = ReconciliationView(session, clock, config).supplier_outstanding(ctx, supplier_id)
        return SupplierOutstandingOut.from_balance(balance)

    @app.get(
        "/suppliers/{supplier_id}/stats",
        response_model=SupplierStatsOut,
        response_model_by_alias=True,
    )
    def supplier_stats(
        supplier_id: UUID,
        month: str | None = Query(default=None, description="YYYY-MM; defaults to this month."),
        ctx: RequestContext = Depends(request_context),
        session: Session = Depends(get_session),
    ) -> SupplierStatsOut:
        try:
            first = parse_month(month) if month else clock.today().replace(day=1)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        fetch_counterparty(session, ctx, supplier_id, CounterpartyType.SUPPLIER)
        summary = ReconciliationView(session, clock, config).monthly_summary(ctx, supplier_id, first)
        return SupplierStatsOut.from_summary(summary)

    return app


def main() -> None:
    """Start the API with uvicorn against BILLING_DATABASE_URL."""
    from billing_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url

    database_url = os.getenv("BILLING_DATABASE_URL", "sqlite:///billing.db")
    init_engine_from_url(database_url)
    create_tables()
    app = create_app(
        get_session_factory(),
        config=get_active_config(os.getenv("BILLING_CONFIG_PATH")),
    )
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(app, host="0.0.0.0", port=port, reload=False)


if __name__ == "__main__":
    main()
