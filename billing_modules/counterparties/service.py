"""
Counterparty Service (``billing_modules.counterparties.service``).

Registers suppliers, societies, drivers and vehicles for a vendor and keeps
their nominal rates.  Also provides the tenant-scoped lookup helpers the
other modules use, so that "not found" and "owned by another vendor" are
always reported the same way.

Usage:
    service = CounterpartyService(session)
    supplier = service.register_supplier(ctx, name="Jal Sources",
                                         nominal_rate=Decimal("8000"))
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_engines.invoicing import PaymentTerms
from billing_engines.rates import RateBasis, nominal_rate as build_nominal_rate
from billing_kernel.db.types import to_decimal
from billing_kernel.domain.context import RequestContext
from billing_kernel.exceptions import (
    CounterpartyNotFoundError,
    InvalidRateInputError,
    VehicleNotFoundError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.services.base import BaseService
from billing_modules.counterparties.models import Counterparty, CounterpartyType, Vehicle
from billing_modules.counterparties.orm import CounterpartyModel, VehicleModel

logger = get_logger("modules.counterparties.service")


def fetch_counterparty(
    session: Session,
    ctx: RequestContext,
    counterparty_id: UUID,
    counterparty_type: CounterpartyType | str | None = None,
    for_update: bool = False,
) -> CounterpartyModel:
    """
    Load a counterparty owned by the requesting vendor.

    Raises:
        CounterpartyNotFoundError: unknown id, wrong type, or another vendor's row.
    """
    stmt = select(CounterpartyModel).where(
        CounterpartyModel.id == counterparty_id,
        CounterpartyModel.vendor_id == ctx.tenant_id,
    )
    if counterparty_type is not None:
        stmt = stmt.where(
            CounterpartyModel.counterparty_type == CounterpartyType(counterparty_type).value
        )
    if for_update:
        stmt = stmt.with_for_update()
    model = session.execute(stmt).scalar_one_or_none()
    if model is None:
        label = CounterpartyType(counterparty_type).value if counterparty_type else "counterparty"
        raise CounterpartyNotFoundError(label, str(counterparty_id))
    return model


def fetch_vehicle(session: Session, ctx: RequestContext, vehicle_id: UUID) -> VehicleModel:
    """Load a vehicle owned by the requesting vendor or raise VehicleNotFoundError."""
    model = session.execute(
        select(VehicleModel).where(
            VehicleModel.id == vehicle_id,
            VehicleModel.vendor_id == ctx.tenant_id,
        )
    ).scalar_one_or_none()
    if model is None:
        raise VehicleNotFoundError(str(vehicle_id))
    return model


class CounterpartyService(BaseService[CounterpartyModel]):
    """
    Registration and rate maintenance for counterparties and vehicles.

    Transaction boundary: every mutating method commits on success and
    rolls back on failure.
    """

    entity_type = "counterparty"

    def register_supplier(
        self,
        ctx: RequestContext,
        name: str,
        nominal_rate: Decimal | None = None,
        rate_basis: RateBasis | str = RateBasis.PER_TANKER,
        payment_terms: PaymentTerms | str = PaymentTerms.PER_COLLECTION,
        phone: str | None = None,
        address: str | None = None,
    ) -> Counterparty:
        return self._register(
            ctx, CounterpartyType.SUPPLIER, name, nominal_rate,
            rate_basis, payment_terms, phone, address,
        )

    def register_society(
        self,
        ctx: RequestContext,
        name: str,
        nominal_rate: Decimal | None = None,
        rate_basis: RateBasis | str = RateBasis.PER_LITER,
        payment_terms: PaymentTerms | str = PaymentTerms.CREDIT_15,
        phone: str | None = None,
        address: str | None = None,
    ) -> Counterparty:
        return self._register(
            ctx, CounterpartyType.SOCIETY, name, nominal_rate,
            rate_basis, payment_terms, phone, address,
        )

    def register_driver(
        self,
        ctx: RequestContext,
        name: str,
        phone: str | None = None,
    ) -> Counterparty:
        return self._register(
            ctx, CounterpartyType.DRIVER, name, None,
            RateBasis.PER_LITER, PaymentTerms.CASH, phone, None,
        )

    def _register(
        self,
        ctx: RequestContext,
        counterparty_type: CounterpartyType,
        name: str,
        nominal_rate: Decimal | None,
        rate_basis: RateBasis | str,
        payment_terms: PaymentTerms | str,
        phone: str | None,
        address: str | None,
    ) -> Counterparty:
        if not name or not name.strip():
            raise ValueError("name is required")
        basis = RateBasis(rate_basis)
        terms = PaymentTerms(payment_terms)
        rate = None
        if nominal_rate is not None:
            # Validates positivity through the rate variant.
            rate = to_decimal(nominal_rate)
            build_nominal_rate(rate, basis)

        model = CounterpartyModel(
            vendor_id=ctx.tenant_id,
            counterparty_type=counterparty_type.value,
            name=name.strip(),
            nominal_rate=rate,
            rate_basis=basis.value,
            payment_terms=terms.value,
            phone=phone,
            address=address,
            is_active=True,
            created_by_id=ctx.actor_id,
        )
        with self._unit_of_work():
            self.session.add(model)
            self.session.flush()
            logger.info("counterparty_registered", extra={
                **ctx.log_fields(),
                "counterparty_id": str(model.id),
                "counterparty_type": counterparty_type.value,
                "rate_basis": basis.value,
                "nominal_rate": str(rate) if rate is not None else None,
            })
        return model.to_dto()

    def register_vehicle(
        self,
        ctx: RequestContext,
        registration_number: str,
        capacity_liters: Decimal,
    ) -> Vehicle:
        try:
            capacity = to_decimal(capacity_liters)
        except ValueError as exc:
            raise InvalidRateInputError(str(exc), field="capacity_liters") from exc
        if capacity <= 0:
            raise InvalidRateInputError("must be greater than zero", field="capacity_liters")

        model = VehicleModel(
            vendor_id=ctx.tenant_id,
            registration_number=registration_number,
            capacity_liters=capacity,
            is_active=True,
            created_by_id=ctx.actor_id,
        )
        with self._unit_of_work():
            self.session.add(model)
            self.session.flush()
            logger.info("vehicle_registered", extra={
                **ctx.log_fields(),
                "vehicle_id": str(model.id),
                "capacity_liters": str(capacity),
            })
        return model.to_dto()

    def update_rate(
        self,
        ctx: RequestContext,
        counterparty_id: UUID,
        nominal_rate: Decimal,
        rate_basis: RateBasis | str | None = None,
    ) -> Counterparty:
        """
        Change a counterparty's nominal rate.

        Only future transactions pick up the new rate; recorded totals are
        never recomputed.
        """
        with self._unit_of_work(counterparty_id):
            model = fetch_counterparty(self.session, ctx, counterparty_id, for_update=True)
            basis = RateBasis(rate_basis) if rate_basis is not None else RateBasis(model.rate_basis)
            rate = to_decimal(nominal_rate)
            build_nominal_rate(rate, basis)
            previous = model.nominal_rate
            model.nominal_rate = rate
            model.rate_basis = basis.value
            model.updated_by_id = ctx.actor_id
            logger.info("counterparty_rate_updated", extra={
                **ctx.log_fields(),
                "counterparty_id": str(counterparty_id),
                "previous_rate": str(previous) if previous is not None else None,
                "nominal_rate": str(rate),
                "rate_basis": basis.value,
            })
        return model.to_dto()

    def get(self, ctx: RequestContext, counterparty_id: UUID) -> Counterparty:
        return fetch_counterparty(self.session, ctx, counterparty_id).to_dto()

    def get_vehicle(self, ctx: RequestContext, vehicle_id: UUID) -> Vehicle:
        return fetch_vehicle(self.session, ctx, vehicle_id).to_dto()
