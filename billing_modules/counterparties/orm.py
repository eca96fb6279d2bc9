"""
Counterparty ORM Models (``billing_modules.counterparties.orm``).

Responsibility
--------------
SQLAlchemy persistence for counterparties and vehicles.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``billing_kernel.db.base``
and sibling ``models.py``.
"""

from decimal import Decimal

from sqlalchemy import Boolean, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TenantMixin, TrackedBase


class CounterpartyModel(TenantMixin, TrackedBase):
    """
    ORM model for suppliers, societies and drivers.

    Guarantees:
        - counterparty_type is stored as its string enum value.
        - nominal_rate is NULL for drivers; for suppliers and societies it is
          the default rate used when a transaction carries no explicit rate.
        - The row is the per-counterparty lock taken by invoice generation.
    """

    __tablename__ = "counterparties"

    __table_args__ = (
        Index("idx_counterparties_vendor_type", "vendor_id", "counterparty_type"),
    )

    counterparty_type: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    nominal_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    rate_basis: Mapped[str] = mapped_column(String(20), default="per_liter")
    payment_terms: Mapped[str] = mapped_column(String(30), default="credit_15")
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_engines.invoicing import PaymentTerms
        from billing_engines.rates import RateBasis
        from billing_modules.counterparties.models import Counterparty, CounterpartyType

        return Counterparty(
            id=self.id,
            vendor_id=self.vendor_id,
            counterparty_type=CounterpartyType(self.counterparty_type),
            name=self.name,
            nominal_rate=self.nominal_rate,
            rate_basis=RateBasis(self.rate_basis),
            payment_terms=PaymentTerms(self.payment_terms),
            phone=self.phone,
            address=self.address,
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<CounterpartyModel {self.counterparty_type}: {self.name}>"


class VehicleModel(TenantMixin, TrackedBase):
    """
    ORM model for tanker vehicles.

    Guarantees:
        - registration_number is unique per vendor.
        - capacity_liters > 0 (checked by the service).
    """

    __tablename__ = "vehicles"

    __table_args__ = (
        UniqueConstraint(
            "vendor_id", "registration_number", name="uq_vehicles_vendor_registration"
        ),
    )

    registration_number: Mapped[str] = mapped_column(String(30), nullable=False)
    capacity_liters: Mapped[Decimal] = mapped_column(nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from billing_modules.counterparties.models import Vehicle

        return Vehicle(
            id=self.id,
            vendor_id=self.vendor_id,
            registration_number=self.registration_number,
            capacity_liters=self.capacity_liters,
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<VehicleModel {self.registration_number}: {self.capacity_liters}L>"
