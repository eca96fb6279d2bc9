"""
Configuration schema (``billing_config.schema``).

Frozen dataclasses describing a tenant billing configuration: currency,
invoice number prefix, payment-term days and per-counterparty tax/discount
policies.  Instances are produced by ``billing_config.loader`` only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from billing_engines.invoicing import DEFAULT_TERM_DAYS, ChargePolicy


@dataclass(frozen=True)
class ChargePolicyDef:
    """
    Tax/discount policy for a counterparty type, or one counterparty.

    A policy with ``counterparty_id`` set beats the type-wide default.
    """

    counterparty_type: str
    counterparty_id: UUID | None = None
    tax_percent: Decimal = Decimal("0")
    discount_percent: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")

    def to_policy(self) -> ChargePolicy:
        return ChargePolicy(
            tax_percent=self.tax_percent,
            discount_percent=self.discount_percent,
            discount_amount=self.discount_amount,
        )


@dataclass(frozen=True)
class BillingConfig:
    """The resolved billing configuration."""

    config_id: str
    version: int
    currency: str = "INR"
    invoice_prefix: str = "MON"
    default_payment_terms: str = "credit_15"
    payment_terms: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_TERM_DAYS))
    policies: tuple[ChargePolicyDef, ...] = ()
    checksum: str = ""

    def term_days(self, payment_terms: str | None) -> int:
        """Days from period end to due date for a payment-terms name."""
        name = payment_terms or self.default_payment_terms
        if name not in self.payment_terms:
            raise ValueError(f"Unknown payment terms: {name!r}")
        return self.payment_terms[name]

    def policy_for(self, counterparty_type: str, counterparty_id: UUID | None) -> ChargePolicy:
        """
        Most specific policy for a counterparty.

        Order: exact id match, then type default, then no tax/discount.
        """
        type_default: ChargePolicyDef | None = None
        for policy in self.policies:
            if policy.counterparty_type != counterparty_type:
                continue
            if policy.counterparty_id is not None and policy.counterparty_id == counterparty_id:
                return policy.to_policy()
            if policy.counterparty_id is None and type_default is None:
                type_default = policy
        if type_default is not None:
            return type_default.to_policy()
        return ChargePolicy()
