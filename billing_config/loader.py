"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``billing_config.schema`` dataclasses.  Runtime callers go through
``billing_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` with a descriptive message; unknown
  payment terms, negative term days, bad percentages and unknown
  currencies are rejected at load time.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  parsed document for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from billing_config.schema import BillingConfig, ChargePolicyDef
from billing_engines.invoicing import DEFAULT_TERM_DAYS, ChargePolicy
from billing_kernel.domain.currency import CurrencyRegistry
from billing_kernel.exceptions import InvalidCurrencyError

_COUNTERPARTY_TYPES = ("society", "supplier")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file gives an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, float):
        # YAML floats are re-read through their repr to stay exact.
        value = repr(value)
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{name} is not a number: {value!r}") from exc


def parse_payment_terms(data: dict[str, Any] | None) -> dict[str, int]:
    terms = dict(DEFAULT_TERM_DAYS)
    for name, days in (data or {}).items():
        if not isinstance(days, int) or isinstance(days, bool) or days < 0:
            raise ValueError(f"payment_terms.{name} must be a non-negative integer")
        terms[str(name)] = days
    return terms


def parse_policy(data: dict[str, Any]) -> ChargePolicyDef:
    counterparty_type = data.get("counterparty_type")
    if counterparty_type not in _COUNTERPARTY_TYPES:
        raise ValueError(
            f"policy counterparty_type must be one of {_COUNTERPARTY_TYPES}, "
            f"got {counterparty_type!r}"
        )
    counterparty_id = data.get("counterparty_id")
    policy = ChargePolicyDef(
        counterparty_type=counterparty_type,
        counterparty_id=UUID(str(counterparty_id)) if counterparty_id else None,
        tax_percent=_decimal(data.get("tax_percent", 0), "tax_percent"),
        discount_percent=_decimal(data.get("discount_percent", 0), "discount_percent"),
        discount_amount=_decimal(data.get("discount_amount", 0), "discount_amount"),
    )
    # Range checks live on the engine type.
    ChargePolicy(
        tax_percent=policy.tax_percent,
        discount_percent=policy.discount_percent,
        discount_amount=policy.discount_amount,
    )
    return policy


def parse_billing_config(data: dict[str, Any]) -> BillingConfig:
    """Parse a whole configuration document."""
    try:
        currency = CurrencyRegistry.validate(data.get("currency", "INR"))
    except InvalidCurrencyError as exc:
        raise ValueError(str(exc)) from exc

    prefix = str(data.get("invoice_prefix", "MON")).strip()
    if not prefix or len(prefix) > 10:
        raise ValueError("invoice_prefix must be 1-10 characters")

    terms = parse_payment_terms(data.get("payment_terms"))
    default_terms = data.get("default_payment_terms", "credit_15")
    if default_terms not in terms:
        raise ValueError(f"default_payment_terms {default_terms!r} is not a known term")

    return BillingConfig(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        currency=currency,
        invoice_prefix=prefix,
        default_payment_terms=default_terms,
        payment_terms=terms,
        policies=tuple(parse_policy(p) for p in data.get("policies") or ()),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization; deterministic."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
