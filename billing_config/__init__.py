"""
billing_config -- single public entrypoint for billing configuration.

Responsibility:
    ``get_active_config()`` is the only way services obtain configuration.
    It loads a YAML document (the packaged ``sets/default.yaml`` unless a
    path is given), validates it and returns a frozen ``BillingConfig``.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- validation failures (unknown currency, bad terms,
      bad percentages).

Audit relevance:
    Every call emits a ``BILLING_CONFIG_TRACE`` log entry with the config
    id, version and checksum.
"""

from __future__ import annotations

import logging
from pathlib import Path

from billing_config.loader import load_yaml_file, parse_billing_config
from billing_config.schema import BillingConfig, ChargePolicyDef

_logger = logging.getLogger("billing_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> BillingConfig:
    """Load, validate and return the billing configuration."""
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    config = parse_billing_config(load_yaml_file(config_path))

    _logger.info(
        "BILLING_CONFIG_TRACE",
        extra={
            "trace_type": "BILLING_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "currency": config.currency,
            "policy_count": len(config.policies),
        },
    )
    return config


__all__ = [
    "BillingConfig",
    "ChargePolicyDef",
    "DEFAULT_CONFIG_PATH",
    "get_active_config",
]
