"""
Tests for billing configuration loading and policy resolution.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
import yaml

from billing_config import DEFAULT_CONFIG_PATH, get_active_config
from billing_config.loader import compute_checksum, parse_billing_config
from billing_engines.invoicing import ChargePolicy


class TestDefaultConfig:
    def test_packaged_defaults(self):
        config = get_active_config()

        assert config.config_id == "default"
        assert config.currency == "INR"
        assert config.invoice_prefix == "MON"
        assert config.default_payment_terms == "credit_15"
        assert config.term_days("credit_15") == 15
        assert config.term_days("per_collection") == 0
        assert config.term_days(None) == 15
        assert config.policy_for("society", uuid4()) == ChargePolicy()
        assert DEFAULT_CONFIG_PATH.exists()

    def test_load_emits_trace(self, captured_logs):
        config = get_active_config()

        trace = next(r for r in captured_logs() if r["message"] == "BILLING_CONFIG_TRACE")
        assert trace["config_id"] == "default"
        assert trace["checksum"] == config.checksum
        assert trace["policy_count"] == 2

    def test_custom_file(self, tmp_path):
        path = tmp_path / "vendor.yaml"
        path.write_text(yaml.safe_dump({
            "config_id": "pune-north",
            "version": 3,
            "invoice_prefix": "PNQ",
            "default_payment_terms": "credit_7",
        }))

        config = get_active_config(path)

        assert (config.config_id, config.version, config.invoice_prefix) == ("pune-north", 3, "PNQ")
        assert config.term_days(None) == 7

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "nope.yaml")

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        config = get_active_config(path)

        assert config.currency == "INR"
        assert config.policies == ()


class TestPolicies:
    def test_specific_counterparty_beats_type_default(self):
        vip = uuid4()
        config = parse_billing_config({
            "policies": [
                {"counterparty_type": "society", "tax_percent": 18},
                {"counterparty_type": "society", "counterparty_id": str(vip),
                 "tax_percent": 5, "discount_percent": 10},
            ],
        })

        assert config.policy_for("society", vip) == ChargePolicy(
            tax_percent=Decimal("5"), discount_percent=Decimal("10")
        )
        assert config.policy_for("society", uuid4()).tax_percent == Decimal("18")
        assert config.policy_for("supplier", vip) == ChargePolicy()

    def test_yaml_floats_stay_exact(self):
        config = parse_billing_config({
            "policies": [{"counterparty_type": "society", "tax_percent": 2.5}],
        })

        assert config.policies[0].tax_percent == Decimal("2.5")


class TestValidation:
    @pytest.mark.parametrize(
        "document",
        [
            {"currency": "XYZ"},
            {"invoice_prefix": ""},
            {"invoice_prefix": "TOO-LONG-PREFIX"},
            {"default_payment_terms": "credit_45"},
            {"payment_terms": {"credit_7": -1}},
            {"payment_terms": {"credit_7": "seven"}},
            {"policies": [{"counterparty_type": "driver"}]},
            {"policies": [{"counterparty_type": "society", "tax_percent": 120}]},
            {"policies": [{"counterparty_type": "society", "discount_amount": -5}]},
            {"policies": [{"counterparty_type": "society", "tax_percent": "abc"}]},
        ],
    )
    def test_rejected(self, document):
        with pytest.raises(ValueError):
            parse_billing_config(document)

    def test_unknown_terms_at_lookup(self):
        with pytest.raises(ValueError):
            get_active_config().term_days("barter")

    def test_new_terms_can_be_added(self):
        config = parse_billing_config({
            "payment_terms": {"credit_45": 45},
            "default_payment_terms": "credit_45",
        })

        assert config.term_days(None) == 45
        assert config.term_days("credit_7") == 7


class TestChecksum:
    def test_deterministic_and_order_independent(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})

    def test_changes_with_content(self):
        assert compute_checksum({"version": 1}) != compute_checksum({"version": 2})
