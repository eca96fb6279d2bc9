"""
Tests for structured logging and engine tracing.
"""

import json
import logging
import sys
from decimal import Decimal
from uuid import uuid4

from billing_engines.tracer import compute_input_fingerprint, traced_engine
from billing_kernel.exceptions import OverpaymentRejectedError
from billing_kernel.logging_config import LogContext, StructuredFormatter, get_logger


class TestStructuredFormatter:
    def test_extra_fields_and_types(self):
        invoice_id = uuid4()
        logger = get_logger("tests.formatter")
        record = logger.makeRecord(
            logger.name, logging.INFO, __file__, 1, "invoice_paid", (), None,
            extra={"invoice_id": invoice_id, "total": Decimal("10000.00")},
        )

        payload = json.loads(StructuredFormatter().format(record))

        assert payload["logger"] == "billing_kernel.tests.formatter"
        assert payload["level"] == "INFO"
        assert payload["message"] == "invoice_paid"
        assert payload["invoice_id"] == str(invoice_id)
        assert payload["total"] == "10000.00"

    def test_exception_fields(self):
        logger = get_logger("tests.formatter")
        try:
            raise OverpaymentRejectedError(
                "inv-1", "MON-202608-0001", Decimal("0.00"), Decimal("1.00"), "INR"
            )
        except OverpaymentRejectedError:
            record = logger.makeRecord(
                logger.name, logging.WARNING, __file__, 1, "rejected", (), sys.exc_info(),
            )

        payload = json.loads(StructuredFormatter().format(record))

        assert payload["exc_type"] == "OverpaymentRejectedError"
        assert payload["exc_code"] == "OVERPAYMENT_REJECTED"
        assert payload["exc_invoice_number"] == "MON-202608-0001"
        assert payload["exc_outstanding"] == "0.00"
        assert "Traceback" in payload["traceback"]


class TestLogContext:
    def test_bound_fields_appear_and_are_restored(self, captured_logs):
        logger = get_logger("tests.context")
        tenant = str(uuid4())

        with LogContext.bind(tenant_id=tenant, correlation_id="req-7"):
            logger.info("inside")
        logger.info("outside")

        inside, outside = [r for r in captured_logs() if r["logger"] == logger.name]
        assert inside["tenant_id"] == tenant
        assert inside["correlation_id"] == "req-7"
        assert "tenant_id" not in outside

    def test_nested_binds_restore_outer_value(self):
        with LogContext.bind(invoice_id="outer"):
            with LogContext.bind(invoice_id="inner"):
                assert LogContext.get_all()["invoice_id"] == "inner"
            assert LogContext.get_all()["invoice_id"] == "outer"
        assert "invoice_id" not in LogContext.get_all()

    def test_unknown_keys_ignored(self):
        with LogContext.bind(vehicle="MH12"):
            assert LogContext.get_all() == {}


class TestEngineTracer:
    def test_trace_record(self, captured_logs):
        class Doubler:
            @traced_engine("doubler", "2.1", fingerprint_fields=("amount",))
            def run(self, amount):
                return amount * 2

        assert Doubler().run(Decimal("21")) == Decimal("42")

        trace = next(r for r in captured_logs() if r["message"] == "BILLING_ENGINE_TRACE")
        assert trace["engine_name"] == "doubler"
        assert trace["engine_version"] == "2.1"
        assert len(trace["input_fingerprint"]) == 16

    def test_fingerprint_is_order_independent_for_dicts(self):
        first = compute_input_fingerprint(("terms",), {"terms": {"a": 1, "b": 2}})
        second = compute_input_fingerprint(("terms",), {"terms": {"b": 2, "a": 1}})

        assert first == second

    def test_fingerprint_sees_keyword_and_positional_alike(self, captured_logs):
        @traced_engine("echo", "1.0", fingerprint_fields=("value",))
        def echo(value):
            return value

        echo("x")
        echo(value="x")

        prints = [
            r["input_fingerprint"] for r in captured_logs() if r.get("engine_name") == "echo"
        ]
        assert len(prints) == 2
        assert prints[0] == prints[1]
