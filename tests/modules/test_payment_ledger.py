"""
Tests for the payment ledger.

Covers:
- Partial and full payment of an invoice (status driven by outstanding)
- Server-side overpayment rejection
- Payments with no invoice: FIFO over open invoices, unapplied credit
- Refunds reopening paid invoices
- Request validation
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_kernel.exceptions import (
    ConcurrentModificationError,
    CounterpartyNotFoundError,
    InvalidPaymentError,
    OverpaymentRejectedError,
    PaymentNotFoundError,
)
from billing_modules.invoices.models import InvoiceStatus
from billing_modules.payments.models import PaymentMethod, PaymentRequest, PaymentStatus, PaymentType
from billing_modules.payments.service import PaymentLedger


def request_for(invoice, amount, **kwargs):
    return PaymentRequest(
        payment_type=kwargs.pop("payment_type", PaymentType.DELIVERY),
        related_to=invoice.related_to,
        related_id=invoice.related_id,
        amount=Decimal(amount),
        invoice_id=invoice.id,
        **kwargs,
    )


@pytest.fixture
def sent_invoice(invoice_generator, ctx, july_invoice):
    return invoice_generator.send(ctx, july_invoice.id)


class TestInvoicePayments:
    def test_partial_then_full_payment(self, payment_ledger, invoice_generator, ctx, sent_invoice):
        payment_ledger.record_payment(ctx, request_for(sent_invoice, "6000.00"))

        assert payment_ledger.outstanding(ctx, sent_invoice.id) == Decimal("4000.00")
        assert invoice_generator.get(ctx, sent_invoice.id).status is InvoiceStatus.SENT

        payment_ledger.record_payment(ctx, request_for(sent_invoice, "4000.00"))

        assert payment_ledger.outstanding(ctx, sent_invoice.id) == Decimal("0.00")
        paid = invoice_generator.get(ctx, sent_invoice.id)
        assert paid.status is InvoiceStatus.PAID
        assert paid.amount_paid == Decimal("10000.00")

    @pytest.mark.parametrize("amount", ["0.01", "1.00", "10000.00"])
    def test_any_payment_after_settlement_is_rejected(
        self, payment_ledger, ctx, sent_invoice, amount
    ):
        payment_ledger.record_payment(ctx, request_for(sent_invoice, "6000.00"))
        payment_ledger.record_payment(ctx, request_for(sent_invoice, "4000.00"))

        with pytest.raises(OverpaymentRejectedError) as exc_info:
            payment_ledger.record_payment(ctx, request_for(sent_invoice, amount))

        assert exc_info.value.outstanding == Decimal("0.00")
        assert len(payment_ledger.list_payments(ctx, invoice_id=sent_invoice.id)) == 2

    def test_overpayment_rejected_before_anything_is_written(
        self, payment_ledger, ctx, sent_invoice, captured_logs
    ):
        with pytest.raises(OverpaymentRejectedError) as exc_info:
            payment_ledger.record_payment(ctx, request_for(sent_invoice, "10000.01"))

        assert exc_info.value.attempted == Decimal("10000.01")
        assert "10000.00" in str(exc_info.value)
        assert payment_ledger.list_payments(ctx) == []
        assert any(r["message"] == "overpayment_rejected" for r in captured_logs())

    def test_payment_on_draft_invoice(self, payment_ledger, invoice_generator, ctx, july_invoice):
        payment_ledger.record_payment(ctx, request_for(july_invoice, "10000.00"))

        invoice = invoice_generator.get(ctx, july_invoice.id)
        assert invoice.status is InvoiceStatus.PAID
        assert invoice.sent_at is None

    def test_payment_is_allocated_to_its_invoice(self, payment_ledger, ctx, sent_invoice, deterministic_clock):
        payment = payment_ledger.record_payment(
            ctx,
            request_for(
                sent_invoice, "2500.50",
                payment_method=PaymentMethod.UPI, reference_number="UPI-88812",
            ),
        )

        assert payment.status is PaymentStatus.COMPLETED
        assert payment.payment_date == deterministic_clock.today()
        assert payment.allocated_amount == Decimal("2500.50")
        assert [a.invoice_id for a in payment.allocations] == [sent_invoice.id]
        assert payment.processed_by_id == ctx.actor_id

    def test_outstanding_identity_after_every_payment(self, payment_ledger, ctx, sent_invoice):
        paid = Decimal("0")
        for amount in ("1000.00", "2500.25", "0.75", "6499.00"):
            payment_ledger.record_payment(ctx, request_for(sent_invoice, amount))
            paid += Decimal(amount)
            assert payment_ledger.outstanding(ctx, sent_invoice.id) == sent_invoice.total - paid
        assert payment_ledger.outstanding(ctx, sent_invoice.id) == 0

    def test_invoice_balance_breakdown(self, payment_ledger, ctx, sent_invoice):
        payment_ledger.record_payment(ctx, request_for(sent_invoice, "2500.00"))

        balance = payment_ledger.invoice_balance(ctx, sent_invoice.id)

        assert balance.total.amount == Decimal("10000.00")
        assert balance.paid.amount == Decimal("2500.00")
        assert balance.outstanding.amount == Decimal("7500.00")
        assert not balance.is_overpaid
        assert not balance.is_settled

    def test_payment_bumps_invoice_version(self, payment_ledger, invoice_generator, ctx, sent_invoice):
        payment_ledger.record_payment(ctx, request_for(sent_invoice, "100.00"))

        assert invoice_generator.get(ctx, sent_invoice.id).version > sent_invoice.version

    def test_stale_expected_invoice_version(self, payment_ledger, ctx, sent_invoice):
        payment_ledger.record_payment(ctx, request_for(sent_invoice, "100.00"))

        with pytest.raises(ConcurrentModificationError):
            payment_ledger.record_payment(
                ctx,
                request_for(sent_invoice, "100.00"),
                expected_invoice_version=sent_invoice.version,
            )

    def test_invoice_of_another_counterparty(
        self, payment_ledger, counterparty_service, ctx, sent_invoice
    ):
        other = counterparty_service.register_society(ctx, "Other CHS", nominal_rate=Decimal("2"))

        with pytest.raises(InvalidPaymentError) as exc_info:
            payment_ledger.record_payment(
                ctx,
                PaymentRequest(
                    payment_type=PaymentType.DELIVERY,
                    related_to="society",
                    related_id=other.id,
                    amount=Decimal("100"),
                    invoice_id=sent_invoice.id,
                ),
            )
        assert exc_info.value.field == "invoice_id"

    def test_cancelled_invoice(self, payment_ledger, invoice_generator, ctx, july_invoice):
        invoice_generator.cancel(ctx, july_invoice.id)

        with pytest.raises(InvalidPaymentError):
            payment_ledger.record_payment(ctx, request_for(july_invoice, "100.00"))

    def test_other_vendor(self, payment_ledger, other_ctx, sent_invoice):
        with pytest.raises(CounterpartyNotFoundError):
            payment_ledger.record_payment(other_ctx, request_for(sent_invoice, "100.00"))


class TestAccountPayments:
    def test_supplier_lump_payment_clears_arrears_and_current_month(
        self, payment_ledger, invoice_generator, ctx, supplier, collect
    ):
        collect(1, date(2026, 6, 10))
        june = invoice_generator.generate(ctx, "supplier", supplier.id, date(2026, 6, 1), date(2026, 6, 30))
        payment_ledger.record_payment(ctx, request_for(june, "6000.00", payment_type=PaymentType.PURCHASE))
        collect(1, date(2026, 7, 4))
        collect(1, date(2026, 7, 18))
        july = invoice_generator.generate(ctx, "supplier", supplier.id, date(2026, 7, 1), date(2026, 7, 31))

        payment = payment_ledger.record_payment(
            ctx,
            PaymentRequest(
                payment_type=PaymentType.PURCHASE,
                related_to="supplier",
                related_id=supplier.id,
                amount=Decimal("18000.00"),
            ),
        )

        assert [(a.invoice_id, a.amount) for a in payment.allocations] == [
            (june.id, Decimal("2000.00")),
            (july.id, Decimal("16000.00")),
        ]
        assert payment.unapplied_amount == Decimal("0")
        assert invoice_generator.get(ctx, june.id).status is InvoiceStatus.PAID
        assert invoice_generator.get(ctx, july.id).status is InvoiceStatus.PAID

    def test_remainder_becomes_unapplied_credit(
        self, payment_ledger, ctx, society, july_invoice, captured_logs
    ):
        payment = payment_ledger.record_payment(
            ctx,
            PaymentRequest(
                payment_type=PaymentType.DELIVERY,
                related_to="society",
                related_id=society.id,
                amount=Decimal("12000.00"),
            ),
        )

        assert payment.allocated_amount == Decimal("10000.00")
        assert payment.unapplied_amount == Decimal("2000.00")
        assert any(r["message"] == "payment_unapplied_credit" for r in captured_logs())

    def test_prepayment_with_no_open_invoices(self, payment_ledger, ctx, society):
        payment = payment_ledger.record_payment(
            ctx,
            PaymentRequest(
                payment_type=PaymentType.DELIVERY,
                related_to="society",
                related_id=society.id,
                amount=Decimal("500.00"),
            ),
        )

        assert payment.allocations == ()
        assert payment.unapplied_amount == Decimal("500.00")

    def test_driver_payment_is_a_plain_ledger_entry(self, payment_ledger, ctx, driver):
        payment = payment_ledger.record_payment(
            ctx,
            PaymentRequest(
                payment_type=PaymentType.OTHER,
                related_to="driver",
                related_id=driver.id,
                amount=Decimal("3000.00"),
                payment_method="cash",
                notes="advance",
            ),
        )

        assert payment.allocations == ()
        assert payment.unapplied_amount == Decimal("0")
        assert payment.related_to == "driver"


class TestRefunds:
    def test_refund_reopens_sent_invoice(
        self, payment_ledger, invoice_generator, ctx, sent_invoice, deterministic_clock
    ):
        payment = payment_ledger.record_payment(ctx, request_for(sent_invoice, "10000.00"))

        refunded = payment_ledger.refund_payment(ctx, payment.id, reason="cheque bounced")

        assert refunded.status is PaymentStatus.REFUNDED
        assert refunded.refund_reason == "cheque bounced"
        invoice = invoice_generator.get(ctx, sent_invoice.id)
        assert invoice.status is InvoiceStatus.SENT
        assert invoice.outstanding == Decimal("10000.00")
        assert invoice.paid_at is None

    def test_refund_reopens_unsent_invoice_to_draft(
        self, payment_ledger, invoice_generator, ctx, july_invoice
    ):
        payment = payment_ledger.record_payment(ctx, request_for(july_invoice, "10000.00"))

        payment_ledger.refund_payment(ctx, payment.id)

        assert invoice_generator.get(ctx, july_invoice.id).status is InvoiceStatus.DRAFT

    def test_refunding_spent_credit_reopens_the_invoice(
        self, payment_ledger, invoice_generator, ctx, society, deliver
    ):
        deliver(5000, date(2026, 7, 5))
        prepaid = payment_ledger.record_payment(
            ctx,
            PaymentRequest(
                payment_type=PaymentType.DELIVERY,
                related_to="society",
                related_id=society.id,
                amount=Decimal("10000.00"),
            ),
        )
        july = invoice_generator.generate(
            ctx, "society", society.id, date(2026, 7, 1), date(2026, 7, 31)
        )
        assert july.status is InvoiceStatus.PAID

        payment_ledger.refund_payment(ctx, prepaid.id)

        reopened = invoice_generator.get(ctx, july.id)
        assert reopened.status is InvoiceStatus.DRAFT
        assert reopened.outstanding == Decimal("10000.00")
        assert reopened.version > july.version

    def test_refund_twice(self, payment_ledger, ctx, sent_invoice):
        payment = payment_ledger.record_payment(ctx, request_for(sent_invoice, "10.00"))
        payment_ledger.refund_payment(ctx, payment.id)

        with pytest.raises(InvalidPaymentError):
            payment_ledger.refund_payment(ctx, payment.id)

    def test_refund_unknown(self, payment_ledger, ctx):
        with pytest.raises(PaymentNotFoundError):
            payment_ledger.refund_payment(ctx, uuid4())


class TestRequestValidation:
    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"amount": Decimal("0")}, "amount"),
            ({"amount": Decimal("-5")}, "amount"),
            ({"amount": 10.5}, "amount"),
            ({"related_to": "vendor"}, "related_to"),
            ({"payment_type": "barter"}, "type"),
            ({"payment_method": "gold"}, "payment_method"),
            ({"invoice_id": uuid4(), "expense_id": uuid4()}, "expense_id"),
            ({"expense_id": uuid4()}, "related_to"),
        ],
    )
    def test_rejected(self, overrides, field):
        kwargs = dict(
            payment_type="delivery",
            related_to="society",
            related_id=uuid4(),
            amount=Decimal("100.00"),
        )
        kwargs.update(overrides)

        with pytest.raises(InvalidPaymentError) as exc_info:
            PaymentRequest(**kwargs)
        assert exc_info.value.field == field

    @staticmethod
    def _society_payment(society, amount):
        return PaymentRequest(
            payment_type=PaymentType.DELIVERY,
            related_to="society",
            related_id=society.id,
            amount=Decimal(amount),
        )

    @pytest.mark.parametrize(
        "currency, amount",
        [("INR", "10.005"), ("KWD", "10.0005"), ("JPY", "100.50")],
    )
    def test_amount_finer_than_the_currency_is_rejected(
        self, session, deterministic_clock, billing_config, ctx, society, currency, amount
    ):
        ledger = PaymentLedger(
            session, deterministic_clock, replace(billing_config, currency=currency)
        )

        with pytest.raises(InvalidPaymentError) as exc_info:
            ledger.record_payment(ctx, self._society_payment(society, amount))
        assert exc_info.value.field == "amount"
        assert currency in exc_info.value.reason

    @pytest.mark.parametrize(
        "currency, amount",
        [("INR", "10.05"), ("KWD", "10.005"), ("JPY", "100")],
    )
    def test_amount_at_the_currency_precision_is_accepted(
        self, session, deterministic_clock, billing_config, ctx, society, currency, amount
    ):
        ledger = PaymentLedger(
            session, deterministic_clock, replace(billing_config, currency=currency)
        )

        payment = ledger.record_payment(ctx, self._society_payment(society, amount))

        assert payment.currency == currency
        assert payment.unapplied_amount == Decimal(amount)

    def test_version_check_needs_invoice(self, payment_ledger, ctx, society):
        with pytest.raises(InvalidPaymentError):
            payment_ledger.record_payment(
                ctx,
                PaymentRequest(
                    payment_type="delivery",
                    related_to="society",
                    related_id=society.id,
                    amount=Decimal("1.00"),
                ),
                expected_invoice_version=1,
            )
