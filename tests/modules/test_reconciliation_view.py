"""
Tests for the reconciliation read model.

Covers:
- Per-counterparty outstanding over non-cancelled invoices
- Monthly summary with carried-over arrears (the lump payment figure)
- Supplier outstanding with the unpaid collections list
- Zeros for unknown counterparties, overpayment flagging
- Unapplied credit spent on the next invoice
- Invoices spanning a month end split at the boundary
"""

from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_kernel.exceptions import OverpaymentRejectedError
from billing_modules.invoices.models import InvoiceStatus
from billing_modules.payments.models import PaymentRequest, PaymentType


@pytest.fixture
def borewell(counterparty_service, ctx):
    """Supplier at 5000 per 5000 L tanker, i.e. 1 per liter."""
    return counterparty_service.register_supplier(
        ctx, "Jadhav Wells", nominal_rate=Decimal("5000"), rate_basis="per_tanker",
    )


@pytest.fixture
def load(transaction_service, ctx, borewell, vehicle):
    def _load(tankers, day):
        return transaction_service.log_collection(
            ctx,
            borewell.id,
            vehicle.id,
            tanker_count=tankers,
            occurred_at=datetime(day.year, day.month, day.day, 8, tzinfo=UTC),
        )

    return _load


@pytest.fixture
def june_arrears(invoice_generator, payment_ledger, ctx, borewell, load):
    """June billed 10000, paid 8000: 2000 carried into July."""
    load(2, date(2026, 6, 12))
    june = invoice_generator.generate(
        ctx, "supplier", borewell.id, date(2026, 6, 1), date(2026, 6, 30)
    )
    payment_ledger.record_payment(
        ctx,
        PaymentRequest(
            payment_type=PaymentType.PURCHASE,
            related_to="supplier",
            related_id=borewell.id,
            invoice_id=june.id,
            amount=Decimal("8000.00"),
        ),
    )
    return june


def lump(ledger, ctx, supplier, amount):
    return ledger.record_payment(
        ctx,
        PaymentRequest(
            payment_type=PaymentType.PURCHASE,
            related_to="supplier",
            related_id=supplier.id,
            amount=Decimal(amount),
            payment_method="bank_transfer",
        ),
    )


class TestMonthlySummary:
    def test_arrears_plus_current_month(self, reconciliation_view, ctx, borewell, load, june_arrears):
        load(1, date(2026, 7, 3))
        load(2, date(2026, 7, 21))

        summary = reconciliation_view.monthly_summary(ctx, borewell.id, "2026-07")

        assert summary.month == "2026-07"
        assert summary.transaction_count == 2
        assert summary.quantity_liters == Decimal("15000.00")
        assert summary.amount == Decimal("15000.00")
        assert summary.outstanding == Decimal("17000.00")
        assert summary.previous_outstanding == Decimal("2000.00")
        assert summary.payment_due == Decimal("17000.00")

    def test_one_payment_clears_both_invoices(
        self, reconciliation_view, invoice_generator, payment_ledger, ctx, borewell, load, june_arrears
    ):
        load(3, date(2026, 7, 9))
        july = invoice_generator.generate(
            ctx, "supplier", borewell.id, date(2026, 7, 1), date(2026, 7, 31)
        )
        due = reconciliation_view.monthly_summary(ctx, borewell.id, "2026-07").payment_due
        assert due == Decimal("17000.00")

        payment = lump(payment_ledger, ctx, borewell, due)

        assert payment.unapplied_amount == Decimal("0")
        assert invoice_generator.get(ctx, june_arrears.id).status is InvoiceStatus.PAID
        assert invoice_generator.get(ctx, july.id).status is InvoiceStatus.PAID
        after = reconciliation_view.monthly_summary(ctx, borewell.id, "2026-07")
        assert after.outstanding == Decimal("0")
        assert after.previous_outstanding == Decimal("0")
        assert reconciliation_view.outstanding_by_counterparty(ctx, borewell.id) == Decimal("0")

    def test_payment_before_invoicing_is_credit_against_unbilled_work(
        self, reconciliation_view, payment_ledger, ctx, borewell, load, june_arrears
    ):
        load(3, date(2026, 7, 9))

        payment = lump(payment_ledger, ctx, borewell, "17000.00")

        assert payment.unapplied_amount == Decimal("15000.00")
        summary = reconciliation_view.monthly_summary(ctx, borewell.id, "2026-07")
        assert summary.outstanding == Decimal("0")
        assert summary.previous_outstanding == Decimal("0")
        balance = reconciliation_view.supplier_outstanding(ctx, borewell.id)
        assert balance.net_balance == Decimal("0")
        assert balance.has_overpayment is False

    def test_credit_settles_the_next_invoice(
        self, reconciliation_view, invoice_generator, payment_ledger, ctx, borewell, load,
        captured_logs,
    ):
        load(3, date(2026, 7, 9))
        prepaid = lump(payment_ledger, ctx, borewell, "15000.00")
        assert prepaid.unapplied_amount == Decimal("15000.00")

        july = invoice_generator.generate(
            ctx, "supplier", borewell.id, date(2026, 7, 1), date(2026, 7, 31)
        )

        assert july.status is InvoiceStatus.PAID
        assert july.amount_paid == Decimal("15000.00")
        assert july.outstanding == Decimal("0")
        assert payment_ledger.get(ctx, prepaid.id).unapplied_amount == Decimal("0")
        balance = reconciliation_view.supplier_outstanding(ctx, borewell.id)
        assert balance.unapplied_credit == Decimal("0")
        assert balance.net_balance == Decimal("0")
        assert any(r["message"] == "account_credit_applied" for r in captured_logs())
        with pytest.raises(OverpaymentRejectedError):
            payment_ledger.record_payment(
                ctx,
                PaymentRequest(
                    payment_type=PaymentType.PURCHASE,
                    related_to="supplier",
                    related_id=borewell.id,
                    invoice_id=july.id,
                    amount=Decimal("15000.00"),
                ),
            )

    def test_partial_credit_leaves_the_rest_outstanding(
        self, reconciliation_view, invoice_generator, payment_ledger, ctx, borewell, load
    ):
        load(3, date(2026, 7, 9))
        lump(payment_ledger, ctx, borewell, "4000.00")

        july = invoice_generator.generate(
            ctx, "supplier", borewell.id, date(2026, 7, 1), date(2026, 7, 31)
        )

        assert july.status is InvoiceStatus.DRAFT
        assert july.outstanding == Decimal("11000.00")
        balance = reconciliation_view.supplier_outstanding(ctx, borewell.id)
        assert balance.unapplied_credit == Decimal("0")
        assert balance.net_balance == Decimal("11000.00")

    def test_invoice_spanning_month_end_counts_only_earlier_lines(
        self, reconciliation_view, invoice_generator, payment_ledger, ctx, borewell, load
    ):
        load(1, date(2026, 7, 20))
        load(1, date(2026, 8, 10))
        invoice = invoice_generator.generate(
            ctx, "supplier", borewell.id, date(2026, 7, 15), date(2026, 8, 14)
        )
        assert invoice.total == Decimal("10000.00")

        summary = reconciliation_view.monthly_summary(ctx, borewell.id, "2026-07")

        assert summary.amount == Decimal("5000.00")
        assert summary.outstanding == Decimal("5000.00")
        assert summary.previous_outstanding == Decimal("0")
        assert summary.payment_due == Decimal("5000.00")

        payment_ledger.record_payment(
            ctx,
            PaymentRequest(
                payment_type=PaymentType.PURCHASE,
                related_to="supplier",
                related_id=borewell.id,
                invoice_id=invoice.id,
                amount=Decimal("2000.00"),
            ),
        )

        # Payments settle the July line first.
        assert reconciliation_view.monthly_summary(
            ctx, borewell.id, "2026-07"
        ).outstanding == Decimal("3000.00")
        assert reconciliation_view.monthly_summary(
            ctx, borewell.id, "2026-08"
        ).outstanding == Decimal("8000.00")

    def test_later_months_do_not_leak_into_earlier_summary(
        self, reconciliation_view, ctx, borewell, load
    ):
        load(1, date(2026, 7, 30))
        load(1, date(2026, 8, 1))

        summary = reconciliation_view.monthly_summary(ctx, borewell.id, "2026-07")

        assert summary.amount == Decimal("5000.00")
        assert summary.outstanding == Decimal("5000.00")
        assert summary.previous_outstanding == Decimal("0")

    def test_month_accepts_a_date(self, reconciliation_view, ctx, borewell, load):
        load(1, date(2026, 7, 15))

        summary = reconciliation_view.monthly_summary(ctx, borewell.id, date(2026, 7, 15))

        assert summary.month == "2026-07"
        assert summary.amount == Decimal("5000.00")

    @pytest.mark.parametrize("month", ["2026-13", "July", "2026/07", ""])
    def test_bad_month(self, reconciliation_view, ctx, borewell, month):
        with pytest.raises(ValueError):
            reconciliation_view.monthly_summary(ctx, borewell.id, month)

    def test_cancelled_work_is_ignored(self, reconciliation_view, transaction_service, ctx, borewell, load):
        load(1, date(2026, 7, 4))
        dropped = load(2, date(2026, 7, 5))
        transaction_service.cancel(ctx, dropped.id, reason="pump failure")

        summary = reconciliation_view.monthly_summary(ctx, borewell.id, "2026-07")

        assert summary.transaction_count == 1
        assert summary.payment_due == Decimal("5000.00")


class TestSupplierOutstanding:
    def test_balance_and_unpaid_collections(
        self, reconciliation_view, ctx, borewell, load, june_arrears
    ):
        unbilled = load(1, date(2026, 7, 8))

        balance = reconciliation_view.supplier_outstanding(ctx, borewell.id)

        assert balance.counterparty_type == "supplier"
        assert balance.invoiced_total == Decimal("10000.00")
        assert balance.paid_total == Decimal("8000.00")
        assert balance.outstanding == Decimal("2000.00")
        assert balance.unbilled_amount == Decimal("5000.00")
        assert balance.net_balance == Decimal("7000.00")
        assert balance.open_invoice_count == 1
        # Never sent, so not overdue.
        assert balance.overdue_amount == Decimal("0")
        invoice_by_txn = {t.transaction_id: t.invoice_number for t in balance.unpaid_transactions}
        assert invoice_by_txn[unbilled.id] is None
        assert june_arrears.invoice_number in invoice_by_txn.values()

    def test_paid_invoices_drop_out_of_unpaid_list(
        self, reconciliation_view, payment_ledger, ctx, borewell, june_arrears
    ):
        lump(payment_ledger, ctx, borewell, "2000.00")

        balance = reconciliation_view.supplier_outstanding(ctx, borewell.id)

        assert balance.outstanding == Decimal("0")
        assert balance.unpaid_transactions == ()

    def test_cancelled_invoice_excluded(
        self, reconciliation_view, invoice_generator, ctx, borewell, load
    ):
        load(1, date(2026, 7, 2))
        invoice = invoice_generator.generate(
            ctx, "supplier", borewell.id, date(2026, 7, 1), date(2026, 7, 31)
        )
        invoice_generator.cancel(ctx, invoice.id)

        balance = reconciliation_view.supplier_outstanding(ctx, borewell.id)

        assert balance.invoiced_total == Decimal("0")
        assert balance.outstanding == Decimal("0")
        # The released collection is unbilled again.
        assert balance.unbilled_amount == Decimal("5000.00")

    def test_unapplied_credit_flags_overpayment(
        self, reconciliation_view, payment_ledger, ctx, borewell, captured_logs
    ):
        lump(payment_ledger, ctx, borewell, "750.00")

        balance = reconciliation_view.supplier_outstanding(ctx, borewell.id)

        assert balance.unapplied_credit == Decimal("750.00")
        assert balance.net_balance == Decimal("-750.00")
        assert balance.has_overpayment is True
        assert any(
            r["message"] == "counterparty_overpayment_detected" for r in captured_logs()
        )


class TestOverdue:
    def test_sent_past_due_invoice_counts_as_overdue(
        self, reconciliation_view, invoice_generator, ctx, borewell, june_arrears
    ):
        invoice_generator.send(ctx, june_arrears.id)

        balance = reconciliation_view.supplier_outstanding(ctx, borewell.id)

        assert balance.overdue_amount == Decimal("2000.00")


class TestMissingData:
    def test_unknown_counterparty_reads_as_empty(self, reconciliation_view, ctx):
        unknown = uuid4()

        assert reconciliation_view.outstanding_by_counterparty(ctx, unknown) == Decimal("0")
        summary = reconciliation_view.monthly_summary(ctx, unknown, "2026-07")
        assert (summary.amount, summary.outstanding, summary.payment_due) == (0, 0, 0)
        balance = reconciliation_view.supplier_outstanding(ctx, unknown)
        assert balance.net_balance == Decimal("0")
        assert balance.unpaid_transactions == ()

    def test_other_vendor_sees_nothing(self, reconciliation_view, ctx, other_ctx, borewell, june_arrears):
        assert reconciliation_view.outstanding_by_counterparty(ctx, borewell.id) == Decimal("2000.00")
        assert reconciliation_view.outstanding_by_counterparty(other_ctx, borewell.id) == Decimal("0")

    def test_view_never_writes(self, reconciliation_view, session, ctx, borewell, load):
        load(1, date(2026, 7, 2))
        reconciliation_view.supplier_outstanding(ctx, borewell.id)

        assert not session.new
        assert not session.dirty
