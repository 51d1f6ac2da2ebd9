"""
Tests de la vista de conciliación
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from decimal import Decimal
from types import SimpleNamespace

from models.core import BookingPaymentStatus, InvoiceStatus
from services.billing_service import BillingService
from services.invoice_service import InvoiceService
from services.payment_service import PaymentService
from services.reconciliation_service import (
    ReconciliationService,
    derive_payment_status,
    derive_revenue_status,
    resolve_billable_amount,
)
from utils.errors import NotFound


def _codes(status):
    return {i["code"] for i in status["inconsistencies"]}


class TestPolicies:

    @pytest.mark.parametrize("paid,billable,expected", [
        ("0", "1000", BookingPaymentStatus.PENDING),
        ("400", "1000", BookingPaymentStatus.PARTIALLY_PAID),
        ("1000", "1000", BookingPaymentStatus.PAID),
        ("1200", "1000", BookingPaymentStatus.PAID),
        ("0", "0", BookingPaymentStatus.PENDING),
        ("50", "0", BookingPaymentStatus.PAID),
    ])
    def test_derive_payment_status(self, paid, billable, expected):
        assert derive_payment_status(Decimal(paid), Decimal(billable)) == expected

    def test_derive_revenue_status(self):
        assert derive_revenue_status(Decimal("0"), BookingPaymentStatus.PENDING) == "error"
        assert derive_revenue_status(Decimal("100"), BookingPaymentStatus.PAID) == "up_to_date"
        assert derive_revenue_status(Decimal("100"), BookingPaymentStatus.PARTIALLY_PAID) == "pending"

    def test_invoices_take_precedence_over_items(self):
        invoices = [
            SimpleNamespace(status=InvoiceStatus.ISSUED, total_amount=Decimal("1000")),
            SimpleNamespace(status=InvoiceStatus.CANCELLED, total_amount=Decimal("9999")),
        ]
        items = [
            SimpleNamespace(is_deleted=False, final_amount=Decimal("1200")),
        ]
        assert resolve_billable_amount(invoices, items) == (Decimal("1000.00"), "invoice")
        assert resolve_billable_amount(invoices[1:], items) == (Decimal("1200.00"), "bill_items")

    def test_deleted_items_are_ignored(self):
        items = [
            SimpleNamespace(is_deleted=False, final_amount=Decimal("100")),
            SimpleNamespace(is_deleted=True, final_amount=Decimal("500")),
        ]
        assert resolve_billable_amount([], items) == (Decimal("100.00"), "bill_items")


class TestFinancialStatus:

    def test_unknown_booking(self, db):
        with pytest.raises(NotFound):
            ReconciliationService.get_booking_financial_status(db, 12345)

    def test_nothing_billed_is_error(self, db, no_tax, booking_factory):
        booking = booking_factory()
        status = ReconciliationService.get_booking_financial_status(db, booking.id)

        assert status["billable_amount"] == Decimal("0.00")
        assert status["payment_status"] == BookingPaymentStatus.PENDING
        assert status["revenue_status"]["status"] == "error"
        assert "NOTHING_BILLED" in _codes(status)

    def test_invoice_amount_wins_after_items_change(self, db, no_tax, booking_factory):
        booking = booking_factory(total=1000)
        InvoiceService.generate_invoice(db, booking.id, "recepcion")
        BillingService.add_item(db, booking.id, "Room service", Decimal("200"), allow_post_invoice=True)
        PaymentService.record_payment(db, booking.id, Decimal("1000"), "cash", "recepcion")

        status = ReconciliationService.get_booking_financial_status(db, booking.id)

        assert status["billable_amount"] == Decimal("1000.00")
        assert status["billable_source"] == "invoice"
        assert status["payment_status"] == BookingPaymentStatus.PAID
        assert status["remaining_amount"] == Decimal("0.00")
        assert status["revenue_status"]["status"] == "up_to_date"
        assert status["has_invoices"] is True
        assert status["original_total_amount"] == Decimal("1200.00")
        assert "BILL_CHANGED_AFTER_INVOICE" in _codes(status)

    def test_partial_payment(self, db, no_tax, booking_factory):
        booking = booking_factory(total=1000)
        PaymentService.record_payment(db, booking.id, Decimal("250"), "cash", "recepcion")
        PaymentService.record_payment(db, booking.id, Decimal("250"), "card", "recepcion")

        status = ReconciliationService.get_booking_financial_status(db, booking.id)

        assert status["total_paid"] == Decimal("500.00")
        assert status["remaining_amount"] == Decimal("500.00")
        assert status["payment_status"] == BookingPaymentStatus.PARTIALLY_PAID
        assert status["revenue_status"]["status"] == "pending"
        assert status["revenue_status"]["total_revenue"] == Decimal("500.00")
        assert len(status["recent_payments"]) == 2
        assert status["inconsistencies"] == []

    def test_overpayment_flagged(self, db, no_tax, booking_factory):
        booking = booking_factory(total=100)
        PaymentService.record_payment(db, booking.id, Decimal("150"), "cash", "recepcion")

        status = ReconciliationService.get_booking_financial_status(db, booking.id)
        assert status["payment_status"] == BookingPaymentStatus.PAID
        assert status["remaining_amount"] == Decimal("0.00")
        assert "OVERPAYMENT" in _codes(status)

    def test_cached_drift_and_stale_status_flagged(self, db, no_tax, booking_factory):
        booking = booking_factory(total=300)
        booking.total_amount = Decimal("999")
        booking.payment_status = BookingPaymentStatus.PAID
        db.commit()

        status = ReconciliationService.get_booking_financial_status(db, booking.id)
        assert {"CACHED_TOTAL_DRIFT", "STALE_PAYMENT_STATUS"} <= _codes(status)
        assert status["payment_status"] == BookingPaymentStatus.PENDING

    def test_overdue_cache_is_not_stale(self, db, no_tax, booking_factory):
        booking = booking_factory(total=300)
        booking.payment_status = BookingPaymentStatus.OVERDUE
        db.commit()

        status = ReconciliationService.get_booking_financial_status(db, booking.id)
        assert "STALE_PAYMENT_STATUS" not in _codes(status)

    def test_reversals_reduce_total_paid(self, db, no_tax, booking_factory):
        booking = booking_factory(total=1000)
        PaymentService.record_payment(db, booking.id, Decimal("1000"), "cash", "recepcion")
        PaymentService.reverse_payment(db, booking.id, Decimal("400"), "admin")

        assert ReconciliationService.total_paid(db, booking.id) == Decimal("600.00")
        status = ReconciliationService.get_booking_financial_status(db, booking.id)
        assert status["payment_status"] == BookingPaymentStatus.PARTIALLY_PAID
        assert all(not p.is_reversal for p in status["recent_payments"])

    def test_item_billable_without_tax_is_flagged(self, db, gst_18, booking_factory):
        booking = booking_factory(total=1000)
        PaymentService.record_payment(db, booking.id, Decimal("1000"), "cash", "recepcion")

        status = ReconciliationService.get_booking_financial_status(db, booking.id)
        assert status["billable_source"] == "bill_items"
        assert status["payment_status"] == BookingPaymentStatus.PAID
        assert "BILLABLE_EXCLUDES_TAX" in _codes(status)
        assert ReconciliationService.amount_due(db, booking) == Decimal("1180.00")

    def test_invoiced_booking_is_not_flagged_for_tax(self, db, gst_18, booking_factory):
        booking = booking_factory(total=1000)
        InvoiceService.generate_invoice(db, booking.id, "admin")

        status = ReconciliationService.get_booking_financial_status(db, booking.id)
        assert status["billable_amount"] == Decimal("1180.00")
        assert "BILLABLE_EXCLUDES_TAX" not in _codes(status)
