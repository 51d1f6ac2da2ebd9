"""
Tests de emisión de facturas
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import re
import pytest
from decimal import Decimal

from models.core import BookingPaymentStatus, InvoiceStatus
from services.invoice_service import InvoiceService, next_invoice_number
from services.payment_service import PaymentService
from utils.errors import InvalidState, NotFound


class TestGenerateInvoice:

    def test_number_format_and_sequence(self, db, no_tax, booking_factory):
        first = InvoiceService.generate_invoice(db, booking_factory(total=100).id, "recepcion")
        second = InvoiceService.generate_invoice(db, booking_factory(total=200).id, "recepcion")

        assert re.match(r"^INV-\d{6}-0001$", first.invoice_number)
        assert second.invoice_number == first.invoice_number[:-4] + "0002"

    def test_snapshot_of_bill(self, db, gst_18, booking_factory):
        booking = booking_factory(total=1000, discount=Decimal("100"))
        invoice = InvoiceService.generate_invoice(db, booking.id, "recepcion")

        assert invoice.status == InvoiceStatus.ISSUED
        assert invoice.subtotal == Decimal("1000.00")
        assert invoice.discount_amount == Decimal("100.00")
        assert invoice.tax_amount == Decimal("162.00")
        assert invoice.total_amount == Decimal("1062.00")
        assert invoice.tax_breakdown["taxable_base"] == "900.00"
        assert invoice.tax_breakdown["lines"][0]["amount"] == "162.00"
        assert [i.description for i in invoice.items] == ["Alojamiento"]
        assert invoice.items[0].total_price == Decimal("1000.00")

    def test_existing_invoice_is_returned(self, db, no_tax, booking_factory):
        booking = booking_factory(total=100)
        first = InvoiceService.generate_invoice(db, booking.id, "recepcion")
        again = InvoiceService.generate_invoice(db, booking.id, "otro")

        assert again.id == first.id
        assert len(InvoiceService.list_invoices(db, booking.id)) == 1

    def test_empty_bill_cannot_be_invoiced(self, db, no_tax, booking_factory):
        booking = booking_factory()
        with pytest.raises(InvalidState):
            InvoiceService.generate_invoice(db, booking.id, "recepcion")
        assert InvoiceService.list_invoices(db, booking.id) == []

    def test_unknown_booking(self, db, no_tax):
        with pytest.raises(NotFound):
            InvoiceService.generate_invoice(db, 4040, "recepcion")


class TestInvoiceStatus:

    def test_cancel_then_regenerate(self, db, no_tax, booking_factory):
        booking = booking_factory(total=100)
        first = InvoiceService.generate_invoice(db, booking.id, "recepcion")
        InvoiceService.update_status(db, first.id, "admin", status=InvoiceStatus.CANCELLED)

        second = InvoiceService.generate_invoice(db, booking.id, "recepcion")

        assert second.id != first.id
        assert second.invoice_number.endswith("0002")
        assert [i.id for i in InvoiceService.list_invoices(db, booking.id)] == [second.id, first.id]

    def test_cancelled_invoice_cannot_come_back(self, db, no_tax, booking_factory):
        invoice = InvoiceService.generate_invoice(db, booking_factory(total=100).id, "recepcion")
        InvoiceService.update_status(db, invoice.id, "admin", status=InvoiceStatus.CANCELLED)

        with pytest.raises(InvalidState):
            InvoiceService.update_status(db, invoice.id, "admin", status=InvoiceStatus.PAID)

    def test_email_flag(self, db, no_tax, booking_factory):
        invoice = InvoiceService.generate_invoice(db, booking_factory(total=100).id, "recepcion")
        updated = InvoiceService.update_status(db, invoice.id, "recepcion", email_sent=True)

        assert updated.email_sent is True
        assert updated.status == InvoiceStatus.ISSUED

    def test_invoice_refreshes_cached_payment_status(self, db, gst_18, booking_factory):
        booking = booking_factory(total=1000)
        PaymentService.record_payment(db, booking.id, Decimal("1000"), "cash", "recepcion")
        db.refresh(booking)
        assert booking.payment_status == BookingPaymentStatus.PAID

        # La factura incluye el 18%: lo pagado ya no cubre lo facturable
        invoice = InvoiceService.generate_invoice(db, booking.id, "recepcion")
        db.refresh(booking)
        assert booking.payment_status == BookingPaymentStatus.PARTIALLY_PAID

        InvoiceService.update_status(db, invoice.id, "admin", status=InvoiceStatus.CANCELLED)
        db.refresh(booking)
        assert booking.payment_status == BookingPaymentStatus.PAID

    def test_unknown_invoice(self, db):
        with pytest.raises(NotFound):
            InvoiceService.update_status(db, 77, "admin", status=InvoiceStatus.PAID)


def test_next_number_without_invoices(db, no_tax):
    assert next_invoice_number(db).endswith("-0001")
