"""
Tests de composición de la cuenta (BillingService)
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from datetime import date
from decimal import Decimal

from models.core import AuditEvent, BillItem, BillItemType, BookingPaymentStatus, BookingStatus, Service, ServiceCategory
from services.billing_service import BillingService, compute_final_amount
from services.invoice_service import InvoiceService
from services.payment_service import PaymentService
from utils.errors import InvalidState, NotFound, ValidationError


def test_compute_final_amount_never_negative():
    assert compute_final_amount(2, "50", "10") == Decimal("90.00")
    assert compute_final_amount(1, "50", "80") == Decimal("0.00")


def test_add_item_updates_cached_total(db, gst_18, booking_factory):
    booking = booking_factory()
    item = BillingService.add_item(db, booking.id, "Cena", Decimal("250"), quantity=2, discount=Decimal("50"))

    assert item.final_amount == Decimal("450.00")
    db.refresh(booking)
    assert booking.base_amount == Decimal("450.00")
    assert booking.tax_amount == Decimal("81.00")
    assert booking.total_amount == Decimal("531.00")


def test_calculate_bill_applies_booking_discount_before_tax(db, gst_18, booking_factory):
    booking = booking_factory(total=1000, discount=Decimal("100"))
    calculation = BillingService.calculate_bill(db, booking.id)

    assert calculation.subtotal == Decimal("1000.00")
    assert calculation.discount == Decimal("100.00")
    assert calculation.tax_breakdown.taxable_base == Decimal("900.00")
    assert calculation.grand_total == Decimal("1062.00")


def test_recalculate_is_idempotent(db, gst_18, booking_factory):
    booking = booking_factory(total=1000)
    first = BillingService.recalculate_booking_total(db, booking.id)
    second = BillingService.recalculate_booking_total(db, booking.id)

    assert first.grand_total == second.grand_total == Decimal("1180.00")
    db.refresh(booking)
    assert booking.total_amount == Decimal("1180.00")


def test_empty_bill_is_zero(db, gst_18, booking_factory):
    booking = booking_factory()
    calculation = BillingService.calculate_bill(db, booking.id)
    assert calculation.subtotal == Decimal("0.00")
    assert calculation.grand_total == Decimal("0.00")
    assert calculation.tax_breakdown.lines == ()


def test_removed_item_is_excluded(db, no_tax, booking_factory):
    booking = booking_factory(total=300)
    extra = BillingService.add_item(db, booking.id, "Spa", Decimal("120"))
    BillingService.remove_item(db, extra.id, removed_by="test")

    row = db.query(BillItem).filter(BillItem.id == extra.id).first()
    assert row.is_deleted is True
    assert row.deleted_at is not None
    assert [i.description for i in BillingService.list_items(db, booking.id)] == ["Alojamiento"]
    db.refresh(booking)
    assert booking.total_amount == Decimal("300.00")

    with pytest.raises(NotFound):
        BillingService.remove_item(db, extra.id)


def test_update_item_recalculates(db, no_tax, booking_factory):
    booking = booking_factory()
    item = BillingService.add_item(db, booking.id, "Minibar", Decimal("10"), quantity=3)
    BillingService.update_item(db, item.id, {"quantity": 5, "discount": Decimal("5")})

    db.refresh(item)
    assert item.final_amount == Decimal("45.00")
    db.refresh(booking)
    assert booking.total_amount == Decimal("45.00")


def test_update_item_rejects_unknown_fields(db, no_tax, booking_factory):
    booking = booking_factory(total=100)
    item = BillingService.list_items(db, booking.id)[0]
    with pytest.raises(ValidationError):
        BillingService.update_item(db, item.id, {"booking_id": 999})


def test_invalid_quantity_rejected(db, no_tax, booking_factory):
    booking = booking_factory()
    with pytest.raises(ValidationError):
        BillingService.add_item(db, booking.id, "Nada", Decimal("10"), quantity=0)


def test_service_item_takes_catalog_price(db, no_tax, booking_factory):
    service = Service(name="Lavandería", category=ServiceCategory.LAUNDRY, price=Decimal("35.50"))
    db.add(service)
    db.commit()
    booking = booking_factory()

    item = BillingService.add_item(db, booking.id, None, None, quantity=2, service_id=service.id)
    assert item.description == "Lavandería"
    assert item.final_amount == Decimal("71.00")


def test_room_charge_uses_nights(db, no_tax, booking_factory):
    booking = booking_factory(check_in=date(2025, 3, 1), check_out=date(2025, 3, 4))
    item = BillingService.add_room_charge(db, booking.id, Decimal("100"))

    assert item.item_type == BillItemType.ROOM
    assert item.quantity == 3
    assert item.final_amount == Decimal("300.00")
    assert "3 nights" in item.description


def test_cancelled_booking_is_locked(db, no_tax, booking_factory):
    booking = booking_factory(status=BookingStatus.CANCELLED)
    with pytest.raises(InvalidState):
        BillingService.add_item(db, booking.id, "Cena", Decimal("10"), allow_post_invoice=True)


def test_invoiced_booking_requires_override(db, no_tax, booking_factory):
    booking = booking_factory(total=500)
    InvoiceService.generate_invoice(db, booking.id, "test")

    with pytest.raises(InvalidState):
        BillingService.add_item(db, booking.id, "Late checkout", Decimal("50"))

    BillingService.add_item(db, booking.id, "Late checkout", Decimal("50"), added_by="gerente", allow_post_invoice=True)
    audit = db.query(AuditEvent).filter(AuditEvent.action == "POST_INVOICE_EDIT").all()
    assert len(audit) == 1
    assert audit[0].entity_id == booking.id
    assert audit[0].usuario == "gerente"


def test_item_changes_refresh_cached_payment_status(db, no_tax, booking_factory):
    booking = booking_factory(total=300)
    PaymentService.record_payment(db, booking.id, Decimal("300"), "cash", "recepcion")
    db.refresh(booking)
    assert booking.payment_status == BookingPaymentStatus.PAID

    extra = BillingService.add_item(db, booking.id, "Spa", Decimal("50"))
    db.refresh(booking)
    assert booking.payment_status == BookingPaymentStatus.PARTIALLY_PAID

    BillingService.update_item(db, extra.id, {"unit_price": Decimal("0")})
    db.refresh(booking)
    assert booking.payment_status == BookingPaymentStatus.PAID

    BillingService.update_item(db, extra.id, {"unit_price": Decimal("20")})
    BillingService.remove_item(db, extra.id)
    db.refresh(booking)
    assert booking.payment_status == BookingPaymentStatus.PAID
