"""
Vista de conciliación (solo lectura)

Cruza facturas, ítems de cuenta y pagos de una reserva para producir un
único estado de pago y de ingresos. Las inconsistencias se devuelven como
datos para el operador; nunca se lanzan como excepción.
"""

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Tuple

from sqlalchemy.orm import Session

from models.core import (
    BillItem,
    Booking,
    BookingPaymentStatus,
    Invoice,
    InvoiceStatus,
    Payment,
)
from services.billing_service import BillingService
from utils.errors import NotFound
from utils.money import ZERO, money

BILLABLE_SOURCE_INVOICE = "invoice"
BILLABLE_SOURCE_BILL_ITEMS = "bill_items"


# ============================================================================
# POLÍTICAS
# ============================================================================

def resolve_billable_amount(invoices: Iterable[Invoice], bill_items: Iterable[BillItem]) -> Tuple[Decimal, str]:
    """
    Monto facturable de una reserva.

    Si hay al menos una factura no anulada, manda la suma de facturas
    (aunque los ítems hayan cambiado después). Si no, la suma de
    final_amount de los ítems no borrados.
    """
    active_invoices = [i for i in invoices if i.status != InvoiceStatus.CANCELLED]
    if active_invoices:
        return money(sum((money(i.total_amount) for i in active_invoices), ZERO)), BILLABLE_SOURCE_INVOICE

    live_items = [item for item in bill_items if not item.is_deleted]
    return money(sum((money(item.final_amount) for item in live_items), ZERO)), BILLABLE_SOURCE_BILL_ITEMS


def derive_payment_status(total_paid: Decimal, billable_amount: Decimal) -> BookingPaymentStatus:
    if billable_amount <= 0:
        return BookingPaymentStatus.PAID if total_paid > 0 else BookingPaymentStatus.PENDING
    if total_paid <= 0:
        return BookingPaymentStatus.PENDING
    if total_paid >= billable_amount:
        return BookingPaymentStatus.PAID
    return BookingPaymentStatus.PARTIALLY_PAID


def derive_revenue_status(billable_amount: Decimal, payment_status: BookingPaymentStatus) -> str:
    if billable_amount <= 0:
        return "error"
    if payment_status == BookingPaymentStatus.PAID:
        return "up_to_date"
    return "pending"


_REVENUE_MESSAGES = {
    "up_to_date": "Ingresos registrados por el total facturado",
    "pending": "Quedan pagos pendientes para esta reserva",
    "error": "La reserva no tiene monto facturable para conciliar",
}


class ReconciliationService:
    """Estado financiero canónico de una reserva"""

    @staticmethod
    def get_booking(db: Session, booking_id: int) -> Booking:
        booking = db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            raise NotFound(f"Reserva {booking_id} no encontrada", {"booking_id": booking_id})
        return booking

    @staticmethod
    def booking_payments(db: Session, booking_id: int) -> List[Payment]:
        payments = db.query(Payment).filter(Payment.booking_id == booking_id).all()
        # Deduplicado por id
        return list({p.id: p for p in payments}.values())

    @staticmethod
    def total_paid(db: Session, booking_id: int) -> Decimal:
        """Neto recibido: pagos menos reversiones."""
        payments = ReconciliationService.booking_payments(db, booking_id)
        return money(sum((money(p.amount) for p in payments), ZERO))

    @staticmethod
    def billable_amount(db: Session, booking_id: int) -> Tuple[Decimal, str]:
        invoices = db.query(Invoice).filter(Invoice.booking_id == booking_id).all()
        items = db.query(BillItem).filter(BillItem.booking_id == booking_id).all()
        return resolve_billable_amount(invoices, items)

    @staticmethod
    def derived_status(db: Session, booking_id: int) -> BookingPaymentStatus:
        billable, _ = ReconciliationService.billable_amount(db, booking_id)
        return derive_payment_status(ReconciliationService.total_paid(db, booking_id), billable)

    @staticmethod
    def refresh_payment_status(db: Session, booking: Booking) -> BookingPaymentStatus:
        """Actualiza el estado cacheado de la reserva; overdue se conserva hasta quedar paga."""
        db.flush()
        status = ReconciliationService.derived_status(db, booking.id)
        if booking.payment_status == BookingPaymentStatus.OVERDUE and status != BookingPaymentStatus.PAID:
            return booking.payment_status
        booking.payment_status = status
        return status

    @staticmethod
    def amount_due(db: Session, booking: Booking) -> Decimal:
        """
        Total a cobrar al huésped: las facturas vigentes o, sin factura, el
        total cacheado con descuento e impuestos.
        """
        billable, source = ReconciliationService.billable_amount(db, booking.id)
        if source == BILLABLE_SOURCE_INVOICE:
            return billable
        return money(booking.total_amount)

    @staticmethod
    def get_booking_financial_status(db: Session, booking_id: int) -> Dict[str, Any]:
        """
        Estado financiero de una reserva

        Returns:
            dict con billable_amount, total_paid, remaining_amount,
            payment_status, revenue_status e inconsistencies
        """
        booking = ReconciliationService.get_booking(db, booking_id)
        invoices = db.query(Invoice).filter(Invoice.booking_id == booking_id).order_by(Invoice.id).all()
        items = db.query(BillItem).filter(BillItem.booking_id == booking_id).all()
        payments = ReconciliationService.booking_payments(db, booking_id)

        billable, source = resolve_billable_amount(invoices, items)
        total_paid = money(sum((money(p.amount) for p in payments), ZERO))
        remaining = max(ZERO, money(billable - total_paid))
        payment_status = derive_payment_status(total_paid, billable)
        revenue_status = derive_revenue_status(billable, payment_status)

        positive = sorted((p for p in payments if not p.is_reversal), key=lambda p: (p.payment_date, p.id), reverse=True)
        last_payment = max(payments, key=lambda p: (p.payment_date, p.id)) if payments else None

        inconsistencies: List[Dict[str, str]] = []
        if source == BILLABLE_SOURCE_INVOICE:
            live_items_total = money(sum((money(i.final_amount) for i in items if not i.is_deleted), ZERO))
            invoiced_subtotal = money(sum(
                (money(i.subtotal) for i in invoices if i.status != InvoiceStatus.CANCELLED), ZERO
            ))
            if live_items_total != invoiced_subtotal:
                inconsistencies.append({
                    "code": "BILL_CHANGED_AFTER_INVOICE",
                    "message": f"Ítems actuales {live_items_total} vs subtotal facturado {invoiced_subtotal}",
                    "severity": "info",
                })

        calculation = BillingService.calculate_bill(db, booking_id)
        if source == BILLABLE_SOURCE_BILL_ITEMS and billable > 0 and billable != calculation.grand_total:
            inconsistencies.append({
                "code": "BILLABLE_EXCLUDES_TAX",
                "message": f"Facturable por ítems {billable} vs total con descuento e impuestos {calculation.grand_total}",
                "severity": "warning",
            })

        if money(booking.total_amount) != calculation.grand_total:
            inconsistencies.append({
                "code": "CACHED_TOTAL_DRIFT",
                "message": f"Total cacheado {money(booking.total_amount)} vs recalculado {calculation.grand_total}",
                "severity": "warning",
            })

        if billable > 0 and total_paid > billable:
            inconsistencies.append({
                "code": "OVERPAYMENT",
                "message": f"Pagado {total_paid} supera lo facturable {billable}",
                "severity": "warning",
            })

        if billable <= 0:
            inconsistencies.append({
                "code": "NOTHING_BILLED",
                "message": "La reserva no tiene facturas ni ítems de cuenta",
                "severity": "error",
            })

        cached_status = booking.payment_status
        overdue_ok = (
            cached_status == BookingPaymentStatus.OVERDUE
            and payment_status != BookingPaymentStatus.PAID
        )
        if cached_status != payment_status and not overdue_ok:
            inconsistencies.append({
                "code": "STALE_PAYMENT_STATUS",
                "message": f"Estado cacheado {cached_status.value} vs derivado {payment_status.value}",
                "severity": "warning",
            })

        return {
            "booking_id": booking.id,
            "billable_amount": billable,
            "billable_source": source,
            "total_paid": total_paid,
            "remaining_amount": remaining,
            "payment_status": payment_status,
            "revenue_status": {
                "status": revenue_status,
                "message": _REVENUE_MESSAGES[revenue_status],
                "total_revenue": total_paid,
                "last_updated": last_payment.payment_date if last_payment else None,
            },
            "has_invoices": any(i.status != InvoiceStatus.CANCELLED for i in invoices),
            "original_total_amount": money(booking.total_amount),
            "recent_payments": positive[:3],
            "inconsistencies": inconsistencies,
        }
