"""
Emisión de facturas: foto congelada de la cuenta de una reserva
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

import config
from database.conexion import atomic
from models.core import HotelSettings, Invoice, InvoiceItem, InvoiceStatus
from services.billing_service import BillingService
from services.reconciliation_service import ReconciliationService
from utils.errors import InvalidState, NotFound
from utils.logging_utils import log_event
from utils.money import money_str


def _invoice_prefix(db: Session) -> str:
    settings = db.query(HotelSettings).order_by(HotelSettings.id).first()
    prefix = (settings.invoice_prefix if settings and settings.invoice_prefix else config.INVOICE_PREFIX)
    return prefix.upper()[:3]


def next_invoice_number(db: Session, when: Optional[datetime] = None) -> str:
    """{PREFIJO}-{AAAAMM}-{secuencia:04d}, secuencia mensual."""
    when = when or datetime.utcnow()
    stem = f"{_invoice_prefix(db)}-{when.strftime('%Y%m')}-"
    numbers = [
        n for (n,) in db.query(Invoice.invoice_number).filter(Invoice.invoice_number.like(f"{stem}%")).all()
    ]
    sequence = 0
    for number in numbers:
        tail = number[len(stem):]
        if tail.isdigit():
            sequence = max(sequence, int(tail))
    return f"{stem}{sequence + 1:04d}"


class InvoiceService:

    @staticmethod
    def generate_invoice(db: Session, booking_id: int, issued_by: str, commit: bool = True) -> Invoice:
        """
        Congela la cuenta actual en una factura. Si la reserva ya tiene una
        factura vigente, devuelve esa.

        Raises:
            NotFound: reserva inexistente
            InvalidState: cuenta vacía
        """
        existing = (
            db.query(Invoice)
            .filter(Invoice.booking_id == booking_id, Invoice.status != InvoiceStatus.CANCELLED)
            .order_by(Invoice.id)
            .first()
        )
        if existing:
            return existing

        with atomic(db, commit):
            calculation = BillingService.recalculate_booking_total(db, booking_id, commit=False)
            if calculation.grand_total <= 0:
                raise InvalidState("La reserva no tiene ítems para facturar", {"booking_id": booking_id})

            invoice = Invoice(
                booking_id=booking_id,
                invoice_number=next_invoice_number(db),
                subtotal=calculation.subtotal,
                discount_amount=calculation.discount,
                tax_amount=calculation.tax_breakdown.total_tax,
                total_amount=calculation.grand_total,
                tax_breakdown={
                    "taxable_base": money_str(calculation.tax_breakdown.taxable_base),
                    "lines": [
                        {"name": line.name, "percentage": money_str(line.percentage), "amount": money_str(line.amount)}
                        for line in calculation.tax_breakdown.lines
                    ],
                },
                status=InvoiceStatus.ISSUED,
                issued_by=issued_by,
            )
            invoice.items = [
                InvoiceItem(
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total_price=item.final_amount,
                )
                for item in calculation.items
            ]
            db.add(invoice)
            # Lo facturable pasa a ser la factura
            booking = ReconciliationService.get_booking(db, booking_id)
            ReconciliationService.refresh_payment_status(db, booking)

        log_event("facturacion", issued_by, "Factura emitida",
                  f"booking_id={booking_id}, numero={invoice.invoice_number}, total={invoice.total_amount}")
        return invoice

    @staticmethod
    def list_invoices(db: Session, booking_id: Optional[int] = None) -> List[Invoice]:
        query = db.query(Invoice)
        if booking_id is not None:
            query = query.filter(Invoice.booking_id == booking_id)
        return query.order_by(Invoice.id.desc()).all()

    @staticmethod
    def update_status(
        db: Session,
        invoice_id: int,
        updated_by: str,
        status: Optional[InvoiceStatus] = None,
        email_sent: Optional[bool] = None,
        commit: bool = True,
    ) -> Invoice:
        """Solo status y email_sent son modificables; una factura anulada no vuelve."""
        with atomic(db, commit):
            invoice = db.query(Invoice).filter(Invoice.id == invoice_id).with_for_update().first()
            if not invoice:
                raise NotFound(f"Factura {invoice_id} no encontrada", {"invoice_id": invoice_id})
            if invoice.status == InvoiceStatus.CANCELLED and status not in (None, InvoiceStatus.CANCELLED):
                raise InvalidState("La factura está anulada", {"invoice_id": invoice_id})

            if status is not None:
                invoice.status = status
                booking = ReconciliationService.get_booking(db, invoice.booking_id)
                ReconciliationService.refresh_payment_status(db, booking)
            if email_sent is not None:
                invoice.email_sent = email_sent

        log_event("facturacion", updated_by, "Estado de factura actualizado",
                  f"invoice_id={invoice_id}, status={invoice.status.value}, email_sent={invoice.email_sent}")
        return invoice
