"""
Composición de la cuenta de una reserva
Contiene lógica de negocio para:
- Alta, modificación y baja (lógica) de ítems de cuenta
- Cálculo de la cuenta con descuento de promo e impuestos
- Recalculo del total cacheado de la reserva (único escritor)

Nunca toca pagos ni cuentas del libro.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

import config
from database.conexion import atomic
from models.core import (
    AuditEvent,
    BillItem,
    BillItemType,
    Booking,
    BookingStatus,
    HotelSettings,
    Invoice,
    InvoiceStatus,
    Service,
)
from utils.errors import InvalidAmount, InvalidState, NotFound, ValidationError
from utils.logging_utils import log_event
from utils.money import ZERO, money
from utils.tax_engine import TaxBreakdown, TaxConfig, calculate_taxes

UPDATABLE_FIELDS = ("description", "quantity", "unit_price", "discount")


@dataclass
class BillCalculation:
    """Resultado de calcular la cuenta de una reserva"""
    booking_id: int
    items: List[BillItem] = field(default_factory=list)
    subtotal: Decimal = ZERO
    discount: Decimal = ZERO
    tax_breakdown: TaxBreakdown = field(default_factory=TaxBreakdown.zero)
    grand_total: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "subtotal": self.subtotal,
            "discount": self.discount,
            "tax_breakdown": self.tax_breakdown.to_dict(),
            "grand_total": self.grand_total,
        }


def compute_final_amount(quantity: Any, unit_price: Any, discount: Any) -> Decimal:
    """final = cantidad * precio - descuento, nunca negativo."""
    return max(ZERO, money(money(unit_price) * int(quantity) - money(discount)))


def _validate_item_values(quantity: Any, unit_price: Any, discount: Any) -> None:
    if quantity is None or int(quantity) <= 0:
        raise ValidationError("La cantidad debe ser mayor a 0", {"quantity": quantity})
    if unit_price is None:
        raise ValidationError("Falta el precio unitario", {"unit_price": None})
    if money(unit_price) < 0:
        raise InvalidAmount("El precio unitario no puede ser negativo", {"unit_price": str(unit_price)})
    if money(discount) < 0:
        raise InvalidAmount("El descuento no puede ser negativo", {"discount": str(discount)})


class BillingService:
    """Servicio de composición de cuentas"""

    @staticmethod
    def get_tax_config(db: Session) -> TaxConfig:
        settings = db.query(HotelSettings).order_by(HotelSettings.id).first()
        if not settings:
            return TaxConfig(
                gst_percentage=config.DEFAULT_GST_PERCENTAGE,
                service_tax_percentage=config.DEFAULT_SERVICE_TAX_PERCENTAGE,
                tax_enabled=config.DEFAULT_TAX_ENABLED,
            )
        return TaxConfig.from_settings(
            settings.gst_percentage,
            settings.service_tax_percentage,
            settings.other_taxes,
            settings.tax_enabled,
        )

    @staticmethod
    def _get_booking(db: Session, booking_id: int, lock: bool = False) -> Booking:
        query = db.query(Booking).filter(Booking.id == booking_id)
        if lock:
            query = query.with_for_update()
        booking = query.first()
        if not booking:
            raise NotFound(f"Reserva {booking_id} no encontrada", {"booking_id": booking_id})
        return booking

    @staticmethod
    def _get_item(db: Session, item_id: int) -> BillItem:
        item = db.query(BillItem).filter(BillItem.id == item_id, BillItem.is_deleted.is_(False)).first()
        if not item:
            raise NotFound(f"Ítem {item_id} no encontrado", {"item_id": item_id})
        return item

    @staticmethod
    def _ensure_mutable(db: Session, booking: Booking, user: str, allow_post_invoice: bool, action: str) -> None:
        """
        Una reserva cancelada no admite cambios. Una reserva facturada solo
        con override explícito, que queda logueado y auditado.
        """
        if booking.status == BookingStatus.CANCELLED:
            raise InvalidState("La reserva está cancelada", {"booking_id": booking.id})

        invoiced = db.query(Invoice).filter(
            Invoice.booking_id == booking.id,
            Invoice.status != InvoiceStatus.CANCELLED
        ).first()
        if not invoiced:
            return

        if not allow_post_invoice:
            raise InvalidState(
                "La reserva ya fue facturada",
                {"booking_id": booking.id, "invoice_number": invoiced.invoice_number},
            )

        log_event("facturacion", user, "Edición posterior a factura", f"booking_id={booking.id}, accion={action}, factura={invoiced.invoice_number}", level="warning")
        db.add(AuditEvent(
            entity_type="booking",
            entity_id=booking.id,
            action="POST_INVOICE_EDIT",
            usuario=user,
            descripcion=action,
            payload={"invoice_number": invoiced.invoice_number},
        ))

    # ------------------------------------------------------------------
    # Mutaciones
    # ------------------------------------------------------------------

    @staticmethod
    def add_item(
        db: Session,
        booking_id: int,
        description: str,
        unit_price: Any,
        quantity: int = 1,
        discount: Any = ZERO,
        service_id: Optional[int] = None,
        item_type: BillItemType = BillItemType.SERVICE,
        added_by: str = "system",
        allow_post_invoice: bool = False,
        commit: bool = True,
    ) -> BillItem:
        """
        Agrega un ítem a la cuenta y recalcula el total de la reserva
        """
        with atomic(db, commit):
            booking = BillingService._get_booking(db, booking_id, lock=True)
            BillingService._ensure_mutable(db, booking, added_by, allow_post_invoice, "add_item")

            if service_id is not None:
                service = db.query(Service).filter(Service.id == service_id).first()
                if not service:
                    raise NotFound(f"Servicio {service_id} no encontrado", {"service_id": service_id})
                if not service.is_active:
                    raise InvalidState(f"Servicio {service_id} inactivo", {"service_id": service_id})
                if unit_price is None:
                    unit_price = service.price
                if not description:
                    description = service.name

            _validate_item_values(quantity, unit_price, discount)

            item = BillItem(
                booking_id=booking.id,
                service_id=service_id,
                item_type=item_type,
                description=description,
                quantity=int(quantity),
                unit_price=money(unit_price),
                discount=money(discount),
                final_amount=compute_final_amount(quantity, unit_price, discount),
                added_by=added_by,
            )
            db.add(item)
            db.flush()
            BillingService.recalculate_booking_total(db, booking.id, commit=False)

        log_event("facturacion", added_by, "Ítem agregado", f"booking_id={booking_id}, item_id={item.id}, final={item.final_amount}")
        return item

    @staticmethod
    def add_room_charge(
        db: Session,
        booking_id: int,
        nightly_rate: Any,
        added_by: str = "system",
        commit: bool = True,
    ) -> BillItem:
        """Cargo de alojamiento: una línea con cantidad = noches."""
        booking = BillingService._get_booking(db, booking_id)
        nights = booking.nights
        return BillingService.add_item(
            db,
            booking_id,
            description=f"{booking.room_type or 'Room'} ({nights} nights)",
            unit_price=nightly_rate,
            quantity=nights,
            item_type=BillItemType.ROOM,
            added_by=added_by,
            commit=commit,
        )

    @staticmethod
    def update_item(
        db: Session,
        item_id: int,
        patch: Dict[str, Any],
        updated_by: str = "system",
        allow_post_invoice: bool = False,
        commit: bool = True,
    ) -> BillItem:
        """
        Modifica descripción, cantidad, precio o descuento de un ítem

        Raises:
            NotFound: ítem inexistente o borrado
            InvalidState: reserva cancelada o facturada sin override
        """
        unknown = set(patch) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError("Campos no modificables", {"fields": sorted(unknown)})

        with atomic(db, commit):
            item = BillingService._get_item(db, item_id)
            booking = BillingService._get_booking(db, item.booking_id, lock=True)
            BillingService._ensure_mutable(db, booking, updated_by, allow_post_invoice, f"update_item:{item_id}")

            quantity = patch.get("quantity", item.quantity)
            unit_price = patch.get("unit_price", item.unit_price)
            discount = patch.get("discount", item.discount)
            _validate_item_values(quantity, unit_price, discount)

            if patch.get("description"):
                item.description = patch["description"]
            item.quantity = int(quantity)
            item.unit_price = money(unit_price)
            item.discount = money(discount)
            item.final_amount = compute_final_amount(quantity, unit_price, discount)
            db.flush()
            BillingService.recalculate_booking_total(db, booking.id, commit=False)

        log_event("facturacion", updated_by, "Ítem modificado", f"item_id={item_id}, cambios={sorted(patch)}, final={item.final_amount}")
        return item

    @staticmethod
    def remove_item(
        db: Session,
        item_id: int,
        removed_by: str = "system",
        allow_post_invoice: bool = False,
        commit: bool = True,
    ) -> None:
        """Baja lógica de un ítem y recalculo del total."""
        with atomic(db, commit):
            item = BillingService._get_item(db, item_id)
            booking = BillingService._get_booking(db, item.booking_id, lock=True)
            BillingService._ensure_mutable(db, booking, removed_by, allow_post_invoice, f"remove_item:{item_id}")

            item.is_deleted = True
            item.deleted_at = datetime.utcnow()
            db.flush()
            BillingService.recalculate_booking_total(db, booking.id, commit=False)

        log_event("facturacion", removed_by, "Ítem eliminado", f"item_id={item_id}, booking_id={booking.id}")

    @staticmethod
    def list_items(db: Session, booking_id: int) -> List[BillItem]:
        BillingService._get_booking(db, booking_id)
        return (
            db.query(BillItem)
            .filter(BillItem.booking_id == booking_id, BillItem.is_deleted.is_(False))
            .order_by(BillItem.id)
            .all()
        )

    # ------------------------------------------------------------------
    # Cálculo
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_bill(db: Session, booking_id: int) -> BillCalculation:
        """
        Suma los ítems vigentes, aplica el descuento de la reserva (promo)
        y delega los impuestos al motor de impuestos.
        """
        booking = BillingService._get_booking(db, booking_id)
        items = (
            db.query(BillItem)
            .filter(BillItem.booking_id == booking_id, BillItem.is_deleted.is_(False))
            .order_by(BillItem.id)
            .all()
        )
        tax_config = BillingService.get_tax_config(db)

        subtotal = money(sum((money(i.final_amount) for i in items), ZERO))
        if subtotal <= 0:
            return BillCalculation(
                booking_id=booking_id,
                items=items,
                tax_breakdown=TaxBreakdown.zero(tax_config.tax_enabled),
            )

        # Descuento de promo recortado al subtotal
        discount = min(money(booking.discount_amount), subtotal)
        breakdown = calculate_taxes(subtotal, discount, tax_config)

        return BillCalculation(
            booking_id=booking_id,
            items=items,
            subtotal=subtotal,
            discount=breakdown.discount_amount,
            tax_breakdown=breakdown,
            grand_total=breakdown.total,
        )

    @staticmethod
    def recalculate_booking_total(db: Session, booking_id: int, commit: bool = True) -> BillCalculation:
        """
        Escribe el total recalculado en la reserva. Es el único camino que
        modifica Booking.total_amount; llamarlo dos veces seguidas sin
        cambios en los ítems deja el mismo total. También actualiza el estado
        de pago cacheado, que depende de lo facturable.
        """
        from services.reconciliation_service import ReconciliationService

        with atomic(db, commit):
            calculation = BillingService.calculate_bill(db, booking_id)
            booking = BillingService._get_booking(db, booking_id)
            booking.base_amount = calculation.subtotal
            booking.tax_amount = calculation.tax_breakdown.total_tax
            booking.total_amount = calculation.grand_total
            ReconciliationService.refresh_payment_status(db, booking)

        return calculation
