"""
Endpoints de facturación: cuenta de la reserva, pagos divididos y facturas
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from database import conexion
from models.usuario import Usuario
from schemas.billing import (
    BillCalculationRequest, BillCalculationResponse,
    BillItemCreate, BillItemResponse, BillItemUpdate,
    InvoiceCreate, InvoiceResponse, InvoiceStatusUpdate,
)
from schemas.payments import PaymentSummaryResponse, SplitPaymentRequest, SplitPaymentResponse
from services.billing_service import BillingService
from services.invoice_service import InvoiceService
from services.payment_service import PaymentService
from utils.dependencies import get_current_user
from utils.errors import HANDLED_ERRORS, InternalError
from utils.logging_utils import log_event
from utils.rate_limiter import MONEY_LIMIT, limiter


router = APIRouter(prefix="/billing", tags=["Facturación"])


def _internal_error(db: Session, usuario: str, accion: str, error: Exception) -> InternalError:
    db.rollback()
    log_event("facturacion", usuario, accion, f"error={str(error)}", level="error")
    return InternalError("Error interno de facturación")


# ============================================================================
# CÁLCULO DE LA CUENTA
# ============================================================================

@router.get("/calculation", response_model=BillCalculationResponse)
async def get_bill_calculation(
    booking_id: int,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    """Cálculo de solo lectura: no modifica el total cacheado."""
    return BillingService.calculate_bill(db, booking_id).to_dict()


@router.post("/calculation", response_model=BillCalculationResponse)
async def recalculate_bill(
    data: BillCalculationRequest,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    """Recalcula y guarda el total de la reserva."""
    try:
        calculation = BillingService.recalculate_booking_total(db, data.booking_id)
        log_event("facturacion", current_user.username, "Total recalculado",
                  f"booking_id={data.booking_id}, total={calculation.grand_total}")
        return calculation.to_dict()
    except HANDLED_ERRORS:
        raise
    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error(db, current_user.username, "Error al recalcular cuenta", e)


# ============================================================================
# ÍTEMS DE CUENTA
# ============================================================================

@router.get("/bill-items", response_model=List[BillItemResponse])
async def list_bill_items(
    booking_id: int,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    return BillingService.list_items(db, booking_id)


@router.post("/bill-items", response_model=BillItemResponse, status_code=status.HTTP_201_CREATED)
async def add_bill_item(
    data: BillItemCreate,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    """
    Agrega un cargo a la cuenta. Con service_id toma precio y nombre del
    servicio si no vienen en el request.
    """
    try:
        return BillingService.add_item(
            db,
            data.booking_id,
            description=data.description,
            unit_price=data.unit_price,
            quantity=data.quantity,
            discount=data.discount,
            service_id=data.service_id,
            item_type=data.item_type,
            added_by=current_user.username,
            allow_post_invoice=data.allow_post_invoice,
        )
    except HANDLED_ERRORS:
        raise
    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error(db, current_user.username, "Error al agregar ítem", e)


@router.patch("/bill-items/{item_id}", response_model=BillItemResponse)
async def update_bill_item(
    item_id: int,
    data: BillItemUpdate,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    patch = data.model_dump(exclude_unset=True, exclude={"allow_post_invoice"})
    try:
        return BillingService.update_item(
            db, item_id, patch,
            updated_by=current_user.username,
            allow_post_invoice=data.allow_post_invoice,
        )
    except HANDLED_ERRORS:
        raise
    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error(db, current_user.username, "Error al modificar ítem", e)


@router.delete("/bill-items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_bill_item(
    item_id: int,
    allow_post_invoice: bool = False,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    try:
        BillingService.remove_item(
            db, item_id,
            removed_by=current_user.username,
            allow_post_invoice=allow_post_invoice,
        )
    except HANDLED_ERRORS:
        raise
    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error(db, current_user.username, "Error al eliminar ítem", e)


# ============================================================================
# PAGOS
# ============================================================================

@router.post("/split-payments", response_model=SplitPaymentResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(MONEY_LIMIT)
async def create_split_payment(
    request: Request,
    data: SplitPaymentRequest,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    """
    Un pago repartido entre varias cuentas internas.

    Si la suma de las partes no coincide con el total o alguna parte
    falla, no se registra nada.
    """
    try:
        payment, rows = PaymentService.setup_split_payments(
            db,
            data.booking_id,
            [leg.model_dump() for leg in data.split_payments],
            current_user.username,
            payment_method=data.payment_method,
            total_amount=data.total_amount,
            payment_reference=data.payment_reference,
            notes=data.notes,
            idempotency_key=data.idempotency_key,
        )
        return {"payment": payment, "splits": rows}
    except HANDLED_ERRORS:
        raise
    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error(db, current_user.username, "Error en pago dividido", e)


@router.get("/payment-summary", response_model=PaymentSummaryResponse)
async def payment_summary(
    booking_id: int,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    return PaymentService.get_payment_summary(db, booking_id)


# ============================================================================
# FACTURAS
# ============================================================================

@router.post("/invoices", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def generate_invoice(
    data: InvoiceCreate,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    """Emite la factura de la reserva, o devuelve la vigente si ya existe."""
    try:
        return InvoiceService.generate_invoice(db, data.booking_id, current_user.username)
    except HANDLED_ERRORS:
        raise
    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error(db, current_user.username, "Error al emitir factura", e)


@router.get("/invoices", response_model=List[InvoiceResponse])
async def list_invoices(
    booking_id: Optional[int] = Query(None),
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    return InvoiceService.list_invoices(db, booking_id)


@router.patch("/invoices/{invoice_id}/status", response_model=InvoiceResponse)
async def update_invoice_status(
    invoice_id: int,
    data: InvoiceStatusUpdate,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    try:
        return InvoiceService.update_status(
            db, invoice_id, current_user.username,
            status=data.status,
            email_sent=data.email_sent,
        )
    except HANDLED_ERRORS:
        raise
    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error(db, current_user.username, "Error al actualizar factura", e)
