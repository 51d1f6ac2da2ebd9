"""
Endpoints del libro de pagos
"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from database import conexion
from models.usuario import Usuario
from schemas.payments import (
    DuplicatePaymentGroup,
    OverdueUpdateResponse,
    PaymentCreate,
    PaymentResponse,
)
from services.payment_service import PaymentService
from utils.dependencies import get_current_user
from utils.errors import HANDLED_ERRORS, InternalError
from utils.logging_utils import log_event
from utils.rate_limiter import MONEY_LIMIT, limiter
from utils.timezone import operational_date


router = APIRouter(prefix="/payments", tags=["Pagos"])


@router.post("", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(MONEY_LIMIT)
async def record_payment(
    request: Request,
    data: PaymentCreate,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    """
    Registra un pago de una reserva. Reintentar con la misma
    idempotency_key devuelve el pago original.
    """
    try:
        return PaymentService.record_payment(
            db,
            data.booking_id,
            data.amount,
            data.payment_method,
            current_user.username,
            invoice_id=data.invoice_id,
            payment_reference=data.payment_reference,
            notes=data.notes,
            account_id=data.account_id,
            idempotency_key=data.idempotency_key,
        )
    except HANDLED_ERRORS:
        raise
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        log_event("pagos", current_user.username, "Error al registrar pago", f"error={str(e)}", level="error")
        raise InternalError("Error al registrar pago")


@router.get("", response_model=List[PaymentResponse])
async def payment_history(
    booking_id: int,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    """Historial de pagos y reversiones de una reserva."""
    return PaymentService.get_payment_history(db, booking_id)


@router.get("/duplicates", response_model=List[DuplicatePaymentGroup])
async def duplicate_payments(
    window_minutes: Optional[int] = Query(None, ge=1, le=1440),
    booking_id: Optional[int] = None,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    """Pagos sospechosos de duplicado. Solo reporta, no modifica."""
    return PaymentService.find_duplicate_payments(db, window_minutes=window_minutes, booking_id=booking_id)


@router.post("/overdue", response_model=OverdueUpdateResponse)
async def mark_overdue(
    today: Optional[date] = None,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    """Marca como vencidas las reservas con check-out pasado y saldo pendiente."""
    try:
        updated = PaymentService.update_overdue_payments(
            db, today=today or operational_date(), processed_by=current_user.username
        )
        return {"updated": updated}
    except HANDLED_ERRORS:
        raise
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        log_event("pagos", current_user.username, "Error al marcar vencidos", f"error={str(e)}", level="error")
        raise InternalError("Error al actualizar pagos vencidos")
