"""
Endpoints de ingresos y conciliación
"""
from datetime import date
from io import StringIO
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from database import conexion
from models.core import PeriodType
from models.usuario import Usuario
from schemas.accounts import ReversePaymentResponse
from schemas.payments import ReversePaymentRequest
from schemas.revenue import (
    BookingFinancialStatus,
    RevenueRebuildRequest,
    RevenueRebuildResponse,
    RevenueReportResponse,
    RevenueReportRow,
    RevenueTrendPoint,
    RevenueUpdateStatus,
)
from services.payment_service import PaymentService
from services.reconciliation_service import ReconciliationService
from services.revenue_service import RevenueService
from utils.dependencies import get_current_user, require_operation
from utils.errors import HANDLED_ERRORS, InternalError
from utils.logging_utils import log_event
from utils.rate_limiter import MONEY_LIMIT, limiter
from utils.timezone import operational_date


router = APIRouter(prefix="/revenue", tags=["Ingresos"])


# ============================================================================
# CONCILIACIÓN
# ============================================================================

@router.get("/status", response_model=BookingFinancialStatus)
async def booking_financial_status(
    booking_id: int,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    """
    Estado financiero canónico de una reserva: monto facturable, neto
    pagado, saldo, estado de pago e inconsistencias detectadas.
    """
    return ReconciliationService.get_booking_financial_status(db, booking_id)


@router.get("/status/updates", response_model=RevenueUpdateStatus)
async def revenue_update_status(
    booking_id: int,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    return RevenueService.get_revenue_update_status(db, booking_id)


@router.post("/reverse", response_model=ReversePaymentResponse)
@limiter.limit(MONEY_LIMIT)
async def reverse_revenue(
    request: Request,
    data: ReversePaymentRequest,
    current_user: Usuario = Depends(require_operation("reverse_payment")),
    db: Session = Depends(conexion.get_db)
):
    """Misma operación que /accounts/reverse-payment."""
    try:
        return PaymentService.reverse_payment(
            db, data.booking_id, data.amount, current_user.username, reason=data.reason
        )
    except HANDLED_ERRORS:
        raise
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        log_event("ingresos", current_user.username, "Error al revertir ingresos", f"error={str(e)}", level="error")
        raise InternalError("Error al revertir ingresos")


# ============================================================================
# REPORTES
# ============================================================================

@router.get("/reports", response_model=RevenueReportResponse)
async def revenue_report(
    start_date: date,
    end_date: date,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    return RevenueService.generate_revenue_report(db, start_date, end_date)


@router.get("/daily", response_model=RevenueReportRow)
async def daily_revenue(
    day: Optional[date] = None,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    return RevenueService.get_report(db, day or operational_date(), PeriodType.DAILY)


@router.get("/monthly", response_model=RevenueReportRow)
async def monthly_revenue(
    day: Optional[date] = None,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    return RevenueService.get_report(db, day or operational_date(), PeriodType.MONTHLY)


@router.get("/yearly", response_model=RevenueReportRow)
async def yearly_revenue(
    day: Optional[date] = None,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    return RevenueService.get_report(db, day or operational_date(), PeriodType.YEARLY)


@router.get("/trends", response_model=List[RevenueTrendPoint])
async def revenue_trends(
    days: int = Query(30, ge=1, le=366),
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    return RevenueService.get_revenue_trends(db, days)


# ============================================================================
# MANTENIMIENTO
# ============================================================================

@router.post("/rebuild", response_model=RevenueRebuildResponse)
@limiter.limit(MONEY_LIMIT)
async def rebuild_revenue(
    request: Request,
    data: RevenueRebuildRequest,
    current_user: Usuario = Depends(require_operation("rebuild_revenue")),
    db: Session = Depends(conexion.get_db)
):
    """Reconstruye los acumulados del rango desde el historial de pagos."""
    try:
        return RevenueService.rebuild_revenue_reports(
            db, data.start_date, data.end_date, processed_by=current_user.username
        )
    except HANDLED_ERRORS:
        raise
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        log_event("ingresos", current_user.username, "Error al reconstruir acumulados", f"error={str(e)}", level="error")
        raise InternalError("Error al reconstruir acumulados")


@router.get("/export")
async def export_revenue(
    start_date: date,
    end_date: date,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    """Exporta los pagos del rango a CSV."""
    content = RevenueService.export_revenue_csv(db, start_date, end_date)
    log_event("ingresos", current_user.username, "Exportación CSV", f"desde={start_date}, hasta={end_date}")

    return StreamingResponse(
        StringIO(content),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=ingresos_{start_date}_{end_date}.csv"}
    )
