"""
Endpoints del libro de cuentas - Cuentas internas, asientos y transferencias
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from database import conexion
from models.core import TransactionCategory, TransactionType
from models.usuario import Usuario
from schemas.accounts import (
    BankAccountCreate, BankAccountResponse,
    CreditStaffRequest, LedgerCheckEntry,
    ManualTransactionRequest, ManualTransactionResponse, ManualTransactionType,
    ReversePaymentResponse, ReverseTransactionRequest,
    TransactionResponse, TransactionSummary,
    TransferRequest, TransferResponse,
)
from schemas.payments import ReversePaymentRequest
from services.account_service import AccountService
from services.payment_service import PaymentService
from utils.dependencies import get_current_user, require_operation
from utils.errors import HANDLED_ERRORS, InternalError
from utils.logging_utils import log_event
from utils.rate_limiter import MONEY_LIMIT, limiter


router = APIRouter(prefix="/accounts", tags=["Cuentas"])


def _internal_error(db: Session, usuario: str, accion: str, error: Exception) -> InternalError:
    db.rollback()
    log_event("cuentas", usuario, accion, f"error={str(error)}", level="error")
    return InternalError("Error interno del libro de cuentas")


# ============================================================================
# CUENTAS
# ============================================================================

@router.get("", response_model=List[BankAccountResponse])
async def list_accounts(
    include_inactive: bool = False,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    """Lista las cuentas internas; la principal primero."""
    AccountService.get_or_create_main_account(db)
    return AccountService.list_accounts(db, include_inactive=include_inactive)


@router.post("", response_model=BankAccountResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(MONEY_LIMIT)
async def create_account(
    request: Request,
    data: BankAccountCreate,
    current_user: Usuario = Depends(require_operation("create_account")),
    db: Session = Depends(conexion.get_db)
):
    """
    Crea la cuenta de un usuario. La cuenta principal se crea sola la
    primera vez que se necesita.
    """
    try:
        return AccountService.create_account(
            db,
            account_name=data.account_name,
            account_type=data.account_type,
            user_id=data.user_id,
            description=data.description,
            processed_by=current_user.username,
        )
    except HANDLED_ERRORS:
        raise
    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error(db, current_user.username, "Error al crear cuenta", e)


# ============================================================================
# ASIENTOS
# ============================================================================

@router.post("/manual-transaction", response_model=ManualTransactionResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(MONEY_LIMIT)
async def manual_transaction(
    request: Request,
    data: ManualTransactionRequest,
    current_user: Usuario = Depends(require_operation("manual_transaction")),
    db: Session = Depends(conexion.get_db)
):
    """
    Depósito o retiro manual sobre una cuenta.

    Un retiro mayor al saldo se rechaza con insufficient_funds.
    """
    try:
        operation = AccountService.deposit if data.type == ManualTransactionType.DEPOSIT else AccountService.withdraw
        transaction, account = operation(
            db,
            data.account_id,
            data.amount,
            data.description,
            current_user.username,
            notes=data.notes,
            payment_method=data.payment_method,
        )
        return {"transaction": transaction, "account": account}
    except HANDLED_ERRORS:
        raise
    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error(db, current_user.username, "Error en movimiento manual", e)


@router.post("/transfer", response_model=TransferResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(MONEY_LIMIT)
async def transfer(
    request: Request,
    data: TransferRequest,
    current_user: Usuario = Depends(require_operation("transfer")),
    db: Session = Depends(conexion.get_db)
):
    """Transferencia atómica entre dos cuentas internas."""
    try:
        withdrawal, deposit = AccountService.transfer(
            db,
            data.from_account_id,
            data.to_account_id,
            data.amount,
            data.description,
            current_user.username,
            notes=data.notes,
        )
        return {"withdrawal": withdrawal, "deposit": deposit}
    except HANDLED_ERRORS:
        raise
    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error(db, current_user.username, "Error en transferencia", e)


@router.get("/transactions", response_model=List[TransactionResponse])
async def transaction_history(
    account_id: Optional[int] = None,
    user_id: Optional[int] = None,
    tx_type: Optional[TransactionType] = Query(None, alias="type"),
    category: Optional[TransactionCategory] = None,
    booking_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    """Historial de asientos, más recientes primero."""
    return AccountService.get_transaction_history(
        db,
        account_id=account_id,
        user_id=user_id,
        tx_type=tx_type,
        category=category,
        booking_id=booking_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )


@router.get("/transactions/summary", response_model=TransactionSummary)
async def transaction_summary(
    account_id: Optional[int] = None,
    user_id: Optional[int] = None,
    booking_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    return AccountService.get_transaction_summary(
        db,
        account_id=account_id,
        user_id=user_id,
        booking_id=booking_id,
        start_date=start_date,
        end_date=end_date,
    )


@router.post("/transactions/{transaction_id}/reverse", response_model=List[TransactionResponse])
@limiter.limit(MONEY_LIMIT)
async def reverse_transaction(
    request: Request,
    transaction_id: int,
    data: ReverseTransactionRequest,
    current_user: Usuario = Depends(require_operation("reverse_transaction")),
    db: Session = Depends(conexion.get_db)
):
    """Revierte un asiento manual o una transferencia completa."""
    try:
        return AccountService.reverse_transaction(db, transaction_id, current_user.username, reason=data.reason)
    except HANDLED_ERRORS:
        raise
    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error(db, current_user.username, "Error al revertir transacción", e)


# ============================================================================
# PAGOS Y CRÉDITOS
# ============================================================================

@router.post("/reverse-payment", response_model=ReversePaymentResponse)
@limiter.limit(MONEY_LIMIT)
async def reverse_payment(
    request: Request,
    data: ReversePaymentRequest,
    current_user: Usuario = Depends(require_operation("reverse_payment")),
    db: Session = Depends(conexion.get_db)
):
    """
    Revierte dinero recibido por una reserva: filas negativas de pago,
    retiro de las cuentas que lo recibieron y resta de los acumulados.
    """
    try:
        return PaymentService.reverse_payment(
            db, data.booking_id, data.amount, current_user.username, reason=data.reason
        )
    except HANDLED_ERRORS:
        raise
    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error(db, current_user.username, "Error al revertir pago", e)


@router.post("/credit-staff", response_model=ManualTransactionResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(MONEY_LIMIT)
async def credit_staff(
    request: Request,
    data: CreditStaffRequest,
    current_user: Usuario = Depends(require_operation("credit_staff")),
    db: Session = Depends(conexion.get_db)
):
    try:
        transaction, account = AccountService.credit_bill_to_staff(
            db, data.booking_id, data.user_id, current_user.username,
            amount=data.amount, notes=data.notes,
        )
        return {"transaction": transaction, "account": account}
    except HANDLED_ERRORS:
        raise
    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error(db, current_user.username, "Error al acreditar cuenta de staff", e)


# ============================================================================
# AUDITORÍA
# ============================================================================

@router.get("/ledger-check", response_model=List[LedgerCheckEntry])
async def ledger_check(
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    """Saldo cacheado vs suma de asientos, por cuenta."""
    return AccountService.verify_ledger(db)


@router.get("/{account_id}", response_model=BankAccountResponse)
async def get_account(
    account_id: int,
    current_user: Usuario = Depends(get_current_user),
    db: Session = Depends(conexion.get_db)
):
    return AccountService.get_account(db, account_id)
