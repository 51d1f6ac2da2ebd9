"""
Schemas Pydantic para pagos de reservas
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.core import BookingPaymentStatus, PaymentMethod


# ========== PAGOS ==========

class PaymentCreate(BaseModel):
    """Schema para registrar un pago"""
    booking_id: int
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    payment_method: PaymentMethod
    invoice_id: Optional[int] = None
    payment_reference: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    account_id: Optional[int] = Field(None, description="Cuenta destino; por defecto la principal")
    idempotency_key: Optional[str] = Field(None, max_length=120)


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_id: int
    invoice_id: Optional[int] = None
    amount: Decimal
    payment_method: PaymentMethod
    payment_reference: Optional[str] = None
    received_by: str
    payment_date: datetime
    notes: Optional[str] = None
    is_reversal: bool
    reverses_payment_id: Optional[int] = None
    is_split: bool
    created_at: Optional[datetime] = None


# ========== PAGOS DIVIDIDOS ==========

class SplitLeg(BaseModel):
    account_id: int
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    payment_method: Optional[PaymentMethod] = None


class SplitPaymentRequest(BaseModel):
    """Schema para POST /billing/split-payments"""
    booking_id: int
    split_payments: List[SplitLeg] = Field(..., min_length=1)
    payment_method: PaymentMethod = PaymentMethod.CASH
    total_amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    payment_reference: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    idempotency_key: Optional[str] = Field(None, max_length=120)


class SplitPaymentRowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    payment_id: int
    account_id: int
    transaction_id: Optional[int] = None
    amount: Decimal
    payment_method: PaymentMethod


class SplitPaymentResponse(BaseModel):
    payment: PaymentResponse
    splits: List[SplitPaymentRowResponse]


# ========== REVERSIÓN ==========

class ReversePaymentRequest(BaseModel):
    """Schema para revertir dinero recibido por una reserva"""
    booking_id: int
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    reason: Optional[str] = Field(None, max_length=500)


# ========== RESÚMENES ==========

class PaymentSummaryResponse(BaseModel):
    booking_id: int
    billable_amount: Decimal
    billable_source: str
    total_paid: Decimal
    remaining_amount: Decimal
    payment_status: BookingPaymentStatus
    payment_count: int
    reversal_count: int
    by_payment_method: Dict[str, Decimal]
    last_payment_date: Optional[datetime] = None


class DuplicatePaymentGroup(BaseModel):
    booking_id: int
    amount: Decimal
    payment_method: PaymentMethod
    payment_ids: List[int]
    first_payment_date: datetime
    last_payment_date: datetime
    excess_amount: Decimal


class OverdueUpdateResponse(BaseModel):
    updated: int
