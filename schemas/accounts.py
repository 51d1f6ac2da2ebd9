"""
Schemas Pydantic para el libro de cuentas - Cuentas, asientos y transferencias
"""
from typing import Dict, List, Optional
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from enum import Enum

from models.core import AccountType, BookingPaymentStatus, PaymentMethod, TransactionCategory, TransactionType
from schemas.payments import PaymentResponse


# ========== ENUMS ==========

class ManualTransactionType(str, Enum):
    """Tipo de movimiento manual"""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


# ========== CUENTAS ==========

class BankAccountCreate(BaseModel):
    """Schema para crear una cuenta de usuario"""
    account_name: str = Field(..., min_length=1, max_length=120)
    account_type: AccountType = AccountType.CURRENT
    user_id: int
    description: Optional[str] = None

    @field_validator("account_type")
    @classmethod
    def validate_account_type(cls, v):
        if v == AccountType.MAIN:
            raise ValueError("La cuenta principal se crea automáticamente")
        return v


class BankAccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_name: str
    account_type: AccountType
    balance: Decimal
    is_main_account: bool
    is_active: bool
    user_id: Optional[int] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None


# ========== ASIENTOS ==========

class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    type: TransactionType
    category: TransactionCategory
    amount: Decimal
    signed_amount: Decimal
    balance_after: Decimal
    description: str
    notes: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    processed_by: str
    related_booking_id: Optional[int] = None
    payment_id: Optional[int] = None
    correlation_id: Optional[str] = None
    reverses_transaction_id: Optional[int] = None
    created_at: datetime


class ManualTransactionRequest(BaseModel):
    """Schema para POST /accounts/manual-transaction"""
    account_id: int
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    type: ManualTransactionType
    description: str = Field(..., min_length=1, max_length=255)
    notes: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None


class ManualTransactionResponse(BaseModel):
    transaction: TransactionResponse
    account: BankAccountResponse


class TransferRequest(BaseModel):
    """Schema para POST /accounts/transfer"""
    from_account_id: int
    to_account_id: int
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=200)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_accounts(self):
        if self.from_account_id == self.to_account_id:
            raise ValueError("La cuenta origen y destino deben ser distintas")
        return self


class TransferResponse(BaseModel):
    withdrawal: TransactionResponse
    deposit: TransactionResponse


class ReverseTransactionRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class CreditStaffRequest(BaseModel):
    """Acredita la cuenta de una reserva en la cuenta de un usuario"""
    booking_id: int
    user_id: int
    amount: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    notes: Optional[str] = None


class ReversePaymentResponse(BaseModel):
    booking_id: int
    amount: Decimal
    net_received: Decimal
    payment_status: BookingPaymentStatus
    reversals: List[PaymentResponse]
    transactions: List[TransactionResponse]


# ========== RESÚMENES ==========

class CategoryTotal(BaseModel):
    count: int
    amount: Decimal


class TransactionSummary(BaseModel):
    total_credits: Decimal
    total_debits: Decimal
    net: Decimal
    transaction_count: int
    by_category: Dict[str, CategoryTotal]


class LedgerCheckEntry(BaseModel):
    account_id: int
    account_name: str
    balance: Decimal
    ledger_sum: Decimal
    consistent: bool
