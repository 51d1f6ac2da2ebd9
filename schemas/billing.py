"""
Schemas para endpoints de facturación: ítems, cálculo de cuenta y facturas
"""
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import List, Optional
from datetime import datetime
from decimal import Decimal

from models.core import BillItemType, InvoiceStatus


# ========== ÍTEMS DE CUENTA ==========

class BillItemCreate(BaseModel):
    """Request para POST /billing/bill-items"""
    booking_id: int
    description: Optional[str] = Field(None, max_length=255)
    quantity: int = Field(1, gt=0)
    unit_price: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    discount: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    service_id: Optional[int] = None
    item_type: BillItemType = BillItemType.SERVICE
    allow_post_invoice: bool = Field(False, description="Override explícito para reservas ya facturadas")

    @model_validator(mode="after")
    def validate_source(self):
        if self.service_id is None and (self.unit_price is None or not self.description):
            raise ValueError("Sin service_id se requieren description y unit_price")
        return self


class BillItemUpdate(BaseModel):
    """Request para PATCH /billing/bill-items/{id}"""
    description: Optional[str] = Field(None, min_length=1, max_length=255)
    quantity: Optional[int] = Field(None, gt=0)
    unit_price: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    discount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    allow_post_invoice: bool = False


class BillItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_id: int
    service_id: Optional[int] = None
    item_type: BillItemType
    description: str
    quantity: int
    unit_price: Decimal
    discount: Decimal
    final_amount: Decimal
    added_by: Optional[str] = None
    created_at: Optional[datetime] = None


# ========== CÁLCULO ==========

class BillCalculationRequest(BaseModel):
    booking_id: int


class TaxLineResponse(BaseModel):
    name: str
    percentage: Decimal
    amount: Decimal


class TaxBreakdownResponse(BaseModel):
    base_amount: Decimal
    discount_amount: Decimal
    taxable_base: Decimal
    lines: List[TaxLineResponse]
    total_tax: Decimal
    total: Decimal
    tax_enabled: bool


class BillCalculationResponse(BaseModel):
    """Respuesta de GET/POST /billing/calculation"""
    booking_id: int
    subtotal: Decimal
    discount: Decimal
    tax_breakdown: TaxBreakdownResponse
    grand_total: Decimal


# ========== FACTURAS ==========

class InvoiceCreate(BaseModel):
    booking_id: int


class InvoiceItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class InvoiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_id: int
    invoice_number: str
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    status: InvoiceStatus
    email_sent: bool
    issued_by: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[InvoiceItemResponse] = []


class InvoiceStatusUpdate(BaseModel):
    status: Optional[InvoiceStatus] = None
    email_sent: Optional[bool] = None

    @model_validator(mode="after")
    def validate_not_empty(self):
        if self.status is None and self.email_sent is None:
            raise ValueError("Indicar status o email_sent")
        return self
