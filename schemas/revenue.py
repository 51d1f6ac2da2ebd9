"""
Schemas para reportes de ingresos y conciliación
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from models.core import BookingPaymentStatus, PeriodType
from schemas.payments import PaymentResponse


# ========== CONCILIACIÓN ==========

class Inconsistency(BaseModel):
    code: str
    message: str
    severity: str


class RevenueStatusDetail(BaseModel):
    status: str  # up_to_date | pending | error
    message: str
    total_revenue: Decimal
    last_updated: Optional[datetime] = None


class BookingFinancialStatus(BaseModel):
    """Respuesta de GET /revenue/status"""
    booking_id: int
    billable_amount: Decimal
    billable_source: str
    total_paid: Decimal
    remaining_amount: Decimal
    payment_status: BookingPaymentStatus
    revenue_status: RevenueStatusDetail
    has_invoices: bool
    original_total_amount: Decimal
    recent_payments: List[PaymentResponse] = []
    inconsistencies: List[Inconsistency] = []


# ========== ACUMULADOS ==========

class RevenueReportRow(BaseModel):
    report_date: date
    period_type: PeriodType
    accommodation_revenue: Decimal
    total_revenue: Decimal
    total_bookings: int


class RevenueReportResponse(BaseModel):
    start_date: date
    end_date: date
    gross_revenue: Decimal
    reversed_amount: Decimal
    total_revenue: Decimal
    payment_count: int
    booking_count: int
    by_payment_method: Dict[str, Decimal]
    billed_by_category: Dict[str, Decimal]
    tax_collected: Decimal
    outstanding_amount: Decimal
    previous_period_revenue: Decimal
    growth_percentage: Optional[Decimal] = None
    daily_reports: List[RevenueReportRow] = []


class RevenueTrendPoint(BaseModel):
    day: date
    revenue: Decimal
    bookings: int


class RevenueRebuildRequest(BaseModel):
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def validate_range(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date debe ser posterior a start_date")
        return self


class RevenueRebuildResponse(BaseModel):
    rows_rebuilt: int
    payments_scanned: int


class RevenueBucket(BaseModel):
    period_type: PeriodType
    report_date: date


class RevenueUpdateStatus(BaseModel):
    booking_id: int
    revenue_recorded: bool
    net_amount: Decimal
    buckets: List[RevenueBucket] = Field(default_factory=list)
