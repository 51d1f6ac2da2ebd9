"""
Acumulados de ingresos por período (diario, mensual, anual)

Los acumulados se actualizan en la misma unidad de trabajo que el pago o
la reversión que los origina. No son autoritativos: rebuild_revenue_reports
los reconstruye desde la tabla payments.
"""

import csv
from collections import defaultdict
from datetime import date, datetime, timedelta
from decimal import Decimal
from io import StringIO
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

import config
from database.conexion import atomic
from models.core import (
    BillItem,
    Booking,
    BookingStatus,
    Invoice,
    InvoiceStatus,
    Payment,
    PeriodType,
    RevenueReport,
    Service,
)
from services.reconciliation_service import ReconciliationService
from utils.errors import InvalidAmount, ValidationError
from utils.logging_utils import log_event
from utils.money import ZERO, money
from utils.timezone import operational_date

PERIODS = (PeriodType.DAILY, PeriodType.MONTHLY, PeriodType.YEARLY)


def bucket_date(day: date, period_type: PeriodType) -> date:
    """Clave del acumulado: el primer día del día/mes/año."""
    if period_type == PeriodType.MONTHLY:
        return day.replace(day=1)
    if period_type == PeriodType.YEARLY:
        return day.replace(month=1, day=1)
    return day


def revenue_datetime(payment: Payment) -> datetime:
    """Fecha a la que se imputa un pago: una reversión resta en la fecha del pago que deshace."""
    if payment.is_reversal and payment.reverses is not None:
        return payment.reverses.payment_date
    return payment.payment_date


def _report_dict(row: Optional[RevenueReport], report_date: date, period_type: PeriodType) -> Dict[str, Any]:
    return {
        "report_date": report_date,
        "period_type": period_type,
        "accommodation_revenue": money(row.accommodation_revenue) if row else ZERO,
        "total_revenue": money(row.total_revenue) if row else ZERO,
        "total_bookings": row.total_bookings if row else 0,
    }


def _growth(current: Decimal, previous: Decimal) -> Optional[Decimal]:
    if previous <= 0:
        return None
    return money((current - previous) / previous * Decimal("100"))


class RevenueService:
    """Servicio de acumulados de ingresos"""

    # ------------------------------------------------------------------
    # Escritura
    # ------------------------------------------------------------------

    @staticmethod
    def _get_or_create_row(db: Session, day: date, period_type: PeriodType) -> RevenueReport:
        key = bucket_date(day, period_type)
        row = (
            db.query(RevenueReport)
            .filter(RevenueReport.report_date == key, RevenueReport.period_type == period_type)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if row:
            return row

        # Carrera de creación => IntegrityError por uq_revenue_report_period (409, reintentable)
        row = RevenueReport(
            report_date=key,
            period_type=period_type,
            accommodation_revenue=ZERO,
            total_revenue=ZERO,
            total_bookings=0,
        )
        db.add(row)
        db.flush()
        return row

    @staticmethod
    def record_revenue(
        db: Session,
        day: date,
        period_type: PeriodType,
        amount: Any,
        booking_count: int = 1,
        commit: bool = True,
    ) -> RevenueReport:
        value = money(amount)
        if value <= 0:
            raise InvalidAmount("El monto de ingreso debe ser mayor a 0", {"amount": str(value)})

        with atomic(db, commit):
            row = RevenueService._get_or_create_row(db, day, period_type)
            row.accommodation_revenue = money(money(row.accommodation_revenue) + value)
            row.total_revenue = money(money(row.total_revenue) + value)
            row.total_bookings = (row.total_bookings or 0) + max(0, booking_count)
        return row

    @staticmethod
    def reverse_revenue(
        db: Session,
        day: date,
        period_type: PeriodType,
        amount: Any,
        booking_count: int = 1,
        commit: bool = True,
    ) -> RevenueReport:
        """
        Resta simétrica con piso en 0.

        El piso puede absorber dinero que nunca se registró en ese período:
        el faltante se loguea como warning, o con STRICT_REVENUE_REVERSAL se
        rechaza con InvalidAmount.
        """
        value = money(amount)
        if value <= 0:
            raise InvalidAmount("El monto a revertir debe ser mayor a 0", {"amount": str(value)})

        with atomic(db, commit):
            row = RevenueService._get_or_create_row(db, day, period_type)
            current = money(row.total_revenue)
            shortfall = money(value - current) if value > current else ZERO

            if shortfall > 0:
                if config.STRICT_REVENUE_REVERSAL:
                    raise InvalidAmount(
                        "La reversión supera el ingreso registrado en el período",
                        {"report_date": str(row.report_date), "period_type": period_type.value,
                         "recorded": str(current), "amount": str(value)},
                    )
                log_event("ingresos", "system", "Reversión recortada a 0",
                          f"fecha={row.report_date}, periodo={period_type.value}, faltante={shortfall}", level="warning")

            row.accommodation_revenue = max(ZERO, money(money(row.accommodation_revenue) - value))
            row.total_revenue = max(ZERO, money(current - value))
            row.total_bookings = max(0, (row.total_bookings or 0) - max(0, booking_count))
        return row

    @staticmethod
    def record_payment_revenue(db: Session, when: datetime, amount: Any, booking_count: int = 1, commit: bool = True) -> List[RevenueReport]:
        """Suma el pago en los tres acumulados de su fecha operativa."""
        day = operational_date(when)
        with atomic(db, commit):
            rows = [
                RevenueService.record_revenue(db, day, period, amount, booking_count, commit=False)
                for period in PERIODS
            ]
        return rows

    @staticmethod
    def reverse_payment_revenue(db: Session, when: datetime, amount: Any, booking_count: int = 1, commit: bool = True) -> List[RevenueReport]:
        day = operational_date(when)
        with atomic(db, commit):
            rows = [
                RevenueService.reverse_revenue(db, day, period, amount, booking_count, commit=False)
                for period in PERIODS
            ]
        return rows

    # ------------------------------------------------------------------
    # Lectura
    # ------------------------------------------------------------------

    @staticmethod
    def get_report(db: Session, day: date, period_type: PeriodType) -> Dict[str, Any]:
        key = bucket_date(day, period_type)
        row = db.query(RevenueReport).filter(
            RevenueReport.report_date == key,
            RevenueReport.period_type == period_type
        ).first()
        return _report_dict(row, key, period_type)

    @staticmethod
    def get_daily_revenue(db: Session, day: date) -> Dict[str, Any]:
        return RevenueService.get_report(db, day, PeriodType.DAILY)

    @staticmethod
    def get_monthly_revenue(db: Session, day: date) -> Dict[str, Any]:
        return RevenueService.get_report(db, day, PeriodType.MONTHLY)

    @staticmethod
    def get_yearly_revenue(db: Session, day: date) -> Dict[str, Any]:
        return RevenueService.get_report(db, day, PeriodType.YEARLY)

    @staticmethod
    def list_reports(db: Session, period_type: PeriodType, start_date: date, end_date: date) -> List[RevenueReport]:
        return (
            db.query(RevenueReport)
            .filter(
                RevenueReport.period_type == period_type,
                RevenueReport.report_date >= bucket_date(start_date, period_type),
                RevenueReport.report_date <= end_date,
            )
            .order_by(RevenueReport.report_date)
            .all()
        )

    @staticmethod
    def payments_between(db: Session, start_date: date, end_date: date) -> List[Payment]:
        """Pagos cuya fecha operativa cae en [start_date, end_date]."""
        # Ventana UTC ampliada un día por lado; el filtro exacto es por fecha operativa
        lower = datetime.combine(start_date - timedelta(days=1), datetime.min.time())
        upper = datetime.combine(end_date + timedelta(days=2), datetime.min.time())
        payments = (
            db.query(Payment)
            .filter(Payment.payment_date >= lower, Payment.payment_date < upper)
            .order_by(Payment.payment_date, Payment.id)
            .all()
        )
        return [p for p in payments if start_date <= operational_date(p.payment_date) <= end_date]

    @staticmethod
    def revenue_payments_between(db: Session, start_date: date, end_date: date) -> List[Payment]:
        """
        Pagos imputados a [start_date, end_date]: los pagos del rango más las
        reversiones que los deshacen, cualquiera sea la fecha de la reversión.
        Las reversiones del rango sobre pagos de otras fechas quedan afuera.
        """
        in_range = RevenueService.payments_between(db, start_date, end_date)
        originals = [p for p in in_range if not p.is_reversal]
        orphans = [p for p in in_range if p.is_reversal and p.reverses_payment_id is None]

        reversals: List[Payment] = []
        ids = [p.id for p in originals]
        if ids:
            reversals = (
                db.query(Payment)
                .filter(Payment.is_reversal.is_(True), Payment.reverses_payment_id.in_(ids))
                .all()
            )
        return sorted(originals + reversals + orphans, key=lambda p: (revenue_datetime(p), p.id))

    @staticmethod
    def _payment_totals(payments: List[Payment]) -> Dict[str, Any]:
        gross = money(sum((money(p.amount) for p in payments if not p.is_reversal), ZERO))
        reversed_amount = money(-sum((money(p.amount) for p in payments if p.is_reversal), ZERO))

        by_method: Dict[str, Decimal] = defaultdict(lambda: ZERO)
        net_by_booking: Dict[int, Decimal] = defaultdict(lambda: ZERO)
        for p in payments:
            by_method[p.payment_method.value] = money(by_method[p.payment_method.value] + money(p.amount))
            net_by_booking[p.booking_id] = money(net_by_booking[p.booking_id] + money(p.amount))

        return {
            "gross_revenue": gross,
            "reversed_amount": reversed_amount,
            "total_revenue": money(gross - reversed_amount),
            "payment_count": sum(1 for p in payments if not p.is_reversal),
            "booking_count": sum(1 for net in net_by_booking.values() if net > 0),
            "by_payment_method": dict(by_method),
        }

    @staticmethod
    def generate_revenue_report(db: Session, start_date: date, end_date: date) -> Dict[str, Any]:
        """
        Reporte de ingresos de un rango, derivado del historial de pagos

        Incluye desglose por método de pago, por categoría de lo cargado,
        impuestos facturados, saldo pendiente de las reservas del rango y
        crecimiento contra el período anterior de igual duración.
        """
        if end_date < start_date:
            raise ValidationError("end_date debe ser posterior a start_date",
                                  {"start_date": str(start_date), "end_date": str(end_date)})

        payments = RevenueService.revenue_payments_between(db, start_date, end_date)
        totals = RevenueService._payment_totals(payments)

        span = (end_date - start_date).days + 1
        prev_end = start_date - timedelta(days=1)
        prev_start = prev_end - timedelta(days=span - 1)
        previous = RevenueService._payment_totals(RevenueService.revenue_payments_between(db, prev_start, prev_end))

        lower = datetime.combine(start_date, datetime.min.time())
        upper = datetime.combine(end_date + timedelta(days=1), datetime.min.time())

        by_category: Dict[str, Decimal] = defaultdict(lambda: ZERO)
        items = (
            db.query(BillItem)
            .outerjoin(Service, Service.id == BillItem.service_id)
            .filter(
                BillItem.is_deleted.is_(False),
                BillItem.created_at >= lower,
                BillItem.created_at < upper,
            )
            .all()
        )
        for item in items:
            category = item.service.category.value if item.service else (
                "accommodation" if item.item_type.value == "room" else "other"
            )
            by_category[category] = money(by_category[category] + money(item.final_amount))

        invoices = db.query(Invoice).filter(
            Invoice.status != InvoiceStatus.CANCELLED,
            Invoice.created_at >= lower,
            Invoice.created_at < upper,
        ).all()
        tax_collected = money(sum((money(i.tax_amount) for i in invoices), ZERO))

        bookings = db.query(Booking).filter(
            Booking.status != BookingStatus.CANCELLED,
            Booking.check_in >= start_date,
            Booking.check_in <= end_date,
        ).all()
        outstanding = ZERO
        for booking in bookings:
            billable, _ = ReconciliationService.billable_amount(db, booking.id)
            paid = ReconciliationService.total_paid(db, booking.id)
            outstanding = money(outstanding + max(ZERO, billable - paid))

        return {
            "start_date": start_date,
            "end_date": end_date,
            **totals,
            "billed_by_category": dict(by_category),
            "tax_collected": tax_collected,
            "outstanding_amount": outstanding,
            "previous_period_revenue": previous["total_revenue"],
            "growth_percentage": _growth(totals["total_revenue"], previous["total_revenue"]),
            "daily_reports": [
                _report_dict(row, row.report_date, PeriodType.DAILY)
                for row in RevenueService.list_reports(db, PeriodType.DAILY, start_date, end_date)
            ],
        }

    @staticmethod
    def get_revenue_trends(db: Session, days: int = 30, today: Optional[date] = None) -> List[Dict[str, Any]]:
        """Serie diaria (con ceros) de los últimos `days` días."""
        if days <= 0:
            raise ValidationError("days debe ser mayor a 0", {"days": days})
        end = today or operational_date()
        start = end - timedelta(days=days - 1)
        rows = {row.report_date: row for row in RevenueService.list_reports(db, PeriodType.DAILY, start, end)}

        trends = []
        for offset in range(days):
            day = start + timedelta(days=offset)
            row = rows.get(day)
            trends.append({
                "day": day,
                "revenue": money(row.total_revenue) if row else ZERO,
                "bookings": row.total_bookings if row else 0,
            })
        return trends

    @staticmethod
    def rebuild_revenue_reports(
        db: Session,
        start_date: date,
        end_date: date,
        processed_by: str = "system",
        commit: bool = True,
    ) -> Dict[str, int]:
        """
        Reconstruye desde payments los acumulados que tocan el rango (días
        del rango, meses y años completos que lo contienen).

        Las reversiones restan en la fecha del pago original, igual que al
        revertir en vivo. total_bookings reconstruido = reservas con neto
        positivo en el período.
        """
        if end_date < start_date:
            raise ValidationError("end_date debe ser posterior a start_date",
                                  {"start_date": str(start_date), "end_date": str(end_date)})

        year_start = bucket_date(start_date, PeriodType.YEARLY)
        year_end = date(end_date.year, 12, 31)
        payments = RevenueService.revenue_payments_between(db, year_start, year_end)

        buckets: Dict[tuple, Dict[int, Decimal]] = defaultdict(lambda: defaultdict(lambda: ZERO))
        for p in payments:
            day = operational_date(revenue_datetime(p))
            for period in PERIODS:
                if period == PeriodType.DAILY and not (start_date <= day <= end_date):
                    continue
                if period == PeriodType.MONTHLY and not (
                    bucket_date(start_date, period) <= bucket_date(day, period) <= bucket_date(end_date, period)
                ):
                    continue
                key = (bucket_date(day, period), period)
                buckets[key][p.booking_id] = money(buckets[key][p.booking_id] + money(p.amount))

        targets = set(buckets)
        day = start_date
        while day <= end_date:
            for period in PERIODS:
                targets.add((bucket_date(day, period), period))
            day += timedelta(days=1)

        with atomic(db, commit):
            for key, period in sorted(targets, key=lambda k: (k[1].value, k[0])):
                net_by_booking = buckets.get((key, period), {})
                total = max(ZERO, money(sum(net_by_booking.values(), ZERO)))
                row = RevenueService._get_or_create_row(db, key, period)
                row.accommodation_revenue = total
                row.total_revenue = total
                row.total_bookings = sum(1 for net in net_by_booking.values() if net > 0)

        log_event("ingresos", processed_by, "Acumulados reconstruidos",
                  f"desde={start_date}, hasta={end_date}, filas={len(targets)}")
        return {"rows_rebuilt": len(targets), "payments_scanned": len(payments)}

    @staticmethod
    def get_revenue_update_status(db: Session, booking_id: int) -> Dict[str, Any]:
        """Ingresos registrados para una reserva y acumulados que tocaron."""
        ReconciliationService.get_booking(db, booking_id)
        payments = ReconciliationService.booking_payments(db, booking_id)
        if not payments:
            return {"booking_id": booking_id, "revenue_recorded": False, "net_amount": ZERO, "buckets": []}

        days = sorted({operational_date(revenue_datetime(p)) for p in payments})
        return {
            "booking_id": booking_id,
            "revenue_recorded": True,
            "net_amount": money(sum((money(p.amount) for p in payments), ZERO)),
            "buckets": [
                {"period_type": period, "report_date": bucket_date(day, period)}
                for day in days for period in PERIODS
            ],
        }

    @staticmethod
    def export_revenue_csv(db: Session, start_date: date, end_date: date) -> str:
        if end_date < start_date:
            raise ValidationError("end_date debe ser posterior a start_date",
                                  {"start_date": str(start_date), "end_date": str(end_date)})

        output = StringIO()
        writer = csv.writer(output)

        writer.writerow([
            "Payment ID", "Fecha", "Reserva", "Monto", "Método de Pago",
            "Referencia", "Recibido por", "Reversión"
        ])

        for p in RevenueService.payments_between(db, start_date, end_date):
            writer.writerow([
                p.id,
                p.payment_date.strftime("%Y-%m-%d %H:%M:%S"),
                p.booking_id,
                str(money(p.amount)),
                p.payment_method.value,
                p.payment_reference or "",
                p.received_by,
                "Sí" if p.is_reversal else "No",
            ])

        return output.getvalue()
