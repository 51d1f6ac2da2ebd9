"""
Tests de acumulados de ingresos (RevenueService)
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal

import config
from models.core import PeriodType, RevenueReport
from services.payment_service import PaymentService
from services.revenue_service import PERIODS, RevenueService, bucket_date
from utils.errors import InvalidAmount, ValidationError
from utils.timezone import operational_date


def _rows(db, day):
    return {
        period: RevenueService.get_report(db, day, period)
        for period in PERIODS
    }


def test_bucket_date():
    day = date(2025, 7, 19)
    assert bucket_date(day, PeriodType.DAILY) == day
    assert bucket_date(day, PeriodType.MONTHLY) == date(2025, 7, 1)
    assert bucket_date(day, PeriodType.YEARLY) == date(2025, 1, 1)


def test_payments_and_reversal_move_all_buckets(db, no_tax, booking_factory):
    booking = booking_factory(total=5000)
    PaymentService.record_payment(db, booking.id, Decimal("3000"), "cash", "recepcion")
    payment = PaymentService.record_payment(db, booking.id, Decimal("2000"), "upi", "recepcion")
    day = operational_date(payment.payment_date)

    for row in _rows(db, day).values():
        assert row["total_revenue"] == Decimal("5000.00")
        assert row["total_bookings"] == 1

    PaymentService.reverse_payment(db, booking.id, Decimal("2000"), "admin")
    for row in _rows(db, day).values():
        assert row["total_revenue"] == Decimal("3000.00")
        assert row["total_bookings"] == 1

    PaymentService.reverse_payment(db, booking.id, Decimal("3000"), "admin")
    for row in _rows(db, day).values():
        assert row["total_revenue"] == Decimal("0.00")
        assert row["total_bookings"] == 0


def test_reversal_is_floored_at_zero(db):
    day = date(2025, 5, 10)
    RevenueService.record_revenue(db, day, PeriodType.DAILY, Decimal("100"))
    row = RevenueService.reverse_revenue(db, day, PeriodType.DAILY, Decimal("150"))

    assert row.total_revenue == Decimal("0.00")
    assert row.total_bookings == 0


def test_strict_reversal_rejects_shortfall(db, monkeypatch):
    monkeypatch.setattr(config, "STRICT_REVENUE_REVERSAL", True)
    day = date(2025, 5, 10)
    RevenueService.record_revenue(db, day, PeriodType.DAILY, Decimal("100"))

    with pytest.raises(InvalidAmount):
        RevenueService.reverse_revenue(db, day, PeriodType.DAILY, Decimal("150"))
    assert RevenueService.get_daily_revenue(db, day)["total_revenue"] == Decimal("100.00")


def test_non_positive_revenue_rejected(db):
    with pytest.raises(InvalidAmount):
        RevenueService.record_revenue(db, date(2025, 1, 1), PeriodType.DAILY, Decimal("0"))


def test_missing_report_reads_as_zero(db):
    report = RevenueService.get_monthly_revenue(db, date(2030, 3, 15))
    assert report["report_date"] == date(2030, 3, 1)
    assert report["total_revenue"] == Decimal("0.00")
    assert report["total_bookings"] == 0


def test_rebuild_restores_tampered_rows(db, no_tax, booking_factory):
    booking = booking_factory(total=800)
    payment = PaymentService.record_payment(db, booking.id, Decimal("800"), "card", "recepcion")
    day = operational_date(payment.payment_date)

    row = db.query(RevenueReport).filter(
        RevenueReport.report_date == day, RevenueReport.period_type == PeriodType.DAILY
    ).one()
    row.total_revenue = Decimal("12345")
    row.accommodation_revenue = Decimal("12345")
    db.commit()

    result = RevenueService.rebuild_revenue_reports(db, day, day)

    assert result["payments_scanned"] == 1
    assert result["rows_rebuilt"] == 3
    for report in _rows(db, day).values():
        assert report["total_revenue"] == Decimal("800.00")
        assert report["total_bookings"] == 1


def test_revenue_report(db, no_tax, booking_factory):
    today = operational_date()
    booking = booking_factory(total=1000, check_in=today)
    PaymentService.record_payment(db, booking.id, Decimal("600"), "cash", "recepcion")
    PaymentService.record_payment(db, booking.id, Decimal("300"), "card", "recepcion")
    PaymentService.reverse_payment(db, booking.id, Decimal("100"), "admin")

    report = RevenueService.generate_revenue_report(db, today, today)

    assert report["gross_revenue"] == Decimal("900.00")
    assert report["reversed_amount"] == Decimal("100.00")
    assert report["total_revenue"] == Decimal("800.00")
    assert report["payment_count"] == 2
    assert report["booking_count"] == 1
    assert report["by_payment_method"] == {"cash": Decimal("600.00"), "card": Decimal("200.00")}
    assert report["outstanding_amount"] == Decimal("200.00")
    assert report["billed_by_category"] == {"accommodation": Decimal("1000.00")}
    assert report["growth_percentage"] is None


def test_report_rejects_inverted_range(db):
    with pytest.raises(ValidationError):
        RevenueService.generate_revenue_report(db, date(2025, 2, 1), date(2025, 1, 1))


def test_trends_fill_missing_days(db, no_tax, booking_factory):
    booking = booking_factory(total=400)
    PaymentService.record_payment(db, booking.id, Decimal("400"), "cash", "recepcion")
    today = operational_date()

    trends = RevenueService.get_revenue_trends(db, days=3, today=today)

    assert [t["day"] for t in trends] == [today - timedelta(days=2), today - timedelta(days=1), today]
    assert [t["revenue"] for t in trends] == [Decimal("0.00"), Decimal("0.00"), Decimal("400.00")]


def test_revenue_update_status(db, no_tax, booking_factory):
    booking = booking_factory(total=400)
    assert RevenueService.get_revenue_update_status(db, booking.id)["revenue_recorded"] is False

    PaymentService.record_payment(db, booking.id, Decimal("150"), "cash", "recepcion")
    status = RevenueService.get_revenue_update_status(db, booking.id)
    assert status["revenue_recorded"] is True
    assert status["net_amount"] == Decimal("150.00")
    assert len(status["buckets"]) == 3


def test_export_csv(db, no_tax, booking_factory):
    booking = booking_factory(total=400)
    payment = PaymentService.record_payment(db, booking.id, Decimal("150"), "cash", "recepcion", payment_reference="R-1")
    today = operational_date()

    content = RevenueService.export_revenue_csv(db, today, today)
    lines = content.strip().splitlines()

    assert lines[0].startswith("Payment ID")
    assert lines[1].startswith(f"{payment.id},")
    assert "150.00" in lines[1]
    assert "R-1" in lines[1]


def test_rebuild_keeps_reversal_on_original_payment_day(db, no_tax, booking_factory):
    booking = booking_factory(total=1000)
    payment = PaymentService.record_payment(
        db, booking.id, Decimal("1000"), "cash", "recepcion",
        payment_date=datetime(2025, 1, 31, 12, 0),
    )
    day = operational_date(payment.payment_date)

    # Reversión en una fecha posterior: resta en el día del pago original
    PaymentService.reverse_payment(db, booking.id, Decimal("400"), "admin")
    before = _rows(db, day)
    for row in before.values():
        assert row["total_revenue"] == Decimal("600.00")

    RevenueService.rebuild_revenue_reports(db, day, day)

    assert _rows(db, day) == before

    report = RevenueService.generate_revenue_report(db, day, day)
    assert report["gross_revenue"] == Decimal("1000.00")
    assert report["reversed_amount"] == Decimal("400.00")
    assert report["total_revenue"] == Decimal("600.00")
    assert [r["total_revenue"] for r in report["daily_reports"]] == [report["total_revenue"]]
