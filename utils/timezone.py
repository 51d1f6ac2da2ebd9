from datetime import date, datetime
import pytz

import config

# Zona horaria operativa del hotel (define a qué día/mes/año pertenece un pago)
HOTEL_TZ = pytz.timezone(config.HOTEL_TIMEZONE)


def get_hotel_now() -> datetime:
    """Returns current time in Hotel Timezone"""
    return datetime.now(HOTEL_TZ)


def to_hotel_time(dt: datetime) -> datetime:
    """Converts a datetime to Hotel Timezone"""
    if dt.tzinfo is None:
        # Naive = UTC (así se guardan con datetime.utcnow)
        return pytz.utc.localize(dt).astimezone(HOTEL_TZ)
    return dt.astimezone(HOTEL_TZ)


def operational_date(dt: datetime = None) -> date:
    """Fecha operativa del hotel para un instante (o ahora)."""
    if dt is None:
        return get_hotel_now().date()
    return to_hotel_time(dt).date()
