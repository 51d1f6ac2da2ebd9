from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def _safe_decimal(value: Any, default: Optional[Decimal] = None) -> Decimal:
    """Convierte a Decimal sin perder precisión (float pasa por str)."""
    if value is None:
        return default if default is not None else Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default if default is not None else Decimal("0")


def money(value: Any) -> Decimal:
    """Redondeo monetario: 2 decimales, half-up."""
    return _safe_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value: Any) -> str:
    return str(money(value))
