"""
Excepciones de dominio para facturación y libro de cuentas.

Los servicios lanzan estas excepciones; main.py las traduce a respuestas
JSON con el código HTTP correspondiente.
"""
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError


class HotelError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "detail": self.detail}


class ValidationError(HotelError):
    status_code = 400
    code = "validation_error"


class InvalidAmount(ValidationError):
    code = "invalid_amount"


class InsufficientFunds(HotelError):
    status_code = 400
    code = "insufficient_funds"


class Unauthorized(HotelError):
    status_code = 401
    code = "unauthorized"


class Forbidden(HotelError):
    status_code = 403
    code = "forbidden"


class NotFound(HotelError):
    status_code = 404
    code = "not_found"


class InvalidState(HotelError):
    status_code = 409
    code = "invalid_state"


class InternalError(HotelError):
    pass


# Errores con handler propio en main.py; los endpoints los dejan pasar
HANDLED_ERRORS = (HotelError, IntegrityError)
