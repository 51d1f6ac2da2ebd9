"""
Configuración general del backend de facturación y libro de cuentas
"""
import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "si")


# Base de datos
DATABASE_URL = os.getenv("DATABASE_URL")
DB_USER = os.getenv("DB_USER")
DB_PASSWORD = os.getenv("DB_PASSWORD")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME")

# JWT
SECRET_KEY = os.getenv("SECRET_KEY", "cambiar-esta-clave-en-produccion")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

# Impuestos por defecto (si no hay fila en hotel_settings)
DEFAULT_GST_PERCENTAGE = Decimal(os.getenv("DEFAULT_GST_PERCENTAGE", "18"))
DEFAULT_SERVICE_TAX_PERCENTAGE = Decimal(os.getenv("DEFAULT_SERVICE_TAX_PERCENTAGE", "0"))
DEFAULT_TAX_ENABLED = _env_bool("DEFAULT_TAX_ENABLED", "true")

# Pagos y libro de cuentas
SPLIT_PAYMENT_TOLERANCE = Decimal(os.getenv("SPLIT_PAYMENT_TOLERANCE", "0.01"))
ALLOW_MAIN_ACCOUNT_OVERDRAFT = _env_bool("ALLOW_MAIN_ACCOUNT_OVERDRAFT")
STRICT_REVENUE_REVERSAL = _env_bool("STRICT_REVENUE_REVERSAL")
DUPLICATE_PAYMENT_WINDOW_MINUTES = int(os.getenv("DUPLICATE_PAYMENT_WINDOW_MINUTES", "5"))
MAIN_ACCOUNT_NAME = os.getenv("MAIN_ACCOUNT_NAME", "Main Hotel Account")

# Facturas
INVOICE_PREFIX = os.getenv("INVOICE_PREFIX", "INV")

# Zona horaria operativa del hotel
HOTEL_TIMEZONE = os.getenv("HOTEL_TIMEZONE", "America/Argentina/Buenos_Aires")

# HTTP
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if origin.strip()
]
RATE_LIMIT_DEFAULT = os.getenv("RATE_LIMIT_DEFAULT", "100/minute")
MONEY_RATE_LIMIT = os.getenv("MONEY_RATE_LIMIT", "30/minute")

# Logs
LOG_FILE = os.getenv("LOG_FILE", "hotel_logs.txt")
