"""
Archivo de inicialización del paquete models.
Expone todas las clases para que SQLAlchemy (Base.metadata) las detecte
al importar 'models'.
"""

# 1. Usuarios (desde usuario.py)
from .usuario import Usuario

# 2. Facturación, pagos y libro de cuentas (desde core.py)
from .core import (
    HotelSettings,
    Service,
    Booking,
    BillItem,
    Invoice,
    InvoiceItem,
    Payment,
    SplitPayment,
    BankAccount,
    Transaction,
    RevenueReport,
    Notification,
    AuditEvent,
    BookingStatus,
    BookingPaymentStatus,
    PaymentMethod,
    ServiceCategory,
    BillItemType,
    InvoiceStatus,
    AccountType,
    TransactionType,
    TransactionCategory,
    PeriodType,
)

__all__ = [
    "Usuario",
    "HotelSettings",
    "Service",
    "Booking",
    "BillItem",
    "Invoice",
    "InvoiceItem",
    "Payment",
    "SplitPayment",
    "BankAccount",
    "Transaction",
    "RevenueReport",
    "Notification",
    "AuditEvent",
    "BookingStatus",
    "BookingPaymentStatus",
    "PaymentMethod",
    "ServiceCategory",
    "BillItemType",
    "InvoiceStatus",
    "AccountType",
    "TransactionType",
    "TransactionCategory",
    "PeriodType",
]
