"""
Servicios de negocio de facturación, pagos y libro de cuentas
"""

from .account_service import AccountService
from .billing_service import BillingService
from .invoice_service import InvoiceService
from .notification_service import NotificationService
from .payment_service import PaymentService
from .reconciliation_service import ReconciliationService
from .revenue_service import RevenueService

__all__ = [
    "AccountService",
    "BillingService",
    "InvoiceService",
    "NotificationService",
    "PaymentService",
    "ReconciliationService",
    "RevenueService",
]
