from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column,
    Integer,
    String,
    Date,
    DateTime,
    Boolean,
    ForeignKey,
    Text,
    UniqueConstraint,
    Index,
    Numeric,
    JSON,
    CheckConstraint,
    text,
    Enum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from database.conexion import Base
import enum

# JSONB en Postgres, JSON genérico en el resto (SQLite en tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum_values(obj):
    return [e.value for e in obj]


# ============================================================================
# ENUMS
# ============================================================================

class BookingStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    CANCELLED = "cancelled"


class BookingPaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"


class PaymentMethod(str, enum.Enum):
    """Métodos de pago aceptados"""
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    BANK_TRANSFER = "bank_transfer"
    ONLINE_GATEWAY = "online_gateway"
    CHEQUE = "cheque"
    WALLET = "wallet"


class ServiceCategory(str, enum.Enum):
    ACCOMMODATION = "accommodation"
    FOOD_BEVERAGE = "food_beverage"
    SPA = "spa"
    TRANSPORT = "transport"
    LAUNDRY = "laundry"
    MINIBAR = "minibar"
    CONFERENCE = "conference"
    OTHER = "other"


class BillItemType(str, enum.Enum):
    ROOM = "room"
    SERVICE = "service"


class InvoiceStatus(str, enum.Enum):
    ISSUED = "issued"
    PAID = "paid"
    CANCELLED = "cancelled"


class AccountType(str, enum.Enum):
    MAIN = "main"
    CURRENT = "current"
    PETTY_CASH = "petty_cash"
    ONLINE_PAYMENTS = "online_payments"
    SAVINGS = "savings"


class TransactionType(str, enum.Enum):
    """Dirección del movimiento sobre el saldo"""
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionCategory(str, enum.Enum):
    MANUAL_DEPOSIT = "manual_deposit"
    MANUAL_WITHDRAWAL = "manual_withdrawal"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_REVERSAL = "payment_reversal"
    STAFF_CREDIT = "staff_credit"
    TRANSACTION_REVERSAL = "transaction_reversal"


class PeriodType(str, enum.Enum):
    DAILY = "daily"
    MONTHLY = "monthly"
    YEARLY = "yearly"


# ============================================================================
# CONFIGURACIÓN DEL HOTEL
# ============================================================================

class HotelSettings(Base):
    __tablename__ = "hotel_settings"

    id = Column(Integer, primary_key=True)
    hotel_name = Column(String(150), nullable=False, default="Hotel")
    invoice_prefix = Column(String(10), nullable=True)

    gst_percentage = Column(Numeric(5, 2), nullable=False, default=Decimal("18"))
    service_tax_percentage = Column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    other_taxes = Column(JSONType, nullable=True)  # [{"name": "City Tax", "percentage": 2}]
    tax_enabled = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)


# ============================================================================
# RESERVAS Y CARGOS
# ============================================================================

class Service(Base):
    """Catálogo de servicios cobrables (spa, minibar, lavandería...)"""
    __tablename__ = "services"
    __table_args__ = (
        Index("idx_service_category", "category"),
    )

    id = Column(Integer, primary_key=True)
    name = Column(String(120), nullable=False)
    category = Column(Enum(ServiceCategory, values_callable=_enum_values), nullable=False, default=ServiceCategory.OTHER)
    price = Column(Numeric(12, 2), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    bill_items = relationship("BillItem", back_populates="service")


class Booking(Base):
    """
    Reserva. El ciclo de vida pertenece al módulo de reservas; facturación
    solo escribe los totales cacheados (base, impuestos, total) y el estado
    de pago cacheado.
    """
    __tablename__ = "bookings"
    __table_args__ = (
        Index("idx_booking_status", "status"),
        Index("idx_booking_payment_status", "payment_status"),
        Index("idx_booking_checkout", "check_out"),
    )

    id = Column(Integer, primary_key=True)
    guest_name = Column(String(150), nullable=False)
    guest_email = Column(String(150), nullable=True)
    room_number = Column(String(10), nullable=True)
    room_type = Column(String(60), nullable=True)
    check_in = Column(Date, nullable=False)
    check_out = Column(Date, nullable=False)
    status = Column(Enum(BookingStatus, values_callable=_enum_values), nullable=False, default=BookingStatus.CONFIRMED)

    # Descuento de promo (antes de impuestos)
    promo_code = Column(String(40), nullable=True)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    # Totales cacheados: único escritor BillingService.recalculate_booking_total
    base_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    tax_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    payment_status = Column(
        Enum(BookingPaymentStatus, values_callable=_enum_values),
        nullable=False,
        default=BookingPaymentStatus.PENDING,
    )

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    bill_items = relationship("BillItem", back_populates="booking", order_by="BillItem.id")
    invoices = relationship("Invoice", back_populates="booking", order_by="Invoice.id")
    payments = relationship("Payment", back_populates="booking", order_by="Payment.id")

    @property
    def nights(self) -> int:
        return max(1, (self.check_out - self.check_in).days)


class BillItem(Base):
    __tablename__ = "bill_items"
    __table_args__ = (
        Index("idx_bill_item_booking", "booking_id"),
        CheckConstraint("quantity > 0", name="ck_bill_item_quantity_positive"),
    )

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    service_id = Column(Integer, ForeignKey("services.id", ondelete="SET NULL"), nullable=True)
    item_type = Column(Enum(BillItemType, values_callable=_enum_values), nullable=False, default=BillItemType.SERVICE)

    description = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False)
    discount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    final_amount = Column(Numeric(12, 2), nullable=False)

    added_by = Column(String(50), nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    booking = relationship("Booking", back_populates="bill_items")
    service = relationship("Service", back_populates="bill_items")


# ============================================================================
# FACTURAS
# ============================================================================

class Invoice(Base):
    """Foto congelada del total facturable. Solo cambian status y email_sent."""
    __tablename__ = "invoices"
    __table_args__ = (
        Index("idx_invoice_booking", "booking_id"),
        Index("idx_invoice_status", "status"),
    )

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="RESTRICT"), nullable=False)
    invoice_number = Column(String(40), nullable=False, unique=True)

    subtotal = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    tax_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_amount = Column(Numeric(12, 2), nullable=False)
    tax_breakdown = Column(JSONType, nullable=True)

    status = Column(Enum(InvoiceStatus, values_callable=_enum_values), nullable=False, default=InvoiceStatus.ISSUED)
    email_sent = Column(Boolean, default=False, nullable=False)
    issued_by = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    booking = relationship("Booking", back_populates="invoices")
    items = relationship("InvoiceItem", back_populates="invoice", cascade="all, delete-orphan", order_by="InvoiceItem.id")


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)

    invoice = relationship("Invoice", back_populates="items")


# ============================================================================
# PAGOS
# ============================================================================

class Payment(Base):
    """
    Pago contra una reserva. Solo se agrega: una reversión es una fila nueva
    con monto negativo (is_reversal=True), nunca se edita ni borra historial.
    """
    __tablename__ = "payments"
    __table_args__ = (
        Index("idx_payment_booking", "booking_id"),
        Index("idx_payment_date", "payment_date"),
        Index("idx_payment_method", "payment_method"),
    )

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="RESTRICT"), nullable=False)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True)

    amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(Enum(PaymentMethod, values_callable=_enum_values), nullable=False)
    payment_reference = Column(String(255), nullable=True)
    received_by = Column(String(50), nullable=False)
    payment_date = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    notes = Column(Text, nullable=True)

    is_reversal = Column(Boolean, default=False, nullable=False)
    reverses_payment_id = Column(Integer, ForeignKey("payments.id", ondelete="RESTRICT"), nullable=True, index=True)
    is_split = Column(Boolean, default=False, nullable=False)
    idempotency_key = Column(String(120), nullable=True, unique=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    booking = relationship("Booking", back_populates="payments")
    invoice = relationship("Invoice")
    splits = relationship("SplitPayment", back_populates="payment", order_by="SplitPayment.id")
    reverses = relationship("Payment", remote_side=[id])


class SplitPayment(Base):
    __tablename__ = "split_payments"
    __table_args__ = (
        Index("idx_split_payment", "payment_id"),
        CheckConstraint("amount > 0", name="ck_split_amount_positive"),
    )

    id = Column(Integer, primary_key=True)
    payment_id = Column(Integer, ForeignKey("payments.id", ondelete="CASCADE"), nullable=False)
    account_id = Column(Integer, ForeignKey("bank_accounts.id", ondelete="RESTRICT"), nullable=False)
    transaction_id = Column(Integer, ForeignKey("transactions.id", ondelete="RESTRICT"), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(Enum(PaymentMethod, values_callable=_enum_values), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    payment = relationship("Payment", back_populates="splits")
    account = relationship("BankAccount")


# ============================================================================
# LIBRO DE CUENTAS
# ============================================================================

class BankAccount(Base):
    """
    Cuenta interna. balance es una caché del libro: solo AccountService la
    escribe, siempre junto con una fila de Transaction.
    """
    __tablename__ = "bank_accounts"
    __table_args__ = (
        Index("idx_bank_account_type", "account_type"),
        # Una sola cuenta principal
        Index(
            "uq_bank_account_main",
            "is_main_account",
            unique=True,
            postgresql_where=text("is_main_account"),
            sqlite_where=text("is_main_account = 1"),
        ),
    )

    id = Column(Integer, primary_key=True)
    account_name = Column(String(120), nullable=False)
    account_type = Column(Enum(AccountType, values_callable=_enum_values), nullable=False, default=AccountType.CURRENT)
    balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    is_main_account = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    description = Column(Text, nullable=True)

    user_id = Column(Integer, ForeignKey("usuarios.id", ondelete="SET NULL"), nullable=True, unique=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("Usuario", back_populates="bank_account")
    transactions = relationship("Transaction", back_populates="account", order_by="Transaction.id")


class Transaction(Base):
    """Asiento inmutable del libro de cuentas"""
    __tablename__ = "transactions"
    __table_args__ = (
        Index("idx_transaction_account", "account_id"),
        Index("idx_transaction_created", "created_at"),
        Index("idx_transaction_booking", "related_booking_id"),
        Index("idx_transaction_correlation", "correlation_id"),
        CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
    )

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("bank_accounts.id", ondelete="RESTRICT"), nullable=False)

    type = Column(Enum(TransactionType, values_callable=_enum_values), nullable=False)
    category = Column(Enum(TransactionCategory, values_callable=_enum_values), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    balance_after = Column(Numeric(12, 2), nullable=False)

    description = Column(String(255), nullable=False)
    notes = Column(Text, nullable=True)
    payment_method = Column(Enum(PaymentMethod, values_callable=_enum_values), nullable=True)
    processed_by = Column(String(50), nullable=False)

    related_booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True)
    payment_id = Column(Integer, ForeignKey("payments.id", ondelete="SET NULL"), nullable=True)
    correlation_id = Column(String(36), nullable=True)
    reverses_transaction_id = Column(Integer, ForeignKey("transactions.id", ondelete="RESTRICT"), nullable=True, unique=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    account = relationship("BankAccount", back_populates="transactions")
    reverses = relationship("Transaction", remote_side=[id])

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.type == TransactionType.CREDIT else -self.amount


# ============================================================================
# REPORTES DE INGRESOS
# ============================================================================

class RevenueReport(Base):
    """
    Acumulado por período (día, mes, año). No es autoritativo: se puede
    reconstruir desde payments.
    """
    __tablename__ = "revenue_reports"
    __table_args__ = (
        UniqueConstraint("report_date", "period_type", name="uq_revenue_report_period"),
        Index("idx_revenue_report_period", "period_type", "report_date"),
    )

    id = Column(Integer, primary_key=True)
    report_date = Column(Date, nullable=False)
    period_type = Column(Enum(PeriodType, values_callable=_enum_values), nullable=False)
    accommodation_revenue = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_revenue = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_bookings = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)


# ============================================================================
# NOTIFICACIONES Y AUDITORÍA
# ============================================================================

class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notification_read", "is_read"),
    )

    id = Column(Integer, primary_key=True)
    event_type = Column(String(50), nullable=False)
    title = Column(String(150), nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(JSONType, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)


class AuditEvent(Base):
    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
    )

    id = Column(Integer, primary_key=True)

    # "booking" | "bill_item" | "payment" | "transaction"
    entity_type = Column(String(30), nullable=False)
    entity_id = Column(Integer, nullable=False)

    action = Column(String(50), nullable=False)  # POST_INVOICE_EDIT, PAYMENT_REVERSAL...
    usuario = Column(String(50), nullable=True)

    timestamp = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    descripcion = Column(Text, nullable=True)
    payload = Column(JSONType, nullable=True)
