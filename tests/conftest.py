"""
Fixtures compartidas: base SQLite en memoria, usuarios, reservas y cliente HTTP
"""
import os
import sys
import tempfile
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path

# Agregar directorio raíz al PYTHONPATH para imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# Configuración de test antes de importar config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["HOTEL_TIMEZONE"] = "UTC"
os.environ["LOG_FILE"] = str(Path(tempfile.gettempdir()) / "hotel_billing_tests.log")
os.environ["RATE_LIMIT_DEFAULT"] = "1000/minute"
os.environ["MONEY_RATE_LIMIT"] = "1000/minute"

import pytest
from fastapi.testclient import TestClient

from database.conexion import Base, SessionLocal, engine, get_db
import models  # noqa: F401
from models.core import BillItemType, Booking, HotelSettings
from models.usuario import Usuario
from services.account_service import AccountService
from services.billing_service import BillingService
from utils.dependencies import get_current_user


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def no_tax(db):
    """Hotel sin impuestos: total de la cuenta = suma de ítems."""
    settings = HotelSettings(
        hotel_name="Hotel Test",
        invoice_prefix="INV",
        gst_percentage=Decimal("0"),
        service_tax_percentage=Decimal("0"),
        tax_enabled=False,
    )
    db.add(settings)
    db.commit()
    return settings


@pytest.fixture
def gst_18(db):
    settings = HotelSettings(
        hotel_name="Hotel Test",
        invoice_prefix="INV",
        gst_percentage=Decimal("18"),
        service_tax_percentage=Decimal("0"),
        tax_enabled=True,
    )
    db.add(settings)
    db.commit()
    return settings


@pytest.fixture
def user_factory(db):
    counter = {"n": 0}

    def _make(rol="STAFF", username=None, activo=True):
        counter["n"] += 1
        user = Usuario(
            username=username or f"user{counter['n']}",
            email=f"user{counter['n']}@hotel.test",
            nombre="Test",
            apellido=f"User{counter['n']}",
            rol=rol,
            activo=activo,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def admin(user_factory):
    return user_factory(rol="ADMIN", username="admin")


@pytest.fixture
def staff(user_factory):
    return user_factory(rol="STAFF", username="recepcion")


@pytest.fixture
def booking_factory(db):
    def _make(total=None, nights=2, discount=Decimal("0"), **kwargs):
        check_in = kwargs.pop("check_in", date.today())
        booking = Booking(
            guest_name=kwargs.pop("guest_name", "Juan Perez"),
            guest_email="juan@example.com",
            room_number="101",
            room_type="Deluxe",
            check_in=check_in,
            check_out=kwargs.pop("check_out", check_in + timedelta(days=nights)),
            discount_amount=discount,
            **kwargs,
        )
        db.add(booking)
        db.commit()
        if total is not None:
            BillingService.add_item(
                db, booking.id,
                description="Alojamiento",
                unit_price=Decimal(str(total)),
                item_type=BillItemType.ROOM,
                added_by="test",
            )
        return booking

    return _make


@pytest.fixture
def account_factory(db, user_factory):
    def _make(balance=Decimal("0"), user=None):
        owner = user or user_factory()
        account = AccountService.create_account(db, f"Cuenta {owner.username}", user_id=owner.id)
        if balance:
            AccountService.deposit(db, account.id, balance, "Saldo inicial", "test")
        return account

    return _make


@pytest.fixture
def client_factory(db):
    """Cliente HTTP con la sesión de test y, opcionalmente, un usuario fijo."""
    from main import app

    def _override_db():
        yield db

    def _make(user=None):
        app.dependency_overrides[get_db] = _override_db
        if user is not None:
            app.dependency_overrides[get_current_user] = lambda: user
        else:
            app.dependency_overrides.pop(get_current_user, None)
        return TestClient(app)

    yield _make
    app.dependency_overrides.clear()
