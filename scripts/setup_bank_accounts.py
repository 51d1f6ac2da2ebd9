#!/usr/bin/env python
"""
Script para crear la cuenta principal del hotel y una cuenta por cada
usuario activo que todavía no tenga
Ejecutar: python scripts/setup_bank_accounts.py
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database.conexion import Base, SessionLocal, engine
import models  # noqa: F401  registra todos los modelos
from models.usuario import Usuario
from services.account_service import AccountService


def setup():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        main_account = AccountService.get_or_create_main_account(db)
        print(f"✓ Cuenta principal: {main_account.account_name} (id={main_account.id})")

        creadas = 0
        for user in db.query(Usuario).filter(Usuario.activo.is_(True)).order_by(Usuario.id).all():
            if user.bank_account:
                continue
            account = AccountService.get_or_create_user_account(db, user.id)
            print(f"   + {account.account_name} (id={account.id})")
            creadas += 1

        print(f"\nCuentas de usuario creadas: {creadas}")
    except Exception as e:
        db.rollback()
        print(f"✗ Error: {e}")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    setup()
