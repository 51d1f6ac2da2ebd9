#!/usr/bin/env python
"""
Script para auditar el libro de cuentas: saldo cacheado vs suma de asientos
Ejecutar: python scripts/audit_ledger.py [--fix]
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database.conexion import SessionLocal
import models  # noqa: F401  registra todos los modelos
from services.account_service import AccountService


def auditar(fix: bool = False) -> int:
    db = SessionLocal()
    try:
        print("=== Auditoría del libro de cuentas ===")
        inconsistentes = 0
        for entry in AccountService.verify_ledger(db):
            marca = "✓" if entry["consistent"] else "✗"
            print(f"{marca} Cuenta {entry['account_id']:3d} | {entry['account_name']:30s} | "
                  f"saldo={entry['balance']} | libro={entry['ledger_sum']}")
            if not entry["consistent"]:
                inconsistentes += 1
                if fix:
                    antes, ahora = AccountService.recompute_balance(db, entry["account_id"], processed_by="audit_script")
                    print(f"    corregido: {antes} -> {ahora}")

        print(f"\nCuentas inconsistentes: {inconsistentes}")
        return inconsistentes
    finally:
        db.close()


if __name__ == "__main__":
    resultado = auditar(fix="--fix" in sys.argv)
    sys.exit(1 if resultado and "--fix" not in sys.argv else 0)
