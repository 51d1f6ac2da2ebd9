#!/usr/bin/env python
"""
Script para listar pagos sospechosos de duplicado (misma reserva, monto y
método dentro de la ventana). Solo reporta: para deshacer un duplicado
usar POST /accounts/reverse-payment.

Ejecutar: python scripts/find_duplicate_payments.py [minutos]
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database.conexion import SessionLocal
import models  # noqa: F401  registra todos los modelos
from services.payment_service import PaymentService


def main():
    window = int(sys.argv[1]) if len(sys.argv) > 1 else None
    db = SessionLocal()
    try:
        grupos = PaymentService.find_duplicate_payments(db, window_minutes=window)
        if not grupos:
            print("✓ No se encontraron pagos duplicados")
            return

        print(f"=== {len(grupos)} grupos de pagos sospechosos ===")
        for g in grupos:
            print(f"Reserva {g['booking_id']}: {len(g['payment_ids'])} x {g['amount']} ({g['payment_method'].value})")
            print(f"   pagos={g['payment_ids']} | desde {g['first_payment_date']} hasta {g['last_payment_date']}")
            print(f"   exceso={g['excess_amount']}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
