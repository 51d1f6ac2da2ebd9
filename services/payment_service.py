"""
Libro de pagos de reservas
Contiene lógica de negocio para:
- Registro de pagos (con clave de idempotencia)
- Pagos divididos entre varias cuentas internas (todo o nada)
- Reversión auditada de pagos
- Resumen, vencidos y detección de duplicados

Los pagos solo se agregan: una reversión es una fila negativa por cada pago
original que deshace, nunca una edición o borrado.
"""

from collections import OrderedDict, defaultdict
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

import config
from database.conexion import atomic
from models.core import (
    AuditEvent,
    Booking,
    BookingPaymentStatus,
    BookingStatus,
    Invoice,
    Payment,
    PaymentMethod,
    SplitPayment,
    Transaction,
    TransactionCategory,
)
from services.account_service import AccountService
from services.notification_service import NotificationService
from services.reconciliation_service import ReconciliationService, derive_payment_status
from services.revenue_service import RevenueService
from utils.errors import HotelError, InvalidAmount, InvalidState, NotFound, ValidationError
from utils.logging_utils import log_event
from utils.money import ZERO, money


def _positive_amount(amount: Any, **detail) -> Decimal:
    value = money(amount)
    if value <= 0:
        raise InvalidAmount("El monto debe ser mayor a 0", {"amount": str(value), **detail})
    return value


def _payment_method(value: Any) -> PaymentMethod:
    try:
        return PaymentMethod(value)
    except ValueError:
        raise ValidationError(
            "Método de pago inválido",
            {"payment_method": str(value), "allowed": [m.value for m in PaymentMethod]},
        )


class PaymentService:
    """Servicio del libro de pagos"""

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _lock_booking(db: Session, booking_id: int) -> Booking:
        booking = (
            db.query(Booking)
            .filter(Booking.id == booking_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if not booking:
            raise NotFound(f"Reserva {booking_id} no encontrada", {"booking_id": booking_id})
        return booking

    @staticmethod
    def _find_replay(db: Session, booking_id: int, idempotency_key: Optional[str]) -> Optional[Payment]:
        if not idempotency_key:
            return None
        existing = db.query(Payment).filter(Payment.idempotency_key == idempotency_key).first()
        if existing and existing.booking_id != booking_id:
            raise ValidationError(
                "La clave de idempotencia ya se usó para otra reserva",
                {"idempotency_key": idempotency_key, "booking_id": existing.booking_id},
            )
        return existing

    @staticmethod
    def _refresh_payment_status(db: Session, booking: Booking) -> BookingPaymentStatus:
        """Actualiza el estado cacheado de la reserva desde la conciliación."""
        return ReconciliationService.refresh_payment_status(db, booking)

    @staticmethod
    def _account_availability(db: Session, original: Payment) -> List[Tuple[int, Decimal]]:
        """
        Cuánto de un pago original sigue en cada cuenta que lo recibió,
        en orden LIFO (último crédito primero).
        """
        credits = (
            db.query(Transaction)
            .filter(
                Transaction.payment_id == original.id,
                Transaction.category == TransactionCategory.PAYMENT_RECEIVED,
            )
            .order_by(Transaction.id.desc())
            .all()
        )
        reversal_ids = [
            r.id for r in db.query(Payment.id).filter(Payment.reverses_payment_id == original.id).all()
        ]
        debited: Dict[int, Decimal] = defaultdict(lambda: ZERO)
        if reversal_ids:
            debits = db.query(Transaction).filter(
                Transaction.payment_id.in_(reversal_ids),
                Transaction.category == TransactionCategory.PAYMENT_REVERSAL,
            ).all()
            for t in debits:
                debited[t.account_id] = money(debited[t.account_id] + money(t.amount))

        available: "OrderedDict[int, Decimal]" = OrderedDict()
        for t in credits:
            available[t.account_id] = money(available.get(t.account_id, ZERO) + money(t.amount))

        result = []
        for account_id, credited in available.items():
            remaining = money(credited - debited[account_id])
            if remaining > 0:
                result.append((account_id, remaining))
        return result

    # ------------------------------------------------------------------
    # Registro de pagos
    # ------------------------------------------------------------------

    @staticmethod
    def record_payment(
        db: Session,
        booking_id: int,
        amount: Any,
        payment_method: Any,
        received_by: str,
        invoice_id: Optional[int] = None,
        payment_reference: Optional[str] = None,
        notes: Optional[str] = None,
        account_id: Optional[int] = None,
        idempotency_key: Optional[str] = None,
        payment_date: Optional[datetime] = None,
        commit: bool = True,
    ) -> Payment:
        """
        Registra un pago y deposita el dinero en el libro de cuentas

        El depósito va a account_id o, si no se indica, a la cuenta
        principal. En la misma transacción se suman los acumulados de
        ingresos y se actualiza el estado cacheado de la reserva.

        Raises:
            InvalidAmount: monto <= 0
            ValidationError: método de pago inválido o clave reutilizada
            NotFound: reserva, factura o cuenta inexistente
            InvalidState: reserva cancelada
        """
        amount = _positive_amount(amount)
        method = _payment_method(payment_method)

        replay = PaymentService._find_replay(db, booking_id, idempotency_key)
        if replay:
            log_event("pagos", received_by, "Pago repetido ignorado", f"payment_id={replay.id}, clave={idempotency_key}")
            return replay

        with atomic(db, commit):
            booking = PaymentService._lock_booking(db, booking_id)
            if booking.status == BookingStatus.CANCELLED:
                raise InvalidState("La reserva está cancelada", {"booking_id": booking_id})

            if invoice_id is not None:
                invoice = db.query(Invoice).filter(Invoice.id == invoice_id).first()
                if not invoice or invoice.booking_id != booking_id:
                    raise NotFound(f"Factura {invoice_id} no encontrada para la reserva", {"invoice_id": invoice_id})

            net_before = ReconciliationService.total_paid(db, booking_id)
            target_account_id = account_id or AccountService.get_or_create_main_account(db, commit=False).id

            payment = Payment(
                booking_id=booking_id,
                invoice_id=invoice_id,
                amount=amount,
                payment_method=method,
                payment_reference=payment_reference,
                received_by=received_by,
                payment_date=payment_date or datetime.utcnow(),
                notes=notes,
                idempotency_key=idempotency_key,
            )
            db.add(payment)
            db.flush()

            AccountService.deposit(
                db, target_account_id, amount,
                f"Payment for booking #{booking.id} - {booking.guest_name}",
                received_by,
                notes=notes,
                payment_method=method,
                category=TransactionCategory.PAYMENT_RECEIVED,
                related_booking_id=booking.id,
                payment_id=payment.id,
                commit=False,
            )
            RevenueService.record_payment_revenue(
                db, payment.payment_date, amount,
                booking_count=1 if net_before <= 0 else 0,
                commit=False,
            )
            status = PaymentService._refresh_payment_status(db, booking)

        log_event("pagos", received_by, "Pago registrado",
                  f"payment_id={payment.id}, booking_id={booking_id}, monto={amount}, metodo={method.value}, estado={status.value}")
        if commit:
            NotificationService.notify(
                db, "payment_received", "Pago recibido",
                f"Pago de {amount} ({method.value}) para la reserva #{booking_id}",
                {"booking_id": booking_id, "payment_id": payment.id, "amount": amount},
            )
        return payment

    @staticmethod
    def setup_split_payments(
        db: Session,
        booking_id: int,
        splits: List[Dict[str, Any]],
        received_by: str,
        payment_method: Any = PaymentMethod.CASH,
        total_amount: Any = None,
        payment_reference: Optional[str] = None,
        notes: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        commit: bool = True,
    ) -> Tuple[Payment, List[SplitPayment]]:
        """
        Un pago dividido entre N cuentas internas

        La suma de las partes debe coincidir con el total previsto
        (total_amount, o lo que resta del total a cobrar, con impuestos) con tolerancia
        SPLIT_PAYMENT_TOLERANCE. Si falla cualquier parte no queda nada
        escrito; el error indica qué parte (detail.leg).

        Returns:
            (payment, split_rows)
        """
        if not splits:
            raise ValidationError("Se requiere al menos una parte", {"splits": []})

        method = _payment_method(payment_method)
        parsed = []
        seen_accounts = set()
        for index, split in enumerate(splits):
            account_id = split.get("account_id")
            if account_id is None:
                raise ValidationError("Falta la cuenta de la parte", {"leg": {"index": index}})
            if account_id in seen_accounts:
                raise ValidationError("Cuenta repetida en las partes", {"leg": {"index": index, "account_id": account_id}})
            seen_accounts.add(account_id)
            leg_amount = _positive_amount(split.get("amount"), leg={"index": index, "account_id": account_id})
            leg_method = _payment_method(split.get("payment_method") or method)
            parsed.append((index, account_id, leg_amount, leg_method))

        splits_total = money(sum((amount for _, _, amount, _ in parsed), ZERO))

        replay = PaymentService._find_replay(db, booking_id, idempotency_key)
        if replay:
            log_event("pagos", received_by, "Pago dividido repetido ignorado", f"payment_id={replay.id}, clave={idempotency_key}")
            return replay, list(replay.splits)

        with atomic(db, commit):
            booking = PaymentService._lock_booking(db, booking_id)
            if booking.status == BookingStatus.CANCELLED:
                raise InvalidState("La reserva está cancelada", {"booking_id": booking_id})

            net_before = ReconciliationService.total_paid(db, booking_id)
            if total_amount is not None:
                intended = money(total_amount)
            else:
                due = ReconciliationService.amount_due(db, booking)
                intended = max(ZERO, money(due - net_before))

            if abs(splits_total - intended) > config.SPLIT_PAYMENT_TOLERANCE:
                raise ValidationError(
                    "La suma de las partes no coincide con el total",
                    {
                        "splits_total": str(splits_total),
                        "intended_total": str(intended),
                        "difference": str(money(splits_total - intended)),
                    },
                )

            payment = Payment(
                booking_id=booking_id,
                amount=splits_total,
                payment_method=method,
                payment_reference=payment_reference,
                received_by=received_by,
                payment_date=datetime.utcnow(),
                notes=notes,
                is_split=True,
                idempotency_key=idempotency_key,
            )
            db.add(payment)
            db.flush()

            rows = []
            for index, account_id, leg_amount, leg_method in parsed:
                try:
                    transaction, _ = AccountService.deposit(
                        db, account_id, leg_amount,
                        f"Split payment for booking #{booking.id} - {booking.guest_name}",
                        received_by,
                        notes=notes,
                        payment_method=leg_method,
                        category=TransactionCategory.PAYMENT_RECEIVED,
                        related_booking_id=booking.id,
                        payment_id=payment.id,
                        commit=False,
                    )
                except HotelError as e:
                    e.detail.setdefault("leg", {"index": index, "account_id": account_id})
                    raise

                split_row = SplitPayment(
                    payment_id=payment.id,
                    account_id=account_id,
                    transaction_id=transaction.id,
                    amount=leg_amount,
                    payment_method=leg_method,
                )
                db.add(split_row)
                rows.append(split_row)

            db.flush()
            RevenueService.record_payment_revenue(
                db, payment.payment_date, splits_total,
                booking_count=1 if net_before <= 0 else 0,
                commit=False,
            )
            PaymentService._refresh_payment_status(db, booking)

        log_event("pagos", received_by, "Pago dividido registrado",
                  f"payment_id={payment.id}, booking_id={booking_id}, total={splits_total}, partes={len(rows)}")
        if commit:
            NotificationService.notify(
                db, "split_payment_received", "Pago dividido recibido",
                f"Pago de {splits_total} en {len(rows)} cuentas para la reserva #{booking_id}",
                {"booking_id": booking_id, "payment_id": payment.id, "amount": splits_total},
            )
        return payment, rows

    # ------------------------------------------------------------------
    # Reversión
    # ------------------------------------------------------------------

    @staticmethod
    def reverse_payment(
        db: Session,
        booking_id: int,
        amount: Any,
        processed_by: str,
        reason: Optional[str] = None,
        commit: bool = True,
    ) -> Dict[str, Any]:
        """
        Revierte dinero recibido por una reserva

        Deshace pagos en orden LIFO: por cada pago afectado escribe una fila
        negativa, retira el dinero de las cuentas que lo recibieron y resta
        los acumulados de ingresos en la fecha del pago original.

        Raises:
            InvalidAmount: monto <= 0 o mayor al neto recibido
            InsufficientFunds: una cuenta ya no tiene el dinero (nada se aplica)
        """
        amount = _positive_amount(amount)

        with atomic(db, commit):
            booking = PaymentService._lock_booking(db, booking_id)
            payments = ReconciliationService.booking_payments(db, booking_id)
            net_received = money(sum((money(p.amount) for p in payments), ZERO))

            if amount > net_received:
                raise InvalidAmount(
                    "El monto a revertir supera lo recibido",
                    {"booking_id": booking_id, "amount": str(amount), "net_received": str(net_received)},
                )

            already_reversed: Dict[int, Decimal] = defaultdict(lambda: ZERO)
            for p in payments:
                if p.is_reversal and p.reverses_payment_id:
                    already_reversed[p.reverses_payment_id] = money(already_reversed[p.reverses_payment_id] - money(p.amount))

            originals = sorted(
                (p for p in payments if not p.is_reversal),
                key=lambda p: (p.payment_date, p.id),
                reverse=True,
            )
            allocations = []
            pending = amount
            for original in originals:
                available = money(money(original.amount) - already_reversed[original.id])
                if available <= 0:
                    continue
                take = min(available, pending)
                allocations.append((original, take))
                pending = money(pending - take)
                if pending <= 0:
                    break

            net_after = money(net_received - amount)
            now = datetime.utcnow()
            reversals = []
            transactions = []

            for position, (original, take) in enumerate(allocations):
                reversal = Payment(
                    booking_id=booking_id,
                    invoice_id=original.invoice_id,
                    amount=-take,
                    payment_method=original.payment_method,
                    payment_reference=f"REV-{original.id}",
                    received_by=processed_by,
                    payment_date=now,
                    notes=reason,
                    is_reversal=True,
                    reverses_payment_id=original.id,
                )
                db.add(reversal)
                db.flush()
                reversals.append(reversal)

                to_withdraw = take
                for account_id, available in PaymentService._account_availability(db, original):
                    part = min(available, to_withdraw)
                    try:
                        transaction, _ = AccountService.withdraw(
                            db, account_id, part,
                            f"Payment reversal for booking #{booking.id} - {booking.guest_name}",
                            processed_by,
                            notes=reason,
                            payment_method=original.payment_method,
                            category=TransactionCategory.PAYMENT_REVERSAL,
                            related_booking_id=booking.id,
                            payment_id=reversal.id,
                            commit=False,
                        )
                    except HotelError as e:
                        e.detail.setdefault("leg", {"payment_id": original.id, "account_id": account_id})
                        raise
                    transactions.append(transaction)
                    to_withdraw = money(to_withdraw - part)
                    if to_withdraw <= 0:
                        break

                if to_withdraw > 0:
                    raise InvalidState(
                        "El libro no registra el dinero del pago original",
                        {"payment_id": original.id, "missing": str(to_withdraw)},
                    )

                last = position == len(allocations) - 1
                RevenueService.reverse_payment_revenue(
                    db, original.payment_date, take,
                    booking_count=1 if (last and net_after <= 0) else 0,
                    commit=False,
                )

            db.add(AuditEvent(
                entity_type="booking",
                entity_id=booking_id,
                action="PAYMENT_REVERSAL",
                usuario=processed_by,
                descripcion=reason,
                payload={
                    "amount": str(amount),
                    "reversed_payments": [o.id for o, _ in allocations],
                    "reversal_rows": [r.id for r in reversals],
                },
            ))
            status = PaymentService._refresh_payment_status(db, booking)

        log_event("pagos", processed_by, "Pago revertido",
                  f"booking_id={booking_id}, monto={amount}, neto={net_after}, estado={status.value}, motivo={reason}")
        if commit:
            NotificationService.notify(
                db, "payment_reversed", "Pago revertido",
                f"Se revirtieron {amount} de la reserva #{booking_id}",
                {"booking_id": booking_id, "amount": amount, "reason": reason},
            )
        return {
            "booking_id": booking_id,
            "amount": amount,
            "net_received": net_after,
            "payment_status": status,
            "reversals": reversals,
            "transactions": transactions,
        }

    # ------------------------------------------------------------------
    # Consultas
    # ------------------------------------------------------------------

    @staticmethod
    def get_payment_history(db: Session, booking_id: int) -> List[Payment]:
        ReconciliationService.get_booking(db, booking_id)
        return (
            db.query(Payment)
            .filter(Payment.booking_id == booking_id)
            .order_by(Payment.payment_date.desc(), Payment.id.desc())
            .all()
        )

    @staticmethod
    def get_payment_summary(db: Session, booking_id: int) -> Dict[str, Any]:
        ReconciliationService.get_booking(db, booking_id)
        payments = ReconciliationService.booking_payments(db, booking_id)
        billable, source = ReconciliationService.billable_amount(db, booking_id)
        total_paid = money(sum((money(p.amount) for p in payments), ZERO))

        by_method: Dict[str, Decimal] = defaultdict(lambda: ZERO)
        for p in payments:
            by_method[p.payment_method.value] = money(by_method[p.payment_method.value] + money(p.amount))

        return {
            "booking_id": booking_id,
            "billable_amount": billable,
            "billable_source": source,
            "total_paid": total_paid,
            "remaining_amount": max(ZERO, money(billable - total_paid)),
            "payment_status": derive_payment_status(total_paid, billable),
            "payment_count": sum(1 for p in payments if not p.is_reversal),
            "reversal_count": sum(1 for p in payments if p.is_reversal),
            "by_payment_method": dict(by_method),
            "last_payment_date": max((p.payment_date for p in payments), default=None),
        }

    @staticmethod
    def update_overdue_payments(
        db: Session,
        today: Optional[date] = None,
        processed_by: str = "system",
        commit: bool = True,
    ) -> int:
        """Marca overdue las reservas con check-out vencido y saldo pendiente."""
        today = today or date.today()
        with atomic(db, commit):
            bookings = (
                db.query(Booking)
                .filter(
                    Booking.check_out < today,
                    Booking.status != BookingStatus.CANCELLED,
                    Booking.payment_status.in_([BookingPaymentStatus.PENDING, BookingPaymentStatus.PARTIALLY_PAID]),
                )
                .with_for_update()
                .all()
            )
            for booking in bookings:
                booking.payment_status = BookingPaymentStatus.OVERDUE

        if bookings:
            log_event("pagos", processed_by, "Reservas marcadas como vencidas",
                      f"cantidad={len(bookings)}, ids={[b.id for b in bookings]}")
        return len(bookings)

    @staticmethod
    def find_duplicate_payments(
        db: Session,
        window_minutes: Optional[int] = None,
        booking_id: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Reporte (solo lectura) de pagos sospechosos de duplicado: misma
        reserva, monto y método dentro de la ventana. No borra nada; el
        operador decide si revierte.
        """
        window = timedelta(minutes=window_minutes if window_minutes is not None else config.DUPLICATE_PAYMENT_WINDOW_MINUTES)
        query = db.query(Payment).filter(Payment.is_reversal.is_(False))
        if booking_id is not None:
            query = query.filter(Payment.booking_id == booking_id)
        payments = query.order_by(Payment.booking_id, Payment.payment_date, Payment.id).all()

        groups: Dict[tuple, List[Payment]] = defaultdict(list)
        for p in payments:
            groups[(p.booking_id, money(p.amount), p.payment_method)].append(p)

        duplicates = []
        for (group_booking, amount, method), rows in groups.items():
            cluster = [rows[0]]
            for p in rows[1:]:
                if p.payment_date - cluster[-1].payment_date <= window:
                    cluster.append(p)
                    continue
                if len(cluster) > 1:
                    duplicates.append(_duplicate_entry(group_booking, amount, method, cluster))
                cluster = [p]
            if len(cluster) > 1:
                duplicates.append(_duplicate_entry(group_booking, amount, method, cluster))
        return duplicates


def _duplicate_entry(booking_id: int, amount: Decimal, method: PaymentMethod, cluster: List[Payment]) -> Dict[str, Any]:
    return {
        "booking_id": booking_id,
        "amount": amount,
        "payment_method": method,
        "payment_ids": [p.id for p in cluster],
        "first_payment_date": cluster[0].payment_date,
        "last_payment_date": cluster[-1].payment_date,
        "excess_amount": money(amount * (len(cluster) - 1)),
    }
