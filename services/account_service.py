"""
Libro de cuentas interno
Contiene lógica de negocio para:
- Cuenta principal del hotel y cuentas por usuario
- Depósitos, retiros y transferencias (cada movimiento = un asiento)
- Reversión de asientos
- Auditoría: saldo cacheado vs suma del libro

Regla central: BankAccount.balance solo se modifica acá, siempre junto con
una fila de Transaction. El libro es la fuente de verdad.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import case, func
from sqlalchemy.orm import Session

import config
from database.conexion import atomic
from models.core import (
    AccountType,
    AuditEvent,
    BankAccount,
    Booking,
    PaymentMethod,
    Transaction,
    TransactionCategory,
    TransactionType,
)
from models.usuario import Usuario
from utils.errors import HotelError, InsufficientFunds, InvalidAmount, InvalidState, NotFound, ValidationError
from utils.logging_utils import log_event
from utils.money import ZERO, money

# Categorías que solo maneja el libro de pagos (reverse-payment)
PAYMENT_CATEGORIES = (TransactionCategory.PAYMENT_RECEIVED, TransactionCategory.PAYMENT_REVERSAL)
TRANSFER_CATEGORIES = (TransactionCategory.TRANSFER_IN, TransactionCategory.TRANSFER_OUT)


def _signed_amount_expr():
    return case(
        (Transaction.type == TransactionType.CREDIT, Transaction.amount),
        else_=-Transaction.amount,
    )


def _positive_amount(amount: Any) -> Decimal:
    value = money(amount)
    if value <= 0:
        raise InvalidAmount("El monto debe ser mayor a 0", {"amount": str(value)})
    return value


class AccountService:
    """Servicio del libro de cuentas"""

    # ------------------------------------------------------------------
    # Lectura y alta de cuentas
    # ------------------------------------------------------------------

    @staticmethod
    def get_account(db: Session, account_id: int) -> BankAccount:
        account = db.query(BankAccount).filter(BankAccount.id == account_id).first()
        if not account:
            raise NotFound(f"Cuenta {account_id} no encontrada", {"account_id": account_id})
        return account

    @staticmethod
    def list_accounts(db: Session, include_inactive: bool = False) -> List[BankAccount]:
        query = db.query(BankAccount)
        if not include_inactive:
            query = query.filter(BankAccount.is_active.is_(True))
        return query.order_by(BankAccount.is_main_account.desc(), BankAccount.id).all()

    @staticmethod
    def create_account(
        db: Session,
        account_name: str,
        account_type: AccountType = AccountType.CURRENT,
        user_id: Optional[int] = None,
        description: Optional[str] = None,
        is_main_account: bool = False,
        processed_by: str = "system",
        commit: bool = True,
    ) -> BankAccount:
        """
        Crea una cuenta con saldo 0. Toda cuenta activa que no es la
        principal pertenece a un usuario.
        """
        with atomic(db, commit):
            if is_main_account:
                if db.query(BankAccount).filter(BankAccount.is_main_account.is_(True)).first():
                    raise InvalidState("Ya existe una cuenta principal")
            else:
                if user_id is None:
                    raise ValidationError("Las cuentas que no son la principal deben pertenecer a un usuario")
                if not db.query(Usuario).filter(Usuario.id == user_id).first():
                    raise NotFound(f"Usuario {user_id} no encontrado", {"user_id": user_id})
                if db.query(BankAccount).filter(BankAccount.user_id == user_id).first():
                    raise InvalidState(f"El usuario {user_id} ya tiene una cuenta", {"user_id": user_id})

            account = BankAccount(
                account_name=account_name,
                account_type=AccountType.MAIN if is_main_account else account_type,
                balance=ZERO,
                is_main_account=is_main_account,
                is_active=True,
                user_id=user_id,
                description=description,
            )
            db.add(account)

        log_event("cuentas", processed_by, "Cuenta creada", f"id={account.id}, nombre={account_name}, principal={is_main_account}")
        return account

    @staticmethod
    def get_or_create_main_account(db: Session, commit: bool = True) -> BankAccount:
        account = db.query(BankAccount).filter(BankAccount.is_main_account.is_(True)).first()
        if account:
            return account
        return AccountService.create_account(
            db,
            account_name=config.MAIN_ACCOUNT_NAME,
            account_type=AccountType.MAIN,
            description="Cuenta principal del hotel",
            is_main_account=True,
            commit=commit,
        )

    @staticmethod
    def get_or_create_user_account(db: Session, user_id: int, commit: bool = True) -> BankAccount:
        account = db.query(BankAccount).filter(BankAccount.user_id == user_id).first()
        if account:
            return account

        user = db.query(Usuario).filter(Usuario.id == user_id).first()
        if not user:
            raise NotFound(f"Usuario {user_id} no encontrado", {"user_id": user_id})

        return AccountService.create_account(
            db,
            account_name=f"{user.display_name}'s Account",
            account_type=AccountType.CURRENT,
            user_id=user_id,
            description=f"Cuenta personal de {user.username}",
            commit=commit,
        )

    # ------------------------------------------------------------------
    # Asientos
    # ------------------------------------------------------------------

    @staticmethod
    def _lock_account(db: Session, account_id: int) -> BankAccount:
        """SELECT ... FOR UPDATE y refresca el saldo dentro de la transacción."""
        account = (
            db.query(BankAccount)
            .filter(BankAccount.id == account_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if not account:
            raise NotFound(f"Cuenta {account_id} no encontrada", {"account_id": account_id})
        if not account.is_active:
            raise InvalidState(f"La cuenta {account_id} está inactiva", {"account_id": account_id})
        return account

    @staticmethod
    def _lock_accounts(db: Session, account_ids) -> Dict[int, BankAccount]:
        # Orden fijo por id para evitar deadlocks entre transferencias cruzadas
        return {account_id: AccountService._lock_account(db, account_id) for account_id in sorted(set(account_ids))}

    @staticmethod
    def _post_entry(
        db: Session,
        account: BankAccount,
        tx_type: TransactionType,
        category: TransactionCategory,
        amount: Decimal,
        description: str,
        processed_by: str,
        **extra,
    ) -> Transaction:
        """
        Aplica un asiento sobre una cuenta ya bloqueada. Solo hace flush;
        el commit es del llamador.
        """
        amount = _positive_amount(amount)
        current = money(account.balance)

        if tx_type == TransactionType.DEBIT:
            overdraft_ok = account.is_main_account and config.ALLOW_MAIN_ACCOUNT_OVERDRAFT
            if amount > current and not overdraft_ok:
                raise InsufficientFunds(
                    "Saldo insuficiente",
                    {"account_id": account.id, "balance": str(current), "amount": str(amount)},
                )
            new_balance = money(current - amount)
        else:
            new_balance = money(current + amount)

        transaction = Transaction(
            account_id=account.id,
            type=tx_type,
            category=category,
            amount=amount,
            balance_after=new_balance,
            description=description,
            processed_by=processed_by,
            created_at=datetime.utcnow(),
            **extra,
        )
        account.balance = new_balance
        db.add(transaction)
        db.flush()
        return transaction

    @staticmethod
    def deposit(
        db: Session,
        account_id: int,
        amount: Any,
        description: str,
        processed_by: str,
        notes: Optional[str] = None,
        payment_method: Optional[PaymentMethod] = None,
        category: TransactionCategory = TransactionCategory.MANUAL_DEPOSIT,
        related_booking_id: Optional[int] = None,
        payment_id: Optional[int] = None,
        correlation_id: Optional[str] = None,
        commit: bool = True,
    ) -> Tuple[Transaction, BankAccount]:
        """
        Acredita un monto en una cuenta

        Returns:
            (transaction, account)
        """
        amount = _positive_amount(amount)
        with atomic(db, commit):
            account = AccountService._lock_account(db, account_id)
            transaction = AccountService._post_entry(
                db, account, TransactionType.CREDIT, category, amount, description, processed_by,
                notes=notes,
                payment_method=payment_method,
                related_booking_id=related_booking_id,
                payment_id=payment_id,
                correlation_id=correlation_id,
            )

        log_event("cuentas", processed_by, "Depósito registrado",
                  f"account_id={account_id}, monto={amount}, categoria={category.value}, saldo={account.balance}")
        return transaction, account

    @staticmethod
    def withdraw(
        db: Session,
        account_id: int,
        amount: Any,
        description: str,
        processed_by: str,
        notes: Optional[str] = None,
        payment_method: Optional[PaymentMethod] = None,
        category: TransactionCategory = TransactionCategory.MANUAL_WITHDRAWAL,
        related_booking_id: Optional[int] = None,
        payment_id: Optional[int] = None,
        correlation_id: Optional[str] = None,
        commit: bool = True,
    ) -> Tuple[Transaction, BankAccount]:
        """
        Debita un monto de una cuenta

        Raises:
            InsufficientFunds: monto mayor al saldo (salvo sobregiro
            habilitado para la cuenta principal)
        """
        amount = _positive_amount(amount)
        with atomic(db, commit):
            account = AccountService._lock_account(db, account_id)
            transaction = AccountService._post_entry(
                db, account, TransactionType.DEBIT, category, amount, description, processed_by,
                notes=notes,
                payment_method=payment_method,
                related_booking_id=related_booking_id,
                payment_id=payment_id,
                correlation_id=correlation_id,
            )

        log_event("cuentas", processed_by, "Retiro registrado",
                  f"account_id={account_id}, monto={amount}, categoria={category.value}, saldo={account.balance}")
        return transaction, account

    @staticmethod
    def transfer(
        db: Session,
        from_account_id: int,
        to_account_id: int,
        amount: Any,
        description: str,
        processed_by: str,
        notes: Optional[str] = None,
        commit: bool = True,
    ) -> Tuple[Transaction, Transaction]:
        """
        Transferencia atómica: retiro + depósito con el mismo correlation_id
        en una sola unidad de trabajo.

        Returns:
            (withdrawal, deposit)
        """
        if from_account_id == to_account_id:
            raise ValidationError("No se puede transferir a la misma cuenta", {"account_id": from_account_id})
        amount = _positive_amount(amount)
        correlation_id = str(uuid.uuid4())

        with atomic(db, commit):
            accounts = AccountService._lock_accounts(db, [from_account_id, to_account_id])
            source = accounts[from_account_id]
            target = accounts[to_account_id]

            try:
                withdrawal = AccountService._post_entry(
                    db, source, TransactionType.DEBIT, TransactionCategory.TRANSFER_OUT, amount,
                    f"Transfer to account: {target.account_name} - {description}", processed_by,
                    notes=notes, correlation_id=correlation_id,
                )
            except HotelError as e:
                e.detail.setdefault("leg", "withdrawal")
                raise

            try:
                deposit = AccountService._post_entry(
                    db, target, TransactionType.CREDIT, TransactionCategory.TRANSFER_IN, amount,
                    f"Transfer from account: {source.account_name} - {description}", processed_by,
                    notes=notes, correlation_id=correlation_id,
                )
            except HotelError as e:
                e.detail.setdefault("leg", "deposit")
                raise

        log_event("cuentas", processed_by, "Transferencia registrada",
                  f"from={from_account_id}, to={to_account_id}, monto={amount}, correlation_id={correlation_id}")
        return withdrawal, deposit

    @staticmethod
    def reverse_transaction(
        db: Session,
        transaction_id: int,
        processed_by: str,
        reason: Optional[str] = None,
        commit: bool = True,
    ) -> List[Transaction]:
        """
        Revierte un asiento con el asiento opuesto. Las dos patas de una
        transferencia se revierten juntas. El original no se modifica.
        """
        original = db.query(Transaction).filter(Transaction.id == transaction_id).first()
        if not original:
            raise NotFound(f"Transacción {transaction_id} no encontrada", {"transaction_id": transaction_id})
        if original.reverses_transaction_id is not None:
            raise InvalidState("No se puede revertir una reversión", {"transaction_id": transaction_id})
        if original.category in PAYMENT_CATEGORIES:
            raise InvalidState(
                "Los asientos de pagos se revierten con reverse-payment",
                {"transaction_id": transaction_id, "booking_id": original.related_booking_id},
            )

        if original.correlation_id and original.category in TRANSFER_CATEGORIES:
            legs = (
                db.query(Transaction)
                .filter(Transaction.correlation_id == original.correlation_id)
                .order_by(Transaction.id)
                .all()
            )
        else:
            legs = [original]

        leg_ids = [leg.id for leg in legs]
        already = db.query(Transaction).filter(Transaction.reverses_transaction_id.in_(leg_ids)).first()
        if already:
            raise InvalidState("La transacción ya fue revertida", {"transaction_id": already.reverses_transaction_id})

        correlation_id = str(uuid.uuid4())
        reversals = []
        with atomic(db, commit):
            accounts = AccountService._lock_accounts(db, [leg.account_id for leg in legs])
            for leg in legs:
                opposite = TransactionType.DEBIT if leg.type == TransactionType.CREDIT else TransactionType.CREDIT
                try:
                    reversal = AccountService._post_entry(
                        db, accounts[leg.account_id], opposite, TransactionCategory.TRANSACTION_REVERSAL,
                        leg.amount, f"Reversal of transaction #{leg.id}: {leg.description}"[:255], processed_by,
                        notes=reason,
                        related_booking_id=leg.related_booking_id,
                        correlation_id=correlation_id,
                        reverses_transaction_id=leg.id,
                    )
                except HotelError as e:
                    e.detail.setdefault("leg", leg.id)
                    raise
                reversals.append(reversal)

            db.add(AuditEvent(
                entity_type="transaction",
                entity_id=original.id,
                action="TRANSACTION_REVERSAL",
                usuario=processed_by,
                descripcion=reason,
                payload={"reversed": leg_ids, "reversals": [r.id for r in reversals]},
            ))

        log_event("cuentas", processed_by, "Transacción revertida",
                  f"transaction_id={transaction_id}, patas={leg_ids}, motivo={reason}")
        return reversals

    @staticmethod
    def credit_bill_to_staff(
        db: Session,
        booking_id: int,
        user_id: int,
        processed_by: str,
        amount: Any = None,
        notes: Optional[str] = None,
        commit: bool = True,
    ) -> Tuple[Transaction, BankAccount]:
        """
        Acredita en la cuenta del usuario el monto de la cuenta de una
        reserva (por defecto el total cacheado de la reserva).
        """
        booking = db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            raise NotFound(f"Reserva {booking_id} no encontrada", {"booking_id": booking_id})

        value = money(amount if amount is not None else booking.total_amount)
        with atomic(db, commit):
            account = AccountService.get_or_create_user_account(db, user_id, commit=False)
            result = AccountService.deposit(
                db, account.id, value,
                f"Bill credit for booking #{booking.id} - {booking.guest_name}",
                processed_by,
                notes=notes,
                category=TransactionCategory.STAFF_CREDIT,
                related_booking_id=booking.id,
                commit=False,
            )
        return result

    # ------------------------------------------------------------------
    # Consultas
    # ------------------------------------------------------------------

    @staticmethod
    def _filtered_query(
        db: Session,
        account_id: Optional[int] = None,
        user_id: Optional[int] = None,
        tx_type: Optional[TransactionType] = None,
        category: Optional[TransactionCategory] = None,
        booking_id: Optional[int] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ):
        query = db.query(Transaction)
        if account_id is not None:
            query = query.filter(Transaction.account_id == account_id)
        if user_id is not None:
            query = query.join(BankAccount, BankAccount.id == Transaction.account_id).filter(BankAccount.user_id == user_id)
        if tx_type is not None:
            query = query.filter(Transaction.type == tx_type)
        if category is not None:
            query = query.filter(Transaction.category == category)
        if booking_id is not None:
            query = query.filter(Transaction.related_booking_id == booking_id)
        if start_date is not None:
            query = query.filter(Transaction.created_at >= start_date)
        if end_date is not None:
            query = query.filter(Transaction.created_at <= end_date)
        return query

    @staticmethod
    def get_transaction_history(
        db: Session,
        account_id: Optional[int] = None,
        user_id: Optional[int] = None,
        tx_type: Optional[TransactionType] = None,
        category: Optional[TransactionCategory] = None,
        booking_id: Optional[int] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Transaction]:
        query = AccountService._filtered_query(
            db, account_id, user_id, tx_type, category, booking_id, start_date, end_date
        )
        return (
            query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    @staticmethod
    def get_transaction_summary(db: Session, **filters) -> Dict[str, Any]:
        """Totales de créditos, débitos y neto, con conteo por categoría."""
        transactions = AccountService._filtered_query(db, **filters).all()

        credits = money(sum((t.amount for t in transactions if t.type == TransactionType.CREDIT), ZERO))
        debits = money(sum((t.amount for t in transactions if t.type == TransactionType.DEBIT), ZERO))

        by_category: Dict[str, Dict[str, Any]] = {}
        for t in transactions:
            entry = by_category.setdefault(t.category.value, {"count": 0, "amount": ZERO})
            entry["count"] += 1
            entry["amount"] = money(entry["amount"] + t.signed_amount)

        return {
            "total_credits": credits,
            "total_debits": debits,
            "net": money(credits - debits),
            "transaction_count": len(transactions),
            "by_category": by_category,
        }

    # ------------------------------------------------------------------
    # Auditoría del libro
    # ------------------------------------------------------------------

    @staticmethod
    def ledger_sum(db: Session, account_id: int) -> Decimal:
        total = (
            db.query(func.coalesce(func.sum(_signed_amount_expr()), 0))
            .filter(Transaction.account_id == account_id)
            .scalar()
        )
        return money(total)

    @staticmethod
    def recompute_balance(db: Session, account_id: int, processed_by: str = "system", commit: bool = True) -> Tuple[Decimal, Decimal]:
        """
        Reescribe el saldo cacheado con la suma del libro.

        Returns:
            (saldo_anterior, saldo_recalculado)
        """
        with atomic(db, commit):
            account = AccountService._lock_account(db, account_id)
            previous = money(account.balance)
            recomputed = AccountService.ledger_sum(db, account_id)
            account.balance = recomputed

        if previous != recomputed:
            log_event("cuentas", processed_by, "Saldo corregido desde el libro",
                      f"account_id={account_id}, antes={previous}, ahora={recomputed}", level="warning")
        return previous, recomputed

    @staticmethod
    def verify_ledger(db: Session) -> List[Dict[str, Any]]:
        """Compara saldo cacheado vs suma de asientos para cada cuenta."""
        rows = dict(
            db.query(Transaction.account_id, func.sum(_signed_amount_expr()))
            .group_by(Transaction.account_id)
            .all()
        )
        result = []
        for account in db.query(BankAccount).order_by(BankAccount.id).all():
            ledger = money(rows.get(account.id, 0))
            balance = money(account.balance)
            result.append({
                "account_id": account.id,
                "account_name": account.account_name,
                "balance": balance,
                "ledger_sum": ledger,
                "consistent": balance == ledger,
            })
        return result
