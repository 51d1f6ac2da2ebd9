"""
Tests del libro de cuentas (AccountService)
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from decimal import Decimal

from models.core import AuditEvent, BankAccount, Transaction, TransactionCategory, TransactionType
from services.account_service import AccountService
from utils.errors import InsufficientFunds, InternalError, InvalidAmount, InvalidState, ValidationError


def _balance(db, account_id):
    return db.query(BankAccount).filter(BankAccount.id == account_id).first().balance


class TestAccounts:

    def test_main_account_is_unique(self, db):
        main = AccountService.get_or_create_main_account(db)
        assert main.is_main_account is True
        assert AccountService.get_or_create_main_account(db).id == main.id

        with pytest.raises(InvalidState):
            AccountService.create_account(db, "Otra principal", is_main_account=True)

    def test_non_main_account_needs_user(self, db):
        with pytest.raises(ValidationError):
            AccountService.create_account(db, "Sin dueño")

    def test_one_account_per_user(self, db, user_factory):
        user = user_factory()
        AccountService.create_account(db, "Primera", user_id=user.id)
        with pytest.raises(InvalidState):
            AccountService.create_account(db, "Segunda", user_id=user.id)

    def test_user_account_name(self, db, user_factory):
        user = user_factory()
        account = AccountService.get_or_create_user_account(db, user.id)
        assert account.account_name == f"{user.display_name}'s Account"
        assert AccountService.get_or_create_user_account(db, user.id).id == account.id


class TestEntries:

    def test_deposit_and_withdraw(self, db, account_factory):
        account = account_factory()
        tx, _ = AccountService.deposit(db, account.id, Decimal("500"), "Fondo", "test")
        assert tx.type == TransactionType.CREDIT
        assert tx.balance_after == Decimal("500.00")

        tx, updated = AccountService.withdraw(db, account.id, Decimal("120.50"), "Compra", "test")
        assert tx.category == TransactionCategory.MANUAL_WITHDRAWAL
        assert updated.balance == Decimal("379.50")
        assert tx.signed_amount == Decimal("-120.50")

    def test_overdraw_rejected_without_side_effects(self, db, account_factory):
        account = account_factory(balance=Decimal("100"))
        count = db.query(Transaction).count()

        with pytest.raises(InsufficientFunds):
            AccountService.withdraw(db, account.id, Decimal("100.01"), "Demasiado", "test")

        assert _balance(db, account.id) == Decimal("100.00")
        assert db.query(Transaction).count() == count

    def test_non_positive_amount_rejected(self, db, account_factory):
        account = account_factory()
        with pytest.raises(InvalidAmount):
            AccountService.deposit(db, account.id, Decimal("0"), "Nada", "test")

    def test_balance_matches_ledger(self, db, account_factory):
        account = account_factory(balance=Decimal("1000"))
        AccountService.withdraw(db, account.id, Decimal("250"), "Retiro", "test")
        AccountService.deposit(db, account.id, Decimal("75.25"), "Depósito", "test")

        assert AccountService.ledger_sum(db, account.id) == _balance(db, account.id) == Decimal("825.25")
        assert all(entry["consistent"] for entry in AccountService.verify_ledger(db))

    def test_recompute_balance_fixes_drift(self, db, account_factory):
        account = account_factory(balance=Decimal("300"))
        account.balance = Decimal("999")
        db.commit()

        previous, recomputed = AccountService.recompute_balance(db, account.id)
        assert previous == Decimal("999.00")
        assert recomputed == Decimal("300.00")
        assert _balance(db, account.id) == Decimal("300.00")


class TestTransfers:

    def test_transfer_conserves_money(self, db, account_factory):
        source = account_factory(balance=Decimal("1000"))
        target = account_factory(balance=Decimal("200"))

        withdrawal, deposit = AccountService.transfer(db, source.id, target.id, Decimal("300"), "Cambio", "test")

        assert withdrawal.correlation_id == deposit.correlation_id
        assert withdrawal.category == TransactionCategory.TRANSFER_OUT
        assert deposit.category == TransactionCategory.TRANSFER_IN
        assert _balance(db, source.id) == Decimal("700.00")
        assert _balance(db, target.id) == Decimal("500.00")
        assert _balance(db, source.id) + _balance(db, target.id) == Decimal("1200.00")

    def test_transfer_to_same_account_rejected(self, db, account_factory):
        account = account_factory(balance=Decimal("10"))
        with pytest.raises(ValidationError):
            AccountService.transfer(db, account.id, account.id, Decimal("5"), "Loop", "test")

    def test_transfer_insufficient_funds_names_leg(self, db, account_factory):
        source = account_factory(balance=Decimal("50"))
        target = account_factory()
        with pytest.raises(InsufficientFunds) as exc:
            AccountService.transfer(db, source.id, target.id, Decimal("80"), "Sin saldo", "test")
        assert exc.value.detail["leg"] == "withdrawal"

    def test_second_leg_failure_leaves_nothing(self, db, account_factory, monkeypatch):
        source = account_factory(balance=Decimal("1000"))
        target = account_factory()
        count = db.query(Transaction).count()

        original = AccountService._post_entry

        def failing_post_entry(db_, account, tx_type, *args, **kwargs):
            if tx_type == TransactionType.CREDIT:
                raise InternalError("Fallo simulado de almacenamiento")
            return original(db_, account, tx_type, *args, **kwargs)

        monkeypatch.setattr(AccountService, "_post_entry", staticmethod(failing_post_entry))

        with pytest.raises(InternalError) as exc:
            AccountService.transfer(db, source.id, target.id, Decimal("400"), "Falla", "test")

        assert exc.value.detail["leg"] == "deposit"
        assert db.query(Transaction).count() == count
        assert _balance(db, source.id) == Decimal("1000.00")
        assert _balance(db, target.id) == Decimal("0.00")


class TestReversals:

    def test_reverse_manual_deposit(self, db, account_factory):
        account = account_factory()
        tx, _ = AccountService.deposit(db, account.id, Decimal("200"), "Error de carga", "test")

        reversals = AccountService.reverse_transaction(db, tx.id, "admin", reason="Duplicado")

        assert len(reversals) == 1
        assert reversals[0].type == TransactionType.DEBIT
        assert reversals[0].reverses_transaction_id == tx.id
        assert _balance(db, account.id) == Decimal("0.00")
        assert db.query(AuditEvent).filter(AuditEvent.action == "TRANSACTION_REVERSAL").count() == 1

    def test_double_reversal_rejected(self, db, account_factory):
        account = account_factory()
        tx, _ = AccountService.deposit(db, account.id, Decimal("200"), "Carga", "test")
        reversal = AccountService.reverse_transaction(db, tx.id, "admin")[0]

        with pytest.raises(InvalidState):
            AccountService.reverse_transaction(db, tx.id, "admin")
        with pytest.raises(InvalidState):
            AccountService.reverse_transaction(db, reversal.id, "admin")

    def test_reverse_transfer_reverses_both_legs(self, db, account_factory):
        source = account_factory(balance=Decimal("500"))
        target = account_factory()
        withdrawal, _ = AccountService.transfer(db, source.id, target.id, Decimal("200"), "Cambio", "test")

        reversals = AccountService.reverse_transaction(db, withdrawal.id, "admin")

        assert len(reversals) == 2
        assert _balance(db, source.id) == Decimal("500.00")
        assert _balance(db, target.id) == Decimal("0.00")

    def test_staff_credit(self, db, no_tax, booking_factory, user_factory):
        booking = booking_factory(total=450)
        user = user_factory()

        tx, account = AccountService.credit_bill_to_staff(db, booking.id, user.id, "admin")

        assert tx.category == TransactionCategory.STAFF_CREDIT
        assert tx.related_booking_id == booking.id
        assert account.user_id == user.id
        assert account.balance == Decimal("450.00")
