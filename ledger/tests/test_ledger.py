"""
Unit Tests for the Ledger Engine

Tests cover:
1. Credit and debit flow
2. Amount validation
3. Idempotency (duplicate prevention)
4. Concurrent mutations and bounded retry
5. Reconciliation and history
6. Balance change events
7. Settings validation
"""

import pytest
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from uuid import uuid4

from pydantic import ValidationError

from ledger.config import Settings
from ledger.errors import (
    AccountNotFoundError,
    IdempotencyConflictError,
    InsufficientFundsError,
    InvalidAmountError,
    StorageConflictError,
)
from ledger.events import BalanceChanged
from ledger.models import Account, TransactionType
from ledger.service import LedgerService
from ledger.storage import WriteConflict


def open_account(service: LedgerService, balance: str = "0.00"):
    account_id = uuid4()
    row = Account(
        id=account_id,
        email=f"{account_id.hex}@example.com",
        referral_code=f"AMAC{account_id.hex[:4].upper()}",
        created_at=service.clock(),
    ).model_dump()
    service.run_atomic(lambda uow: uow.insert("accounts", account_id, row))
    if Decimal(balance):
        service.apply_delta(account_id, balance, TransactionType.DEPOSIT, "Opening deposit")
    return account_id


class TestApplyDelta:
    """Tests for single balance mutations."""

    def test_credit_updates_balance_and_appends_transaction(self):
        """A credit raises the balance and records the signed amount."""
        service = LedgerService()
        account_id = open_account(service)

        result = service.apply_delta(account_id, Decimal("150.50"), TransactionType.DEPOSIT, "Deposit")

        assert result.new_balance == Decimal("150.50")
        assert result.transaction.amount == Decimal("150.50")
        assert result.transaction.balance_after == Decimal("150.50")
        assert result.transaction.type == TransactionType.DEPOSIT
        assert service.get_account(account_id).wallet_balance == Decimal("150.50")
        assert len(service.list_transactions(account_id)) == 1

    def test_debit_records_negative_amount(self):
        service = LedgerService()
        account_id = open_account(service, "100.00")

        result = service.apply_delta(account_id, "-40", TransactionType.PURCHASE, "Purchase")

        assert result.new_balance == Decimal("60.00")
        assert result.transaction.amount == Decimal("-40.00")

    def test_debit_to_exactly_zero_is_allowed(self):
        service = LedgerService()
        account_id = open_account(service, "100.00")

        result = service.apply_delta(account_id, "-100.00", TransactionType.WITHDRAWAL, "Withdrawal")

        assert result.new_balance == Decimal("0.00")

    def test_overdraw_rejected_without_side_effects(self):
        """A debit beyond the balance fails and writes nothing."""
        service = LedgerService()
        account_id = open_account(service, "100.00")

        with pytest.raises(InsufficientFundsError):
            service.apply_delta(account_id, "-100.01", TransactionType.WITHDRAWAL, "Withdrawal")

        assert service.get_account(account_id).wallet_balance == Decimal("100.00")
        assert len(service.list_transactions(account_id)) == 1

    @pytest.mark.parametrize("delta", [0, "0.00", "abc", "NaN", "Infinity", None])
    def test_invalid_amounts_rejected(self, delta):
        service = LedgerService()
        account_id = open_account(service)

        with pytest.raises(InvalidAmountError):
            service.apply_delta(account_id, delta, TransactionType.BONUS, "Bonus")

    def test_amounts_quantized_to_cents(self):
        service = LedgerService()
        account_id = open_account(service)

        result = service.apply_delta(account_id, "10.005", TransactionType.BONUS, "Bonus")

        assert result.new_balance == Decimal("10.01")

    def test_unknown_account_rejected(self):
        service = LedgerService()

        with pytest.raises(AccountNotFoundError):
            service.apply_delta(uuid4(), "10", TransactionType.BONUS, "Bonus")


class TestIdempotency:
    """Tests for idempotent replays."""

    def test_same_key_returns_original_transaction(self):
        """Replaying an idempotency key returns the first transaction and does not mutate."""
        service = LedgerService()
        account_id = open_account(service)

        first = service.apply_delta(account_id, "200", TransactionType.DEPOSIT, "Deposit", idempotency_key="dep-1")
        second = service.apply_delta(account_id, "200", TransactionType.DEPOSIT, "Deposit", idempotency_key="dep-1")

        assert second.replayed is True
        assert second.transaction.id == first.transaction.id
        assert service.get_account(account_id).wallet_balance == Decimal("200.00")
        assert len(service.list_transactions(account_id)) == 1

    def test_key_reused_by_other_account_conflicts(self):
        service = LedgerService()
        owner = open_account(service)
        other = open_account(service)
        service.apply_delta(owner, "50", TransactionType.DEPOSIT, "Deposit", idempotency_key="shared")

        with pytest.raises(IdempotencyConflictError):
            service.apply_delta(other, "50", TransactionType.DEPOSIT, "Deposit", idempotency_key="shared")

    def test_concurrent_replays_apply_once(self):
        service = LedgerService(settings=Settings(max_retries=50))
        account_id = open_account(service)

        def deposit(_):
            return service.apply_delta(account_id, "25", TransactionType.DEPOSIT, "Deposit", idempotency_key="once")

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(deposit, range(16)))

        assert len({r.transaction.id for r in results}) == 1
        assert service.get_account(account_id).wallet_balance == Decimal("25.00")


class TestConcurrency:
    """Tests for concurrent mutations against one account."""

    def test_concurrent_debits_never_overdraw(self):
        """Final balance equals the initial balance plus every accepted delta and never goes negative."""
        service = LedgerService(settings=Settings(max_retries=100))
        account_id = open_account(service, "200.00")
        deltas = [Decimal("-10.00")] * 40 + [Decimal("5.00")] * 10

        def attempt(delta):
            try:
                service.apply_delta(account_id, delta, TransactionType.PURCHASE, "Concurrent")
                return delta
            except (InsufficientFundsError, StorageConflictError):
                return None

        with ThreadPoolExecutor(max_workers=16) as pool:
            accepted = [d for d in pool.map(attempt, deltas) if d is not None]

        balance = service.get_account(account_id).wallet_balance
        assert balance >= 0
        assert balance == Decimal("200.00") + sum(accepted, Decimal("0.00"))
        assert service.reconcile(account_id).is_balanced

    def test_accounts_do_not_interfere(self):
        service = LedgerService(settings=Settings(max_retries=100))
        accounts = [open_account(service) for _ in range(4)]

        def credit(index):
            return service.apply_delta(accounts[index % 4], "1", TransactionType.BONUS, "Bonus")

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(credit, range(40)))

        for account_id in accounts:
            assert service.get_account(account_id).wallet_balance == Decimal("10.00")

    def test_exhausted_retries_raise_storage_conflict(self, monkeypatch):
        """Persistent conflicts surface as StorageConflictError after max_retries attempts."""
        service = LedgerService(settings=Settings(max_retries=3))
        account_id = open_account(service, "100.00")
        attempts = []

        def always_conflict(uow):
            attempts.append(uow)
            raise WriteConflict("simulated")

        monkeypatch.setattr(service.storage, "commit", always_conflict)

        with pytest.raises(StorageConflictError):
            service.apply_delta(account_id, "10", TransactionType.BONUS, "Bonus")

        monkeypatch.undo()
        assert len(attempts) == 3
        assert service.get_account(account_id).wallet_balance == Decimal("100.00")


class TestReadPaths:
    """Tests for balance, history and reconciliation."""

    def test_reconcile_after_mixed_operations(self):
        service = LedgerService()
        account_id = open_account(service, "500.00")
        service.apply_delta(account_id, "-120.25", TransactionType.PURCHASE, "Purchase")
        service.apply_delta(account_id, "30", TransactionType.BONUS, "Bonus")

        report = service.reconcile(account_id)

        assert report.is_balanced
        assert report.ledger_sum == Decimal("409.75")

    def test_reconcile_detects_tampering(self):
        service = LedgerService()
        account_id = open_account(service, "50.00")
        service.storage.tables["accounts"][account_id]["wallet_balance"] = Decimal("75.00")

        assert not service.reconcile(account_id).is_balanced

    def test_balance_summary(self):
        service = LedgerService()
        account_id = open_account(service, "80.00")

        balance = service.get_balance(account_id)

        assert balance.current_balance == Decimal("80.00")
        assert balance.currency == "BDT"
        assert balance.total_entries == 1
        assert balance.last_transaction_at is not None

    def test_history_pagination(self):
        service = LedgerService()
        account_id = open_account(service)
        for i in range(5):
            service.apply_delta(account_id, str(i + 1), TransactionType.BONUS, f"Bonus {i}")

        page = service.get_ledger_history(account_id, limit=2, offset=1)

        assert page.total_count == 5
        assert len(page.entries) == 2
        assert page.current_balance == Decimal("15.00")


class TestEvents:
    """Tests for post-commit balance notifications."""

    def test_event_published_after_commit(self):
        service = LedgerService()
        account_id = open_account(service)
        received = []
        service.events.subscribe(received.append)

        result = service.apply_delta(account_id, "10", TransactionType.BONUS, "Bonus")

        assert received == [BalanceChanged(
            account_id=account_id,
            new_balance=Decimal("10.00"),
            transaction_id=result.transaction.id,
            occurred_at=result.transaction.created_at,
        )]

    def test_no_event_for_rejected_mutation(self):
        service = LedgerService()
        account_id = open_account(service)
        received = []
        service.events.subscribe(received.append)

        with pytest.raises(InsufficientFundsError):
            service.apply_delta(account_id, "-10", TransactionType.WITHDRAWAL, "Withdrawal")

        assert received == []

    def test_failing_subscriber_does_not_undo_commit(self):
        service = LedgerService()
        account_id = open_account(service)
        received = []

        def broken(event):
            raise RuntimeError("subscriber down")

        service.events.subscribe(broken)
        service.events.subscribe(received.append)

        service.apply_delta(account_id, "10", TransactionType.BONUS, "Bonus")

        assert len(received) == 1
        assert service.get_account(account_id).wallet_balance == Decimal("10.00")

    def test_unsubscribe(self):
        service = LedgerService()
        account_id = open_account(service)
        received = []
        unsubscribe = service.events.subscribe(received.append)
        unsubscribe()

        service.apply_delta(account_id, "10", TransactionType.BONUS, "Bonus")

        assert received == []


class TestSettings:
    """Tests for environment-driven configuration."""

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValidationError):
            Settings(default_timezone="Mars/Olympus")

    def test_unknown_timezone_from_env_rejected(self, monkeypatch):
        monkeypatch.setenv("LEDGER_DEFAULT_TIMEZONE", "Not/AZone")

        with pytest.raises(ValidationError):
            Settings.from_env()

    def test_timezone_from_env(self, monkeypatch):
        monkeypatch.setenv("LEDGER_DEFAULT_TIMEZONE", "Europe/London")

        assert Settings.from_env().default_timezone == "Europe/London"
