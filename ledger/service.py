import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional, TypeVar
from uuid import UUID, uuid4

from .config import Settings
from .errors import (
    AccountNotFoundError,
    IdempotencyConflictError,
    InsufficientFundsError,
    InvalidAmountError,
    StorageConflictError,
)
from .events import BalanceChanged, EventBus
from .models import (
    Account,
    AccountBalance,
    DeltaResult,
    LedgerHistoryResponse,
    ReconciliationReport,
    Transaction,
    TransactionType,
    to_money,
)
from .storage import InMemoryStorage, UnitOfWork, WriteConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerService:
    """
    Sole writer of account balances and reward counters.

    Every mutation debits or credits exactly one account and appends exactly
    one transaction inside a unit of work; the unit is committed with an
    optimistic version check and retried on conflict up to
    ``settings.max_retries`` times.
    """

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        settings: Optional[Settings] = None,
        events: Optional[EventBus] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.settings = settings or Settings()
        self.events = events or EventBus()
        self.clock = clock or utcnow

    def apply_delta(
        self,
        account_id: UUID,
        delta,
        transaction_type: TransactionType,
        description: str,
        idempotency_key: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> DeltaResult:
        transaction_type = TransactionType(transaction_type)
        amount = self.validate_amount(delta, allow_negative=True)

        def operation(uow: UnitOfWork) -> DeltaResult:
            replay = self.find_replay(uow, idempotency_key, account_id, transaction_type, amount)
            if replay is not None:
                account = self.load_account(uow, account_id)
                return DeltaResult(
                    new_balance=account["wallet_balance"],
                    transaction=Transaction(**replay),
                    replayed=True,
                )
            entry = self.post(
                uow, account_id, amount, transaction_type, description,
                reference=reference, idempotency_key=idempotency_key,
            )
            return DeltaResult(new_balance=entry["balance_after"], transaction=Transaction(**entry))

        result = self.run_atomic(operation)
        if not result.replayed:
            logger.info(
                "Applied %s %s to account %s, balance now %s",
                transaction_type.value, amount, account_id, result.new_balance,
            )
        return result

    def run_atomic(self, operation: Callable[[UnitOfWork], T]) -> T:
        attempts = self.settings.max_retries
        for attempt in range(1, attempts + 1):
            uow = self.storage.begin()
            result = operation(uow)
            try:
                uow.commit()
            except WriteConflict as e:
                logger.warning("Write conflict (attempt %d/%d): %s", attempt, attempts, e)
                continue
            for event in uow.events:
                self.events.publish(event)
            return result
        raise StorageConflictError(f"Could not commit after {attempts} attempts")

    def post(
        self,
        uow: UnitOfWork,
        account_id: UUID,
        delta: Decimal,
        transaction_type: TransactionType,
        description: str,
        changes: Optional[dict] = None,
        reference: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> dict:
        """Stage a balance change, its transaction row and any account field changes."""
        amount = self.validate_amount(delta, allow_negative=True)
        account = self.load_account(uow, account_id)

        new_balance = account["wallet_balance"] + amount
        if new_balance < 0:
            raise InsufficientFundsError(
                f"Account {account_id} balance {account['wallet_balance']} cannot cover {-amount}"
            )

        now = self.clock()
        if changes:
            account.update(changes)
        account["wallet_balance"] = new_balance
        uow.put("accounts", account_id, account)

        entry = {
            "id": uuid4(),
            "account_id": account_id,
            "type": TransactionType(transaction_type),
            "amount": amount,
            "balance_after": new_balance,
            "description": description,
            "reference": reference,
            "idempotency_key": idempotency_key,
            "created_at": now,
        }
        uow.insert("transactions", entry["id"], entry)

        if idempotency_key:
            uow.insert("idempotency", idempotency_key, {
                "key": idempotency_key,
                "account_id": account_id,
                "transaction_id": entry["id"],
                "created_at": now,
            })

        uow.events.append(BalanceChanged(
            account_id=account_id,
            new_balance=new_balance,
            transaction_id=entry["id"],
            occurred_at=now,
        ))
        return entry

    def update_account(self, uow: UnitOfWork, account_id: UUID, changes: dict) -> dict:
        """Stage non-monetary account field changes."""
        if "wallet_balance" in changes:
            raise ValueError("wallet_balance only changes through post()")
        account = self.load_account(uow, account_id)
        account.update(changes)
        uow.put("accounts", account_id, account)
        return account

    def load_account(self, uow: UnitOfWork, account_id: UUID) -> dict:
        row = uow.get("accounts", account_id)
        if row is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return row

    def find_replay(
        self,
        uow: UnitOfWork,
        idempotency_key: Optional[str],
        account_id: UUID,
        transaction_type: TransactionType,
        amount: Optional[Decimal] = None,
    ) -> Optional[dict]:
        """Transaction previously recorded under the key, or None. A key reused for a different request conflicts."""
        if not idempotency_key:
            return None
        record = uow.get("idempotency", idempotency_key)
        if record is None:
            return None
        if record["account_id"] != account_id:
            raise IdempotencyConflictError(f"Idempotency key {idempotency_key} belongs to another account")
        entry = uow.get("transactions", record["transaction_id"])
        if entry["type"] != TransactionType(transaction_type) or (amount is not None and entry["amount"] != amount):
            raise IdempotencyConflictError(
                f"Idempotency key {idempotency_key} was used for a {TransactionType(entry['type']).value} "
                f"of {entry['amount']}"
            )
        return entry

    @staticmethod
    def validate_amount(value, allow_negative: bool = False) -> Decimal:
        try:
            amount = to_money(value)
        except (InvalidOperation, ValueError, TypeError):
            raise InvalidAmountError(f"Not a valid amount: {value!r}")
        if amount == 0 or (amount < 0 and not allow_negative):
            raise InvalidAmountError(f"Amount must be {'non-zero' if allow_negative else 'positive'}: {value!r}")
        return amount

    # ---------- read paths ----------

    def get_account(self, account_id: UUID) -> Account:
        row = self.storage.get("accounts", account_id)
        if row is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return Account(**row)

    def get_balance(self, account_id: UUID) -> AccountBalance:
        account = self.get_account(account_id)
        entries = self.storage.scan("transactions", lambda e: e["account_id"] == account_id)
        last_entry = max(entries, key=lambda e: e["created_at"]) if entries else None

        return AccountBalance(
            account_id=account_id,
            currency=self.settings.currency,
            current_balance=account.wallet_balance,
            total_entries=len(entries),
            last_transaction_at=last_entry["created_at"] if last_entry else None,
        )

    def get_ledger_history(self, account_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        account = self.get_account(account_id)
        all_entries = [
            Transaction(**e) for e in self.storage.scan("transactions", lambda e: e["account_id"] == account_id)
        ]
        all_entries.sort(key=lambda e: e.created_at, reverse=True)
        paginated = all_entries[offset:offset + limit]

        return LedgerHistoryResponse(
            account_id=account_id,
            entries=paginated,
            total_count=len(all_entries),
            current_balance=account.wallet_balance,
        )

    def list_transactions(self, account_id: Optional[UUID] = None) -> list[Transaction]:
        rows = self.storage.scan(
            "transactions", None if account_id is None else (lambda e: e["account_id"] == account_id)
        )
        return sorted((Transaction(**r) for r in rows), key=lambda t: t.created_at, reverse=True)

    def reconcile(self, account_id: UUID) -> ReconciliationReport:
        def operation(uow: UnitOfWork) -> ReconciliationReport:
            account = self.load_account(uow, account_id)
            entries = uow.find("transactions", lambda e: e["account_id"] == account_id)
            ledger_sum = sum((e["amount"] for e in entries), Decimal("0.00"))
            return ReconciliationReport(
                account_id=account_id,
                wallet_balance=account["wallet_balance"],
                ledger_sum=ledger_sum,
                is_balanced=ledger_sum == account["wallet_balance"],
            )

        report = self.run_atomic(operation)
        if not report.is_balanced:
            logger.error(
                "Account %s out of balance: wallet %s, ledger %s",
                account_id, report.wallet_balance, report.ledger_sum,
            )
        return report
