"""
Reward Rules Evaluator.

Each public method checks eligibility and applies the resulting ledger
mutation inside one unit of work, so a concurrent request against the same
account can never pass the same check before the first one commits.
"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional, Type, TypeVar
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo

from ledger.errors import (
    AlreadyClaimedError,
    AlreadyClaimedTodayError,
    IdempotencyConflictError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidWithdrawalDetailsError,
    OutOfStockError,
    RecordNotFoundError,
    RewardNotEligibleError,
    TaskAlreadyCompletedError,
)
from ledger.models import (
    Account,
    ActionResponse,
    Gift,
    GiftStatus,
    GiftWindow,
    Investment,
    InvestmentResponse,
    InvestmentStatus,
    Order,
    PurchaseResponse,
    SpinResponse,
    Task,
    TaskKind,
    TaskStatus,
    Transaction,
    TransactionType,
    Withdrawal,
    WithdrawalResponse,
    WithdrawalStatus,
    to_money,
)
from ledger.service import LedgerService
from ledger.storage import UnitOfWork

from .rule_engine import EligibilityRule, build_context, parse_conditions
from .spin import SpinWheel

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=ActionResponse)

# minimum payout per withdrawal method
WITHDRAWAL_METHODS = {
    "bkash": Decimal("500.00"),
    "nagad": Decimal("500.00"),
    "rocket": Decimal("500.00"),
    "bank": Decimal("1000.00"),
}


def local_date(moment: datetime, tz_name: str) -> date:
    return moment.astimezone(ZoneInfo(tz_name)).date()


class RewardService:
    def __init__(self, ledger: LedgerService, wheel: Optional[SpinWheel] = None):
        self.ledger = ledger
        self.settings = ledger.settings
        self.wheel = wheel or SpinWheel()

    # ---------- daily bonus ----------

    def claim_daily_bonus(self, account_id: UUID) -> ActionResponse:
        def operation(uow: UnitOfWork) -> ActionResponse:
            account = self.ledger.load_account(uow, account_id)
            now = self.ledger.clock()
            today = local_date(now, account["timezone"])
            last_claim = account["last_daily_bonus_claim"]
            last_day = local_date(last_claim, account["timezone"]) if last_claim else None

            if last_day == today:
                raise AlreadyClaimedTodayError(f"Account {account_id} already claimed the daily bonus on {today}")

            streak = account["login_streak"] + 1 if last_day == today - timedelta(days=1) else 1
            amount = min(self.settings.daily_bonus_base * streak, self.settings.daily_bonus_cap)

            entry = self.ledger.post(
                uow, account_id, amount, TransactionType.BONUS, "Daily login bonus",
                changes={
                    "last_daily_bonus_claim": now,
                    "login_streak": streak,
                    "daily_bonus_amount": to_money(amount),
                },
            )
            return self._respond(ActionResponse, uow, account_id, entry, f"Daily bonus of {entry['amount']} claimed")

        response = self.ledger.run_atomic(operation)
        logger.info("Account %s claimed daily bonus %s", account_id, response.transaction.amount)
        return response

    # ---------- tasks ----------

    def complete_task(self, account_id: UUID, task_id: int, kind: TaskKind = TaskKind.DAILY) -> ActionResponse:
        kind = TaskKind(kind)

        def operation(uow: UnitOfWork) -> ActionResponse:
            task = uow.get("tasks", task_id)
            if task is None or not task["is_active"] or TaskKind(task["kind"]) != kind:
                raise RecordNotFoundError(f"No active {kind.value} task {task_id}")

            account = self.ledger.load_account(uow, account_id)
            today = local_date(self.ledger.clock(), account["timezone"])
            completion_key = self._completion_key(account_id, kind, task_id, today)
            if uow.get("task_completions", completion_key) is not None:
                raise TaskAlreadyCompletedError(f"Task {task_id} already completed by account {account_id}")

            changes = {"total_tasks_completed": account["total_tasks_completed"] + 1}
            if kind == TaskKind.DAILY:
                done_today = account["completed_daily_tasks"] if account["daily_tasks_day"] == today else 0
                changes["completed_daily_tasks"] = done_today + 1
                changes["daily_tasks_day"] = today
            else:
                changes["completed_intern_tasks"] = account["completed_intern_tasks"] + 1

            uow.insert("task_completions", completion_key, {
                "account_id": account_id,
                "task_id": task_id,
                "kind": kind,
                "day": today,
                "completed_at": self.ledger.clock(),
            })
            entry = self.ledger.post(
                uow, account_id, task["reward_amount"], TransactionType.TASK_REWARD,
                f"{task['title']} reward", changes=changes, reference=f"task:{task_id}",
            )
            return self._respond(ActionResponse, uow, account_id, entry, f"Task {task['title']} completed")

        response = self.ledger.run_atomic(operation)
        logger.info("Account %s completed %s task %s", account_id, kind.value, task_id)
        return response

    def task_statuses(self, account_id: UUID, kind: TaskKind = TaskKind.DAILY) -> list[TaskStatus]:
        kind = TaskKind(kind)
        account = self.ledger.get_account(account_id)
        today = local_date(self.ledger.clock(), account.timezone)
        tasks = self.ledger.storage.scan("tasks", lambda t: t["is_active"] and TaskKind(t["kind"]) == kind)
        return [
            TaskStatus(
                task=Task(**t),
                completed=self.ledger.storage.get(
                    "task_completions", self._completion_key(account_id, kind, t["id"], today)
                ) is not None,
            )
            for t in sorted(tasks, key=lambda t: t["id"])
        ]

    @staticmethod
    def _completion_key(account_id: UUID, kind: TaskKind, task_id: int, today: date) -> tuple:
        # daily tasks reset every local day, intern tasks are one-off
        return (account_id, kind.value, task_id, today if kind == TaskKind.DAILY else None)

    # ---------- investments ----------

    def invest(
        self,
        account_id: UUID,
        package_id: int,
        amount=None,
        idempotency_key: Optional[str] = None,
    ) -> InvestmentResponse:
        def operation(uow: UnitOfWork) -> InvestmentResponse:
            requested = None if amount is None else -self.ledger.validate_amount(amount)
            replay = self.ledger.find_replay(uow, idempotency_key, account_id, TransactionType.INVESTMENT, requested)
            if replay is not None:
                investment = self._replayed_record(uow, "investments", replay, "package_id", package_id)
                response = self._respond(InvestmentResponse, uow, account_id, replay, "Investment already processed")
                response.investment = Investment(**investment)
                return response

            package = uow.get("packages", package_id)
            if package is None or not package["is_active"]:
                raise RecordNotFoundError(f"Investment package {package_id} not found")

            stake = package["min_amount"] if amount is None else self.ledger.validate_amount(amount)
            if not package["min_amount"] <= stake <= package["max_amount"]:
                raise InvalidAmountError(
                    f"{stake} is outside {package['name']} range {package['min_amount']}-{package['max_amount']}"
                )

            account = self.ledger.load_account(uow, account_id)
            if account["wallet_balance"] < stake:
                raise InsufficientFundsError(f"Account {account_id} cannot invest {stake}")

            now = self.ledger.clock()
            investment = {
                "id": uuid4(),
                "account_id": account_id,
                "package_id": package["id"],
                "package_name": package["name"],
                "invested_amount": stake,
                "daily_profit_percentage": package["daily_profit_percentage"],
                "start_date": now,
                "end_date": now + timedelta(days=package["duration_days"]),
                "status": InvestmentStatus.ACTIVE,
            }
            uow.insert("investments", investment["id"], investment)

            entry = self.ledger.post(
                uow, account_id, -stake, TransactionType.INVESTMENT, f"{package['name']} investment",
                changes={"total_invested": account["total_invested"] + stake},
                reference=str(investment["id"]), idempotency_key=idempotency_key,
            )
            self._award_referral(uow, account)

            response = self._respond(InvestmentResponse, uow, account_id, entry, "Investment created successfully")
            response.investment = Investment(**investment)
            return response

        response = self.ledger.run_atomic(operation)
        logger.info("Account %s invested in package %s", account_id, package_id)
        return response

    def _award_referral(self, uow: UnitOfWork, account: dict) -> None:
        """Credit both sides of a referral once, on the referred account's first qualifying investment."""
        referrer_id = account.get("referred_by")
        if referrer_id is None:
            return
        award_key = (referrer_id, account["id"])
        if uow.get("referral_awards", award_key) is not None:
            return
        if uow.get("accounts", referrer_id) is None:
            return

        uow.insert("referral_awards", award_key, {
            "referrer_id": referrer_id,
            "referred_id": account["id"],
            "referrer_amount": self.settings.referrer_bonus,
            "referred_amount": self.settings.referred_bonus,
            "awarded_at": self.ledger.clock(),
        })
        if self.settings.referrer_bonus > 0:
            self.ledger.post(
                uow, referrer_id, self.settings.referrer_bonus, TransactionType.REFERRAL_BONUS,
                "Referral bonus", reference=f"referral:{account['id']}",
            )
        if self.settings.referred_bonus > 0:
            self.ledger.post(
                uow, account["id"], self.settings.referred_bonus, TransactionType.REFERRAL_BONUS,
                "Referral welcome bonus", reference=f"referral:{referrer_id}",
            )
        logger.info("Referral bonus awarded to %s and %s", referrer_id, account["id"])

    def list_investments(self, account_id: UUID) -> list[Investment]:
        rows = self.ledger.storage.scan("investments", lambda i: i["account_id"] == account_id)
        return sorted((Investment(**r) for r in rows), key=lambda i: i.start_date, reverse=True)

    # ---------- store ----------

    def purchase(self, account_id: UUID, product_id: int, idempotency_key: Optional[str] = None) -> PurchaseResponse:
        def operation(uow: UnitOfWork) -> PurchaseResponse:
            replay = self.ledger.find_replay(uow, idempotency_key, account_id, TransactionType.PURCHASE)
            if replay is not None:
                order = self._replayed_record(uow, "orders", replay, "product_id", product_id)
                response = self._respond(PurchaseResponse, uow, account_id, replay, "Purchase already processed")
                response.order = Order(**order)
                return response

            product = uow.get("products", product_id)
            if product is None or not product["is_active"]:
                raise RecordNotFoundError(f"Product {product_id} not found")
            if product["stock"] <= 0:
                raise OutOfStockError(f"Product {product_id} is out of stock")

            account = self.ledger.load_account(uow, account_id)
            if account["wallet_balance"] < product["price"]:
                raise InsufficientFundsError(f"Account {account_id} cannot afford product {product_id}")

            product["stock"] -= 1
            uow.put("products", product_id, product)

            order = {
                "id": uuid4(),
                "account_id": account_id,
                "product_id": product_id,
                "product_name": product["name"],
                "price": product["price"],
                "created_at": self.ledger.clock(),
            }
            uow.insert("orders", order["id"], order)

            entry = self.ledger.post(
                uow, account_id, -product["price"], TransactionType.PURCHASE, f"Purchased {product['name']}",
                reference=str(order["id"]), idempotency_key=idempotency_key,
            )
            response = self._respond(PurchaseResponse, uow, account_id, entry, "Purchase completed")
            response.order = Order(**order)
            return response

        response = self.ledger.run_atomic(operation)
        logger.info("Account %s purchased product %s", account_id, product_id)
        return response

    def list_orders(self, account_id: UUID) -> list[Order]:
        rows = self.ledger.storage.scan("orders", lambda o: o["account_id"] == account_id)
        return sorted((Order(**r) for r in rows), key=lambda o: o.created_at, reverse=True)

    # ---------- withdrawals ----------

    def withdraw(
        self,
        account_id: UUID,
        amount,
        method: str,
        account_details: str,
        idempotency_key: Optional[str] = None,
    ) -> WithdrawalResponse:
        method_key = (method or "").strip().lower()
        details = (account_details or "").strip()
        if method_key not in WITHDRAWAL_METHODS or not details:
            raise InvalidWithdrawalDetailsError(f"Unsupported method {method!r} or empty account details")

        stake = self.ledger.validate_amount(amount)
        if stake < WITHDRAWAL_METHODS[method_key]:
            raise InvalidAmountError(f"Minimum {method_key} withdrawal is {WITHDRAWAL_METHODS[method_key]}")

        def operation(uow: UnitOfWork) -> WithdrawalResponse:
            replay = self.ledger.find_replay(uow, idempotency_key, account_id, TransactionType.WITHDRAWAL, -stake)
            if replay is not None:
                withdrawal = self._replayed_record(uow, "withdrawals", replay, "method", method_key)
                response = self._respond(WithdrawalResponse, uow, account_id, replay, "Withdrawal already requested")
                response.withdrawal = Withdrawal(**withdrawal)
                return response

            account = self.ledger.load_account(uow, account_id)
            if account["wallet_balance"] < stake:
                raise InsufficientFundsError(f"Account {account_id} cannot withdraw {stake}")

            fee = to_money(stake * self.settings.withdrawal_fee_rate)
            withdrawal_id = uuid4()
            entry = self.ledger.post(
                uow, account_id, -stake, TransactionType.WITHDRAWAL, f"Withdrawal via {method_key}",
                reference=str(withdrawal_id), idempotency_key=idempotency_key,
            )
            withdrawal = {
                "id": withdrawal_id,
                "account_id": account_id,
                "amount": stake,
                "fee": fee,
                "net_amount": stake - fee,
                "method": method_key,
                "account_details": details,
                "status": WithdrawalStatus.PENDING,
                "transaction_id": entry["id"],
                "requested_at": entry["created_at"],
                "processed_at": None,
                "rejection_reason": None,
            }
            uow.insert("withdrawals", withdrawal_id, withdrawal)

            response = self._respond(WithdrawalResponse, uow, account_id, entry, "Withdrawal requested")
            response.withdrawal = Withdrawal(**withdrawal)
            return response

        response = self.ledger.run_atomic(operation)
        logger.info("Withdrawal request from %s: %s via %s", account_id, stake, method_key)
        return response

    def list_withdrawals(self, account_id: UUID) -> list[Withdrawal]:
        rows = self.ledger.storage.scan("withdrawals", lambda w: w["account_id"] == account_id)
        return sorted((Withdrawal(**r) for r in rows), key=lambda w: w.requested_at, reverse=True)

    # ---------- spin wheel ----------

    def spin(self, account_id: UUID) -> SpinResponse:
        # drawn once per request so a conflict retry cannot re-roll the outcome
        index = self.wheel.draw()
        segment = self.wheel.segments[index]

        def operation(uow: UnitOfWork) -> SpinResponse:
            account = self.ledger.load_account(uow, account_id)
            today = local_date(self.ledger.clock(), account["timezone"])
            usage_key = (account_id, today)
            usage = uow.get("spin_usage", usage_key)
            used = usage["count"] if usage else 0
            if used >= self.settings.spins_per_day:
                raise AlreadyClaimedTodayError(f"Account {account_id} has no spins left for {today}")

            uow.put("spin_usage", usage_key, {"account_id": account_id, "day": today, "count": used + 1})
            entry = self.ledger.post(
                uow, account_id, segment.amount, TransactionType.BONUS, f"Spin wheel reward {segment.amount}",
                reference=f"spin:{today.isoformat()}:{used + 1}",
            )
            account = self.ledger.load_account(uow, account_id)
            return SpinResponse(
                account=Account(**account),
                transaction=Transaction(**entry),
                message=f"You won {segment.amount}",
                segment_index=index,
                label=segment.label,
                amount=segment.amount,
                rotation=self.wheel.rotation_for(index),
                spins_left=self.settings.spins_per_day - used - 1,
            )

        response = self.ledger.run_atomic(operation)
        logger.info("Account %s spun segment %d (%s)", account_id, index, segment.amount)
        return response

    def spins_left(self, account_id: UUID) -> int:
        account = self.ledger.get_account(account_id)
        today = local_date(self.ledger.clock(), account.timezone)
        usage = self.ledger.storage.get("spin_usage", (account_id, today))
        return max(self.settings.spins_per_day - (usage["count"] if usage else 0), 0)

    # ---------- gifts ----------

    def claim_gift(self, account_id: UUID, gift_id: int) -> ActionResponse:
        def operation(uow: UnitOfWork) -> ActionResponse:
            gift = uow.get("gifts", gift_id)
            if gift is None or not gift["is_active"]:
                raise RecordNotFoundError(f"Gift {gift_id} not found")

            account = self.ledger.load_account(uow, account_id)
            now = self.ledger.clock()
            # re-read through get so a concurrent status change conflicts on commit
            investments = [
                uow.get("investments", i["id"])
                for i in uow.find("investments", lambda i: i["account_id"] == account_id)
            ]
            if not self._gift_rule(gift).evaluate(build_context(account, investments, now)):
                raise RewardNotEligibleError(f"Account {account_id} is not eligible for gift {gift_id}")

            window = GiftWindow(gift["window"])
            claim_key = self._claim_key(account_id, gift_id, window, local_date(now, account["timezone"]))
            if uow.get("gift_claims", claim_key) is not None:
                if window == GiftWindow.DAILY:
                    raise AlreadyClaimedTodayError(f"Gift {gift_id} already claimed today")
                raise AlreadyClaimedError(f"Gift {gift_id} already claimed")

            uow.insert("gift_claims", claim_key, {"account_id": account_id, "gift_id": gift_id, "claimed_at": now})
            entry = self.ledger.post(
                uow, account_id, gift["reward_amount"], TransactionType.BONUS, f"Gift: {gift['title']}",
                reference=f"gift:{gift_id}",
            )
            return self._respond(ActionResponse, uow, account_id, entry, f"{gift['title']} claimed")

        response = self.ledger.run_atomic(operation)
        logger.info("Account %s claimed gift %s", account_id, gift_id)
        return response

    def gift_statuses(self, account_id: UUID) -> list[GiftStatus]:
        account = self.ledger.get_account(account_id).model_dump()
        now = self.ledger.clock()
        today = local_date(now, account["timezone"])
        context = build_context(
            account, self.ledger.storage.scan("investments", lambda i: i["account_id"] == account_id), now
        )
        statuses = []
        for gift in sorted(self.ledger.storage.scan("gifts", lambda g: g["is_active"]), key=lambda g: g["id"]):
            claim_key = self._claim_key(account_id, gift["id"], GiftWindow(gift["window"]), today)
            statuses.append(GiftStatus(
                gift=Gift(**gift),
                eligible=self._gift_rule(gift).evaluate(context),
                claimed=self.ledger.storage.get("gift_claims", claim_key) is not None,
            ))
        return statuses

    @staticmethod
    def _gift_rule(gift: dict) -> EligibilityRule:
        return EligibilityRule(
            id=f"gift-{gift['id']}", name=gift["title"], conditions=parse_conditions(gift.get("conditions")),
        )

    @staticmethod
    def _claim_key(account_id: UUID, gift_id: int, window: GiftWindow, today: date) -> tuple:
        return (account_id, gift_id, today if window == GiftWindow.DAILY else None)

    # ---------- helpers ----------

    @staticmethod
    def _replayed_record(uow: UnitOfWork, table: str, entry: dict, field: str, expected) -> dict:
        """Row created by a replayed transaction; a key reused for another target conflicts."""
        row = uow.get(table, UUID(entry["reference"]))
        if row is None or row[field] != expected:
            raise IdempotencyConflictError(
                f"Idempotency key {entry['idempotency_key']} was used for a different {table[:-1]}"
            )
        return row

    def _respond(self, response_cls: Type[R], uow: UnitOfWork, account_id: UUID, entry: dict, message: str) -> R:
        account = self.ledger.load_account(uow, account_id)
        return response_cls(account=Account(**account), transaction=Transaction(**entry), message=message)
