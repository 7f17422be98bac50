import logging
import secrets
import string
from typing import Optional
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from werkzeug.security import check_password_hash, generate_password_hash

from .errors import (
    AccountInactiveError,
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    InvalidReferralCodeError,
    InvalidRequestError,
    InvalidStateTransitionError,
    RecordNotFoundError,
    UnauthorizedError,
)
from .models import (
    Account,
    ActionResponse,
    AccountStatusRequest,
    ChangePasswordRequest,
    DeltaResult,
    DepositRequest,
    Investment,
    InvestmentStatus,
    SignUpRequest,
    Transaction,
    TransactionType,
    UpdateProfileRequest,
    Withdrawal,
    WithdrawalStatus,
)
from .service import LedgerService
from .storage import InMemoryStorage, UnitOfWork

logger = logging.getLogger(__name__)

REFERRAL_PREFIX = "AMAC"
REFERRAL_ALPHABET = string.ascii_uppercase + string.digits


def normalize_email(email: str) -> str:
    return email.strip().lower()


def require_admin(storage: InMemoryStorage, actor_id: UUID) -> dict:
    """Re-read the actor on every admin call; a demoted or deactivated admin loses access immediately."""
    actor = storage.get("accounts", actor_id)
    if actor is None or not actor["is_admin"] or not actor["is_active"]:
        raise UnauthorizedError(f"Account {actor_id} is not an active administrator")
    return actor


class AccountService:
    def __init__(self, ledger: LedgerService):
        self.ledger = ledger
        self.storage = ledger.storage
        self.settings = ledger.settings

    # ---------- self-service ----------

    def register(self, request: SignUpRequest, is_admin: bool = False) -> Account:
        email = normalize_email(request.email)
        if "@" not in email:
            raise InvalidRequestError(f"Not a valid email address: {request.email!r}")
        referral_code = (request.referral_code or "").strip().upper()
        password_hash = generate_password_hash(request.password)

        def operation(uow: UnitOfWork) -> Account:
            if uow.get("email_index", email) is not None:
                raise EmailAlreadyRegisteredError(f"Email {email} is already registered")

            referrer_id = None
            if referral_code:
                index = uow.get("referral_index", referral_code)
                if index is None:
                    raise InvalidReferralCodeError(f"Unknown referral code {referral_code}")
                referrer_id = index["account_id"]
                referrer = self.ledger.load_account(uow, referrer_id)
                self.ledger.update_account(uow, referrer_id, {"total_referrals": referrer["total_referrals"] + 1})

            account_id = uuid4()
            code = self._new_referral_code(uow)
            account = Account(
                id=account_id,
                email=email,
                name=request.name.strip(),
                phone=request.phone,
                referral_code=code,
                referred_by=referrer_id,
                is_admin=is_admin,
                timezone=self.settings.default_timezone,
                daily_bonus_amount=self.settings.daily_bonus_base,
                created_at=self.ledger.clock(),
            )
            row = account.model_dump()
            row["password_hash"] = password_hash
            uow.insert("accounts", account_id, row)
            uow.insert("email_index", email, {"account_id": account_id})
            uow.insert("referral_index", code, {"account_id": account_id})

            if self.settings.welcome_bonus > 0:
                self.ledger.post(uow, account_id, self.settings.welcome_bonus, TransactionType.BONUS, "Welcome bonus")
            return Account(**self.ledger.load_account(uow, account_id))

        account = self.ledger.run_atomic(operation)
        logger.info("Registered account %s (%s)", account.id, email)
        return account

    def _new_referral_code(self, uow: UnitOfWork) -> str:
        while True:
            code = REFERRAL_PREFIX + "".join(secrets.choice(REFERRAL_ALPHABET) for _ in range(4))
            # the insert in the same unit makes a concurrent duplicate fail at commit
            if uow.get("referral_index", code) is None:
                return code

    def authenticate(self, email: str, password: str) -> Account:
        email = normalize_email(email)

        def operation(uow: UnitOfWork) -> Account:
            index = uow.get("email_index", email)
            account = uow.get("accounts", index["account_id"]) if index else None
            if account is None or not check_password_hash(account["password_hash"], password):
                raise InvalidCredentialsError(f"Invalid credentials for {email}")
            if not account["is_active"]:
                raise AccountInactiveError(f"Account {account['id']} is deactivated")
            return Account(**self.ledger.update_account(uow, account["id"], {"last_login": self.ledger.clock()}))

        account = self.ledger.run_atomic(operation)
        logger.info("Account %s logged in", account.id)
        return account

    def change_password(self, account_id: UUID, request: ChangePasswordRequest) -> Account:
        new_hash = generate_password_hash(request.new_password)

        def operation(uow: UnitOfWork) -> Account:
            account = self.ledger.load_account(uow, account_id)
            if not check_password_hash(account["password_hash"], request.old_password):
                raise InvalidCredentialsError(f"Wrong current password for account {account_id}")
            return Account(**self.ledger.update_account(uow, account_id, {"password_hash": new_hash}))

        account = self.ledger.run_atomic(operation)
        logger.info("Password changed for account %s", account_id)
        return account

    def update_profile(self, account_id: UUID, request: UpdateProfileRequest) -> Account:
        changes = request.model_dump(exclude_none=True)
        if "timezone" in changes:
            try:
                ZoneInfo(changes["timezone"])
            except (ZoneInfoNotFoundError, ValueError):
                raise InvalidRequestError(f"Unknown timezone {changes['timezone']!r}")
        if not changes:
            return self.ledger.get_account(account_id)

        return self.ledger.run_atomic(lambda uow: Account(**self.ledger.update_account(uow, account_id, changes)))

    def list_referrals(self, account_id: UUID) -> list[Account]:
        self.ledger.get_account(account_id)
        rows = self.storage.scan("accounts", lambda a: a["referred_by"] == account_id)
        return sorted((Account(**r) for r in rows), key=lambda a: a.created_at)

    # ---------- administration ----------

    def create_admin(self, email: str, password: str, name: str = "Administrator") -> Account:
        """Bootstrap an administrator; returns the existing account when the email is taken by an admin."""
        existing = self.storage.get("email_index", normalize_email(email))
        if existing is not None:
            account = self.ledger.get_account(existing["account_id"])
            if not account.is_admin:
                raise EmailAlreadyRegisteredError(f"Email {email} belongs to a regular account")
            return account
        return self.register(SignUpRequest(email=email, password=password, name=name), is_admin=True)

    def list_accounts(self, actor_id: UUID) -> list[Account]:
        require_admin(self.storage, actor_id)
        return sorted((Account(**r) for r in self.storage.scan("accounts")), key=lambda a: a.created_at)

    def set_account_status(self, actor_id: UUID, account_id: UUID, request: AccountStatusRequest) -> Account:
        require_admin(self.storage, actor_id)
        changes = request.model_dump(exclude_none=True)
        if actor_id == account_id and changes:
            raise InvalidRequestError("Administrators cannot change their own status")
        account = self.ledger.run_atomic(lambda uow: Account(**self.ledger.update_account(uow, account_id, changes)))
        logger.info("Admin %s updated account %s: %s", actor_id, account_id, changes)
        return account

    def deposit(self, actor_id: UUID, request: DepositRequest) -> DeltaResult:
        require_admin(self.storage, actor_id)
        reference = request.reference.strip()
        if not reference:
            raise InvalidRequestError("Deposit reference is required")
        amount = self.ledger.validate_amount(request.amount)
        return self.ledger.apply_delta(
            request.account_id, amount, TransactionType.DEPOSIT, "Deposit",
            idempotency_key=f"deposit:{reference}", reference=reference,
        )

    def delete_account(self, actor_id: UUID, account_id: UUID) -> None:
        require_admin(self.storage, actor_id)
        if actor_id == account_id:
            raise InvalidRequestError("Administrators cannot delete their own account")

        def operation(uow: UnitOfWork) -> None:
            account = self.ledger.load_account(uow, account_id)
            pending = uow.find(
                "withdrawals", lambda w: w["account_id"] == account_id and w["status"] == WithdrawalStatus.PENDING
            )
            # pending withdrawals hold debited funds that only approve/reject can settle
            if pending:
                raise InvalidStateTransitionError(
                    f"Account {account_id} has {len(pending)} pending withdrawal(s); settle them before deleting"
                )
            for referred in uow.find("accounts", lambda a: a["referred_by"] == account_id):
                self.ledger.update_account(uow, referred["id"], {"referred_by": None})
            for investment in uow.find(
                "investments", lambda i: i["account_id"] == account_id and i["status"] == InvestmentStatus.ACTIVE
            ):
                investment["status"] = InvestmentStatus.CANCELLED
                uow.put("investments", investment["id"], investment)
            uow.delete("email_index", account["email"])
            uow.delete("referral_index", account["referral_code"])
            uow.delete("accounts", account_id)

        self.ledger.run_atomic(operation)
        logger.warning("Admin %s deleted account %s", actor_id, account_id)

    def list_investments(self, actor_id: UUID) -> list[Investment]:
        require_admin(self.storage, actor_id)
        rows = self.storage.scan("investments")
        return sorted((Investment(**r) for r in rows), key=lambda i: i.start_date, reverse=True)

    def list_all_transactions(self, actor_id: UUID) -> list[Transaction]:
        require_admin(self.storage, actor_id)
        return self.ledger.list_transactions()

    def update_investment_status(self, actor_id: UUID, investment_id: UUID, new_status: InvestmentStatus) -> Investment:
        require_admin(self.storage, actor_id)
        new_status = InvestmentStatus(new_status)

        def operation(uow: UnitOfWork) -> Investment:
            investment = uow.get("investments", investment_id)
            if investment is None:
                raise RecordNotFoundError(f"Investment {investment_id} not found")
            current = InvestmentStatus(investment["status"])
            if current != InvestmentStatus.ACTIVE or new_status == InvestmentStatus.ACTIVE:
                raise InvalidStateTransitionError(
                    f"Cannot move investment {investment_id} from {current.value} to {new_status.value}"
                )
            investment["status"] = new_status
            uow.put("investments", investment_id, investment)
            return Investment(**investment)

        investment = self.ledger.run_atomic(operation)
        logger.info("Admin %s set investment %s to %s", actor_id, investment_id, new_status.value)
        return investment

    def list_withdrawals(self, actor_id: UUID, status: Optional[WithdrawalStatus] = None) -> list[Withdrawal]:
        require_admin(self.storage, actor_id)
        rows = self.storage.scan("withdrawals", None if status is None else (lambda w: w["status"] == status))
        return sorted((Withdrawal(**r) for r in rows), key=lambda w: w.requested_at)

    def approve_withdrawal(self, actor_id: UUID, withdrawal_id: UUID) -> Withdrawal:
        require_admin(self.storage, actor_id)

        def operation(uow: UnitOfWork) -> Withdrawal:
            withdrawal = self._load_pending_withdrawal(uow, withdrawal_id, WithdrawalStatus.APPROVED)
            withdrawal["status"] = WithdrawalStatus.APPROVED
            withdrawal["processed_at"] = self.ledger.clock()
            uow.put("withdrawals", withdrawal_id, withdrawal)
            return Withdrawal(**withdrawal)

        withdrawal = self.ledger.run_atomic(operation)
        logger.info("Admin %s approved withdrawal %s", actor_id, withdrawal_id)
        return withdrawal

    def reject_withdrawal(self, actor_id: UUID, withdrawal_id: UUID, reason: str) -> ActionResponse:
        """Reject a pending withdrawal and refund the held amount to the wallet."""
        require_admin(self.storage, actor_id)

        def operation(uow: UnitOfWork) -> ActionResponse:
            withdrawal = self._load_pending_withdrawal(uow, withdrawal_id, WithdrawalStatus.REJECTED)
            withdrawal["status"] = WithdrawalStatus.REJECTED
            withdrawal["processed_at"] = self.ledger.clock()
            withdrawal["rejection_reason"] = reason
            uow.put("withdrawals", withdrawal_id, withdrawal)
            entry = self.ledger.post(
                uow, withdrawal["account_id"], withdrawal["amount"], TransactionType.WITHDRAWAL,
                "Withdrawal refund", reference=str(withdrawal_id),
            )
            account = self.ledger.load_account(uow, withdrawal["account_id"])
            return ActionResponse(account=Account(**account), transaction=Transaction(**entry), message=reason)

        response = self.ledger.run_atomic(operation)
        logger.info("Admin %s rejected withdrawal %s: %s", actor_id, withdrawal_id, reason)
        return response

    @staticmethod
    def _load_pending_withdrawal(uow: UnitOfWork, withdrawal_id: UUID, target: WithdrawalStatus) -> dict:
        withdrawal = uow.get("withdrawals", withdrawal_id)
        if withdrawal is None:
            raise RecordNotFoundError(f"Withdrawal {withdrawal_id} not found")
        if WithdrawalStatus(withdrawal["status"]) != WithdrawalStatus.PENDING:
            raise InvalidStateTransitionError(
                f"Withdrawal {withdrawal_id} is {withdrawal['status']}, cannot become {target.value}"
            )
        return withdrawal
