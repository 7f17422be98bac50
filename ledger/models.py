from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict

CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Coerce to a 2-place Decimal; raises InvalidOperation on junk or non-finite input."""
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    if not amount.is_finite():
        raise InvalidOperation(f"Non-finite amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    INVESTMENT = "investment"
    PROFIT = "profit"
    BONUS = "bonus"
    REFERRAL_BONUS = "referral_bonus"
    TASK_REWARD = "task_reward"
    PURCHASE = "purchase"


class InvestmentStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TaskKind(str, Enum):
    DAILY = "daily"
    INTERN = "intern"


class GiftWindow(str, Enum):
    DAILY = "daily"
    ONCE = "once"


# ---------- entities ----------

class Account(BaseModel):
    id: UUID
    email: str
    name: str = ""
    phone: Optional[str] = None
    password_hash: str = Field(default="", exclude=True)
    wallet_balance: Decimal = Decimal("0.00")
    referral_code: str
    referred_by: Optional[UUID] = None
    is_admin: bool = False
    is_active: bool = True
    timezone: str = "Asia/Dhaka"
    last_daily_bonus_claim: Optional[datetime] = None
    daily_bonus_amount: Decimal = Decimal("10.00")
    login_streak: int = 0
    completed_daily_tasks: int = 0
    daily_tasks_day: Optional[date] = None
    completed_intern_tasks: int = 0
    total_tasks_completed: int = 0
    total_invested: Decimal = Decimal("0.00")
    total_referrals: int = 0
    last_login: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Transaction(BaseModel):
    id: UUID
    account_id: UUID
    type: TransactionType
    amount: Decimal
    balance_after: Decimal
    description: str
    reference: Optional[str] = None
    idempotency_key: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvestmentPackage(BaseModel):
    id: int
    name: str
    name_bn: str = ""
    min_amount: Decimal
    max_amount: Decimal
    daily_profit_percentage: Decimal
    duration_days: int
    is_active: bool = True
    is_popular: bool = False
    sort_order: int = 0

    model_config = ConfigDict(from_attributes=True)


class Product(BaseModel):
    id: int
    name: str
    description: str = ""
    category: str = ""
    price: Decimal
    stock: int
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)


class Task(BaseModel):
    id: int
    kind: TaskKind
    title: str
    description: str = ""
    reward_amount: Decimal
    time_required_minutes: int = 0
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)


class Gift(BaseModel):
    id: int
    title: str
    description: str = ""
    reward_amount: Decimal
    window: GiftWindow = GiftWindow.ONCE
    conditions: Optional[dict] = None
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)


class Investment(BaseModel):
    id: UUID
    account_id: UUID
    package_id: int
    package_name: str
    invested_amount: Decimal
    daily_profit_percentage: Decimal
    start_date: datetime
    end_date: datetime
    status: InvestmentStatus = InvestmentStatus.ACTIVE

    model_config = ConfigDict(from_attributes=True)


class Order(BaseModel):
    id: UUID
    account_id: UUID
    product_id: int
    product_name: str
    price: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Withdrawal(BaseModel):
    id: UUID
    account_id: UUID
    amount: Decimal
    fee: Decimal
    net_amount: Decimal
    method: str
    account_details: str
    status: WithdrawalStatus = WithdrawalStatus.PENDING
    transaction_id: UUID
    requested_at: datetime
    processed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# ---------- requests ----------

class SignUpRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=6)
    name: str = ""
    phone: Optional[str] = None
    referral_code: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class ChangePasswordRequest(BaseModel):
    old_password: str
    new_password: str = Field(..., min_length=6)


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    timezone: Optional[str] = None


class DepositRequest(BaseModel):
    account_id: UUID
    amount: Decimal
    reference: str = Field(..., description="Payment rail reference, used as idempotency key")


class InvestRequest(BaseModel):
    package_id: int
    amount: Optional[Decimal] = None
    idempotency_key: Optional[str] = None


class PurchaseRequest(BaseModel):
    product_id: int
    idempotency_key: Optional[str] = None


class WithdrawRequest(BaseModel):
    amount: Decimal
    method: str
    account_details: str
    idempotency_key: Optional[str] = None


class CompleteTaskRequest(BaseModel):
    task_id: int
    kind: TaskKind = TaskKind.DAILY


class InvestmentStatusRequest(BaseModel):
    status: InvestmentStatus


class AccountStatusRequest(BaseModel):
    is_active: Optional[bool] = None
    is_admin: Optional[bool] = None


class RejectWithdrawalRequest(BaseModel):
    reason: str = Field(..., description="Reason for rejection")


class PackageInput(BaseModel):
    name: str
    name_bn: str = ""
    min_amount: Decimal = Field(..., gt=0)
    max_amount: Decimal = Field(..., gt=0)
    daily_profit_percentage: Decimal = Field(..., ge=0)
    duration_days: int = Field(..., gt=0)
    is_active: bool = True
    is_popular: bool = False
    sort_order: int = 0


class ProductInput(BaseModel):
    name: str
    description: str = ""
    category: str = ""
    price: Decimal = Field(..., gt=0)
    stock: int = Field(..., ge=0)
    is_active: bool = True


class TaskInput(BaseModel):
    kind: TaskKind
    title: str
    description: str = ""
    reward_amount: Decimal = Field(..., gt=0)
    time_required_minutes: int = Field(default=0, ge=0)
    is_active: bool = True


class GiftInput(BaseModel):
    title: str
    description: str = ""
    reward_amount: Decimal = Field(..., gt=0)
    window: GiftWindow = GiftWindow.ONCE
    conditions: Optional[dict] = None
    is_active: bool = True


# ---------- responses ----------

class DeltaResult(BaseModel):
    new_balance: Decimal
    transaction: Transaction
    replayed: bool = False


class ActionResponse(BaseModel):
    account: Account
    transaction: Optional[Transaction] = None
    message: str


class InvestmentResponse(ActionResponse):
    investment: Optional[Investment] = None


class PurchaseResponse(ActionResponse):
    order: Optional[Order] = None


class WithdrawalResponse(ActionResponse):
    withdrawal: Optional[Withdrawal] = None


class SpinResponse(ActionResponse):
    segment_index: int
    label: str
    amount: Decimal
    rotation: float
    spins_left: int


class AccountBalance(BaseModel):
    account_id: UUID
    currency: str
    current_balance: Decimal
    total_entries: int
    last_transaction_at: Optional[datetime] = None


class LedgerHistoryResponse(BaseModel):
    account_id: UUID
    entries: list[Transaction]
    total_count: int
    current_balance: Decimal


class ReconciliationReport(BaseModel):
    account_id: UUID
    wallet_balance: Decimal
    ledger_sum: Decimal
    is_balanced: bool


class TaskStatus(BaseModel):
    task: Task
    completed: bool


class GiftStatus(BaseModel):
    gift: Gift
    eligible: bool
    claimed: bool
