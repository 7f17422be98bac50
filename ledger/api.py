import logging
from typing import Optional
from uuid import UUID

from fastapi import Depends, FastAPI, Header, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rules.evaluator import RewardService

from .accounts import AccountService
from .catalog import CatalogService
from .config import get_settings
from .errors import (
    AccountInactiveError,
    AccountNotFoundError,
    IdempotencyConflictError,
    InvalidCredentialsError,
    LedgerServiceError,
    RecordNotFoundError,
    StorageConflictError,
    UnauthorizedError,
)
from .messages import message_for
from .models import (
    Account,
    AccountBalance,
    AccountStatusRequest,
    ActionResponse,
    ChangePasswordRequest,
    CompleteTaskRequest,
    DeltaResult,
    DepositRequest,
    Gift,
    GiftInput,
    GiftStatus,
    Investment,
    InvestmentPackage,
    InvestmentResponse,
    InvestmentStatusRequest,
    InvestRequest,
    LedgerHistoryResponse,
    LoginRequest,
    Order,
    PackageInput,
    Product,
    ProductInput,
    PurchaseRequest,
    PurchaseResponse,
    ReconciliationReport,
    RejectWithdrawalRequest,
    SignUpRequest,
    SpinResponse,
    Task,
    TaskInput,
    TaskKind,
    TaskStatus,
    Transaction,
    UpdateProfileRequest,
    Withdrawal,
    WithdrawalResponse,
    WithdrawalStatus,
    WithdrawRequest,
)
from .service import LedgerService

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Wallet Ledger API",
    description="Wallet ledger and rewards engine with atomic, append-only balance mutations",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ledger_service = LedgerService(settings=settings)
account_service = AccountService(ledger_service)
catalog_service = CatalogService(ledger_service)
reward_service = RewardService(ledger_service)

if settings.admin_email and settings.admin_password:
    account_service.create_admin(settings.admin_email, settings.admin_password)
    logger.info("Administrator %s is ready", settings.admin_email)


def status_for(error: LedgerServiceError) -> int:
    if isinstance(error, (AccountNotFoundError, RecordNotFoundError)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, (UnauthorizedError, InvalidCredentialsError, AccountInactiveError)):
        return status.HTTP_403_FORBIDDEN
    if isinstance(error, (StorageConflictError, IdempotencyConflictError)):
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


@app.exception_handler(LedgerServiceError)
async def handle_ledger_error(request: Request, exc: LedgerServiceError) -> JSONResponse:
    logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.code, exc)
    return JSONResponse(
        status_code=status_for(exc),
        content={"error": exc.code, "message": message_for(exc), "detail": str(exc)},
    )


def current_account(x_account_id: Optional[UUID] = Header(default=None)) -> UUID:
    """Account id established by the identity layer in front of this service."""
    if x_account_id is None:
        raise UnauthorizedError("Missing X-Account-Id header")
    return x_account_id


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "wallet-ledger"}


# ---------- auth ----------

@app.post("/auth/signup", response_model=Account, status_code=status.HTTP_201_CREATED, tags=["Auth"])
def sign_up(request: SignUpRequest) -> Account:
    return account_service.register(request)


@app.post("/auth/login", response_model=Account, tags=["Auth"])
def login(request: LoginRequest) -> Account:
    return account_service.authenticate(request.email, request.password)


@app.post("/auth/password", response_model=Account, tags=["Auth"])
def change_password(request: ChangePasswordRequest, account_id: UUID = Depends(current_account)) -> Account:
    return account_service.change_password(account_id, request)


# ---------- account ----------

@app.get("/account", response_model=Account, tags=["Account"])
def get_account(account_id: UUID = Depends(current_account)) -> Account:
    return ledger_service.get_account(account_id)


@app.patch("/account", response_model=Account, tags=["Account"])
def update_profile(request: UpdateProfileRequest, account_id: UUID = Depends(current_account)) -> Account:
    return account_service.update_profile(account_id, request)


@app.get("/account/balance", response_model=AccountBalance, tags=["Account"])
def get_balance(account_id: UUID = Depends(current_account)) -> AccountBalance:
    return ledger_service.get_balance(account_id)


@app.get("/account/ledger", response_model=LedgerHistoryResponse, tags=["Account"])
def get_ledger(limit: int = 50, offset: int = 0, account_id: UUID = Depends(current_account)) -> LedgerHistoryResponse:
    return ledger_service.get_ledger_history(account_id, limit, offset)


@app.get("/account/reconcile", response_model=ReconciliationReport, tags=["Account"])
def reconcile(account_id: UUID = Depends(current_account)) -> ReconciliationReport:
    return ledger_service.reconcile(account_id)


@app.get("/account/referrals", response_model=list[Account], tags=["Account"])
def list_referrals(account_id: UUID = Depends(current_account)) -> list[Account]:
    return account_service.list_referrals(account_id)


@app.get("/account/investments", response_model=list[Investment], tags=["Account"])
def list_my_investments(account_id: UUID = Depends(current_account)) -> list[Investment]:
    return reward_service.list_investments(account_id)


@app.get("/account/orders", response_model=list[Order], tags=["Account"])
def list_my_orders(account_id: UUID = Depends(current_account)) -> list[Order]:
    return reward_service.list_orders(account_id)


@app.get("/account/withdrawals", response_model=list[Withdrawal], tags=["Account"])
def list_my_withdrawals(account_id: UUID = Depends(current_account)) -> list[Withdrawal]:
    return reward_service.list_withdrawals(account_id)


@app.get("/account/tasks", response_model=list[TaskStatus], tags=["Account"])
def list_my_tasks(kind: TaskKind = TaskKind.DAILY, account_id: UUID = Depends(current_account)) -> list[TaskStatus]:
    return reward_service.task_statuses(account_id, kind)


@app.get("/account/gifts", response_model=list[GiftStatus], tags=["Account"])
def list_my_gifts(account_id: UUID = Depends(current_account)) -> list[GiftStatus]:
    return reward_service.gift_statuses(account_id)


@app.get("/account/spins", tags=["Account"])
def spins_left(account_id: UUID = Depends(current_account)):
    return {"spins_left": reward_service.spins_left(account_id)}


# ---------- catalog ----------

@app.get("/catalog/packages", response_model=list[InvestmentPackage], tags=["Catalog"])
def list_packages() -> list[InvestmentPackage]:
    return catalog_service.list_packages()


@app.get("/catalog/products", response_model=list[Product], tags=["Catalog"])
def list_products() -> list[Product]:
    return catalog_service.list_products()


@app.get("/catalog/products/{product_id}", response_model=Product, tags=["Catalog"])
def get_product(product_id: int) -> Product:
    return catalog_service.get_product(product_id)


@app.get("/catalog/tasks", response_model=list[Task], tags=["Catalog"])
def list_tasks(kind: Optional[TaskKind] = None) -> list[Task]:
    return catalog_service.list_tasks(kind)


@app.get("/catalog/gifts", response_model=list[Gift], tags=["Catalog"])
def list_gifts() -> list[Gift]:
    return catalog_service.list_gifts()


# ---------- balance-mutating actions ----------

@app.post("/actions/daily-bonus", response_model=ActionResponse, tags=["Actions"])
def claim_daily_bonus(account_id: UUID = Depends(current_account)) -> ActionResponse:
    return reward_service.claim_daily_bonus(account_id)


@app.post("/actions/tasks/complete", response_model=ActionResponse, tags=["Actions"])
def complete_task(request: CompleteTaskRequest, account_id: UUID = Depends(current_account)) -> ActionResponse:
    return reward_service.complete_task(account_id, request.task_id, request.kind)


@app.post("/actions/invest", response_model=InvestmentResponse, status_code=status.HTTP_201_CREATED, tags=["Actions"])
def invest(request: InvestRequest, account_id: UUID = Depends(current_account)) -> InvestmentResponse:
    return reward_service.invest(account_id, request.package_id, request.amount, request.idempotency_key)


@app.post("/actions/purchase", response_model=PurchaseResponse, status_code=status.HTTP_201_CREATED, tags=["Actions"])
def purchase(request: PurchaseRequest, account_id: UUID = Depends(current_account)) -> PurchaseResponse:
    return reward_service.purchase(account_id, request.product_id, request.idempotency_key)


@app.post("/actions/withdraw", response_model=WithdrawalResponse, status_code=status.HTTP_201_CREATED, tags=["Actions"])
def withdraw(request: WithdrawRequest, account_id: UUID = Depends(current_account)) -> WithdrawalResponse:
    return reward_service.withdraw(
        account_id, request.amount, request.method, request.account_details, request.idempotency_key
    )


@app.post("/actions/spin", response_model=SpinResponse, tags=["Actions"])
def spin(account_id: UUID = Depends(current_account)) -> SpinResponse:
    return reward_service.spin(account_id)


@app.post("/actions/gifts/{gift_id}/claim", response_model=ActionResponse, tags=["Actions"])
def claim_gift(gift_id: int, account_id: UUID = Depends(current_account)) -> ActionResponse:
    return reward_service.claim_gift(account_id, gift_id)


# ---------- administration ----------

@app.get("/admin/accounts", response_model=list[Account], tags=["Admin"])
def admin_list_accounts(actor_id: UUID = Depends(current_account)) -> list[Account]:
    return account_service.list_accounts(actor_id)


@app.patch("/admin/accounts/{account_id}", response_model=Account, tags=["Admin"])
def admin_set_account_status(
    account_id: UUID, request: AccountStatusRequest, actor_id: UUID = Depends(current_account)
) -> Account:
    return account_service.set_account_status(actor_id, account_id, request)


@app.delete("/admin/accounts/{account_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Admin"])
def admin_delete_account(account_id: UUID, actor_id: UUID = Depends(current_account)):
    account_service.delete_account(actor_id, account_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/admin/deposits", response_model=DeltaResult, tags=["Admin"])
def admin_deposit(request: DepositRequest, actor_id: UUID = Depends(current_account)) -> DeltaResult:
    return account_service.deposit(actor_id, request)


@app.get("/admin/transactions", response_model=list[Transaction], tags=["Admin"])
def admin_list_transactions(actor_id: UUID = Depends(current_account)) -> list[Transaction]:
    return account_service.list_all_transactions(actor_id)


@app.get("/admin/investments", response_model=list[Investment], tags=["Admin"])
def admin_list_investments(actor_id: UUID = Depends(current_account)) -> list[Investment]:
    return account_service.list_investments(actor_id)


@app.patch("/admin/investments/{investment_id}", response_model=Investment, tags=["Admin"])
def admin_update_investment(
    investment_id: UUID, request: InvestmentStatusRequest, actor_id: UUID = Depends(current_account)
) -> Investment:
    return account_service.update_investment_status(actor_id, investment_id, request.status)


@app.get("/admin/withdrawals", response_model=list[Withdrawal], tags=["Admin"])
def admin_list_withdrawals(
    withdrawal_status: Optional[WithdrawalStatus] = None, actor_id: UUID = Depends(current_account)
) -> list[Withdrawal]:
    return account_service.list_withdrawals(actor_id, withdrawal_status)


@app.post("/admin/withdrawals/{withdrawal_id}/approve", response_model=Withdrawal, tags=["Admin"])
def admin_approve_withdrawal(withdrawal_id: UUID, actor_id: UUID = Depends(current_account)) -> Withdrawal:
    return account_service.approve_withdrawal(actor_id, withdrawal_id)


@app.post("/admin/withdrawals/{withdrawal_id}/reject", response_model=ActionResponse, tags=["Admin"])
def admin_reject_withdrawal(
    withdrawal_id: UUID, request: RejectWithdrawalRequest, actor_id: UUID = Depends(current_account)
) -> ActionResponse:
    return account_service.reject_withdrawal(actor_id, withdrawal_id, request.reason)


@app.post("/admin/packages", response_model=InvestmentPackage, status_code=status.HTTP_201_CREATED, tags=["Admin"])
def admin_create_package(request: PackageInput, actor_id: UUID = Depends(current_account)) -> InvestmentPackage:
    return catalog_service.create_package(actor_id, request)


@app.put("/admin/packages/{package_id}", response_model=InvestmentPackage, tags=["Admin"])
def admin_update_package(
    package_id: int, request: PackageInput, actor_id: UUID = Depends(current_account)
) -> InvestmentPackage:
    return catalog_service.update_package(actor_id, package_id, request)


@app.post("/admin/products", response_model=Product, status_code=status.HTTP_201_CREATED, tags=["Admin"])
def admin_create_product(request: ProductInput, actor_id: UUID = Depends(current_account)) -> Product:
    return catalog_service.create_product(actor_id, request)


@app.put("/admin/products/{product_id}", response_model=Product, tags=["Admin"])
def admin_update_product(product_id: int, request: ProductInput, actor_id: UUID = Depends(current_account)) -> Product:
    return catalog_service.update_product(actor_id, product_id, request)


@app.post("/admin/tasks", response_model=Task, status_code=status.HTTP_201_CREATED, tags=["Admin"])
def admin_create_task(request: TaskInput, actor_id: UUID = Depends(current_account)) -> Task:
    return catalog_service.create_task(actor_id, request)


@app.put("/admin/tasks/{task_id}", response_model=Task, tags=["Admin"])
def admin_update_task(task_id: int, request: TaskInput, actor_id: UUID = Depends(current_account)) -> Task:
    return catalog_service.update_task(actor_id, task_id, request)


@app.post("/admin/gifts", response_model=Gift, status_code=status.HTTP_201_CREATED, tags=["Admin"])
def admin_create_gift(request: GiftInput, actor_id: UUID = Depends(current_account)) -> Gift:
    return catalog_service.create_gift(actor_id, request)


@app.put("/admin/gifts/{gift_id}", response_model=Gift, tags=["Admin"])
def admin_update_gift(gift_id: int, request: GiftInput, actor_id: UUID = Depends(current_account)) -> Gift:
    return catalog_service.update_gift(actor_id, gift_id, request)


@app.delete("/admin/{table}/{record_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Admin"])
def admin_delete_catalog_record(table: str, record_id: int, actor_id: UUID = Depends(current_account)):
    if table not in {"packages", "products", "tasks", "gifts"}:
        raise RecordNotFoundError(f"Unknown catalog table {table}")
    catalog_service.delete(actor_id, table, record_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
