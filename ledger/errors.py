class LedgerServiceError(Exception):
    code = "ledger_error"


class AccountNotFoundError(LedgerServiceError):
    code = "account_not_found"


class RecordNotFoundError(LedgerServiceError):
    code = "record_not_found"


class InsufficientFundsError(LedgerServiceError):
    code = "insufficient_funds"


class OutOfStockError(LedgerServiceError):
    code = "out_of_stock"


class AlreadyClaimedError(LedgerServiceError):
    code = "already_claimed"


class AlreadyClaimedTodayError(AlreadyClaimedError):
    code = "already_claimed_today"


class TaskAlreadyCompletedError(LedgerServiceError):
    code = "task_already_completed"


class RewardNotEligibleError(LedgerServiceError):
    code = "reward_not_eligible"


class InvalidAmountError(LedgerServiceError):
    code = "invalid_amount"


class InvalidWithdrawalDetailsError(LedgerServiceError):
    code = "invalid_withdrawal_details"


class InvalidReferralCodeError(LedgerServiceError):
    code = "invalid_referral_code"


class EmailAlreadyRegisteredError(LedgerServiceError):
    code = "email_already_registered"


class InvalidCredentialsError(LedgerServiceError):
    code = "invalid_credentials"


class AccountInactiveError(LedgerServiceError):
    code = "account_inactive"


class UnauthorizedError(LedgerServiceError):
    code = "unauthorized"


class InvalidStateTransitionError(LedgerServiceError):
    code = "invalid_state_transition"


class StorageConflictError(LedgerServiceError):
    """Concurrent writers kept invalidating the unit of work past the retry budget."""

    code = "storage_conflict"


class IdempotencyConflictError(LedgerServiceError):
    code = "idempotency_conflict"


class InvalidRequestError(LedgerServiceError):
    code = "invalid_request"
