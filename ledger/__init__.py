"""
Wallet Ledger

This module provides:
- An append-only transaction ledger as the only writer of wallet balances
- Optimistic, versioned units of work with bounded retry
- Idempotent balance mutations
- Account, admin and catalog services
- Balance change notifications after commit
"""

from .models import (
    Account,
    Transaction,
    TransactionType,
    DeltaResult,
    AccountBalance,
)
from .service import LedgerService
from .storage import InMemoryStorage

__all__ = [
    "Account",
    "Transaction",
    "TransactionType",
    "DeltaResult",
    "AccountBalance",
    "LedgerService",
    "InMemoryStorage",
]
