import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable
from uuid import UUID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceChanged:
    account_id: UUID
    new_balance: Decimal
    transaction_id: UUID
    occurred_at: datetime


class EventBus:
    """Fan-out of committed balance changes to the realtime notification channel."""

    def __init__(self):
        self._subscribers: list[Callable[[BalanceChanged], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: Callable[[BalanceChanged], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(handler)

        def unsubscribe():
            with self._lock:
                if handler in self._subscribers:
                    self._subscribers.remove(handler)

        return unsubscribe

    def publish(self, event: BalanceChanged) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for handler in subscribers:
            # subscriber failures never undo a committed mutation
            try:
                handler(event)
            except Exception:
                logger.exception("Balance event subscriber failed for account %s", event.account_id)
