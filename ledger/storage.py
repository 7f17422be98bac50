"""
Account and Catalog store.

Rows are plain dicts kept in named tables. Each (table, key) carries a
version number; all writes go through a UnitOfWork which records the version
of every row it reads and is committed atomically: if any observed row has
changed since it was read, or an insert collides with an existing key, the
whole unit is rejected with WriteConflict and nothing is applied.
"""

import copy
import logging
import threading
from collections import defaultdict
from decimal import Decimal
from typing import Callable, Hashable, Optional

logger = logging.getLogger(__name__)

TABLES = (
    "accounts",
    "transactions",
    "investments",
    "packages",
    "products",
    "tasks",
    "gifts",
    "orders",
    "withdrawals",
    "task_completions",
    "gift_claims",
    "spin_usage",
    "referral_awards",
    "idempotency",
    "email_index",
    "referral_index",
)


class WriteConflict(Exception):
    pass


class UnitOfWork:
    def __init__(self, storage: "InMemoryStorage"):
        self.storage = storage
        self.read_versions: dict[tuple[str, Hashable], int] = {}
        self.writes: dict[tuple[str, Hashable], Optional[dict]] = {}
        self.inserts: set[tuple[str, Hashable]] = set()
        self.events: list = []

    def get(self, table: str, key: Hashable) -> Optional[dict]:
        ref = (table, key)
        if ref in self.writes:
            row = self.writes[ref]
            return copy.deepcopy(row) if row is not None else None
        row, version = self.storage.read(table, key)
        self.read_versions.setdefault(ref, version)
        return row

    def put(self, table: str, key: Hashable, row: dict) -> None:
        self.writes[(table, key)] = copy.deepcopy(row)

    def insert(self, table: str, key: Hashable, row: dict) -> None:
        self.inserts.add((table, key))
        self.put(table, key, row)

    def delete(self, table: str, key: Hashable) -> None:
        self.writes[(table, key)] = None

    def find(self, table: str, predicate: Optional[Callable[[dict], bool]] = None) -> list[dict]:
        """Rows of a table with this unit's staged writes overlaid. Not version-tracked."""
        rows = dict(self.storage.items(table))
        for (t, key), row in self.writes.items():
            if t != table:
                continue
            if row is None:
                rows.pop(key, None)
            else:
                rows[key] = copy.deepcopy(row)
        return [r for r in rows.values() if predicate is None or predicate(r)]

    def commit(self) -> None:
        self.storage.commit(self)


class InMemoryStorage:
    def __init__(self, seed: bool = True):
        self.tables: dict[str, dict[Hashable, dict]] = {name: {} for name in TABLES}
        self._versions: dict[tuple[str, Hashable], int] = {}
        self._sequences: dict[str, int] = defaultdict(int)
        self._lock = threading.RLock()
        if seed:
            self._seed_data()

    def begin(self) -> UnitOfWork:
        return UnitOfWork(self)

    def read(self, table: str, key: Hashable) -> tuple[Optional[dict], int]:
        with self._lock:
            row = self.tables[table].get(key)
            version = self._versions.get((table, key), 0)
            return (copy.deepcopy(row) if row is not None else None), version

    def items(self, table: str) -> list[tuple[Hashable, dict]]:
        with self._lock:
            return [(k, copy.deepcopy(v)) for k, v in self.tables[table].items()]

    def scan(self, table: str, predicate: Optional[Callable[[dict], bool]] = None) -> list[dict]:
        return [row for _, row in self.items(table) if predicate is None or predicate(row)]

    def get(self, table: str, key: Hashable) -> Optional[dict]:
        return self.read(table, key)[0]

    def next_id(self, table: str) -> int:
        with self._lock:
            highest = max((k for k in self.tables[table] if isinstance(k, int)), default=0)
            self._sequences[table] = max(self._sequences[table], highest) + 1
            return self._sequences[table]

    def commit(self, uow: UnitOfWork) -> None:
        with self._lock:
            for ref, seen in uow.read_versions.items():
                if self._versions.get(ref, 0) != seen:
                    raise WriteConflict(f"{ref[0]}/{ref[1]} changed since it was read")
            for table, key in uow.inserts:
                if key in self.tables[table]:
                    raise WriteConflict(f"{table}/{key} already exists")
            for (table, key), row in uow.writes.items():
                if row is None:
                    self.tables[table].pop(key, None)
                else:
                    self.tables[table][key] = copy.deepcopy(row)
                self._versions[(table, key)] = self._versions.get((table, key), 0) + 1
        logger.debug("Committed %d writes", len(uow.writes))

    def _seed_data(self):
        packages = [
            {"id": 1, "name": "Starter Package", "name_bn": "স্টার্টার প্যাকেজ",
             "min_amount": Decimal("500.00"), "max_amount": Decimal("2000.00"),
             "daily_profit_percentage": Decimal("3.00"), "duration_days": 30,
             "is_active": True, "is_popular": False, "sort_order": 1},
            {"id": 2, "name": "Premium Package", "name_bn": "প্রিমিয়াম প্যাকেজ",
             "min_amount": Decimal("2000.00"), "max_amount": Decimal("10000.00"),
             "daily_profit_percentage": Decimal("4.00"), "duration_days": 30,
             "is_active": True, "is_popular": True, "sort_order": 2},
            {"id": 3, "name": "VIP Package", "name_bn": "ভিআইপি প্যাকেজ",
             "min_amount": Decimal("10000.00"), "max_amount": Decimal("50000.00"),
             "daily_profit_percentage": Decimal("5.00"), "duration_days": 30,
             "is_active": True, "is_popular": False, "sort_order": 3},
        ]
        tasks = [
            (1, "daily", "Watch a video", "Watch a short sponsored video", "5.00", 2),
            (2, "daily", "Share a post", "Share the daily post on social media", "10.00", 3),
            (3, "daily", "Complete a survey", "Answer five quick questions", "15.00", 5),
            (4, "daily", "Read an article", "Read the featured article", "5.00", 4),
            (5, "daily", "Rate a product", "Leave a rating in the store", "8.00", 2),
            (6, "intern", "Orientation", "Finish the intern orientation module", "50.00", 30),
            (7, "intern", "First campaign", "Promote a campaign to five contacts", "100.00", 60),
            (8, "intern", "Market research", "Submit a short market research report", "150.00", 90),
        ]
        products = [
            (1, "iPhone 15 Pro", "Latest iPhone with advanced features", "smartphone", "120000.00", 5),
            (2, "MacBook Air M2", "Powerful laptop for professionals", "laptop", "150000.00", 3),
            (3, "Apple Watch Series 9", "Advanced smartwatch with health features", "watch", "45000.00", 10),
            (4, "AirPods Pro", "Premium wireless earbuds", "headphones", "25000.00", 0),
        ]
        gifts = [
            (1, "Daily check-in", "25.00", "daily", None),
            (2, "Weekly bonus", "100.00", "once",
             {"field": "account.login_streak", "operator": "greater_than_or_equal", "value": 7}),
            (3, "Monthly reward", "500.00", "once",
             {"field": "account.age_days", "operator": "greater_than_or_equal", "value": 30}),
            (4, "Starter pack", "200.00", "once",
             {"field": "investments.package_names", "operator": "contains", "value": "Starter Package"}),
            (5, "Premium pack", "500.00", "once",
             {"field": "investments.package_names", "operator": "contains", "value": "Premium Package"}),
            (6, "VIP pack", "1000.00", "once",
             {"field": "investments.package_names", "operator": "contains", "value": "VIP Package"}),
            (7, "Referral master", "1500.00", "once",
             {"field": "account.total_referrals", "operator": "greater_than_or_equal", "value": 10}),
            (8, "Task champion", "800.00", "once",
             {"field": "account.total_tasks_completed", "operator": "greater_than_or_equal", "value": 100}),
        ]

        for pkg in packages:
            self.tables["packages"][pkg["id"]] = pkg
        for task_id, kind, title, description, reward, minutes in tasks:
            self.tables["tasks"][task_id] = {
                "id": task_id, "kind": kind, "title": title, "description": description,
                "reward_amount": Decimal(reward), "time_required_minutes": minutes, "is_active": True,
            }
        for product_id, name, description, category, price, stock in products:
            self.tables["products"][product_id] = {
                "id": product_id, "name": name, "description": description, "category": category,
                "price": Decimal(price), "stock": stock, "is_active": True,
            }
        for gift_id, title, reward, window, conditions in gifts:
            self.tables["gifts"][gift_id] = {
                "id": gift_id, "title": title, "description": "", "reward_amount": Decimal(reward),
                "window": window, "conditions": conditions, "is_active": True,
            }
        for table in ("packages", "tasks", "products", "gifts"):
            for key in self.tables[table]:
                self._versions[(table, key)] = 1
