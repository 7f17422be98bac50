import logging
from typing import Optional, Type
from uuid import UUID

from pydantic import BaseModel

from rules.rule_engine import parse_conditions

from .accounts import require_admin
from .errors import InvalidRequestError, RecordNotFoundError
from .models import (
    Gift,
    GiftInput,
    InvestmentPackage,
    PackageInput,
    Product,
    ProductInput,
    Task,
    TaskInput,
    TaskKind,
)
from .service import LedgerService
from .storage import UnitOfWork

logger = logging.getLogger(__name__)


class CatalogService:
    """Reads and administers packages, products, tasks and gifts."""

    def __init__(self, ledger: LedgerService):
        self.ledger = ledger
        self.storage = ledger.storage

    # ---------- public reads ----------

    def list_packages(self) -> list[InvestmentPackage]:
        rows = self.storage.scan("packages", lambda p: p["is_active"])
        return sorted((InvestmentPackage(**r) for r in rows), key=lambda p: (p.sort_order, p.id))

    def list_products(self) -> list[Product]:
        rows = self.storage.scan("products", lambda p: p["is_active"])
        return sorted((Product(**r) for r in rows), key=lambda p: p.id)

    def get_product(self, product_id: int) -> Product:
        row = self.storage.get("products", product_id)
        if row is None or not row["is_active"]:
            raise RecordNotFoundError(f"Product {product_id} not found")
        return Product(**row)

    def list_tasks(self, kind: Optional[TaskKind] = None) -> list[Task]:
        rows = self.storage.scan(
            "tasks", lambda t: t["is_active"] and (kind is None or TaskKind(t["kind"]) == TaskKind(kind))
        )
        return sorted((Task(**r) for r in rows), key=lambda t: t.id)

    def list_gifts(self) -> list[Gift]:
        rows = self.storage.scan("gifts", lambda g: g["is_active"])
        return sorted((Gift(**r) for r in rows), key=lambda g: g.id)

    # ---------- administration ----------

    def create_package(self, actor_id: UUID, data: PackageInput) -> InvestmentPackage:
        self._check_range(data)
        return self._create(actor_id, "packages", InvestmentPackage, data)

    def update_package(self, actor_id: UUID, package_id: int, data: PackageInput) -> InvestmentPackage:
        self._check_range(data)
        return self._update(actor_id, "packages", InvestmentPackage, package_id, data)

    def create_product(self, actor_id: UUID, data: ProductInput) -> Product:
        return self._create(actor_id, "products", Product, data)

    def update_product(self, actor_id: UUID, product_id: int, data: ProductInput) -> Product:
        return self._update(actor_id, "products", Product, product_id, data)

    def create_task(self, actor_id: UUID, data: TaskInput) -> Task:
        return self._create(actor_id, "tasks", Task, data)

    def update_task(self, actor_id: UUID, task_id: int, data: TaskInput) -> Task:
        return self._update(actor_id, "tasks", Task, task_id, data)

    def create_gift(self, actor_id: UUID, data: GiftInput) -> Gift:
        data = self._check_conditions(data)
        return self._create(actor_id, "gifts", Gift, data)

    def update_gift(self, actor_id: UUID, gift_id: int, data: GiftInput) -> Gift:
        data = self._check_conditions(data)
        return self._update(actor_id, "gifts", Gift, gift_id, data)

    def delete(self, actor_id: UUID, table: str, record_id: int) -> None:
        """Remove a catalog record. Orders and transactions keep their copied names and prices."""
        require_admin(self.storage, actor_id)

        def operation(uow: UnitOfWork) -> None:
            if uow.get(table, record_id) is None:
                raise RecordNotFoundError(f"No {table} record {record_id}")
            uow.delete(table, record_id)

        self.ledger.run_atomic(operation)
        logger.info("Admin %s deleted %s/%s", actor_id, table, record_id)

    def _create(self, actor_id: UUID, table: str, model: Type[BaseModel], data: BaseModel):
        require_admin(self.storage, actor_id)
        record_id = self.storage.next_id(table)
        row = {"id": record_id, **data.model_dump()}

        def operation(uow: UnitOfWork):
            uow.insert(table, record_id, row)
            return model(**row)

        record = self.ledger.run_atomic(operation)
        logger.info("Admin %s created %s/%s", actor_id, table, record_id)
        return record

    def _update(self, actor_id: UUID, table: str, model: Type[BaseModel], record_id: int, data: BaseModel):
        require_admin(self.storage, actor_id)

        def operation(uow: UnitOfWork):
            row = uow.get(table, record_id)
            if row is None:
                raise RecordNotFoundError(f"No {table} record {record_id}")
            row.update(data.model_dump())
            uow.put(table, record_id, row)
            return model(**row)

        record = self.ledger.run_atomic(operation)
        logger.info("Admin %s updated %s/%s", actor_id, table, record_id)
        return record

    @staticmethod
    def _check_range(data: PackageInput) -> None:
        if data.min_amount > data.max_amount:
            raise InvalidRequestError(f"min_amount {data.min_amount} exceeds max_amount {data.max_amount}")

    @staticmethod
    def _check_conditions(data: GiftInput) -> GiftInput:
        """Parse gift conditions and return the input with them in canonical form."""
        try:
            parsed = parse_conditions(data.conditions)
        except (KeyError, ValueError, TypeError) as e:
            raise InvalidRequestError(f"Malformed gift conditions: {e}")
        return data.model_copy(update={"conditions": parsed.to_dict() if parsed else None})
