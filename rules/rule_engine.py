from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional, Union


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"
    IS_TRUE = "is_true"
    IS_FALSE = "is_false"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


ORDERING_OPERATORS = {
    ConditionOperator.GREATER_THAN,
    ConditionOperator.LESS_THAN,
    ConditionOperator.GREATER_THAN_OR_EQUAL,
    ConditionOperator.LESS_THAN_OR_EQUAL,
}


@dataclass
class Condition:
    field: str
    operator: ConditionOperator
    value: Any = None

    def evaluate(self, context: dict) -> bool:
        field_value = self._get_field_value(context, self.field)
        return self._apply_operator(field_value, self.value)

    def _get_field_value(self, context: dict, field_path: str) -> Any:
        value = context
        for part in field_path.split("."):
            if isinstance(value, dict):
                value = value.get(part)
            else:
                return None
        return value

    def _apply_operator(self, field_value: Any, compare_value: Any) -> bool:
        op = self.operator
        # a missing field never satisfies an ordering comparison
        if op in ORDERING_OPERATORS and (field_value is None or compare_value is None):
            return False
        if op == ConditionOperator.EQUALS: return field_value == compare_value
        if op == ConditionOperator.NOT_EQUALS: return field_value != compare_value
        if op == ConditionOperator.GREATER_THAN: return field_value > compare_value
        if op == ConditionOperator.LESS_THAN: return field_value < compare_value
        if op == ConditionOperator.GREATER_THAN_OR_EQUAL: return field_value >= compare_value
        if op == ConditionOperator.LESS_THAN_OR_EQUAL: return field_value <= compare_value
        if op == ConditionOperator.CONTAINS: return compare_value in field_value if field_value else False
        if op == ConditionOperator.NOT_CONTAINS: return compare_value not in field_value if field_value else True
        if op == ConditionOperator.IN: return field_value in compare_value if compare_value else False
        if op == ConditionOperator.NOT_IN: return field_value not in compare_value if compare_value else True
        if op == ConditionOperator.IS_TRUE: return bool(field_value) is True
        if op == ConditionOperator.IS_FALSE: return bool(field_value) is False
        return False

    def to_dict(self) -> dict:
        return {"field": self.field, "operator": self.operator.value, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict) -> "Condition":
        return cls(field=data["field"], operator=ConditionOperator(data["operator"]), value=data.get("value"))


@dataclass
class ConditionGroup:
    operator: LogicalOperator
    conditions: list[Union[Condition, "ConditionGroup"]]

    def evaluate(self, context: dict) -> bool:
        if not self.conditions:
            return True
        results = [cond.evaluate(context) for cond in self.conditions]
        return all(results) if self.operator == LogicalOperator.AND else any(results)

    def to_dict(self) -> dict:
        return {"operator": self.operator.value, "conditions": [c.to_dict() for c in self.conditions]}

    @classmethod
    def from_dict(cls, data: dict) -> "ConditionGroup":
        return cls(
            operator=LogicalOperator(data["operator"]),
            conditions=[parse_conditions(c) for c in data["conditions"]],
        )


def parse_conditions(data: Optional[dict]) -> Optional[Union[Condition, ConditionGroup]]:
    if not data:
        return None
    if "operator" in data and "conditions" in data:
        return ConditionGroup.from_dict(data)
    return Condition.from_dict(data)


@dataclass
class EligibilityRule:
    """Conditions an account must meet before a reward may be claimed. No conditions means always eligible."""

    id: str
    name: str
    conditions: Optional[Union[Condition, ConditionGroup]] = None
    is_active: bool = True

    def evaluate(self, context: dict) -> bool:
        if not self.is_active:
            return False
        if self.conditions is None:
            return True
        return self.conditions.evaluate(context)


def build_context(account: dict, investments: Iterable[dict], now: datetime) -> dict:
    """Flatten an account row and its active investments into the namespace conditions read from."""
    active = [i for i in investments if i["status"] == "active"]
    created_at = account.get("created_at")
    return {
        "account": {
            "login_streak": account.get("login_streak", 0),
            "total_referrals": account.get("total_referrals", 0),
            "total_tasks_completed": account.get("total_tasks_completed", 0),
            "completed_daily_tasks": account.get("completed_daily_tasks", 0),
            "completed_intern_tasks": account.get("completed_intern_tasks", 0),
            "total_invested": account.get("total_invested"),
            "wallet_balance": account.get("wallet_balance"),
            "is_admin": account.get("is_admin", False),
            "age_days": (now - created_at).days if created_at else 0,
        },
        "investments": {
            "count": len(active),
            "package_names": [i["package_name"] for i in active],
            "package_ids": [i["package_id"] for i in active],
        },
    }
