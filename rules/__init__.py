"""
Rules Package

Provides reward eligibility conditions, the server-side spin wheel and the
reward rules evaluator that applies them through the ledger.
"""

from .rule_engine import (
    Condition,
    ConditionGroup,
    ConditionOperator,
    EligibilityRule,
    LogicalOperator,
)
from .spin import SpinWheel, WheelSegment
from .evaluator import RewardService

__all__ = [
    "Condition",
    "ConditionGroup",
    "ConditionOperator",
    "EligibilityRule",
    "LogicalOperator",
    "SpinWheel",
    "WheelSegment",
    "RewardService",
]
