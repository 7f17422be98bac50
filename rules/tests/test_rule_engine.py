"""
Unit Tests for eligibility conditions
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from rules.rule_engine import (
    Condition,
    ConditionGroup,
    ConditionOperator,
    EligibilityRule,
    LogicalOperator,
    build_context,
    parse_conditions,
)

CONTEXT = {
    "account": {"login_streak": 7, "total_referrals": 3, "is_admin": False, "total_invested": Decimal("500.00")},
    "investments": {"count": 1, "package_names": ["Starter Package"], "package_ids": [1]},
}


class TestCondition:
    """Tests for single conditions."""

    @pytest.mark.parametrize("operator,value,expected", [
        (ConditionOperator.EQUALS, 7, True),
        (ConditionOperator.NOT_EQUALS, 7, False),
        (ConditionOperator.GREATER_THAN, 6, True),
        (ConditionOperator.LESS_THAN, 7, False),
        (ConditionOperator.GREATER_THAN_OR_EQUAL, 7, True),
        (ConditionOperator.LESS_THAN_OR_EQUAL, 6, False),
        (ConditionOperator.IN, [5, 6, 7], True),
        (ConditionOperator.NOT_IN, [5, 6, 7], False),
        (ConditionOperator.IS_TRUE, None, True),
    ])
    def test_operators_on_streak(self, operator, value, expected):
        assert Condition("account.login_streak", operator, value).evaluate(CONTEXT) is expected

    def test_contains_on_list(self):
        assert Condition("investments.package_names", ConditionOperator.CONTAINS, "Starter Package").evaluate(CONTEXT)
        assert Condition("investments.package_names", ConditionOperator.NOT_CONTAINS, "VIP Package").evaluate(CONTEXT)

    def test_missing_field_never_satisfies_ordering(self):
        assert not Condition("account.unknown", ConditionOperator.GREATER_THAN_OR_EQUAL, 0).evaluate(CONTEXT)
        assert not Condition("account.login_streak.deeper", ConditionOperator.LESS_THAN, 100).evaluate(CONTEXT)

    def test_is_false(self):
        assert Condition("account.is_admin", ConditionOperator.IS_FALSE).evaluate(CONTEXT)

    def test_dict_round_trip(self):
        data = {"field": "account.total_referrals", "operator": "greater_than_or_equal", "value": 10}

        assert Condition.from_dict(data).to_dict() == data

    def test_unknown_operator_rejected(self):
        with pytest.raises(ValueError):
            Condition.from_dict({"field": "account.x", "operator": "approx"})


class TestConditionGroup:
    """Tests for AND / OR nesting."""

    def test_and_or_nesting(self):
        group = parse_conditions({
            "operator": "AND",
            "conditions": [
                {"field": "account.login_streak", "operator": "greater_than_or_equal", "value": 7},
                {"operator": "OR", "conditions": [
                    {"field": "account.total_referrals", "operator": "greater_than", "value": 10},
                    {"field": "investments.count", "operator": "equals", "value": 1},
                ]},
            ],
        })

        assert isinstance(group, ConditionGroup)
        assert group.evaluate(CONTEXT)

    def test_or_with_no_match(self):
        group = ConditionGroup(LogicalOperator.OR, [
            Condition("account.total_referrals", ConditionOperator.GREATER_THAN, 10),
            Condition("account.login_streak", ConditionOperator.LESS_THAN, 3),
        ])

        assert not group.evaluate(CONTEXT)

    def test_empty_group_passes(self):
        assert ConditionGroup(LogicalOperator.AND, []).evaluate(CONTEXT)


class TestEligibilityRule:
    """Tests for stored eligibility rules."""

    def test_no_conditions_always_eligible(self):
        assert EligibilityRule(id="gift-1", name="Daily check-in").evaluate({})

    def test_inactive_rule_never_eligible(self):
        rule = EligibilityRule(id="gift-2", name="Weekly", is_active=False)

        assert not rule.evaluate(CONTEXT)

    def test_stored_conditions(self):
        rule = EligibilityRule(
            id="gift-7",
            name="Referral master",
            conditions=parse_conditions(
                {"field": "account.total_referrals", "operator": "greater_than_or_equal", "value": 10}
            ),
        )

        assert not rule.evaluate(CONTEXT)
        assert rule.conditions.to_dict()["value"] == 10


class TestBuildContext:
    """Tests for the evaluation namespace built from an account."""

    def test_only_active_investments_count(self):
        now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        account = {"login_streak": 2, "created_at": now - timedelta(days=45)}
        investments = [
            {"status": "active", "package_name": "Premium Package", "package_id": 2},
            {"status": "cancelled", "package_name": "VIP Package", "package_id": 3},
        ]

        context = build_context(account, investments, now)

        assert context["account"]["age_days"] == 45
        assert context["account"]["login_streak"] == 2
        assert context["investments"] == {"count": 1, "package_names": ["Premium Package"], "package_ids": [2]}
