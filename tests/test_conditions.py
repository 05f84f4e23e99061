"""
Tests for the condition engine.
"""

import pytest
from datetime import datetime, timedelta, timezone

from strategy_engine.schemas.conditions import (
    BalanceCondition,
    ComparisonOperator,
    ConditionEvaluationResult,
    CustomCondition,
    PercentageChangeCondition,
    PriceCondition,
    TimeCondition,
    TriggerCondition,
)
from strategy_engine.services.conditions import (
    apply_trigger,
    describe_comparison,
    evaluate_comparison,
    evaluate_condition,
    generate_condition_description,
    is_in_cooldown,
    order_by_priority,
    release_cooldown,
    select_triggered,
)


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def price_condition(operator="lt", target=100.0, **kwargs) -> TriggerCondition:
    return TriggerCondition(
        strategy_id="strat_test",
        config=PriceCondition(token="SOL", operator=operator, target_price=target),
        **kwargs,
    )


class TestEvaluateComparison:
    """Tests for evaluate_comparison."""

    def test_documented_examples(self):
        assert evaluate_comparison(95, "lt", 100) is True
        assert evaluate_comparison(150, "lt", 100) is False
        assert evaluate_comparison(0.1 + 0.2, "eq", 0.3) is False

    @pytest.mark.parametrize(
        "value,op,target,expected",
        [
            (101, "gt", 100, True),
            (100, "gt", 100, False),
            (100, "gte", 100, True),
            (99, "gte", 100, False),
            (100, "lte", 100, True),
            (101, "lte", 100, False),
            (100.0, "eq", 100, True),
            (100, "neq", 100, False),
            (100.5, "neq", 100, True),
        ],
    )
    def test_operators(self, value, op, target, expected):
        assert evaluate_comparison(value, op, target) is expected

    def test_accepts_enum(self):
        assert evaluate_comparison(1, ComparisonOperator.LT, 2) is True

    def test_unknown_operator_rejected(self):
        with pytest.raises(ValueError):
            evaluate_comparison(1, "between", 2)


class TestDescriptions:
    """Tests for human-readable descriptions."""

    def test_describe_comparison(self):
        assert describe_comparison("gt") == "greater than"
        assert describe_comparison("gte") == "greater than or equal to"
        assert describe_comparison("lt") == "less than"
        assert describe_comparison("lte") == "less than or equal to"
        assert describe_comparison("eq") == "equal to"
        assert describe_comparison("neq") == "not equal to"

    def test_price_description(self):
        assert generate_condition_description(price_condition()) == "SOL price less than $100 USD"

    def test_time_description_prefers_own_text(self):
        condition = TriggerCondition(
            strategy_id="s",
            config=TimeCondition(cron_expression="0 9 * * 1", description="Every Monday"),
        )
        assert generate_condition_description(condition) == "Every Monday"

    def test_time_description_fallback(self):
        condition = TriggerCondition(strategy_id="s", config=TimeCondition(cron_expression="0 9 * * *"))
        assert generate_condition_description(condition) == "Scheduled: 0 9 * * *"

    def test_balance_description(self):
        condition = TriggerCondition(
            strategy_id="s",
            config=BalanceCondition(token="USDC", operator="gte", target_balance=500),
        )
        assert generate_condition_description(condition) == "USDC balance greater than or equal to 500"

    @pytest.mark.parametrize("direction,word", [("up", "increases"), ("down", "decreases"), ("either", "changes")])
    def test_percentage_change_description(self, direction, word):
        condition = TriggerCondition(
            strategy_id="s",
            config=PercentageChangeCondition(
                token="SOL",
                reference_price=100,
                reference_timestamp=NOW,
                direction=direction,
                percentage_threshold=0.25,
            ),
        )
        assert generate_condition_description(condition) == f"SOL price {word} by 25%"

    def test_custom_description_falls_back_to_expression(self):
        condition = TriggerCondition(strategy_id="s", config=CustomCondition(expression="sol > btc * 0.002"))
        assert generate_condition_description(condition) == "sol > btc * 0.002"


class TestEvaluateCondition:
    """Tests for evaluate_condition."""

    def test_price_met(self):
        result = evaluate_condition(price_condition(), 95.0, NOW)
        assert result.is_met is True
        assert result.target_value == 100.0
        assert result.error is None

    def test_price_not_met(self):
        assert evaluate_condition(price_condition(), 150.0, NOW).is_met is False

    def test_disabled_never_met(self):
        result = evaluate_condition(price_condition(enabled=False), 95.0, NOW)
        assert result.is_met is False
        assert result.context["skipped"] == "disabled"

    def test_cooldown_never_met(self):
        condition = price_condition(in_cooldown=True, cooldown_until=NOW + timedelta(minutes=5))
        result = evaluate_condition(condition, 95.0, NOW)
        assert result.is_met is False
        assert result.context["skipped"] == "cooldown"

    def test_time_condition_is_external(self):
        condition = TriggerCondition(strategy_id="s", config=TimeCondition(cron_expression="0 * * * *"))
        result = evaluate_condition(condition, None, NOW)
        assert result.is_met is False
        assert "externally" in result.error

    def test_missing_observation(self):
        result = evaluate_condition(price_condition(), None, NOW)
        assert result.error == "No observed value"

    @pytest.mark.parametrize(
        "direction,observed,expected",
        [
            ("up", 111.0, True),
            ("up", 105.0, False),
            ("down", 89.0, True),
            ("down", 111.0, False),
            ("either", 89.0, True),
            ("either", 111.0, True),
            ("either", 101.0, False),
        ],
    )
    def test_percentage_change(self, direction, observed, expected):
        condition = TriggerCondition(
            strategy_id="s",
            config=PercentageChangeCondition(
                token="SOL",
                reference_price=100.0,
                reference_timestamp=NOW,
                direction=direction,
                percentage_threshold=0.10,
            ),
        )
        assert evaluate_condition(condition, observed, NOW).is_met is expected


class TestCooldown:
    """Tests for cooldown bookkeeping."""

    def test_apply_trigger_starts_cooldown(self):
        condition = price_condition(cooldown_seconds=300)
        fired = apply_trigger(condition, 95.0, NOW)

        assert fired.trigger_count == 1
        assert fired.last_triggered_at == NOW
        assert fired.last_observed_value == 95.0
        assert fired.in_cooldown is True
        assert fired.cooldown_until == NOW + timedelta(seconds=300)
        # Original untouched
        assert condition.trigger_count == 0

    def test_apply_trigger_without_cooldown(self):
        fired = apply_trigger(price_condition(), 95.0, NOW)
        assert fired.in_cooldown is False
        assert fired.cooldown_until is None

    def test_is_in_cooldown_window(self):
        fired = apply_trigger(price_condition(cooldown_seconds=60), 95.0, NOW)
        assert is_in_cooldown(fired, NOW + timedelta(seconds=30)) is True
        assert is_in_cooldown(fired, NOW + timedelta(seconds=60)) is False

    def test_release_cooldown(self):
        fired = apply_trigger(price_condition(cooldown_seconds=60), 95.0, NOW)
        assert release_cooldown(fired, NOW + timedelta(seconds=10)) is fired

        released = release_cooldown(fired, NOW + timedelta(seconds=61))
        assert released.in_cooldown is False
        assert released.cooldown_until is None


class TestPriority:
    """Tests for priority ordering."""

    def test_highest_priority_first(self):
        low = price_condition(priority=1)
        high = price_condition(priority=10)
        mid = price_condition(priority=5)
        assert order_by_priority([low, high, mid]) == [high, mid, low]

    def test_ties_broken_by_creation_then_id(self):
        older = price_condition(condition_id="cond_b", created_at=NOW - timedelta(hours=1))
        newer_a = price_condition(condition_id="cond_a", created_at=NOW)
        newer_c = price_condition(condition_id="cond_c", created_at=NOW)
        assert order_by_priority([newer_c, newer_a, older]) == [older, newer_a, newer_c]

    def test_select_triggered_picks_highest_met(self):
        first = price_condition(priority=10)
        second = price_condition(priority=1)
        results = {
            first.condition_id: ConditionEvaluationResult(condition_id=first.condition_id, is_met=False),
            second.condition_id: ConditionEvaluationResult(condition_id=second.condition_id, is_met=True),
        }
        assert select_triggered([first, second], results) is second

    def test_select_triggered_none_met(self):
        condition = price_condition()
        results = {
            condition.condition_id: ConditionEvaluationResult(condition_id=condition.condition_id, is_met=False)
        }
        assert select_triggered([condition], results) is None
