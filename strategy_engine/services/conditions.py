"""
Condition Engine
Strategy Engine

Comparison evaluation, human-readable descriptions, cooldown bookkeeping
and priority ordering for trigger conditions. Everything here is pure:
functions return updated copies and never touch the store.
"""

from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Union

from strategy_engine.schemas.conditions import (
    BalanceCondition,
    ChangeDirection,
    ComparisonOperator,
    ConditionEvaluationResult,
    CustomCondition,
    PercentageChangeCondition,
    PriceCondition,
    TimeCondition,
    TriggerCondition,
    utc_now,
)
from strategy_engine.utils.formatting import format_number


COMPARISON_DESCRIPTIONS: Dict[ComparisonOperator, str] = {
    ComparisonOperator.GT: "greater than",
    ComparisonOperator.GTE: "greater than or equal to",
    ComparisonOperator.LT: "less than",
    ComparisonOperator.LTE: "less than or equal to",
    ComparisonOperator.EQ: "equal to",
    ComparisonOperator.NEQ: "not equal to",
}


def evaluate_comparison(
    value: float,
    operator: Union[ComparisonOperator, str],
    target: float,
) -> bool:
    """
    Compare ``value`` against ``target``.

    Plain float semantics: ``eq`` is exact equality, so
    ``evaluate_comparison(0.1 + 0.2, "eq", 0.3)`` is False.
    """
    op = ComparisonOperator(operator)
    if op == ComparisonOperator.GT:
        return value > target
    if op == ComparisonOperator.GTE:
        return value >= target
    if op == ComparisonOperator.LT:
        return value < target
    if op == ComparisonOperator.LTE:
        return value <= target
    if op == ComparisonOperator.EQ:
        return value == target
    return value != target


def describe_comparison(operator: Union[ComparisonOperator, str]) -> str:
    return COMPARISON_DESCRIPTIONS[ComparisonOperator(operator)]


def generate_condition_description(condition: TriggerCondition) -> str:
    """Render a condition for display."""
    config = condition.config

    if isinstance(config, PriceCondition):
        op = describe_comparison(config.operator)
        return f"{config.token} price {op} ${format_number(config.target_price)} {config.quote_currency}"
    if isinstance(config, TimeCondition):
        return config.description or f"Scheduled: {config.cron_expression}"
    if isinstance(config, BalanceCondition):
        op = describe_comparison(config.operator)
        return f"{config.token} balance {op} {format_number(config.target_balance)}"
    if isinstance(config, PercentageChangeCondition):
        direction = {
            ChangeDirection.UP: "increases",
            ChangeDirection.DOWN: "decreases",
        }.get(config.direction, "changes")
        return f"{config.token} price {direction} by {format_number(config.percentage_threshold * 100)}%"
    if isinstance(config, CustomCondition):
        return config.description or config.expression
    return "Unknown condition"


# =============================================================================
# Cooldown
# =============================================================================

def is_in_cooldown(condition: TriggerCondition, now: Optional[datetime] = None) -> bool:
    """True while the condition's cooldown window is still open."""
    if not condition.in_cooldown or condition.cooldown_until is None:
        return False
    now = now or utc_now()
    return now < condition.cooldown_until


def apply_trigger(
    condition: TriggerCondition,
    observed_value: Optional[Union[float, str]] = None,
    now: Optional[datetime] = None,
) -> TriggerCondition:
    """Return a copy of ``condition`` recording that it fired at ``now``."""
    now = now or utc_now()
    update = {
        "is_met": True,
        "trigger_count": condition.trigger_count + 1,
        "last_triggered_at": now,
        "last_checked_at": now,
        "updated_at": now,
    }
    if observed_value is not None:
        update["last_observed_value"] = observed_value
    if condition.cooldown_seconds:
        update["in_cooldown"] = True
        update["cooldown_until"] = now + timedelta(seconds=condition.cooldown_seconds)
    return condition.model_copy(update=update)


def release_cooldown(condition: TriggerCondition, now: Optional[datetime] = None) -> TriggerCondition:
    """Clear an expired cooldown window. Conditions still cooling down are returned unchanged."""
    if not condition.in_cooldown or is_in_cooldown(condition, now):
        return condition
    return condition.model_copy(
        update={"in_cooldown": False, "cooldown_until": None, "updated_at": now or utc_now()}
    )


# =============================================================================
# Evaluation
# =============================================================================

def evaluate_condition(
    condition: TriggerCondition,
    observed_value: Optional[float],
    now: Optional[datetime] = None,
) -> ConditionEvaluationResult:
    """
    Evaluate one condition against an observed value.

    Price and balance conditions use the comparison operator; percentage
    change conditions compare ``(observed - reference) / reference`` to the
    threshold. Time and custom conditions are interpreted by external
    collaborators and come back with ``error`` set. A disabled condition or
    one still in cooldown is never met.
    """
    now = now or utc_now()
    config = condition.config
    result = ConditionEvaluationResult(
        condition_id=condition.condition_id,
        is_met=False,
        observed_value=observed_value,
        evaluated_at=now,
    )

    if not condition.enabled:
        result.context["skipped"] = "disabled"
        return result
    if is_in_cooldown(condition, now):
        result.context["skipped"] = "cooldown"
        result.context["cooldown_until"] = condition.cooldown_until.isoformat()
        return result

    if isinstance(config, (TimeCondition, CustomCondition)):
        result.error = f"{config.type} conditions are evaluated externally"
        return result
    if observed_value is None:
        result.error = "No observed value"
        return result

    if isinstance(config, PriceCondition):
        result.target_value = config.target_price
        result.is_met = evaluate_comparison(observed_value, config.operator, config.target_price)
    elif isinstance(config, BalanceCondition):
        result.target_value = config.target_balance
        result.is_met = evaluate_comparison(observed_value, config.operator, config.target_balance)
    elif isinstance(config, PercentageChangeCondition):
        if config.reference_price == 0:
            result.error = "Reference price is zero"
            return result
        change = (observed_value - config.reference_price) / config.reference_price
        result.target_value = config.percentage_threshold
        result.context["change"] = change
        if config.direction == ChangeDirection.UP:
            result.is_met = change >= config.percentage_threshold
        elif config.direction == ChangeDirection.DOWN:
            result.is_met = -change >= config.percentage_threshold
        else:
            result.is_met = abs(change) >= config.percentage_threshold

    return result


# =============================================================================
# Priority
# =============================================================================

def order_by_priority(conditions: Iterable[TriggerCondition]) -> List[TriggerCondition]:
    """
    Order conditions for evaluation.

    Highest ``priority`` first; equal priorities fall back to oldest
    ``created_at``, then ``condition_id``, so the order is total and stable.
    """
    return sorted(
        conditions,
        key=lambda c: (-c.priority, c.created_at, c.condition_id),
    )


def select_triggered(
    conditions: Iterable[TriggerCondition],
    results: Dict[str, ConditionEvaluationResult],
) -> Optional[TriggerCondition]:
    """Pick the condition that fires when several are met at once."""
    for condition in order_by_priority(conditions):
        result = results.get(condition.condition_id)
        if result is not None and result.is_met and not result.error:
            return condition
    return None
