"""
Strategy Validation
Strategy Engine

Pure validators for strategy inputs, per-type configs and trigger
conditions. Errors block the operation; warnings are advisory.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from strategy_engine.schemas.conditions import (
    BalanceCondition,
    CustomCondition,
    NewCondition,
    PercentageChangeCondition,
    PriceCondition,
    TimeCondition,
    TriggerCondition,
)
from strategy_engine.schemas.strategy import (
    CreateStrategyInput,
    DCAConfig,
    Frequency,
    GoalConfig,
    LimitOrderConfig,
    StopLossConfig,
    StrategyType,
    TakeProfitConfig,
)


# Issue codes
REQUIRED_FIELD = "REQUIRED_FIELD"
INVALID_VALUE = "INVALID_VALUE"
OUT_OF_RANGE = "OUT_OF_RANGE"
MAX_LENGTH = "MAX_LENGTH"
LOW_VALUE = "LOW_VALUE"
HIGH_VALUE = "HIGH_VALUE"
TYPE_MISMATCH = "TYPE_MISMATCH"

MAX_NAME_LENGTH = 100
MAX_SLIPPAGE_TOLERANCE = 0.5
HIGH_SLIPPAGE_TOLERANCE = 0.05

_TOKEN_SYMBOL_RE = re.compile(r"^[A-Z0-9]{2,10}$")


@dataclass
class ValidationIssue:
    """Single field-level error or warning."""
    field: str
    message: str
    code: str


@dataclass
class ValidationResult:
    valid: bool = True
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    def error(self, field_name: str, message: str, code: str) -> None:
        self.errors.append(ValidationIssue(field_name, message, code))
        self.valid = False

    def warn(self, field_name: str, message: str, code: str) -> None:
        self.warnings.append(ValidationIssue(field_name, message, code))

    def merge(self, other: "ValidationResult", prefix: str = "") -> None:
        for issue in other.errors:
            self.error(f"{prefix}{issue.field}", issue.message, issue.code)
        for issue in other.warnings:
            self.warn(f"{prefix}{issue.field}", issue.message, issue.code)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _is_past(value: datetime, now: Optional[datetime]) -> bool:
    now = now or datetime.now(timezone.utc)
    return _as_utc(value) <= _as_utc(now)


def _check_slippage(result: ValidationResult, slippage: Optional[float], warn_high: bool = True) -> None:
    if slippage is None:
        return
    if slippage < 0 or slippage > MAX_SLIPPAGE_TOLERANCE:
        result.error("slippage_tolerance", "Slippage tolerance must be between 0 and 50%", OUT_OF_RANGE)
    elif warn_high and slippage > HIGH_SLIPPAGE_TOLERANCE:
        result.warn(
            "slippage_tolerance",
            "High slippage tolerance may result in unfavorable trades",
            HIGH_VALUE,
        )


# =============================================================================
# Strategy Validation
# =============================================================================

def validate_create_strategy_input(
    data: CreateStrategyInput,
    now: Optional[datetime] = None,
) -> ValidationResult:
    """
    Validate a strategy creation request.

    Checks required fields, the name length, the config for the declared
    type and every initial condition (fields prefixed ``conditions[i].``).
    """
    result = ValidationResult()

    if not (data.user_id or "").strip():
        result.error("user_id", "User ID is required", REQUIRED_FIELD)

    if not (data.name or "").strip():
        result.error("name", "Strategy name is required", REQUIRED_FIELD)
    elif len(data.name) > MAX_NAME_LENGTH:
        result.error("name", f"Strategy name must be {MAX_NAME_LENGTH} characters or less", MAX_LENGTH)

    if data.type is None:
        result.error("type", "Strategy type is required", REQUIRED_FIELD)

    if data.config is None:
        result.error("config", "Strategy configuration is required", REQUIRED_FIELD)
    elif data.type is not None:
        result.merge(validate_strategy_config(data.type, data.config, now=now))

    for i, condition in enumerate(data.conditions):
        condition_result = validate_condition(condition)
        # Condition warnings are not surfaced at creation time
        for issue in condition_result.errors:
            result.error(f"conditions[{i}].{issue.field}", issue.message, issue.code)

    return result


def validate_strategy_config(
    strategy_type: Union[StrategyType, str],
    config: Any,
    now: Optional[datetime] = None,
) -> ValidationResult:
    """Dispatch to the validator for ``strategy_type``."""
    strategy_type = StrategyType(strategy_type)
    config_type = getattr(config, "type", None)
    if config_type != strategy_type.value:
        result = ValidationResult()
        result.error(
            "config.type",
            f"Config type '{config_type}' does not match strategy type '{strategy_type.value}'",
            TYPE_MISMATCH,
        )
        return result

    if strategy_type == StrategyType.DCA:
        return validate_dca_config(config, now=now)
    if strategy_type == StrategyType.STOP_LOSS:
        return validate_stop_loss_config(config)
    if strategy_type == StrategyType.TAKE_PROFIT:
        return validate_take_profit_config(config)
    if strategy_type == StrategyType.LIMIT_ORDER:
        return validate_limit_order_config(config, now=now)
    return validate_goal_config(config, now=now)


# =============================================================================
# Per-Type Validators
# =============================================================================

def validate_dca_config(config: DCAConfig, now: Optional[datetime] = None) -> ValidationResult:
    result = ValidationResult()
    pair = config.token_pair

    if not pair.from_token:
        result.error("token_pair.from", "Source token is required", REQUIRED_FIELD)
    if not pair.to_token:
        result.error("token_pair.to", "Target token is required", REQUIRED_FIELD)
    if pair.from_token and pair.from_token == pair.to_token:
        result.error("token_pair", "Source and target tokens must be different", INVALID_VALUE)

    amount = config.amount_per_execution
    if amount is None:
        result.error("amount_per_execution", "Amount per execution is required", REQUIRED_FIELD)
    elif amount <= 0:
        result.error("amount_per_execution", "Amount must be greater than 0", INVALID_VALUE)
    elif amount < 1:
        result.warn("amount_per_execution", "Very small amounts may result in high relative fees", LOW_VALUE)

    if not config.frequency:
        result.error("frequency", "Frequency is required", REQUIRED_FIELD)
    elif config.frequency not in {f.value for f in Frequency}:
        result.error(
            "frequency",
            "Invalid frequency. Must be hourly, daily, weekly, or monthly",
            INVALID_VALUE,
        )

    _check_slippage(result, config.slippage_tolerance)

    if config.max_total_amount is not None and config.max_total_amount <= 0:
        result.error("max_total_amount", "Max total amount must be greater than 0", INVALID_VALUE)
    if config.max_executions is not None and config.max_executions <= 0:
        result.error("max_executions", "Max executions must be greater than 0", INVALID_VALUE)
    if config.end_date is not None and _is_past(config.end_date, now):
        result.error("end_date", "End date must be in the future", INVALID_VALUE)

    return result


def _validate_sell_trigger(config: Union[StopLossConfig, TakeProfitConfig]) -> ValidationResult:
    result = ValidationResult()

    if not config.token:
        result.error("token", "Token is required", REQUIRED_FIELD)

    if config.trigger_price is None:
        result.error("trigger_price", "Trigger price is required", REQUIRED_FIELD)
    elif config.trigger_price <= 0:
        result.error("trigger_price", "Trigger price must be greater than 0", INVALID_VALUE)

    if not config.quote_currency:
        result.error("quote_currency", "Quote currency is required", REQUIRED_FIELD)

    if not config.amount_to_sell:
        result.error("amount_to_sell", "Amount to sell is required", REQUIRED_FIELD)
    elif config.amount_to_sell == "percentage" and not 0 < config.amount <= 100:
        result.error("amount", "Percentage must be between 0 and 100", OUT_OF_RANGE)
    elif config.amount_to_sell == "fixed" and config.amount <= 0:
        result.error("amount", "Fixed amount must be greater than 0", INVALID_VALUE)

    return result


def validate_stop_loss_config(config: StopLossConfig) -> ValidationResult:
    result = _validate_sell_trigger(config)
    _check_slippage(result, config.slippage_tolerance, warn_high=False)

    if config.trailing is not None and config.trailing.enabled:
        if not 0 < config.trailing.trail_percentage <= MAX_SLIPPAGE_TOLERANCE:
            result.error(
                "trailing.trail_percentage",
                "Trail percentage must be between 0 and 50%",
                OUT_OF_RANGE,
            )
    return result


def validate_take_profit_config(config: TakeProfitConfig) -> ValidationResult:
    result = _validate_sell_trigger(config)
    _check_slippage(result, config.slippage_tolerance, warn_high=False)

    if config.scaled is not None and config.scaled.enabled:
        total = 0.0
        for i, level in enumerate(config.scaled.levels):
            if level.price <= 0:
                result.error(f"scaled.levels[{i}].price", "Price must be greater than 0", INVALID_VALUE)
            if not 0 < level.sell_percentage <= 100:
                result.error(
                    f"scaled.levels[{i}].sell_percentage",
                    "Sell percentage must be between 0 and 100",
                    OUT_OF_RANGE,
                )
            total += level.sell_percentage
        if total > 100:
            result.error(
                "scaled.levels",
                "Total sell percentage across levels cannot exceed 100%",
                INVALID_VALUE,
            )
    return result


def validate_limit_order_config(config: LimitOrderConfig, now: Optional[datetime] = None) -> ValidationResult:
    result = ValidationResult()
    pair = config.token_pair

    if not pair.from_token:
        result.error("token_pair.from", "Source token is required", REQUIRED_FIELD)
    if not pair.to_token:
        result.error("token_pair.to", "Target token is required", REQUIRED_FIELD)
    if pair.from_token and pair.from_token == pair.to_token:
        result.error("token_pair", "Source and target tokens must be different", INVALID_VALUE)

    if config.amount is None:
        result.error("amount", "Amount is required", REQUIRED_FIELD)
    elif config.amount <= 0:
        result.error("amount", "Amount must be greater than 0", INVALID_VALUE)

    if config.limit_price is None:
        result.error("limit_price", "Limit price is required", REQUIRED_FIELD)
    elif config.limit_price <= 0:
        result.error("limit_price", "Limit price must be greater than 0", INVALID_VALUE)

    _check_slippage(result, config.slippage_tolerance)

    if config.expires_at is not None and _is_past(config.expires_at, now):
        result.error("expires_at", "Expiry must be in the future", INVALID_VALUE)
    return result


def validate_goal_config(config: GoalConfig, now: Optional[datetime] = None) -> ValidationResult:
    result = ValidationResult()

    if not config.goal_type:
        result.error("goal_type", "Goal type is required", REQUIRED_FIELD)

    if config.target_amount is None:
        result.error("target_amount", "Target amount is required", REQUIRED_FIELD)
    elif config.target_amount <= 0:
        result.error("target_amount", "Target amount must be greater than 0", INVALID_VALUE)

    if not config.target_token:
        result.error("target_token", "Target token is required", REQUIRED_FIELD)
    if not config.risk_tolerance:
        result.error("risk_tolerance", "Risk tolerance is required", REQUIRED_FIELD)
    if not config.achievement_strategy:
        result.error("achievement_strategy", "Achievement strategy is required", REQUIRED_FIELD)

    if config.deadline is not None and _is_past(config.deadline, now):
        result.error("deadline", "Deadline must be in the future", INVALID_VALUE)

    if config.contribution is not None and config.contribution.amount <= 0:
        result.error("contribution.amount", "Contribution amount must be greater than 0", INVALID_VALUE)

    return result


# =============================================================================
# Condition Validation
# =============================================================================

def validate_condition(condition: Union[NewCondition, TriggerCondition]) -> ValidationResult:
    """Config-level checks for a trigger condition."""
    result = ValidationResult()
    config = condition.config

    if condition.cooldown_seconds is not None and condition.cooldown_seconds < 0:
        result.error("cooldown_seconds", "Cooldown cannot be negative", INVALID_VALUE)

    if isinstance(config, PriceCondition):
        if not config.token:
            result.error("config.token", "Token is required", REQUIRED_FIELD)
        if config.target_price <= 0:
            result.error("config.target_price", "Target price must be greater than 0", INVALID_VALUE)
    elif isinstance(config, TimeCondition):
        if not is_valid_cron_expression(config.cron_expression):
            result.error("config.cron_expression", "Invalid cron expression", INVALID_VALUE)
    elif isinstance(config, BalanceCondition):
        if not config.token:
            result.error("config.token", "Token is required", REQUIRED_FIELD)
        if config.target_balance < 0:
            result.error("config.target_balance", "Target balance cannot be negative", INVALID_VALUE)
    elif isinstance(config, PercentageChangeCondition):
        if config.reference_price <= 0:
            result.error("config.reference_price", "Reference price must be greater than 0", INVALID_VALUE)
        if config.percentage_threshold <= 0:
            result.error(
                "config.percentage_threshold",
                "Percentage threshold must be greater than 0",
                INVALID_VALUE,
            )
    elif isinstance(config, CustomCondition):
        if not config.expression.strip():
            result.error("config.expression", "Expression is required", REQUIRED_FIELD)

    return result


# =============================================================================
# Helpers
# =============================================================================

def from_pydantic_error(exc: PydanticValidationError, prefix: str = "") -> ValidationResult:
    """Convert a pydantic parsing failure into field-level issues."""
    result = ValidationResult()
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"])
        code = REQUIRED_FIELD if err["type"] == "missing" else INVALID_VALUE
        result.error(f"{prefix}{loc}", err["msg"], code)
    return result


def format_validation_errors(errors: List[ValidationIssue]) -> str:
    """Format errors as a bulleted, user-facing message."""
    return "\n".join(f"- {e.field}: {e.message}" for e in errors)


def is_valid_token_symbol(symbol: str) -> bool:
    return bool(_TOKEN_SYMBOL_RE.match(symbol.upper()))


def is_valid_cron_expression(expression: str) -> bool:
    # Syntactic only: 5 or 6 whitespace-separated fields
    parts = expression.split()
    return 5 <= len(parts) <= 6
