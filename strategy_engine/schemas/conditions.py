"""
Trigger Condition Schemas
Strategy Engine

Conditions that can trigger strategy execution: price thresholds, cron
schedules, balance thresholds, percentage moves and custom expressions.
Each condition config is a tagged variant keyed by ``type``.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


class ConditionType(str, Enum):
    """Types of trigger conditions."""
    PRICE = "price"
    TIME = "time"
    BALANCE = "balance"
    PERCENTAGE_CHANGE = "percentage_change"
    CUSTOM = "custom"


class ComparisonOperator(str, Enum):
    """Comparison operators for conditions."""
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"
    NEQ = "neq"


class PriceSource(str, Enum):
    JUPITER = "jupiter"
    PYTH = "pyth"
    BIRDEYE = "birdeye"
    COINGECKO = "coingecko"


class ChangeDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    EITHER = "either"


# =============================================================================
# Condition Configs
# =============================================================================

class PriceCondition(BaseModel):
    """Price crosses a threshold."""
    type: Literal["price"] = "price"

    token: str
    quote_currency: str = "USD"
    operator: ComparisonOperator
    target_price: float
    price_source: PriceSource = PriceSource.JUPITER

    # Trailing support
    track_peak: bool = False
    peak_price: Optional[float] = None


class TimeCondition(BaseModel):
    """Cron schedule, interpreted by the external scheduler."""
    type: Literal["time"] = "time"

    cron_expression: str
    timezone: str = "UTC"
    description: Optional[str] = None
    next_trigger_at: Optional[datetime] = None


class BalanceCondition(BaseModel):
    type: Literal["balance"] = "balance"

    token: str
    operator: ComparisonOperator
    target_balance: float
    wallet_address: Optional[str] = None


class PercentageChangeCondition(BaseModel):
    """Price moved by a fraction (0.10 = 10%) from a reference price."""
    type: Literal["percentage_change"] = "percentage_change"

    token: str
    quote_currency: str = "USD"
    reference_price: float
    reference_timestamp: datetime
    direction: ChangeDirection
    percentage_threshold: float


class ConditionVariable(BaseModel):
    name: str
    source: Literal["price", "balance", "timestamp", "constant"]
    config: Dict[str, Any] = Field(default_factory=dict)


class CustomCondition(BaseModel):
    """Free-form expression, evaluated outside the engine."""
    type: Literal["custom"] = "custom"

    expression: str
    variables: Dict[str, ConditionVariable] = Field(default_factory=dict)
    description: Optional[str] = None


ConditionConfig = Annotated[
    Union[
        PriceCondition,
        TimeCondition,
        BalanceCondition,
        PercentageChangeCondition,
        CustomCondition,
    ],
    Field(discriminator="type"),
]


# =============================================================================
# Trigger Condition
# =============================================================================

class NewCondition(BaseModel):
    """Condition as supplied by a caller, before the store assigns IDs."""
    config: ConditionConfig
    enabled: bool = True
    cooldown_seconds: Optional[int] = None
    priority: int = 0
    description: Optional[str] = None


class TriggerCondition(BaseModel):
    """Condition attached to a strategy, with evaluation state."""

    model_config = ConfigDict(validate_assignment=True)

    condition_id: str = Field(default_factory=lambda: f"cond_{uuid.uuid4()}")
    strategy_id: str
    config: ConditionConfig
    enabled: bool = True
    is_met: bool = False

    last_checked_at: Optional[datetime] = None
    last_observed_value: Optional[Union[float, str]] = None
    trigger_count: int = 0
    last_triggered_at: Optional[datetime] = None

    # Cooldown between triggers
    cooldown_seconds: Optional[int] = None
    in_cooldown: bool = False
    cooldown_until: Optional[datetime] = None

    # Higher priority is evaluated first
    priority: int = 0
    description: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def type(self) -> ConditionType:
        return ConditionType(self.config.type)

    @classmethod
    def from_new(cls, strategy_id: str, new: NewCondition) -> "TriggerCondition":
        return cls(
            strategy_id=strategy_id,
            config=new.config,
            enabled=new.enabled,
            cooldown_seconds=new.cooldown_seconds,
            priority=new.priority,
            description=new.description,
        )


class ConditionEvaluationResult(BaseModel):
    """Result of evaluating a single condition."""
    condition_id: str
    is_met: bool
    observed_value: Optional[Union[float, str]] = None
    target_value: Optional[Union[float, str]] = None
    evaluated_at: datetime = Field(default_factory=utc_now)
    error: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
