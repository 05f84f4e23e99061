"""
Strategy Schemas
Strategy Engine

Strategy records, per-type configurations (tagged by ``type``), the
lifecycle state machine and store query types.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from strategy_engine.schemas.conditions import NewCondition, TriggerCondition, UtcDatetime, utc_now


CURRENT_SCHEMA_VERSION = 1


class StrategyType(str, Enum):
    DCA = "dca"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    LIMIT_ORDER = "limit_order"
    GOAL = "goal"


class StrategyStatus(str, Enum):
    """Strategy lifecycle status."""
    DRAFT = "draft"
    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    TRIGGERED = "triggered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


STRATEGY_STATE_TRANSITIONS: Dict[StrategyStatus, List[StrategyStatus]] = {
    StrategyStatus.DRAFT: [StrategyStatus.PENDING, StrategyStatus.CANCELLED],
    StrategyStatus.PENDING: [StrategyStatus.ACTIVE, StrategyStatus.CANCELLED, StrategyStatus.FAILED],
    StrategyStatus.ACTIVE: [
        StrategyStatus.PAUSED,
        StrategyStatus.TRIGGERED,
        StrategyStatus.COMPLETED,
        StrategyStatus.CANCELLED,
        StrategyStatus.FAILED,
    ],
    StrategyStatus.TRIGGERED: [StrategyStatus.ACTIVE, StrategyStatus.COMPLETED, StrategyStatus.FAILED],
    StrategyStatus.PAUSED: [StrategyStatus.ACTIVE, StrategyStatus.CANCELLED],
    StrategyStatus.FAILED: [StrategyStatus.DRAFT, StrategyStatus.PENDING],
    StrategyStatus.COMPLETED: [],
    StrategyStatus.CANCELLED: [],
}

TERMINAL_STATUSES = frozenset({StrategyStatus.COMPLETED, StrategyStatus.CANCELLED})
UPDATABLE_STATUSES = frozenset({StrategyStatus.DRAFT, StrategyStatus.PAUSED})


def allowed_transitions(current: StrategyStatus) -> List[StrategyStatus]:
    return list(STRATEGY_STATE_TRANSITIONS[StrategyStatus(current)])


def is_valid_state_transition(current: StrategyStatus, target: StrategyStatus) -> bool:
    return StrategyStatus(target) in STRATEGY_STATE_TRANSITIONS[StrategyStatus(current)]


# =============================================================================
# Strategy Configs
# =============================================================================

class Frequency(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class TokenPair(BaseModel):
    """Swap direction. Serialized as ``{"from": ..., "to": ...}``."""

    model_config = ConfigDict(populate_by_name=True)

    from_token: Optional[str] = Field(default=None, alias="from")
    to_token: Optional[str] = Field(default=None, alias="to")


class DCAConfig(BaseModel):
    type: Literal["dca"] = "dca"

    token_pair: TokenPair = Field(default_factory=TokenPair)
    amount_per_execution: Optional[float] = None
    frequency: Optional[str] = None
    slippage_tolerance: Optional[float] = None

    # End conditions
    max_total_amount: Optional[float] = None
    max_executions: Optional[int] = None
    end_date: Optional[UtcDatetime] = None


class TrailingStop(BaseModel):
    enabled: bool = False
    trail_percentage: float = 0.0


class StopLossConfig(BaseModel):
    type: Literal["stop_loss"] = "stop_loss"

    token: Optional[str] = None
    trigger_price: Optional[float] = None
    quote_currency: Optional[str] = None
    trigger_type: Literal["below", "above"] = "below"
    amount_to_sell: Optional[Literal["all", "percentage", "fixed"]] = None
    amount: float = 100.0
    slippage_tolerance: Optional[float] = None
    trailing: Optional[TrailingStop] = None


class TakeProfitLevel(BaseModel):
    price: float
    sell_percentage: float


class ScaledTakeProfit(BaseModel):
    enabled: bool = False
    levels: List[TakeProfitLevel] = Field(default_factory=list)


class TakeProfitConfig(BaseModel):
    type: Literal["take_profit"] = "take_profit"

    token: Optional[str] = None
    trigger_price: Optional[float] = None
    quote_currency: Optional[str] = None
    trigger_type: Literal["below", "above"] = "above"
    amount_to_sell: Optional[Literal["all", "percentage", "fixed"]] = None
    amount: float = 100.0
    slippage_tolerance: Optional[float] = None
    scaled: Optional[ScaledTakeProfit] = None


class LimitOrderConfig(BaseModel):
    type: Literal["limit_order"] = "limit_order"

    token_pair: TokenPair = Field(default_factory=TokenPair)
    side: Literal["buy", "sell"] = "buy"
    amount: Optional[float] = None
    limit_price: Optional[float] = None
    slippage_tolerance: Optional[float] = None
    expires_at: Optional[UtcDatetime] = None


class GoalContribution(BaseModel):
    amount: float
    frequency: Literal["daily", "weekly", "biweekly", "monthly"] = "monthly"
    source_token: str = "USDC"


class GoalConfig(BaseModel):
    type: Literal["goal"] = "goal"

    goal_type: Optional[Literal["save", "accumulate", "grow", "income"]] = None
    target_amount: Optional[float] = None
    target_token: Optional[str] = None
    deadline: Optional[UtcDatetime] = None
    risk_tolerance: Optional[Literal["conservative", "moderate", "aggressive"]] = None
    achievement_strategy: Optional[Literal["dca", "yield_harvester", "trading_bot", "hybrid"]] = None
    contribution: Optional[GoalContribution] = None


StrategyConfig = Annotated[
    Union[DCAConfig, StopLossConfig, TakeProfitConfig, LimitOrderConfig, GoalConfig],
    Field(discriminator="type"),
]

CONFIG_MODELS: Dict[StrategyType, type] = {
    StrategyType.DCA: DCAConfig,
    StrategyType.STOP_LOSS: StopLossConfig,
    StrategyType.TAKE_PROFIT: TakeProfitConfig,
    StrategyType.LIMIT_ORDER: LimitOrderConfig,
    StrategyType.GOAL: GoalConfig,
}


def _inject_config_type(data: Any) -> Any:
    # Configs supplied as plain dicts may omit their tag; take it from the strategy type.
    if isinstance(data, dict):
        config = data.get("config")
        strategy_type = data.get("type")
        if isinstance(config, dict) and "type" not in config and strategy_type is not None:
            data = {**data, "config": {**config, "type": StrategyType(strategy_type).value}}
    return data


# =============================================================================
# Goal Progress
# =============================================================================

class GoalContributions(BaseModel):
    dca: float = 0.0
    yield_earned: float = 0.0
    trading_pnl: float = 0.0
    price_appreciation: float = 0.0
    manual_deposits: float = 0.0


class GoalProgress(BaseModel):
    goal_id: str
    target_amount: float
    current_amount: float = 0.0
    progress_percentage: float = 0.0
    projected_completion_date: Optional[datetime] = None
    on_track: bool = True
    days_remaining: Optional[int] = None
    contributions: GoalContributions = Field(default_factory=GoalContributions)
    milestones_reached: List[int] = Field(default_factory=list)
    last_updated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# Encrypted Execution
# =============================================================================

class EncryptedExecutionSettings(BaseModel):
    """Opt-in for the privacy-preserving execution path."""
    enabled: bool = False
    card_id: Optional[str] = None
    encrypted_balance_handle: Optional[str] = None
    public_key: Optional[str] = None
    epoch: Optional[int] = None


# =============================================================================
# Executions & Strategy
# =============================================================================

class StrategyExecution(BaseModel):
    """One execution attempt. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    execution_id: str = Field(default_factory=lambda: f"exec_{uuid.uuid4()}")
    strategy_id: str
    started_at: datetime
    completed_at: datetime
    success: bool
    error: Optional[str] = None
    transaction_signature: Optional[str] = None
    amount_executed: Optional[float] = None
    execution_price: Optional[float] = None
    fees_paid: Optional[float] = None
    actual_slippage: Optional[float] = None
    triggered_by: Optional[str] = None


class Strategy(BaseModel):
    """One automation instance, owned by the strategy store."""

    schema_version: int = CURRENT_SCHEMA_VERSION
    version: int = 0

    strategy_id: str
    user_id: str
    type: StrategyType
    name: str
    description: Optional[str] = None
    status: StrategyStatus = StrategyStatus.DRAFT
    config: StrategyConfig
    conditions: List[TriggerCondition] = Field(default_factory=list)
    executions: List[StrategyExecution] = Field(default_factory=list)

    # Running counters
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    total_amount_executed: float = 0.0
    total_fee_paid: float = 0.0

    # Lifecycle timestamps
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    activated_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    last_triggered_at: Optional[datetime] = None
    last_executed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    goal_progress: Optional[GoalProgress] = None
    encrypted: Optional[EncryptedExecutionSettings] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def tag_config(cls, data: Any) -> Any:
        return _inject_config_type(data)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def get_condition(self, condition_id: str) -> Optional[TriggerCondition]:
        for condition in self.conditions:
            if condition.condition_id == condition_id:
                return condition
        return None


class StrategySummary(BaseModel):
    """Lightweight view of a strategy."""
    strategy_id: str
    user_id: str
    type: StrategyType
    name: str
    status: StrategyStatus
    total_executions: int
    last_executed_at: Optional[datetime] = None
    created_at: datetime


# =============================================================================
# Store Inputs & Queries
# =============================================================================

class CreateStrategyInput(BaseModel):
    user_id: str = ""
    type: StrategyType
    name: str = ""
    description: Optional[str] = None
    config: Optional[StrategyConfig] = None
    conditions: List[NewCondition] = Field(default_factory=list)
    encrypted: Optional[EncryptedExecutionSettings] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    activate_immediately: bool = False

    @model_validator(mode="before")
    @classmethod
    def tag_config(cls, data: Any) -> Any:
        return _inject_config_type(data)


class UpdateStrategyInput(BaseModel):
    """Changes applied by StrategyStore.update. ``config`` is merged shallowly."""
    name: Optional[str] = None
    description: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    encrypted: Optional[EncryptedExecutionSettings] = None
    metadata: Optional[Dict[str, Any]] = None
    tags: Optional[List[str]] = None


class StrategyFilter(BaseModel):
    type: Optional[List[StrategyType]] = None
    status: Optional[List[StrategyStatus]] = None
    tags: Optional[List[str]] = None
    created_after: Optional[UtcDatetime] = None
    created_before: Optional[UtcDatetime] = None


class StrategySort(BaseModel):
    field: Literal["created_at", "updated_at", "name", "total_executions"] = "created_at"
    direction: Literal["asc", "desc"] = "desc"


class StrategyPagination(BaseModel):
    offset: int = 0
    limit: int = 50


class StrategyQueryResult(BaseModel):
    strategies: List[Strategy]
    total: int
    offset: int
    limit: int
    has_more: bool
