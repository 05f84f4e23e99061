"""
Schemas
Strategy Engine

Pydantic models for strategies, conditions, events and the execution boundary.
"""

from strategy_engine.schemas.conditions import (
    ComparisonOperator,
    ConditionType,
    NewCondition,
    TriggerCondition,
)
from strategy_engine.schemas.strategy import (
    STRATEGY_STATE_TRANSITIONS,
    CreateStrategyInput,
    Strategy,
    StrategyExecution,
    StrategyStatus,
    StrategyType,
    UpdateStrategyInput,
    is_valid_state_transition,
)
from strategy_engine.schemas.events import StrategyEvent, StrategyEventType
from strategy_engine.schemas.execution import ExecutionJob, ExecutionResult

__all__ = [
    "ComparisonOperator",
    "ConditionType",
    "NewCondition",
    "TriggerCondition",
    "STRATEGY_STATE_TRANSITIONS",
    "CreateStrategyInput",
    "Strategy",
    "StrategyExecution",
    "StrategyStatus",
    "StrategyType",
    "UpdateStrategyInput",
    "is_valid_state_transition",
    "StrategyEvent",
    "StrategyEventType",
    "ExecutionJob",
    "ExecutionResult",
]
