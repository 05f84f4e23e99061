"""
Strategy Event Schemas - Event Sourcing
Strategy Engine

Append-only audit events for every strategy state change, plus factory
functions and helpers for grouping and replaying them.
"""

import uuid
from collections import defaultdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from strategy_engine.schemas.conditions import UtcDatetime, utc_now
from strategy_engine.schemas.strategy import StrategyExecution, StrategyStatus


class StrategyEventType(str, Enum):
    """All strategy event types."""

    # Lifecycle Events
    STRATEGY_CREATED = "strategy_created"
    STRATEGY_SUBMITTED = "strategy_submitted"
    STRATEGY_ACTIVATED = "strategy_activated"
    STRATEGY_PAUSED = "strategy_paused"
    STRATEGY_CANCELLED = "strategy_cancelled"
    STRATEGY_COMPLETED = "strategy_completed"
    STRATEGY_FAILED = "strategy_failed"
    STRATEGY_RESET = "strategy_reset"

    # Configuration Events
    STRATEGY_UPDATED = "strategy_updated"
    CONDITION_ADDED = "condition_added"
    CONDITION_UPDATED = "condition_updated"

    # Execution Events
    CONDITION_TRIGGERED = "condition_triggered"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"

    # Goal Events
    GOAL_PROGRESS_UPDATED = "goal_progress_updated"
    GOAL_MILESTONE_REACHED = "goal_milestone_reached"

    # System Events
    ERROR_OCCURRED = "error_occurred"


# Status change events, keyed by the status entered
STATUS_EVENT_TYPES: Dict[StrategyStatus, StrategyEventType] = {
    StrategyStatus.DRAFT: StrategyEventType.STRATEGY_RESET,
    StrategyStatus.PENDING: StrategyEventType.STRATEGY_SUBMITTED,
    StrategyStatus.ACTIVE: StrategyEventType.STRATEGY_ACTIVATED,
    StrategyStatus.PAUSED: StrategyEventType.STRATEGY_PAUSED,
    StrategyStatus.TRIGGERED: StrategyEventType.CONDITION_TRIGGERED,
    StrategyStatus.COMPLETED: StrategyEventType.STRATEGY_COMPLETED,
    StrategyStatus.CANCELLED: StrategyEventType.STRATEGY_CANCELLED,
    StrategyStatus.FAILED: StrategyEventType.STRATEGY_FAILED,
}

STATUS_CHANGE_EVENT_TYPES = frozenset(STATUS_EVENT_TYPES.values())

TriggerSource = Literal["user", "system", "condition"]


class EventActor(BaseModel):
    """Who or what caused an event."""
    type: Literal["user", "system", "agent"]
    id: str
    name: Optional[str] = None


class StrategyEvent(BaseModel):
    """Immutable audit entry."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    strategy_id: str
    user_id: str
    event_type: StrategyEventType
    timestamp: datetime = Field(default_factory=utc_now)
    version: int = 0
    actor: EventActor
    correlation_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    metadata: Optional[Dict[str, Any]] = None

    @property
    def timestamp_ms(self) -> int:
        return int(self.timestamp.timestamp() * 1000)

    def with_version(self, version: int) -> "StrategyEvent":
        # Event IDs embed the version so same-millisecond events sort in append order
        suffix = self.event_id.rsplit("_", 1)[-1]
        return self.model_copy(update={"version": version, "event_id": f"evt_{version:010d}_{suffix}"})


class EventQueryOptions(BaseModel):
    event_types: Optional[List[StrategyEventType]] = None
    after: Optional[UtcDatetime] = None
    before: Optional[UtcDatetime] = None
    correlation_id: Optional[str] = None
    offset: int = 0
    limit: int = 100
    order: Literal["asc", "desc"] = "desc"


class EventQueryResult(BaseModel):
    events: List[StrategyEvent]
    total: int
    offset: int
    limit: int
    has_more: bool


# =============================================================================
# Event Factories
# =============================================================================

SYSTEM_ACTOR = EventActor(type="system", id="strategy-engine")


def generate_event_id() -> str:
    return f"evt_{0:010d}_{uuid.uuid4().hex[:12]}"


def generate_correlation_id() -> str:
    return f"corr_{uuid.uuid4().hex}"


def create_event(
    strategy_id: str,
    user_id: str,
    event_type: StrategyEventType,
    payload: Dict[str, Any],
    actor: EventActor,
    correlation_id: Optional[str] = None,
) -> StrategyEvent:
    return StrategyEvent(
        event_id=generate_event_id(),
        strategy_id=strategy_id,
        user_id=user_id,
        event_type=event_type,
        payload=payload,
        actor=actor,
        correlation_id=correlation_id,
    )


def create_strategy_created_event(strategy_id: str, user_id: str, payload: Dict[str, Any]) -> StrategyEvent:
    return create_event(
        strategy_id,
        user_id,
        StrategyEventType.STRATEGY_CREATED,
        payload,
        EventActor(type="user", id=user_id),
    )


def create_status_change_event(
    strategy_id: str,
    user_id: str,
    previous_status: StrategyStatus,
    new_status: StrategyStatus,
    triggered_by: TriggerSource,
    reason: Optional[str] = None,
    correlation_id: Optional[str] = None,
) -> StrategyEvent:
    if triggered_by == "user":
        actor = EventActor(type="user", id=user_id)
    else:
        actor = EventActor(type="system", id=triggered_by)
    return create_event(
        strategy_id,
        user_id,
        STATUS_EVENT_TYPES[StrategyStatus(new_status)],
        {
            "previous_status": StrategyStatus(previous_status).value,
            "new_status": StrategyStatus(new_status).value,
            "triggered_by": triggered_by,
            "reason": reason,
        },
        actor,
        correlation_id,
    )


def create_execution_event(
    strategy_id: str,
    user_id: str,
    execution: StrategyExecution,
    correlation_id: Optional[str] = None,
    status_change: Optional[Dict[str, Any]] = None,
) -> StrategyEvent:
    payload = {
        "execution_id": execution.execution_id,
        "execution": execution.model_dump(mode="json"),
        "error": execution.error,
    }
    if status_change:
        payload.update(status_change)
    event_type = (
        StrategyEventType.EXECUTION_COMPLETED if execution.success
        else StrategyEventType.EXECUTION_FAILED
    )
    return create_event(
        strategy_id,
        user_id,
        event_type,
        payload,
        SYSTEM_ACTOR,
        correlation_id,
    )


def create_goal_progress_event(
    strategy_id: str,
    user_id: str,
    previous_progress: float,
    new_progress: float,
    current_amount: float,
    target_amount: float,
) -> StrategyEvent:
    return create_event(
        strategy_id,
        user_id,
        StrategyEventType.GOAL_PROGRESS_UPDATED,
        {
            "previous_progress": previous_progress,
            "new_progress": new_progress,
            "current_amount": current_amount,
            "target_amount": target_amount,
        },
        EventActor(type="system", id="goal-tracker"),
    )


def create_milestone_event(
    strategy_id: str,
    user_id: str,
    milestone: int,
    current_amount: float,
    target_amount: float,
) -> StrategyEvent:
    return create_event(
        strategy_id,
        user_id,
        StrategyEventType.GOAL_MILESTONE_REACHED,
        {"milestone": milestone, "current_amount": current_amount, "target_amount": target_amount},
        EventActor(type="system", id="goal-tracker"),
    )


def create_error_event(
    strategy_id: str,
    user_id: str,
    error_code: str,
    error_message: str,
    recoverable: bool,
    context: Optional[Dict[str, Any]] = None,
) -> StrategyEvent:
    return create_event(
        strategy_id,
        user_id,
        StrategyEventType.ERROR_OCCURRED,
        {
            "error_code": error_code,
            "error_message": error_message,
            "recoverable": recoverable,
            "context": context or {},
        },
        SYSTEM_ACTOR,
    )


# =============================================================================
# Helpers
# =============================================================================

def group_events_by_correlation(events: Iterable[StrategyEvent]) -> Dict[str, List[StrategyEvent]]:
    """Group events by correlation ID; uncorrelated events form their own group."""
    groups: Dict[str, List[StrategyEvent]] = defaultdict(list)
    for event in events:
        groups[event.correlation_id or event.event_id].append(event)
    return dict(groups)


def get_latest_event_of_type(
    events: Iterable[StrategyEvent],
    event_type: StrategyEventType,
) -> Optional[StrategyEvent]:
    matching = [e for e in events if e.event_type == event_type]
    if not matching:
        return None
    return max(matching, key=lambda e: (e.timestamp, e.version))


def reconstruct_strategy_status(events: Iterable[StrategyEvent]) -> StrategyStatus:
    """Replay status change events to derive the current status."""
    status = StrategyStatus.DRAFT
    ordered = sorted(events, key=lambda e: (e.timestamp, e.version))
    for event in ordered:
        if event.event_type == StrategyEventType.STRATEGY_CREATED:
            status = StrategyStatus.DRAFT
        elif event.event_type in STATUS_CHANGE_EVENT_TYPES and "new_status" in event.payload:
            status = StrategyStatus(event.payload["new_status"])
        elif event.event_type == StrategyEventType.EXECUTION_COMPLETED or event.event_type == StrategyEventType.EXECUTION_FAILED:
            # Recording an execution returns a triggered strategy to active
            new_status = event.payload.get("new_status")
            if new_status:
                status = StrategyStatus(new_status)
    return status
