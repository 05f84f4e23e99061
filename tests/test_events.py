"""
Tests for event factories and replay helpers.
"""

import pytest
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from strategy_engine.schemas.events import (
    StrategyEventType,
    create_error_event,
    create_execution_event,
    create_status_change_event,
    create_strategy_created_event,
    generate_correlation_id,
    get_latest_event_of_type,
    group_events_by_correlation,
    reconstruct_strategy_status,
)
from strategy_engine.schemas.strategy import StrategyExecution, StrategyStatus


T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def at(event, seconds, version):
    return event.model_copy(update={"timestamp": T0 + timedelta(seconds=seconds)}).with_version(version)


def status_event(previous, new, seconds, version, correlation_id=None):
    event = create_status_change_event("strat_1", "user-1", previous, new, "user", None, correlation_id)
    return at(event, seconds, version)


def execution_event(success, seconds, version, correlation_id=None, status_change=None):
    execution = StrategyExecution(
        strategy_id="strat_1",
        started_at=T0,
        completed_at=T0,
        success=success,
        error=None if success else "Swap failed",
    )
    event = create_execution_event("strat_1", "user-1", execution, correlation_id, status_change)
    return at(event, seconds, version)


class TestFactories:
    """Tests for event construction."""

    def test_status_change_types(self):
        cases = {
            StrategyStatus.PENDING: StrategyEventType.STRATEGY_SUBMITTED,
            StrategyStatus.ACTIVE: StrategyEventType.STRATEGY_ACTIVATED,
            StrategyStatus.TRIGGERED: StrategyEventType.CONDITION_TRIGGERED,
            StrategyStatus.FAILED: StrategyEventType.STRATEGY_FAILED,
            StrategyStatus.DRAFT: StrategyEventType.STRATEGY_RESET,
        }
        for status, expected in cases.items():
            event = create_status_change_event("s", "u", StrategyStatus.ACTIVE, status, "system")
            assert event.event_type == expected

    def test_actor_follows_trigger_source(self):
        by_user = create_status_change_event("s", "user-9", "draft", "pending", "user")
        by_condition = create_status_change_event("s", "user-9", "active", "triggered", "condition")

        assert (by_user.actor.type, by_user.actor.id) == ("user", "user-9")
        assert (by_condition.actor.type, by_condition.actor.id) == ("system", "condition")

    def test_execution_event_type(self):
        assert execution_event(True, 0, 1).event_type == StrategyEventType.EXECUTION_COMPLETED
        failed = execution_event(False, 0, 1)
        assert failed.event_type == StrategyEventType.EXECUTION_FAILED
        assert failed.payload["error"] == "Swap failed"

    def test_error_event(self):
        event = create_error_event("s", "u", "BOOM", "It broke", True, {"attempt": 2})
        assert event.payload == {
            "error_code": "BOOM",
            "error_message": "It broke",
            "recoverable": True,
            "context": {"attempt": 2},
        }

    def test_with_version_orders_ids(self):
        event = create_strategy_created_event("s", "u", {})
        v2 = event.with_version(2)
        v10 = event.with_version(10)

        assert v2.version == 2
        assert v2.event_id.startswith("evt_0000000002_")
        assert v2.event_id < v10.event_id
        assert v2.event_id.rsplit("_", 1)[-1] == event.event_id.rsplit("_", 1)[-1]

    def test_events_are_immutable(self):
        event = create_strategy_created_event("s", "u", {})
        with pytest.raises(ValidationError):
            event.version = 5

    def test_correlation_ids_are_unique(self):
        assert generate_correlation_id() != generate_correlation_id()


class TestReplay:
    """Tests for grouping and status reconstruction."""

    def test_reconstruct_status(self):
        events = [
            at(create_strategy_created_event("strat_1", "user-1", {}), 0, 1),
            status_event("draft", "pending", 1, 2),
            status_event("pending", "active", 2, 3),
            status_event("active", "triggered", 3, 4, "corr_1"),
            execution_event(
                True, 4, 5, "corr_1",
                {"previous_status": "triggered", "new_status": "active"},
            ),
        ]
        assert reconstruct_strategy_status(events) == StrategyStatus.ACTIVE
        assert reconstruct_strategy_status(events[:4]) == StrategyStatus.TRIGGERED

    def test_reconstruct_ignores_input_order(self):
        events = [
            status_event("pending", "active", 2, 3),
            status_event("active", "paused", 3, 4),
            status_event("draft", "pending", 1, 2),
        ]
        assert reconstruct_strategy_status(events) == StrategyStatus.PAUSED

    def test_same_timestamp_uses_version(self):
        events = [
            status_event("active", "paused", 5, 4),
            status_event("paused", "active", 5, 5),
        ]
        assert reconstruct_strategy_status(events) == StrategyStatus.ACTIVE

    def test_empty_log_is_draft(self):
        assert reconstruct_strategy_status([]) == StrategyStatus.DRAFT

    def test_group_by_correlation(self):
        triggered = status_event("active", "triggered", 1, 1, "corr_1")
        executed = execution_event(True, 2, 2, "corr_1")
        paused = status_event("active", "paused", 3, 3)

        groups = group_events_by_correlation([triggered, executed, paused])

        assert groups["corr_1"] == [triggered, executed]
        assert groups[paused.event_id] == [paused]

    def test_latest_of_type(self):
        first = status_event("draft", "pending", 1, 1)
        second = status_event("failed", "pending", 9, 7)
        other = status_event("pending", "active", 10, 8)

        latest = get_latest_event_of_type([second, first, other], StrategyEventType.STRATEGY_SUBMITTED)
        assert latest is second
        assert get_latest_event_of_type([other], StrategyEventType.STRATEGY_PAUSED) is None
