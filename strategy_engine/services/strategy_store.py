"""
Strategy Store
Strategy Engine

Owns strategy records:
- Lifecycle state machine with validated transitions
- Execution recording with running counters
- Goal progress and milestones
- Trigger condition bookkeeping (cooldown, trigger counts)
- Secondary indexes by user, type, status and active set
- Append-only event log, per strategy and global, capped per strategy
  and pruned past the retention window

Every mutation is a read-modify-write guarded by compare-and-set on the
stored record. A conflicting concurrent write causes the mutation to be
re-applied to the fresh record, up to ``max_write_retries`` times.
"""

import json
import math
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from strategy_engine.core.config import StoreSettings
from strategy_engine.core.exceptions import (
    ConcurrentModificationError,
    InvalidStateTransition,
    SchemaVersionError,
    StrategyNotFoundError,
    StrategyValidationError,
    UnsupportedOperation,
)
from strategy_engine.schemas.conditions import NewCondition, TriggerCondition, utc_now
from strategy_engine.schemas.events import (
    EventActor,
    EventQueryOptions,
    EventQueryResult,
    StrategyEvent,
    StrategyEventType,
    create_error_event,
    create_event,
    create_execution_event,
    create_goal_progress_event,
    create_milestone_event,
    create_status_change_event,
    create_strategy_created_event,
    generate_correlation_id,
)
from strategy_engine.schemas.strategy import (
    CONFIG_MODELS,
    CURRENT_SCHEMA_VERSION,
    UPDATABLE_STATUSES,
    CreateStrategyInput,
    GoalProgress,
    Strategy,
    StrategyExecution,
    StrategyFilter,
    StrategyPagination,
    StrategyQueryResult,
    StrategySort,
    StrategyStatus,
    StrategySummary,
    StrategyType,
    UpdateStrategyInput,
    allowed_transitions,
    is_valid_state_transition,
)
from strategy_engine.services.conditions import apply_trigger, is_in_cooldown
from strategy_engine.services.kv_store import KeyValueBackend
from strategy_engine.utils.validation import (
    from_pydantic_error,
    validate_condition,
    validate_create_strategy_input,
)


GOAL_MILESTONES = (25, 50, 75, 100)
ON_TRACK_TOLERANCE_PCT = 10.0


def project_goal(
    progress: GoalProgress,
    deadline: Optional[datetime],
    created_at: datetime,
    now: datetime,
) -> None:
    """
    Recompute the derived goal fields in place.

    The projection extrapolates the average daily accumulation since the
    goal was created (at least one day). A goal is on track while its
    progress is no more than 10 points behind the share of the time to the
    deadline that has elapsed.
    """
    progress.projected_completion_date = None
    if progress.progress_percentage >= 100:
        progress.projected_completion_date = now
    elif progress.current_amount > 0 and progress.target_amount > 0:
        days_elapsed = max((now - created_at).total_seconds() / 86400, 1.0)
        daily_rate = progress.current_amount / days_elapsed
        remaining = progress.target_amount - progress.current_amount
        progress.projected_completion_date = now + timedelta(days=remaining / daily_rate)

    progress.days_remaining = None
    progress.on_track = True
    if deadline is not None:
        progress.days_remaining = max(0, math.ceil((deadline - now).total_seconds() / 86400))
        total = (deadline - created_at).total_seconds()
        expected = 100 * (now - created_at).total_seconds() / total if total > 0 else 100.0
        progress.on_track = progress.progress_percentage >= expected - ON_TRACK_TOLERANCE_PCT


# A mutator edits the strategy in place and returns the events to append,
# or None when there is nothing to write.
Mutator = Callable[[Strategy], Optional[List[StrategyEvent]]]


class StrategyStore:
    """
    Persistence and lifecycle for strategies.

    Constructed with an explicit backend; there is no shared instance.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        settings: Optional[StoreSettings] = None,
    ):
        self.backend = backend
        self.settings = settings or StoreSettings()
        self._prefix = self.settings.key_prefix

    # =========================================================================
    # Keys
    # =========================================================================

    def _strategy_key(self, strategy_id: str) -> str:
        return f"{self._prefix}:strategy:{strategy_id}"

    def _user_key(self, user_id: str) -> str:
        return f"{self._prefix}:user:{user_id}:strategies"

    def _type_key(self, strategy_type: StrategyType) -> str:
        return f"{self._prefix}:type:{StrategyType(strategy_type).value}:strategies"

    def _status_key(self, status: StrategyStatus) -> str:
        return f"{self._prefix}:status:{StrategyStatus(status).value}:strategies"

    def _active_key(self) -> str:
        return f"{self._prefix}:active_strategies"

    def _events_key(self, strategy_id: str) -> str:
        return f"{self._prefix}:events:{strategy_id}"

    def _all_events_key(self) -> str:
        return f"{self._prefix}:events:all"

    def _event_key(self, event_id: str) -> str:
        return f"{self._prefix}:event:{event_id}"

    def _event_version_key(self, strategy_id: str) -> str:
        return f"{self._prefix}:event_version:{strategy_id}"

    # =========================================================================
    # Serialization
    # =========================================================================

    @staticmethod
    def _serialize(strategy: Strategy) -> str:
        return strategy.model_dump_json(by_alias=True)

    @staticmethod
    def _deserialize(raw: str) -> Strategy:
        data = json.loads(raw)
        schema_version = data.get("schema_version", 1)
        if schema_version > CURRENT_SCHEMA_VERSION:
            raise SchemaVersionError(
                f"Strategy {data.get('strategy_id')} has schema version {schema_version}; "
                f"this build reads up to {CURRENT_SCHEMA_VERSION}"
            )
        return Strategy.model_validate(data)

    # =========================================================================
    # Mutation core
    # =========================================================================

    async def _mutate(self, strategy_id: str, mutator: Mutator) -> Tuple[Strategy, List[StrategyEvent]]:
        """
        Apply ``mutator`` with optimistic concurrency.

        Exceptions raised by the mutator propagate and nothing is written.
        """
        key = self._strategy_key(strategy_id)
        attempts = self.settings.max_write_retries

        for attempt in range(1, attempts + 1):
            raw = await self.backend.get(key)
            if raw is None:
                raise StrategyNotFoundError(strategy_id)

            before = self._deserialize(raw)
            strategy = self._deserialize(raw)
            events = mutator(strategy)
            if events is None:
                return before, []

            strategy.version = before.version + 1
            if await self.backend.compare_and_set(key, raw, self._serialize(strategy)):
                await self._reindex(before, strategy)
                appended = [await self.append_event(event) for event in events]
                return strategy, appended

            logger.warning(
                f"Concurrent modification of {strategy_id} (attempt {attempt}/{attempts}), retrying"
            )

        raise ConcurrentModificationError(strategy_id, attempts)

    async def _reindex(self, before: Strategy, after: Strategy) -> None:
        if before.status != after.status:
            await self.backend.srem(self._status_key(before.status), after.strategy_id)
            await self.backend.sadd(self._status_key(after.status), after.strategy_id)
        if after.status == StrategyStatus.ACTIVE:
            await self.backend.sadd(self._active_key(), after.strategy_id)
        else:
            await self.backend.srem(self._active_key(), after.strategy_id)

    @staticmethod
    def _apply_transition(
        strategy: Strategy,
        new_status: StrategyStatus,
        triggered_by: str,
        reason: Optional[str],
        correlation_id: Optional[str] = None,
    ) -> StrategyEvent:
        current = strategy.status
        if not is_valid_state_transition(current, new_status):
            raise InvalidStateTransition(
                current.value,
                new_status.value,
                [s.value for s in allowed_transitions(current)],
            )

        now = utc_now()
        strategy.status = new_status
        strategy.updated_at = now
        if new_status == StrategyStatus.ACTIVE and strategy.activated_at is None:
            strategy.activated_at = now
        elif new_status == StrategyStatus.PAUSED:
            strategy.paused_at = now
        elif new_status == StrategyStatus.TRIGGERED:
            strategy.last_triggered_at = now
        elif new_status == StrategyStatus.COMPLETED:
            strategy.completed_at = now
        elif new_status == StrategyStatus.CANCELLED:
            strategy.cancelled_at = now

        return create_status_change_event(
            strategy.strategy_id,
            strategy.user_id,
            current,
            new_status,
            triggered_by,
            reason,
            correlation_id,
        )

    # =========================================================================
    # Create / Read
    # =========================================================================

    async def create(self, data: CreateStrategyInput) -> Strategy:
        """
        Validate and persist a new strategy.

        Raises:
            StrategyValidationError: If the input has validation errors
        """
        result = validate_create_strategy_input(data)
        if not result.valid:
            raise StrategyValidationError(result)
        for warning in result.warnings:
            logger.warning(f"Strategy '{data.name}': {warning.field}: {warning.message}")

        now = utc_now()
        strategy_id = f"strat_{uuid.uuid4()}"
        strategy = Strategy(
            strategy_id=strategy_id,
            user_id=data.user_id,
            type=data.type,
            name=data.name,
            description=data.description,
            config=data.config,
            conditions=[TriggerCondition.from_new(strategy_id, c) for c in data.conditions],
            encrypted=data.encrypted,
            metadata=data.metadata,
            tags=data.tags,
            created_at=now,
            updated_at=now,
        )

        if strategy.type == StrategyType.GOAL:
            strategy.goal_progress = GoalProgress(
                goal_id=strategy_id,
                target_amount=strategy.config.target_amount,
                last_updated_at=now,
            )
            project_goal(strategy.goal_progress, strategy.config.deadline, now, now)

        if not await self.backend.compare_and_set(self._strategy_key(strategy_id), None, self._serialize(strategy)):
            raise ConcurrentModificationError(strategy_id, 1)

        await self.backend.sadd(self._user_key(strategy.user_id), strategy_id)
        await self.backend.sadd(self._type_key(strategy.type), strategy_id)
        await self.backend.sadd(self._status_key(strategy.status), strategy_id)

        await self.append_event(
            create_strategy_created_event(
                strategy_id,
                strategy.user_id,
                {
                    "type": strategy.type.value,
                    "name": strategy.name,
                    "config": strategy.config.model_dump(mode="json", by_alias=True),
                    "condition_ids": [c.condition_id for c in strategy.conditions],
                },
            )
        )
        logger.info(f"Created {strategy.type.value} strategy {strategy_id} for user {strategy.user_id}")

        if data.activate_immediately:
            await self.transition(strategy_id, StrategyStatus.PENDING, "user", "activate_immediately")
            strategy = await self.transition(strategy_id, StrategyStatus.ACTIVE, "user", "activate_immediately")

        return strategy

    async def get(self, strategy_id: str) -> Optional[Strategy]:
        raw = await self.backend.get(self._strategy_key(strategy_id))
        if raw is None:
            return None
        return self._deserialize(raw)

    async def require(self, strategy_id: str) -> Strategy:
        strategy = await self.get(strategy_id)
        if strategy is None:
            raise StrategyNotFoundError(strategy_id)
        return strategy

    async def exists(self, strategy_id: str) -> bool:
        return await self.backend.exists(self._strategy_key(strategy_id))

    async def get_summary(self, strategy_id: str) -> Optional[StrategySummary]:
        strategy = await self.get(strategy_id)
        if strategy is None:
            return None
        return StrategySummary(
            strategy_id=strategy.strategy_id,
            user_id=strategy.user_id,
            type=strategy.type,
            name=strategy.name,
            status=strategy.status,
            total_executions=strategy.total_executions,
            last_executed_at=strategy.last_executed_at,
            created_at=strategy.created_at,
        )

    # =========================================================================
    # Update / Delete
    # =========================================================================

    async def update(self, strategy_id: str, changes: UpdateStrategyInput) -> Strategy:
        """
        Apply user edits. Only draft and paused strategies can be edited.

        ``changes.config`` is shallow-merged into the current config and the
        result is re-validated.
        """

        def apply(strategy: Strategy) -> Optional[List[StrategyEvent]]:
            if strategy.status not in UPDATABLE_STATUSES:
                raise UnsupportedOperation(
                    f"Cannot update strategy in status {strategy.status.value}; "
                    f"allowed: {', '.join(sorted(s.value for s in UPDATABLE_STATUSES))}"
                )

            changed: List[str] = []
            if changes.name is not None and changes.name != strategy.name:
                strategy.name = changes.name
                changed.append("name")
            if changes.description is not None and changes.description != strategy.description:
                strategy.description = changes.description
                changed.append("description")
            if changes.config is not None:
                merged = {
                    **strategy.config.model_dump(by_alias=True),
                    **changes.config,
                    "type": strategy.type.value,
                }
                try:
                    strategy.config = CONFIG_MODELS[strategy.type].model_validate(merged)
                except PydanticValidationError as e:
                    raise StrategyValidationError(from_pydantic_error(e, prefix="config."))
                changed.append("config")
            if changes.encrypted is not None:
                strategy.encrypted = changes.encrypted
                changed.append("encrypted")
            if changes.metadata is not None:
                strategy.metadata = {**strategy.metadata, **changes.metadata}
                changed.append("metadata")
            if changes.tags is not None:
                strategy.tags = list(changes.tags)
                changed.append("tags")

            if not changed:
                return None

            result = validate_create_strategy_input(
                CreateStrategyInput(
                    user_id=strategy.user_id,
                    type=strategy.type,
                    name=strategy.name,
                    config=strategy.config,
                )
            )
            if not result.valid:
                raise StrategyValidationError(result)

            strategy.updated_at = utc_now()
            return [
                create_event(
                    strategy.strategy_id,
                    strategy.user_id,
                    StrategyEventType.STRATEGY_UPDATED,
                    {"changed_fields": changed},
                    EventActor(type="user", id=strategy.user_id),
                )
            ]

        strategy, events = await self._mutate(strategy_id, apply)
        if events:
            logger.info(f"Updated strategy {strategy_id}: {events[0].payload['changed_fields']}")
        return strategy

    async def delete(self, strategy_id: str) -> Strategy:
        """Soft delete: the record is cancelled and kept for audit."""
        strategy = await self.require(strategy_id)
        if strategy.status == StrategyStatus.CANCELLED:
            return strategy
        return await self.transition(strategy_id, StrategyStatus.CANCELLED, "user", "deleted")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def transition(
        self,
        strategy_id: str,
        new_status: Union[StrategyStatus, str],
        triggered_by: str = "user",
        reason: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> Strategy:
        """
        Move a strategy to ``new_status``.

        Raises:
            InvalidStateTransition: If the state machine forbids the move;
                nothing is written in that case
        """
        new_status = StrategyStatus(new_status)

        def apply(strategy: Strategy) -> List[StrategyEvent]:
            return [self._apply_transition(strategy, new_status, triggered_by, reason, correlation_id)]

        strategy, events = await self._mutate(strategy_id, apply)
        previous = events[0].payload["previous_status"] if events else None
        logger.info(f"Strategy {strategy_id}: {previous} -> {new_status.value} ({triggered_by})")
        return strategy

    async def submit(self, strategy_id: str) -> Strategy:
        return await self.transition(strategy_id, StrategyStatus.PENDING)

    async def activate(self, strategy_id: str) -> Strategy:
        return await self.transition(strategy_id, StrategyStatus.ACTIVE)

    async def pause(self, strategy_id: str, reason: Optional[str] = None) -> Strategy:
        return await self.transition(strategy_id, StrategyStatus.PAUSED, "user", reason)

    async def resume(self, strategy_id: str) -> Strategy:
        return await self.transition(strategy_id, StrategyStatus.ACTIVE, "user", "resumed")

    async def cancel(self, strategy_id: str, reason: Optional[str] = None) -> Strategy:
        return await self.transition(strategy_id, StrategyStatus.CANCELLED, "user", reason)

    async def mark_triggered(self, strategy_id: str, correlation_id: Optional[str] = None) -> Strategy:
        return await self.transition(
            strategy_id, StrategyStatus.TRIGGERED, "condition", None, correlation_id
        )

    async def mark_completed(self, strategy_id: str, reason: Optional[str] = None) -> Strategy:
        return await self.transition(strategy_id, StrategyStatus.COMPLETED, "system", reason)

    complete = mark_completed

    async def mark_failed(
        self,
        strategy_id: str,
        error: str,
        error_code: str = "STRATEGY_FAILED",
        recoverable: bool = True,
    ) -> Strategy:
        """Fail the strategy and log an ``error_occurred`` event alongside the status change."""

        def apply(strategy: Strategy) -> List[StrategyEvent]:
            status_event = self._apply_transition(strategy, StrategyStatus.FAILED, "system", error)
            error_event = create_error_event(
                strategy.strategy_id,
                strategy.user_id,
                error_code,
                error,
                recoverable,
            )
            return [status_event, error_event]

        strategy, _ = await self._mutate(strategy_id, apply)
        logger.error(f"Strategy {strategy_id} failed: {error}")
        return strategy

    async def retry(self, strategy_id: str) -> Strategy:
        """Return a failed strategy to draft."""
        return await self.transition(strategy_id, StrategyStatus.DRAFT, "user", "retry")

    # =========================================================================
    # Executions
    # =========================================================================

    async def record_execution(
        self,
        strategy_id: str,
        execution: StrategyExecution,
        correlation_id: Optional[str] = None,
    ) -> Strategy:
        """
        Append an execution and update the running counters with it.

        A triggered strategy returns to active. Recording an execution ID
        that is already present changes nothing.
        """

        def apply(strategy: Strategy) -> Optional[List[StrategyEvent]]:
            if any(e.execution_id == execution.execution_id for e in strategy.executions):
                return None

            strategy.executions.append(execution)
            strategy.total_executions += 1
            if execution.success:
                strategy.successful_executions += 1
                strategy.total_amount_executed += execution.amount_executed or 0.0
                strategy.total_fee_paid += execution.fees_paid or 0.0
            else:
                strategy.failed_executions += 1
            strategy.last_executed_at = execution.completed_at
            strategy.updated_at = utc_now()

            status_change = None
            if strategy.status == StrategyStatus.TRIGGERED:
                strategy.status = StrategyStatus.ACTIVE
                status_change = {
                    "previous_status": StrategyStatus.TRIGGERED.value,
                    "new_status": StrategyStatus.ACTIVE.value,
                }

            return [
                create_execution_event(
                    strategy.strategy_id,
                    strategy.user_id,
                    execution,
                    correlation_id,
                    status_change,
                )
            ]

        strategy, events = await self._mutate(strategy_id, apply)
        if not events:
            logger.info(f"Execution {execution.execution_id} already recorded for {strategy_id}")
        elif execution.success:
            logger.info(
                f"Recorded execution {execution.execution_id} for {strategy_id}: "
                f"{execution.amount_executed} @ {execution.execution_price}"
            )
        else:
            logger.warning(f"Recorded failed execution {execution.execution_id} for {strategy_id}: {execution.error}")
        return strategy

    # =========================================================================
    # Goals
    # =========================================================================

    async def update_goal_progress(self, strategy_id: str, changes: Dict[str, Any]) -> Strategy:
        """
        Merge ``changes`` into the goal progress and recompute the percentage.

        Emits a milestone event for each of 25/50/75/100% crossed since the
        previous update. An active goal that reaches 100% is completed.
        """

        def apply(strategy: Strategy) -> List[StrategyEvent]:
            if strategy.type != StrategyType.GOAL or strategy.goal_progress is None:
                raise UnsupportedOperation(f"Strategy {strategy.strategy_id} is not a goal strategy")

            previous = strategy.goal_progress
            progress = GoalProgress.model_validate({**previous.model_dump(), **changes})
            if progress.target_amount > 0:
                progress.progress_percentage = 100 * progress.current_amount / progress.target_amount
            else:
                progress.progress_percentage = 0.0
            progress.last_updated_at = utc_now()
            project_goal(progress, strategy.config.deadline, strategy.created_at, progress.last_updated_at)

            events = [
                create_goal_progress_event(
                    strategy.strategy_id,
                    strategy.user_id,
                    previous.progress_percentage,
                    progress.progress_percentage,
                    progress.current_amount,
                    progress.target_amount,
                )
            ]
            for milestone in GOAL_MILESTONES:
                crossed = previous.progress_percentage < milestone <= progress.progress_percentage
                if crossed and milestone not in progress.milestones_reached:
                    progress.milestones_reached.append(milestone)
                    events.append(
                        create_milestone_event(
                            strategy.strategy_id,
                            strategy.user_id,
                            milestone,
                            progress.current_amount,
                            progress.target_amount,
                        )
                    )

            strategy.goal_progress = progress
            strategy.updated_at = progress.last_updated_at

            if progress.progress_percentage >= 100 and strategy.status == StrategyStatus.ACTIVE:
                events.append(
                    self._apply_transition(strategy, StrategyStatus.COMPLETED, "system", "goal_reached")
                )
            return events

        strategy, _ = await self._mutate(strategy_id, apply)
        logger.info(f"Goal {strategy_id} progress: {strategy.goal_progress.progress_percentage:.1f}%")
        return strategy

    # =========================================================================
    # Conditions
    # =========================================================================

    async def add_condition(self, strategy_id: str, condition: NewCondition) -> TriggerCondition:
        result = validate_condition(condition)
        if not result.valid:
            raise StrategyValidationError(result)

        created = TriggerCondition.from_new(strategy_id, condition)

        def apply(strategy: Strategy) -> List[StrategyEvent]:
            if strategy.is_terminal:
                raise UnsupportedOperation(
                    f"Cannot add conditions to a {strategy.status.value} strategy"
                )
            strategy.conditions.append(created)
            strategy.updated_at = utc_now()
            return [
                create_event(
                    strategy.strategy_id,
                    strategy.user_id,
                    StrategyEventType.CONDITION_ADDED,
                    {"condition_id": created.condition_id, "condition_type": created.type.value},
                    EventActor(type="user", id=strategy.user_id),
                )
            ]

        await self._mutate(strategy_id, apply)
        logger.info(f"Added {created.type.value} condition {created.condition_id} to {strategy_id}")
        return created

    async def set_condition_enabled(self, strategy_id: str, condition_id: str, enabled: bool) -> Strategy:
        """Conditions are never removed, only disabled."""

        def apply(strategy: Strategy) -> Optional[List[StrategyEvent]]:
            index = self._condition_index(strategy, condition_id)
            condition = strategy.conditions[index]
            if condition.enabled == enabled:
                return None
            now = utc_now()
            strategy.conditions[index] = condition.model_copy(update={"enabled": enabled, "updated_at": now})
            strategy.updated_at = now
            return [
                create_event(
                    strategy.strategy_id,
                    strategy.user_id,
                    StrategyEventType.CONDITION_UPDATED,
                    {"condition_id": condition_id, "enabled": enabled},
                    EventActor(type="user", id=strategy.user_id),
                )
            ]

        strategy, _ = await self._mutate(strategy_id, apply)
        return strategy

    async def record_condition_triggered(
        self,
        strategy_id: str,
        condition_id: str,
        observed_value: Optional[Union[float, str]] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[Strategy, str]:
        """
        Record that a condition fired and move the strategy to triggered.

        Starts the condition's cooldown window and mints the correlation ID
        that links the trigger to the execution that follows.

        Returns:
            The updated strategy and the correlation ID
        """
        correlation_id = generate_correlation_id()

        def apply(strategy: Strategy) -> List[StrategyEvent]:
            index = self._condition_index(strategy, condition_id)
            condition = strategy.conditions[index]
            if not condition.enabled:
                raise UnsupportedOperation(f"Condition {condition_id} is disabled")
            if is_in_cooldown(condition, now):
                raise UnsupportedOperation(
                    f"Condition {condition_id} is in cooldown until {condition.cooldown_until.isoformat()}"
                )

            strategy.conditions[index] = apply_trigger(condition, observed_value, now)
            event = self._apply_transition(
                strategy,
                StrategyStatus.TRIGGERED,
                "condition",
                f"condition {condition_id} met",
                correlation_id,
            )
            payload = {**event.payload, "condition_id": condition_id, "observed_value": observed_value}
            return [event.model_copy(update={"payload": payload})]

        strategy, _ = await self._mutate(strategy_id, apply)
        logger.info(f"Condition {condition_id} triggered strategy {strategy_id} [{correlation_id}]")
        return strategy, correlation_id

    @staticmethod
    def _condition_index(strategy: Strategy, condition_id: str) -> int:
        for i, condition in enumerate(strategy.conditions):
            if condition.condition_id == condition_id:
                return i
        raise UnsupportedOperation(f"Condition {condition_id} not found on strategy {strategy.strategy_id}")

    # =========================================================================
    # Queries
    # =========================================================================

    async def _load_many(self, strategy_ids: List[str]) -> List[Strategy]:
        keys = [self._strategy_key(sid) for sid in strategy_ids]
        raws = await self.backend.mget(keys)
        return [self._deserialize(raw) for raw in raws if raw is not None]

    async def list_by_user(
        self,
        user_id: str,
        pagination: Optional[StrategyPagination] = None,
        filter: Optional[StrategyFilter] = None,
        sort: Optional[StrategySort] = None,
    ) -> StrategyQueryResult:
        pagination = pagination or StrategyPagination()
        sort = sort or StrategySort()

        ids = sorted(await self.backend.smembers(self._user_key(user_id)))
        strategies = await self._load_many(ids)

        if filter is not None:
            strategies = [s for s in strategies if self._matches_filter(s, filter)]

        strategies.sort(key=lambda s: getattr(s, sort.field), reverse=sort.direction == "desc")

        total = len(strategies)
        page = strategies[pagination.offset:pagination.offset + pagination.limit]
        return StrategyQueryResult(
            strategies=page,
            total=total,
            offset=pagination.offset,
            limit=pagination.limit,
            has_more=pagination.offset + len(page) < total,
        )

    @staticmethod
    def _matches_filter(strategy: Strategy, filter: StrategyFilter) -> bool:
        if filter.type and strategy.type not in filter.type:
            return False
        if filter.status and strategy.status not in filter.status:
            return False
        if filter.tags and not set(filter.tags) & set(strategy.tags):
            return False
        if filter.created_after and strategy.created_at < filter.created_after:
            return False
        if filter.created_before and strategy.created_at > filter.created_before:
            return False
        return True

    async def list_active(self) -> List[Strategy]:
        """Active strategies, for the condition evaluation loop."""
        ids = sorted(await self.backend.smembers(self._active_key()))
        strategies = await self._load_many(ids)
        return [s for s in strategies if s.status == StrategyStatus.ACTIVE]

    async def count_by_status(self, user_id: Optional[str] = None) -> Dict[StrategyStatus, int]:
        counts: Dict[StrategyStatus, int] = {}
        user_ids = await self.backend.smembers(self._user_key(user_id)) if user_id else None
        for status in StrategyStatus:
            if user_ids is None:
                counts[status] = await self.backend.scard(self._status_key(status))
            else:
                members = await self.backend.smembers(self._status_key(status))
                counts[status] = len(members & user_ids)
        return counts

    # =========================================================================
    # Event Log
    # =========================================================================

    async def append_event(self, event: StrategyEvent) -> StrategyEvent:
        """
        Persist an event with the next per-strategy version.

        Drops index entries older than the retention window, then evicts the
        oldest events beyond ``max_events_per_strategy``.
        """
        version = await self.backend.incr(self._event_version_key(event.strategy_id))
        event = event.with_version(version)

        ttl = self.settings.event_retention_days * 86400
        await self._expire_events(event.strategy_id, (utc_now().timestamp() - ttl) * 1000)

        await self.backend.set(self._event_key(event.event_id), event.model_dump_json(), ex=ttl)
        await self.backend.zadd(self._events_key(event.strategy_id), event.event_id, event.timestamp_ms)
        await self.backend.zadd(self._all_events_key(), event.event_id, event.timestamp_ms)

        await self._trim_events(event.strategy_id)
        logger.debug(f"Event {event.event_type.value} v{version} for {event.strategy_id}")
        return event

    async def _expire_events(self, strategy_id: str, cutoff_ms: float) -> None:
        removed = await self.backend.zremrangebyscore(self._events_key(strategy_id), float("-inf"), cutoff_ms)
        removed_all = await self.backend.zremrangebyscore(self._all_events_key(), float("-inf"), cutoff_ms)
        if removed or removed_all:
            logger.debug(f"Dropped {removed} expired events for {strategy_id}, {removed_all} from global log")

    async def _trim_events(self, strategy_id: str) -> None:
        index = self._events_key(strategy_id)
        excess = await self.backend.zcard(index) - self.settings.max_events_per_strategy
        if excess <= 0:
            return
        evicted = await self.backend.zrange(index, 0, excess - 1)
        await self.backend.zrem(index, *evicted)
        await self.backend.zrem(self._all_events_key(), *evicted)
        await self.backend.delete(*[self._event_key(event_id) for event_id in evicted])
        logger.debug(f"Evicted {len(evicted)} events for {strategy_id}")

    async def get_events(
        self,
        strategy_id: str,
        options: Optional[EventQueryOptions] = None,
    ) -> EventQueryResult:
        return await self._query_events(self._events_key(strategy_id), options or EventQueryOptions())

    async def get_all_events(self, options: Optional[EventQueryOptions] = None) -> EventQueryResult:
        return await self._query_events(self._all_events_key(), options or EventQueryOptions())

    async def _query_events(self, index: str, options: EventQueryOptions) -> EventQueryResult:
        # after/before are exclusive, at millisecond resolution
        min_score = math.floor(options.after.timestamp() * 1000) + 1 if options.after else float("-inf")
        max_score = math.ceil(options.before.timestamp() * 1000) - 1 if options.before else float("inf")
        desc = options.order == "desc"

        if options.event_types or options.correlation_id:
            event_ids = await self.backend.zrangebyscore(index, min_score, max_score, desc=desc)
            events, _ = await self._load_events(index, event_ids)
            if options.event_types:
                wanted = set(options.event_types)
                events = [e for e in events if e.event_type in wanted]
            if options.correlation_id:
                events = [e for e in events if e.correlation_id == options.correlation_id]
            total = len(events)
            page = events[options.offset:options.offset + options.limit]
        else:
            while True:
                total = await self.backend.zcount(index, min_score, max_score)
                event_ids = await self.backend.zrangebyscore(
                    index, min_score, max_score, desc=desc, offset=options.offset, count=options.limit
                )
                page, expired = await self._load_events(index, event_ids)
                if not expired:
                    break

        return EventQueryResult(
            events=page,
            total=total,
            offset=options.offset,
            limit=options.limit,
            has_more=options.offset + len(page) < total,
        )

    async def _load_events(self, index: str, event_ids: List[str]) -> Tuple[List[StrategyEvent], int]:
        raws = await self.backend.mget([self._event_key(event_id) for event_id in event_ids])
        expired = [event_id for event_id, raw in zip(event_ids, raws) if raw is None]
        if expired:
            # Body gone past retention
            await self.backend.zrem(index, *expired)
        return [StrategyEvent.model_validate_json(raw) for raw in raws if raw is not None], len(expired)
