"""
Integration tests for the execution handler: store + agent + mock aggregator.
"""

import pytest

from strategy_engine.core.exceptions import StrategyNotFoundError, UnsupportedOperation
from strategy_engine.schemas.conditions import NewCondition, PriceCondition, utc_now
from strategy_engine.schemas.events import EventQueryOptions, StrategyEventType
from strategy_engine.schemas.execution import ExecutionJob
from strategy_engine.schemas.strategy import (
    CreateStrategyInput,
    DCAConfig,
    GoalConfig,
    StrategyExecution,
    StrategyStatus,
    StrategyType,
    TokenPair,
)
from strategy_engine.services.agents import DCAAgent, TriggerAgent
from strategy_engine.services.execution_handler import StrategyExecutionHandler


@pytest.fixture
def dca_agent(aggregator, mock_swap_executor, execution_settings):
    return DCAAgent(aggregator=aggregator, swap_executor=mock_swap_executor, settings=execution_settings)


@pytest.fixture
def handler(store, dca_agent):
    return StrategyExecutionHandler(store, [dca_agent])


def limited_dca(max_executions: int) -> CreateStrategyInput:
    return CreateStrategyInput(
        user_id="user-1",
        type=StrategyType.DCA,
        name="Three buys",
        config=DCAConfig(
            token_pair=TokenPair(from_token="USDC", to_token="SOL"),
            amount_per_execution=100.0,
            frequency="daily",
            max_executions=max_executions,
        ),
        activate_immediately=True,
    )


@pytest.mark.integration
class TestStrategyExecutionHandler:
    """Tests for StrategyExecutionHandler.handle."""

    @pytest.mark.asyncio
    async def test_records_successful_execution(self, handler, store, dca_input):
        dca_input.activate_immediately = True
        strategy = await store.create(dca_input)

        result = await handler.handle(ExecutionJob(strategy_id=strategy.strategy_id))

        assert result.success is True
        stored = await store.require(strategy.strategy_id)
        assert stored.total_executions == 1
        assert stored.successful_executions == 1
        assert stored.total_amount_executed == 100.0
        assert stored.total_fee_paid == pytest.approx(0.000005)
        assert stored.executions[0].execution_id == result.execution.execution_id
        assert stored.status == StrategyStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_records_failed_execution(self, store, aggregator, execution_settings, dca_input):
        handler = StrategyExecutionHandler(store, [DCAAgent(aggregator=aggregator, settings=execution_settings)])
        dca_input.activate_immediately = True
        strategy = await store.create(dca_input)

        result = await handler.handle(ExecutionJob(strategy_id=strategy.strategy_id))

        assert result.error_code == "SWAP_EXECUTOR_MISSING"
        stored = await store.require(strategy.strategy_id)
        assert stored.failed_executions == 1
        assert stored.total_amount_executed == 0.0
        assert stored.status == StrategyStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_completes_when_exhausted(self, handler, store):
        strategy = await store.create(limited_dca(max_executions=2))

        await handler.handle(ExecutionJob(strategy_id=strategy.strategy_id))
        assert (await store.require(strategy.strategy_id)).status == StrategyStatus.ACTIVE

        result = await handler.handle(ExecutionJob(strategy_id=strategy.strategy_id))
        assert result.exhausted is True

        stored = await store.require(strategy.strategy_id)
        assert stored.status == StrategyStatus.COMPLETED
        assert stored.total_executions == 2

    @pytest.mark.asyncio
    async def test_completes_on_limit_exceeded(self, handler, store):
        strategy = await store.create(limited_dca(max_executions=1))
        now = utc_now()
        await store.record_execution(
            strategy.strategy_id,
            StrategyExecution(
                strategy_id=strategy.strategy_id,
                started_at=now,
                completed_at=now,
                success=True,
                amount_executed=100.0,
            ),
        )

        result = await handler.handle(ExecutionJob(strategy_id=strategy.strategy_id))

        assert result.error == "Max executions reached: 1/1"
        stored = await store.require(strategy.strategy_id)
        assert stored.status == StrategyStatus.COMPLETED
        assert stored.total_executions == 2

        completed = await store.get_events(
            strategy.strategy_id,
            EventQueryOptions(event_types=[StrategyEventType.STRATEGY_COMPLETED]),
        )
        assert completed.events[0].payload["reason"] == "Max executions reached: 1/1"

    @pytest.mark.asyncio
    async def test_triggered_execution_is_correlated(self, handler, store, dca_input):
        dca_input.activate_immediately = True
        dca_input.conditions = [NewCondition(config=PriceCondition(token="SOL", operator="lt", target_price=100))]
        strategy = await store.create(dca_input)
        condition_id = strategy.conditions[0].condition_id

        _, correlation_id = await store.record_condition_triggered(strategy.strategy_id, condition_id, 95.0)
        result = await handler.handle(
            ExecutionJob(
                strategy_id=strategy.strategy_id,
                condition_id=condition_id,
                correlation_id=correlation_id,
            )
        )

        assert result.execution.triggered_by == condition_id
        stored = await store.require(strategy.strategy_id)
        assert stored.status == StrategyStatus.ACTIVE

        chain = await store.get_events(strategy.strategy_id, EventQueryOptions(correlation_id=correlation_id))
        assert chain.total == 2

    @pytest.mark.asyncio
    async def test_unknown_strategy(self, handler):
        with pytest.raises(StrategyNotFoundError):
            await handler.handle(ExecutionJob(strategy_id="strat_missing"))

    @pytest.mark.asyncio
    async def test_no_agent_for_type(self, handler, store):
        strategy = await store.create(
            CreateStrategyInput(
                user_id="user-1",
                type=StrategyType.GOAL,
                name="Save",
                config=GoalConfig(
                    goal_type="save",
                    target_amount=1000,
                    target_token="USDC",
                    risk_tolerance="conservative",
                    achievement_strategy="dca",
                ),
            )
        )

        with pytest.raises(UnsupportedOperation):
            await handler.handle(ExecutionJob(strategy_id=strategy.strategy_id))

    def test_register(self, store, dca_agent, execution_settings, aggregator):
        handler = StrategyExecutionHandler(store)
        trigger_agent = TriggerAgent(aggregator=aggregator, settings=execution_settings)
        handler.register(dca_agent)
        handler.register(trigger_agent)

        assert handler.agent_for(StrategyType.DCA) is dca_agent
        assert handler.agent_for("stop_loss") is trigger_agent
        assert handler.agent_for(StrategyType.LIMIT_ORDER) is trigger_agent
