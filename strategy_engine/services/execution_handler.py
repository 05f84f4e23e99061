"""
Strategy Execution Handler
Strategy Engine

Entry point for the execution queue: loads the strategy, runs the agent
registered for its type and records the outcome through the store.
"""

from typing import Dict, Iterable, Optional

from loguru import logger

from strategy_engine.core.exceptions import LimitExceeded, UnsupportedOperation
from strategy_engine.schemas.execution import ExecutionJob, ExecutionResult
from strategy_engine.schemas.strategy import StrategyStatus, StrategyType
from strategy_engine.services.agents.base import ExecutionAgent
from strategy_engine.services.strategy_store import StrategyStore


class StrategyExecutionHandler:
    """
    Connects queued jobs to agents and persists every attempt.

    Every handled job records exactly one execution. When the agent
    reports the strategy exhausted, or the attempt hit an execution limit,
    an active strategy is completed.
    """

    def __init__(self, store: StrategyStore, agents: Optional[Iterable[ExecutionAgent]] = None):
        self.store = store
        self._agents: Dict[StrategyType, ExecutionAgent] = {}
        for agent in agents or ():
            self.register(agent)

    def register(self, agent: ExecutionAgent) -> None:
        for strategy_type in agent.strategy_types:
            self._agents[strategy_type] = agent
            logger.debug(f"Registered {agent.name} for {strategy_type.value} strategies")

    def agent_for(self, strategy_type: StrategyType) -> ExecutionAgent:
        agent = self._agents.get(StrategyType(strategy_type))
        if agent is None:
            raise UnsupportedOperation(f"No execution agent registered for {StrategyType(strategy_type).value}")
        return agent

    async def handle(self, job: ExecutionJob) -> ExecutionResult:
        """
        Execute one job.

        Raises:
            StrategyNotFoundError: If the strategy does not exist
            UnsupportedOperation: If no agent handles the strategy type
        """
        strategy = await self.store.require(job.strategy_id)
        agent = self.agent_for(strategy.type)

        logger.info(
            f"Executing {strategy.type.value} strategy {strategy.strategy_id} "
            f"(status={strategy.status.value}, correlation={job.correlation_id})"
        )
        result = await agent.execute(job, strategy)

        updated = await self.store.record_execution(
            strategy.strategy_id,
            result.execution,
            correlation_id=job.correlation_id,
        )

        if (result.exhausted or result.error_code == LimitExceeded.code) and updated.status == StrategyStatus.ACTIVE:
            reason = result.error if result.error_code == LimitExceeded.code else "execution limits reached"
            await self.store.mark_completed(strategy.strategy_id, reason)
            logger.info(f"Strategy {strategy.strategy_id} completed: {reason}")

        return result
