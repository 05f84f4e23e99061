"""
DCA Agent
Strategy Engine

Recurring fixed-size buys. Scheduling is external: each job is one buy of
``amount_per_execution`` of ``token_pair.from`` into ``token_pair.to``.
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from strategy_engine.core.exceptions import InvalidExecutionConfig, LimitExceeded
from strategy_engine.schemas.execution import ExecutionJob
from strategy_engine.schemas.strategy import (
    DCAConfig,
    Frequency,
    Strategy,
    StrategyExecution,
    StrategyType,
)
from strategy_engine.services.agents.base import ExecutionAgent, SwapPlan
from strategy_engine.services.token_registry import resolve
from strategy_engine.utils.formatting import format_number, format_timestamp


HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

FREQUENCY_MS: Dict[str, int] = {
    Frequency.HOURLY.value: HOUR_MS,
    Frequency.DAILY.value: DAY_MS,
    Frequency.WEEKLY.value: 7 * DAY_MS,
    Frequency.MONTHLY.value: 30 * DAY_MS,
}

FREQUENCY_CRON: Dict[str, str] = {
    Frequency.HOURLY.value: "0 * * * *",    # top of every hour
    Frequency.DAILY.value: "0 9 * * *",     # 09:00 daily
    Frequency.WEEKLY.value: "0 9 * * 1",    # Monday 09:00
    Frequency.MONTHLY.value: "0 9 1 * *",   # 1st of month 09:00
}

DEFAULT_ESTIMATED_EXECUTIONS = 52
DEFAULT_COST_SLIPPAGE = 0.01


def frequency_to_ms(frequency: Optional[str]) -> int:
    """Interval for a frequency; unknown values fall back to daily."""
    return FREQUENCY_MS.get(frequency or "", DAY_MS)


def frequency_to_cron(frequency: Optional[str]) -> str:
    return FREQUENCY_CRON.get(frequency or "", FREQUENCY_CRON[Frequency.DAILY.value])


def estimate_total_cost(config: DCAConfig, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Estimate what a DCA strategy will spend.

    The execution count comes from the first limit that is set:
    ``max_executions``, then ``max_total_amount``, then ``end_date``
    against the frequency. With no limit, 52 executions are assumed.
    """
    amount = config.amount_per_execution or 0.0

    if config.max_executions:
        executions = config.max_executions
    elif config.max_total_amount and amount > 0:
        executions = math.ceil(config.max_total_amount / amount)
    elif config.end_date:
        now = now or datetime.now(timezone.utc)
        duration_ms = (config.end_date - now).total_seconds() * 1000
        executions = max(math.ceil(duration_ms / frequency_to_ms(config.frequency)), 0)
    else:
        executions = DEFAULT_ESTIMATED_EXECUTIONS

    min_cost = executions * amount
    return {
        "min_cost": min_cost,
        "max_cost": min_cost * (1 + (config.slippage_tolerance or DEFAULT_COST_SLIPPAGE)),
        "estimated_executions": executions,
    }


class DCAAgent(ExecutionAgent):
    """Executes DCA buys."""

    name = "DCAAgent"
    strategy_types = (StrategyType.DCA,)

    frequency_to_ms = staticmethod(frequency_to_ms)
    frequency_to_cron = staticmethod(frequency_to_cron)
    estimate_total_cost = staticmethod(estimate_total_cost)

    def check_config(self, strategy: Strategy) -> None:
        config = strategy.config
        if not isinstance(config, DCAConfig):
            raise InvalidExecutionConfig(f"Invalid DCA config: got {config.type} config")
        if not config.token_pair.from_token or not config.token_pair.to_token:
            raise InvalidExecutionConfig("Invalid DCA config: missing token pair")
        if not config.amount_per_execution or config.amount_per_execution <= 0:
            raise InvalidExecutionConfig("Invalid DCA config: amount per execution must be positive")

    def check_limits(self, strategy: Strategy, job: ExecutionJob, now: datetime) -> None:
        config: DCAConfig = strategy.config

        if config.max_total_amount and strategy.total_amount_executed >= config.max_total_amount:
            raise LimitExceeded(
                f"Max total amount reached: {format_number(strategy.total_amount_executed)}"
                f"/{format_number(config.max_total_amount)}"
            )
        if config.max_executions and strategy.total_executions >= config.max_executions:
            raise LimitExceeded(
                f"Max executions reached: {strategy.total_executions}/{config.max_executions}"
            )
        if config.end_date and now > config.end_date:
            raise LimitExceeded(f"End date passed: {format_timestamp(config.end_date)}")

    async def build_swap_plan(self, job: ExecutionJob, strategy: Strategy) -> SwapPlan:
        config: DCAConfig = strategy.config
        return SwapPlan(
            input_token=resolve(config.token_pair.from_token),
            output_token=resolve(config.token_pair.to_token),
            amount=config.amount_per_execution,
            slippage_tolerance=config.slippage_tolerance,
            side="buy",
        )

    def is_exhausted(self, strategy: Strategy, job: ExecutionJob, execution: StrategyExecution) -> bool:
        config = strategy.config
        if not isinstance(config, DCAConfig):
            return False

        executions = strategy.total_executions + 1
        if config.max_executions and executions >= config.max_executions:
            return True
        if config.max_total_amount and execution.success:
            spent = strategy.total_amount_executed + (execution.amount_executed or 0.0)
            if spent >= config.max_total_amount:
                return True
        if config.end_date and execution.completed_at >= config.end_date:
            return True
        return False