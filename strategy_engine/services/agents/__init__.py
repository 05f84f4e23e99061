"""
Execution Agents
Strategy Engine
"""

from strategy_engine.services.agents.base import ExecutionAgent, SwapPlan
from strategy_engine.services.agents.dca_agent import (
    DCAAgent,
    estimate_total_cost,
    frequency_to_cron,
    frequency_to_ms,
)
from strategy_engine.services.agents.trigger_agent import TriggerAgent

__all__ = [
    "ExecutionAgent",
    "SwapPlan",
    "DCAAgent",
    "TriggerAgent",
    "estimate_total_cost",
    "frequency_to_cron",
    "frequency_to_ms",
]
