"""
Tests for the paper swap executor.
"""

import pytest

from strategy_engine.core.config import Settings
from strategy_engine.core.exceptions import SimulationNotAllowed
from strategy_engine.schemas.execution import ExecutionJob, SwapQuote
from strategy_engine.services.agents import DCAAgent
from strategy_engine.services.paper_swap import PaperSwapExecutor


class TestPaperSwapExecutor:
    """Tests for PaperSwapExecutor."""

    def test_refuses_production(self):
        with pytest.raises(SimulationNotAllowed):
            PaperSwapExecutor(settings=Settings(ENVIRONMENT="production"))

    @pytest.mark.asyncio
    async def test_fills_quote(self, quote_factory, dca_strategy_factory):
        executor = PaperSwapExecutor(settings=Settings(ENVIRONMENT="test"))
        quote = SwapQuote.model_validate(quote_factory())

        result = await executor(quote, dca_strategy_factory(), "Wallet111")

        assert result.success is True
        assert result.signature.startswith("sim_exec_")
        assert executor.swaps == [(quote, "strat_test", "Wallet111")]

    @pytest.mark.asyncio
    async def test_plugs_into_agent(self, aggregator, dca_strategy_factory, execution_settings):
        executor = PaperSwapExecutor(settings=Settings(ENVIRONMENT="development"))
        agent = DCAAgent(aggregator=aggregator, swap_executor=executor, settings=execution_settings)

        result = await agent.execute(ExecutionJob(strategy_id="strat_test"), dca_strategy_factory())

        assert result.success is True
        assert result.transaction_signature.startswith("sim_exec_")
        assert len(executor.swaps) == 1
