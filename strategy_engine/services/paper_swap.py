"""
Paper swap executor.

Stands in for the host's signing callback when running without a wallet.
Never constructed in production.
"""

import asyncio
import uuid
from typing import List, Optional, Tuple

from loguru import logger

from strategy_engine.core.config import Settings, get_settings
from strategy_engine.core.exceptions import SimulationNotAllowed
from strategy_engine.schemas.execution import SwapQuote, SwapResult
from strategy_engine.schemas.strategy import Strategy


class PaperSwapExecutor:
    """
    Simulated swap execution.
    Simulates latency and always fills at the quoted amounts.
    """

    def __init__(self, latency_ms: int = 0, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        if settings.is_production:
            raise SimulationNotAllowed("Paper swaps are not allowed in production")
        self.latency_ms = latency_ms
        self.swaps: List[Tuple[SwapQuote, str, Optional[str]]] = []

    async def __call__(
        self,
        quote: SwapQuote,
        strategy: Strategy,
        wallet_address: Optional[str],
    ) -> SwapResult:
        if self.latency_ms:
            await asyncio.sleep(self.latency_ms / 1000.0)

        signature = f"sim_exec_{uuid.uuid4()}"
        self.swaps.append((quote, strategy.strategy_id, wallet_address))
        logger.info(
            f"Paper swap for {strategy.strategy_id}: {quote.in_amount} {quote.input_mint[:6]} -> "
            f"{quote.out_amount} {quote.output_mint[:6]} ({signature})"
        )
        return SwapResult(signature=signature, success=True)
