"""
Swap Aggregator Client
Strategy Engine

HTTP client for the quote/swap aggregator. Transport failures are mapped
to engine errors so the agents can classify them:
- Timeouts -> ExecutionTimeout
- Connection problems -> NetworkError
- Error responses or unusable payloads -> QuoteUnavailable / SwapFailed
"""

from typing import Any, Dict, Optional

import httpx
from loguru import logger
from pydantic import ValidationError

from strategy_engine.core.config import ExecutionSettings
from strategy_engine.core.exceptions import (
    ExecutionTimeout,
    NetworkError,
    QuoteUnavailable,
    SwapFailed,
)
from strategy_engine.schemas.execution import SwapQuote, SwapTransaction


class SwapAggregatorClient:
    """
    Quote and swap-transaction requests.

    Pass ``client`` to reuse a connection pool (or a mock transport in
    tests); otherwise each call opens a short-lived client.
    """

    def __init__(
        self,
        settings: Optional[ExecutionSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or ExecutionSettings()
        self._client = client
        self.base_url = self.settings.aggregator_url.rstrip("/")

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        timeout = self.settings.request_timeout_seconds
        try:
            if self._client is not None:
                response = await self._client.request(method, url, timeout=timeout, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            raise ExecutionTimeout(f"Aggregator request timed out after {timeout}s: {path}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise QuoteUnavailable(f"HTTP {status} from aggregator {path}") from e
        except httpx.RequestError as e:
            raise NetworkError(f"Aggregator request failed: {e}") from e
        except ValueError as e:
            raise QuoteUnavailable(f"Invalid aggregator response from {path}: {e}") from e

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
        swap_mode: str = "ExactIn",
    ) -> SwapQuote:
        slippage_bps = min(slippage_bps, self.settings.max_slippage_bps)
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
            "swapMode": swap_mode,
        }
        data = await self._request("GET", "/quote", params=params)
        try:
            quote = SwapQuote.model_validate(data)
        except ValidationError as e:
            raise QuoteUnavailable(f"Malformed quote: {e.error_count()} field errors") from e

        logger.debug(
            f"Quote {input_mint[:6]}->{output_mint[:6]}: {quote.in_amount} -> {quote.out_amount} "
            f"(impact {quote.price_impact_pct}%)"
        )
        return quote

    async def get_swap_transaction(self, quote: SwapQuote, user_public_key: str) -> SwapTransaction:
        body = {
            "quoteResponse": quote.model_dump(mode="json", by_alias=True),
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "useVersionedTransaction": self.settings.use_versioned_transactions,
            "prioritizationFeeLamports": self.settings.priority_fee_lamports,
        }
        try:
            data = await self._request("POST", "/swap", json=body)
        except QuoteUnavailable as e:
            raise SwapFailed(f"Swap transaction unavailable: {e.message}") from e
        try:
            return SwapTransaction.model_validate(data)
        except ValidationError as e:
            raise SwapFailed(f"Malformed swap transaction: {e.error_count()} field errors") from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
