"""
Tests for the swap aggregator client.
"""

import json
import pytest

import httpx

from strategy_engine.core.exceptions import (
    ExecutionTimeout,
    NetworkError,
    QuoteUnavailable,
    SwapFailed,
)
from strategy_engine.schemas.execution import SwapQuote
from strategy_engine.services.aggregator import SwapAggregatorClient


SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


def client_with(handler, settings) -> SwapAggregatorClient:
    return SwapAggregatorClient(settings, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestGetQuote:
    """Tests for quote requests."""

    @pytest.mark.asyncio
    async def test_parses_quote(self, aggregator, aggregator_requests):
        quote = await aggregator.get_quote(USDC_MINT, SOL_MINT, 100_000_000, 50)

        assert quote.in_amount == "100000000"
        assert quote.out_amount == "500000000"
        assert quote.price_impact_pct == pytest.approx(0.12)
        assert quote.route_plan[0].swap_info.label == "Orca"
        assert quote.route_plan[0].swap_info.fee_mint == SOL_MINT

        request = aggregator_requests[0]
        assert request.method == "GET"
        assert str(request.url).startswith("https://aggregator.test/v6/quote")
        assert dict(request.url.params) == {
            "inputMint": USDC_MINT,
            "outputMint": SOL_MINT,
            "amount": "100000000",
            "slippageBps": "50",
            "swapMode": "ExactIn",
        }

    @pytest.mark.asyncio
    async def test_clamps_slippage(self, aggregator, aggregator_requests):
        await aggregator.get_quote(USDC_MINT, SOL_MINT, 1_000_000, 10_000)
        assert aggregator_requests[0].url.params["slippageBps"] == "500"

    @pytest.mark.asyncio
    async def test_http_error(self, execution_settings, aggregator_requests, aggregator_factory):
        aggregator = aggregator_factory(execution_settings, aggregator_requests, status_code=503)

        with pytest.raises(QuoteUnavailable) as exc_info:
            await aggregator.get_quote(USDC_MINT, SOL_MINT, 1_000_000, 50)

        assert exc_info.value.message == "HTTP 503 from aggregator /quote"
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_malformed_quote(self, execution_settings, aggregator_requests, aggregator_factory):
        aggregator = aggregator_factory(execution_settings, aggregator_requests, quote={"inputMint": USDC_MINT})

        with pytest.raises(QuoteUnavailable) as exc_info:
            await aggregator.get_quote(USDC_MINT, SOL_MINT, 1_000_000, 50)
        assert exc_info.value.message.startswith("Malformed quote")

    @pytest.mark.asyncio
    async def test_invalid_json(self, execution_settings):
        aggregator = client_with(lambda request: httpx.Response(200, content=b"<html>"), execution_settings)

        with pytest.raises(QuoteUnavailable):
            await aggregator.get_quote(USDC_MINT, SOL_MINT, 1_000_000, 50)

    @pytest.mark.asyncio
    async def test_timeout(self, execution_settings):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ExecutionTimeout):
            await client_with(handler, execution_settings).get_quote(USDC_MINT, SOL_MINT, 1_000_000, 50)

    @pytest.mark.asyncio
    async def test_connection_error(self, execution_settings):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NetworkError):
            await client_with(handler, execution_settings).get_quote(USDC_MINT, SOL_MINT, 1_000_000, 50)


class TestSwapTransaction:
    """Tests for swap transaction requests."""

    @pytest.mark.asyncio
    async def test_builds_request_body(self, aggregator, aggregator_requests, quote_factory):
        quote = SwapQuote.model_validate(quote_factory())
        tx = await aggregator.get_swap_transaction(quote, "Wallet111")

        assert tx.swap_transaction == "AQABAgME"
        assert tx.last_valid_block_height == 2500

        request = aggregator_requests[0]
        assert request.method == "POST"
        body = json.loads(request.content)
        assert body["userPublicKey"] == "Wallet111"
        assert body["wrapAndUnwrapSol"] is True
        assert body["useVersionedTransaction"] is True
        assert body["prioritizationFeeLamports"] == 10000
        assert body["quoteResponse"]["inAmount"] == "100000000"
        assert body["quoteResponse"]["routePlan"][0]["swapInfo"]["label"] == "Orca"

    @pytest.mark.asyncio
    async def test_error_is_swap_failure(self, execution_settings, aggregator_requests, aggregator_factory, quote_factory):
        aggregator = aggregator_factory(execution_settings, aggregator_requests, status_code=500)
        quote = SwapQuote.model_validate(quote_factory())

        with pytest.raises(SwapFailed):
            await aggregator.get_swap_transaction(quote, "Wallet111")

    @pytest.mark.asyncio
    async def test_close(self, aggregator):
        await aggregator.close()
        assert aggregator._client.is_closed
