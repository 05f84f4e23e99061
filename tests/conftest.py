"""
Test configuration and shared fixtures for strategy engine tests.
"""

import pytest
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import httpx

from strategy_engine.core.config import ExecutionSettings, StoreSettings
from strategy_engine.schemas.execution import SwapResult
from strategy_engine.schemas.strategy import (
    CreateStrategyInput,
    DCAConfig,
    Strategy,
    StrategyStatus,
    StrategyType,
    TokenPair,
)
from strategy_engine.services.aggregator import SwapAggregatorClient
from strategy_engine.services.kv_store import MemoryBackend
from strategy_engine.services.strategy_store import StrategyStore


SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


def make_quote(
    input_mint: str = USDC_MINT,
    output_mint: str = SOL_MINT,
    in_amount: str = "100000000",
    out_amount: str = "500000000",
    price_impact_pct: str = "0.12",
    fee_amount: str = "5000",
    fee_mint: str = SOL_MINT,
) -> Dict[str, Any]:
    """Aggregator quote payload as returned over the wire."""
    return {
        "inputMint": input_mint,
        "inAmount": in_amount,
        "outputMint": output_mint,
        "outAmount": out_amount,
        "otherAmountThreshold": out_amount,
        "swapMode": "ExactIn",
        "slippageBps": 50,
        "priceImpactPct": price_impact_pct,
        "routePlan": [
            {
                "swapInfo": {
                    "ammKey": "amm-test",
                    "label": "Orca",
                    "inputMint": input_mint,
                    "outputMint": output_mint,
                    "inAmount": in_amount,
                    "outAmount": out_amount,
                    "feeAmount": fee_amount,
                    "feeMint": fee_mint,
                },
                "percent": 100,
            }
        ],
    }


def make_aggregator(
    settings: ExecutionSettings,
    requests: List[httpx.Request],
    quote: Optional[Dict[str, Any]] = None,
    status_code: int = 200,
) -> SwapAggregatorClient:
    """Aggregator client backed by httpx.MockTransport."""
    payload = quote or make_quote()

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/quote"):
            return httpx.Response(status_code, json=payload)
        return httpx.Response(
            status_code,
            json={"swapTransaction": "AQABAgME", "lastValidBlockHeight": 2500},
        )

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SwapAggregatorClient(settings, client=client)


def make_dca_strategy(**overrides) -> Strategy:
    """Active DCA strategy buying SOL with 100 USDC per execution."""
    config = overrides.pop(
        "config",
        DCAConfig(
            token_pair=TokenPair(from_token="USDC", to_token="SOL"),
            amount_per_execution=100.0,
            frequency="weekly",
        ),
    )
    fields = {
        "strategy_id": "strat_test",
        "user_id": "user-1",
        "type": StrategyType.DCA,
        "name": "Weekly SOL",
        "status": StrategyStatus.ACTIVE,
        "config": config,
    }
    fields.update(overrides)
    return Strategy(**fields)


# =============================================================================
# Store Fixtures
# =============================================================================

@pytest.fixture
def backend():
    """In-process key-value backend."""
    return MemoryBackend()


@pytest.fixture
def store_settings():
    """Store settings with a test key prefix."""
    return StoreSettings(
        key_prefix="test",
        max_events_per_strategy=1000,
        event_retention_days=90,
        max_write_retries=3,
    )


@pytest.fixture
def store(backend, store_settings):
    """Strategy store on the memory backend."""
    return StrategyStore(backend, store_settings)


@pytest.fixture
def dca_input():
    """Valid DCA creation request."""
    return CreateStrategyInput(
        user_id="user-1",
        type=StrategyType.DCA,
        name="Weekly SOL",
        config=DCAConfig(
            token_pair=TokenPair(from_token="USDC", to_token="SOL"),
            amount_per_execution=100.0,
            frequency="weekly",
        ),
    )


# =============================================================================
# Execution Fixtures
# =============================================================================

@pytest.fixture
def execution_settings():
    """Execution settings pointing at a fake aggregator."""
    return ExecutionSettings(
        aggregator_url="https://aggregator.test/v6",
        default_slippage_bps=50,
        max_slippage_bps=500,
        request_timeout_seconds=2.0,
        price_impact_warning_pct=1.0,
        encrypted_execution_enabled=False,
    )


@pytest.fixture
def aggregator_requests():
    """Requests seen by the mock aggregator."""
    return []


@pytest.fixture
def aggregator(execution_settings, aggregator_requests):
    """Aggregator client answering with a 100 USDC -> 0.5 SOL quote."""
    return make_aggregator(execution_settings, aggregator_requests)


@pytest.fixture
def quote_factory():
    return make_quote


@pytest.fixture
def aggregator_factory():
    return make_aggregator


@pytest.fixture
def dca_strategy_factory():
    return make_dca_strategy


@pytest.fixture
def mock_swap_executor():
    """Swap executor that always succeeds."""
    return AsyncMock(return_value=SwapResult(signature="5xSignature", success=True))


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
