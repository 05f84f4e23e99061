"""
Execution Schemas
Strategy Engine

Queue job/result contract, aggregator quote and swap payloads, and the
callbacks a host injects into the execution agents.
"""

from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from strategy_engine.schemas.strategy import (
    Strategy,
    StrategyConfig,
    StrategyExecution,
    StrategyType,
)


# =============================================================================
# Queue Contract
# =============================================================================

class ExecutionJob(BaseModel):
    """Job delivered by the execution queue."""
    strategy_id: str
    condition_id: Optional[str] = None
    correlation_id: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)

    @property
    def wallet_address(self) -> Optional[str]:
        return self.params.get("wallet_address")


class ExecutionResult(BaseModel):
    """Outcome of one execution attempt. Always carries an execution record."""
    success: bool
    execution: StrategyExecution
    transaction_signature: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    retryable: bool = False
    # Set when no further executions are possible (limits reached, one-shot sell done)
    exhausted: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Aggregator Payloads
# =============================================================================

class _AggregatorModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class SwapInfo(_AggregatorModel):
    amm_key: Optional[str] = Field(default=None, alias="ammKey")
    label: Optional[str] = None
    input_mint: Optional[str] = Field(default=None, alias="inputMint")
    output_mint: Optional[str] = Field(default=None, alias="outputMint")
    in_amount: Optional[str] = Field(default=None, alias="inAmount")
    out_amount: Optional[str] = Field(default=None, alias="outAmount")
    fee_amount: Optional[str] = Field(default=None, alias="feeAmount")
    fee_mint: Optional[str] = Field(default=None, alias="feeMint")


class RoutePlanStep(_AggregatorModel):
    swap_info: SwapInfo = Field(alias="swapInfo")
    percent: float = 100


class SwapQuote(_AggregatorModel):
    input_mint: str = Field(alias="inputMint")
    in_amount: str = Field(alias="inAmount")
    output_mint: str = Field(alias="outputMint")
    out_amount: str = Field(alias="outAmount")
    other_amount_threshold: Optional[str] = Field(default=None, alias="otherAmountThreshold")
    swap_mode: str = Field(default="ExactIn", alias="swapMode")
    slippage_bps: int = Field(default=0, alias="slippageBps")
    price_impact_pct: float = Field(default=0.0, alias="priceImpactPct")
    route_plan: List[RoutePlanStep] = Field(default_factory=list, alias="routePlan")


class SwapTransaction(_AggregatorModel):
    swap_transaction: str = Field(alias="swapTransaction")
    last_valid_block_height: int = Field(alias="lastValidBlockHeight")
    prioritization_fee_lamports: Optional[int] = Field(default=None, alias="prioritizationFeeLamports")


# =============================================================================
# Injected Callbacks
# =============================================================================

class SwapResult(BaseModel):
    signature: Optional[str] = None
    success: bool
    error: Optional[str] = None


class EncryptedStrategy(BaseModel):
    """What the privacy subsystem receives. Balances stay behind the handle."""
    strategy_id: str
    user_id: str
    card_id: Optional[str] = None
    type: StrategyType
    encrypted_mode: bool = True
    encrypted_balance_handle: str
    public_key: Optional[str] = None
    epoch: Optional[int] = None
    config: StrategyConfig


class EncryptedExecutionResult(BaseModel):
    success: bool
    path: Literal["inco", "zk", "plaintext"] = "inco"
    executed_amount: Optional[float] = None
    execution_price: Optional[float] = None
    attestation: Optional[Dict[str, Any]] = None
    new_handle: Optional[str] = None
    new_epoch: Optional[int] = None
    error: Optional[str] = None


SwapExecutor = Callable[[SwapQuote, Strategy, Optional[str]], Awaitable[SwapResult]]
EncryptedExecutor = Callable[[EncryptedStrategy], Awaitable[EncryptedExecutionResult]]
BalanceProvider = Callable[[str, Optional[str]], Awaitable[Optional[float]]]
