"""
Execution Agent Base
Strategy Engine

Shared execution pipeline for all agents:
1. Structural config check
2. Execution limits (no network calls on violation)
3. Encrypted path, when enabled for the strategy
4. Token resolution and integer input amount
5. Quote with bounded slippage
6. Swap through the injected executor
7. Execution record from the quote

``execute`` never raises: every outcome is an ExecutionResult carrying
exactly one StrategyExecution.
"""

import asyncio
import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Literal, Optional, Tuple

from loguru import logger

from strategy_engine.core.config import ExecutionSettings
from strategy_engine.core.exceptions import (
    EncryptedPathFailed,
    EncryptedPathUnavailable,
    ExecutionTimeout,
    InvalidExecutionConfig,
    StrategyEngineError,
    SwapExecutorMissing,
    SwapFailed,
    error_code,
)
from strategy_engine.schemas.conditions import utc_now
from strategy_engine.schemas.execution import (
    EncryptedExecutor,
    EncryptedStrategy,
    ExecutionJob,
    ExecutionResult,
    SwapExecutor,
    SwapQuote,
)
from strategy_engine.schemas.strategy import Strategy, StrategyExecution, StrategyType
from strategy_engine.services.aggregator import SwapAggregatorClient
from strategy_engine.services.token_registry import TokenInfo, decimals_for_mint


@dataclass
class SwapPlan:
    """What to swap for one execution, in display units."""
    input_token: TokenInfo
    output_token: TokenInfo
    amount: float
    slippage_tolerance: Optional[float] = None
    # buy: price is input per output unit; sell: output per input unit
    side: Literal["buy", "sell"] = "buy"


class ExecutionAgent:
    """
    Base class for execution agents.

    Subclasses implement the config check, limit check and swap plan for
    their strategy types. Collaborators are injected; a missing swap
    executor fails the execution rather than simulating it.
    """

    name: str = "agent"
    strategy_types: Tuple[StrategyType, ...] = ()

    def __init__(
        self,
        aggregator: Optional[SwapAggregatorClient] = None,
        swap_executor: Optional[SwapExecutor] = None,
        encrypted_executor: Optional[EncryptedExecutor] = None,
        settings: Optional[ExecutionSettings] = None,
    ):
        self.settings = settings or ExecutionSettings()
        self.aggregator = aggregator or SwapAggregatorClient(self.settings)
        self.swap_executor = swap_executor
        self.encrypted_executor = encrypted_executor

    # =========================================================================
    # Subclass hooks
    # =========================================================================

    def check_config(self, strategy: Strategy) -> None:
        """Raise InvalidExecutionConfig for structurally unusable configs."""
        raise NotImplementedError

    def check_limits(self, strategy: Strategy, job: ExecutionJob, now: datetime) -> None:
        """Raise LimitExceeded when no further execution is allowed."""
        raise NotImplementedError

    async def build_swap_plan(self, job: ExecutionJob, strategy: Strategy) -> SwapPlan:
        raise NotImplementedError

    def is_exhausted(self, strategy: Strategy, job: ExecutionJob, execution: StrategyExecution) -> bool:
        """Whether the strategy can run again once ``execution`` is recorded."""
        return False

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def execute(self, job: ExecutionJob, strategy: Strategy) -> ExecutionResult:
        started_at = utc_now()
        execution_id = f"exec_{uuid.uuid4()}"

        try:
            self.check_config(strategy)
            self.check_limits(strategy, job, started_at)

            try:
                result = await self._execute_encrypted(job, strategy, execution_id, started_at)
                if result is not None:
                    return result
            except EncryptedPathUnavailable as e:
                logger.info(f"[{self.name}] {strategy.strategy_id}: {e.message}; using standard path")

            return await self._execute_swap(job, strategy, execution_id, started_at)

        except StrategyEngineError as e:
            log = logger.warning if e.retryable else logger.error
            log(f"[{self.name}] Execution failed for {strategy.strategy_id}: {e.message}")
            return self._failure(job, strategy, execution_id, started_at, e.message, e.code, e.retryable)
        except Exception as e:
            logger.exception(f"[{self.name}] Unexpected error executing {strategy.strategy_id}: {e}")
            return self._failure(
                job, strategy, execution_id, started_at, str(e) or type(e).__name__, error_code(e), False
            )

    async def _with_timeout(self, awaitable, what: str):
        timeout = self.settings.request_timeout_seconds
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError:
            raise ExecutionTimeout(f"{what} timed out after {timeout}s")

    async def _execute_encrypted(
        self,
        job: ExecutionJob,
        strategy: Strategy,
        execution_id: str,
        started_at: datetime,
    ) -> Optional[ExecutionResult]:
        encrypted = strategy.encrypted
        if encrypted is None or not encrypted.enabled or not self.settings.encrypted_execution_enabled:
            return None
        if self.encrypted_executor is None:
            raise EncryptedPathUnavailable("No encrypted executor configured")
        if not encrypted.encrypted_balance_handle:
            raise EncryptedPathUnavailable("Strategy has no encrypted balance handle")

        payload = EncryptedStrategy(
            strategy_id=strategy.strategy_id,
            user_id=strategy.user_id,
            card_id=encrypted.card_id,
            type=strategy.type,
            encrypted_balance_handle=encrypted.encrypted_balance_handle,
            public_key=encrypted.public_key,
            epoch=encrypted.epoch,
            config=strategy.config,
        )
        outcome = await self._with_timeout(self.encrypted_executor(payload), "Encrypted execution")
        if not outcome.success:
            raise EncryptedPathFailed(outcome.error or "Encrypted execution failed")

        execution = StrategyExecution(
            execution_id=execution_id,
            strategy_id=strategy.strategy_id,
            started_at=started_at,
            completed_at=utc_now(),
            success=True,
            amount_executed=outcome.executed_amount,
            execution_price=outcome.execution_price,
            triggered_by=job.condition_id,
        )
        logger.info(f"[{self.name}] Encrypted execution for {strategy.strategy_id} via {outcome.path}")
        return ExecutionResult(
            success=True,
            execution=execution,
            exhausted=self.is_exhausted(strategy, job, execution),
            metadata={
                "path": outcome.path,
                "attestation": outcome.attestation,
                "new_handle": outcome.new_handle,
                "new_epoch": outcome.new_epoch,
            },
        )

    def slippage_bps(self, slippage_tolerance: Optional[float]) -> int:
        if slippage_tolerance is None:
            bps = self.settings.default_slippage_bps
        else:
            bps = int(slippage_tolerance * 10000)
        return min(bps, self.settings.max_slippage_bps)

    async def _execute_swap(
        self,
        job: ExecutionJob,
        strategy: Strategy,
        execution_id: str,
        started_at: datetime,
    ) -> ExecutionResult:
        plan = await self.build_swap_plan(job, strategy)

        raw_amount = math.floor(plan.amount * 10 ** plan.input_token.decimals)
        if raw_amount <= 0:
            raise InvalidExecutionConfig(f"Amount too small to execute: {plan.amount} {plan.input_token.symbol}")

        quote = await self._with_timeout(
            self.aggregator.get_quote(
                plan.input_token.mint,
                plan.output_token.mint,
                raw_amount,
                self.slippage_bps(plan.slippage_tolerance),
            ),
            "Quote request",
        )

        in_units = int(quote.in_amount) / 10 ** plan.input_token.decimals
        out_units = int(quote.out_amount) / 10 ** plan.output_token.decimals
        logger.info(
            f"[{self.name}] Quote: {plan.amount} {plan.input_token.symbol} -> "
            f"{out_units:.6f} {plan.output_token.symbol} (impact: {quote.price_impact_pct:.4f}%)"
        )
        if quote.price_impact_pct > self.settings.price_impact_warning_pct:
            logger.warning(
                f"[{self.name}] High price impact for {strategy.strategy_id}: {quote.price_impact_pct:.2f}%"
            )

        if self.swap_executor is None:
            raise SwapExecutorMissing("No swap executor configured")
        swap = await self._with_timeout(
            self.swap_executor(quote, strategy, job.wallet_address),
            "Swap execution",
        )

        execution = StrategyExecution(
            execution_id=execution_id,
            strategy_id=strategy.strategy_id,
            started_at=started_at,
            completed_at=utc_now(),
            success=swap.success,
            error=swap.error if not swap.success else None,
            transaction_signature=swap.signature,
            amount_executed=plan.amount,
            execution_price=self._realized_price(plan, in_units, out_units),
            fees_paid=self.estimate_fees(quote),
            actual_slippage=quote.price_impact_pct / 100,
            triggered_by=job.condition_id,
        )
        metadata: Dict[str, Any] = {
            "path": "plaintext",
            "quote": {
                "input_amount": in_units,
                "output_amount": out_units,
                "price_impact": quote.price_impact_pct,
            },
        }

        if not swap.success:
            failure = SwapFailed(swap.error or "Swap failed")
            logger.warning(f"[{self.name}] Swap failed for {strategy.strategy_id}: {failure.message}")
            return ExecutionResult(
                success=False,
                execution=execution.model_copy(update={"error": failure.message}),
                transaction_signature=swap.signature,
                error=failure.message,
                error_code=failure.code,
                retryable=failure.retryable,
                exhausted=self.is_exhausted(strategy, job, execution),
                metadata=metadata,
            )

        logger.info(f"[{self.name}] Executed {strategy.strategy_id}: {swap.signature}")
        return ExecutionResult(
            success=True,
            execution=execution,
            transaction_signature=swap.signature,
            exhausted=self.is_exhausted(strategy, job, execution),
            metadata=metadata,
        )

    @staticmethod
    def _realized_price(plan: SwapPlan, in_units: float, out_units: float) -> Optional[float]:
        if plan.side == "buy":
            return in_units / out_units if out_units else None
        return out_units / in_units if in_units else None

    @staticmethod
    def estimate_fees(quote: SwapQuote) -> float:
        """Sum of route fees, each scaled by its fee mint's decimals."""
        total = 0.0
        for step in quote.route_plan:
            info = step.swap_info
            if info.fee_amount:
                total += int(info.fee_amount) / 10 ** decimals_for_mint(info.fee_mint)
        return total

    def _failure(
        self,
        job: ExecutionJob,
        strategy: Strategy,
        execution_id: str,
        started_at: datetime,
        message: str,
        code: Optional[str],
        retryable: bool,
    ) -> ExecutionResult:
        execution = StrategyExecution(
            execution_id=execution_id,
            strategy_id=strategy.strategy_id,
            started_at=started_at,
            completed_at=utc_now(),
            success=False,
            error=message,
            triggered_by=job.condition_id,
        )
        return ExecutionResult(
            success=False,
            execution=execution,
            error=message,
            error_code=code,
            retryable=retryable,
            exhausted=self.is_exhausted(strategy, job, execution),
        )
