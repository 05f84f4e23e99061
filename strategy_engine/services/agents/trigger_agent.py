"""
Trigger Agent
Strategy Engine

Price-triggered sells (stop-loss, take-profit) and limit orders. Whether
the price condition holds is decided upstream by the condition engine;
this agent only sizes and executes the swap.
"""

from datetime import datetime
from typing import List, Optional, Union

from loguru import logger

from strategy_engine.core.config import ExecutionSettings
from strategy_engine.core.exceptions import (
    InsufficientBalance,
    InvalidExecutionConfig,
    LimitExceeded,
)
from strategy_engine.schemas.execution import (
    BalanceProvider,
    EncryptedExecutor,
    ExecutionJob,
    SwapExecutor,
)
from strategy_engine.schemas.strategy import (
    LimitOrderConfig,
    StopLossConfig,
    Strategy,
    StrategyExecution,
    StrategyType,
    TakeProfitConfig,
    TakeProfitLevel,
)
from strategy_engine.services.agents.base import ExecutionAgent, SwapPlan
from strategy_engine.services.aggregator import SwapAggregatorClient
from strategy_engine.services.token_registry import resolve
from strategy_engine.utils.formatting import format_timestamp


SellConfig = Union[StopLossConfig, TakeProfitConfig]


def _scaled_levels(config) -> List[TakeProfitLevel]:
    if isinstance(config, TakeProfitConfig) and config.scaled is not None and config.scaled.enabled:
        return sorted(config.scaled.levels, key=lambda level: level.price)
    return []


class TriggerAgent(ExecutionAgent):
    """
    Executes stop-loss, take-profit and limit-order strategies.

    Sell sizes come from the injected balance provider:
    - ``all``: the whole balance
    - ``percentage``: ``amount`` percent of the balance
    - ``fixed``: ``amount``, capped at the balance when it is known

    Scaled take-profit sells one level per execution. The level is taken
    from ``job.params["level_price"]`` when given, otherwise the next
    level by ascending price. Levels below the next one have been sold
    and are rejected.
    """

    name = "TriggerAgent"
    strategy_types = (StrategyType.STOP_LOSS, StrategyType.TAKE_PROFIT, StrategyType.LIMIT_ORDER)

    def __init__(
        self,
        aggregator: Optional[SwapAggregatorClient] = None,
        swap_executor: Optional[SwapExecutor] = None,
        encrypted_executor: Optional[EncryptedExecutor] = None,
        balance_provider: Optional[BalanceProvider] = None,
        settings: Optional[ExecutionSettings] = None,
    ):
        super().__init__(aggregator, swap_executor, encrypted_executor, settings)
        self.balance_provider = balance_provider

    def check_config(self, strategy: Strategy) -> None:
        config = strategy.config
        if isinstance(config, LimitOrderConfig):
            if not config.token_pair.from_token or not config.token_pair.to_token:
                raise InvalidExecutionConfig("Invalid limit order config: missing token pair")
            if not config.amount or config.amount <= 0:
                raise InvalidExecutionConfig("Invalid limit order config: amount must be positive")
            return
        if not isinstance(config, (StopLossConfig, TakeProfitConfig)):
            raise InvalidExecutionConfig(f"{self.name} cannot execute {config.type} strategies")
        if not config.token or not config.quote_currency:
            raise InvalidExecutionConfig(f"Invalid {config.type} config: missing token or quote currency")
        if not config.amount_to_sell:
            raise InvalidExecutionConfig(f"Invalid {config.type} config: missing amount to sell")

    def check_limits(self, strategy: Strategy, job: ExecutionJob, now: datetime) -> None:
        config = strategy.config

        if isinstance(config, LimitOrderConfig) and config.expires_at is not None:
            if now > config.expires_at:
                raise LimitExceeded(f"Order expired: {format_timestamp(config.expires_at)}")

        levels = _scaled_levels(config)
        if levels:
            if strategy.successful_executions >= len(levels):
                raise LimitExceeded(
                    f"All take-profit levels executed: {strategy.successful_executions}/{len(levels)}"
                )
        elif strategy.successful_executions >= 1:
            raise LimitExceeded(f"{config.type} strategy already executed")

    async def _balance(self, token: str, job: ExecutionJob) -> Optional[float]:
        if self.balance_provider is None:
            return None
        return await self._with_timeout(
            self.balance_provider(token, job.wallet_address),
            "Balance lookup",
        )

    def _select_level(self, strategy: Strategy, job: ExecutionJob, levels: List[TakeProfitLevel]) -> TakeProfitLevel:
        level_price = job.params.get("level_price")
        if level_price is not None:
            for index, level in enumerate(levels):
                if level.price == float(level_price):
                    if index < strategy.successful_executions:
                        raise InvalidExecutionConfig(f"Take-profit level at price {level_price} already executed")
                    return level
            raise InvalidExecutionConfig(f"No take-profit level at price {level_price}")
        return levels[strategy.successful_executions]

    async def _sell_amount(self, job: ExecutionJob, strategy: Strategy, config: SellConfig) -> float:
        levels = _scaled_levels(config)
        mode = config.amount_to_sell

        if mode == "fixed" and not levels:
            balance = await self._balance(config.token, job)
            if balance is None:
                return config.amount
            return min(config.amount, balance)

        if self.balance_provider is None:
            raise InvalidExecutionConfig(f"Balance provider required to sell '{mode}' of {config.token}")
        balance = await self._balance(config.token, job)
        if balance is None:
            raise InsufficientBalance(f"Balance unavailable for {config.token}")

        if levels:
            level = self._select_level(strategy, job, levels)
            logger.info(f"[{self.name}] Take-profit level {level.price}: selling {level.sell_percentage}%")
            return balance * level.sell_percentage / 100
        if mode == "percentage":
            return balance * config.amount / 100
        return balance

    async def build_swap_plan(self, job: ExecutionJob, strategy: Strategy) -> SwapPlan:
        config = strategy.config

        if isinstance(config, LimitOrderConfig):
            return SwapPlan(
                input_token=resolve(config.token_pair.from_token),
                output_token=resolve(config.token_pair.to_token),
                amount=config.amount,
                slippage_tolerance=config.slippage_tolerance,
                side=config.side,
            )

        input_token = resolve(config.token)
        output_token = resolve(config.quote_currency)
        amount = await self._sell_amount(job, strategy, config)
        if amount <= 0:
            raise InsufficientBalance(f"No {config.token} balance to sell")

        return SwapPlan(
            input_token=input_token,
            output_token=output_token,
            amount=amount,
            slippage_tolerance=config.slippage_tolerance,
            side="sell",
        )

    def is_exhausted(self, strategy: Strategy, job: ExecutionJob, execution: StrategyExecution) -> bool:
        if not execution.success:
            return False
        config = strategy.config
        levels = _scaled_levels(config)
        if levels:
            return strategy.successful_executions + 1 >= len(levels)
        return True
