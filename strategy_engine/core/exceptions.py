"""
Error Taxonomy
Strategy Engine

Structured errors raised by the strategy store and used internally by the
execution agents. Agents never let these escape: every failure becomes a
failed StrategyExecution carrying the error code and retry class.
"""

from enum import Enum
from typing import TYPE_CHECKING, Iterable, Optional

if TYPE_CHECKING:
    from strategy_engine.utils.validation import ValidationResult


class ErrorCategory(str, Enum):
    """Error categories for routing and handling."""
    VALIDATION = "validation"     # Bad input, blocks create/update
    STATE = "state"               # Illegal lifecycle request
    LIMIT = "limit"               # Execution limit reached
    NETWORK = "network"           # Aggregator connectivity
    EXECUTION = "execution"       # Swap / encrypted path outcome
    PERSISTENCE = "persistence"   # Store conflicts and schema issues
    CONFIGURATION = "configuration"


class StrategyEngineError(Exception):
    """Base class for all engine errors."""

    code: str = "ENGINE_ERROR"
    category: ErrorCategory = ErrorCategory.EXECUTION
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# =============================================================================
# Store errors (programmer-visible misuse)
# =============================================================================

class StrategyNotFoundError(StrategyEngineError):
    code = "STRATEGY_NOT_FOUND"
    category = ErrorCategory.STATE

    def __init__(self, strategy_id: str):
        super().__init__(f"Strategy not found: {strategy_id}")
        self.strategy_id = strategy_id


class StrategyValidationError(StrategyEngineError):
    """Create/update input failed validation."""
    code = "VALIDATION_ERROR"
    category = ErrorCategory.VALIDATION

    def __init__(self, result: "ValidationResult"):
        lines = "; ".join(f"{e.field}: {e.message}" for e in result.errors)
        super().__init__(f"Validation failed: {lines}")
        self.result = result

    @property
    def errors(self):
        return self.result.errors


class InvalidStateTransition(StrategyEngineError):
    code = "INVALID_STATE_TRANSITION"
    category = ErrorCategory.STATE

    def __init__(self, current: str, requested: str, allowed: Iterable[str]):
        allowed = list(allowed)
        super().__init__(
            f"Invalid state transition: {current} -> {requested}. "
            f"Allowed transitions: {', '.join(allowed) or 'none'}"
        )
        self.current = current
        self.requested = requested
        self.allowed = allowed


class UnsupportedOperation(StrategyEngineError):
    code = "UNSUPPORTED_OPERATION"
    category = ErrorCategory.STATE


class ConcurrentModificationError(StrategyEngineError):
    code = "CONCURRENT_MODIFICATION"
    category = ErrorCategory.PERSISTENCE
    retryable = True

    def __init__(self, strategy_id: str, attempts: int):
        super().__init__(
            f"Strategy {strategy_id} was modified concurrently; gave up after {attempts} attempts"
        )
        self.strategy_id = strategy_id
        self.attempts = attempts


class SchemaVersionError(StrategyEngineError):
    code = "SCHEMA_VERSION"
    category = ErrorCategory.PERSISTENCE


# =============================================================================
# Execution errors (converted to failed executions by the agents)
# =============================================================================

class LimitExceeded(StrategyEngineError):
    code = "LIMIT_EXCEEDED"
    category = ErrorCategory.LIMIT


class InvalidExecutionConfig(StrategyEngineError):
    code = "INVALID_CONFIG"
    category = ErrorCategory.VALIDATION


class UnknownTokenError(StrategyEngineError):
    code = "UNKNOWN_TOKEN"
    category = ErrorCategory.VALIDATION


class QuoteUnavailable(StrategyEngineError):
    code = "QUOTE_UNAVAILABLE"
    category = ErrorCategory.NETWORK
    retryable = True


class NetworkError(StrategyEngineError):
    code = "NETWORK_ERROR"
    category = ErrorCategory.NETWORK
    retryable = True


class ExecutionTimeout(StrategyEngineError):
    code = "TIMEOUT"
    category = ErrorCategory.NETWORK
    retryable = True


class InsufficientBalance(StrategyEngineError):
    code = "INSUFFICIENT_BALANCE"
    category = ErrorCategory.EXECUTION
    retryable = True


class SwapFailed(StrategyEngineError):
    code = "SWAP_FAILED"
    category = ErrorCategory.EXECUTION
    retryable = True


class EncryptedPathUnavailable(StrategyEngineError):
    """Encrypted execution cannot run; callers fall back to the standard path."""
    code = "ENCRYPTED_PATH_UNAVAILABLE"
    category = ErrorCategory.EXECUTION


class EncryptedPathFailed(StrategyEngineError):
    code = "ENCRYPTED_PATH_FAILED"
    category = ErrorCategory.EXECUTION


class SwapExecutorMissing(StrategyEngineError):
    code = "SWAP_EXECUTOR_MISSING"
    category = ErrorCategory.CONFIGURATION


class SimulationNotAllowed(StrategyEngineError):
    code = "SIMULATION_NOT_ALLOWED"
    category = ErrorCategory.CONFIGURATION


def error_code(exc: BaseException, default: Optional[str] = "UNKNOWN_ERROR") -> Optional[str]:
    """Get the engine error code for an exception."""
    if isinstance(exc, StrategyEngineError):
        return exc.code
    return default
