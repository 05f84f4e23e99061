"""
Static token registry: symbol -> mint address and decimals.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from strategy_engine.core.exceptions import UnknownTokenError


DEFAULT_DECIMALS = 9


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    mint: str
    decimals: int


TOKENS: Dict[str, TokenInfo] = {
    info.symbol: info
    for info in (
        TokenInfo("SOL", "So11111111111111111111111111111111111111112", 9),
        TokenInfo("USDC", "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", 6),
        TokenInfo("USDT", "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB", 6),
        TokenInfo("JUP", "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN", 6),
        TokenInfo("BONK", "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263", 5),
        TokenInfo("WIF", "EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm", 6),
        TokenInfo("MSOL", "mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So", 9),
        TokenInfo("JITOSOL", "J1toso1uCk3RLmjorhTtrVwY9HJ7X8V9yYac6Y7kGCPn", 9),
    )
}

# Quote currencies priced in dollars settle in USDC
ALIASES: Dict[str, str] = {"USD": "USDC"}

_BY_MINT: Dict[str, TokenInfo] = {info.mint: info for info in TOKENS.values()}


def lookup(symbol: str) -> Optional[TokenInfo]:
    key = symbol.upper()
    return TOKENS.get(ALIASES.get(key, key))


def resolve(symbol: str) -> TokenInfo:
    """Resolve a symbol, raising UnknownTokenError if it is not listed."""
    info = lookup(symbol)
    if info is None:
        raise UnknownTokenError(f"Unknown token: {symbol}")
    return info


def decimals_for_mint(mint: Optional[str]) -> int:
    info = _BY_MINT.get(mint) if mint else None
    return info.decimals if info else DEFAULT_DECIMALS
