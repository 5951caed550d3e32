"""Token registry — decimals, underlying price symbols and display rules."""
from __future__ import annotations

from typing import Iterable, Mapping

from .models import TokenMeta


class TokenRegistry:
    """Resolve token metadata by symbol.

    Derivative tokens (e.g. Blend loan tokens ``bUSDC``) carry an
    ``underlying`` symbol and are always priced through it.
    """

    def __init__(self, tokens: Iterable[TokenMeta]) -> None:
        self._tokens: dict[str, TokenMeta] = {t.symbol: t for t in tokens}

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._tokens

    def __iter__(self):
        return iter(self._tokens.values())

    def meta(self, symbol: str) -> TokenMeta:
        try:
            return self._tokens[symbol]
        except KeyError:
            raise KeyError(f"Unknown token '{symbol}'") from None

    def decimals_of(self, symbol: str) -> int:
        return self.meta(symbol).decimals

    def underlying_price_symbol(self, symbol: str) -> str:
        """Return the symbol whose price entry values ``symbol`` (identity for plain assets)."""
        token = self._tokens.get(symbol)
        if token is None or not token.underlying:
            return symbol
        return token.underlying

    def display_decimals(self, symbol: str) -> int:
        return self.meta(symbol).display_decimals

    @property
    def decimals(self) -> Mapping[str, int]:
        return {s: t.decimals for s, t in self._tokens.items()}
