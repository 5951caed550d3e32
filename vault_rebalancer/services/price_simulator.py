"""Crash price feed — applies one randomized price drop per tick."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Sequence

from ..errors import MissingPriceError
from ..interfaces.random_source import RandomSource
from ..models import CrashTick
from ..wad import WAD, mul, to_wad, wad_to_float
from .vault_store import VaultStore

logger = logging.getLogger(__name__)

DEFAULT_DROP_RANGE = (0.05, 0.15)
DEFAULT_DELAY_RANGE_MS = (2000, 3000)


class PriceSimulator:
    """Drive the store's price map downward, one asset per tick."""

    def __init__(
        self,
        store: VaultStore,
        volatile_assets: Sequence[str],
        rng: RandomSource,
        drop_range: tuple[float, float] = DEFAULT_DROP_RANGE,
        delay_range_ms: tuple[int, int] = DEFAULT_DELAY_RANGE_MS,
    ) -> None:
        if not volatile_assets:
            raise ValueError("At least one volatile asset is required")
        self._store = store
        self._volatile = tuple(volatile_assets)
        self._rng = rng
        self._drop_range = drop_range
        self._delay_range_ms = delay_range_ms

    @property
    def volatile_assets(self) -> tuple[str, ...]:
        return self._volatile

    def apply_tick(self, forced_symbol: str | None = None) -> CrashTick:
        """Drop one asset's price by a uniform 5-15% and return the delta.

        Only the chosen asset's entry changes; the new map replaces the old
        one in a single assignment.
        """
        symbol = forced_symbol or self._rng.choice(self._volatile)
        prices = self._store.prices()
        current = prices.get(symbol)
        if current is None:
            raise MissingPriceError(symbol)

        drop_wad = to_wad(self._rng.uniform(*self._drop_range))
        new_price = mul(current, WAD - drop_wad)

        next_prices = dict(prices)
        next_prices[symbol] = new_price
        self._store.set_prices(next_prices)

        tick = CrashTick(
            at=datetime.now(timezone.utc).isoformat(),
            symbol=symbol,
            old_price=current,
            new_price=new_price,
            drop_pct=wad_to_float(drop_wad * 100, 2),
        )
        logger.debug("Price tick %s: %d -> %d", symbol, current, new_price)
        return tick

    def tick_delay_seconds(self) -> float:
        lo, hi = self._delay_range_ms
        return self._rng.uniform(lo, hi) / 1000.0

    @staticmethod
    def price_to_float(price_wad: int) -> float:
        return wad_to_float(price_wad, 2)
