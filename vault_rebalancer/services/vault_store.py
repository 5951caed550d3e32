"""Mutable registry of vault positions and the live price map."""
from __future__ import annotations

import asyncio
import logging
from types import MappingProxyType
from typing import Iterable, Mapping

from ..errors import UnknownVaultError
from ..models import PriceMap, Vault

logger = logging.getLogger(__name__)


class VaultStore:
    """Simulation context: current vaults and prices, resettable to seed values.

    Vault records are frozen and the price map is swapped wholesale, so a
    reader holding ``vaults()`` or ``prices()`` always has a consistent
    snapshot. Position writes go through ``apply_plan`` under a per-vault
    lock; price writes go through ``set_prices`` (the crash tick).
    """

    def __init__(self, seed_vaults: Iterable[Vault], seed_prices: Mapping[str, int]) -> None:
        self._seed_vaults: tuple[Vault, ...] = tuple(seed_vaults)
        self._seed_prices: dict[str, int] = dict(seed_prices)
        self._vaults: dict[str, Vault] = {}
        self._prices: PriceMap = MappingProxyType({})
        self._locks: dict[str, asyncio.Lock] = {}
        self.reset()

    def reset(self) -> None:
        """Restore every vault and price to its seed value."""
        self._vaults = {v.vault_id: v for v in self._seed_vaults}
        self._prices = MappingProxyType(dict(self._seed_prices))

    def vaults(self) -> list[Vault]:
        return list(self._vaults.values())

    def get(self, vault_id: str) -> Vault:
        try:
            return self._vaults[vault_id]
        except KeyError:
            raise UnknownVaultError(vault_id) from None

    def prices(self) -> PriceMap:
        return self._prices

    def set_prices(self, prices: Mapping[str, int]) -> None:
        self._prices = MappingProxyType(dict(prices))

    def _lock_for(self, vault_id: str) -> asyncio.Lock:
        lock = self._locks.get(vault_id)
        if lock is None:
            lock = self._locks[vault_id] = asyncio.Lock()
        return lock

    async def apply_plan(self, vault_id: str, new_collateral_base: int, new_debt_base: int) -> Vault:
        """Replace a vault's position amounts with post-trade values."""
        async with self._lock_for(vault_id):
            current = self.get(vault_id)
            updated = current.with_amounts(new_collateral_base, new_debt_base)
            self._vaults[vault_id] = updated
        logger.info(
            "Applied plan to %s: collateral %d -> %d, debt %d -> %d",
            vault_id,
            current.collateral.amount,
            new_collateral_base,
            current.debt.amount,
            new_debt_base,
        )
        return updated
