"""Domain errors raised by the health-factor and rebalancing core."""
from __future__ import annotations


class RebalancerError(Exception):
    """Base class for all vault-rebalancer errors."""


class MissingPriceError(RebalancerError, KeyError):
    """An asset (or its resolved underlying) has no entry in the price map."""

    def __init__(self, symbol: str) -> None:
        super().__init__(symbol)
        self.symbol = symbol

    def __str__(self) -> str:
        return f"Missing price for asset '{self.symbol}'"


class UnsolvableTargetError(RebalancerError, ArithmeticError):
    """Target HF equals L / (1 - s), so no sell amount can reach it."""

    def __init__(self, target_hf_wad: int, liquidation_threshold_wad: int, slippage_wad: int) -> None:
        super().__init__(target_hf_wad, liquidation_threshold_wad, slippage_wad)
        self.target_hf_wad = target_hf_wad
        self.liquidation_threshold_wad = liquidation_threshold_wad
        self.slippage_wad = slippage_wad

    def __str__(self) -> str:
        return (
            "Target health factor is unreachable: target * (1 - slippage) "
            "equals the liquidation threshold"
        )


class InvalidAmountFormatError(RebalancerError, ValueError):
    """Malformed ``"<amount> <symbol>"`` text."""


class PersistenceError(RebalancerError, RuntimeError):
    """The event store could not durably record or read events."""


class UnknownVaultError(RebalancerError, KeyError):
    """No vault with the requested identifier."""

    def __init__(self, vault_id: str) -> None:
        super().__init__(vault_id)
        self.vault_id = vault_id

    def __str__(self) -> str:
        return f"Unknown vault '{self.vault_id}'"
