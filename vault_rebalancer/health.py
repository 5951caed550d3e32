"""Health-factor computation — pure functions, no I/O.

    HF = (collateral_usd * L) / debt_usd

All quantities are WAD-scaled ints. A vault with no debt has no liquidation
risk; it reports ``HF_INFINITY`` instead of dividing by zero.
"""
from __future__ import annotations

from .errors import MissingPriceError
from .models import Position, PriceMap, Vault
from .tokens import TokenRegistry
from .wad import WAD, div, mul, to_human, wad_to_float

# Treat anything >= this as infinite; never do arithmetic on it.
HF_INFINITY = 2**255

STATUS_LIQUIDATABLE = "liquidatable"
STATUS_BREACH = "breach"
STATUS_MONITOR = "monitor"
STATUS_HEALTHY = "healthy"


def is_infinite(hf_wad: int) -> bool:
    return hf_wad >= HF_INFINITY


def resolve_price(symbol: str, prices: PriceMap, tokens: TokenRegistry) -> int:
    """Look up the USD price of ``symbol`` via its underlying price symbol."""
    price_symbol = tokens.underlying_price_symbol(symbol)
    price = prices.get(price_symbol)
    if price is None:
        raise MissingPriceError(price_symbol)
    return price


def position_value_usd(position: Position, prices: PriceMap, tokens: TokenRegistry) -> int:
    """USD value (WAD) of a base-unit position."""
    price = resolve_price(position.asset, prices, tokens)
    human = to_human(position.amount, tokens.decimals_of(position.asset))
    return mul(human, price)


def compute_health_factor(
    vault: Vault,
    prices: PriceMap,
    liquidation_threshold_wad: int,
    tokens: TokenRegistry,
) -> int:
    """Return the vault's HF as a WAD int.

    Raises:
        MissingPriceError: either asset's resolved price is absent.
    """
    collateral_usd = position_value_usd(vault.collateral, prices, tokens)
    debt_usd = position_value_usd(vault.debt, prices, tokens)
    if debt_usd == 0:
        return HF_INFINITY
    return div(mul(collateral_usd, liquidation_threshold_wad), debt_usd)


def hf_to_float(hf_wad: int, places: int = 3) -> float:
    if is_infinite(hf_wad):
        return float("inf")
    return wad_to_float(hf_wad, places)


def classify(hf_wad: int, trigger_hf_wad: int, target_hf_wad: int) -> str:
    if is_infinite(hf_wad):
        return STATUS_HEALTHY
    if hf_wad < WAD:
        return STATUS_LIQUIDATABLE
    if hf_wad < trigger_hf_wad:
        return STATUS_BREACH
    if hf_wad < target_hf_wad:
        return STATUS_MONITOR
    return STATUS_HEALTHY
