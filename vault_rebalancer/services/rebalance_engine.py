"""Rebalance solver — how much collateral to sell to restore a target HF.

Selling ``x`` collateral and repaying ``x * Pc * (1 - s)`` USD of debt, the
post-trade health factor is::

    HF' = (Cw - x) * Pc * L / (Dw * Pd - x * Pc * (1 - s))

Setting ``HF' = T`` and solving for ``x``::

    x = (Cw*Pc*L - Dw*Pd*T) / (Pc * (L - T*(1 - s)))

For any breached vault both terms are negative (T*(1-s) > L), so the
intermediates are signed; ``wad.mul_div`` truncates toward zero for them.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from decimal import ROUND_DOWN

from ..config import ExecutionConfig, RiskConfig
from ..errors import UnsolvableTargetError
from ..health import compute_health_factor, hf_to_float, resolve_price
from ..models import (
    AtomicExecution,
    CallIntent,
    PriceMap,
    ProjectedOutcome,
    RebalancePlan,
    RepayDebtAction,
    SwapAction,
    Vault,
    WithdrawCollateralAction,
)
from ..tokens import TokenRegistry
from ..wad import (
    WAD,
    bps_to_wad,
    clamp,
    div,
    format_amount,
    format_units,
    mul,
    to_base,
    to_human,
    to_wad,
)

logger = logging.getLogger(__name__)

SWAP_DISPLAY_PLACES = 6


@dataclass(frozen=True)
class SellQuote:
    """Solver output: trade sizes plus the projected post-trade state."""

    sell_amount_wad: int
    sell_amount_base: int
    repay_usd_wad: int
    repay_amount_wad: int
    repay_amount_base: int
    new_collateral_base: int
    new_debt_base: int
    projected_hf_wad: int


def compute_collateral_to_sell(
    vault: Vault,
    prices: PriceMap,
    tokens: TokenRegistry,
    target_hf_wad: int,
    liquidation_threshold_wad: int,
    slippage_bps: int,
) -> SellQuote:
    """Solve for the sell amount that brings the vault to ``target_hf_wad``.

    The sell amount is clamped into ``[0, collateral]`` and the repayment is
    capped at the outstanding debt, so the target is not always attained.
    ``projected_hf_wad`` is recomputed from the projected base amounts and is
    the ground truth.

    Raises:
        MissingPriceError: a resolved price is absent.
        UnsolvableTargetError: ``T * (1 - s) == L``.
    """
    pc = resolve_price(vault.collateral.asset, prices, tokens)
    pd = resolve_price(vault.debt.asset, prices, tokens)
    c_dec = tokens.decimals_of(vault.collateral.asset)
    d_dec = tokens.decimals_of(vault.debt.asset)

    cw = to_human(vault.collateral.amount, c_dec)
    dw = to_human(vault.debt.amount, d_dec)
    t = target_hf_wad
    lt = liquidation_threshold_wad
    s = bps_to_wad(slippage_bps)
    one_minus_s = WAD - s

    collateral_usd = mul(cw, pc)
    debt_usd = mul(dw, pd)

    numerator = mul(collateral_usd, lt) - mul(debt_usd, t)
    denominator = mul(pc, lt - mul(t, one_minus_s))
    if denominator == 0:
        raise UnsolvableTargetError(t, lt, s)

    x = clamp(div(numerator, denominator), 0, cw)

    repay_usd = min(mul(mul(x, pc), one_minus_s), debt_usd)
    repay_human = div(repay_usd, pd)

    new_collateral = cw - x
    new_debt_usd = max(debt_usd - repay_usd, 0)
    new_debt = div(new_debt_usd, pd) if new_debt_usd > 0 else 0

    debt_underlying = tokens.underlying_price_symbol(vault.debt.asset)
    repay_decimals = tokens.decimals_of(debt_underlying) if debt_underlying in tokens else d_dec

    new_collateral_base = to_base(new_collateral, c_dec)
    new_debt_base = to_base(new_debt, d_dec)
    projected_hf = compute_health_factor(
        vault.with_amounts(new_collateral_base, new_debt_base), prices, lt, tokens
    )

    return SellQuote(
        sell_amount_wad=x,
        sell_amount_base=to_base(x, c_dec),
        repay_usd_wad=repay_usd,
        repay_amount_wad=repay_human,
        repay_amount_base=to_base(repay_human, repay_decimals),
        new_collateral_base=new_collateral_base,
        new_debt_base=new_debt_base,
        projected_hf_wad=projected_hf,
    )


def _route(from_symbol: str, to_symbol: str, via: str) -> str:
    hops = [from_symbol]
    if via and via not in (from_symbol, to_symbol):
        hops.append(via)
    hops.append(to_symbol)
    return " -> ".join(hops)


def generate_execution_plan(
    vault: Vault,
    prices: PriceMap,
    tokens: TokenRegistry,
    risk: RiskConfig,
    execution: ExecutionConfig | None = None,
    slippage_bps: int | None = None,
    target_hf: float | None = None,
) -> RebalancePlan:
    """Build the withdraw → swap → repay plan plus its atomic call bundle."""
    execution = execution or ExecutionConfig()
    slippage_bps = risk.slippage_bps if slippage_bps is None else slippage_bps
    target_hf = risk.target_hf if target_hf is None else target_hf

    quote = compute_collateral_to_sell(
        vault,
        prices,
        tokens,
        target_hf_wad=to_wad(target_hf),
        liquidation_threshold_wad=risk.liquidation_threshold_wad,
        slippage_bps=slippage_bps,
    )

    collateral = tokens.meta(vault.collateral.asset)
    debt = tokens.meta(vault.debt.asset)
    debt_underlying_symbol = tokens.underlying_price_symbol(debt.symbol)
    debt_underlying = tokens.meta(debt_underlying_symbol) if debt_underlying_symbol in tokens else debt

    min_out_wad = mul(quote.repay_amount_wad, WAD - bps_to_wad(slippage_bps))
    min_out_base = to_base(min_out_wad, debt_underlying.decimals)
    # Swap and repay text is cut from the encoded base amounts, never rounded up.
    expected_text = format_units(
        quote.repay_amount_base, debt_underlying.decimals, SWAP_DISPLAY_PLACES, ROUND_DOWN
    )
    min_out_text = format_units(min_out_base, debt_underlying.decimals, SWAP_DISPLAY_PLACES, ROUND_DOWN)

    actions = (
        WithdrawCollateralAction(
            step=1,
            amount=format_amount(
                quote.sell_amount_base, collateral.symbol, collateral.decimals, collateral.display_decimals
            ),
            reason="Withdraw collateral to swap for debt repayment",
        ),
        SwapAction(
            step=2,
            from_token=collateral.symbol,
            from_amount=format_units(quote.sell_amount_base, collateral.decimals, SWAP_DISPLAY_PLACES),
            to_token=debt_underlying.symbol,
            expected_amount=expected_text,
            min_amount=min_out_text,
            slippage=f"{slippage_bps / 100:.2f}%",
            dex=execution.dex,
            route=_route(collateral.symbol, debt_underlying.symbol, execution.route_via),
        ),
        RepayDebtAction(
            step=3,
            asset=debt.symbol,
            amount=expected_text,
            reason="Reduce debt to increase health factor",
        ),
    )

    deadline = int(time.time()) + execution.deadline_seconds
    atomic = AtomicExecution(
        type="multicall",
        bundler_compatible=execution.bundler,
        calls=(
            CallIntent(
                target=collateral.address,
                method="approve",
                args={"spender": execution.router, "amount": quote.sell_amount_base},
            ),
            CallIntent(
                target=execution.router,
                method="exactOutputSingle",
                args={
                    "tokenIn": collateral.address,
                    "tokenOut": debt_underlying.address,
                    "fee": execution.swap_fee,
                    "recipient": execution.executor,
                    "deadline": deadline,
                    "amountOut": quote.repay_amount_base,
                    "amountOutMinimum": min_out_base,
                    "amountInMaximum": quote.sell_amount_base,
                },
            ),
            CallIntent(
                target=debt_underlying.address,
                method="approve",
                args={"spender": debt.address, "amount": quote.repay_amount_base},
            ),
            CallIntent(
                target=debt.address,
                method="deposit",
                args={"assets": quote.repay_amount_base, "receiver": debt.address},
            ),
        ),
    )

    projected = ProjectedOutcome(
        new_collateral_amount=format_amount(
            quote.new_collateral_base, collateral.symbol, collateral.decimals, collateral.display_decimals
        ),
        new_debt_amount=format_amount(
            quote.new_debt_base, debt.symbol, debt.decimals, debt.display_decimals
        ),
        estimated_health_factor=hf_to_float(quote.projected_hf_wad),
        gas_estimate=execution.gas_estimate,
        new_collateral_base=quote.new_collateral_base,
        new_debt_base=quote.new_debt_base,
        health_factor_wad=quote.projected_hf_wad,
    )

    logger.debug(
        "Plan for %s: sell %d base %s, repay %d base %s, projected HF %s",
        vault.vault_id,
        quote.sell_amount_base,
        collateral.symbol,
        quote.repay_amount_base,
        debt.symbol,
        projected.estimated_health_factor,
    )

    return RebalancePlan(
        target_health_factor=target_hf,
        actions=actions,
        projected_outcome=projected,
        atomic_execution=atomic,
    )
