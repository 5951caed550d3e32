"""Fixed-point (WAD, 10^18) arithmetic and base-unit conversions — no I/O.

All USD values, prices and human-readable token amounts are Python ints
scaled by ``WAD``. On-chain balances are ints scaled by each token's own
decimal count ("base units"). Python ints are arbitrary precision, so the
``a * b`` intermediates below never overflow.

Precision: every division truncates toward zero and loses strictly less than
one unit of the result's scale (1e-18 for WAD results, one base unit for
base-unit results). ``to_human`` followed by ``to_base`` is exact only down to
the token's own decimal resolution.
"""
from __future__ import annotations

import re
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Mapping

from .errors import InvalidAmountFormatError

WAD = 10**18
BPS_DENOMINATOR = 10_000

_AMOUNT_RE = re.compile(r"^\s*([0-9]+(?:\.[0-9]+)?)\s*([A-Za-z][A-Za-z0-9]*)\s*$")

# Wide enough for any 2**255-scale value rendered with 18 fractional digits.
_DECIMAL_PRECISION = 100


def _quantize(value: Decimal, places: int, rounding: str = ROUND_HALF_UP) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        return value.quantize(Decimal(1).scaleb(-places), rounding=rounding)


def pow10(n: int) -> int:
    return 10**n


def mul_div(a: int, b: int, denominator: int) -> int:
    """Return ``a * b / denominator`` truncated toward zero.

    Python's ``//`` floors, which differs from truncation for negative
    quotients; the rebalance solver works with signed intermediates, so the
    sign is applied after dividing magnitudes.
    """
    if denominator == 0:
        raise ZeroDivisionError("mul_div denominator is zero")
    product = a * b
    quotient = abs(product) // abs(denominator)
    if (product < 0) != (denominator < 0):
        return -quotient
    return quotient


def mul(a_wad: int, b_wad: int) -> int:
    """``a * b / WAD``."""
    return mul_div(a_wad, b_wad, WAD)


def div(a_wad: int, b_wad: int) -> int:
    """``a * WAD / b``."""
    return mul_div(a_wad, WAD, b_wad)


def to_human(base: int, decimals: int) -> int:
    """Base units → WAD-scaled human amount."""
    return mul_div(base, WAD, pow10(decimals))


def to_base(human_wad: int, decimals: int) -> int:
    """WAD-scaled human amount → base units (truncates below token resolution)."""
    return mul_div(human_wad, pow10(decimals), WAD)


def bps_to_wad(bps: int) -> int:
    """Basis points → WAD fraction, e.g. ``50`` → ``0.005 * WAD``."""
    return mul_div(bps, WAD, BPS_DENOMINATOR)


def clamp(x: int, lo: int, hi: int) -> int:
    if x < lo:
        return lo
    if x > hi:
        return hi
    return x


def to_wad(value: int | float | str | Decimal) -> int:
    """Parse a plain decimal number into WAD.

    Floats go through ``str`` first so ``0.85`` becomes exactly
    ``850000000000000000``. Digits beyond 18 places are truncated.
    """
    try:
        dec = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except InvalidOperation as e:
        raise ValueError(f"Not a decimal number: {value!r}") from e
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        return int((dec * WAD).to_integral_value(rounding=ROUND_DOWN))


def from_wad(wad: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        return Decimal(wad).scaleb(-18)


def wad_to_float(wad: int, places: int | None = None) -> float:
    """WAD → float for display; optionally rounded to ``places``."""
    value = from_wad(wad)
    if places is not None:
        value = _quantize(value, places)
    return float(value)


def format_units(base: int, decimals: int, places: int, rounding: str = ROUND_HALF_UP) -> str:
    """Base units → fixed-point text, e.g. ``(2649300000000000000, 18, 4)`` → ``"2.6493"``.

    Pass ``rounding=ROUND_DOWN`` when the text must never exceed the encoded
    base amount.
    """
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        value = Decimal(base).scaleb(-decimals)
    return str(_quantize(value, places, rounding))


def format_amount(base: int, symbol: str, decimals: int, places: int) -> str:
    """Render a base-unit balance as ``"<amount> <symbol>"``."""
    return f"{format_units(base, decimals, places)} {symbol}"


def parse_amount(text: str, token_decimals: Mapping[str, int]) -> tuple[int, str]:
    """Parse ``"2.6493 weETH"`` back into ``(base_units, symbol)``.

    Raises:
        InvalidAmountFormatError: malformed text or a symbol with no known
            decimal count.
    """
    match = _AMOUNT_RE.match(str(text))
    if not match:
        raise InvalidAmountFormatError(f"Invalid amount format: {text!r}")

    human, symbol = match.group(1), match.group(2)
    if symbol not in token_decimals:
        raise InvalidAmountFormatError(f"Unknown token symbol in amount: {text!r}")

    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        scaled = Decimal(human).scaleb(token_decimals[symbol])
        return int(scaled.to_integral_value(rounding=ROUND_DOWN)), symbol
