#!/usr/bin/env python3
"""
Position Math Engine
====================

Exact concentrated-liquidity math over ticks, sqrtPriceX96 and liquidity.
Every intermediate value is a Python int (arbitrary precision); floats only
appear in the final human-unit conversion, which is rounded to a bounded
number of significant digits for display.

FORMULA SOURCES:
────────────────
1. Uniswap V3 Core — TickMath.getSqrtRatioAtTick
   https://github.com/Uniswap/v3-core/blob/main/contracts/libraries/TickMath.sol
   sqrt(1.0001^tick) × 2^96 via a fixed table of Q128.128 magic constants.

2. Uniswap V3 Core — SqrtPriceMath.getAmount0Delta / getAmount1Delta
   https://github.com/Uniswap/v3-core/blob/main/contracts/libraries/SqrtPriceMath.sol
   amount0 = L × 2^96 × (√Pb − √Pa) / √Pb / √Pa
   amount1 = L × (√Pb − √Pa) / 2^96

3. Uniswap V3 Whitepaper §6.2.3 — the three branches of a position:
   current < lower  → all token0
   lower ≤ current < upper → both tokens
   current ≥ upper  → all token1
"""

from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Tuple

from lp_yield.errors import DataValidityError, TickOutOfRangeError
from lp_yield.models import PoolState, TokenAmounts
from lp_yield.rpc_helpers import Q96

# ── Protocol Constants ───────────────────────────────────────────────────

MIN_TICK = -887272
MAX_TICK = 887272
MIN_SQRT_RATIO = 4295128739
MAX_SQRT_RATIO = 1461446703485210103287273052203988822378723970342

MAX_UINT256 = 2 ** 256 - 1

# Fee tier (hundredths of a bip) → tick spacing. Anything else → 60.
FEE_TO_TICK_SPACING = {500: 10, 3000: 60, 10000: 200}
DEFAULT_TICK_SPACING = 60

DISPLAY_SIGNIFICANT_DIGITS = 12

# TickMath magic numbers: 2^128 / sqrt(1.0001)^(2^i), one per bit of |tick|
_TICK_RATIOS = (
    (0x2, 0xfff97272373d413259a46990580e213a),
    (0x4, 0xfff2e50f5f656932ef12357cf3c7fdcc),
    (0x8, 0xffe5caca7e10e4e61c3624eaa0941cd0),
    (0x10, 0xffcb9843d60f6159c9db58835c926644),
    (0x20, 0xff973b41fa98c081472e6896dfb254c0),
    (0x40, 0xff2ea16466c96a3843ec78b326b52861),
    (0x80, 0xfe5dee046a99a2a811c461f1969c3053),
    (0x100, 0xfcbe86c7900a88aedcffc83b479aa3a4),
    (0x200, 0xf987a7253ac413176f2b074cf7815e54),
    (0x400, 0xf3392b0822b70005940c7a398e4b70f3),
    (0x800, 0xe7159475a2c29b7443b29c7fa6e889d9),
    (0x1000, 0xd097f3bdfd2022b8845ad8f792aa5825),
    (0x2000, 0xa9f746462d870fdf8a65dc1f90e061e5),
    (0x4000, 0x70d869a156d2a1b890bb3df62baf32f7),
    (0x8000, 0x31be135f97d08fd981231505542fcfa6),
    (0x10000, 0x9aa508b5b7a84e1c677de54f3e99bc9),
    (0x20000, 0x5d6af8dedb81196699c329225ee604),
    (0x40000, 0x2216e584f5fa1ea926041bedfe98),
    (0x80000, 0x48a170391f7dc42444e8fa2),
)


class ConcentratedLiquidityMath:
    """Static helpers mirroring the on-chain TickMath / SqrtPriceMath libraries."""

    # ── Ticks ────────────────────────────────────────────────────────

    @staticmethod
    def check_tick(tick: int) -> int:
        if not MIN_TICK <= tick <= MAX_TICK:
            raise TickOutOfRangeError(
                f"Tick {tick} out of range [{MIN_TICK}, {MAX_TICK}]"
            )
        return tick

    @staticmethod
    def fee_to_tick_spacing(fee: int) -> int:
        """{500: 10, 3000: 60, 10000: 200}; 60 for any other tier."""
        try:
            return FEE_TO_TICK_SPACING.get(int(fee), DEFAULT_TICK_SPACING)
        except (TypeError, ValueError):
            return DEFAULT_TICK_SPACING

    @staticmethod
    def nearest_usable_tick(tick: int, tick_spacing: int) -> int:
        """
        Snap a tick onto the spacing grid: floor(tick / spacing) × spacing.

        Floor division rounds toward −∞, so -5 with spacing 10 → -10.
        Results that would leave [MIN_TICK, MAX_TICK] are pulled back one
        spacing step. Aligned ticks are returned unchanged.
        """
        if tick_spacing <= 0:
            raise ValueError(f"tick_spacing must be positive, got {tick_spacing}")
        ConcentratedLiquidityMath.check_tick(tick)
        usable = (tick // tick_spacing) * tick_spacing
        if usable < MIN_TICK:
            usable += tick_spacing
        elif usable > MAX_TICK:
            usable -= tick_spacing
        return usable

    @staticmethod
    def is_in_range(current_tick: int, tick_lower: int, tick_upper: int) -> bool:
        """Inclusive on both bounds."""
        return tick_lower <= current_tick <= tick_upper

    @staticmethod
    def get_sqrt_ratio_at_tick(tick: int) -> int:
        """
        sqrt(1.0001^tick) × 2^96 as a Q64.96 int, bit-exact with TickMath.

        >>> ConcentratedLiquidityMath.get_sqrt_ratio_at_tick(0) == 2 ** 96
        True
        """
        ConcentratedLiquidityMath.check_tick(tick)
        abs_tick = abs(tick)

        if abs_tick & 0x1:
            ratio = 0xfffcb933bd6fad37aa2d162d1a594001
        else:
            ratio = 0x100000000000000000000000000000000
        for bit, magic in _TICK_RATIOS:
            if abs_tick & bit:
                ratio = (ratio * magic) >> 128

        if tick > 0:
            ratio = MAX_UINT256 // ratio

        # Q128.128 → Q64.96, rounding up
        return (ratio >> 32) + (0 if ratio % (1 << 32) == 0 else 1)

    # ── Amount deltas (round down, as the SDK's Position.amount0/1) ──

    @staticmethod
    def get_amount0_delta(sqrt_ratio_a_x96: int, sqrt_ratio_b_x96: int, liquidity: int) -> int:
        if sqrt_ratio_a_x96 > sqrt_ratio_b_x96:
            sqrt_ratio_a_x96, sqrt_ratio_b_x96 = sqrt_ratio_b_x96, sqrt_ratio_a_x96
        if sqrt_ratio_a_x96 <= 0:
            raise DataValidityError("sqrt ratio must be positive")
        numerator1 = liquidity << 96
        numerator2 = sqrt_ratio_b_x96 - sqrt_ratio_a_x96
        return (numerator1 * numerator2 // sqrt_ratio_b_x96) // sqrt_ratio_a_x96

    @staticmethod
    def get_amount1_delta(sqrt_ratio_a_x96: int, sqrt_ratio_b_x96: int, liquidity: int) -> int:
        if sqrt_ratio_a_x96 > sqrt_ratio_b_x96:
            sqrt_ratio_a_x96, sqrt_ratio_b_x96 = sqrt_ratio_b_x96, sqrt_ratio_a_x96
        return liquidity * (sqrt_ratio_b_x96 - sqrt_ratio_a_x96) // Q96

    # ── Prices (display only) ────────────────────────────────────────

    @staticmethod
    def sqrt_price_x96_to_price(sqrt_price_x96: int, decimals0: int, decimals1: int) -> float:
        """
        token1 per token0 in human units:
          (sqrtPriceX96 / 2^96)^2 × 10^(decimals0 − decimals1)
        """
        if sqrt_price_x96 == 0:
            return 0.0
        with localcontext() as ctx:
            ctx.prec = 80
            ratio = (Decimal(sqrt_price_x96) / Decimal(Q96)) ** 2
            return float(ratio * (Decimal(10) ** (decimals0 - decimals1)))


# ── Raw → human conversion ──────────────────────────────────────────────


def format_units(raw: int, decimals: int) -> float:
    """Raw integer amount → human units, exact until the final float cast."""
    if raw == 0:
        return 0.0
    with localcontext() as ctx:
        ctx.prec = 90
        return float(Decimal(raw).scaleb(-decimals))


def to_significant(raw: int, decimals: int, digits: int = DISPLAY_SIGNIFICANT_DIGITS) -> float:
    """Raw amount → human units rounded to ``digits`` significant digits."""
    if raw == 0:
        return 0.0
    with localcontext() as ctx:
        ctx.prec = digits
        ctx.rounding = ROUND_HALF_UP
        return float(+Decimal(raw).scaleb(-decimals))


# ── Position amounts ────────────────────────────────────────────────────


def compute_raw_amounts(
    pool: PoolState, tick_lower: int, tick_upper: int, liquidity: int
) -> Tuple[int, int]:
    """
    Raw token amounts held by ``liquidity`` over [tick_lower, tick_upper].

    Raises:
        TickOutOfRangeError: a tick lies outside [MIN_TICK, MAX_TICK].
        DataValidityError: tick_lower > tick_upper or negative liquidity.
    """
    math_ = ConcentratedLiquidityMath
    math_.check_tick(tick_lower)
    math_.check_tick(tick_upper)
    if tick_lower > tick_upper:
        raise DataValidityError(
            f"Invalid tick range: lower {tick_lower} > upper {tick_upper}"
        )
    if liquidity < 0:
        raise DataValidityError(f"liquidity must be non-negative, got {liquidity}")
    if liquidity == 0 or tick_lower == tick_upper:
        return 0, 0

    sqrt_lower = math_.get_sqrt_ratio_at_tick(tick_lower)
    sqrt_upper = math_.get_sqrt_ratio_at_tick(tick_upper)

    if pool.current_tick < tick_lower:
        return math_.get_amount0_delta(sqrt_lower, sqrt_upper, liquidity), 0
    if pool.current_tick < tick_upper:
        if pool.sqrt_price_x96 <= 0:
            raise DataValidityError("pool sqrtPriceX96 must be positive")
        amount0 = math_.get_amount0_delta(pool.sqrt_price_x96, sqrt_upper, liquidity)
        amount1 = math_.get_amount1_delta(sqrt_lower, pool.sqrt_price_x96, liquidity)
        return amount0, amount1
    return 0, math_.get_amount1_delta(sqrt_lower, sqrt_upper, liquidity)


def compute_amounts(
    pool: PoolState,
    tick_lower: int,
    tick_upper: int,
    liquidity: int,
    decimals0: int = 18,
    decimals1: int = 18,
    significant_digits: int = DISPLAY_SIGNIFICANT_DIGITS,
) -> TokenAmounts:
    """Same as compute_raw_amounts, converted to human (decimal-adjusted) units."""
    raw0, raw1 = compute_raw_amounts(pool, tick_lower, tick_upper, liquidity)
    return TokenAmounts(
        amount0=to_significant(raw0, decimals0, significant_digits),
        amount1=to_significant(raw1, decimals1, significant_digits),
    )


def usable_range(tick_lower: int, tick_upper: int, fee_tier: int) -> Tuple[int, int]:
    """Realign both bounds to the spacing implied by ``fee_tier``."""
    spacing = ConcentratedLiquidityMath.fee_to_tick_spacing(fee_tier)
    return (
        ConcentratedLiquidityMath.nearest_usable_tick(tick_lower, spacing),
        ConcentratedLiquidityMath.nearest_usable_tick(tick_upper, spacing),
    )
