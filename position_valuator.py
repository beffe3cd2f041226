#!/usr/bin/env python3
"""
Single-Position Valuation
=========================

positions() → Factory pool lookup → pool state → token metadata
            → tick realignment → withdrawable amounts → simulated collect()
            → ValuationResult

Steps follow the reader's data sources one-to-one. Any read or validity
failure propagates to the caller. A failed collect() simulation does not:
fees are then reported as zero and the error is attached to the result.
"""

import logging
from typing import Optional

from lp_yield.errors import DataValidityError
from lp_yield.fee_simulator import simulate_collect_result
from lp_yield.models import TokenAmounts, ValuationResult
from lp_yield.protocol_adapter import DEFAULT_FEE_TIER
from position_math import (
    ConcentratedLiquidityMath,
    DISPLAY_SIGNIFICANT_DIGITS,
    compute_amounts,
    format_units,
    usable_range,
)
from position_reader import PositionReader

logger = logging.getLogger(__name__)


class PositionValuator:
    """
    Usage:
        reader = PositionReader.for_network("arbitrum", "camelot_v3")
        result = await PositionValuator(reader).valuate_position(12345)
    """

    def __init__(self, reader: PositionReader, significant_digits: int = DISPLAY_SIGNIFICANT_DIGITS):
        self.reader = reader
        self.significant_digits = significant_digits

    async def valuate_position(self, token_id: int, recipient: Optional[str] = None) -> ValuationResult:
        """
        Point-in-time valuation of one position NFT.

        Raises:
            DataValidityError: bad id, zero-address tokens, pool not found,
                               invalid ticks.
            ChainReadError: RPC / timeout failure on any required read.
        """
        # ── Step 0: Validate inputs ──────────────────────────────────
        if isinstance(token_id, bool) or not isinstance(token_id, int) or token_id < 0:
            raise DataValidityError(f"position id must be a non-negative integer, got {token_id!r}")

        reader = self.reader
        adapter = reader.adapter
        block_number = await reader.get_block_number()

        # ── Step 1: positions() + ownerOf() ──────────────────────────
        raw_position = await reader.read_position_state(token_id)
        position = adapter.normalize_position(
            raw_position, token_id, position_manager=reader.position_manager
        )
        if position.liquidity == 0:
            logger.info("Position #%s has zero liquidity (may be closed)", token_id)

        # ── Step 2: pool lookup + state ──────────────────────────────
        lookup_fee = position.fee_tier or DEFAULT_FEE_TIER
        pool_address = await reader.resolve_pool_address(position.token0, position.token1, lookup_fee)
        raw_pool = await reader.read_pool_state(pool_address)
        pool = adapter.normalize_pool(raw_pool, position_fee=position.fee_tier)

        # ── Step 3: token metadata (never fatal) ─────────────────────
        token0 = await reader.read_token_meta(position.token0)
        token1 = await reader.read_token_meta(position.token1)

        # ── Step 4: usable ticks + withdrawable amounts ──────────────
        tick_lower, tick_upper = usable_range(position.tick_lower, position.tick_upper, pool.fee_tier)
        withdrawable = compute_amounts(
            pool, tick_lower, tick_upper, position.liquidity,
            token0.decimals, token1.decimals, self.significant_digits,
        )

        # ── Step 5: simulated collect() ──────────────────────────────
        simulation = await simulate_collect_result(
            reader, position, recipient=recipient, adapter=adapter
        )
        fees = TokenAmounts(
            format_units(simulation.amount0, token0.decimals),
            format_units(simulation.amount1, token1.decimals),
        )
        owed = TokenAmounts(
            format_units(position.tokens_owed0, token0.decimals),
            format_units(position.tokens_owed1, token1.decimals),
        )

        in_range = ConcentratedLiquidityMath.is_in_range(pool.current_tick, tick_lower, tick_upper)
        price = ConcentratedLiquidityMath.sqrt_price_x96_to_price(
            pool.sqrt_price_x96, token0.decimals, token1.decimals
        )
        logger.info(
            "Position #%s %s/%s loaded | %s",
            token_id, token0.symbol, token1.symbol, "In Range" if in_range else "OUT OF RANGE",
        )

        return ValuationResult(
            position_id=token_id,
            dex=reader.dex_name,
            position_manager=reader.position_manager,
            owner=position.owner,
            pool_address=pool_address,
            token0=token0,
            token1=token1,
            liquidity=position.liquidity,
            withdrawable=withdrawable,
            simulated_uncollected_fees=fees,
            on_chain_tokens_owed=owed,
            total_claimable=withdrawable + fees,
            pool_tick=pool.current_tick,
            usable_tick_lower=tick_lower,
            usable_tick_upper=tick_upper,
            in_range=in_range,
            price=price,
            fee_simulation_error=simulation.error,
            block_number=block_number,
        )
