#!/usr/bin/env python3
"""
Batch APR Calculator
====================

For every stored position:

  invested_usd  = desired0 × price0 + desired1 × price1
  fees_usd      = simulated collect() fees in USD + already-collected fees in USD
  age_days      = (now − created_at) / 86400
  daily_rate    = fees_usd / invested_usd / age_days
  apr (%)       = daily_rate × 365 × 100

Aggregates:

  average_apr          = Σ apr / (positions − skipped)   (simple mean, not capital-weighted)
  total_portfolio_usd  = Σ invested_usd + Σ fees_usd

A position that cannot be valued (read failure, failed simulation, missing
price, zero invested value, non-positive age, timeout) is deactivated in the
store, counted as skipped and left out of every sum, including the
average denominator. It is never counted as a zero return.
"""

import asyncio
import logging
import math
import time
from typing import Callable, Dict, Iterable, List, Optional, Union

from lp_yield.central_config import INVESTED_BASIS_CURRENT, ValuationConfig, resolve_network
from lp_yield.dex_registry import resolve_dex_slug
from lp_yield.errors import DataValidityError, DivisionGuardError, SimulationError
from lp_yield.fee_simulator import simulate_collect_result
from lp_yield.models import (
    AggregateAPRResult,
    OrderBookPosition,
    Position,
    PositionApr,
    SkippedPosition,
    TokenAmounts,
)
from lp_yield.price_feed import PriceFeed
from lp_yield.protocol_adapter import ProtocolAdapter, adapter_for_dex
from lp_yield.store import PositionStore
from position_math import compute_raw_amounts, format_units, usable_range

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60
DAYS_PER_YEAR = 365

Outcome = Union[PositionApr, SkippedPosition]


def compute_position_apr(
    position_id: str,
    desired: TokenAmounts,
    simulated_fees: TokenAmounts,
    collected_fees: TokenAmounts,
    price0: float,
    price1: float,
    created_at: float,
    now: float,
) -> PositionApr:
    """
    Yield figures for one position, all amounts already in human units.

    Raises:
        DivisionGuardError: invested value ≤ 0, age ≤ 0, or a non-finite result.
    """
    invested_usd = desired.amount0 * price0 + desired.amount1 * price1
    simulated_usd = simulated_fees.amount0 * price0 + simulated_fees.amount1 * price1
    collected_usd = collected_fees.amount0 * price0 + collected_fees.amount1 * price1
    fees_usd = simulated_usd + collected_usd

    if not math.isfinite(invested_usd) or invested_usd <= 0:
        raise DivisionGuardError(f"invested value is {invested_usd}, cannot compute a return")
    age_days = (now - created_at) / SECONDS_PER_DAY
    if not math.isfinite(age_days) or age_days <= 0:
        raise DivisionGuardError(f"position age is {age_days} days, cannot annualize")

    daily_return_rate = fees_usd / invested_usd / age_days
    daily_return_usd = fees_usd / age_days
    apr = daily_return_rate * DAYS_PER_YEAR * 100

    if not all(math.isfinite(v) for v in (fees_usd, daily_return_rate, daily_return_usd, apr)):
        raise DivisionGuardError("non-finite APR inputs")

    return PositionApr(
        position_id=position_id,
        invested_usd=invested_usd,
        fees_usd=fees_usd,
        simulated_fees_usd=simulated_usd,
        collected_fees_usd=collected_usd,
        age_days=age_days,
        daily_return_rate=daily_return_rate,
        daily_return_usd=daily_return_usd,
        apr=apr,
    )


def aggregate_outcomes(outcomes: Iterable[Outcome]) -> AggregateAPRResult:
    """
    Fold per-position outcomes into the aggregate. Sums use math.fsum, so the
    result does not depend on completion order.
    """
    outcomes = list(outcomes)
    done = [o for o in outcomes if isinstance(o, PositionApr)]
    skipped = [o for o in outcomes if isinstance(o, SkippedPosition)]

    result = AggregateAPRResult()
    for item in done:
        result.position_id_to_apr[item.position_id] = item.apr
        result.position_id_to_invested_value[item.position_id] = item.invested_usd
        result.per_position[item.position_id] = item
    for item in skipped:
        result.skipped[item.record_id] = item.reason

    result.total_investment_value = math.fsum(o.invested_usd for o in done)
    result.total_fees_earned_usd = math.fsum(o.fees_usd for o in done)
    result.total_portfolio_value_usd = result.total_investment_value + result.total_fees_earned_usd
    result.daily_return_rate_sum = math.fsum(o.daily_return_rate for o in done)
    result.daily_return_usd_sum = math.fsum(o.daily_return_usd for o in done)
    result.skipped_count = len(skipped)

    counted = len(outcomes) - len(skipped)
    result.average_apr = math.fsum(o.apr for o in done) / counted if counted > 0 else 0.0
    return result


class AprCalculator:
    """
    Usage:
        reader = PositionReader.for_network("arbitrum", "camelot_v3")
        calc = AprCalculator(reader, DexScreenerPriceFeed(), JsonPositionStore(path))
        result = await calc.calculate_aggregate_apr(store.load_positions())
    """

    def __init__(
        self,
        reader,
        price_feed: PriceFeed,
        store: PositionStore,
        config: Optional[ValuationConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.reader = reader
        self.price_feed = price_feed
        self.store = store
        self.config = config or ValuationConfig()
        self.clock = clock

    async def calculate_aggregate_apr(self, positions: Iterable[OrderBookPosition]) -> AggregateAPRResult:
        unique: Dict[str, OrderBookPosition] = {}
        for record in positions:
            if record.record_id in unique:
                logger.warning("Duplicate record %s ignored", record.record_id)
                continue
            unique[record.record_id] = record

        logger.info("=== Calculating APR for %d positions ===", len(unique))
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def worker(record: OrderBookPosition) -> Outcome:
            async with semaphore:
                return await self._process(record)

        outcomes: List[Outcome] = await asyncio.gather(*(worker(r) for r in unique.values()))
        result = aggregate_outcomes(outcomes)

        logger.info(
            "Average APR: %.4f%% | Invested: $%.2f | Fees: $%.2f | Portfolio: $%.2f | Skipped: %d",
            result.average_apr,
            result.total_investment_value,
            result.total_fees_earned_usd,
            result.total_portfolio_value_usd,
            result.skipped_count,
        )
        return result

    async def _process(self, record: OrderBookPosition) -> Outcome:
        logger.debug("--- Processing position %s (record %s) ---", record.position_id, record.record_id)
        try:
            return await asyncio.wait_for(
                self._evaluate(record), timeout=self.config.position_timeout_seconds
            )
        except asyncio.TimeoutError:
            reason = f"timed out after {self.config.position_timeout_seconds}s"
        except Exception as e:  # noqa: BLE001
            reason = f"{e.__class__.__name__}: {e}"

        logger.warning("Skipping position %s: %s", record.position_id, reason)
        await self._deactivate(record)
        return SkippedPosition(record.record_id, record.position_id, reason)

    async def _deactivate(self, record: OrderBookPosition) -> None:
        try:
            await self.store.update_status(record.record_id, False)
        except Exception as e:  # noqa: BLE001
            logger.error("Could not deactivate record %s: %s", record.record_id, e)

    async def _evaluate(self, record: OrderBookPosition) -> PositionApr:
        self._check_chain(record)
        adapter = adapter_for_dex(resolve_dex_slug(record.dex))

        # ── Pool + desired (invested-basis) amounts ──────────────────
        raw_pool = await self.reader.read_pool_state(record.pool_address, adapter)
        pool = adapter.normalize_pool(raw_pool, default_fee=self.config.default_fee_tier)
        liquidity = await self._basis_liquidity(record, adapter)
        tick_lower, tick_upper = usable_range(record.tick_lower, record.tick_upper, pool.fee_tier)
        raw0, raw1 = compute_raw_amounts(pool, tick_lower, tick_upper, liquidity)
        desired = TokenAmounts(
            format_units(raw0, record.token0_decimals),
            format_units(raw1, record.token1_decimals),
        )

        # ── Simulated collect() ──────────────────────────────────────
        position = Position(
            position_id=record.nft_id,
            variant=adapter.variant,
            owner=record.account,
            token0=record.token0_address,
            token1=record.token1_address,
            tick_lower=record.tick_lower,
            tick_upper=record.tick_upper,
            liquidity=liquidity,
            pool_address=record.pool_address,
            position_manager=record.position_manager,
        )
        simulation = await simulate_collect_result(
            self.reader, position,
            recipient=record.account, from_address=record.account, adapter=adapter,
        )
        if not simulation.ok:
            raise SimulationError(simulation.error)
        simulated = TokenAmounts(
            format_units(simulation.amount0, record.token0_decimals),
            format_units(simulation.amount1, record.token1_decimals),
        )
        collected = TokenAmounts(
            format_units(record.fee0, record.token0_decimals),
            format_units(record.fee1, record.token1_decimals),
        )

        # ── Prices ───────────────────────────────────────────────────
        symbol0, symbol1 = await self._symbols(record)
        price0, price1 = await asyncio.gather(
            self.price_feed.fetch_current_price(symbol0),
            self.price_feed.fetch_current_price(symbol1),
        )

        outcome = compute_position_apr(
            record.position_id, desired, simulated, collected,
            price0, price1, record.created_at, self.clock(),
        )
        logger.debug(
            "Position %s: invested $%.4f, fees $%.6f over %.4f days → APR %.2f%%",
            record.position_id, outcome.invested_usd, outcome.fees_usd,
            outcome.age_days, outcome.apr,
        )
        return outcome

    def _check_chain(self, record: OrderBookPosition) -> None:
        network = getattr(self.reader, "network", None)
        if network and resolve_network(record.chain) != network:
            raise DataValidityError(f"position is on {record.chain}, reader is on {network}")

    async def _basis_liquidity(self, record: OrderBookPosition, adapter: ProtocolAdapter) -> int:
        if self.config.invested_basis != INVESTED_BASIS_CURRENT:
            return record.entry_liquidity
        raw = await self.reader.read_position_state(record.nft_id, record.position_manager, adapter)
        return adapter.normalize_position(raw, record.nft_id).liquidity

    async def _symbols(self, record: OrderBookPosition):
        symbol0, symbol1 = record.token0_symbol, record.token1_symbol
        if not symbol0:
            symbol0 = (await self.reader.read_token_meta(record.token0_address)).symbol
        if not symbol1:
            symbol1 = (await self.reader.read_token_meta(record.token1_address)).symbol
        return symbol0, symbol1
