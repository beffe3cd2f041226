"""
LP Yield — Command Implementations
==================================

All CLI command handlers live here, keeping run.py as a thin
argparse dispatcher.  Each public function corresponds to a
subcommand (position, apr, info).
"""

from __future__ import annotations

import json
from pathlib import Path

from lp_yield.central_config import PROJECT_NAME, PROJECT_VERSION, RPC_URLS, ValuationConfig
from lp_yield.dex_registry import DEX_REGISTRY, get_dexes_for_network
from lp_yield.errors import ValuationError
from lp_yield.models import AggregateAPRResult, ValuationResult
from lp_yield.price_feed import DexScreenerPriceFeed, StaticPriceFeed
from lp_yield.store import JsonPositionStore


def _fmt(value: float) -> str:
    return f"{value:,.12g}"


def _print_valuation(result: ValuationResult) -> None:
    t0, t1 = result.token0.symbol, result.token1.symbol
    print(f"\n📍 Position #{result.position_id} — {result.dex}")
    print("=" * 55)
    print(f"   Pool          : {result.pool_address}")
    print(f"   Owner         : {result.owner or '—'}")
    print(f"   Liquidity     : {result.liquidity}")
    status = "✅ In Range" if result.in_range else "⚠️  OUT OF RANGE"
    print(
        f"   Ticks         : [{result.usable_tick_lower}, {result.usable_tick_upper}]"
        f"  pool tick {result.pool_tick}  {status}"
    )
    print(f"   Price         : {_fmt(result.price)} {t1} per {t0}")
    print()
    print("💧 Withdrawable:")
    print(f"   {t0:<8} {_fmt(result.withdrawable.amount0)}")
    print(f"   {t1:<8} {_fmt(result.withdrawable.amount1)}")
    print("💰 Uncollected fees (simulated collect):")
    print(f"   {t0:<8} {_fmt(result.simulated_uncollected_fees.amount0)}")
    print(f"   {t1:<8} {_fmt(result.simulated_uncollected_fees.amount1)}")
    if result.fee_simulation_error:
        print(f"   ⚠️  Simulation failed, fees shown as 0 ({result.fee_simulation_error})")
    print("📦 Total claimable:")
    print(f"   {t0:<8} {_fmt(result.total_claimable.amount0)}")
    print(f"   {t1:<8} {_fmt(result.total_claimable.amount1)}")
    if result.block_number:
        print(f"\n   Block #{result.block_number}")


def _print_aggregate(result: AggregateAPRResult) -> None:
    print("\n📈 Portfolio APR")
    print("=" * 55)
    for position_id, item in sorted(result.per_position.items()):
        print(
            f"   {position_id:<14} invested ${item.invested_usd:>14,.2f}"
            f"  fees ${item.fees_usd:>10,.4f}  APR {item.apr:>8.2f}%"
        )
    if result.skipped:
        print()
        print(f"⏭️  Skipped ({result.skipped_count}):")
        for record_id, reason in sorted(result.skipped.items()):
            print(f"   {record_id:<14} {reason}")
    print()
    print(f"   Total invested  : ${result.total_investment_value:,.2f}")
    print(f"   Total fees      : ${result.total_fees_earned_usd:,.4f}")
    print(f"   Portfolio value : ${result.total_portfolio_value_usd:,.2f}")
    print(f"   Daily return    : ${result.daily_return_usd_sum:,.4f}")
    print(f"   Average APR     : {result.average_apr:.2f}%")


def _load_prices(path: str) -> dict:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected an object of symbol → USD price")
    return data


async def cmd_position(
    nft_id: int,
    dex: str = "camelot_v3",
    network: str = "arbitrum",
    as_json: bool = False,
) -> bool:
    """Value one position NFT and print the snapshot."""
    from position_reader import PositionReader
    from position_valuator import PositionValuator

    config = ValuationConfig.from_env()
    try:
        reader = PositionReader.for_network(network, dex, timeout=config.rpc_timeout_seconds)
    except ValueError as e:
        print(f"❌ {e}")
        return False

    if not as_json:
        print(f"🔍 Reading position #{nft_id} on {network} ({reader.dex_name})…")
    try:
        result = await PositionValuator(
            reader, config.display_significant_digits
        ).valuate_position(nft_id)
    except ValuationError as e:
        print(f"❌ {e.__class__.__name__}: {e}")
        return False

    if as_json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        _print_valuation(result)
    return True


async def cmd_apr(
    path: str,
    prices_path: str | None = None,
    concurrency: int | None = None,
    basis: str | None = None,
    network: str = "arbitrum",
    dex: str = "camelot_v3",
    as_json: bool = False,
) -> bool:
    """Batch APR over the active positions stored in a JSON file."""
    from apr_calculator import AprCalculator
    from position_reader import PositionReader

    try:
        config = ValuationConfig.from_env(max_concurrency=concurrency, invested_basis=basis)
        store = JsonPositionStore(Path(path))
        positions = store.load_positions()
        price_feed = (
            StaticPriceFeed(_load_prices(prices_path)) if prices_path else DexScreenerPriceFeed()
        )
        reader = PositionReader.for_network(network, dex, timeout=config.rpc_timeout_seconds)
    except (OSError, ValueError) as e:
        print(f"❌ {e}")
        return False

    if not positions:
        print("ℹ️  No active positions.")
        return True
    if not as_json:
        print(f"🧮 Calculating APR for {len(positions)} positions (basis: {config.invested_basis})…")

    calculator = AprCalculator(reader, price_feed, store, config)
    result = await calculator.calculate_aggregate_apr(positions)

    if as_json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        _print_aggregate(result)
    return True


def cmd_info() -> None:
    """Display system and architecture information."""
    print(f"\n📊 {PROJECT_NAME} v{PROJECT_VERSION}")
    print("=" * 55)
    print("🔗 Protocol   : Concentrated liquidity (Uniswap V3 & Algebra forks)")
    print("📡 Data Source : Public JSON-RPC (eth_call) + DEXScreener prices")
    print()
    print("📁 Files:")
    print("   run.py                — CLI entry point")
    print("   position_reader.py    — On-chain pool / position / token reads")
    print("   position_math.py      — Tick math, withdrawable amounts")
    print("   position_valuator.py  — Single-position valuation")
    print("   apr_calculator.py     — Batch APR over stored positions")
    print("   lp_yield/             — Adapters, fee simulation, config, registry")
    print()
    print("🔄 Supported DEXes:")
    for slug, dex in DEX_REGISTRY.items():
        nets = ", ".join(dex["networks"].keys())
        print(f"   {dex['name']:<16} {slug:<16} [{dex['variant']}] — {nets}")
    print()
    print("🌐 DEXes per network:")
    for network in RPC_URLS:
        names = ", ".join(d["name"] for d in get_dexes_for_network(network)) or "—"
        print(f"   {network:<10} {names}")
    print()
    print("🔗 Quick Start:")
    print("   python run.py position 12345 --dex camelot_v3")
    print("   python run.py apr positions.json --prices prices.json")
    print()
    print("📚 References:")
    print("   Uniswap V3 Whitepaper : https://uniswap.org/whitepaper-v3.pdf")
    print("   Uniswap V3 Periphery  : https://github.com/Uniswap/v3-periphery")
    print("   DEXScreener API       : https://docs.dexscreener.com/api/reference")
