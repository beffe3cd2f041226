#!/usr/bin/env python3
"""
LP Yield -- Concentrated-Liquidity Position Valuation
=====================================================

Values Uniswap V3 style and Camelot (Algebra) LP position NFTs directly
from chain state and computes fee APR over a batch of stored positions.

Usage:
  python run.py position <nftId> --dex camelot_v3 --network arbitrum   Value one position
  python run.py position <nftId> --json                                JSON output
  python run.py apr positions.json --prices prices.json                Batch APR (static prices)
  python run.py apr positions.json --basis current                     Invested = on-chain liquidity
  python run.py info                                                   System overview + DEX support

Sources:
  Uniswap V3 Whitepaper : https://uniswap.org/whitepaper-v3.pdf
  Uniswap V3 Periphery  : https://github.com/Uniswap/v3-periphery
  DEXScreener API       : https://docs.dexscreener.com/api/reference
"""

import sys
import asyncio
import argparse
import logging
from pathlib import Path

# ── Imports ───────────────────────────────────────────────────────────────

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from lp_yield.central_config import INVESTED_BASES, PROJECT_VERSION
from lp_yield.commands import cmd_apr, cmd_info, cmd_position


# ── CLI Parser ────────────────────────────────────────────────────────────


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lp-yield",
        description=f"LP Yield v{PROJECT_VERSION} — concentrated-liquidity position valuation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run.py position 12345                          Camelot V3 position on Arbitrum
  python run.py position 5260106 --dex uniswap_v3       Uniswap V3 position
  python run.py apr positions.json                      APR with DEXScreener prices
  python run.py apr positions.json --prices prices.json --concurrency 10
  python run.py info                                    System overview + DEX support

Environment:
  LP_YIELD_RPC_URL       RPC endpoint override
  LP_YIELD_RPC_TIMEOUT   per-call timeout in seconds (default 20)
  LP_YIELD_CONCURRENCY   positions valued in parallel (default 5)
""",
    )
    parser.add_argument(
        "--version", action="version", version=f"LP Yield v{PROJECT_VERSION}"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Debug logging"
    )

    sub = parser.add_subparsers(dest="command", help="Available commands")

    position_p = sub.add_parser("position", help="Value a single LP position NFT")
    position_p.add_argument("nft_id", type=int, help="Position NFT tokenId (uint256)")
    position_p.add_argument(
        "--dex",
        type=str,
        default="camelot_v3",
        help="DEX: camelot_v3, uniswap_v3, pancakeswap_v3, sushiswap_v3 (default: camelot_v3)",
    )
    position_p.add_argument(
        "--network",
        type=str,
        default="arbitrum",
        help="Network: arbitrum, ethereum, polygon, base, optimism, bsc (default: arbitrum)",
    )
    position_p.add_argument("--json", action="store_true", help="Print JSON instead of text")

    apr_p = sub.add_parser("apr", help="Aggregate fee APR over stored positions")
    apr_p.add_argument("positions", help="JSON file with stored position records")
    apr_p.add_argument(
        "--prices",
        type=str,
        default=None,
        help="JSON file of symbol → USD price (default: live DEXScreener prices)",
    )
    apr_p.add_argument(
        "--concurrency", type=int, default=None, help="Positions valued in parallel (default: 5)"
    )
    apr_p.add_argument(
        "--basis",
        choices=INVESTED_BASES,
        default=None,
        help="Invested capital from entry liquidity or current on-chain liquidity (default: entry)",
    )
    apr_p.add_argument(
        "--network", type=str, default="arbitrum", help="Network (default: arbitrum)"
    )
    apr_p.add_argument(
        "--dex",
        type=str,
        default="camelot_v3",
        help="DEX whose factory backs the reader (default: camelot_v3)",
    )
    apr_p.add_argument("--json", action="store_true", help="Print JSON instead of text")

    sub.add_parser("info", help="System & DEX support info")

    return parser


# ── Main ──────────────────────────────────────────────────────────────────


def main(argv=None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "info":
        cmd_info()
        return 0

    if args.command == "position":
        ok = asyncio.run(
            cmd_position(
                nft_id=args.nft_id,
                dex=args.dex,
                network=args.network,
                as_json=args.json,
            )
        )
        return 0 if ok else 1

    if args.command == "apr":
        ok = asyncio.run(
            cmd_apr(
                path=args.positions,
                prices_path=args.prices,
                concurrency=args.concurrency,
                basis=args.basis,
                network=args.network,
                dex=args.dex,
                as_json=args.json,
            )
        )
        return 0 if ok else 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n❌ Cancelled.")
        sys.exit(130)
