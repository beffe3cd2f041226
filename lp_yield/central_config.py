"""
Project Configuration — endpoints, version, valuation defaults
===============================================================

Single place for RPC endpoints, chain ids, DEXScreener endpoints and the
tunables of the valuation / APR engine. Environment overrides:

  LP_YIELD_RPC_URL       replaces the RPC endpoint for every network
  LP_YIELD_RPC_TIMEOUT   per-call timeout in seconds (default 20)
  LP_YIELD_CONCURRENCY   in-flight position valuations (default 5)
"""

import os
import re
from dataclasses import dataclass
from importlib.metadata import version, PackageNotFoundError
from pathlib import Path
from types import MappingProxyType
from typing import Optional

# Version — single source of truth is pyproject.toml
try:
    PROJECT_VERSION = version("lp-yield")
except PackageNotFoundError:
    # Dev / CI: package not installed — read pyproject.toml directly
    _toml = Path(__file__).resolve().parent.parent / "pyproject.toml"
    _m = (
        re.search(r'version\s*=\s*"([^"]+)"', _toml.read_text())
        if _toml.exists()
        else None
    )
    PROJECT_VERSION = _m.group(1) if _m else "0.0.0-dev"
PROJECT_NAME = "LP Yield"


# ── Networks ────────────────────────────────────────────────────────────
# Privacy-preserving public endpoints via 1RPC.io (no API key required).
# Docs: https://docs.1rpc.io/web3-relay/overview

RPC_URLS = MappingProxyType(
    {
        "arbitrum": "https://1rpc.io/arb",
        "ethereum": "https://1rpc.io/eth",
        "polygon": "https://1rpc.io/matic",
        "base": "https://1rpc.io/base",
        "optimism": "https://1rpc.io/op",
        "bsc": "https://1rpc.io/bnb",
    }
)

CHAIN_IDS = MappingProxyType(
    {
        "ethereum": 1,
        "optimism": 10,
        "bsc": 56,
        "polygon": 137,
        "base": 8453,
        "arbitrum": 42161,
    }
)

# Aliases accepted on the command line
NETWORK_ALIASES = MappingProxyType(
    {"eth": "ethereum", "arb": "arbitrum", "matic": "polygon", "op": "optimism", "bnb": "bsc"}
)


def resolve_network(network: str) -> str:
    """Normalize a network name or alias; raise ValueError if unknown."""
    name = NETWORK_ALIASES.get(network.lower(), network.lower())
    if name not in RPC_URLS:
        raise ValueError(
            f"Unsupported network: {network}. Available: {list(RPC_URLS.keys())}"
        )
    return name


def rpc_url_for(network: str) -> str:
    return os.environ.get("LP_YIELD_RPC_URL") or RPC_URLS[resolve_network(network)]


# ── Invested-capital basis ──────────────────────────────────────────────
# "entry":   liquidity recorded when the position was opened (storage row)
# "current": liquidity read from positions() at valuation time

INVESTED_BASIS_ENTRY = "entry"
INVESTED_BASIS_CURRENT = "current"
INVESTED_BASES = (INVESTED_BASIS_ENTRY, INVESTED_BASIS_CURRENT)


@dataclass(frozen=True)
class ValuationConfig:
    """Tunables for single-position valuation and batch APR."""

    rpc_timeout_seconds: float = 20.0
    max_concurrency: int = 5
    position_timeout_seconds: float = 60.0
    invested_basis: str = INVESTED_BASIS_ENTRY
    display_significant_digits: int = 12
    default_fee_tier: int = 3000

    def __post_init__(self):
        if self.invested_basis not in INVESTED_BASES:
            raise ValueError(
                f"invested_basis must be one of {INVESTED_BASES}, got {self.invested_basis!r}"
            )
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if self.rpc_timeout_seconds <= 0 or self.position_timeout_seconds <= 0:
            raise ValueError("timeouts must be positive")

    @classmethod
    def from_env(cls, **overrides) -> "ValuationConfig":
        """Build from defaults, then LP_YIELD_* env vars, then explicit overrides."""
        values = {}
        timeout = os.environ.get("LP_YIELD_RPC_TIMEOUT")
        if timeout:
            values["rpc_timeout_seconds"] = float(timeout)
        concurrency = os.environ.get("LP_YIELD_CONCURRENCY")
        if concurrency:
            values["max_concurrency"] = int(concurrency)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass(frozen=True)
class DexScreenerAPI:
    """Official DEXScreener API configuration (price lookups by symbol)."""

    BASE_URL: str = "https://api.dexscreener.com"
    SEARCH_ENDPOINT: str = "/latest/dex/search"
    TIMEOUT_SECONDS: int = 15

    @classmethod
    def get_search_url(cls, query: str) -> str:
        return f"{cls.BASE_URL}{cls.SEARCH_ENDPOINT}?q={query}"


def chain_id_for(network: str) -> Optional[int]:
    return CHAIN_IDS.get(resolve_network(network))
