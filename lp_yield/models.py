"""
Data Model
==========

Canonical shapes that flow between the chain reader, the protocol adapters,
the math engine and the APR calculator. Raw on-chain quantities are Python
ints (arbitrary precision); human/USD quantities are floats.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

DEFAULT_DECIMALS = 18
DEFAULT_SYMBOL = "TKN"


@dataclass(frozen=True)
class Token:
    chain_id: int
    address: str
    decimals: int = DEFAULT_DECIMALS
    symbol: str = DEFAULT_SYMBOL

    def __post_init__(self):
        if not 0 <= self.decimals <= 255:
            raise ValueError(f"decimals must be in [0, 255], got {self.decimals}")


@dataclass(frozen=True)
class PoolState:
    """Point-in-time pool snapshot; never cached across valuations."""

    sqrt_price_x96: int
    current_tick: int
    liquidity: int
    fee_tier: int  # hundredths of a basis point, e.g. 3000 = 0.30%


@dataclass(frozen=True)
class Position:
    position_id: int
    variant: str
    owner: Optional[str]
    token0: str
    token1: str
    tick_lower: int
    tick_upper: int
    liquidity: int
    tokens_owed0: int = 0
    tokens_owed1: int = 0
    fee_tier: Optional[int] = None  # absent on alt-variant positions
    pool_address: Optional[str] = None
    position_manager: Optional[str] = None


@dataclass(frozen=True)
class TokenAmounts:
    amount0: float = 0.0
    amount1: float = 0.0

    def __add__(self, other: "TokenAmounts") -> "TokenAmounts":
        return TokenAmounts(self.amount0 + other.amount0, self.amount1 + other.amount1)


@dataclass
class ValuationResult:
    """Single-position snapshot (withdrawable + fees + range status)."""

    position_id: int
    dex: str
    position_manager: str
    owner: Optional[str]
    pool_address: str
    token0: Token
    token1: Token
    liquidity: int
    withdrawable: TokenAmounts
    simulated_uncollected_fees: TokenAmounts
    on_chain_tokens_owed: TokenAmounts
    total_claimable: TokenAmounts
    pool_tick: int
    usable_tick_lower: int
    usable_tick_upper: int
    in_range: bool
    price: float = 0.0  # token1 per token0 at the pool price
    fee_simulation_error: Optional[str] = None
    block_number: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["liquidity"] = str(self.liquidity)
        return data


@dataclass(frozen=True)
class OrderBookPosition:
    """
    A stored LP position, as handed over by the storage layer.

    ``fee0`` / ``fee1`` are fees the user already collected, in raw token
    units. ``created_at`` is a unix timestamp in seconds.
    """

    record_id: str
    position_id: str
    pool_address: str
    dex: str
    nft_id: int
    position_manager: str
    tick_lower: int
    tick_upper: int
    token0_decimals: int
    token1_decimals: int
    token0_symbol: str
    token1_symbol: str
    created_at: float
    entry_liquidity: int = 0
    token0_address: str = ""
    token1_address: str = ""
    fee0: int = 0
    fee1: int = 0
    account: Optional[str] = None
    chain: str = "arbitrum"
    is_active: bool = True

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "OrderBookPosition":
        """Build from a storage row: flat columns plus a ``metadata`` dict."""
        meta = record.get("metadata") or {}
        return cls(
            record_id=str(record["id"]),
            position_id=str(record.get("position_id", record["id"])),
            pool_address=record["pool_address"],
            dex=meta.get("dexName", record.get("dex", "uniswap_v3")),
            nft_id=int(meta["nftId"]),
            position_manager=meta["positionManager"],
            tick_lower=int(record["lower_ticks"]),
            tick_upper=int(record["upper_ticks"]),
            token0_decimals=int(record["token0_decimals"]),
            token1_decimals=int(record["token1_decimals"]),
            token0_symbol=meta.get("token0Symbol", ""),
            token1_symbol=meta.get("token1Symbol", ""),
            created_at=float(meta["createdAt"]),
            entry_liquidity=int(meta.get("liquidity") or 0),
            token0_address=meta.get("token0Address", ""),
            token1_address=meta.get("token1Address", ""),
            fee0=int(meta.get("fee0") or 0),
            fee1=int(meta.get("fee1") or 0),
            account=meta.get("credit_account_address"),
            chain=record.get("chain", "arbitrum"),
            is_active=bool(record.get("is_active", True)),
        )


@dataclass(frozen=True)
class PositionApr:
    """Per-position outcome of the batch APR pass."""

    position_id: str
    invested_usd: float
    fees_usd: float
    simulated_fees_usd: float
    collected_fees_usd: float
    age_days: float
    daily_return_rate: float
    daily_return_usd: float
    apr: float  # percentage


@dataclass(frozen=True)
class SkippedPosition:
    record_id: str
    position_id: str
    reason: str


@dataclass
class AggregateAPRResult:
    position_id_to_apr: Dict[str, float] = field(default_factory=dict)
    position_id_to_invested_value: Dict[str, float] = field(default_factory=dict)
    total_investment_value: float = 0.0
    total_fees_earned_usd: float = 0.0
    total_portfolio_value_usd: float = 0.0
    average_apr: float = 0.0
    daily_return_rate_sum: float = 0.0
    daily_return_usd_sum: float = 0.0
    skipped_count: int = 0
    skipped: Dict[str, str] = field(default_factory=dict)
    per_position: Dict[str, PositionApr] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
