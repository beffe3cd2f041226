"""
Protocol Adapters — one canonical pool/position shape for every variant
=======================================================================

  standard (Uniswap V3 & forks)        alt (Algebra / Camelot V3)
  ─────────────────────────────        ──────────────────────────
  slot0() → sqrtPriceX96, tick         globalState() → price, tick
  fee() always present                 fee() may be missing
  positions(): 12 words, has fee       positions(): 11 words, no fee
  Factory.getPool(t0, t1, fee)         Factory.poolByPair(t0, t1)

Both expose the same capabilities — normalize_pool, normalize_position,
build_collect_call — so callers never branch on the variant themselves.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from lp_yield.dex_registry import (
    SHAPE_POSITIONAL,
    SHAPE_STRUCT,
    VARIANT_ALT,
    VARIANT_STANDARD,
    get_collect_selector,
    get_collect_shape,
    get_variant,
)
from lp_yield.errors import DataValidityError
from lp_yield.models import PoolState, Position
from lp_yield.rpc_helpers import (
    MAX_UINT128,
    SELECTORS,
    ZERO_ADDRESS,
    decode_address,
    decode_int,
    decode_uint,
    encode_address,
    encode_static_args,
    encode_uint24,
    encode_uint256,
)

logger = logging.getLogger(__name__)

DEFAULT_FEE_TIER = 3000

COLLECT_ARG_NAMES = ("tokenId", "recipient", "amount0Max", "amount1Max")
COLLECT_ARG_TYPES = ("uint256", "address", "uint128", "uint128")


@dataclass(frozen=True)
class CallSpec:
    """
    A fully-described contract call: target, signature, argument shape, values.

    ``shape`` is "struct" when the four collect fields travel as one tuple
    argument and "positional" when they are separate arguments.
    """

    to: str
    signature: str
    selector: str
    arg_types: Tuple[str, ...]
    args: Tuple
    shape: str = SHAPE_STRUCT

    @property
    def calldata(self) -> str:
        return self.selector + encode_static_args(self.arg_types, self.args)

    def call_args(self) -> tuple:
        """Arguments as a contract binding would take them."""
        if self.shape == SHAPE_STRUCT:
            return (dict(zip(COLLECT_ARG_NAMES, self.args)),)
        return tuple(self.args)


def fee_to_basis(fee: Optional[int]) -> Optional[int]:
    if fee is None:
        return None
    fee = int(fee)
    return fee if fee > 0 else None


def resolve_fee_tier(
    pool_fee: Optional[int], position_fee: Optional[int], default: int = DEFAULT_FEE_TIER
) -> int:
    """Pool fee, else the position's recorded fee, else the 0.3% tier."""
    for candidate in (pool_fee, position_fee):
        candidate = fee_to_basis(candidate)
        if candidate is not None:
            return candidate
    return default


class ProtocolAdapter:
    """Base adapter; subclasses pin the variant-specific ABI layout."""

    variant: str = ""
    state_call: str = ""
    # field name → word index in positions() return data
    position_layout: Dict[str, int] = {}

    def __init__(self, collect_shape: str = SHAPE_STRUCT, collect_selector: Optional[str] = None):
        if collect_shape not in (SHAPE_STRUCT, SHAPE_POSITIONAL):
            raise ValueError(f"Unknown collect shape: {collect_shape}")
        self.collect_shape = collect_shape
        self.collect_selector = collect_selector or SELECTORS[
            "collect" if collect_shape == SHAPE_STRUCT else "collect_positional"
        ]

    # ── Calls the chain reader executes ──────────────────────────────

    def pool_state_calls(self, pool_address: str) -> List[Tuple[str, str, str]]:
        """(label, to, calldata) triples; "fee" is optional for alt pools."""
        return [
            ("state", pool_address, SELECTORS[self.state_call]),
            ("liquidity", pool_address, SELECTORS["liquidity"]),
            ("fee", pool_address, SELECTORS["fee"]),
        ]

    def position_calls(self, position_manager: str, token_id: int) -> List[Tuple[str, str, str]]:
        return [
            ("positions", position_manager, SELECTORS["positions"] + encode_uint256(token_id)),
            ("owner", position_manager, SELECTORS["ownerOf"] + encode_uint256(token_id)),
        ]

    def pool_lookup_call(self, factory: str, token0: str, token1: str, fee: int) -> Tuple[str, str]:
        raise NotImplementedError

    # ── Normalization ────────────────────────────────────────────────

    def normalize_pool(
        self,
        raw: Dict[str, str],
        position_fee: Optional[int] = None,
        default_fee: int = DEFAULT_FEE_TIER,
    ) -> PoolState:
        state = raw.get("state") or ""
        liquidity = raw.get("liquidity") or ""
        if not state or not liquidity:
            raise DataValidityError(f"{self.state_call}()/liquidity() returned no data")
        try:
            sqrt_price_x96 = decode_uint(state, 0)
            tick = decode_int(state, 1)
            pool_liquidity = decode_uint(liquidity, 0)
            pool_fee = decode_uint(raw["fee"], 0) if raw.get("fee") else None
        except ValueError as e:
            raise DataValidityError(f"Malformed {self.state_call}() response: {e}") from e

        if sqrt_price_x96 == 0:
            raise DataValidityError("Pool not initialized (sqrtPriceX96 = 0)")

        fee_tier = resolve_fee_tier(pool_fee, position_fee, default_fee)
        if pool_fee is None:
            logger.debug("%s pool fee() unavailable, using fee tier %s", self.variant, fee_tier)
        return PoolState(
            sqrt_price_x96=sqrt_price_x96,
            current_tick=tick,
            liquidity=pool_liquidity,
            fee_tier=fee_tier,
        )

    def normalize_position(
        self,
        raw: Dict[str, str],
        position_id: int,
        position_manager: Optional[str] = None,
        pool_address: Optional[str] = None,
    ) -> Position:
        data = raw.get("positions") or ""
        layout = self.position_layout
        try:
            fields = {
                "token0": decode_address(data, layout["token0"]),
                "token1": decode_address(data, layout["token1"]),
                "tick_lower": decode_int(data, layout["tickLower"]),
                "tick_upper": decode_int(data, layout["tickUpper"]),
                "liquidity": decode_uint(data, layout["liquidity"]),
                "tokens_owed0": decode_uint(data, layout["tokensOwed0"]),
                "tokens_owed1": decode_uint(data, layout["tokensOwed1"]),
            }
            fee = decode_uint(data, layout["fee"]) if "fee" in layout else None
            owner = decode_address(raw["owner"], 0) if raw.get("owner") else None
        except ValueError as e:
            raise DataValidityError(f"Malformed positions({position_id}) response: {e}") from e

        if fields["token0"] == ZERO_ADDRESS or fields["token1"] == ZERO_ADDRESS:
            raise DataValidityError("Invalid position (missing tokens)")
        if fields["tick_lower"] > fields["tick_upper"]:
            raise DataValidityError(
                f"Invalid tick range: {fields['tick_lower']} > {fields['tick_upper']}"
            )

        return Position(
            position_id=position_id,
            variant=self.variant,
            owner=owner,
            fee_tier=fee_to_basis(fee),
            pool_address=pool_address,
            position_manager=position_manager,
            **fields,
        )

    # ── collect() ────────────────────────────────────────────────────

    def build_collect_call(self, position: Position, recipient: str) -> CallSpec:
        """collect() with amount0Max = amount1Max = 2^128 − 1 ("everything owed")."""
        if not position.position_manager:
            raise DataValidityError("position manager address required for collect()")
        if self.collect_shape == SHAPE_STRUCT:
            signature = "collect((uint256,address,uint128,uint128))"
        else:
            signature = "collect(uint256,address,uint128,uint128)"
        return CallSpec(
            to=position.position_manager,
            signature=signature,
            selector=self.collect_selector,
            arg_types=COLLECT_ARG_TYPES,
            args=(position.position_id, recipient, MAX_UINT128, MAX_UINT128),
            shape=self.collect_shape,
        )

    @staticmethod
    def decode_collect_result(data: str) -> Tuple[int, int]:
        """(uint256 amount0, uint256 amount1)"""
        return decode_uint(data, 0), decode_uint(data, 1)


class StandardAdapter(ProtocolAdapter):
    variant = VARIANT_STANDARD
    state_call = "slot0"
    position_layout = {
        "token0": 2, "token1": 3, "fee": 4, "tickLower": 5, "tickUpper": 6,
        "liquidity": 7, "tokensOwed0": 10, "tokensOwed1": 11,
    }

    def pool_lookup_call(self, factory: str, token0: str, token1: str, fee: int) -> Tuple[str, str]:
        data = (
            SELECTORS["getPool"]
            + encode_address(token0)
            + encode_address(token1)
            + encode_uint24(fee)
        )
        return factory, data


class AltAdapter(ProtocolAdapter):
    variant = VARIANT_ALT
    state_call = "globalState"
    position_layout = {
        "token0": 2, "token1": 3, "tickLower": 4, "tickUpper": 5,
        "liquidity": 6, "tokensOwed0": 9, "tokensOwed1": 10,
    }

    def pool_lookup_call(self, factory: str, token0: str, token1: str, fee: int) -> Tuple[str, str]:
        # Algebra pools are unique per pair; the fee is dynamic
        return factory, SELECTORS["poolByPair"] + encode_address(token0) + encode_address(token1)


_ADAPTERS = {VARIANT_STANDARD: StandardAdapter, VARIANT_ALT: AltAdapter}


def get_adapter(
    variant: str, collect_shape: str = SHAPE_STRUCT, collect_selector: Optional[str] = None
) -> ProtocolAdapter:
    try:
        cls = _ADAPTERS[variant]
    except KeyError:
        raise ValueError(f"Unknown protocol variant: {variant}. Available: {list(_ADAPTERS)}")
    return cls(collect_shape=collect_shape, collect_selector=collect_selector)


def adapter_for_dex(dex_slug: str) -> ProtocolAdapter:
    """Adapter configured from the DEX registry entry."""
    return get_adapter(
        get_variant(dex_slug), get_collect_shape(dex_slug), get_collect_selector(dex_slug)
    )


# ── Variant-dispatched entry points ─────────────────────────────────────


def normalize_pool(raw: Dict[str, str], variant: str, position_fee: Optional[int] = None) -> PoolState:
    return get_adapter(variant).normalize_pool(raw, position_fee=position_fee)


def normalize_position(raw: Dict[str, str], variant: str, position_id: int, **kwargs) -> Position:
    return get_adapter(variant).normalize_position(raw, position_id, **kwargs)


def build_collect_call(
    position: Position,
    variant: str,
    recipient: str,
    collect_shape: str = SHAPE_STRUCT,
    collect_selector: Optional[str] = None,
) -> CallSpec:
    adapter = get_adapter(variant, collect_shape, collect_selector)
    return adapter.build_collect_call(position, recipient)
