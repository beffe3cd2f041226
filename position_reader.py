#!/usr/bin/env python3
"""
On-Chain Position Reader for Concentrated-Liquidity DEXes
=========================================================

Reads raw pool and position state directly from the blockchain via public
JSON-RPC. No web3.py dependency — raw eth_call over httpx, ABI words decoded
by the protocol adapters.

Data Sources (per RPC call):
─────────────────────────────
1. NonfungiblePositionManager.positions(tokenId), ownerOf(tokenId)
   Uniswap V3 : 12 words (nonce, operator, token0, token1, fee, tickLower,
                tickUpper, liquidity, feeGrowthInside0/1LastX128,
                tokensOwed0, tokensOwed1)
   Camelot V3 : same without fee (11 words)
   Ref: https://github.com/Uniswap/v3-periphery/blob/main/contracts/NonfungiblePositionManager.sol

2. Pool.slot0() / Pool.globalState()
   Returns: sqrtPriceX96 (price), tick

3. Pool.liquidity(), Pool.fee()

4. Factory.getPool(token0, token1, fee) / Factory.poolByPair(token0, token1)

5. ERC-20.decimals(), ERC-20.symbol()

6. NonfungiblePositionManager.collect(...) as eth_call — simulated, never mined
"""

import asyncio
import logging
from typing import Dict, Optional

from lp_yield.central_config import chain_id_for, resolve_network, rpc_url_for
from lp_yield.dex_registry import (
    get_dex_display_name,
    get_factory_address,
    get_position_manager_address,
    resolve_dex_slug,
)
from lp_yield.errors import ChainReadError, DataValidityError
from lp_yield.models import DEFAULT_DECIMALS, DEFAULT_SYMBOL, Token
from lp_yield.protocol_adapter import CallSpec, ProtocolAdapter, adapter_for_dex
from lp_yield.rpc_helpers import (
    SELECTORS,
    ZERO_ADDRESS,
    RpcClient,
    decode_address,
    decode_string,
    decode_uint,
    normalize_symbol,
)

logger = logging.getLogger(__name__)


class PositionReader:
    """
    Reads V3-style pool/position state for one DEX deployment on one network.

    Usage:
        reader = PositionReader.for_network("arbitrum", "camelot_v3")
        raw = await reader.read_position_state(12345)
        pool = await reader.resolve_pool_address(t0, t1, 500)
    """

    def __init__(self, rpc: RpcClient, network: str = "arbitrum", dex_slug: str = "uniswap_v3"):
        self.rpc = rpc
        self.network = resolve_network(network)
        self.dex_slug = resolve_dex_slug(dex_slug)
        self.chain_id = chain_id_for(self.network)

        self.position_manager = get_position_manager_address(self.dex_slug, self.network)
        self.factory = get_factory_address(self.dex_slug, self.network)
        if not self.position_manager or not self.factory:
            raise ValueError(f"{self.dex_slug} is not deployed on {self.network}")
        self.dex_name = get_dex_display_name(self.dex_slug)
        self.adapter = adapter_for_dex(self.dex_slug)

    @classmethod
    def for_network(
        cls, network: str = "arbitrum", dex_slug: str = "uniswap_v3", timeout: float = 20, client=None
    ) -> "PositionReader":
        rpc = RpcClient(rpc_url_for(network), timeout=timeout, client=client)
        return cls(rpc, network, dex_slug)

    @property
    def variant(self) -> str:
        return self.adapter.variant

    async def get_block_number(self) -> int:
        """Current block number for the audit trail; 0 when unavailable."""
        try:
            return await self.rpc.block_number()
        except Exception:  # noqa: BLE001
            return 0

    # ── Positions ────────────────────────────────────────────────────

    async def read_position_state(
        self,
        token_id: int,
        position_manager: Optional[str] = None,
        adapter: Optional[ProtocolAdapter] = None,
    ) -> Dict[str, str]:
        """Raw positions() and ownerOf() words for an NFT id."""
        adapter = adapter or self.adapter
        position_manager = position_manager or self.position_manager
        logger.info("Reading position #%s from %s (%s)", token_id, self.network, self.dex_name)
        raw = {}
        for label, to, data in adapter.position_calls(position_manager, token_id):
            raw[label] = await self.rpc.call(to, data)
        return raw

    # ── Pools ────────────────────────────────────────────────────────

    async def resolve_pool_address(
        self, token0: str, token1: str, fee: int, adapter: Optional[ProtocolAdapter] = None
    ) -> str:
        """
        Pool address from the factory; the alt variant ignores ``fee``.

        Raises:
            DataValidityError: the factory has no pool for this pair.
        """
        adapter = adapter or self.adapter
        to, data = adapter.pool_lookup_call(self.factory, token0, token1, fee)
        result = await self.rpc.call(to, data)
        pool = decode_address(result, 0)
        if pool == ZERO_ADDRESS:
            raise DataValidityError(
                f"Pool not found for {token0[:10]}.../{token1[:10]}... fee={fee}"
            )
        return pool

    async def read_pool_state(
        self, pool_address: str, adapter: Optional[ProtocolAdapter] = None
    ) -> Dict[str, str]:
        """
        Raw state / liquidity / fee words. ``fee`` comes back "" when the pool
        does not expose it (some Algebra deployments).

        Raises:
            ChainReadError: state or liquidity could not be read.
        """
        adapter = adapter or self.adapter
        calls = adapter.pool_state_calls(pool_address)
        results = await self.rpc.call_batch([(to, data) for _, to, data in calls])
        raw = {label: (results[i] if i < len(results) else "") for i, (label, _, _) in enumerate(calls)}
        if not raw.get("state") or not raw.get("liquidity"):
            raise ChainReadError(f"Pool state unavailable for {pool_address}")
        return raw

    # ── Tokens ───────────────────────────────────────────────────────

    async def read_token_meta(self, address: str) -> Token:
        """decimals() + symbol(); never raises — falls back to 18 / "TKN"."""
        try:
            dec_data, sym_data = await asyncio.gather(
                self.rpc.call(address, SELECTORS["decimals"]),
                self.rpc.call(address, SELECTORS["symbol"]),
            )
            decimals = decode_uint(dec_data, 0)
            if decimals > 255:
                raise ValueError(f"decimals out of range: {decimals}")
            symbol = normalize_symbol(decode_string(sym_data)) or DEFAULT_SYMBOL
            return Token(self.chain_id, address, decimals, symbol)
        except Exception as e:  # noqa: BLE001
            logger.warning("Token metadata for %s unavailable (%s), using defaults", address, e)
            return Token(self.chain_id, address, DEFAULT_DECIMALS, DEFAULT_SYMBOL)

    # ── Simulation ───────────────────────────────────────────────────

    async def simulate_call(self, call: CallSpec, from_address: Optional[str] = None) -> str:
        """eth_call a state-changing function; nothing is mined or mutated."""
        return await self.rpc.call(call.to, call.calldata, from_address=from_address)
