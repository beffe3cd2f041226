#!/usr/bin/env python3
"""
RPC Helpers — ABI Encoding/Decoding and JSON-RPC Client
========================================================

Low-level EVM interaction primitives shared by the chain state reader,
the fee simulator and the protocol adapters:

  • ABI encoding/decoding (uint256, int256, address, uint24, int24, string)
  • JSON-RPC client (eth_call, eth_call_batch, eth_blockNumber)
  • RpcClient — endpoint + timeout + shared connection pool + rate limit
  • Named constants for ABI word sizes and Q-values

All constants reference the Ethereum ABI specification:
  https://docs.soliditylang.org/en/latest/abi-spec.html

Terminology:
  • Word:  32 bytes = 256 bits = 64 hex characters
  • Slot:  Position of a 32-byte word in an ABI response
  • Q96:   2^96  — fixed-point denominator for sqrtPriceX96
  • Q128:  2^128 — fixed-point denominator for feeGrowthX128
  • Q256:  2^256 — two's complement boundary for int256
"""

import asyncio
import logging
import time
from typing import List, Optional, Sequence, Tuple

import httpx

from lp_yield.errors import ChainReadError

logger = logging.getLogger(__name__)

# ── ABI Word Constants ──────────────────────────────────────────────────

ABI_WORD_BYTES = 32          # 1 ABI word = 32 bytes
ABI_WORD_HEX = 64            # 32 bytes × 2 hex chars = 64 hex characters
ADDRESS_HEX = 40              # 20 bytes × 2 = 40 hex characters
ADDRESS_PAD_HEX = 24          # Left padding in a 32-byte slot = 64 - 40 = 24 hex chars
SIGN_BIT = 1 << 255           # Two's complement sign bit for int256

ZERO_ADDRESS = "0x" + "0" * ADDRESS_HEX

# ── Uniswap V3 Fixed-Point Constants ───────────────────────────────────
# Ref: Uniswap V3 Whitepaper §6.1 — https://uniswap.org/whitepaper-v3.pdf

Q96 = 2 ** 96                # sqrtPriceX96 denominator (FixedPoint96.RESOLUTION)
Q128 = 2 ** 128              # feeGrowthGlobalX128 denominator (FixedPoint128.Q128)
Q256 = 2 ** 256              # int256 overflow boundary (two's complement wrap)
MAX_UINT128 = Q128 - 1       # collect(): "everything owed"

# ── Common Token Symbol Normalization ───────────────────────────────────

SYMBOL_MAP = {
    "USD₮0": "USDT",
    "USD₮": "USDT",
    "USDT0": "USDT",
    "WETH": "WETH",
    "USDC.e": "USDC.e",
}


def normalize_symbol(raw_symbol: str) -> str:
    """Normalize on-chain token symbol to common name."""
    cleaned = raw_symbol.strip().strip("\x00")
    return SYMBOL_MAP.get(cleaned, cleaned)


# ── ABI Function Selectors ──────────────────────────────────────────────
# First 4 bytes of keccak256(function_signature).

SELECTORS: dict[str, str] = {
    # NonfungiblePositionManager (Uniswap V3 + forks, Algebra/Camelot)
    "positions":              "0x99fbab88",  # positions(uint256)
    "ownerOf":                "0x6352211e",  # ownerOf(uint256)
    "collect":                "0xfc6f7865",  # collect((uint256,address,uint128,uint128))
    "collect_positional":     "0x260e12b0",  # collect(uint256,address,uint128,uint128)

    # Pool (read-only state)
    "slot0":                  "0x3850c7bd",  # slot0()             — Uniswap V3
    "globalState":            "0xe76c01e4",  # globalState()       — Algebra / Camelot
    "liquidity":              "0x1a686502",  # liquidity()
    "fee":                    "0xddca3f43",  # fee()

    # Factories
    "getPool":                "0x1698ee82",  # getPool(address,address,uint24)
    "poolByPair":             "0xd9a641e1",  # poolByPair(address,address)

    # ERC-20 metadata
    "symbol":                 "0x95d89b41",  # symbol()
    "decimals":               "0x313ce567",  # decimals()
}


# ── ABI Encoding ────────────────────────────────────────────────────────

def encode_uint256(value: int) -> str:
    """ABI-encode a uint256 as 32-byte hex (no 0x prefix).

    >>> encode_uint256(1)
    '0000000000000000000000000000000000000000000000000000000000000001'
    """
    if value < 0 or value >= Q256:
        raise ValueError(f"uint256 out of range: {value}")
    return format(value, f'0{ABI_WORD_HEX}x')


def encode_address(addr: str) -> str:
    """ABI-encode an address as 32 bytes (left-padded, no 0x prefix).

    >>> encode_address('0xC36442b4a4522E871399CD717aBDD847Ab11FE88')
    '000000000000000000000000c36442b4a4522e871399cd717abdd847ab11fe88'
    """
    return addr.lower().replace("0x", "").zfill(ABI_WORD_HEX)


def encode_uint24(val: int) -> str:
    """ABI-encode a uint24 as 32 bytes (for fee tier parameter).

    >>> encode_uint24(3000)
    '0000000000000000000000000000000000000000000000000000000000000bb8'
    """
    return format(val, f'0{ABI_WORD_HEX}x')


def encode_int24(value: int) -> str:
    """ABI-encode an int24 sign-extended to int256 (for ticks).

    >>> encode_int24(-887220)
    'fffffffffffffffffffffffffffffffffffffffffffffffffffffffffff27e8c'
    """
    if value < 0:
        value = Q256 + value
    return format(value, f'0{ABI_WORD_HEX}x')


def encode_static_args(types: Sequence[str], values: Sequence) -> str:
    """ABI-encode a run of static arguments (or a static tuple) head-to-tail.

    A tuple made only of static members is encoded in place, exactly like
    the same members passed positionally; only the selector differs.
    """
    if len(types) != len(values):
        raise ValueError(f"expected {len(types)} values, got {len(values)}")
    words = []
    for abi_type, value in zip(types, values):
        if abi_type == "address":
            words.append(encode_address(value))
        elif abi_type.startswith("uint"):
            words.append(encode_uint256(int(value)))
        elif abi_type.startswith("int"):
            words.append(encode_int24(int(value)))
        else:
            raise ValueError(f"Unsupported static ABI type: {abi_type}")
    return "".join(words)


# ── ABI Decoding ────────────────────────────────────────────────────────

def decode_uint(hex_data: str, slot: int = 0) -> int:
    """Decode uint256 from ABI response at 32-byte slot offset.

    Raises:
        ValueError: If the response is too short for the requested slot.
    """
    start = slot * ABI_WORD_HEX
    word = hex_data[start:start + ABI_WORD_HEX]
    if len(word) != ABI_WORD_HEX:
        raise ValueError(f"ABI response too short for slot {slot}")
    return int(word, 16)


def decode_int(hex_data: str, slot: int = 0) -> int:
    """Decode int256 (two's complement) from ABI response."""
    val = decode_uint(hex_data, slot)
    if val >= SIGN_BIT:
        return val - Q256
    return val


def decode_address(hex_data: str, slot: int = 0) -> str:
    """Decode address (last 20 bytes of 32-byte slot)."""
    start = slot * ABI_WORD_HEX
    word = hex_data[start:start + ABI_WORD_HEX]
    if len(word) != ABI_WORD_HEX:
        raise ValueError(f"ABI response too short for slot {slot}")
    return "0x" + word[ADDRESS_PAD_HEX:]


def decode_string(hex_data: str) -> str:
    """Decode ABI-encoded dynamic string return value.

    Handles both standard dynamic strings (offset + length + data)
    and non-standard bytes32 returns from some token contracts.
    """
    try:
        offset = decode_uint(hex_data, 0)
        word_offset = offset // ABI_WORD_BYTES
        length = decode_uint(hex_data, word_offset)
        start_byte = (word_offset + 1) * ABI_WORD_HEX
        hex_str = hex_data[start_byte:start_byte + length * 2]
        return bytes.fromhex(hex_str).decode("utf-8").strip("\x00")
    except Exception:
        # Some tokens return bytes32 instead of string
        try:
            raw = bytes.fromhex(hex_data[:ABI_WORD_HEX])
            return raw.decode("utf-8").strip("\x00").strip()
        except Exception:
            return "UNK"


# ── Rate Limiter ────────────────────────────────────────────────────────


class RateLimiter:
    """Token-bucket rate limiter shared by concurrent callers of one endpoint."""

    def __init__(self, max_requests: int, period_seconds: float):
        self._max = max_requests
        self._period = period_seconds
        self._timestamps: list[float] = []
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop = None

    def _purge(self, now: float) -> None:
        self._timestamps = [t for t in self._timestamps if now - t < self._period]

    async def acquire(self) -> None:
        """Wait until a request slot is available.

        Waiters are serialized, so a burst of concurrent callers never puts
        more than ``max_requests`` timestamps inside one period.
        """
        loop = asyncio.get_running_loop()
        # one lock per event loop; module-level limiters outlive asyncio.run()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        async with self._lock:
            self._purge(time.monotonic())
            while len(self._timestamps) >= self._max:
                sleep_time = self._period - (time.monotonic() - self._timestamps[0])
                if sleep_time > 0:
                    await asyncio.sleep(sleep_time)
                self._purge(time.monotonic())
            self._timestamps.append(time.monotonic())


# ── JSON-RPC Client ─────────────────────────────────────────────────────

def _call_object(to: str, data: str, from_address: Optional[str]) -> dict:
    obj = {"to": to, "data": data}
    if from_address:
        obj["from"] = from_address
    return obj


async def _post(rpc_url: str, payload, timeout: float, client: Optional[httpx.AsyncClient]):
    try:
        if client is not None:
            resp = await client.post(rpc_url, json=payload, timeout=timeout)
            return resp.json()
        async with httpx.AsyncClient(timeout=timeout) as own_client:
            resp = await own_client.post(rpc_url, json=payload)
            return resp.json()
    except httpx.HTTPError as e:
        raise ChainReadError(f"RPC transport error: {e.__class__.__name__}: {e}") from e
    except ValueError as e:
        raise ChainReadError(f"RPC returned non-JSON body: {e}") from e


async def eth_call(
    rpc_url: str,
    to: str,
    data: str,
    timeout: float = 20,
    from_address: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """
    Execute eth_call on an EVM node.

    Args:
        rpc_url: JSON-RPC endpoint URL (e.g. https://1rpc.io/arb)
        to: Contract address (0x...)
        data: ABI-encoded calldata (0x + selector + params)
        timeout: HTTP timeout in seconds
        from_address: Optional msg.sender for simulated state-changing calls
        client: Optional shared httpx client (connection pool)

    Returns:
        Hex response string (without 0x prefix).

    Raises:
        ChainReadError: If RPC returns an error or empty response.
    """
    payload = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "eth_call",
        "params": [_call_object(to, data, from_address), "latest"],
    }
    result = await _post(rpc_url, payload, timeout, client)
    if "error" in result:
        err = result["error"]
        message = err.get("message", err) if isinstance(err, dict) else err
        raise ChainReadError(f"RPC error: {message}")
    raw = result.get("result", "0x")
    if raw == "0x" or len(raw) < 4:
        raise ChainReadError("Empty response — contract may not exist at this address")
    return raw[2:]  # strip 0x prefix


async def eth_call_batch(
    rpc_url: str,
    calls: List[Tuple[str, str]],
    timeout: float = 20,
    client: Optional[httpx.AsyncClient] = None,
) -> List[str]:
    """
    Batch multiple eth_call requests into a single HTTP request.

    Returns:
        List of hex result strings (without 0x prefix), in same order as calls.
        Failed entries come back as "".

    Raises:
        ChainReadError: If the node answers with anything but one reply per
            call (e.g. a single error object when batching is unsupported).
    """
    payloads = []
    for i, (to, data) in enumerate(calls):
        payloads.append({
            "jsonrpc": "2.0",
            "id": i + 1,
            "method": "eth_call",
            "params": [{"to": to, "data": data}, "latest"],
        })

    results = await _post(rpc_url, payloads, timeout, client)

    if not isinstance(results, list):
        err = results.get("error") if isinstance(results, dict) else results
        raise ChainReadError(f"RPC rejected batch request: {err}")
    if len(results) != len(calls):
        raise ChainReadError(
            f"RPC batch returned {len(results)} replies for {len(calls)} calls"
        )
    results.sort(key=lambda r: r.get("id", 0))
    return [r.get("result", "0x")[2:] if "result" in r else "" for r in results]


async def eth_block_number(
    rpc_url: str, timeout: float = 10, client: Optional[httpx.AsyncClient] = None
) -> int:
    """Get the latest block number from an EVM node."""
    payload = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "eth_blockNumber",
        "params": [],
    }
    result = await _post(rpc_url, payload, timeout, client)
    if "error" in result:
        raise ChainReadError(f"RPC error: {result['error']}")
    return int(result["result"], 16)


class RpcClient:
    """
    One JSON-RPC endpoint with its per-call timeout and request budget.

    Pass one instance to every component that talks to the chain; pass an
    ``httpx.AsyncClient`` to share a single connection pool between
    concurrent valuations.

    Usage:
        rpc = RpcClient("https://1rpc.io/arb", timeout=20)
        raw = await rpc.call(pool, SELECTORS["slot0"])
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 20,
        client: Optional[httpx.AsyncClient] = None,
        limiter: Optional[RateLimiter] = None,
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.client = client
        self.limiter = limiter or RateLimiter(max_requests=150, period_seconds=60)

    async def call(self, to: str, data: str, from_address: Optional[str] = None) -> str:
        await self.limiter.acquire()
        logger.debug("eth_call %s %s", to, data[:10])
        try:
            return await asyncio.wait_for(
                eth_call(self.rpc_url, to, data, self.timeout, from_address, self.client),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise ChainReadError(f"eth_call to {to} timed out after {self.timeout}s") from e

    async def call_batch(self, calls: List[Tuple[str, str]]) -> List[str]:
        """Batch call with sequential fallback; failed entries are ""."""
        await self.limiter.acquire()
        try:
            return await asyncio.wait_for(
                eth_call_batch(self.rpc_url, calls, self.timeout, self.client),
                timeout=self.timeout,
            )
        except (ChainReadError, asyncio.TimeoutError, AttributeError, TypeError):
            # Fallback to sequential calls if batch not supported
            results = []
            for to, data in calls:
                try:
                    results.append(await self.call(to, data))
                except ChainReadError:
                    results.append("")
            return results

    async def block_number(self) -> int:
        return await eth_block_number(self.rpc_url, self.timeout, self.client)
