"""
Unit Tests for LP Yield Modules
===============================

Unit tests covering the building blocks:
  - rpc_helpers.py       (ABI encoding/decoding, JSON-RPC client)
  - dex_registry.py      (slug resolution, deployments)
  - central_config.py    (network resolution, env overrides)
  - protocol_adapter.py  (both ABI layouts, collect() call shapes)
  - fee_simulator.py     (simulated collect, failure as a value)
  - position_reader.py   (pool lookup, token metadata fallbacks)
  - price_feed.py        (static + DEXScreener feeds)
  - store.py             (in-memory + JSON stores)
  - run.py / commands.py (argparse parser structure, info output)

All tests are offline — no network calls. Mock-based where needed.
"""

import asyncio
import json
import time
from unittest.mock import patch, MagicMock, AsyncMock

import httpx
import pytest

from lp_yield.errors import (
    ChainReadError,
    DataValidityError,
    PriceFeedError,
    ValuationError,
)
from lp_yield.models import OrderBookPosition, Position
from lp_yield.rpc_helpers import (
    MAX_UINT128,
    Q256,
    SELECTORS,
    ZERO_ADDRESS,
    RateLimiter,
    RpcClient,
    decode_address,
    decode_int,
    decode_string,
    decode_uint,
    encode_address,
    encode_int24,
    encode_static_args,
    encode_uint24,
    encode_uint256,
    eth_call,
    eth_call_batch,
    eth_block_number,
    normalize_symbol,
)

TOKEN_A = "0x82af49447d8a07e3bd95bd0d56f35241523fbab1"
TOKEN_B = "0xaf88d065e77c8cc2239327c5edb3a432268e5831"
POOL = "0xb1026b8e7276e7ac75410f1fcbbe21796e8f7526"
PM = "0x00c7f3082833e796A5b3e4Bd59f6642FF44DCD15"
ACCOUNT = "0x1111111111111111111111111111111111111111"


def word(value: int) -> str:
    return encode_int24(value) if value < 0 else encode_uint256(value)


def abi_string(text: str) -> str:
    raw = text.encode("utf-8")
    return word(32) + word(len(raw)) + raw.hex().ljust(64, "0")


def standard_positions_data(tick_lower=-600, tick_upper=600, liquidity=10 ** 18,
                            owed0=0, owed1=0, token0=TOKEN_A, token1=TOKEN_B, fee=3000):
    return "".join([
        word(0), encode_address(ZERO_ADDRESS), encode_address(token0), encode_address(token1),
        word(fee), word(tick_lower), word(tick_upper), word(liquidity),
        word(0), word(0), word(owed0), word(owed1),
    ])


def alt_positions_data(tick_lower=-600, tick_upper=600, liquidity=10 ** 18,
                       owed0=0, owed1=0, token0=TOKEN_A, token1=TOKEN_B):
    return "".join([
        word(0), encode_address(ZERO_ADDRESS), encode_address(token0), encode_address(token1),
        word(tick_lower), word(tick_upper), word(liquidity),
        word(0), word(0), word(owed0), word(owed1),
    ])


def mock_async_client(mock_response):
    mock_client = AsyncMock()
    mock_client.post.return_value = mock_response
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=mock_client)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory, mock_client


# ═══════════════════════════════════════════════════════════════════════════
# 1. rpc_helpers.py
# ═══════════════════════════════════════════════════════════════════════════


class TestEncodeUint256:
    def test_zero(self):
        assert encode_uint256(0) == "0" * 64

    def test_one(self):
        assert encode_uint256(1) == "0" * 63 + "1"

    def test_max_uint128(self):
        assert encode_uint256(MAX_UINT128) == "0" * 32 + "f" * 32

    @pytest.mark.parametrize("value", [-1, Q256])
    def test_out_of_range_rejected(self, value):
        with pytest.raises(ValueError):
            encode_uint256(value)


class TestEncodeOthers:
    def test_address_lowercase_padded(self):
        encoded = encode_address("0xC36442b4a4522E871399CD717aBDD847Ab11FE88")
        assert encoded == "0" * 24 + "c36442b4a4522e871399cd717abdd847ab11fe88"

    def test_uint24_fee(self):
        assert encode_uint24(3000).endswith("bb8")
        assert len(encode_uint24(3000)) == 64

    def test_int24_negative_roundtrip(self):
        assert decode_int(encode_int24(-887220), 0) == -887220

    def test_static_args_length_mismatch(self):
        with pytest.raises(ValueError):
            encode_static_args(("uint256", "address"), (1,))

    def test_static_args_unsupported_type(self):
        with pytest.raises(ValueError):
            encode_static_args(("string",), ("x",))

    def test_static_args_concatenates_words(self):
        encoded = encode_static_args(("uint256", "address", "int24"), (7, TOKEN_A, -1))
        assert encoded == word(7) + encode_address(TOKEN_A) + "f" * 64


class TestDecode:
    def test_uint_slots(self):
        data = word(5) + word(9)
        assert decode_uint(data, 0) == 5
        assert decode_uint(data, 1) == 9

    def test_negative_int(self):
        assert decode_int(word(-120), 0) == -120

    def test_address(self):
        assert decode_address(encode_address(TOKEN_A), 0) == TOKEN_A

    @pytest.mark.parametrize("decoder", [decode_uint, decode_int, decode_address])
    def test_short_data_raises(self, decoder):
        with pytest.raises(ValueError):
            decoder(word(1), 1)

    def test_dynamic_string(self):
        assert decode_string(abi_string("WETH")) == "WETH"

    def test_bytes32_string(self):
        data = b"MKR".hex().ljust(64, "0")
        assert decode_string(data) == "MKR"

    def test_garbage_string(self):
        assert decode_string("zz") == "UNK"


class TestNormalizeSymbol:
    def test_usdt_unicode(self):
        assert normalize_symbol("USD₮0") == "USDT"

    def test_strips_nul_and_space(self):
        assert normalize_symbol(" ARB\x00") == "ARB"


class TestEthCallMocked:
    """Test eth_call with mocked httpx responses."""

    def test_successful_call(self):
        mock_response = MagicMock()
        mock_response.json.return_value = {"jsonrpc": "2.0", "id": 1, "result": "0x" + word(1)}

        factory, mock_client = mock_async_client(mock_response)
        with patch("lp_yield.rpc_helpers.httpx.AsyncClient", factory):
            result = asyncio.run(eth_call("http://fake", "0xAddr", "0xData"))
        assert result == word(1)
        payload = mock_client.post.call_args.kwargs["json"]
        assert payload["method"] == "eth_call"
        assert payload["params"][0] == {"to": "0xAddr", "data": "0xData"}
        assert payload["params"][1] == "latest"

    def test_from_address_forwarded(self):
        mock_response = MagicMock()
        mock_response.json.return_value = {"jsonrpc": "2.0", "id": 1, "result": "0x" + word(1)}

        factory, mock_client = mock_async_client(mock_response)
        with patch("lp_yield.rpc_helpers.httpx.AsyncClient", factory):
            asyncio.run(eth_call("http://fake", "0xAddr", "0xData", from_address=ACCOUNT))
        payload = mock_client.post.call_args.kwargs["json"]
        assert payload["params"][0]["from"] == ACCOUNT

    def test_rpc_error_raises(self):
        mock_response = MagicMock()
        mock_response.json.return_value = {
            "jsonrpc": "2.0", "id": 1, "error": {"message": "execution reverted"},
        }

        factory, _ = mock_async_client(mock_response)
        with patch("lp_yield.rpc_helpers.httpx.AsyncClient", factory):
            with pytest.raises(RuntimeError, match="RPC error"):
                asyncio.run(eth_call("http://fake", "0xAddr", "0xData"))

    def test_empty_response_raises(self):
        mock_response = MagicMock()
        mock_response.json.return_value = {"jsonrpc": "2.0", "id": 1, "result": "0x"}

        factory, _ = mock_async_client(mock_response)
        with patch("lp_yield.rpc_helpers.httpx.AsyncClient", factory):
            with pytest.raises(ChainReadError, match="Empty response"):
                asyncio.run(eth_call("http://fake", "0xAddr", "0xData"))

    def test_transport_error_becomes_chain_read_error(self):
        mock_client = AsyncMock()
        mock_client.post.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(ChainReadError, match="transport"):
            asyncio.run(eth_call("http://fake", "0xAddr", "0xData", client=mock_client))

    def test_shared_client_used(self):
        mock_response = MagicMock()
        mock_response.json.return_value = {"jsonrpc": "2.0", "id": 1, "result": "0x" + word(3)}
        mock_client = AsyncMock()
        mock_client.post.return_value = mock_response

        result = asyncio.run(eth_call("http://fake", "0xAddr", "0xData", client=mock_client))
        assert result == word(3)
        mock_client.post.assert_awaited_once()


class TestEthCallBatchMocked:
    def test_batch_response_sorted_by_id(self):
        mock_response = MagicMock()
        mock_response.json.return_value = [
            {"jsonrpc": "2.0", "id": 2, "result": "0x" + word(2)},
            {"jsonrpc": "2.0", "id": 1, "result": "0x" + word(1)},
        ]
        factory, _ = mock_async_client(mock_response)
        with patch("lp_yield.rpc_helpers.httpx.AsyncClient", factory):
            results = asyncio.run(eth_call_batch("http://fake", [("0xA", "0xD1"), ("0xB", "0xD2")]))
        assert results == [word(1), word(2)]

    def test_failed_entry_is_empty(self):
        mock_response = MagicMock()
        mock_response.json.return_value = [
            {"jsonrpc": "2.0", "id": 1, "result": "0x" + word(1)},
            {"jsonrpc": "2.0", "id": 2, "error": {"message": "reverted"}},
        ]
        factory, _ = mock_async_client(mock_response)
        with patch("lp_yield.rpc_helpers.httpx.AsyncClient", factory):
            results = asyncio.run(eth_call_batch("http://fake", [("0xA", "0xD1"), ("0xB", "0xD2")]))
        assert results == [word(1), ""]

    def test_single_error_object_raises(self):
        mock_response = MagicMock()
        mock_response.json.return_value = {
            "jsonrpc": "2.0", "id": None,
            "error": {"code": -32600, "message": "batch not supported"},
        }
        factory, _ = mock_async_client(mock_response)
        with patch("lp_yield.rpc_helpers.httpx.AsyncClient", factory):
            with pytest.raises(ChainReadError, match="batch not supported"):
                asyncio.run(eth_call_batch("http://fake", [("0xA", "0xD1"), ("0xB", "0xD2")]))

    def test_reply_count_mismatch_raises(self):
        mock_response = MagicMock()
        mock_response.json.return_value = [
            {"jsonrpc": "2.0", "id": 1, "result": "0x" + word(1)},
        ]
        factory, _ = mock_async_client(mock_response)
        with patch("lp_yield.rpc_helpers.httpx.AsyncClient", factory):
            with pytest.raises(ChainReadError, match="1 replies for 2 calls"):
                asyncio.run(eth_call_batch("http://fake", [("0xA", "0xD1"), ("0xB", "0xD2")]))

    def test_block_number(self):
        mock_response = MagicMock()
        mock_response.json.return_value = {"jsonrpc": "2.0", "id": 1, "result": "0x10"}
        factory, _ = mock_async_client(mock_response)
        with patch("lp_yield.rpc_helpers.httpx.AsyncClient", factory):
            assert asyncio.run(eth_block_number("http://fake")) == 16


class TestRpcClient:
    def test_batch_falls_back_to_sequential(self):
        rpc = RpcClient("http://fake")
        with patch("lp_yield.rpc_helpers.eth_call_batch",
                   AsyncMock(side_effect=ChainReadError("batch unsupported"))), \
             patch("lp_yield.rpc_helpers.eth_call",
                   AsyncMock(side_effect=["aa", ChainReadError("reverted")])):
            results = asyncio.run(rpc.call_batch([("0xA", "0x1"), ("0xB", "0x2")]))
        assert results == ["aa", ""]

    def test_batch_rejected_by_node_falls_back(self):
        """A node that answers a batch with one error object still gets read."""
        def respond(url, json=None, timeout=None):
            resp = MagicMock()
            if isinstance(json, list):
                resp.json.return_value = {
                    "jsonrpc": "2.0", "id": None,
                    "error": {"code": -32600, "message": "batch not supported"},
                }
            else:
                resp.json.return_value = {"jsonrpc": "2.0", "id": 1, "result": "0x" + word(7)}
            return resp

        client = AsyncMock()
        client.post.side_effect = respond
        rpc = RpcClient("http://fake", timeout=5, client=client)
        results = asyncio.run(rpc.call_batch([("0xA", "0x1"), ("0xB", "0x2")]))
        assert results == [word(7), word(7)]
        assert client.post.await_count == 3

    def test_call_timeout_becomes_chain_read_error(self):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        rpc = RpcClient("http://fake", timeout=0.01)
        with patch("lp_yield.rpc_helpers.eth_call", slow):
            with pytest.raises(ChainReadError, match="timed out"):
                asyncio.run(rpc.call("0xA", "0x1"))

    def test_call_forwards_from_address(self):
        rpc = RpcClient("http://fake", timeout=5)
        mock_call = AsyncMock(return_value="ok")
        with patch("lp_yield.rpc_helpers.eth_call", mock_call):
            assert asyncio.run(rpc.call("0xA", "0x1", from_address=ACCOUNT)) == "ok"
        assert mock_call.call_args.args[4] == ACCOUNT


class TestRateLimiter:
    def test_concurrent_waiters_respect_window(self):
        limiter = RateLimiter(2, 0.5)
        stamps = []

        async def take():
            await limiter.acquire()
            stamps.append(time.monotonic())

        async def burst():
            await asyncio.gather(*(take() for _ in range(8)))

        asyncio.run(burst())
        stamps.sort()
        assert len(stamps) == 8
        # any 3 consecutive grants span at least one full period
        for i in range(len(stamps) - 2):
            assert stamps[i + 2] - stamps[i] >= 0.5 - 0.01

    def test_under_budget_does_not_wait(self):
        limiter = RateLimiter(5, 10)
        start = time.monotonic()
        asyncio.run(limiter.acquire())
        asyncio.run(limiter.acquire())
        assert time.monotonic() - start < 0.5


# ═══════════════════════════════════════════════════════════════════════════
# 2. dex_registry.py / central_config.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_yield.central_config import (
    ValuationConfig,
    chain_id_for,
    resolve_network,
    rpc_url_for,
)
from lp_yield.dex_registry import (
    DEX_REGISTRY,
    VARIANT_ALT,
    VARIANT_STANDARD,
    get_dexes_for_network,
    get_position_manager_address,
    get_variant,
    resolve_dex_slug,
)


class TestDexRegistry:
    @pytest.mark.parametrize("name,slug", [
        ("camelot_v3", "camelot_v3"),
        ("Camelot", "camelot_v3"),
        ("Uniswap V3", "uniswap_v3"),
        ("uniswap", "uniswap_v3"),
        ("PancakeSwap", "pancakeswap_v3"),
    ])
    def test_resolve_slug(self, name, slug):
        assert resolve_dex_slug(name) == slug

    def test_unknown_slug_raises(self):
        with pytest.raises(ValueError, match="Unknown DEX"):
            resolve_dex_slug("balancer")

    def test_variants(self):
        assert get_variant("uniswap_v3") == VARIANT_STANDARD
        assert get_variant("camelot_v3") == VARIANT_ALT

    def test_camelot_arbitrum_only(self):
        assert get_position_manager_address("camelot_v3", "arbitrum") == PM
        assert get_position_manager_address("camelot_v3", "ethereum") is None

    def test_dexes_for_arbitrum(self):
        slugs = {d["slug"] for d in get_dexes_for_network("arbitrum")}
        assert {"uniswap_v3", "camelot_v3"} <= slugs

    def test_every_entry_has_addresses(self):
        for dex in DEX_REGISTRY.values():
            for addrs in dex["networks"].values():
                assert addrs["position_manager"].startswith("0x")
                assert addrs["factory"].startswith("0x")


class TestCentralConfig:
    @pytest.mark.parametrize("alias,name", [("arb", "arbitrum"), ("ETH", "ethereum"), ("base", "base")])
    def test_resolve_network(self, alias, name):
        assert resolve_network(alias) == name

    def test_unknown_network(self):
        with pytest.raises(ValueError, match="Unsupported network"):
            resolve_network("solana")

    def test_chain_id(self):
        assert chain_id_for("arb") == 42161

    def test_rpc_url_env_override(self, monkeypatch):
        monkeypatch.setenv("LP_YIELD_RPC_URL", "http://localhost:8545")
        assert rpc_url_for("arbitrum") == "http://localhost:8545"

    def test_rpc_url_default(self, monkeypatch):
        monkeypatch.delenv("LP_YIELD_RPC_URL", raising=False)
        assert rpc_url_for("arbitrum") == "https://1rpc.io/arb"

    def test_config_defaults(self):
        config = ValuationConfig()
        assert config.max_concurrency == 5
        assert config.invested_basis == "entry"
        assert config.default_fee_tier == 3000

    @pytest.mark.parametrize("kwargs", [
        {"invested_basis": "mark-to-market"},
        {"max_concurrency": 0},
        {"position_timeout_seconds": 0},
    ])
    def test_config_validation(self, kwargs):
        with pytest.raises(ValueError):
            ValuationConfig(**kwargs)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("LP_YIELD_CONCURRENCY", "7")
        monkeypatch.setenv("LP_YIELD_RPC_TIMEOUT", "3.5")
        config = ValuationConfig.from_env(invested_basis=None)
        assert config.max_concurrency == 7
        assert config.rpc_timeout_seconds == 3.5
        assert config.invested_basis == "entry"

    def test_from_env_overrides_win(self, monkeypatch):
        monkeypatch.setenv("LP_YIELD_CONCURRENCY", "7")
        assert ValuationConfig.from_env(max_concurrency=2).max_concurrency == 2


# ═══════════════════════════════════════════════════════════════════════════
# 3. protocol_adapter.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_yield.protocol_adapter import (
    AltAdapter,
    StandardAdapter,
    adapter_for_dex,
    build_collect_call,
    get_adapter,
    normalize_pool,
    normalize_position,
    resolve_fee_tier,
)


class TestResolveFeeTier:
    @pytest.mark.parametrize("pool_fee,position_fee,expected", [
        (500, 3000, 500),
        (None, 10000, 10000),
        (None, None, 3000),
        (0, None, 3000),
        (0, 500, 500),
    ])
    def test_fallback_chain(self, pool_fee, position_fee, expected):
        assert resolve_fee_tier(pool_fee, position_fee) == expected


class TestNormalizePool:
    def test_standard_slot0(self):
        raw = {"state": word(2 ** 96) + word(-120) + word(0), "liquidity": word(555), "fee": word(500)}
        pool = normalize_pool(raw, VARIANT_STANDARD)
        assert pool.sqrt_price_x96 == 2 ** 96
        assert pool.current_tick == -120
        assert pool.liquidity == 555
        assert pool.fee_tier == 500

    def test_alt_without_fee_uses_position_fee(self):
        raw = {"state": word(2 ** 96) + word(42), "liquidity": word(1), "fee": ""}
        pool = normalize_pool(raw, VARIANT_ALT, position_fee=10000)
        assert pool.current_tick == 42
        assert pool.fee_tier == 10000

    def test_alt_without_any_fee_defaults(self):
        raw = {"state": word(2 ** 96) + word(42), "liquidity": word(1)}
        assert normalize_pool(raw, VARIANT_ALT).fee_tier == 3000

    def test_uninitialized_pool(self):
        raw = {"state": word(0) + word(0), "liquidity": word(0), "fee": word(500)}
        with pytest.raises(DataValidityError, match="not initialized"):
            normalize_pool(raw, VARIANT_STANDARD)

    def test_missing_state(self):
        with pytest.raises(DataValidityError):
            normalize_pool({"state": "", "liquidity": word(1)}, VARIANT_STANDARD)

    def test_truncated_state(self):
        with pytest.raises(DataValidityError, match="Malformed"):
            normalize_pool({"state": word(2 ** 96), "liquidity": word(1)}, VARIANT_ALT)


class TestNormalizePosition:
    def test_standard_layout(self):
        raw = {
            "positions": standard_positions_data(-600, 1200, 777, owed0=5, owed1=6, fee=500),
            "owner": encode_address(ACCOUNT),
        }
        pos = normalize_position(raw, VARIANT_STANDARD, 42, position_manager=PM)
        assert (pos.token0, pos.token1) == (TOKEN_A, TOKEN_B)
        assert (pos.tick_lower, pos.tick_upper) == (-600, 1200)
        assert pos.liquidity == 777
        assert (pos.tokens_owed0, pos.tokens_owed1) == (5, 6)
        assert pos.fee_tier == 500
        assert pos.owner == ACCOUNT
        assert pos.position_manager == PM
        assert pos.variant == VARIANT_STANDARD

    def test_alt_layout_has_no_fee(self):
        raw = {"positions": alt_positions_data(-60, 60, 999, owed0=1, owed1=2)}
        pos = normalize_position(raw, VARIANT_ALT, 7)
        assert (pos.tick_lower, pos.tick_upper) == (-60, 60)
        assert pos.liquidity == 999
        assert (pos.tokens_owed0, pos.tokens_owed1) == (1, 2)
        assert pos.fee_tier is None
        assert pos.owner is None

    def test_zero_address_token_rejected(self):
        raw = {"positions": alt_positions_data(token0=ZERO_ADDRESS)}
        with pytest.raises(DataValidityError, match="missing tokens"):
            normalize_position(raw, VARIANT_ALT, 1)

    def test_inverted_ticks_rejected(self):
        raw = {"positions": standard_positions_data(600, -600)}
        with pytest.raises(DataValidityError, match="tick range"):
            normalize_position(raw, VARIANT_STANDARD, 1)

    def test_truncated_data_rejected(self):
        raw = {"positions": standard_positions_data()[: 64 * 6]}
        with pytest.raises(DataValidityError, match="Malformed"):
            normalize_position(raw, VARIANT_STANDARD, 1)


class TestCollectCall:
    def _position(self, manager=PM):
        return Position(
            position_id=12345, variant=VARIANT_ALT, owner=ACCOUNT,
            token0=TOKEN_A, token1=TOKEN_B, tick_lower=-60, tick_upper=60,
            liquidity=1, position_manager=manager,
        )

    def test_struct_calldata(self):
        call = build_collect_call(self._position(), VARIANT_ALT, ACCOUNT)
        expected_args = word(12345) + encode_address(ACCOUNT) + word(MAX_UINT128) * 2
        assert call.to == PM
        assert call.calldata == SELECTORS["collect"] + expected_args
        assert call.signature == "collect((uint256,address,uint128,uint128))"

    def test_struct_call_args_are_one_tuple(self):
        call = build_collect_call(self._position(), VARIANT_STANDARD, ACCOUNT)
        (params,) = call.call_args()
        assert params == {
            "tokenId": 12345, "recipient": ACCOUNT,
            "amount0Max": MAX_UINT128, "amount1Max": MAX_UINT128,
        }

    def test_positional_shape_same_words(self):
        struct_call = build_collect_call(self._position(), VARIANT_ALT, ACCOUNT)
        positional = build_collect_call(
            self._position(), VARIANT_ALT, ACCOUNT,
            collect_shape="positional", collect_selector="0x12345678",
        )
        assert positional.calldata == "0x12345678" + struct_call.calldata[10:]
        assert positional.call_args() == (12345, ACCOUNT, MAX_UINT128, MAX_UINT128)
        assert positional.signature == "collect(uint256,address,uint128,uint128)"

    def test_positional_defaults_to_its_own_selector(self):
        adapter = get_adapter(VARIANT_ALT, collect_shape="positional")
        call = adapter.build_collect_call(self._position(), ACCOUNT)
        assert SELECTORS["collect_positional"] == "0x260e12b0"
        assert adapter.collect_selector == SELECTORS["collect_positional"]
        assert call.calldata.startswith("0x260e12b0")
        assert call.signature == "collect(uint256,address,uint128,uint128)"

    def test_struct_defaults_to_struct_selector(self):
        adapter = get_adapter(VARIANT_STANDARD)
        assert adapter.collect_selector == SELECTORS["collect"]

    def test_unknown_shape_rejected(self):
        with pytest.raises(ValueError, match="shape"):
            get_adapter(VARIANT_ALT, collect_shape="packed")

    def test_missing_manager_rejected(self):
        with pytest.raises(DataValidityError):
            build_collect_call(self._position(manager=None), VARIANT_ALT, ACCOUNT)

    def test_decode_result(self):
        assert StandardAdapter.decode_collect_result(word(11) + word(22)) == (11, 22)


class TestAdapterDispatch:
    def test_unknown_variant(self):
        with pytest.raises(ValueError, match="Unknown protocol variant"):
            get_adapter("v4")

    def test_for_dex(self):
        assert isinstance(adapter_for_dex("camelot_v3"), AltAdapter)
        assert isinstance(adapter_for_dex("uniswap_v3"), StandardAdapter)

    def test_pool_state_calls(self):
        labels = [(label, data) for label, _, data in AltAdapter().pool_state_calls(POOL)]
        assert labels[0] == ("state", SELECTORS["globalState"])
        labels = [(label, data) for label, _, data in StandardAdapter().pool_state_calls(POOL)]
        assert labels[0] == ("state", SELECTORS["slot0"])

    def test_pool_lookup_calls(self):
        _, std = StandardAdapter().pool_lookup_call("0xF", TOKEN_A, TOKEN_B, 500)
        assert std == SELECTORS["getPool"] + encode_address(TOKEN_A) + encode_address(TOKEN_B) + encode_uint24(500)
        _, alt = AltAdapter().pool_lookup_call("0xF", TOKEN_A, TOKEN_B, 500)
        assert alt == SELECTORS["poolByPair"] + encode_address(TOKEN_A) + encode_address(TOKEN_B)


# ═══════════════════════════════════════════════════════════════════════════
# 4. fee_simulator.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_yield.fee_simulator import simulate_collect, simulate_collect_result


def _sim_position():
    return Position(
        position_id=9, variant=VARIANT_STANDARD, owner=ACCOUNT,
        token0=TOKEN_A, token1=TOKEN_B, tick_lower=-60, tick_upper=60,
        liquidity=1, position_manager=PM,
    )


class TestFeeSimulator:
    def test_success(self):
        reader = MagicMock()
        reader.simulate_call = AsyncMock(return_value=word(5) + word(7))
        assert asyncio.run(simulate_collect(reader, _sim_position())) == (5, 7)

    def test_recipient_defaults_to_manager(self):
        reader = MagicMock()
        reader.simulate_call = AsyncMock(return_value=word(0) + word(0))
        asyncio.run(simulate_collect(reader, _sim_position()))
        call = reader.simulate_call.call_args.args[0]
        assert call.args[1] == PM

    def test_from_address_forwarded(self):
        reader = MagicMock()
        reader.simulate_call = AsyncMock(return_value=word(0) + word(0))
        asyncio.run(simulate_collect(reader, _sim_position(), recipient=ACCOUNT, from_address=ACCOUNT))
        assert reader.simulate_call.call_args.kwargs["from_address"] == ACCOUNT

    def test_call_arguments_logged_at_debug(self, caplog):
        reader = MagicMock()
        reader.simulate_call = AsyncMock(return_value=word(0) + word(0))
        with caplog.at_level("DEBUG", logger="lp_yield.fee_simulator"):
            asyncio.run(simulate_collect(reader, _sim_position(), recipient=ACCOUNT))
        assert "collect((uint256,address,uint128,uint128))" in caplog.text
        assert f"'recipient': '{ACCOUNT}'" in caplog.text

    def test_network_failure_is_zero(self):
        reader = MagicMock()
        reader.simulate_call = AsyncMock(side_effect=ChainReadError("network down"))
        result = asyncio.run(simulate_collect_result(reader, _sim_position()))
        assert result.amounts() == (0, 0)
        assert not result.ok
        assert "ChainReadError" in result.error

    def test_garbage_response_is_zero(self):
        reader = MagicMock()
        reader.simulate_call = AsyncMock(return_value="00")
        assert asyncio.run(simulate_collect(reader, _sim_position())) == (0, 0)


# ═══════════════════════════════════════════════════════════════════════════
# 5. position_reader.py
# ═══════════════════════════════════════════════════════════════════════════

from position_reader import PositionReader


def _reader(call=None, batch=None):
    rpc = MagicMock()
    rpc.call = call or AsyncMock()
    rpc.call_batch = batch or AsyncMock()
    rpc.block_number = AsyncMock(return_value=123)
    return PositionReader(rpc, "arbitrum", "camelot_v3")


class TestPositionReader:
    def test_dex_not_on_network(self):
        with pytest.raises(ValueError, match="not deployed"):
            PositionReader(MagicMock(), "ethereum", "camelot_v3")

    def test_attributes(self):
        reader = _reader()
        assert reader.position_manager == PM
        assert reader.variant == VARIANT_ALT
        assert reader.chain_id == 42161
        assert reader.dex_name == "Camelot V3"

    def test_block_number_failure_is_zero(self):
        reader = _reader()
        reader.rpc.block_number = AsyncMock(side_effect=ChainReadError("down"))
        assert asyncio.run(reader.get_block_number()) == 0

    def test_resolve_pool_address(self):
        reader = _reader(call=AsyncMock(return_value=encode_address(POOL)))
        assert asyncio.run(reader.resolve_pool_address(TOKEN_A, TOKEN_B, 3000)) == POOL
        to, data = reader.rpc.call.call_args.args
        assert data.startswith(SELECTORS["poolByPair"])

    def test_pool_not_found(self):
        reader = _reader(call=AsyncMock(return_value=encode_address(ZERO_ADDRESS)))
        with pytest.raises(DataValidityError, match="Pool not found"):
            asyncio.run(reader.resolve_pool_address(TOKEN_A, TOKEN_B, 3000))

    def test_read_pool_state(self):
        state = word(2 ** 96) + word(10)
        reader = _reader(batch=AsyncMock(return_value=[state, word(9), ""]))
        raw = asyncio.run(reader.read_pool_state(POOL))
        assert raw == {"state": state, "liquidity": word(9), "fee": ""}

    def test_read_pool_state_without_batch_support(self):
        state = word(2 ** 96) + word(10)
        replies = {
            SELECTORS["globalState"]: state,
            SELECTORS["liquidity"]: word(9),
            SELECTORS["fee"]: word(500),
        }

        def respond(url, json=None, timeout=None):
            resp = MagicMock()
            if isinstance(json, list):
                resp.json.return_value = {"error": {"code": -32600, "message": "batch not supported"}}
            else:
                data = json["params"][0]["data"]
                resp.json.return_value = {"jsonrpc": "2.0", "id": 1, "result": "0x" + replies[data]}
            return resp

        client = AsyncMock()
        client.post.side_effect = respond
        reader = PositionReader(RpcClient("http://fake", timeout=5, client=client), "arbitrum", "camelot_v3")
        raw = asyncio.run(reader.read_pool_state(POOL))
        assert raw == {"state": state, "liquidity": word(9), "fee": word(500)}

    def test_read_pool_state_missing_liquidity(self):
        reader = _reader(batch=AsyncMock(return_value=[word(2 ** 96) + word(10), "", ""]))
        with pytest.raises(ChainReadError):
            asyncio.run(reader.read_pool_state(POOL))

    def test_read_position_state(self):
        data = alt_positions_data()
        reader = _reader(call=AsyncMock(side_effect=[data, encode_address(ACCOUNT)]))
        raw = asyncio.run(reader.read_position_state(5))
        assert raw == {"positions": data, "owner": encode_address(ACCOUNT)}

    def test_token_meta(self):
        async def call(to, data, from_address=None):
            return word(6) if data == SELECTORS["decimals"] else abi_string("USDC")

        reader = _reader(call=call)
        token = asyncio.run(reader.read_token_meta(TOKEN_B))
        assert (token.decimals, token.symbol, token.chain_id) == (6, "USDC", 42161)

    def test_token_meta_failure_defaults(self):
        reader = _reader(call=AsyncMock(side_effect=ChainReadError("reverted")))
        token = asyncio.run(reader.read_token_meta(TOKEN_B))
        assert (token.decimals, token.symbol) == (18, "TKN")

    def test_token_meta_absurd_decimals_defaults(self):
        async def call(to, data, from_address=None):
            return word(1000) if data == SELECTORS["decimals"] else abi_string("BAD")

        token = asyncio.run(_reader(call=call).read_token_meta(TOKEN_B))
        assert token.decimals == 18


# ═══════════════════════════════════════════════════════════════════════════
# 6. price_feed.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_yield.price_feed import DexScreenerPriceFeed, StaticPriceFeed


class TestStaticPriceFeed:
    def test_case_insensitive(self):
        feed = StaticPriceFeed({"weth": 2000})
        assert asyncio.run(feed.fetch_current_price("WETH")) == 2000.0

    @pytest.mark.parametrize("symbol", ["USDC", "usdt", "USD₮0"])
    def test_stablecoin_default(self, symbol):
        assert asyncio.run(StaticPriceFeed({}).fetch_current_price(symbol)) == 1.0

    def test_missing_symbol(self):
        with pytest.raises(PriceFeedError):
            asyncio.run(StaticPriceFeed({}).fetch_current_price("ARB"))

    @pytest.mark.parametrize("price", [-1, float("nan"), "abc", None])
    def test_invalid_price(self, price):
        with pytest.raises(PriceFeedError):
            asyncio.run(StaticPriceFeed({"ARB": price}).fetch_current_price("ARB"))


def _dexscreener(pairs, status=200):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = {"pairs": pairs}
    client = AsyncMock()
    client.get.return_value = response
    return client


class TestDexScreenerPriceFeed:
    PAIRS = [
        {"chainId": "ethereum", "baseToken": {"symbol": "WETH"}, "priceUsd": "1990",
         "liquidity": {"usd": 9_000_000}},
        {"chainId": "arbitrum", "baseToken": {"symbol": "WETH"}, "priceUsd": "2000",
         "liquidity": {"usd": 5_000_000}},
        {"chainId": "arbitrum", "baseToken": {"symbol": "USDC"}, "priceUsd": "1.0",
         "liquidity": {"usd": 99_000_000}},
    ]

    def test_most_liquid_match(self):
        feed = DexScreenerPriceFeed(client=_dexscreener(self.PAIRS))
        assert asyncio.run(feed.fetch_current_price("WETH")) == 1990.0

    def test_chain_filter(self):
        feed = DexScreenerPriceFeed(chain="arbitrum", client=_dexscreener(self.PAIRS))
        assert asyncio.run(feed.fetch_current_price("weth")) == 2000.0

    def test_stablecoin_skips_lookup(self):
        client = _dexscreener(self.PAIRS)
        assert asyncio.run(DexScreenerPriceFeed(client=client).fetch_current_price("USDC")) == 1.0
        client.get.assert_not_awaited()

    def test_no_pair(self):
        feed = DexScreenerPriceFeed(client=_dexscreener([]))
        with pytest.raises(PriceFeedError, match="No DEXScreener pair"):
            asyncio.run(feed.fetch_current_price("GMX"))

    def test_http_error_status(self):
        feed = DexScreenerPriceFeed(client=_dexscreener(self.PAIRS, status=429))
        with pytest.raises(PriceFeedError, match="429"):
            asyncio.run(feed.fetch_current_price("WETH"))

    def test_transport_error(self):
        client = AsyncMock()
        client.get.side_effect = httpx.ReadTimeout("slow")
        with pytest.raises(PriceFeedError):
            asyncio.run(DexScreenerPriceFeed(client=client).fetch_current_price("WETH"))


# ═══════════════════════════════════════════════════════════════════════════
# 7. store.py / models.py
# ═══════════════════════════════════════════════════════════════════════════

from lp_yield.store import InMemoryPositionStore, JsonPositionStore


def _record(record_id="r1", active=True, **meta):
    metadata = {
        "dexName": "Camelot",
        "nftId": 12345,
        "positionManager": PM,
        "token0Symbol": "WETH",
        "token1Symbol": "USDC",
        "createdAt": 1_700_000_000,
        "liquidity": "1000000000000",
        "token0Address": TOKEN_A,
        "token1Address": TOKEN_B,
        "fee0": "10",
        "fee1": 0,
        "credit_account_address": ACCOUNT,
    }
    metadata.update(meta)
    return {
        "id": record_id,
        "position_id": f"pos-{record_id}",
        "pool_address": POOL,
        "lower_ticks": -600,
        "upper_ticks": 600,
        "token0_decimals": 18,
        "token1_decimals": 6,
        "chain": "arbitrum",
        "is_active": active,
        "metadata": metadata,
    }


class TestOrderBookPosition:
    def test_from_record(self):
        pos = OrderBookPosition.from_record(_record())
        assert pos.record_id == "r1"
        assert pos.position_id == "pos-r1"
        assert pos.dex == "Camelot"
        assert pos.nft_id == 12345
        assert (pos.tick_lower, pos.tick_upper) == (-600, 600)
        assert pos.entry_liquidity == 10 ** 12
        assert (pos.fee0, pos.fee1) == (10, 0)
        assert pos.account == ACCOUNT
        assert pos.created_at == 1_700_000_000.0

    def test_missing_required_field(self):
        record = _record()
        del record["metadata"]["nftId"]
        with pytest.raises(KeyError):
            OrderBookPosition.from_record(record)


class TestStores:
    def test_in_memory(self):
        pos = OrderBookPosition.from_record(_record())
        store = InMemoryPositionStore([pos])
        assert store.status == {"r1": True}
        asyncio.run(store.update_status("r1", False))
        assert store.status == {"r1": False}

    def test_json_load_active_only(self, tmp_path):
        path = tmp_path / "positions.json"
        path.write_text(json.dumps([_record("a"), _record("b", active=False)]))
        store = JsonPositionStore(path)
        assert [p.record_id for p in store.load_positions()] == ["a"]
        assert len(store.load_positions(active_only=False)) == 2

    def test_json_wrapped_object(self, tmp_path):
        path = tmp_path / "positions.json"
        path.write_text(json.dumps({"positions": [_record("a")]}))
        assert len(JsonPositionStore(path).load_positions()) == 1

    def test_json_update_status_persists(self, tmp_path):
        path = tmp_path / "positions.json"
        path.write_text(json.dumps([_record("a")]))
        asyncio.run(JsonPositionStore(path).update_status("a", False))
        assert json.loads(path.read_text())[0]["is_active"] is False
        assert JsonPositionStore(path).load_positions() == []

    def test_json_concurrent_updates_all_persist(self, tmp_path):
        path = tmp_path / "positions.json"
        path.write_text(json.dumps([_record("a"), _record("b"), _record("c")]))
        store = JsonPositionStore(path)

        async def deactivate_all():
            await asyncio.gather(*(store.update_status(rid, False) for rid in ("a", "b", "c")))

        asyncio.run(deactivate_all())
        assert [r["is_active"] for r in json.loads(path.read_text())] == [False, False, False]

    def test_json_write_runs_off_event_loop(self, tmp_path):
        path = tmp_path / "positions.json"
        path.write_text(json.dumps([_record("a")]))
        store = JsonPositionStore(path)
        with patch("lp_yield.store.asyncio.to_thread", AsyncMock()) as to_thread:
            asyncio.run(store.update_status("a", False))
        func, text = to_thread.await_args.args
        assert func == store.path.write_text
        assert json.loads(text)[0]["is_active"] is False

    def test_json_update_unknown_record_leaves_file(self, tmp_path):
        path = tmp_path / "positions.json"
        original = json.dumps([_record("a")])
        path.write_text(original)
        asyncio.run(JsonPositionStore(path).update_status("zzz", False))
        assert path.read_text() == original

    def test_json_rejects_scalar(self, tmp_path):
        path = tmp_path / "positions.json"
        path.write_text("42")
        with pytest.raises(ValueError):
            JsonPositionStore(path)


# ═══════════════════════════════════════════════════════════════════════════
# 8. run.py / commands.py
# ═══════════════════════════════════════════════════════════════════════════

from run import create_parser
from lp_yield.commands import cmd_apr, cmd_info


class TestCreateParser:
    def test_position_defaults(self):
        args = create_parser().parse_args(["position", "12345"])
        assert args.command == "position"
        assert args.nft_id == 12345
        assert args.dex == "camelot_v3"
        assert args.network == "arbitrum"
        assert args.json is False

    def test_apr_options(self):
        args = create_parser().parse_args([
            "apr", "positions.json", "--prices", "p.json", "--concurrency", "3",
            "--basis", "current", "--json",
        ])
        assert args.positions == "positions.json"
        assert args.prices == "p.json"
        assert args.concurrency == 3
        assert args.basis == "current"
        assert args.json is True

    def test_apr_rejects_unknown_basis(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["apr", "positions.json", "--basis", "withdrawable"])

    def test_verbose_flag(self):
        assert create_parser().parse_args(["-v", "info"]).verbose is True

    def test_position_id_must_be_int(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["position", "abc"])


class TestCommands:
    def test_info_lists_dexes(self, capsys):
        cmd_info()
        out = capsys.readouterr().out
        assert "Camelot V3" in out
        assert "Uniswap V3" in out

    def test_info_lists_dexes_per_network(self, capsys):
        cmd_info()
        lines = capsys.readouterr().out.splitlines()
        arbitrum = next(line for line in lines if line.strip().startswith("arbitrum "))
        ethereum = next(line for line in lines if line.strip().startswith("ethereum "))
        assert "Camelot V3" in arbitrum
        assert "Camelot V3" not in ethereum
        assert "Uniswap V3" in ethereum

    def test_apr_no_active_positions(self, tmp_path, capsys):
        path = tmp_path / "positions.json"
        path.write_text(json.dumps([_record("a", active=False)]))
        assert asyncio.run(cmd_apr(str(path))) is True
        assert "No active positions" in capsys.readouterr().out

    def test_apr_missing_file(self, tmp_path, capsys):
        assert asyncio.run(cmd_apr(str(tmp_path / "missing.json"))) is False
        assert "❌" in capsys.readouterr().out


class TestErrorTaxonomy:
    def test_hierarchy(self):
        assert issubclass(ChainReadError, RuntimeError)
        assert issubclass(DataValidityError, ValueError)
        for cls in (ChainReadError, DataValidityError, PriceFeedError):
            assert issubclass(cls, ValuationError)
