#!/usr/bin/env python3
"""
DEX Registry — Concentrated-Liquidity Deployments
==================================================

Maps each supported DEX to its protocol variant, collect() argument shape
and NonfungiblePositionManager / Factory addresses per network.

Variants:
  standard — Uniswap V3 and byte-compatible forks:
             slot0(), 12-word positions() (with fee), Factory.getPool()
  alt      — Algebra forks (Camelot V3):
             globalState(), 11-word positions() (no fee), Factory.poolByPair()

Collect shapes:
  struct     — collect((tokenId, recipient, amount0Max, amount1Max))
  positional — collect(tokenId, recipient, amount0Max, amount1Max);
               selector 0x260e12b0 unless "collect_selector" overrides it

Contract Address Sources:
  Uniswap V3  : https://docs.uniswap.org/contracts/v3/reference/deployments/
  PancakeSwap : https://developer.pancakeswap.finance/contracts/v3/addresses
  SushiSwap   : https://docs.sushi.com/docs/Products/V3%20AMM/Periphery/Deployment%20Addresses
  Camelot V3  : https://docs.camelot.exchange/contracts/arbitrum/one-mainnet
"""

from typing import Dict, List, Optional

VARIANT_STANDARD = "standard"
VARIANT_ALT = "alt"

SHAPE_STRUCT = "struct"
SHAPE_POSITIONAL = "positional"

# Structure:
#   DEX_REGISTRY[dex_slug] = {
#       "name": str,
#       "variant": "standard" | "alt",
#       "collect_shape": "struct" | "positional",
#       "collect_selector": Optional[str],     # overrides the shape default
#       "networks": {network: {"position_manager": "0x...", "factory": "0x..."}},
#   }

DEX_REGISTRY: Dict[str, dict] = {
    # Same contract on most EVM chains via CREATE2.
    "uniswap_v3": {
        "name": "Uniswap V3",
        "variant": VARIANT_STANDARD,
        "collect_shape": SHAPE_STRUCT,
        "networks": {
            "ethereum": {
                "position_manager": "0xC36442b4a4522E871399CD717aBDD847Ab11FE88",
                "factory": "0x1F98431c8aD98523631AE4a59f267346ea31F984",
            },
            "arbitrum": {
                "position_manager": "0xC36442b4a4522E871399CD717aBDD847Ab11FE88",
                "factory": "0x1F98431c8aD98523631AE4a59f267346ea31F984",
            },
            "polygon": {
                "position_manager": "0xC36442b4a4522E871399CD717aBDD847Ab11FE88",
                "factory": "0x1F98431c8aD98523631AE4a59f267346ea31F984",
            },
            "optimism": {
                "position_manager": "0xC36442b4a4522E871399CD717aBDD847Ab11FE88",
                "factory": "0x1F98431c8aD98523631AE4a59f267346ea31F984",
            },
            "base": {
                "position_manager": "0x03a520b32C04BF3bEEf7BEb72E919cf822Ed34f1",
                "factory": "0x33128a8fC17869897dcE68Ed026d694621f6FDfD",
            },
        },
    },
    "pancakeswap_v3": {
        "name": "PancakeSwap V3",
        "variant": VARIANT_STANDARD,
        "collect_shape": SHAPE_STRUCT,
        "networks": {
            "ethereum": {
                "position_manager": "0x46A15B0b27311cedF172AB29E4f4766fbE7F4364",
                "factory": "0x0BFbCF9fa4f9C56B0F40a671Ad40E0805A091865",
            },
            "bsc": {
                "position_manager": "0x46A15B0b27311cedF172AB29E4f4766fbE7F4364",
                "factory": "0x0BFbCF9fa4f9C56B0F40a671Ad40E0805A091865",
            },
            "arbitrum": {
                "position_manager": "0x427bF5b37357632377eCbEC9de3626C71A5396c1",
                "factory": "0x0BFbCF9fa4f9C56B0F40a671Ad40E0805A091865",
            },
        },
    },
    "sushiswap_v3": {
        "name": "SushiSwap V3",
        "variant": VARIANT_STANDARD,
        "collect_shape": SHAPE_STRUCT,
        "networks": {
            "arbitrum": {
                "position_manager": "0xF0cBce1942a68BEB3d1b73F0dd86c8DCc363eF49",
                "factory": "0x1af415a1EbA07a4986a52B6f2e7dE7003D82231e",
            },
            "polygon": {
                "position_manager": "0xb7402ee99F0A008e461098AC3a27F4957Df89a40",
                "factory": "0x917933899c6a5f8E37F31E19f92CdbFf7e8ff0e2",
            },
        },
    },
    # Algebra fork; also struct-based collect.
    "camelot_v3": {
        "name": "Camelot V3",
        "variant": VARIANT_ALT,
        "collect_shape": SHAPE_STRUCT,
        "networks": {
            "arbitrum": {
                "position_manager": "0x00c7f3082833e796A5b3e4Bd59f6642FF44DCD15",
                "factory": "0x1a3c9B1d2F0529D97f2afC5136Cc23e58f1FD35B",
            },
        },
    },
}

# Storage rows sometimes carry loose DEX names
DEX_ALIASES = {
    "uniswap": "uniswap_v3",
    "camelot": "camelot_v3",
    "algebra": "camelot_v3",
    "pancakeswap": "pancakeswap_v3",
    "sushiswap": "sushiswap_v3",
}


def resolve_dex_slug(dex: str) -> str:
    """Map a slug or loose name ("Camelot", "uniswap") to a registry slug."""
    key = dex.strip().lower().replace(" ", "_")
    if key in DEX_REGISTRY:
        return key
    key = DEX_ALIASES.get(key.split("_")[0], key)
    if key not in DEX_REGISTRY:
        raise ValueError(f"Unknown DEX: {dex}. Available: {list(DEX_REGISTRY)}")
    return key


def get_dexes_for_network(network: str) -> List[dict]:
    """All registered DEXes deployed on a network."""
    dexes = []
    for slug, dex in DEX_REGISTRY.items():
        if network in dex["networks"]:
            addrs = dex["networks"][network]
            dexes.append(
                {
                    "slug": slug,
                    "name": dex["name"],
                    "variant": dex["variant"],
                    "position_manager": addrs["position_manager"],
                    "factory": addrs["factory"],
                }
            )
    return dexes


def get_factory_address(dex_slug: str, network: str) -> Optional[str]:
    dex = DEX_REGISTRY.get(dex_slug)
    if not dex or network not in dex.get("networks", {}):
        return None
    return dex["networks"][network]["factory"]


def get_position_manager_address(dex_slug: str, network: str) -> Optional[str]:
    dex = DEX_REGISTRY.get(dex_slug)
    if not dex or network not in dex.get("networks", {}):
        return None
    return dex["networks"][network]["position_manager"]


def get_variant(dex_slug: str) -> str:
    return DEX_REGISTRY[dex_slug]["variant"]


def get_collect_shape(dex_slug: str) -> str:
    return DEX_REGISTRY[dex_slug].get("collect_shape", SHAPE_STRUCT)


def get_collect_selector(dex_slug: str) -> Optional[str]:
    return DEX_REGISTRY[dex_slug].get("collect_selector")


def get_dex_display_name(dex_slug: str) -> str:
    dex = DEX_REGISTRY.get(dex_slug)
    return dex["name"] if dex else dex_slug
