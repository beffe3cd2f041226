"""
Stablecoin Detection — USD-pegged token classification
=======================================================

Known USD stablecoins are priced at $1.00 without a network lookup.
EUR/GBP-pegged tokens are deliberately absent: they are stable, but not
worth one dollar.

Sources: CoinGecko stablecoin category, DeFiLlama stablecoin tracker.
"""

# Normalized to uppercase. Includes bridged variants (.e, .b, etc.)
USD_STABLECOIN_SYMBOLS: frozenset = frozenset({
    # USD-pegged — major
    "USDC", "USDT", "DAI", "BUSD", "TUSD", "FRAX", "LUSD",
    "USDP", "GUSD", "PYUSD", "GHO", "FDUSD", "CRVUSD", "USDS",

    # Bridged variants
    "USDC.E", "USDT.E", "DAI.E", "USDBC", "USDCE", "AXLUSDC", "USDT0",

    # CDP / algorithmic
    "MIM", "DOLA", "ALUSD", "USDD",
})


def is_usd_stablecoin(symbol: str) -> bool:
    """
    Examples:
        >>> is_usd_stablecoin("usdc.e")
        True
        >>> is_usd_stablecoin("EURC")
        False
    """
    return symbol.strip().upper() in USD_STABLECOIN_SYMBOLS
