"""LP Yield — concentrated-liquidity position valuation and APR estimation."""
