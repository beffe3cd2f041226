"""
Error Taxonomy
==============

  • ChainReadError     — transient RPC / timeout failures (recoverable)
  • DataValidityError  — zero-address tokens, missing pool, bad tick range
  • SimulationError    — collect() simulation reverted or returned garbage
  • DivisionGuardError — invested value or position age would divide by zero
  • PriceFeedError     — no usable USD price for a symbol

The batch APR calculator treats every one of these as "skip the position";
single-position callers see them as-is.
"""


class ValuationError(Exception):
    """Base class for every valuation failure."""


class ChainReadError(ValuationError, RuntimeError):
    """Network, timeout or RPC-level failure while reading chain state."""


class DataValidityError(ValuationError, ValueError):
    """On-chain data is present but unusable."""


class TickOutOfRangeError(DataValidityError):
    """Tick outside the protocol-valid range [-887272, 887272]."""


class SimulationError(ValuationError):
    """Read-only collect() simulation failed."""


class DivisionGuardError(ValuationError):
    """A zero (or negative) denominator reached the APR math."""


class PriceFeedError(ValuationError):
    """Price collaborator returned nothing usable."""
