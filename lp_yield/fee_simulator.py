"""
Fee Simulation — claimable fees via a read-only collect()
=========================================================

collect(tokenId, recipient, 2^128−1, 2^128−1) is executed with eth_call, so
the node runs the fee accounting and returns the amounts without mining
anything. The recipient does not influence the amounts.

Ref: NonfungiblePositionManager.collect
     https://github.com/Uniswap/v3-periphery/blob/main/contracts/NonfungiblePositionManager.sol
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from lp_yield.models import Position
from lp_yield.protocol_adapter import ProtocolAdapter, get_adapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectSimulation:
    amount0: int = 0
    amount1: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def amounts(self) -> Tuple[int, int]:
        return self.amount0, self.amount1


async def simulate_collect_result(
    reader,
    position: Position,
    recipient: Optional[str] = None,
    from_address: Optional[str] = None,
    adapter: Optional[ProtocolAdapter] = None,
) -> CollectSimulation:
    """
    Simulated collect() as an explicit result; never raises.

    ``recipient`` defaults to the position manager itself.
    """
    adapter = adapter or get_adapter(position.variant)
    try:
        call = adapter.build_collect_call(position, recipient or position.position_manager)
        logger.debug("%s %s", call.signature, call.call_args())
        data = await reader.simulate_call(call, from_address=from_address)
        amount0, amount1 = adapter.decode_collect_result(data)
    except Exception as e:  # noqa: BLE001
        message = f"{e.__class__.__name__}: {e}"
        logger.warning("simulateCollect failed for position %s: %s", position.position_id, message)
        return CollectSimulation(error=message)
    return CollectSimulation(amount0, amount1)


async def simulate_collect(
    reader,
    position: Position,
    recipient: Optional[str] = None,
    from_address: Optional[str] = None,
    adapter: Optional[ProtocolAdapter] = None,
) -> Tuple[int, int]:
    """Raw (fee0, fee1); (0, 0) on any failure."""
    result = await simulate_collect_result(reader, position, recipient, from_address, adapter)
    return result.amounts()
