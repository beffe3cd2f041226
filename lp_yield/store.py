"""
Position Stores — where batch input comes from and deactivations go
===================================================================

The APR calculator only needs ``update_status(record_id, active)``; it is
called to deactivate a position whose valuation had to be skipped.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

from lp_yield.models import OrderBookPosition

logger = logging.getLogger(__name__)


class PositionStore(Protocol):
    async def update_status(self, record_id: str, active: bool) -> None:
        ...


class InMemoryPositionStore:
    """Keeps ``record_id → active`` in a dict."""

    def __init__(self, positions: Iterable[OrderBookPosition] = ()):
        self.status: Dict[str, bool] = {p.record_id: p.is_active for p in positions}

    async def update_status(self, record_id: str, active: bool) -> None:
        self.status[record_id] = active


class JsonPositionStore:
    """
    A JSON file holding a list of storage rows (see OrderBookPosition.from_record).

    Status updates rewrite the file in place, one write at a time, off the
    event loop.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._write_lock: Optional[asyncio.Lock] = None
        self._records: List[Dict[str, Any]] = self._read()

    def _read(self) -> List[Dict[str, Any]]:
        data = json.loads(self.path.read_text())
        if isinstance(data, dict):
            data = data.get("positions", [])
        if not isinstance(data, list):
            raise ValueError(f"{self.path}: expected a list of positions")
        return data

    def load_positions(self, active_only: bool = True) -> List[OrderBookPosition]:
        positions = [OrderBookPosition.from_record(r) for r in self._records]
        if active_only:
            positions = [p for p in positions if p.is_active]
        return positions

    async def update_status(self, record_id: str, active: bool) -> None:
        if self._write_lock is None:
            self._write_lock = asyncio.Lock()
        async with self._write_lock:
            for record in self._records:
                if str(record.get("id")) == str(record_id):
                    record["is_active"] = active
                    break
            else:
                logger.warning("update_status: record %s not found in %s", record_id, self.path)
                return
            text = json.dumps(self._records, indent=2)
            await asyncio.to_thread(self.path.write_text, text)
        logger.info("Record %s marked %s", record_id, "active" if active else "inactive")
