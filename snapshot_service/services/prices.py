"""Read-side queries over stored price points."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from snapshot_service.errors import SymbolNotFoundError
from snapshot_service.infra.persistence import SQLiteSnapshotStore, clamp_limit
from snapshot_service.models import PricePoint, normalize_symbol


class PriceQueryService:
    """Latest prices and history for tracked symbols."""

    def __init__(self, store: SQLiteSnapshotStore) -> None:
        self.store = store

    async def latest_prices(self, symbols: Iterable[str]) -> Tuple[List[PricePoint], List[str]]:
        """Return the newest point per symbol and the symbols without one."""

        normalized: List[str] = []
        for symbol in symbols:
            name = normalize_symbol(symbol)
            if name and name not in normalized:
                normalized.append(name)
        if not normalized:
            return [], []

        points = await asyncio.to_thread(self.store.latest_by_symbols, normalized)
        found = {point.symbol for point in points}
        missing = [name for name in normalized if name not in found]
        return points, missing

    async def price_history(
        self,
        symbol: str,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[PricePoint]:
        """Return up to ``limit`` points (default 100, max 1000), newest first."""

        name = normalize_symbol(symbol)
        if not await asyncio.to_thread(self.store.instrument_exists, name):
            raise SymbolNotFoundError(f"symbol not found: {name}")
        return await asyncio.to_thread(self.store.history, name, clamp_limit(limit), since, until)


__all__ = ["PriceQueryService"]
