"""Health checks and the operational metrics report."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from snapshot_service.data.clients import ExchangeClient
from snapshot_service.infra.metrics import MetricsAggregator
from snapshot_service.infra.persistence import SQLiteSnapshotStore

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"
HEALTH_CHECK_TIMEOUT = 5.0


class StatusService:
    """Combines dependency health with the poll counters."""

    def __init__(
        self,
        store: SQLiteSnapshotStore,
        exchange: ExchangeClient,
        metrics: MetricsAggregator,
        clock=time.monotonic,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.exchange = exchange
        self.metrics = metrics
        self.logger = logger or logging.getLogger("snapshot_service.status")
        self._clock = clock
        self._started = clock()

    async def health(self) -> Dict[str, str]:
        database = await self._check(self.store.ping, "database")
        exchange = await self._check(self.exchange.ping, "exchange")
        status = HEALTHY if database == HEALTHY and exchange == HEALTHY else "degraded"
        return {"status": status, "database": database, "exchange": exchange}

    async def report(self) -> Dict[str, Any]:
        """Operational metrics; storage failures degrade to zero counts."""

        snapshot = self.metrics.snapshot()
        total_symbols = await self._count(self.store.count_instruments, "count symbols")
        active_symbols = await self._count(lambda: self.store.count_instruments(active_only=True), "count active symbols")
        total_snapshots = await self._count(self.store.count_snapshots, "count snapshots")
        database = await self._check(self.store.ping, "database")
        exchange = await self._check(self.exchange.ping, "exchange")

        report: Dict[str, Any] = {
            "uptime_seconds": round(self._clock() - self._started, 3),
            "tracked_symbols": total_symbols,
            "active_symbols": active_symbols,
            "total_snapshots": total_snapshots,
            "database_status": database,
            "exchange_status": exchange,
        }
        report.update(snapshot.to_dict())
        return report

    async def _check(self, probe, name: str) -> str:
        try:
            await asyncio.wait_for(asyncio.to_thread(probe), timeout=HEALTH_CHECK_TIMEOUT)
        except Exception as exc:
            self.logger.warning("%s health check failed: %s", name, exc, extra={"event": "health_check_failed"})
            return UNHEALTHY
        return HEALTHY

    async def _count(self, query, description: str) -> int:
        try:
            return await asyncio.to_thread(query)
        except Exception as exc:
            self.logger.error("Failed to %s: %s", description, exc)
            return 0


__all__ = ["StatusService", "HEALTHY", "UNHEALTHY"]
