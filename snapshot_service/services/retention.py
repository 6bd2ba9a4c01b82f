"""Deletes price points older than the configured retention window."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from snapshot_service.infra.persistence import SQLiteSnapshotStore
from snapshot_service.models import utcnow


class RetentionPruner:
    """Periodically prunes old snapshots; ``retention_days=0`` keeps everything."""

    def __init__(
        self,
        store: SQLiteSnapshotStore,
        retention_days: int,
        interval: float = 3600.0,
        now: Callable[[], datetime] = utcnow,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.retention = timedelta(days=retention_days)
        self.interval = interval
        self._now = now
        self.logger = logger or logging.getLogger("snapshot_service.retention")

    @property
    def enabled(self) -> bool:
        return self.retention > timedelta(0)

    async def prune_once(self) -> int:
        if not self.enabled:
            return 0
        cutoff = self._now() - self.retention
        removed = await asyncio.to_thread(self.store.prune, cutoff)
        if removed:
            self.logger.info(
                "Pruned %s snapshots", removed,
                extra={"event": "snapshots_pruned", "removed": removed, "cutoff": cutoff.isoformat()},
            )
        return removed

    async def run(self, shutdown: asyncio.Event) -> None:
        """Prune every ``interval`` seconds until ``shutdown`` is set."""

        if not self.enabled:
            return
        while not shutdown.is_set():
            try:
                await self.prune_once()
            except Exception:
                self.logger.exception("Snapshot pruning failed", extra={"event": "prune_failed"})
            try:
                await asyncio.wait_for(shutdown.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue


__all__ = ["RetentionPruner"]
