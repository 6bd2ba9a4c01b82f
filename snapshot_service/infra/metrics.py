"""Poll outcome counters for the reporting endpoints."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional


@dataclass(frozen=True)
class AggregatedMetrics:
    """Consistent view of the poll counters at one instant."""

    last_poll_time: Optional[datetime] = None
    last_poll_duration: float = 0.0
    success_count: int = 0
    failure_count: int = 0
    total_poll_time: float = 0.0

    @property
    def total_polls(self) -> int:
        return self.success_count + self.failure_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_poll_time": self.last_poll_time.isoformat() if self.last_poll_time else None,
            "last_poll_duration_ms": round(self.last_poll_duration * 1000.0, 3),
            "poll_success_count": self.success_count,
            "poll_error_count": self.failure_count,
            "total_poll_time_ms": round(self.total_poll_time * 1000.0, 3),
        }


class MetricsAggregator:
    """Records poll outcomes; safe for concurrent readers and writers.

    Every mutation replaces the whole :class:`AggregatedMetrics` value under a
    lock, so :meth:`snapshot` never returns a torn update.
    """

    def __init__(
        self,
        metrics_file: Path = Path("var/metrics.prom"),
        emit_textfile: bool = False,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.metrics_file = Path(metrics_file)
        self.emit_textfile = emit_textfile
        self.logger = logger or logging.getLogger("metrics")
        self._clock = clock
        self._lock = threading.Lock()
        self._state = AggregatedMetrics()

    def record_success(self, duration: float) -> None:
        """Record a successful poll that took ``duration`` seconds."""

        self._record(duration, succeeded=True)

    def record_failure(self, duration: float) -> None:
        """Record a failed poll that took ``duration`` seconds."""

        self._record(duration, succeeded=False)

    def snapshot(self) -> AggregatedMetrics:
        with self._lock:
            return self._state

    def _record(self, duration: float, succeeded: bool) -> None:
        duration = max(float(duration), 0.0)
        with self._lock:
            state = self._state
            self._state = replace(
                state,
                last_poll_time=self._clock(),
                last_poll_duration=duration,
                success_count=state.success_count + (1 if succeeded else 0),
                failure_count=state.failure_count + (0 if succeeded else 1),
                total_poll_time=state.total_poll_time + duration,
            )
            self._persist_unlocked()

    def _persist_unlocked(self) -> None:
        if not self.emit_textfile:
            return
        try:
            self.metrics_file.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.metrics_file.with_suffix(".tmp")
            temp_path.write_text(self.render_prom_text(self._state), encoding="utf-8")
            os.replace(temp_path, self.metrics_file)
        except OSError as exc:
            self.logger.warning("Failed to write metrics textfile %s: %s", self.metrics_file, exc)

    @staticmethod
    def render_prom_text(state: AggregatedMetrics) -> str:
        lines = [
            f"poll_success_total {state.success_count}",
            f"poll_failure_total {state.failure_count}",
            f"poll_last_duration_seconds {state.last_poll_duration}",
            f"poll_duration_seconds_sum {state.total_poll_time}",
        ]
        if state.last_poll_time is not None:
            lines.append(f"poll_last_timestamp_seconds {state.last_poll_time.timestamp()}")
        return "\n".join(lines) + "\n"


__all__ = ["AggregatedMetrics", "MetricsAggregator"]
