"""Fixed-interval price polling.

One cycle lists the active instruments, fetches their quotes through the retry
executor, stores the resulting price points as one batch, and records the
outcome. Cycles never overlap. A failing cycle is logged and recorded; it
never ends the loop. The loop only ends on :meth:`PollingScheduler.stop` or
when the caller's shutdown event fires (or the loop task is cancelled), in
which case the loop finishes with :class:`asyncio.CancelledError`.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
import time
from typing import Callable, List, Optional

from snapshot_service.errors import StopTimeoutError
from snapshot_service.infra.metrics import MetricsAggregator
from snapshot_service.infra.persistence import SnapshotStore
from snapshot_service.infra.retry import RetryExecutor
from snapshot_service.models import PollOutcome, PricePoint, Quote, utcnow

from .clients import QuoteSource

MIN_CYCLE_TIMEOUT = 5.0
DEFAULT_STOP_GRACE = 10.0


class PollerState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"


def cycle_timeout_for(interval: float) -> float:
    """Upper bound for a single cycle: half the interval, at least 5s."""

    return max(interval / 2.0, MIN_CYCLE_TIMEOUT)


class PollingScheduler:
    """Drives one fetch-and-store cycle per tick of a fixed interval."""

    def __init__(
        self,
        store: SnapshotStore,
        source: QuoteSource,
        metrics: MetricsAggregator,
        interval: float = 30.0,
        retry: Optional[RetryExecutor] = None,
        stop_grace: float = DEFAULT_STOP_GRACE,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.store = store
        self.source = source
        self.metrics = metrics
        self.interval = float(interval)
        self.cycle_timeout = cycle_timeout_for(self.interval)
        self.retry = retry or RetryExecutor()
        self.stop_grace = stop_grace
        self.logger = logger or logging.getLogger("snapshot_service.poller")
        self._clock = clock

        self._lock = threading.Lock()
        self._running = False
        self._state = PollerState.IDLE
        self._stop_requested: Optional[asyncio.Event] = None
        self._done: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._persisting = False

    # --- Lifecycle ----------------------------------------------------------
    async def start(self, shutdown: Optional[asyncio.Event] = None) -> None:
        """Launch the polling loop; a no-op when it is already running.

        Returns as soon as the loop task is scheduled. ``shutdown`` is the
        caller's cancellation signal: once set, the in-flight cycle is
        cancelled and the loop ends with :class:`asyncio.CancelledError`.
        """

        with self._lock:
            if self._running:
                return
            self._running = True
            self._state = PollerState.RUNNING
            stop_requested = self._stop_requested = asyncio.Event()
            done = self._done = asyncio.Event()

        self.logger.info(
            "Starting poller", extra={"event": "poller_start", "interval_seconds": self.interval}
        )
        self._task = asyncio.create_task(
            self._run(stop_requested, done, shutdown or asyncio.Event()), name="price-poller"
        )

    async def stop(self) -> None:
        """Ask the loop to exit after the current cycle and wait for it.

        Raises:
            StopTimeoutError: the loop did not exit within ``stop_grace``
                seconds. The loop still exits on its own afterwards.
        """

        with self._lock:
            if not self._running:
                return
            if self._state is PollerState.RUNNING:
                self._state = PollerState.STOPPING
            stop_requested, done = self._stop_requested, self._done

        self.logger.info("Stopping poller", extra={"event": "poller_stopping"})
        stop_requested.set()
        try:
            await asyncio.wait_for(done.wait(), timeout=self.stop_grace)
        except asyncio.TimeoutError:
            raise StopTimeoutError(f"poller did not stop within {self.stop_grace}s") from None

    def is_running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def state(self) -> PollerState:
        with self._lock:
            return self._state

    async def wait(self) -> None:
        """Wait for the loop to end, re-raising its cancellation if any."""

        task = self._task
        if task is None:
            return
        await asyncio.wait({task})
        if task.cancelled():
            raise asyncio.CancelledError()
        task.result()

    async def _run(self, stop_requested: asyncio.Event, done: asyncio.Event, shutdown: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        cancelled = False
        try:
            next_tick = loop.time()
            while True:
                if shutdown.is_set():
                    cancelled = True
                    break
                await self._run_cycle(shutdown)
                if shutdown.is_set():
                    cancelled = True
                    break
                if stop_requested.is_set():
                    break

                next_tick += self.interval
                now = loop.time()
                while next_tick <= now:
                    next_tick += self.interval
                fired = await self._wait_for_signal(stop_requested, shutdown, timeout=next_tick - now)
                if fired is shutdown:
                    cancelled = True
                    break
                if fired is stop_requested:
                    break
        except asyncio.CancelledError:
            cancelled = True
            raise
        finally:
            with self._lock:
                self._running = False
                self._state = PollerState.IDLE
            if cancelled:
                self.logger.info("Poller context cancelled", extra={"event": "poller_cancelled"})
            else:
                self.logger.info("Poller stopped", extra={"event": "poller_stopped"})
            done.set()

        if cancelled:
            raise asyncio.CancelledError()

    async def _wait_for_signal(
        self, stop_requested: asyncio.Event, shutdown: asyncio.Event, timeout: float
    ) -> Optional[asyncio.Event]:
        """Sleep until the next tick; return whichever event fired first."""

        waiters = {
            asyncio.ensure_future(shutdown.wait()): shutdown,
            asyncio.ensure_future(stop_requested.wait()): stop_requested,
        }
        try:
            finished, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
        if shutdown.is_set():
            return shutdown
        if finished:
            return waiters[finished.pop()]
        return None

    async def _run_cycle(self, shutdown: asyncio.Event) -> Optional[PollOutcome]:
        """Run :meth:`poll_once` bounded by the cycle timeout and ``shutdown``."""

        started = self._clock()
        cycle = asyncio.ensure_future(self.poll_once(deadline=started + self.cycle_timeout))
        interrupt = asyncio.ensure_future(shutdown.wait())
        try:
            finished, _ = await asyncio.wait(
                {cycle, interrupt}, timeout=self.cycle_timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            cycle.cancel()
            raise
        finally:
            interrupt.cancel()

        if cycle in finished:
            return self._cycle_result(cycle)

        if not shutdown.is_set() and self._persisting:
            # A started write commits regardless; its result decides the outcome.
            self.logger.warning(
                "Poll cycle exceeded %.1fs while storing, waiting for the write", self.cycle_timeout,
                extra={"event": "poll_overrun", "timeout_seconds": self.cycle_timeout},
            )
            await asyncio.wait({cycle})
            return self._cycle_result(cycle)

        cycle.cancel()
        await asyncio.gather(cycle, return_exceptions=True)
        if shutdown.is_set():
            self.logger.info("Poll cycle interrupted by shutdown", extra={"event": "poll_interrupted"})
            return None

        self.logger.error(
            "Poll cycle timed out after %.1fs", self.cycle_timeout,
            extra={"event": "poll_timeout", "timeout_seconds": self.cycle_timeout},
        )
        return self._record(
            False, started, error=asyncio.TimeoutError(f"poll exceeded {self.cycle_timeout}s")
        )

    def _cycle_result(self, cycle: "asyncio.Future[Optional[PollOutcome]]") -> Optional[PollOutcome]:
        try:
            return cycle.result()
        except Exception:
            self.logger.exception("Poll cycle crashed", extra={"event": "poll_crashed"})
            return None

    # --- Cycle ----------------------------------------------------------------
    async def poll_once(self, deadline: Optional[float] = None) -> Optional[PollOutcome]:
        """Fetch and store prices for every active instrument once.

        Returns ``None`` when no instrument is active; nothing is recorded in
        that case. Every other path records exactly one outcome. When
        ``deadline`` (on the scheduler clock) has passed before the write
        starts, the batch is not written and the cycle counts as failed.
        """

        started = self._clock()
        try:
            instruments = await asyncio.to_thread(self.store.list_active_instruments)
        except Exception as exc:
            self.logger.error(
                "Failed to list active symbols: %s", exc, extra={"event": "poll_failed", "stage": "list"}
            )
            return self._record(False, started, error=exc)

        if not instruments:
            self.logger.debug("No active symbols to poll", extra={"event": "poll_skipped"})
            return None

        by_symbol = {instrument.name: instrument for instrument in instruments}
        symbols = list(by_symbol)
        self.logger.debug("Polling prices", extra={"event": "poll_started", "symbols": len(symbols)})

        try:
            quotes = await self.retry.execute(lambda: asyncio.to_thread(self.source.fetch_quotes, symbols))
        except Exception as exc:
            self.logger.error(
                "Failed to fetch prices from exchange: %s", exc,
                extra={"event": "poll_failed", "stage": "fetch"},
            )
            return self._record(False, started, error=exc)

        points = self._build_batch(by_symbol, quotes)
        if not points:
            self.logger.warning("No prices to store", extra={"event": "poll_empty", "symbols": len(symbols)})
            return self._record(True, started)

        if deadline is not None and self._clock() >= deadline:
            self.logger.error(
                "Poll deadline passed before storing, dropping %s prices", len(points),
                extra={"event": "poll_failed", "stage": "deadline"},
            )
            return self._record(False, started, error=asyncio.TimeoutError("poll deadline passed before write"))

        self._persisting = True
        try:
            await asyncio.shield(asyncio.to_thread(self.store.persist_batch, points))
        except Exception as exc:
            self.logger.error(
                "Failed to store snapshots: %s", exc, extra={"event": "poll_failed", "stage": "persist"}
            )
            return self._record(False, started, error=exc)
        finally:
            self._persisting = False

        outcome = self._record(True, started, stored=len(points))
        self.logger.info(
            "Poll completed",
            extra={
                "event": "poll_completed",
                "symbols": len(symbols),
                "snapshots": len(points),
                "duration_ms": round(outcome.duration * 1000.0, 3),
            },
        )
        return outcome

    def _build_batch(self, by_symbol: dict, quotes: List[Quote]) -> List[PricePoint]:
        # Quotes for symbols deactivated mid-cycle are dropped.
        captured_at = utcnow()
        return [
            PricePoint(
                instrument_id=by_symbol[quote.symbol].id,
                symbol=quote.symbol,
                price=quote.price,
                captured_at=captured_at,
            )
            for quote in quotes
            if quote.symbol in by_symbol
        ]

    def _record(
        self, succeeded: bool, started: float, stored: int = 0, error: Optional[BaseException] = None
    ) -> PollOutcome:
        duration = max(self._clock() - started, 0.0)
        if succeeded:
            self.metrics.record_success(duration)
        else:
            self.metrics.record_failure(duration)
        return PollOutcome(succeeded=succeeded, duration=duration, completed_at=utcnow(), stored=stored, error=error)


__all__ = ["PollingScheduler", "PollerState", "cycle_timeout_for"]
