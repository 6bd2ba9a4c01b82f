import asyncio
import logging
import unittest
from decimal import Decimal

from snapshot_service.app import stop_poller
from snapshot_service.data.polling import PollingScheduler
from snapshot_service.infra.metrics import AggregatedMetrics, MetricsAggregator
from snapshot_service.infra.retry import RetryExecutor, RetryPolicy
from snapshot_service.models import Instrument, Quote


class StubStore:
    def __init__(self) -> None:
        self.batches: list[list] = []

    def list_active_instruments(self):
        return [Instrument(name="BTCUSDT", id=1)]

    def persist_batch(self, points) -> None:
        self.batches.append(list(points))


class HangingSource:
    """Blocks every fetch until released."""

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        await self.release.wait()
        return [Quote(symbol="BTCUSDT", price=Decimal("1"))]


class HangingRetry(RetryExecutor):
    def __init__(self, source: HangingSource) -> None:
        super().__init__(RetryPolicy(max_retries=0))
        self.source = source

    async def execute(self, work):
        return await self.source.fetch()


class StopPollerTest(unittest.IsolatedAsyncioTestCase):
    async def test_graceful_stop_lets_cycle_finish(self) -> None:
        store = StubStore()
        source = HangingSource()
        metrics = MetricsAggregator()
        poller = PollingScheduler(store, None, metrics, interval=60.0, retry=HangingRetry(source))
        abort = asyncio.Event()

        await poller.start(abort)
        await asyncio.sleep(0.02)
        asyncio.get_running_loop().call_later(0.05, source.release.set)
        await stop_poller(poller, abort, logging.getLogger("test"))

        self.assertFalse(poller.is_running())
        self.assertFalse(abort.is_set())
        self.assertEqual(len(store.batches), 1)
        self.assertEqual(metrics.snapshot().success_count, 1)

    async def test_cancels_cycle_after_grace_period(self) -> None:
        store = StubStore()
        source = HangingSource()
        metrics = MetricsAggregator()
        poller = PollingScheduler(
            store, None, metrics, interval=60.0, retry=HangingRetry(source), stop_grace=0.05
        )
        abort = asyncio.Event()

        await poller.start(abort)
        await asyncio.sleep(0.02)
        await asyncio.wait_for(stop_poller(poller, abort, logging.getLogger("test")), timeout=1.0)

        self.assertTrue(abort.is_set())
        self.assertFalse(poller.is_running())
        self.assertEqual(source.calls, 1)
        self.assertEqual(store.batches, [])
        self.assertEqual(metrics.snapshot(), AggregatedMetrics())


if __name__ == "__main__":
    unittest.main()
