import dataclasses
import tempfile
import threading
import unittest
from datetime import datetime, timezone
from pathlib import Path

from snapshot_service.infra.metrics import AggregatedMetrics, MetricsAggregator

FIXED_NOW = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class MetricsAggregatorTest(unittest.TestCase):
    def test_initial_snapshot_is_empty(self) -> None:
        metrics = MetricsAggregator()

        snapshot = metrics.snapshot()

        self.assertEqual(snapshot, AggregatedMetrics())
        self.assertIsNone(snapshot.last_poll_time)
        self.assertEqual(snapshot.total_polls, 0)

    def test_records_successes_and_failures(self) -> None:
        metrics = MetricsAggregator(clock=lambda: FIXED_NOW)

        metrics.record_success(0.5)
        metrics.record_failure(1.5)
        metrics.record_success(0.25)
        snapshot = metrics.snapshot()

        self.assertEqual(snapshot.success_count, 2)
        self.assertEqual(snapshot.failure_count, 1)
        self.assertEqual(snapshot.last_poll_duration, 0.25)
        self.assertAlmostEqual(snapshot.total_poll_time, 2.25)
        self.assertEqual(snapshot.last_poll_time, FIXED_NOW)

    def test_snapshot_is_an_immutable_copy(self) -> None:
        metrics = MetricsAggregator()
        before = metrics.snapshot()

        metrics.record_success(1.0)

        self.assertEqual(before.success_count, 0)
        with self.assertRaises(dataclasses.FrozenInstanceError):
            before.success_count = 10  # type: ignore[misc]

    def test_to_dict_reports_milliseconds(self) -> None:
        metrics = MetricsAggregator(clock=lambda: FIXED_NOW)
        metrics.record_failure(0.0125)

        payload = metrics.snapshot().to_dict()

        self.assertEqual(payload["poll_error_count"], 1)
        self.assertEqual(payload["poll_success_count"], 0)
        self.assertEqual(payload["last_poll_duration_ms"], 12.5)
        self.assertEqual(payload["last_poll_time"], FIXED_NOW.isoformat())

    def test_readers_never_observe_torn_updates(self) -> None:
        metrics = MetricsAggregator()
        total = 2000
        violations: list[AggregatedMetrics] = []
        done = threading.Event()

        def writer() -> None:
            # The n-th record carries duration n, so a consistent view always
            # has last_poll_duration == total_polls.
            for n in range(1, total + 1):
                if n % 2:
                    metrics.record_success(float(n))
                else:
                    metrics.record_failure(float(n))
            done.set()

        def reader() -> None:
            while not done.is_set():
                snapshot = metrics.snapshot()
                if snapshot.last_poll_duration != float(snapshot.total_polls):
                    violations.append(snapshot)

        readers = [threading.Thread(target=reader) for _ in range(4)]
        for thread in readers:
            thread.start()
        writer_thread = threading.Thread(target=writer)
        writer_thread.start()
        writer_thread.join()
        for thread in readers:
            thread.join()

        self.assertEqual(violations, [])
        final = metrics.snapshot()
        self.assertEqual(final.success_count, total // 2)
        self.assertEqual(final.failure_count, total // 2)

    def test_concurrent_writers_do_not_lose_updates(self) -> None:
        metrics = MetricsAggregator()

        def worker() -> None:
            for _ in range(500):
                metrics.record_success(0.001)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(metrics.snapshot().success_count, 2000)

    def test_writes_prometheus_textfile_when_enabled(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "nested" / "metrics.prom"
            metrics = MetricsAggregator(metrics_file=path, emit_textfile=True, clock=lambda: FIXED_NOW)

            metrics.record_success(0.5)
            metrics.record_failure(0.25)

            content = path.read_text(encoding="utf-8")
            self.assertIn("poll_success_total 1", content)
            self.assertIn("poll_failure_total 1", content)
            self.assertIn("poll_last_duration_seconds 0.25", content)
            self.assertIn(f"poll_last_timestamp_seconds {FIXED_NOW.timestamp()}", content)

    def test_textfile_disabled_by_default(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "metrics.prom"
            metrics = MetricsAggregator(metrics_file=path)

            metrics.record_success(0.1)

            self.assertFalse(path.exists())


if __name__ == "__main__":
    unittest.main()
