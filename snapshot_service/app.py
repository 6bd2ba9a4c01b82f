"""Service entry point wiring the poller, storage, exchange client and API."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fastapi import FastAPI

from snapshot_service.dashboard.app import create_app, run_dashboard
from snapshot_service.data.binance_client import BinanceClient
from snapshot_service.data.clients import ExchangeEndpoint
from snapshot_service.data.polling import PollingScheduler
from snapshot_service.errors import StopTimeoutError
from snapshot_service.infra.config import AppConfig, load_config
from snapshot_service.infra.logging import configure_logging
from snapshot_service.infra.metrics import MetricsAggregator
from snapshot_service.infra.persistence import SQLiteSnapshotStore
from snapshot_service.infra.retry import RetryExecutor
from snapshot_service.services import InstrumentRegistry, PriceQueryService, RetentionPruner, StatusService


@dataclass
class Service:
    """Everything the running process owns."""

    config: AppConfig
    store: SQLiteSnapshotStore
    client: BinanceClient
    metrics: MetricsAggregator
    poller: PollingScheduler
    pruner: RetentionPruner
    app: FastAPI


def build_service(config: AppConfig, logger: Optional[logging.Logger] = None) -> Service:
    logger = logger or logging.getLogger("snapshot_service")
    store = SQLiteSnapshotStore(Path(config.persistence.database_path))
    client = BinanceClient(
        endpoint=ExchangeEndpoint(
            name=config.exchange.name,
            rest_url=config.exchange.base_url,
            timeout=config.exchange.timeout_seconds,
        ),
        logger=logger.getChild("exchange"),
    )
    retry = RetryExecutor(config.exchange.retry.to_policy(), logger=logger.getChild("retry"))
    metrics = MetricsAggregator(
        metrics_file=Path(config.persistence.metrics_file),
        emit_textfile=config.persistence.emit_metrics_textfile,
        logger=logger.getChild("metrics"),
    )
    poller = PollingScheduler(
        store,
        client,
        metrics,
        interval=config.poller.interval_seconds,
        retry=retry,
        stop_grace=config.poller.stop_grace_seconds,
        logger=logger.getChild("poller"),
    )
    pruner = RetentionPruner(
        store,
        retention_days=config.poller.retention_days,
        interval=config.poller.prune_interval_seconds,
        logger=logger.getChild("retention"),
    )
    app = create_app(
        InstrumentRegistry(store, client, retry=retry, logger=logger.getChild("symbols")),
        PriceQueryService(store),
        StatusService(store, client, metrics, logger=logger.getChild("status")),
    )
    return Service(config, store, client, metrics, poller, pruner, app)


async def stop_poller(poller: PollingScheduler, abort: asyncio.Event, logger: logging.Logger) -> None:
    """Stop the poller gracefully, cancelling the in-flight cycle once the grace period runs out.

    ``abort`` must be the event the poller was started with. Returns after the
    polling loop has ended.
    """

    try:
        await poller.stop()
    except StopTimeoutError as exc:
        logger.error("Poller shutdown timed out, cancelling the in-flight cycle: %s", exc)
        abort.set()
    with contextlib.suppress(asyncio.CancelledError):
        await poller.wait()


async def run_service(config_path: Optional[str]) -> None:
    cfg = load_config(config_path)
    configure_logging(cfg.logging.level, cfg.logging.format)
    cfg.validate()
    logger = logging.getLogger("snapshot_service")

    service = build_service(cfg, logger)
    shutdown = asyncio.Event()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            asyncio.get_running_loop().add_signal_handler(sig, shutdown.set)
        except NotImplementedError:
            # Windows/limited environments
            pass

    abort = asyncio.Event()
    await service.poller.start(abort)
    tasks = [
        asyncio.create_task(service.pruner.run(shutdown)),
        asyncio.create_task(run_dashboard(cfg.dashboard, service.app)),
    ]
    logger.info(
        "Service started",
        extra={
            "event": "service_started",
            "interval_seconds": cfg.poller.interval_seconds,
            "port": cfg.dashboard.port if cfg.dashboard.enable else None,
        },
    )

    await shutdown.wait()
    logger.info("Shutting down", extra={"event": "service_stopping"})
    await stop_poller(service.poller, abort, logger)
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


def main() -> None:
    parser = argparse.ArgumentParser(description="Price snapshot service")
    parser.add_argument(
        "--config", default=os.getenv("CONFIG_PATH", "config/settings.example.yaml"), help="Path to a YAML config file"
    )
    args = parser.parse_args()

    asyncio.run(run_service(args.config))


if __name__ == "__main__":
    main()
