"""Instrument registry: which symbols the poller tracks."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from snapshot_service.data.clients import ExchangeClient
from snapshot_service.errors import ExchangeUnavailableError, InvalidSymbolError, SymbolExistsError
from snapshot_service.infra.persistence import SQLiteSnapshotStore
from snapshot_service.infra.retry import RetryableError, RetryExecutor
from snapshot_service.models import Instrument, normalize_symbol


class InstrumentRegistry:
    """Adds, removes and lists tracked instruments."""

    def __init__(
        self,
        store: SQLiteSnapshotStore,
        exchange: ExchangeClient,
        retry: Optional[RetryExecutor] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.exchange = exchange
        self.retry = retry or RetryExecutor()
        self.logger = logger or logging.getLogger("snapshot_service.symbols")

    async def add_symbol(self, name: str) -> Instrument:
        """Start tracking ``name`` once the exchange confirms it is listed.

        Raises:
            InvalidSymbolError: malformed name or unknown to the exchange.
            SymbolExistsError: already tracked.
            ExchangeUnavailableError: the exchange could not be asked.
        """

        instrument = Instrument.create(name)

        if await asyncio.to_thread(self.store.instrument_exists, instrument.name):
            raise SymbolExistsError(f"symbol already exists: {instrument.name}")

        try:
            listed = await self.retry.execute(
                lambda: asyncio.to_thread(self.exchange.validate_symbol, instrument.name)
            )
        except (RetryableError, ExchangeUnavailableError) as exc:
            self.logger.error(
                "Failed to validate symbol on exchange: %s", exc,
                extra={"event": "symbol_validation_failed", "symbol": instrument.name},
            )
            raise ExchangeUnavailableError(f"could not validate {instrument.name}: {exc}") from exc
        if not listed:
            raise InvalidSymbolError(f"symbol not listed on exchange: {instrument.name}")

        created = await asyncio.to_thread(self.store.create_instrument, instrument)
        self.logger.info(
            "Symbol added", extra={"event": "symbol_added", "symbol": created.name, "id": created.id}
        )
        return created

    async def remove_symbol(self, name: str) -> None:
        symbol = normalize_symbol(name)
        await asyncio.to_thread(self.store.delete_instrument, symbol)
        self.logger.info("Symbol removed", extra={"event": "symbol_removed", "symbol": symbol})

    async def list_symbols(self) -> List[Instrument]:
        return await asyncio.to_thread(self.store.list_instruments)

    async def get_symbol(self, name: str) -> Instrument:
        return await asyncio.to_thread(self.store.get_instrument, normalize_symbol(name))

    async def symbol_exists(self, name: str) -> bool:
        return await asyncio.to_thread(self.store.instrument_exists, normalize_symbol(name))


__all__ = ["InstrumentRegistry"]
