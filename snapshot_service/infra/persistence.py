"""Persistence for tracked instruments and captured price points."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Iterator, List, Optional, Protocol, Sequence

from snapshot_service.errors import StorageError, SymbolExistsError, SymbolNotFoundError
from snapshot_service.models import Instrument, PricePoint, utcnow

DEFAULT_HISTORY_LIMIT = 100
MAX_HISTORY_LIMIT = 1000

SCHEMA = """
CREATE TABLE IF NOT EXISTS symbols (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_symbols_active ON symbols(active);
CREATE TABLE IF NOT EXISTS snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    symbol_id INTEGER NOT NULL REFERENCES symbols(id) ON DELETE CASCADE,
    symbol TEXT NOT NULL,
    price TEXT NOT NULL,
    timestamp TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_snapshots_symbol_timestamp ON snapshots(symbol, timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_snapshots_timestamp ON snapshots(timestamp DESC);
"""


class SnapshotStore(Protocol):
    """Storage contract consumed by the poller."""

    def list_active_instruments(self) -> List[Instrument]:
        """Return instruments the poller should fetch prices for."""

    def persist_batch(self, points: Sequence[PricePoint]) -> None:
        """Store every point or none of them."""


def clamp_limit(limit: Optional[int]) -> int:
    if not limit or limit <= 0:
        return DEFAULT_HISTORY_LIMIT
    return min(limit, MAX_HISTORY_LIMIT)


def _to_text(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_text(value: str) -> datetime:
    return datetime.fromisoformat(value).astimezone(timezone.utc)


class SQLiteSnapshotStore:
    """SQLite-backed instrument registry and price point store.

    Each call opens its own connection so the store can be used from worker
    threads (``asyncio.to_thread``) without sharing connection state.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    def _initialize(self) -> None:
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageError(str(exc)) from exc
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    # --- Instruments ------------------------------------------------------
    def create_instrument(self, instrument: Instrument) -> Instrument:
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "INSERT INTO symbols (name, active, created_at, updated_at) VALUES (?, ?, ?, ?)",
                    (
                        instrument.name,
                        int(instrument.active),
                        _to_text(instrument.created_at),
                        _to_text(instrument.updated_at),
                    ),
                )
                instrument.id = int(cursor.lastrowid)
        except StorageError as exc:
            if isinstance(exc.__cause__, sqlite3.IntegrityError):
                raise SymbolExistsError(f"symbol already exists: {instrument.name}") from exc
            raise
        return instrument

    def get_instrument(self, name: str) -> Instrument:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM symbols WHERE name = ?", (name,)).fetchone()
        if row is None:
            raise SymbolNotFoundError(f"symbol not found: {name}")
        return self._instrument_from_row(row)

    def list_instruments(self) -> List[Instrument]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM symbols ORDER BY name").fetchall()
        return [self._instrument_from_row(row) for row in rows]

    def list_active_instruments(self) -> List[Instrument]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM symbols WHERE active = 1 ORDER BY name").fetchall()
        return [self._instrument_from_row(row) for row in rows]

    def update_instrument(self, instrument: Instrument) -> None:
        instrument.updated_at = utcnow()
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE symbols SET active = ?, updated_at = ? WHERE name = ?",
                (int(instrument.active), _to_text(instrument.updated_at), instrument.name),
            )
            if cursor.rowcount == 0:
                raise SymbolNotFoundError(f"symbol not found: {instrument.name}")

    def delete_instrument(self, name: str) -> None:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM symbols WHERE name = ?", (name,))
            if cursor.rowcount == 0:
                raise SymbolNotFoundError(f"symbol not found: {name}")

    def instrument_exists(self, name: str) -> bool:
        with self._connect() as conn:
            row = conn.execute("SELECT 1 FROM symbols WHERE name = ?", (name,)).fetchone()
        return row is not None

    def count_instruments(self, active_only: bool = False) -> int:
        query = "SELECT COUNT(*) FROM symbols"
        if active_only:
            query += " WHERE active = 1"
        with self._connect() as conn:
            return int(conn.execute(query).fetchone()[0])

    # --- Price points -----------------------------------------------------
    def persist_batch(self, points: Sequence[PricePoint]) -> None:
        """Insert all points in a single transaction."""

        if not points:
            return
        with self._connect() as conn:
            conn.executemany(
                "INSERT INTO snapshots (symbol_id, symbol, price, timestamp) VALUES (?, ?, ?, ?)",
                [
                    (point.instrument_id, point.symbol, str(point.price), _to_text(point.captured_at))
                    for point in points
                ],
            )

    def latest_by_symbols(self, names: Sequence[str]) -> List[PricePoint]:
        if not names:
            return []
        placeholders = ",".join("?" for _ in names)
        query = f"""
            SELECT s.* FROM snapshots s
            JOIN (
                SELECT symbol, MAX(timestamp) AS latest FROM snapshots
                WHERE symbol IN ({placeholders}) GROUP BY symbol
            ) m ON s.symbol = m.symbol AND s.timestamp = m.latest
            ORDER BY s.symbol, s.id DESC
        """
        with self._connect() as conn:
            rows = conn.execute(query, list(names)).fetchall()

        latest: dict[str, PricePoint] = {}
        for row in rows:
            latest.setdefault(row["symbol"], self._point_from_row(row))
        return list(latest.values())

    def history(
        self,
        name: str,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[PricePoint]:
        """Return the newest points for ``name`` first, optionally time bounded."""

        clauses = ["symbol = ?"]
        params: list = [name]
        if since is not None:
            clauses.append("timestamp >= ?")
            params.append(_to_text(since))
        if until is not None:
            clauses.append("timestamp <= ?")
            params.append(_to_text(until))
        params.append(clamp_limit(limit))
        query = (
            f"SELECT * FROM snapshots WHERE {' AND '.join(clauses)} "
            "ORDER BY timestamp DESC, id DESC LIMIT ?"
        )
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._point_from_row(row) for row in rows]

    def count_snapshots(self, name: Optional[str] = None) -> int:
        with self._connect() as conn:
            if name is None:
                row = conn.execute("SELECT COUNT(*) FROM snapshots").fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM snapshots WHERE symbol = ?", (name,)).fetchone()
        return int(row[0])

    def prune(self, older_than: datetime) -> int:
        """Delete points captured before ``older_than``; returns the row count."""

        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM snapshots WHERE timestamp < ?", (_to_text(older_than),))
            return cursor.rowcount

    def ping(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    # --- Row mapping ------------------------------------------------------
    def _instrument_from_row(self, row: sqlite3.Row) -> Instrument:
        return Instrument(
            id=int(row["id"]),
            name=row["name"],
            active=bool(row["active"]),
            created_at=_from_text(row["created_at"]),
            updated_at=_from_text(row["updated_at"]),
        )

    def _point_from_row(self, row: sqlite3.Row) -> PricePoint:
        try:
            price = Decimal(row["price"])
        except InvalidOperation as exc:
            raise StorageError(f"corrupt price for {row['symbol']}: {row['price']!r}") from exc
        return PricePoint(
            id=int(row["id"]),
            instrument_id=int(row["symbol_id"]),
            symbol=row["symbol"],
            price=price,
            captured_at=_from_text(row["timestamp"]),
        )


__all__ = ["SnapshotStore", "SQLiteSnapshotStore", "clamp_limit", "DEFAULT_HISTORY_LIMIT", "MAX_HISTORY_LIMIT"]
