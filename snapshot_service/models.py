"""Domain records for tracked instruments, quotes, and captured price points."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from snapshot_service.errors import InvalidSymbolError

SYMBOL_PATTERN = re.compile(r"[A-Z0-9]{2,20}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_symbol(name: str) -> str:
    """Trim and upper-case a user supplied symbol."""

    return (name or "").strip().upper()


def validate_symbol_name(name: str) -> str:
    """Return ``name`` if it is 2-20 uppercase ASCII letters or digits.

    Raises:
        InvalidSymbolError: when the name does not match the format.
    """

    if not name or not SYMBOL_PATTERN.fullmatch(name):
        raise InvalidSymbolError(f"invalid symbol format: {name!r}")
    return name


@dataclass
class Instrument:
    """A tracked symbol as known to the instrument registry.

    Attributes:
        id: Storage identifier, ``0`` until persisted.
        name: Normalized symbol, e.g. ``BTCUSDT``.
        active: Whether the poller should fetch prices for it.
    """

    name: str
    id: int = 0
    active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def create(cls, name: str) -> "Instrument":
        """Normalize and validate ``name`` and return a new active instrument."""

        normalized = validate_symbol_name(normalize_symbol(name))
        now = utcnow()
        return cls(name=normalized, active=True, created_at=now, updated_at=now)

    def deactivate(self) -> None:
        self.active = False
        self.updated_at = utcnow()

    def activate(self) -> None:
        self.active = True
        self.updated_at = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "active": self.active,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class Quote:
    """Current price for a symbol as returned by the quote source."""

    symbol: str
    price: Decimal
    as_of: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class PricePoint:
    """A captured price, one element of a persisted batch."""

    instrument_id: int
    symbol: str
    price: Decimal
    captured_at: datetime
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol_id": self.instrument_id,
            "symbol": self.symbol,
            "price": str(self.price),
            "timestamp": self.captured_at.isoformat(),
        }


@dataclass(frozen=True)
class PollOutcome:
    """Classification and timing of one completed poll cycle."""

    succeeded: bool
    duration: float
    completed_at: datetime
    stored: int = 0
    error: Optional[BaseException] = None


__all__ = [
    "SYMBOL_PATTERN",
    "Instrument",
    "Quote",
    "PricePoint",
    "PollOutcome",
    "normalize_symbol",
    "validate_symbol_name",
    "utcnow",
]
