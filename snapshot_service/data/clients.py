"""Client interfaces for fetching prices from an exchange."""

from dataclasses import dataclass
from typing import Iterable, List, Protocol

from snapshot_service.models import Quote


@dataclass(frozen=True)
class ExchangeEndpoint:
    """Connection details for an exchange.

    Attributes:
        name: Human readable exchange identifier.
        rest_url: Base REST endpoint for HTTP requests.
        timeout: Per-request timeout in seconds.
    """

    name: str
    rest_url: str
    timeout: float = 10.0


class QuoteSource(Protocol):
    """Protocol consumed by the poller.

    Transient failures (network, rate limiting, server errors) are raised as
    :class:`~snapshot_service.infra.retry.RetryableError`; anything else is
    permanent.
    """

    def fetch_quotes(self, symbols: Iterable[str]) -> List[Quote]:
        """Return quotes for the symbols the exchange knows; may be a subset."""


class ExchangeClient(QuoteSource, Protocol):
    """Full exchange surface used by the registry and health checks."""

    endpoint: ExchangeEndpoint

    def fetch_quote(self, symbol: str) -> Quote:
        """Return the current quote for a single symbol."""

    def validate_symbol(self, symbol: str) -> bool:
        """Return True when the exchange lists ``symbol``."""

    def ping(self) -> None:
        """Raise when the exchange is unreachable."""
