"""Binance REST client for spot ticker prices.

Every call makes a single HTTP attempt and classifies failures: connection
problems, rate limiting and server errors are raised as
:class:`RetryableError` so callers can wrap calls in a
:class:`~snapshot_service.infra.retry.RetryExecutor`; malformed requests and
unexpected responses are terminal.
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

import requests

from snapshot_service.errors import (
    ExchangeUnavailableError,
    InvalidResponseError,
    InvalidSymbolError,
    RateLimitedError,
)
from snapshot_service.infra.retry import RetryableError
from snapshot_service.models import Quote, utcnow

from .clients import ExchangeClient, ExchangeEndpoint

TICKER_PATH = "/api/v3/ticker/price"
PING_PATH = "/api/v3/ping"

# Binance answers 418 once an IP keeps ignoring 429s.
RATE_LIMIT_STATUSES = {418, 429}


class InvalidRequestError(InvalidResponseError):
    """The exchange rejected the request as malformed (HTTP 400)."""


class BinanceClient(ExchangeClient):
    """Ticker price lookups against the Binance spot API."""

    def __init__(
        self,
        endpoint: Optional[ExchangeEndpoint] = None,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.endpoint = endpoint or ExchangeEndpoint(name="binance", rest_url="https://api.binance.com")
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)

    # --- Prices -----------------------------------------------------------
    def fetch_quotes(self, symbols: Iterable[str]) -> List[Quote]:
        """Fetch current prices for ``symbols`` in one request."""

        names = list(symbols)
        if not names:
            return []

        payload = self._rest_get(TICKER_PATH, params={"symbols": json.dumps(names, separators=(",", ":"))})
        if not isinstance(payload, list):
            raise InvalidResponseError(f"expected a list of tickers, got {type(payload).__name__}")

        as_of = utcnow()
        quotes: List[Quote] = []
        for ticker in payload:
            quote = self._parse_ticker(ticker, as_of)
            if quote:
                quotes.append(quote)
        return quotes

    def fetch_quote(self, symbol: str) -> Quote:
        """Fetch the current price for one symbol."""

        try:
            payload = self._rest_get(TICKER_PATH, params={"symbol": symbol})
        except InvalidRequestError as exc:
            raise InvalidSymbolError(f"unknown symbol: {symbol}") from exc

        if not isinstance(payload, dict):
            raise InvalidResponseError(f"expected a ticker object, got {type(payload).__name__}")
        quote = self._parse_ticker(payload, utcnow())
        if quote is None:
            raise InvalidResponseError(f"unparseable ticker for {symbol}: {payload!r}")
        return quote

    def validate_symbol(self, symbol: str) -> bool:
        """Return False when Binance does not list ``symbol``."""

        try:
            self.fetch_quote(symbol)
        except InvalidSymbolError:
            return False
        return True

    def ping(self) -> None:
        self._rest_get(PING_PATH)

    # --- Parsing ----------------------------------------------------------
    def _parse_ticker(self, ticker: Any, as_of) -> Optional[Quote]:
        if not isinstance(ticker, dict):
            return None
        symbol = ticker.get("symbol")
        raw_price = ticker.get("price")
        if not symbol or raw_price is None:
            return None
        try:
            price = Decimal(str(raw_price))
        except InvalidOperation:
            self.logger.warning(
                "Invalid price format for %s: %r", symbol, raw_price,
                extra={"event": "invalid_price", "symbol": symbol},
            )
            return None
        return Quote(symbol=str(symbol), price=price, as_of=as_of)

    # --- REST helpers -----------------------------------------------------
    def _rest_get(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        url = f"{self.endpoint.rest_url.rstrip('/')}{path}"
        try:
            response = self.session.get(url, params=params, headers=self._headers(), timeout=self.endpoint.timeout)
        except requests.RequestException as exc:
            self.logger.debug("GET %s failed: %s", url, exc)
            raise RetryableError(ExchangeUnavailableError(f"request to {url} failed: {exc}")) from exc

        status = response.status_code
        if status in RATE_LIMIT_STATUSES:
            self.logger.warning("Rate limited by exchange", extra={"event": "rate_limited", "status": status})
            raise RetryableError(RateLimitedError(f"rate limited by exchange (HTTP {status})"))
        if status >= 500:
            self.logger.warning("Exchange server error", extra={"event": "exchange_error", "status": status})
            raise RetryableError(ExchangeUnavailableError(f"exchange unavailable (HTTP {status})"))
        if status == 400:
            raise InvalidRequestError(f"request rejected: {response.text[:200]}")
        if status != 200:
            self.logger.error(
                "Unexpected response from %s", url,
                extra={"event": "unexpected_response", "status": status, "body": response.text[:500]},
            )
            raise InvalidResponseError(f"unexpected response status {status}")

        try:
            return response.json()
        except ValueError as exc:
            raise InvalidResponseError(f"failed to decode response from {url}") from exc

    def _headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}


__all__ = ["BinanceClient", "InvalidRequestError"]
