"""Exchange access and the polling loop."""

from .binance_client import BinanceClient
from .clients import ExchangeClient, ExchangeEndpoint, QuoteSource
from .polling import PollerState, PollingScheduler

__all__ = [
    "BinanceClient",
    "ExchangeClient",
    "ExchangeEndpoint",
    "QuoteSource",
    "PollerState",
    "PollingScheduler",
]
