"""Application services layered over storage and the exchange client."""

from .prices import PriceQueryService
from .retention import RetentionPruner
from .status import StatusService
from .symbols import InstrumentRegistry

__all__ = [
    "InstrumentRegistry",
    "PriceQueryService",
    "RetentionPruner",
    "StatusService",
]
