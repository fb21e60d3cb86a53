"""
Ingestion pipeline for runner challenge earnings.
"""

from .decoder import DecodedEvent, EventDecoder, parse_earnings
from .epoch_oracle import EpochOracle, EpochWindow
from .ledger import LedgerStore
from .stream import StreamConnection
from .types import IngestionStats, StreamState

__all__ = [
    "DecodedEvent",
    "EventDecoder",
    "parse_earnings",
    "EpochOracle",
    "EpochWindow",
    "LedgerStore",
    "StreamConnection",
    "IngestionStats",
    "StreamState",
]
