"""
Core types for the ingestion pipeline.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional


class StreamState(Enum):
    """Lifecycle of the event stream connection."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    READING = "reading"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


@dataclass
class IngestionStats:
    """Counters shared by the decoder, ledger and stream of one pipeline."""
    messages_received: int = 0
    messages_ignored: int = 0
    events_decoded: int = 0
    decode_errors: int = 0
    events_stored: int = 0
    persistence_errors: int = 0
    epoch_fetch_errors: int = 0
    connections_established: int = 0
    reconnect_attempts: int = 0
    start_time: Optional[datetime] = None
    last_message_time: Optional[datetime] = None
    last_event_time: Optional[datetime] = None

    def mark_message(self) -> None:
        self.messages_received += 1
        self.last_message_time = datetime.now(timezone.utc)

    def mark_event_stored(self) -> None:
        self.events_stored += 1
        self.last_event_time = datetime.now(timezone.utc)

    def snapshot(self) -> Dict[str, Any]:
        """JSON-friendly copy of the counters."""
        data = asdict(self)
        for key in ("start_time", "last_message_time", "last_event_time"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data
