"""
Decoder for runner challenge messages from the Tendermint event stream.

A matching message carries two parallel arrays under ``result.events``:

- ``message.client_data``: one JSON-encoded payload per rewarded client
- ``solana_address``: optional alternate address per client, aligned by index

Each payload is decoded independently so that a malformed entry only drops
itself, never the rest of the batch.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from soar_observer.core.config import settings
from soar_observer.core.exceptions import DecodeError
from .types import IngestionStats


logger = structlog.get_logger(__name__)

# Largest amount a BIGINT column holds
MAX_AMOUNT = 2 ** 63 - 1

RawMessage = Union[str, bytes, bytearray, Mapping[str, Any]]


def parse_earnings(value: Any, denoms: Optional[Iterable[str]] = None) -> int:
    """
    Normalize a chain earnings string such as ``"500000usoar"`` to base units.

    The first matching unit suffix is stripped and the remainder must be a
    plain base-10 integer no larger than ``MAX_AMOUNT``. Anything else
    yields 0.
    """
    if value is None:
        return 0
    text = str(value).strip()
    for denom in denoms if denoms is not None else settings.earnings_denoms:
        if denom and text.endswith(denom):
            text = text[: -len(denom)]
            break
    if not text or not text.isascii() or not text.isdigit():
        return 0
    amount = int(text)
    if amount > MAX_AMOUNT:
        return 0
    return amount


class AlternateSource(Enum):
    """Where a resolved alternate address came from."""
    EMBEDDED = "embedded"
    POSITIONAL = "positional"
    ABSENT = "absent"


@dataclass(frozen=True)
class AlternateAddress:
    """Alternate address resolution result for one client payload."""
    value: Optional[str]
    source: AlternateSource

    @classmethod
    def absent(cls) -> "AlternateAddress":
        return cls(value=None, source=AlternateSource.ABSENT)

    @property
    def present(self) -> bool:
        return self.source is not AlternateSource.ABSENT


@dataclass(frozen=True)
class DecodedEvent:
    """One client's earnings extracted from a runner challenge message."""
    address: str
    pub_key: str
    alternate: AlternateAddress
    raw_amount: str

    @property
    def alternate_address(self) -> Optional[str]:
        return self.alternate.value if self.alternate.present else None


class ClientPayload(BaseModel):
    """Per-client payload embedded in ``message.client_data``."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    address: str
    earnings: str = ""
    pubkey: str = ""
    solana_address: Optional[str] = Field(default=None, alias="solanaAddress")

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("address must not be empty")
        return v

    @field_validator("earnings", mode="before")
    @classmethod
    def coerce_earnings(cls, v: Any) -> Any:
        # Some encodings emit the amount as a bare JSON number
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        if v is None:
            return ""
        return v

    @field_validator("pubkey", mode="before")
    @classmethod
    def coerce_pubkey(cls, v: Any) -> Any:
        return "" if v is None else v


class EventDecoder:
    """
    Turns raw stream messages into ``DecodedEvent`` records.

    Irrelevant messages (heartbeats, subscription acks, other event types)
    decode to an empty list without raising.
    """

    def __init__(
        self,
        client_data_key: Optional[str] = None,
        alternate_address_keys: Optional[Sequence[str]] = None,
        earnings_denoms: Optional[Sequence[str]] = None,
        stats: Optional[IngestionStats] = None,
    ):
        self.client_data_key = client_data_key or settings.client_data_key
        self.alternate_address_keys = list(
            alternate_address_keys if alternate_address_keys is not None
            else settings.alternate_address_keys
        )
        self.earnings_denoms = list(
            earnings_denoms if earnings_denoms is not None else settings.earnings_denoms
        )
        self.stats = stats or IngestionStats()
        self.logger = logger.bind(service="event_decoder")

    def load(self, raw: RawMessage) -> Optional[Dict[str, Any]]:
        """Parse a raw frame into a mapping; None when it is not a JSON object."""
        if isinstance(raw, Mapping):
            return dict(raw)
        try:
            if isinstance(raw, (bytes, bytearray)):
                raw = raw.decode("utf-8")
            message = json.loads(raw)
        except ValueError as e:
            self.logger.warning("Discarding unparseable stream message", error=str(e))
            return None
        if not isinstance(message, dict):
            return None
        return message

    def normalize_amount(self, value: Any) -> int:
        return parse_earnings(value, self.earnings_denoms)

    def decode(self, raw: RawMessage) -> List[DecodedEvent]:
        """Decode every client payload in a message, skipping malformed ones."""
        message = self.load(raw)
        if message is None:
            return []

        events = self._extract_events(message)
        if events is None:
            return []

        client_data = self._as_list(events.get(self.client_data_key))
        if not client_data:
            return []

        alternates = self._alternate_list(events)
        if alternates and len(alternates) != len(client_data):
            self.logger.warning(
                "Alternate address list does not match client data list",
                client_data_count=len(client_data),
                alternate_count=len(alternates),
            )

        decoded: List[DecodedEvent] = []
        for index, element in enumerate(client_data):
            try:
                payload = self._parse_client_payload(element)
            except DecodeError as e:
                self.stats.decode_errors += 1
                self.logger.warning(
                    "Skipping malformed client payload",
                    index=index,
                    error=e.message,
                )
                continue

            decoded.append(
                DecodedEvent(
                    address=payload.address,
                    pub_key=payload.pubkey,
                    alternate=self._resolve_alternate(payload, index, alternates),
                    raw_amount=payload.earnings,
                )
            )

        self.stats.events_decoded += len(decoded)
        self.logger.debug(
            "Decoded runner challenge message",
            payloads=len(client_data),
            events=len(decoded),
        )
        return decoded

    @staticmethod
    def _extract_events(message: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        result = message.get("result")
        if not isinstance(result, Mapping):
            return None
        events = result.get("events")
        if not isinstance(events, Mapping):
            return None
        return events

    @staticmethod
    def _as_list(value: Any) -> List[Any]:
        if value is None:
            return []
        if isinstance(value, (str, Mapping)):
            return [value]
        if isinstance(value, list):
            return value
        return []

    def _alternate_list(self, events: Mapping[str, Any]) -> List[Any]:
        for key in self.alternate_address_keys:
            if key in events:
                return self._as_list(events[key])
        return []

    def _parse_client_payload(self, element: Any) -> ClientPayload:
        if isinstance(element, (str, bytes, bytearray)):
            try:
                element = json.loads(element)
            except ValueError as e:
                raise DecodeError(f"Client payload is not valid JSON: {e}") from e

        if not isinstance(element, Mapping):
            raise DecodeError(
                "Client payload is not an object",
                {"type": type(element).__name__},
            )

        try:
            return ClientPayload.model_validate(element)
        except ValidationError as e:
            raise DecodeError(
                "Client payload failed validation",
                {"errors": e.errors(include_url=False)},
            ) from e

    @staticmethod
    def _resolve_alternate(
        payload: ClientPayload,
        index: int,
        alternates: Sequence[Any],
    ) -> AlternateAddress:
        # Embedded value wins over the parallel list
        if payload.solana_address:
            return AlternateAddress(payload.solana_address, AlternateSource.EMBEDDED)
        if index < len(alternates):
            candidate = alternates[index]
            if isinstance(candidate, str) and candidate:
                return AlternateAddress(candidate, AlternateSource.POSITIONAL)
        return AlternateAddress.absent()
