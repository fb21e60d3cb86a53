"""
Epoch oracle: resolves the active epoch window from the Soarchain REST API.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

import aiohttp
import structlog

from soar_observer.core.config import settings
from soar_observer.core.exceptions import EpochFetchError
from soar_observer.utils.timeutils import parse_duration, parse_rfc3339


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EpochWindow:
    """Current epoch as reported by the chain."""
    identifier: str
    duration: timedelta
    epoch_number: int
    start_time: datetime

    @property
    def end_time(self) -> datetime:
        return self.start_time + self.duration

    @property
    def duration_seconds(self) -> float:
        return self.duration.total_seconds()


def parse_epoch_payload(payload: Any) -> EpochWindow:
    """
    Build an EpochWindow from the ``/soarchain/epoch/<id>`` response body.

    Expected structure:
        {"epoch": {"identifier": "day", "duration": "86400s",
                   "current_epoch": "33",
                   "current_epoch_start_time": "2025-01-16T09:04:54.532413149Z"}}
    """
    if not isinstance(payload, Mapping):
        raise EpochFetchError("Epoch response is not a JSON object")

    epoch = payload.get("epoch")
    if not isinstance(epoch, Mapping):
        raise EpochFetchError("Epoch response has no 'epoch' object")

    duration_text = str(epoch.get("duration") or "")
    if not duration_text.endswith("s"):
        raise EpochFetchError(
            f"Epoch duration does not end with 's': {duration_text!r}",
            {"duration": duration_text},
        )
    try:
        duration = parse_duration(duration_text)
    except ValueError as e:
        raise EpochFetchError(f"Failed to parse epoch duration: {e}") from e
    if duration <= timedelta(0):
        raise EpochFetchError(f"Epoch duration must be positive: {duration_text!r}")

    try:
        epoch_number = int(str(epoch.get("current_epoch")), 10)
    except ValueError as e:
        raise EpochFetchError(f"Failed to parse current_epoch: {e}") from e

    try:
        start_time = parse_rfc3339(str(epoch.get("current_epoch_start_time") or ""))
    except ValueError as e:
        raise EpochFetchError(f"Failed to parse current_epoch_start_time: {e}") from e

    return EpochWindow(
        identifier=str(epoch.get("identifier") or ""),
        duration=duration,
        epoch_number=epoch_number,
        start_time=start_time,
    )


class EpochOracle:
    """
    Fetches the current epoch window over HTTP.

    With ``cache_ttl`` of 0 every call goes to the network. A positive TTL
    reuses the last window until the TTL elapses or the window ends.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        cache_ttl: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url = url or settings.epoch_api_url
        self.timeout = timeout if timeout is not None else settings.epoch_request_timeout
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.epoch_cache_ttl
        self._session = session
        self._cached: Optional[EpochWindow] = None
        self._cached_at = 0.0
        self.logger = logger.bind(service="epoch_oracle")

    async def get_current_epoch(self) -> EpochWindow:
        """Return the active epoch, honoring the cache policy."""
        if self._cache_valid():
            return self._cached

        window = await self.fetch_current_epoch()
        self._cached = window
        self._cached_at = time.monotonic()
        return window

    async def fetch_current_epoch(self) -> EpochWindow:
        """Fetch and parse the current epoch from the REST endpoint."""
        if self._session is not None:
            body = await self._get(self._session)
        else:
            async with aiohttp.ClientSession() as session:
                body = await self._get(session)

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise EpochFetchError(f"Failed to parse epoch JSON: {e}") from e

        window = parse_epoch_payload(payload)
        self.logger.debug(
            "Fetched current epoch",
            epoch=window.epoch_number,
            start=window.start_time.isoformat(),
            duration_seconds=window.duration_seconds,
        )
        return window

    def _cache_valid(self) -> bool:
        if self._cached is None or self.cache_ttl <= 0:
            return False
        if time.monotonic() - self._cached_at >= self.cache_ttl:
            return False
        return datetime.now(timezone.utc) < self._cached.end_time

    async def _get(self, session: aiohttp.ClientSession) -> str:
        try:
            async with session.get(
                self.url,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                if not 200 <= response.status < 300:
                    raise EpochFetchError(
                        f"Unexpected status code: {response.status}",
                        {"status": response.status, "url": self.url},
                    )
                return await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise EpochFetchError(f"Failed to fetch epoch info: {e}", {"url": self.url}) from e
