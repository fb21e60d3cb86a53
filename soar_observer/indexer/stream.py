"""
Tendermint websocket subscription for runner challenge transactions.

One connection at a time, one message at a time: each frame is decoded and
fully persisted before the next ``recv``. Transport failures never end the
loop; the connection is re-established until ``stop()`` is called.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import structlog
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from soar_observer.core.config import settings
from soar_observer.core.exceptions import (
    EpochFetchError,
    PersistenceError,
    StreamConnectionError,
)
from .decoder import EventDecoder, RawMessage
from .epoch_oracle import EpochOracle
from .ledger import LedgerStore
from .types import IngestionStats, StreamState


logger = structlog.get_logger(__name__)

Connector = Callable[..., Awaitable[Any]]

SUBSCRIPTION_REQUEST_ID = 1


class StreamConnection:
    """Supervised websocket reader feeding the decoder and ledger."""

    def __init__(
        self,
        decoder: EventDecoder,
        oracle: EpochOracle,
        ledger: LedgerStore,
        url: Optional[str] = None,
        stats: Optional[IngestionStats] = None,
        connector: Optional[Connector] = None,
        subscription_query: Optional[str] = None,
        reconnect_delay: Optional[float] = None,
        backoff_factor: Optional[float] = None,
        max_delay: Optional[float] = None,
        open_timeout: Optional[float] = None,
    ):
        self.decoder = decoder
        self.oracle = oracle
        self.ledger = ledger
        self.url = url or settings.rpc_ws_url
        self.stats = stats or IngestionStats()
        self.subscription_query = subscription_query or settings.subscription_query
        self.reconnect_delay = (
            reconnect_delay if reconnect_delay is not None else settings.reconnect_delay
        )
        self.backoff_factor = (
            backoff_factor if backoff_factor is not None else settings.reconnect_backoff_factor
        )
        self.max_delay = max_delay if max_delay is not None else settings.reconnect_max_delay
        self.open_timeout = open_timeout if open_timeout is not None else settings.ws_open_timeout

        self._connector = connector or websockets.connect
        self._transport: Optional[Any] = None
        self._state = StreamState.DISCONNECTED
        self._stop_event = asyncio.Event()
        self._current_delay = self.reconnect_delay
        self.subscription_confirmed = False
        self.logger = logger.bind(service="stream_connection")

    @property
    def state(self) -> StreamState:
        return self._state

    def _set_state(self, state: StreamState) -> None:
        if state is not self._state:
            self.logger.debug("Stream state change", previous=self._state.value, state=state.value)
            self._state = state

    def subscription_request(self) -> str:
        return json.dumps({
            "jsonrpc": "2.0",
            "method": "subscribe",
            "id": SUBSCRIPTION_REQUEST_ID,
            "params": {"query": self.subscription_query},
        })

    async def connect(self) -> None:
        """
        Open the transport and send the subscription request.

        Raises:
            StreamConnectionError: if the transport cannot be opened or the
                subscription cannot be written. The transport is closed
                before raising in the latter case.
        """
        self._set_state(StreamState.CONNECTING)
        self.subscription_confirmed = False
        self.logger.info("Connecting to event stream", url=self.url)

        kwargs: Dict[str, Any] = {}
        if self.open_timeout is not None:
            kwargs["open_timeout"] = self.open_timeout

        try:
            transport = await self._connector(self.url, **kwargs)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise StreamConnectionError(
                f"Failed to connect to {self.url}: {e}", {"url": self.url}
            ) from e

        try:
            await transport.send(self.subscription_request())
        except (OSError, WebSocketException) as e:
            await self._close(transport)
            raise StreamConnectionError(
                f"Failed to send subscription request: {e}", {"url": self.url}
            ) from e

        self._transport = transport
        self.stats.connections_established += 1
        self._set_state(StreamState.SUBSCRIBED)
        self.logger.info("Subscribed to event stream", query=self.subscription_query)

    async def run(self) -> None:
        """Connect, read and reconnect until ``stop()`` is called."""
        if self.stats.start_time is None:
            self.stats.start_time = datetime.now(timezone.utc)
        self._current_delay = self.reconnect_delay

        while not self._stop_event.is_set():
            try:
                await self.connect()
            except StreamConnectionError as e:
                self.logger.warning("Stream connection failed", error=e.message)
                await self._wait_before_reconnect()
                continue

            try:
                await self._read_loop()
            except StreamConnectionError as e:
                if not self._stop_event.is_set():
                    self.logger.warning("Stream read failed", error=e.message)
            finally:
                await self._close_transport()

            if not self._stop_event.is_set():
                await self._wait_before_reconnect()

        self._set_state(StreamState.STOPPED)
        self.logger.info("Event stream stopped")

    async def stop(self) -> None:
        """Interrupt reconnect waits and blocked reads, then close the transport."""
        self.logger.info("Stopping event stream")
        self._stop_event.set()
        await self._close_transport()
        self._set_state(StreamState.STOPPED)

    async def _read_loop(self) -> None:
        self._set_state(StreamState.READING)
        while not self._stop_event.is_set():
            try:
                raw = await self._transport.recv()
            except (ConnectionClosed, WebSocketException, OSError) as e:
                raise StreamConnectionError(f"Stream read failed: {e}") from e

            # A successful read resets any accumulated backoff
            self._current_delay = self.reconnect_delay
            try:
                await self.handle_message(raw)
            except Exception as e:
                self.logger.error("Unexpected error handling stream message", error=str(e))

    async def handle_message(self, raw: RawMessage) -> int:
        """Decode one frame and persist its events. Returns the number applied."""
        self.stats.mark_message()

        message = self.decoder.load(raw)
        if message is None:
            self.stats.messages_ignored += 1
            return 0

        if self._handle_rpc_reply(message):
            return 0

        events = self.decoder.decode(message)
        if not events:
            self.stats.messages_ignored += 1
            return 0

        try:
            epoch = await self.oracle.get_current_epoch()
        except EpochFetchError as e:
            self.stats.epoch_fetch_errors += 1
            self.logger.error(
                "Dropping message batch, epoch unavailable",
                events=len(events),
                error=e.message,
            )
            return 0

        applied = 0
        for event in events:
            try:
                await self.ledger.apply_event(event, epoch)
                applied += 1
            except PersistenceError as e:
                self.logger.warning("Skipping event", address=event.address, error=e.message)

        self.logger.debug(
            "Processed runner challenge message",
            events=len(events),
            applied=applied,
            epoch=epoch.epoch_number,
        )
        return applied

    def _handle_rpc_reply(self, message: Mapping[str, Any]) -> bool:
        if "error" in message:
            self.logger.warning("Event stream returned an RPC error", error=message["error"])
            return True
        if message.get("id") == SUBSCRIPTION_REQUEST_ID and message.get("result") == {}:
            self.subscription_confirmed = True
            self.logger.info("Subscription confirmed", query=self.subscription_query)
            return True
        return False

    async def _wait_before_reconnect(self) -> None:
        if self._stop_event.is_set():
            return
        self._set_state(StreamState.RECONNECTING)
        self.stats.reconnect_attempts += 1
        delay = self._current_delay
        self.logger.info(
            "Reconnecting to event stream",
            delay_seconds=delay,
            attempt=self.stats.reconnect_attempts,
        )
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
        ceiling = max(self.max_delay, self.reconnect_delay)
        self._current_delay = min(delay * self.backoff_factor, ceiling)

    async def _close_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            await self._close(transport)

    async def _close(self, transport: Any) -> None:
        try:
            await transport.close()
        except (OSError, WebSocketException) as e:
            self.logger.debug("Error closing stream transport", error=str(e))

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "url": self.url,
            "subscription_confirmed": self.subscription_confirmed,
            "reconnect_delay": self._current_delay,
            "stats": self.stats.snapshot(),
        }
