"""
Tests for the stream connection lifecycle and message pipeline.
"""

import asyncio
import json
from typing import List

import pytest
from websockets.exceptions import ConnectionClosed

from soar_observer.core.exceptions import EpochFetchError, PersistenceError, StreamConnectionError
from soar_observer.indexer.decoder import EventDecoder
from soar_observer.indexer.ledger import LedgerStore
from soar_observer.indexer.stream import StreamConnection
from soar_observer.indexer.types import IngestionStats, StreamState
from soar_observer.models import Client, ClientEarning, EpochEarnings


CLOSED = object()


class FakeTransport:
    """In-process websocket: replays queued frames, then blocks until closed."""

    def __init__(self, frames=(), fail_send=False):
        self.queue: asyncio.Queue = asyncio.Queue()
        for frame in frames:
            self.queue.put_nowait(frame)
        self.fail_send = fail_send
        self.sent: List[str] = []
        self.closed = False
        self.recv_started = asyncio.Event()

    async def send(self, data):
        if self.fail_send:
            raise OSError("broken pipe")
        self.sent.append(data)

    async def recv(self):
        self.recv_started.set()
        item = await self.queue.get()
        if item is CLOSED:
            raise ConnectionClosed(None, None)
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self):
        self.closed = True
        self.queue.put_nowait(CLOSED)


class FakeConnector:
    """Hands out prepared transports in order; exceptions are raised instead."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self, url, **kwargs):
        self.calls += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeOracle:

    def __init__(self, window, error=None):
        self.window = window
        self.error = error
        self.calls = 0

    async def get_current_epoch(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.window


class RecordingLedger:

    def __init__(self, fail_for=()):
        self.applied = []
        self.fail_for = set(fail_for)

    async def apply_event(self, event, epoch, observed_at=None):
        if event.address in self.fail_for:
            raise PersistenceError("rolled back")
        self.applied.append((event.address, epoch.epoch_number))
        return 0


class RecordingStream(StreamConnection):

    def __init__(self, *args, **kwargs):
        self.history: List[StreamState] = []
        super().__init__(*args, **kwargs)

    def _set_state(self, state):
        self.history.append(state)
        super()._set_state(state)


def challenge(*addresses, amount="1000000usoar"):
    client_data = [
        json.dumps({"address": a, "earnings": amount, "pubkey": f"PK-{a}"}) for a in addresses
    ]
    return json.dumps({
        "jsonrpc": "2.0",
        "id": 1,
        "result": {"events": {"message.client_data": client_data}},
    })


def build_stream(connector, oracle, ledger, stats=None, cls=StreamConnection, **kwargs):
    stats = stats or IngestionStats()
    kwargs.setdefault("reconnect_delay", 0.01)
    return cls(
        EventDecoder(stats=stats),
        oracle,
        ledger,
        url="ws://chain.test/websocket",
        stats=stats,
        connector=connector,
        subscription_query="tm.event='Tx' AND message.action='runner_challenge'",
        backoff_factor=1.0,
        max_delay=1.0,
        **kwargs,
    )


async def wait_for(predicate, timeout=2.0):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(_poll(), timeout)


class TestConnect:

    @pytest.mark.asyncio
    async def test_sends_subscription_request(self, epoch):
        transport = FakeTransport()
        stream = build_stream(FakeConnector(transport), FakeOracle(epoch), RecordingLedger())

        await stream.connect()

        assert stream.state is StreamState.SUBSCRIBED
        assert json.loads(transport.sent[0]) == {
            "jsonrpc": "2.0",
            "method": "subscribe",
            "id": 1,
            "params": {"query": "tm.event='Tx' AND message.action='runner_challenge'"},
        }

    @pytest.mark.asyncio
    async def test_transport_failure_raises_connection_error(self, epoch):
        stream = build_stream(
            FakeConnector(OSError("connection refused")), FakeOracle(epoch), RecordingLedger()
        )

        with pytest.raises(StreamConnectionError):
            await stream.connect()

    @pytest.mark.asyncio
    async def test_subscribe_failure_closes_transport(self, epoch):
        transport = FakeTransport(fail_send=True)
        stream = build_stream(FakeConnector(transport), FakeOracle(epoch), RecordingLedger())

        with pytest.raises(StreamConnectionError):
            await stream.connect()
        assert transport.closed is True


class TestRun:

    @pytest.mark.asyncio
    async def test_reconnects_after_repeated_read_failures(self, epoch):
        failures = [FakeTransport([ConnectionClosed(None, None)]) for _ in range(3)]
        healthy = FakeTransport()
        connector = FakeConnector(*failures, OSError("refused"), healthy)
        stream = build_stream(
            connector, FakeOracle(epoch), RecordingLedger(), cls=RecordingStream
        )

        task = asyncio.create_task(stream.run())
        await asyncio.wait_for(healthy.recv_started.wait(), 2.0)

        assert stream.history.count(StreamState.SUBSCRIBED) == 4
        assert stream.history.count(StreamState.RECONNECTING) == 4
        assert stream.stats.connections_established == 4
        assert all(t.closed for t in failures)

        await stream.stop()
        await asyncio.wait_for(task, 2.0)
        assert stream.state is StreamState.STOPPED

    @pytest.mark.asyncio
    async def test_initial_connect_failure_is_retried(self, epoch):
        healthy = FakeTransport()
        connector = FakeConnector(OSError("refused"), OSError("refused"), healthy)
        stream = build_stream(connector, FakeOracle(epoch), RecordingLedger())

        task = asyncio.create_task(stream.run())
        await asyncio.wait_for(healthy.recv_started.wait(), 2.0)

        assert connector.calls == 3
        assert stream.state is StreamState.READING

        await stream.stop()
        await asyncio.wait_for(task, 2.0)

    @pytest.mark.asyncio
    async def test_stop_interrupts_reconnect_wait(self, epoch):
        connector = FakeConnector(OSError("refused"))
        stream = build_stream(
            connector, FakeOracle(epoch), RecordingLedger(), reconnect_delay=30.0
        )

        task = asyncio.create_task(stream.run())
        await wait_for(lambda: stream.state is StreamState.RECONNECTING)

        await stream.stop()
        await asyncio.wait_for(task, 1.0)
        assert stream.state is StreamState.STOPPED
        assert connector.calls == 1

    @pytest.mark.asyncio
    async def test_messages_processed_in_arrival_order(self, epoch):
        ledger = RecordingLedger()
        transport = FakeTransport([challenge("A1"), challenge("B1", "B2"), challenge("C1")])
        stream = build_stream(FakeConnector(transport), FakeOracle(epoch), ledger)

        task = asyncio.create_task(stream.run())
        await wait_for(lambda: len(ledger.applied) == 4)
        await stream.stop()
        await asyncio.wait_for(task, 2.0)

        assert [address for address, _ in ledger.applied] == ["A1", "B1", "B2", "C1"]
        assert stream.stats.messages_received == 3


class TestHandleMessage:

    @pytest.mark.asyncio
    async def test_heartbeat_skips_epoch_fetch(self, epoch):
        oracle = FakeOracle(epoch)
        stream = build_stream(FakeConnector(FakeTransport()), oracle, RecordingLedger())

        applied = await stream.handle_message(json.dumps({"result": {"events": {"tm.event": ["NewBlock"]}}}))

        assert applied == 0
        assert oracle.calls == 0
        assert stream.stats.messages_ignored == 1

    @pytest.mark.asyncio
    async def test_subscription_ack_is_recognized(self, epoch):
        oracle = FakeOracle(epoch)
        stream = build_stream(FakeConnector(FakeTransport()), oracle, RecordingLedger())

        await stream.handle_message(json.dumps({"jsonrpc": "2.0", "id": 1, "result": {}}))

        assert stream.subscription_confirmed is True
        assert oracle.calls == 0

    @pytest.mark.asyncio
    async def test_rpc_error_is_not_fatal(self, epoch):
        stream = build_stream(FakeConnector(FakeTransport()), FakeOracle(epoch), RecordingLedger())

        applied = await stream.handle_message(
            json.dumps({"jsonrpc": "2.0", "id": 1, "error": {"code": -32603, "message": "bad query"}})
        )
        assert applied == 0

    @pytest.mark.asyncio
    async def test_epoch_failure_drops_batch(self, epoch):
        ledger = RecordingLedger()
        oracle = FakeOracle(epoch, error=EpochFetchError("timeout"))
        stream = build_stream(FakeConnector(FakeTransport()), oracle, ledger)

        applied = await stream.handle_message(challenge("A1", "A2"))

        assert applied == 0
        assert ledger.applied == []
        assert stream.stats.epoch_fetch_errors == 1

    @pytest.mark.asyncio
    async def test_persistence_failure_skips_only_that_event(self, epoch):
        ledger = RecordingLedger(fail_for={"A2"})
        stream = build_stream(FakeConnector(FakeTransport()), FakeOracle(epoch), ledger)

        applied = await stream.handle_message(challenge("A1", "A2", "A3"))

        assert applied == 2
        assert [a for a, _ in ledger.applied] == ["A1", "A3"]

    @pytest.mark.asyncio
    async def test_epoch_fetched_once_per_batch(self, epoch):
        oracle = FakeOracle(epoch)
        stream = build_stream(FakeConnector(FakeTransport()), oracle, RecordingLedger())

        await stream.handle_message(challenge("A1", "A2", "A3"))

        assert oracle.calls == 1


class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_malformed_payload_isolated_against_database(self, session_maker, epoch):
        stats = IngestionStats()
        ledger = LedgerStore(session_factory=session_maker, earnings_denoms=["usoar"], stats=stats)
        stream = build_stream(FakeConnector(FakeTransport()), FakeOracle(epoch), ledger, stats=stats)

        frame = json.dumps({
            "result": {
                "events": {
                    "message.client_data": [
                        json.dumps({"address": "A1", "earnings": "1000000usoar", "pubkey": "PK1"}),
                        "{broken",
                        json.dumps({"address": "A3", "earnings": "5usoar", "pubkey": "PK3"}),
                    ],
                    "solana_address": ["SOL1", "SOL2", "SOL3"],
                }
            }
        })

        applied = await stream.handle_message(frame)

        assert applied == 2
        assert stats.decode_errors == 1
        assert stats.events_stored == 2

        async with session_maker() as session:
            a1 = await session.get(Client, "A1")
            a3 = await session.get(Client, "A3")
            assert a1.total_lifetime_earnings == 1000000
            assert a1.alternate_address == "SOL1"
            assert a3.alternate_address == "SOL3"
            assert await session.get(Client, "SOL2") is None

            records = (await session.execute(
                ClientEarning.__table__.select().order_by(ClientEarning.id)
            )).all()
            assert [r.client_address for r in records] == ["A1", "A3"]

            aggregates = (await session.execute(EpochEarnings.__table__.select())).all()
            assert {(r.client_address, r.epoch_number, r.total_earnings) for r in aggregates} == {
                ("A1", 5, 1000000),
                ("A3", 5, 5),
            }
