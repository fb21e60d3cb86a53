"""
Tests for the transactional ledger store.
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from conftest import T0, make_event
from soar_observer.core.exceptions import PersistenceError
from soar_observer.indexer.decoder import MAX_AMOUNT
from soar_observer.indexer.epoch_oracle import EpochWindow
from soar_observer.indexer.ledger import LedgerStore
from soar_observer.indexer.types import IngestionStats
from soar_observer.models import Client, ClientEarning, EpochEarnings
from soar_observer.utils.timeutils import ensure_utc


@pytest.fixture
def ledger(session_maker):
    return LedgerStore(session_factory=session_maker, earnings_denoms=["usoar"], stats=IngestionStats())


async def fetch_client(session_maker, address):
    async with session_maker() as session:
        return await session.get(Client, address)


async def fetch_records(session_maker, address):
    async with session_maker() as session:
        result = await session.execute(
            select(ClientEarning).where(ClientEarning.client_address == address).order_by(ClientEarning.id)
        )
        return list(result.scalars())


async def fetch_epochs(session_maker, address):
    async with session_maker() as session:
        result = await session.execute(
            select(EpochEarnings)
            .where(EpochEarnings.client_address == address)
            .order_by(EpochEarnings.epoch_number)
        )
        return list(result.scalars())


@pytest.mark.asyncio
async def test_first_event_creates_client_record_and_epoch(ledger, session_maker, epoch):
    amount = await ledger.apply_event(make_event("A1", "1000000usoar", "PK1"), epoch)

    assert amount == 1000000

    client = await fetch_client(session_maker, "A1")
    assert client.total_lifetime_earnings == 1000000
    assert client.pub_key == "PK1"
    assert client.alternate_address is None
    assert client.last_activity_time is not None

    records = await fetch_records(session_maker, "A1")
    assert [r.amount for r in records] == [1000000]

    epochs = await fetch_epochs(session_maker, "A1")
    assert len(epochs) == 1
    assert epochs[0].epoch_number == 5
    assert epochs[0].total_earnings == 1000000
    assert ensure_utc(epochs[0].start_time) == T0
    assert ensure_utc(epochs[0].end_time) == T0 + timedelta(seconds=86400)

    assert ledger.stats.events_stored == 1


@pytest.mark.asyncio
async def test_lifetime_total_matches_sum_of_records(ledger, session_maker, epoch):
    amounts = ["100usoar", "250usoar", "garbage", "", "4000usoar", "7"]
    for raw in amounts:
        await ledger.apply_event(make_event("A1", raw), epoch)

    client = await fetch_client(session_maker, "A1")
    records = await fetch_records(session_maker, "A1")

    assert len(records) == len(amounts)
    assert client.total_lifetime_earnings == sum(r.amount for r in records) == 4357


@pytest.mark.asyncio
async def test_amounts_at_bigint_boundary(ledger, session_maker, epoch):
    await ledger.apply_event(make_event("MAX", f"{MAX_AMOUNT}usoar"), epoch)
    await ledger.apply_event(make_event("OVER", f"{MAX_AMOUNT + 1}usoar"), epoch)
    await ledger.apply_event(make_event("OVER", f"{2 ** 64 - 1}usoar"), epoch)

    at_max = await fetch_client(session_maker, "MAX")
    assert at_max.total_lifetime_earnings == MAX_AMOUNT
    assert [r.amount for r in await fetch_records(session_maker, "MAX")] == [MAX_AMOUNT]

    # Out of range amounts count as zero but the event is still recorded
    over = await fetch_client(session_maker, "OVER")
    assert over.total_lifetime_earnings == 0
    assert over.last_activity_time is not None
    assert [r.amount for r in await fetch_records(session_maker, "OVER")] == [0, 0]
    assert ledger.stats.persistence_errors == 0


@pytest.mark.asyncio
async def test_one_epoch_row_per_client_and_epoch(ledger, session_maker, epoch):
    next_epoch = EpochWindow("day", epoch.duration, 6, epoch.end_time)

    await ledger.apply_event(make_event("A1", "10usoar"), epoch)
    await ledger.apply_event(make_event("A1", "20usoar"), epoch)
    await ledger.apply_event(make_event("A1", "30usoar"), next_epoch)
    await ledger.apply_event(make_event("B1", "5usoar"), epoch)

    epochs = await fetch_epochs(session_maker, "A1")
    assert [(e.epoch_number, e.total_earnings) for e in epochs] == [(5, 30), (6, 30)]

    async with session_maker() as session:
        duplicates = await session.execute(
            select(EpochEarnings.client_address, EpochEarnings.epoch_number, func.count())
            .group_by(EpochEarnings.client_address, EpochEarnings.epoch_number)
            .having(func.count() > 1)
        )
        assert duplicates.all() == []


@pytest.mark.asyncio
async def test_epoch_bounds_are_kept_from_first_event(ledger, session_maker, epoch):
    shifted = EpochWindow("day", timedelta(hours=12), epoch.epoch_number, T0 + timedelta(hours=1))

    await ledger.apply_event(make_event("A1", "1usoar"), epoch)
    await ledger.apply_event(make_event("A1", "1usoar"), shifted)

    epochs = await fetch_epochs(session_maker, "A1")
    assert len(epochs) == 1
    assert ensure_utc(epochs[0].start_time) == T0
    assert ensure_utc(epochs[0].end_time) == T0 + timedelta(days=1)
    assert epochs[0].total_earnings == 2


@pytest.mark.asyncio
async def test_alternate_address_only_overwritten_when_present(ledger, session_maker, epoch):
    await ledger.apply_event(make_event("A1", "1usoar", alternate="SOL1"), epoch)
    await ledger.apply_event(make_event("A1", "1usoar"), epoch)
    assert (await fetch_client(session_maker, "A1")).alternate_address == "SOL1"

    await ledger.apply_event(make_event("A1", "1usoar", alternate="SOL2"), epoch)
    assert (await fetch_client(session_maker, "A1")).alternate_address == "SOL2"


@pytest.mark.asyncio
async def test_pub_key_corrected_by_later_event(ledger, session_maker, epoch):
    await ledger.apply_event(make_event("A1", "1usoar", pub_key="OLD"), epoch)
    await ledger.apply_event(make_event("A1", "1usoar", pub_key=""), epoch)
    assert (await fetch_client(session_maker, "A1")).pub_key == "OLD"

    await ledger.apply_event(make_event("A1", "1usoar", pub_key="NEW"), epoch)
    assert (await fetch_client(session_maker, "A1")).pub_key == "NEW"


@pytest.mark.asyncio
async def test_last_activity_tracks_observed_time(ledger, session_maker, epoch):
    observed = T0 + timedelta(hours=3)
    await ledger.apply_event(make_event("A1", "1usoar"), epoch, observed_at=T0)
    await ledger.apply_event(make_event("A1", "1usoar"), epoch, observed_at=observed)

    client = await fetch_client(session_maker, "A1")
    assert ensure_utc(client.last_activity_time) == observed


@pytest.mark.asyncio
async def test_failure_rolls_back_whole_event(ledger, session_maker, epoch, monkeypatch):
    await ledger.apply_event(make_event("A1", "100usoar"), epoch)

    async def failing_upsert(*args, **kwargs):
        raise OperationalError("UPDATE epoch_earnings", {}, Exception("disk I/O error"))

    monkeypatch.setattr(ledger, "_upsert_epoch", failing_upsert)

    with pytest.raises(PersistenceError):
        await ledger.apply_event(make_event("A1", "900usoar"), epoch)
    with pytest.raises(PersistenceError):
        await ledger.apply_event(make_event("NEW", "900usoar"), epoch)

    client = await fetch_client(session_maker, "A1")
    assert client.total_lifetime_earnings == 100
    assert len(await fetch_records(session_maker, "A1")) == 1
    assert await fetch_client(session_maker, "NEW") is None
    assert await fetch_records(session_maker, "NEW") == []

    assert ledger.stats.persistence_errors == 2
    assert ledger.stats.events_stored == 1
