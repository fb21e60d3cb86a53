"""
Shared fixtures: an in-memory SQLite database with the real models.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from soar_observer.indexer.decoder import AlternateAddress, AlternateSource, DecodedEvent
from soar_observer.indexer.epoch_oracle import EpochWindow
from soar_observer.models import Base


T0 = datetime(2025, 1, 16, 9, 4, 54, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def epoch() -> EpochWindow:
    return EpochWindow(
        identifier="day",
        duration=timedelta(seconds=86400),
        epoch_number=5,
        start_time=T0,
    )


def make_event(
    address: str,
    amount: str,
    pub_key: str = "",
    alternate: Optional[str] = None,
) -> DecodedEvent:
    return DecodedEvent(
        address=address,
        pub_key=pub_key,
        alternate=(
            AlternateAddress(alternate, AlternateSource.EMBEDDED)
            if alternate
            else AlternateAddress.absent()
        ),
        raw_amount=amount,
    )
