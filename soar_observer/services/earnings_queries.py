"""
Read-side queries over the earnings ledger.

All amounts returned here are in base units; conversion to whole tokens is
a presentation concern of the API layer.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from soar_observer.core.config import settings
from soar_observer.core.exceptions import ClientNotFoundError
from soar_observer.models.client import Client
from soar_observer.models.earnings import ClientEarning, EpochEarnings
from soar_observer.utils.timeutils import ensure_utc


logger = structlog.get_logger(__name__)


class MinerStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


STATUS_ISSUES = {
    MinerStatus.HEALTHY: [],
    MinerStatus.DEGRADED: ["Latency"],
    MinerStatus.DOWN: ["Offline"],
}


@dataclass(frozen=True)
class StatusThresholds:
    healthy_minutes: float = 2.0
    degraded_minutes: float = 5.0

    @classmethod
    def from_settings(cls) -> "StatusThresholds":
        return cls(
            healthy_minutes=settings.status_healthy_minutes,
            degraded_minutes=settings.status_degraded_minutes,
        )


@dataclass(frozen=True)
class StatusReport:
    status: MinerStatus
    last_seen: Optional[datetime]
    diff_minutes: Optional[float]

    @property
    def issues(self) -> List[str]:
        return list(STATUS_ISSUES[self.status])


@dataclass(frozen=True)
class EpochReward:
    epoch_number: int
    start_time: datetime
    end_time: datetime
    total_earnings: int


def classify_status(
    last_activity: Optional[datetime],
    now: Optional[datetime] = None,
    thresholds: Optional[StatusThresholds] = None,
) -> StatusReport:
    """
    Map the time since last activity to a liveness status.

    Up to ``healthy_minutes`` is healthy, up to and including
    ``degraded_minutes`` is degraded, anything older or missing is down.
    """
    thresholds = thresholds or StatusThresholds.from_settings()
    last_activity = ensure_utc(last_activity)
    if last_activity is None:
        return StatusReport(MinerStatus.DOWN, None, None)

    now = ensure_utc(now) or datetime.now(timezone.utc)
    diff_minutes = (now - last_activity).total_seconds() / 60

    if diff_minutes <= thresholds.healthy_minutes:
        status = MinerStatus.HEALTHY
    elif diff_minutes <= thresholds.degraded_minutes:
        status = MinerStatus.DEGRADED
    else:
        status = MinerStatus.DOWN

    return StatusReport(status, last_activity, diff_minutes)


def window(period: timedelta, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Return ``(now - period, now)``."""
    end = ensure_utc(now) or datetime.now(timezone.utc)
    return end - period, end


class EarningsQueryService:
    """Query helpers bound to one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # Client lookups

    async def get_client(self, address: str) -> Client:
        client = await self.db.get(Client, address)
        if client is None:
            raise ClientNotFoundError("address", address)
        return client

    async def get_client_by_alternate(self, alternate_address: str) -> Client:
        """Most recently active client carrying this alternate address."""
        result = await self.db.execute(
            select(Client)
            .where(Client.alternate_address == alternate_address)
            .order_by(Client.last_activity_time.desc().nulls_last())
            .limit(1)
        )
        client = result.scalar_one_or_none()
        if client is None:
            raise ClientNotFoundError("solana_address", alternate_address)
        return client

    async def get_client_by_pubkey(self, pub_key: str) -> Client:
        result = await self.db.execute(
            select(Client)
            .where(Client.pub_key == pub_key)
            .order_by(Client.last_activity_time.desc().nulls_last())
            .limit(1)
        )
        client = result.scalar_one_or_none()
        if client is None:
            raise ClientNotFoundError("pubkey", pub_key)
        return client

    # Windowed sums

    async def sum_for_client(self, address: str, start: datetime, end: datetime) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(ClientEarning.amount), 0)).where(
                ClientEarning.client_address == address,
                ClientEarning.observed_at >= start,
                ClientEarning.observed_at <= end,
            )
        )
        return int(result.scalar_one())

    async def sum_for_wallet(self, alternate_address: str, start: datetime, end: datetime) -> int:
        """Sum of records for every client carrying the alternate address."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(ClientEarning.amount), 0))
            .join(Client, Client.address == ClientEarning.client_address)
            .where(
                Client.alternate_address == alternate_address,
                ClientEarning.observed_at >= start,
                ClientEarning.observed_at <= end,
            )
        )
        return int(result.scalar_one())

    async def average(self, start: datetime, end: datetime) -> int:
        """Integer average of all record amounts in the window, 0 when empty."""
        result = await self.db.execute(
            select(func.avg(ClientEarning.amount)).where(
                ClientEarning.observed_at >= start,
                ClientEarning.observed_at <= end,
            )
        )
        value = result.scalar_one_or_none()
        return int(value or 0)

    # Status

    async def wallet_status(
        self,
        alternate_address: str,
        now: Optional[datetime] = None,
        thresholds: Optional[StatusThresholds] = None,
    ) -> StatusReport:
        result = await self.db.execute(
            select(func.max(Client.last_activity_time)).where(
                Client.alternate_address == alternate_address
            )
        )
        last_activity = result.scalar_one_or_none()
        return classify_status(last_activity, now, thresholds)

    # Epoch rewards

    async def epoch_rewards(
        self,
        alternate_address: str,
        newest_first: bool = False,
        limit: Optional[int] = None,
    ) -> List[EpochReward]:
        """Per-epoch totals across all clients carrying the alternate address."""
        order = EpochEarnings.epoch_number.desc() if newest_first else EpochEarnings.epoch_number.asc()
        stmt = (
            select(
                EpochEarnings.epoch_number,
                func.min(EpochEarnings.start_time),
                func.max(EpochEarnings.end_time),
                func.sum(EpochEarnings.total_earnings),
            )
            .join(Client, Client.address == EpochEarnings.client_address)
            .where(Client.alternate_address == alternate_address)
            .group_by(EpochEarnings.epoch_number)
            .order_by(order)
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self.db.execute(stmt)
        return [
            EpochReward(
                epoch_number=int(epoch_number),
                start_time=ensure_utc(start_time),
                end_time=ensure_utc(end_time),
                total_earnings=int(total or 0),
            )
            for epoch_number, start_time, end_time, total in result.all()
        ]
