"""
Ledger store: applies one decoded event to the database in a single transaction.
"""

from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from soar_observer.core.config import settings
from soar_observer.core.database import get_session_maker
from soar_observer.core.exceptions import PersistenceError
from soar_observer.models.client import Client
from soar_observer.models.earnings import ClientEarning, EpochEarnings
from .decoder import DecodedEvent, parse_earnings
from .epoch_oracle import EpochWindow
from .types import IngestionStats


logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]


class LedgerStore:
    """
    Writes client totals, the earnings log and per-epoch aggregates.

    Every call to ``apply_event`` is one short transaction: the client
    upsert, the earnings record and the epoch aggregate either all commit
    or all roll back. Records and aggregates are keyed by the primary
    address; alternate address views are derived through ``clients``.
    """

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        earnings_denoms: Optional[Sequence[str]] = None,
        stats: Optional[IngestionStats] = None,
    ):
        self._session_factory = session_factory
        self.earnings_denoms = list(
            earnings_denoms if earnings_denoms is not None else settings.earnings_denoms
        )
        self.stats = stats or IngestionStats()
        self.logger = logger.bind(service="ledger_store")

    @property
    def session_factory(self) -> SessionFactory:
        if self._session_factory is None:
            self._session_factory = get_session_maker()
        return self._session_factory

    async def apply_event(
        self,
        event: DecodedEvent,
        epoch: EpochWindow,
        observed_at: Optional[datetime] = None,
    ) -> int:
        """
        Apply one event atomically and return the normalized amount.

        Raises:
            PersistenceError: if any step fails; nothing is committed
        """
        amount = parse_earnings(event.raw_amount, self.earnings_denoms)
        now = observed_at or datetime.now(timezone.utc)

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self._upsert_client(session, event, amount, now)

                    session.add(
                        ClientEarning(
                            client_address=event.address,
                            amount=amount,
                            observed_at=now,
                        )
                    )

                    await self._upsert_epoch(session, event.address, epoch, amount, now)
        except (SQLAlchemyError, OverflowError) as e:
            self.stats.persistence_errors += 1
            self.logger.error(
                "Rolled back earnings event",
                address=event.address,
                epoch=epoch.epoch_number,
                amount=amount,
                error=str(e),
            )
            raise PersistenceError(
                f"Failed to apply event for {event.address}: {e}",
                {"address": event.address, "epoch": epoch.epoch_number},
            ) from e

        self.stats.mark_event_stored()
        self.logger.info(
            "Applied earnings event",
            address=event.address,
            alternate_address=event.alternate_address,
            epoch=epoch.epoch_number,
            amount=amount,
        )
        return amount

    async def _upsert_client(
        self,
        session: AsyncSession,
        event: DecodedEvent,
        amount: int,
        now: datetime,
    ) -> Client:
        client = await session.get(Client, event.address, with_for_update=True)

        if client is None:
            client = Client(
                address=event.address,
                pub_key=event.pub_key,
                alternate_address=event.alternate_address,
                total_lifetime_earnings=amount,
                last_activity_time=now,
            )
            session.add(client)
            # Child rows reference the client by foreign key
            await session.flush()
            self.logger.info("New client observed", address=event.address)
            return client

        client.total_lifetime_earnings += amount
        if event.alternate_address:
            client.alternate_address = event.alternate_address
        if event.pub_key:
            client.pub_key = event.pub_key
        client.last_activity_time = now
        return client

    @staticmethod
    async def _upsert_epoch(
        session: AsyncSession,
        address: str,
        epoch: EpochWindow,
        amount: int,
        now: datetime,
    ) -> EpochEarnings:
        result = await session.execute(
            select(EpochEarnings)
            .where(
                EpochEarnings.client_address == address,
                EpochEarnings.epoch_number == epoch.epoch_number,
            )
            .with_for_update()
        )
        aggregate = result.scalar_one_or_none()

        if aggregate is None:
            aggregate = EpochEarnings(
                client_address=address,
                epoch_number=epoch.epoch_number,
                start_time=epoch.start_time,
                end_time=epoch.end_time,
                total_earnings=amount,
                created_at=now,
                updated_at=now,
            )
            session.add(aggregate)
            return aggregate

        # Window bounds stay as first recorded
        aggregate.total_earnings += amount
        aggregate.updated_at = now
        return aggregate
