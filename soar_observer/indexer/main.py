"""
Ingestion service: wires the stream, decoder, epoch oracle and ledger together.
Runs standalone via ``soar-observer-indexer`` or inside the API process.
"""

import asyncio
import signal
from typing import Any, Dict, List, Optional

import structlog

from soar_observer.core.config import settings
from soar_observer.core.database import (
    DatabaseManager,
    close_database,
    get_session_maker,
    init_database,
)
from soar_observer.core.logging import setup_logging
from .decoder import EventDecoder
from .epoch_oracle import EpochOracle
from .ledger import LedgerStore
from .stream import StreamConnection
from .types import IngestionStats


logger = structlog.get_logger(__name__)

HEALTH_CHECK_INTERVAL = 60


class IngestionService:
    """
    Owns one ingestion pipeline and its shared ``IngestionStats``.

    The database must be initialized before ``start()``.
    """

    def __init__(self, stream: Optional[StreamConnection] = None):
        self.stats = stream.stats if stream else IngestionStats()
        self.stream = stream or self._build_stream(self.stats)
        self.running = False
        self.tasks: List[asyncio.Task] = []
        self._stop_task: Optional[asyncio.Task] = None
        self.logger = logger.bind(service="ingestion")

    @staticmethod
    def _build_stream(stats: IngestionStats) -> StreamConnection:
        decoder = EventDecoder(stats=stats)
        oracle = EpochOracle()
        ledger = LedgerStore(session_factory=get_session_maker(), stats=stats)
        return StreamConnection(decoder, oracle, ledger, stats=stats)

    async def start(self) -> None:
        """Run the stream until stopped or until one of the tasks exits."""
        self.logger.info("Starting ingestion", url=self.stream.url)
        self.running = True

        self.tasks = [
            asyncio.create_task(self.stream.run(), name="stream"),
            asyncio.create_task(self._periodic_health_check(), name="health_check"),
        ]
        tasks = list(self.tasks)

        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        self.running = False
        for task in tasks:
            if not task.done():
                task.cancel()

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for task, result in zip(tasks, results):
            if isinstance(result, Exception):
                self.logger.error(
                    "Ingestion task failed",
                    task=task.get_name(),
                    error=str(result),
                    exc_info=result,
                )

    async def stop(self) -> None:
        """Stop ingestion. Repeated and concurrent calls share one shutdown."""
        if self._stop_task is None:
            self._stop_task = asyncio.create_task(self._shutdown())
        await asyncio.shield(self._stop_task)

    async def _shutdown(self) -> None:
        self.logger.info("Stopping ingestion")
        self.running = False

        await self.stream.stop()

        for task in self.tasks:
            if not task.done():
                task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []

        self.logger.info("Ingestion stopped", stats=self.stats.snapshot())

    def get_status(self) -> Dict[str, Any]:
        status = self.stream.get_status()
        status["running"] = self.running
        return status

    async def _periodic_health_check(self) -> None:
        while self.running:
            try:
                await asyncio.sleep(HEALTH_CHECK_INTERVAL)
                if not self.running:
                    break

                status = self.get_status()
                self.logger.info("Ingestion health check", **status)

                if self.stats.persistence_errors or self.stats.epoch_fetch_errors:
                    self.logger.warning(
                        "Ingestion errors recorded",
                        persistence_errors=self.stats.persistence_errors,
                        epoch_fetch_errors=self.stats.epoch_fetch_errors,
                        decode_errors=self.stats.decode_errors,
                    )
            except asyncio.CancelledError:
                break


async def main() -> None:
    """Run ingestion without the HTTP API."""
    setup_logging(settings.log_file)

    await init_database()
    if settings.auto_create_tables:
        await DatabaseManager.create_tables()

    service = IngestionService()
    stop_tasks: List[asyncio.Task] = []

    def signal_handler(signum, frame):
        logger.info("Received signal, shutting down", signal=signum)
        stop_tasks.append(asyncio.create_task(service.stop()))

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await service.start()
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down")
    finally:
        await service.stop()
        await asyncio.gather(*stop_tasks, return_exceptions=True)
        await close_database()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
