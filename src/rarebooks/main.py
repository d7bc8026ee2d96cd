"""Pipeline wiring and the long-running scheduler process."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager

from .config import settings
from .database import run_migrations, session_scope
from .ingest.archiver import ImageArchiver
from .ingest.handler import LotUpsertHandler, ProgressCallback
from .ingest.orchestrator import CrawlOrchestrator
from .marketplace.gateway import MarketplaceGateway
from .marketplace.session import SessionClient
from .monitor.scheduler import IngestScheduler
from .repository import SqlLotRepository
from .storage import ArchiveStorage, build_archive_storage

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


class Pipeline:
    """Long-lived pieces shared by every cycle: one session, one archive backend."""

    def __init__(self, storage: ArchiveStorage | None = None) -> None:
        self.session = SessionClient()
        self.gateway = MarketplaceGateway(self.session)
        self.archiver = ImageArchiver(self.session, storage or build_archive_storage(settings))

    @contextmanager
    def orchestrator(self, on_progress: ProgressCallback | None = None) -> Iterator[CrawlOrchestrator]:
        """Orchestrator bound to a fresh database session for one run."""
        with session_scope() as db:
            repository = SqlLotRepository(db)
            handler = LotUpsertHandler(repository, self.gateway, self.archiver, on_progress)
            yield CrawlOrchestrator(self.gateway, handler, repository, on_progress)

    async def close(self) -> None:
        await self.session.close()


async def run_once(mode: str, lot_ids: list[int] | None = None) -> None:
    """Run a single flow and exit: ``discover``, ``monitor``, ``sweep`` or ``lots``."""
    pipeline = Pipeline()
    try:
        with pipeline.orchestrator() as orchestrator:
            if mode == "discover":
                await orchestrator.run_discovery()
            elif mode == "monitor":
                await orchestrator.run_monitoring_pass()
            elif mode == "lots":
                await orchestrator.run_id_list(lot_ids or [])
            elif mode == "sweep":
                await orchestrator.run_fixed_price_sweep()
            else:
                raise ValueError(f"Unknown mode: {mode}")
    finally:
        await pipeline.close()


async def serve() -> None:
    """Run the periodic ingest scheduler until SIGINT/SIGTERM."""
    pipeline = Pipeline()
    scheduler = IngestScheduler(pipeline.orchestrator)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # Windows
            pass

    scheduler.start()
    logger.info("rarebooks ingest started")
    try:
        await stop.wait()
    finally:
        scheduler.shutdown()
        await pipeline.close()
        logger.info("rarebooks ingest stopped")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="rarebooks", description="meshok.net rare book ingestion")
    parser.add_argument(
        "mode", nargs="?", default="serve", choices=["serve", "discover", "monitor", "sweep", "lots"],
    )
    parser.add_argument("lot_ids", nargs="*", type=int, help="lot ids for the 'lots' mode")
    parser.add_argument("--skip-migrations", action="store_true")
    args = parser.parse_args(argv)

    configure_logging()
    if not args.skip_migrations:
        logger.info("Running database migrations...")
        run_migrations()

    if args.mode == "serve":
        asyncio.run(serve())
    else:
        asyncio.run(run_once(args.mode, args.lot_ids))
