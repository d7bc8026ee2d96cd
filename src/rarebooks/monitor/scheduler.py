"""APScheduler-driven periodic ingestion: discovery, monitoring, then the fixed-price sweep."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..config import settings
from ..ingest.orchestrator import CrawlOrchestrator
from ..schemas import IngestStatus, ProgressEvent

logger = logging.getLogger(__name__)

_JOB_ID = "ingest_cycle"


class IngestScheduler:
    """Runs one ingestion cycle at a time and keeps a status snapshot.

    The discovery, monitoring and sweep flows run back to back inside one job,
    so they never touch the same lot concurrently.
    """

    def __init__(
        self,
        orchestrator_factory: Callable[
            [Callable[[ProgressEvent], None]], AbstractContextManager[CrawlOrchestrator]
        ],
    ) -> None:
        self._orchestrator_factory = orchestrator_factory
        self._scheduler = AsyncIOScheduler()
        self._cancel = asyncio.Event()
        self.running = False
        self.is_paused = False
        self.is_running_now = False
        self.last_run_time: datetime | None = None
        self.current_operation: str | None = None
        self.processed_count = 0
        self.last_processed_lot_id: int | None = None
        self.last_processed_lot_title: str | None = None

    def start(self) -> None:
        first_run = datetime.now(timezone.utc)
        if not settings.run_on_start:
            first_run += timedelta(seconds=settings.update_interval_seconds)
        self._scheduler.add_job(
            self.run_cycle,
            "interval",
            seconds=settings.update_interval_seconds,
            next_run_time=first_run,
            id=_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        self.running = True
        logger.info(
            "Ingest scheduler started (interval=%ds)", settings.update_interval_seconds,
        )

    def pause(self) -> None:
        self.is_paused = True
        logger.info("Ingest scheduler paused")

    def resume(self) -> None:
        self.is_paused = False
        logger.info("Ingest scheduler resumed")

    def run_now(self) -> None:
        """Trigger a cycle immediately (the regular interval is kept)."""
        self._scheduler.modify_job(_JOB_ID, next_run_time=datetime.now(timezone.utc))
        logger.info("Ingest cycle requested")

    def cancel_current(self) -> None:
        """Ask a running cycle to stop after the lot in flight."""
        self._cancel.set()

    def shutdown(self) -> None:
        self._cancel.set()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self.running = False
        logger.info("Ingest scheduler shut down")

    def status(self) -> IngestStatus:
        job = self._scheduler.get_job(_JOB_ID) if self.running else None
        return IngestStatus(
            is_paused=self.is_paused,
            is_running_now=self.is_running_now,
            last_run_time=self.last_run_time,
            next_run_time=job.next_run_time if job else None,
            current_operation=self.current_operation,
            processed_count=self.processed_count,
            last_processed_lot_id=self.last_processed_lot_id,
            last_processed_lot_title=self.last_processed_lot_title,
        )

    def _on_progress(self, event: ProgressEvent) -> None:
        self.current_operation = event.operation
        if event.lot_id is not None and event.lot_id != self.last_processed_lot_id:
            self.processed_count += 1
            self.last_processed_lot_id = event.lot_id
        if event.title:
            self.last_processed_lot_title = event.title
        if event.is_error:
            logger.warning("[%s] %s", event.operation, event.message)
        else:
            logger.debug("[%s] %s", event.operation, event.message)

    async def run_cycle(self) -> None:
        if self.is_paused:
            logger.info("Ingest scheduler is paused, skipping cycle")
            return
        if self.is_running_now:
            logger.info("Ingest cycle already running, skipping")
            return

        self.is_running_now = True
        self.last_run_time = datetime.now(timezone.utc)
        self.processed_count = 0
        self._cancel.clear()
        try:
            with self._orchestrator_factory(self._on_progress) as orchestrator:
                self.current_operation = "discovery"
                await orchestrator.run_discovery(cancel=self._cancel)
                if not self._cancel.is_set():
                    self.current_operation = "monitoring"
                    await orchestrator.run_monitoring_pass(cancel=self._cancel)
                if not self._cancel.is_set():
                    self.current_operation = "fixed_price_sweep"
                    await orchestrator.run_fixed_price_sweep(cancel=self._cancel)
        except Exception as e:
            logger.exception("Ingest cycle failed: %s", e)
        finally:
            self.is_running_now = False
            self.current_operation = None
