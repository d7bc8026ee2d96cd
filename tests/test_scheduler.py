"""Tests for the periodic ingest scheduler."""

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from rarebooks.config import settings
from rarebooks.monitor.scheduler import IngestScheduler
from rarebooks.schemas import ProgressEvent


class FakeFactory:
    def __init__(self):
        self.orchestrator = AsyncMock()
        self.opened = 0
        self.closed = 0
        self.callbacks = []

    @contextmanager
    def __call__(self, on_progress):
        self.opened += 1
        self.callbacks.append(on_progress)
        try:
            yield self.orchestrator
        finally:
            self.closed += 1


@pytest.fixture()
def factory():
    return FakeFactory()


@pytest.fixture()
def scheduler(factory):
    return IngestScheduler(factory)


class TestRunCycle:
    @pytest.mark.asyncio
    async def test_cycle_runs_every_flow(self, scheduler, factory):
        await scheduler.run_cycle()

        orchestrator = factory.orchestrator
        orchestrator.run_discovery.assert_awaited_once()
        orchestrator.run_monitoring_pass.assert_awaited_once()
        orchestrator.run_fixed_price_sweep.assert_awaited_once()
        assert factory.opened == factory.closed == 1
        status = scheduler.status()
        assert status.is_running_now is False
        assert status.current_operation is None
        assert status.last_run_time is not None

    @pytest.mark.asyncio
    async def test_paused_cycle_is_skipped(self, scheduler, factory):
        scheduler.pause()

        await scheduler.run_cycle()

        assert factory.opened == 0
        assert scheduler.status().is_paused is True

    @pytest.mark.asyncio
    async def test_resume_allows_next_cycle(self, scheduler, factory):
        scheduler.pause()
        scheduler.resume()

        await scheduler.run_cycle()

        assert factory.opened == 1

    @pytest.mark.asyncio
    async def test_overlapping_cycle_is_skipped(self, scheduler, factory):
        scheduler.is_running_now = True

        await scheduler.run_cycle()

        assert factory.opened == 0

    @pytest.mark.asyncio
    async def test_cancel_skips_remaining_flows(self, scheduler, factory):
        async def discovery(cancel=None):
            scheduler.cancel_current()

        factory.orchestrator.run_discovery.side_effect = discovery

        await scheduler.run_cycle()

        factory.orchestrator.run_monitoring_pass.assert_not_awaited()
        factory.orchestrator.run_fixed_price_sweep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_is_contained(self, scheduler, factory):
        factory.orchestrator.run_discovery.side_effect = RuntimeError("database is locked")

        await scheduler.run_cycle()

        assert scheduler.status().is_running_now is False
        assert factory.closed == 1

    @pytest.mark.asyncio
    async def test_progress_updates_status(self, scheduler, factory):
        async def discovery(cancel=None):
            report = factory.callbacks[-1]
            report(ProgressEvent(operation="discovery", message="Saving lot 5", lot_id=5, title="Азбука 1901 г."))
            report(ProgressEvent(operation="save_lot", message="Lot 5 saved", lot_id=5))
            report(ProgressEvent(operation="discovery", message="Saving lot 6", lot_id=6, title="Букварь"))

        factory.orchestrator.run_discovery.side_effect = discovery

        await scheduler.run_cycle()

        status = scheduler.status()
        assert status.processed_count == 2
        assert status.last_processed_lot_id == 6
        assert status.last_processed_lot_title == "Букварь"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_schedules_next_run(self, scheduler):
        with patch.object(settings, "run_on_start", False):
            scheduler.start()
        try:
            status = scheduler.status()
            expected = datetime.now(timezone.utc) + timedelta(seconds=settings.update_interval_seconds)
            assert status.next_run_time is not None
            assert abs((status.next_run_time - expected).total_seconds()) < 60
            assert scheduler.running is True
        finally:
            scheduler.shutdown()

        assert scheduler.running is False
        assert scheduler.status().next_run_time is None

    @pytest.mark.asyncio
    async def test_run_now_moves_next_run_forward(self, scheduler):
        with patch.object(settings, "run_on_start", False):
            scheduler.start()
        try:
            scheduler.pause()
            scheduler.run_now()
            next_run = scheduler.status().next_run_time
            assert (next_run - datetime.now(timezone.utc)).total_seconds() < 60
        finally:
            scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_status_after_shutdown_has_no_next_run(self, scheduler):
        with patch.object(settings, "run_on_start", False):
            scheduler.start()
        scheduler.shutdown()

        status = scheduler.status()
        assert status.next_run_time is None
        assert scheduler.running is False


@pytest.mark.asyncio
async def test_sweep_runs_after_monitoring(scheduler, factory):
    calls = []
    orchestrator = factory.orchestrator
    orchestrator.run_discovery.side_effect = lambda cancel=None: calls.append("discovery")
    orchestrator.run_monitoring_pass.side_effect = lambda cancel=None: calls.append("monitoring")
    orchestrator.run_fixed_price_sweep.side_effect = lambda cancel=None: calls.append("sweep")

    await scheduler.run_cycle()

    assert calls == ["discovery", "monitoring", "sweep"]
