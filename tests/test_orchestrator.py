"""Tests for lot classification and the discovery/monitoring flows."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from rarebooks.ingest.handler import LotUpsertHandler
from rarebooks.ingest.orchestrator import CrawlOrchestrator, SaveDecision, classify_lot
from rarebooks.models import Category, Lot


def _utc(**delta):
    return datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(**delta)


def _store(
    db, lot_id, *, end_date, is_monitored=True, category_id=13870,
    is_less_valuable=False, lot_type="auction",
):
    category = db.query(Category).filter_by(category_id=category_id).first()
    if category is None:
        category = Category(category_id=category_id, name=f"Category {category_id}")
        db.add(category)
        db.flush()
    lot = Lot(
        id=lot_id, category_id=category.id, title=f"Lot {lot_id}", end_date=end_date,
        begin_date=end_date - timedelta(days=7), is_monitored=is_monitored,
        is_less_valuable=is_less_valuable, type=lot_type,
    )
    db.add(lot)
    db.commit()
    return lot


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("rarebooks.ingest.orchestrator.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


@pytest.fixture()
def gateway():
    return AsyncMock()


@pytest.fixture()
def handler():
    return AsyncMock()


@pytest.fixture()
def orchestrator(gateway, handler, repository):
    return CrawlOrchestrator(gateway, handler, repository)


class TestClassifyLot:
    def test_unknown_category_skipped(self, lot_factory):
        assert classify_lot(lot_factory(categoryId=99999)) is None

    def test_closed_unsold_saved_without_images(self, lot_factory):
        lot = lot_factory(status=2, soldQuantity=0, startPrice=300.0)
        assert classify_lot(lot) == SaveDecision(download_images=False)

    def test_regular_start_price_skipped(self, lot_factory):
        assert classify_lot(lot_factory(startPrice=250.0)) is None

    def test_one_ruble_start_in_high_value_category(self, lot_factory):
        assert classify_lot(lot_factory(startPrice=1.0)) == SaveDecision(download_images=True)

    def test_closed_and_sold_in_high_value_category(self, lot_factory):
        lot = lot_factory(startPrice=500.0, status=2, soldQuantity=1)
        assert classify_lot(lot) == SaveDecision(download_images=True)

    def test_value_gated_above_threshold(self, lot_factory):
        lot = lot_factory(categoryId=13874, price=1500.0)
        assert classify_lot(lot) == SaveDecision(download_images=True)

    def test_value_gated_below_threshold_is_less_valuable(self, lot_factory):
        lot = lot_factory(categoryId=13875, price=400.0)
        assert classify_lot(lot) == SaveDecision(download_images=False, is_less_valuable=True)


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_new_lots_saved_and_stored_ones_skipped(
        self, orchestrator, gateway, handler, db, lot_factory,
    ):
        _store(db, 2, end_date=_utc(days=1))
        gateway.get_lot_ids_for_category.return_value = ("Книги до 1917", [1, 2, 3])
        gateway.get_lot.side_effect = lambda lot_id: lot_factory(lot_id)

        stats = await orchestrator.run_discovery(category_ids=[13870])

        assert stats.processed == 3
        assert stats.saved == 2
        assert stats.skipped == 1
        assert [c.args[0] for c in gateway.get_lot.await_args_list] == [1, 3]
        first = handler.save_lot.await_args_list[0]
        assert first.args[0].id == 1
        assert first.args[1:] == (13870, "Книги до 1917")
        assert first.kwargs == {"download_images": True, "is_less_valuable": False}

    @pytest.mark.asyncio
    async def test_default_categories(self, orchestrator, gateway):
        gateway.get_lot_ids_for_category.return_value = ("", [])

        await orchestrator.run_discovery()

        crawled = [c.args[0] for c in gateway.get_lot_ids_for_category.await_args_list]
        assert crawled == [13870, 13871, 13872, 13873, 13874, 13875, 13876]

    @pytest.mark.asyncio
    async def test_non_qualifying_and_missing_lots_skipped(
        self, orchestrator, gateway, handler, lot_factory,
    ):
        gateway.get_lot_ids_for_category.return_value = ("Книги", [1, 2])
        gateway.get_lot.side_effect = [lot_factory(1, startPrice=700.0), None]

        stats = await orchestrator.run_discovery(category_ids=[13870])

        assert stats.skipped == 2
        handler.save_lot.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_on_one_lot_does_not_stop_the_crawl(
        self, orchestrator, gateway, handler, lot_factory,
    ):
        gateway.get_lot_ids_for_category.return_value = ("Книги", [1, 2])
        gateway.get_lot.side_effect = lambda lot_id: lot_factory(lot_id)
        handler.save_lot.side_effect = [RuntimeError("disk full"), None]

        stats = await orchestrator.run_discovery(category_ids=[13870])

        assert stats.failed == 1
        assert stats.saved == 1
        assert handler.save_lot.await_count == 2

    @pytest.mark.asyncio
    async def test_cancellation_stops_between_lots(
        self, orchestrator, gateway, handler, lot_factory,
    ):
        cancel = asyncio.Event()
        gateway.get_lot_ids_for_category.return_value = ("Книги", [1, 2, 3])
        gateway.get_lot.side_effect = lambda lot_id: lot_factory(lot_id)

        async def save_then_cancel(*args, **kwargs):
            cancel.set()

        handler.save_lot.side_effect = save_then_cancel

        stats = await orchestrator.run_discovery(category_ids=[13870, 13871], cancel=cancel)

        assert stats.cancelled is True
        assert stats.processed == 1
        assert gateway.get_lot_ids_for_category.await_count == 1

    @pytest.mark.asyncio
    async def test_failing_category_does_not_stop_discovery(
        self, orchestrator, gateway, handler, lot_factory,
    ):
        gateway.get_lot_ids_for_category.side_effect = [
            httpx.TooManyRedirects("Exceeded maximum allowed redirects."),
            ("Открытки", [7]),
        ]
        gateway.get_lot.side_effect = lambda lot_id: lot_factory(lot_id, categoryId=13871)

        stats = await orchestrator.run_discovery(category_ids=[13870, 13871])

        assert stats.failed_categories == 1
        assert stats.saved == 1
        assert gateway.get_lot_ids_for_category.await_count == 2
        handler.save_lot.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_id_list_refreshes_stored_lots(
        self, orchestrator, gateway, handler, db, lot_factory,
    ):
        _store(db, 5, end_date=_utc(days=1))
        gateway.get_lot.side_effect = lambda lot_id: lot_factory(lot_id)

        stats = await orchestrator.run_id_list([5])

        assert stats.saved == 1
        handler.save_lot.assert_awaited_once()


class TestFixedPriceSweep:
    @pytest.mark.asyncio
    async def test_walks_ids_after_last_fixed_price_lot(
        self, orchestrator, gateway, handler, db, lot_factory,
    ):
        _store(db, 100, end_date=_utc(days=-10), lot_type="fixedPrice", is_monitored=False)
        _store(db, 103, end_date=_utc(days=1))
        _store(db, 105, end_date=_utc(days=1))
        sold = lot_factory(
            102, type="fixedPrice", status=2, soldQuantity=1, startPrice=800.0,
            beginDate=None, endDate=None,
        )
        gateway.get_lot.side_effect = lambda lot_id: sold if lot_id == 102 else None

        stats = await orchestrator.run_fixed_price_sweep()

        # 103 is already stored, 105 is the upper bound
        assert [c.args[0] for c in gateway.get_lot.await_args_list] == [101, 102, 104]
        assert stats.saved == 1
        assert stats.skipped == 3
        saved = handler.save_lot.await_args
        assert saved.args[0].id == 102
        assert saved.kwargs == {"download_images": True, "is_less_valuable": False}

    @pytest.mark.asyncio
    async def test_nothing_to_scan_without_fixed_price_lots(self, orchestrator, gateway, db):
        _store(db, 100, end_date=_utc(days=1))
        _store(db, 200, end_date=_utc(days=1))

        stats = await orchestrator.run_fixed_price_sweep()

        assert stats.processed == 0
        gateway.get_lot.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_nothing_to_scan_on_empty_store(self, orchestrator, gateway):
        stats = await orchestrator.run_fixed_price_sweep()

        assert stats.processed == 0
        gateway.get_lot.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sweep_honours_cancellation(self, orchestrator, gateway, db):
        _store(db, 10, end_date=_utc(days=-1), lot_type="fixedPrice", is_monitored=False)
        _store(db, 20, end_date=_utc(days=1))
        cancel = asyncio.Event()

        def fetch(lot_id):
            cancel.set()

        gateway.get_lot.side_effect = fetch

        stats = await orchestrator.run_fixed_price_sweep(cancel=cancel)

        assert stats.cancelled is True
        assert gateway.get_lot.await_count == 1


class TestMonitoring:
    @pytest.fixture()
    def real_handler(self, repository, gateway):
        gateway.get_description.return_value = ""
        return LotUpsertHandler(repository, gateway, AsyncMock())

    @pytest.mark.asyncio
    async def test_ended_lots_get_final_price(
        self, gateway, repository, real_handler, db, lot_factory,
    ):
        _store(db, 10, end_date=_utc(hours=-2))
        _store(db, 11, end_date=_utc(days=2))
        _store(db, 12, end_date=_utc(days=-3), is_monitored=False)
        gateway.get_lot.return_value = lot_factory(
            10, endDate=_utc(hours=-2).isoformat(), status=2, soldQuantity=1,
            price=5200.0, normalizedPrice=5200.0,
        )
        orchestrator = CrawlOrchestrator(gateway, real_handler, repository)

        stats = await orchestrator.run_monitoring_pass()

        assert stats.saved == 1
        gateway.get_lot.assert_awaited_once_with(10)
        lot = db.get(Lot, 10)
        assert lot.final_price == 5200.0
        assert lot.is_monitored is False
        assert lot.category_name == "Category 13870"
        assert db.get(Lot, 11).is_monitored is True

    @pytest.mark.asyncio
    async def test_unreachable_lot_stays_monitored(self, gateway, repository, real_handler, db):
        _store(db, 10, end_date=_utc(hours=-2))
        gateway.get_lot.return_value = None
        orchestrator = CrawlOrchestrator(gateway, real_handler, repository)

        stats = await orchestrator.run_monitoring_pass()

        assert stats.skipped == 1
        assert db.get(Lot, 10).is_monitored is True

    @pytest.mark.asyncio
    async def test_less_valuable_flag_is_preserved(self, gateway, repository, handler, db, lot_factory):
        _store(db, 10, end_date=_utc(hours=-2), category_id=13875, is_less_valuable=True)
        gateway.get_lot.return_value = lot_factory(10, categoryId=13875)
        orchestrator = CrawlOrchestrator(gateway, handler, repository)

        await orchestrator.run_monitoring_pass()

        call = handler.save_lot.await_args
        assert call.args[1:] == (13875, "Category 13875")
        assert call.kwargs == {"download_images": False, "is_less_valuable": True}
