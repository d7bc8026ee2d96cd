"""Category crawl (discovery), fixed-price id sweep and post-auction re-check (monitoring) flows."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone

from ..config import settings
from ..marketplace.gateway import MarketplaceGateway
from ..models import Lot
from ..repository import LotRepository
from ..schemas import LOT_TYPE_FIXED_PRICE, CrawlStats, MarketplaceLot, ProgressEvent
from .handler import LotUpsertHandler, ProgressCallback

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SaveDecision:
    download_images: bool
    is_less_valuable: bool = False


def classify_lot(lot: MarketplaceLot) -> SaveDecision | None:
    """Decide whether and how to persist a lot. ``None`` means skip.

    ``start_price == 1`` (a one-ruble start) or a closed lot with sales is the
    marketplace's signal that a lot is worth tracking.
    """
    high_value = lot.category_id in settings.high_value_categories
    value_gated = lot.category_id in settings.value_gated_categories
    if not high_value and not value_gated:
        return None

    if lot.is_closed and lot.sold_quantity == 0:
        return SaveDecision(download_images=False)

    if not (lot.start_price == 1 or (lot.is_closed and lot.sold_quantity > 0)):
        return None

    if high_value:
        return SaveDecision(download_images=True)
    if lot.price >= settings.less_valuable_price_threshold:
        return SaveDecision(download_images=True)
    return SaveDecision(download_images=False, is_less_valuable=True)


class CrawlOrchestrator:
    def __init__(
        self,
        gateway: MarketplaceGateway,
        handler: LotUpsertHandler,
        repository: LotRepository,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.gateway = gateway
        self.handler = handler
        self.repository = repository
        self.on_progress = on_progress

    def _report(self, operation: str, message: str, lot_id: int | None = None, title: str | None = None) -> None:
        if self.on_progress is not None:
            self.on_progress(ProgressEvent(operation=operation, message=message, lot_id=lot_id, title=title))

    @staticmethod
    def _cancelled(cancel: asyncio.Event | None) -> bool:
        return cancel is not None and cancel.is_set()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def run_discovery(
        self,
        category_ids: Iterable[int] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> CrawlStats:
        """Walk every category of interest and persist new lots worth tracking."""
        if category_ids is None:
            category_ids = [*settings.high_value_categories, *settings.value_gated_categories]
        stats = CrawlStats()
        logger.info("Discovery started")

        for category_id in category_ids:
            if self._cancelled(cancel):
                stats.cancelled = True
                break
            self._report("discovery", f"Fetching lot list for category {category_id}")
            try:
                category_name, lot_ids = await self.gateway.get_lot_ids_for_category(category_id)
            except Exception as e:
                stats.failed_categories += 1
                logger.exception("Error fetching lot list for category %s: %s", category_id, e)
                continue
            logger.info(
                "Fetched %d lots for category '%s' (%s)", len(lot_ids), category_name, category_id,
            )
            await self._process_ids(lot_ids, category_name, stats, cancel, skip_existing=True)
            if stats.cancelled:
                break

        logger.info(
            "Discovery finished: processed=%d saved=%d skipped=%d failed=%d "
            "failed_categories=%d cancelled=%s",
            stats.processed, stats.saved, stats.skipped, stats.failed,
            stats.failed_categories, stats.cancelled,
        )
        return stats

    async def run_id_list(
        self, lot_ids: Iterable[int], cancel: asyncio.Event | None = None,
    ) -> CrawlStats:
        """Apply the discovery rules to an explicit list of ids, refreshing stored ones."""
        stats = CrawlStats()
        await self._process_ids(list(lot_ids), "unknown", stats, cancel, skip_existing=False)
        logger.info(
            "Id list finished: processed=%d saved=%d skipped=%d failed=%d",
            stats.processed, stats.saved, stats.skipped, stats.failed,
        )
        return stats

    async def run_fixed_price_sweep(self, cancel: asyncio.Event | None = None) -> CrawlStats:
        """Fetch every id between the newest stored fixed-price lot and the newest stored lot.

        Sold fixed-price listings never show up in the active category lists,
        so the id gap behind them is walked directly. Stored ids are skipped.
        """
        stats = CrawlStats()
        start = self.repository.find_max_lot_id(Lot.type == LOT_TYPE_FIXED_PRICE)
        end = self.repository.find_max_lot_id()
        if start is None or end is None or start + 1 >= end:
            logger.info("Fixed-price sweep: nothing to scan (last fixed-price id=%s, last id=%s)", start, end)
            return stats

        logger.info("Fixed-price sweep over ids %d..%d", start + 1, end - 1)
        await self._process_ids(range(start + 1, end), "unknown", stats, cancel, skip_existing=True)
        logger.info(
            "Fixed-price sweep finished: processed=%d saved=%d skipped=%d failed=%d cancelled=%s",
            stats.processed, stats.saved, stats.skipped, stats.failed, stats.cancelled,
        )
        return stats

    async def _process_ids(
        self,
        lot_ids: Iterable[int],
        category_name: str,
        stats: CrawlStats,
        cancel: asyncio.Event | None,
        *,
        skip_existing: bool,
    ) -> None:
        for lot_id in lot_ids:
            if self._cancelled(cancel):
                stats.cancelled = True
                logger.info("Crawl cancelled before lot %s", lot_id)
                return
            stats.processed += 1
            try:
                saved = await self._process_lot(lot_id, category_name, skip_existing)
            except Exception as e:
                stats.failed += 1
                logger.warning("Error processing lot %s: %s", lot_id, e)
                continue
            if saved:
                stats.saved += 1
                await asyncio.sleep(settings.lot_delay_seconds)
            else:
                stats.skipped += 1

    async def _process_lot(self, lot_id: int, category_name: str, skip_existing: bool) -> bool:
        if skip_existing and self.repository.find_lot_by_id(lot_id) is not None:
            logger.debug("Lot %s already stored, skipping", lot_id)
            return False

        self._report("discovery", f"Fetching lot {lot_id}", lot_id=lot_id)
        lot_data = await self.gateway.get_lot(lot_id)
        if lot_data is None:
            logger.debug("Lot %s not found upstream", lot_id)
            return False

        decision = classify_lot(lot_data)
        if decision is None:
            logger.debug("Lot %s ('%s') does not qualify", lot_id, lot_data.title)
            return False

        logger.info(
            "%s - found '%s' (category %s, images=%s, less_valuable=%s)",
            lot_id, lot_data.title, lot_data.category_id,
            decision.download_images, decision.is_less_valuable,
        )
        self._report("discovery", f"Saving lot {lot_id}", lot_id=lot_id, title=lot_data.title)
        await self.handler.save_lot(
            lot_data,
            lot_data.category_id,
            category_name or "unknown",
            download_images=decision.download_images,
            is_less_valuable=decision.is_less_valuable,
        )
        return True

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    async def run_monitoring_pass(
        self,
        cancel: asyncio.Event | None = None,
        download_images: bool = False,
    ) -> CrawlStats:
        """Re-fetch ended-but-monitored lots to capture their final price."""
        stats = CrawlStats()
        now = datetime.now(timezone.utc)
        lots = self.repository.find_ended_monitored_lots(now)
        logger.info("Monitoring pass: %d ended lots still monitored", len(lots))

        for lot in lots:
            if self._cancelled(cancel):
                stats.cancelled = True
                logger.info("Monitoring pass cancelled before lot %s", lot.id)
                break
            stats.processed += 1
            lot_id = lot.id
            self._report("monitoring", f"Re-checking lot {lot_id}", lot_id=lot_id, title=lot.title)
            try:
                lot_data = await self.gateway.get_lot(lot_id)
                if lot_data is None:
                    stats.skipped += 1
                    logger.warning("Lot %s could not be re-fetched, will retry next pass", lot_id)
                    continue
                updated = await self.handler.save_lot(
                    lot_data,
                    lot_data.category_id or lot.external_category_id or 0,
                    lot.category_name or "unknown",
                    download_images=download_images,
                    is_less_valuable=lot.is_less_valuable,
                )
            except Exception as e:
                stats.failed += 1
                logger.warning("Error re-checking lot %s: %s", lot_id, e)
                continue
            stats.saved += 1
            logger.info("Updated lot %s with final price %s", lot_id, updated.final_price)

        logger.info(
            "Monitoring pass finished: processed=%d updated=%d skipped=%d failed=%d",
            stats.processed, stats.saved, stats.skipped, stats.failed,
        )
        return stats
