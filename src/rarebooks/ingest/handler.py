"""Create-or-update of a single lot, with enrichment and image archiving."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from ..marketplace.gateway import MarketplaceGateway
from ..models import Lot
from ..repository import LotRepository
from ..schemas import MarketplaceLot, ProgressEvent
from ..year_extractor import extract_year
from .archiver import ImageArchiver

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


def _as_utc(dt: datetime | None) -> datetime | None:
    """Normalize to UTC; naive datetimes (SQLite round-trips) are taken as UTC already."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def auction_state(lot_data: MarketplaceLot, now: datetime) -> tuple[bool, float | None]:
    """Return ``(is_monitored, final_price)`` for a freshly fetched lot.

    Without the auction window (fixed-price listings) there is nothing to
    wait for, so the upstream final price is taken as-is. Otherwise the lot
    stays monitored until its end date passes and only an ended lot gets a
    final price.
    """
    end_date = _as_utc(lot_data.end_date)
    if end_date is None or lot_data.begin_date is None:
        return False, lot_data.normalized_price
    if end_date >= now:
        return True, None
    return False, lot_data.normalized_price


class LotUpsertHandler:
    def __init__(
        self,
        repository: LotRepository,
        gateway: MarketplaceGateway,
        archiver: ImageArchiver,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.repository = repository
        self.gateway = gateway
        self.archiver = archiver
        self.on_progress = on_progress

    def _report(self, lot_id: int, message: str, *, title: str | None = None, is_error: bool = False) -> None:
        if self.on_progress is None:
            return
        self.on_progress(ProgressEvent(
            operation="save_lot", message=message, lot_id=lot_id, title=title, is_error=is_error,
        ))

    async def save_lot(
        self,
        lot_data: MarketplaceLot,
        category_id: int,
        category_name: str = "unknown",
        download_images: bool = True,
        is_less_valuable: bool = False,
    ) -> Lot:
        """Persist *lot_data*, creating or fully overwriting the stored lot.

        Failures are logged with the lot id and re-raised; the caller decides
        whether to continue.
        """
        lot_id = lot_data.id
        try:
            self._report(lot_id, f"Processing lot {lot_id}", title=lot_data.title)
            existing = self.repository.find_lot_by_id(lot_id)
            category = self.repository.find_or_create_category(category_id, category_name)

            description = await self.gateway.get_description(lot_id)
            year = extract_year(description) or extract_year(lot_data.title)
            logger.debug("Lot %s: description fetched, year=%s", lot_id, year)

            now = datetime.now(timezone.utc)
            is_monitored, final_price = auction_state(lot_data, now)

            if existing is None:
                logger.info("Lot %s not stored yet, creating", lot_id)
                lot = Lot(id=lot_id, is_images_compressed=False, image_archive_url=None)
                lot.final_price = final_price
                lot.is_monitored = is_monitored
            else:
                logger.info("Lot %s already stored, updating", lot_id)
                lot = existing
                if final_price is not None:
                    lot.final_price = final_price
                # A captured final price is terminal: the lot is not watched again
                lot.is_monitored = is_monitored and lot.final_price is None

            lot.category_id = category.id
            self._apply_fields(lot, lot_data, description, year, is_less_valuable)
            if is_less_valuable:
                lot.is_images_compressed = False
                lot.image_archive_url = None

            lot = self.repository.upsert_lot(lot)
            self._report(lot_id, f"Lot {lot_id} saved", title=lot.title)

            if not is_less_valuable and download_images:
                self._report(lot_id, f"Archiving images for lot {lot_id}", title=lot.title)
                location = await self.archiver.archive(lot_id, lot.image_urls, lot.thumbnail_urls)
                if location:
                    lot.is_images_compressed = True
                    lot.image_archive_url = location
                    lot = self.repository.upsert_lot(lot)
                    self._report(lot_id, f"Images for lot {lot_id} archived", title=lot.title)
            return lot
        except Exception as e:
            logger.exception("Error saving lot %s", lot_id)
            self._report(lot_id, f"Error saving lot {lot_id}: {e}", is_error=True)
            raise

    @staticmethod
    def _apply_fields(
        lot: Lot,
        lot_data: MarketplaceLot,
        description: str,
        year: int | None,
        is_less_valuable: bool,
    ) -> None:
        lot.title = lot_data.title
        lot.normalized_title = lot_data.title.lower()
        lot.description = description
        lot.normalized_description = description.lower()
        lot.begin_date = _as_utc(lot_data.begin_date)
        lot.end_date = _as_utc(lot_data.end_date)
        lot.price = lot_data.price
        lot.start_price = lot_data.start_price
        lot.year_published = year
        lot.seller_name = lot_data.seller.display_name if lot_data.seller else ""
        lot.city = lot_data.city.name if lot_data.city else ""
        lot.type = lot_data.type
        lot.status = lot_data.status
        lot.sold_quantity = lot_data.sold_quantity
        lot.bids_count = lot_data.bids_count
        lot.pics_count = lot_data.pics_count
        lot.tags = list(lot_data.tags)
        lot.image_urls = lot_data.image_urls
        lot.thumbnail_urls = lot_data.thumbnail_urls
        lot.pics_ratio = lot_data.pics_ratio
        lot.is_less_valuable = is_less_valuable
