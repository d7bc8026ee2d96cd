"""Typed meshok.net operations on top of the session client."""

from __future__ import annotations

import logging
from typing import Any

from ..config import settings
from ..schemas import (
    DescriptionResponse,
    ListStats,
    LotResponse,
    LotsListResponse,
    MarketplaceLot,
)
from . import MarketplaceError
from .session import SessionClient

logger = logging.getLogger(__name__)

# Filter keys the list endpoint expects to be present even when unused
_NULL_FILTER_KEYS = (
    "excludedCategoryIds", "searchString", "timeline", "condition", "type",
    "priceStart", "priceEnd", "quantity", "properties", "tags", "excludedSellers",
    "sellerId", "bidderId", "related", "soldStatus", "fromT", "tillT",
    "endsFromT", "endsTillT", "fromD", "tillD", "endsFromD", "endsTillD",
    "standardDescriptionId",
)


def _category_name(stats: ListStats | None, category_id: int) -> str:
    """Pick the category's display name out of the list stats breadcrumb."""
    if not stats or not stats.categories:
        return ""
    entries = stats.categories
    for entry in entries:
        if entry and entry.id == category_id and entry.name:
            return entry.name
    # Breadcrumb is root > section > category; the third entry is the category itself
    if len(entries) > 2 and entries[2] and entries[2].name:
        return entries[2].name
    last = entries[-1]
    return (last.name or "") if last else ""


def build_list_request(category_id: int, page: int, page_size: int) -> dict[str, Any]:
    lot_filter: dict[str, Any] = {key: None for key in _NULL_FILTER_KEYS}
    lot_filter.update({
        "categoryId": category_id,
        "status": "active",
        "showOnly": ["allForCoin"],
        "location": {
            "cityId": settings.marketplace_city_id,
            "option": "all",
            "freeDelivery": False,
            "economyDelivery": False,
            "pickup": False,
        },
        "page": page,
        "pageSize": page_size,
        "sort": {"field": "endDate", "direction": 0},
    })
    return {
        "sellerMode": False,
        "filter": lot_filter,
        "includes": {"lots": True, "stats": True},
        "saveSearchRequest": False,
        "featuredLotsFirst": True,
        "onlyWithPicture": False,
    }


class MarketplaceGateway:
    """Lot lookups that never raise: absence is reported as ``None``/empty."""

    def __init__(self, session: SessionClient) -> None:
        self.session = session
        self._request_count = 0

    async def _renew_cookies_if_needed(self) -> None:
        self._request_count += 1
        if self._request_count >= settings.cookie_renew_every:
            logger.debug("Proactive cookie renewal after %d requests", self._request_count)
            await self.session.refresh_cookies()
            self._request_count = 0

    async def get_lot(self, lot_id: int) -> MarketplaceLot | None:
        await self._renew_cookies_if_needed()
        try:
            await self.session.ensure_initialized()
            resp = await self.session.post_json(
                settings.marketplace_lot_url, {"lotId": lot_id}, LotResponse,
            )
        except MarketplaceError as e:
            logger.warning("Failed to fetch lot %s: %s", lot_id, e)
            return None
        return resp.result

    async def get_description(self, lot_id: int) -> str:
        await self._renew_cookies_if_needed()
        try:
            await self.session.ensure_initialized()
            resp = await self.session.post_json(
                settings.marketplace_description_url, {"lotId": lot_id}, DescriptionResponse,
            )
        except MarketplaceError as e:
            logger.warning("Failed to fetch description for lot %s: %s", lot_id, e)
            return ""
        if resp.result is None:
            return ""
        return resp.result.description or ""

    async def get_lot_ids_for_category(self, category_id: int) -> tuple[str, list[int]]:
        """Page through active lots of a category, soonest-ending first."""
        category_name = ""
        lot_ids: list[int] = []
        page = 1
        page_size = settings.list_page_size

        while True:
            await self._renew_cookies_if_needed()
            try:
                await self.session.ensure_initialized()
                resp = await self.session.post_json(
                    settings.marketplace_list_url,
                    build_list_request(category_id, page, page_size),
                    LotsListResponse,
                )
            except MarketplaceError as e:
                logger.warning(
                    "Error fetching lots list for category %s on page %d: %s",
                    category_id, page, e,
                )
                break

            if resp.result is None or not resp.result.lots:
                break
            if page == 1:
                category_name = _category_name(resp.result.stats, category_id)
            lot_ids.extend(lot.id for lot in resp.result.lots)
            page += 1

        logger.info(
            "Category %s ('%s'): %d lots over %d pages",
            category_id, category_name, len(lot_ids), page - 1,
        )
        return category_name, lot_ids
