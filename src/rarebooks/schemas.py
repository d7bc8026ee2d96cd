from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

LOT_STATUS_CLOSED = 2
LOT_TYPE_FIXED_PRICE = "fixedPrice"


# --- meshok.net payloads ---

class _Upstream(BaseModel):
    model_config = {"alias_generator": to_camel, "populate_by_name": True, "extra": "ignore"}


class Thumbnail(_Upstream):
    x1: str = ""


class Picture(_Upstream):
    url: str = ""
    thumbnail: Thumbnail | None = None
    ratio: float = 1.0


class Seller(_Upstream):
    display_name: str = ""


class City(_Upstream):
    name: str = ""


class MarketplaceLot(_Upstream):
    id: int
    title: str = ""
    category_id: int = 0
    begin_date: datetime | None = None
    end_date: datetime | None = None
    price: float = 0.0
    normalized_price: float | None = None  # final sale price as reported upstream
    start_price: float = 0.0
    status: int = 0
    type: str = ""
    sold_quantity: int = 0
    bids_count: int = 0
    pics_count: int = 0
    seller: Seller | None = None
    city: City | None = None
    pictures: list[Picture] = []
    tags: list[str] = []

    @property
    def is_closed(self) -> bool:
        return self.status == LOT_STATUS_CLOSED

    @property
    def image_urls(self) -> list[str]:
        return [p.url for p in self.pictures if p.url]

    @property
    def thumbnail_urls(self) -> list[str]:
        return [p.thumbnail.x1 for p in self.pictures if p.thumbnail and p.thumbnail.x1]

    @property
    def pics_ratio(self) -> list[float]:
        return [p.ratio for p in self.pictures]


class LotResponse(_Upstream):
    result: MarketplaceLot | None = None


class LotDescription(_Upstream):
    description: str | None = ""


class DescriptionResponse(_Upstream):
    result: LotDescription | None = None


class LotRef(_Upstream):
    id: int


class StatsCategory(_Upstream):
    id: int | None = None
    name: str | None = None


class ListStats(_Upstream):
    categories: list[StatsCategory | None] = []


class LotsListResult(_Upstream):
    lots: list[LotRef] = []
    stats: ListStats | None = None


class LotsListResponse(_Upstream):
    result: LotsListResult | None = None


# --- Pipeline progress ---

@dataclass
class ProgressEvent:
    operation: str
    message: str
    lot_id: int | None = None
    title: str | None = None
    is_error: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class CrawlStats:
    processed: int = 0
    saved: int = 0
    skipped: int = 0
    failed: int = 0
    failed_categories: int = 0
    cancelled: bool = False


@dataclass
class IngestStatus:
    is_paused: bool
    is_running_now: bool
    last_run_time: datetime | None
    next_run_time: datetime | None
    current_operation: str | None
    processed_count: int
    last_processed_lot_id: int | None
    last_processed_lot_title: str | None
