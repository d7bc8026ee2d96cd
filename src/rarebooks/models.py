from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category_id: Mapped[int] = mapped_column(Integer, unique=True, index=True)  # meshok.net id
    name: Mapped[str] = mapped_column(Text, default="")

    lots: Mapped[list["Lot"]] = relationship(back_populates="category")


class Lot(Base):
    __tablename__ = "lots"

    # Marketplace lot id, never generated locally
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    category_id: Mapped[int] = mapped_column(Integer, ForeignKey("categories.id"), index=True)

    title: Mapped[str] = mapped_column(Text, default="")
    normalized_title: Mapped[str] = mapped_column(Text, default="", index=True)
    description: Mapped[str] = mapped_column(Text, default="")
    normalized_description: Mapped[str] = mapped_column(Text, default="")

    begin_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)

    price: Mapped[float] = mapped_column(Float, default=0.0)
    start_price: Mapped[float] = mapped_column(Float, default=0.0)
    final_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    year_published: Mapped[int | None] = mapped_column(Integer, nullable=True)

    seller_name: Mapped[str] = mapped_column(Text, default="")
    city: Mapped[str] = mapped_column(Text, default="")
    type: Mapped[str] = mapped_column(Text, default="")  # auction / fixedPrice
    status: Mapped[int] = mapped_column(Integer, default=0)  # 2 = closed
    sold_quantity: Mapped[int] = mapped_column(Integer, default=0)
    bids_count: Mapped[int] = mapped_column(Integer, default=0)
    pics_count: Mapped[int] = mapped_column(Integer, default=0)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)

    image_urls: Mapped[list[str]] = mapped_column(JSON, default=list)
    thumbnail_urls: Mapped[list[str]] = mapped_column(JSON, default=list)
    pics_ratio: Mapped[list[float]] = mapped_column(JSON, default=list)

    is_monitored: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    is_less_valuable: Mapped[bool] = mapped_column(Boolean, default=False)
    is_images_compressed: Mapped[bool] = mapped_column(Boolean, default=False)
    image_archive_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    category: Mapped["Category"] = relationship(back_populates="lots")

    @property
    def category_name(self) -> str:
        return self.category.name if self.category else ""

    @property
    def external_category_id(self) -> int | None:
        return self.category.category_id if self.category else None
