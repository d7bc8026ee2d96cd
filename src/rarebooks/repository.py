"""Persistence contract used by the ingestion pipeline."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime

from sqlalchemy import ColumnElement, func, select
from sqlalchemy.orm import Session

from .models import Category, Lot

logger = logging.getLogger(__name__)


class LotRepository(ABC):
    """Lot/category store. Implementations own their own concurrency control."""

    @abstractmethod
    def find_lot_by_id(self, lot_id: int) -> Lot | None:
        ...

    @abstractmethod
    def upsert_lot(self, lot: Lot) -> Lot:
        """Insert or update *lot* and make the change durable."""
        ...

    @abstractmethod
    def find_or_create_category(self, category_id: int, name: str) -> Category:
        """Return the category, creating it with *name* on first sight only."""
        ...

    @abstractmethod
    def query_lots(self, *criteria: ColumnElement[bool]) -> list[Lot]:
        ...

    @abstractmethod
    def find_max_lot_id(self, *criteria: ColumnElement[bool]) -> int | None:
        """Highest stored lot id matching *criteria*, or None when nothing matches."""
        ...

    def find_ended_monitored_lots(self, now: datetime) -> list[Lot]:
        """Lots whose auction is over but whose final price was never captured."""
        return self.query_lots(Lot.end_date < now, Lot.is_monitored.is_(True))


class SqlLotRepository(LotRepository):
    def __init__(self, db: Session) -> None:
        self.db = db

    def find_lot_by_id(self, lot_id: int) -> Lot | None:
        return self.db.get(Lot, lot_id)

    def upsert_lot(self, lot: Lot) -> Lot:
        try:
            lot = self.db.merge(lot)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return lot

    def find_or_create_category(self, category_id: int, name: str) -> Category:
        category = self.db.scalars(
            select(Category).where(Category.category_id == category_id)
        ).first()
        if category is not None:
            logger.debug("Category %s found as '%s'", category_id, category.name)
            return category

        logger.info("Creating category %s '%s'", category_id, name)
        category = Category(category_id=category_id, name=name)
        self.db.add(category)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return category

    def query_lots(self, *criteria: ColumnElement[bool]) -> list[Lot]:
        return list(self.db.scalars(select(Lot).where(*criteria).order_by(Lot.id)))

    def find_max_lot_id(self, *criteria: ColumnElement[bool]) -> int | None:
        return self.db.scalar(select(func.max(Lot.id)).where(*criteria))
