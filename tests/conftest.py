"""Test fixtures: in-memory DB and marketplace payload builders."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from rarebooks import models  # noqa: F401  (registers tables)
from rarebooks.database import Base
from rarebooks.repository import SqlLotRepository
from rarebooks.schemas import MarketplaceLot


@pytest.fixture()
def db():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture()
def repository(db):
    return SqlLotRepository(db)


def make_lot(lot_id: int = 1001, **overrides) -> MarketplaceLot:
    """An active auction lot in a high-value category, as the lot endpoint returns it."""
    now = datetime.now(timezone.utc)
    payload = {
        "id": lot_id,
        "title": "Пушкин. Сочинения, 1887 г.",
        "categoryId": 13870,
        "beginDate": (now - timedelta(days=3)).isoformat(),
        "endDate": (now + timedelta(days=2)).isoformat(),
        "price": 2500.0,
        "normalizedPrice": 2500.0,
        "startPrice": 1.0,
        "status": 1,
        "type": "auction",
        "soldQuantity": 0,
        "bidsCount": 4,
        "picsCount": 2,
        "seller": {"displayName": "bookseller"},
        "city": {"name": "Москва"},
        "pictures": [
            {"url": "https://img.meshok.net/1.jpg", "thumbnail": {"x1": "https://img.meshok.net/1_t.jpg"}, "ratio": 0.75},
            {"url": "https://img.meshok.net/2.jpg", "thumbnail": {"x1": "https://img.meshok.net/2_t.jpg"}, "ratio": 1.3},
        ],
        "tags": ["антиквариат"],
    }
    payload.update(overrides)
    return MarketplaceLot.model_validate(payload)


@pytest.fixture()
def lot_factory():
    return make_lot
