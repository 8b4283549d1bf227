import os

# must be set before ``repo`` builds its module engine
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from repo import CatalogRepo, init_db  # noqa: E402


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def repo(engine):
    return CatalogRepo(bind=engine)


@pytest.fixture
def tee(repo):
    return repo.upsert_product("tee", {
        "name": "Tee",
        "price_cents": 2500,
        "sale_price_cents": None,
        "is_active": True,
        "variant_layout": "combination",
        "buckets": [
            {"size": None, "color": None, "quantity": 4},
            {"size": "M", "color": "red", "quantity": 3},
        ],
    })
