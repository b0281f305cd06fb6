# tests/conftest.py
import itertools
from datetime import datetime, timedelta
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from autohunt.db import Base
from autohunt.models import Fingerprint, Listing, Hunt
from autohunt.services.shapes import FingerprintShape, ListingShape

NOW = datetime(2026, 10, 17, 9, 0, 0)

_ids = itertools.count(1)

HILUX_FINGERPRINT = dict(
    make="Toyota", model="HiLux", variant="SR5 Double Cab", fuel="Diesel", transmission="Automatic",
    drivetrain="4x4", year_min=2019, year_max=2021, reference_km=70000, buy_price=38000, sell_price=45000,
    sample_count=12,
)

HILUX_LISTING = dict(
    source="carsales", source_class="dealer", seller_type="dealer", make="Toyota", model="Hilux",
    variant="SR5 (4x4) Double Cab", year=2020, km=64000, asking_price=36000, drivetrain="4x4", fuel="Diesel",
    transmission="Automatic", state="NSW", url="https://example.test/listing",
)

def fingerprint_shape(**kw) -> FingerprintShape:
    values = {"id": 1, **HILUX_FINGERPRINT, **kw}
    return FingerprintShape(**values)

def listing_shape(**kw) -> ListingShape:
    values = {"id": 1, "external_id": "L1", "first_seen_at": NOW - timedelta(days=1), **HILUX_LISTING, **kw}
    return ListingShape(**values)

def make_fingerprint(db, **kw) -> Fingerprint:
    fp = Fingerprint(**{**HILUX_FINGERPRINT, **kw})
    db.add(fp)
    db.commit()
    return fp

def make_listing(db, **kw) -> Listing:
    values = {"external_id": f"EXT-{next(_ids)}", "first_seen_at": NOW - timedelta(days=1),
              "last_seen_at": NOW - timedelta(days=1), **HILUX_LISTING, **kw}
    listing = Listing(**values)
    db.add(listing)
    db.commit()
    return listing

def make_hunt(db, fingerprint, **kw) -> Hunt:
    hunt = Hunt(fingerprint_id=fingerprint.id, **kw)
    db.add(hunt)
    db.commit()
    return hunt

class StepClock:
    """Monotonic clock that advances by `step` on every read."""

    def __init__(self, start: float = 0.0, step: float = 1.0):
        self.value = start - step
        self.step = step

    def __call__(self) -> float:
        self.value += self.step
        return self.value

@pytest.fixture
def engine():
    engine = create_engine("sqlite://", future=True, poolclass=StaticPool,
                           connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()

@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()
