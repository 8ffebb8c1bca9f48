"""
Pytest fixtures for the booking engine: in-memory database,
pinned clock, fake asset directory and a recording audit sink.
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from asset_bookings.clock import FrozenClock
from asset_bookings.directory import AssetRecord
from asset_bookings.manager import BookingManager
from asset_bookings.repository import BookingRepository


# Day n of the test month, midnight UTC. "Now" sits before day 1.
def day(n, hours=0):
    return datetime(2026, 3, 1, tzinfo=timezone.utc) + timedelta(days=n - 1, hours=hours)


START_OF_TESTS = day(1) - timedelta(days=2)

POOL_ASSET = "X"
OTHER_POOL_ASSET = "Y"
PERSONAL_ASSET = "LAPTOP-7"


class FakeDirectory:
    def __init__(self, pool=(), personal=()):
        self.pool = set(pool)
        self.personal = set(personal)
        self.assignments = {}
        self.defective = set()
        self.lookups = []

    def lookup_asset(self, asset_id):
        self.lookups.append(asset_id)
        if asset_id in self.pool or asset_id in self.personal:
            return AssetRecord(asset_id, asset_id in self.pool)
        return None

    def asset_exists(self, asset_id):
        return self.lookup_asset(asset_id) is not None

    def is_pool_asset(self, asset_id):
        return asset_id in self.pool

    def set_asset_assignment(self, asset_id, holder_id, is_pool=None):
        assert asset_id not in self.pool, "pool asset must not be assigned"
        self.assignments[asset_id] = holder_id

    def flag_asset_defective(self, asset_id, is_pool=None):
        assert asset_id not in self.pool, "pool asset must not be flagged"
        self.defective.add(asset_id)


class RecordingAudit:
    def __init__(self):
        self.entries = []

    def record(self, asset_id, action, holder_id, note, acting_user_id=None):
        self.entries.append({
            "asset_id": asset_id,
            "action": action,
            "holder_id": holder_id,
            "note": note,
            "acting_user_id": acting_user_id,
        })


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def repo(session):
    return BookingRepository(session)


@pytest.fixture
def clock():
    return FrozenClock(START_OF_TESTS)


@pytest.fixture
def directory():
    return FakeDirectory(pool={POOL_ASSET, OTHER_POOL_ASSET}, personal={PERSONAL_ASSET})


@pytest.fixture
def audit():
    return RecordingAudit()


@pytest.fixture
def manager(repo, directory, audit, clock):
    return BookingManager(repo, directory, audit, clock)
