import threading
from datetime import timedelta
from itertools import combinations

import pytest
from sqlmodel import Session, SQLModel, create_engine, select

from asset_bookings.availability import intervals_overlap
from asset_bookings.clock import as_utc
from asset_bookings.errors import (
    AssetNotFound,
    BookingNotFound,
    IntervalUnavailable,
    InvalidInterval,
    PoolAssetWriteRefused,
    ReturnAlreadyRecorded,
)
from asset_bookings.manager import BookingManager
from asset_bookings.models import Booking, Interval, ReturnCondition
from asset_bookings.publisher import RabbitAuditEmitter
from asset_bookings.repository import BookingRepository
from asset_bookings.sweeper import reconcile
from conftest import (
    OTHER_POOL_ASSET,
    PERSONAL_ASSET,
    POOL_ASSET,
    FakeDirectory,
    RecordingAudit,
    day,
)


def test_future_booking_is_reserved_and_blocks_overlaps(manager):
    b = manager.create(POOL_ASSET, "emp-1", day(1), day(3))
    assert b.status == "reserved"

    with pytest.raises(IntervalUnavailable):
        manager.create(POOL_ASSET, "emp-2", day(2), day(4))


def test_back_to_back_booking_on_same_day_is_refused(manager):
    manager.create(POOL_ASSET, "emp-1", day(1), day(3))
    with pytest.raises(IntervalUnavailable):
        manager.create(POOL_ASSET, "emp-2", day(3), day(4))


def test_booking_covering_now_is_active_at_once(manager, clock):
    now = clock.now()
    b = manager.create(POOL_ASSET, "emp-1", now - timedelta(hours=1), now + timedelta(hours=1))
    assert b.status == "active"


def test_sweep_completes_booking_after_window(manager, repo, clock):
    b = manager.create(POOL_ASSET, "emp-1", day(1), day(3))

    clock.set(day(2))
    reconcile(repo, clock.now())
    assert manager.get(b.id).status == "active"

    clock.set(day(3) + timedelta(minutes=1))
    reconcile(repo, clock.now())
    assert manager.get(b.id).status == "completed"


def test_cancel_frees_the_window(manager, audit):
    b = manager.create(POOL_ASSET, "emp-1", day(1), day(3))

    canceled = manager.cancel(b.id, acting_user_id="admin")
    assert canceled.status == "canceled"

    again = manager.create(POOL_ASSET, "emp-2", day(2), day(4))
    assert again.status == "reserved"
    assert audit.entries[1]["note"].startswith("Booking canceled: ")
    assert audit.entries[1]["acting_user_id"] == "admin"


def test_return_of_active_booking_completes_it(manager, clock):
    clock.set(day(2))
    b = manager.create(POOL_ASSET, "emp-1", day(1), day(3))
    assert b.status == "active"

    returned = manager.record_return(b.id, ReturnCondition.INCOMPLETE, comments="charger missing")

    assert returned.status == "completed"
    assert returned.return_info["returned"] is True
    assert returned.return_info["condition"] == "incomplete"
    assert returned.return_info["comments"] == "charger missing"
    assert as_utc(returned.start) == day(1)
    assert as_utc(returned.end) == day(3)


def test_return_of_reserved_booking_completes_it(manager):
    b = manager.create(POOL_ASSET, "emp-1", day(1), day(3))

    returned = manager.record_return(b.id, "good", checked_by_id="it-desk")

    assert returned.status == "completed"
    assert returned.return_info["checked_by_id"] == "it-desk"
    assert returned.return_info["checked_at"] is not None


def test_return_can_only_be_recorded_once(manager):
    b = manager.create(POOL_ASSET, "emp-1", day(1), day(3))
    manager.record_return(b.id, ReturnCondition.GOOD)

    with pytest.raises(ReturnAlreadyRecorded):
        manager.record_return(b.id, ReturnCondition.DAMAGED)
    assert manager.get(b.id).return_info["condition"] == "good"


def test_unknown_asset_and_busy_asset_are_different_errors(manager):
    manager.create(POOL_ASSET, "emp-1", day(1), day(3))

    with pytest.raises(AssetNotFound):
        manager.create("nope", "emp-1", day(1), day(3))
    with pytest.raises(IntervalUnavailable):
        manager.create(POOL_ASSET, "emp-1", day(1), day(3))
    assert not issubclass(AssetNotFound, IntervalUnavailable)


def test_start_after_end_is_rejected(manager):
    with pytest.raises(InvalidInterval):
        manager.create(POOL_ASSET, "emp-1", day(3), day(1))


def test_holder_is_optional(manager):
    b = manager.create(POOL_ASSET, None, day(1), day(2), purpose="placeholder")
    assert b.holder_id is None


@pytest.mark.parametrize("action", ["cancel", "complete", "record_return", "reschedule"])
def test_missing_booking(manager, action):
    with pytest.raises(BookingNotFound):
        if action == "record_return":
            manager.record_return(999, ReturnCondition.GOOD)
        elif action == "reschedule":
            manager.reschedule(999, day(1), day(2))
        else:
            getattr(manager, action)(999)


def test_finishing_a_terminal_booking_is_a_noop(manager, audit):
    b = manager.create(POOL_ASSET, "emp-1", day(1), day(3))
    manager.complete(b.id)
    entries = len(audit.entries)

    assert manager.cancel(b.id).status == "completed"
    assert manager.complete(b.id).status == "completed"
    assert len(audit.entries) == entries


def test_reschedule_checks_other_bookings_only(manager):
    first = manager.create(POOL_ASSET, "emp-1", day(1), day(3))
    manager.create(POOL_ASSET, "emp-2", day(5), day(6))

    moved = manager.reschedule(first.id, day(2), day(4))
    assert as_utc(moved.start) == day(2)

    with pytest.raises(IntervalUnavailable):
        manager.reschedule(first.id, day(4), day(5))


def test_reschedule_leaves_status_to_the_sweeper(manager, repo, clock):
    b = manager.create(POOL_ASSET, "emp-1", day(1), day(3))
    now = clock.now()

    moved = manager.reschedule(b.id, now - timedelta(hours=1), now + timedelta(hours=1))
    assert moved.status == "reserved"

    reconcile(repo, clock.now())
    assert manager.get(b.id).status == "active"


def test_pool_asset_is_never_written(manager, directory):
    b = manager.create(POOL_ASSET, "emp-1", day(1), day(3))
    manager.record_return(b.id, ReturnCondition.DAMAGED)

    assert POOL_ASSET not in directory.assignments
    assert POOL_ASSET not in directory.defective


def test_personal_asset_is_assigned_and_flagged(manager, directory):
    b = manager.create(PERSONAL_ASSET, "emp-1", day(1), day(3))
    assert directory.assignments[PERSONAL_ASSET] == "emp-1"

    manager.record_return(b.id, ReturnCondition.DAMAGED)
    assert PERSONAL_ASSET in directory.defective


def test_audit_notes(manager, audit):
    b = manager.create(POOL_ASSET, "emp-1", day(1), day(3), purpose="Trade fair", acting_user_id="u1")
    manager.record_return(b.id, ReturnCondition.LOST, comments="left on train")

    created, returned = audit.entries
    assert created["action"] == "booking"
    assert created["note"].startswith("Scheduled booking: 01.03.2026")
    assert created["note"].endswith(" - Trade fair")
    assert created["acting_user_id"] == "u1"
    assert returned["action"] == "return"
    assert returned["note"] == "Return after booking: lost - left on train"


def test_audit_outage_does_not_undo_the_booking(repo, directory, clock):
    def broken_publish(*args, **kwargs):
        raise ConnectionError("broker down")

    manager = BookingManager(repo, directory, RabbitAuditEmitter(publish=broken_publish), clock)
    b = manager.create(POOL_ASSET, "emp-1", day(1), day(3))

    assert repo.get(b.id).status == "reserved"


def test_current_or_upcoming_and_availability_badge(manager, repo, clock):
    assert manager.availability_status(POOL_ASSET) == "available"

    first = manager.create(POOL_ASSET, "emp-1", day(1), day(3))
    second = manager.create(POOL_ASSET, "emp-2", day(5), day(6))
    assert manager.current_or_upcoming(POOL_ASSET).id == first.id
    assert manager.availability_status(POOL_ASSET) == "available-partial"

    clock.set(day(2))
    reconcile(repo, clock.now())
    assert manager.current_or_upcoming(POOL_ASSET).id == first.id
    assert manager.availability_status(POOL_ASSET) == "booked"

    clock.set(day(4))
    reconcile(repo, clock.now())
    assert manager.current_or_upcoming(POOL_ASSET).id == second.id

    clock.set(day(7))
    reconcile(repo, clock.now())
    assert manager.current_or_upcoming(POOL_ASSET) is None
    assert manager.availability_status(POOL_ASSET) == "available"


def test_stats(manager, clock):
    manager.create(POOL_ASSET, "emp-1", day(1), day(3))
    manager.create(OTHER_POOL_ASSET, "emp-2", day(0), day(5))
    canceled = manager.create(POOL_ASSET, "emp-3", day(5), day(6))
    manager.cancel(canceled.id)

    clock.set(day(2))
    # no sweep yet: in-window reserved bookings already count as active
    assert manager.stats() == {"active": 2, "reserved": 0, "total": 3}
    assert manager.stats([POOL_ASSET]) == {"active": 1, "reserved": 0, "total": 2}


def test_open_bookings_never_overlap(manager, repo, clock):
    windows = [(d, d + length) for d in range(1, 12) for length in (0, 1, 2)]
    for n, (start, end) in enumerate(windows):
        try:
            b = manager.create(POOL_ASSET, f"emp-{n}", day(start, hours=n % 5), day(end, hours=n % 7))
        except (IntervalUnavailable, InvalidInterval):
            continue
        if n % 4 == 0:
            manager.cancel(b.id)

    open_ = repo.query_open()
    assert open_
    for a, b in combinations(open_, 2):
        assert not intervals_overlap(Interval(a.start, a.end), Interval(b.start, b.end))


def test_canceled_booking_can_move_onto_a_taken_window(manager):
    canceled = manager.create(POOL_ASSET, "emp-1", day(1), day(2))
    manager.cancel(canceled.id)
    manager.create(POOL_ASSET, "emp-2", day(5), day(6))

    moved = manager.reschedule(canceled.id, day(5), day(6))

    assert moved.status == "canceled"
    assert as_utc(moved.start) == day(5)


def test_create_looks_the_asset_up_once(manager, directory):
    manager.create(PERSONAL_ASSET, "emp-1", day(1), day(3))

    assert directory.lookups == [PERSONAL_ASSET]
    assert directory.assignments[PERSONAL_ASSET] == "emp-1"


class ReclassifiedDirectory(FakeDirectory):
    """The inventory made the asset a pool device after it was looked up."""

    def set_asset_assignment(self, asset_id, holder_id, is_pool=None):
        raise PoolAssetWriteRefused(asset_id)

    def flag_asset_defective(self, asset_id, is_pool=None):
        raise PoolAssetWriteRefused(asset_id)


def test_refused_directory_write_keeps_the_booking(repo, audit, clock):
    manager = BookingManager(repo, ReclassifiedDirectory(personal={PERSONAL_ASSET}), audit, clock)

    b = manager.create(PERSONAL_ASSET, "emp-1", day(1), day(3))
    returned = manager.record_return(b.id, ReturnCondition.DAMAGED)

    assert returned.status == "completed"
    assert repo.get(b.id).return_info["condition"] == "damaged"
    assert [e["action"] for e in audit.entries] == ["booking", "return"]


# ------------------------------------------------------------
# Races decided by the store
# ------------------------------------------------------------
class InterleavingRepository(BookingRepository):
    """Runs ``before_return`` once, right before a return is written."""

    def __init__(self, session, before_return):
        super().__init__(session)
        self.before_return = before_return

    def update(self, booking_id, fields, **kwargs):
        if "return_info" in fields and self.before_return is not None:
            hook, self.before_return = self.before_return, None
            hook()
        return super().update(booking_id, fields, **kwargs)


def test_concurrent_returns_on_completed_booking_keep_the_first(session, directory, audit, clock):
    other = BookingManager(BookingRepository(session), directory, audit, clock)
    b = other.create(POOL_ASSET, "emp-1", day(1), day(3))
    other.complete(b.id)

    racing = BookingManager(
        InterleavingRepository(session, lambda: other.record_return(b.id, ReturnCondition.DAMAGED)),
        directory,
        audit,
        clock,
    )
    with pytest.raises(ReturnAlreadyRecorded):
        racing.record_return(b.id, ReturnCondition.GOOD)

    assert other.get(b.id).return_info["condition"] == "damaged"
    assert [e["action"] for e in audit.entries].count("return") == 1


class GatedRepository(BookingRepository):
    """Holds every insert until all competing creates have checked availability."""

    def __init__(self, session, gate):
        super().__init__(session)
        self.gate = gate

    def insert(self, b):
        self.gate.wait()
        return super().insert(b)


def test_store_decides_between_concurrent_creates(tmp_path, directory, clock):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'bookings.db'}",
        connect_args={"check_same_thread": False, "timeout": 10},
    )
    SQLModel.metadata.create_all(engine)
    gate = threading.Barrier(2, timeout=10)
    outcomes = []

    def attempt(holder_id):
        with Session(engine) as s:
            manager = BookingManager(GatedRepository(s, gate), directory, RecordingAudit(), clock)
            try:
                manager.create(POOL_ASSET, holder_id, day(1), day(3))
                outcomes.append("created")
            except IntervalUnavailable:
                outcomes.append("refused")

    threads = [threading.Thread(target=attempt, args=(f"emp-{n}",)) for n in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(30)

    with Session(engine) as s:
        stored = s.exec(select(Booking)).all()
    engine.dispose()

    assert sorted(outcomes) == ["created", "refused"]
    assert len(stored) == 1
