# ============================================================
# manager.py — Booking lifecycle operations
# ------------------------------------------------------------
# Orchestrates the user-driven side of a booking:
#   - create      : availability check, initial status, persist
#   - cancel      : force "canceled"
#   - complete    : force "completed"
#   - reschedule  : move the window (status left to the sweeper)
#   - record_return : one-time return/condition, forces "completed"
# plus the read helpers the dashboard needs.
#
# Pool assets are shared: a booking never writes their asset
# record. Non-pool assets get the holder assigned on create and
# are flagged defective when returned damaged.
# ============================================================
import logging
from datetime import datetime
from typing import List, Optional

from asset_bookings import summary
from asset_bookings.availability import is_available
from asset_bookings.clock import Clock, SystemClock, as_utc
from asset_bookings.directory import AssetDirectory
from asset_bookings.errors import (
    AssetNotFound,
    BookingNotFound,
    DuplicateBooking,
    IntervalUnavailable,
    PoolAssetWriteRefused,
    ReturnAlreadyRecorded,
    StorageFailure,
)
from asset_bookings.lifecycle import initial_status, is_terminal
from asset_bookings.models import Booking, BookingStatus, Interval, ReturnCondition
from asset_bookings.publisher import AuditEmitter
from asset_bookings.repository import BookingRepository

logger = logging.getLogger(__name__)

BOOKING_ACTION = "booking"
RETURN_ACTION = "return"

CONDITION_TEXT = {
    ReturnCondition.GOOD: "in good condition",
    ReturnCondition.DAMAGED: "damaged",
    ReturnCondition.INCOMPLETE: "incomplete",
    ReturnCondition.LOST: "lost",
}


class BookingManager:
    def __init__(
        self,
        repository: BookingRepository,
        directory: AssetDirectory,
        audit: AuditEmitter,
        clock: Optional[Clock] = None,
    ):
        self.repository = repository
        self.directory = directory
        self.audit = audit
        self.clock = clock or SystemClock()

    # --------------------------------------------------------
    # Writes
    # --------------------------------------------------------
    def create(
        self,
        asset_id: str,
        holder_id: Optional[str],
        start: datetime,
        end: datetime,
        purpose: Optional[str] = None,
        acting_user_id: Optional[str] = None,
    ) -> Booking:
        asset = self.directory.lookup_asset(asset_id)
        if asset is None:
            raise AssetNotFound(asset_id)
        interval = Interval(start, end)

        if not is_available(self.repository, asset_id, interval):
            raise IntervalUnavailable(asset_id, interval.start, interval.end)

        status = initial_status(interval, self.clock.now())
        b = Booking(
            asset_id=asset_id,
            holder_id=holder_id,
            start=interval.start,
            end=interval.end,
            purpose=purpose or None,
            status=status.value,
        )
        try:
            created = self.repository.insert(b)
        except DuplicateBooking as e:
            # another booking landed between the check and the insert
            logger.info("insert for asset %s lost a race: %s", asset_id, e)
            raise IntervalUnavailable(asset_id, interval.start, interval.end) from e
        logger.info("booking %s created for asset %s (%s)", created.id, asset_id, created.status)

        if holder_id and not asset.is_pool:
            try:
                self.directory.set_asset_assignment(asset_id, holder_id, is_pool=False)
            except (StorageFailure, PoolAssetWriteRefused):
                logger.exception("could not assign asset %s to %s", asset_id, holder_id)

        label = "Active" if status is BookingStatus.ACTIVE else "Scheduled"
        note = f"{label} booking: {summary.format_date_range(interval.start, interval.end)}"
        if purpose:
            note += f" - {purpose}"
        self.audit.record(asset_id, BOOKING_ACTION, holder_id, note, acting_user_id)
        return created

    def cancel(self, booking_id: int, acting_user_id: Optional[str] = None) -> Booking:
        return self._finish(booking_id, BookingStatus.CANCELED, acting_user_id)

    def complete(self, booking_id: int, acting_user_id: Optional[str] = None) -> Booking:
        return self._finish(booking_id, BookingStatus.COMPLETED, acting_user_id)

    def _finish(self, booking_id: int, status: BookingStatus, acting_user_id: Optional[str]) -> Booking:
        while True:
            b = self.get(booking_id)
            if is_terminal(b.status):
                logger.debug("booking %s already %s, nothing to do", booking_id, b.status)
                return b
            updated = self.repository.update_status(booking_id, status, expected_status=b.status)
            if updated is not None:
                break
            # the sweeper moved it in between; look again

        logger.info("booking %s %s", booking_id, status.value)
        label = "completed" if status is BookingStatus.COMPLETED else "canceled"
        self.audit.record(
            updated.asset_id,
            BOOKING_ACTION,
            updated.holder_id,
            f"Booking {label}: {summary.format_date_range(updated.start, updated.end)}",
            acting_user_id,
        )
        return updated

    def reschedule(self, booking_id: int, start: datetime, end: datetime) -> Booking:
        b = self.get(booking_id)
        interval = Interval(start, end)
        # a canceled booking blocks nothing, so it may move anywhere
        if b.status != BookingStatus.CANCELED.value and not is_available(
            self.repository, b.asset_id, interval, exclude_booking_id=b.id
        ):
            raise IntervalUnavailable(b.asset_id, interval.start, interval.end)
        try:
            updated = self.repository.update(booking_id, {"start": interval.start, "end": interval.end})
        except DuplicateBooking as e:
            raise IntervalUnavailable(b.asset_id, interval.start, interval.end) from e
        if updated is None:
            raise BookingNotFound(booking_id)
        logger.info("booking %s moved to %s..%s", booking_id, interval.start, interval.end)
        return updated

    def record_return(
        self,
        booking_id: int,
        condition: ReturnCondition,
        comments: Optional[str] = None,
        checked_by_id: Optional[str] = None,
        acting_user_id: Optional[str] = None,
    ) -> Booking:
        condition = ReturnCondition(condition)
        while True:
            b = self.get(booking_id)
            if b.return_info:
                raise ReturnAlreadyRecorded(booking_id)
            now = self.clock.now()
            return_info = {
                "returned": True,
                "returned_at": now.isoformat(),
                "condition": condition.value,
                "comments": comments or None,
                "checked_by_id": checked_by_id or None,
                "checked_at": now.isoformat() if checked_by_id else None,
            }
            # the store refuses the write once any return is on the row,
            # so a concurrent return makes us loop into the check above
            updated = self.repository.update(
                booking_id,
                {"return_info": return_info, "status": BookingStatus.COMPLETED},
                expected_status=b.status,
                unreturned_only=True,
            )
            if updated is not None:
                break

        logger.info("return recorded for booking %s (%s)", booking_id, condition.value)

        if condition is ReturnCondition.DAMAGED:
            try:
                asset = self.directory.lookup_asset(updated.asset_id)
                if asset is not None and not asset.is_pool:
                    self.directory.flag_asset_defective(updated.asset_id, is_pool=False)
            except (StorageFailure, PoolAssetWriteRefused):
                logger.exception("could not flag asset %s defective", updated.asset_id)

        note = f"Return after booking: {CONDITION_TEXT[condition]}"
        if comments:
            note += f" - {comments}"
        self.audit.record(updated.asset_id, RETURN_ACTION, updated.holder_id, note, acting_user_id)
        return updated

    # --------------------------------------------------------
    # Reads
    # --------------------------------------------------------
    def get(self, booking_id: int) -> Booking:
        b = self.repository.get(booking_id)
        if b is None:
            raise BookingNotFound(booking_id)
        return b

    def list_all(self) -> List[Booking]:
        return self.repository.list_all()

    def for_asset(self, asset_id: str) -> List[Booking]:
        return self.repository.query_by_asset(asset_id)

    def for_holder(self, holder_id: str) -> List[Booking]:
        return self.repository.query_by_holder(holder_id)

    def current_or_upcoming(self, asset_id: str) -> Optional[Booking]:
        now = self.clock.now()
        bookings = self.for_asset(asset_id)
        running = [
            b for b in bookings
            if b.status == BookingStatus.ACTIVE.value and as_utc(b.start) <= now < as_utc(b.end)
        ]
        if running:
            return min(running, key=lambda b: as_utc(b.start))
        upcoming = [
            b for b in bookings
            if b.status == BookingStatus.RESERVED.value and as_utc(b.start) > now
        ]
        if upcoming:
            return min(upcoming, key=lambda b: as_utc(b.start))
        return None

    def availability_status(self, asset_id: str) -> str:
        return summary.availability_status(
            self.current_or_upcoming(asset_id), self.for_asset(asset_id), self.clock.now()
        )

    def check_availability(self, asset_id: str, start: datetime, end: datetime) -> bool:
        return is_available(self.repository, asset_id, Interval(start, end))

    def stats(self, asset_ids: Optional[List[str]] = None) -> dict:
        return summary.booking_stats(self.list_all(), self.clock.now(), asset_ids)
