# ============================================================
# repository.py — Booking data access
# ------------------------------------------------------------
# Repository over the booking table. Used by the API (through
# the manager) and by the sweeper thread, each with its own
# session.
#
# The store is the last word on overlaps: a write that moves a
# window re-checks the asset's bookings inside the same
# transaction before committing, and PostgreSQL also enforces
# the exclusion constraint declared in models.py.
# ============================================================
import logging
from contextlib import contextmanager
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from asset_bookings.availability import conflicting
from asset_bookings.errors import DuplicateBooking, StorageFailure
from asset_bookings.models import OPEN_STATUSES, Booking, BookingStatus

logger = logging.getLogger(__name__)

_INTERVAL_FIELDS = ("start", "end")


class BookingRepository:
    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def _guard(self, action: str):
        try:
            yield
        except DuplicateBooking:
            self.session.rollback()
            raise
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateBooking(f"{action}: {e.orig}") from e
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("%s failed: %s", action, e)
            raise StorageFailure(f"{action} failed") from e

    def _ensure_no_overlap(self, booking: Booking):
        if booking.status == BookingStatus.CANCELED.value:
            return
        clashes = conflicting(self._by_asset(booking.asset_id), booking.interval, booking.id)
        if clashes:
            raise DuplicateBooking(
                f"booking {booking.id} overlaps {[b.id for b in clashes]} on asset {booking.asset_id}"
            )

    def _by_asset(self, asset_id: str) -> List[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.asset_id == asset_id)
            .order_by(Booking.start)
            .execution_options(populate_existing=True)
        )
        return list(self.session.exec(stmt).all())

    def insert(self, b: Booking) -> Booking:
        with self._guard("insert booking"):
            self.session.add(b)
            # the flushed row holds the write lock until commit
            self.session.flush()
            self._ensure_no_overlap(b)
            self.session.commit()
            self.session.refresh(b)
        return b

    def get(self, booking_id: int) -> Optional[Booking]:
        with self._guard(f"get booking {booking_id}"):
            return self.session.get(Booking, booking_id, populate_existing=True)

    def list_all(self) -> List[Booking]:
        with self._guard("list bookings"):
            return list(self.session.exec(select(Booking).order_by(Booking.start.desc())).all())

    def query_by_asset(self, asset_id: str) -> List[Booking]:
        with self._guard(f"query bookings of asset {asset_id}"):
            return self._by_asset(asset_id)

    def query_by_holder(self, holder_id: str) -> List[Booking]:
        with self._guard(f"query bookings of holder {holder_id}"):
            stmt = select(Booking).where(Booking.holder_id == holder_id).order_by(Booking.start)
            return list(self.session.exec(stmt).all())

    def query_open(self) -> List[Booking]:
        with self._guard("query open bookings"):
            stmt = select(Booking).where(Booking.status.in_([s.value for s in OPEN_STATUSES]))
            return list(self.session.exec(stmt).all())

    def update(
        self,
        booking_id: int,
        fields: dict,
        expected_status: Optional[str] = None,
        unreturned_only: bool = False,
    ) -> Optional[Booking]:
        """Write ``fields`` to one booking.

        With ``expected_status`` the write only happens while the row still
        has that status (compare-and-set). With ``unreturned_only`` it only
        happens while no return has been recorded. ``None`` is returned when
        the row is missing or a condition no longer holds.
        """
        fields = {k: (v.value if isinstance(v, BookingStatus) else v) for k, v in fields.items()}
        with self._guard(f"update booking {booking_id}"):
            stmt = update(Booking).where(Booking.id == booking_id).values(**fields)
            if expected_status is not None:
                stmt = stmt.where(Booking.status == BookingStatus(expected_status).value)
            if unreturned_only:
                stmt = stmt.where(Booking.return_info.is_(None))
            result = self.session.connection().execute(stmt)
            if result.rowcount == 0:
                self.session.rollback()
                return None
            b = self.session.get(Booking, booking_id, populate_existing=True)
            if any(k in fields for k in _INTERVAL_FIELDS):
                self._ensure_no_overlap(b)
            self.session.commit()
            self.session.refresh(b)
        return b

    def update_status(
        self, booking_id: int, status: BookingStatus, expected_status: Optional[str] = None
    ) -> Optional[Booking]:
        return self.update(booking_id, {"status": status}, expected_status=expected_status)
