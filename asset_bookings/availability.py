# ============================================================
# availability.py — Conflict check for a candidate window
# ------------------------------------------------------------
# Two windows overlap when each starts no later than the other
# ends; touching endpoints therefore conflict. Canceled bookings
# never block. Read-only: the store does the final check again
# when it writes.
# ============================================================
import logging
from typing import Iterable, List, Optional

from asset_bookings.models import Booking, BookingStatus, Interval

logger = logging.getLogger(__name__)


def intervals_overlap(a: Interval, b: Interval) -> bool:
    return a.end >= b.start and b.end >= a.start


def conflicting(
    bookings: Iterable[Booking], interval: Interval, exclude_booking_id: Optional[int] = None
) -> List[Booking]:
    return [
        b for b in bookings
        if b.status != BookingStatus.CANCELED.value
        and (exclude_booking_id is None or b.id != exclude_booking_id)
        and intervals_overlap(b.interval, interval)
    ]


def find_conflicts(
    repository, asset_id: str, interval: Interval, exclude_booking_id: Optional[int] = None
) -> List[Booking]:
    return conflicting(repository.query_by_asset(asset_id), interval, exclude_booking_id)


def is_available(
    repository, asset_id: str, interval: Interval, exclude_booking_id: Optional[int] = None
) -> bool:
    clashes = find_conflicts(repository, asset_id, interval, exclude_booking_id)
    if clashes:
        logger.debug(
            "asset %s busy for %s..%s, overlapping bookings %s",
            asset_id, interval.start.isoformat(), interval.end.isoformat(),
            [b.id for b in clashes],
        )
    return not clashes
