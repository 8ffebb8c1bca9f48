# ============================================================
# summary.py — Read-side helpers for booking lists
# ------------------------------------------------------------
# Display status, asset availability badge, counters and the
# date-range label used in history notes. Nothing here writes.
# ============================================================
from datetime import datetime
from typing import Iterable, Optional, Sequence

from asset_bookings import config
from asset_bookings.clock import as_utc
from asset_bookings.models import TERMINAL_STATUSES, Booking, BookingStatus

EXPIRED = "expired"

AVAILABLE = "available"
BOOKED = "booked"
AVAILABLE_PARTIAL = "available-partial"

DATE_FORMAT = "%d.%m.%Y %H:%M"


def is_expired(booking: Booking, now: datetime) -> bool:
    return as_utc(booking.end) < as_utc(now)


def display_status(booking: Booking, now: datetime) -> str:
    """Stored status, or ``expired`` once the window has passed."""
    if is_expired(booking, now):
        return EXPIRED
    return booking.status


def count_upcoming(bookings: Iterable[Booking], now: datetime) -> int:
    return sum(
        1 for b in bookings
        if b.status == BookingStatus.RESERVED.value and not is_expired(b, now)
    )


def availability_status(
    current: Optional[Booking], bookings: Sequence[Booking], now: datetime
) -> str:
    if current is not None and current.status == BookingStatus.ACTIVE.value and not is_expired(current, now):
        return BOOKED
    if count_upcoming(bookings, now) > 0:
        return AVAILABLE_PARTIAL
    return AVAILABLE


def booking_stats(
    bookings: Iterable[Booking], now: datetime, asset_ids: Optional[Iterable[str]] = None
) -> dict:
    now = as_utc(now)
    if asset_ids is not None:
        wanted = set(asset_ids)
        bookings = [b for b in bookings if b.asset_id in wanted]
    else:
        bookings = list(bookings)

    terminal = {s.value for s in TERMINAL_STATUSES}
    active = 0
    reserved = 0
    for b in bookings:
        in_window = b.interval.contains(now)
        if b.status == BookingStatus.ACTIVE.value or (in_window and b.status not in terminal):
            active += 1
        if b.status == BookingStatus.RESERVED.value and as_utc(b.start) > now:
            reserved += 1
    return {"active": active, "reserved": reserved, "total": len(bookings)}


def to_local(dt: datetime) -> datetime:
    return as_utc(dt).astimezone(config.LOCAL_TZ)


def format_date_range(start: datetime, end: datetime) -> str:
    return f"{to_local(start).strftime(DATE_FORMAT)} - {to_local(end).strftime(DATE_FORMAT)}"
