# ============================================================
# lifecycle.py — Booking state machine
# ------------------------------------------------------------
# Pure rule mapping (current status, window, now) to the next
# status. The sweeper and the manager both go through it; it
# never touches storage.
#
#   reserved ──(start <= now <= end)──▶ active
#   active   ──(now > end)───────────▶ completed
#   completed / canceled : absorbing
# ============================================================
from datetime import datetime

from asset_bookings.clock import as_utc
from asset_bookings.models import TERMINAL_STATUSES, BookingStatus, Interval


def next_status(current: BookingStatus, interval: Interval, now: datetime) -> BookingStatus:
    current = BookingStatus(current)
    if current in TERMINAL_STATUSES:
        return current
    now = as_utc(now)
    if current is BookingStatus.RESERVED and interval.contains(now):
        return BookingStatus.ACTIVE
    if current is BookingStatus.ACTIVE and now > interval.end:
        return BookingStatus.COMPLETED
    return current


def initial_status(interval: Interval, now: datetime) -> BookingStatus:
    # a fresh booking is notionally "reserved" and promoted at once
    # when the window is already running
    return next_status(BookingStatus.RESERVED, interval, now)


def is_terminal(status) -> bool:
    return BookingStatus(status) in TERMINAL_STATUSES
