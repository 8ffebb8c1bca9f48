# ============================================================
# models.py — SQLModel data models (Booking engine)
# ------------------------------------------------------------
# Defines the booking table plus the request bodies the API
# accepts:
#   1. Booking : one reservation of an asset for a time window
#   2. Interval : validated [start, end] pair used by the rules
#   3. BookingCreate / BookingDates / ReturnRequest : API input
# ============================================================
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import DDL, JSON, Column, DateTime, event
from sqlmodel import Field, SQLModel

from asset_bookings.clock import as_utc
from asset_bookings.errors import InvalidInterval


class BookingStatus(str, Enum):
    RESERVED = "reserved"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELED = "canceled"


OPEN_STATUSES = (BookingStatus.RESERVED, BookingStatus.ACTIVE)
TERMINAL_STATUSES = (BookingStatus.COMPLETED, BookingStatus.CANCELED)


class ReturnCondition(str, Enum):
    GOOD = "good"
    DAMAGED = "damaged"
    INCOMPLETE = "incomplete"
    LOST = "lost"


@dataclass(frozen=True)
class Interval:
    """Reservation window; both ends inclusive, normalised to UTC."""

    start: datetime
    end: datetime

    def __post_init__(self):
        start, end = as_utc(self.start), as_utc(self.end)
        if start > end:
            raise InvalidInterval(start, end)
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    def contains(self, moment: datetime) -> bool:
        return self.start <= as_utc(moment) <= self.end


# ------------------------------------------------------------
# Booking
# ------------------------------------------------------------
# Reservation of a shared asset:
#  - lifecycle reserved → active → completed, or canceled
#  - holder_id may be empty for placeholder holds
#  - return_info is written once, when the asset comes back
# ------------------------------------------------------------
class Booking(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    asset_id: str = Field(index=True)
    holder_id: Optional[str] = Field(default=None, index=True)
    start: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    end: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    purpose: Optional[str] = None
    status: str = Field(default=BookingStatus.RESERVED.value, index=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    # SQL NULL until the return is recorded; the store guards on IS NULL
    return_info: Optional[dict] = Field(default=None, sa_column=Column(JSON(none_as_null=True)))

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)

    @property
    def booking_status(self) -> BookingStatus:
        return BookingStatus(self.status)

    @property
    def is_open(self) -> bool:
        return self.booking_status in OPEN_STATUSES


# On PostgreSQL the table itself refuses overlapping windows for
# the same asset; touching endpoints count as overlap ('[]').
event.listen(
    Booking.__table__,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    Booking.__table__,
    "after_create",
    DDL(
        "ALTER TABLE booking ADD CONSTRAINT booking_no_overlap "
        "EXCLUDE USING gist (asset_id WITH =, tstzrange(start, \"end\", '[]') WITH &&) "
        "WHERE (status <> 'canceled')"
    ).execute_if(dialect="postgresql"),
)


class BookingCreate(SQLModel):
    asset_id: str
    holder_id: Optional[str] = None
    start: datetime
    end: datetime
    purpose: Optional[str] = None


class BookingDates(SQLModel):
    start: datetime
    end: datetime


class ReturnRequest(SQLModel):
    condition: ReturnCondition
    comments: Optional[str] = None
    checked_by_id: Optional[str] = None
