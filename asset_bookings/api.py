# ============================================================
# Booking API Router
# ------------------------------------------------------------
# REST endpoints to create, look up, move, cancel and close
# asset bookings, record the return of a booked asset and ask
# whether an asset is free. Business rules live in manager.py;
# this module only adapts HTTP to it.
# ============================================================
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlmodel import Session

from asset_bookings import config, summary
from asset_bookings.clock import SystemClock
from asset_bookings.db import get_engine, get_session
from asset_bookings.directory import HttpAssetDirectory
from asset_bookings.errors import BookingError
from asset_bookings.manager import BookingManager
from asset_bookings.models import Booking, BookingCreate, BookingDates, ReturnRequest
from asset_bookings.publisher import RabbitAuditEmitter
from asset_bookings.repository import BookingRepository
from asset_bookings.sweeper import BookingSweeper

router = APIRouter()


# ------------------------------------------------------------
# Dependencies
# ------------------------------------------------------------
@lru_cache(maxsize=None)
def get_clock():
    return SystemClock()


@lru_cache(maxsize=None)
def get_directory():
    return HttpAssetDirectory()


@lru_cache(maxsize=None)
def get_audit():
    return RabbitAuditEmitter()


@lru_cache(maxsize=None)
def get_sweeper():
    return BookingSweeper(lambda: Session(get_engine()), get_clock())


def get_manager(
    s: Session = Depends(get_session),
    directory=Depends(get_directory),
    audit=Depends(get_audit),
    clock=Depends(get_clock),
):
    return BookingManager(BookingRepository(s), directory, audit, clock)


@contextmanager
def translate_errors():
    try:
        yield
    except BookingError as e:
        raise HTTPException(e.status_code, str(e)) from e


# Without a zone we assume local time, then store everything in UTC
def normalize(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=config.LOCAL_TZ)
    return dt.astimezone(timezone.utc)


def to_local(dt: datetime) -> str:
    return summary.to_local(dt).isoformat()


# ------------------------------------------------------------
# POST /v1/bookings — Create a booking
# ------------------------------------------------------------
@router.post("/v1/bookings", response_model=Booking, status_code=201)
def create_booking(
    body: BookingCreate,
    manager: BookingManager = Depends(get_manager),
    x_user_id: Optional[str] = Header(None),
):
    with translate_errors():
        return manager.create(
            body.asset_id,
            body.holder_id,
            normalize(body.start),
            normalize(body.end),
            purpose=body.purpose,
            acting_user_id=x_user_id,
        )


@router.get("/v1/bookings", response_model=List[Booking])
def list_bookings(manager: BookingManager = Depends(get_manager)):
    with translate_errors():
        return manager.list_all()


@router.get("/v1/bookings/stats")
def booking_stats(
    asset_id: Optional[List[str]] = Query(None),
    manager: BookingManager = Depends(get_manager),
):
    with translate_errors():
        return manager.stats(asset_id)


# ------------------------------------------------------------
# POST /v1/bookings/sweep — Reconcile statuses now
# ------------------------------------------------------------
# The booking page triggers this on load so that statuses are
# fresh without waiting for the next timer tick.
# ------------------------------------------------------------
@router.post("/v1/bookings/sweep")
def sweep_now(sweeper: BookingSweeper = Depends(get_sweeper)):
    with translate_errors():
        return sweeper.run_once().as_dict()


# ------------------------------------------------------------
# GET /v1/bookings/{booking_id} — One booking, local times
# ------------------------------------------------------------
@router.get("/v1/bookings/{booking_id}")
def get_booking(booking_id: int, manager: BookingManager = Depends(get_manager)):
    with translate_errors():
        b = manager.get(booking_id)
    return {
        "id": b.id,
        "asset_id": b.asset_id,
        "holder_id": b.holder_id,
        "purpose": b.purpose,
        "status": b.status,
        "display_status": summary.display_status(b, manager.clock.now()),
        "period": summary.format_date_range(b.start, b.end),
        "start": to_local(b.start),
        "end": to_local(b.end),
        "created_at": to_local(b.created_at),
        "return_info": b.return_info,
    }


@router.post("/v1/bookings/{booking_id}/cancel", response_model=Booking)
def cancel_booking(
    booking_id: int,
    manager: BookingManager = Depends(get_manager),
    x_user_id: Optional[str] = Header(None),
):
    with translate_errors():
        return manager.cancel(booking_id, acting_user_id=x_user_id)


@router.post("/v1/bookings/{booking_id}/complete", response_model=Booking)
def complete_booking(
    booking_id: int,
    manager: BookingManager = Depends(get_manager),
    x_user_id: Optional[str] = Header(None),
):
    with translate_errors():
        return manager.complete(booking_id, acting_user_id=x_user_id)


# ------------------------------------------------------------
# PUT /v1/bookings/{booking_id}/dates — Move the window
# ------------------------------------------------------------
@router.put("/v1/bookings/{booking_id}/dates", response_model=Booking)
def reschedule_booking(
    booking_id: int, body: BookingDates, manager: BookingManager = Depends(get_manager)
):
    with translate_errors():
        return manager.reschedule(booking_id, normalize(body.start), normalize(body.end))


# ------------------------------------------------------------
# POST /v1/bookings/{booking_id}/return — Asset handed back
# ------------------------------------------------------------
@router.post("/v1/bookings/{booking_id}/return", response_model=Booking)
def record_return(
    booking_id: int,
    body: ReturnRequest,
    manager: BookingManager = Depends(get_manager),
    x_user_id: Optional[str] = Header(None),
):
    with translate_errors():
        return manager.record_return(
            booking_id,
            body.condition,
            comments=body.comments,
            checked_by_id=body.checked_by_id,
            acting_user_id=x_user_id,
        )


@router.get("/v1/assets/{asset_id}/bookings", response_model=List[Booking])
def asset_bookings(asset_id: str, manager: BookingManager = Depends(get_manager)):
    with translate_errors():
        return manager.for_asset(asset_id)


@router.get("/v1/assets/{asset_id}/current", response_model=Optional[Booking])
def asset_current_booking(asset_id: str, manager: BookingManager = Depends(get_manager)):
    with translate_errors():
        return manager.current_or_upcoming(asset_id)


# ------------------------------------------------------------
# GET /v1/assets/{asset_id}/availability
# ------------------------------------------------------------
# Without a window: the asset badge (available / booked /
# available-partial). With start+end: also whether that window
# could be booked.
# ------------------------------------------------------------
@router.get("/v1/assets/{asset_id}/availability")
def asset_availability(
    asset_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    manager: BookingManager = Depends(get_manager),
):
    with translate_errors():
        result = {"asset_id": asset_id, "status": manager.availability_status(asset_id)}
        if start is not None and end is not None:
            result["available"] = manager.check_availability(asset_id, normalize(start), normalize(end))
    return result


@router.get("/v1/employees/{holder_id}/bookings", response_model=List[Booking])
def employee_bookings(holder_id: str, manager: BookingManager = Depends(get_manager)):
    with translate_errors():
        return manager.for_holder(holder_id)
