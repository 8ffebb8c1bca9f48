# ============================================================
# errors.py — Booking error taxonomy
# ------------------------------------------------------------
# Each error carries the HTTP status the API answers with, so
# callers can tell "no such asset" (404) from "asset busy" (409).
# ============================================================


class BookingError(Exception):
    status_code = 400


class AssetNotFound(BookingError):
    status_code = 404

    def __init__(self, asset_id: str):
        super().__init__(f"asset {asset_id} not found")
        self.asset_id = asset_id


class BookingNotFound(BookingError):
    status_code = 404

    def __init__(self, booking_id: int):
        super().__init__(f"booking {booking_id} not found")
        self.booking_id = booking_id


class InvalidInterval(BookingError):
    status_code = 400

    def __init__(self, start, end):
        super().__init__(f"start {start.isoformat()} is after end {end.isoformat()}")
        self.start = start
        self.end = end


class IntervalUnavailable(BookingError):
    status_code = 409

    def __init__(self, asset_id: str, start, end):
        super().__init__(
            f"asset {asset_id} is not available between {start.isoformat()} and {end.isoformat()}"
        )
        self.asset_id = asset_id
        self.start = start
        self.end = end


class ReturnAlreadyRecorded(BookingError):
    status_code = 409

    def __init__(self, booking_id: int):
        super().__init__(f"return already recorded for booking {booking_id}")
        self.booking_id = booking_id


class StorageFailure(BookingError):
    status_code = 503


class DuplicateBooking(StorageFailure):
    """Raised by the store when a write would overlap another booking."""

    status_code = 409


class PoolAssetWriteRefused(BookingError):
    """Pool assets are shared; their directory record is never written."""

    status_code = 409

    def __init__(self, asset_id: str):
        super().__init__(f"asset {asset_id} is a pool asset")
        self.asset_id = asset_id
