# ============================================================
# sweeper.py — Periodic status reconciliation
# ------------------------------------------------------------
# Walks every open booking (reserved/active), applies the state
# machine for "now" and writes back whatever changed:
#   - reserved → active once the window starts
#   - active → completed once it has ended
#
# Writes are compare-and-set on the status read at the start of
# the pass, so a cancel landing mid-pass is never overwritten.
# A failing record is logged and skipped; the pass goes on.
# ============================================================
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from asset_bookings import config
from asset_bookings.clock import Clock, SystemClock
from asset_bookings.errors import BookingError
from asset_bookings.lifecycle import next_status
from asset_bookings.repository import BookingRepository

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    checked: int = 0
    transitions: List[Tuple[int, str, str]] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    failures: List[int] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "checked": self.checked,
            "updated": len(self.transitions),
            "transitions": [
                {"bookingId": i, "from": old, "to": new} for i, old, new in self.transitions
            ],
            "skipped": self.skipped,
            "failed": self.failures,
        }


def reconcile(repository: BookingRepository, now: datetime) -> SweepReport:
    report = SweepReport()
    for b in repository.query_open():
        report.checked += 1
        booking_id, current = b.id, b.status
        try:
            new = next_status(current, b.interval, now)
            if new.value == current:
                continue
            updated = repository.update_status(booking_id, new, expected_status=current)
        except BookingError as e:
            logger.error("could not update booking %s: %s", booking_id, e)
            report.failures.append(booking_id)
            continue
        if updated is None:
            # canceled/returned since we read it
            report.skipped.append(booking_id)
            continue
        logger.info("booking %s: %s -> %s", booking_id, current, new.value)
        report.transitions.append((booking_id, current, new.value))
    return report


class BookingSweeper:
    """Runs :func:`reconcile` on a timer in a daemon thread."""

    def __init__(
        self,
        session_factory: Callable,
        clock: Optional[Clock] = None,
        interval_seconds: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.interval_seconds = interval_seconds or config.SWEEP_INTERVAL_SECONDS
        self._stop = threading.Event()
        self._pass_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> SweepReport:
        # one pass at a time, whether timer-driven or on demand
        with self._pass_lock:
            with self.session_factory() as s:
                report = reconcile(BookingRepository(s), self.clock.now())
        if report.transitions or report.failures:
            logger.info(
                "sweep: %d checked, %d updated, %d failed",
                report.checked, len(report.transitions), len(report.failures),
            )
        return report

    def _loop(self):
        logger.info("sweeper started, every %ss", self.interval_seconds)
        while not self._stop.is_set():
            try:
                self.run_once()
            except BookingError as e:
                logger.error("sweep failed: %s", e)
            except Exception:
                logger.exception("sweep crashed")
            self._stop.wait(self.interval_seconds)
        logger.info("sweeper stopped")

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="booking-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
