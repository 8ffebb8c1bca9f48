# ============================================================
# app.py — Booking service entry point
# ------------------------------------------------------------
# Builds the FastAPI application:
#   - creates the tables on startup
#   - starts the reconciliation sweeper in a background thread
#   - mounts the booking API routes
# The sweeper is stopped again on shutdown.
# ============================================================
import logging

from fastapi import FastAPI

from asset_bookings import config
from asset_bookings.api import get_sweeper, router
from asset_bookings.db import init_db

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("asset_bookings")

app = FastAPI(title="Asset Booking Service")


@app.on_event("startup")
def start():
    init_db()
    if config.SWEEPER_ENABLED:
        get_sweeper().start()
    else:
        logger.info("sweeper disabled")


@app.on_event("shutdown")
def stop():
    get_sweeper().stop(timeout=5)


@app.get("/health")
def health():
    return {"ok": True, "sweeper": get_sweeper().running}


app.include_router(router)
