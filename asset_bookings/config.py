# ============================================================
# config.py — Service configuration
# ------------------------------------------------------------
# Every setting comes from the environment with a default that
# works for a local run (SQLite file, RabbitMQ on localhost).
# ============================================================
import os
from zoneinfo import ZoneInfo

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./bookings.db")

# RabbitMQ: audit entries go out on the shared fanout exchange
RABBITMQ_HOST = os.getenv("RABBITMQ_HOST", "localhost")
AUDIT_EXCHANGE = os.getenv("AUDIT_EXCHANGE", "events")

# Inventory service holding assets and employees
DIRECTORY_URL = os.getenv("DIRECTORY_URL", "http://inventory:8000")
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "5"))

# Naive timestamps coming from callers are read in this zone
LOCAL_TZ = ZoneInfo(os.getenv("LOCAL_TZ", "Europe/Berlin"))

SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))
SWEEPER_ENABLED = os.getenv("SWEEPER_ENABLED", "true").lower() in ("true", "1", "yes", "on")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
