# ============================================================
# db.py — Engine and per-request sessions
# ============================================================
from functools import lru_cache

from sqlmodel import Session, SQLModel, create_engine

from asset_bookings import config


@lru_cache(maxsize=None)
def get_engine():
    connect_args = {}
    if config.DATABASE_URL.startswith("sqlite"):
        # the sweeper thread shares the engine with request threads
        connect_args["check_same_thread"] = False
    return create_engine(config.DATABASE_URL, pool_pre_ping=True, connect_args=connect_args)


def init_db(engine=None):
    SQLModel.metadata.create_all(engine or get_engine())


# FastAPI dependency: one DB session per request, auto-close
def get_session():
    with Session(get_engine()) as s:
        yield s
