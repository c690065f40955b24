from typing import Optional
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from hospitaldesk.config import settings

Base = declarative_base()

_engine: Optional[Engine] = None


class StoreConfigError(RuntimeError):
    """Connection settings for the remote store are missing."""


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        # the store runs queries from a threadpool
        connect_args["check_same_thread"] = False
    return create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)


def get_engine() -> Engine:
    """Return the shared engine, creating it on first use."""
    global _engine

    if _engine is None:
        if not settings.DATABASE_URL:
            raise StoreConfigError(
                "Missing DATABASE_URL. Add it to apps/backend/.env or set it in the environment."
            )
        _engine = build_engine(settings.DATABASE_URL)
    return _engine


def dispose_engine() -> None:
    global _engine

    if _engine is not None:
        _engine.dispose()
        _engine = None
