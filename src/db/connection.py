"""SQLAlchemy engine factory.

Single shared engine with connection pooling.  All pipeline queries run
through `readonly_connection`, which puts the transaction in READ ONLY mode
on dialects that support it.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine

from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)

_engine: Engine | None = None


def build_engine(url: str) -> Engine:
    """Create an engine for *url*; pooling options only where the dialect takes them."""
    kwargs: dict = {"pool_pre_ping": True, "echo": False}
    if not url.startswith("sqlite"):
        kwargs.update(pool_size=5, max_overflow=10)
    return create_engine(url, **kwargs)


def get_engine() -> Engine:
    """Return the shared SQLAlchemy engine (lazy-created, cached)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(settings.database_url)
        logger.info("DB engine created  dialect=%s", _engine.dialect.name)
    return _engine


def supports_read_only(engine: Engine) -> bool:
    return engine.dialect.name == "postgresql"


@contextmanager
def readonly_connection(engine: Engine | None = None) -> Generator[Connection, None, None]:
    """Yield a connection that cannot write.

    On PostgreSQL the transaction is set READ ONLY, so no writes can happen
    even if the SQL is malicious.  The connection is returned to the pool
    on exit and the transaction is always rolled back.
    """
    engine = engine or get_engine()
    conn = engine.connect()
    try:
        if supports_read_only(engine):
            conn.execute(text("SET TRANSACTION READ ONLY"))
        yield conn
    finally:
        conn.rollback()
        conn.close()
