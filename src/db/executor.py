"""
Read-only SQL executor.

All composed statements run through `SqlExecutor.execute`, which:
  1. Opens a READ ONLY transaction (Postgres-enforced)
  2. Wraps the query in text()
  3. Converts Decimal/date/datetime to JSON-safe Python types
  4. Enforces a per-query statement timeout on Postgres
"""
from __future__ import annotations

import decimal
import datetime
from typing import Any, Protocol

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from src.db.connection import readonly_connection, supports_read_only, get_engine
from src.core.config import get_settings
from src.core.errors import QueryExecutionError
from src.core.logging import get_logger

logger = get_logger(__name__)


class QueryExecutor(Protocol):
    """Anything that runs a composed statement and returns a result set."""

    def execute(self, sql: str, table_reference: str | None = None) -> dict[str, Any]:
        ...


def _serialise_value(val: Any) -> Any:
    """Convert DB types to JSON-serialisable Python types."""
    if isinstance(val, decimal.Decimal):
        return float(val)
    if isinstance(val, (datetime.date, datetime.datetime)):
        return val.isoformat()
    if isinstance(val, datetime.timedelta):
        return str(val)
    return val


class SqlExecutor:
    """SQLAlchemy-backed Query Executor.

    Parameters
    ----------
    engine : Engine, optional
        Defaults to the shared engine built from settings.
    timeout_ms : int, optional
        Statement timeout (Postgres only).
    """

    def __init__(self, engine: Engine | None = None, timeout_ms: int | None = None):
        self._engine = engine
        self.timeout_ms = timeout_ms if timeout_ms is not None else get_settings().query_timeout_ms

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    def execute(self, sql: str, table_reference: str | None = None) -> dict[str, Any]:
        """Run *sql* and return ``{"rows": [...], "total_rows": n}``.

        Raises
        ------
        QueryExecutionError
            If the warehouse rejects the statement for any reason.
        """
        logger.info("Executing SQL (%d chars) against %s", len(sql), table_reference or "default")
        try:
            with readonly_connection(self.engine) as conn:
                if supports_read_only(self.engine):
                    conn.execute(text(f"SET LOCAL statement_timeout = {int(self.timeout_ms)}"))
                result = conn.execute(text(sql))
                columns = list(result.keys())
                rows = [
                    {col: _serialise_value(val) for col, val in zip(columns, row)}
                    for row in result.fetchall()
                ]
        except SQLAlchemyError as exc:
            message = str(getattr(exc, "orig", None) or exc)
            logger.warning("SQL execution failed: %s", message)
            raise QueryExecutionError(message, sql=sql) from exc

        logger.info("Returned %d rows", len(rows))
        return {"rows": rows, "total_rows": len(rows)}
