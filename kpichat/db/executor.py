"""
Read-only SQL executor.

All compiled KPI queries run through `execute_readonly`, which:
  1. Opens a query-only connection (SQLite-enforced)
  2. Binds positional ``?`` parameters through the driver (never string-spliced)
  3. Converts Decimal/date/datetime to JSON-safe Python types
"""
from __future__ import annotations

import datetime
import decimal
from typing import Any, Protocol, Sequence

from sqlalchemy.engine import Engine

from kpichat.db.connection import readonly_connection
from kpichat.core.logging import get_logger

logger = get_logger(__name__)


class DataStore(Protocol):
    """``query(sql, params) -> rows`` capability consumed by the dialogue engine."""

    def query(self, sql: str, params: Sequence[Any]) -> list[dict[str, Any]]:
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


def execute_readonly(
    sql: str,
    params: Sequence[Any] | None = None,
    engine: Engine | None = None,
) -> list[dict[str, Any]]:
    """Execute a read-only SQL query and return rows as serialisable dicts.

    Raises whatever the driver raises; callers decide how to surface it.
    """
    logger.info("Executing SQL (%d chars, %d params)", len(sql), len(params or ()))

    with readonly_connection(engine) as conn:
        result = conn.exec_driver_sql(sql, tuple(params or ()))
        columns = list(result.keys())
        rows = [
            {col: _serialise_value(val) for col, val in zip(columns, row)}
            for row in result.fetchall()
        ]

    logger.info("Returned %d rows", len(rows))
    return rows


class SqlDataStore:
    """`DataStore` over the shared (or a given) SQLAlchemy engine."""

    def __init__(self, engine: Engine | None = None):
        self._engine = engine

    def query(self, sql: str, params: Sequence[Any]) -> list[dict[str, Any]]:
        return execute_readonly(sql, params, engine=self._engine)
