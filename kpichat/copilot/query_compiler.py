"""
Query compiler -- turns a metric definition plus the conversation's slots
into a parameterized SELECT, a human-readable display SQL, and the grouped
chart variant.

Every predicate binds its values through ``?`` placeholders; literal values
only ever appear in the display SQL, which is never executed.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Sequence

from kpichat.copilot.query_builder import Predicate, SelectQuery, WhereClause
from kpichat.copilot.slots import time_kind_of
from kpichat.copilot.state import ConversationState
from kpichat.core.logging import get_logger
from kpichat.db.executor import DataStore
from kpichat.governance.semantic_loader import Metric, MetricCatalog, MetricKind
from kpichat.governance.sql_safety import ensure_safe

logger = get_logger(__name__)

_DEFAULT_LIMIT = object()


@dataclass(frozen=True)
class CompiledQuery:
    sql: str
    params: list[Any] = field(default_factory=list)
    display_sql: str = ""


# ── WHERE construction ───────────────────────────────────

def time_predicate(time_type: str | None, value: str | None, column: str) -> Predicate | None:
    """Predicate for one time slot, or None when no time restriction applies."""
    if not value:
        return None
    kind = time_kind_of(value) if time_type == "custom" else time_type

    if kind == "month":
        return Predicate(f"{column} = ?", (value,))
    if kind == "half_fy":
        year, half = value[:4], value[4:]
        start, end = (1, 6) if half.upper() == "H1" else (7, 12)
        return Predicate(
            f"substr({column},1,4) = ? AND CAST(substr({column},5,2) AS INTEGER) BETWEEN ? AND ?",
            (year, start, end),
        )
    if kind == "fy":
        return Predicate(f"substr({column},1,4) = ?", (value,))
    return None


def build_where(metric: Metric, state: ConversationState, catalog: MetricCatalog) -> WhereClause:
    """Collect the time and filter predicates for *metric* under *state*."""
    where = WhereClause()

    tr = state.time_range
    if tr is not None and metric.uses_time:
        pred = time_predicate(tr.type, tr.value, catalog.time_column)
        if pred is not None:
            where = where.and_(pred)

    if state.has_filter_dimension and state.filter_values:
        dim = catalog.require_filter_dimension(state.filter_dimension)
        column = metric.column_for(dim)
        placeholders = ", ".join("?" for _ in state.filter_values)
        where = where.and_(Predicate(f"{column} IN ({placeholders})", tuple(state.filter_values)))

    return where


# ── Compilation ──────────────────────────────────────────

def _compile(query: SelectQuery, where: WhereClause) -> CompiledQuery:
    sql, params = query.render(where)
    return CompiledQuery(sql=sql, params=params, display_sql=format_sql_for_display(sql, params))


def compile_query(
    metric: Metric,
    state: ConversationState,
    catalog: MetricCatalog,
    limit: Any = _DEFAULT_LIMIT,
) -> CompiledQuery:
    """Compile *metric* against the slots in *state*.

    Detail metrics are capped at ``catalog.detail_row_limit`` unless *limit*
    is given explicitly (``None`` removes the cap).
    """
    query = metric.query
    if metric.kind is MetricKind.DETAIL:
        query = query.limited(catalog.detail_row_limit if limit is _DEFAULT_LIMIT else limit)
    return _compile(query, build_where(metric, state, catalog))


def compile_detail_query(metric: Metric, state: ConversationState, catalog: MetricCatalog) -> CompiledQuery:
    """Uncapped detail query used for the spreadsheet download."""
    return compile_query(metric, state, catalog, limit=None)


def compile_chart_query(metric: Metric, state: ConversationState, catalog: MetricCatalog) -> CompiledQuery:
    """Grouped-by-product variant of a plain aggregate metric."""
    if metric.kind is not MetricKind.AGGREGATE:
        raise ValueError(f"Metric '{metric.id}' is not a plain aggregate")
    product = catalog.require_filter_dimension("product")
    grouped = metric.query.grouped_by(metric.column_for(product), alias="product")
    return _compile(grouped, build_where(metric, state, catalog))


# ── Display SQL ──────────────────────────────────────────

_WHERE_STUB_AND = re.compile(r"\bWHERE\s+1=1\s+AND\s+", re.IGNORECASE)
_WHERE_STUB_ONLY = re.compile(r"\bWHERE\s+1=1\b\s*", re.IGNORECASE)


def _literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


def format_sql_for_display(sql: str, params: Sequence[Any]) -> str:
    """Substitute *params* into ``?`` positions in order and drop the ``1=1`` stub."""
    remaining = iter(params)

    def _sub(match: re.Match) -> str:
        try:
            return _literal(next(remaining))
        except StopIteration:
            return match.group(0)

    text = re.sub(r"\?", _sub, sql)
    text = _WHERE_STUB_AND.sub("WHERE ", text)
    text = _WHERE_STUB_ONLY.sub("", text)
    return text.strip()


# ── Reconciliation ───────────────────────────────────────

def reconcile_group_rows(
    rows: list[dict[str, Any]],
    key: str,
    requested: Sequence[str],
    value_key: str = "value",
) -> list[dict[str, Any]]:
    """One row per requested value, in *requested* order; missing groups count 0."""
    existing = {str(r.get(key)): r for r in rows}
    out = []
    for val in requested:
        row = existing.get(val)
        out.append(dict(row) if row is not None else {key: val, value_key: 0})
    return out


def reconcile_for_state(
    metric: Metric,
    rows: list[dict[str, Any]],
    state: ConversationState,
    catalog: MetricCatalog,
) -> list[dict[str, Any]]:
    """Reconcile grouped results when the filter and the grouping share a column."""
    if metric.kind is not MetricKind.AGGREGATE_GROUP or not metric.group_by:
        return rows
    if not (state.has_filter_dimension and state.filter_values):
        return rows
    dim = catalog.require_filter_dimension(state.filter_dimension)
    if metric.column_for(dim) != metric.group_by:
        return rows
    return reconcile_group_rows(rows, metric.group_by, state.filter_values)


# ── Execution ────────────────────────────────────────────

def run_compiled(store: DataStore, compiled: CompiledQuery) -> list[dict[str, Any]]:
    """Pass the safety gate, then execute on *store*."""
    ensure_safe(compiled.sql, compiled.params)
    logger.info("SQL: %s", compiled.display_sql)
    return store.query(compiled.sql, list(compiled.params))
