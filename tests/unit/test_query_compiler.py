"""
Unit tests -- query compiler: WHERE construction, display SQL, reconciliation,
chart variant and the safety gate in front of execution.
"""
import pytest

from kpichat.copilot.query_compiler import (
    CompiledQuery,
    build_where,
    compile_chart_query,
    compile_detail_query,
    compile_query,
    format_sql_for_display,
    reconcile_for_state,
    reconcile_group_rows,
    run_compiled,
)
from kpichat.copilot.slots import TimeRange
from kpichat.copilot.state import ConversationState
from kpichat.governance.sql_safety import UnsafeQueryError, count_placeholders

from tests.fakes import FakeStore


def _state(time_range=None, dimension=None, values=None) -> ConversationState:
    s = ConversationState(time_range=time_range)
    s.set_filter(dimension, values)
    return s


# ── WHERE construction ───────────────────────────────────

def test_month_and_product_filter(catalog):
    metric = catalog.require_metric("engineer_count")
    compiled = compile_query(metric, _state(TimeRange.month("202510"), "product", ["CT", "SPS"]), catalog)
    assert compiled.sql == (
        "SELECT COUNT(*) AS value FROM dws_tas_roster WHERE 1=1 "
        "AND st_WrMonth = ? AND st_DeptName IN (?, ?) "
        "AND st_EmpAvailable = '1' AND st_ClassName = 'FE'"
    )
    assert compiled.params == ["202510", "CT", "SPS"]
    assert count_placeholders(compiled.sql) == len(compiled.params)


@pytest.mark.parametrize("time_range,params", [
    (TimeRange(type="half_fy", value="2025H1"), ["2025", 1, 6]),
    (TimeRange(type="half_fy", value="2025H2"), ["2025", 7, 12]),
    (TimeRange(type="fy", value="2025"), ["2025"]),
    (TimeRange(type="custom", value="2025H2"), ["2025", 7, 12]),
    (TimeRange(type="custom", value="202511"), ["202511"]),
    (TimeRange(type="custom", value="2026"), ["2026"]),
    (TimeRange.none(), []),
])
def test_time_predicates(catalog, time_range, params):
    metric = catalog.require_metric("engineer_count")
    where = build_where(metric, _state(time_range), catalog)
    assert where.params == params
    assert where.text.count("?") == len(params)


def test_half_year_predicate_text(catalog):
    metric = catalog.require_metric("engineer_count")
    where = build_where(metric, _state(TimeRange(type="half_fy", value="2025H2")), catalog)
    assert where.text == (
        "WHERE 1=1 AND substr(st_WrMonth,1,4) = ? "
        "AND CAST(substr(st_WrMonth,5,2) AS INTEGER) BETWEEN ? AND ?"
    )


def test_metric_without_time_ignores_time_range(catalog):
    metric = catalog.require_metric("machine_count")
    where = build_where(metric, _state(TimeRange.month("202510")), catalog)
    assert where.params == []


def test_dimension_override_column(catalog):
    metric = catalog.require_metric("machine_count")
    compiled = compile_query(metric, _state(TimeRange.none(), "product", ["ES"]), catalog)
    assert "st_ProductLine IN (?)" in compiled.sql
    assert compiled.params == ["ES"]


def test_dimension_without_values_adds_nothing(catalog):
    metric = catalog.require_metric("engineer_count")
    where = build_where(metric, _state(TimeRange.month("202510"), "product", []), catalog)
    assert where.params == ["202510"]


def test_detail_limit(catalog):
    metric = catalog.require_metric("engineer_detail")
    state = _state(TimeRange.month("202510"))
    assert compile_query(metric, state, catalog).sql.endswith("LIMIT 50")
    assert "LIMIT" not in compile_detail_query(metric, state, catalog).sql


# ── Display SQL ──────────────────────────────────────────

def test_display_substitutes_and_strips_stub():
    sql = "SELECT x FROM t WHERE 1=1 AND a = ? AND b IN (?, ?)"
    assert format_sql_for_display(sql, ["202510", "O'Brien", 3]) == (
        "SELECT x FROM t WHERE a = '202510' AND b IN ('O''Brien', 3)"
    )


def test_display_strips_bare_stub():
    assert format_sql_for_display("SELECT a FROM t WHERE 1=1 GROUP BY a", []) == "SELECT a FROM t GROUP BY a"


def test_display_does_not_rescan_substituted_values():
    assert format_sql_for_display("SELECT ?, ?", ["a?b", "c"]) == "SELECT 'a?b', 'c'"


def test_compiled_display_sql(catalog):
    metric = catalog.require_metric("engineer_count")
    compiled = compile_query(metric, _state(TimeRange.month("202510"), "org", ["非PSM"]), catalog)
    assert compiled.display_sql == (
        "SELECT COUNT(*) AS value FROM dws_tas_roster WHERE st_WrMonth = '202510' "
        "AND st_OrgName IN ('非PSM') AND st_EmpAvailable = '1' AND st_ClassName = 'FE'"
    )


# ── Reconciliation ───────────────────────────────────────

def test_reconcile_fills_missing_with_zero():
    rows = [{"product": "CT", "value": 5}]
    assert reconcile_group_rows(rows, "product", ["CT", "SPS"]) == [
        {"product": "CT", "value": 5},
        {"product": "SPS", "value": 0},
    ]


def test_reconcile_follows_requested_order():
    rows = [{"k": "B", "value": 2}, {"k": "A", "value": 1}]
    out = reconcile_group_rows(rows, "k", ["A", "B"])
    assert [r["k"] for r in out] == ["A", "B"]


def test_reconcile_for_state_when_columns_match(catalog):
    metric = catalog.require_metric("engineer_count_by_product")
    state = _state(TimeRange.month("202510"), "product", ["CT", "SPS"])
    rows = reconcile_for_state(metric, [{"st_DeptName": "CT", "value": 5}], state, catalog)
    assert rows == [{"st_DeptName": "CT", "value": 5}, {"st_DeptName": "SPS", "value": 0}]


def test_no_reconcile_without_filter(catalog):
    metric = catalog.require_metric("engineer_count_by_org")
    rows = [{"st_OrgName": "PSM", "value": 3}]
    assert reconcile_for_state(metric, rows, _state(TimeRange.month("202510")), catalog) == rows


def test_no_reconcile_for_plain_aggregate(catalog):
    metric = catalog.require_metric("engineer_count")
    rows = [{"value": 7}]
    state = _state(TimeRange.month("202510"), "product", ["CT", "SPS"])
    assert reconcile_for_state(metric, rows, state, catalog) == rows


# ── Chart variant ────────────────────────────────────────

def test_chart_query_groups_by_product(catalog):
    metric = catalog.require_metric("engineer_count")
    compiled = compile_chart_query(metric, _state(TimeRange.month("202510")), catalog)
    assert compiled.sql.startswith("SELECT st_DeptName AS product, COUNT(*) AS value FROM dws_tas_roster WHERE 1=1")
    assert compiled.sql.endswith("GROUP BY st_DeptName")
    assert compiled.params == ["202510"]


def test_chart_query_uses_override_column(catalog):
    metric = catalog.require_metric("machine_count")
    compiled = compile_chart_query(metric, _state(TimeRange.none()), catalog)
    assert compiled.sql.startswith("SELECT st_ProductLine AS product")


def test_chart_query_rejects_grouped_metric(catalog):
    metric = catalog.require_metric("engineer_count_by_product")
    with pytest.raises(ValueError):
        compile_chart_query(metric, _state(TimeRange.month("202510")), catalog)


# ── Execution gate ───────────────────────────────────────

def test_run_compiled_passes_params(catalog):
    store = FakeStore(rows=[{"value": 4}])
    metric = catalog.require_metric("engineer_count")
    compiled = compile_query(metric, _state(TimeRange.month("202510")), catalog)
    assert run_compiled(store, compiled) == [{"value": 4}]
    assert store.calls == [(compiled.sql, ["202510"])]


def test_run_compiled_blocks_unsafe_sql():
    store = FakeStore()
    with pytest.raises(UnsafeQueryError):
        run_compiled(store, CompiledQuery(sql="DROP TABLE dws_tas_roster", params=[]))
    assert store.calls == []


def test_run_compiled_blocks_param_mismatch():
    store = FakeStore()
    with pytest.raises(UnsafeQueryError, match="placeholders"):
        run_compiled(store, CompiledQuery(sql="SELECT 1 WHERE a = ?", params=[]))
