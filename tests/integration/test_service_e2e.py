"""
Integration tests -- full dialogue pipeline with live SQL execution.

Free text / buttons → slots → compiled SQL → seeded SQLite → reply text.
Seed layout (40 employees, 5 months): per month 28 available FE engineers,
6 per product except CERTAS (4); PSM 20, 非PSM 8.  20 machines, 15 active.
"""
from __future__ import annotations

import pytest

from kpichat.copilot.dialog import DialogEngine
from kpichat.copilot.intent_classifier import NullIntentClassifier
from kpichat.copilot.slot_extractor import SlotExtractor
from kpichat.copilot.slots import NO_FILTER
from kpichat.copilot.state import ConversationState, Stage
from kpichat.copilot.time_options import list_time_options
from kpichat.db.executor import SqlDataStore


@pytest.fixture
def engine(catalog, seeded_engine):
    return DialogEngine(catalog, SlotExtractor(catalog, NullIntentClassifier()), SqlDataStore(seeded_engine))


def _ask(engine, text):
    state = ConversationState()
    engine.handle_turn(state, message=text)
    return state


def _run(engine, state):
    if state.stage is Stage.FILTER_DIMENSION_SELECT:
        return engine.handle_turn(state, payload={"type": "filter_dimension", "value": NO_FILTER})
    assert state.stage is Stage.SUMMARY_CONFIRM
    return engine.handle_turn(state, payload={"type": "confirm_start"})


# ── Aggregates ───────────────────────────────────────────

@pytest.mark.parametrize("question,expected", [
    ("202510 CT 工程师数量", 6),
    ("202510 CERTAS 工程师数量", 4),
    ("202510 非psm 工程师数量", 8),
    ("202511 psm 人数", 20),
    ("202512 工程师数量", 28),
])
def test_month_aggregates(engine, question, expected):
    state = _ask(engine, question)
    result = _run(engine, state)
    assert result.stage == "SHOW_RESULT"
    assert result.rows == [{"value": expected}]
    assert result.reply == f"查询结果：工程师数量为 {expected} 。"


@pytest.mark.parametrize("time_type,value,expected", [
    ("fy", "2025", 24),
    ("half_fy", "2025H2", 18),
    ("half_fy", "2025H1", 6),
    ("fy", "2026", 6),
])
def test_period_aggregates_for_ct(engine, time_type, value, expected):
    state = _ask(engine, "查询CT的工程师数量")
    engine.handle_turn(state, payload={"type": "time_type", "value": time_type})
    result = engine.handle_turn(state, payload={"type": "time_value", "value": value, "time_type": time_type})
    assert result.stage == "SUMMARY_CONFIRM"
    result = _run(engine, state)
    assert result.rows == [{"value": expected}]


def test_typed_custom_half_year(engine):
    state = _ask(engine, "查询CT的工程师数量")
    engine.handle_turn(state, message="HalfFY")
    engine.handle_turn(state, message="2025H2")
    result = _run(engine, state)
    assert result.rows == [{"value": 18}]
    assert "BETWEEN 7 AND 12" in result.display_sql


# ── Grouped ──────────────────────────────────────────────

def test_group_by_product(engine):
    state = _ask(engine, "按产品统计202511人数")
    result = _run(engine, state)
    by_product = {r["st_DeptName"]: r["value"] for r in result.rows}
    assert by_product == {"CT": 6, "SPS": 6, "ES": 6, "3DI": 6, "CERTAS": 4}
    assert result.chart["chart_type"] == "bar"


def test_group_by_org_with_filter(engine):
    state = _ask(engine, "按组织看PSM的人数")
    engine.handle_turn(state, payload={"type": "time_type", "value": "month"})
    engine.handle_turn(state, payload={"type": "time_value", "value": "202510", "time_type": "month"})
    result = _run(engine, state)
    assert result.rows == [{"st_OrgName": "PSM", "value": 20}]


def test_chart_by_product_sums_to_total(engine):
    state = _ask(engine, "202510 工程师数量")
    _run(engine, state)
    result = engine.handle_turn(state, payload={"type": "chart"})
    assert result.chart["chart_type"] == "bar"
    assert sorted(result.chart["categories"]) == ["3DI", "CERTAS", "CT", "ES", "SPS"]
    assert sum(result.chart["values"]) == 28


# ── Machines & details ───────────────────────────────────

def test_machine_count_by_customer(engine):
    state = _ask(engine, "BYD有多少机台")
    engine.handle_turn(state, payload={"type": "filter_dimension", "value": "customer"})
    result = engine.handle_turn(state, payload={"type": "confirm_filter_values", "values": ["BYD"]})
    assert result.rows == [{"value": 5}]
    assert result.reply == "查询结果：机台数量统计为 5 。"


def test_machine_detail_and_download(engine):
    state = _ask(engine, "ES机台明细")
    result = _run(engine, state)
    assert len(result.rows) == 3
    assert {r["st_ProductLine"] for r in result.rows} == {"ES"}
    assert len(engine.detail_rows(state)) == 3


def test_engineer_detail_download_is_uncapped(engine):
    state = _ask(engine, "202510 工程师数量")
    _run(engine, state)
    rows = engine.detail_rows(state)
    assert len(rows) == 28
    assert set(rows[0]) == {"st_EmpID", "st_EmpNameCN", "st_EmpNameEN", "st_DeptName", "st_OrgName"}


# ── Time options ─────────────────────────────────────────

def test_time_options_from_data(catalog, seeded_engine):
    opts = list_time_options(SqlDataStore(seeded_engine), catalog)
    assert [o.value for o in opts.month] == ["202505", "202510", "202511", "202512", "202601"]
    assert [o.value for o in opts.half_fy] == ["2025H1", "2025H2", "2026H1"]
    assert [o.value for o in opts.fy] == ["2025", "2026"]


def test_default_time_options_in_engine(engine):
    state = _ask(engine, "工程师数量")
    result = engine.handle_turn(state, payload={"type": "time_type", "value": "month"})
    assert [o.payload["value"] for o in result.options][0] == "202505"
