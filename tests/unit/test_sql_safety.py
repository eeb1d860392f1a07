"""
Unit tests -- SQL safety checker: the gates in front of every compiled query.
"""
import pytest

from kpichat.governance.sql_safety import (
    UnsafeQueryError,
    check_sql_safety,
    count_placeholders,
    ensure_safe,
)


# ── Helper: a known-safe SQL ─────────────────────────────

_SAFE_SQL = (
    "SELECT st_DeptName, COUNT(*) AS value FROM dws_tas_roster WHERE 1=1 "
    "AND st_WrMonth = ? AND st_DeptName IN (?, ?) "
    "AND st_EmpAvailable = '1' AND st_ClassName = 'FE' GROUP BY st_DeptName"
)


def test_safe_sql_passes():
    errors = check_sql_safety(_SAFE_SQL, ["202510", "CT", "SPS"])
    assert errors == [], f"Expected no errors but got: {errors}"


# ── 1. Must start with SELECT ───────────────────────────

def test_not_select():
    errors = check_sql_safety("INSERT INTO foo VALUES (1)")
    assert any("SELECT" in e for e in errors)


# ── 2. No multi-statement ───────────────────────────────

def test_multi_statement():
    sql = "SELECT 1 AS x; DROP TABLE dws_tas_roster"
    errors = check_sql_safety(sql)
    assert any("Multi-statement" in e for e in errors)


def test_trailing_semicolon_allowed():
    assert check_sql_safety("SELECT 1 AS x;") == []


# ── 3. No dangerous keywords ────────────────────────────

@pytest.mark.parametrize("keyword", [
    "DROP TABLE foo",
    "ALTER TABLE foo ADD col int",
    "DELETE FROM foo",
    "UPDATE foo SET x=1",
    "INSERT INTO foo VALUES (1)",
    "CREATE TABLE foo (id int)",
    "ATTACH DATABASE 'x.db' AS x",
    "PRAGMA query_only = OFF",
])
def test_dangerous_keywords(keyword):
    errors = check_sql_safety(keyword)
    assert any("Dangerous" in e or "SELECT" in e for e in errors)


def test_dangerous_keyword_after_select():
    errors = check_sql_safety("SELECT 1 AS x FROM t WHERE 1=1 AND DELETE")
    assert errors == ["Dangerous keyword detected: 'DELETE'."]


def test_keyword_inside_literal_is_ignored():
    assert check_sql_safety("SELECT COUNT(*) AS value FROM t WHERE note = 'please drop by'") == []


# ── 4. No SQL comments ──────────────────────────────────

def test_inline_comment():
    sql = "SELECT 1 AS x -- sneaky comment\nFROM t"
    errors = check_sql_safety(sql)
    assert any("comment" in e.lower() for e in errors)


def test_block_comment():
    errors = check_sql_safety("SELECT /* hi */ 1 AS x")
    assert any("Block comments" in e for e in errors)


# ── 5. Placeholders ─────────────────────────────────────

def test_placeholder_mismatch():
    errors = check_sql_safety("SELECT 1 AS x WHERE a = ? AND b = ?", ["only-one"])
    assert any("2 placeholders but 1 parameters" in e for e in errors)


def test_question_mark_inside_literal_not_counted():
    assert count_placeholders("SELECT 'why?' AS q WHERE a = ?") == 1


# ── ensure_safe ──────────────────────────────────────────

def test_ensure_safe_passes_quietly():
    ensure_safe(_SAFE_SQL, ["202510", "CT", "SPS"])


def test_ensure_safe_raises_with_all_errors():
    with pytest.raises(UnsafeQueryError) as exc:
        ensure_safe("DELETE FROM t WHERE a = ?", [])
    msg = str(exc.value)
    assert "SELECT" in msg
    assert "placeholders" in msg
