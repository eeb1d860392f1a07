"""
Deterministic SQL safety checks (non-LLM).

These checks are the final gate before a compiled KPI query reaches the data
store.  They operate purely on the SQL text and its bound parameters.

Checks performed:
  1. SQL must be a single SELECT statement (no DDL / DML / multi-statement)
  2. No dangerous keywords (DROP, ALTER, INSERT, UPDATE, DELETE, ATTACH, PRAGMA …)
  3. No comments (-- or /*)
  4. The number of ``?`` placeholders equals the number of parameters
"""
from __future__ import annotations

import re
from typing import Any, Sequence

from kpichat.core.logging import get_logger

logger = get_logger(__name__)


class UnsafeQueryError(RuntimeError):
    """A compiled query failed the safety gate."""


# ── Compiled patterns ────────────────────────────────────

_DANGEROUS_KW = re.compile(
    r"\b(DROP|ALTER|TRUNCATE|INSERT|UPDATE|DELETE|REPLACE|CREATE|"
    r"ATTACH|DETACH|PRAGMA|VACUUM|REINDEX|GRANT|REVOKE)\b",
    re.IGNORECASE,
)

_MULTI_STMT = re.compile(r";\s*\S")  # semicolon followed by non-whitespace

_COMMENT_INLINE = re.compile(r"--")
_COMMENT_BLOCK = re.compile(r"/\*")

_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")


def count_placeholders(sql: str) -> int:
    """Number of ``?`` placeholders outside quoted string literals."""
    return _STRING_LITERAL.sub("", sql).count("?")


def check_sql_safety(sql: str, params: Sequence[Any] = ()) -> list[str]:
    """Return a list of safety violations (empty list = safe)."""
    errors: list[str] = []
    sql_stripped = sql.strip()
    code_only = _STRING_LITERAL.sub("''", sql_stripped)

    # ── 1. Must be a SELECT ──────────────────────────
    if not code_only.upper().startswith("SELECT"):
        errors.append("SQL must be a SELECT statement.")

    # ── 2. No multi-statement ────────────────────────
    if _MULTI_STMT.search(code_only):
        errors.append("Multi-statement SQL is not allowed (found ';' followed by another statement).")

    # ── 3. No dangerous keywords ─────────────────────
    m = _DANGEROUS_KW.search(code_only)
    if m:
        errors.append(f"Dangerous keyword detected: '{m.group(1).upper()}'.")

    # ── 4. No SQL comments ───────────────────────────
    if _COMMENT_INLINE.search(code_only):
        errors.append("Inline comments (--) are not allowed.")
    if _COMMENT_BLOCK.search(code_only):
        errors.append("Block comments (/* */) are not allowed.")

    # ── 5. Placeholders line up with parameters ──────
    placeholders = count_placeholders(sql_stripped)
    if placeholders != len(params):
        errors.append(
            f"Query has {placeholders} placeholders but {len(params)} parameters."
        )

    if errors:
        logger.warning("SQL safety violations: %s", errors)
    return errors


def ensure_safe(sql: str, params: Sequence[Any] = ()) -> None:
    """Raise ``UnsafeQueryError`` when `check_sql_safety` reports anything."""
    errors = check_sql_safety(sql, params)
    if errors:
        raise UnsafeQueryError("; ".join(errors))
