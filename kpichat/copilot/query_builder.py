"""
Structured SELECT builder.

Metric definitions are stored as a ``SelectQuery`` (projection, table, static
conditions, group-by, order-by, limit) instead of hand-written SQL text.  Slot
predicates are collected in a ``WhereClause`` that always starts from the
``1=1`` stub, so every rendered query has exactly one WHERE position and the
bound parameters line up with the ``?`` placeholders in order.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, replace

_AGGREGATE_RE = re.compile(r"^\s*(COUNT|SUM|AVG|MIN|MAX)\s*\(", re.IGNORECASE)
_ALIAS_RE = re.compile(r"\s+AS\s+(\w+)\s*$", re.IGNORECASE)

WHERE_STUB = "WHERE 1=1"


@dataclass(frozen=True)
class Predicate:
    """One AND-ed condition with its positional parameters."""
    sql: str
    params: tuple = ()


@dataclass(frozen=True)
class WhereClause:
    predicates: tuple[Predicate, ...] = ()

    def and_(self, predicate: Predicate) -> WhereClause:
        return WhereClause(self.predicates + (predicate,))

    @property
    def text(self) -> str:
        return WHERE_STUB + "".join(f" AND {p.sql}" for p in self.predicates)

    @property
    def params(self) -> list:
        out: list = []
        for p in self.predicates:
            out.extend(p.params)
        return out


@dataclass(frozen=True)
class SelectQuery:
    projection: tuple[str, ...]
    table: str
    conditions: tuple[str, ...] = ()
    group_by: tuple[str, ...] = ()
    order_by: tuple[str, ...] = ()
    limit: int | None = None

    def output_columns(self) -> list[str]:
        """Names of the columns this query returns (aliases win over expressions)."""
        names = []
        for item in self.projection:
            m = _ALIAS_RE.search(item)
            if m:
                names.append(m.group(1))
            else:
                names.append(item.strip().split(".")[-1])
        return names

    def grouped_by(self, column: str, alias: str) -> SelectQuery:
        """Return the grouped variant: ``<column> AS <alias>, <aggregates> ... GROUP BY <column>``."""
        aggregates = tuple(p for p in self.projection if _AGGREGATE_RE.match(p))
        if not aggregates:
            raise ValueError(f"Query on '{self.table}' has no aggregate to group")
        return replace(
            self,
            projection=(f"{column} AS {alias}",) + aggregates,
            group_by=(column,),
            order_by=(),
        )

    def limited(self, limit: int | None) -> SelectQuery:
        return replace(self, limit=limit)

    def render(self, where: WhereClause | str) -> tuple[str, list]:
        """Render to ``(sql, params)``.

        *where* is either a ``WhereClause`` or a literal marker string (used to
        produce the ``{where}`` template shown in the catalog).
        """
        if isinstance(where, WhereClause):
            where_sql, params = where.text, where.params
        else:
            where_sql, params = where, []

        parts = [f"SELECT {', '.join(self.projection)} FROM {self.table} {where_sql}"]
        for cond in self.conditions:
            parts.append(f"AND {cond}")
        if self.group_by:
            parts.append("GROUP BY " + ", ".join(self.group_by))
        if self.order_by:
            parts.append("ORDER BY " + ", ".join(self.order_by))
        if self.limit is not None:
            parts.append(f"LIMIT {int(self.limit)}")
        return " ".join(parts), params
