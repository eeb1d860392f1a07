"""
Chart generation.

Turns KPI result rows into a chart specification the UI can render.

Supported chart types:
  - bar       (grouped results: one bar per product / org / group value)
  - metric    (single KPI number, no grouping)
  - table     (fallback for detail rows or empty results)
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from kpichat.core.logging import get_logger
from kpichat.governance.semantic_loader import Metric, MetricKind

logger = get_logger(__name__)

# ── Chart types ─────────────────────────────────────────

CHART_BAR = "bar"
CHART_METRIC = "metric"  # single KPI card
CHART_TABLE = "table"

UNKNOWN_CATEGORY = "未知"


@dataclass
class ChartSpec:
    """Describes how a set of result rows should be visualised."""
    chart_type: str
    title: str
    x_column: str | None = None
    y_column: str | None = None
    rows: list[dict[str, Any]] = field(default_factory=list)
    kpi_value: Any = None
    kpi_label: str | None = None
    unit: str = ""

    @property
    def categories(self) -> list[str]:
        if not self.x_column:
            return []
        return [_category(r.get(self.x_column)) for r in self.rows]

    @property
    def values(self) -> list[Any]:
        if not self.y_column:
            return []
        return [r.get(self.y_column) for r in self.rows]

    def to_dict(self) -> dict[str, Any]:
        return {
            "chart_type": self.chart_type,
            "title": self.title,
            "x_column": self.x_column,
            "y_column": self.y_column,
            "categories": self.categories,
            "values": self.values,
            "kpi_value": self.kpi_value,
            "kpi_label": self.kpi_label,
            "unit": self.unit,
            "row_count": len(self.rows),
        }


def _category(value: Any) -> str:
    if value is None or value == "":
        return UNKNOWN_CATEGORY
    return str(value)


# ── Builders ────────────────────────────────────────────


def bar_chart(
    rows: list[dict[str, Any]],
    x_column: str,
    title: str,
    y_column: str = "value",
    unit: str = "",
) -> ChartSpec:
    """One bar per row, categories from *x_column*."""
    return ChartSpec(
        chart_type=CHART_BAR,
        title=title,
        x_column=x_column,
        y_column=y_column,
        rows=list(rows),
        unit=unit,
    )


def suggest_chart(metric: Metric, rows: list[dict[str, Any]]) -> ChartSpec:
    """Choose a chart for the rows *metric* returned.

    Parameters
    ----------
    metric : Metric
        The metric the rows were computed for.
    rows : list[dict]
        Tabular result rows (already reconciled where applicable).

    Returns
    -------
    ChartSpec
        A chart specification for the UI to render.
    """
    if not rows:
        return ChartSpec(chart_type=CHART_TABLE, title=metric.label, rows=[])

    if metric.kind is MetricKind.AGGREGATE_GROUP and metric.group_by:
        return bar_chart(rows, metric.group_by, metric.label, unit=metric.unit)

    if metric.kind is MetricKind.AGGREGATE and len(rows) == 1:
        value = rows[0].get("value", list(rows[0].values())[-1])
        return ChartSpec(
            chart_type=CHART_METRIC,
            title=metric.label,
            kpi_value=value,
            kpi_label=metric.label,
            rows=rows,
            unit=metric.unit,
        )

    return ChartSpec(chart_type=CHART_TABLE, title=metric.label, rows=rows)
