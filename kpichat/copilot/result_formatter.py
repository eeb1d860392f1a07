"""
Reply texts built from query results and from the current slot selection.
"""
from __future__ import annotations

from typing import Any

from kpichat.copilot.state import ConversationState
from kpichat.governance.semantic_loader import Metric, MetricCatalog, MetricKind

UNSELECTED = "未选择"
NO_FILTER_LABEL = "不筛选"
UNKNOWN_GROUP = "未知"


def _value(row: dict[str, Any]) -> Any:
    value = row.get("value")
    return 0 if value is None else value


def format_result(metric: Metric, rows: list[dict[str, Any]], row_limit: int = 50) -> str:
    """Plain-language reply for the rows *metric* returned."""
    if metric.kind is MetricKind.AGGREGATE:
        value = _value(rows[0]) if rows else 0
        return f"查询结果：{metric.label}为 {value} 。"

    if metric.kind is MetricKind.AGGREGATE_GROUP:
        if not rows:
            return "未查询到符合条件的数据。"
        key = metric.group_by or "item"
        unit = f" {metric.unit}" if metric.unit else ""
        lines = [f"{row.get(key) or UNKNOWN_GROUP}：{_value(row)}{unit}" for row in rows]
        return f"{metric.label}如下：\n" + "\n".join(lines)

    if not rows:
        return "未查询到符合条件的明细。"
    lines = [
        " ".join("" if v is None else str(v) for v in row.values())
        for row in rows[:row_limit]
    ]
    return f"查询到以下明细（最多显示 {row_limit} 条）：\n" + "\n".join(lines)


def summarize_state(state: ConversationState, catalog: MetricCatalog) -> str:
    """Selection summary: metric, time range, filter, and the last display SQL."""
    category = catalog.find_category(state.category_id)
    metric = catalog.find_metric(state.category_id, state.metric_id)
    parts = [x.label for x in (category, metric) if x is not None]
    kpi_text = " / ".join(parts) if parts else UNSELECTED
    time_text = state.time_range.label if state.time_range else UNSELECTED

    filter_text = NO_FILTER_LABEL
    if state.has_filter_dimension and state.filter_values:
        dim = catalog.find_filter_dimension(state.filter_dimension)
        if dim is not None:
            labels = "、".join(dim.label_for(v) for v in state.filter_values)
            filter_text = f"{dim.label}：{labels}"

    summary = f"已选择指标：{kpi_text}\n时间范围：{time_text}\n筛选条件：{filter_text}"
    if state.last_display_sql:
        summary += f"\nSQL: {state.last_display_sql}"
    return summary
