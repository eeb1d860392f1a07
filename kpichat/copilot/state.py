"""
Per-conversation dialogue state.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from kpichat.copilot.slots import NO_FILTER, TimeRange


class Stage(str, Enum):
    """Dialogue stages in their forward slot-filling order."""

    CATEGORY_SELECT = "KPI_CATEGORY_SELECT"
    METRIC_SELECT = "KPI_METRIC_SELECT"
    TIME_TYPE_SELECT = "TIME_TYPE_SELECT"
    TIME_VALUE_SELECT = "TIME_VALUE_SELECT"
    FILTER_DIMENSION_SELECT = "FILTER_DIMENSION_SELECT"
    FILTER_VALUE_SELECT = "FILTER_VALUE_SELECT"
    SUMMARY_CONFIRM = "SUMMARY_CONFIRM"
    EXECUTING_QUERY = "EXECUTING_QUERY"
    SHOW_RESULT = "SHOW_RESULT"


@dataclass
class ConversationState:
    stage: Stage = Stage.CATEGORY_SELECT
    category_id: str | None = None
    metric_id: str | None = None
    time_type: str | None = None
    time_range: TimeRange | None = None
    filter_dimension: str = NO_FILTER
    filter_values: list[str] = field(default_factory=list)
    last_query_result: list[dict[str, Any]] | None = None
    last_display_sql: str | None = None

    @property
    def has_filter_dimension(self) -> bool:
        return bool(self.filter_dimension) and self.filter_dimension != NO_FILTER

    def set_filter(self, dimension: str | None, values: list[str] | None = None) -> None:
        """Set the filter slot; values are dropped whenever the dimension is unset."""
        if not dimension or dimension == NO_FILTER:
            self.filter_dimension = NO_FILTER
            self.filter_values = []
        else:
            self.filter_dimension = dimension
            self.filter_values = list(values or [])

    def reset(self) -> None:
        """Clear every slot and go back to the first stage."""
        fresh = ConversationState()
        self.__dict__.update(fresh.__dict__)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value,
            "category_id": self.category_id,
            "metric_id": self.metric_id,
            "time_type": self.time_type,
            "time_range": self.time_range.model_dump() if self.time_range else None,
            "filter_dimension": self.filter_dimension,
            "filter_values": list(self.filter_values),
        }
