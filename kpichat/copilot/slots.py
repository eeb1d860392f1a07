"""
Slot models -- the structured intermediate representation between free text
(or button payloads) and the dialogue state.
"""
from __future__ import annotations

import re

from pydantic import BaseModel, Field

NO_FILTER = "NONE"

MONTH_RE = re.compile(r"^\d{6}$")
HALF_FY_RE = re.compile(r"^\d{4}H[12]$")
FY_RE = re.compile(r"^\d{4}$")

_SHAPES: dict[str, re.Pattern] = {
    "month": MONTH_RE,
    "half_fy": HALF_FY_RE,
    "fy": FY_RE,
}


def time_kind_of(value: str | None) -> str | None:
    """Infer month / half_fy / fy from the shape of *value* (None if no shape fits)."""
    if not value:
        return None
    for kind, pattern in _SHAPES.items():
        if pattern.match(value):
            return kind
    return None


def matches_time_type(time_type: str | None, value: str) -> bool:
    """True when *value* has the shape expected for *time_type*.

    With no time type selected any recognised shape is accepted.
    """
    if time_type is None:
        return time_kind_of(value) is not None
    pattern = _SHAPES.get(time_type)
    return bool(pattern and pattern.match(value))


class TimeRange(BaseModel):
    """A selected time window."""

    type: str = Field(..., description="month | half_fy | fy | none | custom")
    value: str | None = Field(None, description="202510, 2025, 2025H1, or null for 'none'")
    label: str = ""

    @classmethod
    def none(cls) -> TimeRange:
        return cls(type="none", value=None, label="不限")

    @classmethod
    def month(cls, value: str) -> TimeRange:
        return cls(type="month", value=value, label=value)


class PartialSlots(BaseModel):
    """Whatever one utterance told us; every slot is independently optional."""

    category_id: str | None = None
    metric_id: str | None = None
    time_range: TimeRange | None = None
    filter_dimension: str | None = None
    filter_values: list[str] = Field(default_factory=list)
    source: str = Field("rules", description="rules | classifier")

    @property
    def is_empty(self) -> bool:
        return not (self.metric_id or self.time_range or self.filter_dimension)


class IntentResult(BaseModel):
    """Parsed answer of the external intent classifier."""

    metric_id: str | None = None
    month: str | None = None
    filter_dimension: str | None = None
    filter_values: list[str] = Field(default_factory=list)
