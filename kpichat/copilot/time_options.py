"""
Time options -- the month / half-year / fiscal-year choices offered at the
time-value stage, derived from the distinct months present in the data.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from kpichat.db.executor import DataStore
from kpichat.governance.semantic_loader import MetricCatalog


@dataclass(frozen=True)
class TimeOption:
    value: str
    label: str

    def to_dict(self) -> dict[str, str]:
        return {"value": self.value, "label": self.label}


@dataclass
class TimeOptions:
    month: list[TimeOption] = field(default_factory=list)
    half_fy: list[TimeOption] = field(default_factory=list)
    fy: list[TimeOption] = field(default_factory=list)

    def for_type(self, time_type: str | None) -> list[TimeOption]:
        return getattr(self, time_type or "month", None) or []

    def to_dict(self) -> dict[str, list[dict[str, str]]]:
        return {
            "month": [o.to_dict() for o in self.month],
            "half_fy": [o.to_dict() for o in self.half_fy],
            "fy": [o.to_dict() for o in self.fy],
        }


def bucket_months(months: Iterable[Any]) -> TimeOptions:
    """Group 6-digit months into month, half-year, and year options (sorted)."""
    raw = sorted({str(m) for m in months if m is not None and str(m)})

    years: dict[str, list[int]] = {}
    for m in raw:
        if len(m) < 6 or not m[4:6].isdigit():
            continue
        years.setdefault(m[:4], []).append(int(m[4:6]))

    fy: list[TimeOption] = []
    half_fy: list[TimeOption] = []
    for year, month_nums in years.items():
        fy.append(TimeOption(year, f"{year} 财年"))
        if any(1 <= n <= 6 for n in month_nums):
            half_fy.append(TimeOption(f"{year}H1", f"{year} 上半年"))
        if any(7 <= n <= 12 for n in month_nums):
            half_fy.append(TimeOption(f"{year}H2", f"{year} 下半年"))

    return TimeOptions(
        month=[TimeOption(m, m) for m in raw],
        half_fy=sorted(half_fy, key=lambda o: o.value),
        fy=sorted(fy, key=lambda o: o.value),
    )


def list_time_options(store: DataStore, catalog: MetricCatalog) -> TimeOptions:
    """Scan the distinct months in the catalog's time source and bucket them."""
    col = catalog.time_column
    rows = store.query(
        f"SELECT DISTINCT {col} FROM {catalog.time_source} ORDER BY {col}", []
    )
    return bucket_months(r.get(col) for r in rows)
