"""
Loads, validates, and caches the metric catalog YAML into strongly-typed objects.

The catalog is the single source of truth for:
  - KPI categories and their metrics (query shape, kind, keywords, priority)
  - allowed time types and filter dimensions per metric
  - filter-dimension vocabularies (value ids + display labels)
  - per-metric column overrides for a dimension
  - the month column used for every time predicate

It is loaded once, validated, and never mutated afterwards.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from kpichat.core.config import get_settings
from kpichat.copilot.query_builder import SelectQuery

TIME_TYPES = ("month", "half_fy", "fy")


class CatalogConfigError(ValueError):
    """The catalog YAML violates one of its invariants."""


class ConfigurationNotFound(LookupError):
    """A category, metric, or dimension id is not present in the catalog."""


class MetricKind(str, Enum):
    AGGREGATE = "aggregate"
    AGGREGATE_GROUP = "aggregate_group"
    DETAIL = "detail"


# ── Typed domain objects ─────────────────────────────────

@dataclass(frozen=True)
class FilterValue:
    id: str
    label: str


@dataclass(frozen=True)
class FilterDimension:
    id: str
    label: str
    column: str
    values: tuple[FilterValue, ...] = ()

    def label_for(self, value_id: str) -> str:
        for v in self.values:
            if v.id == value_id:
                return v.label
        return value_id


@dataclass(frozen=True)
class Metric:
    id: str
    label: str
    category_id: str
    kind: MetricKind
    query: SelectQuery
    description: str = ""
    keywords: tuple[str, ...] = ()
    priority: int = 0
    unit: str = ""
    group_by: str | None = None
    allowed_time_types: tuple[str, ...] = ()
    allowed_filter_dimensions: tuple[str, ...] = ()
    dimension_columns: dict[str, str] = field(default_factory=dict)

    @property
    def sql_template(self) -> str:
        """The metric's SQL with a single ``{where}`` marker in the WHERE slot."""
        sql, _ = self.query.render("{where}")
        return sql

    @property
    def uses_time(self) -> bool:
        return bool(self.allowed_time_types)

    def column_for(self, dimension: FilterDimension) -> str:
        """Column that *dimension* filters on for this metric."""
        return self.dimension_columns.get(dimension.id, dimension.column)


@dataclass(frozen=True)
class Category:
    id: str
    label: str
    metrics: tuple[Metric, ...] = ()


@dataclass
class MetricCatalog:
    """Fully parsed metric catalog."""

    version: int
    categories: list[Category]
    filter_dimensions: dict[str, FilterDimension]   # keyed by id, declaration order
    time_column: str
    time_source: str
    detail_row_limit: int = 50
    month_aliases: dict[int, str] = field(default_factory=dict)

    # ── Look-ups ─────────────────────────────────────

    def find_category(self, category_id: str | None) -> Category | None:
        for c in self.categories:
            if c.id == category_id:
                return c
        return None

    def find_category_by_label(self, text: str | None) -> Category | None:
        key = (text or "").strip()
        for c in self.categories:
            if key in (c.label, c.id):
                return c
        return None

    def find_metric(self, category_id: str | None, metric_id: str | None) -> Metric | None:
        category = self.find_category(category_id)
        if category is None:
            return None
        for m in category.metrics:
            if m.id == metric_id:
                return m
        return None

    def metric(self, metric_id: str | None) -> Metric | None:
        for m in self.all_metrics_flat():
            if m.id == metric_id:
                return m
        return None

    def require_metric(self, metric_id: str | None) -> Metric:
        m = self.metric(metric_id)
        if m is None:
            raise ConfigurationNotFound(f"Metric '{metric_id}' is not configured")
        return m

    def all_metrics_flat(self) -> list[Metric]:
        return [m for c in self.categories for m in c.metrics]

    def get_metric_ids(self) -> list[str]:
        return [m.id for m in self.all_metrics_flat()]

    def find_filter_dimension(self, dimension_id: str | None) -> FilterDimension | None:
        if dimension_id is None:
            return None
        return self.filter_dimensions.get(dimension_id)

    def require_filter_dimension(self, dimension_id: str | None) -> FilterDimension:
        dim = self.find_filter_dimension(dimension_id)
        if dim is None:
            raise ConfigurationNotFound(f"Filter dimension '{dimension_id}' is not configured")
        return dim

    def metrics_by_priority(self) -> list[Metric]:
        """Metrics ordered for keyword matching: priority desc, then declaration order."""
        indexed = list(enumerate(self.all_metrics_flat()))
        indexed.sort(key=lambda pair: (-pair[1].priority, pair[0]))
        return [m for _, m in indexed]

    def detail_metric_for(self, category_id: str | None) -> Metric | None:
        """First detail-kind metric declared in *category_id*."""
        category = self.find_category(category_id)
        if category is None:
            return None
        for m in category.metrics:
            if m.kind is MetricKind.DETAIL:
                return m
        return None

    def get_catalog_list(self) -> list[dict[str, Any]]:
        """Return categories and metrics as plain dicts (for API responses)."""
        result = []
        for c in self.categories:
            result.append({
                "id": c.id,
                "label": c.label,
                "metrics": [
                    {
                        "id": m.id,
                        "label": m.label,
                        "kind": m.kind.value,
                        "description": m.description,
                        "allowed_time_types": list(m.allowed_time_types),
                        "allowed_filter_dimensions": list(m.allowed_filter_dimensions),
                    }
                    for m in c.metrics
                ],
            })
        return result


# ── Parsing ──────────────────────────────────────────────

def _parse_query(raw: dict[str, Any]) -> SelectQuery:
    if raw.get("columns"):
        projection = list(raw["columns"])
    else:
        projection = [raw["expression"]]
    if raw.get("group_by"):
        projection = [raw["group_by"]] + projection
    return SelectQuery(
        projection=tuple(projection),
        table=raw["base_table"],
        conditions=tuple(raw.get("filters") or ()),
        group_by=(raw["group_by"],) if raw.get("group_by") else (),
        order_by=tuple(raw.get("order_by") or ()),
    )


def _parse_metric(raw: dict[str, Any], category_id: str) -> Metric:
    try:
        kind = MetricKind(raw.get("kind", "aggregate"))
    except ValueError as exc:
        raise CatalogConfigError(f"Metric '{raw.get('id')}' has unknown kind {raw.get('kind')!r}") from exc
    return Metric(
        id=raw["id"],
        label=raw.get("label", raw["id"]),
        category_id=category_id,
        kind=kind,
        query=_parse_query(raw),
        description=raw.get("description", ""),
        keywords=tuple(raw.get("keywords") or ()),
        priority=int(raw.get("priority", 0)),
        unit=raw.get("unit", ""),
        group_by=raw.get("group_by"),
        allowed_time_types=tuple(raw.get("allowed_time_types") or ()),
        allowed_filter_dimensions=tuple(raw.get("allowed_filter_dimensions") or ()),
        dimension_columns=dict(raw.get("dimension_columns") or {}),
    )


def _parse_dimension(raw: dict[str, Any]) -> FilterDimension:
    return FilterDimension(
        id=raw["id"],
        label=raw.get("label", raw["id"]),
        column=raw["column"],
        values=tuple(
            FilterValue(id=str(v["id"]), label=str(v.get("label", v["id"])))
            for v in raw.get("values") or ()
        ),
    )


def _parse_catalog(raw_yaml: dict[str, Any]) -> MetricCatalog:
    categories = [
        Category(
            id=c["id"],
            label=c.get("label", c["id"]),
            metrics=tuple(_parse_metric(m, c["id"]) for m in c.get("metrics") or ()),
        )
        for c in raw_yaml.get("categories", [])
    ]
    dimensions = {d["id"]: _parse_dimension(d) for d in raw_yaml.get("filter_dimensions", [])}
    aliases = {int(k): str(v) for k, v in (raw_yaml.get("month_aliases") or {}).items()}
    return MetricCatalog(
        version=raw_yaml.get("version", 1),
        categories=categories,
        filter_dimensions=dimensions,
        time_column=raw_yaml.get("time_column", "st_WrMonth"),
        time_source=raw_yaml.get("time_source", "dws_tas_roster"),
        detail_row_limit=int(raw_yaml.get("detail_row_limit", 50)),
        month_aliases=aliases,
    )


# ── Validation ───────────────────────────────────────────

def validate_catalog(catalog: MetricCatalog) -> list[str]:
    """Return a list of invariant violations (empty list = catalog is valid)."""
    errors: list[str] = []

    seen: set[str] = set()
    for m in catalog.all_metrics_flat():
        if m.id in seen:
            errors.append(f"Duplicate metric id '{m.id}'.")
        seen.add(m.id)

        if m.kind is MetricKind.AGGREGATE_GROUP:
            if not m.group_by:
                errors.append(f"Grouped metric '{m.id}' has no group_by column.")
            elif m.group_by not in m.query.output_columns():
                errors.append(
                    f"Grouped metric '{m.id}' groups by '{m.group_by}', "
                    f"which is not in its selected output."
                )

        for t in m.allowed_time_types:
            if t not in TIME_TYPES:
                errors.append(
                    f"Metric '{m.id}' allows unknown time type '{t}'. "
                    f"Allowed: {', '.join(TIME_TYPES)}"
                )

        for d in list(m.allowed_filter_dimensions) + list(m.dimension_columns):
            if d not in catalog.filter_dimensions:
                errors.append(f"Metric '{m.id}' references unknown filter dimension '{d}'.")

        if m.sql_template.count("{where}") != 1:
            errors.append(f"Metric '{m.id}' must render exactly one where position.")

    for month in catalog.month_aliases.values():
        if not (len(month) == 6 and month.isdigit()):
            errors.append(f"Month alias '{month}' is not a 6-digit month.")

    return errors


# ── Public API ───────────────────────────────────────────

def load_catalog_from(path: str | Path) -> MetricCatalog:
    """Parse and validate the catalog at *path*.

    Raises
    ------
    CatalogConfigError
        If any catalog invariant is violated.
    """
    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    catalog = _parse_catalog(raw or {})
    errors = validate_catalog(catalog)
    if errors:
        raise CatalogConfigError("; ".join(errors))
    return catalog


@lru_cache
def load_catalog() -> MetricCatalog:
    """Load and cache the metric catalog from the configured YAML path."""
    return load_catalog_from(get_settings().catalog_path)


def get_metric_ids() -> list[str]:
    return load_catalog().get_metric_ids()
