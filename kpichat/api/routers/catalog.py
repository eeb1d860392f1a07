"""
GET /metrics, GET /catalog -- metadata endpoints.
"""
from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from kpichat.governance.semantic_loader import get_metric_ids, load_catalog

router = APIRouter()



class MetricItem(BaseModel):
    id: str
    label: str
    kind: str
    description: str
    allowed_time_types: list[str]
    allowed_filter_dimensions: list[str]


class CategoryItem(BaseModel):
    id: str
    label: str
    metrics: list[MetricItem]


class FilterValueItem(BaseModel):
    id: str
    label: str


class FilterDimensionItem(BaseModel):
    id: str
    label: str
    column: str
    values: list[FilterValueItem]


class CatalogResponse(BaseModel):
    version: int
    categories: list[CategoryItem]
    filter_dimensions: list[FilterDimensionItem]
    time_column: str
    detail_row_limit: int



@router.get("/metrics")
def list_metrics() -> dict:
    """Return all metric ids (lightweight)."""
    return {"metrics": get_metric_ids()}


@router.get("/catalog", response_model=CatalogResponse)
def full_catalog() -> CatalogResponse:
    """Return categories, metrics and filter vocabularies for the UI sidebar."""
    catalog = load_catalog()
    return CatalogResponse(
        version=catalog.version,
        categories=[CategoryItem(**c) for c in catalog.get_catalog_list()],
        filter_dimensions=[
            FilterDimensionItem(
                id=d.id,
                label=d.label,
                column=d.column,
                values=[FilterValueItem(id=v.id, label=v.label) for v in d.values],
            )
            for d in catalog.filter_dimensions.values()
        ],
        time_column=catalog.time_column,
        detail_row_limit=catalog.detail_row_limit,
    )
