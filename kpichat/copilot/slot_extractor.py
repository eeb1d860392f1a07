"""
Slot extractor -- mines a free-text question for metric, time, and filter slots.

Extraction is rule-based and deterministic; slots are found independently:
  1. time    → explicit 20YYMM token, else an "N月" alias from the catalog
  2. filter  → whole-token product codes, else a PSM / 非PSM org mention
  3. metric  → keyword phrases ("工程师+数量" = all parts present), priority order

Only when no metric is found does the extractor ask the intent classifier, and
whatever the classifier reports never overrides a slot found by the rules.
"""
from __future__ import annotations

import re

from kpichat.copilot.intent_classifier import IntentClassifier, NullIntentClassifier
from kpichat.copilot.slots import PartialSlots, TimeRange, MONTH_RE
from kpichat.core.logging import get_logger
from kpichat.core.utils import dedupe, loose_key
from kpichat.governance.semantic_loader import MetricCatalog, Metric

logger = get_logger(__name__)

# ── Rule vocabulary ──────────────────────────────────────

_PRODUCT_DIMENSION = "product"
_ORG_DIMENSION = "org"

_ORG_TOKEN = "psm"
_ORG_POSITIVE = "PSM"
_ORG_NEGATIVE = "非PSM"
_NEGATED_ORG_MARKERS = ("非psm", "nonpsm", "notpsm")

_EXPLICIT_MONTH_RE = re.compile(r"20\d{4}")
_CN_MONTH_RE = re.compile(r"(\d{1,2})月")

_KEYWORD_SEPARATOR = "+"


# ── Helpers ──────────────────────────────────────────────

def contains_ascii_token(text: str, token: str) -> bool:
    """Case-insensitive whole-token match: *token* must not touch other ASCII letters/digits."""
    pattern = rf"(?<![a-z0-9]){re.escape(token)}(?![a-z0-9])"
    return re.search(pattern, text or "", re.IGNORECASE) is not None


def canonicalize(catalog: MetricCatalog, dimension_id: str | None, raw_values: list) -> list[str]:
    """Map raw tokens onto the dimension's declared value ids.

    Matching ignores case and whitespace and accepts either the value id or its
    label.  Unknown tokens are dropped; duplicates collapse to the first one.
    """
    dim = catalog.find_filter_dimension(dimension_id)
    if dim is None:
        return []
    lookup: dict[str, str] = {}
    for v in dim.values:
        lookup[loose_key(v.id)] = v.id
        lookup[loose_key(v.label)] = v.id
    canonical = [lookup.get(loose_key(raw)) for raw in (raw_values or [])]
    return dedupe(v for v in canonical if v)


def extract_time(text: str, catalog: MetricCatalog) -> TimeRange | None:
    m = _EXPLICIT_MONTH_RE.search(text)
    if m:
        return TimeRange.month(m.group(0))
    m = _CN_MONTH_RE.search(text)
    if not m:
        return None
    month = catalog.month_aliases.get(int(m.group(1)))
    return TimeRange.month(month) if month else None


def extract_filters(text: str, catalog: MetricCatalog) -> tuple[str, list[str]] | None:
    """Return ``(dimension_id, values)`` for at most one dimension, or None."""
    product = catalog.find_filter_dimension(_PRODUCT_DIMENSION)
    if product is not None:
        found = [
            v.id for v in product.values
            if contains_ascii_token(text, v.id) or contains_ascii_token(text, v.label)
        ]
        values = canonicalize(catalog, _PRODUCT_DIMENSION, found)
        if values:
            return _PRODUCT_DIMENSION, values

    loose = loose_key(text)
    if any(marker in loose for marker in _NEGATED_ORG_MARKERS):
        org = [_ORG_NEGATIVE]
    elif contains_ascii_token(text, _ORG_TOKEN):
        org = [_ORG_POSITIVE]
    else:
        return None
    values = canonicalize(catalog, _ORG_DIMENSION, org)
    return (_ORG_DIMENSION, values) if values else None


def phrase_matches(text: str, phrase: str) -> bool:
    parts = [p for p in phrase.split(_KEYWORD_SEPARATOR) if p]
    return bool(parts) and all(part in text for part in parts)


def extract_metric(text: str, catalog: MetricCatalog) -> Metric | None:
    """First metric (priority desc, then declaration order) with a satisfied phrase."""
    for metric in catalog.metrics_by_priority():
        for phrase in metric.keywords:
            if phrase_matches(text, phrase):
                return metric
    return None


def summarize_catalog(catalog: MetricCatalog) -> str:
    """One ``- id: description`` line per metric, for the classifier prompt."""
    return "\n".join(
        f"- {m.id}: {m.description or m.label}" for m in catalog.all_metrics_flat()
    )


# ── Extractor ────────────────────────────────────────────

class SlotExtractor:
    """Rule-based extraction with an optional classifier fallback."""

    def __init__(self, catalog: MetricCatalog, classifier: IntentClassifier | None = None):
        self.catalog = catalog
        self.classifier = classifier or NullIntentClassifier()

    def extract(self, text: str | None) -> PartialSlots | None:
        """Return the slots found in *text*, or ``None`` when nothing was found."""
        trimmed = (text or "").strip()
        if not trimmed:
            return None

        slots = PartialSlots()
        slots.time_range = extract_time(trimmed, self.catalog)

        filters = extract_filters(trimmed, self.catalog)
        if filters:
            slots.filter_dimension, slots.filter_values = filters

        metric = extract_metric(trimmed, self.catalog)
        if metric is not None:
            slots.category_id = metric.category_id
            slots.metric_id = metric.id
        else:
            self._apply_classifier(trimmed, slots)

        if slots.is_empty:
            logger.info("Extractor: no slots in %r", trimmed[:80])
            return None
        logger.info("Extractor[%s] -> %s", slots.source, slots.model_dump_json())
        return slots

    def _apply_classifier(self, text: str, slots: PartialSlots) -> None:
        intent = self.classifier.infer(text, summarize_catalog(self.catalog))
        if intent is None or not intent.metric_id:
            return
        metric = self.catalog.metric(intent.metric_id)
        if metric is None:
            logger.warning("Intent classifier chose unknown metric %r -- ignored", intent.metric_id)
            return

        slots.category_id = metric.category_id
        slots.metric_id = metric.id
        slots.source = "classifier"

        if slots.time_range is None and intent.month and MONTH_RE.match(intent.month):
            slots.time_range = TimeRange.month(intent.month)

        if slots.filter_dimension is None and intent.filter_dimension:
            values = canonicalize(self.catalog, intent.filter_dimension, intent.filter_values)
            if values:
                slots.filter_dimension = intent.filter_dimension
                slots.filter_values = values
