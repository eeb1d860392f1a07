"""
Intent classifier port -- the best-effort fallback used when keyword rules
find no metric in a question.

The contract is deliberately narrow: ``infer(text, catalog_summary)`` returns
an ``IntentResult`` or ``None``.  Implementations never raise; timeouts,
transport errors, and unparseable answers all come back as ``None``.
"""
from __future__ import annotations

import json
import re
from typing import Any, Protocol

from kpichat.copilot.slots import IntentResult
from kpichat.core.logging import get_logger

logger = get_logger(__name__)


class IntentClassifier(Protocol):
    def infer(self, text: str, catalog_summary: str) -> IntentResult | None:
        ...


class NullIntentClassifier:
    """Classifier that never finds anything (offline mode, tests)."""

    def infer(self, text: str, catalog_summary: str) -> IntentResult | None:
        return None


# ── Prompting ────────────────────────────────────────────

_SYSTEM_PROMPT = """\
你是一个KPI查询意图解析器，只输出JSON。JSON字段:
  kpiMetric       : 从下方指标列表中选择一个id
  month           : 如 '202510' 表示 2025年10月，没有则为 null
  filterDimension : 'product' 或 'org' 或 null
  filterValues    : 字符串数组，如 ['CT'] 或 ['PSM']

可选指标列表：
{metrics}

用户可能会说类似“看下10月ct的工程师数量”这样的中文自然语言，请你解析出对应的字段。
注意：请根据用户的描述匹配最合适的指标ID。不要输出markdown或解释。"""

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def build_system_prompt(catalog_summary: str) -> str:
    return _SYSTEM_PROMPT.format(metrics=catalog_summary)


def parse_intent_response(text: str) -> IntentResult | None:
    """Pull the JSON object out of a model answer; ``None`` when there is none."""
    text = (text or "").strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?\s*", "", text)
        text = re.sub(r"\s*```$", "", text)

    match = _JSON_OBJECT_RE.search(text)
    if not match:
        logger.warning("Intent classifier answer has no JSON object")
        return None

    try:
        data: Any = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        logger.warning("Intent classifier returned invalid JSON: %s", exc)
        return None
    if not isinstance(data, dict):
        return None

    raw_values = data.get("filterValues")
    values = [str(v) for v in raw_values] if isinstance(raw_values, list) else []
    month = data.get("month")
    metric = data.get("kpiMetric") or data.get("metric")
    if not metric:
        logger.info("Intent classifier answer names no metric")
        return None
    dimension = data.get("filterDimension")
    return IntentResult(
        metric_id=str(metric),
        month=str(month) if month else None,
        filter_dimension=str(dimension) if dimension else None,
        filter_values=values,
    )


# ── LLM-backed implementation ────────────────────────────

class LlmIntentClassifier:
    """Classifier backed by ``llm_client.call_llm`` with a hard timeout and no retry."""

    def __init__(self, provider: str | None = None, timeout: float | None = None):
        self._provider = provider
        self._timeout = timeout

    def infer(self, text: str, catalog_summary: str) -> IntentResult | None:
        from kpichat.copilot.llm_client import call_llm

        try:
            answer = call_llm(
                text,
                provider=self._provider,
                system=build_system_prompt(catalog_summary),
                timeout=self._timeout,
            )
        except Exception as exc:
            logger.warning("Intent classifier unavailable (%s: %s)", type(exc).__name__, exc)
            return None
        return parse_intent_response(answer)
