"""
Dialogue engine -- the slot-filling state machine behind every chat turn.

One turn:
  1. free text → SlotExtractor → merge into the conversation state → advance
  2. otherwise a button payload is applied at the current stage
  3. once every slot is filled the query is compiled, safety-checked and run

``advance`` always moves to the earliest unfilled slot, so a turn that fills
several slots at once ("202510 CT 工程师数量") jumps straight to the summary.
Extraction runs before the stage handlers, so "202510" typed while an FY value
is pending is taken as a month rather than checked against the FY shape.
A ``time_override`` whose value does not fit its type is ignored.
Failures are recovered here: a missing catalog entry restores the state and
replies in plain language, a query failure falls back to SUMMARY_CONFIRM.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import BaseModel, Field

from kpichat.copilot.chart_generator import ChartSpec, bar_chart, suggest_chart
from kpichat.copilot.query_compiler import (
    compile_chart_query,
    compile_detail_query,
    compile_query,
    reconcile_for_state,
    reconcile_group_rows,
    run_compiled,
)
from kpichat.copilot.result_formatter import NO_FILTER_LABEL, format_result, summarize_state
from kpichat.copilot.slot_extractor import SlotExtractor, canonicalize
from kpichat.copilot.slots import NO_FILTER, PartialSlots, TimeRange, matches_time_type, time_kind_of
from kpichat.copilot.state import ConversationState, Stage
from kpichat.copilot.time_options import TimeOptions, list_time_options
from kpichat.core.logging import get_logger
from kpichat.core.utils import dedupe, timer
from kpichat.db.executor import DataStore
from kpichat.governance.semantic_loader import (
    TIME_TYPES,
    ConfigurationNotFound,
    Metric,
    MetricCatalog,
    MetricKind,
)

logger = get_logger(__name__)

# ── Reply texts ──────────────────────────────────────────

OUT_OF_SCOPE = "很抱歉，您咨询的问题已经超纲了。\n目前仅支持查询人员信息、工程师数量等指标。"
CATEGORY_HINT = "请从按钮中选择KPI大类，或输入类似“202510工程师数量”。"
USE_BUTTONS = "请使用下方按钮继续选择，或输入更完整的问题。"
UNKNOWN_CHOICE = "未能理解你的选择，请使用提供的按钮继续操作。"
INVALID_TIME_TYPE = "输入无效。请点击按钮选择时间类型（Month, HalfFY, FY）。"
CHOOSE_TIME_VALUE = "请选择具体时间："
CHOOSE_FILTER_VALUE = "请选择具体值："
CONFIRM_HINT = "\n如无问题，请点击“开始查询”，或选择“修改”。"
QUERY_FAILED = "执行数据库查询时出错："
MODIFY_REPLY = "请重新选择KPI大类："
NEW_QUERY_REPLY = "开始新的查询，请选择KPI大类："
CHART_GROUPED = "已为您生成图表："
CHART_BY_PRODUCT = "已按产品为您生成图表："
CHART_UNSUPPORTED = "当前指标或数据不支持生成图表。"
DETAIL_READY = "已准备好明细数据，请点击下载按钮。"
OPTIONS_FAILED = "\n\n(系统提示：加载选项失败，数据库连接异常。请联系管理员检查配置。)"

_STAGE_PROMPTS = {
    Stage.CATEGORY_SELECT: "请先选择KPI大类：",
    Stage.METRIC_SELECT: "请选择二级指标：",
    Stage.TIME_TYPE_SELECT: "已识别指标，请继续选择时间类型：",
    Stage.TIME_VALUE_SELECT: CHOOSE_TIME_VALUE,
    Stage.FILTER_DIMENSION_SELECT: "已识别指标和时间，请选择筛选维度：",
    Stage.FILTER_VALUE_SELECT: CHOOSE_FILTER_VALUE,
}

TIME_TYPE_LABELS = {"month": "Month", "half_fy": "HalfFY", "fy": "FY"}
_TYPED_TIME_TYPES = {
    **{k: k for k in TIME_TYPES},
    **{label.lower(): k for k, label in TIME_TYPE_LABELS.items()},
}


def invalid_time_value(time_type: str | None) -> str:
    return (
        f"时间格式无效。请重新输入（当前类型: {time_type or '未知'}）。\n"
        "示例：202506 (Month), 2025H1 (HalfFY), 2025 (FY)。"
    )


# ── Turn models ──────────────────────────────────────────

class ChatOption(BaseModel):
    label: str
    payload: dict[str, Any]


class TurnResult(BaseModel):
    reply: str
    summary: str = ""
    stage: str
    options: list[ChatOption] = Field(default_factory=list)
    chart: dict[str, Any] | None = None
    rows: list[dict[str, Any]] | None = None
    display_sql: str | None = None
    done: bool = False


@dataclass
class _Outcome:
    reply: str
    chart: ChartSpec | None = None
    rows: list[dict[str, Any]] | None = None
    done: bool = False


# ── Engine ───────────────────────────────────────────────

class DialogEngine:
    """Drives one conversation state through the slot-filling stages."""

    def __init__(
        self,
        catalog: MetricCatalog,
        extractor: SlotExtractor,
        store: DataStore,
        time_options: Callable[[], TimeOptions] | None = None,
    ):
        self.catalog = catalog
        self.extractor = extractor
        self.store = store
        self._time_options = time_options or (lambda: list_time_options(store, catalog))

    # ── Turn boundary ────────────────────────────────

    def handle_turn(
        self,
        state: ConversationState,
        message: str | None = None,
        payload: dict[str, Any] | None = None,
        time_override: TimeRange | None = None,
    ) -> TurnResult:
        """Apply one inbound message or button press to *state*."""
        logger.info(
            "Turn | stage=%s | message=%r | payload=%s",
            state.stage.value, (message or "")[:80], payload,
        )
        snapshot = copy.deepcopy(state)
        try:
            outcome = self._dispatch(state, message, payload, time_override)
        except ConfigurationNotFound as exc:
            logger.warning("Configuration lookup failed: %s", exc)
            state.__dict__.update(snapshot.__dict__)
            outcome = _Outcome(reply=f"未找到对应的配置：{exc}")

        logger.debug("State after turn: %s", state.to_dict())
        reply = outcome.reply
        try:
            options = self.build_options(state)
        except ConfigurationNotFound:
            options = []
        except Exception:
            logger.exception("Building options failed at stage=%s", state.stage.value)
            options = []
            reply += OPTIONS_FAILED

        return TurnResult(
            reply=reply,
            summary=summarize_state(state, self.catalog),
            stage=state.stage.value,
            options=options,
            chart=outcome.chart.to_dict() if outcome.chart else None,
            rows=outcome.rows,
            display_sql=state.last_display_sql,
            done=outcome.done,
        )

    def _dispatch(
        self,
        state: ConversationState,
        message: str | None,
        payload: dict[str, Any] | None,
        time_override: TimeRange | None,
    ) -> _Outcome:
        text = message.strip() if isinstance(message, str) else ""
        overridden = time_override is not None
        if time_override is not None and not _well_formed(time_override):
            logger.info(
                "Ignoring time override %s=%r: value does not fit the type",
                time_override.type, time_override.value,
            )
            time_override = None

        if text:
            slots = self.extractor.extract(text)
            if slots is not None:
                if time_override is not None:
                    slots.time_range = time_override
                self.merge_slots(state, slots)
                return _Outcome(reply=self.advance_with_prompt(state))
            if state.stage is Stage.CATEGORY_SELECT and payload is None:
                if self.catalog.find_category_by_label(text) is None:
                    return _Outcome(reply=OUT_OF_SCOPE)

        if payload is None:
            if time_override is not None:
                self._apply_time(state, time_override)
            if overridden and not text:
                return _Outcome(reply=self.advance_with_prompt(state))
            return self._handle_text(state, text)

        return self._handle_button(state, payload)

    # ── Slot merging & advancing ─────────────────────

    def merge_slots(self, state: ConversationState, slots: PartialSlots) -> None:
        """Fold extracted slots into *state*, keeping only what the metric allows."""
        if slots.metric_id:
            metric = self.catalog.require_metric(slots.metric_id)
            state.category_id = metric.category_id
            state.metric_id = metric.id
            self._prune(state, metric)

        if slots.time_range is not None:
            self._apply_time(state, slots.time_range)

        if slots.filter_dimension:
            metric = self._current_metric(state)
            if metric is None or slots.filter_dimension in metric.allowed_filter_dimensions:
                state.set_filter(slots.filter_dimension, slots.filter_values)
            else:
                logger.info(
                    "Dropping filter %s: not allowed for metric %s",
                    slots.filter_dimension, metric.id,
                )

    def _apply_time(self, state: ConversationState, time_range: TimeRange) -> None:
        if not _well_formed(time_range):
            logger.info("Dropping time %r: value does not fit type %s", time_range.value, time_range.type)
            return
        metric = self._current_metric(state)
        if metric is not None and not self._time_allowed(metric, time_range):
            logger.info("Dropping time %s: not allowed for metric %s", time_range.value, metric.id)
            return
        state.time_range = time_range
        kind = _time_kind(time_range)
        if kind is not None:
            state.time_type = kind

    @staticmethod
    def _time_allowed(metric: Metric, time_range: TimeRange) -> bool:
        if time_range.type == "none":
            return not metric.uses_time
        return _time_kind(time_range) in metric.allowed_time_types

    def _prune(self, state: ConversationState, metric: Metric) -> None:
        """Drop slots the (new) metric cannot use."""
        if state.time_range is not None and not self._time_allowed(metric, state.time_range):
            state.time_range = None
        if state.time_type not in metric.allowed_time_types:
            state.time_type = None
        if state.has_filter_dimension and state.filter_dimension not in metric.allowed_filter_dimensions:
            state.set_filter(NO_FILTER)

    def _current_metric(self, state: ConversationState) -> Metric | None:
        if not state.metric_id:
            return None
        return self.catalog.require_metric(state.metric_id)

    def advance(self, state: ConversationState) -> Stage:
        """Move *state* to the earliest unfilled slot and return that stage."""
        if not state.metric_id:
            state.stage = Stage.METRIC_SELECT if state.category_id else Stage.CATEGORY_SELECT
            return state.stage

        metric = self.catalog.require_metric(state.metric_id)

        if not metric.uses_time:
            if state.time_range is None or state.time_range.type != "none":
                state.time_range = TimeRange.none()
                state.time_type = None
        elif state.time_range is None or not state.time_range.value:
            state.time_range = None
            if state.time_type in metric.allowed_time_types:
                state.stage = Stage.TIME_VALUE_SELECT
            else:
                state.time_type = None
                state.stage = Stage.TIME_TYPE_SELECT
            return state.stage

        if not state.has_filter_dimension:
            state.stage = Stage.FILTER_DIMENSION_SELECT
        elif not state.filter_values:
            state.stage = Stage.FILTER_VALUE_SELECT
        else:
            state.stage = Stage.SUMMARY_CONFIRM
        return state.stage

    def advance_with_prompt(self, state: ConversationState) -> str:
        stage = self.advance(state)
        if stage is Stage.SUMMARY_CONFIRM:
            return summarize_state(state, self.catalog) + CONFIRM_HINT
        return _STAGE_PROMPTS[stage]

    # ── Free text (nothing extracted) ────────────────

    def _handle_text(self, state: ConversationState, text: str) -> _Outcome:
        if state.stage is Stage.CATEGORY_SELECT:
            category = self.catalog.find_category_by_label(text) if text else None
            if category is None:
                return _Outcome(reply=CATEGORY_HINT)
            state.category_id = category.id
            state.stage = Stage.METRIC_SELECT
            return _Outcome(reply=f"已选择：{category.label}。\n请选择二级指标：")

        if state.stage is Stage.TIME_TYPE_SELECT:
            time_type = _TYPED_TIME_TYPES.get(text.lower())
            metric = self._current_metric(state)
            if time_type is None or (metric is not None and time_type not in metric.allowed_time_types):
                return _Outcome(reply=INVALID_TIME_TYPE)
            state.time_type = time_type
            state.stage = Stage.TIME_VALUE_SELECT
            return _Outcome(reply=CHOOSE_TIME_VALUE)

        if state.stage is Stage.TIME_VALUE_SELECT:
            if not text or not matches_time_type(state.time_type, text):
                return _Outcome(reply=invalid_time_value(state.time_type))
            state.time_range = TimeRange(type="custom", value=text, label=text)
            return _Outcome(reply=self.advance_with_prompt(state))

        return _Outcome(reply=USE_BUTTONS)

    # ── Buttons ──────────────────────────────────────

    def _handle_button(self, state: ConversationState, payload: dict[str, Any]) -> _Outcome:
        kind = payload.get("type")
        stage = state.stage

        if kind in ("modify", "new_query"):
            state.reset()
            return _Outcome(reply=MODIFY_REPLY if kind == "modify" else NEW_QUERY_REPLY)

        if kind == "kpi_category" and stage is Stage.CATEGORY_SELECT:
            category = self.catalog.find_category(payload.get("id"))
            if category is None:
                raise ConfigurationNotFound(f"Category '{payload.get('id')}' is not configured")
            state.category_id = category.id
            state.metric_id = None
            return _Outcome(reply=self.advance_with_prompt(state))

        if kind == "kpi_metric" and stage is Stage.METRIC_SELECT:
            metric = self.catalog.find_metric(state.category_id, payload.get("id"))
            if metric is None:
                raise ConfigurationNotFound(f"Metric '{payload.get('id')}' is not configured")
            state.metric_id = metric.id
            self._prune(state, metric)
            return _Outcome(reply=self.advance_with_prompt(state))

        if kind == "time_type" and stage is Stage.TIME_TYPE_SELECT:
            metric = self._current_metric(state)
            value = payload.get("value")
            if metric is None or value not in metric.allowed_time_types:
                return _Outcome(reply=INVALID_TIME_TYPE)
            state.time_type = value
            state.stage = Stage.TIME_VALUE_SELECT
            return _Outcome(reply=CHOOSE_TIME_VALUE)

        if kind == "time_value" and stage in (Stage.TIME_TYPE_SELECT, Stage.TIME_VALUE_SELECT):
            value = str(payload.get("value") or "")
            time_type = payload.get("time_type") or state.time_type or time_kind_of(value)
            if not matches_time_type(time_type, value):
                return _Outcome(reply=invalid_time_value(time_type))
            time_range = TimeRange(type=time_type, value=value, label=payload.get("label") or value)
            metric = self._current_metric(state)
            if metric is not None and not self._time_allowed(metric, time_range):
                return _Outcome(reply=invalid_time_value(state.time_type))
            state.time_type = time_type
            state.time_range = time_range
            return _Outcome(reply=self.advance_with_prompt(state))

        if kind == "filter_dimension" and stage is Stage.FILTER_DIMENSION_SELECT:
            value = payload.get("value")
            if value == NO_FILTER:
                state.set_filter(NO_FILTER)
                return self.execute(state)
            dim = self.catalog.require_filter_dimension(value)
            metric = self._current_metric(state)
            if metric is not None and dim.id not in metric.allowed_filter_dimensions:
                return _Outcome(reply=UNKNOWN_CHOICE)
            state.set_filter(dim.id, [])
            return _Outcome(reply=self.advance_with_prompt(state))

        if kind == "filter_value" and stage is Stage.FILTER_VALUE_SELECT:
            values = canonicalize(self.catalog, state.filter_dimension, [payload.get("value")])
            if not values:
                return _Outcome(reply=CHOOSE_FILTER_VALUE)
            state.filter_values = dedupe(state.filter_values + values)
            return _Outcome(reply=self.advance_with_prompt(state))

        if kind == "confirm_filter_values" and stage is Stage.FILTER_VALUE_SELECT:
            values = canonicalize(self.catalog, state.filter_dimension, payload.get("values") or [])
            if not values:
                return _Outcome(reply=CHOOSE_FILTER_VALUE)
            state.filter_values = values
            return self.execute(state)

        if kind == "confirm_start" and stage is Stage.SUMMARY_CONFIRM:
            return self.execute(state)

        if kind == "chart" and stage is Stage.SHOW_RESULT:
            return self.chart(state)

        if kind == "download_detail" and stage is Stage.SHOW_RESULT:
            return _Outcome(reply=DETAIL_READY)

        logger.info("Unrecognised payload %s at stage=%s", payload, stage.value)
        return _Outcome(reply=UNKNOWN_CHOICE)

    # ── Execution ────────────────────────────────────

    def execute(self, state: ConversationState) -> _Outcome:
        """EXECUTING_QUERY → SHOW_RESULT, or back to SUMMARY_CONFIRM on failure."""
        metric = self.catalog.require_metric(state.metric_id)
        state.stage = Stage.EXECUTING_QUERY
        try:
            with timer() as t:
                compiled = compile_query(metric, state, self.catalog)
                rows = run_compiled(self.store, compiled)
            rows = reconcile_for_state(metric, rows, state, self.catalog)
        except ConfigurationNotFound:
            raise
        except Exception as exc:
            logger.exception("Query failed for metric=%s", metric.id)
            state.stage = Stage.SUMMARY_CONFIRM
            return _Outcome(reply=QUERY_FAILED + str(exc))

        logger.info("Query ok | metric=%s | rows=%d | %dms", metric.id, len(rows), t["elapsed_ms"])
        state.last_query_result = rows
        state.last_display_sql = compiled.display_sql
        state.stage = Stage.SHOW_RESULT

        chart = None
        if metric.kind is MetricKind.AGGREGATE_GROUP and rows:
            chart = suggest_chart(metric, rows)
        return _Outcome(
            reply=format_result(metric, rows, self.catalog.detail_row_limit),
            chart=chart,
            rows=rows,
            done=True,
        )

    def chart(self, state: ConversationState) -> _Outcome:
        """Chart for the last result; plain aggregates are re-run grouped by product."""
        metric = self.catalog.require_metric(state.metric_id)

        if metric.kind is MetricKind.AGGREGATE_GROUP and state.last_query_result:
            return _Outcome(reply=CHART_GROUPED, chart=suggest_chart(metric, state.last_query_result))

        if metric.kind is MetricKind.AGGREGATE and "product" in self.catalog.filter_dimensions:
            try:
                compiled = compile_chart_query(metric, state, self.catalog)
                rows = run_compiled(self.store, compiled)
            except Exception as exc:
                logger.exception("Chart query failed for metric=%s", metric.id)
                return _Outcome(reply=QUERY_FAILED + str(exc))
            if state.filter_dimension == "product" and state.filter_values:
                rows = reconcile_group_rows(rows, "product", state.filter_values)
            if rows:
                state.last_display_sql = compiled.display_sql
                return _Outcome(
                    reply=CHART_BY_PRODUCT,
                    chart=bar_chart(rows, "product", metric.label, unit=metric.unit),
                    rows=rows,
                )

        return _Outcome(reply=CHART_UNSUPPORTED)

    def detail_rows(self, state: ConversationState) -> list[dict[str, Any]]:
        """Uncapped detail rows for the current category and slots (download)."""
        metric = self.catalog.detail_metric_for(state.category_id)
        if metric is None:
            raise ConfigurationNotFound(f"No detail metric configured for category '{state.category_id}'")
        return run_compiled(self.store, compile_detail_query(metric, state, self.catalog))

    # ── Options ──────────────────────────────────────

    def build_options(self, state: ConversationState) -> list[ChatOption]:
        """Buttons offered at the current stage."""
        stage = state.stage

        if stage is Stage.CATEGORY_SELECT:
            return [
                ChatOption(label=c.label, payload={"type": "kpi_category", "id": c.id})
                for c in self.catalog.categories
            ]

        if stage is Stage.METRIC_SELECT:
            category = self.catalog.find_category(state.category_id)
            if category is None:
                return []
            return [
                ChatOption(label=m.label, payload={"type": "kpi_metric", "id": m.id})
                for m in category.metrics
            ]

        metric = self._current_metric(state)

        if stage is Stage.TIME_TYPE_SELECT:
            allowed = metric.allowed_time_types if metric else TIME_TYPES
            return [
                ChatOption(label=TIME_TYPE_LABELS[t], payload={"type": "time_type", "value": t})
                for t in TIME_TYPES if t in allowed
            ]

        if stage is Stage.TIME_VALUE_SELECT:
            time_type = state.time_type or "month"
            return [
                ChatOption(
                    label=o.label,
                    payload={"type": "time_value", "value": o.value, "label": o.label, "time_type": time_type},
                )
                for o in self._time_options().for_type(time_type)
            ]

        if stage is Stage.FILTER_DIMENSION_SELECT:
            options = [
                ChatOption(label=d.label, payload={"type": "filter_dimension", "value": d.id})
                for d in self.catalog.filter_dimensions.values()
                if metric is None or d.id in metric.allowed_filter_dimensions
            ]
            options.append(
                ChatOption(label=NO_FILTER_LABEL, payload={"type": "filter_dimension", "value": NO_FILTER})
            )
            return options

        if stage is Stage.FILTER_VALUE_SELECT:
            dim = self.catalog.find_filter_dimension(state.filter_dimension)
            if dim is None:
                return []
            return [
                ChatOption(label=v.label, payload={"type": "filter_value", "value": v.id})
                for v in dim.values
            ]

        if stage is Stage.SUMMARY_CONFIRM:
            return [
                ChatOption(label="开始查询", payload={"type": "confirm_start"}),
                ChatOption(label="修改", payload={"type": "modify"}),
            ]

        if stage is Stage.SHOW_RESULT:
            return [
                ChatOption(label="生成图表", payload={"type": "chart"}),
                ChatOption(label="下载明细", payload={"type": "download_detail"}),
                ChatOption(label="新查询", payload={"type": "new_query"}),
            ]

        return []


def _time_kind(time_range: TimeRange) -> str | None:
    if time_range.type == "custom":
        return time_kind_of(time_range.value)
    if time_range.type in TIME_TYPES and matches_time_type(time_range.type, time_range.value or ""):
        return time_range.type
    return None


def _well_formed(time_range: TimeRange) -> bool:
    """``none`` carries no value; every other type needs a value of its own shape."""
    return time_range.type == "none" or _time_kind(time_range) is not None
