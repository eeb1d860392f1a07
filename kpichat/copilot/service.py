"""
Copilot service -- wires catalog, extractor, data store and conversation store
into the entry points used by the API.

  handle_turn(conversation_id, message?, payload?, time_override?) -> TurnResult
  time_options()                                                -> TimeOptions
  detail_rows(conversation_id)                                  -> rows

Each turn runs while holding the conversation's lock, so concurrent requests
for the same conversation are applied one after another.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any

from kpichat.copilot.conversation_store import ConversationStore
from kpichat.copilot.dialog import DialogEngine, TurnResult
from kpichat.copilot.intent_classifier import IntentClassifier, LlmIntentClassifier, NullIntentClassifier
from kpichat.copilot.slot_extractor import SlotExtractor
from kpichat.copilot.slots import TimeRange
from kpichat.copilot.time_options import TimeOptions, list_time_options
from kpichat.core.config import get_settings
from kpichat.core.logging import get_logger
from kpichat.db.executor import SqlDataStore
from kpichat.governance.semantic_loader import load_catalog

logger = get_logger(__name__)


class UnknownConversation(LookupError):
    """The conversation id has never been seen (or has expired)."""


def build_classifier() -> IntentClassifier:
    settings = get_settings()
    if settings.llm_provider == "none":
        return NullIntentClassifier()
    return LlmIntentClassifier(provider=settings.llm_provider, timeout=settings.llm_timeout_seconds)


@lru_cache
def get_engine() -> DialogEngine:
    """Dialogue engine over the cached catalog and the configured database."""
    catalog = load_catalog()
    extractor = SlotExtractor(catalog, classifier=build_classifier())
    engine = DialogEngine(catalog, extractor, SqlDataStore())
    logger.info(
        "Dialog engine ready | categories=%d | metrics=%d",
        len(catalog.categories), len(catalog.all_metrics_flat()),
    )
    return engine


@lru_cache
def get_store() -> ConversationStore:
    settings = get_settings()
    return ConversationStore(ttl=settings.session_ttl_seconds, max_sessions=settings.max_sessions)


def handle_turn(
    conversation_id: str,
    message: str | None = None,
    payload: dict[str, Any] | None = None,
    time_override: TimeRange | None = None,
) -> TurnResult:
    engine = get_engine()
    with get_store().session(conversation_id) as state:
        return engine.handle_turn(state, message=message, payload=payload, time_override=time_override)


def time_options() -> TimeOptions:
    engine = get_engine()
    return list_time_options(engine.store, engine.catalog)


def detail_rows(conversation_id: str) -> list[dict[str, Any]]:
    """Uncapped detail rows for the conversation's current selection.

    Raises
    ------
    UnknownConversation
        If the conversation does not exist.
    """
    store = get_store()
    if store.get(conversation_id) is None:
        raise UnknownConversation(conversation_id)
    with store.session(conversation_id) as state:
        return get_engine().detail_rows(state)


def reset_services() -> None:
    """Drop the cached engine and conversation store (tests, config reloads)."""
    get_engine.cache_clear()
    get_store.cache_clear()
