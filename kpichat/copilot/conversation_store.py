"""
Conversation store.

Keyed registry ``conversation id -> ConversationState``.  The registry itself
is guarded by one lock; each conversation additionally owns a lock that is
held for the whole turn (see `ConversationStore.session`), so two requests
for the same conversation never interleave while different conversations run
in parallel.

Entries idle for longer than the TTL are swept, and the registry is capped
at ``max_sessions`` (least recently used idle entry evicted first).
"""
from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Generator

from kpichat.copilot.state import ConversationState
from kpichat.core.logging import get_logger

logger = get_logger(__name__)


# ── Configuration ───────────────────────────────────────

DEFAULT_TTL_SECONDS = 3600
DEFAULT_MAX_SESSIONS = 1000


# ── Session entry ───────────────────────────────────────


@dataclass
class SessionEntry:
    """One conversation and its turn lock."""
    state: ConversationState
    last_access: float
    lock: threading.Lock = field(default_factory=threading.Lock)
    in_use: int = 0
    turns: int = 0

    def is_expired(self, now: float, ttl: float) -> bool:
        return self.in_use == 0 and (now - self.last_access) > ttl


# ── Store implementation ────────────────────────────────


class ConversationStore:
    """Thread-safe in-memory conversation registry.

    Parameters
    ----------
    ttl : float
        Idle seconds after which a conversation may be swept.
    max_sessions : int
        Maximum number of conversations kept.
    clock : callable
        Time source, ``time.time`` unless a test supplies its own.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        clock: Callable[[], float] = time.time,
    ):
        self._entries: dict[str, SessionEntry] = {}
        self._lock = threading.Lock()
        self._ttl = ttl
        self._max_sessions = max_sessions
        self._clock = clock
        self._created = 0
        self._evicted = 0

    # ── Public API ──────────────────────────────────────

    @contextmanager
    def session(self, conversation_id: str) -> Generator[ConversationState, None, None]:
        """Hold the conversation's lock and yield its state for one turn.

        The state is created empty on first reference.
        """
        entry = self._checkout(conversation_id)
        try:
            with entry.lock:
                entry.turns += 1
                yield entry.state
        finally:
            with self._lock:
                entry.in_use -= 1
                entry.last_access = self._clock()

    def get(self, conversation_id: str) -> ConversationState | None:
        """Current state of a conversation, or ``None`` if unknown / expired."""
        with self._lock:
            entry = self._entries.get(conversation_id)
            if entry is None:
                return None
            if entry.is_expired(self._clock(), self._ttl):
                del self._entries[conversation_id]
                self._evicted += 1
                return None
            return entry.state

    def reset(self, conversation_id: str) -> bool:
        """Clear a conversation's slots. Returns False when it does not exist."""
        with self._lock:
            entry = self._entries.get(conversation_id)
        if entry is None:
            return False
        with entry.lock:
            entry.state.reset()
        return True

    def stats(self) -> dict[str, Any]:
        """Return registry statistics."""
        with self._lock:
            return {
                "size": len(self._entries),
                "max_sessions": self._max_sessions,
                "ttl_seconds": self._ttl,
                "active": sum(1 for e in self._entries.values() if e.in_use),
                "created": self._created,
                "evicted": self._evicted,
            }

    def cleanup_expired(self) -> int:
        """Remove all idle-expired conversations. Returns count removed."""
        with self._lock:
            return self._sweep_locked()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, conversation_id: object) -> bool:
        with self._lock:
            return conversation_id in self._entries

    # ── Internals ───────────────────────────────────────

    def _checkout(self, conversation_id: str) -> SessionEntry:
        with self._lock:
            now = self._clock()
            entry = self._entries.get(conversation_id)
            if entry is not None and entry.is_expired(now, self._ttl):
                del self._entries[conversation_id]
                self._evicted += 1
                entry = None
            if entry is None:
                self._sweep_locked()
                if len(self._entries) >= self._max_sessions:
                    self._evict_lru_locked()
                entry = SessionEntry(state=ConversationState(), last_access=now)
                self._entries[conversation_id] = entry
                self._created += 1
                logger.debug("Session created id=%s size=%d", conversation_id, len(self._entries))
            entry.in_use += 1
            entry.last_access = now
            return entry

    def _sweep_locked(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now, self._ttl)]
        for k in expired:
            del self._entries[k]
        if expired:
            self._evicted += len(expired)
            logger.info("Swept %d idle sessions", len(expired))
        return len(expired)

    def _evict_lru_locked(self) -> None:
        """Remove the idle entry with the oldest access time."""
        idle = [k for k, e in self._entries.items() if e.in_use == 0]
        if not idle:
            return
        oldest = min(idle, key=lambda k: self._entries[k].last_access)
        del self._entries[oldest]
        self._evicted += 1
        logger.debug("Session evicted id=%s", oldest)
