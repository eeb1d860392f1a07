"""
Unit tests -- in-memory conversation store: TTL, capacity, and per-conversation locking.
"""
import threading

from kpichat.copilot.conversation_store import ConversationStore
from kpichat.copilot.state import Stage


class _Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_session_creates_state_on_first_use():
    store = ConversationStore()
    with store.session("a") as state:
        assert state.stage is Stage.CATEGORY_SELECT
        state.category_id = "personnel"
    assert store.get("a").category_id == "personnel"
    assert "a" in store
    assert len(store) == 1


def test_state_persists_across_turns():
    store = ConversationStore()
    with store.session("a") as state:
        state.metric_id = "engineer_count"
    with store.session("a") as state:
        assert state.metric_id == "engineer_count"
    assert store.stats()["created"] == 1


def test_unknown_conversation():
    store = ConversationStore()
    assert store.get("missing") is None
    assert store.reset("missing") is False


def test_reset_clears_slots():
    store = ConversationStore()
    with store.session("a") as state:
        state.metric_id = "engineer_count"
        state.stage = Stage.SUMMARY_CONFIRM
    assert store.reset("a") is True
    state = store.get("a")
    assert state.metric_id is None
    assert state.stage is Stage.CATEGORY_SELECT


# ── TTL ──────────────────────────────────────────────────

def test_idle_session_expires():
    clock = _Clock()
    store = ConversationStore(ttl=60, clock=clock)
    with store.session("a"):
        pass
    clock.now += 61
    assert store.get("a") is None
    assert store.stats()["evicted"] == 1


def test_expired_session_restarts_fresh():
    clock = _Clock()
    store = ConversationStore(ttl=60, clock=clock)
    with store.session("a") as state:
        state.metric_id = "engineer_count"
    clock.now += 61
    with store.session("a") as state:
        assert state.metric_id is None


def test_access_refreshes_ttl():
    clock = _Clock()
    store = ConversationStore(ttl=60, clock=clock)
    with store.session("a"):
        pass
    clock.now += 50
    with store.session("a"):
        pass
    clock.now += 50
    assert store.get("a") is not None


def test_cleanup_expired():
    clock = _Clock()
    store = ConversationStore(ttl=60, clock=clock)
    for cid in ("a", "b"):
        with store.session(cid):
            pass
    clock.now += 30
    with store.session("c"):
        pass
    clock.now += 40
    assert store.cleanup_expired() == 2
    assert len(store) == 1


def test_in_use_session_never_expires():
    clock = _Clock()
    store = ConversationStore(ttl=60, clock=clock)
    with store.session("a"):
        clock.now += 120
        assert store.cleanup_expired() == 0
        assert store.stats()["active"] == 1
    assert store.stats()["active"] == 0


# ── Capacity ─────────────────────────────────────────────

def test_lru_eviction_at_capacity():
    clock = _Clock()
    store = ConversationStore(max_sessions=2, clock=clock)
    with store.session("a"):
        pass
    clock.now += 1
    with store.session("b"):
        pass
    clock.now += 1
    with store.session("a"):
        pass
    clock.now += 1
    with store.session("c"):
        pass
    assert "b" not in store
    assert "a" in store and "c" in store
    assert store.stats()["size"] == 2


def test_stats_shape():
    stats = ConversationStore(ttl=10, max_sessions=5).stats()
    assert stats == {
        "size": 0, "max_sessions": 5, "ttl_seconds": 10, "active": 0, "created": 0, "evicted": 0,
    }


# ── Locking ──────────────────────────────────────────────

def test_turns_on_same_conversation_are_serialized():
    store = ConversationStore()
    entered = threading.Event()
    release = threading.Event()
    order: list[str] = []

    def first():
        with store.session("a"):
            order.append("first-start")
            entered.set()
            release.wait(timeout=5)
            order.append("first-end")

    def second():
        entered.wait(timeout=5)
        with store.session("a"):
            order.append("second")

    t1 = threading.Thread(target=first)
    t2 = threading.Thread(target=second)
    t1.start()
    t2.start()
    entered.wait(timeout=5)
    # second is blocked on the conversation lock until first releases
    t2.join(timeout=0.2)
    assert order == ["first-start"]
    release.set()
    t1.join(timeout=5)
    t2.join(timeout=5)
    assert order == ["first-start", "first-end", "second"]


def test_different_conversations_do_not_block():
    store = ConversationStore()
    with store.session("a"):
        done = threading.Event()

        def other():
            with store.session("b"):
                done.set()

        t = threading.Thread(target=other)
        t.start()
        assert done.wait(timeout=5)
        t.join(timeout=5)
