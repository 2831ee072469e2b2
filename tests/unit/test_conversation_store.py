"""Tests for ConversationStore."""

import pytest

from repochat.conversation_store import ConversationStore, Message, Role
from repochat.exceptions import SessionNotFoundError


class TestBeginTurn:
    """Tests for begin_turn."""

    @pytest.fixture
    def store(self, clock):
        return ConversationStore(ttl=7200, sweep_interval=1800, clock=clock)

    def test_first_turn_creates_conversation(self, store):
        """The first question creates the conversation with its initial prompt."""
        snapshot = store.begin_turn("h1", "What is this?", lambda: "INITIAL")

        assert "h1" in store
        assert snapshot.initial_prompt == "INITIAL"
        assert snapshot.is_first_turn
        assert snapshot.question == "What is this?"
        assert snapshot.messages[0].role == Role.USER

    def test_initial_prompt_built_once(self, store):
        """build_initial_prompt is only called for a new conversation."""
        calls = []

        def build():
            calls.append(1)
            return f"INITIAL-{len(calls)}"

        store.begin_turn("h1", "q1", build)
        store.append_answer("h1", "a1")
        snapshot = store.begin_turn("h1", "q2", build)

        assert len(calls) == 1
        assert snapshot.initial_prompt == "INITIAL-1"
        assert not snapshot.is_first_turn

    def test_failed_initial_prompt_creates_nothing(self, store):
        """If the initial prompt cannot be built, no conversation is stored."""

        def missing():
            raise SessionNotFoundError("h1")

        with pytest.raises(SessionNotFoundError):
            store.begin_turn("h1", "q", missing)

        assert "h1" not in store
        assert len(store) == 0

    @pytest.mark.parametrize("n", [1, 2, 5, 12])
    def test_nth_question_message_count(self, store, n):
        """The N-th question leaves 2*(N-1)+1 alternating messages."""
        for i in range(1, n):
            store.begin_turn("h", f"q{i}", lambda: "P")
            store.append_answer("h", f"a{i}")

        snapshot = store.begin_turn("h", f"q{n}", lambda: "P")

        assert len(snapshot.messages) == 2 * (n - 1) + 1
        for i, msg in enumerate(snapshot.messages):
            assert msg.role == (Role.USER if i % 2 == 0 else Role.ASSISTANT)

    def test_snapshot_is_a_copy(self, store):
        """Later appends do not change an earlier snapshot."""
        snapshot = store.begin_turn("h", "q1", lambda: "P")
        store.append_answer("h", "a1")
        assert len(snapshot.messages) == 1
        assert len(store.messages("h")) == 2

    def test_updates_last_active(self, store, clock):
        """Every turn refreshes last_active."""
        store.begin_turn("h", "q1", lambda: "P")
        clock.advance(60)
        store.begin_turn("h", "q2", lambda: "P")
        assert store.get("h").last_active == clock.now


class TestAppendAnswer:
    """Tests for append_answer."""

    def test_append_to_existing(self, clock):
        """The answer is appended as an assistant message."""
        store = ConversationStore(clock=clock)
        store.begin_turn("h", "q", lambda: "P")
        assert store.append_answer("h", "answer") is True
        assert store.messages("h")[-1].role == Role.ASSISTANT
        assert store.messages("h")[-1].content == "answer"

    def test_append_after_eviction_is_dropped(self, clock):
        """Appending to an evicted conversation is a no-op, not an error."""
        store = ConversationStore(clock=clock)
        store.begin_turn("h", "q", lambda: "P")
        store.remove("h")

        assert store.append_answer("h", "late answer") is False
        assert "h" not in store


class TestSweep:
    """Tests for idle eviction."""

    def test_sweep_uses_last_active(self, clock):
        """Only conversations idle longer than the TTL are removed."""
        store = ConversationStore(ttl=7200, clock=clock)
        store.begin_turn("idle", "q", lambda: "P")
        clock.advance(5000)
        store.begin_turn("busy", "q", lambda: "P")
        clock.advance(3000)
        # "idle" is 8000s idle, "busy" 3000s

        assert store.sweep() == 1
        assert "idle" not in store
        assert "busy" in store

    def test_activity_postpones_eviction(self, clock):
        """A new turn resets the idle clock."""
        store = ConversationStore(ttl=100, clock=clock)
        store.begin_turn("h", "q1", lambda: "P")
        clock.advance(90)
        store.begin_turn("h", "q2", lambda: "P")
        clock.advance(90)

        assert store.sweep() == 0
        assert "h" in store

    def test_messages_of_unknown_handle(self):
        """messages returns an empty list for unknown handles."""
        assert ConversationStore().messages("none") == []


class TestIntrospection:
    """Tests for read-only accessors."""

    def test_get_returns_copy(self, clock):
        """Mutating the result of get() does not touch the stored history."""
        store = ConversationStore(clock=clock)
        store.begin_turn("h", "q", lambda: "P")

        conversation = store.get("h")
        conversation.messages.append(Message(role=Role.ASSISTANT, content="forged"))
        conversation.messages.clear()

        assert [m.content for m in store.messages("h")] == ["q"]
        assert store.get("h").initial_prompt == "P"

    def test_get_unknown(self):
        assert ConversationStore().get("none") is None
