"""
Conversation store: handle -> dialogue state for that session.

Kept separate from the session store because the lifecycles differ: a
session exists before its first question, and conversations expire on a
longer, activity-based clock.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum

from .sweeper import PeriodicSweeper

logger = logging.getLogger(__name__)

CONVERSATION_TTL_SECONDS = 2 * 60 * 60
CONVERSATION_SWEEP_INTERVAL_SECONDS = 30 * 60


class Role(str, Enum):
    """Speaker of a conversation message."""

    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """One message of the dialogue history."""

    role: Role
    content: str


@dataclass
class ConversationContext:
    """
    Dialogue state of one session.

    initial_prompt is built once, on the first question. messages only grows.
    """

    initial_prompt: str
    messages: list[Message] = field(default_factory=list)
    last_active: float = 0.0


@dataclass(frozen=True)
class TurnSnapshot:
    """What prompt assembly needs, copied out from under the store lock."""

    handle: str
    initial_prompt: str
    messages: tuple[Message, ...]

    @property
    def is_first_turn(self) -> bool:
        return len(self.messages) == 1

    @property
    def question(self) -> str:
        return self.messages[-1].content


class ConversationStore:
    """Thread-safe in-memory map of session handles to conversations."""

    def __init__(
        self,
        ttl: float = CONVERSATION_TTL_SECONDS,
        sweep_interval: float = CONVERSATION_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self._clock = clock
        self._conversations: dict[str, ConversationContext] = {}
        self._lock = threading.Lock()
        self._sweeper = PeriodicSweeper("conversation", self.sweep, sweep_interval)

    def begin_turn(
        self,
        handle: str,
        question: str,
        build_initial_prompt: Callable[[], str],
    ) -> TurnSnapshot:
        """
        Record a user question, creating the conversation on first use.

        build_initial_prompt is only called when the conversation is new. If
        it raises (e.g. SessionNotFoundError), nothing is stored and the
        exception propagates.

        Returns:
            Snapshot of the conversation including the new question
        """
        with self._lock:
            conversation = self._conversations.get(handle)
            if conversation is None:
                conversation = ConversationContext(initial_prompt=build_initial_prompt())
                self._conversations[handle] = conversation
                logger.debug(f"Created conversation for session {handle}")

            conversation.messages.append(Message(role=Role.USER, content=question))
            conversation.last_active = self._clock()

            return TurnSnapshot(
                handle=handle,
                initial_prompt=conversation.initial_prompt,
                messages=tuple(conversation.messages),
            )

    def append_answer(self, handle: str, content: str) -> bool:
        """
        Append an assistant message.

        Best-effort: if the conversation was evicted while the answer was
        being produced, the answer is dropped and False is returned.
        """
        with self._lock:
            conversation = self._conversations.get(handle)
            if conversation is None:
                dropped = True
            else:
                conversation.messages.append(Message(role=Role.ASSISTANT, content=content))
                conversation.last_active = self._clock()
                dropped = False

        if dropped:
            logger.warning(f"Conversation {handle} evicted before answer was stored; answer dropped")
            return False
        return True

    def get(self, handle: str) -> ConversationContext | None:
        """Copy of the conversation state, None if there is none."""
        with self._lock:
            conversation = self._conversations.get(handle)
            if conversation is None:
                return None
            return replace(conversation, messages=list(conversation.messages))

    def messages(self, handle: str) -> list[Message]:
        """Copy of the message history, empty if there is no conversation."""
        with self._lock:
            conversation = self._conversations.get(handle)
            return list(conversation.messages) if conversation else []

    def remove(self, handle: str) -> bool:
        with self._lock:
            return self._conversations.pop(handle, None) is not None

    def sweep(self) -> int:
        """Remove conversations idle for longer than the TTL."""
        now = self._clock()
        with self._lock:
            expired = [
                h for h, c in self._conversations.items()
                if now - c.last_active > self.ttl
            ]
            for handle in expired:
                del self._conversations[handle]
        for handle in expired:
            logger.debug(f"Evicted idle conversation {handle}")
        return len(expired)

    def start(self) -> None:
        """Start the background sweep on the running event loop."""
        self._sweeper.start()

    async def stop(self) -> None:
        await self._sweeper.stop()

    def __contains__(self, handle: object) -> bool:
        with self._lock:
            return handle in self._conversations

    def __len__(self) -> int:
        with self._lock:
            return len(self._conversations)


__all__ = [
    "CONVERSATION_SWEEP_INTERVAL_SECONDS",
    "CONVERSATION_TTL_SECONDS",
    "ConversationContext",
    "ConversationStore",
    "Message",
    "Role",
    "TurnSnapshot",
]
