"""
Session store: handle -> (code context, architecture analysis, creation time).

Entries expire a fixed time after creation. Expired entries are invisible to
get() immediately and physically removed by the periodic sweep.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from .code_context import CodeContext
from .sweeper import PeriodicSweeper

logger = logging.getLogger(__name__)

SESSION_TTL_SECONDS = 30 * 60
SESSION_SWEEP_INTERVAL_SECONDS = 5 * 60


@dataclass(frozen=True)
class SessionEntry:
    """A stored code context. Read-only after creation."""

    context: CodeContext
    analysis: str | None
    created_at: float


class SessionStore:
    """
    Thread-safe in-memory map of session handles to code contexts.

    The lock is held only for dictionary operations.
    """

    def __init__(
        self,
        ttl: float = SESSION_TTL_SECONDS,
        sweep_interval: float = SESSION_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self._clock = clock
        self._sessions: dict[str, SessionEntry] = {}
        self._lock = threading.Lock()
        self._sweeper = PeriodicSweeper("session", self.sweep, sweep_interval)

    def put(self, context: CodeContext, analysis: str | None = None) -> str:
        """Store a context under a fresh handle and return the handle."""
        handle = str(uuid.uuid4())
        entry = SessionEntry(context=context, analysis=analysis, created_at=self._clock())
        with self._lock:
            self._sessions[handle] = entry
        logger.debug(f"Created session {handle} ({context.file_count} files)")
        return handle

    def get(self, handle: str) -> SessionEntry | None:
        """Return the entry, or None when unknown or past its TTL."""
        with self._lock:
            entry = self._sessions.get(handle)
        if entry is None or self._is_expired(entry, self._clock()):
            return None
        return entry

    def sweep(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [h for h, e in self._sessions.items() if self._is_expired(e, now)]
            for handle in expired:
                del self._sessions[handle]
        for handle in expired:
            logger.debug(f"Evicted expired session {handle}")
        return len(expired)

    def start(self) -> None:
        """Start the background sweep on the running event loop."""
        self._sweeper.start()

    async def stop(self) -> None:
        await self._sweeper.stop()

    def _is_expired(self, entry: SessionEntry, now: float) -> bool:
        return now - entry.created_at > self.ttl

    def __contains__(self, handle: object) -> bool:
        # Physical presence, expired or not
        with self._lock:
            return handle in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


__all__ = ["SESSION_SWEEP_INTERVAL_SECONDS", "SESSION_TTL_SECONDS", "SessionEntry", "SessionStore"]
