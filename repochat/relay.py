"""
Conversational relay: answers questions about a stored code context.

Per question:
1. Record the question (creating the conversation on first use)
2. Build the prompt outside the store lock
3. Call the gateway, blocking or streaming
4. Store the answer, best-effort if the conversation was evicted meanwhile

Store locks are never held across a gateway call.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from .code_context import CodeContext
from .conversation_store import ConversationStore, TurnSnapshot
from .exceptions import SessionNotFoundError
from .gateway import ChunkStream, StreamChunk
from .prompts import (
    HISTORY_WINDOW,
    MAX_FILE_CHARS,
    MAX_FILES,
    build_code_explanation_prompt,
    build_initial_prompt,
    build_project_analysis_prompt,
    build_turn_prompt,
)
from .session_store import SessionStore

logger = logging.getLogger(__name__)


class Gateway(Protocol):
    """What the relay needs from an LLM gateway."""

    async def send(self, prompt: str) -> str: ...

    async def send_stream(self, prompt: str) -> ChunkStream: ...


class ConversationRelay:
    """
    Wires the session store, conversation store and gateway together.

    Stores and gateway are created once at startup and injected here.
    """

    def __init__(
        self,
        sessions: SessionStore,
        conversations: ConversationStore,
        gateway: Gateway,
        history_window: int = HISTORY_WINDOW,
        max_files: int = MAX_FILES,
        max_file_chars: int = MAX_FILE_CHARS,
    ):
        self.sessions = sessions
        self.conversations = conversations
        self.gateway = gateway
        self.history_window = history_window
        self.max_files = max_files
        self.max_file_chars = max_file_chars
        self._tasks: set[asyncio.Task] = set()

    # -- lifecycle ------------------------------------------------------------

    def start(self) -> None:
        """Start both background sweeps."""
        self.sessions.start()
        self.conversations.start()

    async def drain(self) -> None:
        """Wait until every in-flight streamed turn has stored its answer."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self.sessions.stop()
        await self.conversations.stop()

    async def __aenter__(self) -> ConversationRelay:
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # -- inbound interface ----------------------------------------------------

    def create_session(self, context: CodeContext, analysis: str | None = None) -> str:
        """Store a code context and return its session handle."""
        handle = self.sessions.put(context, analysis)
        logger.info(f"Session {handle} created with {context.file_count} files")
        return handle

    async def answer(self, handle: str, question: str, want_stream: bool = False) -> str | ChunkStream:
        """Dispatch to ask() or ask_stream()."""
        if want_stream:
            return await self.ask_stream(handle, question)
        return await self.ask(handle, question)

    async def ask(self, handle: str, question: str) -> str:
        """
        Answer a question and store the answer in the conversation.

        Raises:
            ValueError: If the question is empty
            SessionNotFoundError: If the session is unknown or expired
            LLMError: If the gateway call failed (the question stays recorded)
        """
        snapshot = self._begin_turn(handle, question)
        prompt = build_turn_prompt(snapshot, self.history_window)
        self._log_turn(snapshot, prompt, streamed=False)

        try:
            answer = await self.gateway.send(prompt)
        except Exception as e:
            logger.error(f"Question on session {handle} failed: {e}")
            raise

        self.conversations.append_answer(handle, answer)
        logger.info(f"Answered question on session {handle} ({len(answer)} chars)")
        return answer

    async def ask_stream(self, handle: str, question: str) -> ChunkStream:
        """
        Answer a question as a stream of chunks.

        Session lookup happens before the stream is returned, so an unknown
        handle raises instead of producing an error chunk. Upstream failures
        arrive as the last chunk (with `error` set). If the caller calls
        disconnect() on the returned stream, forwarding stops but the
        upstream answer is still read to the end and stored.

        Raises:
            ValueError: If the question is empty
            SessionNotFoundError: If the session is unknown or expired
            LLMError: If the stream could not be started
        """
        snapshot = self._begin_turn(handle, question)
        prompt = build_turn_prompt(snapshot, self.history_window)
        self._log_turn(snapshot, prompt, streamed=True)

        upstream = await self.gateway.send_stream(prompt)
        downstream = ChunkStream()

        task = asyncio.get_running_loop().create_task(self._relay(handle, upstream, downstream))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return downstream

    # -- one-shot helpers -----------------------------------------------------

    async def analyze_project(self, project_info: str) -> str:
        """Ask for a project overview. Not tied to any session."""
        return await self.gateway.send(build_project_analysis_prompt(project_info))

    async def explain_code(self, code: str, function_name: str) -> str:
        """Ask for an explanation of one function. Not tied to any session."""
        return await self.gateway.send(build_code_explanation_prompt(code, function_name))

    # -- internals ------------------------------------------------------------

    def _begin_turn(self, handle: str, question: str) -> TurnSnapshot:
        if not question or not question.strip():
            raise ValueError("Question cannot be empty")

        entry = self.sessions.get(handle)
        if entry is None:
            raise SessionNotFoundError(handle)

        def initial_prompt() -> str:
            # Re-check under the conversation lock: the session may have expired
            current = self.sessions.get(handle)
            if current is None:
                raise SessionNotFoundError(handle)
            return build_initial_prompt(
                current.context,
                current.analysis,
                max_files=self.max_files,
                max_file_chars=self.max_file_chars,
            )

        return self.conversations.begin_turn(handle, question, initial_prompt)

    async def _relay(self, handle: str, upstream: ChunkStream, downstream: ChunkStream) -> None:
        parts: list[str] = []
        failed: StreamChunk | None = None
        forwarded = 0
        try:
            async for chunk in upstream:
                if chunk.error is not None:
                    failed = chunk
                else:
                    parts.append(chunk.text)

                if not downstream.disconnected:
                    downstream.put(chunk)
                    forwarded += 1

                if failed is not None:
                    break
        finally:
            downstream.close()

        if failed is not None:
            logger.error(f"Streamed question on session {handle} failed after {forwarded} chunks: {failed.error}")
            return

        answer = "".join(parts)
        self.conversations.append_answer(handle, answer)
        if downstream.disconnected:
            logger.info(f"Client left session {handle} mid-stream; answer stored ({len(answer)} chars)")
        else:
            logger.info(f"Streamed answer on session {handle} ({len(answer)} chars)")

    def _log_turn(self, snapshot: TurnSnapshot, prompt: str, streamed: bool) -> None:
        kind = "full context" if snapshot.is_first_turn else "history window"
        logger.debug(
            f"Session {snapshot.handle}: turn with {len(snapshot.messages)} messages, "
            f"{kind}, prompt {len(prompt)} chars, streamed={streamed}"
        )


__all__ = ["ConversationRelay", "Gateway"]
