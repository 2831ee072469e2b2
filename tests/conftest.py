"""
Shared fixtures.

Provides a controllable clock, a sample code context and a scripted
gateway so relay tests never touch the network.
"""

from __future__ import annotations

import asyncio

import pytest

from repochat.code_context import CodeContext
from repochat.exceptions import UpstreamTransientError
from repochat.gateway import ChunkStream, StreamChunk


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedGateway:
    """
    Gateway double.

    `answers` are returned by send() in order (an Exception instance is
    raised instead). `streams` are lists of chunks replayed by send_stream().
    Every prompt is recorded.
    """

    def __init__(self, answers=None, streams=None, chunk_delay: float = 0.0):
        self.answers = list(answers or [])
        self.streams = list(streams or [])
        self.chunk_delay = chunk_delay
        self.prompts: list[str] = []
        self._tasks: set[asyncio.Task] = set()

    async def send(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.answers:
            raise UpstreamTransientError("no scripted answer left")
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def send_stream(self, prompt: str) -> ChunkStream:
        self.prompts.append(prompt)
        chunks = self.streams.pop(0) if self.streams else []
        stream = ChunkStream()

        async def produce():
            try:
                for chunk in chunks:
                    if self.chunk_delay:
                        await asyncio.sleep(self.chunk_delay)
                    stream.put(chunk)
            finally:
                stream.close()

        task = asyncio.get_running_loop().create_task(produce())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return stream

    async def aclose(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sample_context():
    """Small code context with text and binary files."""
    return CodeContext.from_files({
        "README.md": "# Demo\n",
        "src/app.py": "def main():\n    return 42\n",
        "src/util/helpers.py": "def helper():\n    pass\n",
        "assets/logo.png": b"\x89PNG\r\n\x1a\n\x00\x00",
    })


@pytest.fixture
def scripted_gateway():
    return ScriptedGateway


@pytest.fixture
def chunk():
    """Factory for text chunks."""

    def make(text: str, finish_reason: str | None = None) -> StreamChunk:
        return StreamChunk(text=text, finish_reason=finish_reason)

    return make
