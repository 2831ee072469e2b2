"""
Gemini generate-content gateway.

Blocking and streaming calls with bounded retries and exponential backoff.

Retry policy:
- Retried: transport errors, timeouts, 5xx, undecodable bodies, empty candidates
- Not retried: 4xx and prompts blocked by the provider
- Streaming retries only until the first fragment reaches the caller; after
  that a failure ends the stream with an error chunk
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import GeminiConfig
from .exceptions import (
    LLMError,
    StreamTerminatedError,
    UpstreamRejectedError,
    UpstreamTransientError,
)

logger = logging.getLogger(__name__)

# Max characters of an error body carried into exception messages
_ERROR_BODY_LIMIT = 500

_PROXY_SCHEMES = ("http", "https", "socks5", "socks5h")


# -----------------------------------------------------------------------------
# Wire models
# -----------------------------------------------------------------------------


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Part(_WireModel):
    text: str = ""


class Content(_WireModel):
    parts: list[Part] = Field(default_factory=list)
    role: str | None = None


class Candidate(_WireModel):
    content: Content = Field(default_factory=Content)
    finish_reason: str | None = Field(default=None, alias="finishReason")


class PromptFeedback(_WireModel):
    block_reason: str | None = Field(default=None, alias="blockReason")


class GenerateContentResponse(_WireModel):
    """Response body (or one SSE event) of a generate-content call."""

    candidates: list[Candidate] = Field(default_factory=list)
    prompt_feedback: PromptFeedback | None = Field(default=None, alias="promptFeedback")

    @property
    def block_reason(self) -> str | None:
        return self.prompt_feedback.block_reason if self.prompt_feedback else None

    @property
    def first_candidate(self) -> Candidate | None:
        return self.candidates[0] if self.candidates else None

    def first_text(self) -> str | None:
        """Text of the first part of the first candidate, None when absent."""
        candidate = self.first_candidate
        if candidate is None or not candidate.content.parts:
            return None
        return candidate.content.parts[0].text


def build_request_body(prompt: str) -> dict[str, Any]:
    """The prompt as the sole content part."""
    return {"contents": [{"parts": [{"text": prompt}]}]}


# -----------------------------------------------------------------------------
# Streaming channel
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class StreamChunk:
    """One fragment of a streamed answer, or the error that ended the stream."""

    text: str = ""
    finish_reason: str | None = None
    error: Exception | None = None

    @property
    def is_final(self) -> bool:
        return self.error is not None or self.finish_reason is not None


_CLOSED = object()


class ChunkStream:
    """
    Single-consumer channel of StreamChunks.

    The producer put()s chunks and close()s when done. The consumer iterates
    with `async for`; disconnect() tells the producer to stop sending.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self._drained = False
        self._disconnected = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    def put(self, chunk: StreamChunk) -> bool:
        """Enqueue a chunk. Returns False if closed or the consumer went away."""
        if self._closed or self._disconnected:
            return False
        self._queue.put_nowait(chunk)
        return True

    def close(self) -> None:
        """Signal end of stream. Idempotent."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def disconnect(self) -> None:
        """Consumer side: stop receiving. Pending chunks are discarded."""
        self._disconnected = True

    async def aclose(self) -> None:
        self.disconnect()

    def __aiter__(self) -> ChunkStream:
        return self

    async def __anext__(self) -> StreamChunk:
        if self._drained or self._disconnected:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._drained = True
            raise StopAsyncIteration
        return item

    async def read_all(self) -> list[StreamChunk]:
        """Consume the stream to the end."""
        return [chunk async for chunk in self]


# -----------------------------------------------------------------------------
# Gateway
# -----------------------------------------------------------------------------


def resolve_proxy(proxy_url: str) -> str | None:
    """
    Validate an explicitly configured proxy URL.

    Returns None (use environment proxies) when unset or invalid; an invalid
    value only logs a warning.
    """
    if not proxy_url:
        return None
    try:
        url = httpx.URL(proxy_url)
    except (httpx.InvalidURL, TypeError, ValueError) as e:
        logger.warning(f"Invalid proxy URL {proxy_url!r}, falling back to environment proxies: {e}")
        return None
    if url.scheme not in _PROXY_SCHEMES or not url.host:
        logger.warning(f"Invalid proxy URL {proxy_url!r}, falling back to environment proxies")
        return None
    logger.info(f"Using configured proxy {url.scheme}://{url.host}:{url.port or ''}".rstrip(":"))
    return proxy_url


class GeminiGateway:
    """
    HTTP client for the Gemini generate-content endpoint.

    One instance is shared by all sessions; it holds a pooled
    httpx.AsyncClient. Close it with aclose() or `async with`.

    `last_attempts` is a debugging aid that reflects whichever call finished
    its last attempt most recently. Do not rely on it under concurrency.
    """

    def __init__(
        self,
        config: GeminiConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            config: Endpoint, credentials, retry and timeout settings
            transport: Optional transport override (tests use httpx.MockTransport)
            sleep: Backoff sleep, injectable so tests do not wait
        """
        self.config = config
        base = config.api_endpoint.rstrip("/")
        self.url = f"{base}/{config.model}:generateContent"
        self.stream_url = f"{base}/{config.model}:streamGenerateContent"
        self.proxy = resolve_proxy(config.proxy_url)
        self.timeout = httpx.Timeout(
            connect=config.connect_timeout,
            read=config.read_timeout,
            write=config.write_timeout,
            pool=config.pool_timeout,
        )
        # Diagnostics for the most recent call only; concurrent calls overwrite
        # it. Per-call counts travel on UpstreamTransientError.attempts.
        self.last_attempts = 0
        self._sleep = sleep
        self._tasks: set[asyncio.Task] = set()

        client_kwargs: dict[str, Any] = {"timeout": self.timeout, "trust_env": True}
        if transport is not None:
            client_kwargs["transport"] = transport
        elif self.proxy:
            client_kwargs["proxy"] = self.proxy
        self._client = httpx.AsyncClient(**client_kwargs)

    async def __aenter__(self) -> GeminiGateway:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Wait for in-flight streams, then close the HTTP client."""
        await self.drain()
        await self._client.aclose()

    async def drain(self) -> None:
        """Wait for every background stream task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _require_key(self) -> None:
        if not self.config.api_key:
            raise LLMError("Gemini API key not configured. Set GEMINI_API_KEY.")

    # -- blocking -------------------------------------------------------------

    async def send(self, prompt: str) -> str:
        """
        Send a prompt and return the full answer text.

        Raises:
            LLMError: If no API key is configured
            UpstreamRejectedError: On 4xx or a blocked prompt (no retry)
            UpstreamTransientError: When every attempt failed transiently
        """
        self._require_key()
        logger.debug(f"Sending prompt to {self.config.model} ({len(prompt)} chars)")

        max_retries = max(1, self.config.max_retries)
        delay = self.config.retry_delay
        last_error: Exception | None = None

        for attempt in range(1, max_retries + 1):
            if attempt > 1:
                logger.info(f"Retrying Gemini request (attempt {attempt}/{max_retries})")
                await self._sleep(delay)
                delay *= 2

            self.last_attempts = attempt
            try:
                return await asyncio.wait_for(self._send_once(prompt), timeout=self.config.request_timeout)
            except asyncio.TimeoutError:
                last_error = UpstreamTransientError(f"Request timed out after {self.config.request_timeout}s")
            except UpstreamTransientError as e:
                last_error = e
            logger.warning(f"Gemini request failed (attempt {attempt}/{max_retries}): {last_error}")

        raise UpstreamTransientError(
            f"Gemini request failed after {max_retries} attempts: {last_error}",
            attempts=max_retries,
        ) from last_error

    async def _send_once(self, prompt: str) -> str:
        try:
            response = await self._client.post(
                self.url,
                params={"key": self.config.api_key},
                json=build_request_body(prompt),
            )
        except httpx.HTTPError as e:
            raise UpstreamTransientError(f"Transport error: {e}") from e

        _raise_for_status(response.status_code, response.text)

        try:
            body = GenerateContentResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise UpstreamTransientError(f"Could not decode response: {e}") from e

        if body.block_reason:
            raise UpstreamRejectedError(body.block_reason)

        text = body.first_text()
        if text is None:
            raise UpstreamTransientError("Empty candidate set in response")

        candidate = body.first_candidate
        logger.debug(
            f"Received answer ({len(text)} chars, finish_reason={candidate.finish_reason if candidate else None})"
        )
        return text

    # -- streaming ------------------------------------------------------------

    async def send_stream(self, prompt: str) -> ChunkStream:
        """
        Start a streamed request and return its channel immediately.

        The last chunk carries `error` if the stream failed. The channel is
        always closed.

        Raises:
            LLMError: If no API key is configured
        """
        self._require_key()
        logger.debug(f"Streaming prompt to {self.config.model} ({len(prompt)} chars)")

        stream = ChunkStream()
        task = asyncio.get_running_loop().create_task(self._stream_into(prompt, stream))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return stream

    async def _stream_into(self, prompt: str, stream: ChunkStream) -> None:
        max_retries = max(1, self.config.stream_max_retries)
        delay = self.config.retry_delay

        try:
            for attempt in range(1, max_retries + 1):
                if attempt > 1:
                    logger.info(f"Retrying Gemini stream (attempt {attempt}/{max_retries})")
                    await self._sleep(delay)
                    delay *= 2

                self.last_attempts = attempt
                try:
                    delivered = await self._stream_once(prompt, stream)
                    logger.debug(f"Stream finished after {delivered} chunks")
                    return
                except (UpstreamRejectedError, StreamTerminatedError) as e:
                    logger.warning(f"Gemini stream ended with error: {e}")
                    stream.put(StreamChunk(error=e))
                    return
                except UpstreamTransientError as e:
                    if attempt < max_retries:
                        logger.warning(f"Gemini stream failed (attempt {attempt}/{max_retries}): {e}")
                        continue
                    error = UpstreamTransientError(
                        f"Gemini stream failed after {max_retries} attempts: {e}",
                        attempts=max_retries,
                    )
                    logger.warning(str(error))
                    stream.put(StreamChunk(error=error))
                    return
        except Exception as e:
            logger.exception("Unexpected error while streaming")
            stream.put(StreamChunk(error=StreamTerminatedError(f"Stream failed: {e}")))
        finally:
            stream.close()

    async def _stream_once(self, prompt: str, stream: ChunkStream) -> int:
        """
        One streamed attempt. Returns the number of fragments delivered.

        The whole attempt, reading the body included, is bounded by
        request_timeout. Failures before the first fragment raise
        UpstreamTransientError (or UpstreamRejectedError); failures after it
        raise StreamTerminatedError.
        """
        delivered = 0
        try:
            async with asyncio.timeout(self.config.request_timeout):
                async with self._client.stream(
                    "POST",
                    self.stream_url,
                    params={"key": self.config.api_key, "alt": "sse"},
                    json=build_request_body(prompt),
                    headers={"Accept": "text/event-stream"},
                ) as response:
                    if not response.is_success:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        _raise_for_status(response.status_code, body)

                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if data == "[DONE]":
                            break

                        try:
                            event = GenerateContentResponse.model_validate_json(data)
                        except ValidationError as e:
                            raise StreamTerminatedError(f"Malformed stream event: {e}", delivered) from e

                        if event.block_reason:
                            raise UpstreamRejectedError(event.block_reason)

                        candidate = event.first_candidate
                        text = event.first_text()
                        if text is not None:
                            stream.put(StreamChunk(text=text, finish_reason=candidate.finish_reason))
                            delivered += 1
                        if candidate is not None and candidate.finish_reason and delivered:
                            break
        except TimeoutError as e:
            message = f"Stream timed out after {self.config.request_timeout}s"
            if delivered:
                raise StreamTerminatedError(f"{message} ({delivered} chunks delivered)", delivered) from e
            raise UpstreamTransientError(message) from e
        except httpx.HTTPError as e:
            if delivered:
                raise StreamTerminatedError(f"Stream interrupted after {delivered} chunks: {e}", delivered) from e
            raise UpstreamTransientError(f"Transport error: {e}") from e

        if not delivered:
            raise UpstreamTransientError("Stream ended without content")
        return delivered


def _raise_for_status(status_code: int, body: str) -> None:
    if 200 <= status_code < 300:
        return
    body = body[:_ERROR_BODY_LIMIT]
    if status_code >= 500:
        raise UpstreamTransientError(f"Server error ({status_code}): {body}")
    raise UpstreamRejectedError(body, status_code=status_code)


__all__ = [
    "Candidate",
    "ChunkStream",
    "Content",
    "GeminiGateway",
    "GenerateContentResponse",
    "Part",
    "PromptFeedback",
    "StreamChunk",
    "build_request_body",
    "resolve_proxy",
]
