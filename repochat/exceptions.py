"""
Exception hierarchy for repochat.

Every failure surfaced to a caller is one of these. Sweep failures are
logged by the stores and never raised.
"""

from __future__ import annotations


class RepoChatError(Exception):
    """Base class for all repochat errors."""

    pass


class SessionNotFoundError(RepoChatError):
    """Session handle is unknown or has expired."""

    def __init__(self, handle: str):
        self.handle = handle
        super().__init__(f"Session not found or expired: {handle}")


class ResourceExhaustedError(RepoChatError):
    """A size or item-count ceiling was exceeded while building a code context."""

    pass


class LLMError(RepoChatError):
    """LLM call failed."""

    pass


class UpstreamTransientError(LLMError):
    """Network error, 5xx, or malformed response that survived every retry."""

    def __init__(self, message: str, attempts: int = 0):
        self.attempts = attempts
        super().__init__(message)


class UpstreamRejectedError(LLMError):
    """4xx response or prompt blocked by the provider. Never retried."""

    def __init__(self, reason: str, status_code: int | None = None):
        self.reason = reason
        self.status_code = status_code
        if status_code is not None:
            super().__init__(f"LLM request rejected ({status_code}): {reason}")
        else:
            super().__init__(f"LLM request blocked: {reason}")


class StreamTerminatedError(LLMError):
    """A stream failed after zero or more fragments were already delivered."""

    def __init__(self, message: str, delivered: int = 0):
        self.delivered = delivered
        super().__init__(message)


__all__ = [
    "LLMError",
    "RepoChatError",
    "ResourceExhaustedError",
    "SessionNotFoundError",
    "StreamTerminatedError",
    "UpstreamRejectedError",
    "UpstreamTransientError",
]
