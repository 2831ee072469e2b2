"""repochat: multi-turn questions about a code base, answered by Gemini.

A code context (file tree + contents) is stored under an opaque session
handle. Questions against that handle are relayed to the LLM with the full
context on the first turn and a bounded history window afterward. Sessions
and conversations expire on independent TTL sweeps.
"""

__version__ = "0.1.0"

from .code_context import CodeContext, FileContent, TreeNode
from .config import RepoChatConfig, default_config
from .conversation_store import ConversationContext, ConversationStore, Message, Role
from .exceptions import (
    LLMError,
    RepoChatError,
    ResourceExhaustedError,
    SessionNotFoundError,
    StreamTerminatedError,
    UpstreamRejectedError,
    UpstreamTransientError,
)
from .gateway import ChunkStream, GeminiGateway, StreamChunk
from .prompts import build_followup_prompt, build_initial_prompt
from .relay import ConversationRelay
from .session_store import SessionEntry, SessionStore

__all__ = [
    # Data
    "CodeContext",
    "FileContent",
    "TreeNode",
    # Stores
    "SessionEntry",
    "SessionStore",
    "ConversationContext",
    "ConversationStore",
    "Message",
    "Role",
    # LLM
    "ChunkStream",
    "GeminiGateway",
    "StreamChunk",
    "build_initial_prompt",
    "build_followup_prompt",
    # Relay
    "ConversationRelay",
    # Config
    "RepoChatConfig",
    "default_config",
    # Errors
    "LLMError",
    "RepoChatError",
    "ResourceExhaustedError",
    "SessionNotFoundError",
    "StreamTerminatedError",
    "UpstreamRejectedError",
    "UpstreamTransientError",
]
