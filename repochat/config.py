"""
Configuration management for repochat.

Settings live in ~/.repochat/config.json. Environment variables (and a
project .env file) override the file, so API keys never need to be written
to disk.
"""

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

CONFIG_PATH = Path.home() / ".repochat" / "config.json"

DEFAULT_GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models"


def _filter_dataclass_fields(data: dict[str, Any], cls: type) -> dict[str, Any]:
    """Filter dict to only include fields that exist in the dataclass."""
    valid_fields = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in valid_fields}


def _load_env_file() -> None:
    """Load .env from the working directory or the project root, if present."""
    for candidate in (Path.cwd() / ".env", Path(__file__).parent.parent / ".env"):
        if candidate.exists():
            load_dotenv(candidate)
            return


@dataclass
class GeminiConfig:
    """Connection settings for the generate-content endpoint."""

    api_key: str = ""
    api_endpoint: str = DEFAULT_GEMINI_ENDPOINT
    model: str = "gemini-2.0-flash"
    # Empty means: use HTTP(S)_PROXY from the environment
    proxy_url: str = ""

    # Blocking calls
    max_retries: int = 3
    retry_delay: float = 2.0
    request_timeout: float = 180.0

    # Streaming calls retry less: a retry is only possible before output starts
    stream_max_retries: int = 2

    # Per-phase limits
    connect_timeout: float = 30.0
    read_timeout: float = 60.0
    write_timeout: float = 30.0
    pool_timeout: float = 30.0


@dataclass
class SessionConfig:
    """Lifetimes of stored code contexts and conversations (seconds)."""

    session_ttl: float = 30 * 60
    session_sweep_interval: float = 5 * 60
    conversation_ttl: float = 2 * 60 * 60
    conversation_sweep_interval: float = 30 * 60


@dataclass
class PromptConfig:
    """Bounds on how much context is re-injected into each request."""

    max_files: int = 10
    max_file_chars: int = 5000
    history_window: int = 10


@dataclass
class LimitsConfig:
    """Ceilings applied when building a code context from disk."""

    max_upload_size: int = 50 * 1024 * 1024
    max_file_size: int = 2 * 1024 * 1024
    excluded_dir_prefixes: list[str] = field(default_factory=lambda: [
        ".git/",
        ".svn/",
        ".idea/",
        ".vscode/",
        "node_modules/",
        "vendor/",
        "dist/",
        "build/",
        "__pycache__/",
        ".venv/",
    ])
    excluded_extensions: list[str] = field(default_factory=lambda: [
        ".exe",
        ".dll",
        ".so",
        ".dylib",
        ".o",
        ".a",
        ".pyc",
        ".class",
        ".jar",
        ".zip",
        ".tar",
        ".gz",
        ".7z",
    ])


@dataclass
class LoggingConfig:
    """Logging level and optional log directory."""

    level: str = "INFO"
    output_path: str = ""


@dataclass
class RepoChatConfig:
    """
    Complete repochat configuration.

    Sections map one-to-one to top-level keys of config.json.
    """

    gemini: GeminiConfig = field(default_factory=GeminiConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    prompts: PromptConfig = field(default_factory=PromptConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, path: Path | None = None, use_env: bool = True) -> "RepoChatConfig":
        """
        Load configuration from file, then apply environment overrides.

        Args:
            path: Config file path. Defaults to ~/.repochat/config.json
            use_env: Apply .env and environment variable overrides

        Returns:
            RepoChatConfig with defaults for anything not configured
        """
        if path is None:
            path = CONFIG_PATH

        data: dict[str, Any] = {}
        if path.exists():
            with open(path) as f:
                data = json.load(f)

        config = cls(
            gemini=GeminiConfig(**_filter_dataclass_fields(data.get("gemini", {}), GeminiConfig)),
            sessions=SessionConfig(**_filter_dataclass_fields(data.get("sessions", {}), SessionConfig)),
            prompts=PromptConfig(**_filter_dataclass_fields(data.get("prompts", {}), PromptConfig)),
            limits=LimitsConfig(**_filter_dataclass_fields(data.get("limits", {}), LimitsConfig)),
            logging=LoggingConfig(**_filter_dataclass_fields(data.get("logging", {}), LoggingConfig)),
        )

        if use_env:
            _load_env_file()
            config.apply_env()

        return config

    def apply_env(self) -> None:
        """Override settings from environment variables."""
        if api_key := os.getenv("GEMINI_API_KEY"):
            self.gemini.api_key = api_key
        if model := os.getenv("GEMINI_MODEL"):
            self.gemini.model = model
        if endpoint := os.getenv("GEMINI_API_ENDPOINT"):
            self.gemini.api_endpoint = endpoint
        if proxy_url := os.getenv("GEMINI_PROXY_URL"):
            self.gemini.proxy_url = proxy_url
        if level := os.getenv("REPOCHAT_LOG_LEVEL"):
            self.logging.level = level

    def to_dict(self, include_secrets: bool = False) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict. The API key is omitted by default."""
        data = asdict(self)
        if not include_secrets:
            data["gemini"].pop("api_key", None)
        return data

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file (without the API key)."""
        if path is None:
            path = CONFIG_PATH

        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)


# Default configuration instance
default_config = RepoChatConfig()


__all__ = [
    "CONFIG_PATH",
    "DEFAULT_GEMINI_ENDPOINT",
    "GeminiConfig",
    "LimitsConfig",
    "LoggingConfig",
    "PromptConfig",
    "RepoChatConfig",
    "SessionConfig",
    "default_config",
]
