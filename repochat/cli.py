#!/usr/bin/env python3
"""
repochat command line.

Usage:
    # One question about a local checkout
    repochat ask ./my-project "Where is the HTTP router configured?"

    # Stream the answer as it arrives
    repochat ask --stream ./my-project "Explain the build pipeline"

    # Multi-turn chat (empty line or Ctrl-D to quit)
    repochat chat ./my-project

    # Show effective configuration (API key omitted)
    repochat config

Set GEMINI_API_KEY in the environment or in a .env file.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import TextIO

from .code_context import CodeContext
from .config import RepoChatConfig
from .conversation_store import ConversationStore
from .exceptions import RepoChatError
from .gateway import GeminiGateway
from .logging_setup import configure_logging
from .relay import ConversationRelay
from .session_store import SessionStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="repochat", description="Ask questions about a code base.")
    parser.add_argument("--config", type=Path, default=None, help="Config file (default: ~/.repochat/config.json)")
    parser.add_argument("--log-level", default=None, help="Override logging level")

    sub = parser.add_subparsers(dest="command", required=True)

    ask = sub.add_parser("ask", help="Ask one question")
    ask.add_argument("path", type=Path, help="Directory to load")
    ask.add_argument("question", help="Question to ask")
    ask.add_argument("--stream", action="store_true", help="Stream the answer")
    ask.add_argument("--analysis", type=Path, default=None, help="File with an architecture analysis")

    chat = sub.add_parser("chat", help="Interactive multi-turn chat")
    chat.add_argument("path", type=Path, help="Directory to load")
    chat.add_argument("--analysis", type=Path, default=None, help="File with an architecture analysis")
    chat.add_argument("--no-stream", action="store_true", help="Wait for complete answers")

    sub.add_parser("config", help="Print effective configuration")
    return parser


def build_relay(config: RepoChatConfig) -> ConversationRelay:
    """Construct stores, gateway and relay from configuration."""
    sessions = SessionStore(
        ttl=config.sessions.session_ttl,
        sweep_interval=config.sessions.session_sweep_interval,
    )
    conversations = ConversationStore(
        ttl=config.sessions.conversation_ttl,
        sweep_interval=config.sessions.conversation_sweep_interval,
    )
    return ConversationRelay(
        sessions,
        conversations,
        GeminiGateway(config.gemini),
        history_window=config.prompts.history_window,
        max_files=config.prompts.max_files,
        max_file_chars=config.prompts.max_file_chars,
    )


async def print_answer(relay: ConversationRelay, handle: str, question: str, stream: bool, out: TextIO) -> bool:
    """Ask and write the answer to `out`. Returns False if the stream ended with an error."""
    if not stream:
        out.write(await relay.ask(handle, question) + "\n")
        return True

    chunks = await relay.ask_stream(handle, question)
    async for chunk in chunks:
        if chunk.error is not None:
            out.write(f"\n[error] {chunk.error}\n")
            return False
        out.write(chunk.text)
        out.flush()
    out.write("\n")
    return True


async def run_ask(args: argparse.Namespace, config: RepoChatConfig) -> int:
    context = CodeContext.from_directory(args.path, config.limits)
    analysis = args.analysis.read_text() if args.analysis else None

    relay = build_relay(config)
    async with relay:
        handle = relay.create_session(context, analysis)
        try:
            ok = await print_answer(relay, handle, args.question, args.stream, sys.stdout)
        finally:
            await relay.gateway.aclose()
    return 0 if ok else 1


async def run_chat(args: argparse.Namespace, config: RepoChatConfig) -> int:
    context = CodeContext.from_directory(args.path, config.limits)
    analysis = args.analysis.read_text() if args.analysis else None

    relay = build_relay(config)
    async with relay:
        handle = relay.create_session(context, analysis)
        print(f"Loaded {context.file_count} files. Session {handle}. Empty line to quit.")
        try:
            while True:
                try:
                    question = await asyncio.to_thread(input, "> ")
                except EOFError:
                    break
                if not question.strip():
                    break
                try:
                    await print_answer(relay, handle, question, not args.no_stream, sys.stdout)
                except RepoChatError as e:
                    print(f"[error] {e}")
        finally:
            await relay.gateway.aclose()
    return 0


def run_config(config: RepoChatConfig) -> int:
    print(json.dumps(config.to_dict(), indent=2))
    print(f"api_key configured: {bool(config.gemini.api_key)}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = RepoChatConfig.load(args.config)
    if args.log_level:
        config.logging.level = args.log_level
    configure_logging(config.logging)

    if args.command == "config":
        return run_config(config)

    try:
        if args.command == "ask":
            return asyncio.run(run_ask(args, config))
        return asyncio.run(run_chat(args, config))
    except (RepoChatError, FileNotFoundError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
