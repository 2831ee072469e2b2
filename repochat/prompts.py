"""
Prompt templates for code questions.

The first turn carries the full code context. Later turns carry the same
initial prompt plus only the most recent messages, so request size stays
bounded however long a conversation runs.
"""

from __future__ import annotations

from collections.abc import Sequence

from .code_context import CodeContext
from .conversation_store import Message, TurnSnapshot

MAX_FILES = 10
MAX_FILE_CHARS = 5000
HISTORY_WINDOW = 10
TRUNCATION_MARKER = "...(content truncated)"

SYSTEM_INSTRUCTION = (
    "You are a code analysis assistant. You are analyzing a code base and answering "
    "questions about it. Base your answers on the code base contents and the project "
    "architecture analysis below."
)


def build_initial_prompt(
    context: CodeContext,
    analysis: str | None = None,
    max_files: int = MAX_FILES,
    max_file_chars: int = MAX_FILE_CHARS,
) -> str:
    """
    Build the initial prompt for a conversation.

    Args:
        context: Code context of the session
        analysis: Optional architecture analysis narrative
        max_files: Maximum number of file bodies to include
        max_file_chars: Characters kept per file before truncation

    Returns:
        Instruction, analysis, rendered file tree and up to max_files
        non-binary file bodies (path order)
    """
    lines = [SYSTEM_INSTRUCTION]

    if analysis:
        lines.append("\n## Architecture Analysis")
        lines.append(analysis)

    lines.append("\n## File Structure")
    lines.append(context.file_tree.render())

    lines.append("\n## File Contents")
    for count, entry in enumerate(context.text_files()):
        if count >= max_files:
            break
        body = entry.content
        if len(body) > max_file_chars:
            body = body[:max_file_chars] + TRUNCATION_MARKER
        lines.append(f"\n### {entry.path}")
        lines.append("```")
        lines.append(body)
        lines.append("```")

    return "\n".join(lines) + "\n"


def build_first_turn_prompt(initial_prompt: str, question: str) -> str:
    """Full context followed by the question."""
    return f"{initial_prompt}\n\n## Question\n{question}"


def build_followup_prompt(
    initial_prompt: str,
    messages: Sequence[Message],
    window: int = HISTORY_WINDOW,
) -> str:
    """
    Initial prompt followed by the last `window` messages as a transcript.

    Older turns are dropped from the request.
    """
    lines = [initial_prompt, "\n## Conversation History"]
    recent = list(messages)[-window:] if window > 0 else []
    for msg in recent:
        lines.append(f"\n{msg.role.value}: {msg.content}")
    return "\n".join(lines) + "\n"


def build_turn_prompt(snapshot: TurnSnapshot, window: int = HISTORY_WINDOW) -> str:
    """Pick the first-turn or follow-up form for a conversation snapshot."""
    if snapshot.is_first_turn:
        return build_first_turn_prompt(snapshot.initial_prompt, snapshot.question)
    return build_followup_prompt(snapshot.initial_prompt, snapshot.messages, window)


def build_project_analysis_prompt(project_info: str) -> str:
    """One-shot request for a project overview."""
    return (
        "Analyze the following project structure and code. Provide a detailed project "
        "overview, the main features, and an analysis of its components:\n\n" + project_info
    )


def build_code_explanation_prompt(code: str, function_name: str) -> str:
    """One-shot request to explain a single function."""
    return (
        f"Explain what the function {function_name} below does, "
        f"including its parameters and return value:\n\n{code}"
    )


__all__ = [
    "HISTORY_WINDOW",
    "MAX_FILES",
    "MAX_FILE_CHARS",
    "SYSTEM_INSTRUCTION",
    "TRUNCATION_MARKER",
    "build_code_explanation_prompt",
    "build_first_turn_prompt",
    "build_followup_prompt",
    "build_initial_prompt",
    "build_project_analysis_prompt",
    "build_turn_prompt",
]
