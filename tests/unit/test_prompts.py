"""Tests for prompt assembly."""

from repochat.code_context import CodeContext
from repochat.conversation_store import Message, Role, TurnSnapshot
from repochat.prompts import (
    SYSTEM_INSTRUCTION,
    TRUNCATION_MARKER,
    build_code_explanation_prompt,
    build_first_turn_prompt,
    build_followup_prompt,
    build_initial_prompt,
    build_project_analysis_prompt,
    build_turn_prompt,
)


def _transcript(n: int) -> list[Message]:
    return [
        Message(role=Role.USER if i % 2 == 0 else Role.ASSISTANT, content=f"m{i}")
        for i in range(n)
    ]


class TestBuildInitialPrompt:
    """Tests for build_initial_prompt."""

    def test_sections_in_order(self, sample_context):
        """Instruction, analysis, tree and contents appear in that order."""
        prompt = build_initial_prompt(sample_context, "ARCH NOTES")

        positions = [
            prompt.index(SYSTEM_INSTRUCTION),
            prompt.index("## Architecture Analysis"),
            prompt.index("ARCH NOTES"),
            prompt.index("## File Structure"),
            prompt.index("## File Contents"),
        ]
        assert positions == sorted(positions)

    def test_analysis_optional(self, sample_context):
        """No analysis section without analysis text."""
        prompt = build_initial_prompt(sample_context, None)
        assert "## Architecture Analysis" not in prompt

    def test_contains_rendered_tree(self, sample_context):
        """The full rendered file tree is embedded."""
        prompt = build_initial_prompt(sample_context)
        assert sample_context.file_tree.render() in prompt

    def test_skips_binary_files(self, sample_context):
        """Base64 entries are not included as file bodies."""
        prompt = build_initial_prompt(sample_context)
        assert "### assets/logo.png" not in prompt
        assert "### src/app.py" in prompt
        assert "```\ndef main():" in prompt

    def test_at_most_ten_files_in_path_order(self):
        """Only the first ten text files by path are included."""
        context = CodeContext.from_files({f"f{i:02d}.txt": f"body {i}" for i in range(15)})
        prompt = build_initial_prompt(context)

        included = [f"f{i:02d}.txt" for i in range(15) if f"### f{i:02d}.txt" in prompt]
        assert included == [f"f{i:02d}.txt" for i in range(10)]

    def test_long_file_truncated(self):
        """Bodies over 5000 characters are cut and marked."""
        context = CodeContext.from_files({"big.py": "x" * 6000, "small.py": "y" * 10})
        prompt = build_initial_prompt(context)

        assert "x" * 5000 + TRUNCATION_MARKER in prompt
        assert "x" * 5001 not in prompt
        assert "y" * 10 + "\n```" in prompt
        assert prompt.count(TRUNCATION_MARKER) == 1

    def test_exactly_limit_not_truncated(self):
        """A body of exactly 5000 characters is kept whole."""
        context = CodeContext.from_files({"edge.py": "z" * 5000})
        assert TRUNCATION_MARKER not in build_initial_prompt(context)

    def test_deterministic(self):
        """Insertion order of the content map does not change the prompt."""
        files = {f"f{i}.txt": str(i) for i in range(20)}
        forward = CodeContext.from_files(files)
        backward = CodeContext.from_files(dict(reversed(list(files.items()))))
        assert build_initial_prompt(forward) == build_initial_prompt(backward)


class TestTurnPrompts:
    """Tests for first-turn and follow-up prompts."""

    def test_first_turn(self):
        """First turn is initial prompt plus the question."""
        assert build_first_turn_prompt("INIT", "why?") == "INIT\n\n## Question\nwhy?"

    def test_followup_window(self):
        """Only the last ten messages are rendered as role: content."""
        prompt = build_followup_prompt("INIT", _transcript(21))

        assert prompt.startswith("INIT\n")
        assert "## Conversation History" in prompt
        assert "m10" not in prompt
        for i in range(11, 21):
            role = "user" if i % 2 == 0 else "assistant"
            assert f"{role}: m{i}" in prompt

    def test_followup_short_history(self):
        """Histories shorter than the window are rendered whole."""
        prompt = build_followup_prompt("INIT", _transcript(3))
        assert "user: m0" in prompt
        assert "assistant: m1" in prompt
        assert "user: m2" in prompt

    def test_turn_eleven_bounded(self):
        """Turn 11 carries the unchanged initial prompt and at most ten transcript lines."""
        messages = tuple(_transcript(21))
        snapshot = TurnSnapshot(handle="h", initial_prompt="INIT", messages=messages)
        prompt = build_turn_prompt(snapshot)

        history = prompt.split("## Conversation History", 1)[1]
        lines = [line for line in history.splitlines() if line.startswith(("user:", "assistant:"))]
        assert len(lines) == 10
        assert prompt.startswith("INIT")

    def test_turn_prompt_first(self):
        """A single-message snapshot uses the first-turn form."""
        snapshot = TurnSnapshot(
            handle="h",
            initial_prompt="INIT",
            messages=(Message(role=Role.USER, content="q"),),
        )
        assert build_turn_prompt(snapshot) == build_first_turn_prompt("INIT", "q")


class TestOneShotPrompts:
    """Tests for analysis and explanation prompts."""

    def test_project_analysis(self):
        assert build_project_analysis_prompt("TREE").endswith("\n\nTREE")

    def test_code_explanation(self):
        prompt = build_code_explanation_prompt("def f(): pass", "f")
        assert "f" in prompt
        assert prompt.endswith("def f(): pass")
