"""
Unit Tests for batch prompts
"""
from codestream.modules.continuation.prompts import (
    CONTINUATION_SYSTEM_INSTRUCTION,
    CONTINUATION_SYSTEM_INSTRUCTION_MARKER,
    GENERATION_SYSTEM_INSTRUCTION_JSON,
    GENERATION_SYSTEM_INSTRUCTION_MARKER,
    build_continuation_prompt,
    build_missing_files_prompt,
    continuation_instruction_for,
    generation_instruction_for,
)
from codestream.modules.streaming.types import WireFormat


class TestInstructions:
    """Test follow-ups are requested in the first batch's format"""

    def test_marker_continuation(self):
        assert continuation_instruction_for(WireFormat.DELIMITER_MARKER) == CONTINUATION_SYSTEM_INSTRUCTION_MARKER

    def test_json_continuation(self):
        assert continuation_instruction_for(WireFormat.LEGACY_COMMENT_PLAN) == CONTINUATION_SYSTEM_INSTRUCTION
        assert continuation_instruction_for(WireFormat.MANIFEST_V2) == CONTINUATION_SYSTEM_INSTRUCTION
        assert continuation_instruction_for(None) == CONTINUATION_SYSTEM_INSTRUCTION

    def test_generation_instruction(self):
        assert generation_instruction_for(WireFormat.MANIFEST_V2) == GENERATION_SYSTEM_INSTRUCTION_JSON
        assert generation_instruction_for(None) == GENERATION_SYSTEM_INSTRUCTION_MARKER
        assert "<!-- PLAN -->" in GENERATION_SYSTEM_INSTRUCTION_MARKER
        assert '"manifest"' in GENERATION_SYSTEM_INSTRUCTION_JSON


class TestContinuationPrompt:

    def test_lists_progress_and_remaining_files(self):
        prompt = build_continuation_prompt(
            "Build a todo app",
            completed=["src/App.tsx"],
            remaining=["src/b.tsx", "src/c.tsx"],
            batch_index=2,
            total_batches=1,
            total_planned=3,
        )
        lines = prompt.split("\n")

        assert lines[0] == "Pick up the generation where the previous batch stopped."
        assert "- Batch: 2 of about 2" in lines
        assert "- Files planned: 3" in lines
        assert "- Files finished: 1" in lines
        assert "FINISHED (do not output these again):" in lines
        assert "- src/App.tsx" in lines
        assert "STILL TO GENERATE:\n1. src/b.tsx\n2. src/c.tsx" in prompt
        assert prompt.endswith("ORIGINAL REQUEST:\nBuild a todo app")

    def test_no_finished_section_without_completed_files(self):
        prompt = build_continuation_prompt("x", [], ["src/a.tsx"], 2, 2, 1)
        assert "FINISHED" not in prompt


class TestMissingFilesPrompt:

    def test_names_only_missing_files(self):
        prompt = build_missing_files_prompt(["src/b.tsx"], {"src/a.tsx": "a"})
        assert prompt.startswith("Some files of this project never arrived.")
        assert "FILES TO OUTPUT:\n1. src/b.tsx" in prompt
        assert "ALREADY PRESENT: src/a.tsx\n" in prompt
        assert prompt.endswith("Write every listed file in full and mark the batch complete.")

    def test_existing_file_list_is_capped(self):
        accumulated = {f"src/f{i}.tsx": "x" for i in range(7)}
        prompt = build_missing_files_prompt(["src/z.tsx"], accumulated)
        assert "ALREADY PRESENT: src/f0.tsx, src/f1.tsx, src/f2.tsx, src/f3.tsx, src/f4.tsx (and 2 more)" in prompt

    def test_nothing_present(self):
        assert "ALREADY PRESENT" not in build_missing_files_prompt(["src/a.tsx"], {})
