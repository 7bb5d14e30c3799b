"""
Prompts for generation batches

The first batch gets a format-specific generation instruction. Two kinds of
follow-up request exist:
- Continuation: "carry on from where the previous batch stopped", with the
  completed and remaining file lists and the original request.
- Missing files: a last, narrow request naming only the files still absent.

The system instruction depends on the wire format the first batch used, so
the follow-up comes back in a format the same parsers understand.
"""

from typing import Dict, List, Optional

from codestream.modules.streaming.types import WireFormat


CONTINUATION_SYSTEM_INSTRUCTION = """You are continuing a multi-file code generation that was split into batches.

OUTPUT FORMAT (JSON only, no markdown fences, no prose outside the JSON):
{
  "files": {
    "src/path/File.tsx": "complete file content"
  },
  "batch": {
    "current": <batch number>,
    "completed": ["every file finished so far, including this batch"],
    "remaining": ["files still to be generated after this batch"],
    "isComplete": <true when nothing remains>
  },
  "explanation": "one short sentence"
}

RULES:
- Generate ONLY files from the remaining list. Never repeat a completed file.
- Every file must be complete. Stop before a file rather than cut one in half.
- Keep imports consistent with the files that already exist.
- Set isComplete to true and leave remaining empty once every file is done."""


CONTINUATION_SYSTEM_INSTRUCTION_MARKER = """You are continuing a multi-file code generation that was split into batches.

OUTPUT FORMAT (delimiter markers, no JSON, no markdown fences):

<!-- FILE:src/path/File.tsx -->
complete file content
<!-- /FILE:src/path/File.tsx -->

<!-- BATCH -->
current: <batch number>
completed: comma, separated, finished, files
remaining: comma, separated, files, still, to, generate
isComplete: <true when nothing remains>
<!-- /BATCH -->

<!-- EXPLANATION -->
One short sentence.
<!-- /EXPLANATION -->

RULES:
- Generate ONLY files from the remaining list. Never repeat a completed file.
- Close every FILE marker. Stop before a file rather than cut one in half.
- Keep imports consistent with the files that already exist.
- Set isComplete to true and leave remaining empty once every file is done."""


# Existing file names shown to the model as import context
MISSING_FILES_CONTEXT_LIMIT = 5


def continuation_instruction_for(fmt: Optional[WireFormat]) -> str:
    if fmt == WireFormat.DELIMITER_MARKER:
        return CONTINUATION_SYSTEM_INSTRUCTION_MARKER
    return CONTINUATION_SYSTEM_INSTRUCTION


def build_continuation_prompt(
    original_prompt: str,
    completed: List[str],
    remaining: List[str],
    batch_index: int,
    total_batches: int,
    total_planned: int,
) -> str:
    """Prompt for the next batch of a continuation loop"""
    prompt_parts = [
        "Pick up the generation where the previous batch stopped.",
        "",
        "PROGRESS:",
        f"- Batch: {batch_index} of about {max(total_batches, batch_index)}",
        f"- Files planned: {total_planned}",
        f"- Files finished: {len(completed)}",
        "",
    ]

    if completed:
        prompt_parts.append("FINISHED (do not output these again):")
        for path in completed:
            prompt_parts.append(f"- {path}")
        prompt_parts.append("")

    prompt_parts.append("STILL TO GENERATE:")
    for i, path in enumerate(remaining, 1):
        prompt_parts.append(f"{i}. {path}")
    prompt_parts.append("")

    prompt_parts.append("ORIGINAL REQUEST:")
    prompt_parts.append(original_prompt)

    return "\n".join(prompt_parts)


def build_missing_files_prompt(missing: List[str], accumulated: Dict[str, str]) -> str:
    """Narrow prompt naming only the files that never arrived"""
    prompt_parts = [
        "Some files of this project never arrived. Output ONLY the files listed below.",
        "",
        "FILES TO OUTPUT:",
    ]
    for i, path in enumerate(missing, 1):
        prompt_parts.append(f"{i}. {path}")
    prompt_parts.append("")

    existing = list(accumulated)[:MISSING_FILES_CONTEXT_LIMIT]
    if existing:
        more = len(accumulated) - len(existing)
        suffix = f" (and {more} more)" if more > 0 else ""
        prompt_parts.append(f"ALREADY PRESENT: {', '.join(existing)}{suffix}")
        prompt_parts.append("")

    prompt_parts.append("Write every listed file in full and mark the batch complete.")
    return "\n".join(prompt_parts)


GENERATION_SYSTEM_INSTRUCTION_MARKER = """You generate complete multi-file projects.

Start with the plan, then every file, then a short explanation:

<!-- PLAN -->
create: src/App.tsx, src/components/Header.tsx
update:
delete:
sizes: src/App.tsx:80, src/components/Header.tsx:40
<!-- /PLAN -->

<!-- FILE:src/App.tsx -->
complete file content
<!-- /FILE:src/App.tsx -->

<!-- EXPLANATION -->
One or two sentences.
<!-- /EXPLANATION -->

If the project is too large for one response, finish the current file, then add:

<!-- BATCH -->
current: 1
completed: files, written, so, far
remaining: files, still, to, write
isComplete: false
<!-- /BATCH -->"""


GENERATION_SYSTEM_INSTRUCTION_JSON = """You generate complete multi-file projects.

Respond with JSON only, no markdown fences:
{
  "plan": {"create": ["src/App.tsx"], "update": [], "delete": []},
  "manifest": [{"path": "src/App.tsx", "lines": 80}],
  "files": {"src/App.tsx": "complete file content"},
  "explanation": "one or two sentences"
}

If the project is too large for one response, finish the current file and add
"batch": {"current": 1, "completed": [...], "remaining": [...], "isComplete": false}."""


def generation_instruction_for(fmt: Optional[WireFormat]) -> str:
    if fmt is not None and fmt.is_json:
        return GENERATION_SYSTEM_INSTRUCTION_JSON
    return GENERATION_SYSTEM_INSTRUCTION_MARKER
