"""
Code Generator - top-level entry point

    first attempt ──► Success / Partial ──────────────────────► result
          │
          └──► Continuation ──► ContinuationController loop ──► result

Every terminal state comes back as a GenerationResult; pipeline errors are
recorded in `error` rather than raised. Generated files are validated, then
merged over the caller's files with `safe_merge`, which never replaces a
non-empty file set with an empty one.
"""

import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from codestream.core.exceptions import (
    CodeStreamError,
    ContinuationError,
    GenerationCancelledError,
    UnrecoverableResponseError,
)
from codestream.core.logging_config import (
    generate_generation_id,
    logger,
    set_batch_index,
    set_generation_id,
)
from codestream.modules.continuation.controller import ContinuationController, ContinuationState
from codestream.modules.continuation.pipeline import AttemptResult, GenerationPipeline, StreamClient
from codestream.modules.continuation.request import GenerationRequest
from codestream.modules.recovery.truncation_analyzer import TruncationAnalyzer
from codestream.modules.streaming.completion_scheduler import CompletionPolicy
from codestream.modules.streaming.types import (
    FilePlan,
    RecoveryAction,
    StreamSnapshot,
    WireFormat,
)


# Shorter content is treated as a placeholder, not a file
MIN_FILE_CHARS = 20
RE_EXTENSION_ONLY = re.compile(r'^(?:tsx|jsx|ts|js|css|json|md);?$')
RE_HAS_EXTENSION = re.compile(r'\.[a-z]+$', re.IGNORECASE)


@dataclass
class GenerationResult:
    success: bool
    files: Dict[str, str] = field(default_factory=dict)
    merged_files: Dict[str, str] = field(default_factory=dict)
    plan: Optional[FilePlan] = None
    missing_files: List[str] = field(default_factory=list)
    deleted_files: List[str] = field(default_factory=list)
    invalid_files: List[str] = field(default_factory=list)
    partial: bool = False
    continuation_started: bool = False
    cancelled: bool = False
    batches: int = 1
    format: WireFormat = WireFormat.UNKNOWN
    explanation: str = ""
    error: Optional[str] = None
    error_code: Optional[str] = None
    raw_text: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "success": self.success,
            "files": sorted(self.files),
            "missing_files": self.missing_files,
            "deleted_files": self.deleted_files,
            "invalid_files": self.invalid_files,
            "partial": self.partial,
            "continuation_started": self.continuation_started,
            "cancelled": self.cancelled,
            "batches": self.batches,
            "format": self.format.value,
            "explanation": self.explanation,
            "error": self.error,
            "error_code": self.error_code,
        }


def validate_generated_files(files: Mapping[str, str]) -> Tuple[Dict[str, str], List[str]]:
    """Split files into usable ones and paths with an empty or malformed body"""
    valid: Dict[str, str] = {}
    invalid: List[str] = []
    for path, content in files.items():
        if not path or '/.' in path or not RE_HAS_EXTENSION.search(path):
            logger.warning(f"[Generator] Invalid file path: {path!r}")
            invalid.append(path)
            continue
        if not isinstance(content, str) or len(content) < MIN_FILE_CHARS \
                or RE_EXTENSION_ONLY.match(content.strip()):
            logger.warning(f"[Generator] Empty or malformed content: {path}")
            invalid.append(path)
            continue
        valid[path] = content
    return valid, invalid


def safe_merge(
    existing: Optional[Mapping[str, str]],
    generated: Mapping[str, str],
    deleted: Optional[List[str]] = None,
) -> Dict[str, str]:
    """Overlay generated files on existing ones; an empty result never wipes existing files"""
    base = dict(existing or {})
    if not generated and not deleted:
        return base
    merged = {**base, **generated}
    for path in deleted or []:
        merged.pop(path, None)
    if base and not merged:
        logger.warning("[Generator] Merge would leave no files, keeping existing set")
        return base
    return merged


class CodeGenerator:
    """Runs a full generation: first attempt plus any continuation batches"""

    def __init__(
        self,
        client: StreamClient,
        policy: Optional[CompletionPolicy] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        on_update: Optional[Callable[[StreamSnapshot], None]] = None,
        on_batch: Optional[Callable[[ContinuationState], None]] = None,
        analyzer: Optional[TruncationAnalyzer] = None,
        max_batches: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.pipeline = GenerationPipeline(
            client, policy=policy, clock=clock, sleep=sleep, on_update=on_update, analyzer=analyzer
        )
        self.controller = ContinuationController(
            self.pipeline,
            max_batches=max_batches,
            max_retries=max_retries,
            retry_delay=retry_delay,
            sleep=sleep,
            on_batch=on_batch,
        )

    def cancel(self) -> None:
        self.controller.cancel()

    async def generate(
        self,
        prompt: str,
        system_instruction: str = "",
        existing_files: Optional[Mapping[str, str]] = None,
        response_format: Optional[WireFormat] = None,
        max_tokens: Optional[int] = None,
        include_context: bool = False,
    ) -> GenerationResult:
        # A cancel only applies to the generation it interrupted
        self.controller.reset()
        generation_id = generate_generation_id()
        set_generation_id(generation_id)
        set_batch_index(1)
        existing = dict(existing_files or {})

        request = GenerationRequest(
            prompt=prompt,
            system_instruction=system_instruction,
            max_tokens=max_tokens,
            context_files=existing if include_context else {},
            response_format=response_format,
        )
        logger.info(f"[Generator] Starting generation {generation_id}: prompt_len={len(prompt)}")

        try:
            attempt = await self.pipeline.run_attempt(request, existing)
        except GenerationCancelledError as e:
            return self._cancelled_result(existing, e)
        except UnrecoverableResponseError as e:
            logger.log_error_with_context(e, context="first attempt")
            return GenerationResult(
                success=False,
                merged_files=existing,
                error=e.message,
                error_code=e.code,
                raw_text=e.raw_text,
            )
        except CodeStreamError as e:
            logger.log_error_with_context(e, context="first attempt")
            return GenerationResult(
                success=False, merged_files=existing, error=e.message, error_code=e.code
            )

        if not attempt.needs_continuation:
            return self._single_batch_result(attempt, existing)

        fmt = attempt.streaming.format
        try:
            state = await self.controller.run(
                request, attempt.outcome.meta, attempt.files, fmt, existing
            )
        except GenerationCancelledError as e:
            result = self._cancelled_result(existing, e)
            result.continuation_started = True
            result.plan = attempt.streaming.plan
            return result
        except ContinuationError as e:
            valid, invalid = validate_generated_files(e.accumulated_files)
            return GenerationResult(
                success=False,
                files=valid,
                merged_files=safe_merge(existing, valid),
                plan=attempt.streaming.plan,
                missing_files=e.missing_files,
                invalid_files=invalid,
                partial=bool(valid),
                continuation_started=True,
                batches=self.controller.state.batch_index if self.controller.state else 1,
                format=fmt,
                explanation=attempt.explanation,
                error=e.message,
                error_code=e.code,
            )

        return self._continuation_result(attempt, state, existing)

    def _single_batch_result(self, attempt: AttemptResult, existing: Dict[str, str]) -> GenerationResult:
        valid, invalid = validate_generated_files(attempt.files)
        deleted = list(attempt.deleted_files)
        success = bool(valid) or bool(deleted)
        result = GenerationResult(
            success=success,
            files=valid,
            merged_files=safe_merge(existing, valid, deleted),
            plan=attempt.streaming.plan,
            missing_files=list(attempt.outcome.missing),
            deleted_files=deleted,
            invalid_files=invalid,
            partial=attempt.outcome.action == RecoveryAction.PARTIAL,
            format=attempt.streaming.format,
            explanation=attempt.explanation or attempt.outcome.message,
        )
        if not success:
            result.error = "Generation failed - files were empty or malformed"
            result.error_code = "NO_VALID_FILES"
        logger.info(
            f"[Generator] Done: {len(valid)} files, {len(result.missing_files)} missing, "
            f"action={attempt.outcome.action.value}"
        )
        return result

    def _continuation_result(self, attempt: AttemptResult, state: ContinuationState,
                             existing: Dict[str, str]) -> GenerationResult:
        valid, invalid = validate_generated_files(state.accumulated_files)
        deleted = list(attempt.deleted_files)
        for path in state.deleted_files:
            if path not in deleted:
                deleted.append(path)
        explanations = [attempt.explanation] + state.explanations
        result = GenerationResult(
            success=bool(valid),
            files=valid,
            merged_files=safe_merge(existing, valid, deleted),
            plan=attempt.streaming.plan,
            missing_files=state.remaining_files,
            deleted_files=deleted,
            invalid_files=invalid,
            partial=bool(state.remaining_files),
            continuation_started=True,
            batches=state.batch_index,
            format=state.format,
            explanation="\n\n".join(e for e in explanations if e) or "Generation complete.",
        )
        if not valid:
            result.error = "Generation failed - files were empty or malformed"
            result.error_code = "NO_VALID_FILES"
        logger.info(
            f"[Generator] Done after {state.batch_index} batches: {len(valid)} files, "
            f"{len(result.missing_files)} missing"
        )
        return result

    def _cancelled_result(self, existing: Dict[str, str], error: GenerationCancelledError) -> GenerationResult:
        logger.info(f"[Generator] Cancelled with {len(error.merged_files)} merged files")
        return GenerationResult(
            success=False,
            files=dict(error.merged_files),
            merged_files=safe_merge(existing, error.merged_files),
            cancelled=True,
            error=error.message,
            error_code=error.code,
        )
