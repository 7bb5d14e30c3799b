"""
Continuation Controller - stitches follow-up batches into one generation

    IDLE → AWAITING_BATCH → MERGING → AWAITING_BATCH ... → IDLE
                  ↓             ↓
                FAILED ←────────┘

Each follow-up batch re-enters the whole generation pipeline. Files merge by
path (a later batch overwrites an earlier one, nothing is dropped). A batch
that errors or delivers none of the remaining files is retried with linear
backoff; once retries run out a single targeted "missing files" request is
made before giving up. The loop never runs past the batch limit.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Set

from codestream.core.config import settings
from codestream.core.exceptions import (
    CodeStreamError,
    ContinuationError,
    ContinuationLimitError,
    GenerationCancelledError,
)
from codestream.core.logging_config import logger, set_batch_index
from codestream.modules.continuation.pipeline import AttemptResult, GenerationPipeline
from codestream.modules.continuation.prompts import (
    build_continuation_prompt,
    build_missing_files_prompt,
    continuation_instruction_for,
)
from codestream.modules.continuation.request import GenerationRequest
from codestream.modules.streaming.types import GenerationMeta, WireFormat
from codestream.utils.paths import path_variants, unique_ordered


class ContinuationStatus(str, Enum):
    IDLE = "idle"
    AWAITING_BATCH = "awaiting_batch"
    MERGING = "merging"
    FAILED = "failed"


CONTINUATION_TRANSITIONS: Dict[ContinuationStatus, Set[ContinuationStatus]] = {
    ContinuationStatus.IDLE: {ContinuationStatus.AWAITING_BATCH},
    ContinuationStatus.AWAITING_BATCH: {
        ContinuationStatus.MERGING,
        ContinuationStatus.FAILED,
        ContinuationStatus.IDLE,
    },
    ContinuationStatus.MERGING: {
        ContinuationStatus.AWAITING_BATCH,
        ContinuationStatus.FAILED,
        ContinuationStatus.IDLE,
    },
    ContinuationStatus.FAILED: {ContinuationStatus.IDLE},
}


@dataclass
class ContinuationState:
    """Everything carried from one batch to the next"""
    original_request: GenerationRequest
    format: WireFormat
    meta: GenerationMeta
    accumulated_files: Dict[str, str] = field(default_factory=dict)
    batch_index: int = 1
    retry_attempts: int = 0
    missing_request_made: bool = False
    declared_complete: bool = False
    explanations: List[str] = field(default_factory=list)
    deleted_files: List[str] = field(default_factory=list)

    @property
    def remaining_files(self) -> List[str]:
        return list(self.meta.remaining_files)


def is_accumulated(path: str, files: Mapping[str, str]) -> bool:
    """A path counts as delivered under either form of the source root prefix"""
    return any(variant in files for variant in path_variants(path))


class ContinuationController:
    """Drives follow-up batches until nothing remains"""

    def __init__(
        self,
        pipeline: GenerationPipeline,
        max_batches: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        on_batch: Optional[Callable[[ContinuationState], None]] = None,
    ):
        self.pipeline = pipeline
        self.max_batches = settings.CONTINUATION_MAX_BATCHES if max_batches is None else max_batches
        self.max_retries = settings.CONTINUATION_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = settings.CONTINUATION_RETRY_DELAY if retry_delay is None else retry_delay
        self.sleep = sleep or asyncio.sleep
        self.on_batch = on_batch

        self.status = ContinuationStatus.IDLE
        self.state: Optional[ContinuationState] = None
        self._cancelled = False

    def _transition(self, new_status: ContinuationStatus) -> None:
        if new_status == self.status:
            return
        if new_status not in CONTINUATION_TRANSITIONS[self.status]:
            raise RuntimeError(
                f"Invalid continuation transition {self.status.value} -> {new_status.value}"
            )
        logger.debug(f"[Continuation] {self.status.value} -> {new_status.value}")
        self.status = new_status

    def cancel(self) -> None:
        """Abort the in-flight batch; files merged so far are kept"""
        self._cancelled = True
        self.pipeline.cancel()

    def reset(self) -> None:
        self._cancelled = False
        self.pipeline.reset()

    def _raise_if_cancelled(self) -> None:
        if self._cancelled:
            self._transition(ContinuationStatus.IDLE)
            merged = self.state.accumulated_files if self.state else {}
            raise GenerationCancelledError(merged)

    def _fail(self, error: ContinuationError) -> None:
        self._transition(ContinuationStatus.FAILED)
        logger.log_error_with_context(
            error,
            context="continuation",
            batch=self.state.batch_index if self.state else 0,
            missing=error.missing_files,
        )
        raise error

    async def run(
        self,
        original_request: GenerationRequest,
        meta: GenerationMeta,
        files: Mapping[str, str],
        fmt: WireFormat,
        existing_files: Optional[Mapping[str, str]] = None,
    ) -> ContinuationState:
        """Loop follow-up batches starting from the first batch's files and meta"""
        if self.status == ContinuationStatus.FAILED:
            self._transition(ContinuationStatus.IDLE)

        state = ContinuationState(
            original_request=original_request,
            format=fmt,
            meta=meta,
            accumulated_files=dict(files),
            batch_index=max(1, meta.batch_index),
        )
        state.meta = self._next_meta(state, None)
        self.state = state
        self._transition(ContinuationStatus.AWAITING_BATCH)

        logger.info(
            f"[Continuation] Starting: {len(state.accumulated_files)} files, "
            f"{len(state.remaining_files)} remaining"
        )

        while state.remaining_files and not state.declared_complete:
            self._raise_if_cancelled()
            if state.batch_index >= self.max_batches:
                self._fail(ContinuationLimitError(
                    self.max_batches, state.accumulated_files, state.remaining_files
                ))

            targeted = state.retry_attempts > self.max_retries
            request = self._build_request(state, targeted)
            set_batch_index(request.batch_index)

            attempt = await self._run_batch(request, existing_files)
            self._raise_if_cancelled()

            if attempt is not None and self._delivers_remaining(state, attempt):
                self._merge(state, attempt)
                continue

            if targeted:
                self._fail(ContinuationError(
                    f"Missing files could not be generated after {self.max_retries} retries",
                    state.accumulated_files,
                    state.remaining_files,
                ))

            state.retry_attempts += 1
            if state.retry_attempts > self.max_retries:
                if state.missing_request_made:
                    self._fail(ContinuationError(
                        f"Continuation failed after {self.max_retries} retries",
                        state.accumulated_files,
                        state.remaining_files,
                    ))
                logger.warning(
                    f"[Continuation] Retries exhausted, requesting {len(state.remaining_files)} missing files directly"
                )
                continue

            delay = self.retry_delay * state.retry_attempts
            logger.warning(
                f"[Continuation] Batch {request.batch_index} failed, retry "
                f"{state.retry_attempts}/{self.max_retries} in {delay:.1f}s"
            )
            await self.sleep(delay)

        self._transition(ContinuationStatus.IDLE)
        if state.remaining_files:
            logger.warning(
                f"[Continuation] Model declared completion with {len(state.remaining_files)} files missing: "
                f"{', '.join(state.remaining_files)}"
            )
        logger.info(
            f"[Continuation] Finished after {state.batch_index} batches: "
            f"{len(state.accumulated_files)} files"
        )
        return state

    def _build_request(self, state: ContinuationState, targeted: bool) -> GenerationRequest:
        instruction = continuation_instruction_for(state.format)
        next_index = state.batch_index + 1
        if targeted:
            state.missing_request_made = True
            prompt = build_missing_files_prompt(state.remaining_files, state.accumulated_files)
        else:
            prompt = build_continuation_prompt(
                state.original_request.prompt,
                list(state.meta.completed_files),
                state.remaining_files,
                next_index,
                state.meta.total_batches,
                state.meta.total_planned,
            )
        return state.original_request.follow_up(prompt, instruction, next_index)

    async def _run_batch(self, request: GenerationRequest,
                         existing_files: Optional[Mapping[str, str]]) -> Optional[AttemptResult]:
        try:
            return await self.pipeline.run_attempt(request, existing_files)
        except GenerationCancelledError:
            self._cancelled = True
            self._raise_if_cancelled()
        except CodeStreamError as e:
            logger.warning(f"[Continuation] Batch {request.batch_index} error: {e.code}: {e.message}")
        return None

    def _delivers_remaining(self, state: ContinuationState, attempt: AttemptResult) -> bool:
        files = attempt.files
        if not files:
            return False
        return any(is_accumulated(path, files) for path in state.remaining_files)

    def _merge(self, state: ContinuationState, attempt: AttemptResult) -> None:
        self._transition(ContinuationStatus.MERGING)

        state.accumulated_files.update(attempt.files)
        state.batch_index += 1
        state.retry_attempts = 0
        state.declared_complete = attempt.declared_complete
        if attempt.explanation:
            state.explanations.append(attempt.explanation)
        state.deleted_files = unique_ordered(state.deleted_files + attempt.deleted_files)
        state.meta = self._next_meta(state, attempt)

        logger.info(
            f"[Continuation] Batch {state.batch_index} merged: +{len(attempt.files)} files, "
            f"{len(state.accumulated_files)} total, {len(state.remaining_files)} remaining"
        )
        if self.on_batch:
            self.on_batch(state)

        self._transition(ContinuationStatus.AWAITING_BATCH)

    def _next_meta(self, state: ContinuationState, attempt: Optional[AttemptResult]) -> GenerationMeta:
        """Remaining = every file anyone still reports as missing, minus what has arrived"""
        accumulated = state.accumulated_files
        candidates = list(state.meta.remaining_files)
        if attempt is not None:
            if attempt.outcome.meta is not None:
                candidates += attempt.outcome.meta.remaining_files
            candidates += list(attempt.outcome.missing)
            declared = attempt.parsed.generation_meta
            if declared is not None:
                candidates += declared.remaining_files

        remaining = [p for p in unique_ordered(candidates) if not is_accumulated(p, accumulated)]
        completed = list(accumulated)
        files_this_batch = list(attempt.files) if attempt is not None else list(state.meta.files_this_batch)

        return GenerationMeta(
            total_planned=max(state.meta.total_planned, len(completed) + len(remaining)),
            files_this_batch=files_this_batch,
            completed_files=completed,
            remaining_files=remaining,
            batch_index=state.batch_index,
            total_batches=max(state.meta.total_batches, state.batch_index),
            is_complete=not remaining,
        )
