"""
Generation Pipeline - one model call, start to finish

    open stream → StreamOrchestrator → structured parse → (TruncationAnalyzer)

The structured parse is trusted only when the stream ended cleanly and every
planned file is present. A batch the model itself declared unfinished becomes
a Continuation built from the model's own bookkeeping. Anything else goes
through the Truncation Analyzer; only a NONE outcome is raised to the caller.
"""

from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Protocol

from codestream.core.exceptions import (
    GenerationCancelledError,
    StreamTransportError,
    UnrecoverableResponseError,
)
from codestream.core.logging_config import logger
from codestream.modules.continuation.request import GenerationRequest
from codestream.modules.recovery.response_parser import ParsedResponse, parse_response
from codestream.modules.recovery.truncation_analyzer import TruncationAnalyzer
from codestream.modules.streaming.completion_scheduler import CompletionPolicy
from codestream.modules.streaming.stream_orchestrator import StreamOrchestrator
from codestream.modules.streaming.types import (
    FinishReason,
    GenerationMeta,
    RecoveryAction,
    RecoveryOutcome,
    StreamingResult,
    StreamSnapshot,
)
from codestream.utils.chunk_streams import ChunkStream


class StreamClient(Protocol):
    def open_stream(self, request: GenerationRequest) -> ChunkStream:
        ...


@dataclass
class AttemptResult:
    """Outcome of one model call"""
    streaming: StreamingResult
    outcome: RecoveryOutcome
    parsed: ParsedResponse
    interrupted: bool = False
    deleted_files: List[str] = field(default_factory=list)

    @property
    def files(self) -> Dict[str, str]:
        return dict(self.outcome.files)

    @property
    def explanation(self) -> str:
        return self.parsed.explanation

    @property
    def needs_continuation(self) -> bool:
        return self.outcome.action == RecoveryAction.CONTINUATION

    @property
    def declared_complete(self) -> bool:
        """The model said this was the last batch"""
        meta = self.parsed.generation_meta
        return meta is not None and (meta.is_complete or not meta.remaining_files)


class GenerationPipeline:
    """Runs single attempts against a stream client"""

    def __init__(
        self,
        client: StreamClient,
        policy: Optional[CompletionPolicy] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        on_update: Optional[Callable[[StreamSnapshot], None]] = None,
        analyzer: Optional[TruncationAnalyzer] = None,
        strict_format: bool = False,
    ):
        self.client = client
        self.policy = policy
        self.clock = clock
        self.sleep = sleep
        self.on_update = on_update
        self.analyzer = analyzer or TruncationAnalyzer()
        self.strict_format = strict_format
        self._orchestrator: Optional[StreamOrchestrator] = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Abort the in-flight stream, if any"""
        self._cancelled = True
        if self._orchestrator is not None:
            self._orchestrator.cancel()

    def reset(self) -> None:
        """Clear a previous cancel so the pipeline can run again"""
        self._cancelled = False

    async def run_attempt(
        self,
        request: GenerationRequest,
        existing_files: Optional[Mapping[str, str]] = None,
    ) -> AttemptResult:
        if self._cancelled:
            raise GenerationCancelledError()

        orchestrator = StreamOrchestrator(
            expected_format=request.response_format,
            strict_format=self.strict_format,
            policy=self.policy,
            clock=self.clock,
            sleep=self.sleep,
            on_update=self.on_update,
        )
        self._orchestrator = orchestrator
        interrupted = False
        try:
            stream = self.client.open_stream(request)
            try:
                streaming = await orchestrator.run(stream)
            except StreamTransportError as e:
                if not orchestrator.text:
                    raise
                # Whatever arrived before the break is handled like a truncated response
                logger.warning(
                    f"[Pipeline] Stream broke after {len(orchestrator.text)} chars, recovering: {e.message}"
                )
                interrupted = True
                streaming = await orchestrator.finish(FinishReason.UNKNOWN)
        finally:
            self._orchestrator = None

        if streaming.cancelled or self._cancelled:
            raise GenerationCancelledError()

        return self.finalize(streaming, existing_files, interrupted=interrupted)

    def finalize(
        self,
        streaming: StreamingResult,
        existing_files: Optional[Mapping[str, str]] = None,
        interrupted: bool = False,
    ) -> AttemptResult:
        """Turn a finished stream into files, a continuation request or an error"""
        text = streaming.full_text
        ended_cleanly = not interrupted and streaming.finish_reason == FinishReason.STOP
        parsed = parse_response(text, streaming.format, final=ended_cleanly)
        plan = streaming.plan

        declared = self._declared_continuation(parsed, streaming, interrupted, existing_files)
        if declared is not None:
            return AttemptResult(streaming, declared, parsed, interrupted, list(parsed.deleted_files))

        missing_planned = [p for p in plan.to_create if p not in parsed.files] if plan else []
        needs_recovery = (
            interrupted
            or streaming.finish_reason == FinishReason.LENGTH
            or not parsed.complete
            or bool(missing_planned)
        )

        if not needs_recovery:
            collisions = tuple(p for p in parsed.files if existing_files and p in existing_files)
            outcome = RecoveryOutcome.success(parsed.files, collisions)
            logger.info(
                f"[Pipeline] Parsed {len(parsed.files)} files ({streaming.format.value}), "
                f"{len(parsed.deleted_files)} deletions"
            )
            return AttemptResult(streaming, outcome, parsed, interrupted, list(parsed.deleted_files))

        logger.info(
            f"[Pipeline] Recovery needed: finish={streaming.finish_reason.value}, "
            f"complete={parsed.complete}, missing_planned={len(missing_planned)}"
        )
        outcome = self.analyzer.analyze(text, plan, streaming.format, existing_files, parsed=parsed)
        if outcome.action == RecoveryAction.NONE:
            raise UnrecoverableResponseError(text, outcome.message or "Could not parse response")

        return AttemptResult(streaming, outcome, parsed, interrupted, list(parsed.deleted_files))

    def _declared_continuation(
        self,
        parsed: ParsedResponse,
        streaming: StreamingResult,
        interrupted: bool,
        existing_files: Optional[Mapping[str, str]],
    ) -> Optional[RecoveryOutcome]:
        """Continuation taken from the model's own batch metadata"""
        meta = parsed.generation_meta
        if meta is None or not meta.needs_continuation:
            return None
        if interrupted or streaming.finish_reason == FinishReason.LENGTH:
            return None
        if not parsed.files or parsed.incomplete_files or parsed.errors:
            return None

        remaining = [p for p in meta.remaining_files if p not in parsed.files]
        if not remaining:
            return None

        batch_files = list(parsed.files)
        completed = list(meta.completed_files) + [p for p in batch_files if p not in meta.completed_files]
        declared_meta: GenerationMeta = replace(
            meta,
            total_planned=meta.total_planned or len(completed) + len(remaining),
            files_this_batch=batch_files,
            completed_files=completed,
            remaining_files=remaining,
            is_complete=False,
        )
        collisions = tuple(p for p in parsed.files if existing_files and p in existing_files)
        logger.info(
            f"[Pipeline] Model declared batch {meta.batch_index}/{meta.total_batches} unfinished, "
            f"{len(remaining)} files remaining"
        )
        return RecoveryOutcome.continuation(parsed.files, declared_meta, collisions)
