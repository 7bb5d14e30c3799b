"""
Stream Orchestrator - owns one live generation attempt

    IDLE → DETECTING → PLAN_PENDING → PLAN_KNOWN → STREAM_ENDED

Every chunk is handled synchronously on arrival:
1. Format detection, only while the format is still unknown
2. Plan parsing, until a plan is found (progress entries are created then)
3. Path discovery, on every chunk, independent of the plan
4. Boundary scanning of planned files, throttled to one pass per interval

At stream end one unthrottled scan runs, then content-complete files that
were still held back by the completion policy are force-completed in plan
order. Construct a fresh orchestrator per attempt; observers only ever
receive immutable snapshots.
"""

import asyncio
import re
import time
from dataclasses import replace
from types import MappingProxyType
from typing import Awaitable, Callable, Dict, List, Optional, Set

from codestream.core.config import settings
from codestream.core.exceptions import FormatMismatchError
from codestream.core.logging_config import logger
from codestream.modules.streaming.boundary_scanner import scan_file
from codestream.modules.streaming.completion_scheduler import CompletionPolicy, default_policy
from codestream.modules.streaming.format_detector import FormatDetector
from codestream.modules.streaming.plan_parsers import (
    bare_comment_paths,
    extract_line_counts,
    parse_plan,
)
from codestream.modules.streaming.types import (
    FileAction,
    FilePlan,
    FileProgress,
    FileStatus,
    FinishReason,
    StreamingResult,
    StreamSnapshot,
    StreamState,
    WireFormat,
)
from codestream.utils.chunk_streams import ChunkStream


RE_DISCOVER_MARKER = re.compile(r'<!--\s*FILE:([\w./-]+\.[a-zA-Z]+)\s*-->')
RE_DISCOVER_JSON = re.compile(r'"([^"]+\.(?:tsx?|jsx?|css|json|md|sql))"\s*:\s*[{"]')

# Re-scan this many trailing characters so a path split across chunks is found
DISCOVERY_OVERLAP_CHARS = 256

STREAM_TRANSITIONS: Dict[StreamState, Set[StreamState]] = {
    StreamState.IDLE: {StreamState.DETECTING, StreamState.STREAM_ENDED},
    StreamState.DETECTING: {StreamState.PLAN_PENDING, StreamState.STREAM_ENDED},
    StreamState.PLAN_PENDING: {StreamState.PLAN_KNOWN, StreamState.STREAM_ENDED},
    StreamState.PLAN_KNOWN: {StreamState.STREAM_ENDED},
    StreamState.STREAM_ENDED: set(),
}


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class StreamOrchestrator:
    """Drives format detection, plan parsing and boundary scanning for one stream"""

    def __init__(
        self,
        expected_format: Optional[WireFormat] = None,
        strict_format: bool = False,
        policy: Optional[CompletionPolicy] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        on_update: Optional[Callable[[StreamSnapshot], None]] = None,
        progress_interval_ms: Optional[float] = None,
    ):
        self.expected_format = expected_format
        self.strict_format = strict_format
        self.policy = policy or default_policy()
        self.clock = clock or _monotonic_ms
        self.sleep = sleep or asyncio.sleep
        self.on_update = on_update
        self.progress_interval_ms = (
            settings.STREAM_PROGRESS_INTERVAL_MS if progress_interval_ms is None
            else progress_interval_ms
        )

        self.state = StreamState.IDLE
        self.text = ""
        self.chunk_count = 0
        self.detector = FormatDetector()
        self.plan: Optional[FilePlan] = None
        self.progress: Dict[str, FileProgress] = {}
        self.detected_paths: List[str] = []
        self.finish_reason = FinishReason.UNKNOWN
        self.cancelled = False
        self.format_mismatch = False

        self._detected_set: Set[str] = set()
        self._discovery_offset = 0
        self._streaming_since: Dict[str, float] = {}
        self._content_complete: Set[str] = set()
        self._last_scan_ms: Optional[float] = None
        self._started_ms: Optional[float] = None

    @property
    def format(self) -> WireFormat:
        return self.detector.format

    def _transition(self, new_state: StreamState) -> None:
        if new_state == self.state:
            return
        if new_state not in STREAM_TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid stream transition {self.state.value} -> {new_state.value}")
        logger.debug(f"[Stream] {self.state.value} -> {new_state.value}")
        self.state = new_state

    # ------------------------------------------------------------------
    # Chunk handling
    # ------------------------------------------------------------------

    def feed(self, chunk: str) -> StreamSnapshot:
        """Append one chunk and update detection, plan and progress"""
        if self.cancelled or self.state == StreamState.STREAM_ENDED:
            return self.snapshot()

        if self._started_ms is None:
            self._started_ms = self.clock()
        self.text += chunk
        self.chunk_count += 1

        if self.state == StreamState.IDLE:
            self._transition(StreamState.DETECTING)

        if self.state == StreamState.DETECTING:
            self._detect()

        if self.state == StreamState.PLAN_PENDING:
            self._try_parse_plan()

        self._discover_paths()
        self._extend_header_plan()

        if self.state == StreamState.PLAN_KNOWN:
            now = self.clock()
            if self._last_scan_ms is None or now - self._last_scan_ms >= self.progress_interval_ms:
                self._scan(now, final=False)

        snapshot = self.snapshot()
        if self.on_update:
            self.on_update(snapshot)
        return snapshot

    def _detect(self) -> None:
        fmt = self.detector.update(self.text)
        if fmt == WireFormat.UNKNOWN:
            return

        logger.log_stream_event(
            f"format detected: {fmt.value}", chars=len(self.text), chunks=self.chunk_count
        )
        if self.expected_format and self.expected_format != fmt:
            self.format_mismatch = True
            logger.warning(
                f"[Stream] Expected {self.expected_format.value} format, detected {fmt.value}"
            )
            if self.strict_format:
                raise FormatMismatchError(self.expected_format.value, fmt.value)
        self._transition(StreamState.PLAN_PENDING)

    def _try_parse_plan(self) -> None:
        plan = parse_plan(self.text, self.format)
        if plan is None:
            return

        self.plan = plan
        default_lines = settings.STREAM_DEFAULT_EXPECTED_LINES
        for path in plan.to_create:
            status = FileStatus.COMPLETE if path in plan.completed else FileStatus.PENDING
            self.progress[path] = FileProgress(
                path=path,
                action=plan.action_for(path),
                expected_lines=plan.expected_lines(path, default_lines),
                percent=100 if status == FileStatus.COMPLETE else 0,
                status=status,
            )
        for path in plan.to_delete:
            if path not in self.progress:
                self.progress[path] = FileProgress(
                    path=path,
                    action=FileAction.DELETE,
                    expected_lines=0,
                    percent=100,
                    status=FileStatus.COMPLETE,
                )

        logger.log_stream_event(
            "plan parsed",
            chars=len(self.text),
            chunks=self.chunk_count,
            files_detected=len(self.detected_paths),
            planned=len(plan.to_create),
            deletes=len(plan.to_delete),
        )
        self._transition(StreamState.PLAN_KNOWN)

    def _discover_paths(self) -> None:
        fmt = self.format
        if fmt == WireFormat.UNKNOWN:
            return

        start = max(0, self._discovery_offset - DISCOVERY_OVERLAP_CHARS)
        window = self.text[start:]
        if fmt == WireFormat.DELIMITER_MARKER:
            found = RE_DISCOVER_MARKER.findall(window)
        elif fmt == WireFormat.BARE_COMMENT:
            found = bare_comment_paths(window)
        else:
            found = [p for p in RE_DISCOVER_JSON.findall(window) if '\\' not in p]
        self._discovery_offset = len(self.text)

        for path in found:
            if path not in self._detected_set:
                self._detected_set.add(path)
                self.detected_paths.append(path)

    def _extend_header_plan(self) -> None:
        """Bare-comment plans have no manifest; every new header adds a planned file"""
        if self.format != WireFormat.BARE_COMMENT or self.state != StreamState.PLAN_KNOWN:
            return
        default_lines = settings.STREAM_DEFAULT_EXPECTED_LINES
        for path in self.detected_paths:
            if path in self.progress:
                continue
            self.plan.to_create.append(path)
            self.plan.total = len(self.plan.to_create)
            self.progress[path] = FileProgress(path=path, expected_lines=default_lines)

    # ------------------------------------------------------------------
    # Boundary scanning
    # ------------------------------------------------------------------

    def _refresh_line_counts(self) -> None:
        missing = [p for p in self.plan.to_create if p not in self.plan.expected_line_counts]
        if not missing:
            return
        counts = extract_line_counts(self.text, self.format)
        if not counts:
            return
        self.plan.merge_line_counts(counts)
        default_lines = settings.STREAM_DEFAULT_EXPECTED_LINES
        for path in missing:
            if path in counts and path in self.progress:
                self.progress[path] = replace(
                    self.progress[path],
                    expected_lines=self.plan.expected_lines(path, default_lines),
                )

    def _scan(self, now: float, final: bool) -> None:
        self._last_scan_ms = now
        self._refresh_line_counts()

        for index, path in enumerate(self.plan.to_create):
            entry = self.progress[path]
            if entry.status == FileStatus.COMPLETE:
                continue

            result = scan_file(self.text, path, self.format, entry.expected_lines, final=final)
            if result.status == FileStatus.PENDING:
                continue

            since = self._streaming_since.setdefault(path, now)
            if result.status == FileStatus.COMPLETE:
                self._content_complete.add(path)
                if self.policy.can_complete(index, since, now):
                    self._complete(path)
                else:
                    self.progress[path] = entry.advance(
                        FileStatus.STREAMING, result.received_chars, 99
                    )
            else:
                self.progress[path] = entry.advance(
                    FileStatus.STREAMING, result.received_chars, result.percent
                )

    def _complete(self, path: str) -> None:
        entry = self.progress[path]
        self.progress[path] = entry.advance(FileStatus.COMPLETE, entry.received_chars, 100)
        self.plan.mark_completed(path)
        logger.debug(f"[Stream] File complete: {path} ({len(self.plan.completed)}/{self.plan.total})")

    # ------------------------------------------------------------------
    # Stream end
    # ------------------------------------------------------------------

    async def finish(self, finish_reason: FinishReason = FinishReason.STOP) -> StreamingResult:
        """Final unthrottled scan, then force-complete held-back files in plan order"""
        if self.state == StreamState.STREAM_ENDED:
            return self.result()
        self.finish_reason = finish_reason

        if not self.cancelled:
            if self.state == StreamState.DETECTING:
                self._detect()
            if self.state == StreamState.PLAN_PENDING:
                self._try_parse_plan()
            self._discover_paths()
            self._extend_header_plan()

            if self.state == StreamState.PLAN_KNOWN:
                # A length cut leaves the last bare section open
                self._scan(self.clock(), final=finish_reason == FinishReason.STOP)
                await self._sweep()

        self._transition(StreamState.STREAM_ENDED)

        elapsed = self.clock() - self._started_ms if self._started_ms is not None else 0.0
        logger.log_stream_event(
            "stream ended",
            chars=len(self.text),
            chunks=self.chunk_count,
            files_detected=len(self.detected_paths),
            finish_reason=finish_reason.value,
            cancelled=self.cancelled,
            format=self.format.value,
        )
        logger.log_performance("stream", elapsed, threshold_ms=120000)

        snapshot = self.snapshot()
        if self.on_update:
            self.on_update(snapshot)
        return self.result()

    async def _sweep(self) -> None:
        delay_ms = self.policy.sweep_delay_ms()
        swept = 0
        for path in self.plan.to_create:
            if self.cancelled:
                return
            if path not in self._content_complete:
                continue
            if self.progress[path].status == FileStatus.COMPLETE:
                continue
            if swept and delay_ms:
                await self.sleep(delay_ms / 1000)
            self._complete(path)
            swept += 1
            if self.on_update:
                self.on_update(self.snapshot())

    async def run(self, stream: ChunkStream) -> StreamingResult:
        """Consume a chunk stream to its end (or until cancelled)"""
        async for chunk in stream:
            if self.cancelled:
                break
            self.feed(chunk)
        if self.cancelled:
            await stream.aclose()
        return await self.finish(stream.finish_reason)

    def cancel(self) -> None:
        """Cooperative abort, checked between chunks and between sweep steps"""
        if not self.cancelled:
            self.cancelled = True
            logger.info(f"[Stream] Cancelled after {len(self.text)} chars")

    # ------------------------------------------------------------------
    # Outward views
    # ------------------------------------------------------------------

    def snapshot(self) -> StreamSnapshot:
        return StreamSnapshot(
            status=self.state,
            format=self.format,
            received_chars=len(self.text),
            detected_paths=tuple(self.detected_paths),
            plan=self.plan.copy() if self.plan else None,
            progress=MappingProxyType(dict(self.progress)),
        )

    def result(self) -> StreamingResult:
        return StreamingResult(
            full_text=self.text,
            chunk_count=self.chunk_count,
            detected_files=list(self.detected_paths),
            plan=self.plan.copy() if self.plan else None,
            format=self.format,
            finish_reason=self.finish_reason,
            cancelled=self.cancelled,
            format_mismatch=self.format_mismatch,
            progress=dict(self.progress),
        )
