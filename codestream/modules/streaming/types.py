"""
Streaming data model

Shared by the stream orchestrator, the truncation analyzer and the
continuation controller:

    WireFormat       - textual convention the model chose for files + manifest
    FilePlan         - declared manifest (create/update/delete, total, hints)
    FileProgress     - per-file progress entry, status only moves forward
    GenerationMeta   - batch bookkeeping consumed by continuation
    RecoveryOutcome  - tagged result of one truncation analysis
    StreamSnapshot   - immutable view handed to observers on every update
    StreamingResult  - terminal result of one stream attempt
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Set, Tuple


DEFAULT_EXPECTED_LINES = 100


class WireFormat(str, Enum):
    """Wire formats a model may use to encode files and the manifest"""
    LEGACY_COMMENT_PLAN = "legacy"
    MANIFEST_V2 = "v2"
    DELIMITER_MARKER = "marker"
    BARE_COMMENT = "bare_comment"
    UNKNOWN = "unknown"

    @property
    def is_json(self) -> bool:
        return self in (WireFormat.LEGACY_COMMENT_PLAN, WireFormat.MANIFEST_V2)


class FileAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class FileStatus(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETE = "complete"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    FileStatus.PENDING: 0,
    FileStatus.STREAMING: 1,
    FileStatus.COMPLETE: 2,
}


class FinishReason(str, Enum):
    """How the transport ended the stream"""
    STOP = "stop"
    LENGTH = "length"
    UNKNOWN = "unknown"


@dataclass
class FilePlan:
    """
    Declared manifest for one generation attempt.

    `create` and `update` entries are unioned into `to_create`; `updated`
    only remembers which of them were declared as updates. `completed` and
    the line-count hints are mutable bookkeeping and excluded from equality,
    so a plan parsed from a prefix equals the plan parsed from the full text.
    """
    to_create: List[str] = field(default_factory=list)
    to_delete: List[str] = field(default_factory=list)
    total: int = 0
    updated: Set[str] = field(default_factory=set)
    completed: Set[str] = field(default_factory=set, compare=False)
    expected_line_counts: Dict[str, int] = field(default_factory=dict, compare=False)

    def expected_lines(self, path: str, default: int = DEFAULT_EXPECTED_LINES) -> int:
        lines = self.expected_line_counts.get(path)
        return lines if lines and lines > 0 else default

    def action_for(self, path: str) -> FileAction:
        if path in self.to_delete:
            return FileAction.DELETE
        if path in self.updated:
            return FileAction.UPDATE
        return FileAction.CREATE

    def mark_completed(self, path: str) -> bool:
        """Record a completed file; paths outside `to_create` are ignored"""
        if path in self.to_create and path not in self.completed:
            self.completed.add(path)
            return True
        return False

    def merge_line_counts(self, counts: Mapping[str, int]) -> None:
        for path, lines in counts.items():
            if lines > 0:
                self.expected_line_counts[path] = lines

    @property
    def remaining(self) -> List[str]:
        return [p for p in self.to_create if p not in self.completed]

    @property
    def is_empty(self) -> bool:
        return not self.to_create and not self.to_delete

    def copy(self) -> "FilePlan":
        return FilePlan(
            to_create=list(self.to_create),
            to_delete=list(self.to_delete),
            total=self.total,
            updated=set(self.updated),
            completed=set(self.completed),
            expected_line_counts=dict(self.expected_line_counts),
        )


@dataclass(frozen=True)
class ScanResult:
    """Boundary scan of one file inside the accumulated text"""
    status: FileStatus
    received_chars: int = 0
    percent: int = 0
    content_start: Optional[int] = None
    content_end: Optional[int] = None


@dataclass(frozen=True)
class FileProgress:
    path: str
    action: FileAction = FileAction.CREATE
    expected_lines: int = DEFAULT_EXPECTED_LINES
    received_chars: int = 0
    percent: int = 0
    status: FileStatus = FileStatus.PENDING

    def advance(self, status: FileStatus, received_chars: int, percent: int) -> "FileProgress":
        """Return the updated entry; a status never moves backward"""
        if status.rank < self.status.rank:
            return self
        if status == FileStatus.COMPLETE:
            percent = 100
        else:
            percent = min(99, max(percent, self.percent if status == self.status else 0))
        received_chars = max(received_chars, self.received_chars)
        if (status, received_chars, percent) == (self.status, self.received_chars, self.percent):
            return self
        return replace(self, status=status, received_chars=received_chars, percent=percent)


@dataclass
class GenerationMeta:
    total_planned: int = 0
    files_this_batch: List[str] = field(default_factory=list)
    completed_files: List[str] = field(default_factory=list)
    remaining_files: List[str] = field(default_factory=list)
    batch_index: int = 1
    total_batches: int = 1
    is_complete: bool = True

    @property
    def needs_continuation(self) -> bool:
        return not self.is_complete and bool(self.remaining_files)


class RecoveryAction(str, Enum):
    NONE = "none"
    CONTINUATION = "continuation"
    SUCCESS = "success"
    PARTIAL = "partial"


@dataclass(frozen=True)
class RecoveryOutcome:
    """Result of one truncation analysis. Build with the classmethods."""
    action: RecoveryAction
    files: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    missing: Tuple[str, ...] = ()
    meta: Optional[GenerationMeta] = None
    collisions: Tuple[str, ...] = ()
    message: str = ""

    @classmethod
    def none(cls, message: str = "") -> "RecoveryOutcome":
        return cls(RecoveryAction.NONE, message=message)

    @classmethod
    def continuation(cls, files: Dict[str, str], meta: GenerationMeta,
                     collisions: Tuple[str, ...] = ()) -> "RecoveryOutcome":
        return cls(
            RecoveryAction.CONTINUATION,
            files=MappingProxyType(dict(files)),
            missing=tuple(meta.remaining_files),
            meta=meta,
            collisions=collisions,
            message=f"{len(files)} files recovered, {len(meta.remaining_files)} remaining",
        )

    @classmethod
    def success(cls, files: Dict[str, str],
                collisions: Tuple[str, ...] = ()) -> "RecoveryOutcome":
        return cls(
            RecoveryAction.SUCCESS,
            files=MappingProxyType(dict(files)),
            collisions=collisions,
            message=f"{len(files)} files",
        )

    @classmethod
    def partial(cls, files: Dict[str, str], missing: List[str],
                collisions: Tuple[str, ...] = (), message: str = "") -> "RecoveryOutcome":
        return cls(
            RecoveryAction.PARTIAL,
            files=MappingProxyType(dict(files)),
            missing=tuple(missing),
            collisions=collisions,
            message=message or f"{len(files)} files recovered, {len(missing)} missing",
        )

    @property
    def has_files(self) -> bool:
        return bool(self.files)


class StreamState(str, Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    PLAN_PENDING = "plan_pending"
    PLAN_KNOWN = "plan_known"
    STREAM_ENDED = "stream_ended"


@dataclass(frozen=True)
class StreamSnapshot:
    """Read-only view of the orchestrator; safe to hand to observers"""
    status: StreamState
    format: WireFormat
    received_chars: int
    detected_paths: Tuple[str, ...]
    plan: Optional[FilePlan]
    progress: Mapping[str, FileProgress]

    @property
    def completed_count(self) -> int:
        return sum(1 for p in self.progress.values() if p.status == FileStatus.COMPLETE)


@dataclass
class StreamingResult:
    full_text: str
    chunk_count: int
    detected_files: List[str]
    plan: Optional[FilePlan]
    format: WireFormat
    finish_reason: FinishReason = FinishReason.UNKNOWN
    cancelled: bool = False
    format_mismatch: bool = False
    progress: Dict[str, FileProgress] = field(default_factory=dict)
