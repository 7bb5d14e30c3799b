"""
Streaming pipeline: format detection, plan parsing, boundary scanning and
the per-attempt stream orchestrator
"""

from codestream.modules.streaming.types import (
    WireFormat,
    FileAction,
    FileStatus,
    FinishReason,
    FilePlan,
    FileProgress,
    ScanResult,
    GenerationMeta,
    RecoveryAction,
    RecoveryOutcome,
    StreamState,
    StreamSnapshot,
    StreamingResult,
)
from codestream.modules.streaming.format_detector import FormatDetector, detect_format
from codestream.modules.streaming.plan_parsers import parse_plan, extract_line_counts
from codestream.modules.streaming.boundary_scanner import scan_file, extract_content
from codestream.modules.streaming.completion_scheduler import (
    CompletionPolicy,
    StaggeredCompletionPolicy,
    ImmediateCompletionPolicy,
)
from codestream.modules.streaming.stream_orchestrator import StreamOrchestrator

__all__ = [
    # Data model
    'WireFormat',
    'FileAction',
    'FileStatus',
    'FinishReason',
    'FilePlan',
    'FileProgress',
    'ScanResult',
    'GenerationMeta',
    'RecoveryAction',
    'RecoveryOutcome',
    'StreamState',
    'StreamSnapshot',
    'StreamingResult',

    # Components
    'FormatDetector',
    'detect_format',
    'parse_plan',
    'extract_line_counts',
    'scan_file',
    'extract_content',
    'CompletionPolicy',
    'StaggeredCompletionPolicy',
    'ImmediateCompletionPolicy',
    'StreamOrchestrator',
]
