"""
Truncation Analyzer - classifies a finished (or failed) response

    1. Too short                                  -> NONE
    2. Structured parse complete, plan satisfied  -> SUCCESS
    3. Per-file boundary scan + light repair
    4. Some files recovered, some missing         -> CONTINUATION
    5. Nothing missing                            -> SUCCESS, or PARTIAL if repaired
    6. Nothing recovered                          -> emergency extraction -> PARTIAL
    7. Emergency extraction found nothing         -> NONE

The analyzer is a pure function of (text, plan, format, existing files):
running it twice on the same input yields the same outcome.
"""

import math
from typing import Dict, List, Mapping, Optional, Tuple

from codestream.core.config import settings
from codestream.core.logging_config import logger
from codestream.modules.recovery.emergency_extractor import emergency_extract
from codestream.modules.recovery.repair import repair_code_fragment
from codestream.modules.recovery.response_parser import ParsedResponse, parse_response
from codestream.modules.streaming.boundary_scanner import extract_content, scan_file
from codestream.modules.streaming.format_detector import detect_format
from codestream.modules.streaming.plan_parsers import bare_comment_paths, parse_plan
from codestream.modules.streaming.stream_orchestrator import RE_DISCOVER_JSON, RE_DISCOVER_MARKER
from codestream.modules.streaming.types import (
    FilePlan,
    FileStatus,
    GenerationMeta,
    RecoveryOutcome,
    WireFormat,
)
from codestream.utils.paths import unique_ordered


def _discover_paths(text: str, fmt: WireFormat) -> List[str]:
    if fmt == WireFormat.DELIMITER_MARKER:
        return unique_ordered(RE_DISCOVER_MARKER.findall(text))
    if fmt == WireFormat.BARE_COMMENT:
        return bare_comment_paths(text)
    if fmt.is_json:
        return unique_ordered(p for p in RE_DISCOVER_JSON.findall(text) if '\\' not in p)
    return []


def _collisions(files: Mapping[str, str], existing_files: Optional[Mapping[str, str]]) -> Tuple[str, ...]:
    if not existing_files:
        return ()
    return tuple(path for path in files if path in existing_files)


class TruncationAnalyzer:
    """Decides what can be salvaged from a response and what still has to be generated"""

    def __init__(self, min_chars: int = None, max_closers: int = None,
                 files_per_batch: int = None):
        self.min_chars = settings.TRUNCATION_MIN_CHARS if min_chars is None else min_chars
        self.max_closers = settings.REPAIR_MAX_CLOSERS if max_closers is None else max_closers
        self.files_per_batch = (
            settings.CONTINUATION_FILES_PER_BATCH if files_per_batch is None else files_per_batch
        )

    def analyze(
        self,
        text: str,
        plan: Optional[FilePlan] = None,
        fmt: WireFormat = WireFormat.UNKNOWN,
        existing_files: Optional[Mapping[str, str]] = None,
        parsed: Optional[ParsedResponse] = None,
    ) -> RecoveryOutcome:
        if not text or len(text) < self.min_chars:
            outcome = RecoveryOutcome.none("Response too short to recover")
            logger.log_recovery_event(outcome.action.value, chars=len(text or ""))
            return outcome

        if fmt == WireFormat.UNKNOWN:
            fmt = detect_format(text)
        if plan is None and fmt != WireFormat.UNKNOWN:
            plan = parse_plan(text, fmt)

        outcome = self._structured(text, plan, fmt, existing_files, parsed)
        if outcome is None:
            outcome = self._per_file(text, plan, fmt, existing_files)
        if outcome is None:
            outcome = self._emergency(text, plan, existing_files)

        logger.log_recovery_event(
            outcome.action.value,
            recovered=len(outcome.files),
            missing=len(outcome.missing),
            format=fmt.value,
            chars=len(text),
        )
        return outcome

    # ------------------------------------------------------------------

    def _structured(self, text: str, plan: Optional[FilePlan], fmt: WireFormat,
                    existing_files: Optional[Mapping[str, str]],
                    parsed: Optional[ParsedResponse]) -> Optional[RecoveryOutcome]:
        if fmt == WireFormat.UNKNOWN:
            return None
        if parsed is None:
            # Only invoked on cut or unparseable text, so no section is assumed closed
            parsed = parse_response(text, fmt, final=False)
        if not parsed.complete or not parsed.files:
            return None
        if plan is not None:
            remaining = [p for p in plan.remaining if p not in parsed.files]
            if remaining:
                return None
        return RecoveryOutcome.success(parsed.files, _collisions(parsed.files, existing_files))

    def _per_file(self, text: str, plan: Optional[FilePlan], fmt: WireFormat,
                  existing_files: Optional[Mapping[str, str]]) -> Optional[RecoveryOutcome]:
        if fmt == WireFormat.UNKNOWN:
            return None

        targets = plan.to_create if plan is not None else _discover_paths(text, fmt)
        if not targets:
            return None

        recovered: Dict[str, str] = {}
        repaired: List[str] = []
        missing: List[str] = []
        for path in targets:
            expected = plan.expected_lines(path) if plan is not None else None
            result = scan_file(text, path, fmt, expected, final=False)
            content = extract_content(text, fmt, result)

            if result.status == FileStatus.COMPLETE and content is not None:
                recovered[path] = content
            elif result.status == FileStatus.PENDING and plan is not None and path in plan.completed:
                # Delivered by an earlier batch
                continue
            elif result.status == FileStatus.STREAMING and content:
                fixed = repair_code_fragment(content, self.max_closers)
                if fixed is not None:
                    recovered[path] = fixed
                    repaired.append(path)
                else:
                    missing.append(path)
            else:
                missing.append(path)

        if not recovered:
            return None

        collisions = _collisions(recovered, existing_files)
        if missing:
            total = plan.total if plan is not None else len(targets)
            completed = [p for p in targets if p in recovered]
            meta = GenerationMeta(
                total_planned=total,
                files_this_batch=completed,
                completed_files=completed,
                remaining_files=missing,
                batch_index=1,
                total_batches=max(1, math.ceil(total / max(1, self.files_per_batch))),
                is_complete=False,
            )
            return RecoveryOutcome.continuation(recovered, meta, collisions)

        if repaired:
            return RecoveryOutcome.partial(
                recovered, [], collisions,
                message=f"{len(recovered)} files recovered, {len(repaired)} repaired",
            )
        return RecoveryOutcome.success(recovered, collisions)

    def _emergency(self, text: str, plan: Optional[FilePlan],
                   existing_files: Optional[Mapping[str, str]]) -> RecoveryOutcome:
        files = emergency_extract(text)
        if not files:
            return RecoveryOutcome.none("Nothing could be recovered")
        missing = [p for p in plan.to_create if p not in files] if plan is not None else []
        return RecoveryOutcome.partial(
            files, missing, _collisions(files, existing_files),
            message=f"Recovered {len(files)} files from unstructured text",
        )


def analyze_truncated_response(
    text: str,
    plan: Optional[FilePlan] = None,
    fmt: WireFormat = WireFormat.UNKNOWN,
    existing_files: Optional[Mapping[str, str]] = None,
) -> RecoveryOutcome:
    return TruncationAnalyzer().analyze(text, plan, fmt, existing_files)
