"""
Response Parser - full structured parse of a finished response

Handles every wire format:
- JSON (legacy and v2): BOM and markdown fence stripped, a leading
  `// PLAN:` object skipped, files taken from `files`, `fileChanges` or
  root-level path keys. Truncated documents are repaired and flagged.
- Delimiter markers: closed FILE blocks; a block left open by a following
  FILE marker is recovered, the final open block is reported incomplete.
- Bare comments: `// path` header sections.

Parse failures are recorded in `errors`, never raised.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from codestream.core.logging_config import logger
from codestream.modules.recovery.repair import repair_json
from codestream.modules.streaming.format_detector import BOM, detect_format
from codestream.modules.streaming.plan_parsers import RE_BARE_HEADER, find_balanced_end
from codestream.modules.streaming.types import GenerationMeta, WireFormat
from codestream.utils.paths import normalize_source_path, unique_ordered


RE_CODE_FENCE = re.compile(r'```(?:json)?\s*\n?([\s\S]*?)\n?```')
RE_PLAN_COMMENT = re.compile(r'^\s*//\s*PLAN:\s*')
RE_FILE_LIKE_KEY = re.compile(r'\.[a-z]+$', re.IGNORECASE)

RE_MARKER_CLOSED_FILE = re.compile(
    r'<!--\s*FILE:([\w./-]+\.[a-zA-Z]+)\s*-->([\s\S]*?)<!--\s*/FILE:\1\s*-->'
)
RE_MARKER_OPEN_FILE = re.compile(r'<!--\s*FILE:([\w./-]+\.[a-zA-Z]+)\s*-->')
RE_MARKER_ANY_FILE = re.compile(r'<!--\s*/?FILE:')
RE_MARKER_TRAILING_BLOCK = re.compile(r'<!--\s*(?:/FILE:|GENERATION_META|BATCH|PLAN|EXPLANATION)')
RE_MARKER_EXPLANATION = re.compile(r'<!--\s*EXPLANATION\s*-->([\s\S]*?)<!--\s*/EXPLANATION\s*-->')
RE_MARKER_GENERATION_META = re.compile(
    r'<!--\s*GENERATION_META\s*-->([\s\S]*?)<!--\s*/GENERATION_META\s*-->'
)
RE_MARKER_BATCH = re.compile(r'<!--\s*BATCH\s*-->([\s\S]*?)<!--\s*/BATCH\s*-->')
RE_MARKER_DELETE_LINE = re.compile(r'<!--\s*PLAN\s*-->[\s\S]*?^\s*delete:(.*)$', re.MULTILINE)


@dataclass
class ParsedResponse:
    format: WireFormat = WireFormat.UNKNOWN
    files: Dict[str, str] = field(default_factory=dict)
    explanation: str = ""
    deleted_files: List[str] = field(default_factory=list)
    generation_meta: Optional[GenerationMeta] = None
    truncated: bool = False
    incomplete_files: Dict[str, str] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        """Structurally whole: nothing truncated, nothing left open, no errors"""
        return (
            bool(self.files or self.deleted_files)
            and not self.truncated
            and not self.incomplete_files
            and not self.errors
        )


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value) or default
    except (TypeError, ValueError):
        return default


def _as_list(value: Any) -> List[str]:
    if isinstance(value, list):
        return [v for v in value if isinstance(v, str)]
    if isinstance(value, str):
        return _split_list(value)
    return []


def _as_bool(value: Any, default: bool = True) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == 'true'
    return default


def meta_from_batch(batch: Dict[str, Any], files_this_batch: List[str],
                    total_planned: int = 0) -> GenerationMeta:
    """GenerationMeta from a `batch` object or a BATCH block"""
    completed = _as_list(batch.get('completed'))
    remaining = _as_list(batch.get('remaining'))
    return GenerationMeta(
        total_planned=total_planned or len(unique_ordered(completed + remaining + files_this_batch)),
        files_this_batch=list(files_this_batch),
        completed_files=completed,
        remaining_files=remaining,
        batch_index=_as_int(batch.get('current'), 1),
        total_batches=_as_int(batch.get('total'), 1),
        is_complete=_as_bool(batch.get('isComplete', batch.get('iscomplete')), True),
    )


def meta_from_generation_meta(data: Dict[str, Any]) -> GenerationMeta:
    """GenerationMeta from a `generationMeta` object or a GENERATION_META block"""
    return GenerationMeta(
        total_planned=_as_int(data.get('totalFilesPlanned'), 0),
        files_this_batch=_as_list(data.get('filesInThisBatch')),
        completed_files=_as_list(data.get('completedFiles')),
        remaining_files=_as_list(data.get('remainingFiles')),
        batch_index=_as_int(data.get('currentBatch'), 1),
        total_batches=_as_int(data.get('totalBatches'), 1),
        is_complete=_as_bool(data.get('isComplete'), True),
    )


def _key_value_block(content: str, lower_keys: bool = False) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for line in content.strip().split('\n'):
        key, sep, value = line.strip().partition(':')
        if not sep:
            continue
        key = key.strip()
        values[key.lower() if lower_keys else key] = value.strip()
    return values


# ============================================================================
# JSON
# ============================================================================

def prepare_json_string(text: str) -> str:
    doc = text.strip().lstrip(BOM + '\u200b\u200c\u200d\u00a0')

    fence = RE_CODE_FENCE.search(doc)
    if fence:
        doc = fence.group(1).strip()

    plan = RE_PLAN_COMMENT.match(doc)
    if plan:
        brace = doc.find('{', plan.end())
        if brace >= 0:
            end = find_balanced_end(doc, brace)
            doc = doc[end:].strip() if end is not None else ''
    return doc


def _content_value(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        content = value.get('content') or value.get('code')
        return content if isinstance(content, str) else None
    return None


def _load_json(doc: str, result: ParsedResponse) -> Optional[Dict[str, Any]]:
    start = doc.find('{')
    if start < 0:
        result.errors.append('No JSON object found')
        return None
    doc = doc[start:]

    decoder = json.JSONDecoder()
    try:
        data, end = decoder.raw_decode(doc)
    except ValueError:
        pass
    else:
        if not isinstance(data, dict):
            return None
        rest = doc[end:].strip()
        # Bare manifest object followed by the document proper
        if ('create' in data or 'update' in data) and 'files' not in data and rest.startswith('{'):
            return _load_json(rest, result)
        return data

    try:
        repaired = repair_json(doc)
        data, _ = decoder.raw_decode(repaired.json)
    except ValueError as e:
        result.errors.append(f"JSON parse error: {e}")
        return None

    result.truncated = True
    result.warnings.append('JSON was repaired from truncated response')
    logger.debug(f"[ResponseParser] Repaired JSON: {', '.join(repaired.repairs)}")
    return data if isinstance(data, dict) else None


def parse_json_response(text: str, fmt: WireFormat = WireFormat.LEGACY_COMMENT_PLAN) -> ParsedResponse:
    result = ParsedResponse(format=fmt)
    data = _load_json(prepare_json_string(text), result)
    if data is None:
        return result

    files_obj = data.get('files') or data.get('fileChanges')
    if not isinstance(files_obj, dict) or not files_obj:
        root_keys = [k for k in data if RE_FILE_LIKE_KEY.search(k)]
        files_obj = {k: data[k] for k in root_keys}

    for path, value in files_obj.items():
        if '.' not in path and '/' not in path:
            continue
        content = _content_value(value)
        if content:
            result.files[path] = content

    if isinstance(data.get('explanation'), str):
        result.explanation = data['explanation']

    plan = data.get('plan') if isinstance(data.get('plan'), dict) else {}
    deleted = _as_list(data.get('deletedFiles')) or _as_list(plan.get('delete'))
    result.deleted_files = unique_ordered(deleted)

    total_planned = len(unique_ordered(_as_list(plan.get('create')) + _as_list(plan.get('update'))))
    if isinstance(data.get('batch'), dict):
        result.generation_meta = meta_from_batch(data['batch'], list(result.files), total_planned)
    elif isinstance(data.get('generationMeta'), dict):
        result.generation_meta = meta_from_generation_meta(data['generationMeta'])

    if result.generation_meta and not result.generation_meta.is_complete:
        result.truncated = True

    return result


# ============================================================================
# Delimiter markers
# ============================================================================

def parse_marker_response(text: str) -> ParsedResponse:
    result = ParsedResponse(format=WireFormat.DELIMITER_MARKER)

    closed = set()
    for match in RE_MARKER_CLOSED_FILE.finditer(text):
        path = match.group(1).strip()
        result.files[path] = match.group(2).strip('\n')
        closed.add(path)

    openings = [m for m in RE_MARKER_OPEN_FILE.finditer(text) if m.group(1).strip() not in closed]
    for opening in openings:
        path = opening.group(1).strip()
        start = opening.end()
        following = RE_MARKER_ANY_FILE.search(text, start)
        if following:
            content = text[start:following.start()].strip('\n')
            if content:
                result.files[path] = content
                result.warnings.append(f"File {path} had a missing closing marker")
            continue

        content = text[start:]
        trailing = RE_MARKER_TRAILING_BLOCK.search(content)
        if trailing:
            content = content[:trailing.start()]
        result.incomplete_files[path] = content.strip('\n')
        result.truncated = True

    explanation = RE_MARKER_EXPLANATION.search(text)
    if explanation:
        result.explanation = explanation.group(1).strip()

    delete_line = RE_MARKER_DELETE_LINE.search(text)
    if delete_line:
        result.deleted_files = _split_list(delete_line.group(1))

    generation_meta = RE_MARKER_GENERATION_META.search(text)
    batch = RE_MARKER_BATCH.search(text)
    if generation_meta:
        result.generation_meta = meta_from_generation_meta(_key_value_block(generation_meta.group(1)))
    elif batch:
        result.generation_meta = meta_from_batch(
            _key_value_block(batch.group(1), lower_keys=True), list(result.files)
        )

    if result.generation_meta and not result.generation_meta.is_complete:
        result.truncated = True

    return result


# ============================================================================
# Bare comment headers
# ============================================================================

def parse_bare_comment_response(text: str, final: bool = True) -> ParsedResponse:
    """Header sections; without `final` the last section may have been cut off"""
    result = ParsedResponse(format=WireFormat.BARE_COMMENT)
    headers = list(RE_BARE_HEADER.finditer(text))
    for index, header in enumerate(headers):
        last = index + 1 == len(headers)
        end = len(text) if last else headers[index + 1].start()
        content = text[header.end():end].strip('\n')
        if not content.strip():
            continue
        path = normalize_source_path(header.group(1))
        if last and not final:
            result.incomplete_files[path] = content
            result.truncated = True
        else:
            result.files[path] = content
    if not headers:
        result.errors.append('No file headers found')
    return result


def parse_response(text: str, fmt: WireFormat = WireFormat.UNKNOWN,
                   final: bool = True) -> ParsedResponse:
    """Structured parse of finished text; detects the format when not given.

    `final` is False when the stream did not end cleanly, which only matters
    for bare comment sections since they have no closing delimiter.
    """
    if fmt == WireFormat.UNKNOWN:
        fmt = detect_format(text, min_chars=1)

    if fmt == WireFormat.DELIMITER_MARKER:
        return parse_marker_response(text)
    if fmt.is_json:
        return parse_json_response(text, fmt)
    if fmt == WireFormat.BARE_COMMENT:
        return parse_bare_comment_response(text, final=final)

    result = ParsedResponse()
    result.errors.append('Unrecognized response format')
    return result
