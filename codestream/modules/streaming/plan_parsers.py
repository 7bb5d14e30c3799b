"""
Plan Parsers - extract the declared file manifest from a partial response

Every parser shares one contract: given accumulated text return a FilePlan,
or None when there is not enough information yet. Parse failures are never
raised; a malformed manifest falls back to narrower regex extraction.

Supported manifests:
- Legacy:  // PLAN: {"create":[...],"update":[...],"delete":[...],"total":N,"sizes":{...}}
- V2:      {"meta":{...},"plan":{"create":[],...},"manifest":[{"path":..,"lines":N}],...}
- Marker:  <!-- PLAN --> create: a, b / update: c / sizes: a:25 <!-- /PLAN -->
- Bare:    // src/App.tsx  headers, one per file
"""

import json
import re
from typing import Dict, List, Optional

from codestream.core.logging_config import logger
from codestream.modules.streaming.types import FilePlan, WireFormat
from codestream.utils.paths import normalize_source_path, unique_ordered


RE_LEGACY_PLAN_START = re.compile(r'//\s*PLAN:\s*(?=\{)')
RE_V2_PLAN_KEY = re.compile(r'"plan"\s*:\s*(?=\{)')
RE_TOTAL_WITHOUT_VALUE = re.compile(r'"total"\s*:\s*(?=[}\]])')
RE_TRAILING_COMMA = re.compile(r',\s*([}\]])')
RE_QUOTED = re.compile(r'"([^"]+)"')
RE_MANIFEST_KEY = re.compile(r'"manifest"\s*:\s*\[')
RE_MANIFEST_ENTRY = re.compile(r'\{\s*"path"\s*:\s*"([^"]+)"[^}]*"lines"\s*:\s*(\d+)')
RE_BATCH_OBJECT = re.compile(r'"batch"\s*:\s*\{([^}]*)\}')

RE_MARKER_PLAN_BLOCK = re.compile(r'<!--\s*PLAN\s*-->([\s\S]*?)<!--\s*/PLAN\s*-->')
RE_MARKER_MANIFEST_BLOCK = re.compile(r'<!--\s*MANIFEST\s*-->([\s\S]*?)<!--\s*/MANIFEST\s*-->')

RE_BARE_HEADER = re.compile(r'//\s*((?:src/)?[\w./-]+\.(?:tsx?|jsx?|css|json|md))\s*\n')


# ============================================================================
# Shared scanning helpers
# ============================================================================

def find_balanced_end(text: str, start: int) -> Optional[int]:
    """
    Index just past the brace that closes the object opening at `start`.

    String-literal aware: a quote toggles literal mode and a backslash inside
    a literal escapes the next character. Returns None while unbalanced.
    """
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == '{':
            depth += 1
        elif ch == '}':
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def _clean_json_object(raw: str) -> str:
    raw = RE_TOTAL_WITHOUT_VALUE.sub('', raw)
    return RE_TRAILING_COMMA.sub(r'\1', raw)


def _load_object(raw: str) -> Optional[dict]:
    try:
        data = json.loads(_clean_json_object(raw))
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _string_list(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str) and v]


def _regex_array(text: str, key: str) -> List[str]:
    match = re.search(r'"%s"\s*:\s*\[([^\]]*)\]' % re.escape(key), text)
    if not match:
        return []
    return RE_QUOTED.findall(match.group(1))


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


def _build_plan(create: List[str], update: List[str], delete: List[str],
                total: int = 0, sizes: Optional[Dict[str, int]] = None,
                completed: Optional[List[str]] = None) -> FilePlan:
    to_create = unique_ordered(list(create) + list(update))
    plan = FilePlan(
        to_create=to_create,
        to_delete=unique_ordered(delete),
        total=total or len(to_create),
        updated={p for p in update if p in to_create},
    )
    if sizes:
        plan.merge_line_counts(sizes)
    for path in completed or []:
        plan.mark_completed(path)
    return plan


def _coerce_sizes(raw) -> Dict[str, int]:
    sizes: Dict[str, int] = {}
    if isinstance(raw, dict):
        for path, lines in raw.items():
            try:
                sizes[str(path)] = int(lines)
            except (TypeError, ValueError):
                continue
    return sizes


# ============================================================================
# JSON v2
# ============================================================================

def _manifest_line_counts(text: str) -> Dict[str, int]:
    match = RE_MANIFEST_KEY.search(text)
    if not match:
        return {}
    return {path: int(lines) for path, lines in RE_MANIFEST_ENTRY.findall(text, match.end())}


def _batch_completed(text: str) -> List[str]:
    match = RE_BATCH_OBJECT.search(text)
    if not match:
        return []
    return _regex_array(match.group(1), 'completed')


def parse_v2_plan(text: str) -> Optional[FilePlan]:
    """Plan from the root-level `"plan"` object once its braces balance"""
    match = RE_V2_PLAN_KEY.search(text)
    if not match:
        return None
    end = find_balanced_end(text, match.end())
    if end is None:
        return None

    raw = text[match.end():end]
    data = _load_object(raw)
    if data is not None:
        create = _string_list(data.get('create'))
        update = _string_list(data.get('update'))
        delete = _string_list(data.get('delete'))
    else:
        create = _regex_array(raw, 'create')
        update = _regex_array(raw, 'update')
        delete = _regex_array(raw, 'delete')

    if not create and not update:
        return None

    plan = _build_plan(
        create, update, delete,
        sizes=_manifest_line_counts(text),
        completed=_batch_completed(text),
    )
    logger.debug(f"[PlanParser] v2 plan: {len(plan.to_create)} files, {len(plan.to_delete)} deletes")
    return plan


# ============================================================================
# Legacy comment plan (also loose JSON without the comment)
# ============================================================================

def parse_legacy_plan(text: str) -> Optional[FilePlan]:
    v2_plan = parse_v2_plan(text)
    if v2_plan is not None:
        return v2_plan

    match = RE_LEGACY_PLAN_START.search(text)
    start = match.end() if match else text.find('{')
    if start < 0:
        return None

    end = find_balanced_end(text, start)
    data = _load_object(text[start:end]) if end is not None else None

    if data is not None:
        create = _string_list(data.get('create'))
        update = _string_list(data.get('update'))
        if create or update:
            total = data.get('total')
            return _build_plan(
                create, update, _string_list(data.get('delete')),
                total=total if isinstance(total, int) and total > 0 else 0,
                sizes=_coerce_sizes(data.get('sizes')),
            )

    # Manifest not closed yet or malformed
    create = _regex_array(text, 'create')
    update = _regex_array(text, 'update')
    if create or update:
        return _build_plan(create, update, [])
    return None


# ============================================================================
# Delimiter markers
# ============================================================================

def _marker_manifest_line_counts(text: str) -> Dict[str, int]:
    match = RE_MARKER_MANIFEST_BLOCK.search(text)
    if not match:
        return {}
    counts: Dict[str, int] = {}
    for line in match.group(1).strip().split('\n'):
        line = line.strip()
        if not line.startswith('|') or line.startswith('| File') or line.startswith('|-'):
            continue
        cells = [c.strip() for c in line.split('|') if c.strip()]
        if len(cells) < 5:
            continue
        try:
            counts[cells[0]] = int(cells[2])
        except ValueError:
            continue
    return counts


def _marker_sizes_line(value: str) -> Dict[str, int]:
    sizes: Dict[str, int] = {}
    for pair in _split_list(value):
        path, sep, lines = pair.rpartition(':')
        if not sep or not path.strip():
            continue
        try:
            sizes[path.strip()] = int(lines.strip())
        except ValueError:
            continue
    return sizes


def parse_marker_plan(text: str) -> Optional[FilePlan]:
    match = RE_MARKER_PLAN_BLOCK.search(text)
    if not match:
        return None

    create: List[str] = []
    update: List[str] = []
    delete: List[str] = []
    sizes: Dict[str, int] = {}
    for line in match.group(1).strip().split('\n'):
        line = line.strip()
        if line.startswith('create:'):
            create = _split_list(line[7:])
        elif line.startswith('update:'):
            update = _split_list(line[7:])
        elif line.startswith('delete:'):
            delete = _split_list(line[7:])
        elif line.startswith('sizes:'):
            sizes.update(_marker_sizes_line(line[6:]))

    if not create and not update and not delete:
        return None

    sizes.update({p: n for p, n in _marker_manifest_line_counts(text).items() if p not in sizes})
    return _build_plan(create, update, delete, total=len(create) + len(update), sizes=sizes)


# ============================================================================
# Bare comment headers
# ============================================================================

def bare_comment_paths(text: str, source_root: Optional[str] = None) -> List[str]:
    return unique_ordered(
        normalize_source_path(m.group(1), source_root) for m in RE_BARE_HEADER.finditer(text)
    )


def parse_bare_comment_plan(text: str) -> Optional[FilePlan]:
    files = bare_comment_paths(text)
    if not files:
        return None
    return _build_plan(files, [], [])


# ============================================================================
# Dispatch
# ============================================================================

_PARSERS = {
    WireFormat.LEGACY_COMMENT_PLAN: parse_legacy_plan,
    WireFormat.MANIFEST_V2: parse_v2_plan,
    WireFormat.DELIMITER_MARKER: parse_marker_plan,
    WireFormat.BARE_COMMENT: parse_bare_comment_plan,
}


def parse_plan(text: str, fmt: WireFormat) -> Optional[FilePlan]:
    parser = _PARSERS.get(fmt)
    if parser is None:
        return None
    return parser(text)


def extract_line_counts(text: str, fmt: WireFormat) -> Dict[str, int]:
    """
    Size hints only. The V2 manifest array usually arrives after the plan
    object, so callers refresh hints on an already-known plan with this.
    """
    if fmt == WireFormat.MANIFEST_V2:
        return _manifest_line_counts(text)
    if fmt == WireFormat.LEGACY_COMMENT_PLAN:
        counts = _manifest_line_counts(text)
        if counts:
            return counts
        plan = parse_legacy_plan(text)
        return dict(plan.expected_line_counts) if plan else {}
    if fmt == WireFormat.DELIMITER_MARKER:
        plan = parse_marker_plan(text)
        return dict(plan.expected_line_counts) if plan else {}
    return {}
