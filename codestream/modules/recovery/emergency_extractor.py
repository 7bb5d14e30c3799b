"""
Emergency Extractor - last-resort recovery from unstructured text

Used when no wire format could be parsed. Two patterns, tried in order:
1. Fenced code blocks, optionally preceded by a `// path` comment
2. Bare `// path` comment sections without fences (only when pattern 1
   found nothing)

A block is accepted only when it is long enough and starts like code.
Paths are inferred from a header comment, then the prose just before the
block, then the exported name, then a numbered fallback. Every path is
normalized under the source root.
"""

import re
from typing import Dict, Optional

from codestream.core.config import settings
from codestream.core.logging_config import logger
from codestream.utils.paths import normalize_source_path


RE_FENCED_BLOCK = re.compile(
    r'(?://\s*((?:src/)?[\w./-]+\.[a-zA-Z]+)\s*\n)?'
    r'```(?:tsx?|jsx?|typescript|javascript|css|json)?[ \t]*\n([\s\S]*?)\n```'
)
RE_FIRST_LINE_PATH = re.compile(r'^//\s*((?:src/)?[\w./-]+\.[a-zA-Z]+)[ \t]*(?:\n|$)')
RE_CONTEXT_PATH = re.compile(r'((?:src/)?[\w./-]+/[\w.-]+\.[a-zA-Z]+|[\w-]+\.(?:tsx?|jsx?|css))`?:?\s*$')
RE_BARE_SECTION_HEADER = re.compile(r'//\s*((?:src/)?[\w./-]+\.(?:tsx?|jsx?|css|json|md))\s*\n')
RE_LOOKS_LIKE_CODE = re.compile(r'^(?:import|export|const|let|var|function|interface|type|class|/\*|\'use|"use)')

RE_APP_COMPONENT = re.compile(r'function\s+App\s*\(|const\s+App\s*[:=]|export\s+default\s+App\b')
RE_EXPORTED_FUNCTION = re.compile(r'export\s+(?:default\s+)?(?:function|const)\s+(\w+)')
RE_TYPE_DECLARATION = re.compile(r'^(?:export\s+)?(?:interface|type)\s+\w+', re.MULTILINE)

PROSE_END_PATTERNS = [
    re.compile(r'\n\n[A-Z][^{}\[\]()\n]*:\s*$', re.MULTILINE),
    re.compile(r'\n\n[-*•]\s+[A-Z]'),
    re.compile(r'\n\n\d+\.\s+[A-Z]'),
    re.compile(r'\n\n(?:Created|Updated|Added|Fixed|Implemented)\s'),
]

CONTEXT_WINDOW_CHARS = 100


def looks_like_code(content: str, min_chars: int = None) -> bool:
    if min_chars is None:
        min_chars = settings.EMERGENCY_MIN_BLOCK_CHARS
    return len(content) >= min_chars and bool(RE_LOOKS_LIKE_CODE.match(content))


def guess_path_from_content(code: str, index: int) -> str:
    """Derive a path from what the code exports"""
    if RE_APP_COMPONENT.search(code):
        return 'src/App.tsx'

    exported = RE_EXPORTED_FUNCTION.search(code)
    if exported:
        name = exported.group(1)
        if re.match(r'^use[A-Z]', name):
            return f"src/hooks/{name}.ts"
        if name[0].isupper():
            return f"src/components/{name}.tsx"

    if RE_TYPE_DECLARATION.search(code):
        return 'src/types/index.ts'

    return f"src/recovered{index}.tsx"


def _unique_path(path: str, files: Dict[str, str]) -> str:
    if path not in files:
        return path
    stem, dot, ext = path.rpartition('.')
    if not dot:
        stem, ext = path, ''
    counter = 2
    while True:
        candidate = f"{stem}{counter}.{ext}" if dot else f"{stem}{counter}"
        if candidate not in files:
            return candidate
        counter += 1


def _strip_header_comment(content: str) -> str:
    match = RE_FIRST_LINE_PATH.match(content)
    return content[match.end():].lstrip('\n') if match else content


def _extract_fenced(text: str, min_chars: int) -> Dict[str, str]:
    files: Dict[str, str] = {}
    index = 1
    for match in RE_FENCED_BLOCK.finditer(text):
        code = (match.group(2) or '').strip()
        header_path = match.group(1)

        first_line = RE_FIRST_LINE_PATH.match(code)
        if not header_path and first_line:
            header_path = first_line.group(1)
        code = _strip_header_comment(code).strip()

        if not looks_like_code(code, min_chars):
            continue

        path: Optional[str] = header_path
        if not path:
            context = text[max(0, match.start() - CONTEXT_WINDOW_CHARS):match.start()]
            context_match = RE_CONTEXT_PATH.search(context.rstrip())
            if context_match:
                path = context_match.group(1)
        if not path:
            path = guess_path_from_content(code, index)

        path = _unique_path(normalize_source_path(path), files)
        files[path] = code
        index += 1
    return files


def _extract_bare_sections(text: str, min_chars: int) -> Dict[str, str]:
    files: Dict[str, str] = {}
    headers = list(RE_BARE_SECTION_HEADER.finditer(text))
    for i, header in enumerate(headers):
        start = header.end()
        end = headers[i + 1].start() if i + 1 < len(headers) else len(text)
        section = text[start:end]

        for pattern in PROSE_END_PATTERNS:
            prose = pattern.search(section)
            if prose and prose.start() > 50:
                section = section[:prose.start()]
                break

        code = section.strip()
        if not looks_like_code(code, min_chars):
            continue
        path = _unique_path(normalize_source_path(header.group(1)), files)
        files[path] = code
    return files


def emergency_extract(text: str, min_chars: int = None) -> Dict[str, str]:
    """Files pulled from conversational text; empty when nothing qualifies"""
    if min_chars is None:
        min_chars = settings.EMERGENCY_MIN_BLOCK_CHARS
    if not text:
        return {}

    files = _extract_fenced(text, min_chars)
    if not files:
        files = _extract_bare_sections(text, min_chars)

    if files:
        logger.info(f"[EmergencyExtractor] Recovered {len(files)} files: {', '.join(files)}")
    return files
