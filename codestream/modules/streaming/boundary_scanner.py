"""
Boundary Scanner - per-file progress from accumulated text

Pure functions. Given the text received so far, a file path and a size hint,
report how much of the file's content has arrived and whether its closing
boundary has been seen:

- JSON formats: the file is a string value keyed by its path. Scan from the
  opening quote to the first unescaped closing quote.
- Delimiter markers: <!-- FILE:path --> ... <!-- /FILE:path -->
- Bare comments: a `// path` header up to the next header. The last section
  only closes when the stream has ended (`final=True`).
"""

import json
import re
from typing import Optional

from codestream.core.config import settings
from codestream.modules.streaming.plan_parsers import RE_BARE_HEADER
from codestream.modules.streaming.types import FileStatus, ScanResult, WireFormat
from codestream.utils.paths import normalize_source_path


_JSON_ESCAPES = {
    '"': '"',
    '\\': '\\',
    '/': '/',
    'b': '\b',
    'f': '\f',
    'n': '\n',
    'r': '\r',
    't': '\t',
}


def calculate_percent(received_chars: int, expected_lines: int, complete: bool,
                      chars_per_line: int = None) -> int:
    """100 only once complete; otherwise capped at 99"""
    if complete:
        return 100
    if chars_per_line is None:
        chars_per_line = settings.STREAM_CHARS_PER_LINE
    expected_chars = max(1, expected_lines) * max(1, chars_per_line)
    # Halves round up
    return min(99, int(received_chars / expected_chars * 100 + 0.5))


def _result(status: FileStatus, received: int, expected_lines: int,
            start: Optional[int] = None, end: Optional[int] = None) -> ScanResult:
    return ScanResult(
        status=status,
        received_chars=received,
        percent=calculate_percent(received, expected_lines, status == FileStatus.COMPLETE),
        content_start=start,
        content_end=end,
    )


def scan_json_file(text: str, path: str, expected_lines: int) -> ScanResult:
    key = re.compile(re.escape(json.dumps(path)) + r'\s*:\s*"')
    match = key.search(text)
    if not match:
        return ScanResult(status=FileStatus.PENDING)

    start = match.end()
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if escaped:
            escaped = False
        elif ch == '\\':
            escaped = True
        elif ch == '"':
            return _result(FileStatus.COMPLETE, i - start, expected_lines, start, i)

    return _result(FileStatus.STREAMING, len(text) - start, expected_lines, start, len(text))


def scan_marker_file(text: str, path: str, expected_lines: int) -> ScanResult:
    escaped_path = re.escape(path)
    open_match = re.search(r'<!--\s*FILE:\s*' + escaped_path + r'\s*-->', text)
    if not open_match:
        return ScanResult(status=FileStatus.PENDING)

    start = open_match.end()
    close_re = re.compile(r'<!--\s*/FILE:\s*' + escaped_path + r'\s*-->')
    close_match = close_re.search(text, start)
    if close_match:
        end = close_match.start()
        return _result(FileStatus.COMPLETE, end - start, expected_lines, start, end)

    return _result(FileStatus.STREAMING, len(text) - start, expected_lines, start, len(text))


def scan_bare_comment_file(text: str, path: str, expected_lines: int,
                           final: bool = False) -> ScanResult:
    target = normalize_source_path(path)
    headers = list(RE_BARE_HEADER.finditer(text))
    for index, header in enumerate(headers):
        if normalize_source_path(header.group(1)) != target:
            continue
        start = header.end()
        if index + 1 < len(headers):
            end = headers[index + 1].start()
            return _result(FileStatus.COMPLETE, end - start, expected_lines, start, end)
        status = FileStatus.COMPLETE if final else FileStatus.STREAMING
        return _result(status, len(text) - start, expected_lines, start, len(text))

    return ScanResult(status=FileStatus.PENDING)


def scan_file(text: str, path: str, fmt: WireFormat, expected_lines: int = None,
              final: bool = False) -> ScanResult:
    """Dispatch on wire format. UNKNOWN always reports PENDING."""
    if expected_lines is None:
        expected_lines = settings.STREAM_DEFAULT_EXPECTED_LINES
    if fmt.is_json:
        return scan_json_file(text, path, expected_lines)
    if fmt == WireFormat.DELIMITER_MARKER:
        return scan_marker_file(text, path, expected_lines)
    if fmt == WireFormat.BARE_COMMENT:
        return scan_bare_comment_file(text, path, expected_lines, final=final)
    return ScanResult(status=FileStatus.PENDING)


# ============================================================================
# Content extraction
# ============================================================================

def decode_json_fragment(raw: str) -> str:
    """
    Decode the body of a JSON string literal that may be cut off.

    An escape sequence interrupted by the end of input is dropped.
    """
    units = []
    i = 0
    n = len(raw)
    while i < n:
        ch = raw[i]
        if ch != '\\':
            units.append(ch)
            i += 1
            continue
        if i + 1 >= n:
            break
        nxt = raw[i + 1]
        if nxt == 'u':
            hex_digits = raw[i + 2:i + 6]
            if len(hex_digits) < 4:
                break
            try:
                units.append(chr(int(hex_digits, 16)))
            except ValueError:
                units.append(raw[i:i + 6])
            i += 6
            continue
        units.append(_JSON_ESCAPES.get(nxt, nxt))
        i += 2

    decoded = ''.join(units)
    # Recombine surrogate pairs produced by \uXXXX escapes
    return decoded.encode('utf-16', 'surrogatepass').decode('utf-16', 'replace')


def extract_content(text: str, fmt: WireFormat, result: ScanResult) -> Optional[str]:
    """Content that has arrived for a scanned file, decoded for JSON formats"""
    if result.content_start is None or result.content_end is None:
        return None
    raw = text[result.content_start:result.content_end]
    if fmt.is_json:
        return decode_json_fragment(raw)
    return raw.strip('\n')
