"""
Format Detector - classifies a streaming response into one wire format

Signatures are checked in a fixed order because the formats overlap in
their character content (a marker response may quote JSON, a JSON document
may contain `// path` comments inside file contents).
"""

import re

from codestream.core.config import settings
from codestream.modules.streaming.types import WireFormat


RE_MARKER_FILE = re.compile(r'<!--\s*FILE:')
RE_MARKER_PLAN = re.compile(r'<!--\s*PLAN\s*-->')
RE_MARKER_EXPLANATION = re.compile(r'<!--\s*EXPLANATION\s*-->')
RE_LEGACY_PLAN = re.compile(r'//\s*PLAN:')
RE_LOOSE_JSON_KEY = re.compile(r'\{\s*"[\w./-]+"\s*:')
RE_BARE_COMMENT_HEADER = re.compile(r'//\s*(?:src/)?[\w./-]+\.(?:tsx?|jsx?|css)\s*\n')

BOM = '\ufeff'


def is_marker_format(text: str) -> bool:
    """FILE markers anywhere, or a PLAN block together with an EXPLANATION block"""
    if RE_MARKER_FILE.search(text):
        return True
    return bool(RE_MARKER_PLAN.search(text) and RE_MARKER_EXPLANATION.search(text))


def detect_format(
    text: str,
    min_chars: int = None,
    window_chars: int = None,
) -> WireFormat:
    """
    Classify accumulated text.

    Returns UNKNOWN for text shorter than `min_chars`; the caller retries on
    the next chunk. First match wins.
    """
    if min_chars is None:
        min_chars = settings.STREAM_MIN_DETECT_CHARS
    if window_chars is None:
        window_chars = settings.STREAM_DETECT_WINDOW_CHARS

    if not text or len(text) < min_chars:
        return WireFormat.UNKNOWN

    if is_marker_format(text):
        return WireFormat.DELIMITER_MARKER

    if RE_LEGACY_PLAN.search(text):
        return WireFormat.LEGACY_COMMENT_PLAN

    trimmed = text.replace(BOM, '').strip()
    if trimmed.startswith('{') and ('"meta"' in trimmed or '"plan"' in trimmed):
        return WireFormat.MANIFEST_V2

    if RE_LOOSE_JSON_KEY.search(text[:window_chars]):
        return WireFormat.LEGACY_COMMENT_PLAN

    if RE_BARE_COMMENT_HEADER.search(text):
        return WireFormat.BARE_COMMENT

    return WireFormat.UNKNOWN


class FormatDetector:
    """
    Per-stream detector that latches the first non-UNKNOWN verdict.

    Construct one per generation attempt.
    """

    def __init__(self, min_chars: int = None, window_chars: int = None):
        self.min_chars = settings.STREAM_MIN_DETECT_CHARS if min_chars is None else min_chars
        self.window_chars = settings.STREAM_DETECT_WINDOW_CHARS if window_chars is None else window_chars
        self.format = WireFormat.UNKNOWN
        self.attempts = 0

    @property
    def is_settled(self) -> bool:
        return self.format != WireFormat.UNKNOWN

    def update(self, text: str) -> WireFormat:
        if self.is_settled:
            return self.format
        self.attempts += 1
        self.format = detect_format(text, self.min_chars, self.window_chars)
        return self.format
