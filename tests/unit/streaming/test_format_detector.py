"""
Unit Tests for Format Detector
"""
import pytest

from codestream.modules.streaming.format_detector import (
    FormatDetector,
    detect_format,
    is_marker_format,
)
from codestream.modules.streaming.types import WireFormat
from tests.mocks.mock_claude import (
    SAMPLE_FILES,
    encode_bare,
    encode_legacy,
    encode_marker,
    encode_v2,
)


ENCODED = [
    (encode_legacy(SAMPLE_FILES), WireFormat.LEGACY_COMMENT_PLAN),
    (encode_v2(SAMPLE_FILES), WireFormat.MANIFEST_V2),
    (encode_marker(SAMPLE_FILES, sizes={"src/App.tsx": 10}), WireFormat.DELIMITER_MARKER),
    (encode_bare(SAMPLE_FILES), WireFormat.BARE_COMMENT),
]


class TestDetectFormat:
    """Test single-shot classification"""

    def test_short_text_is_unknown(self):
        """Test text below the minimum length is never classified"""
        assert detect_format("<!-- FILE:a.tsx -->", min_chars=50) == WireFormat.UNKNOWN

    def test_empty_text_is_unknown(self):
        assert detect_format("") == WireFormat.UNKNOWN

    def test_file_marker_wins(self):
        """Test a FILE marker classifies as marker even with JSON inside"""
        text = '<!-- FILE:src/data.json -->\n{"name": "x", "version": "1.0.0"}\n'
        assert detect_format(text, min_chars=1) == WireFormat.DELIMITER_MARKER

    def test_plan_and_explanation_blocks_are_marker(self):
        text = "<!-- PLAN -->\ncreate: a.tsx\n<!-- /PLAN -->\n<!-- EXPLANATION -->\nx\n"
        assert is_marker_format(text)
        assert detect_format(text, min_chars=1) == WireFormat.DELIMITER_MARKER

    def test_plan_block_alone_is_not_marker(self):
        assert not is_marker_format("<!-- PLAN -->\ncreate: a.tsx\n<!-- /PLAN -->")

    def test_legacy_plan_comment(self):
        text = '// PLAN: {"create":["src/App.tsx"],"total":1}\n{"files": {}}'
        assert detect_format(text, min_chars=1) == WireFormat.LEGACY_COMMENT_PLAN

    def test_v2_with_meta(self):
        text = '{"meta": {"version": 2}, "plan": {"create": ["src/App.tsx"]}}'
        assert detect_format(text, min_chars=1) == WireFormat.MANIFEST_V2

    def test_v2_with_bom(self):
        text = '\ufeff{"plan":{"create": ["src/App.tsx"]}, "files": {}}'
        assert detect_format(text, min_chars=1) == WireFormat.MANIFEST_V2

    def test_loose_json_is_legacy(self):
        """Test a bare JSON object with path keys falls back to legacy"""
        text = '{"create":["a.tsx"],"total":1}"a.tsx":"export default function A(){return null}'
        assert detect_format(text) == WireFormat.LEGACY_COMMENT_PLAN

    def test_loose_json_key_outside_window_is_ignored(self):
        text = "x" * 600 + '{"a.tsx": "y"}'
        assert detect_format(text, window_chars=500) == WireFormat.UNKNOWN

    def test_bare_comment_header(self):
        text = "// src/App.tsx\nexport default function App() {\n  return null;\n}\n"
        assert detect_format(text, min_chars=1) == WireFormat.BARE_COMMENT

    def test_prose_is_unknown(self):
        text = "Sure! Here is an overview of what the application will do for you today."
        assert detect_format(text) == WireFormat.UNKNOWN


class TestPrefixStability:
    """Test that growing prefixes settle on one format and never change"""

    @pytest.mark.parametrize("text,expected", ENCODED)
    def test_prefixes_settle_on_correct_format(self, text, expected):
        """Test every prefix after the first verdict agrees with the full document"""
        first_verdict_at = None
        for end in range(1, len(text) + 1):
            fmt = detect_format(text[:end])
            if first_verdict_at is None:
                if fmt != WireFormat.UNKNOWN:
                    first_verdict_at = end
                    assert fmt == expected
            else:
                assert fmt == expected, f"verdict changed at {end} chars"

        assert first_verdict_at is not None
        assert detect_format(text) == expected


class TestFormatDetector:
    """Test the latching per-stream detector"""

    def test_latches_first_verdict(self):
        detector = FormatDetector(min_chars=1)
        assert detector.update('// PLAN: {"create":["a.tsx"]}') == WireFormat.LEGACY_COMMENT_PLAN
        assert detector.is_settled

        # Later text that would classify differently does not change the verdict
        assert detector.update('<!-- FILE:a.tsx -->') == WireFormat.LEGACY_COMMENT_PLAN
        assert detector.attempts == 1

    def test_counts_attempts_until_settled(self):
        detector = FormatDetector(min_chars=50)
        detector.update("short")
        detector.update("still short")
        assert detector.format == WireFormat.UNKNOWN
        assert detector.attempts == 2
        assert not detector.is_settled
