"""
Unit Tests for Boundary Scanner

Includes the round-trip property: a file map encoded in any wire format is
recovered exactly by detection, plan parsing and scanning.
"""
import pytest

from codestream.modules.streaming.boundary_scanner import (
    calculate_percent,
    decode_json_fragment,
    extract_content,
    scan_file,
)
from codestream.modules.streaming.format_detector import detect_format
from codestream.modules.streaming.plan_parsers import parse_plan
from codestream.modules.streaming.types import FileStatus, WireFormat
from tests.mocks.mock_claude import (
    SAMPLE_FILES,
    encode_bare,
    encode_legacy,
    encode_marker,
    encode_v2,
)


class TestCalculatePercent:
    """Test progress estimation"""

    def test_complete_is_always_100(self):
        assert calculate_percent(0, 100, complete=True) == 100

    def test_capped_at_99_while_streaming(self):
        assert calculate_percent(10_000, 1, complete=False, chars_per_line=40) == 99

    def test_estimate_from_line_hint(self):
        # 10 lines * 40 chars = 400 expected chars
        assert calculate_percent(200, 10, complete=False, chars_per_line=40) == 50

    def test_halves_round_up(self):
        # 2 of 400 chars is 0.5%, 10 of 400 is 2.5%
        assert calculate_percent(2, 10, complete=False, chars_per_line=40) == 1
        assert calculate_percent(10, 10, complete=False, chars_per_line=40) == 3


class TestJsonScan:
    """Test escape-aware scanning of JSON string values"""

    def test_pending_until_key_appears(self):
        result = scan_file('{"files": {', "src/App.tsx", WireFormat.LEGACY_COMMENT_PLAN)
        assert result.status == FileStatus.PENDING
        assert result.percent == 0

    def test_streaming_without_closing_quote(self):
        text = '{"files": {"src/App.tsx": "export default'
        result = scan_file(text, "src/App.tsx", WireFormat.MANIFEST_V2)
        assert result.status == FileStatus.STREAMING
        assert result.received_chars == len("export default")
        assert result.percent < 100

    def test_escaped_quote_does_not_close(self):
        text = '{"src/App.tsx": "const s = \\"hi\\";'
        result = scan_file(text, "src/App.tsx", WireFormat.LEGACY_COMMENT_PLAN)
        assert result.status == FileStatus.STREAMING

    def test_complete_on_closing_quote(self):
        text = '{"src/App.tsx": "const s = \\"hi\\";", "src/b.ts": "'
        result = scan_file(text, "src/App.tsx", WireFormat.LEGACY_COMMENT_PLAN)
        assert result.status == FileStatus.COMPLETE
        assert result.percent == 100
        assert extract_content(text, WireFormat.LEGACY_COMMENT_PLAN, result) == 'const s = "hi";'

    def test_plan_array_entry_is_not_content(self):
        """Test a path listed in the plan is not mistaken for its content key"""
        text = '{"plan": {"create": ["src/App.tsx", "src/b.ts"]}}'
        result = scan_file(text, "src/App.tsx", WireFormat.MANIFEST_V2)
        assert result.status == FileStatus.PENDING


class TestMarkerScan:
    """Test delimiter marker scanning"""

    def test_open_marker_streams(self):
        text = "<!-- FILE:src/App.tsx -->\nexport default"
        result = scan_file(text, "src/App.tsx", WireFormat.DELIMITER_MARKER, expected_lines=10)
        assert result.status == FileStatus.STREAMING

    def test_closing_marker_completes(self):
        text = "<!-- FILE:src/App.tsx -->\nexport default App;\n<!-- /FILE:src/App.tsx -->"
        result = scan_file(text, "src/App.tsx", WireFormat.DELIMITER_MARKER)
        assert result.status == FileStatus.COMPLETE
        assert extract_content(text, WireFormat.DELIMITER_MARKER, result) == "export default App;"

    def test_other_files_closing_marker_is_ignored(self):
        text = (
            "<!-- FILE:src/a.tsx -->\na\n<!-- /FILE:src/a.tsx -->\n"
            "<!-- FILE:src/b.tsx -->\nb"
        )
        result = scan_file(text, "src/b.tsx", WireFormat.DELIMITER_MARKER)
        assert result.status == FileStatus.STREAMING


class TestBareCommentScan:
    """Test // path header scanning"""

    TEXT = "// src/a.tsx\nconst a = 1;\n\n// src/b.tsx\nconst b = 2;\n"

    def test_section_closed_by_next_header(self):
        result = scan_file(self.TEXT, "src/a.tsx", WireFormat.BARE_COMMENT)
        assert result.status == FileStatus.COMPLETE
        assert extract_content(self.TEXT, WireFormat.BARE_COMMENT, result) == "const a = 1;"

    def test_last_section_streams_until_final(self):
        assert scan_file(self.TEXT, "src/b.tsx", WireFormat.BARE_COMMENT).status == FileStatus.STREAMING
        final = scan_file(self.TEXT, "src/b.tsx", WireFormat.BARE_COMMENT, final=True)
        assert final.status == FileStatus.COMPLETE

    def test_cut_last_section_stays_open(self):
        """Test a section cut off mid-element is not complete without final"""
        text = (
            "// src/a.tsx\nconst a = 1;\n\n"
            "// src/App.tsx\nexport default function App() {\n  return (\n    <li key={i}>"
        )
        result = scan_file(text, "src/App.tsx", WireFormat.BARE_COMMENT, expected_lines=1)

        assert result.status == FileStatus.STREAMING
        assert result.percent == 99
        assert extract_content(text, WireFormat.BARE_COMMENT, result).endswith("<li key={i}>")

    def test_header_without_source_root_matches(self):
        text = "// a.tsx\nconst a = 1;\n// b.tsx\n"
        result = scan_file(text, "src/a.tsx", WireFormat.BARE_COMMENT)
        assert result.status == FileStatus.COMPLETE


class TestUnknownFormat:

    def test_unknown_is_pending(self):
        result = scan_file('"src/App.tsx": "x"', "src/App.tsx", WireFormat.UNKNOWN)
        assert result.status == FileStatus.PENDING


class TestDecodeJsonFragment:
    """Test decoding of possibly cut-off JSON string bodies"""

    def test_standard_escapes(self):
        assert decode_json_fragment('a\\nb\\t\\"c\\"\\\\') == 'a\nb\t"c"\\'

    def test_unicode_escape(self):
        assert decode_json_fragment('caf\\u00e9') == 'café'

    def test_surrogate_pair(self):
        assert decode_json_fragment('\\ud83d\\ude00') == '\U0001F600'

    def test_cut_escape_is_dropped(self):
        assert decode_json_fragment('abc\\') == 'abc'
        assert decode_json_fragment('abc\\u00') == 'abc'


class TestRoundTrip:
    """Test detect → plan → scan recovers every encoded file exactly"""

    @pytest.mark.parametrize("encoder,expected_format", [
        (encode_legacy, WireFormat.LEGACY_COMMENT_PLAN),
        (encode_v2, WireFormat.MANIFEST_V2),
        (encode_marker, WireFormat.DELIMITER_MARKER),
        (encode_bare, WireFormat.BARE_COMMENT),
    ])
    def test_round_trip(self, encoder, expected_format):
        text = encoder(SAMPLE_FILES)

        fmt = detect_format(text)
        assert fmt == expected_format

        plan = parse_plan(text, fmt)
        assert plan.to_create == list(SAMPLE_FILES)

        recovered = {}
        for path in plan.to_create:
            result = scan_file(text, path, fmt, plan.expected_lines(path), final=True)
            assert result.status == FileStatus.COMPLETE
            assert result.percent == 100
            recovered[path] = extract_content(text, fmt, result)

        assert recovered == SAMPLE_FILES
