"""
Unit Tests for JSON and code fragment repair
"""
import json

import pytest

from codestream.modules.recovery.repair import (
    is_json_balanced,
    repair_code_fragment,
    repair_json,
)


class TestIsJsonBalanced:

    def test_balanced_document(self):
        state = is_json_balanced('{"a": [1, 2], "b": "}"}')
        assert state.balanced
        assert not state.in_string

    def test_open_string_and_braces(self):
        state = is_json_balanced('{"a": {"b": "x')
        assert not state.balanced
        assert state.in_string
        assert state.brace_count == 2
        assert state.bracket_count == 0


class TestRepairJson:
    """Test closing of truncated JSON documents"""

    def test_balanced_is_untouched(self):
        result = repair_json('{"a": 1}')
        assert not result.was_repaired
        assert result.json == '{"a": 1}'

    def test_closes_nested_brackets_in_order(self):
        result = repair_json('{"a": {"b": [1, 2')
        assert result.was_repaired
        assert json.loads(result.json) == {"a": {"b": [1, 2]}}
        assert "Closed 3 brackets" in result.repairs

    def test_closes_open_string(self):
        result = repair_json('{"files": {"a.tsx": "export const')
        assert json.loads(result.json) == {"files": {"a.tsx": "export const"}}
        assert "Closed unclosed string" in result.repairs

    def test_escaped_quote_stays_inside_string(self):
        result = repair_json('{"a": "say \\"hi')
        assert json.loads(result.json) == {"a": 'say "hi'}

    def test_drops_trailing_comma(self):
        result = repair_json('{"a": 1,')
        assert json.loads(result.json) == {"a": 1}
        assert "Removed trailing comma" in result.repairs

    def test_drops_dangling_key(self):
        result = repair_json('{"a": 1, "b":')
        assert json.loads(result.json) == {"a": 1}
        assert "Removed incomplete key-value" in result.repairs

    def test_oversized_input_is_refused(self):
        with pytest.raises(ValueError):
            repair_json('{"a": "' + "x" * 100, max_chars=50)


class TestRepairCodeFragment:
    """Test closing of truncated code"""

    def test_closes_open_brace(self):
        assert repair_code_fragment("function a() {\n  return 1;") == "function a() {\n  return 1;}"

    def test_closes_in_lifo_order(self):
        assert repair_code_fragment("render(<A items={[1, 2") == "render(<A items={[1, 2]})"

    def test_complete_fragment_is_unchanged(self):
        assert repair_code_fragment("const a = () => { return 1; };") == "const a = () => { return 1; };"

    def test_trailing_comma_is_dropped(self):
        assert repair_code_fragment("const a = {\n  b: 1,") == "const a = {\n  b: 1}"

    @pytest.mark.parametrize("fragment", [
        "const s = 'abc",
        'const s = "abc',
        "const s = `abc ${x}",
    ])
    def test_open_string_is_refused(self, fragment):
        assert repair_code_fragment(fragment) is None

    def test_mismatched_closer_is_refused(self):
        assert repair_code_fragment("foo(]") is None

    def test_too_many_closers_is_refused(self):
        assert repair_code_fragment("a({[(", max_closers=3) is None
        assert repair_code_fragment("a({[", max_closers=3) == "a({[]})"

    def test_comments_are_skipped(self):
        """Test quotes and braces inside comments do not count"""
        fragment = "const a = {\n  // don't close { here\n  /* or ( here */\n  b: 1"
        assert repair_code_fragment(fragment) == fragment + "}"

    def test_unterminated_block_comment_is_refused(self):
        assert repair_code_fragment("const a = 1;\n/* half a comment") is None

    def test_empty_fragment(self):
        assert repair_code_fragment("   \n") is None
