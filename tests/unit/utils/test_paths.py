"""
Unit Tests for path helpers
"""
import pytest

from codestream.utils.paths import normalize_source_path, path_variants, unique_ordered


class TestNormalizeSourcePath:

    @pytest.mark.parametrize("path, expected", [
        ("App.tsx", "src/App.tsx"),
        ("components/Header.tsx", "src/components/Header.tsx"),
        ("src/App.tsx", "src/App.tsx"),
        ("./App.tsx", "src/App.tsx"),
        ("/App.tsx", "src/App.tsx"),
        ("  App.tsx ", "src/App.tsx"),
    ])
    def test_default_root(self, path, expected):
        assert normalize_source_path(path) == expected

    def test_custom_root(self):
        assert normalize_source_path("main.py", source_root="app/") == "app/main.py"
        assert normalize_source_path("app/main.py", source_root="app") == "app/main.py"

    def test_empty_root_leaves_path(self):
        assert normalize_source_path("./main.py", source_root="") == "main.py"


class TestPathVariants:

    def test_prefixed_path(self):
        assert path_variants("src/App.tsx") == ["src/App.tsx", "App.tsx"]

    def test_bare_path(self):
        assert path_variants("App.tsx") == ["App.tsx", "src/App.tsx"]


class TestUniqueOrdered:

    def test_keeps_first_seen_order(self):
        assert unique_ordered(["b", "a", "b", "", "c", "a"]) == ["b", "a", "c"]
