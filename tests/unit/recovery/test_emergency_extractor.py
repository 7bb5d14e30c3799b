"""
Unit Tests for Emergency Extractor
"""
from codestream.modules.recovery.emergency_extractor import (
    emergency_extract,
    guess_path_from_content,
    looks_like_code,
)


APP_BLOCK = (
    "import React from 'react';\n\n"
    "export default function App() {\n  return <div>Hello</div>;\n}"
)


class TestFencedBlocks:
    """Test recovery from fenced code blocks"""

    def test_app_component_is_named_from_content(self):
        text = f"Here is the app:\n\n```tsx\n{APP_BLOCK}\n```\n\nAnd a helper:\n\n```ts\nconst x = 1;\n```\n"
        files = emergency_extract(text)

        # The short helper block is rejected
        assert files == {"src/App.tsx": APP_BLOCK}

    def test_header_comment_before_fence(self):
        code = "export function formatDate(d: Date): string {\n  return d.toISOString();\n}"
        files = emergency_extract(f"// utils/format.ts\n```ts\n{code}\n```")
        assert files == {"src/utils/format.ts": code}

    def test_header_comment_inside_fence_is_stripped(self):
        code = "export function formatDate(d: Date): string {\n  return d.toISOString();\n}"
        files = emergency_extract(f"```ts\n// src/utils/format.ts\n{code}\n```")
        assert files == {"src/utils/format.ts": code}

    def test_path_from_preceding_prose(self):
        code = "export default function Nav() {\n  return <nav>links go here</nav>;\n}"
        files = emergency_extract(f"Update `src/components/Nav.tsx`:\n\n```tsx\n{code}\n```")
        assert files == {"src/components/Nav.tsx": code}

    def test_duplicate_paths_are_numbered(self):
        text = f"```tsx\n{APP_BLOCK}\n```\n\n```tsx\n{APP_BLOCK}\n```"
        assert list(emergency_extract(text)) == ["src/App.tsx", "src/App2.tsx"]


class TestBareSections:
    """Test recovery from // path sections without fences"""

    def test_section_stops_at_prose(self):
        code = "export const greeting = 'hello from the recovered helper module';"
        text = f"Sure.\n// src/greeting.ts\n{code}\n\nCreated the helper above.\n"
        assert emergency_extract(text) == {"src/greeting.ts": code}

    def test_short_sections_are_rejected(self):
        assert emergency_extract("// src/a.ts\nconst a = 1;\n") == {}


class TestPathGuessing:

    def test_app_is_checked_first(self):
        code = "export function Header() {}\nexport default function App() {}"
        assert guess_path_from_content(code, 1) == "src/App.tsx"

    def test_hook(self):
        assert guess_path_from_content("export function useCounter() {}", 1) == "src/hooks/useCounter.ts"

    def test_component(self):
        assert guess_path_from_content("export const Sidebar = () => null;", 1) == "src/components/Sidebar.tsx"

    def test_types(self):
        assert guess_path_from_content("export interface Todo { id: string }", 1) == "src/types/index.ts"

    def test_numbered_fallback(self):
        assert guess_path_from_content("const value = compute(1, 2);", 3) == "src/recovered3.tsx"


class TestLooksLikeCode:

    def test_code(self):
        assert looks_like_code("import x from 'y';", min_chars=10)

    def test_prose(self):
        assert not looks_like_code("This paragraph only describes what the code should do.", min_chars=10)

    def test_too_short(self):
        assert not looks_like_code("const a = 1;", min_chars=50)

    def test_empty_text(self):
        assert emergency_extract("") == {}
