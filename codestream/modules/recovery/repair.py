"""
Repair utilities for truncated model output

- JSON documents: close an open string, drop a dangling key or comma, then
  close brackets in LIFO order.
- Code fragments: close a small number of open braces/brackets/parens when
  the cut happened outside any string literal.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from codestream.core.config import settings


_CODE_PAIRS = {'}': '{', ']': '[', ')': '('}
_CODE_CLOSERS = {'{': '}', '[': ']', '(': ')'}
_QUOTES = ('"', "'", '`')

_TRAILING_PATTERNS = [
    (r',\s*$', 'Removed trailing comma'),
    (r',?\s*"[^"]*"\s*:\s*$', 'Removed incomplete key-value'),
    (r',?\s*"[^"]*"\s*:\s*"[^"]*$', 'Removed partial string value'),
]


@dataclass
class BalanceState:
    balanced: bool
    in_string: bool
    brace_count: int
    bracket_count: int


@dataclass
class JsonRepairResult:
    json: str
    was_repaired: bool
    repairs: List[str] = field(default_factory=list)


def is_json_balanced(text: str) -> BalanceState:
    braces = 0
    brackets = 0
    in_string = False
    escaped = False
    for ch in text:
        if escaped:
            escaped = False
            continue
        if ch == '\\' and in_string:
            escaped = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if not in_string:
            if ch == '{':
                braces += 1
            elif ch == '}':
                braces -= 1
            elif ch == '[':
                brackets += 1
            elif ch == ']':
                brackets -= 1
    return BalanceState(
        balanced=braces == 0 and brackets == 0 and not in_string,
        in_string=in_string,
        brace_count=braces,
        bracket_count=brackets,
    )


def _open_json_stack(text: str) -> List[str]:
    stack: List[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if escaped:
            escaped = False
            continue
        if ch == '\\' and in_string:
            escaped = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch in '{[':
            stack.append(ch)
        elif ch == '}' and stack and stack[-1] == '{':
            stack.pop()
        elif ch == ']' and stack and stack[-1] == '[':
            stack.pop()
    return stack


def repair_json(text: str, max_chars: int = None) -> JsonRepairResult:
    """
    Close a truncated JSON document.

    Raises ValueError for inputs above `max_chars`; callers treat that the
    same as any other unrepairable document.
    """
    if max_chars is None:
        max_chars = settings.JSON_REPAIR_MAX_CHARS
    doc = text.strip()
    if len(doc) > max_chars:
        raise ValueError(
            f"JSON too large to repair safely ({len(doc) // 1000}KB exceeds {max_chars // 1000}KB limit)"
        )

    state = is_json_balanced(doc)
    if state.balanced:
        return JsonRepairResult(json=doc, was_repaired=False)

    repairs: List[str] = []
    if state.in_string:
        doc += '"'
        repairs.append('Closed unclosed string')

    for pattern, description in _TRAILING_PATTERNS:
        if re.search(pattern, doc):
            doc = re.sub(pattern, '', doc)
            repairs.append(description)
            break

    stack = _open_json_stack(doc)
    if stack:
        doc += ''.join('}' if opener == '{' else ']' for opener in reversed(stack))
        repairs.append(f"Closed {len(stack)} brackets")

    return JsonRepairResult(json=doc, was_repaired=True, repairs=repairs)


def repair_code_fragment(content: str, max_closers: Optional[int] = None) -> Optional[str]:
    """
    Close a truncated code fragment, or return None when that is not safe.

    Refuses fragments that end inside a string or template literal, contain a
    mismatched closer, or need more than `max_closers` closing characters.
    Line and block comments are skipped.
    """
    if max_closers is None:
        max_closers = settings.REPAIR_MAX_CLOSERS

    text = content.rstrip()
    if text.endswith(','):
        text = text[:-1].rstrip()
    if not text:
        return None

    stack: List[str] = []
    quote = None
    escaped = False
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if quote:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == quote:
                quote = None
            i += 1
            continue

        if ch == '/' and i + 1 < n and text[i + 1] == '/':
            newline = text.find('\n', i)
            i = n if newline < 0 else newline
            continue
        if ch == '/' and i + 1 < n and text[i + 1] == '*':
            end = text.find('*/', i + 2)
            if end < 0:
                return None
            i = end + 2
            continue

        if ch in _QUOTES:
            quote = ch
        elif ch in _CODE_CLOSERS:
            stack.append(ch)
        elif ch in _CODE_PAIRS:
            if not stack or stack[-1] != _CODE_PAIRS[ch]:
                return None
            stack.pop()
        i += 1

    if quote:
        return None
    if len(stack) > max_closers:
        return None
    return text + ''.join(_CODE_CLOSERS[opener] for opener in reversed(stack))
