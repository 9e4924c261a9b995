"""Detect review requests in PR descriptions and comments."""

from __future__ import annotations

import re

_FENCED_CODE_RE = re.compile(r"```.*?```", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`[^`\n]*`")

_REQUEST_PATTERNS = [
    re.compile(r"@code-?review\b", re.IGNORECASE),
    re.compile(r"@code[_\s]review\b", re.IGNORECASE),
    re.compile(r"\bcode\s?review\s(?:please|plz)\b", re.IGNORECASE),
    re.compile(r"\breview\smy\scode\b", re.IGNORECASE),
    re.compile(r"\bai\s?review\b", re.IGNORECASE),
]


def strip_code(text: str) -> str:
    """Remove fenced blocks and inline code spans, which never count as requests."""
    return _INLINE_CODE_RE.sub("", _FENCED_CODE_RE.sub("", text))


def detect_review_request(text: str | None) -> bool:
    if not text:
        return False
    prose = strip_code(text)
    return any(p.search(prose) for p in _REQUEST_PATTERNS)
