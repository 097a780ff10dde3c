# src/contract/json_cleaner.py — v1
"""Lenient JSON extraction for model-produced documents.

Strips markdown code fences, // and /* */ comments and trailing commas.
String literals are left untouched.
"""

from __future__ import annotations

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n(.*?)\n```\s*$", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


def strip_fences(text: str) -> str:
    match = _FENCE_RE.match(text.strip())
    return match.group(1) if match else text


def strip_comments(text: str) -> str:
    """Remove comments outside of string literals."""
    out: list[str] = []
    i = 0
    in_string = False
    n = len(text)
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end == -1 else end + 2
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def clean_json(text: str) -> str:
    cleaned = strip_comments(strip_fences(text))
    return _TRAILING_COMMA_RE.sub(r"\1", cleaned).strip()


def load_lenient(text: str) -> Any:
    """Parse JSON, retrying on the cleaned text.

    Raises:
        json.JSONDecodeError: If the document is not JSON even after cleaning.
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return json.loads(clean_json(text))
