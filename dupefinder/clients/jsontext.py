"""Extracting JSON objects from LLM chat completions."""

from __future__ import annotations

import json
import re
from typing import Any

FENCE_RE = re.compile(r"^\s*```(?:json|JSON)?\s*|\s*```\s*$")
LINE_COMMENT_RE = re.compile(r"(?m)^\s*//.*$|(?<=[,\[{])\s*//[^\n]*")
TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
CITATION_RE = re.compile(r"\[\d+\]")
FANCY_QUOTES = str.maketrans({"“": '"', "”": '"', "‘": "'", "’": "'"})


def strip_code_fences(content: str) -> str:
    return FENCE_RE.sub("", content.strip())


def _outer_object(content: str) -> str:
    start = content.find("{")
    end = content.rfind("}")
    if start == -1 or end <= start:
        return content
    return content[start : end + 1]


def local_cleanup(content: str) -> str:
    """Fix the usual defects: prose around the object, comments, citations, fancy quotes, trailing commas."""
    cleaned = _outer_object(strip_code_fences(content))
    cleaned = cleaned.translate(FANCY_QUOTES)
    cleaned = LINE_COMMENT_RE.sub("", cleaned)
    cleaned = CITATION_RE.sub("", cleaned)
    return TRAILING_COMMA_RE.sub(r"\1", cleaned)


def loads_object(content: str) -> dict[str, Any]:
    """Parse ``content`` as a JSON object, trying a local clean-up on failure.

    Raises ``ValueError`` (``json.JSONDecodeError`` included) when neither
    attempt yields an object.
    """
    try:
        data = json.loads(strip_code_fences(content))
    except json.JSONDecodeError:
        data = json.loads(local_cleanup(content))
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data
