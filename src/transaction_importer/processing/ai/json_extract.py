"""Tolerant extraction of JSON embedded in free-form model output.

Models often wrap their JSON in prose or markdown fences. Extraction is two
steps: find the first balanced ``{...}`` or ``[...]`` span, then decode it
strictly. Failures come back as ``Malformed`` values instead of exceptions.
"""

import json
from typing import Optional

from transaction_importer.processing.ai.models import ExtractionResult, Malformed, Parsed

_OPENERS = {"{": "}", "[": "]"}


def find_json_span(text: str, start: int = 0) -> Optional[tuple[int, int]]:
    """Locate the first balanced JSON object or array at or after ``start``.

    Brackets inside JSON strings (including escaped quotes) are ignored.

    Args:
        text: Text to scan.
        start: Offset to begin scanning from.

    Returns:
        (begin, end) slice bounds of the span, or None if no balanced span exists.
    """
    n = len(text)
    i = start
    while i < n:
        if text[i] in _OPENERS:
            end = _match_close(text, i)
            if end is not None:
                return i, end
        i += 1
    return None


def _match_close(text: str, begin: int) -> Optional[int]:
    stack = [_OPENERS[text[begin]]]
    in_string = False
    escaped = False
    for i in range(begin + 1, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _OPENERS:
            stack.append(_OPENERS[ch])
        elif ch in "}]":
            if ch != stack[-1]:
                return None
            stack.pop()
            if not stack:
                return i + 1
    return None


def extract_json(text: Optional[str]) -> ExtractionResult:
    """Extract the first well-formed JSON object or array from text.

    Spans that balance but fail to decode are skipped and scanning resumes
    after their opening bracket, so ``see [1] below: {"a": 1}`` yields ``[1]``
    while ``{oops} {"a": 1}`` yields ``{"a": 1}``.

    Args:
        text: Raw model response.

    Returns:
        Parsed with the decoded value, or Malformed with the raw text.
    """
    if not text:
        return Malformed(raw_text=text or "", reason="empty response")

    position = 0
    while True:
        span = find_json_span(text, position)
        if span is None:
            return Malformed(raw_text=text, reason="no JSON object or array found")
        begin, end = span
        try:
            value = json.loads(text[begin:end])
        except json.JSONDecodeError:
            position = begin + 1
            continue
        if isinstance(value, (dict, list)):
            return Parsed(value=value)
        position = begin + 1
