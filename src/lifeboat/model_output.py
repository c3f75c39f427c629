"""Permissive parsing of model replies.

Replies are untrusted and often almost-JSON: fenced in markdown, prefixed with
chatter, or trailed by notes. Recovery order is direct parse, fence-stripped
parse, then the first balanced object or array in the text. When all of that
fails the raw text is kept so the run can still finish with something
inspectable.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Union

from .errors import MalformedModelOutput

FENCE = re.compile(r"^```[\w-]*\s*\n?(.*?)\n?```\s*$", re.DOTALL)


@dataclass(frozen=True)
class ParsedOutput:
    value: Any


@dataclass(frozen=True)
class UnparsedOutput:
    raw: str


ModelOutput = Union[ParsedOutput, UnparsedOutput]


def _try_json(text: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except ValueError:
        return False, None


def strip_fences(text: str) -> str:
    match = FENCE.match(text.strip())
    return match.group(1).strip() if match else text.strip()


def find_balanced(text: str, start: int) -> str | None:
    """Return the balanced {...}/[...] span opening at ``start``, string-literal aware."""
    pairs = {"{": "}", "[": "]"}
    stack: list[str] = []
    in_string = False
    escaped = False
    for i in range(start, len(text)):
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
        elif ch in pairs:
            stack.append(pairs[ch])
        elif ch in "}]":
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return text[start:i + 1]
    return None


def _embedded_json(text: str) -> tuple[bool, Any]:
    for i, ch in enumerate(text):
        if ch not in "{[":
            continue
        span = find_balanced(text, i)
        if span is None:
            continue
        ok, value = _try_json(span)
        if ok:
            return True, value
    return False, None


def parse_model_json(text: str) -> ModelOutput:
    """Parse a model reply as JSON as leniently as possible.

    Raises MalformedModelOutput only when there is nothing to recover at all.
    """
    if text is None or not text.strip():
        raise MalformedModelOutput("The model returned an empty response.")

    cleaned = text.strip()
    for candidate in (cleaned, strip_fences(cleaned)):
        ok, value = _try_json(candidate)
        if ok:
            return ParsedOutput(value)

    ok, value = _embedded_json(strip_fences(cleaned))
    if ok:
        return ParsedOutput(value)
    return UnparsedOutput(cleaned)


def as_profile_base(output: ModelOutput) -> dict[str, Any]:
    """Profile fields from an extraction reply, or the raw-text escape hatch."""
    if isinstance(output, ParsedOutput) and isinstance(output.value, dict):
        return dict(output.value)
    if isinstance(output, ParsedOutput):
        return {"raw_extraction": json.dumps(output.value, ensure_ascii=False)}
    return {"raw_extraction": output.raw}


def as_phase_list(output: ModelOutput) -> list[Any] | None:
    """Timeline phases from a reply shaped as a list or ``{"phases": [...]}``."""
    if not isinstance(output, ParsedOutput):
        return None
    value = output.value
    if isinstance(value, dict):
        value = value.get("phases") or value.get("relationship_timeline") or value.get("timeline")
    if isinstance(value, list):
        return [p for p in value if isinstance(p, dict)]
    return None
