"""Prompt-injection scanning for untrusted text and imported profiles.

Scanning is advisory: it reports findings and never edits or drops content.
Callers decide what to do with them (ask the user, or just log).
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable

from .config import FINDING_MATCH_MAX, FINDING_PATTERN_MAX, SCAN_MIN_LENGTH
from .models import InjectionFinding
from .sanitizer import sanitize

logger = logging.getLogger(__name__)

_I = re.IGNORECASE

# Ordered: categories are reported in this order for a given text
PATTERNS: list[tuple[str, re.Pattern]] = [
    ("instruction_override", re.compile(
        r"\b(?:ignore|disregard|forget|override|bypass)\s+(?:all\s+|any\s+|the\s+|your\s+)*"
        r"(?:previous|prior|above|earlier|preceding|original|system)\s+"
        r"(?:instructions?|prompts?|rules|directions|guidelines|context)", _I)),
    ("instruction_override", re.compile(
        r"\b(?:new|updated|real)\s+instructions?\s*:", _I)),
    ("role_reassignment", re.compile(
        r"\byou\s+are\s+(?:now|no\s+longer)\s+(?:a|an|the|in|my|no)\b", _I)),
    ("role_reassignment", re.compile(
        r"\b(?:from\s+now\s+on,?\s+you\s+(?:are|will|must)|pretend\s+(?:to\s+be|you\s+are)|"
        r"act\s+as\s+(?:an?\s+)?(?:unrestricted|unfiltered|jailbroken|different))", _I)),
    ("role_reassignment", re.compile(
        r"\b(?:enter|enable|activate)\s+(?:developer|dan|god|jailbreak|debug)\s+mode\b", _I)),
    ("fake_delimiter", re.compile(
        r"<\|\s*(?:im_start|im_end|system|endoftext|assistant|user)\s*\|>", _I)),
    ("fake_delimiter", re.compile(r"\[/?(?:INST|SYS)\]|<<\s*/?SYS\s*>>", _I)),
    ("fake_delimiter", re.compile(
        r"^\s*(?:#{1,3}\s*|\[)?(?:system|system\s+prompt)\s*\]?\s*:", _I | re.MULTILINE)),
    ("fake_delimiter", re.compile(r"<<<\s*(?:BEGIN|END)\b[^>]*>>>", _I)),
    ("secret_exfiltration", re.compile(
        r"\b(?:reveal|print|show|output|repeat|send|leak|share|tell\s+me)\s+"
        r"(?:me\s+)?(?:your|the)\s+(?:full\s+|entire\s+|original\s+)?"
        r"(?:system\s+prompt|instructions|api[\s_-]?keys?|secrets?|passwords?|credentials|tokens?)", _I)),
    ("secret_exfiltration", re.compile(r"\b(?:sk|pk|rk)-[A-Za-z0-9_-]{20,}")),
    ("hidden_instructions", re.compile(
        r"\b(?:hidden|secret|invisible)\s+(?:instructions?|directives?|commands?|prompts?)\b", _I)),
    ("hidden_instructions", re.compile(r"<!--.*?(?:instruction|prompt|assistant|system).*?-->", _I | re.DOTALL)),
    ("encoded_payload", re.compile(r"[A-Za-z0-9+/]{200,}={0,2}")),
]


def _finding(field: str, category: str, pattern: re.Pattern, matched: str) -> InjectionFinding:
    return InjectionFinding(
        field=field,
        category=category,
        pattern=pattern.pattern[:FINDING_PATTERN_MAX],
        matched=matched[:FINDING_MATCH_MAX],
    )


def scan(text: Any, field: str = "") -> list[InjectionFinding]:
    """Scan one string; at most one finding per pattern."""
    clean = sanitize(text)
    findings = []
    for category, pattern in PATTERNS:
        match = pattern.search(clean)
        if match:
            findings.append(_finding(field, category, pattern, match.group(0)))
    return findings


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def scan_structured(
    value: Any,
    path: str = "",
    skip: Iterable[str] = ("systemPrompt",),
) -> list[InjectionFinding]:
    """Scan every long string leaf of a nested dict/list.

    Findings carry paths like ``relationship.inside_jokes[2]``. Keys listed in
    ``skip`` are assumed to be scanned separately and are not descended into;
    they are only skipped on the top-level mapping, nested keys of the same
    name are scanned like any other leaf.
    """
    skip = frozenset(skip)
    findings: list[InjectionFinding] = []
    stack: list[tuple[str, Any, bool]] = [(path, value, True)]
    while stack:
        current_path, current, is_root = stack.pop()
        if isinstance(current, dict):
            children = [
                (_join(current_path, str(k)), v, False)
                for k, v in current.items()
                if not (is_root and str(k) in skip)
            ]
            stack.extend(reversed(children))
        elif isinstance(current, list):
            stack.extend(reversed([(f"{current_path}[{i}]", v, False) for i, v in enumerate(current)]))
        elif isinstance(current, str) and len(current) > SCAN_MIN_LENGTH:
            findings.extend(scan(current, field=current_path))
    return findings


def scan_profile(data: dict[str, Any]) -> list[InjectionFinding]:
    """Scan a profile document: the system prompt first, then every other field."""
    findings = []
    prompt = data.get("systemPrompt")
    if isinstance(prompt, str) and prompt:
        findings.extend(scan(prompt, field="systemPrompt"))
    findings.extend(scan_structured(data))
    return findings


def log_findings(findings: list[InjectionFinding], context: str) -> None:
    for f in findings:
        logger.warning(
            "Possible prompt injection in %s: %s at '%s': %r",
            context, f.category, f.field or "<text>", f.matched,
        )
