"""Turn a chronological message stream into bounded extraction chunks.

Two steps:

1. Sampling, only when the formatted corpus is larger than the global budget.
   The first 10% and last 30% of messages are always kept whole (how the
   relationship began and where it is now); the middle 60% is thinned with a
   fixed stride so the result fits the budget.
2. Splitting at message boundaries into chunks no larger than the chunk size,
   except when a single message is larger than that on its own.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from .config import CHARS_PER_MESSAGE_ESTIMATE, CHUNK_SIZE, MAX_TOTAL_CHARS, SECONDS_PER_CHUNK_ESTIMATE
from .models import Message

logger = logging.getLogger(__name__)

DELIMITER = "\n\n"
MIDDLE_MARKER = "--- [middle period, sampled] ---"
RECENT_MARKER = "--- [recent period] ---"

EARLY_FRACTION = 0.1
RECENT_FRACTION = 0.3

ROLE_LABELS = {"user": "Human", "assistant": "AI"}


def format_message(msg: Message) -> str:
    """Format one message as a ``[Role]: text`` line."""
    return f"[{ROLE_LABELS.get(msg.role, msg.role)}]: {msg.text}"


def _joined_length(units: list[str]) -> int:
    if not units:
        return 0
    return sum(len(u) for u in units) + len(DELIMITER) * (len(units) - 1)


@dataclass
class Corpus:
    """Formatted (and possibly sampled) text, kept as message-sized units."""

    units: list[str]
    total_messages: int
    kept_messages: int
    sampled: bool = False

    @property
    def text(self) -> str:
        return DELIMITER.join(self.units)

    def __len__(self) -> int:
        return _joined_length(self.units)


def sampling_stride(middle_count: int, remaining_budget: float) -> int:
    """Keep every k-th middle message, assuming ~500 chars per message."""
    affordable = max(1.0, remaining_budget / CHARS_PER_MESSAGE_ESTIMATE)
    return max(1, math.floor(middle_count / affordable))


def build_corpus(messages: list[Message], max_total_chars: int = MAX_TOTAL_CHARS) -> Corpus:
    """Format messages, sampling the middle of the history if over budget."""
    units = [format_message(m) for m in messages]
    total = len(messages)
    if _joined_length(units) <= max_total_chars:
        return Corpus(units=units, total_messages=total, kept_messages=total)

    early_count = math.floor(total * EARLY_FRACTION)
    recent_count = math.floor(total * RECENT_FRACTION)
    early = units[:early_count]
    recent = units[total - recent_count:]
    middle = units[early_count:total - recent_count]

    remaining_budget = max_total_chars - _joined_length(early) - _joined_length(recent)
    stride = sampling_stride(len(middle), remaining_budget)
    sampled_middle = middle[::stride]

    sampled_units = early + [MIDDLE_MARKER] + sampled_middle + [RECENT_MARKER] + recent
    kept = len(early) + len(sampled_middle) + len(recent)
    logger.info(
        "Sampled %d of %d messages (stride %d, %d chars)",
        kept, total, stride, _joined_length(sampled_units),
    )
    return Corpus(units=sampled_units, total_messages=total, kept_messages=kept, sampled=True)


def split_chunks(units: list[str], max_chunk_chars: int = CHUNK_SIZE) -> list[str]:
    """Greedily pack units into chunks, never splitting a unit."""
    if _joined_length(units) <= max_chunk_chars:
        return [DELIMITER.join(units)] if units else []

    chunks: list[str] = []
    current: list[str] = []
    current_len = 0
    for unit in units:
        added = len(unit) + (len(DELIMITER) if current else 0)
        if current and current_len + added > max_chunk_chars:
            chunks.append(DELIMITER.join(current))
            current, current_len = [], 0
            added = len(unit)
        current.append(unit)
        current_len += added
    if current:
        chunks.append(DELIMITER.join(current))
    return chunks


def chunk_messages(
    messages: list[Message],
    max_total_chars: int = MAX_TOTAL_CHARS,
    max_chunk_chars: int = CHUNK_SIZE,
) -> tuple[Corpus, list[str]]:
    corpus = build_corpus(messages, max_total_chars)
    return corpus, split_chunks(corpus.units, max_chunk_chars)


def estimate_chunks(total_chars: int, max_chunk_chars: int = CHUNK_SIZE) -> int:
    return max(1, math.ceil(min(total_chars, MAX_TOTAL_CHARS) / max_chunk_chars))


def estimate_minutes(chunks: int) -> int:
    return max(1, math.ceil(chunks * SECONDS_PER_CHUNK_ESTIMATE / 60))
