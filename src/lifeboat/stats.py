"""Ground-truth statistics over the source messages.

Computed locally and deterministically; nothing here ever comes from the model.
Time buckets are in UTC and only count messages with a known timestamp.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone

from .models import LongestMessage, Message, ProfileStats

WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
EXCERPT_CHARS = 200
SECONDS_PER_DAY = 86_400


def _argmax(values: list[int]) -> int | None:
    """Index of the largest value; ties go to the lowest index."""
    if not values or max(values) == 0:
        return None
    return values.index(max(values))


def compute_stats(messages: list[Message], conversation_count: int = 0) -> ProfileStats:
    by_role: Counter[str] = Counter()
    words: Counter[str] = Counter()
    hours = [0] * 24
    weekdays = [0] * 7
    months: Counter[str] = Counter()
    longest: Message | None = None
    known: list[float] = []

    for msg in messages:
        by_role[msg.role] += 1
        words[msg.role] += len(msg.text.split())
        if longest is None or len(msg.text) > len(longest.text):
            longest = msg
        if msg.timestamp > 0:
            moment = datetime.fromtimestamp(msg.timestamp, tz=timezone.utc)
            hours[moment.hour] += 1
            weekdays[moment.weekday()] += 1
            months[moment.strftime("%Y-%m")] += 1
            known.append(msg.timestamp)

    first = min(known) if known else None
    last = max(known) if known else None
    peak_weekday = _argmax(weekdays)

    return ProfileStats(
        total_messages=len(messages),
        conversation_count=conversation_count,
        messages_by_role={role: by_role[role] for role in ("user", "assistant")},
        words_by_role={role: words[role] for role in ("user", "assistant")},
        avg_words_by_role={
            role: round(words[role] / by_role[role], 1) if by_role[role] else 0.0
            for role in ("user", "assistant")
        },
        longest_message=LongestMessage(
            role=longest.role,
            length=len(longest.text),
            timestamp=longest.timestamp,
            excerpt=longest.text[:EXCERPT_CHARS],
        ) if longest else None,
        hour_histogram=hours,
        weekday_histogram=weekdays,
        monthly_activity=dict(sorted(months.items())),
        first_timestamp=first,
        last_timestamp=last,
        span_days=int((last - first) // SECONDS_PER_DAY) if known else 0,
        peak_hour=_argmax(hours),
        peak_weekday=peak_weekday,
        peak_weekday_name=WEEKDAY_NAMES[peak_weekday] if peak_weekday is not None else None,
    )
