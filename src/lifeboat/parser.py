"""Detect export formats and parse them into flat, chronological conversations.

Supported shapes, tried in this order because they overlap structurally:

- tree exports (ChatGPT ``conversations.json``): a ``mapping`` of nodes linked
  by ``parent``/``children``; the walk follows the last child at every branch,
  which is the most recently edited path.
- flat turns (Character.AI style): turns with an ``is_human`` author flag and
  either inline text or several candidate replies, one of them primary.
- flat messages (SillyTavern style, usually JSONL): ``mes`` + ``is_user`` rows.
- generic: any array of message-like objects found anywhere in the document.
- plain text: ``Speaker: message`` transcripts between two parties.
"""

from __future__ import annotations

import io
import json
import logging
import math
import re
import zipfile
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import PurePath
from typing import Any, Iterator

from .config import INCLUDED_ROLES
from .errors import NoMessagesFound, UnsupportedFormat
from .models import Conversation, Message

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = (".txt", ".md", ".markdown")
ZIP_MEMBER_SUFFIXES = (".json", ".jsonl", ".txt", ".md")


@dataclass
class ConversationDraft:
    """A conversation as read from the source, before ids and ordering."""

    title: str = "Untitled"
    created: float | None = None
    updated: float | None = None
    messages: list[Message] = field(default_factory=list)


# ── Shared helpers ───────────────────────────────────────────────


# 9999-12-31T23:59:59Z, the last second ``datetime`` can hold
MAX_TIMESTAMP = 253_402_300_799.0

_ST_DATE = re.compile(
    r"(?P<y>\d{4})-(?P<mo>\d{1,2})-(?P<d>\d{1,2})\s*@\s*(?P<h>\d{1,2})h\s*(?P<mi>\d{1,2})m"
    r"(?:\s*(?P<s>\d{1,2})s)?"
)


def _to_timestamp(value: Any) -> float:
    """Best-effort conversion of an export timestamp to unix seconds (0 = unknown).

    Values that are not finite or fall outside what ``datetime`` can represent
    are unknown too.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        try:
            ts = float(value)
        except OverflowError:
            return 0.0
        if not math.isfinite(ts) or ts <= 0:
            return 0.0
        # Millisecond epochs
        if ts > 1e12:
            ts /= 1000.0
        return ts if ts <= MAX_TIMESTAMP else 0.0
    if not isinstance(value, str) or not value.strip():
        return 0.0

    value = value.strip()
    try:
        return _to_timestamp(float(value))
    except (ValueError, OverflowError):
        pass

    iso = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(iso)
    except ValueError:
        parsed = None
    if parsed is None:
        match = _ST_DATE.search(value)
        if not match:
            return 0.0
        try:
            parsed = datetime(
                int(match["y"]), int(match["mo"]), int(match["d"]),
                int(match["h"]), int(match["mi"]), int(match["s"] or 0),
            )
        except ValueError:
            return 0.0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        ts = parsed.timestamp()
    except (OverflowError, ValueError):
        return 0.0
    return ts if 0 < ts <= MAX_TIMESTAMP else 0.0


def _to_datetime(ts: float | None) -> datetime | None:
    if not ts or ts <= 0:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def _extract_text(parts: Any) -> str:
    """Join text parts, keeping strings and ``{"text": ...}`` blocks only."""
    if isinstance(parts, str):
        return parts.strip()
    if not isinstance(parts, list):
        return ""
    texts = []
    for part in parts:
        if isinstance(part, str):
            texts.append(part)
        elif isinstance(part, dict) and isinstance(part.get("text"), str):
            texts.append(part["text"])
    return "\n".join(texts).strip()


def _make_message(role: str, text: str, timestamp: Any = None) -> Message | None:
    if role not in INCLUDED_ROLES or not text:
        return None
    return Message(role=role, text=text, timestamp=_to_timestamp(timestamp))


def _first(mapping: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value not in (None, ""):
            return value
    return None


# ── Format variants ──────────────────────────────────────────────


class ExportFormat(ABC):
    """One recognisable export shape.

    ``detect`` must be cheap and side-effect free; ``parse`` may raise
    ``NoMessagesFound`` when the shape matched but nothing usable came out.
    """

    name: str

    @abstractmethod
    def detect(self, payload: Any) -> bool:
        ...

    @abstractmethod
    def parse(self, payload: Any, source: str = "") -> list[ConversationDraft]:
        ...


class TreeExportFormat(ExportFormat):
    """ChatGPT-style exports with a node ``mapping`` per conversation."""

    name = "tree"

    def detect(self, payload: Any) -> bool:
        return bool(self._candidates(payload))

    def parse(self, payload: Any, source: str = "") -> list[ConversationDraft]:
        drafts = []
        for conv in self._candidates(payload):
            try:
                drafts.append(self._parse_conversation(conv))
            except Exception:
                title = conv.get("title", "unknown")
                logger.warning("Failed to parse conversation '%s'", title, exc_info=True)
        return drafts

    @staticmethod
    def _candidates(payload: Any) -> list[dict[str, Any]]:
        if isinstance(payload, dict):
            if isinstance(payload.get("mapping"), dict):
                return [payload]
            payload = payload.get("conversations")
        if not isinstance(payload, list):
            return []
        return [c for c in payload if isinstance(c, dict) and isinstance(c.get("mapping"), dict)]

    def _parse_conversation(self, conv: dict[str, Any]) -> ConversationDraft:
        mapping = conv["mapping"]
        fallback_ts = conv.get("create_time")
        messages = []

        for node in self._walk(mapping, find_root(mapping), conv.get("title")):
            msg_data = node.get("message")
            if not isinstance(msg_data, dict):
                continue
            author = msg_data.get("author")
            role = author.get("role") if isinstance(author, dict) else None
            content = msg_data.get("content")
            parts = content.get("parts") if isinstance(content, dict) else None
            # Only plain string parts count; images and tool payloads are dicts
            text = "\n".join(p for p in parts if isinstance(p, str)).strip() if isinstance(parts, list) else ""
            msg = _make_message(role, text, msg_data.get("create_time") or fallback_ts)
            if msg is not None:
                messages.append(msg)

        return ConversationDraft(
            title=conv.get("title") or "Untitled",
            created=_to_timestamp(conv.get("create_time")) or None,
            updated=_to_timestamp(conv.get("update_time")) or None,
            messages=messages,
        )

    @staticmethod
    def _walk(mapping: dict[str, Any], root: str | None, title: Any) -> Iterator[dict[str, Any]]:
        visited: set[str] = set()
        node_id = root
        while isinstance(node_id, str) and node_id in mapping:
            if node_id in visited:
                logger.warning("Circular reference detected at node %s in '%s'", node_id, title)
                break
            visited.add(node_id)
            node = mapping[node_id]
            if not isinstance(node, dict):
                break
            yield node
            children = node.get("children") or []
            node_id = children[-1] if isinstance(children, list) and children else None


def find_root(mapping: dict[str, Any]) -> str | None:
    """First node (in mapping order) with no parent or a parent missing from the map."""
    for node_id, node in mapping.items():
        if not isinstance(node, dict):
            continue
        parent = node.get("parent")
        if not parent or parent not in mapping:
            return node_id
    return None


def _human_flag(turn: dict[str, Any]) -> bool | None:
    if isinstance(turn.get("is_human"), bool):
        return turn["is_human"]
    for key in ("author", "src"):
        author = turn.get(key)
        if isinstance(author, dict) and isinstance(author.get("is_human"), bool):
            return author["is_human"]
    return None


def _author_name(turn: dict[str, Any]) -> str | None:
    for key in ("author", "src"):
        author = turn.get(key)
        if isinstance(author, dict) and isinstance(author.get("name"), str):
            return author["name"]
    return None


def _is_turn(item: Any) -> bool:
    if not isinstance(item, dict) or _human_flag(item) is None:
        return False
    return "candidates" in item or "text" in item or "raw_content" in item


class FlatTurnFormat(ExportFormat):
    """Turn lists with a human flag and optional alternative candidates."""

    name = "flat_turn"
    GROUP_KEYS = ("histories", "chats", "conversations", "data")
    TURN_KEYS = ("turns", "msgs", "messages")

    def detect(self, payload: Any) -> bool:
        return bool(self._groups(payload))

    def parse(self, payload: Any, source: str = "") -> list[ConversationDraft]:
        drafts = []
        for meta, turns in self._groups(payload):
            messages = []
            companion = None
            for turn in turns:
                is_human = _human_flag(turn) if isinstance(turn, dict) else None
                if is_human is None:
                    continue
                text, timestamp = self._turn_text(turn)
                msg = _make_message("user" if is_human else "assistant", text, timestamp)
                if msg is None:
                    continue
                if not is_human and companion is None:
                    companion = _author_name(turn)
                messages.append(msg)

            title = _first(meta, ("title", "name")) or (f"Chat with {companion}" if companion else "Untitled")
            drafts.append(ConversationDraft(
                title=str(title),
                created=_to_timestamp(_first(meta, ("create_time", "created_at", "created"))) or None,
                updated=_to_timestamp(_first(meta, ("update_time", "updated_at", "last_interaction"))) or None,
                messages=messages,
            ))
        return drafts

    def _groups(self, payload: Any) -> list[tuple[dict[str, Any], list[Any]]]:
        if isinstance(payload, list):
            if any(_is_turn(item) for item in payload):
                return [({}, payload)]
            groups = []
            for item in payload:
                if isinstance(item, (dict, list)):
                    groups.extend(self._groups(item))
            return groups
        if not isinstance(payload, dict):
            return []
        for key in self.TURN_KEYS:
            turns = payload.get(key)
            if isinstance(turns, list) and any(_is_turn(t) for t in turns):
                return [(payload, turns)]
        groups = []
        for key in self.GROUP_KEYS:
            value = payload.get(key)
            if isinstance(value, list):
                groups.extend(self._groups(value))
        return groups

    @staticmethod
    def _turn_text(turn: dict[str, Any]) -> tuple[str, Any]:
        candidates = [c for c in turn.get("candidates") or [] if isinstance(c, dict)]
        if candidates:
            primary_id = turn.get("primary_candidate_id")
            chosen = next(
                (c for c in candidates
                 if (primary_id is not None and c.get("candidate_id") == primary_id)
                 or c.get("is_primary") is True),
                candidates[0],
            )
            text = chosen.get("raw_content") or chosen.get("text") or ""
            timestamp = _first(chosen, ("create_time", "created_at")) or _first(turn, ("create_time", "created_at"))
        else:
            text = turn.get("text") or turn.get("raw_content") or ""
            timestamp = _first(turn, ("create_time", "created_at", "timestamp"))
        return (text.strip() if isinstance(text, str) else ""), timestamp


class FlatMessageFormat(ExportFormat):
    """One object per message with ``mes`` text and an ``is_user`` flag."""

    name = "flat_message"

    def detect(self, payload: Any) -> bool:
        return any(self._is_row(row) for row in self._rows(payload))

    def parse(self, payload: Any, source: str = "") -> list[ConversationDraft]:
        messages = []
        companion = None
        header: dict[str, Any] = {}
        for row in self._rows(payload):
            if not isinstance(row, dict):
                continue
            if "mes" not in row:
                if "character_name" in row and not header:
                    header = row
                continue
            if row.get("is_system") is True or not isinstance(row.get("mes"), str):
                continue
            is_user = bool(row.get("is_user"))
            msg = _make_message("user" if is_user else "assistant", row["mes"].strip(), row.get("send_date"))
            if msg is None:
                continue
            if not is_user and companion is None and isinstance(row.get("name"), str):
                companion = row["name"]
            messages.append(msg)

        companion = header.get("character_name") or companion
        title = f"Chat with {companion}" if companion else (PurePath(source).stem or "Untitled")
        return [ConversationDraft(title=title, messages=messages)]

    @staticmethod
    def _rows(payload: Any) -> list[Any]:
        if isinstance(payload, dict):
            payload = _first(payload, ("messages", "chat"))
        return payload if isinstance(payload, list) else []

    @staticmethod
    def _is_row(row: Any) -> bool:
        return isinstance(row, dict) and "mes" in row and "is_user" in row


class GenericFormat(ExportFormat):
    """Fallback for any array of message-like objects."""

    name = "generic"
    TEXT_KEYS = ("text", "content", "message", "body", "mes", "msg", "value")
    FLAG_KEYS = ("is_user", "is_human", "from_user", "isUser")
    ROLE_KEYS = ("role", "sender", "author", "from", "speaker", "type", "name")
    TIMESTAMP_KEYS = ("timestamp", "create_time", "created_at", "createdAt", "time", "date", "send_date")
    TITLE_KEYS = ("title", "name", "subject")
    USER_LABELS = {"user", "human", "me", "you", "self"}
    SKIPPED_ROLES = {"system", "tool", "function", "developer"}

    def detect(self, payload: Any) -> bool:
        return next(self._message_arrays(payload, {}), None) is not None

    def parse(self, payload: Any, source: str = "") -> list[ConversationDraft]:
        drafts = []
        for parent, rows in self._message_arrays(payload, {}):
            messages = []
            for row in rows:
                msg = self._row_message(row)
                if msg is not None:
                    messages.append(msg)
            if messages:
                title = _first(parent, self.TITLE_KEYS)
                drafts.append(ConversationDraft(
                    title=title if isinstance(title, str) else (PurePath(source).stem or "Untitled"),
                    messages=messages,
                ))
        if not drafts:
            raise NoMessagesFound("Found message-like arrays, but no row had usable text.")
        return drafts

    def _message_arrays(self, value: Any, parent: dict[str, Any]) -> Iterator[tuple[dict[str, Any], list[Any]]]:
        if isinstance(value, list):
            if any(self._looks_like_message(item) for item in value):
                yield parent, value
                return
            for item in value:
                yield from self._message_arrays(item, parent)
        elif isinstance(value, dict):
            for child in value.values():
                if isinstance(child, (dict, list)):
                    yield from self._message_arrays(child, value)

    def _looks_like_message(self, item: Any) -> bool:
        return isinstance(item, dict) and any(isinstance(item.get(k), (str, list)) for k in self.TEXT_KEYS)

    def _row_message(self, row: Any) -> Message | None:
        if not isinstance(row, dict):
            return None
        text = ""
        for key in self.TEXT_KEYS:
            text = _extract_text(row.get(key))
            if text:
                break
        if not text:
            return None
        role = self._row_role(row)
        if role is None:
            return None
        return _make_message(role, text, _first(row, self.TIMESTAMP_KEYS))

    def _row_role(self, row: dict[str, Any]) -> str | None:
        for key in self.FLAG_KEYS:
            if isinstance(row.get(key), bool):
                return "user" if row[key] else "assistant"
        for key in self.ROLE_KEYS:
            value = row.get(key)
            if isinstance(value, dict):
                value = value.get("role") or value.get("name")
            if not isinstance(value, str) or not value:
                continue
            label = value.strip().lower()
            if label in self.SKIPPED_ROLES:
                return None
            return "user" if label in self.USER_LABELS else "assistant"
        return "assistant"


SPEAKER_LINE = re.compile(
    r"^\s*\*{0,2}(?P<speaker>[^\W_][\w .'\-]{0,39}?)\*{0,2}\s*:\*{0,2}[ \t]*(?P<text>.*)$"
)
HUMAN_ALIASES = {"you", "human", "user", "me"}


class PlainTextFormat(ExportFormat):
    """``Speaker: text`` transcripts.

    The human is the speaker whose label is a self-reference alias; without
    one, the less talkative speaker is assumed to be the human. Equal counts
    resolve to whoever spoke first.
    """

    name = "plain_text"

    def detect(self, payload: Any) -> bool:
        return isinstance(payload, str) and any(self._match(line) for line in payload.splitlines())

    def parse(self, payload: Any, source: str = "") -> list[ConversationDraft]:
        entries: list[tuple[str, list[str]]] = []
        for line in payload.splitlines():
            match = self._match(line)
            if match:
                entries.append((match["speaker"].strip(), [match["text"]]))
            elif entries and line.strip():
                entries[-1][1].append(line.rstrip())

        turns = [(speaker, "\n".join(lines).strip()) for speaker, lines in entries]
        turns = [(speaker, text) for speaker, text in turns if text]
        counts = Counter(speaker for speaker, _ in turns)
        if len(counts) < 2:
            raise NoMessagesFound("A transcript needs at least two distinct speakers.")

        human = pick_human_speaker(counts)
        logger.info("Plain-text transcript: treating '%s' as the human (%s)", human, dict(counts))
        messages = [
            Message(role="user" if speaker == human else "assistant", text=text)
            for speaker, text in turns
        ]
        return [ConversationDraft(title=PurePath(source).stem or "Untitled", messages=messages)]

    @staticmethod
    def _match(line: str) -> re.Match | None:
        match = SPEAKER_LINE.match(line)
        # "https://..." is not a speaker
        if match is None or match["text"].startswith("//"):
            return None
        return match


def pick_human_speaker(counts: Counter) -> str:
    for speaker in counts:
        if speaker.lower() in HUMAN_ALIASES:
            return speaker
    return min(counts, key=lambda s: counts[s])


FORMATS: list[ExportFormat] = [
    TreeExportFormat(),
    FlatTurnFormat(),
    FlatMessageFormat(),
    GenericFormat(),
]
TEXT_FORMATS: list[ExportFormat] = [PlainTextFormat()]


def register_format(fmt: ExportFormat, *, text: bool = False, before: str | None = None) -> None:
    """Add a format to the detection chain, optionally ahead of an existing one."""
    chain = TEXT_FORMATS if text else FORMATS
    if before is not None:
        for i, existing in enumerate(chain):
            if existing.name == before:
                chain.insert(i, fmt)
                return
    chain.append(fmt)


# ── Decoding ─────────────────────────────────────────────────────


def _decode(raw: str | bytes) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8-sig", errors="replace")
    return raw.lstrip("\ufeff")


def _read_zip(raw: bytes) -> tuple[str, str]:
    """Return (member name, text) of the conversations file inside an export ZIP."""
    try:
        with zipfile.ZipFile(io.BytesIO(raw)) as zf:
            names = [n for n in zf.namelist() if not n.endswith("/")]
            member = next((n for n in names if n.endswith("conversations.json")), None)
            if member is None:
                member = next((n for n in names if n.lower().endswith(ZIP_MEMBER_SUFFIXES)), None)
            if member is None:
                raise UnsupportedFormat("No conversations.json found in the ZIP archive.")
            return member, _decode(zf.read(member))
    except zipfile.BadZipFile as e:
        raise UnsupportedFormat(f"Not a valid ZIP file: {e}") from e


def load_payload(raw: str | bytes, filename: str = "") -> tuple[str, Any, str]:
    """Decode raw input into ("json", data) or ("text", str), plus the source name."""
    source = filename
    if isinstance(raw, bytes) and (raw[:4] == b"PK\x03\x04" or filename.lower().endswith(".zip")):
        source, text = _read_zip(raw)
    else:
        text = _decode(raw)

    if source.lower().endswith(TEXT_SUFFIXES):
        return "text", text, source

    try:
        return "json", json.loads(text), source
    except ValueError:
        pass

    lines = [line for line in text.splitlines() if line.strip()]
    if lines:
        try:
            return "json", [json.loads(line) for line in lines], source
        except ValueError:
            pass
    return "text", text, source


def _recency(conv: Conversation) -> float:
    moment = conv.updated or conv.created
    return moment.timestamp() if moment else 0.0


def finalize(drafts: list[ConversationDraft]) -> list[Conversation]:
    """Sort messages, drop empty conversations, assign ids, order by recency."""
    conversations: list[Conversation] = []
    for draft in drafts:
        if not draft.messages:
            continue
        messages = sorted(draft.messages, key=lambda m: m.timestamp)
        known = [m.timestamp for m in messages if m.timestamp > 0]
        created = draft.created or (known[0] if known else None)
        updated = draft.updated or (known[-1] if known else None)
        conversations.append(Conversation(
            id=len(conversations),
            title=draft.title or "Untitled",
            created=_to_datetime(created),
            updated=_to_datetime(updated),
            messages=messages,
        ))
    conversations.sort(key=_recency, reverse=True)
    return conversations


def parse_export(raw: str | bytes, filename: str = "") -> list[Conversation]:
    """Parse any supported export into conversations.

    Raises UnsupportedFormat when no format recognises the input, and
    NoMessagesFound when one did but nothing usable came out of it.
    """
    kind, payload, source = load_payload(raw, filename)
    chain = TEXT_FORMATS if kind == "text" else FORMATS

    matched = []
    for fmt in chain:
        if not fmt.detect(payload):
            continue
        matched.append(fmt.name)
        try:
            drafts = fmt.parse(payload, source)
        except NoMessagesFound as e:
            logger.info("Format '%s' matched but found no messages: %s", fmt.name, e)
            continue
        conversations = finalize(drafts)
        if conversations:
            logger.info(
                "Parsed %d conversations from %s as '%s'",
                len(conversations), source or "input", fmt.name,
            )
            return conversations
        logger.info("Format '%s' matched but every conversation was empty", fmt.name)

    if matched:
        raise NoMessagesFound(
            f"Recognised the file as {', '.join(matched)}, but found no user or assistant messages."
        )
    raise UnsupportedFormat(
        "Unrecognised file format. Expected a ChatGPT export (ZIP or conversations.json), "
        "a Character.AI or SillyTavern export, a JSON array of messages, "
        "or a 'Speaker: message' text transcript."
    )
