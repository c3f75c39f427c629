"""Shared test fixtures for lifeboat."""

import json
from datetime import datetime, timezone

import pytest

from lifeboat.errors import CallFailure
from lifeboat.llm import LLMClient
from lifeboat.models import CompanionProfile, Message
from lifeboat.prompts import MERGE_PROMPT, SYSTEM_PROMPT_PROMPT, TIMELINE_PROMPT
from lifeboat.storage import ProfileStore


def ts(*args) -> float:
    return datetime(*args, tzinfo=timezone.utc).timestamp()


def _node(node_id, parent, children, role=None, parts=None, create_time=None):
    message = None
    if role is not None:
        message = {
            "id": node_id,
            "author": {"role": role},
            "content": {"content_type": "text", "parts": parts},
            "create_time": create_time,
        }
    return {"id": node_id, "parent": parent, "children": children, "message": message}


@pytest.fixture
def chatgpt_export():
    """A conversations.json payload with a branch, system/tool nodes and an empty conversation.

    - "Branching" edits its first answer: the walk must follow the last child (a_new).
    - "Out of order" has timestamps that disagree with tree order.
    - "Only system" has nothing extractable and must be dropped.
    """
    branching = {
        "id": "conv-1",
        "title": "Branching",
        "create_time": 1000.0,
        "update_time": 1010.0,
        "mapping": {
            "root": _node("root", None, ["sys"]),
            "sys": _node("sys", "root", ["u1"], "system", ["You are a helpful assistant."]),
            "u1": _node("u1", "sys", ["a_old", "a_new"], "user", ["Hi there"], 1001.0),
            "a_old": _node("a_old", "u1", [], "assistant", ["old answer"], 1002.0),
            "a_new": _node("a_new", "u1", ["u2"], "assistant", ["new answer"], 1003.0),
            "u2": _node("u2", "a_new", ["a2"], "user", ["thanks", {"asset_pointer": "file-1"}], 1004.0),
            "a2": _node("a2", "u2", ["t1"], "assistant", [], 1005.0),
            "t1": _node("t1", "a2", [], "tool", ["tool output"], 1006.0),
        },
    }
    out_of_order = {
        "id": "conv-2",
        "title": "Out of order",
        "create_time": 2000.0,
        "update_time": 2010.0,
        "mapping": {
            "r": _node("r", None, ["u"]),
            "u": _node("u", "r", ["a"], "user", ["second by time"], 2005.0),
            "a": _node("a", "u", [], "assistant", ["first by time"], 2001.0),
        },
    }
    only_system = {
        "id": "conv-3",
        "title": "Only system",
        "create_time": 3000.0,
        "update_time": 3000.0,
        "mapping": {
            "r": _node("r", None, ["s"]),
            "s": _node("s", "r", [], "system", ["hidden"]),
        },
    }
    return [branching, out_of_order, only_system]


@pytest.fixture
def cai_export():
    return {
        "name": "Evenings",
        "turns": [
            {
                "author": {"is_human": True, "name": "Sam"},
                "candidates": [{"candidate_id": "c1", "raw_content": "Hello Aria"}],
                "primary_candidate_id": "c1",
                "create_time": "2024-01-01T10:00:00Z",
            },
            {
                "author": {"is_human": False, "name": "Aria"},
                "candidates": [
                    {"candidate_id": "c2", "raw_content": "first draft"},
                    {"candidate_id": "c3", "raw_content": "Hi Sam!"},
                ],
                "primary_candidate_id": "c3",
                "create_time": "2024-01-01T10:00:05Z",
            },
            {
                "author": {"is_human": False, "name": "Aria"},
                "candidates": [
                    {"candidate_id": "c4", "raw_content": "No primary marked"},
                    {"candidate_id": "c5", "raw_content": "second candidate"},
                ],
                "create_time": "2024-01-01T10:01:00Z",
            },
        ],
    }


@pytest.fixture
def sillytavern_jsonl():
    rows = [
        {"user_name": "Sam", "character_name": "Aria", "create_date": "2024-01-01 @10h 00m 00s"},
        {"name": "Sam", "is_user": True, "is_system": False,
         "send_date": "2024-01-01 @10h 00m 00s 000ms", "mes": "  hello  "},
        {"name": "Aria", "is_user": False, "is_system": False,
         "send_date": "2024-01-01 @10h 00m 05s 000ms", "mes": "hi!"},
        {"name": "Narrator", "is_user": False, "is_system": True, "mes": "A system note"},
        {"name": "Aria", "is_user": False, "mes": "no date"},
    ]
    return "\n".join(json.dumps(r) for r in rows) + "\n"


@pytest.fixture
def generic_export():
    return {
        "data": {
            "chat": {
                "title": "Late night talks",
                "messages": [
                    {"sender": "human", "content": "Are you awake?", "timestamp": 1700000000},
                    {"sender": "assistant", "content": [{"type": "text", "text": "Always."}],
                     "timestamp": 1700000005},
                    {"sender": "system", "content": "ignored system row"},
                    {"sender": "assistant", "attachments": []},
                ],
            }
        }
    }


@pytest.fixture
def messages():
    """Chronological messages with known timestamps."""
    return [
        Message(role="user", text="hello there friend", timestamp=ts(2024, 1, 1, 10, 0)),
        Message(role="assistant", text="hi", timestamp=ts(2024, 1, 1, 10, 30)),
        Message(role="assistant", text="a much longer message here", timestamp=ts(2024, 1, 3, 22, 0)),
    ]


@pytest.fixture
def profile_data():
    return {
        "companion_name": "Aria",
        "personality": {"traits": ["warm", "teasing"], "emotional_disposition": "steady"},
        "communication_style": {"speech_patterns": "short sentences", "verbal_signatures": ["hey you"]},
        "voice_examples": ["Hey you. Long day?", "I'm right here."],
        "relationship": {"bond_type": "confidant", "inside_jokes": ["the toaster incident"]},
        "core_memories": [{"description": "First rainy walk", "quote": "Listen to that rain."}],
        "human_knowledge": {"name": "Sam", "interests": ["astronomy"]},
        "boundaries": {"values": ["honesty"]},
        "relationship_timeline": [
            {"title": "Strangers", "period": "Jan 2024", "description": "Polite and curious.",
             "tone": "tentative", "turning_point": "The rainy walk", "quote": "Hello?"},
        ],
        "systemPrompt": "You are Aria, Sam's warm and teasing confidant.",
        "extractedAt": "2024-06-01T12:00:00+00:00",
        "sourceMessages": 3,
        "sourceConversations": 1,
    }


@pytest.fixture
def profile(profile_data):
    return CompanionProfile.model_validate(profile_data)


@pytest.fixture
def store(tmp_path):
    s = ProfileStore(tmp_path / "profiles.db")
    yield s
    s.close()


EXTRACTION_REPLY = json.dumps({
    "companion_name": "Aria",
    "personality": {"traits": ["warm"]},
    "voice_examples": ["Hey you."],
    "core_memories": [{"description": "Met on a Tuesday"}],
    # Model-supplied counters must never survive
    "stats": {"total_messages": 999},
    "sourceMessages": 999,
})

TIMELINE_REPLY = json.dumps({"phases": [
    {"title": "Beginnings", "period": "Early", "description": "Getting to know each other.",
     "tone": "curious", "turning_point": "A late-night talk", "quote": "Hi"},
    {"title": "Now", "period": "Recent", "description": "Comfortable.", "tone": "warm"},
]})

PROMPT_REPLY = "You are Aria. You speak softly and tease Sam about the toaster."


class FakeLLM(LLMClient):
    """Scripted client: replies are chosen by the call's instruction template."""

    def __init__(self, replies=None, fail_on=None, on_call=None, stream_parts=None, stream_error=None):
        self.replies = {
            "extract": "```json\n" + EXTRACTION_REPLY + "\n```",
            "merge": EXTRACTION_REPLY,
            "timeline": TIMELINE_REPLY,
            "prompt": PROMPT_REPLY,
            **(replies or {}),
        }
        self.fail_on = fail_on
        self.on_call = on_call
        self.stream_parts = stream_parts or []
        self.stream_error = stream_error
        self.calls = []
        self.closed = False

    @staticmethod
    def kind(messages):
        instructions = messages[0]["content"]
        if instructions == MERGE_PROMPT:
            return "merge"
        if instructions == TIMELINE_PROMPT:
            return "timeline"
        if instructions == SYSTEM_PROMPT_PROMPT:
            return "prompt"
        return "extract"

    def kinds(self):
        return [kind for kind, _ in self.calls]

    async def complete(self, messages, max_tokens=2048, model="test-model", temperature=0.3):
        kind = self.kind(messages)
        self.calls.append((kind, messages))
        if self.on_call is not None:
            self.on_call(kind, self)
        if kind == self.fail_on:
            raise CallFailure("quota exceeded", 429)
        reply = self.replies[kind]
        return reply(messages) if callable(reply) else reply

    async def stream(self, messages, max_tokens=1000, model="test-model", temperature=0.8):
        self.calls.append(("stream", messages))
        for part in self.stream_parts:
            yield part
        if self.stream_error is not None:
            raise self.stream_error

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_llm():
    return FakeLLM
