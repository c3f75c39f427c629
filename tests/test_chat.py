"""Tests for streaming chat with a saved companion."""

import asyncio

import pytest

from lifeboat.chat import ChatSession
from lifeboat.errors import CallFailure
from lifeboat.models import CompanionProfile


class TestChatSession:
    def test_requires_system_prompt(self, fake_llm):
        with pytest.raises(ValueError):
            ChatSession(fake_llm(), CompanionProfile(companion_name="Aria"))

    def test_streams_and_records_history(self, fake_llm, profile):
        client = fake_llm(stream_parts=["Hel", "lo ", "Sam"])
        session = ChatSession(client, profile)
        deltas = []

        reply = asyncio.run(session.send("  hi there  ", on_delta=deltas.append))

        assert reply == "Hello Sam"
        assert deltas == ["Hel", "lo ", "Sam"]
        assert session.history == [
            {"role": "system", "content": profile.system_prompt},
            {"role": "user", "content": "hi there"},
            {"role": "assistant", "content": "Hello Sam"},
        ]

    def test_sends_full_history(self, fake_llm, profile):
        client = fake_llm(stream_parts=["ok"])
        session = ChatSession(client, profile)
        asyncio.run(session.send("one"))
        asyncio.run(session.send("two"))

        _, sent = client.calls[-1]
        assert [m["role"] for m in sent] == ["system", "user", "assistant", "user"]

    def test_failure_drops_user_turn(self, fake_llm, profile):
        client = fake_llm(stream_parts=["partial"], stream_error=CallFailure("rate limited", 429))
        session = ChatSession(client, profile)

        with pytest.raises(CallFailure):
            asyncio.run(session.send("hello?"))
        assert session.history == [{"role": "system", "content": profile.system_prompt}]

    def test_empty_message(self, fake_llm, profile):
        session = ChatSession(fake_llm(), profile)
        with pytest.raises(ValueError):
            asyncio.run(session.send("   "))
        assert len(session.history) == 1
