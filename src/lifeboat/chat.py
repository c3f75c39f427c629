"""Chat with a resurrected companion, streaming replies as they arrive."""

from __future__ import annotations

import logging
from typing import Callable

from .config import CHAT_MAX_TOKENS, CHAT_MODEL, CHAT_TEMPERATURE
from .errors import CallFailure
from .llm import LLMClient
from .models import CompanionProfile

logger = logging.getLogger(__name__)


class ChatSession:
    """Conversation history seeded with the companion's system prompt."""

    def __init__(self, client: LLMClient, profile: CompanionProfile, model: str = CHAT_MODEL):
        if not profile.system_prompt:
            raise ValueError("This profile has no system prompt to chat with.")
        self.client = client
        self.model = model
        self.history: list[dict[str, str]] = [{"role": "system", "content": profile.system_prompt}]

    async def send(self, text: str, on_delta: Callable[[str], None] | None = None) -> str:
        """Send a user turn and return the full reply.

        Deltas are passed to ``on_delta`` as they stream in. If the call fails
        the user turn is dropped from the history and the error re-raised.
        """
        text = text.strip()
        if not text:
            raise ValueError("Message is empty.")

        self.history.append({"role": "user", "content": text})
        parts: list[str] = []
        try:
            async for delta in self.client.stream(
                list(self.history),
                max_tokens=CHAT_MAX_TOKENS,
                model=self.model,
                temperature=CHAT_TEMPERATURE,
            ):
                parts.append(delta)
                if on_delta is not None:
                    on_delta(delta)
        except CallFailure:
            self.history.pop()
            raise

        reply = "".join(parts)
        self.history.append({"role": "assistant", "content": reply})
        logger.debug("Chat turn complete (%d chars)", len(reply))
        return reply
