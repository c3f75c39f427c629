"""LLM call collaborator: OpenAI-compatible chat completions over httpx.

The pipeline only relies on ``LLMClient``; ``OpenRouterClient`` is the
concrete provider used by the CLI and can be pointed at any compatible API.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

import httpx

from .config import API_URL, DEFAULT_MODEL, EXTRACTION_TEMPERATURE, REQUEST_TIMEOUT
from .errors import CallFailure

logger = logging.getLogger(__name__)

ChatMessages = list[dict[str, str]]


class LLMClient(ABC):
    """Request in, text (or a stream of text deltas) out."""

    @abstractmethod
    async def complete(
        self,
        messages: ChatMessages,
        max_tokens: int = 2048,
        model: str = DEFAULT_MODEL,
        temperature: float = EXTRACTION_TEMPERATURE,
    ) -> str:
        ...

    @abstractmethod
    def stream(
        self,
        messages: ChatMessages,
        max_tokens: int = 1000,
        model: str = DEFAULT_MODEL,
        temperature: float = EXTRACTION_TEMPERATURE,
    ) -> AsyncIterator[str]:
        ...

    async def aclose(self) -> None:
        pass


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return f"API error: {response.status_code}"


class OpenRouterClient(LLMClient):
    """OpenRouter (or any OpenAI-compatible) chat completions client."""

    def __init__(
        self,
        api_key: str,
        base_url: str = API_URL,
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ValueError("An API key is required")
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "X-Title": "lifeboat",
            },
            timeout=timeout,
            transport=transport,
        )

    def _body(self, messages: ChatMessages, max_tokens: int, model: str, temperature: float, **extra: Any) -> dict:
        return {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            **extra,
        }

    async def complete(
        self,
        messages: ChatMessages,
        max_tokens: int = 2048,
        model: str = DEFAULT_MODEL,
        temperature: float = EXTRACTION_TEMPERATURE,
    ) -> str:
        body = self._body(messages, max_tokens, model, temperature)
        logger.debug("POST /chat/completions model=%s messages=%d", model, len(messages))
        try:
            response = await self._client.post("/chat/completions", json=body)
        except httpx.HTTPError as e:
            raise CallFailure(f"Request failed: {e}") from e

        if response.status_code >= 400:
            raise CallFailure(_error_message(response), response.status_code)
        try:
            data = response.json()
        except ValueError as e:
            raise CallFailure("Provider returned a non-JSON response", response.status_code) from e

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            if isinstance(data, dict) and data.get("error"):
                raise CallFailure(_error_message(response), response.status_code)
            return ""
        message = choices[0].get("message") or {}
        return message.get("content") or ""

    async def stream(
        self,
        messages: ChatMessages,
        max_tokens: int = 1000,
        model: str = DEFAULT_MODEL,
        temperature: float = EXTRACTION_TEMPERATURE,
    ) -> AsyncIterator[str]:
        """Yield content deltas from a server-sent-events response until ``[DONE]``."""
        body = self._body(messages, max_tokens, model, temperature, stream=True)
        try:
            async with self._client.stream("POST", "/chat/completions", json=body) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise CallFailure(_error_message(response), response.status_code)
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    raw = line[5:].strip()
                    if raw == "[DONE]":
                        return
                    try:
                        data = json.loads(raw)
                    except ValueError:
                        logger.debug("Skipping malformed stream line: %r", raw[:80])
                        continue
                    choices = data.get("choices") or []
                    delta = (choices[0].get("delta") or {}).get("content") if choices else None
                    if delta:
                        yield delta
        except httpx.HTTPError as e:
            raise CallFailure(f"Request failed: {e}") from e

    async def aclose(self) -> None:
        await self._client.aclose()
