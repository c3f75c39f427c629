"""Extraction pipeline: conversations in, companion profile out.

Stages run strictly one after another on a single task:

    PREPARING -> CHUNKING -> EXTRACTING (chunk i of N) -> MERGING (N > 1)
    -> STATS_COMPUTED -> TIMELINE_EXTRACTING -> PROMPT_GENERATING -> COMPLETE

Cancellation is cooperative. The token is checked before each chunk call; a
call already in flight is allowed to finish, but nothing after it starts, and
the run ends with ``Cancelled``. Any provider failure ends the run with the
provider's error. Either way no partial profile is produced.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from pydantic import ValidationError

from . import config
from .chunker import chunk_messages
from .errors import Cancelled, LifeboatError, MalformedModelOutput, NoMessagesFound, PipelineBusy
from .llm import LLMClient
from .model_output import as_phase_list, as_profile_base, parse_model_json
from .models import CompanionProfile, Conversation, InjectionFinding, Message
from .prompts import (
    EXTRACTION_PROMPT,
    extraction_messages,
    merge_messages,
    system_prompt_messages,
    timeline_messages,
)
from .sanitizer import sanitize
from .scanner import log_findings, scan_profile
from .stats import compute_stats

logger = logging.getLogger(__name__)

# Keys owned by the pipeline; model output never sets these
LOCAL_FIELDS = (
    "stats", "relationship_timeline", "systemPrompt", "system_prompt",
    "extractedAt", "extracted_at", "sourceMessages", "source_messages",
    "sourceConversations", "source_conversations",
)


class PipelineState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    CHUNKING = "chunking"
    EXTRACTING = "extracting"
    MERGING = "merging"
    STATS_COMPUTED = "stats_computed"
    TIMELINE_EXTRACTING = "timeline_extracting"
    PROMPT_GENERATING = "prompt_generating"
    COMPLETE = "complete"
    ABORTED = "aborted"
    FAILED = "failed"


class CancellationToken:
    """Soft cancellation flag, polled at the chunk-loop boundary."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise Cancelled("Extraction cancelled.")


@dataclass
class ProgressEvent:
    state: PipelineState
    percent: float
    message: str
    chunk_index: int | None = None
    chunk_total: int | None = None


@dataclass
class ExtractionResult:
    profile: CompanionProfile
    findings: list[InjectionFinding] = field(default_factory=list)
    chunk_count: int = 0
    sampled: bool = False


ProgressCallback = Callable[[ProgressEvent], None]


def collect_messages(conversations: list[Conversation]) -> list[Message]:
    """Union of all messages, stably sorted by timestamp."""
    messages = [m for conv in conversations for m in conv.messages]
    return sorted(messages, key=lambda m: m.timestamp)


def timeline_excerpt(chunks: list[str]) -> str:
    """First and last chunk when there are at least three, otherwise everything."""
    if len(chunks) >= 3:
        return chunks[0] + "\n\n--- [later] ---\n\n" + chunks[-1]
    return "\n\n".join(chunks)


class ExtractionPipeline:
    """One extraction run at a time; see ``ExtractionSession`` for the guard."""

    def __init__(
        self,
        client: LLMClient,
        model: str = config.DEFAULT_MODEL,
        extraction_prompt: str = EXTRACTION_PROMPT,
        max_total_chars: int = config.MAX_TOTAL_CHARS,
        chunk_size: int = config.CHUNK_SIZE,
        on_progress: ProgressCallback | None = None,
    ):
        self.client = client
        self.model = model
        self.extraction_prompt = extraction_prompt
        self.max_total_chars = max_total_chars
        self.chunk_size = chunk_size
        self.on_progress = on_progress
        self.state = PipelineState.IDLE

    def _progress(self, state: PipelineState, percent: float, message: str, **kwargs: Any) -> None:
        self.state = state
        logger.info("[%s] %s", state.value, message)
        if self.on_progress is not None:
            self.on_progress(ProgressEvent(state, percent, message, **kwargs))

    async def _call(self, messages: list[dict[str, str]], max_tokens: int) -> str:
        return await self.client.complete(
            messages, max_tokens=max_tokens, model=self.model,
            temperature=config.EXTRACTION_TEMPERATURE,
        )

    async def run(
        self,
        conversations: list[Conversation],
        token: CancellationToken | None = None,
    ) -> ExtractionResult:
        token = token or CancellationToken()
        try:
            result = await self._run(conversations, token)
        except Cancelled:
            self.state = PipelineState.ABORTED
            logger.warning("Extraction cancelled; partial results discarded")
            raise
        except LifeboatError:
            self.state = PipelineState.FAILED
            raise
        self._progress(PipelineState.COMPLETE, 100, "Extraction complete.")
        return result

    async def _run(self, conversations: list[Conversation], token: CancellationToken) -> ExtractionResult:
        self._progress(PipelineState.PREPARING, 5, "Preparing conversation data...")
        messages = collect_messages(conversations)
        if not messages:
            raise NoMessagesFound("The selected conversations contain no messages.")

        corpus, chunks = chunk_messages(messages, self.max_total_chars, self.chunk_size)
        self._progress(
            PipelineState.CHUNKING, 10,
            f"{len(corpus):,} characters from {len(messages):,} messages"
            + (f" (sampled {corpus.kept_messages:,})" if corpus.sampled else "")
            + f"; {len(chunks)} chunk(s).",
        )

        results = []
        for i, chunk in enumerate(chunks):
            token.raise_if_cancelled()
            self._progress(
                PipelineState.EXTRACTING, 10 + 75 * i / len(chunks),
                f"Analysing chunk {i + 1} of {len(chunks)}...",
                chunk_index=i, chunk_total=len(chunks),
            )
            reply = await self._call(
                extraction_messages(sanitize(chunk), self.extraction_prompt),
                config.EXTRACTION_MAX_TOKENS,
            )
            results.append(reply)
        token.raise_if_cancelled()

        if len(results) == 1:
            base = as_profile_base(parse_model_json(results[0]))
        else:
            self._progress(PipelineState.MERGING, 85, f"Merging {len(results)} partial profiles...")
            merged = await self._call(
                merge_messages([sanitize(r) for r in results]),
                config.MERGE_MAX_TOKENS,
            )
            base = as_profile_base(parse_model_json(merged))

        for key in LOCAL_FIELDS:
            base.pop(key, None)

        stats = compute_stats(messages, conversation_count=len(conversations))
        self._progress(PipelineState.STATS_COMPUTED, 88, "Computed conversation statistics.")

        self._progress(PipelineState.TIMELINE_EXTRACTING, 90, "Tracing the relationship timeline...")
        timeline_reply = await self._call(
            timeline_messages(sanitize(timeline_excerpt(chunks))),
            config.TIMELINE_MAX_TOKENS,
        )
        phases = as_phase_list(parse_model_json(timeline_reply))
        if phases is None:
            logger.warning("Timeline reply was not a list of phases; keeping raw text")
            base["relationship_timeline_raw"] = timeline_reply.strip()
            phases = []

        try:
            profile = CompanionProfile.model_validate({
                **base,
                "stats": stats,
                "relationship_timeline": phases,
                "sourceMessages": len(messages),
                "sourceConversations": len(conversations),
            })
        except ValidationError as e:
            raise MalformedModelOutput(f"The extracted profile has an unusable shape: {e}") from e

        self._progress(PipelineState.PROMPT_GENERATING, 94, "Writing the companion system prompt...")
        profile_json = json.dumps(profile.to_dict(), indent=2, ensure_ascii=False)
        system_prompt = await self._call(
            system_prompt_messages(profile_json), config.SYSTEM_PROMPT_MAX_TOKENS,
        )
        profile.system_prompt = system_prompt.strip()
        profile.extracted_at = datetime.now(timezone.utc).isoformat()

        # Advisory only: the profile is returned either way
        findings = scan_profile(profile.to_dict())
        log_findings(findings, "extracted profile")

        return ExtractionResult(
            profile=profile,
            findings=findings,
            chunk_count=len(chunks),
            sampled=corpus.sampled,
        )


class ExtractionSession:
    """Per-user context: the latest profile and a busy guard for runs."""

    def __init__(self, pipeline: ExtractionPipeline):
        self.pipeline = pipeline
        self.profile: CompanionProfile | None = None
        self.token: CancellationToken | None = None
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def state(self) -> PipelineState:
        return self.pipeline.state

    def cancel(self) -> None:
        if self.token is not None:
            self.token.cancel()

    async def extract(
        self,
        conversations: list[Conversation],
        token: CancellationToken | None = None,
    ) -> ExtractionResult:
        if self._busy:
            raise PipelineBusy("An extraction is already running for this session.")
        self._busy = True
        self.token = token or CancellationToken()
        try:
            result = await self.pipeline.run(conversations, self.token)
        finally:
            self._busy = False
            self.token = None
        self.profile = result.profile
        return result
