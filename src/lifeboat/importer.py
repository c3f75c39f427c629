"""Extraction workflow: export file → parsing → selection → pipeline → storage."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from pathlib import Path

import click

from .chunker import estimate_chunks, estimate_minutes
from .config import PROFILES_DB_PATH
from .errors import Cancelled, LifeboatError
from .llm import OpenRouterClient
from .models import Conversation
from .parser import parse_export
from .pipeline import CancellationToken, ExtractionPipeline, ExtractionResult, ExtractionSession, ProgressEvent
from .storage import ProfileStore

logger = logging.getLogger(__name__)


def load_conversations(path: str) -> list[Conversation]:
    """Read and parse an export file, reporting problems as CLI errors."""
    export_file = Path(path)
    if not export_file.exists():
        raise click.ClickException(f"File not found: {path}")

    try:
        return parse_export(export_file.read_bytes(), export_file.name)
    except LifeboatError as e:
        raise click.ClickException(str(e)) from e


def filter_conversations(conversations: list[Conversation], query: str | None) -> list[Conversation]:
    """Keep conversations whose title contains ``query``, ignoring case.

    Ids are left as they are, so ``-c`` keeps referring to the full listing.
    """
    needle = (query or "").strip().lower()
    if not needle:
        return conversations
    return [c for c in conversations if needle in (c.title or "").lower()]


def select_conversations(conversations: list[Conversation], ids: tuple[int, ...]) -> list[Conversation]:
    if not ids:
        return conversations
    wanted = set(ids)
    unknown = wanted - {c.id for c in conversations}
    if unknown:
        raise click.ClickException(f"Unknown conversation id(s): {', '.join(map(str, sorted(unknown)))}")
    return [c for c in conversations if c.id in wanted]


def describe_selection(selected: list[Conversation]) -> str:
    messages = sum(c.message_count for c in selected)
    chars = sum(c.text_size for c in selected)
    chunks = estimate_chunks(chars)
    text = (
        f"{len(selected)} conversations selected ({messages:,} messages)"
        f" — est. {estimate_minutes(chunks)} min to process"
    )
    if chunks > 20:
        text += " (large selection — consider picking only your companion's conversations)"
    return text


def _echo_progress(event: ProgressEvent) -> None:
    click.echo(f"  [{event.percent:3.0f}%] {event.message}")


async def _run(session: ExtractionSession, selected: list[Conversation], token: CancellationToken) -> ExtractionResult:
    loop = asyncio.get_running_loop()
    # Ctrl-C finishes the in-flight call, then stops before the next chunk
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, token.cancel)
    try:
        return await session.extract(selected, token)
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)
        await session.pipeline.client.aclose()


def extract_profile(
    selected: list[Conversation],
    api_key: str,
    model: str,
    save: bool = True,
) -> tuple[ExtractionResult, str | None]:
    """Run the pipeline over the selected conversations and optionally save the result."""
    client = OpenRouterClient(api_key)
    pipeline = ExtractionPipeline(client, model=model, on_progress=_echo_progress)
    session = ExtractionSession(pipeline)
    token = CancellationToken()

    try:
        result = asyncio.run(_run(session, selected, token))
    except Cancelled as e:
        raise click.ClickException("Extraction cancelled. Nothing was saved.") from e
    except LifeboatError as e:
        raise click.ClickException(f"Extraction failed: {e}") from e

    profile_id = None
    if save:
        store = ProfileStore(PROFILES_DB_PATH)
        profile_id = store.save(result.profile)
        store.close()

    click.echo()
    click.echo(click.style("Extraction complete!", fg="green", bold=True))
    if result.profile.companion_name:
        click.echo(f"  Companion: {result.profile.companion_name}")
    click.echo(
        f"  Source:    {result.profile.source_conversations} conversations "
        f"({result.profile.source_messages:,} messages, {result.chunk_count} chunk(s))"
    )
    if result.profile.raw_extraction:
        click.echo(click.style(
            "  Note: the model's reply could not be parsed; the raw text is kept in raw_extraction.",
            fg="yellow",
        ))
    if result.findings:
        click.echo(click.style(
            f"  Warning: {len(result.findings)} suspicious passage(s) found in the output. "
            "Review the profile before using it.",
            fg="yellow",
        ))
    if profile_id:
        click.echo(f"  Saved as:  {profile_id}")
    return result, profile_id
