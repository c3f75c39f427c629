"""CLI interface for lifeboat."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import sys
from pathlib import Path

import click

from . import __version__
from .config import API_KEY_ENV, CHAT_MODEL, DATA_DIR, DEFAULT_MODEL, PROFILES_DB_PATH


def _format_date(moment) -> str:
    return moment.strftime("%Y-%m-%d") if moment else "unknown date"


def _open_store():
    from .storage import ProfileStore

    return ProfileStore(PROFILES_DB_PATH)


def _get_record(store, profile_id: str):
    record = store.get(profile_id)
    if record is None:
        raise click.ClickException(f"Profile not found: {profile_id}")
    return record


def _echo_findings(findings) -> None:
    for f in findings:
        location = f.field or "<text>"
        click.echo(f"  - {click.style(f.category, fg='yellow')} in {location}: {f.matched!r}")


@click.group()
@click.version_option(version=__version__, prog_name="lifeboat")
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging on stderr.")
def cli(verbose: bool):
    """lifeboat — Save your AI companion.

    Parse your chat export, extract your companion's personality, voice and
    memories, and get a system prompt that brings them back on any model.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


@cli.command()
@click.argument("export_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--limit", default=50, show_default=True, help="Maximum conversations to list.")
@click.option("-s", "--search", help="Only list conversations whose title contains this text.")
def inspect(export_path: str, limit: int, search: str | None):
    """List the conversations found in an export file.

    Accepts a ChatGPT export ZIP or conversations.json, Character.AI and
    SillyTavern exports, JSON message arrays, and 'Speaker: message' transcripts.
    """
    from .importer import describe_selection, filter_conversations, load_conversations

    conversations = load_conversations(export_path)
    total = sum(c.message_count for c in conversations)
    click.echo(f"Found {len(conversations)} conversations with {total:,} total messages.")
    matching = filter_conversations(conversations, search)
    if search and search.strip():
        click.echo(f"{len(matching)} match '{search.strip()}'.")
    click.echo()
    for c in matching[:limit]:
        click.echo(f"{c.id:>5}  {_format_date(c.updated or c.created)}  {c.message_count:>6} msgs  {c.title}")
    if len(matching) > limit:
        click.echo(f"  ... and {len(matching) - limit} more (use --limit)")
    click.echo()
    click.echo(describe_selection(matching))


@cli.command()
@click.argument("export_path", type=click.Path(exists=True, dir_okay=False))
@click.option("-c", "--conversation", "conversation_ids", type=int, multiple=True,
              help="Conversation id to include (repeatable). Defaults to all.")
@click.option("-s", "--search", help="Only use conversations whose title contains this text.")
@click.option("--model", default=DEFAULT_MODEL, show_default=True, help="Model used for extraction.")
@click.option("--api-key", envvar=API_KEY_ENV, help=f"OpenRouter API key (or set {API_KEY_ENV}).")
@click.option("--save/--no-save", default=True, help="Save the profile to the local store.")
@click.option("-o", "--output", type=click.Path(dir_okay=False), help="Also write the profile JSON here.")
def extract(export_path: str, conversation_ids: tuple[int, ...], search: str | None, model: str,
            api_key: str | None, save: bool, output: str | None):
    """Extract a companion profile from an export file.

    Press Ctrl-C to cancel; the chunk being analysed finishes first.

    Example:
        lifeboat extract ~/Downloads/chatgpt-export.zip -c 3 -c 7
        lifeboat extract conversations.json --search aria
    """
    from .export import profile_to_json
    from .importer import (
        describe_selection,
        extract_profile,
        filter_conversations,
        load_conversations,
        select_conversations,
    )

    if not api_key:
        raise click.ClickException(f"No API key. Pass --api-key or set {API_KEY_ENV}.")

    conversations = filter_conversations(load_conversations(export_path), search)
    if not conversations:
        raise click.ClickException(f"No conversation title contains '{(search or '').strip()}'.")
    selected = select_conversations(conversations, conversation_ids)
    click.echo(describe_selection(selected))

    result, _ = extract_profile(selected, api_key=api_key, model=model, save=save)
    if output:
        Path(output).write_text(profile_to_json(result.profile), encoding="utf-8")
        click.echo(f"  Written:   {output}")


@cli.group()
def profiles():
    """Manage saved companion profiles."""
    pass


@profiles.command("list")
def list_profiles():
    """List saved profiles, most recent first."""
    store = _open_store()
    records = store.load_all()
    store.close()

    if not records:
        click.echo("No saved profiles. Run 'lifeboat extract' first.")
        return
    for r in records:
        click.echo(f"{r.id}  {r.saved_at[:19]}  {r.name}")


@profiles.command("show")
@click.argument("profile_id")
def show_profile(profile_id: str):
    """Show a summary of a saved profile."""
    store = _open_store()
    record = _get_record(store, profile_id)
    store.close()
    p = record.profile

    click.echo()
    click.echo(click.style(record.name, bold=True))
    if isinstance(p.personality, dict):
        for key, val in p.personality.items():
            display = ", ".join(map(str, val)) if isinstance(val, list) else str(val)
            click.echo(f"  {key}: {display}")
    elif p.personality:
        click.echo(f"  {p.personality}")

    click.echo(f"  Core memories:  {len(p.core_memories)}")
    click.echo(f"  Voice examples: {len(p.voice_examples)}")
    for phase in p.relationship_timeline:
        click.echo(f"  • {phase.title or 'Untitled phase'} ({phase.period or '?'})")
    if p.stats:
        s = p.stats
        click.echo(
            f"  Messages: {s.total_messages:,} "
            f"(you {s.messages_by_role.get('user', 0):,}, companion {s.messages_by_role.get('assistant', 0):,})"
        )
        if s.peak_hour is not None:
            click.echo(f"  Most active: {s.peak_weekday_name}s around {s.peak_hour:02d}:00 UTC")
    click.echo(
        f"  Extracted from {p.source_conversations} conversations ({p.source_messages:,} messages)"
    )
    click.echo()


@profiles.command("delete")
@click.argument("profile_id")
@click.confirmation_option(prompt="Delete this profile?")
def delete_profile(profile_id: str):
    """Delete a saved profile."""
    store = _open_store()
    deleted = store.delete(profile_id)
    store.close()
    if not deleted:
        raise click.ClickException(f"Profile not found: {profile_id}")
    click.echo(f"Deleted {profile_id}")


@profiles.command("export")
@click.argument("profile_id")
@click.option("--prompt-only", is_flag=True, help="Export only the system prompt as plain text.")
@click.option("-o", "--output", type=click.Path(dir_okay=False), help="Output file (default: stdout).")
def export_profile(profile_id: str, prompt_only: bool, output: str | None):
    """Export a saved profile as JSON, or just its system prompt."""
    from .export import profile_to_json, system_prompt_text

    store = _open_store()
    record = _get_record(store, profile_id)
    store.close()

    text = system_prompt_text(record.profile) if prompt_only else profile_to_json(record.profile)
    if output:
        Path(output).write_text(text, encoding="utf-8")
        click.echo(f"Written {output}")
    else:
        click.echo(text)


@profiles.command("import")
@click.argument("profile_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--yes", "assume_yes", is_flag=True, help="Accept suspicious findings without asking.")
def import_profile(profile_path: str, assume_yes: bool):
    """Import a profile JSON file exported earlier."""
    from .errors import ImportNeedsReview, InvalidImport

    try:
        data = json.loads(Path(profile_path).read_text(encoding="utf-8"))
    except ValueError as e:
        raise click.ClickException(f"Not valid JSON: {e}") from e

    store = _open_store()
    try:
        try:
            result = store.import_profile(data, acknowledge_findings=assume_yes)
        except ImportNeedsReview as e:
            click.echo(click.style("This profile contains text that looks like prompt injection:", fg="yellow"))
            _echo_findings(e.findings)
            if not click.confirm("Import it anyway?", default=False):
                raise click.ClickException("Import cancelled.")
            result = store.import_profile(data, acknowledge_findings=True)
    except InvalidImport as e:
        raise click.ClickException(str(e)) from e
    finally:
        store.close()

    click.echo(f"Imported '{result.profile.companion_name or 'Unnamed Companion'}' as {result.id}")


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def scan(path: str):
    """Scan a text or JSON file for prompt-injection patterns."""
    from .scanner import scan as scan_text, scan_structured

    raw = Path(path).read_text(encoding="utf-8", errors="replace")
    try:
        data = json.loads(raw)
    except ValueError:
        findings = scan_text(raw)
    else:
        findings = scan_structured(data, skip=())

    if not findings:
        click.echo("No suspicious patterns found.")
        return
    click.echo(f"{len(findings)} suspicious pattern(s):")
    _echo_findings(findings)
    sys.exit(1)


@cli.command()
@click.argument("profile_id")
@click.option("--model", default=CHAT_MODEL, show_default=True, help="Model to chat with.")
@click.option("--api-key", envvar=API_KEY_ENV, help=f"OpenRouter API key (or set {API_KEY_ENV}).")
def chat(profile_id: str, model: str, api_key: str | None):
    """Chat with a saved companion. Send an empty line to quit."""
    from .chat import ChatSession
    from .errors import CallFailure
    from .llm import OpenRouterClient

    if not api_key:
        raise click.ClickException(f"No API key. Pass --api-key or set {API_KEY_ENV}.")

    store = _open_store()
    record = _get_record(store, profile_id)
    store.close()

    async def _loop():
        client = OpenRouterClient(api_key)
        session = ChatSession(client, record.profile, model=model)
        try:
            while True:
                text = click.prompt("you", default="", show_default=False)
                if not text.strip():
                    break
                click.echo(f"{record.name}: ", nl=False)
                try:
                    await session.send(text, on_delta=lambda d: click.echo(d, nl=False))
                except CallFailure as e:
                    click.echo(click.style(f"Error: {e}", fg="red"))
                    continue
                click.echo()
        finally:
            await client.aclose()

    try:
        asyncio.run(_loop())
    except ValueError as e:
        raise click.ClickException(str(e)) from e


@cli.command()
def serve():
    """Start the MCP server (stdio transport) exposing saved profiles."""
    if not PROFILES_DB_PATH.exists():
        click.echo("Warning: No profiles saved yet. Run 'lifeboat extract' first.", err=True)

    from .server import mcp

    mcp.run(transport="stdio")


@cli.command()
@click.confirmation_option(prompt="This will delete all saved profiles. Are you sure?")
def reset():
    """Delete all saved data and start fresh."""
    if DATA_DIR.exists():
        shutil.rmtree(DATA_DIR)
        click.echo(f"Deleted {DATA_DIR}")
    else:
        click.echo("No data to delete.")
