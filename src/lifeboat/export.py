"""Export companion profiles as JSON or as a plain-text system prompt."""

from __future__ import annotations

import json

from .errors import InvalidImport
from .models import CompanionProfile
from .storage import check_import


def profile_to_json(profile: CompanionProfile) -> str:
    """Export the full profile as pretty-printed JSON."""
    return json.dumps(profile.to_dict(), indent=2, ensure_ascii=False)


def profile_from_json(text: str) -> CompanionProfile:
    """Parse an exported profile; findings are not checked here, see ProfileStore.import_profile."""
    try:
        data = json.loads(text)
    except ValueError as e:
        raise InvalidImport(f"Not valid JSON: {e}") from e
    profile, _ = check_import(data)
    return profile


def system_prompt_text(profile: CompanionProfile) -> str:
    """Export just the system prompt, ready to paste into another app."""
    return profile.system_prompt.strip() + "\n"


def profile_filename(profile: CompanionProfile, suffix: str = "profile.json") -> str:
    name = (profile.companion_name or "companion").strip().lower()
    slug = "".join(ch if ch.isalnum() else "-" for ch in name).strip("-") or "companion"
    return f"{slug}-{suffix}"
