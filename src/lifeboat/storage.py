"""SQLite storage for saved companion profiles."""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .config import DEFAULT_PROFILE_NAME
from .errors import ImportNeedsReview, InvalidImport
from .models import CompanionProfile, InjectionFinding, ProfileRecord
from .scanner import scan_profile

logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

# Either key marks a document as a companion profile
SIGNATURE_FIELDS = ("systemPrompt", "personality")


def is_valid_profile_id(candidate: Any) -> bool:
    return isinstance(candidate, str) and UUID_PATTERN.match(candidate) is not None


def normalize_profile_id(candidate: Any) -> str:
    """Keep a canonical UUID (lower-cased); replace anything else with a fresh one."""
    if is_valid_profile_id(candidate):
        return candidate.lower()
    if candidate is not None:
        logger.warning("Discarding untrusted profile id %r", str(candidate)[:40])
    return str(uuid.uuid4())


@dataclass
class ImportResult:
    id: str
    profile: CompanionProfile
    findings: list[InjectionFinding] = field(default_factory=list)


class ProfileStore:
    """SQLite-backed storage for companion profiles."""

    def __init__(self, db_path: Path):
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._migrate()

    def _migrate(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS profiles (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                saved_at TEXT NOT NULL,
                profile TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_profiles_saved_at
                ON profiles(saved_at);
        """)
        self.conn.commit()

    def save(self, profile: CompanionProfile, profile_id: str | None = None) -> str:
        """Insert or replace a profile and return its (validated) id."""
        data = profile.to_dict()
        candidate = profile_id if profile_id is not None else data.get("id")
        record_id = normalize_profile_id(candidate)
        data.pop("id", None)

        name = profile.companion_name or DEFAULT_PROFILE_NAME
        saved_at = datetime.now(timezone.utc).isoformat()
        self.conn.execute(
            """INSERT OR REPLACE INTO profiles (id, name, saved_at, profile)
               VALUES (?, ?, ?, ?)""",
            (record_id, name, saved_at, json.dumps(data, ensure_ascii=False)),
        )
        self.conn.commit()
        logger.info("Saved profile '%s' as %s", name, record_id)
        return record_id

    def _to_record(self, row: sqlite3.Row) -> ProfileRecord | None:
        try:
            profile = CompanionProfile.model_validate(json.loads(row["profile"]))
        except (ValueError, ValidationError):
            logger.warning("Skipping unreadable profile row %s", row["id"], exc_info=True)
            return None
        return ProfileRecord(id=row["id"], profile=profile, saved_at=row["saved_at"], name=row["name"])

    def get(self, profile_id: str) -> ProfileRecord | None:
        if not is_valid_profile_id(profile_id):
            return None
        row = self.conn.execute(
            "SELECT * FROM profiles WHERE id = ?", (profile_id.lower(),)
        ).fetchone()
        return self._to_record(row) if row else None

    def load_all(self) -> list[ProfileRecord]:
        """All saved profiles, most recently saved first."""
        rows = self.conn.execute("SELECT * FROM profiles").fetchall()
        records = [r for r in (self._to_record(row) for row in rows) if r is not None]
        records.sort(key=lambda r: _saved_at_key(r.saved_at), reverse=True)
        return records

    def delete(self, profile_id: str) -> bool:
        if not is_valid_profile_id(profile_id):
            return False
        cur = self.conn.execute("DELETE FROM profiles WHERE id = ?", (profile_id.lower(),))
        self.conn.commit()
        return cur.rowcount > 0

    def import_profile(self, data: Any, acknowledge_findings: bool = False) -> ImportResult:
        """Validate, scan and save an externally supplied profile document.

        Raises InvalidImport for documents that are not profiles, and
        ImportNeedsReview when the scan found something and the caller has not
        acknowledged it.
        """
        profile, findings = check_import(data)
        if findings and not acknowledge_findings:
            raise ImportNeedsReview(findings)
        if findings:
            logger.warning("Importing profile with %d acknowledged finding(s)", len(findings))
        record_id = self.save(profile, profile_id=data.get("id"))
        return ImportResult(id=record_id, profile=profile, findings=findings)

    def close(self):
        self.conn.close()


def check_import(data: Any) -> tuple[CompanionProfile, list[InjectionFinding]]:
    """Validate an import document and scan it, without saving."""
    if not isinstance(data, dict):
        raise InvalidImport("Expected a JSON object containing a companion profile.")
    if not any(key in data for key in SIGNATURE_FIELDS):
        raise InvalidImport(
            "This doesn't look like a companion profile (no systemPrompt or personality)."
        )
    try:
        profile = CompanionProfile.model_validate(data)
    except ValidationError as e:
        raise InvalidImport(f"Profile has invalid fields: {e.error_count()} error(s)") from e
    return profile, scan_profile(data)


def _saved_at_key(value: str) -> float:
    try:
        moment = datetime.fromisoformat(value)
    except ValueError:
        return 0.0
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp()
