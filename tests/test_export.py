"""Tests for profile export formats."""

import json

import pytest

from lifeboat.errors import InvalidImport
from lifeboat.export import profile_filename, profile_from_json, profile_to_json, system_prompt_text
from lifeboat.models import CompanionProfile


class TestProfileToJson:
    def test_pretty_printed_with_wire_keys(self, profile):
        text = profile_to_json(profile)
        data = json.loads(text)

        assert text.startswith("{\n  ")
        assert data["systemPrompt"] == profile.system_prompt
        assert data["sourceMessages"] == 3
        assert "system_prompt" not in data

    def test_nulls_omitted(self):
        data = json.loads(profile_to_json(CompanionProfile(companion_name="Aria")))
        assert "personality" not in data
        assert "stats" not in data

    def test_unicode_kept(self):
        text = profile_to_json(CompanionProfile(companion_name="Zoë", systemPrompt="Tu es Zoë."))
        assert "Zoë" in text

    def test_unknown_keys_preserved(self, profile_data):
        profile = CompanionProfile.model_validate({**profile_data, "favourite_song": "Clair de Lune"})
        assert json.loads(profile_to_json(profile))["favourite_song"] == "Clair de Lune"

    def test_null_extra_keys_kept(self, profile_data):
        profile = CompanionProfile.model_validate({**profile_data, "notes": None})
        data = json.loads(profile_to_json(profile))
        assert "notes" in data
        assert data["notes"] is None


class TestProfileFromJson:
    def test_round_trip(self, profile):
        assert profile_from_json(profile_to_json(profile)) == profile

    def test_round_trip_with_null_extra_key(self, profile_data):
        profile = CompanionProfile.model_validate({**profile_data, "notes": None})
        restored = profile_from_json(profile_to_json(profile))
        assert restored == profile
        assert restored.model_extra == {"notes": None}

    def test_invalid_json(self):
        with pytest.raises(InvalidImport):
            profile_from_json("{broken")

    def test_not_a_profile(self):
        with pytest.raises(InvalidImport):
            profile_from_json('{"hello": "world"}')


class TestSystemPromptText:
    def test_trailing_newline(self, profile):
        assert system_prompt_text(profile) == "You are Aria, Sam's warm and teasing confidant.\n"


class TestProfileFilename:
    def test_slug(self):
        assert profile_filename(CompanionProfile(companion_name="Aria Moon!")) == "aria-moon-profile.json"

    def test_unnamed(self):
        assert profile_filename(CompanionProfile(), "prompt.txt") == "companion-prompt.txt"
