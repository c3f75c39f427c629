"""Tests for permissive parsing of model replies."""

import pytest

from lifeboat.errors import MalformedModelOutput
from lifeboat.model_output import (
    ParsedOutput,
    UnparsedOutput,
    as_phase_list,
    as_profile_base,
    find_balanced,
    parse_model_json,
    strip_fences,
)


class TestParseModelJson:
    def test_direct(self):
        assert parse_model_json('{"a": 1}') == ParsedOutput({"a": 1})

    def test_fenced(self):
        assert parse_model_json('```json\n{"a": 1}\n```') == ParsedOutput({"a": 1})

    def test_embedded_in_chatter(self):
        reply = 'Sure! Here is the profile:\n{"name": "Aria", "tags": ["x"]}\nLet me know if you need more.'
        assert parse_model_json(reply) == ParsedOutput({"name": "Aria", "tags": ["x"]})

    def test_braces_inside_strings(self):
        reply = 'Result: {"quote": "she said }{ and left", "n": 2} done'
        assert parse_model_json(reply) == ParsedOutput({"quote": "she said }{ and left", "n": 2})

    def test_array(self):
        assert parse_model_json('Phases: [{"title": "a"}]') == ParsedOutput([{"title": "a"}])

    def test_unrecoverable_keeps_raw(self):
        out = parse_model_json("  I could not find a companion in these logs.  ")
        assert out == UnparsedOutput("I could not find a companion in these logs.")

    @pytest.mark.parametrize("reply", ["", "   \n", None])
    def test_empty(self, reply):
        with pytest.raises(MalformedModelOutput):
            parse_model_json(reply)


class TestHelpers:
    def test_strip_fences_without_fence(self):
        assert strip_fences("  plain  ") == "plain"

    def test_find_balanced_unterminated(self):
        assert find_balanced('{"a": [1, 2}', 0) is None

    def test_find_balanced_escaped_quote(self):
        text = r'{"a": "x\"}"} tail'
        assert find_balanced(text, 0) == r'{"a": "x\"}"}'


class TestShaping:
    def test_profile_base_from_object(self):
        assert as_profile_base(ParsedOutput({"companion_name": "Aria"})) == {"companion_name": "Aria"}

    def test_profile_base_escape_hatch(self):
        assert as_profile_base(UnparsedOutput("free text")) == {"raw_extraction": "free text"}

    def test_profile_base_from_non_object(self):
        assert as_profile_base(ParsedOutput([1, 2])) == {"raw_extraction": "[1, 2]"}

    @pytest.mark.parametrize("value", [
        [{"title": "a"}, "junk"],
        {"phases": [{"title": "a"}]},
        {"relationship_timeline": [{"title": "a"}]},
        {"timeline": [{"title": "a"}]},
    ])
    def test_phase_list_shapes(self, value):
        assert as_phase_list(ParsedOutput(value)) == [{"title": "a"}]

    def test_phase_list_rejects_other_shapes(self):
        assert as_phase_list(ParsedOutput({"summary": "x"})) is None
        assert as_phase_list(UnparsedOutput("text")) is None
