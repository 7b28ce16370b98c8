"""
Tests for the model reply decoder
"""

import pytest

from sovtrack.adapters.parsing import (
    ReplyDecoder,
    ReplyShape,
    clean_items,
    match_keyed_object,
    match_nested_object_array,
    match_object_field_array,
    match_string_array,
    salvage_quoted_strings,
    strip_code_fences,
)


@pytest.fixture
def competitor_decoder():
    return ReplyDecoder(
        matchers=[
            (ReplyShape.STRING_ARRAY, match_string_array),
            (ReplyShape.NESTED_OBJECT_ARRAY, match_nested_object_array("competitors")),
            (ReplyShape.KEYED_OBJECT, match_keyed_object("competitors")),
        ],
        limit=5,
        salvage_ignore=["competitors"],
    )


class TestHelpers:
    """Low-level text helpers"""

    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n["a", "b"]\n```') == '["a", "b"]'
        assert strip_code_fences('```\n{"x": 1}\n```') == '{"x": 1}'
        assert strip_code_fences('  ["a"]  ') == '["a"]'

    def test_salvage_quoted_strings(self):
        text = 'Sure! Here you go: ["Alpha Co", "Beta Inc", oops'
        assert salvage_quoted_strings(text) == ["Alpha Co", "Beta Inc"]

    def test_salvage_nothing_quoted(self):
        assert salvage_quoted_strings("no quotes at all") == []
        assert salvage_quoted_strings(None) == []

    def test_clean_items_trims_dedupes_and_caps(self):
        items = ["  A ", "B", "A", "", 3, None, "C", "D"]
        assert clean_items(items) == ["A", "B", "C", "D"]
        assert clean_items(items, limit=2) == ["A", "B"]


class TestShapeMatchers:
    """Each matcher accepts its shape or returns None"""

    def test_string_array(self):
        assert match_string_array(["a", "b"]) == ["a", "b"]
        assert match_string_array([]) == []
        assert match_string_array({"a": 1}) is None
        assert match_string_array([{"a": 1}]) is None

    def test_nested_object_array(self):
        matcher = match_nested_object_array("competitors")
        assert matcher([{"competitors": ["a"]}]) == ["a"]
        assert matcher([{"other": ["a"]}]) is None
        assert matcher(["a"]) is None

    def test_keyed_object(self):
        matcher = match_keyed_object("categories")
        assert matcher({"categories": ["a", "b"]}) == ["a", "b"]
        assert matcher({"categories": "a"}) is None
        assert matcher(["a"]) is None

    def test_object_field_array(self):
        matcher = match_object_field_array(("query", "question"))
        payload = [{"query": "first?"}, {"question": "second?"}, {"id": 3}]
        assert matcher(payload) == ["first?", "second?"]
        assert matcher([{"id": 1}]) is None
        assert matcher(["plain"]) is None


class TestReplyDecoder:
    """Ordered decode: shapes -> salvage -> fallback"""

    def test_string_array(self, competitor_decoder):
        decoded = competitor_decoder.decode('["Alpha", "Beta"]')
        assert decoded.items == ["Alpha", "Beta"]
        assert decoded.shape == ReplyShape.STRING_ARRAY

    def test_nested_object_array(self, competitor_decoder):
        decoded = competitor_decoder.decode('[{"competitors": ["Alpha", "Beta"]}]')
        assert decoded.items == ["Alpha", "Beta"]
        assert decoded.shape == ReplyShape.NESTED_OBJECT_ARRAY

    def test_keyed_object(self, competitor_decoder):
        decoded = competitor_decoder.decode('{"competitors": ["Alpha"]}')
        assert decoded.items == ["Alpha"]
        assert decoded.shape == ReplyShape.KEYED_OBJECT

    def test_fenced_json(self, competitor_decoder):
        decoded = competitor_decoder.decode('```json\n["Alpha", "Beta"]\n```')
        assert decoded.items == ["Alpha", "Beta"]

    def test_cap_applies(self, competitor_decoder):
        names = [f'"C{i}"' for i in range(8)]
        decoded = competitor_decoder.decode("[" + ", ".join(names) + "]")
        assert decoded.items == ["C0", "C1", "C2", "C3", "C4"]
        assert decoded.raw_count == 8

    def test_non_strings_dropped(self, competitor_decoder):
        decoded = competitor_decoder.decode('["Alpha", 7, null, "  ", "Beta"]')
        assert decoded.items == ["Alpha", "Beta"]
        assert decoded.dropped == [7, None, "  "]

    def test_salvage_on_malformed_json(self, competitor_decoder):
        decoded = competitor_decoder.decode('{"competitors": ["Alpha", "Beta",]')
        assert decoded.shape == ReplyShape.SALVAGED
        assert decoded.items == ["Alpha", "Beta"]

    def test_salvage_when_no_shape_matches(self, competitor_decoder):
        decoded = competitor_decoder.decode('{"names": "Alpha and Beta"}')
        assert decoded.shape == ReplyShape.SALVAGED
        assert decoded.items == ["names", "Alpha and Beta"]

    def test_fallback(self, competitor_decoder):
        decoded = competitor_decoder.decode("I cannot help with that.", fallback=lambda: ["X", "Y"])
        assert decoded.shape == ReplyShape.FALLBACK
        assert decoded.items == ["X", "Y"]
        assert decoded.is_fallback

    def test_empty_without_fallback(self, competitor_decoder):
        decoded = competitor_decoder.decode("")
        assert decoded.shape == ReplyShape.EMPTY
        assert decoded.items == []
        assert decoded.is_fallback

    def test_empty_json_list_is_accepted(self, competitor_decoder):
        decoded = competitor_decoder.decode("[]", fallback=lambda: ["X"])
        assert decoded.shape == ReplyShape.STRING_ARRAY
        assert decoded.items == []

    def test_salvage_disabled(self):
        decoder = ReplyDecoder(matchers=[(ReplyShape.STRING_ARRAY, match_string_array)], salvage=False)
        decoded = decoder.decode('["broken",', fallback=lambda: ["F"])
        assert decoded.shape == ReplyShape.FALLBACK

    def test_match_on_parsed_payload(self, competitor_decoder):
        decoded = competitor_decoder.match({"competitors": ["Alpha"]})
        assert decoded.items == ["Alpha"]
        assert competitor_decoder.match(42) is None
