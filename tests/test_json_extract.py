"""Tests for tolerant JSON extraction from model responses."""

from transaction_importer.processing.ai.json_extract import extract_json, find_json_span
from transaction_importer.processing.ai.models import Malformed, Parsed


class TestExtractJson:
    """Tests for extract_json."""

    def test_plain_object(self) -> None:
        """Test a response that is only JSON."""
        assert extract_json('{"category": "Travel"}') == Parsed({"category": "Travel"})

    def test_object_surrounded_by_prose(self) -> None:
        """Test that prose before and after is ignored."""
        result = extract_json('Sure, here you go: {"a": 1} Let me know if you need more.')
        assert isinstance(result, Parsed)
        assert result.value == {"a": 1}

    def test_markdown_fenced_array(self) -> None:
        """Test an array inside a markdown code block."""
        result = extract_json('```json\n["Shopping", "Travel"]\n```')
        assert result.value == ["Shopping", "Travel"]

    def test_first_well_formed_value_wins(self) -> None:
        """Test that the earliest decodable value is returned."""
        result = extract_json('first [1, 2] then {"b": 2}')
        assert result.value == [1, 2]

    def test_skips_unbalanced_and_invalid_spans(self) -> None:
        """Test that broken candidates are skipped."""
        result = extract_json('{oops} and then {"a": [1, {"b": "x}"}]}')
        assert result.value == {"a": [1, {"b": "x}"}]}

    def test_brackets_inside_strings(self) -> None:
        """Test brackets and escaped quotes inside strings."""
        result = extract_json('{"note": "use [brackets] and \\"quotes\\" {freely}"}')
        assert result.value == {"note": 'use [brackets] and "quotes" {freely}'}

    def test_no_json(self) -> None:
        """Test a response without any JSON."""
        result = extract_json("I am unable to help with that.")
        assert isinstance(result, Malformed)
        assert not result.ok
        assert result.raw_text == "I am unable to help with that."

    def test_empty_response(self) -> None:
        """Test empty and missing responses."""
        assert isinstance(extract_json(""), Malformed)
        assert isinstance(extract_json(None), Malformed)

    def test_truncated_json(self) -> None:
        """Test a response cut off mid-object."""
        assert isinstance(extract_json('{"category": "Trav'), Malformed)


class TestFindJsonSpan:
    """Tests for find_json_span."""

    def test_span_bounds(self) -> None:
        """Test the returned slice covers exactly the JSON."""
        text = 'abc {"x": [1]} def'
        begin, end = find_json_span(text)
        assert text[begin:end] == '{"x": [1]}'

    def test_mismatched_closer(self) -> None:
        """Test that a mismatched closing bracket is not a span."""
        assert find_json_span("[1, 2}") is None
