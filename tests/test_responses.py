import pytest

from scoop.core.errors import MalformedResponse, ValidationError
from scoop.core.responses import ResultKind, normalize_response, strip_code_fences


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences("  plain  ") == "plain"
    assert strip_code_fences("") == ""


def test_fenced_object_parses():
    result = normalize_response('```json\n{"headline": "H", "content": "C"}\n```')
    assert result.ok
    assert result.value == {"headline": "H", "content": "C"}


def test_object_embedded_in_prose_is_recovered():
    raw = 'Sure! Here is the rating: {"interest_level": 8} Hope that helps.'
    result = normalize_response(raw)
    assert result.ok
    assert result.value == {"interest_level": 8}


def test_single_element_array_coerced_to_object():
    result = normalize_response('[{"event_summary": "Fun night"}]')
    assert result.value == {"event_summary": "Fun night"}


def test_object_wrapping_one_list_coerced_to_array():
    result = normalize_response('{"groups": [{"primary_article_index": 0}]}', expect="array")
    assert result.ok
    assert result.value == [{"primary_article_index": 0}]


def test_lone_object_wrapped_when_array_expected():
    result = normalize_response('{"primary_article_index": 0}', expect="array")
    assert result.value == [{"primary_article_index": 0}]


def test_unparseable_is_malformed():
    result = normalize_response("I cannot rate this article.")
    assert result.kind == ResultKind.MALFORMED
    with pytest.raises(MalformedResponse):
        result.unwrap()


def test_wrong_shape_is_malformed():
    result = normalize_response("42")
    assert result.kind == ResultKind.MALFORMED


def test_missing_required_field_is_invalid():
    result = normalize_response('{"headline": "H", "content": "  "}', required=("headline", "content"))
    assert result.kind == ResultKind.INVALID
    assert result.missing == ("content",)
    assert result.value == {"headline": "H", "content": "  "}
    with pytest.raises(ValidationError) as exc_info:
        result.unwrap()
    assert exc_info.value.missing == ("content",)


def test_text_response_strips_quotes():
    result = normalize_response('"Big news downtown"\n', expect="text")
    assert result.ok
    assert result.value == "Big news downtown"


def test_empty_text_response_is_invalid():
    assert normalize_response("   ", expect="text").kind == ResultKind.INVALID
    assert normalize_response(None, expect="text").kind == ResultKind.INVALID
