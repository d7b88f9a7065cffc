from __future__ import annotations

import pytest

from coursegen.ai.repair.coercion import coerce_types, coerce_value
from coursegen.ai.repair.fields import normalize_field_names, to_snake_case
from coursegen.ai.validator import Validator


@pytest.mark.parametrize(
  ("key", "expected"),
  [
    ("durationMinutes", "duration_minutes"),
    ("Duration-Minutes", "duration_minutes"),
    ("key points", "key_points"),
    ("HTTPStatus", "http_status"),
    ("already_snake", "already_snake"),
  ],
)
def test_to_snake_case(key: str, expected: str) -> None:
  assert to_snake_case(key) == expected


def test_normalize_renames_nested_keys() -> None:
  payload = {"Title": "Cells", "sections": [{"Body": "Text."}]}
  normalized, changes = normalize_field_names(payload, known_fields={"title", "sections", "body"}, aliases={})
  assert normalized == {"title": "Cells", "sections": [{"body": "Text."}]}
  assert changes == ["$.Title -> title", "$.sections.0.Body -> body"]


def test_normalize_never_overwrites_canonical_key() -> None:
  payload = {"title": "Cells", "lesson_title": "Other"}
  normalized, changes = normalize_field_names(payload, known_fields={"title"}, aliases={"lesson_title": "title"})
  assert normalized == payload
  assert changes == []


def test_normalize_leaves_unknown_keys_alone() -> None:
  payload = {"mysteryField": 1}
  normalized, changes = normalize_field_names(payload, known_fields={"title"}, aliases={})
  assert normalized == {"mysteryField": 1}
  assert changes == []


def test_alias_matching_ignores_case_style() -> None:
  normalized, _ = normalize_field_names({"summaryPoints": ["a"]}, known_fields={"key_points"}, aliases={"summary_points": "key_points"})
  assert normalized == {"key_points": ["a"]}


def test_coerce_types_leaves_input_untouched(lesson_schema, valid_lesson) -> None:
  valid_lesson["duration_minutes"] = "20"
  coerced, changes = coerce_types(valid_lesson, Validator(lesson_schema))
  assert coerced["duration_minutes"] == 20
  assert valid_lesson["duration_minutes"] == "20"
  assert changes == ["duration_minutes: '20' -> 20"]


def test_coerce_types_handles_nested_values(lesson_schema, valid_lesson) -> None:
  valid_lesson["sections"][0]["title"] = 101
  coerced, _ = coerce_types(valid_lesson, Validator(lesson_schema))
  assert coerced["sections"][0]["title"] == "101"


@pytest.mark.parametrize(
  ("field", "value"),
  [
    ("duration_minutes", "twenty"),
    ("duration_minutes", 20.5),
    ("duration_minutes", "12345678901234567890.5"),
    ("published", "maybe"),
    ("published", 2),
    ("difficulty", "easy"),
  ],
)
def test_coerce_types_refuses_lossy_conversions(lesson_schema, valid_lesson, field: str, value: object) -> None:
  valid_lesson[field] = value
  coerced, changes = coerce_types(valid_lesson, Validator(lesson_schema))
  assert coerced[field] == value
  assert changes == []


def test_whole_float_becomes_int(lesson_schema, valid_lesson) -> None:
  valid_lesson["duration_minutes"] = 20.0
  coerced, _ = coerce_types(valid_lesson, Validator(lesson_schema))
  assert coerced["duration_minutes"] == 20
  assert isinstance(coerced["duration_minutes"], int)


def test_large_whole_number_string_keeps_every_digit() -> None:
  assert coerce_value("int_parsing", "12345678901234567890.0", int) == 12345678901234567890
  assert coerce_value("int_parsing", "4.0e2", int) == 400
