from __future__ import annotations

import copy
import json
from enum import Enum

from coursegen.ai.pipeline.contracts import IssueKind, IssueSeverity, ValidationStatus
from coursegen.ai.validator import Validator, annotation_at


def test_valid_payload_has_no_issues(lesson_schema, lesson_json) -> None:
  report = Validator(lesson_schema).validate(lesson_json())
  assert report.issues == []
  assert report.status == ValidationStatus.VALID
  assert report.is_valid
  assert isinstance(report.instance, lesson_schema.model)


def test_unparseable_text_is_critical(lesson_schema) -> None:
  report = Validator(lesson_schema).validate('{"title": "Cells",')
  assert report.parsed is None
  assert report.status == ValidationStatus.STRUCTURAL_FAIL
  [issue] = report.issues
  assert issue.kind == IssueKind.PARSE_ERROR
  assert issue.severity == IssueSeverity.CRITICAL
  assert issue.location == "$"


def test_top_level_array_is_a_parse_error(lesson_schema) -> None:
  report = Validator(lesson_schema).validate("[1, 2, 3]")
  assert [issue.kind for issue in report.issues] == [IssueKind.PARSE_ERROR]
  assert "list" in report.issues[0].description


def test_missing_field_is_fixable(lesson_schema, lesson_json) -> None:
  report = Validator(lesson_schema).validate(lesson_json(duration_minutes=None))
  [issue] = report.issues
  assert issue.kind == IssueKind.SCHEMA_VIOLATION
  assert issue.severity == IssueSeverity.FIXABLE
  assert issue.location == "duration_minutes"
  assert report.blocking_issues == [issue]


def test_string_number_is_a_type_violation(lesson_schema, lesson_json) -> None:
  report = Validator(lesson_schema).validate(lesson_json(duration_minutes="20"))
  [issue] = report.issues
  assert issue.kind == IssueKind.SCHEMA_VIOLATION
  assert "int_type" in issue.description


def test_nested_location_uses_dot_path(lesson_schema, valid_lesson) -> None:
  valid_lesson["sections"][1]["body"] = 42
  report = Validator(lesson_schema).validate(json.dumps(valid_lesson))
  assert [issue.location for issue in report.issues] == ["sections.1.body"]


def test_category_synonym_is_complex(lesson_schema, lesson_json) -> None:
  report = Validator(lesson_schema).validate(lesson_json(difficulty="easy"))
  [issue] = report.issues
  assert issue.kind == IssueKind.SEMANTIC_ERROR
  assert issue.severity == IssueSeverity.COMPLEX
  assert "beginner" in issue.description
  assert report.status == ValidationStatus.SEMANTIC_FAIL
  assert report.blocking_issues == []


def test_category_case_mismatch_is_fixable(lesson_schema, lesson_json) -> None:
  report = Validator(lesson_schema).validate(lesson_json(difficulty="Beginner"))
  [issue] = report.issues
  assert issue.kind == IssueKind.SCHEMA_VIOLATION
  assert issue.severity == IssueSeverity.FIXABLE


def test_cross_field_rule_violation_is_complex(lesson_schema, lesson_json) -> None:
  report = Validator(lesson_schema).validate(lesson_json(duration_minutes=5))
  [issue] = report.issues
  assert issue.kind == IssueKind.SEMANTIC_ERROR
  assert issue.severity == IssueSeverity.COMPLEX
  assert issue.location == "duration_minutes"
  assert issue.description.startswith("enough_time:")


def test_validation_does_not_mutate_payload(lesson_schema, valid_lesson) -> None:
  valid_lesson["durationMinutes"] = valid_lesson.pop("duration_minutes")
  snapshot = copy.deepcopy(valid_lesson)
  Validator(lesson_schema).validate_payload(valid_lesson)
  assert valid_lesson == snapshot


def test_known_field_names_cover_nested_models(lesson_schema) -> None:
  assert {"title", "body", "duration_minutes", "key_points"} <= lesson_schema.known_field_names


def test_annotation_at_resolves_nested_types(lesson_schema) -> None:
  model = lesson_schema.model
  assert issubclass(annotation_at(model, ("difficulty",)), Enum)
  assert annotation_at(model, ("sections", 0, "body")) is str
  assert annotation_at(model, ("unknown",)) is None
