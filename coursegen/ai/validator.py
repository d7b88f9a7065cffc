"""Two-phase validation of raw model output against a caller-supplied content schema."""

from __future__ import annotations

import logging
import types
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from functools import cached_property
from typing import Annotated, Any, Union, get_args, get_origin

import msgspec
from pydantic import BaseModel, ValidationError

from coursegen.ai.json_parser import decode_json, encode_json
from coursegen.ai.pipeline.contracts import IssueKind, IssueSeverity, ValidationIssue, ValidationStatus, status_for_issues
from coursegen.utils.paths import format_location

logger = logging.getLogger(__name__)

_CATEGORY_ERROR_TYPES = frozenset({"enum", "literal_error"})
_SEMANTIC_ERROR_TYPES = frozenset({"value_error", "assertion_error"})


@dataclass(frozen=True)
class CrossFieldRule:
  """Consistency rule evaluated on a schema-valid model instance.

  The check returns a description of the violation, or None when the rule holds.
  """

  name: str
  check: Callable[[Any], str | None]
  location: str = "$"


@dataclass(frozen=True)
class ContentSchema:
  """Target structure for one content type, supplied by the caller."""

  model: type[BaseModel]
  field_aliases: Mapping[str, str] = field(default_factory=dict)
  category_synonyms: Mapping[str, str] = field(default_factory=dict)
  rules: tuple[CrossFieldRule, ...] = ()
  prose_fields: tuple[str, ...] = ()

  @property
  def name(self) -> str:
    return self.model.__name__

  def json_schema(self) -> dict[str, Any]:
    return self.model.model_json_schema()

  @cached_property
  def known_field_names(self) -> frozenset[str]:
    """Every field name declared anywhere in the model tree."""
    names: set[str] = set()
    _collect_field_names(self.model, names, set())
    return frozenset(names)

  def synonym_for(self, value: Any) -> str | None:
    """Return the canonical category a known synonym stands for."""
    if not isinstance(value, str):
      return None
    lookup = {key.casefold(): canonical for key, canonical in self.category_synonyms.items()}
    return lookup.get(value.strip().casefold())


@dataclass(frozen=True)
class ValidationReport:
  """Validator output: the parsed payload (when decodable) and every issue found."""

  parsed: dict[str, Any] | None
  issues: list[ValidationIssue]
  instance: BaseModel | None = None

  @property
  def status(self) -> ValidationStatus:
    return status_for_issues(self.issues)

  @property
  def blocking_issues(self) -> list[ValidationIssue]:
    return [issue for issue in self.issues if issue.blocking]

  @property
  def is_valid(self) -> bool:
    return not self.issues


class Validator:
  """Parse raw text and check it against a content schema without side effects."""

  def __init__(self, schema: ContentSchema) -> None:
    self.schema = schema

  def validate(self, raw_text: str) -> ValidationReport:
    """Run the structural phase, then the semantic phase when parsing succeeds."""
    try:
      payload = decode_json(raw_text)
    except msgspec.DecodeError as exc:
      issue = ValidationIssue(kind=IssueKind.PARSE_ERROR, severity=IssueSeverity.CRITICAL, location="$", description=str(exc))
      return ValidationReport(parsed=None, issues=[issue])

    # Only a top-level object can carry the schema fields.
    if not isinstance(payload, dict):
      issue = ValidationIssue(kind=IssueKind.PARSE_ERROR, severity=IssueSeverity.CRITICAL, location="$", description=f"expected a JSON object, got {type(payload).__name__}")
      return ValidationReport(parsed=None, issues=[issue])

    return self.validate_payload(payload)

  def validate_payload(self, payload: dict[str, Any]) -> ValidationReport:
    """Run the semantic phase on an already-decoded payload."""
    instance: BaseModel | None = None
    issues: list[ValidationIssue] = []
    try:
      instance = self.schema.model.model_validate_json(encode_json(payload), strict=True)
    except ValidationError as exc:
      issues.extend(self._classify(error) for error in exc.errors())

    # Cross-field rules need a fully typed instance to reason about.
    if instance is not None:
      for rule in self.schema.rules:
        violation = rule.check(instance)
        if violation:
          issues.append(ValidationIssue(kind=IssueKind.SEMANTIC_ERROR, severity=IssueSeverity.COMPLEX, location=rule.location, description=f"{rule.name}: {violation}"))

    if issues:
      logger.debug("Validation found issues schema=%s count=%d", self.schema.name, len(issues))
    return ValidationReport(parsed=payload, issues=issues, instance=instance)

  def schema_errors(self, payload: dict[str, Any]) -> list[dict[str, Any]]:
    """Return the raw pydantic error dicts for a payload."""
    try:
      self.schema.model.model_validate_json(encode_json(payload), strict=True)
    except ValidationError as exc:
      return list(exc.errors())
    return []

  def _classify(self, error: Mapping[str, Any]) -> ValidationIssue:
    error_type = str(error.get("type", ""))
    location = format_location(error.get("loc", ()))
    message = str(error.get("msg", error_type))

    if error_type in _CATEGORY_ERROR_TYPES:
      # A recognised synonym is a meaning mismatch, not a formatting slip.
      canonical = self.schema.synonym_for(error.get("input"))
      if canonical is not None:
        description = f"{message} (input {error.get('input')!r} looks like a synonym of {canonical!r})"
        return ValidationIssue(kind=IssueKind.SEMANTIC_ERROR, severity=IssueSeverity.COMPLEX, location=location, description=description)
      return ValidationIssue(kind=IssueKind.SCHEMA_VIOLATION, severity=IssueSeverity.FIXABLE, location=location, description=message)

    if error_type in _SEMANTIC_ERROR_TYPES:
      return ValidationIssue(kind=IssueKind.SEMANTIC_ERROR, severity=IssueSeverity.COMPLEX, location=location, description=message)

    return ValidationIssue(kind=IssueKind.SCHEMA_VIOLATION, severity=IssueSeverity.FIXABLE, location=location, description=f"{message} ({error_type})")


def unwrap_annotation(annotation: Any) -> Any:
  """Strip Annotated wrappers and Optional unions down to the concrete type."""
  while True:
    origin = get_origin(annotation)
    if origin is Annotated:
      annotation = get_args(annotation)[0]
      continue
    if origin in (Union, types.UnionType):
      members = [arg for arg in get_args(annotation) if arg is not type(None)]
      if len(members) == 1:
        annotation = members[0]
        continue
    return annotation


def annotation_at(model: type[BaseModel], loc: tuple[str | int, ...] | list[str | int]) -> Any:
  """Resolve the declared type at a validation location, or None when unknown."""
  current: Any = model
  for part in loc:
    current = unwrap_annotation(current)
    if isinstance(part, int):
      args = get_args(current)
      if get_origin(current) not in (list, tuple, set, frozenset) or not args:
        return None
      current = args[0]
      continue
    if isinstance(current, type) and issubclass(current, BaseModel):
      model_field = current.model_fields.get(part)
      if model_field is None:
        return None
      current = model_field.annotation
      continue
    return None
  return unwrap_annotation(current)


def _collect_field_names(annotation: Any, names: set[str], seen: set[Any]) -> None:
  annotation = unwrap_annotation(annotation)
  if isinstance(annotation, type) and issubclass(annotation, BaseModel):
    if annotation in seen:
      return
    seen.add(annotation)
    for field_name, model_field in annotation.model_fields.items():
      names.add(field_name)
      _collect_field_names(model_field.annotation, names, seen)
    return
  for arg in get_args(annotation):
    _collect_field_names(arg, names, seen)
