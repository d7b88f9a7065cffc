"""Lossless type coercions driven by schema validation errors."""

from __future__ import annotations

import copy
import decimal
import enum
import logging
import re
from typing import Any, Literal, get_args, get_origin

from coursegen.ai.validator import Validator, annotation_at
from coursegen.utils.paths import format_location, set_value_at_path, value_at_path

logger = logging.getLogger(__name__)

_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
_TRUE_STRINGS = frozenset({"true", "yes", "y", "on", "1"})
_FALSE_STRINGS = frozenset({"false", "no", "n", "off", "0"})
_MAX_PASSES = 3


class _Rejected(Exception):
  """Signal that a coercion would lose information."""


class _Unchanged:
  def __repr__(self) -> str:
    return "<unchanged>"


_UNCHANGED: Any = _Unchanged()


def coerce_types(payload: dict[str, Any], validator: Validator) -> tuple[dict[str, Any], list[str]]:
  """Apply lossless coercions at every failing location until nothing changes.

  Each pass re-reads the schema errors, since fixing a container shape can reveal
  errors on the items inside it.
  """
  result = copy.deepcopy(payload)
  changes: list[str] = []

  for _ in range(_MAX_PASSES):
    applied = False
    for error in validator.schema_errors(result):
      loc = tuple(error.get("loc", ()))
      if not loc:
        continue
      current = value_at_path(result, loc)
      annotation = annotation_at(validator.schema.model, loc)
      try:
        coerced = coerce_value(str(error.get("type", "")), current, annotation)
      except _Rejected as exc:
        logger.debug("Rejected lossy coercion loc=%s reason=%s", format_location(loc), exc)
        continue
      if coerced is _UNCHANGED or (coerced == current and type(coerced) is type(current)):
        continue
      if set_value_at_path(result, loc, coerced):
        changes.append(f"{format_location(loc)}: {current!r} -> {coerced!r}")
        applied = True
    if not applied:
      break

  return result, changes


def coerce_value(error_type: str, value: Any, annotation: Any) -> Any:
  """Return the coerced value for one error, _UNCHANGED when no rule applies.

  Raises _Rejected when the only available conversion would drop information.
  """
  if error_type in ("int_type", "int_parsing", "int_from_float"):
    return _to_int(value)
  if error_type in ("float_type", "float_parsing"):
    return _to_float(value)
  if error_type in ("bool_type", "bool_parsing"):
    return _to_bool(value)
  if error_type == "string_type":
    return _to_str(value)
  if error_type == "list_type":
    if value is None or isinstance(value, list):
      return _UNCHANGED
    return [value]
  if error_type in ("enum", "literal_error"):
    return _to_category(value, annotation)
  return _UNCHANGED


def _to_int(value: Any) -> Any:
  if isinstance(value, bool):
    raise _Rejected("booleans are not counts")
  if isinstance(value, float):
    if value.is_integer():
      return int(value)
    raise _Rejected(f"{value!r} has a fractional part")
  if isinstance(value, str):
    text = value.strip()
    if _INT_RE.match(text):
      return int(text)
    if _FLOAT_RE.match(text):
      number = decimal.Decimal(text)
      if number == number.to_integral_value():
        return int(number)
    raise _Rejected(f"{value!r} is not a whole number")
  return _UNCHANGED


def _to_float(value: Any) -> Any:
  if isinstance(value, str) and _FLOAT_RE.match(value.strip()):
    return float(value.strip())
  if isinstance(value, str):
    raise _Rejected(f"{value!r} is not numeric")
  return _UNCHANGED


def _to_bool(value: Any) -> Any:
  if isinstance(value, int) and not isinstance(value, bool):
    if value in (0, 1):
      return bool(value)
    raise _Rejected(f"{value!r} is not 0 or 1")
  if isinstance(value, str):
    text = value.strip().casefold()
    if text in _TRUE_STRINGS:
      return True
    if text in _FALSE_STRINGS:
      return False
    raise _Rejected(f"{value!r} is not a recognised boolean")
  return _UNCHANGED


def _to_str(value: Any) -> Any:
  if isinstance(value, bool):
    return "true" if value else "false"
  if isinstance(value, int | float):
    return str(value)
  return _UNCHANGED


def _to_category(value: Any, annotation: Any) -> Any:
  """Match a category value to an allowed member ignoring case and surrounding space."""
  if not isinstance(value, str):
    return _UNCHANGED

  allowed: list[Any]
  if isinstance(annotation, type) and issubclass(annotation, enum.Enum):
    allowed = [member.value for member in annotation]
  elif get_origin(annotation) is Literal:
    allowed = list(get_args(annotation))
  else:
    return _UNCHANGED

  wanted = value.strip().casefold()
  matches = [option for option in allowed if isinstance(option, str) and option.casefold() == wanted]
  if len(matches) == 1:
    return matches[0]
  return _UNCHANGED
