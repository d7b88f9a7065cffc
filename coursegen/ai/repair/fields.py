"""Field-name normalization onto the canonical schema key set."""

from __future__ import annotations

import re
from collections.abc import Collection, Mapping
from typing import Any

_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_SEPARATOR_RE = re.compile(r"[\s\-.]+")
_UNDERSCORE_RUN_RE = re.compile(r"_+")


def to_snake_case(key: str) -> str:
  """Convert camelCase, kebab-case and spaced keys to snake_case."""
  split = _CAMEL_BOUNDARY_RE.sub("_", key.strip())
  joined = _SEPARATOR_RE.sub("_", split)
  return _UNDERSCORE_RUN_RE.sub("_", joined).strip("_").lower()


def normalize_field_names(payload: Any, *, known_fields: Collection[str], aliases: Mapping[str, str]) -> tuple[Any, list[str]]:
  """Rename variant keys to canonical field names throughout a payload.

  A key is only renamed when the target is a known field and is not already present
  on the same object, so canonical payloads come back unchanged.
  """
  alias_lookup = {to_snake_case(variant): canonical for variant, canonical in aliases.items()}
  changes: list[str] = []
  normalized = _normalize(payload, known_fields, aliases, alias_lookup, changes, "$")
  return normalized, changes


def _resolve_key(key: str, known_fields: Collection[str], aliases: Mapping[str, str], alias_lookup: Mapping[str, str]) -> str:
  if key in known_fields:
    return key

  # Explicit aliases win over mechanical case conversion.
  if key in aliases:
    return aliases[key]
  snake = to_snake_case(key)
  if snake in alias_lookup:
    return alias_lookup[snake]
  if snake in known_fields:
    return snake
  return key


def _normalize(value: Any, known_fields: Collection[str], aliases: Mapping[str, str], alias_lookup: Mapping[str, str], changes: list[str], path: str) -> Any:
  if isinstance(value, list):
    return [_normalize(item, known_fields, aliases, alias_lookup, changes, f"{path}.{index}") for index, item in enumerate(value)]

  if not isinstance(value, dict):
    return value

  result: dict[str, Any] = {}
  for key, item in value.items():
    target = _resolve_key(key, known_fields, aliases, alias_lookup)

    # Never overwrite a canonical key that the payload already carries.
    if target != key and (target in value or target in result or target not in known_fields):
      target = key
    if target != key:
      changes.append(f"{path}.{key} -> {target}")

    result[target] = _normalize(item, known_fields, aliases, alias_lookup, changes, f"{path}.{target}")
  return result
