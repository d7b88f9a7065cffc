"""Dot-path helpers for navigating parsed JSON payloads."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Any

Location = tuple[str | int, ...]


def format_location(loc: Sequence[str | int]) -> str:
  """Render a validation location tuple as a dot path, using $ for the root."""
  if not loc:
    return "$"
  return ".".join(str(part) for part in loc)


def value_at_path(payload: Any, path: Sequence[str | int]) -> Any:
  """Return the value at path, or None when any segment is missing."""
  current = payload
  for part in path:
    if isinstance(current, dict) and isinstance(part, str):
      if part not in current:
        return None
      current = current[part]
      continue
    if isinstance(current, list) and isinstance(part, int):
      if part >= len(current):
        return None
      current = current[part]
      continue
    return None
  return current


def set_value_at_path(payload: Any, path: Sequence[str | int], value: Any) -> bool:
  """Replace the value at path in place and report whether it was reachable."""
  if not path:
    return False
  parent = value_at_path(payload, path[:-1])
  leaf = path[-1]
  if isinstance(parent, dict) and isinstance(leaf, str):
    parent[leaf] = value
    return True
  if isinstance(parent, list) and isinstance(leaf, int) and leaf < len(parent):
    parent[leaf] = value
    return True
  return False


def iter_matching(payload: Any, pattern: str) -> Iterator[tuple[Location, Any]]:
  """Yield (location, value) pairs for a dot pattern where * expands list items."""
  yield from _walk(payload, pattern.split(".") if pattern else [], ())


def iter_strings(payload: Any, prefix: Location = ()) -> Iterator[tuple[Location, str]]:
  """Yield every string leaf in a payload with its raw location tuple."""
  if isinstance(payload, str):
    yield prefix, payload
  elif isinstance(payload, dict):
    for key, value in payload.items():
      yield from iter_strings(value, (*prefix, key))
  elif isinstance(payload, list):
    for index, value in enumerate(payload):
      yield from iter_strings(value, (*prefix, index))


def _walk(current: Any, tokens: list[str], prefix: Location) -> Iterator[tuple[Location, Any]]:
  if not tokens:
    yield prefix, current
    return

  head, rest = tokens[0], tokens[1:]
  if head == "*":
    if isinstance(current, list):
      for index, item in enumerate(current):
        yield from _walk(item, rest, (*prefix, index))
    return

  if isinstance(current, dict) and head in current:
    yield from _walk(current[head], rest, (*prefix, head))
