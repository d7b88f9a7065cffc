"""Strict JSON decoding and deterministic text repairs for model outputs."""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Any

import msgspec

_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_][\w-]*)(\s*:)")
_LINE_COMMENT_RE = re.compile(r"//[^\n]*")
_BLOCK_COMMENT_RE = re.compile(r"/\*.*?(?:\*/|$)", re.DOTALL)
_CLOSERS = {"{": "}", "[": "]"}
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?")
_LITERAL_RE = re.compile(r"(?:true|false|null)\b")


def decode_json(raw: str | bytes) -> Any:
  """Decode JSON strictly, raising msgspec.DecodeError on malformed input."""
  return msgspec.json.decode(raw)


def encode_json(payload: Any) -> str:
  """Encode a payload as compact JSON text."""
  return msgspec.json.encode(payload).decode("utf-8")


def is_valid_json(raw: str) -> bool:
  try:
    decode_json(raw)
  except msgspec.DecodeError:
    return False
  return True


def estimate_tokens(text: str) -> int:
  """Approximate token count at four characters per token."""
  return (len(text) + 3) // 4


def strip_json_fences(raw: str) -> str:
  """Drop a surrounding Markdown code fence, tolerating a missing closing fence."""
  stripped = raw.strip()
  if not stripped.startswith("```"):
    return raw

  # Drop the opening fence line including any language tag.
  _, _, body = stripped.partition("\n")
  body = body.rstrip()
  if body.endswith("```"):
    body = body[:-3]
  return body.strip()


def repair_json_text(raw: str) -> tuple[str, list[str]]:
  """Apply deterministic text repairs until the payload decodes.

  Returns the repaired text and a label for every repair that changed it.
  Valid input is returned untouched with no labels, so the repair is idempotent.
  """
  if is_valid_json(raw):
    return raw, []

  text = raw
  changes: list[str] = []
  for label, transform in _REPAIR_STEPS:
    updated = transform(text)
    if updated != text:
      changes.append(label)
      text = updated

    # Stop as soon as the payload decodes so later passes never touch valid JSON.
    if is_valid_json(text):
      break

  return text, changes


def _split_strings(raw: str) -> list[tuple[bool, str]]:
  """Split text into (is_string_literal, chunk) segments honoring escapes."""
  segments: list[tuple[bool, str]] = []
  buffer: list[str] = []
  in_string = False
  escape = False

  for char in raw:
    if in_string:
      buffer.append(char)
      if escape:
        escape = False
      elif char == "\\":
        escape = True
      elif char == '"':
        segments.append((True, "".join(buffer)))
        buffer = []
        in_string = False
      continue

    if char == '"':
      if buffer:
        segments.append((False, "".join(buffer)))
      buffer = [char]
      in_string = True
      continue

    buffer.append(char)

  if buffer:
    segments.append((in_string, "".join(buffer)))
  return segments


def _map_outside_strings(raw: str, transform: Callable[[str], str]) -> str:
  """Apply a text transform only to the parts of raw that are not string literals."""
  return "".join(chunk if is_string else transform(chunk) for is_string, chunk in _split_strings(raw))


def _extract_json_body(raw: str) -> str:
  """Cut leading and trailing prose around the first JSON object or array."""
  starts = [index for index in (raw.find("{"), raw.find("[")) if index >= 0]
  if not starts:
    return raw

  start = min(starts)
  depth = 0
  in_string = False
  escape = False

  # Scan for the balanced end of the payload while honoring string escapes.
  for index in range(start, len(raw)):
    char = raw[index]
    if in_string:
      if escape:
        escape = False
      elif char == "\\":
        escape = True
      elif char == '"':
        in_string = False
      continue
    if char == '"':
      in_string = True
    elif char in "{[":
      depth += 1
    elif char in "}]":
      depth -= 1
      if depth == 0:
        return raw[start : index + 1]

  # Truncated payloads keep everything after the opening bracket.
  return raw[start:].rstrip()


def _remove_comments(raw: str) -> str:
  def _strip(chunk: str) -> str:
    return _LINE_COMMENT_RE.sub("", _BLOCK_COMMENT_RE.sub("", chunk))

  return _map_outside_strings(raw, _strip)


def _strip_trailing_commas(raw: str) -> str:
  """Remove separators that sit directly before a closing bracket."""
  return _map_outside_strings(raw, lambda chunk: _TRAILING_COMMA_RE.sub(r"\1", chunk))


def _quote_unquoted_keys(raw: str) -> str:
  """Wrap bare object keys in quotes to handle JS-style output."""
  return _map_outside_strings(raw, lambda chunk: _BARE_KEY_RE.sub(r'\1"\2"\3', chunk))


def _scalar_end(raw: str, index: int) -> int | None:
  """Return where the string, number or literal starting at index ends, or None."""
  char = raw[index]
  if char == '"':
    escape = False
    for cursor in range(index + 1, len(raw)):
      if escape:
        escape = False
      elif raw[cursor] == "\\":
        escape = True
      elif raw[cursor] == '"':
        return cursor + 1
    return len(raw)

  # Digits or literals glued to a preceding word are not values of their own.
  if index > 0 and (raw[index - 1].isalnum() or raw[index - 1] == "_"):
    return None
  match = _NUMBER_RE.match(raw, index) or _LITERAL_RE.match(raw, index)
  return match.end() if match else None


def _is_key(raw: str, end: int) -> bool:
  cursor = end
  while cursor < len(raw) and raw[cursor].isspace():
    cursor += 1
  return cursor < len(raw) and raw[cursor] == ":"


def _insert_missing_commas(raw: str) -> str:
  """Insert a separator where two members or items run together.

  Inside objects only a new key counts as the next member, so a quote inside a
  string value is left for the inner-quote repair.
  """
  output: list[str] = []
  stack: list[str] = []
  value_end: int | None = None
  index = 0

  while index < len(raw):
    char = raw[index]
    if char.isspace():
      output.append(char)
      index += 1
      continue

    end = _scalar_end(raw, index)
    starts_member = end is not None or char in _CLOSERS
    if stack and stack[-1] == "{":
      starts_member = end is not None and char == '"' and _is_key(raw, end)
    if starts_member and value_end is not None:
      output.insert(value_end, ",")

    if end is not None:
      output.append(raw[index:end])
      index = end
      value_end = len(output)
      continue

    output.append(char)
    index += 1
    value_end = None
    if char in _CLOSERS:
      stack.append(char)
    elif char in "}]":
      if stack:
        stack.pop()
      value_end = len(output)

  return "".join(output)


def _escape_inner_quotes(raw: str) -> str:
  """Escape quotes inside string literals that do not terminate the literal.

  A quote closes a literal only when the next meaningful character is a
  separator, a closing bracket, the end of input, or a quote on a new line.
  """
  output: list[str] = []
  in_string = False
  escape = False
  length = len(raw)

  for index, char in enumerate(raw):
    if not in_string:
      output.append(char)
      in_string = char == '"'
      continue

    if escape:
      output.append(char)
      escape = False
      continue

    if char == "\\":
      output.append(char)
      escape = True
      continue

    if char != '"':
      output.append(char)
      continue

    cursor = index + 1
    saw_newline = False
    while cursor < length and raw[cursor].isspace():
      saw_newline = saw_newline or raw[cursor] == "\n"
      cursor += 1

    following = raw[cursor] if cursor < length else ""
    if following in ("", ",", ":", "}", "]") or (following == '"' and saw_newline):
      output.append(char)
      in_string = False
    else:
      output.append('\\"')

  return "".join(output)


def _balance_brackets(raw: str) -> str:
  """Close an unterminated string and unmatched brackets, dropping stray closers."""
  output: list[str] = []
  stack: list[str] = []
  in_string = False
  escape = False

  for char in raw:
    if in_string:
      output.append(char)
      if escape:
        escape = False
      elif char == "\\":
        escape = True
      elif char == '"':
        in_string = False
      continue

    if char == '"':
      in_string = True
    elif char in _CLOSERS:
      stack.append(char)
    elif char in "}]":
      # Skip closers that do not match the innermost open bracket.
      if not stack or _CLOSERS[stack[-1]] != char:
        continue
      stack.pop()
    output.append(char)

  if in_string:
    # A dangling backslash would escape the quote we are about to add.
    if escape:
      output.pop()
    output.append('"')

  text = "".join(output).rstrip()
  while text.endswith(","):
    text = text[:-1].rstrip()
  if text.endswith(":"):
    text = f"{text} null"

  return text + "".join(_CLOSERS[opener] for opener in reversed(stack))


_REPAIR_STEPS: tuple[tuple[str, Callable[[str], str]], ...] = (
  ("stripped code fences", strip_json_fences),
  ("extracted json body", _extract_json_body),
  ("removed comments", _remove_comments),
  ("stripped trailing separators", _strip_trailing_commas),
  ("quoted bare keys", _quote_unquoted_keys),
  ("inserted missing separators", _insert_missing_commas),
  ("escaped inner quotes", _escape_inner_quotes),
  ("balanced brackets", _balance_brackets),
)
