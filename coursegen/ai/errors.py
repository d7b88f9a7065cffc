"""Shared error classification helpers for model invocation failures."""

from __future__ import annotations

from collections.abc import Iterable

_PROVIDER_HINTS: tuple[str, ...] = (
  "unsupported model",
  "model not found",
  "no such model",
  "model is not available",
  "not available",
  "rate limit",
  "too many requests",
  "429",
  "quota",
  "resource exhausted",
  "overloaded",
  "timeout",
  "timed out",
  "connection",
  "network",
  "service unavailable",
  "bad gateway",
  "gateway",
  "openrouter",
)


def _match_hint(message: str, hints: Iterable[str]) -> bool:
  """Return True when any hint appears in the message."""
  return any(hint in message for hint in hints)


def is_provider_error(exc: BaseException) -> bool:
  """Return True when an exception indicates a transient provider or model availability failure."""
  if isinstance(exc, TimeoutError | ConnectionError):
    return True
  message = f"{type(exc).__name__}: {exc}".lower()
  return _match_hint(message, _PROVIDER_HINTS)
