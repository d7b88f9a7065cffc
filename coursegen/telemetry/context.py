"""Context helpers for correlating model calls with the candidate that triggered them."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass


@dataclass(frozen=True)
class GenerationCallContext:
  """Metadata attached to every model call made on behalf of a candidate."""

  purpose: str
  topic: str | None
  candidate_id: str | None
  attempt_index: int | None


_CURRENT_CALL_CONTEXT: ContextVar[GenerationCallContext | None] = ContextVar("generation_call_context", default=None)


def get_call_context() -> GenerationCallContext | None:
  """Return the active call context so invokers can log rich metadata."""
  return _CURRENT_CALL_CONTEXT.get()


def describe_call_context() -> str:
  """Render the active context as key=value pairs for log lines."""
  context = get_call_context()
  if context is None:
    return "purpose=- topic=- candidate=- attempt=-"
  return f"purpose={context.purpose} topic={context.topic or '-'} candidate={context.candidate_id or '-'} attempt={context.attempt_index or '-'}"


@contextmanager
def generation_call_context(*, purpose: str, topic: str | None = None, candidate_id: str | None = None, attempt_index: int | None = None) -> Iterator[GenerationCallContext]:
  """Set contextual metadata for downstream model calls and reset it afterward."""
  context = GenerationCallContext(purpose=purpose, topic=topic, candidate_id=candidate_id, attempt_index=attempt_index)
  token = _CURRENT_CALL_CONTEXT.set(context)

  try:
    yield context

  finally:
    _CURRENT_CALL_CONTEXT.reset(token)
