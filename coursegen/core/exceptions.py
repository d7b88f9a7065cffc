"""Exceptions surfaced to callers of the pipeline and the lock coordinator."""

from __future__ import annotations

from coursegen.ai.pipeline.contracts import AttemptRecord, RepairAttempt, RetryState, ValidationIssue
from coursegen.locks.records import Lock


class GenerationFailedError(RuntimeError):
  """Raised when a generation run ends without accepted content."""

  def __init__(self, message: str, *, attempts: list[AttemptRecord], state: RetryState) -> None:
    """Keep the full attempt history so failures can be reviewed manually."""
    super().__init__(message)
    self.attempts = attempts
    self.state = state

  @property
  def repair_history(self) -> list[RepairAttempt]:
    return [repair for attempt in self.attempts for repair in attempt.repair_history]

  @property
  def issues(self) -> list[ValidationIssue]:
    return [issue for attempt in self.attempts for issue in attempt.issues]


class GenerationExhaustedError(GenerationFailedError):
  """Every attempt in the retry plan was used without acceptance."""


class GenerationRejectedError(GenerationFailedError):
  """The judge rejected a candidate that still carried unresolved complex issues."""


class GenerationCancelledError(GenerationFailedError):
  """Cancellation was requested between attempts."""


class LockBusyError(RuntimeError):
  """Raised when a write phase cannot start because another holder owns the lock."""

  def __init__(self, message: str, *, existing: Lock | None) -> None:
    super().__init__(message)
    self.existing = existing
