"""Shared data contracts for the generation pipeline."""

from __future__ import annotations

import uuid
from enum import Enum, IntEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ValidationStatus(str, Enum):
  UNVALIDATED = "UNVALIDATED"
  STRUCTURAL_FAIL = "STRUCTURAL_FAIL"
  SEMANTIC_FAIL = "SEMANTIC_FAIL"
  VALID = "VALID"


class IssueKind(str, Enum):
  PARSE_ERROR = "PARSE_ERROR"
  SCHEMA_VIOLATION = "SCHEMA_VIOLATION"
  SEMANTIC_ERROR = "SEMANTIC_ERROR"
  TIMEOUT = "TIMEOUT"
  INVOCATION_ERROR = "INVOCATION_ERROR"


class IssueSeverity(str, Enum):
  CRITICAL = "CRITICAL"
  FIXABLE = "FIXABLE"
  COMPLEX = "COMPLEX"


class RepairLevel(str, Enum):
  """Repair cascade levels, declared in ascending cost order."""

  STRUCTURAL = "STRUCTURAL"
  FIELD_NORMALIZATION = "FIELD_NORMALIZATION"
  TYPE_COERCION = "TYPE_COERCION"
  SEMANTIC_LLM = "SEMANTIC_LLM"


class ModelTier(IntEnum):
  """Model capability tiers; higher values are larger and costlier models."""

  STANDARD = 1
  EXTENDED = 2
  PREMIUM = 3


class QualityStatus(str, Enum):
  PASS = "PASS"
  PASS_WITH_FLAGS = "PASS_WITH_FLAGS"
  FIXED = "FIXED"
  FLAG_TO_JUDGE = "FLAG_TO_JUDGE"
  REGENERATE = "REGENERATE"


class RetryState(str, Enum):
  PENDING = "PENDING"
  IN_PROGRESS = "IN_PROGRESS"
  ACCEPTED = "ACCEPTED"
  EXHAUSTED = "EXHAUSTED"
  REJECTED = "REJECTED"
  CANCELLED = "CANCELLED"


TERMINAL_RETRY_STATES: frozenset[RetryState] = frozenset({RetryState.ACCEPTED, RetryState.EXHAUSTED, RetryState.REJECTED, RetryState.CANCELLED})


class AttemptOutcome(str, Enum):
  ACCEPTED = "accepted"
  INVALID = "invalid"
  REGENERATE = "regenerate"
  REJECTED = "rejected"
  TIMEOUT = "timeout"
  INVOCATION_ERROR = "invocation_error"


class ValidationIssue(BaseModel):
  """One classified problem found while validating a candidate."""

  model_config = ConfigDict(frozen=True)

  kind: IssueKind
  severity: IssueSeverity
  location: str = "$"
  description: str

  @property
  def blocking(self) -> bool:
    """Return True when the issue prevents acceptance until repaired."""
    return self.severity in (IssueSeverity.CRITICAL, IssueSeverity.FIXABLE)

  def render(self) -> str:
    return f"[{self.kind.value}/{self.severity.value}] {self.location}: {self.description}"


class RepairAttempt(BaseModel):
  """Record of one repair cascade level execution."""

  model_config = ConfigDict(frozen=True)

  level: RepairLevel
  success: bool
  diff: str | None = None
  issues_before: int = Field(default=0, ge=0)
  issues_after: int = Field(default=0, ge=0)


def status_for_issues(issues: list[ValidationIssue]) -> ValidationStatus:
  """Map an issue list onto the candidate validation status."""
  if any(issue.kind in (IssueKind.PARSE_ERROR, IssueKind.SCHEMA_VIOLATION) for issue in issues):
    return ValidationStatus.STRUCTURAL_FAIL
  if any(issue.kind == IssueKind.SEMANTIC_ERROR for issue in issues):
    return ValidationStatus.SEMANTIC_FAIL
  return ValidationStatus.VALID


class Candidate(BaseModel):
  """The unit of work flowing through the pipeline for one model response."""

  candidate_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
  raw_text: str
  parsed: dict[str, Any] | None = None
  validation_status: ValidationStatus = ValidationStatus.UNVALIDATED
  repair_history: list[RepairAttempt] = Field(default_factory=list)
  attempt_index: int = Field(ge=1)
  issues: list[ValidationIssue] = Field(default_factory=list)

  @property
  def blocking_issues(self) -> list[ValidationIssue]:
    return [issue for issue in self.issues if issue.blocking]

  @property
  def complex_issues(self) -> list[ValidationIssue]:
    return [issue for issue in self.issues if issue.severity == IssueSeverity.COMPLEX]


class RetryAttemptConfig(BaseModel):
  """Generation parameters for a single attempt in the retry sequence."""

  model_config = ConfigDict(frozen=True)

  temperature: float = Field(ge=0.0, le=2.0)
  model_tier: ModelTier
  backoff_delay_ms: int = Field(ge=0)


class RetryPlan(BaseModel):
  """Declarative escalation policy consumed by the retry controller."""

  model_config = ConfigDict(frozen=True)

  attempts: list[RetryAttemptConfig] = Field(min_length=1)

  @model_validator(mode="after")
  def _check_monotonic(self) -> RetryPlan:
    # Escalation only ever moves towards colder sampling, larger models and longer waits.
    for index in range(1, len(self.attempts)):
      previous = self.attempts[index - 1]
      current = self.attempts[index]
      position = index + 1
      if current.temperature > previous.temperature:
        raise ValueError(f"attempt {position}: temperature must not increase ({previous.temperature} -> {current.temperature})")
      if current.model_tier < previous.model_tier:
        raise ValueError(f"attempt {position}: model_tier must not decrease ({previous.model_tier.name} -> {current.model_tier.name})")
      if current.backoff_delay_ms < previous.backoff_delay_ms:
        raise ValueError(f"attempt {position}: backoff_delay_ms must not decrease ({previous.backoff_delay_ms} -> {current.backoff_delay_ms})")
    return self

  @property
  def max_attempts(self) -> int:
    return len(self.attempts)

  def config_for(self, attempt_index: int) -> RetryAttemptConfig:
    """Return the config for a 1-based attempt index."""
    if not 1 <= attempt_index <= len(self.attempts):
      raise IndexError(f"attempt_index {attempt_index} outside 1..{len(self.attempts)}")
    return self.attempts[attempt_index - 1]


class QualityIssue(BaseModel):
  """Quality finding raised by the gate's heuristic checks or judge."""

  model_config = ConfigDict(frozen=True)

  code: str
  phase: str
  description: str
  location: str | None = None


class QualityVerdict(BaseModel):
  """Outcome of the quality gate for a structurally valid candidate."""

  status: QualityStatus
  issues: list[QualityIssue] = Field(default_factory=list)
  patched_content: dict[str, Any] | None = None
  reasoning: str | None = None
  stage: Literal["A", "B"] = "A"

  @model_validator(mode="after")
  def _check_patch(self) -> QualityVerdict:
    # Patched content replaces the original wholesale, so it only exists for FIXED.
    if self.status == QualityStatus.FIXED and self.patched_content is None:
      raise ValueError("FIXED verdicts must carry patched_content")
    if self.status != QualityStatus.FIXED and self.patched_content is not None:
      raise ValueError("patched_content is only allowed for FIXED verdicts")
    return self


class GenerationRequest(BaseModel):
  """Inputs for one content generation run."""

  prompt: str = Field(min_length=1)
  topic: str | None = None
  required_keywords: list[str] = Field(default_factory=list)
  language: str = "en"
  metadata: dict[str, Any] | None = None


class AttemptRecord(BaseModel):
  """Audit entry for one model invocation in the retry sequence."""

  attempt_index: int = Field(ge=1)
  config: RetryAttemptConfig
  outcome: AttemptOutcome
  candidate_id: str | None = None
  issues: list[ValidationIssue] = Field(default_factory=list)
  repair_history: list[RepairAttempt] = Field(default_factory=list)
  verdict: QualityVerdict | None = None


class GenerationResult(BaseModel):
  """Accepted content along with the audit trail that produced it."""

  content: dict[str, Any]
  verdict: QualityVerdict
  candidate: Candidate
  attempts: list[AttemptRecord]
  state: RetryState = RetryState.ACCEPTED

  @property
  def attempt_count(self) -> int:
    return len(self.attempts)
