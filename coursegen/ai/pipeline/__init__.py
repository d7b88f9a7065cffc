"""Pipeline contracts."""

from coursegen.ai.pipeline.contracts import (
  AttemptOutcome,
  AttemptRecord,
  Candidate,
  GenerationRequest,
  GenerationResult,
  IssueKind,
  IssueSeverity,
  ModelTier,
  QualityIssue,
  QualityStatus,
  QualityVerdict,
  RepairAttempt,
  RepairLevel,
  RetryAttemptConfig,
  RetryPlan,
  RetryState,
  ValidationIssue,
  ValidationStatus,
)

__all__ = [
  "AttemptOutcome",
  "AttemptRecord",
  "Candidate",
  "GenerationRequest",
  "GenerationResult",
  "IssueKind",
  "IssueSeverity",
  "ModelTier",
  "QualityIssue",
  "QualityStatus",
  "QualityVerdict",
  "RepairAttempt",
  "RepairLevel",
  "RetryAttemptConfig",
  "RetryPlan",
  "RetryState",
  "ValidationIssue",
  "ValidationStatus",
]
