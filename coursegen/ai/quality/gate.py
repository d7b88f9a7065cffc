"""Two-stage quality gate for structurally valid candidates."""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, assert_never

from coursegen.ai.pipeline.contracts import GenerationRequest, QualityIssue, QualityStatus, QualityVerdict, ValidationIssue
from coursegen.ai.quality import heuristics
from coursegen.ai.quality.judge import Judge, JudgeDecision
from coursegen.ai.validator import ContentSchema
from coursegen.utils.paths import Location, format_location, iter_matching, iter_strings, set_value_at_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GateThresholds:
  """Cut-offs separating minor findings from regeneration-worthy ones."""

  critical_foreign_chars: int = 20
  critical_truncation_signals: int = 2
  min_keyword_coverage: float = 0.5


@dataclass
class _Screening:
  """Mutable state shared by the Stage A phases for one candidate."""

  payload: dict[str, Any]
  request: GenerationRequest
  schema: ContentSchema
  escalated: list[ValidationIssue]
  texts: list[tuple[Location, str]]
  flags: list[QualityIssue] = field(default_factory=list)


StagePhase = Callable[[_Screening], QualityVerdict | None]


class QualityGate:
  """Cheap heuristic filter (Stage A) in front of an expensive judge (Stage B).

  Stage A runs its phases in order and stops at the first verdict: integrity
  failures regenerate, alignment doubts go to the judge, hygiene problems are
  patched in place. REGENERATE never reaches the judge.
  """

  def __init__(self, judge: Judge, *, thresholds: GateThresholds | None = None, judge_pass_with_flags: bool = False, judge_timeout_seconds: float | None = None) -> None:
    self._judge = judge
    self._judge_timeout_seconds = judge_timeout_seconds
    self.thresholds = thresholds or GateThresholds()
    self._judge_pass_with_flags = judge_pass_with_flags
    self._phases: tuple[StagePhase, ...] = (self._check_integrity, self._check_alignment, self._check_hygiene)

  async def evaluate(self, payload: dict[str, Any], *, request: GenerationRequest, schema: ContentSchema, escalated_issues: list[ValidationIssue] | None = None) -> QualityVerdict:
    """Run Stage A and, when its verdict calls for it, Stage B."""
    verdict = self.screen(payload, request=request, schema=schema, escalated_issues=escalated_issues)

    match verdict.status:
      case QualityStatus.PASS | QualityStatus.FIXED | QualityStatus.REGENERATE:
        return verdict
      case QualityStatus.PASS_WITH_FLAGS:
        if not self._judge_pass_with_flags:
          return verdict
        return await self._run_judge(payload, request=request, verdict=verdict)
      case QualityStatus.FLAG_TO_JUDGE:
        return await self._run_judge(payload, request=request, verdict=verdict)
      case _:
        assert_never(verdict.status)

  def screen(self, payload: dict[str, Any], *, request: GenerationRequest, schema: ContentSchema, escalated_issues: list[ValidationIssue] | None = None) -> QualityVerdict:
    """Stage A: cheap deterministic checks with early return."""
    state = _Screening(payload=payload, request=request, schema=schema, escalated=list(escalated_issues or []), texts=_collect_texts(payload, schema))

    for phase in self._phases:
      verdict = phase(state)
      if verdict is not None:
        logger.info("Quality gate stage=A status=%s issues=%d", verdict.status.value, len(verdict.issues))
        return verdict

    if state.flags:
      return QualityVerdict(status=QualityStatus.PASS_WITH_FLAGS, issues=state.flags)
    return QualityVerdict(status=QualityStatus.PASS)

  def _check_integrity(self, state: _Screening) -> QualityVerdict | None:
    issues: list[QualityIssue] = []

    for pattern in state.schema.prose_fields:
      for location, value in iter_matching(state.payload, pattern):
        if isinstance(value, str) and not value.strip():
          issues.append(QualityIssue(code="empty_section", phase="integrity", description="required prose field is empty", location=format_location(location)))

    foreign = [char for _, text in state.texts for char in heuristics.foreign_chars(text, state.request.language)]
    if len(foreign) > self.thresholds.critical_foreign_chars:
      sample = "".join(sorted(set(foreign))[:10])
      issues.append(QualityIssue(code="wrong_language", phase="integrity", description=f"{len(foreign)} characters outside the {state.request.language} script (e.g. {sample})"))

    truncations = [QualityIssue(code="truncation", phase="integrity", description=signal, location=format_location(location)) for location, text in state.texts for signal in heuristics.truncation_signals(text)]
    if len(truncations) > self.thresholds.critical_truncation_signals:
      issues.extend(truncations)
    else:
      # A couple of odd endings are worth noting but not worth a new attempt.
      state.flags.extend(truncations)

    if issues:
      return QualityVerdict(status=QualityStatus.REGENERATE, issues=issues)
    return None

  def _check_alignment(self, state: _Screening) -> QualityVerdict | None:
    issues = [QualityIssue(code="complex_validation_issue", phase="alignment", description=issue.render(), location=issue.location) for issue in state.escalated]

    texts = [text for _, text in state.texts]
    coverage = heuristics.keyword_coverage(texts, state.request.required_keywords)
    if coverage < self.thresholds.min_keyword_coverage:
      issues.append(QualityIssue(code="topic_mismatch", phase="alignment", description=f"keyword coverage {coverage:.2f} below {self.thresholds.min_keyword_coverage:.2f}"))

    for contradiction in heuristics.find_contradictions(texts):
      issues.append(QualityIssue(code="contradiction", phase="alignment", description=contradiction))

    if issues:
      return QualityVerdict(status=QualityStatus.FLAG_TO_JUDGE, issues=[*issues, *state.flags])
    return None

  def _check_hygiene(self, state: _Screening) -> QualityVerdict | None:
    patched = copy.deepcopy(state.payload)
    issues: list[QualityIssue] = []

    for location, text in state.texts:
      where = format_location(location)
      cleaned = text
      if heuristics.has_invisible(cleaned):
        cleaned = heuristics.remove_invisible(cleaned)
        issues.append(QualityIssue(code="invisible_characters", phase="hygiene", description="removed zero-width or replacement characters", location=where))
      if heuristics.has_filler(cleaned):
        cleaned = heuristics.remove_filler(cleaned)
        issues.append(QualityIssue(code="filler_phrase", phase="hygiene", description="removed filler phrasing", location=where))
      if heuristics.foreign_chars(cleaned, state.request.language):
        cleaned = heuristics.strip_foreign_chars(cleaned, state.request.language)
        issues.append(QualityIssue(code="stray_foreign_characters", phase="hygiene", description="removed stray characters from another script", location=where))
      if heuristics.has_broken_markup(cleaned):
        cleaned = heuristics.fix_light_markup(cleaned)
        issues.append(QualityIssue(code="broken_markup", phase="hygiene", description="balanced unclosed emphasis or code fence", location=where))

      if cleaned != text:
        set_value_at_path(patched, location, cleaned)

    if issues:
      return QualityVerdict(status=QualityStatus.FIXED, issues=[*issues, *state.flags], patched_content=patched)
    return None

  async def _run_judge(self, payload: dict[str, Any], *, request: GenerationRequest, verdict: QualityVerdict) -> QualityVerdict:
    """Stage B: accept finalizes the candidate, reject sends it back for regeneration."""
    try:
      decision = await asyncio.wait_for(self._judge.judge(payload, request=request, issues=verdict.issues), timeout=self._judge_timeout_seconds)
    except TimeoutError:
      logger.warning("Quality gate stage=B judge timed out after %ss", self._judge_timeout_seconds)
      decision = JudgeDecision(accepted=False, reasoning=f"judge did not answer within {self._judge_timeout_seconds}s")
    logger.info("Quality gate stage=B accepted=%s score=%s", decision.accepted, decision.score)
    if decision.accepted:
      status = QualityStatus.PASS_WITH_FLAGS if verdict.issues else QualityStatus.PASS
      return QualityVerdict(status=status, issues=verdict.issues, reasoning=decision.reasoning, stage="B")
    return QualityVerdict(status=QualityStatus.REGENERATE, issues=verdict.issues, reasoning=decision.reasoning, stage="B")


def _collect_texts(payload: dict[str, Any], schema: ContentSchema) -> list[tuple[Location, str]]:
  """Gather the prose the heuristics look at: declared prose fields, or every string."""
  if not schema.prose_fields:
    return list(iter_strings(payload))

  texts: list[tuple[Location, str]] = []
  for pattern in schema.prose_fields:
    for location, value in iter_matching(payload, pattern):
      if isinstance(value, str):
        texts.append((location, value))
      elif isinstance(value, list):
        texts.extend(((*location, index), item) for index, item in enumerate(value) if isinstance(item, str))
  return texts
