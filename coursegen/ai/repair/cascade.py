"""Layered repair of invalid candidates, cheapest level first."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from coursegen.ai.errors import is_provider_error
from coursegen.ai.json_parser import encode_json, estimate_tokens, repair_json_text
from coursegen.ai.pipeline.contracts import Candidate, RepairAttempt, RepairLevel, ValidationIssue
from coursegen.ai.prompts import render_repair_prompt
from coursegen.ai.providers.base import ModelInvoker, ParameterProfile
from coursegen.ai.repair.coercion import coerce_types
from coursegen.ai.repair.fields import normalize_field_names
from coursegen.ai.validator import ValidationReport, Validator
from coursegen.telemetry.context import generation_call_context

logger = logging.getLogger(__name__)

_SEMANTIC_REPAIR_PROFILE = ParameterProfile(temperature=0.0, nucleus_threshold=1.0)


@dataclass(frozen=True)
class CascadeResult:
  """Candidate after the cascade plus its remaining issues."""

  candidate: Candidate

  @property
  def issues(self) -> list[ValidationIssue]:
    return self.candidate.issues

  @property
  def resolved(self) -> bool:
    """True when no CRITICAL or FIXABLE issues remain."""
    return not self.candidate.blocking_issues

  @property
  def success(self) -> bool:
    """True when re-validation reports no issues at all."""
    return not self.candidate.issues


class RepairCascade:
  """Run STRUCTURAL, FIELD_NORMALIZATION, TYPE_COERCION and SEMANTIC_LLM in order.

  Every attempted level is appended to the candidate's repair history. A level that
  clears every blocking issue short-circuits the rest; COMPLEX issues are left for the
  quality gate and never trigger further repair.
  """

  def __init__(self, validator: Validator, *, invoker: ModelInvoker | None = None, semantic_token_threshold: int = 1500, semantic_profile: ParameterProfile | None = None, call_timeout_seconds: float | None = None) -> None:
    self._validator = validator
    self._invoker = invoker
    self._semantic_token_threshold = semantic_token_threshold
    self._semantic_profile = semantic_profile or _SEMANTIC_REPAIR_PROFILE
    self._call_timeout_seconds = call_timeout_seconds

  async def run(self, candidate: Candidate, issues: list[ValidationIssue] | None = None) -> CascadeResult:
    """Repair a candidate, returning a new candidate with the updated history."""
    current_issues = issues if issues is not None else self._validator.validate(candidate.raw_text).issues

    # STRUCTURAL always runs so that even valid candidates get an audit entry.
    repaired_text, changes = repair_json_text(candidate.raw_text)
    report = self._validator.validate(repaired_text)
    current = self._advance(candidate, RepairLevel.STRUCTURAL, repaired_text, report, changes, len(current_issues))
    if not current.blocking_issues:
      return CascadeResult(current)

    # Nothing below STRUCTURAL can work on text that still does not decode.
    if current.parsed is None:
      logger.info("Repair cascade stopped after STRUCTURAL candidate=%s reason=unparseable", candidate.candidate_id)
      return CascadeResult(current)

    normalized, changes = normalize_field_names(current.parsed, known_fields=self._validator.schema.known_field_names, aliases=self._validator.schema.field_aliases)
    current = self._apply_payload(current, RepairLevel.FIELD_NORMALIZATION, normalized, changes)
    if not current.blocking_issues:
      return CascadeResult(current)

    coerced, changes = coerce_types(current.parsed or {}, self._validator)
    current = self._apply_payload(current, RepairLevel.TYPE_COERCION, coerced, changes)
    if not current.blocking_issues:
      return CascadeResult(current)

    if self._should_attempt_semantic(current):
      current = await self._semantic_repair(current)
    else:
      logger.info("Skipping SEMANTIC_LLM candidate=%s tokens=%d threshold=%d", candidate.candidate_id, estimate_tokens(current.raw_text), self._semantic_token_threshold)

    return CascadeResult(current)

  def _should_attempt_semantic(self, candidate: Candidate) -> bool:
    # Small candidates are cheaper to regenerate than to repair with a model call.
    if self._invoker is None or not candidate.blocking_issues:
      return False
    return estimate_tokens(candidate.raw_text) > self._semantic_token_threshold

  async def _semantic_repair(self, candidate: Candidate) -> Candidate:
    if self._invoker is None:
      return candidate
    prompt = render_repair_prompt(schema=self._validator.schema.json_schema(), candidate_text=candidate.raw_text, issues=candidate.issues)
    issues_before = len(candidate.issues)

    with generation_call_context(purpose="semantic_repair", candidate_id=candidate.candidate_id, attempt_index=candidate.attempt_index):
      try:
        response = await asyncio.wait_for(self._invoker.invoke(prompt, self._semantic_profile), timeout=self._call_timeout_seconds)
      except TimeoutError:
        logger.warning("SEMANTIC_LLM repair call timed out candidate=%s timeout=%ss", candidate.candidate_id, self._call_timeout_seconds)
        attempt = RepairAttempt(level=RepairLevel.SEMANTIC_LLM, success=False, diff=f"model call exceeded {self._call_timeout_seconds}s", issues_before=issues_before, issues_after=issues_before)
        return candidate.model_copy(update={"repair_history": [*candidate.repair_history, attempt]})
      except Exception as exc:
        if not is_provider_error(exc):
          raise
        logger.warning("SEMANTIC_LLM repair call failed candidate=%s error=%s", candidate.candidate_id, exc)
        attempt = RepairAttempt(level=RepairLevel.SEMANTIC_LLM, success=False, diff=f"invoker error: {exc}", issues_before=issues_before, issues_after=issues_before)
        return candidate.model_copy(update={"repair_history": [*candidate.repair_history, attempt]})

    # The model's answer gets the same deterministic clean-up as any raw output.
    repaired_text, changes = repair_json_text(response)
    report = self._validator.validate(repaired_text)
    if report.parsed is None:
      attempt = RepairAttempt(level=RepairLevel.SEMANTIC_LLM, success=False, diff="model returned unparseable output", issues_before=issues_before, issues_after=issues_before)
      return candidate.model_copy(update={"repair_history": [*candidate.repair_history, attempt]})

    diff_parts = ["model rewrite", *changes]
    return self._advance(candidate, RepairLevel.SEMANTIC_LLM, repaired_text, report, diff_parts, issues_before)

  def _apply_payload(self, candidate: Candidate, level: RepairLevel, payload: dict[str, Any], changes: list[str]) -> Candidate:
    issues_before = len(candidate.issues)
    if not changes:
      attempt = RepairAttempt(level=level, success=False, diff=None, issues_before=issues_before, issues_after=issues_before)
      return candidate.model_copy(update={"repair_history": [*candidate.repair_history, attempt]})

    report = self._validator.validate_payload(payload)
    return self._advance(candidate, level, encode_json(payload), report, changes, issues_before)

  def _advance(self, candidate: Candidate, level: RepairLevel, raw_text: str, report: ValidationReport, changes: list[str], issues_before: int) -> Candidate:
    success = not report.blocking_issues
    attempt = RepairAttempt(level=level, success=success, diff="; ".join(changes) or None, issues_before=issues_before, issues_after=len(report.issues))
    logger.info("Repair level=%s candidate=%s success=%s issues=%d->%d", level.value, candidate.candidate_id, success, issues_before, len(report.issues))
    return candidate.model_copy(
      update={
        "raw_text": raw_text,
        "parsed": report.parsed,
        "issues": report.issues,
        "validation_status": report.status,
        "repair_history": [*candidate.repair_history, attempt],
      }
    )
