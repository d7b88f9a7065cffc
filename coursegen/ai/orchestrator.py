"""Generation pipeline: invoke, validate, repair, retry and gate a candidate."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any

from coursegen.ai.backoff import RetryBudget, Sleeper
from coursegen.ai.errors import is_provider_error
from coursegen.ai.pipeline.contracts import (
  AttemptOutcome,
  AttemptRecord,
  Candidate,
  GenerationRequest,
  GenerationResult,
  IssueKind,
  IssueSeverity,
  ModelTier,
  QualityStatus,
  QualityVerdict,
  RetryAttemptConfig,
  RetryPlan,
  RetryState,
  ValidationIssue,
)
from coursegen.ai.prompts import render_generation_prompt
from coursegen.ai.providers.base import ModelInvoker, ParameterProfile
from coursegen.ai.quality.gate import GateThresholds, QualityGate
from coursegen.ai.quality.judge import Judge, LlmJudge
from coursegen.ai.repair.cascade import RepairCascade
from coursegen.ai.retry import RetryEscalationController, build_retry_plan
from coursegen.ai.validator import ContentSchema, Validator
from coursegen.config import Settings
from coursegen.core.exceptions import GenerationCancelledError, GenerationExhaustedError, GenerationRejectedError
from coursegen.telemetry.context import generation_call_context

logger = logging.getLogger(__name__)


@dataclass
class _RunContext:
  """Mutable state for one generation run."""

  request: GenerationRequest
  controller: RetryEscalationController
  feedback: list[str] = field(default_factory=list)


class GenerationPipeline:
  """Drive one request from raw model output to accepted content.

  Each attempt is validated, repaired when blocking issues appear, and screened by the
  quality gate. Anything short of acceptance feeds its issues into the next attempt,
  up to the retry plan's bound.
  """

  def __init__(
    self,
    *,
    invoker: ModelInvoker,
    schema: ContentSchema,
    quality_gate: QualityGate,
    plan: RetryPlan | None = None,
    retry_budget: RetryBudget | None = None,
    base_profile: ParameterProfile | None = None,
    attempt_timeout_seconds: float = 120.0,
    semantic_repair_token_threshold: int = 1500,
    jitter_ratio: float = 0.25,
    sleep: Sleeper | None = None,
    rng: random.Random | None = None,
  ) -> None:
    self._invoker = invoker
    self._schema = schema
    self._validator = Validator(schema)
    self._cascade = RepairCascade(self._validator, invoker=invoker, semantic_token_threshold=semantic_repair_token_threshold, call_timeout_seconds=attempt_timeout_seconds)
    self._gate = quality_gate
    self._plan = plan or build_retry_plan()
    self._budget = retry_budget
    self._base_profile = base_profile or ParameterProfile()
    self._attempt_timeout_seconds = attempt_timeout_seconds
    self._jitter_ratio = jitter_ratio
    self._sleep = sleep
    self._rng = rng

  @classmethod
  def from_settings(cls, settings: Settings, *, invoker: ModelInvoker, schema: ContentSchema, judge: Judge | None = None, retry_budget: RetryBudget | None = None) -> GenerationPipeline:
    """Wire a pipeline from environment settings; the retry budget should be shared across pipelines."""
    judge = judge or LlmJudge(invoker, model_tier=ModelTier[settings.judge_model_tier.upper()], min_score=settings.judge_min_score)
    thresholds = GateThresholds(
      critical_foreign_chars=settings.critical_foreign_chars,
      critical_truncation_signals=settings.critical_truncation_signals,
      min_keyword_coverage=settings.min_keyword_coverage,
    )
    gate = QualityGate(judge, thresholds=thresholds, judge_pass_with_flags=settings.judge_pass_with_flags, judge_timeout_seconds=settings.attempt_timeout_seconds)
    budget = retry_budget or RetryBudget.per_minute(capacity=settings.retry_budget_capacity, per_minute=settings.retry_budget_per_minute)
    plan = build_retry_plan(settings.max_attempts, base_delay_ms=settings.backoff_base_ms, max_delay_ms=settings.backoff_max_ms)
    return cls(
      invoker=invoker,
      schema=schema,
      quality_gate=gate,
      plan=plan,
      retry_budget=budget,
      attempt_timeout_seconds=settings.attempt_timeout_seconds,
      semantic_repair_token_threshold=settings.semantic_repair_token_threshold,
      jitter_ratio=settings.backoff_jitter_ratio,
    )

  async def run(self, request: GenerationRequest, *, cancel_event: asyncio.Event | None = None) -> GenerationResult:
    """Generate content for a request, raising GenerationFailedError subclasses on terminal failure."""
    controller = RetryEscalationController(self._plan, budget=self._budget, jitter_ratio=self._jitter_ratio, sleep=self._sleep, rng=self._rng, cancel_event=cancel_event)
    ctx = _RunContext(request=request, controller=controller)

    while True:
      config = await controller.next_attempt()
      if config is None:
        break
      result = await self._run_attempt(ctx, config)
      if result is not None:
        return result

    if controller.state == RetryState.CANCELLED:
      raise GenerationCancelledError(f"Generation cancelled after {controller.attempt_index} attempts.", attempts=controller.history, state=controller.state)
    logger.error("Generation exhausted topic=%s attempts=%d", request.topic, controller.attempt_index)
    raise GenerationExhaustedError(f"Generation exhausted all {controller.max_attempts} attempts.", attempts=controller.history, state=controller.state)

  async def _run_attempt(self, ctx: _RunContext, config: RetryAttemptConfig) -> GenerationResult | None:
    """Run one attempt; returns the result on acceptance, None to retry."""
    controller = ctx.controller
    attempt_index = controller.attempt_index
    profile = self._base_profile.escalate(config)
    prompt = render_generation_prompt(ctx.request.prompt, ctx.feedback)

    with generation_call_context(purpose="generate", topic=ctx.request.topic, attempt_index=attempt_index):
      try:
        raw_text = await asyncio.wait_for(self._invoker.invoke(prompt, profile), timeout=self._attempt_timeout_seconds)
      except TimeoutError:
        issue = ValidationIssue(kind=IssueKind.TIMEOUT, severity=IssueSeverity.CRITICAL, description=f"model call exceeded {self._attempt_timeout_seconds:.0f}s")
        self._record_failure(ctx, config, AttemptOutcome.TIMEOUT, [issue])
        return None
      except Exception as exc:
        if not is_provider_error(exc):
          raise
        issue = ValidationIssue(kind=IssueKind.INVOCATION_ERROR, severity=IssueSeverity.CRITICAL, description=str(exc) or type(exc).__name__)
        self._record_failure(ctx, config, AttemptOutcome.INVOCATION_ERROR, [issue])
        return None

    report = self._validator.validate(raw_text)
    candidate = Candidate(raw_text=raw_text, parsed=report.parsed, validation_status=report.status, attempt_index=attempt_index, issues=report.issues)
    logger.info("Attempt=%d candidate=%s status=%s issues=%d", attempt_index, candidate.candidate_id, candidate.validation_status.value, len(candidate.issues))

    if candidate.blocking_issues:
      cascade_result = await self._cascade.run(candidate, report.issues)
      candidate = cascade_result.candidate
      if not cascade_result.resolved:
        self._record_failure(ctx, config, AttemptOutcome.INVALID, candidate.issues, candidate=candidate)
        return None

    payload = candidate.parsed or {}
    escalated = candidate.complex_issues
    verdict = await self._gate.evaluate(payload, request=ctx.request, schema=self._schema, escalated_issues=escalated)

    match verdict.status:
      case QualityStatus.PASS | QualityStatus.PASS_WITH_FLAGS:
        return self._accept(ctx, config, candidate, payload, verdict)
      case QualityStatus.FIXED:
        return self._accept_patched(ctx, config, candidate, verdict)
      case QualityStatus.REGENERATE:
        if escalated and verdict.stage == "B":
          # Unresolved complex issues that the judge also rejects are a final failure.
          self._record_failure(ctx, config, AttemptOutcome.REJECTED, candidate.issues, candidate=candidate, verdict=verdict)
          controller.mark_rejected()
          raise GenerationRejectedError(f"Judge rejected candidate {candidate.candidate_id} with unresolved complex issues.", attempts=controller.history, state=controller.state)
        self._record_failure(ctx, config, AttemptOutcome.REGENERATE, candidate.issues, candidate=candidate, verdict=verdict)
        return None
      case QualityStatus.FLAG_TO_JUDGE:
        raise RuntimeError("Quality gate returned FLAG_TO_JUDGE without running the judge.")

  def _accept(self, ctx: _RunContext, config: RetryAttemptConfig, candidate: Candidate, payload: dict[str, Any], verdict: QualityVerdict) -> GenerationResult:
    controller = ctx.controller
    controller.record(AttemptRecord(attempt_index=controller.attempt_index, config=config, outcome=AttemptOutcome.ACCEPTED, candidate_id=candidate.candidate_id, issues=candidate.issues, repair_history=candidate.repair_history, verdict=verdict))
    controller.mark_accepted()
    logger.info("Accepted candidate=%s attempt=%d verdict=%s repairs=%d", candidate.candidate_id, controller.attempt_index, verdict.status.value, len(candidate.repair_history))
    return GenerationResult(content=payload, verdict=verdict, candidate=candidate, attempts=controller.history, state=controller.state)

  def _accept_patched(self, ctx: _RunContext, config: RetryAttemptConfig, candidate: Candidate, verdict: QualityVerdict) -> GenerationResult | None:
    """Substitute the gate's patched content wholesale, provided it still validates."""
    patched = verdict.patched_content or {}
    report = self._validator.validate_payload(patched)
    if report.blocking_issues:
      logger.warning("Patched content failed validation candidate=%s issues=%d", candidate.candidate_id, len(report.blocking_issues))
      self._record_failure(ctx, config, AttemptOutcome.REGENERATE, report.issues, candidate=candidate, verdict=verdict)
      return None
    return self._accept(ctx, config, candidate.model_copy(update={"parsed": patched, "issues": report.issues, "validation_status": report.status}), patched, verdict)

  def _record_failure(
    self,
    ctx: _RunContext,
    config: RetryAttemptConfig,
    outcome: AttemptOutcome,
    issues: list[ValidationIssue],
    *,
    candidate: Candidate | None = None,
    verdict: QualityVerdict | None = None,
  ) -> None:
    controller = ctx.controller
    record = AttemptRecord(
      attempt_index=controller.attempt_index,
      config=config,
      outcome=outcome,
      candidate_id=candidate.candidate_id if candidate else None,
      issues=issues,
      repair_history=candidate.repair_history if candidate else [],
      verdict=verdict,
    )
    controller.record(record)
    logger.warning("Attempt=%d failed outcome=%s issues=%d", controller.attempt_index, outcome.value, len(issues))

    # The next prompt carries what went wrong this time.
    feedback = [issue.render() for issue in issues]
    if verdict is not None:
      feedback.extend(f"{issue.phase}: {issue.description}" for issue in verdict.issues)
      if verdict.reasoning:
        feedback.append(f"reviewer: {verdict.reasoning}")
    ctx.feedback = feedback
