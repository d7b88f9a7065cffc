"""Stage B of the quality gate: the expensive judge."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import msgspec
from pydantic import BaseModel, Field, ValidationError

from coursegen.ai.json_parser import decode_json, repair_json_text
from coursegen.ai.pipeline.contracts import GenerationRequest, ModelTier, QualityIssue
from coursegen.ai.prompts import render_judge_prompt
from coursegen.ai.providers.base import ModelInvoker, ParameterProfile
from coursegen.telemetry.context import generation_call_context

logger = logging.getLogger(__name__)


class JudgeDecision(BaseModel):
  """Final accept/reject decision returned by a judge."""

  accepted: bool
  score: float | None = Field(default=None, ge=0.0, le=1.0)
  reasoning: str = ""


class Judge(ABC):
  """Nuanced evaluation of a candidate that the cheap filter could not settle."""

  @abstractmethod
  async def judge(self, content: dict[str, Any], *, request: GenerationRequest, issues: list[QualityIssue]) -> JudgeDecision:
    """Return the final decision for the content, primed with the flagged issues."""


class LlmJudge(Judge):
  """Judge backed by a model call that answers with a JSON decision."""

  def __init__(self, invoker: ModelInvoker, *, model_tier: ModelTier = ModelTier.EXTENDED, min_score: float = 0.6, profile: ParameterProfile | None = None) -> None:
    self._invoker = invoker
    self._min_score = min_score
    self._profile = profile or ParameterProfile(temperature=0.1, model_tier=model_tier, max_output_tokens=1024)

  async def judge(self, content: dict[str, Any], *, request: GenerationRequest, issues: list[QualityIssue]) -> JudgeDecision:
    prompt = render_judge_prompt(content=content, request=request, issues=issues)
    with generation_call_context(purpose="judge", topic=request.topic):
      raw = await self._invoker.invoke(prompt, self._profile)

    decision = self._parse_decision(raw)

    # A low score overrides an optimistic accepted flag.
    if decision.accepted and decision.score is not None and decision.score < self._min_score:
      reasoning = f"score {decision.score:.2f} below threshold {self._min_score:.2f}. {decision.reasoning}".strip()
      decision = decision.model_copy(update={"accepted": False, "reasoning": reasoning})

    logger.info("Judge decision accepted=%s score=%s", decision.accepted, decision.score)
    return decision

  def _parse_decision(self, raw: str) -> JudgeDecision:
    """Parse the judge output; unreadable output counts as a rejection."""
    repaired, _ = repair_json_text(raw)
    try:
      return JudgeDecision.model_validate(decode_json(repaired))
    except (msgspec.DecodeError, ValidationError) as exc:
      logger.warning("Judge returned an unreadable decision: %s", exc)
      return JudgeDecision(accepted=False, score=None, reasoning=f"unreadable judge output: {exc}")
