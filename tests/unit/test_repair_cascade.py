from __future__ import annotations

import asyncio
import json

import pytest

from coursegen.ai.pipeline.contracts import Candidate, RepairLevel, ValidationStatus
from coursegen.ai.providers.base import ModelInvoker, ParameterProfile
from coursegen.ai.repair.cascade import RepairCascade
from coursegen.ai.validator import Validator


def _candidate(raw_text: str) -> Candidate:
  return Candidate(raw_text=raw_text, attempt_index=1)


def _levels(candidate: Candidate) -> list[tuple[RepairLevel, bool]]:
  return [(attempt.level, attempt.success) for attempt in candidate.repair_history]


class _HangingInvoker(ModelInvoker):
  async def invoke(self, prompt: str, profile: ParameterProfile) -> str:
    await asyncio.Event().wait()
    return ""


@pytest.mark.anyio
async def test_valid_candidate_is_left_unchanged(lesson_schema, lesson_json) -> None:
  raw = lesson_json()
  cascade = RepairCascade(Validator(lesson_schema))

  first = await cascade.run(_candidate(raw))
  second = await cascade.run(first.candidate)

  assert first.success
  assert first.candidate.raw_text == raw
  assert second.candidate.raw_text == raw
  assert _levels(first.candidate) == [(RepairLevel.STRUCTURAL, True)]
  assert first.candidate.repair_history[0].diff is None


@pytest.mark.anyio
async def test_trailing_separator_fixed_by_structural_level(lesson_schema, lesson_json) -> None:
  raw = lesson_json().replace('"Photosynthesis produces glucose and oxygen."]', '"Photosynthesis produces glucose and oxygen.",]')
  cascade = RepairCascade(Validator(lesson_schema))

  result = await cascade.run(_candidate(raw))

  assert result.success
  assert _levels(result.candidate) == [(RepairLevel.STRUCTURAL, True)]
  assert result.candidate.validation_status == ValidationStatus.VALID
  assert result.candidate.repair_history[0].issues_before == 1
  assert result.candidate.repair_history[0].issues_after == 0


@pytest.mark.anyio
async def test_field_names_normalized(lesson_schema, valid_lesson) -> None:
  valid_lesson["durationMinutes"] = valid_lesson.pop("duration_minutes")
  valid_lesson["summary_points"] = valid_lesson.pop("key_points")
  cascade = RepairCascade(Validator(lesson_schema))

  result = await cascade.run(_candidate(json.dumps(valid_lesson)))

  assert result.success
  assert _levels(result.candidate) == [(RepairLevel.STRUCTURAL, False), (RepairLevel.FIELD_NORMALIZATION, True)]
  assert result.candidate.parsed["duration_minutes"] == 20
  assert "$.durationMinutes -> duration_minutes" in result.candidate.repair_history[1].diff


@pytest.mark.anyio
async def test_types_coerced(lesson_schema, lesson_json) -> None:
  raw = lesson_json(duration_minutes="20", published="yes", difficulty="Beginner", key_points="Chlorophyll captures light.")
  cascade = RepairCascade(Validator(lesson_schema))

  result = await cascade.run(_candidate(raw))

  assert result.success
  assert _levels(result.candidate)[-1] == (RepairLevel.TYPE_COERCION, True)
  parsed = result.candidate.parsed
  assert parsed["duration_minutes"] == 20
  assert parsed["published"] is True
  assert parsed["difficulty"] == "beginner"
  assert parsed["key_points"] == ["Chlorophyll captures light."]


@pytest.mark.anyio
async def test_lossy_coercion_is_refused(lesson_schema, lesson_json) -> None:
  cascade = RepairCascade(Validator(lesson_schema))

  result = await cascade.run(_candidate(lesson_json(duration_minutes="20.5")))

  assert not result.resolved
  assert result.candidate.parsed["duration_minutes"] == "20.5"
  assert [level for level, _ in _levels(result.candidate)] == [RepairLevel.STRUCTURAL, RepairLevel.FIELD_NORMALIZATION, RepairLevel.TYPE_COERCION]


@pytest.mark.anyio
async def test_semantic_repair_for_large_candidates(lesson_schema, lesson_json, make_invoker) -> None:
  invoker = make_invoker(lesson_json())
  cascade = RepairCascade(Validator(lesson_schema), invoker=invoker, semantic_token_threshold=10)

  result = await cascade.run(_candidate(lesson_json(duration_minutes=None)))

  assert result.success
  assert _levels(result.candidate) == [
    (RepairLevel.STRUCTURAL, False),
    (RepairLevel.FIELD_NORMALIZATION, False),
    (RepairLevel.TYPE_COERCION, False),
    (RepairLevel.SEMANTIC_LLM, True),
  ]
  assert invoker.calls == 1
  assert invoker.profiles[0].temperature == 0.0
  assert "duration_minutes" in invoker.prompts[0]


@pytest.mark.anyio
async def test_semantic_repair_skipped_below_threshold(lesson_schema, lesson_json, make_invoker) -> None:
  invoker = make_invoker()
  cascade = RepairCascade(Validator(lesson_schema), invoker=invoker, semantic_token_threshold=1500)

  result = await cascade.run(_candidate(lesson_json(duration_minutes=None)))

  assert not result.resolved
  assert invoker.calls == 0
  assert RepairLevel.SEMANTIC_LLM not in [level for level, _ in _levels(result.candidate)]


@pytest.mark.anyio
async def test_semantic_repair_provider_failure_is_recorded(lesson_schema, lesson_json, make_invoker) -> None:
  invoker = make_invoker(ConnectionError("connection reset by peer"))
  cascade = RepairCascade(Validator(lesson_schema), invoker=invoker, semantic_token_threshold=10)

  result = await cascade.run(_candidate(lesson_json(duration_minutes=None)))

  assert not result.resolved
  last = result.candidate.repair_history[-1]
  assert last.level == RepairLevel.SEMANTIC_LLM
  assert not last.success
  assert "connection reset" in last.diff


@pytest.mark.anyio
async def test_semantic_repair_timeout_is_a_failed_level(lesson_schema, lesson_json) -> None:
  cascade = RepairCascade(Validator(lesson_schema), invoker=_HangingInvoker(), semantic_token_threshold=10, call_timeout_seconds=0.05)

  result = await asyncio.wait_for(cascade.run(_candidate(lesson_json(duration_minutes=None))), timeout=2)

  assert not result.resolved
  assert _levels(result.candidate)[-1] == (RepairLevel.SEMANTIC_LLM, False)
  assert "exceeded" in result.candidate.repair_history[-1].diff


@pytest.mark.anyio
async def test_semantic_repair_propagates_programming_errors(lesson_schema, lesson_json, make_invoker) -> None:
  cascade = RepairCascade(Validator(lesson_schema), invoker=make_invoker(KeyError("prompt")), semantic_token_threshold=10)

  with pytest.raises(KeyError):
    await cascade.run(_candidate(lesson_json(duration_minutes=None)))


@pytest.mark.anyio
async def test_unparseable_text_stops_after_structural(lesson_schema, make_invoker) -> None:
  invoker = make_invoker()
  cascade = RepairCascade(Validator(lesson_schema), invoker=invoker, semantic_token_threshold=0)

  result = await cascade.run(_candidate("I am unable to write this lesson."))

  assert not result.resolved
  assert _levels(result.candidate) == [(RepairLevel.STRUCTURAL, False)]
  assert invoker.calls == 0


@pytest.mark.anyio
async def test_complex_issues_do_not_trigger_repair(lesson_schema, lesson_json) -> None:
  cascade = RepairCascade(Validator(lesson_schema))

  result = await cascade.run(_candidate(lesson_json(difficulty="easy")))

  assert result.resolved
  assert not result.success
  assert _levels(result.candidate) == [(RepairLevel.STRUCTURAL, True)]
  assert result.candidate.complex_issues
