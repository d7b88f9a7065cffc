"""Shared fixtures: a small lesson schema plus scripted model and judge fakes."""

from __future__ import annotations

import copy
import json
from enum import Enum
from typing import Any

import pytest
from pydantic import BaseModel, ConfigDict, Field

from coursegen.ai.pipeline.contracts import GenerationRequest, QualityIssue
from coursegen.ai.providers.base import ModelInvoker, ParameterProfile
from coursegen.ai.quality.judge import Judge, JudgeDecision
from coursegen.ai.validator import ContentSchema, CrossFieldRule


class Difficulty(str, Enum):
  BEGINNER = "beginner"
  INTERMEDIATE = "intermediate"
  ADVANCED = "advanced"


class LessonSection(BaseModel):
  model_config = ConfigDict(extra="forbid")

  title: str
  body: str


class Lesson(BaseModel):
  model_config = ConfigDict(extra="forbid")

  title: str
  difficulty: Difficulty
  duration_minutes: int
  sections: list[LessonSection] = Field(min_length=1)
  key_points: list[str]
  published: bool = False


def _enough_time(lesson: Lesson) -> str | None:
  if lesson.duration_minutes < 5 * len(lesson.sections):
    return f"{lesson.duration_minutes} minutes is too short for {len(lesson.sections)} sections"
  return None


LESSON_SCHEMA = ContentSchema(
  model=Lesson,
  field_aliases={"lesson_title": "title", "summary_points": "key_points"},
  category_synonyms={"easy": "beginner", "hard": "advanced", "expert": "advanced"},
  rules=(CrossFieldRule(name="enough_time", check=_enough_time, location="duration_minutes"),),
  prose_fields=("title", "sections.*.body", "key_points"),
)

VALID_LESSON: dict[str, Any] = {
  "title": "Photosynthesis Basics",
  "difficulty": "beginner",
  "duration_minutes": 20,
  "sections": [
    {"title": "Light reactions", "body": "Chlorophyll absorbs sunlight and splits water molecules inside the thylakoid membranes."},
    {"title": "Calvin cycle", "body": "Photosynthesis then fixes carbon dioxide into glucose using the energy captured earlier."},
  ],
  "key_points": ["Chlorophyll captures light.", "Photosynthesis produces glucose and oxygen."],
  "published": False,
}


class FakeInvoker(ModelInvoker):
  """Replays scripted responses; an Exception entry is raised instead of returned."""

  name = "fake"

  def __init__(self, responses: list[str | BaseException]) -> None:
    self._responses = list(responses)
    self.prompts: list[str] = []
    self.profiles: list[ParameterProfile] = []

  @property
  def calls(self) -> int:
    return len(self.prompts)

  async def invoke(self, prompt: str, profile: ParameterProfile) -> str:
    self.prompts.append(prompt)
    self.profiles.append(profile)
    if not self._responses:
      raise AssertionError("FakeInvoker ran out of scripted responses")
    response = self._responses.pop(0)
    if isinstance(response, BaseException):
      raise response
    return response


class FakeJudge(Judge):
  def __init__(self, decisions: list[JudgeDecision]) -> None:
    self._decisions = list(decisions)
    self.calls: list[list[QualityIssue]] = []

  async def judge(self, content: dict[str, Any], *, request: GenerationRequest, issues: list[QualityIssue]) -> JudgeDecision:
    self.calls.append(list(issues))
    if not self._decisions:
      raise AssertionError("FakeJudge ran out of scripted decisions")
    return self._decisions.pop(0)


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def lesson_schema() -> ContentSchema:
  return LESSON_SCHEMA


@pytest.fixture
def valid_lesson() -> dict[str, Any]:
  return copy.deepcopy(VALID_LESSON)


@pytest.fixture
def lesson_request() -> GenerationRequest:
  return GenerationRequest(prompt="Write a beginner lesson about photosynthesis as JSON.", topic="photosynthesis", required_keywords=["photosynthesis", "chlorophyll"])


@pytest.fixture
def make_invoker():
  def _make(*responses: str | BaseException) -> FakeInvoker:
    return FakeInvoker(list(responses))

  return _make


@pytest.fixture
def make_judge():
  def _make(*decisions: JudgeDecision) -> FakeJudge:
    return FakeJudge(list(decisions))

  return _make


@pytest.fixture
def lesson_json():
  """Serialize the valid lesson with top-level overrides; a None override drops the key."""

  def _render(**overrides: Any) -> str:
    payload = copy.deepcopy(VALID_LESSON)
    for key, value in overrides.items():
      if value is None:
        payload.pop(key, None)
      else:
        payload[key] = value
    return json.dumps(payload)

  return _render
