from __future__ import annotations

import random

import pytest
from pydantic import ValidationError

from coursegen.ai.backoff import exponential_delay_ms, jittered_delay_ms
from coursegen.ai.pipeline.contracts import ModelTier, RetryAttemptConfig, RetryPlan
from coursegen.ai.retry import DEFAULT_MAX_ATTEMPTS, build_retry_plan


def test_default_plan_has_ten_attempts() -> None:
  plan = build_retry_plan()
  assert plan.max_attempts == DEFAULT_MAX_ATTEMPTS == 10


def test_default_plan_escalates_monotonically() -> None:
  attempts = build_retry_plan().attempts
  for previous, current in zip(attempts, attempts[1:], strict=False):
    assert current.temperature <= previous.temperature
    assert current.model_tier >= previous.model_tier
    assert current.backoff_delay_ms >= previous.backoff_delay_ms


def test_default_plan_endpoints() -> None:
  plan = build_retry_plan()
  first = plan.config_for(1)
  last = plan.config_for(10)
  assert (first.temperature, first.model_tier, first.backoff_delay_ms) == (0.7, ModelTier.STANDARD, 0)
  assert (last.temperature, last.model_tier, last.backoff_delay_ms) == (0.1, ModelTier.PREMIUM, 30000)
  assert plan.config_for(3).model_tier == ModelTier.EXTENDED
  assert plan.config_for(3).temperature < first.temperature


def test_longer_plans_repeat_the_last_step() -> None:
  plan = build_retry_plan(12)
  assert plan.config_for(12).model_tier == ModelTier.PREMIUM
  assert plan.config_for(12).temperature == 0.1


def test_plan_requires_an_attempt() -> None:
  with pytest.raises(ValueError):
    build_retry_plan(0)
  with pytest.raises(ValidationError):
    RetryPlan(attempts=[])


def test_plan_rejects_rising_temperature() -> None:
  with pytest.raises(ValidationError, match="temperature must not increase"):
    RetryPlan(
      attempts=[
        RetryAttemptConfig(temperature=0.3, model_tier=ModelTier.STANDARD, backoff_delay_ms=0),
        RetryAttemptConfig(temperature=0.7, model_tier=ModelTier.STANDARD, backoff_delay_ms=1000),
      ]
    )


def test_plan_rejects_tier_downgrade() -> None:
  with pytest.raises(ValidationError, match="model_tier must not decrease"):
    RetryPlan(
      attempts=[
        RetryAttemptConfig(temperature=0.7, model_tier=ModelTier.PREMIUM, backoff_delay_ms=0),
        RetryAttemptConfig(temperature=0.5, model_tier=ModelTier.STANDARD, backoff_delay_ms=1000),
      ]
    )


def test_plan_rejects_shrinking_backoff() -> None:
  with pytest.raises(ValidationError, match="backoff_delay_ms must not decrease"):
    RetryPlan(
      attempts=[
        RetryAttemptConfig(temperature=0.7, model_tier=ModelTier.STANDARD, backoff_delay_ms=2000),
        RetryAttemptConfig(temperature=0.5, model_tier=ModelTier.STANDARD, backoff_delay_ms=1000),
      ]
    )


def test_config_for_is_one_based() -> None:
  plan = build_retry_plan(3)
  with pytest.raises(IndexError):
    plan.config_for(0)
  with pytest.raises(IndexError):
    plan.config_for(4)


def test_exponential_delay_doubles_and_caps() -> None:
  delays = [exponential_delay_ms(attempt, base_ms=1000, max_ms=30000) for attempt in range(1, 8)]
  assert delays == [0, 1000, 2000, 4000, 8000, 16000, 30000]


def test_jitter_stays_within_ratio() -> None:
  rng = random.Random(7)
  for _ in range(50):
    delay = jittered_delay_ms(1000, jitter_ratio=0.25, rng=rng)
    assert 1000 <= delay <= 1250
  assert jittered_delay_ms(0, jitter_ratio=0.25, rng=rng) == 0
