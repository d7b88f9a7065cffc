from __future__ import annotations

import asyncio

import pytest

from coursegen.ai.backoff import RetryBudget


class FakeClock:
  def __init__(self) -> None:
    self.now = 0.0
    self.sleeps: list[float] = []

  def __call__(self) -> float:
    return self.now

  async def sleep(self, seconds: float) -> None:
    self.sleeps.append(seconds)
    self.now += seconds
    await asyncio.sleep(0)


@pytest.mark.anyio
async def test_tokens_available_up_to_capacity() -> None:
  clock = FakeClock()
  budget = RetryBudget(capacity=2, refill_per_second=1.0, clock=clock, sleep=clock.sleep)

  assert await budget.acquire() == 0.0
  assert await budget.acquire() == 0.0
  assert budget.available == pytest.approx(0.0)
  assert clock.sleeps == []


@pytest.mark.anyio
async def test_empty_budget_queues_instead_of_failing() -> None:
  clock = FakeClock()
  budget = RetryBudget(capacity=1, refill_per_second=0.5, clock=clock, sleep=clock.sleep)

  await budget.acquire()
  waited = await budget.acquire()

  assert waited == pytest.approx(2.0)
  assert clock.now == pytest.approx(2.0)


@pytest.mark.anyio
async def test_refill_never_exceeds_capacity() -> None:
  clock = FakeClock()
  budget = RetryBudget(capacity=3, refill_per_second=1.0, clock=clock, sleep=clock.sleep)
  await budget.acquire()

  clock.now += 100.0

  assert budget.available == pytest.approx(3.0)


@pytest.mark.anyio
async def test_concurrent_callers_are_served_in_turn() -> None:
  clock = FakeClock()
  budget = RetryBudget(capacity=1, refill_per_second=1.0, clock=clock, sleep=clock.sleep)

  waits = await asyncio.gather(*(budget.acquire() for _ in range(3)))

  assert sorted(waits) == pytest.approx([0.0, 1.0, 1.0])
  assert clock.now == pytest.approx(2.0)


def test_per_minute_rate() -> None:
  budget = RetryBudget.per_minute(capacity=20, per_minute=30)
  assert budget.refill_per_second == pytest.approx(0.5)
  assert budget.capacity == 20


def test_invalid_budget_configuration() -> None:
  with pytest.raises(ValueError):
    RetryBudget(capacity=0, refill_per_second=1.0)
  with pytest.raises(ValueError):
    RetryBudget(capacity=1, refill_per_second=0)
