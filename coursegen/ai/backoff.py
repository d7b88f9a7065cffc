"""Backoff jitter and the shared retry budget."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


def exponential_delay_ms(attempt: int, *, base_ms: int, max_ms: int) -> int:
  """Return the un-jittered delay before a 1-based attempt; the first attempt never waits."""
  if attempt <= 1:
    return 0
  return min(base_ms * (2 ** (attempt - 2)), max_ms)


def jittered_delay_ms(base_ms: int, *, jitter_ratio: float, rng: random.Random | None = None) -> int:
  """Add up to jitter_ratio of extra delay so simultaneous retries spread out."""
  if base_ms <= 0:
    return 0
  source = rng or random
  return int(base_ms + source.uniform(0, base_ms * jitter_ratio))


class RetryBudget:
  """Token bucket shared by every in-flight candidate.

  acquire() queues callers until a token is available instead of failing, and
  the bucket refills continuously at refill_per_second up to capacity.
  """

  def __init__(self, *, capacity: float, refill_per_second: float, clock: Clock | None = None, sleep: Sleeper | None = None) -> None:
    if capacity < 1:
      raise ValueError("Retry budget capacity must be at least 1.")
    if refill_per_second <= 0:
      raise ValueError("Retry budget refill rate must be positive.")
    self.capacity = float(capacity)
    self.refill_per_second = float(refill_per_second)
    self._clock = clock or time.monotonic
    self._sleep = sleep or asyncio.sleep
    self._tokens = float(capacity)
    self._updated_at = self._clock()
    # asyncio.Lock wakes waiters in FIFO order, so queued attempts are served fairly.
    self._lock = asyncio.Lock()

  @classmethod
  def per_minute(cls, *, capacity: int, per_minute: int, clock: Clock | None = None, sleep: Sleeper | None = None) -> RetryBudget:
    return cls(capacity=capacity, refill_per_second=per_minute / 60.0, clock=clock, sleep=sleep)

  @property
  def available(self) -> float:
    """Tokens available right now, including refill since the last update."""
    elapsed = max(0.0, self._clock() - self._updated_at)
    return min(self.capacity, self._tokens + elapsed * self.refill_per_second)

  async def acquire(self) -> float:
    """Take one token, waiting for refill when empty; returns seconds spent waiting."""
    waited = 0.0
    async with self._lock:
      self._refill()
      while self._tokens < 1.0 - 1e-9:
        wait_seconds = (1.0 - self._tokens) / self.refill_per_second
        logger.info("Retry budget empty; queueing for %.2fs", wait_seconds)
        await self._sleep(wait_seconds)
        waited += wait_seconds
        self._refill()
      self._tokens = max(0.0, self._tokens - 1.0)
    return waited

  def _refill(self) -> None:
    now = self._clock()
    elapsed = max(0.0, now - self._updated_at)
    self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_per_second)
    self._updated_at = now
