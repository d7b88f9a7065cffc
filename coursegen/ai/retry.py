"""Retry escalation: the declarative plan and the controller that walks it."""

from __future__ import annotations

import asyncio
import logging
import random

from coursegen.ai.backoff import RetryBudget, Sleeper, exponential_delay_ms, jittered_delay_ms
from coursegen.ai.pipeline.contracts import TERMINAL_RETRY_STATES, AttemptRecord, ModelTier, RetryAttemptConfig, RetryPlan, RetryState

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 10

# (temperature, tier) per attempt: sampling cools down while the model tier climbs.
_ESCALATION_STEPS: tuple[tuple[float, ModelTier], ...] = (
  (0.7, ModelTier.STANDARD),
  (0.7, ModelTier.STANDARD),
  (0.5, ModelTier.EXTENDED),
  (0.5, ModelTier.EXTENDED),
  (0.3, ModelTier.EXTENDED),
  (0.3, ModelTier.PREMIUM),
  (0.2, ModelTier.PREMIUM),
  (0.1, ModelTier.PREMIUM),
  (0.1, ModelTier.PREMIUM),
  (0.1, ModelTier.PREMIUM),
)


def build_retry_plan(max_attempts: int = DEFAULT_MAX_ATTEMPTS, *, base_delay_ms: int = 1000, max_delay_ms: int = 30000) -> RetryPlan:
  """Build the default escalation plan with exponential, capped backoff."""
  if max_attempts < 1:
    raise ValueError("max_attempts must be at least 1.")

  attempts: list[RetryAttemptConfig] = []
  for attempt in range(1, max_attempts + 1):
    temperature, tier = _ESCALATION_STEPS[min(attempt, len(_ESCALATION_STEPS)) - 1]
    delay = exponential_delay_ms(attempt, base_ms=base_delay_ms, max_ms=max_delay_ms)
    attempts.append(RetryAttemptConfig(temperature=temperature, model_tier=tier, backoff_delay_ms=delay))
  return RetryPlan(attempts=attempts)


class RetryEscalationController:
  """State machine over attempt indexes 1..N for one candidate lifetime.

  The controller never calls the model itself; the pipeline asks it for the next
  attempt config, reports what happened, and marks the terminal state.
  """

  def __init__(
    self,
    plan: RetryPlan,
    *,
    budget: RetryBudget | None = None,
    jitter_ratio: float = 0.25,
    sleep: Sleeper | None = None,
    rng: random.Random | None = None,
    cancel_event: asyncio.Event | None = None,
  ) -> None:
    self.plan = plan
    self._budget = budget
    self._jitter_ratio = jitter_ratio
    self._sleep = sleep or asyncio.sleep
    self._rng = rng
    self._cancel_event = cancel_event
    self._state = RetryState.PENDING
    self._attempt_index = 0
    self._history: list[AttemptRecord] = []

  @property
  def state(self) -> RetryState:
    return self._state

  @property
  def attempt_index(self) -> int:
    """1-based index of the attempt in progress, 0 before the first attempt."""
    return self._attempt_index

  @property
  def max_attempts(self) -> int:
    return self.plan.max_attempts

  @property
  def history(self) -> list[AttemptRecord]:
    return list(self._history)

  @property
  def current_config(self) -> RetryAttemptConfig | None:
    if self._attempt_index == 0:
      return None
    return self.plan.config_for(self._attempt_index)

  def cancel(self) -> None:
    """Request cancellation; it takes effect before the next attempt starts."""
    if self._cancel_event is None:
      self._cancel_event = asyncio.Event()
    self._cancel_event.set()

  async def next_attempt(self) -> RetryAttemptConfig | None:
    """Wait out budget and backoff, then return the next config.

    Returns None once the plan is used up (EXHAUSTED) or cancellation was requested
    (CANCELLED).
    """
    if self._state in TERMINAL_RETRY_STATES:
      raise RuntimeError(f"Retry controller is already terminal (state={self._state.value}).")

    if self._cancel_requested():
      return self._finish(RetryState.CANCELLED)

    if self._attempt_index >= self.plan.max_attempts:
      return self._finish(RetryState.EXHAUSTED)

    config = self.plan.config_for(self._attempt_index + 1)

    # Only retries draw from the shared budget; first attempts are never throttled.
    if self._attempt_index > 0 and self._budget is not None:
      await self._budget.acquire()

    delay_ms = jittered_delay_ms(config.backoff_delay_ms, jitter_ratio=self._jitter_ratio, rng=self._rng)
    if delay_ms > 0:
      logger.info("Backing off before attempt=%d delay_ms=%d", self._attempt_index + 1, delay_ms)
      await self._sleep(delay_ms / 1000)

    # Cancellation requested during the wait still lands between attempts.
    if self._cancel_requested():
      return self._finish(RetryState.CANCELLED)

    self._attempt_index += 1
    self._state = RetryState.IN_PROGRESS
    logger.info("Starting attempt=%d/%d temperature=%.2f tier=%s", self._attempt_index, self.plan.max_attempts, config.temperature, config.model_tier.name)
    return config

  def record(self, record: AttemptRecord) -> None:
    self._history.append(record)

  def mark_accepted(self) -> None:
    self._finish(RetryState.ACCEPTED)

  def mark_rejected(self) -> None:
    self._finish(RetryState.REJECTED)

  def _cancel_requested(self) -> bool:
    return self._cancel_event is not None and self._cancel_event.is_set()

  def _finish(self, state: RetryState) -> None:
    self._state = state
    logger.info("Retry controller finished state=%s attempts=%d", state.value, self._attempt_index)
