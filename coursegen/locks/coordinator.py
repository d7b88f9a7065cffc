"""Global mutual exclusion for write-phase (fixer/updater) work."""

from __future__ import annotations

import asyncio
import contextlib
import datetime
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable

from coursegen.config import Settings
from coursegen.core.exceptions import LockBusyError
from coursegen.locks.records import LOCK_TTL, Lock, LockAcquisition, LockDomain, LockPhase
from coursegen.locks.store import LockStore, build_lock_store

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime.datetime]
RollbackHook = Callable[[BaseException], Awaitable[None]]


def _utc_now() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


class LockCoordinator:
  """Serialize write phases across every domain through one lock record.

  Acquisition is a read followed by a compare-and-swap, so two callers that both
  observe an absent or stale lock can never both win. Any live lock is busy, its
  own holder included; only refresh() extends it. Read-only phases never touch
  the coordinator.
  """

  def __init__(self, store: LockStore, *, ttl: datetime.timedelta = LOCK_TTL, clock: Clock | None = None, heartbeat_seconds: float | None = None) -> None:
    self._store = store
    self._ttl = ttl
    self._clock = clock or _utc_now
    self._heartbeat_seconds = heartbeat_seconds

  @classmethod
  def from_settings(cls, settings: Settings) -> LockCoordinator:
    """Coordinator over the configured store, refreshing held locks on the configured heartbeat."""
    return cls(build_lock_store(settings), heartbeat_seconds=settings.lock_heartbeat_seconds)

  async def acquire(self, domain: LockDomain, holder_id: str, phase: LockPhase) -> LockAcquisition:
    """Try to take the global lock; a busy result is returned, never retried."""
    now = self._clock()
    current = await self._store.get()
    claim = Lock(domain=domain, holder_id=holder_id, phase=phase, acquired_at=now)

    if current is None:
      reclaimed = False
    elif current.is_stale(now, self._ttl):
      reclaimed = True
    else:
      logger.info("Lock busy domain=%s holder=%s held_by=%s held_domain=%s age=%s", domain.value, holder_id, current.holder_id, current.domain.value, current.age(now))
      return LockAcquisition(acquired=False, existing=current, reason=f"held by {current.holder_id}")

    if not await self._store.compare_and_swap(current, claim):
      winner = await self._store.get()
      logger.info("Lock acquisition lost a race domain=%s holder=%s winner=%s", domain.value, holder_id, winner.holder_id if winner else None)
      return LockAcquisition(acquired=False, existing=winner, reason="lost acquisition race")

    if reclaimed and current is not None:
      logger.warning("Reclaimed stale lock holder=%s previous_holder=%s previous_domain=%s age=%s", holder_id, current.holder_id, current.domain.value, current.age(now))
    else:
      logger.info("Lock acquired domain=%s holder=%s phase=%s", domain.value, holder_id, phase.value)
    return LockAcquisition(acquired=True, lock=claim, existing=current if reclaimed else None, reclaimed=reclaimed)

  async def release(self, domain: LockDomain, holder_id: str) -> bool:
    """Remove the lock when the caller holds it; a no-op for anyone else."""
    current = await self._store.get()
    if current is None or current.holder_id != holder_id or current.domain != domain:
      logger.debug("Release ignored domain=%s holder=%s current=%s", domain.value, holder_id, current.holder_id if current else None)
      return False

    released = await self._store.compare_and_swap(current, None)
    if released:
      logger.info("Lock released domain=%s holder=%s", domain.value, holder_id)
    return released

  async def refresh(self, holder_id: str) -> Lock | None:
    """Restart the expiry clock for the current holder; None when no longer held."""
    current = await self._store.get()
    if current is None or current.holder_id != holder_id:
      return None

    refreshed = current.model_copy(update={"acquired_at": self._clock(), "token": uuid.uuid4().hex})
    if not await self._store.compare_and_swap(current, refreshed):
      return None
    return refreshed

  async def force_release(self) -> Lock | None:
    """Administrative cleanup: drop whatever lock exists and return it."""
    current = await self._store.get()
    if current is None:
      return None
    if not await self._store.compare_and_swap(current, None):
      return None
    logger.warning("Lock force-released holder=%s domain=%s", current.holder_id, current.domain.value)
    return current

  async def get_lock(self) -> Lock | None:
    return await self._store.get()

  async def is_locked(self) -> bool:
    """True when a non-stale lock exists."""
    current = await self._store.get()
    return current is not None and not current.is_stale(self._clock(), self._ttl)

  @contextlib.asynccontextmanager
  async def write_phase(self, domain: LockDomain, holder_id: str, phase: LockPhase, *, on_rollback: RollbackHook | None = None, heartbeat_seconds: float | None = None) -> AsyncIterator[Lock]:
    """Hold the lock for the duration of a write phase.

    Raises LockBusyError when any live lock exists. The lock is released on
    completion, after the rollback hook runs for a failed phase, and on cancellation.
    heartbeat_seconds overrides the coordinator default for this phase.
    """
    acquisition = await self.acquire(domain, holder_id, phase)
    if not acquisition.acquired or acquisition.lock is None:
      raise LockBusyError(f"Write phase {domain.value}/{phase.value} is blocked: {acquisition.reason}", existing=acquisition.existing)

    interval = heartbeat_seconds if heartbeat_seconds is not None else self._heartbeat_seconds
    heartbeat: asyncio.Task[None] | None = None
    if interval:
      heartbeat = asyncio.create_task(self._keep_alive(holder_id, interval))

    try:
      yield acquisition.lock
    except Exception as exc:
      if on_rollback is not None:
        logger.warning("Write phase failed; rolling back domain=%s holder=%s error=%s", domain.value, holder_id, exc)
        await on_rollback(exc)
      raise
    finally:
      try:
        if heartbeat is not None:
          heartbeat.cancel()
          with contextlib.suppress(asyncio.CancelledError):
            await heartbeat
      finally:
        await self.release(domain, holder_id)

  async def _keep_alive(self, holder_id: str, interval: float) -> None:
    while True:
      await asyncio.sleep(interval)
      try:
        refreshed = await self.refresh(holder_id)
      except Exception as exc:
        logger.error("Write-phase heartbeat failed holder=%s error=%s", holder_id, exc)
        return
      if refreshed is None:
        logger.warning("Lost the write-phase lock during heartbeat holder=%s", holder_id)
        return
