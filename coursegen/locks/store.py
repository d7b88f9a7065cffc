"""Lock record storage behind a single compare-and-swap primitive."""

from __future__ import annotations

import asyncio
import datetime
import logging
from abc import ABC, abstractmethod

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursegen.config import Settings
from coursegen.core.database import get_session_factory
from coursegen.locks.records import GLOBAL_LOCK_KEY, Lock, LockDomain, LockPhase
from coursegen.schema.locks import WritePhaseLockRow

logger = logging.getLogger(__name__)


class LockStore(ABC):
  """Holds at most one lock record for the whole system."""

  @abstractmethod
  async def get(self) -> Lock | None:
    """Return the current record, stale or not."""

  @abstractmethod
  async def compare_and_swap(self, expected: Lock | None, new: Lock | None) -> bool:
    """Atomically replace the record when it still matches expected.

    expected=None means "only if no record exists"; new=None deletes the record.
    Records are matched by token.
    """


class InMemoryLockStore(LockStore):
  """Process-local store; the asyncio lock makes read-check-write indivisible."""

  def __init__(self) -> None:
    self._record: Lock | None = None
    self._mutex = asyncio.Lock()

  async def get(self) -> Lock | None:
    return self._record

  async def compare_and_swap(self, expected: Lock | None, new: Lock | None) -> bool:
    async with self._mutex:
      current_token = self._record.token if self._record is not None else None
      expected_token = expected.token if expected is not None else None
      if current_token != expected_token:
        return False
      self._record = new
      return True


class SqlLockStore(LockStore):
  """Database-backed store shared by every worker pointed at the same DSN."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory

  async def get(self) -> Lock | None:
    async with self._session_factory() as session:
      row = await session.get(WritePhaseLockRow, GLOBAL_LOCK_KEY)
      if row is None:
        return None
      return _to_lock(row)

  async def compare_and_swap(self, expected: Lock | None, new: Lock | None) -> bool:
    if expected is None and new is None:
      return await self.get() is None
    if expected is None:
      return await self._insert(new)
    if new is None:
      return await self._delete(expected)
    return await self._replace(expected, new)

  async def _insert(self, new: Lock | None) -> bool:
    if new is None:
      return False
    try:
      async with self._session_factory() as session:
        async with session.begin():
          session.add(_to_row(new))
    except IntegrityError:
      # The primary key already exists: someone else holds or just took the lock.
      logger.debug("Lock insert lost to an existing record holder=%s", new.holder_id)
      return False
    return True

  async def _delete(self, expected: Lock) -> bool:
    async with self._session_factory() as session:
      async with session.begin():
        result = await session.execute(delete(WritePhaseLockRow).where(WritePhaseLockRow.lock_key == GLOBAL_LOCK_KEY, WritePhaseLockRow.token == expected.token))
    return result.rowcount == 1

  async def _replace(self, expected: Lock, new: Lock) -> bool:
    statement = (
      update(WritePhaseLockRow)
      .where(WritePhaseLockRow.lock_key == GLOBAL_LOCK_KEY, WritePhaseLockRow.token == expected.token)
      .values(token=new.token, domain=new.domain.value, holder_id=new.holder_id, phase=new.phase.value, acquired_at=new.acquired_at)
    )
    async with self._session_factory() as session:
      async with session.begin():
        result = await session.execute(statement)
    return result.rowcount == 1


def build_lock_store(settings: Settings) -> LockStore:
  """Use the SQL store when a lock DSN is configured, otherwise a process-local one."""
  if not settings.lock_dsn:
    logger.info("No COURSEGEN_LOCK_DSN configured; using the in-memory lock store.")
    return InMemoryLockStore()

  session_factory = get_session_factory()
  if session_factory is None:
    raise RuntimeError("Lock store is not configured (COURSEGEN_LOCK_DSN is missing).")
  return SqlLockStore(session_factory)


def _to_lock(row: WritePhaseLockRow) -> Lock:
  acquired_at = row.acquired_at
  # SQLite drops tzinfo on the way back; stored values are always UTC.
  if acquired_at.tzinfo is None:
    acquired_at = acquired_at.replace(tzinfo=datetime.UTC)
  return Lock(domain=LockDomain(row.domain), holder_id=row.holder_id, phase=LockPhase(row.phase), acquired_at=acquired_at, token=row.token)


def _to_row(lock: Lock) -> WritePhaseLockRow:
  return WritePhaseLockRow(lock_key=GLOBAL_LOCK_KEY, token=lock.token, domain=lock.domain.value, holder_id=lock.holder_id, phase=lock.phase.value, acquired_at=lock.acquired_at)
