"""Lock record contracts."""

from __future__ import annotations

import datetime
import uuid
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

LOCK_TTL = datetime.timedelta(minutes=30)
GLOBAL_LOCK_KEY = "global"


class LockDomain(str, Enum):
  """Remediation categories whose write phases share the single global lock."""

  BUGS = "bugs"
  SECURITY = "security"
  DEAD_CODE = "dead_code"
  DEPENDENCIES = "dependencies"
  REUSE = "reuse"


class LockPhase(str, Enum):
  FIXING = "fixing"
  REMEDIATION = "remediation"
  CLEANUP = "cleanup"
  UPDATE = "update"


class Lock(BaseModel):
  """Mutual-exclusion record for one write phase.

  The token is unique per acquisition and is what compare-and-swap matches on,
  so a record that was released and re-created is never mistaken for the old one.
  """

  model_config = ConfigDict(frozen=True)

  domain: LockDomain
  holder_id: str = Field(min_length=1)
  phase: LockPhase
  acquired_at: datetime.datetime
  token: str = Field(default_factory=lambda: uuid.uuid4().hex)

  @property
  def expires_at(self) -> datetime.datetime:
    return self.acquired_at + LOCK_TTL

  def age(self, now: datetime.datetime) -> datetime.timedelta:
    return now - self.acquired_at

  def is_stale(self, now: datetime.datetime, ttl: datetime.timedelta = LOCK_TTL) -> bool:
    """A lock is stale once its age reaches the expiry, not one second before."""
    return self.age(now) >= ttl


class LockAcquisition(BaseModel):
  """Result of an acquire call; a busy lock is a normal result, not an error."""

  acquired: bool
  lock: Lock | None = None
  existing: Lock | None = None
  reclaimed: bool = False
  reason: str | None = None
