"""SQLAlchemy model for the global write-phase lock record."""

from __future__ import annotations

import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from coursegen.core.database import Base


class WritePhaseLockRow(Base):
  __tablename__ = "write_phase_locks"

  lock_key: Mapped[str] = mapped_column(String(32), primary_key=True)
  token: Mapped[str] = mapped_column(String(64), nullable=False)
  domain: Mapped[str] = mapped_column(String(32), nullable=False)
  holder_id: Mapped[str] = mapped_column(String(255), nullable=False)
  phase: Mapped[str] = mapped_column(String(32), nullable=False)
  acquired_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
