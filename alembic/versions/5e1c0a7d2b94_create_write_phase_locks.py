"""Create the global write-phase lock table.

Revision ID: 5e1c0a7d2b94
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "5e1c0a7d2b94"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "write_phase_locks",
    sa.Column("lock_key", sa.String(length=32), nullable=False),
    sa.Column("token", sa.String(length=64), nullable=False),
    sa.Column("domain", sa.String(length=32), nullable=False),
    sa.Column("holder_id", sa.String(length=255), nullable=False),
    sa.Column("phase", sa.String(length=32), nullable=False),
    sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
    sa.PrimaryKeyConstraint("lock_key"),
  )


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_table("write_phase_locks")
