"""add recurrence rule to time off

Revision ID: 20261018_03
Revises: 20261018_02
Create Date: 2026-10-18 12:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261018_03"
down_revision: Union[str, None] = "20261018_02"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("time_off", sa.Column("rrule", sa.String(length=255), nullable=True))
    op.add_column("time_off", sa.Column("rrule_until", sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    op.drop_column("time_off", "rrule_until")
    op.drop_column("time_off", "rrule")
