"""create specialists, working hours, services and time off

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18 10:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "specialists",
        sa.Column("id", sa.Integer(), sa.Identity(), primary_key=True, nullable=False),
        sa.Column("display_name", sa.String(length=120), nullable=False),
        sa.Column("title", sa.String(length=120), nullable=True),
        sa.Column("slot_duration_min", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("buffer_min_default", sa.Integer(), nullable=False, server_default="15"),
        sa.Column("min_lead_min", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("tzid", sa.String(length=64), nullable=False, server_default="Europe/Moscow"),
        sa.Column("requires_confirmation", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("reservation_seq", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("slot_duration_min > 0", name="ck_specialists_slot_duration_positive"),
        sa.CheckConstraint("buffer_min_default >= 0", name="ck_specialists_buffer_non_negative"),
        sa.CheckConstraint("min_lead_min >= 0", name="ck_specialists_lead_non_negative"),
    )
    op.create_index("ix_specialists_id", "specialists", ["id"], unique=False)

    op.create_table(
        "working_hours",
        sa.Column("id", sa.Integer(), sa.Identity(), primary_key=True, nullable=False),
        sa.Column("specialist_id", sa.Integer(), nullable=False),
        sa.Column("weekday", sa.Integer(), nullable=False),
        sa.Column("opens_at", sa.Time(), nullable=False),
        sa.Column("closes_at", sa.Time(), nullable=False),
        sa.ForeignKeyConstraint(["specialist_id"], ["specialists.id"], ondelete="CASCADE"),
        sa.CheckConstraint("weekday >= 0 AND weekday <= 6", name="ck_working_hours_weekday"),
        sa.CheckConstraint("closes_at > opens_at", name="ck_working_hours_interval"),
    )
    op.create_index("ix_working_hours_id", "working_hours", ["id"], unique=False)
    op.create_index("ix_working_hours_specialist_id", "working_hours", ["specialist_id"], unique=False)

    op.create_table(
        "services",
        sa.Column("id", sa.Integer(), sa.Identity(), primary_key=True, nullable=False),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("category", sa.String(length=120), nullable=True),
        sa.Column("duration_min", sa.Integer(), nullable=False),
        sa.Column("buffer_min_override", sa.Integer(), nullable=True),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="RUB"),
        sa.Column("requires_confirmation", sa.Boolean(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("duration_min > 0", name="ck_services_duration_positive"),
        sa.CheckConstraint("price_cents >= 0", name="ck_services_price_non_negative"),
    )
    op.create_index("ix_services_id", "services", ["id"], unique=False)
    op.create_index("ix_services_category", "services", ["category"], unique=False)

    op.create_table(
        "specialist_services",
        sa.Column("id", sa.Integer(), sa.Identity(), primary_key=True, nullable=False),
        sa.Column("specialist_id", sa.Integer(), nullable=False),
        sa.Column("service_id", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.ForeignKeyConstraint(["specialist_id"], ["specialists.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("specialist_id", "service_id", name="uq_specialist_services_pair"),
    )
    op.create_index("ix_specialist_services_id", "specialist_services", ["id"], unique=False)
    op.create_index("ix_specialist_services_specialist_id", "specialist_services", ["specialist_id"], unique=False)
    op.create_index("ix_specialist_services_service_id", "specialist_services", ["service_id"], unique=False)

    op.create_table(
        "time_off",
        sa.Column("id", sa.Integer(), sa.Identity(), primary_key=True, nullable=False),
        sa.Column("specialist_id", sa.Integer(), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(["specialist_id"], ["specialists.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_time_off_id", "time_off", ["id"], unique=False)
    op.create_index("ix_time_off_specialist_id", "time_off", ["specialist_id"], unique=False)
    op.create_index("ix_time_off_start_at", "time_off", ["start_at"], unique=False)


def downgrade() -> None:
    op.drop_table("time_off")
    op.drop_table("specialist_services")
    op.drop_table("services")
    op.drop_table("working_hours")
    op.drop_table("specialists")
