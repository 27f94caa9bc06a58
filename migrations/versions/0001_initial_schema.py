"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _enum(*values: str, name: str) -> sa.Enum:
    return sa.Enum(*values, name=name, create_type=False)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def _patient_fk() -> sa.Column:
    return sa.Column("patient_id", sa.Integer(), sa.ForeignKey("patients.id"), nullable=False)


ENUMS = {
    "plan_tier_enum": ("freemium", "premium", "vip"),
    "patient_status_enum": ("pending", "active"),
    "message_sender_enum": ("patient", "system", "staff"),
    "scheduled_status_enum": ("pending", "sent", "error"),
    "community_activity_kind_enum": ("comment", "reaction", "post"),
}


def upgrade() -> None:
    # --- ENUM types ---
    for name, values in ENUMS.items():
        sa.Enum(*values, name=name).create(op.get_bind(), checkfirst=True)

    # --- patients ---
    op.create_table(
        "patients",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("phone_number", sa.String(32), nullable=False),
        sa.Column("full_name", sa.String(256), nullable=False),
        sa.Column("plan", _enum(*ENUMS["plan_tier_enum"], name="plan_tier_enum"), nullable=False),
        sa.Column("status", _enum(*ENUMS["patient_status_enum"], name="patient_status_enum"), nullable=False),
        sa.Column("needs_attention", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_message", sa.Text(), nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("badges", sa.JSON(), nullable=False),
        sa.Column("weekly_progress", sa.JSON(), nullable=False),
        sa.Column("week_start", sa.Date(), nullable=True),
        sa.Column("current_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("longest_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_activity_date", sa.Date(), nullable=True),
        sa.Column("streak_freezes", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("freezes_used_this_month", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_patients_id", "patients", ["id"])
    op.create_index("ix_patients_phone_number", "patients", ["phone_number"], unique=True)

    # --- checkin_states ---
    op.create_table(
        "checkin_states",
        sa.Column("id", sa.Integer(), nullable=False),
        _patient_fk(),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("step", sa.String(32), nullable=False),
        sa.Column("steps", sa.JSON(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("points_earned", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("patient_id", "day", name="uq_checkin_state_patient_day"),
    )
    op.create_index("ix_checkin_states_id", "checkin_states", ["id"])
    op.create_index("ix_checkin_states_patient_id", "checkin_states", ["patient_id"])
    op.create_index("ix_checkin_states_day", "checkin_states", ["day"])

    # --- checkin_records ---
    op.create_table(
        "checkin_records",
        sa.Column("id", sa.Integer(), nullable=False),
        _patient_fk(),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("hydration", sa.String(16), nullable=True),
        sa.Column("breakfast", sa.String(1), nullable=True),
        sa.Column("lunch", sa.String(1), nullable=True),
        sa.Column("dinner", sa.String(1), nullable=True),
        sa.Column("snacks", sa.String(8), nullable=True),
        sa.Column("activity", sa.String(8), nullable=True),
        sa.Column("wellbeing", sa.Integer(), nullable=True),
        sa.Column("weight_kg", sa.Numeric(6, 2), nullable=True),
        sa.Column("points_earned", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_checkin_records_id", "checkin_records", ["id"])
    op.create_index("ix_checkin_records_patient_id", "checkin_records", ["patient_id"])
    op.create_index("ix_checkin_records_day", "checkin_records", ["day"])

    # --- messages (audit log) ---
    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), nullable=False),
        _patient_fk(),
        sa.Column("sender", _enum(*ENUMS["message_sender_enum"], name="message_sender_enum"), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("external_id", sa.String(64), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_id"),
    )
    op.create_index("ix_messages_id", "messages", ["id"])
    op.create_index("ix_messages_patient_id", "messages", ["patient_id"])
    op.create_index("ix_messages_created_at", "messages", ["created_at"])

    # --- scheduled_messages ---
    op.create_table(
        "scheduled_messages",
        sa.Column("id", sa.Integer(), nullable=False),
        _patient_fk(),
        sa.Column("destination", sa.String(32), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("send_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", _enum(*ENUMS["scheduled_status_enum"], name="scheduled_status_enum"), nullable=False),
        sa.Column("source", sa.String(32), nullable=False),
        sa.Column("is_gamification", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("protocol_day", sa.Integer(), nullable=True),
        sa.Column("error_info", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_scheduled_messages_id", "scheduled_messages", ["id"])
    op.create_index("ix_scheduled_messages_patient_id", "scheduled_messages", ["patient_id"])
    op.create_index("ix_scheduled_messages_send_at", "scheduled_messages", ["send_at"])
    op.create_index("ix_scheduled_messages_status", "scheduled_messages", ["status"])

    # --- patient_protocols ---
    op.create_table(
        "patient_protocols",
        sa.Column("id", sa.Integer(), nullable=False),
        _patient_fk(),
        sa.Column("protocol_name", sa.String(128), nullable=False),
        sa.Column("current_day", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("weigh_day", sa.Integer(), nullable=True),
        sa.Column("weight_goal_kg", sa.Numeric(6, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_patient_protocols_id", "patient_protocols", ["id"])
    op.create_index("ix_patient_protocols_patient_id", "patient_protocols", ["patient_id"])
    op.create_index("ix_patient_protocols_is_active", "patient_protocols", ["is_active"])

    # --- health_metrics ---
    op.create_table(
        "health_metrics",
        sa.Column("id", sa.Integer(), nullable=False),
        _patient_fk(),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("weight_kg", sa.Numeric(6, 2), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_health_metrics_id", "health_metrics", ["id"])
    op.create_index("ix_health_metrics_patient_id", "health_metrics", ["patient_id"])
    op.create_index("ix_health_metrics_day", "health_metrics", ["day"])

    # --- community_activities ---
    op.create_table(
        "community_activities",
        sa.Column("id", sa.Integer(), nullable=False),
        _patient_fk(),
        sa.Column(
            "kind",
            _enum(*ENUMS["community_activity_kind_enum"], name="community_activity_kind_enum"),
            nullable=False,
        ),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_community_activities_id", "community_activities", ["id"])
    op.create_index("ix_community_activities_patient_id", "community_activities", ["patient_id"])

    # --- weekly_progress_logs ---
    op.create_table(
        "weekly_progress_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        _patient_fk(),
        sa.Column("week_start", sa.Date(), nullable=False),
        sa.Column("progress", sa.JSON(), nullable=False),
        sa.Column("all_goals_met", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("patient_id", "week_start", name="uq_weekly_progress_patient_week"),
    )
    op.create_index("ix_weekly_progress_logs_id", "weekly_progress_logs", ["id"])
    op.create_index("ix_weekly_progress_logs_patient_id", "weekly_progress_logs", ["patient_id"])

    # --- attention_requests ---
    op.create_table(
        "attention_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        _patient_fk(),
        sa.Column("reason", sa.String(256), nullable=False),
        sa.Column("trigger_message", sa.Text(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_attention_requests_id", "attention_requests", ["id"])
    op.create_index("ix_attention_requests_patient_id", "attention_requests", ["patient_id"])

    # --- job_locks ---
    op.create_table(
        "job_locks",
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("name"),
    )


def downgrade() -> None:
    for table in (
        "job_locks",
        "attention_requests",
        "weekly_progress_logs",
        "community_activities",
        "health_metrics",
        "patient_protocols",
        "scheduled_messages",
        "messages",
        "checkin_records",
        "checkin_states",
        "patients",
    ):
        op.drop_table(table)
    for name in reversed(list(ENUMS)):
        sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
