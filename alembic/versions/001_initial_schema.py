"""Initial schema — users, doctors, schedules, patients, appointments, notifications, audit.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None

APPOINTMENT_STATUSES = ("SCHEDULED", "CONFIRMED", "COMPLETED", "CANCELED", "NO_SHOW")
DAYS = ("MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY")


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    # ── Standalone tables (no FKs) ─────────────────────────────────────

    op.create_table(
        "users",
        sa.Column("username", sa.String(50), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column(
            "role",
            sa.Enum("ADMIN", "DOCTOR", "PATIENT", "STAFF", name="user_role", native_enum=False, length=20),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "audit_log",
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True)),
        sa.Column("actor_id", sa.String(100), comment="Username or 'system'"),
        sa.Column("actor_role", sa.String(50), comment="staff, system"),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text())),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_audit_log"),
    )
    op.create_index("ix_audit_log_event_type", "audit_log", ["event_type"])
    op.create_index("ix_audit_log_entity_id", "audit_log", ["entity_id"])

    # ── People ─────────────────────────────────────────────────────────

    op.create_table(
        "doctors",
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("license_number", sa.String(50)),
        sa.Column("user_id", postgresql.UUID(as_uuid=True)),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_doctors"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_doctors_user_id_users"),
        sa.UniqueConstraint("license_number", name="uq_doctors_license_number"),
        sa.UniqueConstraint("user_id", name="uq_doctors_user_id"),
    )

    op.create_table(
        "patients",
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("birth_date", sa.Date()),
        sa.Column("phone", sa.String(20)),
        sa.Column("user_id", postgresql.UUID(as_uuid=True)),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_patients"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_patients_user_id_users"),
        sa.UniqueConstraint("user_id", name="uq_patients_user_id"),
    )

    op.create_table(
        "doctor_schedules",
        sa.Column("doctor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("day_of_week", sa.Enum(*DAYS, name="day_of_week", native_enum=False, length=10), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("slot_duration_minutes", sa.Integer(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("location", sa.String(50), comment="Consultation room"),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_doctor_schedules"),
        sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"], name="fk_doctor_schedules_doctor_id_doctors"),
        sa.CheckConstraint("end_time > start_time", name="ck_doctor_schedules_window_order"),
        sa.CheckConstraint("slot_duration_minutes > 0", name="ck_doctor_schedules_slot_positive"),
    )
    op.create_index("ix_doctor_schedules_doctor_id", "doctor_schedules", ["doctor_id"])

    # ── Appointments ───────────────────────────────────────────────────

    op.create_table(
        "appointments",
        sa.Column("doctor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*APPOINTMENT_STATUSES, name="appointment_status", native_enum=False, length=20),
            nullable=False,
        ),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("notes", sa.String(1000)),
        sa.Column("location", sa.String(50)),
        sa.Column("confirmed", sa.Boolean(), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True)),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_appointments"),
        sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"], name="fk_appointments_doctor_id_doctors"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], name="fk_appointments_patient_id_patients"),
        sa.CheckConstraint("end_at > start_at", name="ck_appointments_time_order"),
    )
    op.create_index("ix_appointments_doctor_id", "appointments", ["doctor_id"])
    op.create_index("ix_appointments_patient_id", "appointments", ["patient_id"])
    op.create_index("ix_appointments_status", "appointments", ["status"])
    op.create_index("ix_appointments_doctor_window", "appointments", ["doctor_id", "start_at", "end_at"])

    op.create_table(
        "notifications",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("body", sa.String(500), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "APPOINTMENT_SCHEDULED",
                "APPOINTMENT_CONFIRMATION",
                "APPOINTMENT_CANCELLATION",
                "APPOINTMENT_RESCHEDULE",
                name="notification_type",
                native_enum=False,
                length=40,
            ),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum("UNREAD", "READ", "DELETED", name="notification_status", native_enum=False, length=20),
            nullable=False,
        ),
        sa.Column(
            "entity_type",
            sa.Enum("APPOINTMENT", name="entity_type", native_enum=False, length=20),
            nullable=False,
        ),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True)),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_notifications"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_notifications_user_id_users"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_entity_id", "notifications", ["entity_id"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("appointments")
    op.drop_table("doctor_schedules")
    op.drop_table("patients")
    op.drop_table("doctors")
    op.drop_table("audit_log")
    op.drop_table("users")
