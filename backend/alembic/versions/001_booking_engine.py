# backend/alembic/versions/001_booking_engine.py
"""Booking engine schema

Revision ID: 001_booking_engine
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_booking_engine"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(updated: bool = True) -> list:
    columns = [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True))
    return columns


def upgrade() -> None:
    """Create collaborator, availability, session, payment and refund tables."""
    print("Creating collaborator tables...")
    op.create_table(
        "users",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "therapists",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("session_rate", sa.Numeric(10, 2), nullable=False, server_default="0"),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )
    op.create_index("ix_therapists_id", "therapists", ["id"])

    op.create_table(
        "patients",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("user_id", sa.String(26), nullable=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("primary_therapist_id", sa.String(26), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["primary_therapist_id"], ["therapists.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_patients_id", "patients", ["id"])
    op.create_index("ix_patients_user_id", "patients", ["user_id"])

    op.create_table(
        "patient_guardians",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("patient_id", sa.String(26), nullable=False),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("patient_id", "user_id", name="uq_patient_guardians_patient_user"),
    )
    op.create_index("ix_patient_guardians_user_id", "patient_guardians", ["user_id"])

    print("Creating availability tables...")
    op.create_table(
        "availability_rules",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("therapist_id", sa.String(26), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=True),
        sa.Column("specific_date", sa.Date(), nullable=True),
        sa.Column("start_time", sa.String(5), nullable=False),
        sa.Column("end_time", sa.String(5), nullable=False),
        sa.Column("session_duration", sa.Integer(), nullable=False, server_default="45"),
        sa.Column("break_between_sessions", sa.Integer(), nullable=False, server_default="15"),
        sa.Column("recurrence", sa.String(10), nullable=False, server_default="NONE"),
        sa.Column("recurrence_days", sa.JSON(), nullable=True),
        sa.Column("recurrence_end_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_free", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.ForeignKeyConstraint(["therapist_id"], ["therapists.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("session_duration > 0", name="ck_availability_rules_duration_positive"),
        sa.CheckConstraint(
            "break_between_sessions >= 0", name="ck_availability_rules_break_non_negative"
        ),
        sa.CheckConstraint(
            "day_of_week IS NULL OR (day_of_week >= 0 AND day_of_week <= 6)",
            name="ck_availability_rules_day_of_week",
        ),
        sa.CheckConstraint(
            "recurrence IN ('NONE', 'DAILY', 'WEEKLY')", name="ck_availability_rules_recurrence"
        ),
    )
    op.create_index("ix_availability_rules_id", "availability_rules", ["id"])
    op.create_index("ix_availability_rules_therapist_id", "availability_rules", ["therapist_id"])

    op.create_table(
        "availability_slots",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("therapist_id", sa.String(26), nullable=False),
        sa.Column("rule_id", sa.String(26), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.String(8), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="45"),
        sa.Column("is_booked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_free", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.ForeignKeyConstraint(["therapist_id"], ["therapists.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["rule_id"], ["availability_rules.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "therapist_id", "date", "start_time", name="uq_availability_slots_therapist_date_start"
        ),
        sa.CheckConstraint("duration_minutes > 0", name="ck_availability_slots_duration_positive"),
    )
    op.create_index("ix_availability_slots_id", "availability_slots", ["id"])
    op.create_index(
        "ix_availability_slots_therapist_date", "availability_slots", ["therapist_id", "date"]
    )

    print("Creating session tables...")
    op.create_table(
        "therapy_sessions",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("patient_id", sa.String(26), nullable=False),
        sa.Column("therapist_id", sa.String(26), nullable=False),
        sa.Column("availability_slot_id", sa.String(26), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False, server_default="45"),
        sa.Column("status", sa.String(20), nullable=False, server_default="SCHEDULED"),
        sa.Column("session_type", sa.String(50), nullable=False, server_default="Individual"),
        sa.Column("booked_rate", sa.Numeric(10, 2), nullable=False, server_default="0"),
        *_timestamps(),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by_id", sa.String(26), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"]),
        sa.ForeignKeyConstraint(["therapist_id"], ["therapists.id"]),
        sa.ForeignKeyConstraint(
            ["availability_slot_id"], ["availability_slots.id"], ondelete="SET NULL"
        ),
        sa.ForeignKeyConstraint(["cancelled_by_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('REQUESTED', 'SCHEDULED', 'APPROVED', 'RESCHEDULED', "
            "'COMPLETED', 'CANCELLED', 'NO_SHOW')",
            name="ck_therapy_sessions_status",
        ),
        sa.CheckConstraint("duration > 0", name="check_session_duration_positive"),
        sa.CheckConstraint("booked_rate >= 0", name="check_booked_rate_non_negative"),
    )
    op.create_index("ix_therapy_sessions_id", "therapy_sessions", ["id"])
    op.create_index("ix_therapy_sessions_patient_id", "therapy_sessions", ["patient_id"])
    op.create_index("ix_therapy_sessions_scheduled_at", "therapy_sessions", ["scheduled_at"])
    op.create_index("ix_therapy_sessions_status", "therapy_sessions", ["status"])
    op.create_index(
        "ix_therapy_sessions_therapist_scheduled",
        "therapy_sessions",
        ["therapist_id", "scheduled_at"],
    )

    print("Creating payment tables...")
    op.create_table(
        "payments",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("order_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="LKR"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("purpose", sa.String(20), nullable=False, server_default="BOOKING"),
        sa.Column("patient_id", sa.String(26), nullable=False),
        sa.Column("payer_user_id", sa.String(26), nullable=True),
        sa.Column("session_id", sa.String(26), nullable=True),
        sa.Column("gateway_payment_id", sa.String(64), nullable=True),
        sa.Column("payment_method", sa.String(32), nullable=True),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("status_message", sa.Text(), nullable=True),
        sa.Column(
            "booking_intent", sa.JSON(), nullable=True, comment="PendingBooking for BOOKING payments"
        ),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"]),
        sa.ForeignKeyConstraint(["payer_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["session_id"], ["therapy_sessions.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('PENDING', 'COMPLETED', 'FAILED', 'CANCELLED')",
            name="ck_payments_status",
        ),
        sa.CheckConstraint(
            "purpose IN ('BOOKING', 'RESCHEDULE_FEE')", name="ck_payments_purpose"
        ),
    )
    op.create_index("ix_payments_order_id", "payments", ["order_id"], unique=True)
    op.create_index("ix_payments_patient_id", "payments", ["patient_id"])
    op.create_index("ix_payments_session_id", "payments", ["session_id"])

    op.create_table(
        "payment_events",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("payment_id", sa.String(26), nullable=False),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payment_events_payment_id", "payment_events", ["payment_id"])

    op.create_table(
        "session_reschedules",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("session_id", sa.String(26), nullable=False),
        sa.Column("previous_scheduled_at", sa.DateTime(), nullable=False),
        sa.Column("new_scheduled_at", sa.DateTime(), nullable=False),
        sa.Column("rescheduled_by", sa.String(26), nullable=False),
        sa.Column("rescheduled_by_role", sa.String(20), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("fee_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("fee_payment_id", sa.String(26), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["session_id"], ["therapy_sessions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["rescheduled_by"], ["users.id"]),
        sa.ForeignKeyConstraint(["fee_payment_id"], ["payments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("fee_payment_id"),
    )
    op.create_index("ix_session_reschedules_session_id", "session_reschedules", ["session_id"])

    print("Creating refund and notification tables...")
    op.create_table(
        "cancel_refunds",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("session_id", sa.String(26), nullable=False),
        sa.Column("guardian_user_id", sa.String(26), nullable=False),
        sa.Column("patient_id", sa.String(26), nullable=False),
        sa.Column("original_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("refund_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("platform_fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("therapist_share", sa.Numeric(10, 2), nullable=False),
        sa.Column("tier", sa.String(30), nullable=False),
        sa.Column("bank_account_name", sa.String(255), nullable=False),
        sa.Column("bank_name", sa.String(255), nullable=False),
        sa.Column("account_number", sa.String(34), nullable=False),
        sa.Column("branch_code", sa.String(20), nullable=True),
        sa.Column("swift_code", sa.String(11), nullable=True),
        sa.Column("refund_status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["session_id"], ["therapy_sessions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["guardian_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_id"),
        sa.CheckConstraint("refund_amount >= 0", name="check_refund_non_negative"),
        sa.CheckConstraint(
            "refund_status IN ('PENDING', 'COMPLETED')", name="ck_cancel_refunds_status"
        ),
    )
    op.create_index("ix_cancel_refunds_id", "cancel_refunds", ["id"])
    op.create_index("ix_cancel_refunds_guardian_user_id", "cancel_refunds", ["guardian_user_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("sender_id", sa.String(26), nullable=True),
        sa.Column("receiver_id", sa.String(26), nullable=False),
        sa.Column("type", sa.String(20), nullable=False, server_default="SYSTEM"),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_urgent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.ForeignKeyConstraint(["sender_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["receiver_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_receiver_read", "notifications", ["receiver_id", "is_read"])

    print("Booking engine schema created")


def downgrade() -> None:
    """Drop every booking engine table."""
    print("Dropping booking engine tables...")
    for table in (
        "notifications",
        "cancel_refunds",
        "session_reschedules",
        "payment_events",
        "payments",
        "therapy_sessions",
        "availability_slots",
        "availability_rules",
        "patient_guardians",
        "patients",
        "therapists",
        "users",
    ):
        op.drop_table(table)
