"""Appointment and status history tables using SQLAlchemy Core."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    Uuid,
    func,
    text,
)

from medischeduler.models.base import UTCDateTime, metadata

# Statuses that hold a doctor's time
ACTIVE_STATUS_CLAUSE = "status IN ('scheduled', 'confirmed', 'checked_in', 'in_progress')"

# Index name is matched when mapping insert failures to SlotUnavailable
ACTIVE_SLOT_INDEX = "uq_appointments_doctor_active_slot"

appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("appointment_number", String(32), nullable=False, unique=True),
    # Ownership / references
    Column(
        "doctor_id",
        Uuid,
        ForeignKey("doctors.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    ),
    Column("patient_id", Uuid, nullable=False, index=True),
    # Appointment details
    Column("appointment_at", UTCDateTime(), nullable=False),
    Column("appointment_end_at", UTCDateTime(), nullable=False),
    Column("duration_minutes", Integer, nullable=False),
    Column("appointment_type", String(32), nullable=False, server_default="consultation"),
    Column("reason", Text, nullable=False),
    Column("notes", Text, nullable=True),
    # Fee snapshot taken from the doctor at booking time
    Column("consultation_fee", Numeric(10, 2), nullable=False, server_default="0"),
    # Status management
    Column("status", String(32), nullable=False, server_default="scheduled"),
    # Check-in and outcome
    Column("check_in_at", UTCDateTime(), nullable=True),
    Column("waiting_time_minutes", Integer, nullable=True),
    Column("actual_start_at", UTCDateTime(), nullable=True),
    Column("actual_end_at", UTCDateTime(), nullable=True),
    Column("actual_duration_minutes", Integer, nullable=True),
    # Cancellation
    Column("cancelled_at", UTCDateTime(), nullable=True),
    Column("cancelled_by", Uuid, nullable=True),
    Column("cancelled_by_role", String(16), nullable=True),
    Column("cancellation_reason", Text, nullable=True),
    Column("cancellation_notes", Text, nullable=True),
    Column("refund_status", String(32), nullable=True),
    # Rescheduling
    Column("original_appointment_at", UTCDateTime(), nullable=True),
    Column("rescheduled_at", UTCDateTime(), nullable=True),
    Column("rescheduled_by", Uuid, nullable=True),
    Column("reschedule_reason", Text, nullable=True),
    Column("reschedule_count", Integer, nullable=False, server_default="0"),
    # Audit fields
    Column("created_by", Uuid, nullable=False),
    Column("last_modified_by", Uuid, nullable=True),
    Column("created_at", UTCDateTime(), nullable=False, server_default=func.now()),
    Column("updated_at", UTCDateTime(), nullable=False, server_default=func.now()),
    # Constraints
    CheckConstraint(
        "status IN ('scheduled', 'confirmed', 'checked_in', 'in_progress', "
        "'completed', 'cancelled', 'no_show', 'rescheduled')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "duration_minutes BETWEEN 15 AND 180",
        name="appointments_duration_check",
    ),
    CheckConstraint(
        "reschedule_count >= 0",
        name="appointments_reschedule_count_check",
    ),
    # At most one active appointment per doctor and start time
    Index(
        ACTIVE_SLOT_INDEX,
        "doctor_id",
        "appointment_at",
        unique=True,
        postgresql_where=text(ACTIVE_STATUS_CLAUSE),
        sqlite_where=text(ACTIVE_STATUS_CLAUSE),
    ),
    Index("idx_appointments_doctor_window", "doctor_id", "appointment_at", "appointment_end_at"),
)

appointment_status_history = Table(
    "appointment_status_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "appointment_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("status", String(32), nullable=False),
    Column("changed_at", UTCDateTime(), nullable=False),
    Column("changed_by", Uuid, nullable=True),
    Column("reason", Text, nullable=True),
    Column("notes", Text, nullable=True),
)
