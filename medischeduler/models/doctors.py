"""Doctor and availability exception tables using SQLAlchemy Core."""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    Time,
    Uuid,
    func,
    true,
)

from medischeduler.models.base import UTCDateTime, metadata

doctors = Table(
    "doctors",
    metadata,
    Column("id", Uuid, primary_key=True),
    # Linked account, owned by the account service
    Column("user_id", Uuid, nullable=True, unique=True, index=True),
    Column("full_name", Text, nullable=False),
    Column("specialization", String(200), index=True),
    # Practice information
    Column("consultation_fee", Numeric(10, 2), nullable=False, server_default="0"),
    Column("consultation_duration_minutes", Integer, nullable=False, server_default="30"),
    # Availability: seven entries keyed by weekday name
    Column("weekly_schedule", JSON, nullable=False),
    Column("is_accepting_appointments", Boolean, nullable=False, server_default=true()),
    # Metadata
    Column("created_at", UTCDateTime(), nullable=False, server_default=func.now()),
    Column("updated_at", UTCDateTime(), nullable=False, server_default=func.now()),
    CheckConstraint(
        "consultation_duration_minutes BETWEEN 15 AND 180",
        name="doctors_consultation_duration_check",
    ),
)

doctor_unavailable_dates = Table(
    "doctor_unavailable_dates",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column(
        "doctor_id",
        Uuid,
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("unavailable_date", Date, nullable=False),
    Column("is_full_day", Boolean, nullable=False, server_default=true()),
    # Partial-day exceptions block only [start_time, end_time)
    Column("start_time", Time, nullable=True),
    Column("end_time", Time, nullable=True),
    Column("reason", Text, nullable=True),
    Column("created_at", UTCDateTime(), nullable=False, server_default=func.now()),
)
