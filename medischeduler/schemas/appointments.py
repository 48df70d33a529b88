"""Appointment schemas for request/response validation."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, Field, field_serializer


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"


class AppointmentType(str, Enum):
    """Appointment type enumeration."""

    CONSULTATION = "consultation"
    FOLLOW_UP = "follow_up"
    CHECK_UP = "check_up"
    PROCEDURE = "procedure"
    DIAGNOSTIC = "diagnostic"
    THERAPY = "therapy"
    VACCINATION = "vaccination"
    SCREENING = "screening"
    EMERGENCY = "emergency"
    TELEMEDICINE = "telemedicine"


class RefundStatus(str, Enum):
    """Refund disposition recorded on cancellation."""

    NOT_APPLICABLE = "not_applicable"
    PENDING = "pending"
    PROCESSED = "processed"
    DENIED = "denied"


class AppointmentCreate(BaseModel):
    """Schema for booking a new appointment."""

    doctor_id: UUID
    # Required when staff book on behalf of a patient
    patient_id: UUID | None = None
    appointment_at: AwareDatetime
    # Defaults to the doctor's consultation duration
    duration_minutes: int | None = Field(None, ge=15, le=180)
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    reason: str = Field(..., min_length=1, max_length=500)
    notes: str | None = Field(None, max_length=1000)


class AppointmentStatusUpdate(BaseModel):
    """Schema for updating appointment status."""

    status: AppointmentStatus
    reason: str | None = Field(None, max_length=500)
    notes: str | None = Field(None, max_length=1000)


class AppointmentCancel(BaseModel):
    """Schema for cancelling an appointment."""

    reason: str = Field(..., min_length=1, max_length=500)
    notes: str | None = Field(None, max_length=1000)


class AppointmentReschedule(BaseModel):
    """Schema for moving an appointment to a new start time."""

    appointment_at: AwareDatetime
    reason: str = Field(..., min_length=1, max_length=500)


class StatusHistoryEntry(BaseModel):
    """One entry of the appointment status history."""

    status: AppointmentStatus
    changed_at: datetime
    changed_by: UUID | None = None
    reason: str | None = None
    notes: str | None = None

    model_config = {"from_attributes": True}


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    appointment_number: str
    doctor_id: UUID
    patient_id: UUID
    appointment_at: datetime
    appointment_end_at: datetime
    duration_minutes: int
    appointment_type: AppointmentType
    reason: str
    notes: str | None = None
    consultation_fee: Decimal
    status: AppointmentStatus
    # Check-in and outcome
    check_in_at: datetime | None = None
    waiting_time_minutes: int | None = None
    actual_start_at: datetime | None = None
    actual_end_at: datetime | None = None
    actual_duration_minutes: int | None = None
    # Cancellation
    cancelled_at: datetime | None = None
    cancelled_by: UUID | None = None
    cancelled_by_role: str | None = None
    cancellation_reason: str | None = None
    cancellation_notes: str | None = None
    refund_status: RefundStatus | None = None
    # Rescheduling
    original_appointment_at: datetime | None = None
    rescheduled_at: datetime | None = None
    rescheduled_by: UUID | None = None
    reschedule_reason: str | None = None
    reschedule_count: int = 0
    # Audit
    created_by: UUID
    last_modified_by: UUID | None = None
    created_at: datetime
    updated_at: datetime
    status_history: list[StatusHistoryEntry] = Field(default_factory=list)

    model_config = {"from_attributes": True}

    @field_serializer("consultation_fee", when_used="json")
    def serialize_decimal(self, value: Decimal) -> float:
        """Serialize Decimal to float for JSON."""
        return float(value)


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    doctor_id: UUID | None = None
    patient_id: UUID | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)
