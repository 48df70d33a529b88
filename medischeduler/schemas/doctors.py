"""Doctor and availability schemas for request/response validation."""

from datetime import date, datetime, time
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_serializer, model_validator

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

# ============================================================================
# Availability Schemas
# ============================================================================


class DaySchedule(BaseModel):
    """Working hours for one weekday."""

    is_available: bool = True
    start_time: time = time(9, 0)
    end_time: time = time(17, 0)
    break_start: time | None = None
    break_end: time | None = None

    @model_validator(mode="after")
    def validate_break(self) -> "DaySchedule":
        """Require both break bounds or neither."""
        if (self.break_start is None) != (self.break_end is None):
            raise ValueError("break_start and break_end must be provided together")
        return self


def _weekday() -> DaySchedule:
    return DaySchedule(break_start=time(12, 0), break_end=time(13, 0))


def _weekend() -> DaySchedule:
    return DaySchedule(is_available=False, start_time=time(9, 0), end_time=time(13, 0))


class WeeklySchedule(BaseModel):
    """Recurring weekly availability, one entry per weekday."""

    monday: DaySchedule = Field(default_factory=_weekday)
    tuesday: DaySchedule = Field(default_factory=_weekday)
    wednesday: DaySchedule = Field(default_factory=_weekday)
    thursday: DaySchedule = Field(default_factory=_weekday)
    friday: DaySchedule = Field(default_factory=_weekday)
    saturday: DaySchedule = Field(default_factory=_weekend)
    sunday: DaySchedule = Field(default_factory=_weekend)

    def for_date(self, day: date) -> DaySchedule:
        """Get the schedule entry for the weekday of ``day``."""
        return getattr(self, WEEKDAYS[day.weekday()])


class UnavailableDateBase(BaseModel):
    """Date-specific exception to the weekly schedule."""

    unavailable_date: date
    is_full_day: bool = True
    start_time: time | None = None
    end_time: time | None = None
    reason: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def validate_window(self) -> "UnavailableDateBase":
        """Partial-day exceptions need a non-empty time window."""
        if not self.is_full_day:
            if self.start_time is None or self.end_time is None:
                raise ValueError("Partial-day exceptions require start_time and end_time")
            if self.end_time <= self.start_time:
                raise ValueError("end_time must be after start_time")
        return self


class UnavailableDateCreate(UnavailableDateBase):
    """Schema for adding an unavailable date."""


class UnavailableDateResponse(UnavailableDateBase):
    """Unavailable date response schema."""

    id: UUID
    doctor_id: UUID
    created_at: datetime

    model_config = {"from_attributes": True}


# ============================================================================
# Doctor Schemas
# ============================================================================


class DoctorBase(BaseModel):
    """Base schema for doctor."""

    full_name: str = Field(..., min_length=1, max_length=200)
    specialization: str | None = Field(None, max_length=200)
    consultation_fee: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)
    consultation_duration_minutes: int = Field(30, ge=15, le=180)
    weekly_schedule: WeeklySchedule = Field(default_factory=WeeklySchedule)
    is_accepting_appointments: bool = True


class DoctorCreate(DoctorBase):
    """Schema for creating a doctor."""

    user_id: UUID | None = None


class DoctorScheduleUpdate(BaseModel):
    """Schema for updating a doctor's schedule settings."""

    weekly_schedule: WeeklySchedule | None = None
    consultation_duration_minutes: int | None = Field(None, ge=15, le=180)
    consultation_fee: Decimal | None = Field(None, ge=0, decimal_places=2)
    is_accepting_appointments: bool | None = None


class DoctorResponse(DoctorBase):
    """Doctor response schema."""

    id: UUID
    user_id: UUID | None = None
    unavailable_dates: list[UnavailableDateResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_serializer("consultation_fee", when_used="json")
    def serialize_decimal(self, value: Decimal | None) -> float | None:
        """Serialize Decimal to float for JSON."""
        return float(value) if value is not None else None
