"""Slot and availability schemas."""

import datetime as dt
from uuid import UUID

from pydantic import BaseModel


class Slot(BaseModel):
    """A candidate appointment interval."""

    start_time: dt.datetime
    end_time: dt.datetime
    available: bool = True


class SlotListResponse(BaseModel):
    """Slots for one doctor on one date."""

    doctor_id: UUID
    date: dt.date
    slot_minutes: int
    slots: list[Slot]


class DayAvailability(BaseModel):
    """Slots for one day of an availability range."""

    date: dt.date
    weekday: str
    slots: list[Slot]


class AvailabilityResponse(BaseModel):
    """Slots for a doctor over a range of days."""

    doctor_id: UUID
    start_date: dt.date
    days: int
    slot_minutes: int
    availability: list[DayAvailability]
