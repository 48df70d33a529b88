"""Doctor profile, schedule and availability endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from medischeduler.core.permissions import Capability
from medischeduler.dependencies import Actor, Cache, DatabaseSession
from medischeduler.schemas.doctors import (
    DoctorCreate,
    DoctorResponse,
    DoctorScheduleUpdate,
    UnavailableDateCreate,
    UnavailableDateResponse,
)
from medischeduler.schemas.slots import AvailabilityResponse, SlotListResponse
from medischeduler.services.availability_service import AvailabilityService
from medischeduler.services.doctor_service import DoctorService

router = APIRouter()


def get_doctor_service(cache: Cache) -> DoctorService:
    """Get doctor service instance."""
    return DoctorService(cache_manager=cache)


# ============================================================================
# Doctor profile
# ============================================================================


@router.post("/", response_model=DoctorResponse, status_code=status.HTTP_201_CREATED)
async def create_doctor(
    doctor_data: DoctorCreate,
    actor: Actor,
    db: DatabaseSession,
    doctor_service: DoctorService = Depends(get_doctor_service),
):
    """
    Create a new doctor profile.

    - **user_id**: Account linked to this doctor, used for schedule ownership
    - **full_name**: Display name
    - **specialization**: Primary medical specialization
    - **consultation_fee**: Fee snapshotted onto each booking
    - **consultation_duration_minutes**: Default appointment length and slot size
    - **weekly_schedule**: Working hours and break per weekday
    - **is_accepting_appointments**: Whether new bookings are allowed
    """
    actor.require(Capability.MANAGE_PROVIDERS)
    return await doctor_service.create_doctor(db, doctor_data)


@router.get("/{doctor_id}", response_model=DoctorResponse)
async def get_doctor(
    doctor_id: UUID,
    actor: Actor,
    db: DatabaseSession,
    doctor_service: DoctorService = Depends(get_doctor_service),
):
    """Get a doctor with weekly schedule and unavailable dates."""
    return await doctor_service.get_doctor(db, doctor_id)


@router.put("/{doctor_id}/schedule", response_model=DoctorResponse)
async def update_schedule(
    doctor_id: UUID,
    schedule_data: DoctorScheduleUpdate,
    actor: Actor,
    db: DatabaseSession,
    doctor_service: DoctorService = Depends(get_doctor_service),
):
    """
    Update a doctor's weekly schedule and consultation settings.

    Doctors may update their own schedule; admins may update any.
    """
    return await doctor_service.update_schedule(db, doctor_id, schedule_data, actor)


# ============================================================================
# Unavailable dates
# ============================================================================


@router.post(
    "/{doctor_id}/unavailable-dates",
    response_model=UnavailableDateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_unavailable_date(
    doctor_id: UUID,
    data: UnavailableDateCreate,
    actor: Actor,
    db: DatabaseSession,
    doctor_service: DoctorService = Depends(get_doctor_service),
):
    """
    Block a full day or part of a day.

    - **unavailable_date**: Date in the clinic timezone
    - **is_full_day**: Block the whole day
    - **start_time** / **end_time**: Blocked window when not a full day
    - **reason**: Optional reason (leave, conference, ...)
    """
    return await doctor_service.add_unavailable_date(db, doctor_id, data, actor)


@router.delete(
    "/{doctor_id}/unavailable-dates/{exception_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def remove_unavailable_date(
    doctor_id: UUID,
    exception_id: UUID,
    actor: Actor,
    db: DatabaseSession,
    doctor_service: DoctorService = Depends(get_doctor_service),
):
    """Remove an unavailable date."""
    await doctor_service.remove_unavailable_date(db, doctor_id, exception_id, actor)


# ============================================================================
# Availability
# ============================================================================


@router.get("/{doctor_id}/slots", response_model=SlotListResponse)
async def get_available_slots(
    doctor_id: UUID,
    actor: Actor,
    db: DatabaseSession,
    target_date: date = Query(..., alias="date", description="Date in the clinic timezone"),
    duration: int | None = Query(
        None, ge=15, le=180, description="Slot length, defaults to the consultation duration"
    ),
    doctor_service: DoctorService = Depends(get_doctor_service),
):
    """
    Get appointment slots for a doctor on a date.

    Slots inside breaks, blocked hours or the past are omitted; slots taken
    by an active appointment are returned with ``available: false``.
    """
    service = AvailabilityService(db, doctor_service=doctor_service)
    return await service.get_available_slots(doctor_id, target_date, duration)


@router.get("/{doctor_id}/availability", response_model=AvailabilityResponse)
async def get_availability(
    doctor_id: UUID,
    actor: Actor,
    db: DatabaseSession,
    start_date: date | None = Query(None, description="First date, defaults to today"),
    days: int = Query(7, ge=1, description="Number of consecutive days"),
    duration: int | None = Query(None, ge=15, le=180),
    doctor_service: DoctorService = Depends(get_doctor_service),
):
    """Get appointment slots for a range of days, skipping days with none."""
    service = AvailabilityService(db, doctor_service=doctor_service)
    return await service.get_availability(doctor_id, start_date, days, duration)
