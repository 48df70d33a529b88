"""Appointment endpoints."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query, status

from medischeduler.dependencies import Actor, Cache, DatabaseSession
from medischeduler.schemas.appointments import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentStatusUpdate,
)
from medischeduler.services.appointment_service import AppointmentService
from medischeduler.services.doctor_service import DoctorService

router = APIRouter()


def _service(db: DatabaseSession, cache: Cache) -> AppointmentService:
    return AppointmentService(db, doctor_service=DoctorService(cache_manager=cache))


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Book appointment",
)
async def book_appointment(
    data: AppointmentCreate,
    actor: Actor,
    db: DatabaseSession,
    cache: Cache,
) -> AppointmentResponse:
    """
    Book an appointment with a doctor.

    Patients book for themselves; staff book on behalf of a patient by
    passing ``patient_id``.

    Args:
        data: Booking request
        actor: Authenticated caller
        db: Database session
        cache: Doctor profile cache

    Returns:
        Created appointment in ``scheduled`` status
    """
    return await _service(db, cache).book_appointment(actor, data)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    actor: Actor,
    db: DatabaseSession,
    cache: Cache,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    doctor_id: UUID | None = Query(None),
    patient_id: UUID | None = Query(None),
    from_date: datetime | None = Query(None),
    to_date: datetime | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments visible to the caller with filtering.

    Args:
        actor: Authenticated caller
        db: Database session
        cache: Doctor profile cache
        status_filter: Filter by status
        doctor_id: Filter by doctor ID
        patient_id: Filter by patient ID
        from_date: Earliest start time
        to_date: Latest start time
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        status=status_filter,
        doctor_id=doctor_id,
        patient_id=patient_id,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )
    return await _service(db, cache).list_appointments(actor, filters)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    actor: Actor,
    db: DatabaseSession,
    cache: Cache,
) -> AppointmentResponse:
    """Get a specific appointment with its status history."""
    return await _service(db, cache).get_appointment(appointment_id, actor)


@router.patch(
    "/{appointment_id}/status",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Change appointment status",
)
async def update_appointment_status(
    appointment_id: UUID,
    data: AppointmentStatusUpdate,
    actor: Actor,
    db: DatabaseSession,
    cache: Cache,
) -> AppointmentResponse:
    """
    Move an appointment through its lifecycle.

    Confirm, check in, start, complete or mark as no-show. Cancelling
    through this endpoint applies the cancellation policy.
    """
    return await _service(db, cache).transition_status(appointment_id, actor, data)


@router.post(
    "/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    data: AppointmentCancel,
    actor: Actor,
    db: DatabaseSession,
    cache: Cache,
) -> AppointmentResponse:
    """
    Cancel an appointment.

    Only scheduled or confirmed appointments can be cancelled, and not
    within the notice window before they start.
    """
    return await _service(db, cache).cancel_appointment(appointment_id, actor, data)


@router.post(
    "/{appointment_id}/reschedule",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Reschedule appointment",
)
async def reschedule_appointment(
    appointment_id: UUID,
    data: AppointmentReschedule,
    actor: Actor,
    db: DatabaseSession,
    cache: Cache,
) -> AppointmentResponse:
    """Move an appointment to a new start time with the same doctor."""
    return await _service(db, cache).reschedule_appointment(appointment_id, actor, data)
