"""Tests for booking appointments through the appointment service."""

import asyncio
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from conftest import FIXED_NOW, MONDAY, at
from medischeduler.core.exceptions import (
    BadRequestException,
    ForbiddenException,
    NotFoundException,
    OutsideAvailabilityException,
    PastTimeException,
    SlotUnavailableException,
)
from medischeduler.models.appointments import appointments
from medischeduler.scheduling.conflicts import ConflictDetector
from medischeduler.scheduling.locks import ProviderLocks
from medischeduler.schemas.appointments import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentStatus,
)
from medischeduler.schemas.doctors import DoctorCreate
from medischeduler.services.appointment_service import AppointmentService
from medischeduler.services.doctor_service import DoctorService


def _booking(doctor_id, start, **values) -> AppointmentCreate:
    return AppointmentCreate(
        doctor_id=doctor_id, appointment_at=start, reason="Chest pain", **values
    )


async def _active_count(db_session, doctor_id) -> int:
    result = await db_session.execute(
        select(func.count())
        .select_from(appointments)
        .where(
            appointments.c.doctor_id == doctor_id,
            appointments.c.status == AppointmentStatus.SCHEDULED.value,
        )
    )
    return result.scalar()


@pytest.mark.asyncio
async def test_book_appointment(db_session, doctor, patient, clock):
    """Booking 2024-06-10T09:00 creates a scheduled appointment."""
    service = AppointmentService(db_session, clock=clock)

    appointment = await service.book_appointment(patient, _booking(doctor.id, at(MONDAY, 9)))

    assert appointment.status == AppointmentStatus.SCHEDULED
    assert appointment.patient_id == patient.actor_id
    assert appointment.doctor_id == doctor.id
    assert appointment.appointment_at == at(MONDAY, 9)
    assert appointment.appointment_end_at == at(MONDAY, 9, 30)
    assert appointment.duration_minutes == 30
    assert appointment.consultation_fee == Decimal("500.00")
    assert appointment.appointment_number.startswith("APT20240601-")
    assert appointment.reschedule_count == 0
    assert [entry.status for entry in appointment.status_history] == [AppointmentStatus.SCHEDULED]


@pytest.mark.asyncio
async def test_same_instant_twice_is_rejected(db_session, doctor, patient, other_patient, clock):
    service = AppointmentService(db_session, clock=clock)
    await service.book_appointment(patient, _booking(doctor.id, at(MONDAY, 9)))

    with pytest.raises(SlotUnavailableException):
        await service.book_appointment(other_patient, _booking(doctor.id, at(MONDAY, 9)))

    assert await _active_count(db_session, doctor.id) == 1


@pytest.mark.asyncio
async def test_overlapping_interval_is_rejected(db_session, doctor, patient, other_patient, clock):
    service = AppointmentService(db_session, clock=clock)
    await service.book_appointment(
        patient, _booking(doctor.id, at(MONDAY, 9), duration_minutes=60)
    )

    with pytest.raises(SlotUnavailableException):
        await service.book_appointment(other_patient, _booking(doctor.id, at(MONDAY, 9, 30)))


@pytest.mark.asyncio
async def test_adjacent_appointments_are_allowed(db_session, doctor, patient, other_patient, clock):
    service = AppointmentService(db_session, clock=clock)
    await service.book_appointment(patient, _booking(doctor.id, at(MONDAY, 9)))

    second = await service.book_appointment(other_patient, _booking(doctor.id, at(MONDAY, 9, 30)))

    assert second.status == AppointmentStatus.SCHEDULED


@pytest.mark.asyncio
async def test_other_doctor_same_time_is_independent(
    db_session, doctor, patient, other_patient, clock
):
    other = await DoctorService().create_doctor(
        db_session, DoctorCreate(full_name="Dr. Ravi Kumar", specialization="Dermatology")
    )
    service = AppointmentService(db_session, clock=clock)

    await service.book_appointment(patient, _booking(doctor.id, at(MONDAY, 9)))
    booked = await service.book_appointment(other_patient, _booking(other.id, at(MONDAY, 9)))

    assert booked.doctor_id == other.id


@pytest.mark.asyncio
@pytest.mark.parametrize("offset", [timedelta(0), timedelta(hours=-1)])
async def test_past_time_is_rejected(db_session, doctor, patient, clock, offset):
    service = AppointmentService(db_session, clock=clock)

    with pytest.raises(PastTimeException) as exc_info:
        await service.book_appointment(patient, _booking(doctor.id, FIXED_NOW + offset))
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "start",
    [
        at(MONDAY, 8, 30),
        at(MONDAY, 12),
        at(MONDAY, 11, 45),
        at(MONDAY, 16, 45),
        at(MONDAY - timedelta(days=1), 10),
    ],
)
async def test_outside_working_hours_is_rejected(db_session, doctor, patient, clock, start):
    service = AppointmentService(db_session, clock=clock)

    with pytest.raises(OutsideAvailabilityException) as exc_info:
        await service.book_appointment(patient, _booking(doctor.id, start))
    assert exc_info.value.status_code == 422


@pytest.mark.asyncio
async def test_doctor_not_accepting_appointments(db_session, patient, clock):
    closed = await DoctorService().create_doctor(
        db_session, DoctorCreate(full_name="Dr. On Leave", is_accepting_appointments=False)
    )
    service = AppointmentService(db_session, clock=clock)

    with pytest.raises(OutsideAvailabilityException):
        await service.book_appointment(patient, _booking(closed.id, at(MONDAY, 9)))


@pytest.mark.asyncio
async def test_unknown_doctor(db_session, patient, clock):
    service = AppointmentService(db_session, clock=clock)

    with pytest.raises(NotFoundException):
        await service.book_appointment(patient, _booking(uuid4(), at(MONDAY, 9)))


@pytest.mark.asyncio
async def test_cancelled_slot_can_be_booked_again(
    db_session, doctor, patient, other_patient, clock
):
    service = AppointmentService(db_session, clock=clock)
    first = await service.book_appointment(patient, _booking(doctor.id, at(MONDAY, 9)))
    await service.cancel_appointment(first.id, patient, AppointmentCancel(reason="Travelling"))

    second = await service.book_appointment(other_patient, _booking(doctor.id, at(MONDAY, 9)))

    assert second.id != first.id


@pytest.mark.asyncio
async def test_duration_override(db_session, doctor, patient, clock):
    service = AppointmentService(db_session, clock=clock)

    appointment = await service.book_appointment(
        patient, _booking(doctor.id, at(MONDAY, 14), duration_minutes=90)
    )

    assert appointment.duration_minutes == 90
    assert appointment.appointment_end_at == at(MONDAY, 15, 30)


# ----------------------------------------------------------------------------
# Who may book for whom
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_staff_books_on_behalf_of_patient(db_session, doctor, staff, patient, clock):
    service = AppointmentService(db_session, clock=clock)

    appointment = await service.book_appointment(
        staff, _booking(doctor.id, at(MONDAY, 10), patient_id=patient.actor_id)
    )

    assert appointment.patient_id == patient.actor_id
    assert appointment.created_by == staff.actor_id


@pytest.mark.asyncio
async def test_staff_must_name_the_patient(db_session, doctor, staff, clock):
    service = AppointmentService(db_session, clock=clock)

    with pytest.raises(BadRequestException):
        await service.book_appointment(staff, _booking(doctor.id, at(MONDAY, 10)))


@pytest.mark.asyncio
async def test_patient_cannot_book_for_someone_else(
    db_session, doctor, patient, other_patient, clock
):
    service = AppointmentService(db_session, clock=clock)

    with pytest.raises(ForbiddenException):
        await service.book_appointment(
            patient, _booking(doctor.id, at(MONDAY, 10), patient_id=other_patient.actor_id)
        )


@pytest.mark.asyncio
async def test_doctor_role_cannot_book(db_session, doctor, doctor_actor, patient, clock):
    service = AppointmentService(db_session, clock=clock)

    with pytest.raises(ForbiddenException):
        await service.book_appointment(
            doctor_actor, _booking(doctor.id, at(MONDAY, 10), patient_id=patient.actor_id)
        )


# ----------------------------------------------------------------------------
# Concurrency
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_concurrent_bookings_only_one_wins(
    session_factory, db_session, doctor, patient, other_patient, clock
):
    """Two simultaneous requests for the same slot: one booking, one SlotUnavailable."""
    locks = ProviderLocks()

    async with session_factory() as first_session, session_factory() as second_session:
        first = AppointmentService(first_session, clock=clock, locks=locks)
        second = AppointmentService(second_session, clock=clock, locks=locks)

        results = await asyncio.gather(
            first.book_appointment(patient, _booking(doctor.id, at(MONDAY, 9))),
            second.book_appointment(other_patient, _booking(doctor.id, at(MONDAY, 9))),
            return_exceptions=True,
        )

    failures = [r for r in results if isinstance(r, Exception)]
    successes = [r for r in results if not isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], SlotUnavailableException)
    assert await _active_count(db_session, doctor.id) == 1


@pytest.mark.asyncio
async def test_unique_index_catches_missed_conflict(
    db_session, doctor, patient, other_patient, clock, monkeypatch
):
    """A booking that passes the conflict check still loses to the slot index."""

    async def never_occupied(self, *args, **kwargs):
        return False

    monkeypatch.setattr(ConflictDetector, "is_occupied", never_occupied)
    service = AppointmentService(db_session, clock=clock)
    await service.book_appointment(patient, _booking(doctor.id, at(MONDAY, 9)))

    with pytest.raises(SlotUnavailableException):
        await service.book_appointment(other_patient, _booking(doctor.id, at(MONDAY, 9)))

    assert await _active_count(db_session, doctor.id) == 1
