"""Tests for status transitions, cancellation and rescheduling."""

from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy import update

from conftest import MONDAY, at
from medischeduler.core.exceptions import (
    ConflictException,
    ForbiddenException,
    InvalidTransitionException,
    NotCancellableException,
    NotFoundException,
    NotReschedulableException,
    OutsideAvailabilityException,
    PastTimeException,
    RescheduleLimitExceededException,
    SlotUnavailableException,
)
from medischeduler.models.appointments import appointments
from medischeduler.scheduling.policy import CancellationPolicy
from medischeduler.scheduling.state_machine import AppointmentStateMachine
from medischeduler.schemas.appointments import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentReschedule,
    AppointmentStatus,
    AppointmentStatusUpdate,
    RefundStatus,
)
from medischeduler.services.appointment_service import AppointmentService

S = AppointmentStatus
TUESDAY = MONDAY + timedelta(days=1)


@pytest.fixture
def service(db_session, clock) -> AppointmentService:
    return AppointmentService(db_session, clock=clock)


@pytest_asyncio.fixture
async def appointment(service, doctor, patient):
    """Appointment on Monday 2024-06-10 at 09:00 booked by the patient."""
    return await service.book_appointment(
        patient,
        AppointmentCreate(doctor_id=doctor.id, appointment_at=at(MONDAY, 9), reason="Checkup"),
    )


def _status(status: AppointmentStatus, reason: str | None = None) -> AppointmentStatusUpdate:
    return AppointmentStatusUpdate(status=status, reason=reason)


def _move(start) -> AppointmentReschedule:
    return AppointmentReschedule(appointment_at=start, reason="Work meeting")


# ----------------------------------------------------------------------------
# Transitions
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_full_visit_walk(service, clock, appointment, doctor_actor, staff):
    await service.transition_status(appointment.id, doctor_actor, _status(S.CONFIRMED))

    clock.now = at(MONDAY, 9, 7)
    checked_in = await service.transition_status(
        appointment.id, staff, _status(S.CHECKED_IN)
    )
    assert checked_in.check_in_at == at(MONDAY, 9, 7)
    assert checked_in.waiting_time_minutes == 7

    clock.now = at(MONDAY, 9, 10)
    await service.transition_status(appointment.id, doctor_actor, _status(S.IN_PROGRESS))

    clock.now = at(MONDAY, 9, 40)
    completed = await service.transition_status(
        appointment.id, doctor_actor, _status(S.COMPLETED)
    )

    assert completed.status == AppointmentStatus.COMPLETED
    assert completed.actual_start_at == at(MONDAY, 9, 10)
    assert completed.actual_end_at == at(MONDAY, 9, 40)
    assert completed.actual_duration_minutes == 30
    statuses = [entry.status.value for entry in completed.status_history]
    assert statuses == ["scheduled", "confirmed", "checked_in", "in_progress", "completed"]
    assert AppointmentStateMachine().is_valid_walk(statuses)


@pytest.mark.asyncio
async def test_illegal_transition(service, appointment, doctor_actor):
    with pytest.raises(InvalidTransitionException) as exc_info:
        await service.transition_status(
            appointment.id, doctor_actor, _status(S.COMPLETED)
        )

    assert exc_info.value.current == "scheduled"
    assert exc_info.value.requested == "completed"


@pytest.mark.asyncio
async def test_terminal_status_has_no_successor(service, clock, appointment, doctor_actor):
    await service.transition_status(appointment.id, doctor_actor, _status(S.CONFIRMED))
    clock.now = at(MONDAY, 9, 30)
    await service.transition_status(appointment.id, doctor_actor, _status(S.NO_SHOW))

    with pytest.raises(InvalidTransitionException):
        await service.transition_status(
            appointment.id, doctor_actor, _status(S.CHECKED_IN)
        )


@pytest.mark.asyncio
async def test_rescheduled_status_requires_reschedule_operation(service, appointment, staff):
    with pytest.raises(InvalidTransitionException):
        await service.transition_status(appointment.id, staff, _status(S.RESCHEDULED))


@pytest.mark.asyncio
async def test_patient_cannot_confirm(service, appointment, patient):
    with pytest.raises(ForbiddenException):
        await service.transition_status(appointment.id, patient, _status(S.CONFIRMED))


@pytest.mark.asyncio
async def test_status_cancel_applies_policy(service, appointment, patient):
    cancelled = await service.transition_status(
        appointment.id, patient, _status(S.CANCELLED, reason="Feeling better")
    )

    assert cancelled.status == AppointmentStatus.CANCELLED
    assert cancelled.cancellation_reason == "Feeling better"


@pytest.mark.asyncio
async def test_stale_status_is_a_conflict(service, db_session, clock, appointment, doctor_actor):
    """A transition computed from a status another request already changed is refused."""
    row = await service._fetch(appointment.id)
    result = AppointmentStateMachine().transition(
        row, AppointmentStatus.CONFIRMED, actor_id=doctor_actor.actor_id, at=clock()
    )
    await db_session.execute(
        update(appointments)
        .where(appointments.c.id == appointment.id)
        .values(status=AppointmentStatus.CANCELLED.value)
    )
    await db_session.commit()

    with pytest.raises(ConflictException):
        await service._apply(row, result)


# ----------------------------------------------------------------------------
# Cancellation
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cancel_25_hours_before(service, clock, appointment, patient):
    clock.now = at(MONDAY - timedelta(days=1), 8)

    cancelled = await service.cancel_appointment(
        appointment.id, patient, AppointmentCancel(reason="Travelling", notes="Will rebook")
    )

    assert cancelled.status == AppointmentStatus.CANCELLED
    assert cancelled.cancelled_at == at(MONDAY - timedelta(days=1), 8)
    assert cancelled.cancelled_by == patient.actor_id
    assert cancelled.cancelled_by_role == "patient"
    assert cancelled.cancellation_notes == "Will rebook"
    assert cancelled.refund_status == RefundStatus.PENDING
    assert [e.status.value for e in cancelled.status_history] == ["scheduled", "cancelled"]


@pytest.mark.asyncio
async def test_cancel_23_hours_before_is_refused(service, clock, appointment, patient):
    clock.now = at(MONDAY - timedelta(days=1), 10)

    with pytest.raises(NotCancellableException):
        await service.cancel_appointment(appointment.id, patient, AppointmentCancel(reason="Late"))

    current = await service.get_appointment(appointment.id, patient)
    assert current.status == AppointmentStatus.SCHEDULED


@pytest.mark.asyncio
async def test_cancel_completed_is_refused(service, clock, appointment, doctor_actor, staff):
    for status in (
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CHECKED_IN,
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.COMPLETED,
    ):
        await service.transition_status(appointment.id, doctor_actor, _status(status))

    # Even with plenty of notice a completed visit stays completed
    clock.now = at(MONDAY - timedelta(days=5), 9)
    with pytest.raises(NotCancellableException):
        await service.cancel_appointment(appointment.id, staff, AppointmentCancel(reason="Mistake"))


@pytest.mark.asyncio
async def test_other_patient_cannot_cancel(service, appointment, other_patient):
    with pytest.raises(ForbiddenException):
        await service.cancel_appointment(
            appointment.id, other_patient, AppointmentCancel(reason="Not mine")
        )


@pytest.mark.asyncio
async def test_cancel_unknown_appointment(service, patient):
    from uuid import uuid4

    with pytest.raises(NotFoundException):
        await service.cancel_appointment(uuid4(), patient, AppointmentCancel(reason="Gone"))


# ----------------------------------------------------------------------------
# Rescheduling
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_reschedule(service, appointment, patient):
    moved = await service.reschedule_appointment(appointment.id, patient, _move(at(TUESDAY, 14)))

    assert moved.status == AppointmentStatus.SCHEDULED
    assert moved.appointment_at == at(TUESDAY, 14)
    assert moved.appointment_end_at == at(TUESDAY, 14, 30)
    assert moved.original_appointment_at == at(MONDAY, 9)
    assert moved.reschedule_count == 1
    assert moved.reschedule_reason == "Work meeting"
    assert [e.status.value for e in moved.status_history] == [
        "scheduled",
        "rescheduled",
        "scheduled",
    ]


@pytest.mark.asyncio
async def test_reschedule_frees_the_old_slot(service, doctor, appointment, patient, other_patient):
    await service.reschedule_appointment(appointment.id, patient, _move(at(TUESDAY, 14)))

    rebooked = await service.book_appointment(
        other_patient,
        AppointmentCreate(doctor_id=doctor.id, appointment_at=at(MONDAY, 9), reason="Fever"),
    )
    assert rebooked.appointment_at == at(MONDAY, 9)


@pytest.mark.asyncio
async def test_reschedule_may_overlap_its_own_time(service, appointment, patient):
    moved = await service.reschedule_appointment(appointment.id, patient, _move(at(MONDAY, 9, 15)))
    assert moved.appointment_at == at(MONDAY, 9, 15)


@pytest.mark.asyncio
async def test_fourth_reschedule_exceeds_limit(service, appointment, patient):
    for hour in (10, 11, 14):
        moved = await service.reschedule_appointment(
            appointment.id, patient, _move(at(TUESDAY, hour))
        )
    assert moved.reschedule_count == 3

    with pytest.raises(RescheduleLimitExceededException):
        await service.reschedule_appointment(appointment.id, patient, _move(at(TUESDAY, 15)))

    current = await service.get_appointment(appointment.id, patient)
    assert current.appointment_at == at(TUESDAY, 14)
    assert AppointmentStateMachine().is_valid_walk([e.status for e in current.status_history])


@pytest.mark.asyncio
async def test_reschedule_limit_follows_policy(db_session, clock, appointment, patient):
    service = AppointmentService(
        db_session, clock=clock, policy=CancellationPolicy(max_reschedules=5)
    )

    for hour in (10, 11, 14, 15):
        moved = await service.reschedule_appointment(
            appointment.id, patient, _move(at(TUESDAY, hour))
        )

    assert moved.reschedule_count == 4
    assert moved.appointment_at == at(TUESDAY, 15)
    assert moved.original_appointment_at == at(TUESDAY, 14)

    await service.reschedule_appointment(appointment.id, patient, _move(at(TUESDAY, 16)))
    with pytest.raises(RescheduleLimitExceededException):
        await service.reschedule_appointment(appointment.id, patient, _move(at(TUESDAY, 9)))


@pytest.mark.asyncio
async def test_reschedule_into_taken_slot(service, doctor, appointment, patient, other_patient):
    await service.book_appointment(
        other_patient,
        AppointmentCreate(doctor_id=doctor.id, appointment_at=at(TUESDAY, 10), reason="Fever"),
    )

    with pytest.raises(SlotUnavailableException):
        await service.reschedule_appointment(appointment.id, patient, _move(at(TUESDAY, 10)))


@pytest.mark.asyncio
async def test_reschedule_validates_new_time(service, appointment, patient, clock):
    with pytest.raises(OutsideAvailabilityException):
        await service.reschedule_appointment(appointment.id, patient, _move(at(TUESDAY, 12, 30)))

    with pytest.raises(PastTimeException):
        await service.reschedule_appointment(
            appointment.id, patient, _move(clock() - timedelta(hours=1))
        )


@pytest.mark.asyncio
async def test_reschedule_inside_notice_window_is_refused(service, clock, appointment, patient):
    clock.now = at(MONDAY, 7)

    with pytest.raises(NotReschedulableException):
        await service.reschedule_appointment(appointment.id, patient, _move(at(TUESDAY, 10)))


# ----------------------------------------------------------------------------
# Visibility
# ----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_get_appointment_visibility(
    service, appointment, patient, other_patient, doctor_actor, staff
):
    assert (await service.get_appointment(appointment.id, patient)).id == appointment.id
    assert (await service.get_appointment(appointment.id, doctor_actor)).id == appointment.id
    assert (await service.get_appointment(appointment.id, staff)).id == appointment.id

    with pytest.raises(ForbiddenException):
        await service.get_appointment(appointment.id, other_patient)


@pytest.mark.asyncio
async def test_list_is_scoped_to_the_actor(
    service, doctor, appointment, patient, other_patient, doctor_actor, staff
):
    await service.book_appointment(
        other_patient,
        AppointmentCreate(doctor_id=doctor.id, appointment_at=at(MONDAY, 10), reason="Fever"),
    )

    assert (await service.list_appointments(patient, AppointmentFilters())).total == 1
    assert (await service.list_appointments(other_patient, AppointmentFilters())).total == 1
    assert (await service.list_appointments(doctor_actor, AppointmentFilters())).total == 2
    assert (await service.list_appointments(staff, AppointmentFilters())).total == 2

    filtered = await service.list_appointments(
        staff, AppointmentFilters(from_date=at(MONDAY, 9, 30))
    )
    assert [item.appointment_at for item in filtered.items] == [at(MONDAY, 10)]
