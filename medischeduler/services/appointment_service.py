"""Appointment service: booking, lifecycle transitions, cancellation and rescheduling."""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import structlog
from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from medischeduler.config import settings
from medischeduler.core.exceptions import (
    BadRequestException,
    ConflictException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    OutsideAvailabilityException,
    PastTimeException,
    SlotUnavailableException,
)
from medischeduler.core.identifiers import generate_appointment_number
from medischeduler.core.permissions import ActorContext, Capability, Role
from medischeduler.models.appointments import (
    ACTIVE_SLOT_INDEX,
    appointment_status_history,
    appointments,
)
from medischeduler.models.doctors import doctors
from medischeduler.scheduling.conflicts import ConflictDetector
from medischeduler.scheduling.locks import ProviderLocks, provider_locks
from medischeduler.scheduling.policy import CancellationPolicy
from medischeduler.scheduling.slots import covers
from medischeduler.scheduling.state_machine import (
    INITIAL_STATUS,
    AppointmentStateMachine,
    TransitionResult,
)
from medischeduler.schemas.appointments import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentStatusUpdate,
    RefundStatus,
)
from medischeduler.schemas.doctors import DoctorResponse
from medischeduler.services.availability_service import utc_now
from medischeduler.services.doctor_service import DoctorService

logger = structlog.get_logger(__name__)

# Capability needed to move an appointment into each status
TRANSITION_CAPABILITIES: dict[AppointmentStatus, Capability] = {
    AppointmentStatus.CONFIRMED: Capability.CONFIRM_APPOINTMENT,
    AppointmentStatus.CHECKED_IN: Capability.CHECK_IN,
    AppointmentStatus.IN_PROGRESS: Capability.MANAGE_VISIT,
    AppointmentStatus.COMPLETED: Capability.MANAGE_VISIT,
    AppointmentStatus.NO_SHOW: Capability.MANAGE_VISIT,
}


def _is_slot_violation(exc: IntegrityError) -> bool:
    """Check whether an insert/update tripped the active-slot unique index."""
    message = str(exc.orig) if exc.orig is not None else str(exc)
    # PostgreSQL names the index, SQLite names the indexed columns
    return ACTIVE_SLOT_INDEX in message or "appointments.appointment_at" in message


class AppointmentService:
    """Service for booking appointments and driving their lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        doctor_service: DoctorService | None = None,
        policy: CancellationPolicy | None = None,
        state_machine: AppointmentStateMachine | None = None,
        locks: ProviderLocks | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize service with database session and scheduling collaborators."""
        self.db = db
        self.doctors = doctor_service or DoctorService()
        self.policy = policy or CancellationPolicy.from_settings(settings)
        self.state_machine = state_machine or AppointmentStateMachine()
        self.locks = locks or provider_locks
        self.clock = clock
        self.conflicts = ConflictDetector(db)
        self.tz = settings.clinic_timezone

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve_patient(actor: ActorContext, requested: UUID | None) -> UUID:
        if requested is None:
            if actor.role != Role.PATIENT:
                raise BadRequestException(
                    "patient_id is required when booking on behalf of a patient"
                )
            return actor.actor_id
        if requested != actor.actor_id:
            actor.require(Capability.BOOK_FOR_OTHERS)
        return requested

    @staticmethod
    def _authorize(row: dict[str, Any], actor: ActorContext) -> None:
        """Check the actor may see and act on this appointment."""
        actor.require(Capability.VIEW_APPOINTMENT)
        if actor.can(Capability.VIEW_ALL_APPOINTMENTS):
            return
        if actor.role == Role.PATIENT and row["patient_id"] == actor.actor_id:
            return
        if actor.role == Role.DOCTOR and row["doctor_user_id"] == actor.actor_id:
            return
        raise ForbiddenException("Access denied to this appointment")

    async def _ensure_slot_free(
        self,
        doctor: DoctorResponse,
        start: datetime,
        duration_minutes: int,
        exclude_id: UUID | None = None,
    ) -> None:
        """Availability and conflict checks shared by booking and rescheduling."""
        if not doctor.is_accepting_appointments:
            raise OutsideAvailabilityException("Doctor is not accepting appointments")

        if not covers(
            doctor.weekly_schedule,
            start,
            duration_minutes,
            exceptions=doctor.unavailable_dates,
            tz=self.tz,
        ):
            raise OutsideAvailabilityException()

        if await self.conflicts.is_occupied(doctor.id, start, duration_minutes, exclude_id):
            logger.info(
                "slot_conflict_detected",
                doctor_id=str(doctor.id),
                appointment_at=start.isoformat(),
                duration_minutes=duration_minutes,
            )
            raise SlotUnavailableException()

    async def _fetch(self, appointment_id: UUID, for_update: bool = False) -> dict[str, Any]:
        stmt = (
            select(appointments, doctors.c.user_id.label("doctor_user_id"))
            .join(doctors, doctors.c.id == appointments.c.doctor_id)
            .where(appointments.c.id == appointment_id)
        )
        if for_update:
            stmt = stmt.with_for_update(of=appointments)

        result = await self.db.execute(stmt)
        row = result.mappings().first()

        if not row:
            raise NotFoundException("Appointment not found")

        return dict(row)

    async def _history(self, appointment_id: UUID) -> list[dict[str, Any]]:
        stmt = (
            select(appointment_status_history)
            .where(appointment_status_history.c.appointment_id == appointment_id)
            .order_by(appointment_status_history.c.id)
        )
        result = await self.db.execute(stmt)
        return [dict(row) for row in result.mappings().all()]

    async def _append_history(self, appointment_id: UUID, entries: list[dict[str, Any]]) -> None:
        await self.db.execute(
            insert(appointment_status_history),
            [{"appointment_id": appointment_id, **entry} for entry in entries],
        )

    async def _response(self, appointment_id: UUID) -> AppointmentResponse:
        row = await self._fetch(appointment_id)
        return AppointmentResponse.model_validate(
            {**row, "status_history": await self._history(appointment_id)}
        )

    async def _apply(
        self,
        row: dict[str, Any],
        result: TransitionResult,
        extra_values: dict[str, Any] | None = None,
    ) -> None:
        """
        Persist a transition if the status is still the one it was computed from.

        The appointment update and its history rows commit together.

        Raises:
            ConflictException: If another request changed the status first
        """
        values = {**result.values, **(extra_values or {})}
        stmt = (
            update(appointments)
            .where(
                appointments.c.id == row["id"],
                appointments.c.status == row["status"],
            )
            .values(**values)
        )
        updated = await self.db.execute(stmt)
        if updated.rowcount != 1:
            await self.db.rollback()
            raise ConflictException("Appointment was modified concurrently, please retry")

        await self._append_history(row["id"], result.history)
        await self.db.commit()

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    async def book_appointment(
        self,
        actor: ActorContext,
        data: AppointmentCreate,
    ) -> AppointmentResponse:
        """
        Book an appointment with a doctor.

        The check-then-insert runs under the doctor's lock, and the active-slot
        unique index rejects any booking that slips past it.

        Args:
            actor: Authenticated caller
            data: Booking request

        Returns:
            Created appointment in scheduled status

        Raises:
            PastTimeException: If the start is not in the future
            NotFoundException: If the doctor does not exist
            OutsideAvailabilityException: If the doctor does not work then
            SlotUnavailableException: If the interval is already taken
        """
        actor.require(Capability.BOOK_APPOINTMENT)
        patient_id = self._resolve_patient(actor, data.patient_id)

        now = self.clock()
        if data.appointment_at <= now:
            raise PastTimeException()

        appointment_id = uuid4()
        async with self.locks.hold(data.doctor_id):
            doctor = await self.doctors.get_doctor_for_booking(self.db, data.doctor_id)
            duration = data.duration_minutes or doctor.consultation_duration_minutes
            await self._ensure_slot_free(doctor, data.appointment_at, duration)

            values = {
                "id": appointment_id,
                "appointment_number": generate_appointment_number(now),
                "doctor_id": doctor.id,
                "patient_id": patient_id,
                "appointment_at": data.appointment_at,
                "appointment_end_at": data.appointment_at + timedelta(minutes=duration),
                "duration_minutes": duration,
                "appointment_type": data.appointment_type.value,
                "reason": data.reason,
                "notes": data.notes,
                "consultation_fee": doctor.consultation_fee,
                "status": INITIAL_STATUS.value,
                "reschedule_count": 0,
                "created_by": actor.actor_id,
                "last_modified_by": actor.actor_id,
                "created_at": now,
                "updated_at": now,
            }

            try:
                await self.db.execute(insert(appointments).values(**values))
                await self._append_history(
                    appointment_id,
                    [self.state_machine.initial_entry(now, actor.actor_id)],
                )
                await self.db.commit()
            except IntegrityError as e:
                await self.db.rollback()
                if _is_slot_violation(e):
                    logger.warning(
                        "slot_reservation_race_lost",
                        doctor_id=str(doctor.id),
                        appointment_at=data.appointment_at.isoformat(),
                    )
                    raise SlotUnavailableException() from e
                raise

        logger.info(
            "appointment_booked",
            appointment_id=str(appointment_id),
            appointment_number=values["appointment_number"],
            doctor_id=str(doctor.id),
            patient_id=str(patient_id),
            appointment_at=data.appointment_at.isoformat(),
        )
        return await self._response(appointment_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_appointment(
        self,
        appointment_id: UUID,
        actor: ActorContext,
    ) -> AppointmentResponse:
        """
        Get appointment by ID, including its status history.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If actor doesn't have access
        """
        row = await self._fetch(appointment_id)
        self._authorize(row, actor)
        return AppointmentResponse.model_validate(
            {**row, "status_history": await self._history(appointment_id)}
        )

    async def list_appointments(
        self,
        actor: ActorContext,
        filters: AppointmentFilters,
    ) -> AppointmentListResponse:
        """
        List appointments visible to the actor with filtering and pagination.

        Patients see their own appointments, doctors those booked with them,
        staff and admins all of them.
        """
        actor.require(Capability.VIEW_APPOINTMENT)

        conditions = []
        if not actor.can(Capability.VIEW_ALL_APPOINTMENTS):
            if actor.role == Role.DOCTOR:
                own_profile = select(doctors.c.id).where(doctors.c.user_id == actor.actor_id)
                conditions.append(appointments.c.doctor_id.in_(own_profile))
            else:
                conditions.append(appointments.c.patient_id == actor.actor_id)

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.doctor_id:
            conditions.append(appointments.c.doctor_id == filters.doctor_id)

        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)

        if filters.from_date:
            conditions.append(appointments.c.appointment_at >= filters.from_date)

        if filters.to_date:
            conditions.append(appointments.c.appointment_at <= filters.to_date)

        where_clause = and_(*conditions) if conditions else None

        # Count total
        count_stmt = select(func.count()).select_from(appointments)
        if where_clause is not None:
            count_stmt = count_stmt.where(where_clause)
        total_result = await self.db.execute(count_stmt)
        total = total_result.scalar() or 0

        # Get paginated results
        offset = (filters.page - 1) * filters.page_size

        stmt = select(appointments)
        if where_clause is not None:
            stmt = stmt.where(where_clause)
        stmt = (
            stmt.order_by(appointments.c.appointment_at.desc())
            .limit(filters.page_size)
            .offset(offset)
        )

        result = await self.db.execute(stmt)
        items = [AppointmentResponse.model_validate(dict(row)) for row in result.mappings().all()]

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=items,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def transition_status(
        self,
        appointment_id: UUID,
        actor: ActorContext,
        data: AppointmentStatusUpdate,
    ) -> AppointmentResponse:
        """
        Move an appointment to a new status.

        Cancellation goes through the cancellation policy; moving an
        appointment in time has its own operation.

        Raises:
            InvalidTransitionException: If the status change is not allowed
            ForbiddenException: If the actor may not perform this change
        """
        if data.status == AppointmentStatus.CANCELLED:
            return await self.cancel_appointment(
                appointment_id,
                actor,
                AppointmentCancel(reason=data.reason or "No reason provided", notes=data.notes),
            )

        row = await self._fetch(appointment_id, for_update=True)
        self._authorize(row, actor)

        if data.status == AppointmentStatus.RESCHEDULED:
            raise InvalidTransitionException(
                row["status"],
                data.status.value,
                "Use the reschedule operation to move an appointment to a new time",
            )

        capability = TRANSITION_CAPABILITIES.get(data.status)
        if capability is not None:
            actor.require(capability)

        now = self.clock()
        result = self.state_machine.transition(
            row,
            data.status,
            actor_id=actor.actor_id,
            at=now,
            reason=data.reason,
            notes=data.notes,
        )
        await self._apply(row, result)

        logger.info(
            "appointment_status_changed",
            appointment_id=str(appointment_id),
            old_status=row["status"],
            new_status=result.status.value,
            actor_id=str(actor.actor_id),
        )
        return await self._response(appointment_id)

    async def cancel_appointment(
        self,
        appointment_id: UUID,
        actor: ActorContext,
        data: AppointmentCancel,
    ) -> AppointmentResponse:
        """
        Cancel an appointment.

        Raises:
            NotCancellableException: If the policy refuses the cancellation
        """
        row = await self._fetch(appointment_id, for_update=True)
        self._authorize(row, actor)
        actor.require(Capability.CANCEL_APPOINTMENT)

        now = self.clock()
        self.policy.ensure_cancellable(row, now)

        result = self.state_machine.transition(
            row,
            AppointmentStatus.CANCELLED,
            actor_id=actor.actor_id,
            at=now,
            reason=data.reason,
            notes=data.notes,
        )
        refund = (
            RefundStatus.PENDING if row["consultation_fee"] > 0 else RefundStatus.NOT_APPLICABLE
        )
        await self._apply(
            row,
            result,
            {
                "cancelled_by_role": actor.role.value,
                "cancellation_notes": data.notes,
                "refund_status": refund.value,
            },
        )

        logger.info(
            "appointment_cancelled",
            appointment_id=str(appointment_id),
            cancelled_by=str(actor.actor_id),
            role=actor.role.value,
            reason=data.reason,
        )
        return await self._response(appointment_id)

    async def reschedule_appointment(
        self,
        appointment_id: UUID,
        actor: ActorContext,
        data: AppointmentReschedule,
    ) -> AppointmentResponse:
        """
        Move an appointment to a new start time.

        The new time must pass the same checks as a new booking, ignoring the
        appointment itself.

        Raises:
            RescheduleLimitExceededException: If the reschedule limit is reached
            NotReschedulableException: If the policy refuses the change
            PastTimeException, OutsideAvailabilityException, SlotUnavailableException:
                If the new time cannot be booked
        """
        current = await self._fetch(appointment_id)
        self._authorize(current, actor)
        actor.require(Capability.RESCHEDULE_APPOINTMENT)

        async with self.locks.hold(current["doctor_id"]):
            doctor = await self.doctors.get_doctor_for_booking(self.db, current["doctor_id"])
            row = await self._fetch(appointment_id, for_update=True)

            now = self.clock()
            self.policy.ensure_reschedulable(row, now)

            new_start = data.appointment_at
            if new_start <= now:
                raise PastTimeException()
            await self._ensure_slot_free(
                doctor, new_start, row["duration_minutes"], exclude_id=row["id"]
            )

            result = self.state_machine.reschedule(
                row,
                new_start,
                actor_id=actor.actor_id,
                at=now,
                reason=data.reason,
            )
            try:
                await self._apply(row, result)
            except IntegrityError as e:
                await self.db.rollback()
                if _is_slot_violation(e):
                    raise SlotUnavailableException() from e
                raise

        logger.info(
            "appointment_rescheduled",
            appointment_id=str(appointment_id),
            original_appointment_at=row["appointment_at"].isoformat(),
            appointment_at=new_start.isoformat(),
            reschedule_count=result.values["reschedule_count"],
        )
        return await self._response(appointment_id)
