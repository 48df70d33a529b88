"""Doctor service for provider profiles and availability."""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

import structlog
from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from medischeduler.core.exceptions import ForbiddenException, NotFoundException
from medischeduler.core.permissions import ActorContext, Capability
from medischeduler.core.redis_client import CacheManager
from medischeduler.models.doctors import doctor_unavailable_dates, doctors
from medischeduler.schemas.doctors import (
    DoctorCreate,
    DoctorResponse,
    DoctorScheduleUpdate,
    UnavailableDateCreate,
    UnavailableDateResponse,
)

logger = structlog.get_logger(__name__)


class DoctorService:
    """Service for doctor operations."""

    # Cache TTL in seconds
    DOCTOR_CACHE_TTL = 900  # 15 minutes for individual doctors

    def __init__(self, cache_manager: CacheManager | None = None):
        """Initialize service with optional cache manager."""
        self.cache = cache_manager

    @staticmethod
    def _get_doctor_cache_key(doctor_id: UUID) -> str:
        """Generate cache key for doctor."""
        return f"doctor:{doctor_id}"

    def _invalidate(self, doctor_id: UUID) -> None:
        if self.cache:
            self.cache.delete(self._get_doctor_cache_key(doctor_id))

    @staticmethod
    def ensure_can_manage(doctor: DoctorResponse, actor: ActorContext) -> None:
        """
        Check that the actor may change this doctor's schedule.

        Doctors manage their own schedule; provider managers manage any.
        """
        if actor.can(Capability.MANAGE_PROVIDERS):
            return
        actor.require(Capability.MANAGE_SCHEDULE)
        if doctor.user_id != actor.actor_id:
            raise ForbiddenException("Access denied to this doctor's schedule")

    async def create_doctor(self, db: AsyncSession, doctor_data: DoctorCreate) -> DoctorResponse:
        """Create a new doctor profile."""
        now = datetime.now(UTC)
        query = (
            insert(doctors)
            .values(
                id=uuid4(),
                user_id=doctor_data.user_id,
                full_name=doctor_data.full_name,
                specialization=doctor_data.specialization,
                consultation_fee=doctor_data.consultation_fee,
                consultation_duration_minutes=doctor_data.consultation_duration_minutes,
                weekly_schedule=doctor_data.weekly_schedule.model_dump(mode="json"),
                is_accepting_appointments=doctor_data.is_accepting_appointments,
                created_at=now,
                updated_at=now,
            )
            .returning(doctors)
        )

        result = await db.execute(query)
        doctor = result.mappings().first()

        if not doctor:
            raise ValueError("Failed to create doctor")

        await db.commit()

        logger.info("doctor_created", doctor_id=str(doctor["id"]))
        return DoctorResponse.model_validate({**doctor, "unavailable_dates": []})

    async def _load_unavailable_dates(
        self, db: AsyncSession, doctor_id: UUID
    ) -> list[dict[str, Any]]:
        query = (
            select(doctor_unavailable_dates)
            .where(doctor_unavailable_dates.c.doctor_id == doctor_id)
            .order_by(doctor_unavailable_dates.c.unavailable_date)
        )
        result = await db.execute(query)
        return [dict(row) for row in result.mappings().all()]

    async def get_doctor_by_id(self, db: AsyncSession, doctor_id: UUID) -> DoctorResponse | None:
        """Get doctor with unavailable dates, with caching."""
        # Try cache first
        if self.cache:
            cached = self.cache.get_json(self._get_doctor_cache_key(doctor_id))
            if cached:
                return DoctorResponse.model_validate(cached)

        # Query database
        query = select(doctors).where(doctors.c.id == doctor_id)
        result = await db.execute(query)
        doctor = result.mappings().first()

        if not doctor:
            return None

        response = DoctorResponse.model_validate(
            {
                **doctor,
                "unavailable_dates": await self._load_unavailable_dates(db, doctor_id),
            }
        )

        # Cache result
        if self.cache:
            self.cache.set_json(
                self._get_doctor_cache_key(doctor_id),
                response.model_dump(mode="json"),
                ttl=self.DOCTOR_CACHE_TTL,
            )

        return response

    async def get_doctor(self, db: AsyncSession, doctor_id: UUID) -> DoctorResponse:
        """Get doctor or raise NotFoundException."""
        doctor = await self.get_doctor_by_id(db, doctor_id)
        if doctor is None:
            raise NotFoundException("Doctor not found")
        return doctor

    async def get_doctor_for_booking(self, db: AsyncSession, doctor_id: UUID) -> DoctorResponse:
        """
        Load a doctor bypassing the cache and lock its row for the transaction.

        The row lock serializes bookings for one doctor across processes on
        PostgreSQL; other backends ignore it.
        """
        query = select(doctors).where(doctors.c.id == doctor_id).with_for_update()
        result = await db.execute(query)
        doctor = result.mappings().first()

        if not doctor:
            raise NotFoundException("Doctor not found")

        return DoctorResponse.model_validate(
            {
                **doctor,
                "unavailable_dates": await self._load_unavailable_dates(db, doctor_id),
            }
        )

    async def update_schedule(
        self,
        db: AsyncSession,
        doctor_id: UUID,
        schedule_data: DoctorScheduleUpdate,
        actor: ActorContext,
    ) -> DoctorResponse:
        """Update weekly schedule and consultation settings."""
        doctor = await self.get_doctor(db, doctor_id)
        self.ensure_can_manage(doctor, actor)

        update_values: dict[str, Any] = {}
        for key, value in schedule_data.model_dump(exclude_unset=True).items():
            if value is not None:
                update_values[key] = value
        if schedule_data.weekly_schedule is not None:
            update_values["weekly_schedule"] = schedule_data.weekly_schedule.model_dump(mode="json")

        if update_values:
            update_values["updated_at"] = datetime.now(UTC)
            await db.execute(
                update(doctors).where(doctors.c.id == doctor_id).values(**update_values)
            )
            await db.commit()
            self._invalidate(doctor_id)
            logger.info(
                "doctor_schedule_updated",
                doctor_id=str(doctor_id),
                fields=sorted(update_values),
            )

        return await self.get_doctor(db, doctor_id)

    async def add_unavailable_date(
        self,
        db: AsyncSession,
        doctor_id: UUID,
        data: UnavailableDateCreate,
        actor: ActorContext,
    ) -> UnavailableDateResponse:
        """Block a full or partial day for a doctor."""
        doctor = await self.get_doctor(db, doctor_id)
        self.ensure_can_manage(doctor, actor)

        values = data.model_dump()
        if data.is_full_day:
            values["start_time"] = None
            values["end_time"] = None

        query = (
            insert(doctor_unavailable_dates)
            .values(
                id=uuid4(),
                doctor_id=doctor_id,
                created_at=datetime.now(UTC),
                **values,
            )
            .returning(doctor_unavailable_dates)
        )
        result = await db.execute(query)
        row = result.mappings().first()
        await db.commit()
        self._invalidate(doctor_id)

        logger.info(
            "doctor_unavailable_date_added",
            doctor_id=str(doctor_id),
            date=data.unavailable_date.isoformat(),
            full_day=data.is_full_day,
        )
        return UnavailableDateResponse.model_validate(dict(row))

    async def remove_unavailable_date(
        self,
        db: AsyncSession,
        doctor_id: UUID,
        exception_id: UUID,
        actor: ActorContext,
    ) -> None:
        """Remove a date-specific exception."""
        doctor = await self.get_doctor(db, doctor_id)
        self.ensure_can_manage(doctor, actor)

        result = await db.execute(
            delete(doctor_unavailable_dates).where(
                and_(
                    doctor_unavailable_dates.c.id == exception_id,
                    doctor_unavailable_dates.c.doctor_id == doctor_id,
                )
            )
        )
        if result.rowcount == 0:
            await db.rollback()
            raise NotFoundException("Unavailable date not found")

        await db.commit()
        self._invalidate(doctor_id)
        logger.info(
            "doctor_unavailable_date_removed",
            doctor_id=str(doctor_id),
            exception_id=str(exception_id),
        )
