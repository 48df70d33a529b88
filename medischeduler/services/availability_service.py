"""Availability service: bookable slots for a doctor."""

from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from medischeduler.config import settings
from medischeduler.core.exceptions import BadRequestException
from medischeduler.scheduling.conflicts import ConflictDetector, mark_occupied
from medischeduler.scheduling.slots import availability_range, generate_slots
from medischeduler.schemas.slots import AvailabilityResponse, SlotListResponse
from medischeduler.services.doctor_service import DoctorService


def utc_now() -> datetime:
    """Current instant in UTC."""
    return datetime.now(UTC)


class AvailabilityService:
    """Combine slot generation with existing bookings."""

    def __init__(
        self,
        db: AsyncSession,
        doctor_service: DoctorService | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize service with database session."""
        self.db = db
        self.doctors = doctor_service or DoctorService()
        self.clock = clock
        self.tz = settings.clinic_timezone

    def _day_bounds(self, first: date, last: date) -> tuple[datetime, datetime]:
        start = datetime.combine(first, time.min, tzinfo=self.tz)
        end = datetime.combine(last + timedelta(days=1), time.min, tzinfo=self.tz)
        return start, end

    async def get_available_slots(
        self,
        doctor_id: UUID,
        target_date: date,
        slot_minutes: int | None = None,
    ) -> SlotListResponse:
        """
        Get slots for one doctor on one date.

        Args:
            doctor_id: Doctor ID
            target_date: Date in the clinic timezone
            slot_minutes: Slot length, defaults to the doctor's consultation duration

        Returns:
            Ordered slots with occupied ones flagged unavailable

        Raises:
            NotFoundException: If doctor not found
        """
        doctor = await self.doctors.get_doctor(self.db, doctor_id)
        minutes = slot_minutes or doctor.consultation_duration_minutes

        slots = []
        if doctor.is_accepting_appointments:
            slots = generate_slots(
                doctor.weekly_schedule,
                target_date,
                minutes,
                now=self.clock(),
                exceptions=doctor.unavailable_dates,
                tz=self.tz,
            )
        if slots:
            window_start, window_end = self._day_bounds(target_date, target_date)
            busy = await ConflictDetector(self.db).busy_intervals(
                doctor_id, window_start, window_end
            )
            mark_occupied(slots, busy)

        return SlotListResponse(
            doctor_id=doctor_id,
            date=target_date,
            slot_minutes=minutes,
            slots=slots,
        )

    async def get_availability(
        self,
        doctor_id: UUID,
        start_date: date | None = None,
        days: int = 7,
        slot_minutes: int | None = None,
    ) -> AvailabilityResponse:
        """Get slots for a range of consecutive dates."""
        if days < 1 or days > settings.max_availability_days:
            raise BadRequestException(
                f"days must be between 1 and {settings.max_availability_days}"
            )

        doctor = await self.doctors.get_doctor(self.db, doctor_id)
        now = self.clock()
        first = start_date or now.astimezone(self.tz).date()
        minutes = slot_minutes or doctor.consultation_duration_minutes

        availability = []
        if doctor.is_accepting_appointments:
            availability = availability_range(
                doctor.weekly_schedule,
                first,
                days,
                minutes,
                now=now,
                exceptions=doctor.unavailable_dates,
                tz=self.tz,
            )
        if availability:
            window_start, window_end = self._day_bounds(first, first + timedelta(days=days - 1))
            busy = await ConflictDetector(self.db).busy_intervals(
                doctor_id, window_start, window_end
            )
            for day in availability:
                mark_occupied(day.slots, busy)

        return AvailabilityResponse(
            doctor_id=doctor_id,
            start_date=first,
            days=days,
            slot_minutes=minutes,
            availability=availability,
        )
