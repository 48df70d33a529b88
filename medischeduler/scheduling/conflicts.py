"""Detection of appointments that already occupy a doctor's time."""

from collections.abc import Iterable
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from medischeduler.models.appointments import appointments
from medischeduler.scheduling.slots import Interval, intervals_overlap
from medischeduler.scheduling.state_machine import ACTIVE_STATUSES
from medischeduler.schemas.slots import Slot


def mark_occupied(slots: Iterable[Slot], busy: Iterable[Interval]) -> None:
    """Clear ``available`` on every slot intersecting a busy interval."""
    busy = list(busy)
    for slot in slots:
        if any(intervals_overlap((slot.start_time, slot.end_time), b) for b in busy):
            slot.available = False


class ConflictDetector:
    """
    Query active appointments overlapping a candidate interval.

    An appointment occupies time while its status is scheduled, confirmed,
    checked in or in progress. Overlap is half-open interval intersection,
    so an exact start-time match is one case of it.
    """

    def __init__(self, db: AsyncSession):
        """Initialize detector with database session."""
        self.db = db

    def _overlapping(
        self,
        doctor_id: UUID,
        start: datetime,
        end: datetime,
        exclude_id: UUID | None = None,
    ):
        conditions = [
            appointments.c.doctor_id == doctor_id,
            appointments.c.status.in_([s.value for s in ACTIVE_STATUSES]),
            appointments.c.appointment_at < end,
            appointments.c.appointment_end_at > start,
        ]
        if exclude_id is not None:
            conditions.append(appointments.c.id != exclude_id)
        return and_(*conditions)

    async def is_occupied(
        self,
        doctor_id: UUID,
        start: datetime,
        duration_minutes: int,
        exclude_id: UUID | None = None,
    ) -> bool:
        """
        Check whether a candidate interval is taken.

        Args:
            doctor_id: Doctor being booked
            start: Candidate start
            duration_minutes: Candidate length
            exclude_id: Appointment to ignore (the one being rescheduled)

        Returns:
            True if an active appointment intersects the interval
        """
        end = start + timedelta(minutes=duration_minutes)
        stmt = (
            select(appointments.c.id)
            .where(self._overlapping(doctor_id, start, end, exclude_id))
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.first() is not None

    async def busy_intervals(
        self,
        doctor_id: UUID,
        window_start: datetime,
        window_end: datetime,
    ) -> list[Interval]:
        """List intervals of active appointments intersecting a window."""
        stmt = (
            select(appointments.c.appointment_at, appointments.c.appointment_end_at)
            .where(self._overlapping(doctor_id, window_start, window_end))
            .order_by(appointments.c.appointment_at)
        )
        result = await self.db.execute(stmt)
        return [(row.appointment_at, row.appointment_end_at) for row in result]
