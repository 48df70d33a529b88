"""Cancellation and reschedule policy.

The strict variant governs: cancelling or rescheduling needs at least
``notice`` (24 hours by default) before the appointment starts.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from medischeduler.config import Settings
from medischeduler.core.exceptions import (
    NotCancellableException,
    NotReschedulableException,
    RescheduleLimitExceededException,
)
from medischeduler.schemas.appointments import AppointmentStatus

CANCELLABLE_STATUSES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED})


@dataclass(frozen=True)
class CancellationPolicy:
    """Time-windowed cancellation and reschedule rules."""

    notice: timedelta = timedelta(hours=24)
    max_reschedules: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> "CancellationPolicy":
        return cls(
            notice=timedelta(hours=settings.cancellation_notice_hours),
            max_reschedules=settings.max_reschedules,
        )

    def _refusal(self, appointment: Mapping[str, Any], now: datetime) -> str | None:
        status = AppointmentStatus(appointment["status"])
        if status not in CANCELLABLE_STATUSES:
            return f"Appointments with status {status.value} cannot be changed"

        starts_at: datetime = appointment["appointment_at"]
        if starts_at <= now:
            return "Appointment has already started"
        if starts_at - now < self.notice:
            hours = self.notice.total_seconds() / 3600
            return f"Changes require at least {hours:g} hours notice"
        return None

    def can_cancel(self, appointment: Mapping[str, Any], now: datetime) -> bool:
        """Cancellable status, still in the future and outside the notice window."""
        return self._refusal(appointment, now) is None

    def can_reschedule(self, appointment: Mapping[str, Any], now: datetime) -> bool:
        return (
            self.can_cancel(appointment, now)
            and (appointment.get("reschedule_count") or 0) < self.max_reschedules
        )

    def ensure_cancellable(self, appointment: Mapping[str, Any], now: datetime) -> None:
        """Raise NotCancellableException when cancellation is refused."""
        refusal = self._refusal(appointment, now)
        if refusal is not None:
            raise NotCancellableException(f"Appointment cannot be cancelled: {refusal}")

    def ensure_reschedulable(self, appointment: Mapping[str, Any], now: datetime) -> None:
        """Raise when rescheduling is refused; the count limit is reported first."""
        if (appointment.get("reschedule_count") or 0) >= self.max_reschedules:
            raise RescheduleLimitExceededException(self.max_reschedules)
        refusal = self._refusal(appointment, now)
        if refusal is not None:
            raise NotReschedulableException(f"Appointment cannot be rescheduled: {refusal}")
