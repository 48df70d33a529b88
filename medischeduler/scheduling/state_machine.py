"""Appointment lifecycle state machine.

Computes the column updates and history entries for a status change without
touching the database; the appointment service persists them.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from medischeduler.core.exceptions import InvalidTransitionException
from medischeduler.schemas.appointments import AppointmentStatus

S = AppointmentStatus

TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    S.SCHEDULED: frozenset({S.CONFIRMED, S.CANCELLED, S.RESCHEDULED}),
    S.CONFIRMED: frozenset({S.CHECKED_IN, S.CANCELLED, S.NO_SHOW, S.RESCHEDULED}),
    S.CHECKED_IN: frozenset({S.IN_PROGRESS}),
    S.IN_PROGRESS: frozenset({S.COMPLETED}),
    S.RESCHEDULED: frozenset({S.SCHEDULED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
    S.NO_SHOW: frozenset(),
}

INITIAL_STATUS = S.SCHEDULED
TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)
ACTIVE_STATUSES = frozenset({S.SCHEDULED, S.CONFIRMED, S.CHECKED_IN, S.IN_PROGRESS})


def _minutes(delta: timedelta) -> int:
    return max(0, int(delta.total_seconds() // 60))


@dataclass
class TransitionResult:
    """Outcome of a status change: new column values and history rows."""

    status: AppointmentStatus
    values: dict[str, Any] = field(default_factory=dict)
    history: list[dict[str, Any]] = field(default_factory=list)


class AppointmentStateMachine:
    """Legal status transitions and their side effects."""

    transitions = TRANSITIONS

    def allowed(self, current: AppointmentStatus | str) -> frozenset[AppointmentStatus]:
        """Statuses reachable in one step from ``current``."""
        return self.transitions[AppointmentStatus(current)]

    def can_transition(
        self, current: AppointmentStatus | str, target: AppointmentStatus | str
    ) -> bool:
        return AppointmentStatus(target) in self.allowed(current)

    def ensure_transition(
        self, current: AppointmentStatus | str, target: AppointmentStatus | str
    ) -> None:
        """Raise InvalidTransitionException unless ``current -> target`` is in the table."""
        if not self.can_transition(current, target):
            raise InvalidTransitionException(
                AppointmentStatus(current).value, AppointmentStatus(target).value
            )

    @staticmethod
    def history_entry(
        status: AppointmentStatus,
        at: datetime,
        actor_id: UUID | None,
        reason: str | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        return {
            "status": status.value,
            "changed_at": at,
            "changed_by": actor_id,
            "reason": reason,
            "notes": notes,
        }

    def initial_entry(self, at: datetime, actor_id: UUID | None) -> dict[str, Any]:
        """History entry recorded when an appointment is booked."""
        return self.history_entry(INITIAL_STATUS, at, actor_id, notes="Appointment booked")

    def transition(
        self,
        appointment: Mapping[str, Any],
        target: AppointmentStatus,
        *,
        actor_id: UUID | None,
        at: datetime,
        reason: str | None = None,
        notes: str | None = None,
    ) -> TransitionResult:
        """
        Compute a single-step status change.

        Args:
            appointment: Current appointment row
            target: Requested status
            actor_id: Who performs the change
            at: When the change happens
            reason: Optional reason stored in history
            notes: Optional notes stored in history

        Returns:
            Column updates and the history entry to append

        Raises:
            InvalidTransitionException: If the table does not allow the change
        """
        current = AppointmentStatus(appointment["status"])
        self.ensure_transition(current, target)

        values: dict[str, Any] = {
            "status": target.value,
            "updated_at": at,
            "last_modified_by": actor_id,
        }

        if target == S.CHECKED_IN:
            values["check_in_at"] = at
            values["waiting_time_minutes"] = _minutes(at - appointment["appointment_at"])
        elif target == S.IN_PROGRESS:
            values["actual_start_at"] = at
        elif target == S.COMPLETED:
            started = (
                appointment.get("actual_start_at")
                or appointment.get("check_in_at")
                or appointment["appointment_at"]
            )
            values["actual_end_at"] = at
            values["actual_duration_minutes"] = _minutes(at - started)
        elif target == S.CANCELLED:
            values["cancelled_at"] = at
            values["cancelled_by"] = actor_id
            values["cancellation_reason"] = reason

        return TransitionResult(
            status=target,
            values=values,
            history=[self.history_entry(target, at, actor_id, reason, notes)],
        )

    def reschedule(
        self,
        appointment: Mapping[str, Any],
        new_start: datetime,
        *,
        actor_id: UUID | None,
        at: datetime,
        reason: str | None = None,
    ) -> TransitionResult:
        """
        Move an appointment to ``new_start``.

        Walks ``rescheduled -> scheduled`` so the history records both
        steps, keeps the original start time and bumps the reschedule count.
        """
        current = AppointmentStatus(appointment["status"])
        self.ensure_transition(current, S.RESCHEDULED)

        original_start: datetime = appointment["appointment_at"]
        duration = timedelta(minutes=appointment["duration_minutes"])
        moved = f"Moved from {original_start.isoformat()} to {new_start.isoformat()}"

        values: dict[str, Any] = {
            "status": S.SCHEDULED.value,
            "appointment_at": new_start,
            "appointment_end_at": new_start + duration,
            "original_appointment_at": original_start,
            "rescheduled_at": at,
            "rescheduled_by": actor_id,
            "reschedule_reason": reason,
            "reschedule_count": (appointment.get("reschedule_count") or 0) + 1,
            "updated_at": at,
            "last_modified_by": actor_id,
        }
        return TransitionResult(
            status=S.SCHEDULED,
            values=values,
            history=[
                self.history_entry(S.RESCHEDULED, at, actor_id, reason, moved),
                self.history_entry(S.SCHEDULED, at, actor_id, notes="Rescheduled appointment"),
            ],
        )

    def is_valid_walk(self, statuses: Sequence[AppointmentStatus | str]) -> bool:
        """Check that a recorded status sequence follows the transition table."""
        if not statuses or AppointmentStatus(statuses[0]) != INITIAL_STATUS:
            return False
        return all(
            self.can_transition(previous, following)
            for previous, following in zip(statuses, statuses[1:])
        )
