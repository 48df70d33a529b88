"""Roles, capabilities and the per-request actor context."""

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from medischeduler.core.exceptions import ForbiddenException


class Role(str, Enum):
    """Closed set of roles carried in the access token."""

    PATIENT = "patient"
    DOCTOR = "doctor"
    STAFF = "staff"
    ADMIN = "admin"


class Capability(str, Enum):
    """Operations a role may perform."""

    BOOK_APPOINTMENT = "book_appointment"
    BOOK_FOR_OTHERS = "book_for_others"
    VIEW_APPOINTMENT = "view_appointment"
    VIEW_ALL_APPOINTMENTS = "view_all_appointments"
    CONFIRM_APPOINTMENT = "confirm_appointment"
    CHECK_IN = "check_in"
    MANAGE_VISIT = "manage_visit"
    CANCEL_APPOINTMENT = "cancel_appointment"
    RESCHEDULE_APPOINTMENT = "reschedule_appointment"
    MANAGE_SCHEDULE = "manage_schedule"
    MANAGE_PROVIDERS = "manage_providers"


ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.PATIENT: frozenset(
        {
            Capability.BOOK_APPOINTMENT,
            Capability.VIEW_APPOINTMENT,
            Capability.CHECK_IN,
            Capability.CANCEL_APPOINTMENT,
            Capability.RESCHEDULE_APPOINTMENT,
        }
    ),
    Role.DOCTOR: frozenset(
        {
            Capability.VIEW_APPOINTMENT,
            Capability.CONFIRM_APPOINTMENT,
            Capability.CHECK_IN,
            Capability.MANAGE_VISIT,
            Capability.CANCEL_APPOINTMENT,
            Capability.RESCHEDULE_APPOINTMENT,
            Capability.MANAGE_SCHEDULE,
        }
    ),
    Role.STAFF: frozenset(
        {
            Capability.BOOK_APPOINTMENT,
            Capability.BOOK_FOR_OTHERS,
            Capability.VIEW_APPOINTMENT,
            Capability.VIEW_ALL_APPOINTMENTS,
            Capability.CONFIRM_APPOINTMENT,
            Capability.CHECK_IN,
            Capability.MANAGE_VISIT,
            Capability.CANCEL_APPOINTMENT,
            Capability.RESCHEDULE_APPOINTMENT,
        }
    ),
    Role.ADMIN: frozenset(Capability),
}


@dataclass(frozen=True)
class ActorContext:
    """Authenticated caller, resolved once per request."""

    actor_id: UUID
    role: Role
    capabilities: frozenset[Capability] = field(default=frozenset())

    @classmethod
    def for_role(cls, actor_id: UUID, role: Role) -> "ActorContext":
        """Build a context with the capabilities granted to ``role``."""
        return cls(actor_id=actor_id, role=role, capabilities=ROLE_CAPABILITIES[role])

    def can(self, capability: Capability) -> bool:
        """Check whether the actor holds a capability."""
        return capability in self.capabilities

    def require(self, capability: Capability) -> None:
        """Raise ForbiddenException unless the actor holds ``capability``."""
        if capability not in self.capabilities:
            raise ForbiddenException(
                f"Role '{self.role.value}' is not allowed to {capability.value.replace('_', ' ')}"
            )
