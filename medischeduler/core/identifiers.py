"""Human-readable identifiers."""

import secrets
from datetime import datetime


def generate_appointment_number(created_at: datetime) -> str:
    """
    Generate an appointment number such as ``APT20240610-3F9A1C``.

    The suffix is random rather than sequential, so concurrent bookings
    never compete for the same number. Uniqueness is still enforced by the
    ``appointments_appointment_number_key`` constraint.
    """
    return f"APT{created_at:%Y%m%d}-{secrets.token_hex(3).upper()}"
