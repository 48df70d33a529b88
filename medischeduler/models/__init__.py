"""Database models."""

from medischeduler.models.appointments import appointment_status_history, appointments
from medischeduler.models.base import metadata
from medischeduler.models.doctors import doctor_unavailable_dates, doctors

__all__ = [
    "appointment_status_history",
    "appointments",
    "doctor_unavailable_dates",
    "doctors",
    "metadata",
]
