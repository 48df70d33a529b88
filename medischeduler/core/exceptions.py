"""Custom application exceptions.

Every domain error carries an ``error_kind`` which is rendered as the
``error`` field of the JSON error envelope.
"""


class AppException(Exception):
    """Base application exception."""

    error_kind = "ApplicationError"

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    error_kind = "NotFound"

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    error_kind = "Unauthorized"

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    error_kind = "Forbidden"

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class BadRequestException(AppException):
    """Bad request exception."""

    error_kind = "BadRequest"

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class ConflictException(AppException):
    """Conflict exception."""

    error_kind = "Conflict"

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class ValidationException(AppException):
    """Validation error exception."""

    error_kind = "ValidationError"

    def __init__(self, message: str = "Validation error"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


# Scheduling errors


class PastTimeException(BadRequestException):
    """Requested start time is not in the future."""

    error_kind = "PastTime"

    def __init__(self, message: str = "Appointment must be scheduled for a future date and time"):
        super().__init__(message)


class OutsideAvailabilityException(ValidationException):
    """Requested interval is not covered by the doctor's working hours."""

    error_kind = "OutsideAvailability"

    def __init__(self, message: str = "Doctor is not available at the requested time"):
        super().__init__(message)


class SlotUnavailableException(ConflictException):
    """Requested interval is already occupied by an active appointment."""

    error_kind = "SlotUnavailable"

    def __init__(self, message: str = "This time slot is already booked"):
        super().__init__(message)


class InvalidTransitionException(ConflictException):
    """Requested status change is not allowed from the current status."""

    error_kind = "InvalidTransition"

    def __init__(self, current: str, requested: str, message: str | None = None):
        self.current = current
        self.requested = requested
        super().__init__(message or f"Cannot change status from {current} to {requested}")


class NotCancellableException(ConflictException):
    """Cancellation rejected by the cancellation policy."""

    error_kind = "NotCancellable"

    def __init__(self, message: str = "Appointment cannot be cancelled"):
        super().__init__(message)


class NotReschedulableException(ConflictException):
    """Reschedule rejected by the cancellation policy."""

    error_kind = "NotReschedulable"

    def __init__(self, message: str = "Appointment cannot be rescheduled"):
        super().__init__(message)


class RescheduleLimitExceededException(ConflictException):
    """Appointment has already been rescheduled the maximum number of times."""

    error_kind = "RescheduleLimitExceeded"

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Appointment has already been rescheduled {limit} times")
