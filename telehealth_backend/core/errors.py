"""Scheduling error taxonomy.

Every error carries the HTTP status it maps to so routes can translate it
without a lookup table. Nothing in the core retries on these.
"""


class SchedulingError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> str | dict:
        return self.message


class ValidationError(SchedulingError):
    """Malformed schedule, override or booking input."""

    status_code = 400

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field

    def to_detail(self) -> dict:
        return {'field': self.field, 'message': self.message}


class ConflictError(SchedulingError):
    """The requested slot cannot be booked."""

    status_code = 409

    MESSAGES = {
        'slot_taken': 'This time slot is no longer available. Please pick another time.',
        'slot_unavailable': 'This time is not offered by the therapist. Please pick another time.',
    }

    def __init__(self, reason: str = 'slot_taken'):
        super().__init__(self.MESSAGES.get(reason, reason))
        self.reason = reason

    def to_detail(self) -> dict:
        return {'reason': self.reason, 'message': self.message}


class InvalidStateError(SchedulingError):
    status_code = 409

    def __init__(self, action: str, current_status: str):
        super().__init__(f'Cannot {action} a session that is {current_status}.')
        self.action = action
        self.current_status = current_status


class NotFoundError(SchedulingError):
    status_code = 404


class PermissionDeniedError(SchedulingError):
    status_code = 403


class StoreUnavailableError(SchedulingError):
    """The backing store failed before anything was written."""

    status_code = 503

    def __init__(self, message: str = 'Database unavailable. Please try again shortly.'):
        super().__init__(message)


class BookingOutcomeUnknownError(SchedulingError):
    """The store failed while committing a booking; it may or may not exist."""

    status_code = 503

    def __init__(self):
        super().__init__(
            'We could not confirm whether your booking was saved. '
            'Check your sessions before trying again.'
        )


class RoomProvisioningError(Exception):
    """Raised by the video-room provisioner; never surfaced to booking callers."""
