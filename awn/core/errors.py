"""Error taxonomy shared by the scheduling services and the HTTP layer.

Every error carries the HTTP status it maps to and a message that is safe to
show to the client. Store failures never leak driver details: they are logged
where they happen and re-raised as :class:`InternalError`.
"""

from typing import Any


class AppointmentError(Exception):
    status_code = 500
    default_message = 'Unexpected error.'

    def __init__(self, message: str | None = None, *, details: Any = None, status_code: int | None = None):
        self.message = message or self.default_message
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {'success': False, 'error': self.message}
        if self.details is not None:
            payload['details'] = self.details
        return payload


class ValidationError(AppointmentError):
    status_code = 400
    default_message = 'Invalid request data.'


class ConflictError(AppointmentError):
    status_code = 409
    default_message = 'This time slot is already booked.'

    def __init__(self, message: str | None = None, *, conflicts: list | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.conflicts = conflicts or []

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload['conflicts'] = [conflict.slot_summary() for conflict in self.conflicts]
        return payload


class NotFoundError(AppointmentError):
    status_code = 404
    default_message = 'Appointment not found.'


class UnauthorizedError(AppointmentError):
    status_code = 401
    default_message = 'Not authenticated.'


class InternalError(AppointmentError):
    status_code = 500
    default_message = 'Internal server error.'

    def __init__(self, message: str | None = None, *, retryable: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        self.retryable = retryable
        if retryable and 'status_code' not in kwargs:
            self.status_code = 503
