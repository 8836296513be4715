"""Error taxonomy shared by the booking core and its adapters."""

from __future__ import annotations


class BookingError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class NotFoundError(BookingError):
    status_code = 404


class InvalidStateError(BookingError):
    status_code = 400


class ForbiddenError(BookingError):
    status_code = 403


class ConflictError(BookingError):
    status_code = 409


class DuplicateReferenceError(ConflictError):
    """Raised by the store when a booking reference is already taken."""


class GatewayError(BookingError):
    status_code = 502
