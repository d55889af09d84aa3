"""Typed errors raised by the booking core.

The HTTP layer maps each one onto a status code through
``common.error_handlers``; ``status_code`` is only a hint for that mapping.
"""
from __future__ import annotations

from typing import List, Optional

from common.schemas import ConflictingBooking


class BookingServiceError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(BookingServiceError):
    status_code = 400


class AuthenticationError(BookingServiceError):
    status_code = 401


class PermissionDeniedError(BookingServiceError):
    status_code = 403


class NotFoundError(BookingServiceError):
    status_code = 404


class ConflictError(BookingServiceError):
    """The requested interval overlaps one or more active bookings."""

    status_code = 409

    def __init__(self, message: str, conflicting_bookings: Optional[List[ConflictingBooking]] = None) -> None:
        super().__init__(message)
        self.conflicting_bookings = conflicting_bookings or []
