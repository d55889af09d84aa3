"""Translate the booking core's typed errors into JSON responses."""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from scheduling.errors import AuthenticationError, BookingServiceError, ConflictError

logger = logging.getLogger(__name__)


def booking_error_handler(request: Request, exc: BookingServiceError) -> JSONResponse:
    logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    content: dict = {"detail": exc.message}
    headers = None
    if isinstance(exc, ConflictError):
        content["conflicting_bookings"] = [booking.model_dump(mode="json") for booking in exc.conflicting_bookings]
    if isinstance(exc, AuthenticationError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


def add_error_handlers(app: FastAPI) -> None:
    """Attach the typed-error handler to an app."""

    app.add_exception_handler(BookingServiceError, booking_error_handler)
