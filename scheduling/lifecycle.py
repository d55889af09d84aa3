"""Booking lifecycle: create, reschedule, cancel and the read-side listings.

A ``BookingManager`` is built per request around a request-scoped store and
keeps no state between calls. State machine per booking::

    none --create--> active --cancel--> cancelled (terminal)
                     active --reschedule--> active
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from common.models import Booking, BookingStatus, RoleEnum
from common.schemas import BookingEvent, BookingRead, ConflictingBooking, RoomBookings

from .broadcaster import EventBroadcaster, EventKind
from .clock import as_utc, utcnow
from .conflicts import ConflictEngine
from .errors import AuthenticationError, ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from .locks import RoomLocks
from .store import BookingStore

logger = logging.getLogger(__name__)

PAST_GRACE = timedelta(minutes=1)
BOOKING_HORIZON = timedelta(days=365)

_CANCELLED_MESSAGES = {
    "reschedule": "Cannot reschedule a cancelled booking",
    "cancel": "Booking is already cancelled",
}


def validate_booking_time(start: datetime, end: datetime, now: datetime) -> None:
    if start >= end:
        raise ValidationError("Start time must be before end time")
    if start < now - PAST_GRACE:
        raise ValidationError("Cannot create booking in the past")
    if start > now + BOOKING_HORIZON:
        raise ValidationError("Cannot book more than 1 year in advance")


class BookingManager:
    def __init__(
        self,
        store: BookingStore,
        broadcaster: Optional[EventBroadcaster] = None,
        locks: Optional[RoomLocks] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.conflicts = ConflictEngine(store)
        self.broadcaster = broadcaster
        self.locks = locks or RoomLocks()
        self.clock = clock

    def create_booking(self, user_id: Optional[int], room_id: int, start: datetime, end: datetime) -> BookingRead:
        _require_identity(user_id)
        start, end = as_utc(start), as_utc(end)
        validate_booking_time(start, end, self.clock())

        if self.store.find_room_by_id(room_id) is None:
            raise NotFoundError("Room not found")

        with self.locks.hold(room_id):
            self._ensure_no_conflicts(room_id, start, end)
            booking = self.store.insert_booking(user_id, room_id, start, end)

        logger.info("Booking created: %s (room=%s, user=%s)", booking.id, room_id, user_id)
        view = self._denormalize([booking])[0]
        self._notify(EventKind.BOOKING_CREATED, view)
        return view

    def reschedule_booking(
        self,
        booking_id: int,
        requester_id: Optional[int],
        requester_role: RoleEnum,
        start: datetime,
        end: datetime,
    ) -> BookingRead:
        _require_identity(requester_id)
        booking = self._get_changeable_booking(booking_id, requester_id, requester_role, "reschedule")

        start, end = as_utc(start), as_utc(end)
        validate_booking_time(start, end, self.clock())

        with self.locks.hold(booking.room_id):
            # Status and ownership are only trusted once read under the lock.
            booking = self._get_changeable_booking(booking_id, requester_id, requester_role, "reschedule")
            self._ensure_no_conflicts(booking.room_id, start, end, exclude_booking_id=booking.id)
            booking = self.store.update_booking_times(booking.id, start, end)

        logger.info("Booking rescheduled: %s (%s - %s)", booking.id, start.isoformat(), end.isoformat())
        view = self._denormalize([booking])[0]
        self._notify(EventKind.BOOKING_RESCHEDULED, view)
        return view

    def cancel_booking(self, booking_id: int, requester_id: Optional[int], requester_role: RoleEnum) -> BookingRead:
        _require_identity(requester_id)
        booking = self._get_changeable_booking(booking_id, requester_id, requester_role, "cancel")

        with self.locks.hold(booking.room_id):
            booking = self._get_changeable_booking(booking_id, requester_id, requester_role, "cancel")
            booking = self.store.update_booking_status(booking.id, BookingStatus.CANCELLED)

        logger.info("Booking cancelled: %s by user %s", booking.id, requester_id)
        view = self._denormalize([booking])[0]
        self._notify(EventKind.BOOKING_CANCELLED, view)
        return view

    def list_user_bookings(self, user_id: Optional[int]) -> List[BookingRead]:
        _require_identity(user_id)
        bookings = self.store.list_bookings_by_user(user_id)
        return sorted(self._denormalize(bookings), key=lambda view: view.start_time, reverse=True)

    def list_all_bookings_grouped_by_room(self) -> Dict[int, RoomBookings]:
        """Active bookings keyed by room id; rooms without bookings are left out."""
        views = sorted(self._denormalize(self.store.list_active_bookings_sorted()), key=lambda view: view.start_time)

        grouped: Dict[int, RoomBookings] = {}
        for view in views:
            group = grouped.get(view.room_id)
            if group is None:
                group = RoomBookings(room_id=view.room_id, room_name=view.room_name or "", bookings=[])
                grouped[view.room_id] = group
            group.bookings.append(view)
        return grouped

    def _get_booking(self, booking_id: int) -> Booking:
        booking = self.store.find_booking_by_id(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        return booking

    def _get_changeable_booking(
        self,
        booking_id: int,
        requester_id: int,
        requester_role: RoleEnum,
        action: str,
    ) -> Booking:
        booking = self._get_booking(booking_id)
        if booking.status == BookingStatus.CANCELLED:
            raise ValidationError(_CANCELLED_MESSAGES[action])
        _ensure_owner_or_admin(booking, requester_id, requester_role, action)
        return booking

    def _ensure_no_conflicts(
        self,
        room_id: int,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[int] = None,
    ) -> None:
        conflicts = self.conflicts.find_conflicts(room_id, start, end, exclude_booking_id)
        if not conflicts:
            return
        user_names = self.store.get_user_names(booking.user_id for booking in conflicts)
        raise ConflictError(
            "This time slot conflicts with existing booking(s)",
            [
                ConflictingBooking(
                    id=booking.id,
                    start_time=booking.start_time,
                    end_time=booking.end_time,
                    user_name=user_names.get(booking.user_id),
                )
                for booking in conflicts
            ],
        )

    def _denormalize(self, bookings: Iterable[Booking]) -> List[BookingRead]:
        bookings = list(bookings)
        room_names = self.store.get_room_names(booking.room_id for booking in bookings)
        user_names = self.store.get_user_names(booking.user_id for booking in bookings)
        return [
            BookingRead(
                id=booking.id,
                room_id=booking.room_id,
                room_name=room_names.get(booking.room_id),
                user_id=booking.user_id,
                user_name=user_names.get(booking.user_id),
                start_time=booking.start_time,
                end_time=booking.end_time,
                status=booking.status,
                created_at=booking.created_at,
            )
            for booking in bookings
        ]

    def _notify(self, kind: EventKind, view: BookingRead) -> None:
        if self.broadcaster is None:
            return
        event = BookingEvent(
            booking_id=view.id,
            room_id=view.room_id,
            room_name=view.room_name,
            start_time=view.start_time,
            end_time=view.end_time,
            user_id=view.user_id,
            user_name=view.user_name,
        )
        try:
            self.broadcaster.publish(kind, event)
        except Exception:
            # The write is already committed; a lost notification must not fail it.
            logger.exception("Broadcasting %s for booking %s failed", kind.value, view.id)


def _require_identity(user_id: Optional[int]) -> None:
    if user_id is None:
        raise AuthenticationError("Authentication required")


def _ensure_owner_or_admin(booking: Booking, requester_id: int, requester_role: RoleEnum, action: str) -> None:
    if booking.user_id != requester_id and requester_role != RoleEnum.ADMIN:
        raise PermissionDeniedError(f"You can only {action} your own bookings")
