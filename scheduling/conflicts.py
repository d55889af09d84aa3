"""Overlap detection between a candidate interval and a room's active bookings."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from common.models import Booking

from .store import BookingStore


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    # Half-open intervals: touching endpoints do not overlap.
    return start_a < end_b and end_a > start_b


class ConflictEngine:
    def __init__(self, store: BookingStore) -> None:
        self.store = store

    def find_conflicts(
        self,
        room_id: int,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[int] = None,
    ) -> List[Booking]:
        """Return the active bookings of ``room_id`` overlapping ``[start, end)``.

        ``exclude_booking_id`` skips one booking, which lets a reschedule ignore
        the interval it is moving away from. Callers guarantee ``start < end``.
        """
        candidates = self.store.find_overlapping_active_bookings(room_id, start, end, exclude_id=exclude_booking_id)
        conflicts = [
            booking
            for booking in candidates
            if booking.is_active
            and booking.id != exclude_booking_id
            and intervals_overlap(booking.start_time, booking.end_time, start, end)
        ]
        return sorted(conflicts, key=lambda booking: (booking.start_time, booking.id))

    def has_conflict(
        self,
        room_id: int,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[int] = None,
    ) -> bool:
        return bool(self.find_conflicts(room_id, start, end, exclude_booking_id))
