"""
Free-slot computation for the fixed daily working window.

The window is 08:00-18:00 UTC for every room. For one room the free slots
are found with a single left-to-right sweep:

1. Clip the room's active bookings to the window and sort them by start
2. Walk them with a cursor that starts at the window start
3. Emit ``[cursor, booking.start)`` whenever it is non-empty
4. Advance the cursor to ``max(cursor, booking.end)``
5. Emit ``[cursor, window_end)`` if anything is left after the last booking
"""
from __future__ import annotations

import re
from collections import defaultdict
from datetime import date, datetime, time
from typing import Dict, Iterable, List, NamedTuple, Tuple

from common.schemas import RoomAvailability, TimeSlot

from .errors import ValidationError
from .store import BookingStore

WORKING_DAY_START = time(8, 0)
WORKING_DAY_END = time(18, 0)

_DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")


class Interval(NamedTuple):
    start: datetime
    end: datetime


def parse_date(date_string: str) -> date:
    """Parse a ``YYYY-MM-DD`` string, raising ``ValidationError`` on bad input."""
    if not date_string or not _DATE_PATTERN.fullmatch(date_string):
        raise ValidationError("Invalid date format. Use YYYY-MM-DD")

    year, month, day = (int(part) for part in date_string.split("-"))
    if year < 1 or not 1 <= month <= 12 or not 1 <= day <= 31:
        raise ValidationError("Invalid date")
    try:
        return date(year, month, day)
    except ValueError as exc:
        # e.g. 2025-04-31 or 2025-02-29
        raise ValidationError("Invalid date") from exc


def working_window(day: date) -> Tuple[datetime, datetime]:
    return datetime.combine(day, WORKING_DAY_START), datetime.combine(day, WORKING_DAY_END)


def clip_intervals(window_start: datetime, window_end: datetime, intervals: Iterable[Interval]) -> List[Interval]:
    """Clip intervals to the window, drop those outside it, and sort by start."""
    clipped = []
    for interval in intervals:
        start = max(interval.start, window_start)
        end = min(interval.end, window_end)
        if start < end:
            clipped.append(Interval(start, end))
    return sorted(clipped)


def compute_free_slots(window_start: datetime, window_end: datetime, intervals: Iterable[Interval]) -> List[Interval]:
    free: List[Interval] = []
    cursor = window_start

    for booked in clip_intervals(window_start, window_end, intervals):
        if cursor < booked.start:
            free.append(Interval(cursor, booked.start))
        if booked.end > cursor:
            cursor = booked.end

    if cursor < window_end:
        free.append(Interval(cursor, window_end))
    return free


def _to_slots(intervals: Iterable[Interval]) -> List[TimeSlot]:
    return [TimeSlot(start_time=interval.start, end_time=interval.end) for interval in intervals]


class AvailabilityCalculator:
    def __init__(self, store: BookingStore) -> None:
        self.store = store

    def get_availability(self, date_string: str) -> List[RoomAvailability]:
        return self.compute_availability(parse_date(date_string))

    def compute_availability(self, day: date) -> List[RoomAvailability]:
        window_start, window_end = working_window(day)

        by_room: Dict[int, List[Interval]] = defaultdict(list)
        for booking in self.store.list_active_bookings_between(window_start, window_end):
            by_room[booking.room_id].append(Interval(booking.start_time, booking.end_time))

        availability = []
        for room in self.store.list_rooms(sort_by_name=True):
            booked = by_room.get(room.id, [])
            availability.append(
                RoomAvailability(
                    room_id=room.id,
                    room_name=room.name,
                    capacity=room.capacity,
                    date=day,
                    free_slots=_to_slots(compute_free_slots(window_start, window_end, booked)),
                    booked_slots=_to_slots(clip_intervals(window_start, window_end, booked)),
                )
            )
        return availability
