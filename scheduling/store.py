"""Persistence boundary for rooms and bookings.

``BookingStore`` is the contract the core codes against;
``SqlAlchemyBookingStore`` implements it on top of a request-scoped session.
Every write commits before returning.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from common.models import Booking, BookingStatus, Room, User


class BookingStore(ABC):
    @abstractmethod
    def find_room_by_id(self, room_id: int) -> Optional[Room]:
        raise NotImplementedError

    @abstractmethod
    def list_rooms(self, sort_by_name: bool = True) -> List[Room]:
        raise NotImplementedError

    @abstractmethod
    def insert_room(self, name: str, capacity: int) -> Room:
        raise NotImplementedError

    @abstractmethod
    def insert_booking(self, user_id: int, room_id: int, start: datetime, end: datetime) -> Booking:
        raise NotImplementedError

    @abstractmethod
    def update_booking_times(self, booking_id: int, start: datetime, end: datetime) -> Booking:
        raise NotImplementedError

    @abstractmethod
    def update_booking_status(self, booking_id: int, status: BookingStatus) -> Booking:
        raise NotImplementedError

    @abstractmethod
    def find_booking_by_id(self, booking_id: int) -> Optional[Booking]:
        """Current committed state of the booking, never a stale cached copy."""
        raise NotImplementedError

    @abstractmethod
    def find_overlapping_active_bookings(
        self,
        room_id: int,
        start: datetime,
        end: datetime,
        exclude_id: Optional[int] = None,
    ) -> List[Booking]:
        """Active bookings of ``room_id`` with ``booking.start < end`` and ``booking.end > start``."""
        raise NotImplementedError

    @abstractmethod
    def list_active_bookings_between(self, start: datetime, end: datetime) -> List[Booking]:
        """Active bookings of every room overlapping ``[start, end)``."""
        raise NotImplementedError

    @abstractmethod
    def list_bookings_by_user(self, user_id: int) -> List[Booking]:
        """All bookings of a user, newest start first."""
        raise NotImplementedError

    @abstractmethod
    def list_active_bookings_sorted(self) -> List[Booking]:
        """All active bookings, earliest start first."""
        raise NotImplementedError

    @abstractmethod
    def get_room_names(self, room_ids: Iterable[int]) -> Dict[int, str]:
        raise NotImplementedError

    @abstractmethod
    def get_user_names(self, user_ids: Iterable[int]) -> Dict[int, str]:
        raise NotImplementedError


class SqlAlchemyBookingStore(BookingStore):
    def __init__(self, db: Session) -> None:
        self.db = db

    def find_room_by_id(self, room_id: int) -> Optional[Room]:
        return self.db.query(Room).filter(Room.id == room_id).first()

    def list_rooms(self, sort_by_name: bool = True) -> List[Room]:
        query = self.db.query(Room)
        if sort_by_name:
            query = query.order_by(Room.name.asc(), Room.id.asc())
        return query.all()

    def insert_room(self, name: str, capacity: int) -> Room:
        room = Room(name=name, capacity=capacity)
        self.db.add(room)
        self.db.commit()
        self.db.refresh(room)
        return room

    def insert_booking(self, user_id: int, room_id: int, start: datetime, end: datetime) -> Booking:
        booking = Booking(
            user_id=user_id,
            room_id=room_id,
            start_time=start,
            end_time=end,
            status=BookingStatus.ACTIVE,
        )
        self.db.add(booking)
        self.db.commit()
        self.db.refresh(booking)
        return booking

    def update_booking_times(self, booking_id: int, start: datetime, end: datetime) -> Booking:
        booking = self._get_booking(booking_id)
        booking.start_time = start
        booking.end_time = end
        self.db.commit()
        self.db.refresh(booking)
        return booking

    def update_booking_status(self, booking_id: int, status: BookingStatus) -> Booking:
        booking = self._get_booking(booking_id)
        booking.status = status
        self.db.commit()
        self.db.refresh(booking)
        return booking

    def find_booking_by_id(self, booking_id: int) -> Optional[Booking]:
        return self.db.query(Booking).populate_existing().filter(Booking.id == booking_id).first()

    def find_overlapping_active_bookings(
        self,
        room_id: int,
        start: datetime,
        end: datetime,
        exclude_id: Optional[int] = None,
    ) -> List[Booking]:
        query = self.db.query(Booking).filter(
            Booking.room_id == room_id,
            Booking.status == BookingStatus.ACTIVE,
            Booking.start_time < end,
            Booking.end_time > start,
        )
        if exclude_id is not None:
            query = query.filter(Booking.id != exclude_id)
        return query.order_by(Booking.start_time.asc()).all()

    def list_active_bookings_between(self, start: datetime, end: datetime) -> List[Booking]:
        return (
            self.db.query(Booking)
            .filter(
                Booking.status == BookingStatus.ACTIVE,
                Booking.start_time < end,
                Booking.end_time > start,
            )
            .order_by(Booking.start_time.asc())
            .all()
        )

    def list_bookings_by_user(self, user_id: int) -> List[Booking]:
        return (
            self.db.query(Booking)
            .filter(Booking.user_id == user_id)
            .order_by(Booking.start_time.desc())
            .all()
        )

    def list_active_bookings_sorted(self) -> List[Booking]:
        return (
            self.db.query(Booking)
            .filter(Booking.status == BookingStatus.ACTIVE)
            .order_by(Booking.start_time.asc())
            .all()
        )

    def get_room_names(self, room_ids: Iterable[int]) -> Dict[int, str]:
        ids = set(room_ids)
        if not ids:
            return {}
        rows = self.db.query(Room.id, Room.name).filter(Room.id.in_(ids)).all()
        return {room_id: name for room_id, name in rows}

    def get_user_names(self, user_ids: Iterable[int]) -> Dict[int, str]:
        ids = set(user_ids)
        if not ids:
            return {}
        rows = self.db.query(User.id, User.name).filter(User.id.in_(ids)).all()
        return {user_id: name for user_id, name in rows}

    def _get_booking(self, booking_id: int) -> Booking:
        booking = self.find_booking_by_id(booking_id)
        if booking is None:
            raise LookupError(f"Booking {booking_id} does not exist")
        return booking
