"""Pydantic schemas shared across the services."""
from __future__ import annotations

from datetime import date as date_type, datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from .models import BookingStatus, RoleEnum


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserBase(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    username: str = Field(..., max_length=50)
    email: EmailStr
    role: RoleEnum = RoleEnum.USER


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)


class UserRead(UserBase):
    id: int
    created_at: datetime

    model_config = {"from_attributes": True}


class RoomCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    capacity: int = Field(..., ge=1, le=100)


class RoomRead(RoomCreate):
    id: int
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingCreate(BaseModel):
    room_id: int
    start_time: datetime
    end_time: datetime


class BookingReschedule(BaseModel):
    start_time: datetime
    end_time: datetime


class BookingRead(BaseModel):
    id: int
    room_id: int
    room_name: Optional[str] = None
    user_id: int
    user_name: Optional[str] = None
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    created_at: datetime


class ConflictingBooking(BaseModel):
    id: int
    start_time: datetime
    end_time: datetime
    user_name: Optional[str] = None


class RoomBookings(BaseModel):
    room_id: int
    room_name: str
    bookings: List[BookingRead]


class TimeSlot(BaseModel):
    start_time: datetime
    end_time: datetime


class RoomAvailability(BaseModel):
    room_id: int
    room_name: str
    capacity: int
    date: date_type
    free_slots: List[TimeSlot]
    booked_slots: List[TimeSlot]


class BookingEvent(BaseModel):
    booking_id: int
    room_id: int
    room_name: Optional[str] = None
    start_time: datetime
    end_time: datetime
    user_id: int
    user_name: Optional[str] = None
