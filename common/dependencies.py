"""Reusable FastAPI dependencies for auth, database access and the booking core."""
from typing import Callable

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from scheduling.availability import AvailabilityCalculator
from scheduling.broadcaster import EventBroadcaster
from scheduling.errors import AuthenticationError, PermissionDeniedError
from scheduling.lifecycle import BookingManager
from scheduling.locks import RoomLocks
from scheduling.store import BookingStore, SqlAlchemyBookingStore

from .auth import decode_token
from .database import get_db
from .models import RoleEnum, User

oauth_scheme = OAuth2PasswordBearer(tokenUrl="/users/login", auto_error=False)


def get_current_user(token: str | None = Depends(oauth_scheme), db: Session = Depends(get_db)) -> User:
    if not token:
        raise AuthenticationError("No token provided")
    payload = decode_token(token)
    username: str | None = payload.get("sub")
    if username is None:
        raise AuthenticationError("Missing subject in token")
    user = db.query(User).filter(User.username == username).first()
    if not user:
        raise AuthenticationError("User no longer exists")
    return user


def allow_roles(*roles: RoleEnum) -> Callable[[User], User]:
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise PermissionDeniedError("You do not have permission to access this resource")
        return current_user

    return dependency


def get_store(db: Session = Depends(get_db)) -> BookingStore:
    return SqlAlchemyBookingStore(db)


def get_broadcaster(request: Request) -> EventBroadcaster:
    return request.app.state.broadcaster


def get_room_locks(request: Request) -> RoomLocks:
    return request.app.state.room_locks


def get_booking_manager(
    store: BookingStore = Depends(get_store),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
    locks: RoomLocks = Depends(get_room_locks),
) -> BookingManager:
    return BookingManager(store, broadcaster=broadcaster, locks=locks)


def get_availability_calculator(store: BookingStore = Depends(get_store)) -> AvailabilityCalculator:
    return AvailabilityCalculator(store)
