from contextlib import asynccontextmanager
from typing import Dict, List

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sse_starlette.sse import EventSourceResponse

from common.config import get_settings
from common.database import Base, engine
from common.dependencies import allow_roles, get_booking_manager, get_broadcaster, get_current_user
from common.error_handlers import add_error_handlers
from common.logging_middleware import add_audit_middleware
from common.models import RoleEnum, User
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import BookingCreate, BookingRead, BookingReschedule, RoomBookings
from scheduling.broadcaster import EventBroadcaster
from scheduling.lifecycle import BookingManager
from scheduling.locks import RoomLocks

settings = get_settings()


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    broadcaster = EventBroadcaster(max_queue_size=settings.sse_queue_size)
    await broadcaster.connect()
    fastapi_app.state.broadcaster = broadcaster
    fastapi_app.state.room_locks = RoomLocks()
    try:
        yield
    finally:
        await broadcaster.disconnect()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Bookings Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "bookings")
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health(request: Request) -> dict[str, str]:
    return {
        "status": "ok",
        "service": "bookings",
        "stream_listeners": str(request.app.state.broadcaster.listener_count),
    }


@app.post("/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_booking(
    request: Request,
    booking_in: BookingCreate,
    current_user: User = Depends(get_current_user),
    manager: BookingManager = Depends(get_booking_manager),
) -> BookingRead:
    return manager.create_booking(current_user.id, booking_in.room_id, booking_in.start_time, booking_in.end_time)


@app.get("/bookings/me", response_model=List[BookingRead])
@limiter.limit("30/minute")
def list_my_bookings(
    request: Request,
    current_user: User = Depends(get_current_user),
    manager: BookingManager = Depends(get_booking_manager),
) -> List[BookingRead]:
    return manager.list_user_bookings(current_user.id)


@app.get("/bookings/stream")
async def stream_bookings(broadcaster: EventBroadcaster = Depends(get_broadcaster)) -> EventSourceResponse:
    """Server-Sent Events feed of booking changes.

    Clients receive ``connected`` first, then ``booking-created``,
    ``booking-rescheduled`` and ``booking-cancelled`` as they happen. Events
    are not replayed, so a client should reload its data after (re)connecting.
    """
    return EventSourceResponse(
        broadcaster.stream(),
        ping=settings.sse_keepalive_seconds,
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.patch("/bookings/{booking_id}/reschedule", response_model=BookingRead)
@limiter.limit("20/minute")
def reschedule_booking(
    request: Request,
    booking_id: int,
    reschedule_in: BookingReschedule,
    current_user: User = Depends(get_current_user),
    manager: BookingManager = Depends(get_booking_manager),
) -> BookingRead:
    return manager.reschedule_booking(
        booking_id,
        current_user.id,
        current_user.role,
        reschedule_in.start_time,
        reschedule_in.end_time,
    )


@app.patch("/bookings/{booking_id}/cancel", response_model=BookingRead)
@limiter.limit("20/minute")
def cancel_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    manager: BookingManager = Depends(get_booking_manager),
) -> BookingRead:
    return manager.cancel_booking(booking_id, current_user.id, current_user.role)


@app.get("/admin/bookings", response_model=Dict[int, RoomBookings])
@limiter.limit("30/minute")
def list_bookings_by_room(
    request: Request,
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    manager: BookingManager = Depends(get_booking_manager),
) -> Dict[int, RoomBookings]:
    return manager.list_all_bookings_grouped_by_room()
