from contextlib import asynccontextmanager
from typing import List, Optional

from circuitbreaker import circuit
from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware

from common.cache import ReadThroughCache
from common.config import get_settings
from common.database import Base, engine
from common.dependencies import allow_roles, get_availability_calculator, get_store
from common.error_handlers import add_error_handlers
from common.logging_middleware import add_audit_middleware
from common.models import RoleEnum, User
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import RoomAvailability, RoomCreate, RoomRead
from scheduling.availability import AvailabilityCalculator
from scheduling.errors import NotFoundError, ValidationError
from scheduling.store import BookingStore

settings = get_settings()
ROOM_LIST_KEY = "rooms:by-name"
room_list_cache: ReadThroughCache[List[RoomRead]] = ReadThroughCache(ttl=settings.room_cache_ttl)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Rooms Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "rooms")
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "rooms"}


@app.post("/rooms", response_model=RoomRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def add_room(
    request: Request,
    room_in: RoomCreate,
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    store: BookingStore = Depends(get_store),
) -> RoomRead:
    room = store.insert_room(room_in.name.strip(), room_in.capacity)
    room_list_cache.invalidate(ROOM_LIST_KEY)
    return RoomRead.model_validate(room)


@app.get("/rooms", response_model=List[RoomRead])
@circuit(failure_threshold=5, recovery_timeout=60)
def list_rooms(request: Request, store: BookingStore = Depends(get_store)) -> List[RoomRead]:
    return room_list_cache.get_or_load(
        ROOM_LIST_KEY,
        lambda: [RoomRead.model_validate(room) for room in store.list_rooms(sort_by_name=True)],
    )


@app.get("/rooms/availability", response_model=List[RoomAvailability])
@limiter.limit("40/minute")
def room_availability(
    request: Request,
    date: Optional[str] = Query(default=None, description="Day to inspect, YYYY-MM-DD"),
    calculator: AvailabilityCalculator = Depends(get_availability_calculator),
) -> List[RoomAvailability]:
    if not date:
        raise ValidationError("Date parameter is required (format: YYYY-MM-DD)")
    return calculator.get_availability(date)


@app.get("/rooms/{room_id}", response_model=RoomRead)
@limiter.limit("60/minute")
def get_room(request: Request, room_id: int, store: BookingStore = Depends(get_store)) -> RoomRead:
    room = store.find_room_by_id(room_id)
    if not room:
        raise NotFoundError("Room not found")
    return RoomRead.model_validate(room)
