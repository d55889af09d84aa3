"""Concurrency tests for the check-then-write sections of the booking lifecycle."""
import threading
import time
from contextlib import nullcontext
from datetime import datetime

from common.models import Booking, BookingStatus, RoleEnum
from scheduling.errors import ConflictError, ValidationError
from scheduling.lifecycle import BookingManager
from scheduling.locks import RoomLocks
from tests.fakes import InMemoryBookingStore

NOW = datetime(2025, 6, 1, 12, 0)
START, END = datetime(2025, 6, 10, 9), datetime(2025, 6, 10, 10)


class UnguardedLocks(RoomLocks):
    def hold(self, room_id):
        return nullcontext()


class SlowCheckStore(InMemoryBookingStore):
    """Widens the window between the conflict check and the insert."""

    def __init__(self, barrier=None, delay=0.0):
        super().__init__()
        self.barrier = barrier
        self.delay = delay

    def find_overlapping_active_bookings(self, room_id, start, end, exclude_id=None):
        result = super().find_overlapping_active_bookings(room_id, start, end, exclude_id)
        if self.barrier is not None:
            self.barrier.wait(timeout=5)
        time.sleep(self.delay)
        return result


def race(store, locks, attempts=2):
    store.insert_room("Conf A", 10)
    outcomes = []
    outcome_lock = threading.Lock()

    def attempt(user_id):
        manager = BookingManager(store, locks=locks, clock=lambda: NOW)
        try:
            manager.create_booking(user_id, 1, START, END)
            result = "created"
        except ConflictError:
            result = "conflict"
        with outcome_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt, args=(user_id,)) for user_id in range(1, attempts + 1)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    return sorted(outcomes)


def test_unguarded_check_and_write_can_double_book():
    store = SlowCheckStore(barrier=threading.Barrier(2))

    outcomes = race(store, UnguardedLocks())

    assert outcomes == ["created", "created"]
    assert len(store.list_active_bookings_sorted()) == 2


def test_room_lock_serializes_concurrent_creates():
    store = SlowCheckStore(delay=0.05)

    outcomes = race(store, RoomLocks(), attempts=4)

    assert outcomes == ["conflict", "conflict", "conflict", "created"]
    assert len(store.list_active_bookings_sorted()) == 1


def test_different_rooms_do_not_block_each_other():
    locks = RoomLocks()
    entered = threading.Event()

    def hold_other_room():
        with locks.hold(2):
            entered.set()

    with locks.hold(1):
        thread = threading.Thread(target=hold_other_room)
        thread.start()
        assert entered.wait(timeout=2)
        thread.join(timeout=2)


def test_same_room_lock_is_exclusive():
    locks = RoomLocks()
    entered = threading.Event()

    def hold_same_room():
        with locks.hold(1):
            entered.set()

    with locks.hold(1):
        thread = threading.Thread(target=hold_same_room)
        thread.start()
        assert not entered.wait(timeout=0.2)
    thread.join(timeout=2)
    assert entered.is_set()


class DetachedReadStore(InMemoryBookingStore):
    """Hands out a fresh copy per read, like a session per request.

    Each thread's first booking read waits on ``barrier`` so that both
    callers have seen the same state before either one writes.
    """

    def __init__(self, barrier):
        super().__init__()
        self.barrier = barrier
        self.writes = []
        self._seen = threading.local()

    def find_booking_by_id(self, booking_id):
        stored = super().find_booking_by_id(booking_id)
        copy = Booking(
            id=stored.id,
            user_id=stored.user_id,
            room_id=stored.room_id,
            start_time=stored.start_time,
            end_time=stored.end_time,
            status=stored.status,
            created_at=stored.created_at,
        )
        if not getattr(self._seen, "read", False):
            self._seen.read = True
            self.barrier.wait(timeout=5)
        return copy

    def update_booking_times(self, booking_id, start, end):
        self.writes.append("times")
        return super().update_booking_times(booking_id, start, end)

    def update_booking_status(self, booking_id, status):
        self.writes.append("status")
        return super().update_booking_status(booking_id, status)


class RecordingBroadcaster:
    def __init__(self):
        self.kinds = []
        self._lock = threading.Lock()

    def publish(self, kind, payload):
        with self._lock:
            self.kinds.append(kind.value)
        return 0


def run_concurrently(*actions):
    outcomes = []
    outcome_lock = threading.Lock()

    def run(action):
        try:
            result = action()
        except ValidationError as exc:
            result = exc.message
        with outcome_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=run, args=(action,)) for action in actions]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    return sorted(outcomes)


def booked_store():
    store = DetachedReadStore(threading.Barrier(2))
    store.insert_room("Conf A", 10)
    store.add_user(1, "Alice")
    store.add_booking(1, 1, START, END)
    return store


def test_concurrent_cancels_succeed_exactly_once():
    store = booked_store()
    events = RecordingBroadcaster()
    manager = BookingManager(store, broadcaster=events, locks=RoomLocks(), clock=lambda: NOW)

    def cancel():
        return manager.cancel_booking(1, 1, RoleEnum.USER).status.value

    outcomes = run_concurrently(cancel, cancel)

    assert outcomes == ["Booking is already cancelled", "cancelled"]
    assert store.writes == ["status"]
    assert events.kinds == ["booking-cancelled"]


def test_reschedule_never_moves_a_booking_cancelled_under_it():
    store = booked_store()
    events = RecordingBroadcaster()
    manager = BookingManager(store, broadcaster=events, locks=RoomLocks(), clock=lambda: NOW)
    new_start, new_end = datetime(2025, 6, 10, 14), datetime(2025, 6, 10, 15)

    def reschedule():
        return manager.reschedule_booking(1, 1, RoleEnum.USER, new_start, new_end).status.value

    def cancel():
        return manager.cancel_booking(1, 1, RoleEnum.USER).status.value

    outcomes = run_concurrently(reschedule, cancel)
    booking = store.bookings[1]

    assert booking.status == BookingStatus.CANCELLED
    if store.writes == ["status"]:
        assert outcomes == ["Cannot reschedule a cancelled booking", "cancelled"]
        assert (booking.start_time, booking.end_time) == (START, END)
        assert events.kinds == ["booking-cancelled"]
    else:
        assert store.writes == ["times", "status"]
        assert outcomes == ["active", "cancelled"]
        assert sorted(events.kinds) == ["booking-cancelled", "booking-rescheduled"]
