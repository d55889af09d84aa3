"""In-process mutual exclusion around the conflict check and the booking write."""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class RoomLocks:
    """One lock per room; bookings for different rooms never wait on each other.

    Only serializes writers inside this process. A deployment with several
    workers needs a database-level exclusion constraint instead.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}

    def _lock_for(self, room_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(room_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[room_id] = lock
            return lock

    @contextmanager
    def hold(self, room_id: int) -> Iterator[None]:
        with self._lock_for(room_id):
            yield
