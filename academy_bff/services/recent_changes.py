import threading
from typing import List, Sequence

from ..schemas.booking import BookingChange


class RecentChangesLog:
    """
    Bounded, insertion-ordered log of detected booking changes.

    Once the log grows past ``capacity`` the oldest entries are dropped
    until ``trim_to`` remain. The lock is held only for in-memory list
    operations; readers get a copy.
    """

    def __init__(self, capacity: int = 1000, trim_to: int = 500):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        if not 0 <= trim_to <= capacity:
            raise ValueError("trim_to must be between 0 and capacity")
        self.capacity = capacity
        self.trim_to = trim_to
        self._changes: List[BookingChange] = []
        self._lock = threading.Lock()

    def extend(self, changes: Sequence[BookingChange]) -> int:
        """Append a batch. Returns how many old entries were evicted."""
        if not changes:
            return 0
        with self._lock:
            self._changes.extend(changes)
            if len(self._changes) <= self.capacity:
                return 0
            evicted = len(self._changes) - self.trim_to
            del self._changes[:evicted]
            return evicted

    def snapshot(self) -> List[BookingChange]:
        with self._lock:
            return list(self._changes)

    def latest(self, limit: int) -> List[BookingChange]:
        """Newest ``limit`` changes, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            return list(self._changes[-limit:])

    def __len__(self) -> int:
        with self._lock:
            return len(self._changes)
