"""
Change Detector

Compares a freshly fetched booking list against the snapshot cache and
reports status transitions:
- uid not cached yet: baseline only, no change
- same status: cache refreshed, no change
- different status: BookingChange emitted, cache replaced
Bookings missing from the fetch are left alone (the provider only returns
the most recently updated page).
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, List, Optional

from ..schemas.booking import Booking, BookingChange
from .booking_cache import BookingSnapshotCache

logger = logging.getLogger(__name__)


class ChangeDetector:

    def __init__(self, cache: BookingSnapshotCache):
        self.cache = cache

    def detect(self, bookings: Iterable[Booking], now: Optional[datetime] = None) -> List[BookingChange]:
        """Update the cache with the fetched list and return the transitions, in fetch order."""
        detected_at = now or datetime.now(timezone.utc)
        changes: List[BookingChange] = []

        for booking in bookings:
            cached = self.cache.get(booking.uid)

            if cached is not None and cached.status != booking.status:
                changes.append(BookingChange(
                    uid=booking.uid,
                    old_status=cached.status,
                    new_status=booking.status,
                    detected_at=detected_at,
                ))

            self.cache.upsert(booking.uid, booking)

        return changes

    async def fetch_and_detect(self, fetch: Callable[[], Awaitable[List[Booking]]]) -> List[BookingChange]:
        """
        Fetch the current booking list and run detection on it.

        A failing fetch raises before the cache is touched, so a partial or
        broken response never shifts the baseline.
        """
        bookings = await fetch()
        changes = self.detect(bookings)
        logger.debug(f"Compared {len(bookings)} bookings, {len(changes)} status changes")
        return changes
