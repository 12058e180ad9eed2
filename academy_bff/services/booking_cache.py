from typing import Dict, Iterator, Optional

from ..schemas.booking import Booking


class BookingSnapshotCache:
    """
    Last known state of every booking seen by the poller, keyed by uid.

    Not thread-safe on its own: only the booking poller touches it, one
    cycle at a time. Entries are never deleted, so a cancelled booking stays
    cancelled here and re-polling does not report it again.
    """

    def __init__(self):
        self._bookings: Dict[str, Booking] = {}

    def get(self, uid: str) -> Optional[Booking]:
        return self._bookings.get(uid)

    def upsert(self, uid: str, booking: Booking) -> None:
        self._bookings[uid] = booking

    def __contains__(self, uid: str) -> bool:
        return uid in self._bookings

    def __len__(self) -> int:
        return len(self._bookings)

    def __iter__(self) -> Iterator[str]:
        return iter(self._bookings)
