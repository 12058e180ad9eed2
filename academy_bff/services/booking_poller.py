"""
Booking Poller

Background reconciliation loop:
    Idle -> Fetching -> Detecting -> Dispatching -> Idle

Every interval the full booking list is fetched from Cal.com and compared
with the snapshot cache. Detected changes go to the recent changes log and
cancellations are refunded through the dispatcher. After the batch, due
refunds from the retry outbox are re-attempted.

The loop is the only writer of the snapshot cache and never runs two
cycles at once.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, List

from ..schemas.booking import Booking, BookingChange
from ..utils.logging_config import get_logger
from ..utils import metrics
from .change_detector import ChangeDetector
from .errors import FetchFailure, ReconciliationError
from .recent_changes import RecentChangesLog
from .side_effects import SideEffectDispatcher

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)


class BookingPoller:

    def __init__(
        self,
        fetch: Callable[[], Awaitable[List[Booking]]],
        detector: ChangeDetector,
        recent_changes: RecentChangesLog,
        dispatcher: SideEffectDispatcher,
        interval: float = 60,
        retry_batch_size: int = 20,
    ):
        self.fetch = fetch
        self.detector = detector
        self.recent_changes = recent_changes
        self.dispatcher = dispatcher
        self.interval = interval
        self.retry_batch_size = retry_batch_size
        self.cycles = 0
        self.last_cycle_status = None

    async def run_cycle(self) -> List[BookingChange]:
        """One fetch/detect/dispatch pass. Returns the changes detected."""
        start = time.monotonic()
        try:
            changes = await self.detector.fetch_and_detect(self.fetch)
        except FetchFailure as e:
            logger.warning(f"Booking poll skipped: {e.message}")
            await self._finish_cycle("fetch_failed", start)
            return []

        if changes:
            evicted = self.recent_changes.extend(changes)
            if evicted:
                logger.debug(f"Recent changes log trimmed by {evicted} entries")

        for change in changes:
            metrics.booking_changes_total.inc(new_status=change.new_status.value)
            if not change.is_cancellation:
                structured_logger.booking_status_changed(
                    change.uid, change.old_status.value, change.new_status.value
                )
                continue
            try:
                await self.dispatcher.handle_cancellation(change.uid, source="poll")
            except ReconciliationError as e:
                logger.error(f"Cancellation of booking {change.uid} not refunded: {e.message}")
            except Exception:
                logger.exception(f"Unexpected error dispatching cancellation of booking {change.uid}")

        try:
            await self.dispatcher.retry_pending_refunds(self.retry_batch_size)
        except Exception:
            logger.exception("Refund retry pass failed")

        await self._finish_cycle("success", start)
        return changes

    async def _finish_cycle(self, status: str, start: float) -> None:
        self.cycles += 1
        self.last_cycle_status = status
        metrics.record_poll_cycle(status, time.monotonic() - start)
        metrics.booking_cache_size.set(len(self.detector.cache))
        metrics.recent_changes_size.set(len(self.recent_changes))
        outbox = self.dispatcher.refund_outbox
        if outbox is not None:
            try:
                metrics.refund_retry_queue_size.set(await asyncio.to_thread(outbox.pending_count))
            except Exception:
                logger.exception("Could not read refund retry queue size")

    async def run_forever(self) -> None:
        """
        Run cycles until cancelled. The first tick is consumed without a
        cycle, so the first fetch happens one interval after startup.
        """
        logger.info(f"Booking poller started (interval: {self.interval}s)")
        try:
            while True:
                await asyncio.sleep(self.interval)
                await self.run_cycle()
        except asyncio.CancelledError:
            logger.info("Booking poller stopped")
            raise
        except Exception:
            logger.exception("Booking poller terminated unexpectedly, background reconciliation is down")
            raise
