"""
Reconciliation Engine

Builds every booking reconciliation component once, at startup, and hands
the same instances to the webhook routes and the background poller.
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from ..config import Settings
from .booking_cache import BookingSnapshotCache
from .booking_poller import BookingPoller
from .cal_client import CalClient
from .change_detector import ChangeDetector
from .recent_changes import RecentChangesLog
from .refund_outbox import RefundRetryOutbox
from .side_effects import SideEffectDispatcher
from .stores import RelationStore, UserStore
from .stripe_gateway import StripeRefundGateway
from .webhook_handler import CalWebhookHandler

logger = logging.getLogger(__name__)


class ReconciliationEngine:

    def __init__(
        self,
        cal_client: CalClient,
        dispatcher: SideEffectDispatcher,
        webhook_handler: CalWebhookHandler,
        recent_changes: RecentChangesLog,
        poller: BookingPoller,
    ):
        self.cal_client = cal_client
        self.dispatcher = dispatcher
        self.webhook_handler = webhook_handler
        self.recent_changes = recent_changes
        self.poller = poller
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Spawn the polling task. Calling it again returns the running task."""
        if self.is_running:
            return self._task
        self._task = asyncio.create_task(self.poller.run_forever(), name="booking-poller")
        self._task.add_done_callback(self._on_poller_done)
        return self._task

    @staticmethod
    def _on_poller_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.error("Booking poller task exited with an error; restart the process to resume polling")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception:
                # Already logged by the poller
                pass
            self._task = None
        await self.cal_client.aclose()


def build_engine(settings: Settings, session_factory: sessionmaker) -> ReconciliationEngine:
    cal_client = CalClient(
        base_url=settings.cal_base_url,
        api_key=settings.cal_api_key,
        api_version=settings.cal_api_version,
        page_size=settings.cal_bookings_page_size,
        connect_timeout=settings.http_connect_timeout_seconds,
        total_timeout=settings.http_total_timeout_seconds,
    )
    outbox = RefundRetryOutbox(session_factory, max_attempts=settings.refund_retry_max_attempts)
    dispatcher = SideEffectDispatcher(
        relation_store=RelationStore(session_factory),
        refund_gateway=StripeRefundGateway(
            settings.stripe_secret_key,
            timeout=settings.http_total_timeout_seconds,
        ),
        user_store=UserStore(session_factory),
        refund_outbox=outbox,
        free_class_slug=settings.free_class_slug,
    )
    recent_changes = RecentChangesLog(
        capacity=settings.recent_changes_capacity,
        trim_to=settings.recent_changes_trim_to,
    )
    poller = BookingPoller(
        fetch=cal_client.fetch_bookings,
        detector=ChangeDetector(BookingSnapshotCache()),
        recent_changes=recent_changes,
        dispatcher=dispatcher,
        interval=settings.poll_interval_seconds,
        retry_batch_size=settings.refund_retry_batch_size,
    )
    return ReconciliationEngine(
        cal_client=cal_client,
        dispatcher=dispatcher,
        webhook_handler=CalWebhookHandler(dispatcher, settings.free_class_slug),
        recent_changes=recent_changes,
        poller=poller,
    )
