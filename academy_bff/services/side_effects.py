"""
Side-Effect Dispatcher

The single entry point for the two actions a booking event can trigger:
- refund the payment of a cancelled booking
- grant the first-free-class entitlement when a free class is booked

Both the webhook handler and the booking poller call into the same
instance, possibly concurrently and for the same uid. The dispatcher does
not deduplicate: a second refund for an already-refunded PaymentIntent
comes back from the gateway as a duplicate RefundResult.
"""

import asyncio
import logging
import re
from typing import List, Optional

from ..schemas.booking import Attendee, RefundResult, UserRecord
from ..utils.logging_config import get_logger
from ..utils import metrics
from .errors import (
    GatewayError,
    InvalidPaymentIntentId,
    InvalidStateError,
    NotFoundError,
    RelationNotFound,
    UserNotFound,
)
from .refund_outbox import RefundRetryOutbox
from .stores import RelationStore, UserStore
from .stripe_gateway import StripeRefundGateway

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)

PAYMENT_INTENT_ID_RE = re.compile(r"^pi_[A-Za-z0-9_]+$")


class SideEffectDispatcher:

    def __init__(
        self,
        relation_store: RelationStore,
        refund_gateway: StripeRefundGateway,
        user_store: UserStore,
        refund_outbox: Optional[RefundRetryOutbox] = None,
        free_class_slug: str = "free-class",
    ):
        self.relation_store = relation_store
        self.refund_gateway = refund_gateway
        self.user_store = user_store
        self.refund_outbox = refund_outbox
        self.free_class_slug = free_class_slug

    async def _payment_intent_for(self, uid: str) -> str:
        relation = await asyncio.to_thread(self.relation_store.get_relation, uid)
        if relation is None:
            raise RelationNotFound(uid)
        stripe_id = (relation.stripe_id or "").strip()
        if not PAYMENT_INTENT_ID_RE.match(stripe_id):
            raise InvalidPaymentIntentId(uid, relation.stripe_id)
        return stripe_id

    async def handle_cancellation(self, uid: str, source: str = "webhook") -> RefundResult:
        """
        Refund the payment attached to a cancelled booking.

        Raises RelationNotFound, InvalidPaymentIntentId or GatewayError.
        A retryable gateway failure is also queued in the refund outbox
        before being raised.
        """
        try:
            payment_intent_id = await self._payment_intent_for(uid)
            refund = await self.refund_gateway.create_refund(payment_intent_id)
        except GatewayError as e:
            metrics.record_refund(source, "error")
            logger.error(f"Refund for booking {uid} failed ({source}): {e.message}")
            if e.retryable and self.refund_outbox is not None:
                await asyncio.to_thread(self.refund_outbox.enqueue, uid, e.message)
            raise
        except (NotFoundError, InvalidStateError) as e:
            metrics.record_refund(source, "error")
            logger.error(f"Cannot refund booking {uid} ({source}): {e.message}")
            raise

        await self._refund_succeeded(uid, refund, source)
        return refund

    async def _refund_succeeded(self, uid: str, refund: RefundResult, source: str) -> None:
        metrics.record_refund(source, "duplicate" if refund.duplicate else "success")
        structured_logger.refund_issued(
            uid, refund.id, refund.amount, refund.currency, source, duplicate=refund.duplicate
        )
        if self.refund_outbox is not None:
            await asyncio.to_thread(self.refund_outbox.mark_completed, uid, refund.id)

    async def handle_free_class_created(
        self,
        uid: Optional[str],
        attendees: List[Attendee],
        event_type_slug: Optional[str],
    ) -> Optional[UserRecord]:
        """
        Set first_free_class on the user who booked a free class.

        Returns the updated user, or None when the event type is not the
        free class. Raises UserNotFound when no user matches the first
        attendee's email.
        """
        if event_type_slug != self.free_class_slug:
            return None

        email = attendees[0].email if attendees else None
        user = await asyncio.to_thread(self.user_store.find_user_by_email, email) if email else None
        if user is None:
            metrics.free_class_grants_total.inc(status="error")
            logger.error(f"Free class booking {uid}: no user found with email {email}")
            raise UserNotFound(email)

        updated = await asyncio.to_thread(self.user_store.set_first_free_class, user.email, True)
        if not updated:
            # Row deleted between lookup and update
            metrics.free_class_grants_total.inc(status="error")
            logger.error(f"Free class booking {uid}: user {user.email} disappeared before the grant")
            raise UserNotFound(user.email)

        metrics.free_class_grants_total.inc(status="success")
        structured_logger.free_class_granted(uid or "", user.email)
        return user.model_copy(update={"first_free_class": True})

    async def retry_pending_refunds(self, limit: int = 20) -> int:
        """
        Re-attempt refunds queued in the outbox. Failures are recorded on
        the outbox row rather than queued again. Returns how many refunds
        went through.
        """
        if self.refund_outbox is None:
            return 0

        due = await asyncio.to_thread(self.refund_outbox.due, limit)
        succeeded = 0
        for item in due:
            try:
                payment_intent_id = await self._payment_intent_for(item.booking_uid)
                refund = await self.refund_gateway.create_refund(payment_intent_id)
            except GatewayError as e:
                metrics.record_refund("retry", "error")
                await asyncio.to_thread(
                    self.refund_outbox.record_failure, item.id, e.message, not e.retryable
                )
                continue
            except (NotFoundError, InvalidStateError) as e:
                metrics.record_refund("retry", "error")
                await asyncio.to_thread(self.refund_outbox.record_failure, item.id, e.message, True)
                continue

            await self._refund_succeeded(item.booking_uid, refund, "retry")
            succeeded += 1

        if due:
            logger.info(f"Refund retries: {succeeded}/{len(due)} succeeded")
        return succeeded
