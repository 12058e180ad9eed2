"""
Cal.com Webhook Handler

Stateless classification of a webhook delivery into a side effect:
- BOOKING_CANCELLED -> refund (200, or 500 on failure)
- BOOKING_CREATED of the free class -> grant first_free_class (200 / 500)
- anything else -> 406 "received but not processed", so Cal.com keeps
  reporting deliveries we deliberately ignore

Safe to call concurrently and repeatedly for the same uid.
"""

import logging
from dataclasses import dataclass

from pydantic import ValidationError

from ..schemas.booking import CalWebhookEvent, WebhookBookingPayload, WebhookTrigger
from ..schemas.response import ResponseAPI
from ..utils.metrics import record_webhook_event
from .errors import InvalidStateError, ReconciliationError
from .side_effects import SideEffectDispatcher

logger = logging.getLogger(__name__)


@dataclass
class WebhookOutcome:
    status_code: int
    body: ResponseAPI


class CalWebhookHandler:

    def __init__(self, dispatcher: SideEffectDispatcher, free_class_slug: str = "free-class"):
        self.dispatcher = dispatcher
        self.free_class_slug = free_class_slug

    async def handle(self, event: CalWebhookEvent) -> WebhookOutcome:
        trigger = event.trigger
        uid = event.booking_uid
        event_type = trigger.value if trigger else "unknown"

        try:
            if trigger == WebhookTrigger.BOOKING_CANCELLED:
                if not uid:
                    raise InvalidStateError("Booking cancelled webhook without a booking uid")
                refund = await self.dispatcher.handle_cancellation(uid, source="webhook")
                outcome = WebhookOutcome(200, ResponseAPI.ok(
                    "Booking cancelled and refunded successfully",
                    refund.model_dump(),
                ))

            elif trigger == WebhookTrigger.BOOKING_CREATED and event.event_type_slug == self.free_class_slug:
                booking = self._booking(event)
                user = await self.dispatcher.handle_free_class_created(
                    booking.uid, booking.attendees, booking.event_type_slug
                )
                outcome = WebhookOutcome(200, ResponseAPI.ok(
                    "First free class registered successfully",
                    user.model_dump() if user else None,
                ))

            else:
                logger.info(f"Webhook {event.trigger_event} for booking {uid} received but not processed")
                record_webhook_event(event_type, "ignored")
                return WebhookOutcome(406, ResponseAPI.error("Webhook received but not processed"))

        except ReconciliationError as e:
            logger.error(f"Webhook {event.trigger_event} for booking {uid} failed: {e.message}")
            record_webhook_event(event_type, "error")
            return WebhookOutcome(500, ResponseAPI.error(e.message))

        record_webhook_event(event_type, "processed")
        return outcome

    @staticmethod
    def _booking(event: CalWebhookEvent) -> WebhookBookingPayload:
        try:
            return event.booking()
        except ValidationError as e:
            raise InvalidStateError(
                f"Invalid booking payload in {event.trigger_event} webhook: {e.error_count()} validation errors"
            ) from e
