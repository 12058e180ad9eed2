"""
Stripe refund gateway.

Contract relied upon by the dispatcher: refunding a PaymentIntent that is
already fully refunded is rejected by Stripe with ``charge_already_refunded``.
That rejection is reported as a duplicate RefundResult instead of an error,
so the webhook and the poller can both trigger a refund for the same
booking without either side failing.
"""

import asyncio
import logging
from typing import Optional

import stripe

from ..schemas.booking import RefundResult
from .errors import GatewayError

logger = logging.getLogger(__name__)

DUPLICATE_REFUND_CODES = {"charge_already_refunded"}

RETRYABLE_ERRORS = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)


class StripeRefundGateway:

    def __init__(self, api_key: str, timeout: float = 60):
        self.api_key = api_key
        self.timeout = timeout
        self.client: Optional[stripe.StripeClient] = None
        if api_key:
            # The HTTP timeout ends the worker thread, wait_for only frees the caller
            self.client = stripe.StripeClient(
                api_key,
                http_client=stripe.RequestsClient(timeout=timeout),
                max_network_retries=0,
            )

    def _create(self, payment_intent_id: str):
        return self.client.v1.refunds.create(params={"payment_intent": payment_intent_id})

    async def create_refund(self, payment_intent_id: str) -> RefundResult:
        if self.client is None:
            raise GatewayError("Stripe is not configured (STRIPE_SECRET_KEY missing)")

        try:
            refund = await asyncio.wait_for(
                asyncio.to_thread(self._create, payment_intent_id),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise GatewayError(
                f"Timed out refunding {payment_intent_id} after {self.timeout}s",
                code="timeout",
                retryable=True,
            ) from e
        except stripe.InvalidRequestError as e:
            code: Optional[str] = getattr(e, "code", None)
            if code in DUPLICATE_REFUND_CODES:
                logger.info(f"PaymentIntent {payment_intent_id} was already refunded")
                return RefundResult(status="already_refunded", duplicate=True)
            raise GatewayError(f"Stripe rejected refund: {e.user_message or e}", code=code) from e
        except RETRYABLE_ERRORS as e:
            raise GatewayError(
                f"Stripe unavailable: {e.user_message or e}",
                code=getattr(e, "code", None),
                retryable=True,
            ) from e
        except stripe.StripeError as e:
            raise GatewayError(f"Stripe error: {e.user_message or e}", code=getattr(e, "code", None)) from e

        return RefundResult(
            id=refund.id,
            amount=refund.amount,
            currency=refund.currency,
            status=refund.status,
            created=refund.created,
        )
