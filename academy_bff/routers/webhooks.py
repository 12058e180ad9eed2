"""
Cal.com Webhook Router

- POST /webhook                  booking events pushed by Cal.com
- GET  /webhook/healthcheck      liveness probe, literal "OK"
- GET  /webhook/recent-changes   changes detected by the booking poller
"""

import hashlib
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError

from ..schemas.booking import CalWebhookEvent
from ..schemas.response import ResponseAPI
from ..services.recent_changes import RecentChangesLog
from ..services.webhook_handler import CalWebhookHandler
from ..utils.metrics import record_webhook_event
from ..utils.rate_limiter import limiter, RATE_LIMITS
from .dependencies import get_recent_changes, get_webhook_handler, get_webhook_secret

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["Webhooks"])


def validate_webhook_signature(
    body: bytes,
    signature: Optional[str],
    secret: str
) -> tuple[bool, Optional[str]]:
    """
    Check X-Cal-Signature-256 (hex HMAC-SHA256 of the raw body).
    Disabled when no secret is configured.

    Returns: (is_valid, error_message)
    """
    if not secret:
        return True, None

    if not signature:
        return False, "Missing webhook signature"

    expected = hmac.new(
        secret.encode('utf-8'),
        body,
        hashlib.sha256
    ).hexdigest()

    # Compare in constant time
    if not hmac.compare_digest(expected, signature.strip().lower()):
        return False, "Invalid webhook signature"

    return True, None


@router.post("")
@router.post("/")
@limiter.limit(RATE_LIMITS["webhook"])
async def cal_webhook(
    request: Request,
    x_cal_signature_256: Optional[str] = Header(None, alias="X-Cal-Signature-256"),
    handler: CalWebhookHandler = Depends(get_webhook_handler),
    secret: str = Depends(get_webhook_secret),
):
    """
    Receive booking events from Cal.com.

    200: event handled, 406: event received but not processed,
    500: the refund or free-class grant failed.
    """
    body = await request.body()

    is_valid, error = validate_webhook_signature(body, x_cal_signature_256, secret)
    if not is_valid:
        logger.warning(f"Rejected Cal.com webhook: {error}")
        record_webhook_event("unknown", "rejected")
        return JSONResponse(status_code=401, content=ResponseAPI.error(error).model_dump())

    try:
        event = CalWebhookEvent.model_validate_json(body)
    except ValidationError as e:
        logger.warning(f"Malformed Cal.com webhook: {e.error_count()} validation errors")
        record_webhook_event("unknown", "invalid")
        return JSONResponse(
            status_code=422,
            content=ResponseAPI.error("Invalid webhook payload").model_dump()
        )

    logger.info(f"Cal.com webhook {event.trigger_event} for booking {event.booking_uid}")
    outcome = await handler.handle(event)
    return JSONResponse(status_code=outcome.status_code, content=outcome.body.model_dump(mode="json"))


@router.get("/healthcheck")
async def healthcheck():
    return PlainTextResponse("OK")


@router.get("/recent-changes")
async def recent_changes(
    limit: int = Query(100, ge=1, le=1000),
    log: RecentChangesLog = Depends(get_recent_changes),
):
    """Latest booking status changes seen by the poller, oldest first."""
    changes = log.latest(limit)
    return ResponseAPI.ok(
        f"{len(changes)} recent changes",
        [change.model_dump(mode="json") for change in changes],
    )
