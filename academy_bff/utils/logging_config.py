"""
Structured Logging Configuration

JSON log lines carry the request id of the webhook or API call that
produced them, and booking events carry the booking uid as entity_id so
a refund can be traced from cancellation to Stripe.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from contextvars import ContextVar

# Context variable for request tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')

# Record attributes copied into the JSON line when a log call sets them
CONTEXT_FIELDS = (("entity_type", "entity_type"), ("entity_id", "entity_id"), ("extra_data", "data"))

THIRD_PARTY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "stripe")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log aggregators."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        for attr, key in CONTEXT_FIELDS:
            value = getattr(record, attr, None)
            if value is not None:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class StructuredLogger(logging.LoggerAdapter):
    """Booking lifecycle events, logged with the booking uid as entity."""

    def booking_event(self, msg: str, booking_uid: str, **data):
        # Straight to the logger: LoggerAdapter.process would replace this extra
        self.logger.info(msg, extra={"entity_type": "booking", "entity_id": booking_uid, "extra_data": data})

    def booking_status_changed(self, booking_uid: str, old_status: str, new_status: str):
        self.booking_event(
            f"Booking {booking_uid} status changed: {old_status} -> {new_status}",
            booking_uid,
            old_status=old_status,
            new_status=new_status,
        )

    def refund_issued(self, booking_uid: str, refund_id: Optional[str], amount: int,
                      currency: Optional[str], source: str, duplicate: bool = False):
        self.booking_event(
            f"Refund {'already issued' if duplicate else 'issued'} for booking {booking_uid}",
            booking_uid,
            refund_id=refund_id,
            amount=amount,
            currency=currency,
            source=source,
            duplicate=duplicate,
        )

    def free_class_granted(self, booking_uid: str, email: str):
        self.booking_event(f"First free class granted to {email}", booking_uid, email=email)


def setup_logging(level: str = "INFO", json_format: bool = True) -> None:
    """
    Configure application logging. uvicorn's loggers share the same
    handler so access logs come out in the same format.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.propagate = False

    # Reduce noise from third-party loggers
    for logger_name in THIRD_PARTY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for the given module."""
    return StructuredLogger(logging.getLogger(name), {})


def set_request_context(request_id: str):
    request_id_var.set(request_id)


def clear_request_context():
    request_id_var.set('')
