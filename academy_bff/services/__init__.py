# Services package
from .errors import (
    ReconciliationError,
    FetchFailure,
    NotFoundError,
    RelationNotFound,
    UserNotFound,
    InvalidStateError,
    InvalidPaymentIntentId,
    GatewayError,
)
from .booking_cache import BookingSnapshotCache
from .change_detector import ChangeDetector
from .recent_changes import RecentChangesLog
from .cal_client import CalClient, CalResponse
from .stripe_gateway import StripeRefundGateway
from .stores import PaymentRelation, RelationStore, UserStore
from .refund_outbox import RefundRetryOutbox, DueRefund
from .side_effects import SideEffectDispatcher
from .webhook_handler import CalWebhookHandler, WebhookOutcome
from .booking_poller import BookingPoller
from .reconciliation import ReconciliationEngine, build_engine

__all__ = [
    "ReconciliationError", "FetchFailure", "NotFoundError", "RelationNotFound",
    "UserNotFound", "InvalidStateError", "InvalidPaymentIntentId", "GatewayError",
    "BookingSnapshotCache", "ChangeDetector", "RecentChangesLog",
    "CalClient", "CalResponse", "StripeRefundGateway",
    "PaymentRelation", "RelationStore", "UserStore",
    "RefundRetryOutbox", "DueRefund",
    "SideEffectDispatcher", "CalWebhookHandler", "WebhookOutcome",
    "BookingPoller", "ReconciliationEngine", "build_engine",
]
