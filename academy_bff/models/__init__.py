# Models package
from .user import User
from .cal_stripe_relation import CalStripeRelation
from .refund_retry import RefundRetry, RefundRetryStatus

__all__ = [
    "User",
    "CalStripeRelation",
    "RefundRetry", "RefundRetryStatus",
]
