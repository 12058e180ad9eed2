"""
Refund Retry Outbox Model

Durable record of refunds that the payments provider could not process.
The booking poller drains due rows on every tick, so a refund that failed
during a webhook delivery is retried even though the poller's snapshot
cache will never report the same cancellation again.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Integer, Index, UniqueConstraint
from ..database import Base
import enum


class RefundRetryStatus(str, enum.Enum):
    PENDING = "pending"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"  # max_attempts exhausted, needs an operator


OPEN_STATUSES = (RefundRetryStatus.PENDING.value, RefundRetryStatus.RETRYING.value)


class RefundRetry(Base):
    __tablename__ = "refund_retries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_uid = Column(String(255), nullable=False)
    # Set while the row is open, NULL once closed; the unique constraint
    # keeps concurrent enqueues from opening a second row for the uid
    open_booking_uid = Column(String(255), nullable=True)
    status = Column(String(20), default=RefundRetryStatus.PENDING.value, nullable=False)

    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=5, nullable=False)
    next_attempt_at = Column(DateTime, default=datetime.utcnow)
    last_error = Column(Text, nullable=True)

    refund_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("open_booking_uid", name="uq_refund_retry_open_booking"),
        Index("ix_refund_retry_booking", "booking_uid", "status"),
        Index("ix_refund_retry_due", "status", "next_attempt_at"),
    )

    def __repr__(self):
        return f"<RefundRetry {self.booking_uid} status={self.status} attempts={self.attempts}>"
