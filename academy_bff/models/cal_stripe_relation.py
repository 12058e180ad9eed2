"""
Booking -> payment relation.

Written once when a paid booking is created (outside this core) and read by
the cancellation path to find the PaymentIntent to refund.
"""

from datetime import datetime
from sqlalchemy import Column, String, DateTime
from ..database import Base


class CalStripeRelation(Base):
    __tablename__ = "cal_stripe_relations"

    booking_uid = Column(String(255), primary_key=True)
    stripe_id = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<CalStripeRelation {self.booking_uid} -> {self.stripe_id}>"
