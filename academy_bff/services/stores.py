"""
Collaborator stores backed by SQLAlchemy.

Each call opens its own short-lived session from the factory, so the
stores are safe to share between webhook requests and the poller.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session, sessionmaker

from ..models.cal_stripe_relation import CalStripeRelation
from ..models.user import User
from ..schemas.booking import UserRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentRelation:
    booking_uid: str
    stripe_id: str


class RelationStore:
    """Booking uid -> Stripe PaymentIntent id used to pay for it."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_relation(self, booking_uid: str) -> Optional[PaymentRelation]:
        db: Session = self.session_factory()
        try:
            row = db.query(CalStripeRelation).filter(
                CalStripeRelation.booking_uid == booking_uid
            ).first()
            if not row:
                return None
            return PaymentRelation(booking_uid=row.booking_uid, stripe_id=row.stripe_id)
        finally:
            db.close()

    def save_relation(self, booking_uid: str, stripe_id: str) -> PaymentRelation:
        """Insert-once: an existing relation for the uid is kept as is."""
        db: Session = self.session_factory()
        try:
            row = db.query(CalStripeRelation).filter(
                CalStripeRelation.booking_uid == booking_uid
            ).first()
            if row:
                if row.stripe_id != stripe_id:
                    logger.warning(
                        f"Relation for booking {booking_uid} already points to {row.stripe_id}, "
                        f"ignoring {stripe_id}"
                    )
                return PaymentRelation(booking_uid=row.booking_uid, stripe_id=row.stripe_id)

            db.add(CalStripeRelation(booking_uid=booking_uid, stripe_id=stripe_id))
            db.commit()
            return PaymentRelation(booking_uid=booking_uid, stripe_id=stripe_id)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class UserStore:

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def find_user_by_email(self, email: str) -> Optional[UserRecord]:
        if not email:
            return None
        db: Session = self.session_factory()
        try:
            user = db.query(User).filter(
                func.lower(User.email) == email.strip().lower()
            ).first()
            return UserRecord.model_validate(user) if user else None
        finally:
            db.close()

    def set_first_free_class(self, email: str, value: bool = True) -> int:
        """
        Targeted single-column update. Only first_free_class is written so a
        concurrent profile edit is never overwritten. Returns affected rows.
        """
        db: Session = self.session_factory()
        try:
            result = db.execute(
                update(User)
                .where(func.lower(User.email) == email.strip().lower())
                .values(first_free_class=value)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
