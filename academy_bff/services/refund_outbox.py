"""
Refund Retry Outbox

Refunds the payments provider could not process are stored here and
retried by the booking poller, with:
- one open row per booking uid
- exponential backoff (1, 2, 4, 8 ... minutes, capped at 60)
- FAILED status after max_attempts, for an operator to requeue
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..models.refund_retry import OPEN_STATUSES, RefundRetry, RefundRetryStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DueRefund:
    id: str
    booking_uid: str
    attempts: int


class RefundRetryOutbox:

    def __init__(self, session_factory: sessionmaker, max_attempts: int = 5):
        self.session_factory = session_factory
        self.max_attempts = max_attempts

    def enqueue(self, booking_uid: str, error: str) -> str:
        """Queue a refund for retry. Reuses the open row for the uid if there is one."""
        db: Session = self.session_factory()
        try:
            existing = self._open_row(db, booking_uid)
            if existing:
                existing.last_error = error[:1000]
                db.commit()
                return existing.id

            row = RefundRetry(
                booking_uid=booking_uid,
                open_booking_uid=booking_uid,
                status=RefundRetryStatus.PENDING.value,
                max_attempts=self.max_attempts,
                next_attempt_at=datetime.utcnow(),
                last_error=error[:1000],
            )
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                # Another delivery opened the row between our query and insert
                db.rollback()
                existing = self._open_row(db, booking_uid)
                if not existing:
                    raise
                existing.last_error = error[:1000]
                db.commit()
                logger.info(f"Refund for booking {booking_uid} already queued, reusing open retry")
                return existing.id

            logger.info(f"Refund for booking {booking_uid} queued for retry")
            return row.id
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _open_row(db: Session, booking_uid: str) -> Optional[RefundRetry]:
        return db.query(RefundRetry).filter(
            RefundRetry.booking_uid == booking_uid,
            RefundRetry.status.in_(OPEN_STATUSES)
        ).first()

    def due(self, limit: int = 20, now: Optional[datetime] = None) -> List[DueRefund]:
        """Open rows whose next attempt is due, oldest first."""
        now = now or datetime.utcnow()
        db: Session = self.session_factory()
        try:
            rows = db.query(RefundRetry).filter(
                and_(
                    RefundRetry.status.in_(OPEN_STATUSES),
                    RefundRetry.next_attempt_at <= now,
                    RefundRetry.attempts < RefundRetry.max_attempts
                )
            ).order_by(RefundRetry.next_attempt_at).limit(limit).all()
            return [DueRefund(id=r.id, booking_uid=r.booking_uid, attempts=r.attempts) for r in rows]
        finally:
            db.close()

    def mark_completed(self, booking_uid: str, refund_id: Optional[str] = None) -> int:
        """Close every open row for the uid. Returns how many were closed."""
        db: Session = self.session_factory()
        try:
            rows = db.query(RefundRetry).filter(
                RefundRetry.booking_uid == booking_uid,
                RefundRetry.status.in_(OPEN_STATUSES)
            ).all()
            for row in rows:
                row.status = RefundRetryStatus.COMPLETED.value
                row.open_booking_uid = None
                row.refund_id = refund_id
                row.completed_at = datetime.utcnow()
            db.commit()
            return len(rows)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def record_failure(self, retry_id: str, error: str, permanent: bool = False) -> Optional[str]:
        """
        Count a failed attempt and schedule the next one with exponential
        backoff. Returns the new status, or None if the row is gone.
        """
        db: Session = self.session_factory()
        try:
            row = db.query(RefundRetry).filter(RefundRetry.id == retry_id).first()
            if not row:
                return None

            row.attempts += 1
            row.last_error = error[:1000]

            if permanent or row.attempts >= row.max_attempts:
                row.status = RefundRetryStatus.FAILED.value
                row.open_booking_uid = None
                logger.error(
                    f"Refund for booking {row.booking_uid} permanently failed after "
                    f"{row.attempts} attempts: {error}"
                )
            else:
                row.status = RefundRetryStatus.RETRYING.value
                delay_minutes = min(2 ** (row.attempts - 1), 60)
                row.next_attempt_at = datetime.utcnow() + timedelta(minutes=delay_minutes)
                logger.warning(f"Refund for booking {row.booking_uid} will retry in {delay_minutes} minutes")

            db.commit()
            return row.status
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def pending_count(self) -> int:
        db: Session = self.session_factory()
        try:
            return db.query(RefundRetry).filter(RefundRetry.status.in_(OPEN_STATUSES)).count()
        finally:
            db.close()

    def requeue_failed(self) -> int:
        """
        Give FAILED rows a fresh set of attempts, due immediately. A uid that
        already has an open row keeps that one and its failed rows stay closed.
        """
        db: Session = self.session_factory()
        try:
            open_uids = {
                uid for (uid,) in db.query(RefundRetry.booking_uid).filter(
                    RefundRetry.status.in_(OPEN_STATUSES)
                )
            }
            rows = db.query(RefundRetry).filter(
                RefundRetry.status == RefundRetryStatus.FAILED.value
            ).order_by(RefundRetry.created_at.desc()).all()
            now = datetime.utcnow()
            requeued = 0
            for row in rows:
                if row.booking_uid in open_uids:
                    continue
                open_uids.add(row.booking_uid)
                row.status = RefundRetryStatus.PENDING.value
                row.open_booking_uid = row.booking_uid
                row.attempts = 0
                row.next_attempt_at = now
                requeued += 1
            db.commit()
            return requeued
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
