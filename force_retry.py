"""
Script to move failed refund retries back to pending.
The next polling tick picks them up.
"""
import sys
sys.path.insert(0, '.')

from academy_bff.config import settings
from academy_bff.database import SessionLocal
from academy_bff.services.refund_outbox import RefundRetryOutbox


def main():
    outbox = RefundRetryOutbox(SessionLocal, max_attempts=settings.refund_retry_max_attempts)

    print("=" * 50)
    print("FORCE RETRY FAILED REFUNDS")
    print("=" * 50)

    try:
        count = outbox.requeue_failed()
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(f"\nReset {count} refunds for immediate processing")
    print(f"Open refund retries: {outbox.pending_count()}")


if __name__ == "__main__":
    main()
