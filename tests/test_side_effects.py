"""
Tests for the Side-Effect Dispatcher

Tests cover:
- Refund of a booking with a stored PaymentIntent
- Missing relation / malformed PaymentIntent id
- Two refunds for the same booking (no local dedup)
- Retryable gateway failures queued in the refund outbox
- First free class granted without touching other profile fields
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


def refund(**overrides):
    from academy_bff.schemas.booking import RefundResult
    data = dict(id="re_123", amount=4500, currency="eur", status="succeeded", created=1767225600)
    data.update(overrides)
    return RefundResult(**data)


def make_dispatcher(session_factory, gateway=None, with_outbox=True):
    from academy_bff.services.refund_outbox import RefundRetryOutbox
    from academy_bff.services.side_effects import SideEffectDispatcher
    from academy_bff.services.stores import RelationStore, UserStore

    if gateway is None:
        gateway = MagicMock()
        gateway.create_refund = AsyncMock(return_value=refund())
    outbox = RefundRetryOutbox(session_factory, max_attempts=3) if with_outbox else None
    return SideEffectDispatcher(
        relation_store=RelationStore(session_factory),
        refund_gateway=gateway,
        user_store=UserStore(session_factory),
        refund_outbox=outbox,
    )


class TestHandleCancellation:

    def test_refunds_stored_payment_intent(self, session_factory):
        from academy_bff.services.stores import RelationStore

        RelationStore(session_factory).save_relation("booking-123", "pi_abc")
        dispatcher = make_dispatcher(session_factory)

        result = asyncio.run(dispatcher.handle_cancellation("booking-123"))

        assert result.amount > 0
        assert result.status == "succeeded"
        dispatcher.refund_gateway.create_refund.assert_awaited_once_with("pi_abc")

    def test_missing_relation(self, session_factory):
        from academy_bff.services.errors import RelationNotFound

        dispatcher = make_dispatcher(session_factory)

        with pytest.raises(RelationNotFound) as exc:
            asyncio.run(dispatcher.handle_cancellation("booking-999"))

        assert "booking-999" in exc.value.message
        dispatcher.refund_gateway.create_refund.assert_not_awaited()
        assert dispatcher.refund_outbox.pending_count() == 0

    def test_malformed_payment_intent(self, session_factory):
        from academy_bff.services.errors import InvalidPaymentIntentId
        from academy_bff.services.stores import RelationStore

        RelationStore(session_factory).save_relation("booking-123", "ch_not_an_intent")
        dispatcher = make_dispatcher(session_factory)

        with pytest.raises(InvalidPaymentIntentId):
            asyncio.run(dispatcher.handle_cancellation("booking-123"))

        dispatcher.refund_gateway.create_refund.assert_not_awaited()

    def test_second_call_reaches_gateway_again(self, session_factory):
        from academy_bff.schemas.booking import RefundResult
        from academy_bff.services.stores import RelationStore

        RelationStore(session_factory).save_relation("booking-123", "pi_abc")
        gateway = MagicMock()
        gateway.create_refund = AsyncMock(side_effect=[
            refund(),
            RefundResult(status="already_refunded", duplicate=True),
        ])
        dispatcher = make_dispatcher(session_factory, gateway)

        first = asyncio.run(dispatcher.handle_cancellation("booking-123"))
        second = asyncio.run(dispatcher.handle_cancellation("booking-123", source="poll"))

        assert gateway.create_refund.await_count == 2
        assert isinstance(first, RefundResult) and first.duplicate is False
        assert isinstance(second, RefundResult) and second.duplicate is True

    def test_retryable_gateway_error_is_queued(self, session_factory):
        from academy_bff.services.errors import GatewayError
        from academy_bff.services.stores import RelationStore

        RelationStore(session_factory).save_relation("booking-123", "pi_abc")
        gateway = MagicMock()
        gateway.create_refund = AsyncMock(side_effect=GatewayError("Stripe unavailable", retryable=True))
        dispatcher = make_dispatcher(session_factory, gateway)

        with pytest.raises(GatewayError):
            asyncio.run(dispatcher.handle_cancellation("booking-123"))
        with pytest.raises(GatewayError):
            asyncio.run(dispatcher.handle_cancellation("booking-123"))

        # One open row per booking
        assert dispatcher.refund_outbox.pending_count() == 1

    def test_rejected_refund_not_queued(self, session_factory):
        from academy_bff.services.errors import GatewayError
        from academy_bff.services.stores import RelationStore

        RelationStore(session_factory).save_relation("booking-123", "pi_abc")
        gateway = MagicMock()
        gateway.create_refund = AsyncMock(side_effect=GatewayError("Stripe rejected refund", retryable=False))
        dispatcher = make_dispatcher(session_factory, gateway)

        with pytest.raises(GatewayError):
            asyncio.run(dispatcher.handle_cancellation("booking-123"))

        assert dispatcher.refund_outbox.pending_count() == 0

    def test_works_without_outbox(self, session_factory):
        from academy_bff.services.stores import RelationStore

        RelationStore(session_factory).save_relation("booking-123", "pi_abc")
        dispatcher = make_dispatcher(session_factory, with_outbox=False)

        assert asyncio.run(dispatcher.handle_cancellation("booking-123")).id == "re_123"


class TestRetryPendingRefunds:

    def test_due_refund_completed(self, session_factory):
        from academy_bff.models.refund_retry import RefundRetry
        from academy_bff.services.stores import RelationStore

        RelationStore(session_factory).save_relation("booking-123", "pi_abc")
        dispatcher = make_dispatcher(session_factory)
        dispatcher.refund_outbox.enqueue("booking-123", "timeout")

        succeeded = asyncio.run(dispatcher.retry_pending_refunds())

        assert succeeded == 1
        assert dispatcher.refund_outbox.pending_count() == 0
        db = session_factory()
        try:
            row = db.query(RefundRetry).one()
            assert row.status == "completed"
            assert row.refund_id == "re_123"
        finally:
            db.close()

    def test_failure_recorded_not_requeued(self, session_factory):
        from academy_bff.models.refund_retry import RefundRetry
        from academy_bff.services.errors import GatewayError
        from academy_bff.services.stores import RelationStore

        RelationStore(session_factory).save_relation("booking-123", "pi_abc")
        gateway = MagicMock()
        gateway.create_refund = AsyncMock(side_effect=GatewayError("Stripe unavailable", retryable=True))
        dispatcher = make_dispatcher(session_factory, gateway)
        dispatcher.refund_outbox.enqueue("booking-123", "timeout")

        assert asyncio.run(dispatcher.retry_pending_refunds()) == 0

        db = session_factory()
        try:
            rows = db.query(RefundRetry).all()
            assert len(rows) == 1
            assert rows[0].status == "retrying"
            assert rows[0].attempts == 1
        finally:
            db.close()

    def test_missing_relation_fails_permanently(self, session_factory):
        from academy_bff.models.refund_retry import RefundRetry

        dispatcher = make_dispatcher(session_factory)
        dispatcher.refund_outbox.enqueue("booking-999", "timeout")

        asyncio.run(dispatcher.retry_pending_refunds())

        db = session_factory()
        try:
            assert db.query(RefundRetry).one().status == "failed"
        finally:
            db.close()


class TestHandleFreeClassCreated:

    def test_sets_flag_and_nothing_else(self, session_factory, add_user):
        from academy_bff.models.user import User
        from academy_bff.schemas.booking import Attendee

        user_id = add_user("alice@example.com", name="Alice", role="student")
        db = session_factory()
        try:
            before = db.query(User).filter(User.id == user_id).one()
            snapshot = (before.email, before.name, before.role, before.created_at)
        finally:
            db.close()
        dispatcher = make_dispatcher(session_factory)

        result = asyncio.run(dispatcher.handle_free_class_created(
            "booking-1",
            [Attendee(name="Alice", email="alice@example.com")],
            "free-class",
        ))

        assert result.first_free_class is True
        db = session_factory()
        try:
            after = db.query(User).filter(User.id == user_id).one()
            assert after.first_free_class is True
            assert (after.email, after.name, after.role, after.created_at) == snapshot
        finally:
            db.close()

    def test_already_granted_is_noop(self, session_factory, add_user):
        from academy_bff.schemas.booking import Attendee

        add_user("alice@example.com", first_free_class=True)
        dispatcher = make_dispatcher(session_factory)

        result = asyncio.run(dispatcher.handle_free_class_created(
            "booking-1", [Attendee(email="alice@example.com")], "free-class"
        ))

        assert result.first_free_class is True

    def test_email_match_is_case_insensitive(self, session_factory, add_user):
        from academy_bff.schemas.booking import Attendee

        add_user("alice@example.com")
        dispatcher = make_dispatcher(session_factory)

        result = asyncio.run(dispatcher.handle_free_class_created(
            "booking-1", [Attendee(email="Alice@Example.com")], "free-class"
        ))

        assert result.email == "alice@example.com"

    def test_unknown_user(self, session_factory):
        from academy_bff.schemas.booking import Attendee
        from academy_bff.services.errors import UserNotFound

        dispatcher = make_dispatcher(session_factory)

        with pytest.raises(UserNotFound):
            asyncio.run(dispatcher.handle_free_class_created(
                "booking-1", [Attendee(email="ghost@example.com")], "free-class"
            ))

    def test_user_deleted_before_grant(self):
        from academy_bff.schemas.booking import Attendee, UserRecord
        from academy_bff.services.errors import UserNotFound
        from academy_bff.services.side_effects import SideEffectDispatcher

        user_store = MagicMock()
        user_store.find_user_by_email.return_value = UserRecord(
            id="u-1", email="alice@example.com", name="Alice", first_free_class=False
        )
        user_store.set_first_free_class.return_value = 0
        dispatcher = SideEffectDispatcher(
            relation_store=MagicMock(), refund_gateway=MagicMock(), user_store=user_store
        )

        with pytest.raises(UserNotFound):
            asyncio.run(dispatcher.handle_free_class_created(
                "booking-1", [Attendee(email="alice@example.com")], "free-class"
            ))
        user_store.set_first_free_class.assert_called_once_with("alice@example.com", True)

    def test_no_attendees(self, session_factory):
        from academy_bff.services.errors import UserNotFound

        dispatcher = make_dispatcher(session_factory)

        with pytest.raises(UserNotFound):
            asyncio.run(dispatcher.handle_free_class_created("booking-1", [], "free-class"))

    def test_other_event_type_ignored(self, session_factory, add_user):
        from academy_bff.schemas.booking import Attendee
        from academy_bff.services.stores import UserStore

        add_user("alice@example.com")
        dispatcher = make_dispatcher(session_factory)

        result = asyncio.run(dispatcher.handle_free_class_created(
            "booking-1", [Attendee(email="alice@example.com")], "group-class"
        ))

        assert result is None
        assert UserStore(session_factory).find_user_by_email("alice@example.com").first_free_class is False
