"""
Tests for the Cal.com webhook routes

Tests cover:
- 200 on handled cancellations and free-class bookings
- 406 on triggers this service does not act on
- 500 with the error envelope on dispatcher failures
- 401 on a bad X-Cal-Signature-256 when a secret is configured
- /webhook/healthcheck literal and /webhook/recent-changes
"""

import hashlib
import hmac
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from academy_bff.main import app
from academy_bff.routers.dependencies import get_recent_changes, get_webhook_handler, get_webhook_secret


def cancelled_event(uid="booking-123"):
    return {
        "triggerEvent": "BOOKING_CANCELLED",
        "createdAt": "2026-03-01T09:00:00Z",
        "payload": {
            "uid": uid,
            "bookingId": 12,
            "eventTypeId": 7,
            "type": "private-class",
            "title": "Private class",
            "startTime": "2026-03-02T10:00:00Z",
            "endTime": "2026-03-02T11:00:00Z",
            "attendees": [{"name": "Alice", "email": "alice@example.com", "timeZone": "UTC"}],
            "metadata": {},
            "status": "CANCELLED",
            "cancellationReason": "Cannot attend",
        },
    }


def free_class_event(slug="free-class"):
    event = cancelled_event()
    event["triggerEvent"] = "BOOKING_CREATED"
    event["payload"]["type"] = slug
    event["payload"]["status"] = "ACCEPTED"
    return event


class TestWebhookRoute:

    @pytest.fixture
    def dispatcher(self):
        from academy_bff.schemas.booking import RefundResult, UserRecord

        dispatcher = MagicMock()
        dispatcher.handle_cancellation = AsyncMock(return_value=RefundResult(
            id="re_123", amount=4500, currency="eur", status="succeeded", created=1767225600
        ))
        dispatcher.handle_free_class_created = AsyncMock(return_value=UserRecord(
            id="u-1", email="alice@example.com", name="Alice", first_free_class=True
        ))
        return dispatcher

    @pytest.fixture
    def client(self, dispatcher):
        from academy_bff.services.webhook_handler import CalWebhookHandler

        app.dependency_overrides[get_webhook_handler] = lambda: CalWebhookHandler(dispatcher)
        app.dependency_overrides[get_webhook_secret] = lambda: ""
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_cancellation_refunded(self, client, dispatcher):
        response = client.post("/webhook", json=cancelled_event())

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["id"] == "re_123"
        dispatcher.handle_cancellation.assert_awaited_once_with("booking-123", source="webhook")

    def test_free_class_granted(self, client, dispatcher):
        response = client.post("/webhook", json=free_class_event())

        assert response.status_code == 200
        assert response.json()["data"]["first_free_class"] is True
        args = dispatcher.handle_free_class_created.await_args.args
        assert args[0] == "booking-123"
        assert args[1][0].email == "alice@example.com"
        assert args[2] == "free-class"

    def test_created_other_event_type_not_processed(self, client, dispatcher):
        response = client.post("/webhook", json=free_class_event(slug="group-class"))

        assert response.status_code == 406
        dispatcher.handle_free_class_created.assert_not_awaited()

    def test_unhandled_trigger_returns_406(self, client, dispatcher):
        event = cancelled_event()
        event["triggerEvent"] = "MEETING_STARTED"

        response = client.post("/webhook", json=event)

        assert response.status_code == 406
        assert response.json() == {
            "success": False,
            "message": "Webhook received but not processed",
            "data": None,
        }
        dispatcher.handle_cancellation.assert_not_awaited()

    def test_unknown_trigger_returns_406(self, client):
        response = client.post("/webhook", json={"triggerEvent": "BRAND_NEW_EVENT", "payload": {}})

        assert response.status_code == 406

    def test_dispatcher_error_returns_500(self, client, dispatcher):
        from academy_bff.services.errors import RelationNotFound

        dispatcher.handle_cancellation.side_effect = RelationNotFound("booking-999")

        response = client.post("/webhook", json=cancelled_event("booking-999"))

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "No payment relation found for booking booking-999"

    def test_cancellation_without_uid_returns_500(self, client, dispatcher):
        event = cancelled_event()
        del event["payload"]["uid"]

        response = client.post("/webhook", json=event)

        assert response.status_code == 500
        dispatcher.handle_cancellation.assert_not_awaited()

    def test_same_event_twice(self, client, dispatcher):
        first = client.post("/webhook", json=cancelled_event())
        second = client.post("/webhook", json=cancelled_event())

        assert first.status_code == second.status_code == 200
        assert dispatcher.handle_cancellation.await_count == 2

    @pytest.mark.parametrize("event", [
        {"triggerEvent": "INSTANT_MEETING", "payload": {"uid": "b-1", "status": "AWAITING_HOST"}},
        {"triggerEvent": "MEETING_ENDED", "payload": {"uid": "b-1", "attendees": [{"name": "Guest"}]}},
        {"triggerEvent": "BOOKING_CREATED", "payload": {"uid": "b-1", "type": "group-class", "status": "WEIRD"}},
    ])
    def test_unhandled_trigger_with_unmodelled_payload_returns_406(self, client, dispatcher, event):
        response = client.post("/webhook", json=event)

        assert response.status_code == 406
        dispatcher.handle_cancellation.assert_not_awaited()
        dispatcher.handle_free_class_created.assert_not_awaited()

    def test_cancellation_with_unmodelled_fields_still_refunded(self, client, dispatcher):
        event = cancelled_event()
        event["payload"]["status"] = "AWAITING_HOST"
        event["payload"]["attendees"] = [{"name": "Guest"}]

        response = client.post("/webhook", json=event)

        assert response.status_code == 200
        dispatcher.handle_cancellation.assert_awaited_once_with("booking-123", source="webhook")

    def test_free_class_with_invalid_booking_returns_500(self, client, dispatcher):
        event = free_class_event()
        event["payload"]["attendees"] = [{"name": "No email"}]

        response = client.post("/webhook", json=event)

        assert response.status_code == 500
        assert response.json()["success"] is False
        dispatcher.handle_free_class_created.assert_not_awaited()

    def test_malformed_body_rejected(self, client):
        response = client.post("/webhook", content=b"not json", headers={"Content-Type": "application/json"})

        assert response.status_code == 422


class TestWebhookSignature:

    SECRET = "whsec_test"

    @pytest.fixture
    def dispatcher(self):
        from academy_bff.schemas.booking import RefundResult

        dispatcher = MagicMock()
        dispatcher.handle_cancellation = AsyncMock(return_value=RefundResult(status="succeeded", amount=100))
        return dispatcher

    @pytest.fixture
    def client(self, dispatcher):
        from academy_bff.services.webhook_handler import CalWebhookHandler

        app.dependency_overrides[get_webhook_handler] = lambda: CalWebhookHandler(dispatcher)
        app.dependency_overrides[get_webhook_secret] = lambda: self.SECRET
        yield TestClient(app)
        app.dependency_overrides.clear()

    def sign(self, body: bytes) -> str:
        return hmac.new(self.SECRET.encode("utf-8"), body, hashlib.sha256).hexdigest()

    def test_valid_signature_accepted(self, client):
        body = json.dumps(cancelled_event()).encode()

        response = client.post(
            "/webhook",
            content=body,
            headers={"Content-Type": "application/json", "X-Cal-Signature-256": self.sign(body)},
        )

        assert response.status_code == 200

    def test_invalid_signature_rejected(self, client, dispatcher):
        body = json.dumps(cancelled_event()).encode()

        response = client.post(
            "/webhook",
            content=body,
            headers={"Content-Type": "application/json", "X-Cal-Signature-256": "0" * 64},
        )

        assert response.status_code == 401
        dispatcher.handle_cancellation.assert_not_awaited()

    def test_missing_signature_rejected(self, client):
        response = client.post("/webhook", json=cancelled_event())

        assert response.status_code == 401


class TestDiagnosticRoutes:

    @pytest.fixture
    def client(self):
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_healthcheck_literal(self, client):
        response = client.get("/webhook/healthcheck")

        assert response.status_code == 200
        assert response.text == "OK"

    def test_recent_changes(self, client):
        from academy_bff.schemas.booking import BookingChange
        from academy_bff.services.recent_changes import RecentChangesLog

        log = RecentChangesLog()
        log.extend([
            BookingChange(uid="b-1", old_status="accepted", new_status="cancelled"),
            BookingChange(uid="b-2", old_status="pending", new_status="accepted"),
        ])
        app.dependency_overrides[get_recent_changes] = lambda: log

        response = client.get("/webhook/recent-changes", params={"limit": 1})

        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data) == 1
        assert data[0]["uid"] == "b-2"
        assert data[0]["new_status"] == "accepted"

    def test_recent_changes_limit_bounds(self, client):
        from academy_bff.services.recent_changes import RecentChangesLog

        app.dependency_overrides[get_recent_changes] = lambda: RecentChangesLog()

        assert client.get("/webhook/recent-changes", params={"limit": 0}).status_code == 422
        assert client.get("/webhook/recent-changes", params={"limit": 1001}).status_code == 422

    def test_engine_missing_returns_503(self, client):
        response = client.get("/webhook/recent-changes")

        assert response.status_code == 503

    def test_metrics_exposed(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "# TYPE booking_poll_cycles_total counter" in response.text
