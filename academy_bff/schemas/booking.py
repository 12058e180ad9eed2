"""
Booking Schemas

Pydantic models for Cal.com bookings and webhook deliveries, plus the
value objects produced by the reconciliation core.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class BookingStatus(str, Enum):
    ACCEPTED = "accepted"
    PENDING = "pending"
    CANCELLED = "cancelled"
    REJECTED = "rejected"

    @classmethod
    def parse(cls, value: Any) -> "BookingStatus":
        """Cal.com sends UPPERCASE in webhooks and lowercase in REST responses"""
        if isinstance(value, cls):
            return value
        if value is None or value == "":
            return cls.PENDING
        normalized = str(value).strip().lower()
        if normalized == "canceled":
            normalized = "cancelled"
        return cls(normalized)


class WebhookTrigger(str, Enum):
    """Trigger events Cal.com can deliver to a webhook subscriber"""
    BOOKING_CREATED = "BOOKING_CREATED"
    BOOKING_RESCHEDULED = "BOOKING_RESCHEDULED"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
    BOOKING_REQUESTED = "BOOKING_REQUESTED"
    BOOKING_REJECTED = "BOOKING_REJECTED"
    BOOKING_PAYMENT_INITIATED = "BOOKING_PAYMENT_INITIATED"
    BOOKING_PAID = "BOOKING_PAID"
    BOOKING_NO_SHOW_UPDATED = "BOOKING_NO_SHOW_UPDATED"
    MEETING_STARTED = "MEETING_STARTED"
    MEETING_ENDED = "MEETING_ENDED"
    RECORDING_READY = "RECORDING_READY"
    INSTANT_MEETING = "INSTANT_MEETING"
    FORM_SUBMITTED = "FORM_SUBMITTED"
    OOO_CREATED = "OOO_CREATED"
    PING = "PING"


class Attendee(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = ""
    email: str
    time_zone: Optional[str] = Field(None, validation_alias=AliasChoices("timeZone", "time_zone"))


class EventTypeRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    slug: Optional[str] = None
    title: Optional[str] = None


class Booking(BaseModel):
    """
    One reservation as reported by Cal.com.

    Field names differ between webhook payloads (startTime, type) and the
    v2 REST API (start, eventType.slug); both spellings are accepted.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    uid: str
    booking_id: Optional[int] = Field(None, validation_alias=AliasChoices("bookingId", "id", "booking_id"))
    title: Optional[str] = None
    start_time: Optional[str] = Field(None, validation_alias=AliasChoices("startTime", "start", "start_time"))
    end_time: Optional[str] = Field(None, validation_alias=AliasChoices("endTime", "end", "end_time"))
    attendees: List[Attendee] = Field(default_factory=list)
    status: BookingStatus = BookingStatus.PENDING
    event_type_id: Optional[int] = Field(None, validation_alias=AliasChoices("eventTypeId", "event_type_id"))
    event_type_slug: Optional[str] = Field(
        None, validation_alias=AliasChoices("eventTypeSlug", "type", "event_type_slug")
    )
    event_type: Optional[EventTypeRef] = Field(None, validation_alias=AliasChoices("eventType", "event_type"))
    metadata: Optional[Dict[str, Any]] = None
    cancellation_reason: Optional[str] = Field(
        None, validation_alias=AliasChoices("cancellationReason", "cancellation_reason")
    )

    @field_validator('status', mode='before')
    @classmethod
    def normalize_status(cls, v):
        return BookingStatus.parse(v)

    @field_validator('metadata', mode='before')
    @classmethod
    def empty_metadata(cls, v):
        # Cal.com sends [] instead of {} for bookings without metadata
        if v is None or v == []:
            return None
        return v

    @model_validator(mode='after')
    def resolve_event_type_slug(self):
        if not self.event_type_slug and self.event_type and self.event_type.slug:
            self.event_type_slug = self.event_type.slug
        if self.event_type_id is None and self.event_type and self.event_type.id is not None:
            self.event_type_id = self.event_type.id
        return self

    @property
    def owner(self) -> Optional[Attendee]:
        """First attendee is the student who owns the booking"""
        return self.attendees[0] if self.attendees else None


class WebhookBookingPayload(Booking):
    """Booking payload of a webhook delivery; some triggers omit the uid."""
    uid: Optional[str] = None


class CalWebhookEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    trigger_event: str = Field(..., validation_alias=AliasChoices("triggerEvent", "trigger_event"))
    created_at: Optional[str] = Field(None, validation_alias=AliasChoices("createdAt", "created_at"))
    # Kept raw until the trigger is known to be one we act on
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('payload', mode='before')
    @classmethod
    def null_payload(cls, v):
        return {} if v is None else v

    @property
    def trigger(self) -> Optional[WebhookTrigger]:
        """Known trigger or None when Cal.com sends something we do not model"""
        try:
            return WebhookTrigger(self.trigger_event.strip().upper())
        except ValueError:
            return None

    @property
    def booking_uid(self) -> Optional[str]:
        uid = self.payload.get("uid")
        return str(uid) if uid else None

    @property
    def event_type_slug(self) -> Optional[str]:
        """Slug under any of the spellings Cal.com uses, without validating the rest"""
        event_type = self.payload.get("eventType")
        nested = event_type.get("slug") if isinstance(event_type, dict) else None
        return self.payload.get("type") or self.payload.get("eventTypeSlug") or nested

    def booking(self) -> WebhookBookingPayload:
        """Validate the payload as a booking. Raises pydantic.ValidationError."""
        return WebhookBookingPayload.model_validate(self.payload)


class BookingChange(BaseModel):
    """A status transition detected by polling. Never a no-op."""
    model_config = ConfigDict(frozen=True)

    uid: str
    old_status: BookingStatus
    new_status: BookingStatus
    detected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode='after')
    def reject_noop(self):
        if self.old_status == self.new_status:
            raise ValueError(f"Booking {self.uid} did not change status ({self.old_status.value})")
        return self

    @property
    def is_cancellation(self) -> bool:
        return self.new_status == BookingStatus.CANCELLED


class RefundResult(BaseModel):
    """Outcome of a refund request against the payments provider"""
    id: Optional[str] = None
    amount: int = 0
    currency: Optional[str] = None
    status: str
    created: Optional[int] = None
    # True when the provider reported the payment as already refunded
    duplicate: bool = False


class UserRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: Optional[str] = None
    first_free_class: bool = False
