"""
Pydantic schemas for the WhatsApp webhook boundary and the bot settings.

Inbound deliveries are validated here and turned into a flat list of
``MessageEvent`` / ``StatusEvent`` values; nothing past this module looks at
raw webhook JSON.

ref: https://developers.facebook.com/docs/whatsapp/cloud-api/webhooks/payload-examples
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

MessageStatus = Literal["pending", "sent", "delivered", "read", "failed"]
Direction = Literal["incoming", "outgoing"]

MEDIA_PLACEHOLDER = "[Media message]"


# ============================================================================
# DOMAIN EVENTS (what the pipeline consumes)
# ============================================================================

class MessageEvent(BaseModel):
    """One inbound customer message."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["message"] = "message"
    channel_message_id: str
    sender: str
    profile_name: Optional[str] = None
    type: str = "text"
    content: str
    timestamp: datetime
    context: dict[str, str] = Field(default_factory=dict)  # reply-to: {"from", "id"}
    media: dict[str, str] = Field(default_factory=dict)    # {"id", "mime_type", "caption"}
    raw_timestamp: str = ""


class StatusEvent(BaseModel):
    """Delivery receipt for a message this account sent."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["status"] = "status"
    channel_message_id: str
    status: Literal["sent", "delivered", "read", "failed"]
    recipient: str = ""
    timestamp: Optional[datetime] = None
    failure_reason: Optional[str] = None


WebhookEvent = Union[MessageEvent, StatusEvent]


# ============================================================================
# WHATSAPP WEBHOOK PAYLOAD (INPUT)
# ============================================================================

class WaContact(BaseModel):
    model_config = ConfigDict(extra="allow")

    wa_id: str
    profile: dict[str, Any] = Field(default_factory=dict)


class WaMessage(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    from_: str = Field(..., alias="from")
    id: str
    timestamp: str
    type: str
    text: Optional[dict[str, Any]] = None
    context: Optional[dict[str, Any]] = None


class WaStatus(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    status: str
    timestamp: str = ""
    recipient_id: str = ""
    errors: list[dict[str, Any]] = Field(default_factory=list)


class WaValue(BaseModel):
    model_config = ConfigDict(extra="allow")

    messaging_product: str = "whatsapp"
    metadata: dict[str, Any] = Field(default_factory=dict)
    contacts: list[dict[str, Any]] = Field(default_factory=list)
    messages: list[dict[str, Any]] = Field(default_factory=list)
    statuses: list[dict[str, Any]] = Field(default_factory=list)


class WaChange(BaseModel):
    model_config = ConfigDict(extra="allow")

    field: str = "messages"
    value: WaValue


class WaEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = ""
    changes: list[WaChange] = Field(default_factory=list)


class WhatsAppWebhookPayload(BaseModel):
    """Full webhook envelope. Individual messages/statuses are validated later,
    one by one, so a single bad item never sinks its siblings."""

    model_config = ConfigDict(extra="allow")

    object: str
    entry: list[WaEntry]


# ============================================================================
# BOT SETTINGS
# ============================================================================

class DaySchedule(BaseModel):
    start: str = "09:00"
    end: str = "17:00"
    enabled: bool = True

    @field_validator("start", "end")
    @classmethod
    def _hhmm(cls, v: str) -> str:
        parts = v.split(":")
        if len(parts) != 2 or not all(p.isdigit() and len(p) == 2 for p in parts):
            raise ValueError("expected HH:MM")
        if int(parts[0]) > 23 or int(parts[1]) > 59:
            raise ValueError("expected HH:MM")
        return v


def _default_schedule() -> dict[str, DaySchedule]:
    weekday = DaySchedule(start="09:00", end="17:00", enabled=True)
    weekend = DaySchedule(start="10:00", end="14:00", enabled=False)
    return {
        day: (weekday if day not in ("saturday", "sunday") else weekend).model_copy()
        for day in WEEKDAYS
    }


class BusinessHours(BaseModel):
    enabled: bool = False
    timezone: str = "America/New_York"
    schedule: dict[str, DaySchedule] = Field(default_factory=_default_schedule)

    @field_validator("schedule")
    @classmethod
    def _weekday_keys(cls, v: dict[str, DaySchedule]) -> dict[str, DaySchedule]:
        unknown = set(v) - set(WEEKDAYS)
        if unknown:
            raise ValueError(f"unknown weekday(s): {', '.join(sorted(unknown))}")
        return v


class AutoReplyTemplates(BaseModel):
    new_customer_message: str = (
        "👋 Hello! Thank you for contacting us. We're here to help you. "
        "Someone from our team will get back to you shortly."
    )
    returning_customer_message: str = "Hello again! Thanks for reaching out. How can we assist you today?"
    after_hours_message: str = (
        "🌙 Thanks for your message! We're currently outside business hours. "
        "We'll respond as soon as possible during our next business day."
    )
    fallback_message: str = "Thank you for your message. We've received it and will respond soon."


class BotSettings(BaseModel):
    is_active: bool = True
    business_hours: BusinessHours = Field(default_factory=BusinessHours)
    auto_reply: AutoReplyTemplates = Field(default_factory=AutoReplyTemplates)
    webhook_url: str = ""
    verify_token: str = "default_verify_token"
    access_token: str = ""
    phone_number_id: str = ""
    updated_at: Optional[datetime] = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.access_token and self.phone_number_id)

    def public_dict(self) -> dict:
        """Settings as JSON, with the access token masked."""
        d = self.model_dump(mode="json")
        if d.get("access_token"):
            d["access_token"] = "***" + d["access_token"][-4:]
        return d


class BotSettingsUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""

    model_config = ConfigDict(extra="forbid")

    is_active: Optional[bool] = None
    business_hours: Optional[BusinessHours] = None
    auto_reply: Optional[AutoReplyTemplates] = None
    webhook_url: Optional[str] = None
    verify_token: Optional[str] = None
    access_token: Optional[str] = None
    phone_number_id: Optional[str] = None


# ============================================================================
# PARSING
# ============================================================================

class MalformedPayload(Exception):
    """The delivery is not a WhatsApp webhook envelope."""
    pass


def _epoch(ts: str) -> datetime:
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


def _message_event(raw: dict[str, Any], names: dict[str, str]) -> MessageEvent:
    msg = WaMessage.model_validate(raw)
    media: dict[str, str] = {}
    if msg.type == "text":
        content = str((msg.text or {}).get("body") or "")
    else:
        body = raw.get(msg.type)
        if isinstance(body, dict):
            media = {k: str(v) for k, v in body.items() if k in ("id", "mime_type", "caption", "filename")}
        content = media.get("caption") or MEDIA_PLACEHOLDER
    context = {k: str(v) for k, v in (msg.context or {}).items() if k in ("from", "id")}
    return MessageEvent(
        channel_message_id=msg.id,
        sender=msg.from_,
        profile_name=names.get(msg.from_),
        type=msg.type,
        content=content,
        timestamp=_epoch(msg.timestamp),
        context=context,
        media=media,
        raw_timestamp=msg.timestamp,
    )


def _status_event(raw: dict[str, Any]) -> StatusEvent:
    st = WaStatus.model_validate(raw)
    reason = None
    if st.errors:
        first = st.errors[0]
        reason = str(first.get("title") or first.get("message") or first.get("code") or "")
    return StatusEvent(
        channel_message_id=st.id,
        status=st.status,
        recipient=st.recipient_id,
        timestamp=_epoch(st.timestamp) if st.timestamp else None,
        failure_reason=reason or None,
    )


def parse_webhook(payload: Any) -> tuple[list[WebhookEvent], list[str]]:
    """
    Flatten a webhook delivery into events.

    Returns:
        (events, problems): problems holds one line per message/status item
        that failed validation and was skipped.

    Raises:
        MalformedPayload: the envelope itself is unusable
    """
    try:
        envelope = WhatsAppWebhookPayload.model_validate(payload)
    except ValidationError as e:
        raise MalformedPayload(f"invalid envelope: {e.error_count()} error(s)") from e

    events: list[WebhookEvent] = []
    problems: list[str] = []
    for entry in envelope.entry:
        for change in entry.changes:
            if change.field != "messages":
                continue
            names: dict[str, str] = {}
            for c in change.value.contacts:
                try:
                    contact = WaContact.model_validate(c)
                except ValidationError:
                    continue
                name = contact.profile.get("name")
                if name:
                    names[contact.wa_id] = str(name)
            for raw in change.value.messages:
                try:
                    events.append(_message_event(raw, names))
                except (ValidationError, ValueError, TypeError, OverflowError) as e:
                    problems.append(f"message {raw.get('id', '?')}: {e}")
            for raw in change.value.statuses:
                try:
                    events.append(_status_event(raw))
                except (ValidationError, ValueError, TypeError, OverflowError) as e:
                    problems.append(f"status {raw.get('id', '?')}: {e}")
    return events, problems
