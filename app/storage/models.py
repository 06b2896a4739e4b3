from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, Text, JSON,
    UniqueConstraint, Index,
)
from sqlalchemy.types import TypeDecorator
from datetime import datetime, timezone
from uuid import uuid4
from .db import Base


def _now():
    return datetime.now(timezone.utc)

def _new_id():
    return uuid4().hex


class UTCDateTime(TypeDecorator):
    """Stored as UTC; SQLite drops tzinfo, so it is re-attached on load."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Customer(Base):
    __tablename__ = "customers"
    id = Column(String(32), primary_key=True, default=_new_id)
    phone_number = Column(String(32), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_new = Column(Boolean, nullable=False, default=True)
    status = Column(String(16), nullable=False, default="active")  # active/blocked/archived
    first_message_at = Column(UTCDateTime())
    last_message_at = Column(UTCDateTime())
    message_count = Column(Integer, nullable=False, default=0)
    meta = Column("metadata", JSON, nullable=False, default=dict)  # profile_name, tags, language
    created_at = Column(UTCDateTime(), default=_now)
    updated_at = Column(UTCDateTime(), default=_now, onupdate=_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "phone_number": self.phone_number,
            "name": self.name,
            "is_new": self.is_new,
            "status": self.status,
            "first_message_at": self.first_message_at,
            "last_message_at": self.last_message_at,
            "message_count": self.message_count,
            "metadata": dict(self.meta or {}),
        }


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        # one record per platform id and direction -> idempotent redelivery
        UniqueConstraint("channel_message_id", "direction", name="uq_messages_channel_dir"),
        Index("ix_messages_customer_ts", "customer_id", "timestamp"),
    )
    id = Column(String(32), primary_key=True, default=_new_id)
    customer_id = Column(String(32), ForeignKey("customers.id"), nullable=False)
    channel_message_id = Column(String(255), nullable=False, index=True)
    direction = Column(String(16), nullable=False)  # incoming | outgoing
    type = Column(String(32), nullable=False, default="text")
    content = Column(Text, nullable=False, default="")
    status = Column(String(16), nullable=False, default="pending")  # pending/sent/delivered/read/failed
    is_auto_reply = Column(Boolean, nullable=False, default=False)
    timestamp = Column(UTCDateTime(), nullable=False, default=_now)
    meta = Column("metadata", JSON, nullable=False, default=dict)  # whatsapp_timestamp, context, failure_reason
    created_at = Column(UTCDateTime(), default=_now)
    updated_at = Column(UTCDateTime(), default=_now, onupdate=_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "channel_message_id": self.channel_message_id,
            "direction": self.direction,
            "type": self.type,
            "content": self.content,
            "status": self.status,
            "is_auto_reply": self.is_auto_reply,
            "timestamp": self.timestamp,
            "metadata": dict(self.meta or {}),
        }


class BotSettingsRecord(Base):
    __tablename__ = "bot_settings"
    id = Column(String(32), primary_key=True, default="default")
    is_active = Column(Boolean, nullable=False, default=True)
    business_hours = Column(JSON, nullable=False)
    auto_reply = Column(JSON, nullable=False)
    webhook_url = Column(String(512), default="")
    verify_token = Column(String(255), default="")
    access_token = Column(Text, default="")
    phone_number_id = Column(String(64), default="")
    created_at = Column(UTCDateTime(), default=_now)
    updated_at = Column(UTCDateTime(), default=_now, onupdate=_now)
