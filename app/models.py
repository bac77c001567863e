"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from enum import Enum

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Integer, String, Text

from app.storage import Base


class MessageType(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    DOCUMENT = "DOCUMENT"
    AUDIO = "AUDIO"
    VIDEO = "VIDEO"
    STICKER = "STICKER"
    LOCATION = "LOCATION"
    CONTACTS = "CONTACTS"
    INTERACTIVE = "INTERACTIVE"
    BUTTON = "BUTTON"
    REACTION = "REACTION"
    TEMPLATE = "TEMPLATE"
    UNKNOWN = "UNKNOWN"


class MessageStatus(str, Enum):
    RECEIVED = "RECEIVED"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    READ = "READ"
    FAILED = "FAILED"


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class Partner(Base):
    """
    Thrift-store partner owning a WhatsApp business number.

    Managed elsewhere in the marketplace; the webhook path only reads it
    (and flips the API flags on business status updates).
    """
    __tablename__ = "partners"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    whatsapp_phone_number_id = Column(String, unique=True, index=True, nullable=True)
    whatsapp_number = Column(String, nullable=True)
    whatsapp_api_enabled = Column(Boolean, nullable=False, default=False)
    whatsapp_business_verified = Column(Boolean, nullable=False, default=False)


class WhatsAppMessage(Base):
    """
    A WhatsApp message seen by the webhook.

    Table: whatsapp_messages
    Unique: message_id (provider-assigned, ensures idempotency)
    """
    __tablename__ = "whatsapp_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(String, unique=True, index=True, nullable=False)
    partner_id = Column(String, ForeignKey("partners.id"), nullable=False, index=True)
    from_number = Column(String, nullable=False, index=True)
    to_number = Column(String, nullable=True)
    direction = Column(String, nullable=False, default=Direction.INBOUND.value)
    message_type = Column(String, nullable=False)
    text_content = Column(Text, nullable=True)
    media_id = Column(String, nullable=True)
    caption = Column(Text, nullable=True)
    file_name = Column(String, nullable=True)
    content = Column(JSON, nullable=True)  # type-specific payload as delivered
    contact_name = Column(String, nullable=True)
    status = Column(String, nullable=False, index=True)
    error_code = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    timestamp = Column(String, nullable=False, index=True)  # ISO-8601 UTC string
    created_at = Column(String, nullable=False)  # Server time ISO-8601
    updated_at = Column(String, nullable=False)


class WebhookLog(Base):
    """Raw copy of every accepted webhook delivery, for diagnostics."""
    __tablename__ = "whatsapp_webhook_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    webhook_type = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)
    processed = Column(Boolean, nullable=False, default=False)
    error = Column(Text, nullable=True)
    created_at = Column(String, nullable=False)
