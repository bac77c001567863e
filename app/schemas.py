"""
Pydantic schemas for request/response validation.

This module contains:
- WhatsApp Cloud API envelope models (what the provider posts)
- Normalized webhook events (what the rest of the service consumes)
- Response models for API responses
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# WhatsApp Cloud API Envelope Models
# =============================================================================

class WebhookMetadata(BaseModel):
    """Business number the change was delivered for."""
    model_config = ConfigDict(extra="allow")

    display_phone_number: Optional[str] = None
    phone_number_id: Optional[str] = None


class ChangeValue(BaseModel):
    """
    `value` of a `messages` or echo change.

    Items are kept as raw dicts here and validated one by one during
    normalization, so a single defective item does not sink the batch.
    """
    model_config = ConfigDict(extra="allow")

    messaging_product: Optional[str] = None
    metadata: WebhookMetadata = Field(default_factory=WebhookMetadata)
    contacts: list[dict[str, Any]] = Field(default_factory=list)
    messages: list[dict[str, Any]] = Field(default_factory=list)
    statuses: list[dict[str, Any]] = Field(default_factory=list)
    message_echoes: list[dict[str, Any]] = Field(default_factory=list)


class WebhookChange(BaseModel):
    model_config = ConfigDict(extra="allow")

    field: str = "messages"
    value: dict[str, Any] = Field(default_factory=dict)


class WebhookEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    changes: list[WebhookChange] = Field(default_factory=list)


class WebhookEnvelope(BaseModel):
    """
    Top-level WhatsApp Cloud API webhook body.

    Example:
        {"object": "whatsapp_business_account",
         "entry": [{"id": "...", "changes": [{"field": "messages", "value": {...}}]}]}
    """
    model_config = ConfigDict(extra="allow")

    object: str
    entry: list[WebhookEntry] = Field(default_factory=list)


class InboundMessageItem(BaseModel):
    """One item of `value.messages[]`."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(..., min_length=1)
    from_number: str = Field(..., alias="from", min_length=1)
    timestamp: Optional[Union[str, int]] = None
    type: str = "unknown"


class EchoMessageItem(BaseModel):
    """One item of an echo change: a message the business sent from another app."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(..., min_length=1)
    from_number: Optional[str] = Field(None, alias="from")
    to: str = Field(..., min_length=1)
    timestamp: Optional[Union[str, int]] = None
    type: str = "unknown"


class StatusItem(BaseModel):
    """One item of `value.statuses[]`."""
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    status: str
    timestamp: Optional[Union[str, int]] = None
    recipient_id: Optional[str] = None
    errors: list[dict[str, Any]] = Field(default_factory=list)


# =============================================================================
# Normalized Webhook Events
# =============================================================================

class MessageEvent(BaseModel):
    """A message received on, or echoed from, one of the partners' business numbers."""
    kind: Literal["message"] = "message"
    direction: Literal["inbound", "outbound"] = "inbound"
    phone_number_id: Optional[str] = None
    display_phone_number: Optional[str] = None
    from_number: str
    to_number: Optional[str] = None  # set for outbound echoes
    message_id: str
    timestamp: str  # ISO-8601 UTC
    type: str
    content: dict[str, Any] = Field(default_factory=dict)
    contact_name: Optional[str] = None


class StatusEvent(BaseModel):
    """Delivery status of a message previously seen by the provider."""
    kind: Literal["status"] = "status"
    phone_number_id: Optional[str] = None
    message_id: str
    status: str
    timestamp: str  # ISO-8601 UTC
    recipient_id: Optional[str] = None
    errors: list[dict[str, Any]] = Field(default_factory=list)


class BusinessStatusEvent(BaseModel):
    """Account-level status change for a business number."""
    kind: Literal["business_status"] = "business_status"
    phone_number_id: Optional[str] = None
    event: str


WebhookEvent = Annotated[
    Union[MessageEvent, StatusEvent, BusinessStatusEvent],
    Field(discriminator="kind"),
]


# =============================================================================
# Pydantic Response Models
# =============================================================================

class WebhookResponse(BaseModel):
    """Response model for an acknowledged webhook delivery."""
    status: str = Field(default="ok", description="Operation status")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


class MessageResponse(BaseModel):
    """A stored WhatsApp message as returned by the read endpoints."""
    message_id: str
    partner_id: str
    from_number: str
    to_number: Optional[str] = None
    direction: str
    message_type: str
    text_content: Optional[str] = None
    media_id: Optional[str] = None
    caption: Optional[str] = None
    file_name: Optional[str] = None
    contact_name: Optional[str] = None
    status: str
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: str

    model_config = ConfigDict(from_attributes=True)


class ConversationResponse(BaseModel):
    """Chronological conversation history for a partner."""
    data: list[MessageResponse] = Field(default_factory=list)
    count: int = Field(..., ge=0)


class SearchResponse(BaseModel):
    """
    Paginated search results.

    total counts every message matching the filters, ignoring limit/offset.
    """
    data: list[MessageResponse] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1, le=100)
    offset: int = Field(..., ge=0)


class GroupCount(BaseModel):
    key: str
    count: int = Field(..., ge=0)


class AnalyticsResponse(BaseModel):
    """Message counts for a partner, overall and grouped."""
    total_messages: int = Field(..., ge=0)
    by_type: list[GroupCount] = Field(default_factory=list)
    by_status: list[GroupCount] = Field(default_factory=list)
    by_direction: list[GroupCount] = Field(default_factory=list)
