"""
Error taxonomy for WhatsApp webhook ingestion.

Only WebhookError subclasses are surfaced to the provider as non-200
responses. Everything that goes wrong after a delivery has been verified
and normalized is recorded as an EventOutcome and acknowledged with 200.
"""

from enum import Enum

from fastapi import status


class WebhookError(Exception):
    """Base class for failures that reject a webhook delivery."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: str = "bad request"
    result: str = "error"

    def __init__(self, reason: str = ""):
        super().__init__(reason or self.detail)
        self.reason = reason or self.detail


class SignatureInvalid(WebhookError):
    """X-Hub-Signature-256 is missing, malformed or does not match the body."""

    status_code = status.HTTP_403_FORBIDDEN
    detail = "forbidden"
    result = "invalid_signature"


class MalformedPayload(WebhookError):
    """Body is not JSON or is not a whatsapp_business_account envelope."""

    status_code = status.HTTP_400_BAD_REQUEST
    detail = "bad format"
    result = "bad_format"


class PersistenceFailure(Exception):
    """A database write for a single event failed."""


class EventOutcome(str, Enum):
    """Per-event processing outcome, used for logs and metrics."""

    CREATED = "created"
    DUPLICATE = "duplicate"
    UNKNOWN_PARTNER = "unknown_partner"
    STATUS_UPDATED = "status_updated"
    STATUS_UNCHANGED = "status_unchanged"
    STATUS_IGNORED = "status_ignored"
    MESSAGE_NOT_FOUND = "message_not_found"
    PARTNER_UPDATED = "partner_updated"
    PERSISTENCE_FAILURE = "persistence_failure"
