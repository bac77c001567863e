"""
Partner resolution and idempotent persistence of normalized webhook events.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from app.errors import EventOutcome, PersistenceFailure
from app.metrics import record_event_outcome
from app.models import Direction, MessageStatus, MessageType
from app.schemas import BusinessStatusEvent, MessageEvent, StatusEvent, WebhookEvent
from app.storage import (
    create_message,
    get_message_by_id,
    get_partner_by_phone_number_id,
    set_partner_whatsapp_status,
    update_message_status,
)

logger = logging.getLogger(__name__)


MESSAGE_TYPES = {
    "text": MessageType.TEXT,
    "image": MessageType.IMAGE,
    "document": MessageType.DOCUMENT,
    "audio": MessageType.AUDIO,
    "video": MessageType.VIDEO,
    "sticker": MessageType.STICKER,
    "location": MessageType.LOCATION,
    "contacts": MessageType.CONTACTS,
    "interactive": MessageType.INTERACTIVE,
    "button": MessageType.BUTTON,
    "reaction": MessageType.REACTION,
    "template": MessageType.TEMPLATE,
}

MEDIA_TYPES = {"image", "document", "audio", "video", "sticker"}

PROVIDER_STATUSES = {
    "sent": MessageStatus.SENT,
    "delivered": MessageStatus.DELIVERED,
    "read": MessageStatus.READ,
    "failed": MessageStatus.FAILED,
}

# Statuses only move forward; FAILED is terminal
STATUS_RANK = {
    MessageStatus.RECEIVED.value: 0,
    MessageStatus.SENT.value: 1,
    MessageStatus.DELIVERED.value: 2,
    MessageStatus.READ.value: 3,
    MessageStatus.FAILED.value: 4,
}

ACTIVE_BUSINESS_EVENTS = {"APPROVED", "CONNECTED"}


@dataclass
class DeliveryResult:
    """Outcomes of every event in one webhook delivery."""
    outcomes: list[tuple[str, EventOutcome]] = field(default_factory=list)

    def add(self, event: WebhookEvent, outcome: EventOutcome) -> None:
        self.outcomes.append((event.kind, outcome))
        record_event_outcome(event.kind, outcome.value)

    def counts(self) -> dict[str, int]:
        return dict(Counter(outcome.value for _, outcome in self.outcomes))

    @property
    def has_failures(self) -> bool:
        return any(outcome is EventOutcome.PERSISTENCE_FAILURE for _, outcome in self.outcomes)


class PartnerResolver:
    """
    Maps a phone_number_id to its partner.

    Misses resolve to None, the unknown-partner sentinel. Results are
    memoised per instance, so create one per delivery.
    """

    def __init__(self, db: Session):
        self.db = db
        self._cache: dict[str, Optional[str]] = {}

    def resolve(self, phone_number_id: Optional[str]) -> Optional[str]:
        """Partner id owning phone_number_id, or None when unknown."""
        if not phone_number_id:
            return None
        if phone_number_id not in self._cache:
            partner = get_partner_by_phone_number_id(self.db, phone_number_id)
            if partner is None:
                logger.warning(f"No partner found for phone number ID: {phone_number_id}")
            self._cache[phone_number_id] = partner.id if partner else None
        return self._cache[phone_number_id]


def _text_content(message_type: str, content: dict) -> Optional[str]:
    if message_type == "text":
        return content.get("body")
    if message_type == "button":
        return content.get("text")
    if message_type == "reaction":
        return content.get("emoji")
    if message_type == "interactive":
        reply = content.get("button_reply") or content.get("list_reply") or {}
        return reply.get("title") if isinstance(reply, dict) else None
    return None


def persist_message(db: Session, resolver: PartnerResolver, event: MessageEvent) -> EventOutcome:
    """
    Store a message once, keyed on its provider message id.

    Inbound messages start as RECEIVED. Echoes of messages the business sent
    from another app are stored as outbound and already DELIVERED.
    Messages for numbers no partner owns are not stored.
    """
    partner_id = resolver.resolve(event.phone_number_id)
    if partner_id is None:
        logger.warning(
            f"Dropping message {event.message_id}: unknown partner for "
            f"phone_number_id={event.phone_number_id}"
        )
        return EventOutcome.UNKNOWN_PARTNER

    content = event.content
    is_media = event.type in MEDIA_TYPES
    if event.direction == Direction.OUTBOUND.value:
        direction, status = Direction.OUTBOUND, MessageStatus.DELIVERED
        to_number = event.to_number
    else:
        direction, status = Direction.INBOUND, MessageStatus.RECEIVED
        to_number = event.display_phone_number

    is_duplicate = create_message(
        db=db,
        message_id=event.message_id,
        partner_id=partner_id,
        from_number=event.from_number,
        to_number=to_number,
        direction=direction.value,
        message_type=MESSAGE_TYPES.get(event.type, MessageType.UNKNOWN).value,
        status=status.value,
        timestamp=event.timestamp,
        text_content=_text_content(event.type, content),
        media_id=content.get("id") if is_media else None,
        caption=content.get("caption") if is_media else None,
        file_name=content.get("filename") if event.type == "document" else None,
        content=content,
        contact_name=event.contact_name,
    )
    return EventOutcome.DUPLICATE if is_duplicate else EventOutcome.CREATED


def persist_status(db: Session, resolver: PartnerResolver, event: StatusEvent) -> EventOutcome:
    """
    Apply a delivery status to a stored message.

    The message is looked up within the partner owning the reporting number,
    so one partner's statuses never touch another partner's messages.
    Unknown provider statuses and unknown message ids are logged no-ops;
    a status never moves backwards.
    """
    new_status = PROVIDER_STATUSES.get(event.status.lower())
    if new_status is None:
        logger.info(f"Ignoring unknown status {event.status!r} for message {event.message_id}")
        return EventOutcome.STATUS_IGNORED

    partner_id = None
    if event.phone_number_id:
        partner_id = resolver.resolve(event.phone_number_id)
        if partner_id is None:
            logger.warning(
                f"Dropping status for {event.message_id}: unknown partner for "
                f"phone_number_id={event.phone_number_id}"
            )
            return EventOutcome.UNKNOWN_PARTNER

    message = get_message_by_id(db, event.message_id, partner_id=partner_id)
    if message is None:
        logger.info(f"Status {event.status} for unknown message {event.message_id}, dropping")
        return EventOutcome.MESSAGE_NOT_FOUND

    if STATUS_RANK[new_status.value] <= STATUS_RANK.get(message.status, -1):
        logger.debug(f"Status {new_status.value} does not advance {message.status} for {event.message_id}")
        return EventOutcome.STATUS_UNCHANGED

    error_code = error_message = None
    if new_status is MessageStatus.FAILED and event.errors:
        first = event.errors[0]
        error_code = str(first["code"]) if first.get("code") is not None else None
        error_message = first.get("title") or first.get("message")

    update_message_status(db, message, new_status.value, error_code, error_message)
    return EventOutcome.STATUS_UPDATED


def persist_business_status(db: Session, event: BusinessStatusEvent) -> EventOutcome:
    """Enable or disable a partner's WhatsApp API flags."""
    if not event.phone_number_id:
        return EventOutcome.UNKNOWN_PARTNER

    active = event.event.upper() in ACTIVE_BUSINESS_EVENTS
    if set_partner_whatsapp_status(db, event.phone_number_id, active) == 0:
        logger.warning(f"Business status {event.event} for unknown phone_number_id={event.phone_number_id}")
        return EventOutcome.UNKNOWN_PARTNER
    return EventOutcome.PARTNER_UPDATED


def process_events(db: Session, events: list[WebhookEvent]) -> DeliveryResult:
    """
    Persist every event of a delivery independently.

    A PersistenceFailure on one event is logged and recorded, and the
    remaining events are still processed.
    """
    resolver = PartnerResolver(db)
    result = DeliveryResult()

    for event in events:
        try:
            if isinstance(event, MessageEvent):
                outcome = persist_message(db, resolver, event)
            elif isinstance(event, StatusEvent):
                outcome = persist_status(db, resolver, event)
            else:
                outcome = persist_business_status(db, event)
        except PersistenceFailure as e:
            logger.error(f"Persistence failure for {event.kind} event: {e}")
            outcome = EventOutcome.PERSISTENCE_FAILURE
        result.add(event, outcome)

    logger.info(f"Processed {len(events)} event(s): {result.counts()}")
    return result
