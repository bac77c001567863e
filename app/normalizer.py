"""
WhatsApp Cloud API payload normalization.

Turns the nested `entry[].changes[].value` envelope into a flat list of
inbound and echoed MessageEvent / StatusEvent / BusinessStatusEvent objects.
"""

import json
import logging
from typing import Any, Optional

from pydantic import ValidationError

from app.errors import MalformedPayload
from app.schemas import (
    BusinessStatusEvent,
    ChangeValue,
    EchoMessageItem,
    InboundMessageItem,
    MessageEvent,
    StatusEvent,
    StatusItem,
    WebhookChange,
    WebhookEnvelope,
    WebhookEvent,
)
from app.utils import unix_to_iso

logger = logging.getLogger(__name__)

WHATSAPP_OBJECT = "whatsapp_business_account"

# Messages sent from the WhatsApp Business app on a Cloud API number
ECHO_FIELDS = {"message_echoes", "smb_message_echoes"}

# Keys every message item carries regardless of its type
ENVELOPE_KEYS = {"id", "from", "to", "timestamp", "type", "context"}


def parse_body(raw_body: bytes) -> dict[str, Any]:
    """
    Decode a raw webhook body into a JSON object.

    Raises:
        MalformedPayload: body is not UTF-8 JSON, or not a JSON object
    """
    try:
        body = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Webhook body is not valid JSON: {e}")
        raise MalformedPayload("invalid JSON")

    if not isinstance(body, dict):
        logger.warning(f"Webhook body is JSON {type(body).__name__}, expected object")
        raise MalformedPayload("JSON body must be an object")
    return body


def webhook_type(body: dict[str, Any]) -> str:
    """Field of the first change, used to label webhook log rows."""
    try:
        return body["entry"][0]["changes"][0]["field"] or "unknown"
    except (KeyError, IndexError, TypeError):
        return "unknown"


def message_content(item: dict[str, Any], message_type: str) -> dict[str, Any]:
    """
    Type-specific payload of a message item.

    Known and unknown types alike keep whatever the provider sent under the
    type key; when there is no such key the whole item minus the envelope
    keys is kept, so nothing is lost.
    """
    payload = item.get(message_type)
    if isinstance(payload, dict):
        content = dict(payload)
    elif payload is not None:
        content = {"value": payload}
    else:
        content = {k: v for k, v in item.items() if k not in ENVELOPE_KEYS}

    if isinstance(item.get("context"), dict):
        content["context"] = item["context"]
    return content


def _contact_names(value: ChangeValue) -> dict[str, str]:
    names = {}
    for contact in value.contacts:
        wa_id = contact.get("wa_id")
        profile = contact.get("profile") or {}
        name = profile.get("name") if isinstance(profile, dict) else None
        if not isinstance(wa_id, str) or not wa_id:
            continue
        if name is not None and not isinstance(name, str):
            logger.warning(f"Ignoring non-string contact name for wa_id={wa_id}")
            continue
        if name:
            names[wa_id] = name
    return names


def _message_events(value: ChangeValue) -> list[MessageEvent]:
    events = []
    contacts = _contact_names(value)
    for raw in value.messages:
        try:
            item = InboundMessageItem.model_validate(raw)
            events.append(MessageEvent(
                phone_number_id=value.metadata.phone_number_id,
                display_phone_number=value.metadata.display_phone_number,
                from_number=item.from_number,
                message_id=item.id,
                timestamp=unix_to_iso(item.timestamp),
                type=item.type,
                content=message_content(raw, item.type),
                contact_name=contacts.get(item.from_number),
            ))
        except ValidationError as e:
            logger.warning(f"Skipping malformed message item: {e.error_count()} error(s)")
    return events


def _echo_events(value: ChangeValue) -> list[MessageEvent]:
    """
    Messages the business sent from another app (e.g. the WhatsApp Business
    app) on a number connected to the Cloud API.
    """
    events = []
    for raw in value.message_echoes or value.messages:
        try:
            item = EchoMessageItem.model_validate(raw)
            events.append(MessageEvent(
                direction="outbound",
                phone_number_id=value.metadata.phone_number_id,
                display_phone_number=value.metadata.display_phone_number,
                from_number=item.from_number or value.metadata.display_phone_number,
                to_number=item.to,
                message_id=item.id,
                timestamp=unix_to_iso(item.timestamp),
                type=item.type,
                content=message_content(raw, item.type),
            ))
        except ValidationError as e:
            logger.warning(f"Skipping malformed echo item: {e.error_count()} error(s)")
    return events


def _status_events(value: ChangeValue) -> list[StatusEvent]:
    events = []
    for raw in value.statuses:
        try:
            item = StatusItem.model_validate(raw)
            events.append(StatusEvent(
                phone_number_id=value.metadata.phone_number_id,
                message_id=item.id,
                status=item.status,
                timestamp=unix_to_iso(item.timestamp),
                recipient_id=item.recipient_id,
                errors=item.errors,
            ))
        except ValidationError as e:
            logger.warning(f"Skipping malformed status item: {e.error_count()} error(s)")
    return events


def _business_status_event(value: dict[str, Any]) -> Optional[BusinessStatusEvent]:
    event = value.get("event")
    if not event:
        logger.info("business_status_update without event, ignoring")
        return None
    try:
        return BusinessStatusEvent(
            phone_number_id=value.get("phone_number_id"),
            event=str(event),
        )
    except ValidationError as e:
        logger.warning(f"Skipping malformed business_status_update: {e.error_count()} error(s)")
        return None


def _change_value(change: WebhookChange) -> ChangeValue:
    try:
        return ChangeValue.model_validate(change.value)
    except ValidationError as e:
        logger.warning(f"{change.field} change failed validation: {e.error_count()} error(s)")
        raise MalformedPayload(f"invalid {change.field} change")


def normalize_payload(body: dict[str, Any]) -> list[WebhookEvent]:
    """
    Flatten a WhatsApp webhook body into typed events.

    Args:
        body: Parsed JSON object

    Returns:
        Events in delivery order: per change, messages first, then statuses

    Raises:
        MalformedPayload: wrong or missing `object`, or an envelope whose
            entry/changes/value structure does not validate
    """
    if body.get("object") != WHATSAPP_OBJECT:
        logger.warning(f"Unexpected webhook object: {body.get('object')!r}")
        raise MalformedPayload("object must be whatsapp_business_account")

    try:
        envelope = WebhookEnvelope.model_validate(body)
    except ValidationError as e:
        logger.warning(f"Webhook envelope failed validation: {e.error_count()} error(s)")
        raise MalformedPayload("invalid envelope")

    events: list[WebhookEvent] = []
    for entry in envelope.entry:
        for change in entry.changes:
            if change.field == "messages":
                value = _change_value(change)
                events.extend(_message_events(value))
                events.extend(_status_events(value))
            elif change.field in ECHO_FIELDS:
                events.extend(_echo_events(_change_value(change)))
            elif change.field == "business_status_update":
                event = _business_status_event(change.value)
                if event is not None:
                    events.append(event)
            else:
                logger.info(f"Unhandled webhook field: {change.field}")

    logger.debug(f"Normalized {len(events)} event(s) from {len(envelope.entry)} entry(ies)")
    return events
