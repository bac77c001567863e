"""
Utility functions for the WhatsApp webhook service.
"""

import hmac
import hashlib
import logging
from datetime import datetime, timezone
from typing import Optional

from app.errors import SignatureInvalid

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def compute_hmac_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of body keyed with secret."""
    return hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256
    ).hexdigest()


def verify_hmac_signature(body: bytes, signature_header: Optional[str], secret: str) -> None:
    """
    Verify an X-Hub-Signature-256 header against the raw request body.

    Args:
        body: Raw request body bytes
        signature_header: Header value, expected as "sha256=<hex>"
        secret: Shared signing secret

    Raises:
        SignatureInvalid: header missing, wrong prefix, or digest mismatch
    """
    if not signature_header:
        logger.warning("Missing X-Hub-Signature-256 header")
        raise SignatureInvalid("missing signature header")

    if not signature_header.startswith(SIGNATURE_PREFIX):
        logger.warning("Signature header without sha256= prefix")
        raise SignatureInvalid("unsupported signature format")

    if not secret:
        logger.error("Signing secret not configured, rejecting delivery")
        raise SignatureInvalid("signing secret not configured")

    provided = signature_header[len(SIGNATURE_PREFIX):].strip().lower()
    expected = compute_hmac_signature(body, secret)
    logger.debug(f"Body length: {len(body)} bytes, signature: {provided[:8]}...")

    # Constant-time comparison
    if not hmac.compare_digest(expected.encode("ascii"), provided.encode("utf-8")):
        logger.warning("HMAC signature mismatch")
        raise SignatureInvalid("signature mismatch")

    logger.debug("HMAC signature verified")


def unix_to_iso(value) -> str:
    """
    Convert a provider unix timestamp (seconds, usually a string) to ISO-8601 UTC.
    Falls back to the current server time when the value is missing or invalid.
    """
    try:
        moment = datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        logger.debug(f"Unparseable provider timestamp {value!r}, using server time")
        moment = datetime.now(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


def utc_now_iso() -> str:
    """Server time as ISO-8601 UTC with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def normalize_phone(phone_number: str) -> str:
    """Reduce a phone number to the digits-only form WhatsApp uses for wa_id."""
    return "".join(ch for ch in phone_number if ch.isdigit())
