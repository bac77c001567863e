"""
Constants and helpers shared by the test modules and conftest.py.
"""

import hashlib
import hmac

PHONE_NUMBER_ID = "826543520541078"
DISPLAY_PHONE = "16505551111"
CUSTOMER_PHONE = "16315551181"
WEBHOOK_PATH = "/api/whatsapp/webhook"


def compute_signature(body: bytes, secret: str) -> str:
    """X-Hub-Signature-256 value for a raw body."""
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def add_partner(db, partner_id: str, name: str, whatsapp_phone_number_id=None, whatsapp_number=None,
                enabled: bool = True):
    """
    Seed a partner row. Partners belong to the marketplace API; the service
    itself only looks them up.
    """
    from app.models import Partner

    partner = Partner(
        id=partner_id,
        name=name,
        whatsapp_phone_number_id=whatsapp_phone_number_id,
        whatsapp_number=whatsapp_number,
        whatsapp_api_enabled=enabled,
        whatsapp_business_verified=enabled,
    )
    db.add(partner)
    db.commit()
    db.refresh(partner)
    return partner
