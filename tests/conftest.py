"""
Pytest configuration and shared fixtures.

Test environment variables are set here, before any app import, so the
cached settings pick them up. Values already present in the environment
(e.g. from a CI job) take precedence.
"""

import json
import os

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_whatsapp.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("WHATSAPP_VERIFY_TOKEN", "test-verify-token")
os.environ.setdefault("WHATSAPP_APP_SECRET", "test-app-secret")

from app.config import get_settings  # noqa: E402
from tests.support import (  # noqa: E402
    CUSTOMER_PHONE,
    DISPLAY_PHONE,
    PHONE_NUMBER_ID,
    WEBHOOK_PATH,
    add_partner,
    compute_signature,
)

get_settings.cache_clear()


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    from app.main import app
    from app.storage import Base, engine

    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(client):
    """Database session sharing the test client's database."""
    from app.storage import SessionLocal

    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def partner(db):
    """Partner owning the test business number."""
    return add_partner(
        db,
        partner_id="partner-1",
        name="Brecho da Vila",
        whatsapp_phone_number_id=PHONE_NUMBER_ID,
        whatsapp_number=DISPLAY_PHONE,
    )


@pytest.fixture
def stored_message(db):
    """Look up a stored message, bypassing the session identity map."""
    from app.storage import get_message_by_id

    def _fetch(message_id: str):
        db.expire_all()
        return get_message_by_id(db, message_id)

    return _fetch


@pytest.fixture
def make_payload():
    """Build a whatsapp_business_account envelope with one messages change."""

    def _make(messages=None, statuses=None, phone_number_id=PHONE_NUMBER_ID, contacts=None):
        value = {
            "messaging_product": "whatsapp",
            "metadata": {
                "display_phone_number": DISPLAY_PHONE,
                "phone_number_id": phone_number_id,
            },
        }
        if contacts is not None:
            value["contacts"] = contacts
        if messages is not None:
            value["messages"] = messages
        if statuses is not None:
            value["statuses"] = statuses
        return {
            "object": "whatsapp_business_account",
            "entry": [{
                "id": "business_account_id",
                "changes": [{"field": "messages", "value": value}],
            }],
        }

    return _make


@pytest.fixture
def text_message():
    return {
        "from": CUSTOMER_PHONE,
        "id": "ABGGFlA5Fpa",
        "timestamp": "1504902988",
        "type": "text",
        "text": {"body": "this is a text message"},
    }


@pytest.fixture
def post_webhook(client):
    """POST a payload to the webhook, signed with the configured secret unless overridden."""

    def _post(payload=None, raw_body: bytes = None, signature: str = None, sign: bool = True):
        body = raw_body if raw_body is not None else json.dumps(payload).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if signature is not None:
            headers["X-Hub-Signature-256"] = signature
        elif sign:
            headers["X-Hub-Signature-256"] = compute_signature(body, os.environ["WHATSAPP_APP_SECRET"])
        return client.post(WEBHOOK_PATH, content=body, headers=headers)

    return _post
