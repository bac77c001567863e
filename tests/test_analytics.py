"""
Tests for the GET /api/whatsapp/analytics endpoint.

Tests cover:
- Partner with no messages returns zeros
- Totals and grouped counts (type, status, direction)
- Group ordering by count, then key
- Time window filtering
"""

import pytest

from app.storage import create_message
from tests.support import add_partner


ANALYTICS_PATH = "/api/whatsapp/analytics"


def store(db, message_id, timestamp, message_type="TEXT", status="RECEIVED", direction="inbound", partner_id="partner-1"):
    create_message(
        db,
        message_id=message_id,
        partner_id=partner_id,
        from_number="5511999990001",
        to_number="16505551111",
        message_type=message_type,
        status=status,
        timestamp=timestamp,
        direction=direction,
    )


@pytest.fixture
def seeded(db, partner):
    add_partner(db, partner_id="partner-2", name="Outro Brecho", whatsapp_phone_number_id="111")

    store(db, "t1", "2025-03-01T10:00:00Z")
    store(db, "t2", "2025-03-02T10:00:00Z", status="READ")
    store(db, "t3", "2025-03-03T10:00:00Z", direction="outbound", status="DELIVERED")
    store(db, "i1", "2025-03-04T10:00:00Z", message_type="IMAGE")
    store(db, "a1", "2025-03-05T10:00:00Z", message_type="AUDIO")
    store(db, "x1", "2025-03-01T10:00:00Z", partner_id="partner-2")
    return partner


def as_dict(groups):
    return {group["key"]: group["count"] for group in groups}


class TestAnalytics:
    """Test the analytics endpoint."""

    def test_no_messages(self, client, partner):
        response = client.get(ANALYTICS_PATH, params={"partner_id": partner.id})

        assert response.status_code == 200
        assert response.json() == {
            "total_messages": 0,
            "by_type": [],
            "by_status": [],
            "by_direction": [],
        }

    def test_partner_id_required(self, client):
        response = client.get(ANALYTICS_PATH)

        assert response.status_code == 422

    def test_total_scoped_to_partner(self, client, seeded):
        response = client.get(ANALYTICS_PATH, params={"partner_id": "partner-1"})

        assert response.json()["total_messages"] == 5

    def test_grouped_counts(self, client, seeded):
        data = client.get(ANALYTICS_PATH, params={"partner_id": "partner-1"}).json()

        assert as_dict(data["by_type"]) == {"TEXT": 3, "IMAGE": 1, "AUDIO": 1}
        assert as_dict(data["by_status"]) == {"RECEIVED": 3, "READ": 1, "DELIVERED": 1}
        assert as_dict(data["by_direction"]) == {"inbound": 4, "outbound": 1}

    def test_groups_sorted_by_count_then_key(self, client, seeded):
        data = client.get(ANALYTICS_PATH, params={"partner_id": "partner-1"}).json()

        assert [g["key"] for g in data["by_type"]] == ["TEXT", "AUDIO", "IMAGE"]
        assert [g["key"] for g in data["by_status"]] == ["RECEIVED", "DELIVERED", "READ"]

    def test_group_counts_sum_to_total(self, client, seeded):
        data = client.get(ANALYTICS_PATH, params={"partner_id": "partner-1"}).json()

        for groups in (data["by_type"], data["by_status"], data["by_direction"]):
            assert sum(g["count"] for g in groups) == data["total_messages"]

    def test_time_window(self, client, seeded):
        response = client.get(ANALYTICS_PATH, params={
            "partner_id": "partner-1",
            "since": "2025-03-02T10:00:00Z",
            "until": "2025-03-04T10:00:00Z",
        })

        data = response.json()
        assert data["total_messages"] == 3
        assert as_dict(data["by_type"]) == {"TEXT": 2, "IMAGE": 1}

    def test_counts_follow_webhook_ingestion(self, client, partner, post_webhook, make_payload, text_message):
        payload = make_payload(messages=[text_message])
        post_webhook(payload)
        post_webhook(payload)

        data = client.get(ANALYTICS_PATH, params={"partner_id": partner.id}).json()

        assert data["total_messages"] == 1
        assert data["by_status"] == [{"key": "RECEIVED", "count": 1}]
