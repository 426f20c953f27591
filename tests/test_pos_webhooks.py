"""Tests for the POS webhook endpoints (full request flow, collaborators faked)."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.routers.pos_webhooks import get_pos_event_service

from tests.conftest import RESTAURANT_ID


@pytest.fixture()
def client(pos_service):
    app.dependency_overrides[get_pos_event_service] = lambda: pos_service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _post(client, vendor, payload, headers=None, **params):
    return client.post(
        f"/webhooks/pos/{vendor}",
        content=json.dumps(payload).encode(),
        headers={"Content-Type": "application/json", **(headers or {})},
        params=params,
    )


def _drain(client, pos_service):
    client.portal.call(pos_service.processor.wait_for_side_effects)


# ── Happy path ────────────────────────────────────────────────────────────


def test_check_closed_applied(client, pos_service, ledger, valet, toast_check_closed_payload):
    response = _post(client, "toast", toast_check_closed_payload)
    _drain(client, pos_service)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["duplicate"] is False
    assert body["event_type"] == "CHECK_CLOSED"
    assert body["outcome"] == "APPLIED"
    assert body["linked_reservation_id"] == "res_1"
    assert len(ledger.status_updates) == 1
    assert len(valet.calls) == 1


def test_duplicate_delivery_transitions_once(
    client, pos_service, ledger, valet, supabase, toast_check_closed_payload
):
    first = _post(client, "toast", toast_check_closed_payload)
    second = _post(client, "toast", toast_check_closed_payload)
    _drain(client, pos_service)

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["duplicate"] is True
    assert second.json()["outcome"] == "DUPLICATE"
    assert second.json()["event_id"] == first.json()["event_id"]
    assert len(supabase.pos_events) == 1
    assert len(ledger.status_updates) == 1
    assert len(valet.calls) == 1


def test_square_payment(client, square_payment_payload):
    # No table on the payment, so it is stored but left unlinked
    response = _post(client, "square", square_payment_payload)

    assert response.status_code == 200
    assert response.json()["event_type"] == "CHECK_CLOSED"
    assert response.json()["outcome"] == "UNLINKED"


def test_clover_seated(client, ledger, clover_seated_payload):
    response = _post(client, "CLOVER", clover_seated_payload)

    assert response.status_code == 200
    assert response.json()["event_type"] == "SEATED"
    assert ledger.status_updates[0]["reservation_id"] == "res_1"


def test_reservation_id_query_param(client, ledger, toast_check_closed_payload):
    toast_check_closed_payload["data"]["tableId"] = None

    response = _post(client, "toast", toast_check_closed_payload, reservation_id="res_77")

    assert response.json()["linked_reservation_id"] == "res_77"
    assert ledger.status_updates[0]["reservation_id"] == "res_77"


def test_unmatched_event_listed_as_unprocessed(client, ledger, toast_check_closed_payload):
    toast_check_closed_payload["data"]["tableId"] = "99"

    response = _post(client, "toast", toast_check_closed_payload)
    assert response.status_code == 200
    assert response.json()["outcome"] == "UNLINKED"
    assert ledger.status_updates == []

    listing = client.get("/webhooks/pos/events/unprocessed", params={"restaurant_id": RESTAURANT_ID})
    assert listing.status_code == 200
    assert listing.json()["count"] == 1
    assert listing.json()["events"][0]["vendor_event_id"] == "toast-check-1"


def test_processing_failure_still_acknowledged(client, ledger, supabase, toast_seated_payload):
    async def failing_update(*args, **kwargs):
        raise RuntimeError("ledger rejected transition")

    ledger.update_status = failing_update

    response = _post(client, "toast", toast_seated_payload)

    assert response.status_code == 200
    assert response.json()["outcome"] == "FAILED"
    assert supabase.by_vendor_event_id("toast-seat-1") is not None


# ── Rejections ────────────────────────────────────────────────────────────


def test_unknown_vendor(client, toast_check_closed_payload):
    response = _post(client, "lightspeed", toast_check_closed_payload)
    assert response.status_code == 404


def test_invalid_json(client):
    response = client.post("/webhooks/pos/toast", content=b"not json")
    assert response.status_code == 400


def test_missing_restaurant(client, supabase, toast_check_closed_payload):
    del toast_check_closed_payload["data"]["restaurantId"]

    response = _post(client, "toast", toast_check_closed_payload)

    assert response.status_code == 400
    assert supabase.pos_events == {}


def test_storage_failure_not_acknowledged(client, supabase, toast_check_closed_payload):
    def unavailable(*args, **kwargs):
        raise RuntimeError("database unavailable")

    supabase.get_pos_event_by_key = unavailable

    response = _post(client, "toast", toast_check_closed_payload)
    assert response.status_code == 500


class TestSignatureVerification:
    SECRET = "toast-test-secret"

    def _sign(self, body: bytes) -> str:
        digest = hmac.new(self.SECRET.encode(), body, hashlib.sha256).digest()
        return base64.b64encode(digest).decode()

    @patch("app.routers.pos_webhooks.settings.verify_webhook_signatures", True)
    @patch("app.integrations.toast.adapter.settings.toast_webhook_secret", "toast-test-secret")
    def test_missing_signature_rejected(self, client, ledger, toast_check_closed_payload):
        response = _post(client, "toast", toast_check_closed_payload)

        assert response.status_code == 401
        assert ledger.status_updates == []

    @patch("app.routers.pos_webhooks.settings.verify_webhook_signatures", True)
    @patch("app.integrations.toast.adapter.settings.toast_webhook_secret", "toast-test-secret")
    def test_valid_signature_accepted(self, client, toast_check_closed_payload):
        body = json.dumps(toast_check_closed_payload).encode()

        response = client.post(
            "/webhooks/pos/toast",
            content=body,
            headers={"Content-Type": "application/json", "Toast-Signature": self._sign(body)},
        )
        assert response.status_code == 200


# ── Health ────────────────────────────────────────────────────────────────


def test_health(client):
    response = client.get("/webhooks/pos/health")

    assert response.status_code == 200
    assert sorted(response.json()["available_vendors"]) == ["clover", "square", "toast"]
    assert "check.closed" in response.json()["supported_events"]["toast"]
    assert client.get("/healthz").json() == {"status": "ok"}
