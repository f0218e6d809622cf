from __future__ import annotations

import json
import time

from fastapi.testclient import TestClient

from app.api.routes import purchases as purchase_routes
from app.core.config import settings
from tests.testkit import checkout_completed_event, post_signed_webhook, signature_header


def _checkout(client, headers, tier: str):
    resp = client.post("/purchases/checkout", json={"tier": tier}, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()


def _settle(client, out: dict, user_id: str, event_id: str):
    payload = checkout_completed_event(
        event_id,
        session_id=out["session_id"],
        user_id=user_id,
        tier=out["tier"],
        amount_paid_cents=out["amount_cents"],
    )
    return post_signed_webhook(client, payload, settings.PAYMENT_WEBHOOK_SECRET)


def test_health_and_tiers_are_public(client):
    assert client.get("/health").json() == {"ok": True}

    tiers = client.get("/purchases/tiers").json()
    assert [(t["id"], t["price_cents"]) for t in tiers] == [("rental", 1499), ("regular", 2499), ("boxset", 7499)]
    assert tiers[2]["grants"] == ["episode", "extra"]
    assert tiers[0]["duration_days"] == 4


def test_purchase_endpoints_require_a_token(client):
    assert client.post("/purchases/validate", json={"tier": "rental"}).status_code == 401
    bad = {"Authorization": "Bearer not-a-jwt"}
    assert client.post("/purchases/validate", json={"tier": "rental"}, headers=bad).status_code == 401


def test_validate_checks_body_user_and_tier(client, auth_headers):
    headers = auth_headers("api-u1")
    ok = client.post("/purchases/validate", json={"tier": "rental"}, headers=headers)
    assert ok.status_code == 200
    assert ok.json() == {"allowed": True, "tier": "rental", "reason": None}

    other = client.post("/purchases/validate", json={"tier": "rental", "user_id": "api-u2"}, headers=headers)
    assert other.status_code == 403

    unknown = client.post("/purchases/validate", json={"tier": "premium"}, headers=headers)
    assert unknown.status_code == 400


def test_checkout_webhook_and_status_flow(client, auth_headers):
    headers = auth_headers("api-flow", email="flow@example.test", name="Flow User")

    out = _checkout(client, headers, "rental")
    assert out["provider"] == "manual"
    assert out["amount_cents"] == 1499
    assert out["session_id"] in out["redirect_url"]

    settled = _settle(client, out, "api-flow", "evt_flow_1")
    assert settled.status_code == 200, settled.text
    assert settled.json()["status"] == "processed"

    me = client.get("/purchases/me", headers=headers).json()
    assert me["has_access"] is True
    assert me["tier"] == "rental"
    assert me["expires_at"] is not None

    again = client.post("/purchases/checkout", json={"tier": "rental"}, headers=headers)
    assert again.status_code == 403
    assert "active rental" in again.json()["reason"]

    history = client.get("/purchases/history", headers=headers).json()
    assert len(history) == 1
    assert history[0]["external_session_id"] == out["session_id"]
    assert history[0]["expired"] is False


def test_duplicate_webhook_delivery_keeps_one_entitlement(client, auth_headers):
    headers = auth_headers("api-dup")
    out = _checkout(client, headers, "regular")

    first = _settle(client, out, "api-dup", "evt_dup")
    second = _settle(client, out, "api-dup", "evt_dup")
    assert first.json()["duplicate"] is False
    assert second.status_code == 200
    assert second.json()["duplicate"] is True

    assert len(client.get("/purchases/history", headers=headers).json()) == 1


def test_webhook_with_bad_signature_changes_nothing(client, auth_headers):
    headers = auth_headers("api-sig")
    out = _checkout(client, headers, "regular")
    payload = checkout_completed_event(
        "evt_sig", session_id=out["session_id"], user_id="api-sig", tier="regular", amount_paid_cents=2499
    )
    raw = json.dumps(payload).encode("utf-8")

    forged = client.post(
        "/purchases/webhook",
        content=raw,
        headers={"Content-Type": "application/json", "x-payment-signature": signature_header(raw, "wrong-secret")},
    )
    assert forged.status_code == 401

    stale = post_signed_webhook(client, payload, settings.PAYMENT_WEBHOOK_SECRET, timestamp=int(time.time()) - 3600)
    assert stale.status_code == 401

    assert client.get("/purchases/me", headers=headers).json()["has_access"] is False


def test_webhook_amount_mismatch_is_rejected(client, auth_headers):
    headers = auth_headers("api-amount")
    out = _checkout(client, headers, "boxset")
    payload = checkout_completed_event(
        "evt_amount", session_id=out["session_id"], user_id="api-amount", tier="boxset", amount_paid_cents=2499
    )

    resp = post_signed_webhook(client, payload, settings.PAYMENT_WEBHOOK_SECRET)
    assert resp.status_code == 400
    assert client.get("/purchases/history", headers=headers).json() == []


def test_webhook_rejects_non_json(client):
    raw = b"not json"
    resp = client.post(
        "/purchases/webhook",
        content=raw,
        headers={"x-payment-signature": signature_header(raw, settings.PAYMENT_WEBHOOK_SECRET)},
    )
    assert resp.status_code == 400


def test_dev_notification_sweep(client, auth_headers, monkeypatch):
    headers = auth_headers("api-ops")
    resp = client.post("/purchases/notifications/sweep", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["ok"] is True

    monkeypatch.setattr(settings, "ENV", "prod")
    assert client.post("/purchases/notifications/sweep", headers=headers).status_code == 404


def test_webhook_event_without_id_is_malformed(client):
    resp = post_signed_webhook(client, {"type": "checkout.completed", "data": {}}, settings.PAYMENT_WEBHOOK_SECRET)
    assert resp.status_code == 400


def test_unexpected_webhook_failure_is_a_generic_500(client, monkeypatch):
    from app.main import app

    def broken(db, *, provider, payload, now=None):
        raise ValueError("internal detail")

    monkeypatch.setattr(purchase_routes, "ingest_webhook_event", broken)
    payload = checkout_completed_event("evt_bug", session_id="cs_bug", user_id="u-bug", tier="rental", amount_paid_cents=1499)
    raw_client = TestClient(app, raise_server_exceptions=False)

    resp = post_signed_webhook(raw_client, payload, settings.PAYMENT_WEBHOOK_SECRET)
    assert resp.status_code == 500
    assert resp.json() == {"detail": "Internal server error"}
