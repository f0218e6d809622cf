from __future__ import annotations

import time
from urllib import error as urlerror

import pytest

from app.core.config import settings
from app.core.errors import DependencyError, ValidationError
from app.services import billing_provider
from app.services.billing_provider import (
    CheckoutSessionRequest,
    StripeCheckoutProvider,
    StubCheckoutProvider,
    _verify_hmac_signature,
    normalize_webhook_event,
    verify_webhook_request,
)
from tests.testkit import checkout_completed_event, signature_header, stripe_session_event

SECRET = "whsec_unit"
RAW = b'{"id":"evt_1","type":"checkout.completed"}'


def _request(**overrides) -> CheckoutSessionRequest:
    values = dict(
        user_id="u1",
        tier="rental",
        display_name="4-Day Rental",
        description="4-day access to all 4 episodes.",
        amount_cents=1499,
        currency="usd",
        success_url="https://shop.example/success",
        cancel_url="https://shop.example/cancel",
    )
    values.update(overrides)
    return CheckoutSessionRequest(**values)


def test_valid_signature_is_accepted():
    assert _verify_hmac_signature(RAW, signature_header(RAW, SECRET), SECRET, 300) is True


def test_signature_with_wrong_secret_or_body_is_rejected():
    header = signature_header(RAW, SECRET)
    assert _verify_hmac_signature(RAW, header, "other", 300) is False
    assert _verify_hmac_signature(RAW + b" ", header, SECRET, 300) is False


def test_stale_signature_is_rejected():
    header = signature_header(RAW, SECRET, timestamp=int(time.time()) - 3600)
    assert _verify_hmac_signature(RAW, header, SECRET, 300) is False


@pytest.mark.parametrize("header", [None, "", "garbage", "t=abc,v1=deadbeef", "v1=deadbeef"])
def test_malformed_signature_header_is_rejected(header):
    assert _verify_hmac_signature(RAW, header, SECRET, 300) is False


def test_verify_webhook_request_picks_header_per_provider(monkeypatch):
    monkeypatch.setattr(settings, "PAYMENT_WEBHOOK_SECRET", SECRET)
    header = signature_header(RAW, SECRET)
    assert verify_webhook_request("stripe", {"stripe-signature": header}, RAW) is True
    assert verify_webhook_request("stripe", {"x-payment-signature": header}, RAW) is False
    assert verify_webhook_request("manual", {"x-payment-signature": header}, RAW) is True


def test_missing_secret_rejects_when_signature_required(monkeypatch):
    monkeypatch.setattr(settings, "PAYMENT_WEBHOOK_SECRET", None)
    monkeypatch.setattr(settings, "PAYMENT_REQUIRE_WEBHOOK_SIGNATURE", True)
    assert verify_webhook_request("manual", {}, RAW) is False
    monkeypatch.setattr(settings, "PAYMENT_REQUIRE_WEBHOOK_SIGNATURE", False)
    assert verify_webhook_request("manual", {}, RAW) is True


def test_normalize_paid_stripe_session():
    event = normalize_webhook_event(
        "stripe",
        stripe_session_event("evt_1", session_id="cs_1", user_id="u1", tier="boxset", amount_total=7499),
    )
    assert event.event_type == "checkout.session.completed"
    assert event.payment.session_id == "cs_1"
    assert event.payment.user_id == "u1"
    assert event.payment.tier == "boxset"
    assert event.payment.amount_paid_cents == 7499
    assert event.payment.currency == "usd"


def test_normalize_stripe_falls_back_to_client_reference_id():
    payload = stripe_session_event("evt_2", session_id="cs_2", user_id="u2", tier="rental", amount_total=1499)
    del payload["data"]["object"]["metadata"]["user_id"]
    assert normalize_webhook_event("stripe", payload).payment.user_id == "u2"


def test_normalize_non_completion_events_carry_no_payment():
    unpaid = stripe_session_event(
        "evt_3", session_id="cs_3", user_id="u1", tier="rental", amount_total=1499, payment_status="unpaid"
    )
    assert normalize_webhook_event("stripe", unpaid).payment is None
    other = {"id": "evt_4", "type": "payment_intent.succeeded", "data": {"object": {}}}
    assert normalize_webhook_event("stripe", other).payment is None


def test_normalize_manual_event():
    payload = checkout_completed_event("evt_5", session_id="stub_1", user_id="u1", tier="regular", amount_paid_cents=2499)
    event = normalize_webhook_event("manual", payload)
    assert event.payment.amount_paid_cents == 2499
    assert event.payment.currency is None


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "checkout.completed", "data": {}},
        {"id": "evt_6", "data": {}},
        {"id": "evt_7", "type": "checkout.completed", "data": {"session_id": "s", "user_id": "u", "amount_paid_cents": 1}},
        {"id": "evt_8", "type": "checkout.completed", "data": {"session_id": "s", "user_id": "u", "tier": "rental", "amount_paid_cents": "lots"}},
    ],
)
def test_malformed_events_are_validation_errors(payload):
    with pytest.raises(ValidationError):
        normalize_webhook_event("manual", payload)


def test_stub_provider_appends_session_id():
    response = StubCheckoutProvider("manual").create_checkout_session(
        _request(success_url="https://shop.example/success?ref=email")
    )
    assert response.provider == "manual"
    assert response.provider_session_id.startswith("stub_")
    assert response.redirect_url == f"https://shop.example/success?ref=email&session_id={response.provider_session_id}"


def test_stripe_provider_sends_price_and_metadata(monkeypatch):
    captured = {}

    def fake_post(url, payload, *, headers=None):
        captured.update(url=url, payload=payload, headers=headers)
        return {"id": "cs_test_1", "url": "https://checkout.stripe.com/c/pay/cs_test_1"}

    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(billing_provider, "_http_form_post", fake_post)

    response = StripeCheckoutProvider().create_checkout_session(_request())
    assert response.provider_session_id == "cs_test_1"
    assert response.redirect_url.startswith("https://checkout.stripe.com/")
    assert captured["url"].endswith("/checkout/sessions")
    assert captured["headers"]["Authorization"] == "Bearer sk_test_123"
    assert captured["payload"]["line_items[0][price_data][unit_amount]"] == "1499"
    assert captured["payload"]["metadata[user_id]"] == "u1"
    assert captured["payload"]["metadata[tier]"] == "rental"


def test_stripe_provider_errors_are_dependency_errors(monkeypatch):
    def unreachable(url, payload, *, headers=None):
        raise urlerror.URLError("connection refused")

    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(billing_provider, "_http_form_post", unreachable)
    with pytest.raises(DependencyError) as exc:
        StripeCheckoutProvider().create_checkout_session(_request())
    assert exc.value.service == "payment"


def test_stripe_provider_requires_key(monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", None)
    with pytest.raises(DependencyError):
        StripeCheckoutProvider().create_checkout_session(_request())
