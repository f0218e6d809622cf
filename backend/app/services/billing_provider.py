from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import hashlib
import hmac
import json
import logging
import time
from typing import Protocol
from urllib import error as urlerror
from urllib import parse as urlparse
from urllib import request as urlrequest
from uuid import uuid4

from app.core.config import settings
from app.core.errors import DependencyError, ValidationError
from app.core.security import now_utc

logger = logging.getLogger(__name__)

VALID_PROVIDERS = {"none", "stripe", "manual"}

# Event types that carry a completed checkout, per provider.
COMPLETION_EVENT_TYPES = {
    "stripe": {"checkout.session.completed", "checkout.session.async_payment_succeeded"},
    "manual": {"checkout.completed"},
    "none": {"checkout.completed"},
}


@dataclass(frozen=True)
class CheckoutSessionRequest:
    user_id: str
    tier: str
    display_name: str
    description: str
    amount_cents: int
    currency: str
    success_url: str
    cancel_url: str
    customer_email: str | None = None


@dataclass(frozen=True)
class CheckoutSessionResponse:
    provider: str
    provider_session_id: str
    redirect_url: str
    expires_at: datetime | None = None


@dataclass(frozen=True)
class PaymentCompletedEvent:
    session_id: str
    user_id: str
    tier: str
    amount_paid_cents: int
    currency: str | None = None


@dataclass(frozen=True)
class WebhookEvent:
    provider: str
    event_id: str
    event_type: str
    payment: PaymentCompletedEvent | None
    payload: dict


class CheckoutProviderAdapter(Protocol):
    provider_code: str

    def create_checkout_session(self, request: CheckoutSessionRequest) -> CheckoutSessionResponse:
        ...


def _append_query(url: str, **params: str) -> str:
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}{urlparse.urlencode(params)}"


class StubCheckoutProvider:
    """Local sessions for development; they are settled through the manual webhook."""

    def __init__(self, provider_code: str = "none"):
        self.provider_code = provider_code

    def create_checkout_session(self, request: CheckoutSessionRequest) -> CheckoutSessionResponse:
        session_id = f"stub_{uuid4().hex}"
        return CheckoutSessionResponse(
            provider=self.provider_code,
            provider_session_id=session_id,
            redirect_url=_append_query(request.success_url, session_id=session_id),
            expires_at=now_utc() + timedelta(minutes=settings.CHECKOUT_SESSION_TTL_MINUTES),
        )


class StripeCheckoutProvider:
    provider_code = "stripe"

    def create_checkout_session(self, request: CheckoutSessionRequest) -> CheckoutSessionResponse:
        if not settings.STRIPE_SECRET_KEY:
            raise DependencyError("payment", "STRIPE_SECRET_KEY is not configured")

        expires_at = now_utc() + timedelta(minutes=max(30, settings.CHECKOUT_SESSION_TTL_MINUTES))
        form = {
            "mode": "payment",
            "success_url": request.success_url,
            "cancel_url": request.cancel_url,
            "client_reference_id": request.user_id,
            "expires_at": str(int(expires_at.timestamp())),
            "line_items[0][quantity]": "1",
            "line_items[0][price_data][currency]": request.currency,
            "line_items[0][price_data][unit_amount]": str(request.amount_cents),
            "line_items[0][price_data][product_data][name]": request.display_name,
            "line_items[0][price_data][product_data][description]": request.description,
            "metadata[user_id]": request.user_id,
            "metadata[tier]": request.tier,
        }
        if request.customer_email:
            form["customer_email"] = request.customer_email

        try:
            response = _http_form_post(
                f"{settings.STRIPE_API_BASE.rstrip('/')}/checkout/sessions",
                form,
                headers={"Authorization": f"Bearer {settings.STRIPE_SECRET_KEY}"},
            )
        except (urlerror.URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise DependencyError("payment", f"checkout session request failed: {exc}") from exc

        session_id = str(response.get("id") or "")
        url = str(response.get("url") or "")
        if not session_id or not url:
            raise DependencyError("payment", "checkout session response without id/url")
        return CheckoutSessionResponse(
            provider=self.provider_code,
            provider_session_id=session_id,
            redirect_url=url,
            expires_at=expires_at,
        )


def current_provider_code() -> str:
    code = (settings.PAYMENT_PROVIDER or "none").strip().lower()
    return code if code in VALID_PROVIDERS else "none"


def get_provider_adapter(provider_code: str) -> CheckoutProviderAdapter:
    code = (provider_code or "none").strip().lower()
    if code == "stripe":
        return StripeCheckoutProvider()
    return StubCheckoutProvider(code if code in VALID_PROVIDERS else "none")


def _http_form_post(url: str, payload: dict[str, str], *, headers: dict[str, str] | None = None) -> dict:
    body = urlparse.urlencode(payload).encode("utf-8")
    req_headers = {"Content-Type": "application/x-www-form-urlencoded"}
    if headers:
        req_headers.update(headers)
    req = urlrequest.Request(url=url, method="POST", data=body, headers=req_headers)
    with urlrequest.urlopen(req, timeout=20) as resp:
        raw = resp.read().decode("utf-8")
    return json.loads(raw)


def _parse_sig_header(signature_header: str | None) -> tuple[int, list[str]]:
    if not signature_header:
        return (0, [])
    timestamp = 0
    signatures: list[str] = []
    for part in signature_header.split(","):
        if "=" not in part:
            continue
        k, v = part.split("=", 1)
        key = k.strip().lower()
        val = v.strip()
        if key == "t":
            try:
                timestamp = int(val)
            except ValueError:
                timestamp = 0
        elif key in {"v1", "sig"}:
            signatures.append(val)
    return (timestamp, signatures)


def _verify_hmac_signature(raw_body: bytes, signature_header: str | None, secret: str, max_age_seconds: int) -> bool:
    timestamp, signatures = _parse_sig_header(signature_header)
    if timestamp <= 0 or not signatures:
        return False
    now = int(time.time())
    if abs(now - timestamp) > max_age_seconds:
        return False
    payload = f"{timestamp}.".encode("utf-8") + raw_body
    expected = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return any(hmac.compare_digest(expected, s) for s in signatures)


def verify_webhook_request(provider: str, headers, raw_body: bytes) -> bool:
    secret = settings.PAYMENT_WEBHOOK_SECRET
    if not secret:
        return not settings.PAYMENT_REQUIRE_WEBHOOK_SIGNATURE
    header = "stripe-signature" if provider == "stripe" else "x-payment-signature"
    return _verify_hmac_signature(
        raw_body,
        headers.get(header),
        secret,
        int(settings.PAYMENT_WEBHOOK_MAX_AGE_SECONDS),
    )


def _as_int(value, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer") from None


def _require(value, field: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"missing {field}")
    return text


def _stripe_payment(data: dict) -> PaymentCompletedEvent | None:
    obj = data.get("object") if isinstance(data.get("object"), dict) else {}
    if obj.get("payment_status") != "paid":
        return None
    metadata = obj.get("metadata") if isinstance(obj.get("metadata"), dict) else {}
    return PaymentCompletedEvent(
        session_id=_require(obj.get("id"), "session id"),
        user_id=_require(metadata.get("user_id") or obj.get("client_reference_id"), "user_id"),
        tier=_require(metadata.get("tier"), "tier"),
        amount_paid_cents=_as_int(obj.get("amount_total"), "amount_total"),
        currency=(str(obj["currency"]).lower() if obj.get("currency") else None),
    )


def _manual_payment(data: dict) -> PaymentCompletedEvent:
    return PaymentCompletedEvent(
        session_id=_require(data.get("session_id"), "session_id"),
        user_id=_require(data.get("user_id"), "user_id"),
        tier=_require(data.get("tier"), "tier"),
        amount_paid_cents=_as_int(data.get("amount_paid_cents"), "amount_paid_cents"),
        currency=(str(data["currency"]).lower() if data.get("currency") else None),
    )


def normalize_webhook_event(provider: str, payload: dict) -> WebhookEvent:
    event_id = str(payload.get("id") or "").strip()
    event_type = str(payload.get("type") or "").strip()
    if not event_id or not event_type:
        raise ValidationError("webhook event without id/type")

    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    payment = None
    if event_type in COMPLETION_EVENT_TYPES.get(provider, set()):
        payment = _stripe_payment(data) if provider == "stripe" else _manual_payment(data)

    return WebhookEvent(
        provider=provider,
        event_id=event_id,
        event_type=event_type,
        payment=payment,
        payload=payload,
    )
