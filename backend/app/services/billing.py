from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import PaymentIntegrityError, ValidationError
from app.core.logging import security_logger
from app.core.security import now_utc
from app.db.session import insert_for
from app.models.billing import CheckoutSession, PaymentWebhookEvent
from app.services.audit import audit
from app.services.billing_provider import (
    VALID_PROVIDERS,
    CheckoutSessionRequest,
    PaymentCompletedEvent,
    current_provider_code,
    get_provider_adapter,
    normalize_webhook_event,
)
from app.services.catalog import TierId, get_tier, parse_tier_id
from app.services.eligibility import check_eligibility, evaluate_eligibility
from app.services.entitlements import (
    Entitlement,
    ensure_user,
    find_by_external_session,
    get_current_entitlement,
    lock_user_purchases,
    record_purchase,
)

logger = logging.getLogger(__name__)

PROCESSED = "processed"
DUPLICATE = "duplicate"
IGNORED = "ignored"
CONFLICT = "conflict"


@dataclass(frozen=True)
class CheckoutIntent:
    allowed: bool
    tier: str
    reason: str | None = None
    session_id: str | None = None
    redirect_url: str | None = None
    provider: str | None = None
    amount_cents: int | None = None
    currency: str | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class SettlementResult:
    status: str
    entitlement: Entitlement | None = None
    detail: str | None = None


@dataclass(frozen=True)
class WebhookResult:
    provider: str
    event_id: str
    event_type: str
    status: str
    duplicate: bool
    entitlement_id: str | None = None


def _normalize_provider(provider: str | None) -> str:
    raw = (provider or "").strip().lower()
    if raw not in VALID_PROVIDERS:
        raise ValidationError(f"unknown payment provider '{provider}'")
    return raw


def create_checkout_intent(
    db: Session,
    user_id: str,
    tier: str | TierId,
    *,
    customer_email: str | None = None,
    now: datetime | None = None,
) -> CheckoutIntent:
    """Open a checkout with the payment processor, but only for an eligible purchase."""
    tier_id = parse_tier_id(tier)
    decision = check_eligibility(db, user_id, tier_id, now=now)
    if not decision.allowed:
        return CheckoutIntent(allowed=False, tier=tier_id.value, reason=decision.reason)

    catalog_tier = get_tier(tier_id)
    currency = settings.PAYMENT_CURRENCY.lower()
    adapter = get_provider_adapter(current_provider_code())
    response = adapter.create_checkout_session(
        CheckoutSessionRequest(
            user_id=user_id,
            tier=tier_id.value,
            display_name=catalog_tier.display_name,
            description=catalog_tier.description,
            amount_cents=catalog_tier.price_cents,
            currency=currency,
            success_url=settings.CHECKOUT_SUCCESS_URL,
            cancel_url=settings.CHECKOUT_CANCEL_URL,
            customer_email=customer_email,
        )
    )

    ensure_user(db, user_id)
    db.add(
        CheckoutSession(
            user_id=user_id,
            provider=response.provider,
            provider_session_id=response.provider_session_id,
            tier=tier_id.value,
            amount_cents=catalog_tier.price_cents,
            currency=currency,
            status="created",
            redirect_url=response.redirect_url,
            expires_at=response.expires_at,
            created_at=now or now_utc(),
        )
    )
    db.flush()
    logger.info(
        "checkout session created provider=%s session=%s user=%s tier=%s",
        response.provider,
        response.provider_session_id,
        user_id,
        tier_id.value,
    )
    return CheckoutIntent(
        allowed=True,
        tier=tier_id.value,
        session_id=response.provider_session_id,
        redirect_url=response.redirect_url,
        provider=response.provider,
        amount_cents=catalog_tier.price_cents,
        currency=currency,
        expires_at=response.expires_at,
    )


def _get_checkout_session(db: Session, provider: str, session_id: str) -> CheckoutSession | None:
    return db.execute(
        sa.select(CheckoutSession).where(
            CheckoutSession.provider == provider,
            CheckoutSession.provider_session_id == session_id,
        )
    ).scalars().first()


def _integrity_failure(message: str, **fields) -> PaymentIntegrityError:
    details = " ".join(f"{k}={v}" for k, v in fields.items())
    security_logger.warning("payment integrity failure: %s %s", message, details)
    return PaymentIntegrityError(message)


def settle_payment(
    db: Session,
    event: PaymentCompletedEvent,
    *,
    provider: str,
    now: datetime | None = None,
) -> SettlementResult:
    """Turn a verified completed payment into an entitlement, exactly once per session.

    The caller owns the transaction. Anything raised here must roll it back so
    the entitlement is either fully written or not written at all.
    """
    tier_id = parse_tier_id(event.tier)
    expected = get_tier(tier_id).price_cents
    if event.amount_paid_cents != expected:
        raise _integrity_failure(
            "amount does not match tier price",
            session=event.session_id,
            user=event.user_id,
            tier=tier_id.value,
            paid=event.amount_paid_cents,
            expected=expected,
        )
    currency = settings.PAYMENT_CURRENCY.lower()
    if event.currency and event.currency != currency:
        raise _integrity_failure(
            "currency does not match",
            session=event.session_id,
            user=event.user_id,
            paid_currency=event.currency,
            expected=currency,
        )

    checkout = _get_checkout_session(db, provider, event.session_id)
    if checkout is not None and (checkout.user_id != event.user_id or checkout.tier != tier_id.value):
        raise _integrity_failure(
            "event does not match checkout session",
            session=event.session_id,
            event_user=event.user_id,
            session_user=checkout.user_id,
            event_tier=tier_id.value,
            session_tier=checkout.tier,
        )

    lock_user_purchases(db, event.user_id)
    when = now or now_utc()

    existing = find_by_external_session(db, event.session_id)
    if existing is not None:
        logger.info("payment already settled session=%s entitlement=%s", event.session_id, existing.id)
        return SettlementResult(status=DUPLICATE, entitlement=existing)

    if checkout is not None:
        checkout.status = "completed"
        checkout.completed_at = when

    decision = evaluate_eligibility(get_current_entitlement(db, event.user_id), tier_id, when)
    if not decision.allowed:
        logger.warning(
            "paid session is redundant, not recorded; refund needed session=%s user=%s tier=%s reason=%s",
            event.session_id,
            event.user_id,
            tier_id.value,
            decision.reason,
        )
        audit(
            db,
            event.user_id,
            "checkout_session",
            event.session_id,
            "purchase.conflict",
            {"tier": tier_id.value, "amount_paid_cents": event.amount_paid_cents, "reason": decision.reason},
        )
        return SettlementResult(status=CONFLICT, detail=decision.reason)

    entitlement = record_purchase(
        db,
        event.user_id,
        tier_id,
        external_session_id=event.session_id,
        amount_paid_cents=event.amount_paid_cents,
        now=when,
    )
    audit(
        db,
        event.user_id,
        "user_entitlement",
        str(entitlement.id),
        "purchase.settled",
        {
            "tier": tier_id.value,
            "session_id": event.session_id,
            "provider": provider,
            "amount_paid_cents": event.amount_paid_cents,
        },
    )
    logger.info(
        "payment settled session=%s user=%s tier=%s entitlement=%s",
        event.session_id,
        event.user_id,
        tier_id.value,
        entitlement.id,
    )
    return SettlementResult(status=PROCESSED, entitlement=entitlement)


def ingest_webhook_event(db: Session, *, provider: str, payload: dict, now: datetime | None = None) -> WebhookResult:
    provider_norm = _normalize_provider(provider)
    event = normalize_webhook_event(provider_norm, payload)

    seen = db.execute(
        sa.select(PaymentWebhookEvent.status).where(
            PaymentWebhookEvent.provider == provider_norm,
            PaymentWebhookEvent.event_id == event.event_id,
        )
    ).scalar_one_or_none()
    if seen is not None:
        return WebhookResult(
            provider=provider_norm,
            event_id=event.event_id,
            event_type=event.event_type,
            status=seen,
            duplicate=True,
        )

    result = None
    if event.payment is None:
        status = IGNORED
    else:
        result = settle_payment(db, event.payment, provider=provider_norm, now=now)
        status = result.status

    insert = insert_for(db)
    db.execute(
        insert(PaymentWebhookEvent)
        .values(
            provider=provider_norm,
            event_id=event.event_id,
            event_type=event.event_type,
            session_id=(event.payment.session_id if event.payment else None),
            user_id=(event.payment.user_id if event.payment else None),
            payload=event.payload,
            status=status,
            detail=(result.detail if result else None),
            received_at=now or now_utc(),
        )
        .on_conflict_do_nothing(index_elements=["provider", "event_id"])
    )

    entitlement = result.entitlement if result else None
    return WebhookResult(
        provider=provider_norm,
        event_id=event.event_id,
        event_type=event.event_type,
        status=status,
        duplicate=status == DUPLICATE,
        entitlement_id=(str(entitlement.id) if entitlement else None),
    )


def expire_stale_checkout_sessions(db: Session, *, now: datetime | None = None) -> int:
    cutoff = now or now_utc()
    result = db.execute(
        sa.update(CheckoutSession)
        .where(
            CheckoutSession.status == "created",
            CheckoutSession.expires_at.is_not(None),
            CheckoutSession.expires_at < cutoff,
        )
        .values(status="expired")
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)

