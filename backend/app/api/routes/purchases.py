import json

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import ensure_acting_user, get_current_user
from app.core.config import settings
from app.core.errors import DependencyError, PaymentIntegrityError, ValidationError
from app.core.logging import security_logger
from app.core.security import Identity, now_utc
from app.db.session import get_db
from app.schemas.purchases import (
    CheckoutBlockedOut,
    CheckoutOut,
    EntitlementOut,
    NotificationSweepOut,
    PurchaseIn,
    PurchaseStatusOut,
    TierOut,
    ValidatePurchaseOut,
    WebhookEventOut,
)
from app.services.access import get_effective_access
from app.services.billing import create_checkout_intent, ingest_webhook_event
from app.services.billing_provider import current_provider_code, verify_webhook_request
from app.services.catalog import list_tiers
from app.services.eligibility import check_eligibility
from app.services.entitlements import list_entitlements
from app.services.notifier import run_expiration_sweep

router = APIRouter()


@router.get("/tiers", response_model=list[TierOut])
def purchase_tiers():
    currency = settings.PAYMENT_CURRENCY.lower()
    return [
        TierOut(
            id=t.id.value,
            display_name=t.display_name,
            description=t.description,
            price_cents=t.price_cents,
            currency=currency,
            duration_days=t.duration_days,
            grants=sorted(c.value for c in t.grants_categories),
        )
        for t in list_tiers()
    ]


@router.post("/validate", response_model=ValidatePurchaseOut)
def validate_purchase(payload: PurchaseIn, current: Identity = Depends(get_current_user), db: Session = Depends(get_db)):
    user_id = ensure_acting_user(current, payload.user_id)
    decision = check_eligibility(db, user_id, payload.tier)
    return ValidatePurchaseOut(allowed=decision.allowed, tier=payload.tier, reason=decision.reason)


@router.post(
    "/checkout",
    response_model=CheckoutOut,
    responses={403: {"model": CheckoutBlockedOut}},
)
def create_checkout(payload: PurchaseIn, current: Identity = Depends(get_current_user), db: Session = Depends(get_db)):
    user_id = ensure_acting_user(current, payload.user_id)
    try:
        intent = create_checkout_intent(db, user_id, payload.tier, customer_email=current.email)
    except DependencyError as exc:
        db.rollback()
        raise HTTPException(503, f"{exc.service} service unavailable")
    if not intent.allowed:
        return JSONResponse(status_code=403, content=CheckoutBlockedOut(reason=intent.reason or "").model_dump())
    db.commit()
    return CheckoutOut(
        session_id=intent.session_id,
        redirect_url=intent.redirect_url,
        provider=intent.provider,
        tier=intent.tier,
        amount_cents=intent.amount_cents,
        currency=intent.currency,
        expires_at=intent.expires_at,
    )


@router.post("/webhook", response_model=WebhookEventOut)
async def payment_webhook(request: Request, db: Session = Depends(get_db)):
    provider = current_provider_code()
    raw = await request.body()
    if not verify_webhook_request(provider, request.headers, raw):
        security_logger.warning(
            "rejected payment webhook with invalid signature provider=%s client=%s",
            provider,
            request.client.host if request.client else "-",
        )
        raise HTTPException(401, "Invalid webhook signature")

    try:
        payload = json.loads(raw)
    except ValueError:
        raise HTTPException(400, "Invalid JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(400, "Invalid JSON payload")

    try:
        out = ingest_webhook_event(db, provider=provider, payload=payload)
    except (PaymentIntegrityError, ValidationError) as exc:
        db.rollback()
        raise HTTPException(400, str(exc))
    db.commit()
    return WebhookEventOut(
        provider=out.provider,
        event_id=out.event_id,
        event_type=out.event_type,
        status=out.status,
        duplicate=out.duplicate,
        entitlement_id=out.entitlement_id,
    )


@router.get("/me", response_model=PurchaseStatusOut)
def purchase_status(current: Identity = Depends(get_current_user), db: Session = Depends(get_db)):
    access = get_effective_access(db, current.user_id)
    return PurchaseStatusOut(has_access=access.has_access, tier=access.tier, expires_at=access.expires_at)


@router.get("/history", response_model=list[EntitlementOut])
def purchase_history(current: Identity = Depends(get_current_user), db: Session = Depends(get_db)):
    now = now_utc()
    return [
        EntitlementOut(
            id=str(e.id),
            tier=e.tier.value,
            created_at=e.created_at,
            expires_at=e.expires_at,
            amount_paid_cents=e.amount_paid_cents,
            external_session_id=e.external_session_id,
            expired=e.is_expired(now),
        )
        for e in list_entitlements(db, current.user_id)
    ]


@router.post("/notifications/sweep", response_model=NotificationSweepOut)
def trigger_notification_sweep(current: Identity = Depends(get_current_user), db: Session = Depends(get_db)):
    if settings.ENV != "dev":
        raise HTTPException(404, "Not available")
    result = run_expiration_sweep(db)
    db.commit()
    return NotificationSweepOut(ok=True, **result.as_dict())
