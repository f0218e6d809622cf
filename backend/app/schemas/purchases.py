from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.services.catalog import ContentCategory, TierId

PaymentProvider = Literal["none", "stripe", "manual"]
WebhookStatus = Literal["processed", "duplicate", "ignored", "conflict"]


class PurchaseIn(BaseModel):
    tier: TierId
    user_id: str | None = Field(default=None, max_length=255)


class ValidatePurchaseOut(BaseModel):
    allowed: bool
    tier: TierId
    reason: str | None = None


class CheckoutOut(BaseModel):
    session_id: str
    redirect_url: str
    provider: PaymentProvider
    tier: TierId
    amount_cents: int
    currency: str
    expires_at: datetime | None = None


class CheckoutBlockedOut(BaseModel):
    allowed: Literal[False] = False
    reason: str


class WebhookEventOut(BaseModel):
    ok: bool = True
    provider: PaymentProvider
    event_id: str
    event_type: str
    status: WebhookStatus
    duplicate: bool
    entitlement_id: str | None = None


class PurchaseStatusOut(BaseModel):
    has_access: bool
    tier: TierId | Literal["expired"] | None = None
    expires_at: datetime | None = None


class EntitlementOut(BaseModel):
    id: str
    tier: TierId
    created_at: datetime
    expires_at: datetime | None = None
    amount_paid_cents: int | None = None
    external_session_id: str | None = None
    expired: bool


class TierOut(BaseModel):
    id: TierId
    display_name: str
    description: str
    price_cents: int
    currency: str
    duration_days: int | None = None
    grants: list[ContentCategory]


class NotificationSweepOut(BaseModel):
    ok: bool = True
    now: datetime
    sent: dict[str, int]
    failed: dict[str, int]
    skipped: dict[str, int]
