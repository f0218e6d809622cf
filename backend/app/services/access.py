from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import assert_never

from sqlalchemy.orm import Session

from app.core.security import now_utc
from app.services.catalog import ContentCategory, get_tier, parse_category
from app.services.entitlements import Entitlement, get_current_entitlement

EXPIRED = "expired"

REASON_NO_PURCHASE = "No purchase found. Rent or buy the series to start watching."
REASON_RENTAL_EXPIRED = "Your rental has expired."
REASON_EXTRAS_REQUIRE_BOXSET = "Extras require the Box Set."
REASON_EPISODES_NOT_INCLUDED = "Episodes are not included in your purchase."


@dataclass(frozen=True)
class AccessDecision:
    has_access: bool
    tier: str | None
    reason: str | None = None


@dataclass(frozen=True)
class EffectiveAccess:
    has_access: bool
    tier: str | None
    expires_at: datetime | None


def effective_access(current: Entitlement | None, now: datetime) -> EffectiveAccess:
    if current is None:
        return EffectiveAccess(has_access=False, tier=None, expires_at=None)
    if current.is_expired(now):
        return EffectiveAccess(has_access=False, tier=EXPIRED, expires_at=current.expires_at)
    return EffectiveAccess(has_access=True, tier=current.tier.value, expires_at=current.expires_at)


def evaluate_access(current: Entitlement | None, category: ContentCategory, now: datetime) -> AccessDecision:
    """Pure playback rule. Expiry is decided here, at read time, never by a sweep."""
    if current is None:
        return AccessDecision(has_access=False, tier=None, reason=REASON_NO_PURCHASE)
    if current.is_expired(now):
        return AccessDecision(has_access=False, tier=EXPIRED, reason=REASON_RENTAL_EXPIRED)

    tier = get_tier(current.tier)
    if tier.grants(category):
        return AccessDecision(has_access=True, tier=current.tier.value)

    match category:
        case ContentCategory.EXTRA:
            reason = REASON_EXTRAS_REQUIRE_BOXSET
        case ContentCategory.EPISODE:
            reason = REASON_EPISODES_NOT_INCLUDED
        case _:
            assert_never(category)
    return AccessDecision(has_access=False, tier=current.tier.value, reason=reason)


def get_effective_access(db: Session, user_id: str, *, now: datetime | None = None) -> EffectiveAccess:
    return effective_access(get_current_entitlement(db, user_id), now or now_utc())


def check_access(
    db: Session,
    user_id: str,
    category: str | ContentCategory,
    *,
    now: datetime | None = None,
) -> AccessDecision:
    content_category = parse_category(category)
    return evaluate_access(get_current_entitlement(db, user_id), content_category, now or now_utc())
