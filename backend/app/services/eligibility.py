from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Never

from sqlalchemy.orm import Session

from app.core.security import now_utc
from app.services.catalog import TierId, parse_tier_id
from app.services.entitlements import Entitlement, get_current_entitlement

logger = logging.getLogger(__name__)

REASON_OWNS_BOXSET = "You already own the Box Set, which includes all content."
REASON_REGULAR_HAS_PERMANENT = "You already have permanent access. A rental is not needed."
REASON_REGULAR_ALREADY_OWNED = "You already own the Regular Purchase."


def format_expiry(expires_at: datetime) -> str:
    return expires_at.strftime("%Y-%m-%d %H:%M UTC")


def active_rental_reason(expires_at: datetime) -> str:
    return f"You already have an active rental. It expires on {format_expiry(expires_at)}."


@dataclass(frozen=True)
class EligibilityDecision:
    allowed: bool
    reason: str | None = None

    @classmethod
    def allow(cls) -> EligibilityDecision:
        return cls(allowed=True, reason=None)

    @classmethod
    def block(cls, reason: str) -> EligibilityDecision:
        return cls(allowed=False, reason=reason)


def _fail_open(current: Entitlement, requested: TierId, unmatched: Never) -> EligibilityDecision:
    # Unrecognised states allow the purchase. `unmatched` is Never so missed tiers fail type checking.
    logger.warning(
        "eligibility fell through to fail-open (user=%s current=%s requested=%s value=%r)",
        current.user_id,
        current.tier,
        requested,
        unmatched,
    )
    return EligibilityDecision.allow()


def evaluate_eligibility(current: Entitlement | None, requested: TierId, now: datetime) -> EligibilityDecision:
    """Pure purchase rule: may a user holding ``current`` buy ``requested`` at ``now``."""
    if current is None or current.is_expired(now):
        return EligibilityDecision.allow()

    match current.tier:
        case TierId.BOXSET:
            return EligibilityDecision.block(REASON_OWNS_BOXSET)
        case TierId.REGULAR:
            match requested:
                case TierId.RENTAL:
                    return EligibilityDecision.block(REASON_REGULAR_HAS_PERMANENT)
                case TierId.REGULAR:
                    return EligibilityDecision.block(REASON_REGULAR_ALREADY_OWNED)
                case TierId.BOXSET:
                    return EligibilityDecision.allow()
                case _:
                    return _fail_open(current, requested, requested)
        case TierId.RENTAL:
            match requested:
                case TierId.RENTAL:
                    return EligibilityDecision.block(active_rental_reason(current.expires_at))
                case TierId.REGULAR | TierId.BOXSET:
                    return EligibilityDecision.allow()
                case _:
                    return _fail_open(current, requested, requested)
        case _:
            return _fail_open(current, requested, current.tier)


def check_eligibility(
    db: Session,
    user_id: str,
    requested: str | TierId,
    *,
    now: datetime | None = None,
) -> EligibilityDecision:
    tier_id = parse_tier_id(requested)
    current = get_current_entitlement(db, user_id)
    return evaluate_eligibility(current, tier_id, now or now_utc())
