"""Rental expiration emails.

One sweep looks at three windows relative to ``now``:

- 48h warning: ``now + 24h < expires_at <= now + 48h``
- 24h warning: ``now < expires_at <= now + 24h``
- expired:     ``now - lookback <= expires_at < now``

Windows are wider than the hourly schedule so a send that failed is retried by
the next sweep while the rental is still in the same window. A flag is only set
after the email service accepted the message, and it is committed right away,
so running the sweep twice sends at most one email per (entitlement, kind).
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import now_utc
from app.services.eligibility import format_expiry
from app.services.email import send_notification
from app.services.entitlements import (
    Entitlement,
    NotificationKind,
    find_rentals_expiring_between,
    get_current_entitlement,
    mark_notification_sent,
)
from app.services.users import Contact, resolve_contact

logger = logging.getLogger(__name__)

SendFn = Callable[[str, NotificationKind, dict], bool]
ResolveFn = Callable[[Session, str], Contact | None]

HOURS_REMAINING = {
    NotificationKind.WARNING_48H: 48,
    NotificationKind.WARNING_24H: 24,
    NotificationKind.EXPIRED: 0,
}


@dataclass(frozen=True)
class SweepWindow:
    kind: NotificationKind
    start: datetime
    end: datetime
    include_start: bool
    include_end: bool


@dataclass
class SweepResult:
    now: datetime
    sent: Counter = field(default_factory=Counter)
    failed: Counter = field(default_factory=Counter)
    skipped: Counter = field(default_factory=Counter)

    def as_dict(self) -> dict:
        return {
            "now": self.now.isoformat(),
            "sent": {k.value: v for k, v in self.sent.items()},
            "failed": {k.value: v for k, v in self.failed.items()},
            "skipped": {k.value: v for k, v in self.skipped.items()},
        }


def sweep_windows(now: datetime, *, expired_lookback_hours: int | None = None) -> list[SweepWindow]:
    if expired_lookback_hours is None:
        expired_lookback_hours = settings.NOTIFY_EXPIRED_LOOKBACK_HOURS
    lookback = timedelta(hours=expired_lookback_hours)
    return [
        SweepWindow(NotificationKind.WARNING_48H, now + timedelta(hours=24), now + timedelta(hours=48), False, True),
        SweepWindow(NotificationKind.WARNING_24H, now, now + timedelta(hours=24), False, True),
        SweepWindow(NotificationKind.EXPIRED, now - lookback, now, True, False),
    ]


def _template_data(contact: Contact, entitlement: Entitlement, kind: NotificationKind) -> dict:
    return {
        "first_name": contact.first_name,
        "expires_at": format_expiry(entitlement.expires_at),
        "hours_remaining": HOURS_REMAINING[kind],
    }


def _is_superseded(db: Session, entitlement: Entitlement) -> bool:
    current = get_current_entitlement(db, entitlement.user_id)
    return current is not None and current.id != entitlement.id


def run_expiration_sweep(
    db: Session,
    *,
    now: datetime | None = None,
    send: SendFn = send_notification,
    resolve: ResolveFn = resolve_contact,
    limit: int = 500,
) -> SweepResult:
    """Send due rental emails. Commits after each flag it sets.

    Email and contact problems are logged and skipped. Store failures raise.
    """
    when = now or now_utc()
    result = SweepResult(now=when)

    for window in sweep_windows(when):
        due = find_rentals_expiring_between(
            db,
            start=window.start,
            end=window.end,
            kind=window.kind,
            include_start=window.include_start,
            include_end=window.include_end,
            limit=limit,
        )
        for entitlement in due:
            if _is_superseded(db, entitlement):
                result.skipped[window.kind] += 1
                continue

            contact = resolve(db, entitlement.user_id)
            if contact is None:
                logger.warning("no email on file for user=%s, %s not sent", entitlement.user_id, window.kind.value)
                result.failed[window.kind] += 1
                continue

            try:
                delivered = send(contact.email, window.kind, _template_data(contact, entitlement, window.kind))
            except Exception:
                logger.exception("sending %s for entitlement=%s failed", window.kind.value, entitlement.id)
                delivered = False
            if not delivered:
                result.failed[window.kind] += 1
                continue

            mark_notification_sent(db, entitlement.id, window.kind)
            db.commit()
            result.sent[window.kind] += 1

    logger.info(
        "rental notification sweep done sent=%s failed=%s skipped=%s",
        sum(result.sent.values()),
        sum(result.failed.values()),
        sum(result.skipped.values()),
    )
    return result
