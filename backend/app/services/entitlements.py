from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import sqlalchemy as sa
from sqlalchemy.orm import Session

from app.core.security import as_utc, now_utc
from app.db.session import insert_for
from app.models.entitlement import UserEntitlement
from app.models.user import User
from app.services.catalog import TierId, get_tier

COMPLETED = "completed"


class NotificationKind(str, enum.Enum):
    WARNING_48H = "48h-warning"
    WARNING_24H = "24h-warning"
    EXPIRED = "expired"


_MARK_COLUMNS = {
    NotificationKind.WARNING_48H: UserEntitlement.warning_48h_sent,
    NotificationKind.WARNING_24H: UserEntitlement.warning_24h_sent,
    NotificationKind.EXPIRED: UserEntitlement.expired_sent,
}


@dataclass(frozen=True)
class NotificationMark:
    warning_48h_sent: bool = False
    warning_24h_sent: bool = False
    expired_sent: bool = False

    def is_sent(self, kind: NotificationKind) -> bool:
        return {
            NotificationKind.WARNING_48H: self.warning_48h_sent,
            NotificationKind.WARNING_24H: self.warning_24h_sent,
            NotificationKind.EXPIRED: self.expired_sent,
        }[kind]


@dataclass(frozen=True)
class Entitlement:
    id: uuid.UUID
    user_id: str
    tier: TierId
    created_at: datetime
    expires_at: datetime | None
    seq: int = 0
    status: str = COMPLETED
    external_session_id: str | None = None
    amount_paid_cents: int | None = None
    notifications: NotificationMark = field(default_factory=NotificationMark)

    def __post_init__(self):
        if (self.tier is TierId.RENTAL) != (self.expires_at is not None):
            raise ValueError("expires_at must be set for rentals and only for rentals")

    def is_expired(self, now: datetime) -> bool:
        # A rental is active up to and including its expiry instant.
        return self.expires_at is not None and now > self.expires_at


def _to_entitlement(row: UserEntitlement) -> Entitlement:
    return Entitlement(
        id=row.id,
        user_id=row.user_id,
        tier=TierId(row.tier),
        created_at=as_utc(row.created_at),
        expires_at=as_utc(row.expires_at),
        seq=row.seq,
        status=row.status,
        external_session_id=row.external_session_id,
        amount_paid_cents=row.amount_paid_cents,
        notifications=NotificationMark(
            warning_48h_sent=bool(row.warning_48h_sent),
            warning_24h_sent=bool(row.warning_24h_sent),
            expired_sent=bool(row.expired_sent),
        ),
    )


def compute_expires_at(tier: TierId, created_at: datetime) -> datetime | None:
    duration = get_tier(tier).duration_days
    if duration is None:
        return None
    return created_at + timedelta(days=duration)


def ensure_user(db: Session, user_id: str) -> None:
    insert = insert_for(db)
    db.execute(
        insert(User)
        .values(id=user_id, purchase_seq=0, created_at=now_utc())
        .on_conflict_do_nothing(index_elements=["id"])
    )


def lock_user_purchases(db: Session, user_id: str) -> int:
    """Serialize purchase writes for one user until the transaction ends.

    The UPDATE takes the row lock on PostgreSQL (the database write lock on
    SQLite), so a second settlement for the same user waits here and then
    reads the first one's committed entitlement. Returns the bumped sequence.
    """
    ensure_user(db, user_id)
    db.execute(
        sa.update(User)
        .where(User.id == user_id)
        .values(purchase_seq=User.purchase_seq + 1)
        .execution_options(synchronize_session=False)
    )
    return int(db.execute(sa.select(User.purchase_seq).where(User.id == user_id)).scalar_one())


def get_current_entitlement(db: Session, user_id: str) -> Entitlement | None:
    """Most recently created completed entitlement; same timestamp, highest seq wins."""
    row = db.execute(
        sa.select(UserEntitlement)
        .where(UserEntitlement.user_id == user_id, UserEntitlement.status == COMPLETED)
        .order_by(UserEntitlement.created_at.desc(), UserEntitlement.seq.desc())
        .limit(1)
    ).scalars().first()
    return _to_entitlement(row) if row else None


def get_entitlement(db: Session, entitlement_id: uuid.UUID) -> Entitlement | None:
    row = db.get(UserEntitlement, entitlement_id)
    return _to_entitlement(row) if row else None


def list_entitlements(db: Session, user_id: str) -> list[Entitlement]:
    rows = db.execute(
        sa.select(UserEntitlement)
        .where(UserEntitlement.user_id == user_id)
        .order_by(UserEntitlement.created_at.desc(), UserEntitlement.seq.desc())
    ).scalars().all()
    return [_to_entitlement(r) for r in rows]


def find_by_external_session(db: Session, session_id: str) -> Entitlement | None:
    row = db.execute(
        sa.select(UserEntitlement).where(UserEntitlement.external_session_id == session_id)
    ).scalars().first()
    return _to_entitlement(row) if row else None


def record_purchase(
    db: Session,
    user_id: str,
    tier: TierId,
    *,
    external_session_id: str | None = None,
    amount_paid_cents: int | None = None,
    now: datetime | None = None,
) -> Entitlement:
    """Append a completed entitlement. Prior records are never touched.

    Not idempotent by itself: callers settling external payments must check
    ``find_by_external_session`` first (under ``lock_user_purchases``).
    """
    created_at = now or now_utc()
    seq = lock_user_purchases(db, user_id)
    row = UserEntitlement(
        id=uuid.uuid4(),
        user_id=user_id,
        seq=seq,
        tier=tier.value,
        status=COMPLETED,
        external_session_id=external_session_id,
        amount_paid_cents=amount_paid_cents,
        created_at=created_at,
        expires_at=compute_expires_at(tier, created_at),
        warning_48h_sent=False,
        warning_24h_sent=False,
        expired_sent=False,
    )
    db.add(row)
    db.flush()
    return _to_entitlement(row)


def mark_notification_sent(db: Session, entitlement_id: uuid.UUID, kind: NotificationKind) -> bool:
    """Set one notification flag. Returns False when it was already set."""
    column = _MARK_COLUMNS[NotificationKind(kind)]
    result = db.execute(
        sa.update(UserEntitlement)
        .where(UserEntitlement.id == entitlement_id, column.is_(False))
        .values({column.key: True})
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount:
        return True
    exists = db.execute(sa.select(UserEntitlement.id).where(UserEntitlement.id == entitlement_id)).first()
    if not exists:
        raise LookupError(f"entitlement {entitlement_id} not found")
    return False


def find_rentals_expiring_between(
    db: Session,
    *,
    start: datetime,
    end: datetime,
    kind: NotificationKind,
    include_start: bool = True,
    include_end: bool = True,
    limit: int = 500,
) -> list[Entitlement]:
    column = _MARK_COLUMNS[kind]
    lower = UserEntitlement.expires_at >= start if include_start else UserEntitlement.expires_at > start
    upper = UserEntitlement.expires_at <= end if include_end else UserEntitlement.expires_at < end
    rows = db.execute(
        sa.select(UserEntitlement)
        .where(
            UserEntitlement.tier == TierId.RENTAL.value,
            UserEntitlement.status == COMPLETED,
            lower,
            upper,
            column.is_(False),
        )
        .order_by(UserEntitlement.expires_at.asc(), UserEntitlement.id.asc())
        .limit(limit)
    ).scalars().all()
    return [_to_entitlement(r) for r in rows]
