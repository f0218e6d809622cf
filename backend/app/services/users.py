from __future__ import annotations

from dataclasses import dataclass

import sqlalchemy as sa
from sqlalchemy.orm import Session

from app.core.security import Identity, now_utc
from app.db.session import insert_for
from app.models.user import User


@dataclass(frozen=True)
class Contact:
    user_id: str
    email: str
    first_name: str


def sync_identity(db: Session, identity: Identity) -> User:
    """Upsert the identity provider's view of a user; empty claims keep stored values."""
    now = now_utc()
    insert = insert_for(db)
    values = {
        "id": identity.user_id,
        "email": identity.email,
        "display_name": identity.display_name,
        "purchase_seq": 0,
        "created_at": now,
        "last_seen_at": now,
    }
    stmt = insert(User).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["id"],
        set_={
            "email": sa.func.coalesce(stmt.excluded.email, User.email),
            "display_name": sa.func.coalesce(stmt.excluded.display_name, User.display_name),
            "last_seen_at": stmt.excluded.last_seen_at,
        },
    )
    db.execute(stmt)
    return db.get(User, identity.user_id, populate_existing=True)


def _first_name(display_name: str | None) -> str:
    name = (display_name or "").strip()
    return name.split()[0] if name else "there"


def resolve_contact(db: Session, user_id: str) -> Contact | None:
    user = db.get(User, user_id)
    if user is None or not user.email:
        return None
    return Contact(user_id=user.id, email=user.email, first_name=_first_name(user.display_name))
