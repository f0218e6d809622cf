from dataclasses import dataclass
from datetime import datetime, timezone

from jose import jwt

from app.core.config import settings


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str | None = None
    display_name: str | None = None


def now_utc() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything we store is UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def decode_token(token: str) -> dict:
    options = {"verify_aud": settings.IDENTITY_JWT_AUDIENCE is not None}
    return jwt.decode(
        token,
        settings.IDENTITY_JWT_SECRET,
        algorithms=[settings.IDENTITY_JWT_ALGORITHM],
        audience=settings.IDENTITY_JWT_AUDIENCE,
        issuer=settings.IDENTITY_JWT_ISSUER,
        options=options,
    )

def identity_from_claims(claims: dict) -> Identity:
    user_id = str(claims.get("sub") or "").strip()
    if not user_id:
        raise ValueError("token has no subject")
    email = claims.get("email")
    name = claims.get("name") or claims.get("given_name")
    return Identity(
        user_id=user_id,
        email=str(email).strip().lower() if email else None,
        display_name=str(name).strip() if name else None,
    )
