from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from app.core.logging import security_logger
from app.core.security import Identity, decode_token, identity_from_claims
from app.db.session import get_db
from app.services.users import sync_identity

bearer = HTTPBearer(auto_error=False)


def _identity_from_credentials(creds: HTTPAuthorizationCredentials | None) -> Identity:
    if creds is None or not creds.credentials:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        claims = decode_token(creds.credentials)
        return identity_from_claims(claims)
    except (JWTError, ValueError):
        security_logger.warning("rejected bearer token")
        raise HTTPException(status_code=401, detail="Invalid token")


def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> Identity:
    identity = _identity_from_credentials(creds)
    sync_identity(db, identity)
    db.commit()
    return identity


def ensure_acting_user(current: Identity, requested_user_id: str | None) -> str:
    if requested_user_id is not None and requested_user_id != current.user_id:
        raise HTTPException(status_code=403, detail="user_id does not match the authenticated user")
    return current.user_id
