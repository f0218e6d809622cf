from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from urllib import parse as urlparse

from jose import jwt
from jose.exceptions import JOSEError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import DependencyError, ValidationError
from app.core.security import now_utc
from app.services.access import AccessDecision, check_access, evaluate_access
from app.services.catalog import ContentCategory, parse_category
from app.services.entitlements import get_current_entitlement

logger = logging.getLogger(__name__)

MUX_AUDIENCE_VIDEO = "v"


@dataclass(frozen=True)
class ContentItem:
    content_id: str
    category: ContentCategory
    playback_id: str


@dataclass(frozen=True)
class PlaybackResult:
    has_access: bool
    tier: str | None
    url: str | None = None
    reason: str | None = None
    expires_at: datetime | None = None


def parse_content_catalog(raw: str) -> dict[str, ContentItem]:
    """Parse ``content_id=category:playback_id`` pairs separated by commas."""
    out: dict[str, ContentItem] = {}
    for part in (raw or "").split(","):
        item = part.strip()
        if not item:
            continue
        if "=" not in item or ":" not in item.split("=", 1)[1]:
            raise ValueError(f"CONTENT_CATALOG entry '{item}' must look like content_id=category:playback_id")
        content_id, rest = [x.strip() for x in item.split("=", 1)]
        category, playback_id = [x.strip() for x in rest.split(":", 1)]
        if not content_id or not playback_id:
            raise ValueError(f"CONTENT_CATALOG entry '{item}' has an empty id")
        out[content_id] = ContentItem(
            content_id=content_id,
            category=ContentCategory(category.lower()),
            playback_id=playback_id,
        )
    return out


@lru_cache(maxsize=4)
def _parsed_catalog(raw: str) -> dict[str, ContentItem]:
    return parse_content_catalog(raw)


def _content_catalog() -> dict[str, ContentItem]:
    return _parsed_catalog(settings.CONTENT_CATALOG)


def list_content() -> list[ContentItem]:
    return list(_content_catalog().values())


def get_content_item(content_id: str) -> ContentItem:
    item = _content_catalog().get((content_id or "").strip())
    if item is None:
        raise LookupError(f"content '{content_id}' not found")
    return item


def _signing_key() -> str:
    raw = (settings.MUX_SIGNING_PRIVATE_KEY or "").strip()
    if not raw or not settings.MUX_SIGNING_KEY_ID:
        raise DependencyError("video", "Mux signing key is not configured")
    if raw.startswith("-----BEGIN"):
        return raw
    try:
        return base64.b64decode(raw).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise DependencyError("video", "MUX_SIGNING_PRIVATE_KEY is not valid base64") from exc


def sign_playback_token(playback_id: str, expires_at: datetime) -> str:
    claims = {
        "sub": playback_id,
        "aud": MUX_AUDIENCE_VIDEO,
        "exp": int(expires_at.timestamp()),
        "kid": settings.MUX_SIGNING_KEY_ID,
    }
    try:
        return jwt.encode(
            claims,
            _signing_key(),
            algorithm="RS256",
            headers={"kid": settings.MUX_SIGNING_KEY_ID},
        )
    except JOSEError as exc:
        raise DependencyError("video", f"could not sign playback token: {exc}") from exc


def mint_playback_url(playback_id: str, expiry_seconds: int | None = None, *, now: datetime | None = None) -> str:
    ttl = int(expiry_seconds or settings.PLAYBACK_URL_TTL_SECONDS)
    base = settings.MUX_STREAM_BASE_URL.rstrip("/")
    url = f"{base}/{urlparse.quote(playback_id, safe='')}.m3u8"

    provider = (settings.VIDEO_PROVIDER or "none").strip().lower()
    if provider != "mux":
        # Unsigned URLs only work against public playback ids; dev use.
        logger.debug("video provider '%s' is not mux, returning unsigned url for %s", provider, playback_id)
        return url

    token = sign_playback_token(playback_id, (now or now_utc()) + timedelta(seconds=ttl))
    return f"{url}?{urlparse.urlencode({'token': token})}"


def get_playback_url(
    db: Session,
    user_id: str,
    content_id: str,
    category: str | ContentCategory | None = None,
    *,
    now: datetime | None = None,
) -> PlaybackResult:
    item = get_content_item(content_id)
    if category is not None:
        requested = parse_category(category)
        if requested is not item.category:
            raise ValidationError(f"content '{content_id}' is not in category '{requested.value}'")

    when = now or now_utc()
    decision = check_access(db, user_id, item.category, now=when)
    if not decision.has_access:
        return PlaybackResult(has_access=False, tier=decision.tier, reason=decision.reason)

    ttl = int(settings.PLAYBACK_URL_TTL_SECONDS)
    url = mint_playback_url(item.playback_id, ttl, now=when)
    logger.info("playback url minted user=%s content=%s tier=%s", user_id, content_id, decision.tier)
    return PlaybackResult(
        has_access=True,
        tier=decision.tier,
        url=url,
        expires_at=when + timedelta(seconds=ttl),
    )


def list_library(db: Session, user_id: str, *, now: datetime | None = None) -> list[tuple[ContentItem, AccessDecision]]:
    current = get_current_entitlement(db, user_id)
    when = now or now_utc()
    return [(item, evaluate_access(current, item.category, when)) for item in list_content()]
