from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import ensure_acting_user, get_current_user
from app.core.errors import DependencyError, ValidationError
from app.core.security import Identity
from app.db.session import get_db
from app.schemas.content import (
    LibraryItemOut,
    LibraryOut,
    PlaybackDeniedOut,
    PlaybackUrlIn,
    PlaybackUrlOut,
)
from app.services.access import get_effective_access
from app.services.video import get_playback_url, list_library

router = APIRouter()


@router.post(
    "/playback-url",
    response_model=PlaybackUrlOut,
    responses={403: {"model": PlaybackDeniedOut}},
)
def playback_url(payload: PlaybackUrlIn, current: Identity = Depends(get_current_user), db: Session = Depends(get_db)):
    user_id = ensure_acting_user(current, payload.user_id)
    try:
        result = get_playback_url(db, user_id, payload.content_id, payload.category)
    except LookupError:
        raise HTTPException(404, "Content not found")
    except ValidationError as exc:
        raise HTTPException(400, str(exc))
    except DependencyError as exc:
        raise HTTPException(503, f"{exc.service} service unavailable")

    if not result.has_access:
        return JSONResponse(
            status_code=403,
            content=PlaybackDeniedOut(reason=result.reason or "", tier=result.tier).model_dump(),
        )
    return PlaybackUrlOut(url=result.url, tier=result.tier, expires_at=result.expires_at)


@router.get("/library", response_model=LibraryOut)
def content_library(current: Identity = Depends(get_current_user), db: Session = Depends(get_db)):
    access = get_effective_access(db, current.user_id)
    items = [
        LibraryItemOut(
            content_id=item.content_id,
            category=item.category.value,
            has_access=decision.has_access,
            reason=decision.reason,
        )
        for item, decision in list_library(db, current.user_id)
    ]
    return LibraryOut(tier=access.tier, items=items)
