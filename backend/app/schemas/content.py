from datetime import datetime

from pydantic import BaseModel, Field

from app.services.catalog import ContentCategory


class PlaybackUrlIn(BaseModel):
    content_id: str = Field(..., min_length=1, max_length=255)
    category: ContentCategory | None = None
    user_id: str | None = Field(default=None, max_length=255)


class PlaybackUrlOut(BaseModel):
    url: str
    tier: str
    expires_at: datetime | None = None


class PlaybackDeniedOut(BaseModel):
    reason: str
    tier: str | None = None


class LibraryItemOut(BaseModel):
    content_id: str
    category: ContentCategory
    has_access: bool
    reason: str | None = None


class LibraryOut(BaseModel):
    tier: str | None = None
    items: list[LibraryItemOut]
