"""Tier catalog.

The one place where tier prices, durations and grants are defined. Built once
at import time and exposed read-only; anything that needs a price (checkout,
settlement amount checks, the public tier listing) reads it from here.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from types import MappingProxyType

from app.core.errors import ValidationError


class TierId(str, enum.Enum):
    RENTAL = "rental"
    REGULAR = "regular"
    BOXSET = "boxset"


class ContentCategory(str, enum.Enum):
    EPISODE = "episode"
    EXTRA = "extra"


@dataclass(frozen=True)
class Tier:
    id: TierId
    price_cents: int
    grants_categories: frozenset[ContentCategory]
    duration_days: int | None
    display_name: str
    description: str

    @property
    def is_permanent(self) -> bool:
        return self.duration_days is None

    def grants(self, category: ContentCategory) -> bool:
        return category in self.grants_categories


_TIERS = MappingProxyType(
    {
        TierId.RENTAL: Tier(
            id=TierId.RENTAL,
            price_cents=1499,
            grants_categories=frozenset({ContentCategory.EPISODE}),
            duration_days=4,
            display_name="4-Day Rental",
            description="4-day access to all 4 episodes.",
        ),
        TierId.REGULAR: Tier(
            id=TierId.REGULAR,
            price_cents=2499,
            grants_categories=frozenset({ContentCategory.EPISODE}),
            duration_days=None,
            display_name="Regular Purchase",
            description="Permanent access to all 4 episodes.",
        ),
        TierId.BOXSET: Tier(
            id=TierId.BOXSET,
            price_cents=7499,
            grants_categories=frozenset({ContentCategory.EPISODE, ContentCategory.EXTRA}),
            duration_days=None,
            display_name="Box Set",
            description="All 4 episodes plus 40 hours of bonus content.",
        ),
    }
)


def parse_tier_id(raw: str | TierId | None) -> TierId:
    if isinstance(raw, TierId):
        return raw
    value = (raw or "").strip().lower()
    try:
        return TierId(value)
    except ValueError:
        raise ValidationError(f"unknown tier '{raw}'") from None


def parse_category(raw: str | ContentCategory | None) -> ContentCategory:
    if isinstance(raw, ContentCategory):
        return raw
    value = (raw or "").strip().lower()
    try:
        return ContentCategory(value)
    except ValueError:
        raise ValidationError(f"unknown content category '{raw}'") from None


def get_tier(tier_id: str | TierId) -> Tier:
    return _TIERS[parse_tier_id(tier_id)]


def list_tiers() -> list[Tier]:
    return [_TIERS[t] for t in TierId]
