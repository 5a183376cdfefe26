"""
================================================================================
AnimeNegus - Catalog Models
================================================================================
In-memory shapes shared by metadata providers, the aggregator and the store.

CatalogItem is the canonical record shape. Providers produce partial items
(fields the provider does not know stay None); the store returns complete
items carrying the internal id.
================================================================================
"""

from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any
from datetime import date, datetime
from enum import Enum


# =============================================================================
# ENUMS
# =============================================================================

class CatalogKind(str, Enum):
    """Format of a title."""
    TV = "TV"
    MOVIE = "MOVIE"
    OVA = "OVA"
    ONA = "ONA"
    SPECIAL = "SPECIAL"
    UNKNOWN = "UNKNOWN"


class LifecycleStatus(str, Enum):
    """Airing status across all providers."""
    ONGOING = "ONGOING"
    FINISHED = "FINISHED"
    ANNOUNCED = "ANNOUNCED"
    UNKNOWN = "UNKNOWN"


class Season(str, Enum):
    """Broadcast season (lowercase, as most APIs spell it)."""
    WINTER = "winter"
    SPRING = "spring"
    SUMMER = "summer"
    FALL = "fall"

    @classmethod
    def parse(cls, value: str) -> "Season":
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown season '{value}'")

    @classmethod
    def for_month(cls, month: int) -> "Season":
        if month in (1, 2, 3):
            return cls.WINTER
        if month in (4, 5, 6):
            return cls.SPRING
        if month in (7, 8, 9):
            return cls.SUMMER
        return cls.FALL


# =============================================================================
# DATA MODELS
# =============================================================================

@dataclass
class CatalogItem:
    """
    Canonical catalog record.

    Identity:
      - id: store-assigned internal id (None until synced)
      - source + external_id: provider identity (None for local records)
    """

    id: Optional[str] = None
    source: Optional[str] = None
    external_id: Optional[str] = None

    title: Optional[str] = None
    alternate_title: Optional[str] = None
    synopsis: Optional[str] = None
    kind: Optional[CatalogKind] = None
    lifecycle_status: Optional[LifecycleStatus] = None
    episode_count: Optional[int] = None
    episode_duration_minutes: Optional[int] = None
    cover_image_url: Optional[str] = None
    average_score: Optional[float] = None
    release_date: Optional[date] = None
    last_synced_at: Optional[datetime] = None

    genres: List[str] = field(default_factory=list)

    @property
    def is_local(self) -> bool:
        """Locally authored records have no provider identity."""
        return self.external_id is None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'source': self.source,
            'external_id': self.external_id,
            'title': self.title,
            'alternate_title': self.alternate_title,
            'synopsis': self.synopsis,
            'kind': self.kind.value if self.kind else None,
            'lifecycle_status': self.lifecycle_status.value if self.lifecycle_status else None,
            'episode_count': self.episode_count,
            'episode_duration_minutes': self.episode_duration_minutes,
            'cover_image_url': self.cover_image_url,
            'average_score': self.average_score,
            'release_date': self.release_date.isoformat() if self.release_date else None,
            'last_synced_at': self.last_synced_at.isoformat() if self.last_synced_at else None,
            'genres': list(self.genres),
        }


@dataclass
class SearchFilters:
    """Optional search constraints forwarded to providers."""
    genres: List[str] = field(default_factory=list)
    year: Optional[int] = None
    season: Optional[Season] = None
    status: Optional[LifecycleStatus] = None

    def is_empty(self) -> bool:
        return not (self.genres or self.year or self.season or self.status)

    def matches(self, item: CatalogItem) -> bool:
        """
        True unless a field the item actually carries contradicts a filter.

        Unknown fields never exclude an item: providers are partial.
        """
        if self.genres and item.genres:
            wanted = {g.lower() for g in self.genres}
            if not wanted.intersection(g.lower() for g in item.genres):
                return False
        if self.year and item.release_date and item.release_date.year != self.year:
            return False
        if self.season and item.release_date:
            if Season.for_month(item.release_date.month) != self.season:
                return False
        if (self.status and item.lifecycle_status
                and item.lifecycle_status != LifecycleStatus.UNKNOWN
                and item.lifecycle_status != self.status):
            return False
        return True


@dataclass
class PagedResult:
    """Paginated envelope returned by providers and the aggregator."""
    items: List[CatalogItem] = field(default_factory=list)
    total: int = 0
    has_more: bool = False

    @classmethod
    def empty(cls) -> "PagedResult":
        return cls(items=[], total=0, has_more=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'items': [item.to_dict() for item in self.items],
            'total': self.total,
            'has_more': self.has_more,
        }


@dataclass
class PlaybackLinkItem:
    """Persisted playback link for (title_id, episode_number, backend_name)."""
    title_id: str
    episode_number: int
    backend_name: str
    url: str
    quality_label: Optional[str] = None
    is_adaptive_stream: bool = False
    resolved_at: Optional[datetime] = None
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title_id': self.title_id,
            'episode_number': self.episode_number,
            'backend': self.backend_name,
            'url': self.url,
            'quality': self.quality_label,
            'is_adaptive_stream': self.is_adaptive_stream,
            'resolved_at': self.resolved_at.isoformat() if self.resolved_at else None,
        }
