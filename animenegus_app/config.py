"""
================================================================================
AnimeNegus - Configuration
================================================================================
Runtime settings loaded from environment variables (and a .env file).

Defaults mirror the behaviour the aggregation layer was designed around:
  - Detail records are considered stale after 24 hours
  - Listing calls time out after 10s, detail/resolution calls after 15s

USAGE:
    from animenegus_app.config import get_settings

    settings = get_settings()
    settings.list_timeout  # 10.0
================================================================================
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional, Tuple

from dotenv import load_dotenv

load_dotenv()


# =============================================================================
# NAMED DEFAULTS
# =============================================================================

STALE_THRESHOLD = timedelta(hours=24)
LIST_TIMEOUT = 10.0
DETAIL_TIMEOUT = 15.0

DEFAULT_PAGE_SIZE = 20
POPULAR_LOCAL_LIMIT = 20

DEFAULT_PROVIDERS = ("mal", "anilist", "kitsu")
DEFAULT_RESOLVERS = ("kodik", "sibnet")

# (name, priority, enabled)
DEFAULT_STREAMING_BACKENDS: Tuple[Tuple[str, int, bool], ...] = (
    ("gogoanime", 1, True),
    ("zoro", 2, True),
    ("animepahe", 3, True),
    ("9anime", 4, True),
    ("crunchyroll", 5, False),
)
DEFAULT_STREAMING_BACKEND = "gogoanime"

CONSUMET_BASE_URL = "https://api.consumet.org"


def _split_names(raw: Optional[str], default: Tuple[str, ...]) -> List[str]:
    if not raw:
        return list(default)
    names = []
    for part in raw.split(","):
        name = part.strip().lower()
        if name and name not in names:
            names.append(name)
    return names or list(default)


def _float_env(key: str, default: float) -> float:
    raw = os.environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}")


@dataclass
class Settings:
    """Application settings. Construct via from_env() or directly in tests."""

    database_url: Optional[str] = None

    mal_client_id: Optional[str] = None
    kodik_api_key: Optional[str] = None
    consumet_base_url: str = CONSUMET_BASE_URL

    providers: List[str] = field(default_factory=lambda: list(DEFAULT_PROVIDERS))
    resolvers: List[str] = field(default_factory=lambda: list(DEFAULT_RESOLVERS))

    stale_threshold: timedelta = STALE_THRESHOLD
    list_timeout: float = LIST_TIMEOUT
    detail_timeout: float = DETAIL_TIMEOUT

    @classmethod
    def from_env(cls) -> "Settings":
        stale_hours = _float_env('STALE_THRESHOLD_HOURS', STALE_THRESHOLD.total_seconds() / 3600)
        return cls(
            database_url=os.environ.get('DATABASE_URL'),
            mal_client_id=os.environ.get('MAL_CLIENT_ID') or None,
            kodik_api_key=os.environ.get('KODIK_API_KEY') or None,
            consumet_base_url=os.environ.get('CONSUMET_BASE_URL', CONSUMET_BASE_URL).rstrip('/'),
            providers=_split_names(os.environ.get('CATALOG_PROVIDERS'), DEFAULT_PROVIDERS),
            resolvers=_split_names(os.environ.get('LINK_RESOLVERS'), DEFAULT_RESOLVERS),
            stale_threshold=timedelta(hours=stale_hours),
            list_timeout=_float_env('LIST_TIMEOUT', LIST_TIMEOUT),
            detail_timeout=_float_env('DETAIL_TIMEOUT', DETAIL_TIMEOUT),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the global Settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
