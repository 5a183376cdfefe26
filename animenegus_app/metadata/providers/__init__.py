"""
Catalog providers.

The set is closed: build_providers() instantiates the configured subset in
configuration order. MyAnimeList is skipped when no client id is set.
"""

import logging
from typing import List, Optional

import httpx

from ...config import Settings
from .base import BaseMetadataProvider, RateLimiter
from .mal import MyAnimeListProvider
from .anilist import AniListProvider
from .kitsu import KitsuProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES = {
    MyAnimeListProvider.id: MyAnimeListProvider,
    AniListProvider.id: AniListProvider,
    KitsuProvider.id: KitsuProvider,
}


def build_providers(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> List[BaseMetadataProvider]:
    """Instantiate providers named in settings.providers, in that order."""
    providers: List[BaseMetadataProvider] = []
    for name in settings.providers:
        cls = PROVIDER_CLASSES.get(name)
        if cls is None:
            logger.warning(f"Unknown catalog provider '{name}' in configuration, skipping")
            continue
        if cls is MyAnimeListProvider:
            if not settings.mal_client_id:
                logger.info("MAL_CLIENT_ID not set, MyAnimeList provider disabled")
                continue
            providers.append(MyAnimeListProvider(settings.mal_client_id, transport=transport))
        else:
            providers.append(cls(transport=transport))
    return providers


__all__ = [
    'BaseMetadataProvider', 'RateLimiter', 'MyAnimeListProvider',
    'AniListProvider', 'KitsuProvider', 'PROVIDER_CLASSES', 'build_providers',
]
