"""
Streaming Service - ranked-backend listings against a Consumet-style gateway.

Every call goes through PlaybackResolver.try_sources_in_order(), so a dead
backend is skipped and demoted for all later calls. Paths follow the gateway
layout: {CONSUMET_BASE_URL}/anime/{backend}/{path}.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from ..config import DEFAULT_STREAMING_BACKEND
from ..errors import AllSourcesExhausted
from .playback_service import PlaybackResolver

logger = logging.getLogger(__name__)

FALLBACK_GENRES = [
    'Action', 'Adventure', 'Comedy', 'Drama', 'Fantasy',
    'Horror', 'Romance', 'Sci-Fi', 'Slice of Life', 'Sports',
    'Supernatural', 'Thriller', 'Mystery', 'Historical',
]


class StreamingService:
    """Backend-ranked search, info, episode sources and listings."""

    def __init__(self, playback: PlaybackResolver, default_backend: str = DEFAULT_STREAMING_BACKEND):
        self.playback = playback
        self.default_backend = default_backend

    @property
    def detail_timeout(self) -> float:
        return self.playback.settings.detail_timeout

    async def _ranked(self, path: str, source: Optional[str], params: Optional[Dict] = None,
                      timeout: Optional[float] = None) -> Dict[str, Any]:
        return await self.playback.try_sources_in_order(
            path, source or self.default_backend, params or {}, timeout
        )

    async def search(self, query: str, page: int = 1, source: Optional[str] = None) -> Dict[str, Any]:
        return await self._ranked(f"search/{quote(query, safe='')}", source, {'page': page})

    async def info(self, anime_id: str, source: Optional[str] = None) -> Dict[str, Any]:
        data = await self._ranked(f"info/{anime_id}", source, timeout=self.detail_timeout)
        return {
            'id': data.get('id'),
            'title': data.get('title'),
            'image': data.get('image'),
            'description': data.get('description'),
            'genres': data.get('genres') or [],
            'release_date': data.get('releaseDate'),
            'status': data.get('status'),
            'total_episodes': data.get('totalEpisodes'),
            'episodes': data.get('episodes') or [],
            'source': data['source'],
        }

    async def watch(self, episode_id: str, source: Optional[str] = None) -> List[Dict[str, Any]]:
        """Streaming URLs for one gateway episode id."""
        data = await self._ranked(f"watch/{episode_id}", source, timeout=self.detail_timeout)
        streams = data.get('sources') or data.get('primary') or []
        return [
            {
                'url': stream.get('url'),
                'quality': stream.get('quality') or 'default',
                'is_m3u8': bool(stream.get('isM3U8', False)),
            }
            for stream in streams
            if stream.get('url')
        ]

    async def recent_episodes(self, page: int = 1, source: Optional[str] = None) -> Dict[str, Any]:
        return await self._ranked('recent-episodes', source, {'page': page})

    async def top_airing(self, page: int = 1, source: Optional[str] = None) -> Dict[str, Any]:
        return await self._ranked('top-airing', source, {'page': page})

    async def popular(self, page: int = 1, source: Optional[str] = None) -> Dict[str, Any]:
        return await self._ranked('popular', source, {'page': page})

    async def by_genre(self, genre: str, page: int = 1, source: Optional[str] = None) -> Dict[str, Any]:
        return await self._ranked(f"genre/{quote(genre, safe='')}", source, {'page': page})

    async def genres(self, source: Optional[str] = None) -> Dict[str, Any]:
        """Genre list from the first live backend, or a fixed list."""
        try:
            return await self._ranked('genre/list', source)
        except AllSourcesExhausted:
            logger.error("Failed to fetch genres from any source, returning fallback list")
            return {'genres': list(FALLBACK_GENRES)}

    def available_sources(self) -> List[str]:
        return self.playback.streaming_registry.ordered_names()
