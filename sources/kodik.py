"""
================================================================================
AnimeNegus - Kodik Resolver
================================================================================
Kodik (kodikapi.com) JSON API. Requires an API token (KODIK_API_KEY).

Two calls per episode:
  1. /search  - find the show by title (anime and anime-serial types)
  2. /list    - fetch the requested episode via the show's shikimori_id
================================================================================
"""

import logging
from typing import Optional

import httpx

from .base import BaseLinkResolver, PlaybackCandidate, absolute_url, is_adaptive_url

logger = logging.getLogger(__name__)


class KodikResolver(BaseLinkResolver):
    """Kodik API resolver."""

    id = "kodik"
    name = "Kodik"
    base_url = "https://kodikapi.com"

    DEFAULT_QUALITY = "720p"

    def __init__(self, api_key: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        super().__init__(transport=transport)

    async def _find(self, title: str, episode: int) -> Optional[PlaybackCandidate]:
        if not self.api_key:
            logger.debug("Kodik API key not configured, skipping")
            return None

        search = await self._get_json(f"{self.base_url}/search", params={
            'token': self.api_key,
            'title': title,
            'types': 'anime-serial,anime',
            'limit': 10,
        })

        needle = title.lower()
        show = next(
            (r for r in search.get('results') or []
             if needle in (r.get('title') or '').lower()
             or needle in (r.get('title_orig') or '').lower()),
            None
        )
        if show is None:
            return None

        episodes = await self._get_json(f"{self.base_url}/list", params={
            'token': self.api_key,
            'shikimori_id': show.get('shikimori_id'),
            'episode': episode,
            'limit': 1,
        })
        results = episodes.get('results') or []
        if not results or not results[0].get('link'):
            return None

        url = absolute_url(self.base_url, results[0]['link'])
        return PlaybackCandidate(
            url=url,
            quality=results[0].get('quality') or self.DEFAULT_QUALITY,
            is_adaptive=is_adaptive_url(url),
        )
