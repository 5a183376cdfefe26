"""
================================================================================
AnimeNegus - MyAnimeList Provider
================================================================================
REST client for the official MyAnimeList API v2.

MAL Features:
  - Largest catalog, canonical ids used by most other sites
  - Rankings (airing / upcoming / bypopularity) and seasonal charts
  - Requires a client id (X-MAL-CLIENT-ID header), no OAuth for public data

API Docs: https://myanimelist.net/apiconfig/references/api/v2
================================================================================
"""

from typing import Any, Dict, Optional
import logging

import httpx

from .base import BaseMetadataProvider, parse_partial_date
from ..models import (
    CatalogItem, CatalogKind, LifecycleStatus, PagedResult, SearchFilters, Season
)

logger = logging.getLogger(__name__)


class MyAnimeListProvider(BaseMetadataProvider):
    """MyAnimeList API v2 provider."""

    id = "mal"
    name = "MyAnimeList"
    base_url = "https://api.myanimelist.net/v2"
    rate_limit = 60

    FIELDS = ",".join([
        'id', 'title', 'main_picture', 'alternative_titles', 'start_date',
        'end_date', 'synopsis', 'mean', 'rank', 'popularity', 'num_episodes',
        'status', 'genres', 'media_type', 'average_episode_duration',
    ])

    STATUS_MAP = {
        'currently_airing': LifecycleStatus.ONGOING,
        'finished_airing': LifecycleStatus.FINISHED,
        'not_yet_aired': LifecycleStatus.ANNOUNCED,
    }

    TYPE_MAP = {
        'tv': CatalogKind.TV,
        'movie': CatalogKind.MOVIE,
        'ova': CatalogKind.OVA,
        'ona': CatalogKind.ONA,
        'special': CatalogKind.SPECIAL,
        'tv_special': CatalogKind.SPECIAL,
    }

    MAX_LIMIT = 100

    def __init__(self, client_id: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.client_id = client_id
        super().__init__(transport=transport)

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        headers['X-MAL-CLIENT-ID'] = self.client_id
        return headers

    async def _get_list(self, path: str, page: int, page_size: int, **params) -> PagedResult:
        limit = min(page_size, self.MAX_LIMIT)
        offset = (max(page, 1) - 1) * limit
        params.update({'limit': limit, 'offset': offset, 'fields': self.FIELDS})

        response = await self._request("GET", f"{self.base_url}{path}", params=params)

        items = self._map_all([entry['node'] for entry in response.get('data', [])])
        paging = response.get('paging') or {}
        has_more = bool(paging.get('next'))
        # MAL does not report totals; count what we know exists
        total = paging.get('total') or offset + len(items) + (1 if has_more else 0)
        return PagedResult(items=items, total=total, has_more=has_more)

    async def _fetch_search(self, query: str, page: int, page_size: int,
                            filters: SearchFilters) -> PagedResult:
        # MAL search has no filter parameters; the aggregator post-filters
        return await self._get_list('/anime', page, page_size, q=query)

    async def _fetch_by_id(self, external_id: str) -> Optional[CatalogItem]:
        response = await self._request(
            "GET",
            f"{self.base_url}/anime/{external_id}",
            params={'fields': self.FIELDS},
        )
        if not response or 'id' not in response:
            return None
        return self.map_to_canonical(response)

    async def _fetch_seasonal(self, year: int, season: Season,
                              page: int, page_size: int) -> PagedResult:
        return await self._get_list(
            f'/anime/season/{year}/{season.value}', page, page_size, sort='anime_num_list_users'
        )

    async def _fetch_ongoing(self, page: int, page_size: int) -> PagedResult:
        return await self._get_list('/anime/ranking', page, page_size, ranking_type='airing')

    async def _fetch_upcoming(self, page: int, page_size: int) -> PagedResult:
        return await self._get_list('/anime/ranking', page, page_size, ranking_type='upcoming')

    async def _fetch_popular(self, page: int, page_size: int) -> PagedResult:
        return await self._get_list('/anime/ranking', page, page_size, ranking_type='bypopularity')

    def map_to_canonical(self, native: Dict[str, Any]) -> CatalogItem:
        """Map a MAL anime node to a CatalogItem."""
        alt = native.get('alternative_titles') or {}
        alternate_title = alt.get('en') or alt.get('ja') or None
        if alternate_title == native.get('title'):
            alternate_title = alt.get('ja') or None

        picture = native.get('main_picture') or {}
        duration_seconds = native.get('average_episode_duration')

        return CatalogItem(
            source=self.id,
            external_id=str(native['id']),
            title=native.get('title'),
            alternate_title=alternate_title,
            synopsis=native.get('synopsis') or None,
            kind=self.TYPE_MAP.get((native.get('media_type') or '').lower()),
            lifecycle_status=self.STATUS_MAP.get(native.get('status')),
            episode_count=native.get('num_episodes') or None,
            episode_duration_minutes=round(duration_seconds / 60) if duration_seconds else None,
            cover_image_url=picture.get('large') or picture.get('medium'),
            average_score=native.get('mean'),
            release_date=parse_partial_date(native.get('start_date')),
            genres=[g['name'] for g in native.get('genres', []) if g.get('name')],
        )
