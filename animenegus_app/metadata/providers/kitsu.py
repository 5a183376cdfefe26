"""
================================================================================
AnimeNegus - Kitsu Metadata Provider
================================================================================
Kitsu.io API client for anime metadata.

API Documentation: https://kitsu.docs.apiary.io/
Format: JSON:API (https://jsonapi.org/)

Key Features:
  - Free, no auth required
  - Good alternative titles
  - Categories delivered as included JSON:API resources

Rate Limit: 60 requests/minute (conservative - no official limit published)
================================================================================
"""

from typing import Any, Dict, Iterable, List, Optional
import logging

from .base import BaseMetadataProvider, parse_partial_date
from ..models import (
    CatalogItem, CatalogKind, LifecycleStatus, PagedResult, SearchFilters, Season
)

logger = logging.getLogger(__name__)


class KitsuProvider(BaseMetadataProvider):
    """
    Kitsu.io metadata provider.

    Fetches anime from Kitsu's JSON:API endpoint. Genres come from the
    'categories' relationship, requested via include=categories.
    """

    id = "kitsu"
    name = "Kitsu"
    base_url = "https://kitsu.io/api/edge"
    rate_limit = 60  # 1 req/sec conservative

    MAX_LIMIT = 20  # Kitsu caps page[limit] at 20

    STATUS_MAP = {
        'current': LifecycleStatus.ONGOING,
        'finished': LifecycleStatus.FINISHED,
        'tba': LifecycleStatus.ANNOUNCED,
        'unreleased': LifecycleStatus.ANNOUNCED,
        'upcoming': LifecycleStatus.ANNOUNCED,
    }

    STATUS_FILTER = {
        LifecycleStatus.ONGOING: 'current',
        LifecycleStatus.FINISHED: 'finished',
        LifecycleStatus.ANNOUNCED: 'upcoming,unreleased,tba',
    }

    TYPE_MAP = {
        'tv': CatalogKind.TV,
        'movie': CatalogKind.MOVIE,
        'ova': CatalogKind.OVA,
        'ona': CatalogKind.ONA,
        'special': CatalogKind.SPECIAL,
    }

    def _headers(self) -> Dict[str, str]:
        return {
            'User-Agent': self.user_agent,
            'Accept': 'application/vnd.api+json',  # JSON:API spec
            'Content-Type': 'application/vnd.api+json'
        }

    async def _list(self, page: int, page_size: int, params: Dict[str, Any]) -> PagedResult:
        limit = min(page_size, self.MAX_LIMIT)
        params.update({
            'page[limit]': limit,
            'page[offset]': (max(page, 1) - 1) * limit,
            'include': 'categories',
        })

        response = await self._request("GET", f"{self.base_url}/anime", params=params)

        included = response.get('included') or []
        items = [self.map_to_canonical(entry, included) for entry in response.get('data') or []]
        meta = response.get('meta') or {}
        links = response.get('links') or {}
        return PagedResult(
            items=items,
            total=meta.get('count') or len(items),
            has_more=bool(links.get('next')),
        )

    async def _fetch_search(self, query: str, page: int, page_size: int,
                            filters: SearchFilters) -> PagedResult:
        params: Dict[str, Any] = {'filter[text]': query}
        if filters.year:
            params['filter[seasonYear]'] = filters.year
        if filters.season:
            params['filter[season]'] = filters.season.value
        if filters.status in self.STATUS_FILTER:
            params['filter[status]'] = self.STATUS_FILTER[filters.status]
        if filters.genres:
            params['filter[categories]'] = ",".join(g.lower() for g in filters.genres)
        return await self._list(page, page_size, params)

    async def _fetch_by_id(self, external_id: str) -> Optional[CatalogItem]:
        response = await self._request(
            "GET",
            f"{self.base_url}/anime/{external_id}",
            params={'include': 'categories'},
        )
        if not response or not response.get('data'):
            return None
        return self.map_to_canonical(response['data'], response.get('included') or [])

    async def _fetch_seasonal(self, year: int, season: Season,
                              page: int, page_size: int) -> PagedResult:
        return await self._list(page, page_size, {
            'filter[season]': season.value,
            'filter[seasonYear]': year,
            'sort': '-userCount',
        })

    async def _fetch_ongoing(self, page: int, page_size: int) -> PagedResult:
        return await self._list(page, page_size, {'filter[status]': 'current', 'sort': '-userCount'})

    async def _fetch_upcoming(self, page: int, page_size: int) -> PagedResult:
        return await self._list(page, page_size, {'filter[status]': 'upcoming', 'sort': '-userCount'})

    async def _fetch_popular(self, page: int, page_size: int) -> PagedResult:
        return await self._list(page, page_size, {'sort': 'popularityRank'})

    @staticmethod
    def _category_titles(native: Dict[str, Any], included: Iterable[Dict[str, Any]]) -> List[str]:
        rel = ((native.get('relationships') or {}).get('categories') or {}).get('data') or []
        wanted = {r.get('id') for r in rel if r.get('type') == 'categories'}
        if not wanted:
            return []
        return [
            inc['attributes']['title']
            for inc in included
            if inc.get('type') == 'categories' and inc.get('id') in wanted
            and (inc.get('attributes') or {}).get('title')
        ]

    def map_to_canonical(self, native: Dict[str, Any],
                         included: Iterable[Dict[str, Any]] = ()) -> CatalogItem:
        """
        Map a Kitsu anime resource to a CatalogItem.

        Args:
            native: JSON:API resource object (id, attributes, relationships)
            included: Top-level 'included' array, used to resolve categories
        """
        attrs = native.get('attributes') or {}
        titles = attrs.get('titles') or {}

        title = attrs.get('canonicalTitle') or titles.get('en') or titles.get('en_jp')
        alternate = titles.get('en') or titles.get('en_jp') or titles.get('ja_jp')
        if alternate == title:
            alternate = titles.get('ja_jp')

        rating = attrs.get('averageRating')
        poster = attrs.get('posterImage') or {}

        return CatalogItem(
            source=self.id,
            external_id=str(native['id']),
            title=title,
            alternate_title=alternate or None,
            synopsis=attrs.get('synopsis') or None,
            kind=self.TYPE_MAP.get((attrs.get('subtype') or '').lower()),
            lifecycle_status=self.STATUS_MAP.get(attrs.get('status')),
            episode_count=attrs.get('episodeCount'),
            episode_duration_minutes=attrs.get('episodeLength'),
            cover_image_url=poster.get('large') or poster.get('original'),
            # Kitsu ratings are percent strings ("82.47")
            average_score=round(float(rating) / 10, 2) if rating else None,
            release_date=parse_partial_date(attrs.get('startDate')),
            genres=self._category_titles(native, included),
        )
