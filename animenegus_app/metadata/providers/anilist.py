"""
================================================================================
AnimeNegus - AniList Provider
================================================================================
GraphQL client for AniList API.

AniList Features:
  - Rich metadata (genres, scores, seasons)
  - GraphQL = fetch exactly what we need
  - Server-side filters for genre, season, year and status
  - 90 requests/min rate limit, no authentication required

API Docs: https://anilist.gitbook.io/anilist-apiv2-docs/
================================================================================
"""

from typing import Any, Dict, Optional
import logging

from .base import BaseMetadataProvider, date_from_parts, strip_html
from ..models import (
    CatalogItem, CatalogKind, LifecycleStatus, PagedResult, SearchFilters, Season
)

logger = logging.getLogger(__name__)


MEDIA_FIELDS = """
  id
  idMal
  title {
    romaji
    english
    native
  }
  description
  status
  format
  episodes
  duration
  genres
  averageScore
  coverImage {
    extraLarge
    large
  }
  startDate {
    year
    month
    day
  }
"""


class AniListProvider(BaseMetadataProvider):
    """AniList GraphQL API provider."""

    id = "anilist"
    name = "AniList"
    base_url = "https://graphql.anilist.co"
    rate_limit = 90  # 90 requests per minute

    # One paged query serves search and every listing; unset variables are ignored
    PAGE_QUERY = """
    query ($page: Int, $perPage: Int, $search: String, $season: MediaSeason,
           $seasonYear: Int, $status: MediaStatus, $genres: [String], $sort: [MediaSort]) {
      Page(page: $page, perPage: $perPage) {
        pageInfo {
          total
          hasNextPage
        }
        media(type: ANIME, search: $search, season: $season, seasonYear: $seasonYear,
              status: $status, genre_in: $genres, sort: $sort) {
          %s
        }
      }
    }
    """ % MEDIA_FIELDS

    GET_BY_ID_QUERY = """
    query ($id: Int) {
      Media(id: $id, type: ANIME) {
        %s
      }
    }
    """ % MEDIA_FIELDS

    STATUS_MAP = {
        'RELEASING': LifecycleStatus.ONGOING,
        'HIATUS': LifecycleStatus.ONGOING,
        'FINISHED': LifecycleStatus.FINISHED,
        'CANCELLED': LifecycleStatus.FINISHED,
        'NOT_YET_RELEASED': LifecycleStatus.ANNOUNCED,
    }

    # Reverse of STATUS_MAP for filters
    STATUS_FILTER = {
        LifecycleStatus.ONGOING: 'RELEASING',
        LifecycleStatus.FINISHED: 'FINISHED',
        LifecycleStatus.ANNOUNCED: 'NOT_YET_RELEASED',
    }

    FORMAT_MAP = {
        'TV': CatalogKind.TV,
        'TV_SHORT': CatalogKind.TV,
        'MOVIE': CatalogKind.MOVIE,
        'OVA': CatalogKind.OVA,
        'ONA': CatalogKind.ONA,
        'SPECIAL': CatalogKind.SPECIAL,
    }

    async def _page(self, page: int, page_size: int, **variables) -> PagedResult:
        variables.update({'page': max(page, 1), 'perPage': min(page_size, 50)})
        variables = {k: v for k, v in variables.items() if v is not None}

        response = await self._request(
            "POST",
            self.base_url,
            json={"query": self.PAGE_QUERY, "variables": variables}
        )

        page_data = response['data']['Page']
        info = page_data.get('pageInfo') or {}
        items = self._map_all(page_data.get('media') or [])
        return PagedResult(
            items=items,
            total=info.get('total') or len(items),
            has_more=bool(info.get('hasNextPage')),
        )

    async def _fetch_search(self, query: str, page: int, page_size: int,
                            filters: SearchFilters) -> PagedResult:
        return await self._page(
            page, page_size,
            search=query,
            genres=filters.genres or None,
            seasonYear=filters.year,
            season=filters.season.value.upper() if filters.season else None,
            status=self.STATUS_FILTER.get(filters.status),
            sort=['SEARCH_MATCH'],
        )

    async def _fetch_by_id(self, external_id: str) -> Optional[CatalogItem]:
        response = await self._request(
            "POST",
            self.base_url,
            json={"query": self.GET_BY_ID_QUERY, "variables": {"id": int(external_id)}}
        )
        media = (response.get('data') or {}).get('Media')
        if not media:
            return None
        return self.map_to_canonical(media)

    async def _fetch_seasonal(self, year: int, season: Season,
                              page: int, page_size: int) -> PagedResult:
        return await self._page(
            page, page_size,
            season=season.value.upper(), seasonYear=year, sort=['POPULARITY_DESC'],
        )

    async def _fetch_ongoing(self, page: int, page_size: int) -> PagedResult:
        return await self._page(page, page_size, status='RELEASING', sort=['POPULARITY_DESC'])

    async def _fetch_upcoming(self, page: int, page_size: int) -> PagedResult:
        return await self._page(page, page_size, status='NOT_YET_RELEASED', sort=['POPULARITY_DESC'])

    async def _fetch_popular(self, page: int, page_size: int) -> PagedResult:
        return await self._page(page, page_size, sort=['POPULARITY_DESC'])

    def map_to_canonical(self, native: Dict[str, Any]) -> CatalogItem:
        """
        Map an AniList media object to a CatalogItem.

        English title preferred, romaji as the alternate. AniList scores are
        0-100 and are scaled to 0-10 to match the other providers.
        """
        titles = native.get('title') or {}
        title = titles.get('english') or titles.get('romaji') or titles.get('native')
        alternate = titles.get('romaji') if titles.get('english') else titles.get('native')

        score = native.get('averageScore')
        cover = native.get('coverImage') or {}
        start = native.get('startDate') or {}

        return CatalogItem(
            source=self.id,
            external_id=str(native['id']),
            title=title,
            alternate_title=alternate if alternate != title else None,
            synopsis=strip_html(native.get('description')),
            kind=self.FORMAT_MAP.get(native.get('format')),
            lifecycle_status=self.STATUS_MAP.get(native.get('status')),
            episode_count=native.get('episodes'),
            episode_duration_minutes=native.get('duration'),
            cover_image_url=cover.get('extraLarge') or cover.get('large'),
            average_score=score / 10 if score is not None else None,
            release_date=date_from_parts(start.get('year'), start.get('month'), start.get('day')),
            genres=list(native.get('genres') or []),
        )
