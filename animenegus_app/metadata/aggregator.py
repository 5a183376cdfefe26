"""
================================================================================
AnimeNegus - Catalog Aggregator
================================================================================
Fans catalog queries out to every configured provider, merges the answers
with the canonical store and writes remote results back into it.

Flow for search("Naruto"):
  1. Store substring matches (title / alternate title), capped at page size
  2. provider.search() on every provider concurrently (all awaited together)
  3. Remote items reconciled to existing rows by (source, external_id)
  4. Deduplicated: store rows win, then first seen in provider order
  5. Remote survivors synced into the store
  6. Truncated to page size

Providers are fail-soft, so a provider outage never reaches this layer. A
provider that exceeds the call timeout simply contributes nothing.

Usage:
    aggregator = CatalogAggregator(store, build_providers(settings), settings)
    page = await aggregator.search("naruto", page=1, page_size=20)
================================================================================
"""

import asyncio
import dataclasses
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

from ..config import Settings, get_settings, POPULAR_LOCAL_LIMIT
from ..errors import NotFound
from ..log import debug_log_event
from ..models import utcnow
from ..search.deduplicator import CatalogDeduplicator
from ..store import CanonicalStore
from .models import CatalogItem, PagedResult, SearchFilters, Season
from .providers.base import BaseMetadataProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")


def parse_composite_id(value: str) -> Optional[Tuple[str, str]]:
    """Split 'mal:21' into ('mal', '21'). None if not composite."""
    source, sep, external_id = value.partition(':')
    if not sep or not source or not external_id:
        return None
    return source.lower(), external_id


class CatalogAggregator:
    """
    Multi-provider catalog with the store as the source of truth.

    Handles:
      - Concurrent provider fan-out with per-call timeouts
      - Reconciliation and deduplication against the store
      - Create-or-update sync of remote records
      - Staleness policy for detail lookups
    """

    def __init__(
        self,
        store: CanonicalStore,
        providers: Sequence[BaseMetadataProvider],
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.providers = list(providers)
        self.settings = settings or get_settings()
        self.deduplicator = CatalogDeduplicator()
        self._clock = clock

    async def close(self):
        for provider in self.providers:
            await provider.close()

    # =========================================================================
    # CONCURRENCY HELPERS
    # =========================================================================

    async def _call_with_timeout(self, provider: BaseMetadataProvider, call: Awaitable[T],
                                 default: T, timeout: float) -> T:
        try:
            return await asyncio.wait_for(call, timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{provider.id}: no answer within {timeout}s, skipping")
            return default

    async def _fan_out(
        self,
        make_call: Callable[[BaseMetadataProvider], Awaitable[PagedResult]],
        timeout: Optional[float]
    ) -> List[PagedResult]:
        """Run one listing call per provider; results in provider order."""
        if not self.providers:
            return []
        timeout = timeout or self.settings.list_timeout
        return list(await asyncio.gather(*[
            self._call_with_timeout(provider, make_call(provider), PagedResult.empty(), timeout)
            for provider in self.providers
        ]))

    # =========================================================================
    # STORE HELPERS
    # =========================================================================

    def _reconcile_and_sync(
        self,
        local: List[CatalogItem],
        remote: List[CatalogItem]
    ) -> List[CatalogItem]:
        """
        Blocking part of a merge: reconcile, deduplicate, sync.

        Runs in a worker thread. Survivors keep merge order.
        """
        reconciled = []
        for item in remote:
            if item.external_id:
                existing = self.store.find_catalog_by_external_id(item.source, item.external_id)
                if existing:
                    item = dataclasses.replace(item, id=existing.id)
            reconciled.append(item)

        merged = self.deduplicator.deduplicate(local, reconciled)

        results = []
        for entry in merged:
            if entry.from_store or not entry.item.external_id:
                results.append(entry.item)
            else:
                results.append(self.store.upsert_catalog(entry.item, entry.item.genres))
        return results

    async def _merge_pages(
        self,
        local: List[CatalogItem],
        pages: List[PagedResult],
        page_size: int,
        total: int,
        filters: Optional[SearchFilters] = None
    ) -> PagedResult:
        remote = [item for page in pages for item in page.items]
        if filters and not filters.is_empty():
            remote = [item for item in remote if filters.matches(item)]

        merged = await asyncio.to_thread(self._reconcile_and_sync, local, remote)

        has_more = any(page.has_more for page in pages) or len(merged) > page_size
        return PagedResult(items=merged[:page_size], total=total or len(merged), has_more=has_more)

    # =========================================================================
    # SEARCH
    # =========================================================================

    async def search(
        self,
        query: Optional[str],
        page: int = 1,
        page_size: int = 20,
        filters: Optional[SearchFilters] = None,
        timeout: Optional[float] = None
    ) -> PagedResult:
        """
        Search the catalog.

        An empty query reads the store only (score descending, paged) and
        never contacts a provider. Filters apply to store rows and remote
        items alike.
        """
        query = (query or '').strip()
        page = max(page, 1)
        filters = filters or SearchFilters()

        if not query:
            items, total = await asyncio.to_thread(
                self.store.search_catalog, None, page, page_size, filters
            )
            return PagedResult(items=items, total=total, has_more=page * page_size < total)

        local_task = asyncio.to_thread(self.store.search_catalog, query, page, page_size, filters)
        remote_task = self._fan_out(
            lambda provider: provider.search(query, page, page_size, filters), timeout
        )
        (local, _), pages = await asyncio.gather(local_task, remote_task)

        result = await self._merge_pages(local, pages, page_size, total=0, filters=filters)
        logger.info(
            f"Search '{query}': {len(local)} local, "
            f"{sum(len(p.items) for p in pages)} remote, {result.total} merged"
        )
        return result

    # =========================================================================
    # DETAIL
    # =========================================================================

    def _is_fresh(self, item: CatalogItem) -> bool:
        if item.is_local:
            # Locally authored records have no provider to refresh from
            return True
        if item.last_synced_at is None:
            return False
        return self._clock() - item.last_synced_at < self.settings.stale_threshold

    async def get_by_id(self, record_id: str, timeout: Optional[float] = None) -> CatalogItem:
        """
        Fetch one record, refreshing it from providers when stale.

        Args:
            record_id: Internal id, or 'provider:external_id' (e.g. 'mal:21')

        Raises:
            NotFound: Nothing in the store and no provider knows the id
        """
        existing = await asyncio.to_thread(self.store.find_catalog_by_id, record_id)
        if existing is None:
            composite = parse_composite_id(record_id)
            if composite:
                existing = await asyncio.to_thread(self.store.find_catalog_by_external_id, *composite)

        if existing and self._is_fresh(existing):
            return existing

        if existing:
            source, external_id = existing.source, existing.external_id
        else:
            composite = parse_composite_id(record_id)
            if composite is None:
                raise NotFound(record_id)
            source, external_id = composite

        timeout = timeout or self.settings.detail_timeout
        for provider in self.providers:
            if provider.id != source:
                continue
            fetched = await self._call_with_timeout(
                provider, provider.get_by_id(external_id), None, timeout
            )
            if fetched is not None:
                return await self.sync(fetched)

        if existing:
            logger.warning(
                f"Serving stale record {existing.id} ({source}:{external_id}), "
                f"last synced {existing.last_synced_at}"
            )
            debug_log_event({
                'event': 'stale_data_served',
                'record_id': existing.id,
                'source': source,
                'external_id': external_id,
                'last_synced_at': existing.last_synced_at,
            })
            return existing

        raise NotFound(record_id)

    # =========================================================================
    # LISTINGS
    # =========================================================================

    async def _listing(
        self,
        make_call: Callable[[BaseMetadataProvider], Awaitable[PagedResult]],
        page_size: int,
        timeout: Optional[float]
    ) -> PagedResult:
        pages = await self._fan_out(make_call, timeout)
        total = max((p.total for p in pages), default=0)
        return await self._merge_pages([], pages, page_size, total=total)

    async def list_seasonal(self, year: int, season: Season, page: int = 1,
                            page_size: int = 20, timeout: Optional[float] = None) -> PagedResult:
        return await self._listing(
            lambda p: p.list_seasonal(year, season, page, page_size), page_size, timeout
        )

    async def list_ongoing(self, page: int = 1, page_size: int = 20,
                           timeout: Optional[float] = None) -> PagedResult:
        return await self._listing(lambda p: p.list_ongoing(page, page_size), page_size, timeout)

    async def list_upcoming(self, page: int = 1, page_size: int = 20,
                            timeout: Optional[float] = None) -> PagedResult:
        return await self._listing(lambda p: p.list_upcoming(page, page_size), page_size, timeout)

    async def list_popular(self, page: int = 1, page_size: int = 20,
                           timeout: Optional[float] = None) -> PagedResult:
        """Top-rated store rows when the store has any, otherwise provider fan-out."""
        items, total = await asyncio.to_thread(
            self.store.search_catalog, None, 1, POPULAR_LOCAL_LIMIT
        )
        if items:
            return PagedResult(items=items, total=len(items), has_more=False)
        return await self._listing(lambda p: p.list_popular(page, page_size), page_size, timeout)

    # =========================================================================
    # SYNC
    # =========================================================================

    async def sync(self, item: CatalogItem) -> CatalogItem:
        """Create or update a provider record in the store."""
        return await asyncio.to_thread(self.store.upsert_catalog, item, item.genres)
