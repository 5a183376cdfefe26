"""
================================================================================
AnimeNegus - Playback Service
================================================================================
Resolves playable URLs for one episode of one title.

resolve_episode(title_id, episode):
  - Stored links for the episode are authoritative: returned without any
    network call
  - Otherwise every link resolver runs concurrently with the title's name;
    each hit is stored as a PlaybackLink tagged with the resolver's name

refresh_episode(title_id, episode):
  - Deletes stored links first, then resolves as above

try_sources_in_order(path, preferred_backend, params, timeout):
  - The ranked-backend loop used by every streaming listing call. Backends
    are tried one at a time in registry order; a failure demotes the backend
    and moves on. Raises AllSourcesExhausted when none answers.
================================================================================
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from sources import BaseLinkResolver, PlaybackCandidate, SourcePriorityRegistry

from ..config import Settings, get_settings
from ..errors import AllSourcesExhausted, TitleNotFound
from ..metadata.models import PlaybackLinkItem
from ..models import utcnow
from ..store import CanonicalStore

logger = logging.getLogger(__name__)

# Keys that mark a gateway response as carrying real data
PAYLOAD_KEYS = ('results', 'id', 'sources')


def has_payload(data: Any) -> bool:
    if isinstance(data, dict):
        return any(data.get(key) for key in PAYLOAD_KEYS)
    if isinstance(data, list):
        return bool(data)
    return False


class PlaybackResolver:
    """
    Cache-first episode link resolution and ranked backend fallback.

    Args:
        store: Canonical store (links and titles)
        resolvers: Link resolvers, any order
        resolver_registry: Order in which resolver results are stored
        streaming_registry: Ranked backends for try_sources_in_order()
        transport: Optional httpx transport for the gateway client (tests)
    """

    def __init__(
        self,
        store: CanonicalStore,
        resolvers: Sequence[BaseLinkResolver],
        streaming_registry: SourcePriorityRegistry,
        resolver_registry: Optional[SourcePriorityRegistry] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.store = store
        self.resolvers = {resolver.id: resolver for resolver in resolvers}
        self.resolver_registry = resolver_registry or SourcePriorityRegistry.from_names(
            resolver.id for resolver in resolvers
        )
        self.streaming_registry = streaming_registry
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._client_loop = None

    async def close(self):
        for resolver in self.resolvers.values():
            await resolver.close()
        if self._client:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # EPISODE LINKS
    # =========================================================================

    def _ordered_resolvers(self) -> List[BaseLinkResolver]:
        return [
            self.resolvers[name]
            for name in self.resolver_registry.ordered_names()
            if name in self.resolvers
        ]

    async def _run_resolver(self, resolver: BaseLinkResolver, title: str,
                            episode: int) -> Optional[PlaybackCandidate]:
        timeout = self.settings.detail_timeout
        try:
            return await asyncio.wait_for(resolver.resolve(title, episode), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{resolver.id}] no answer within {timeout}s for '{title}' #{episode}")
            return None

    async def resolve_episode(self, title_id: str, episode: int) -> List[PlaybackLinkItem]:
        """
        Playback links for one episode, cache first.

        Raises:
            TitleNotFound: title_id is not in the store (checked on cache miss)
        """
        if episode < 1:
            raise ValueError("episode must be a positive integer")

        cached = await asyncio.to_thread(self.store.find_playback_links, title_id, episode)
        if cached:
            return cached

        record = await asyncio.to_thread(self.store.find_catalog_by_id, title_id)
        if record is None:
            raise TitleNotFound(title_id)

        resolvers = self._ordered_resolvers()
        candidates = await asyncio.gather(*[
            self._run_resolver(resolver, record.title, episode) for resolver in resolvers
        ])

        links = []
        for resolver, candidate in zip(resolvers, candidates):
            if candidate is None:
                continue
            link = PlaybackLinkItem(
                title_id=title_id,
                episode_number=episode,
                backend_name=resolver.id,
                url=candidate.url,
                quality_label=candidate.quality,
                is_adaptive_stream=candidate.is_adaptive,
                resolved_at=utcnow(),
            )
            links.append(await asyncio.to_thread(self.store.insert_playback_link, link))

        logger.info(
            f"Resolved '{record.title}' episode {episode}: "
            f"{len(links)}/{len(resolvers)} resolvers found a link"
        )
        return links

    async def refresh_episode(self, title_id: str, episode: int) -> List[PlaybackLinkItem]:
        """Drop stored links for the episode and resolve again."""
        if episode < 1:
            raise ValueError("episode must be a positive integer")
        removed = await asyncio.to_thread(self.store.delete_playback_links, title_id, episode)
        if removed:
            logger.info(f"Removed {removed} stored links for {title_id} episode {episode}")
        return await self.resolve_episode(title_id, episode)

    # =========================================================================
    # RANKED BACKENDS
    # =========================================================================

    async def _get_client(self) -> httpx.AsyncClient:
        loop = asyncio.get_running_loop()
        if self._client is None or self._client.is_closed or self._client_loop is not loop:
            self._client = httpx.AsyncClient(
                headers={'Accept': 'application/json'},
                transport=self._transport,
            )
            self._client_loop = loop
        return self._client

    async def try_sources_in_order(
        self,
        path: str,
        preferred_backend: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        GET {gateway}/anime/{backend}/{path} on each backend until one answers.

        A backend that errors or answers without results/id/sources is
        reported to the registry and skipped.

        Returns:
            The first payload, with 'source' set to the answering backend

        Raises:
            AllSourcesExhausted: Every enabled backend failed
        """
        client = await self._get_client()
        timeout = timeout or self.settings.list_timeout
        base_url = self.settings.consumet_base_url.rstrip('/')
        tried = []

        for name in self.streaming_registry.ordered_names(preferred_backend):
            tried.append(name)
            url = f"{base_url}/anime/{name}/{path}"
            try:
                response = await client.get(url, params=params or {}, timeout=timeout)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPError as e:
                logger.warning(f"Request to source [{name}] failed for path [{path}]: {e}")
                self.streaming_registry.report_failure(name)
                continue
            except ValueError:
                logger.warning(f"Source [{name}] returned invalid JSON for path [{path}]")
                self.streaming_registry.report_failure(name)
                continue

            if not has_payload(data):
                logger.warning(f"Source [{name}] returned no data for path [{path}]")
                self.streaming_registry.report_failure(name)
                continue

            if isinstance(data, list):
                data = {'results': data}
            return {**data, 'source': name}

        raise AllSourcesExhausted(path, tried)
