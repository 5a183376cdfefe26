"""
================================================================================
AnimeNegus - Application Extensions
================================================================================
Wires the store, providers, resolvers and registries into one Services object
and owns the background event loop Flask routes use to run coroutines.

USAGE:
    from animenegus_app.extensions import build_services, run_async

    services = build_services()
    page = run_async(services.aggregator.search("naruto"))
================================================================================
"""

import asyncio
import threading
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.orm import sessionmaker

from sources import SourcePriorityRegistry, build_link_resolvers

from .config import Settings, get_settings, DEFAULT_STREAMING_BACKENDS, DEFAULT_STREAMING_BACKEND
from .database import create_db_engine, init_database, make_session_factory
from .log import log
from .metadata.aggregator import CatalogAggregator
from .metadata.providers import build_providers
from .services import PlaybackResolver, StreamingService
from .store import CanonicalStore


# =============================================================================
# BACKGROUND EVENT LOOP
# =============================================================================

_loop: Optional[asyncio.AbstractEventLoop] = None
_loop_lock = threading.Lock()


def _get_loop() -> asyncio.AbstractEventLoop:
    """One long-lived loop in a daemon thread, shared by all requests."""
    global _loop
    with _loop_lock:
        if _loop is None or _loop.is_closed():
            _loop = asyncio.new_event_loop()
            thread = threading.Thread(target=_loop.run_forever, name="animenegus-loop", daemon=True)
            thread.start()
        return _loop


def run_async(coro):
    """
    Run async coroutine from sync Flask context.

    Flask routes are sync, but providers and resolvers are async. Coroutines
    are submitted to the shared loop so HTTP clients are reused across requests.
    """
    return asyncio.run_coroutine_threadsafe(coro, _get_loop()).result()


# =============================================================================
# SERVICES
# =============================================================================

@dataclass
class Services:
    """Everything the HTTP layer needs."""
    settings: Settings
    store: CanonicalStore
    aggregator: CatalogAggregator
    playback: PlaybackResolver
    streaming: StreamingService
    streaming_registry: SourcePriorityRegistry
    resolver_registry: SourcePriorityRegistry

    async def close(self):
        await self.aggregator.close()
        await self.playback.close()


def build_services(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> Services:
    """
    Build the service graph.

    Args:
        settings: Defaults to get_settings()
        session_factory: Defaults to a fresh engine on settings.database_url
            (tables created if missing)
        transport: Optional httpx transport shared by every outbound client
    """
    settings = settings or get_settings()

    if session_factory is None:
        engine = create_db_engine(settings.database_url)
        init_database(engine)
        session_factory = make_session_factory(engine)

    store = CanonicalStore(session_factory)

    providers = build_providers(settings, transport=transport)
    resolvers = build_link_resolvers(settings.resolvers, settings.kodik_api_key, transport=transport)

    streaming_registry = SourcePriorityRegistry(DEFAULT_STREAMING_BACKENDS)
    resolver_registry = SourcePriorityRegistry.from_names(r.id for r in resolvers)

    aggregator = CatalogAggregator(store, providers, settings)
    playback = PlaybackResolver(
        store, resolvers, streaming_registry,
        resolver_registry=resolver_registry, settings=settings, transport=transport,
    )
    streaming = StreamingService(playback, DEFAULT_STREAMING_BACKEND)

    log(
        f"Services ready: providers [{', '.join(p.id for p in providers) or 'none'}], "
        f"resolvers [{', '.join(r.id for r in resolvers) or 'none'}]"
    )

    return Services(
        settings=settings,
        store=store,
        aggregator=aggregator,
        playback=playback,
        streaming=streaming,
        streaming_registry=streaming_registry,
        resolver_registry=resolver_registry,
    )

