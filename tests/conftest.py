import asyncio
import dataclasses
import os
import tempfile

# Keep test logs out of the project instance dir; must run before app imports
os.environ.setdefault("ANIMENEGUS_LOG_DIR", tempfile.mkdtemp(prefix="animenegus-test-logs-"))
os.environ.setdefault("DEBUG_LOGGING", "false")

import pytest

from animenegus_app.config import Settings
from animenegus_app.database import create_db_engine, init_database, make_session_factory, session_scope
from animenegus_app.errors import ProviderUnavailable
from animenegus_app.metadata.models import CatalogItem, PagedResult
from animenegus_app.metadata.providers.base import BaseMetadataProvider, RateLimiter
from animenegus_app.models import CatalogRecord
from animenegus_app.store import CanonicalStore
from sources import BaseLinkResolver, PlaybackCandidate

GATEWAY_URL = "http://gateway.test"


class FakeProvider(BaseMetadataProvider):
    """Catalog provider answering from canned items and recording every call."""

    def __init__(self, provider_id, items=(), total=None, has_more=False,
                 by_id=None, fail=False, delay=0.0):
        super().__init__()
        self.id = provider_id
        self.name = provider_id.title()
        self.items = list(items)
        self.total = total
        self.has_more = has_more
        self.by_id = dict(by_id or {})
        self.fail = fail
        self.delay = delay
        self.calls = []

    async def _answer(self, operation):
        self.calls.append(operation)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ProviderUnavailable(self.id, "down")
        items = [dataclasses.replace(item, genres=list(item.genres)) for item in self.items]
        total = self.total if self.total is not None else len(items)
        return PagedResult(items=items, total=total, has_more=self.has_more)

    async def _fetch_search(self, query, page, page_size, filters):
        return await self._answer("search")

    async def _fetch_by_id(self, external_id):
        self.calls.append(("get_by_id", external_id))
        if self.fail:
            raise ProviderUnavailable(self.id, "down")
        item = self.by_id.get(external_id)
        return dataclasses.replace(item) if item else None

    async def _fetch_seasonal(self, year, season, page, page_size):
        return await self._answer("seasonal")

    async def _fetch_ongoing(self, page, page_size):
        return await self._answer("ongoing")

    async def _fetch_upcoming(self, page, page_size):
        return await self._answer("upcoming")

    async def _fetch_popular(self, page, page_size):
        return await self._answer("popular")

    def map_to_canonical(self, native):
        return CatalogItem(source=self.id, external_id=str(native["id"]), title=native.get("title"))


class FakeResolver(BaseLinkResolver):
    """Link resolver returning a fixed candidate (or failing)."""

    def __init__(self, resolver_id, url=None, quality="720p", fail=False):
        super().__init__()
        self.id = resolver_id
        self.name = resolver_id.title()
        self.url = url
        self.quality = quality
        self.fail = fail
        self.calls = []

    async def _find(self, title, episode):
        self.calls.append((title, episode))
        if self.fail:
            raise ProviderUnavailable(self.id, "down")
        if not self.url:
            return None
        return PlaybackCandidate(url=self.url, quality=self.quality,
                                 is_adaptive=self.url.endswith(".m3u8"))


def remote_item(source, external_id, title, **fields):
    return CatalogItem(source=source, external_id=str(external_id), title=title, **fields)


def fast(provider):
    """No waiting between requests or retries."""
    provider.rate_limiter = RateLimiter(600000)
    provider.retry_delay = 0
    return provider


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        providers=[],
        resolvers=[],
        consumet_base_url=GATEWAY_URL,
    )


@pytest.fixture
def session_factory(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'catalog.db'}")
    init_database(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return CanonicalStore(session_factory)


@pytest.fixture
def add_local_record(session_factory):
    """Insert a locally authored record (no external id). Returns its id."""
    def _add(title, average_score=None, alternate_title=None):
        with session_scope(session_factory) as session:
            record = CatalogRecord(
                title=title,
                alternate_title=alternate_title,
                average_score=average_score,
            )
            session.add(record)
            session.flush()
            return record.id
    return _add
