import asyncio
import threading
from datetime import date, timedelta

import pytest

from animenegus_app.errors import NotFound
from animenegus_app.metadata.aggregator import CatalogAggregator, parse_composite_id
from animenegus_app.metadata.models import SearchFilters, Season
from animenegus_app.models import utcnow
from animenegus_app.store import CanonicalStore
from conftest import FakeProvider, fast, remote_item


def _later(hours):
    return lambda: utcnow() + timedelta(hours=hours)


def test_parse_composite_id():
    assert parse_composite_id("mal:21") == ("mal", "21")
    assert parse_composite_id("MAL:21") == ("mal", "21")
    assert parse_composite_id("3f2c0b5e-uuid") is None
    assert parse_composite_id("mal:") is None


def test_empty_query_reads_store_only(store, settings, add_local_record):
    add_local_record("Low", average_score=6.0)
    add_local_record("High", average_score=9.0)
    provider = FakeProvider("mal", items=[remote_item("mal", 1, "Remote")])
    aggregator = CatalogAggregator(store, [provider], settings)

    result = asyncio.run(aggregator.search("   ", page_size=1))

    assert [i.title for i in result.items] == ["High"]
    assert result.total == 2
    assert result.has_more is True
    assert provider.calls == []


def test_search_merges_local_and_remote(store, settings):
    stored = store.upsert_catalog(remote_item("mal", 20, "Naruto"))
    provider = FakeProvider("mal", items=[
        remote_item("mal", 20, "Naruto"),
        remote_item("mal", 1735, "Naruto Shippuden"),
    ])
    aggregator = CatalogAggregator(store, [provider], settings)

    result = asyncio.run(aggregator.search("Naruto"))

    assert [i.title for i in result.items] == ["Naruto", "Naruto Shippuden"]
    assert result.items[0].id == stored.id
    assert result.total == 2
    assert result.has_more is False
    _, total = store.search_catalog()
    assert total == 2


def test_search_syncs_remote_survivors(store, settings):
    provider = FakeProvider("anilist", items=[remote_item("anilist", 5, "Cowboy Bebop", genres=["Sci-Fi"])])
    aggregator = CatalogAggregator(store, [provider], settings)

    result = asyncio.run(aggregator.search("bebop"))

    synced = store.find_catalog_by_external_id("anilist", "5")
    assert result.items[0].id == synced.id
    assert synced.genres == ["Sci-Fi"]
    assert synced.last_synced_at is not None


def test_search_first_provider_wins_regardless_of_timing(store, settings):
    slow_first = FakeProvider("mal", items=[remote_item("mal", 269, "Bleach")], delay=0.05)
    fast_second = FakeProvider("kitsu", items=[remote_item("kitsu", 244, "Bleach")])
    aggregator = CatalogAggregator(store, [slow_first, fast_second], settings)

    result = asyncio.run(aggregator.search("bleach"))

    assert [(i.source, i.external_id) for i in result.items] == [("mal", "269")]
    assert store.find_catalog_by_external_id("kitsu", "244") is None


def test_search_is_deterministic(store, settings):
    providers = [
        FakeProvider("mal", items=[remote_item("mal", 1, "Monster"), remote_item("mal", 2, "Pluto")]),
        FakeProvider("anilist", items=[remote_item("anilist", 3, "Monster"), remote_item("anilist", 4, "Master Keaton")]),
    ]
    aggregator = CatalogAggregator(store, providers, settings)

    first = asyncio.run(aggregator.search("zzz"))
    second = asyncio.run(aggregator.search("zzz"))

    assert [i.id for i in first.items] == [i.id for i in second.items]


def test_failing_provider_contributes_nothing(store, settings):
    providers = [
        FakeProvider("mal", fail=True),
        FakeProvider("kitsu", items=[remote_item("kitsu", 1, "Mushishi")]),
    ]
    aggregator = CatalogAggregator(store, providers, settings)

    result = asyncio.run(aggregator.search("mushi"))

    assert [i.title for i in result.items] == ["Mushishi"]


def test_slow_provider_times_out_softly(store, settings):
    providers = [
        FakeProvider("mal", items=[remote_item("mal", 1, "Too Late")], delay=1.0),
        FakeProvider("kitsu", items=[remote_item("kitsu", 1, "On Time")]),
    ]
    aggregator = CatalogAggregator(store, providers, settings)

    result = asyncio.run(aggregator.search("time", timeout=0.05))

    assert [i.title for i in result.items] == ["On Time"]


def test_search_truncates_and_reports_more(store, settings):
    provider = FakeProvider("mal", items=[remote_item("mal", 1, "A"), remote_item("mal", 2, "B")])
    aggregator = CatalogAggregator(store, [provider], settings)

    result = asyncio.run(aggregator.search("x", page_size=1))

    assert len(result.items) == 1
    assert result.has_more is True


def test_search_filters_drop_contradicting_remote_items(store, settings):
    provider = FakeProvider("mal", items=[
        remote_item("mal", 1, "Old", release_date=date(1998, 4, 3)),
        remote_item("mal", 2, "Current", release_date=date(2024, 10, 5)),
        remote_item("mal", 3, "Undated"),
    ])
    aggregator = CatalogAggregator(store, [provider], settings)

    result = asyncio.run(aggregator.search("x", filters=SearchFilters(year=2024, season=Season.FALL)))

    assert [i.title for i in result.items] == ["Current", "Undated"]


def test_get_by_id_fresh_record_skips_providers(store, settings):
    stored = store.upsert_catalog(remote_item("mal", 21, "One Piece"))
    provider = FakeProvider("mal")
    aggregator = CatalogAggregator(store, [provider], settings)

    item = asyncio.run(aggregator.get_by_id(stored.id))

    assert item.id == stored.id
    assert provider.calls == []


def test_get_by_id_refreshes_stale_record(store, settings):
    stored = store.upsert_catalog(remote_item("mal", 21, "One Piece"))
    mal = FakeProvider("mal", by_id={"21": remote_item("mal", 21, "One Piece", episode_count=1100)})
    kitsu = FakeProvider("kitsu")
    aggregator = CatalogAggregator(store, [kitsu, mal], settings, clock=_later(25))

    item = asyncio.run(aggregator.get_by_id(stored.id))

    assert item.id == stored.id
    assert item.episode_count == 1100
    assert mal.calls == [("get_by_id", "21")]
    assert kitsu.calls == []


def test_get_by_id_serves_stale_copy_when_refresh_fails(store, settings):
    stored = store.upsert_catalog(remote_item("mal", 21, "One Piece", synopsis="Pirates."))
    provider = FakeProvider("mal", fail=True)
    aggregator = CatalogAggregator(store, [provider], settings, clock=_later(48))

    item = asyncio.run(aggregator.get_by_id(stored.id))

    assert item.id == stored.id
    assert item.synopsis == "Pirates."
    assert provider.calls == [("get_by_id", "21")]


def test_get_by_id_local_record_is_always_fresh(store, settings, add_local_record):
    local_id = add_local_record("Fan Cut")
    provider = FakeProvider("mal")
    aggregator = CatalogAggregator(store, [provider], settings, clock=_later(1000))

    assert asyncio.run(aggregator.get_by_id(local_id)).title == "Fan Cut"
    assert provider.calls == []


def test_get_by_id_unknown_raises_not_found(store, settings):
    aggregator = CatalogAggregator(store, [FakeProvider("mal")], settings)

    with pytest.raises(NotFound):
        asyncio.run(aggregator.get_by_id("00000000-0000-0000-0000-000000000000"))


def test_get_by_id_composite_fetches_then_reads_store(store, settings):
    provider = FakeProvider("anilist", by_id={"77": remote_item("anilist", 77, "Mob Psycho 100")})
    aggregator = CatalogAggregator(store, [provider], settings)

    fetched = asyncio.run(aggregator.get_by_id("anilist:77"))
    again = asyncio.run(aggregator.get_by_id("anilist:77"))

    assert fetched.id is not None
    assert again.id == fetched.id
    assert provider.calls == [("get_by_id", "77")]


def test_get_by_id_composite_unknown_raises(store, settings):
    aggregator = CatalogAggregator(store, [FakeProvider("anilist")], settings)

    with pytest.raises(NotFound):
        asyncio.run(aggregator.get_by_id("anilist:404"))


def test_list_popular_uses_store_when_populated(store, settings, add_local_record):
    add_local_record("Local Hit", average_score=9.5)
    provider = FakeProvider("mal", items=[remote_item("mal", 1, "Remote Hit")])
    aggregator = CatalogAggregator(store, [provider], settings)

    result = asyncio.run(aggregator.list_popular())

    assert [i.title for i in result.items] == ["Local Hit"]
    assert result.total == 1
    assert result.has_more is False
    assert provider.calls == []


def test_list_popular_fans_out_when_store_empty(store, settings):
    provider = FakeProvider("mal", items=[remote_item("mal", 1, "Remote Hit")])
    aggregator = CatalogAggregator(store, [provider], settings)

    result = asyncio.run(aggregator.list_popular())

    assert [i.title for i in result.items] == ["Remote Hit"]
    assert provider.calls == ["popular"]


def test_listing_total_is_largest_provider_total(store, settings):
    providers = [
        FakeProvider("mal", items=[remote_item("mal", 1, "A")], total=120, has_more=True),
        FakeProvider("kitsu", items=[remote_item("kitsu", 2, "B")], total=80),
    ]
    aggregator = CatalogAggregator(store, providers, settings)

    result = asyncio.run(aggregator.list_ongoing())

    assert result.total == 120
    assert result.has_more is True
    assert [i.title for i in result.items] == ["A", "B"]


def test_seasonal_and_upcoming_fan_out(store, settings):
    provider = FakeProvider("anilist", items=[remote_item("anilist", 9, "Next Season")])
    aggregator = CatalogAggregator(store, [provider], settings)

    asyncio.run(aggregator.list_seasonal(2025, Season.SPRING))
    asyncio.run(aggregator.list_upcoming())

    assert provider.calls == ["seasonal", "upcoming"]


def test_no_providers_yields_empty_listing(store, settings):
    aggregator = CatalogAggregator(store, [], settings)

    result = asyncio.run(aggregator.list_ongoing())

    assert result.items == []
    assert result.total == 0
    assert result.has_more is False


def test_sync_is_idempotent(store, settings):
    aggregator = CatalogAggregator(store, [], settings)
    item = remote_item("kitsu", 3, "Haibane Renmei", genres=["Drama"])

    first = asyncio.run(aggregator.sync(item))
    second = asyncio.run(aggregator.sync(item))

    assert first.id == second.id
    assert second.genres == ["Drama"]


def test_empty_query_applies_filters_to_store_rows(store, settings):
    store.upsert_catalog(remote_item("mal", 1, "Action Show", average_score=8.0), ["Action"])
    store.upsert_catalog(remote_item("mal", 2, "Slice Show", average_score=7.0), ["Slice of Life"])
    aggregator = CatalogAggregator(store, [], settings)

    result = asyncio.run(aggregator.search("", filters=SearchFilters(genres=["Action"])))

    assert [i.title for i in result.items] == ["Action Show"]
    assert result.total == 1


def test_query_search_filters_store_matches(store, settings):
    store.upsert_catalog(remote_item("mal", 1, "Show Old", release_date=date(2001, 1, 10)))
    store.upsert_catalog(remote_item("mal", 2, "Show New", release_date=date(2024, 1, 10)))
    aggregator = CatalogAggregator(store, [FakeProvider("kitsu")], settings)

    result = asyncio.run(aggregator.search("show", filters=SearchFilters(year=2024)))

    assert [i.title for i in result.items] == ["Show New"]


class RendezvousStore(CanonicalStore):
    """Holds each reconcile lookup until both concurrent searches have made one."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.barrier = threading.Barrier(2, timeout=5)

    def find_catalog_by_external_id(self, source, external_id):
        found = super().find_catalog_by_external_id(source, external_id)
        self.barrier.wait()
        return found


def test_concurrent_searches_for_new_title_share_one_record(session_factory, settings):
    store = RendezvousStore(session_factory)
    provider = FakeProvider("mal", items=[remote_item("mal", 20, "Naruto")])
    aggregator = CatalogAggregator(store, [provider], settings)

    async def both():
        return await asyncio.gather(aggregator.search("Naruto"), aggregator.search("Naruto"))

    first, second = asyncio.run(both())

    assert first.items[0].id == second.items[0].id
    _, total = store.search_catalog()
    assert total == 1


class HangingProvider(FakeProvider):
    """Search never answers; records whether it was cancelled."""

    def __init__(self, provider_id):
        super().__init__(provider_id)
        self.started = None
        self.cancelled = False

    async def _fetch_search(self, query, page, page_size, filters):
        self.started.set()
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            self.cancelled = True
            raise


def test_cancelling_search_cancels_in_flight_provider_calls(store, settings):
    provider = fast(HangingProvider("mal"))
    aggregator = CatalogAggregator(store, [provider], settings)

    async def cancel_midway():
        provider.started = asyncio.Event()
        task = asyncio.create_task(aggregator.search("naruto"))
        await provider.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(cancel_midway())

    assert provider.cancelled is True
