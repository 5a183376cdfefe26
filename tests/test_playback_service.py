import asyncio

import httpx
import pytest

from animenegus_app.config import DEFAULT_STREAMING_BACKENDS
from animenegus_app.errors import AllSourcesExhausted, TitleNotFound
from animenegus_app.services import FALLBACK_GENRES, PlaybackResolver, StreamingService, has_payload
from sources import SourcePriorityRegistry
from conftest import FakeResolver


def _gateway(answers, seen):
    """Gateway stub: answers maps backend name -> (status, json payload)."""
    def handler(request):
        backend = request.url.path.split("/")[2]
        seen.append(backend)
        status, payload = answers.get(backend, (500, {}))
        return httpx.Response(status, json=payload)
    return httpx.MockTransport(handler)


def _resolver(store, settings, resolvers=(), answers=None, seen=None):
    transport = _gateway(answers or {}, seen if seen is not None else [])
    return PlaybackResolver(
        store,
        list(resolvers),
        SourcePriorityRegistry(DEFAULT_STREAMING_BACKENDS),
        settings=settings,
        transport=transport,
    )


def test_has_payload():
    assert has_payload({"results": [1]})
    assert has_payload({"id": "naruto"})
    assert has_payload([{"id": 1}])
    assert not has_payload({"results": []})
    assert not has_payload({"message": "nope"})
    assert not has_payload(None)


def test_resolve_episode_stores_links_in_resolver_order(store, settings, add_local_record):
    title_id = add_local_record("Frieren")
    kodik = FakeResolver("kodik", url="https://kodik.info/seria/1")
    sibnet = FakeResolver("sibnet", url="https://video.sibnet.ru/v/1.m3u8")
    playback = _resolver(store, settings, [kodik, sibnet])

    links = asyncio.run(playback.resolve_episode(title_id, 1))

    assert [l.backend_name for l in links] == ["kodik", "sibnet"]
    assert links[1].is_adaptive_stream is True
    assert kodik.calls == [("Frieren", 1)]
    assert len(store.find_playback_links(title_id, 1)) == 2


def test_resolve_episode_is_cache_first(store, settings, add_local_record):
    title_id = add_local_record("Frieren")
    kodik = FakeResolver("kodik", url="https://kodik.info/seria/1")
    playback = _resolver(store, settings, [kodik])

    first = asyncio.run(playback.resolve_episode(title_id, 1))
    second = asyncio.run(playback.resolve_episode(title_id, 1))

    assert [l.id for l in first] == [l.id for l in second]
    assert len(kodik.calls) == 1


def test_resolve_episode_unknown_title(store, settings):
    playback = _resolver(store, settings, [FakeResolver("kodik", url="https://x")])

    with pytest.raises(TitleNotFound):
        asyncio.run(playback.resolve_episode("missing-title", 1))


def test_resolve_episode_rejects_non_positive_episode(store, settings, add_local_record):
    title_id = add_local_record("Frieren")
    playback = _resolver(store, settings, [])

    with pytest.raises(ValueError):
        asyncio.run(playback.resolve_episode(title_id, 0))


def test_failing_resolver_is_skipped(store, settings, add_local_record):
    title_id = add_local_record("Frieren")
    playback = _resolver(store, settings, [
        FakeResolver("kodik", fail=True),
        FakeResolver("sibnet", url="https://video.sibnet.ru/v/1.mp4"),
    ])

    links = asyncio.run(playback.resolve_episode(title_id, 2))

    assert [l.backend_name for l in links] == ["sibnet"]


def test_no_links_found_leaves_cache_empty(store, settings, add_local_record):
    title_id = add_local_record("Frieren")
    kodik = FakeResolver("kodik")
    playback = _resolver(store, settings, [kodik])

    assert asyncio.run(playback.resolve_episode(title_id, 1)) == []
    assert asyncio.run(playback.resolve_episode(title_id, 1)) == []
    assert len(kodik.calls) == 2


def test_refresh_episode_replaces_stored_links(store, settings, add_local_record):
    title_id = add_local_record("Frieren")
    kodik = FakeResolver("kodik", url="https://kodik.info/seria/old")
    playback = _resolver(store, settings, [kodik])
    asyncio.run(playback.resolve_episode(title_id, 1))

    kodik.url = "https://kodik.info/seria/new"
    links = asyncio.run(playback.refresh_episode(title_id, 1))

    assert [l.url for l in links] == ["https://kodik.info/seria/new"]
    assert [l.url for l in store.find_playback_links(title_id, 1)] == ["https://kodik.info/seria/new"]
    assert len(kodik.calls) == 2


def test_try_sources_returns_first_answer(store, settings):
    seen = []
    playback = _resolver(store, settings, answers={"gogoanime": (200, {"results": [{"id": "a"}]})}, seen=seen)

    data = asyncio.run(playback.try_sources_in_order("top-airing"))

    assert data["source"] == "gogoanime"
    assert data["results"] == [{"id": "a"}]
    assert seen == ["gogoanime"]


def test_try_sources_demotes_failed_backend(store, settings):
    seen = []
    playback = _resolver(store, settings, answers={"zoro": (200, {"results": [1]})}, seen=seen)

    data = asyncio.run(playback.try_sources_in_order("recent-episodes"))

    assert data["source"] == "zoro"
    assert seen == ["gogoanime", "zoro"]
    assert playback.streaming_registry.ordered_names() == ["zoro", "animepahe", "9anime", "gogoanime"]

    seen.clear()
    asyncio.run(playback.try_sources_in_order("recent-episodes"))
    assert seen == ["zoro"]


def test_try_sources_empty_payload_counts_as_failure(store, settings):
    seen = []
    playback = _resolver(store, settings, answers={
        "gogoanime": (200, {"results": []}),
        "zoro": (200, {"id": "naruto"}),
    }, seen=seen)

    data = asyncio.run(playback.try_sources_in_order("info/naruto"))

    assert data["source"] == "zoro"
    assert playback.streaming_registry.ordered_names()[-1] == "gogoanime"


def test_try_sources_preferred_backend_first(store, settings):
    seen = []
    playback = _resolver(store, settings, answers={"animepahe": (200, {"results": [1]})}, seen=seen)

    data = asyncio.run(playback.try_sources_in_order("popular", preferred_backend="animepahe"))

    assert data["source"] == "animepahe"
    assert seen == ["animepahe"]


def test_try_sources_all_fail(store, settings):
    playback = _resolver(store, settings)

    with pytest.raises(AllSourcesExhausted) as exc_info:
        asyncio.run(playback.try_sources_in_order("top-airing"))

    assert exc_info.value.path == "top-airing"
    assert exc_info.value.tried == ["gogoanime", "zoro", "animepahe", "9anime"]


def test_streaming_genres_fall_back_to_fixed_list(store, settings):
    streaming = StreamingService(_resolver(store, settings))

    data = asyncio.run(streaming.genres())

    assert data == {"genres": FALLBACK_GENRES}


def test_streaming_watch_normalises_sources(store, settings):
    payload = {"sources": [
        {"url": "https://cdn.test/master.m3u8", "quality": "1080p", "isM3U8": True},
        {"url": "https://cdn.test/low.mp4"},
        {"quality": "broken"},
    ]}
    streaming = StreamingService(_resolver(store, settings, answers={"gogoanime": (200, payload)}))

    streams = asyncio.run(streaming.watch("naruto-episode-1"))

    assert streams == [
        {"url": "https://cdn.test/master.m3u8", "quality": "1080p", "is_m3u8": True},
        {"url": "https://cdn.test/low.mp4", "quality": "default", "is_m3u8": False},
    ]


def test_streaming_search_quotes_query(store, settings):
    seen_paths = []

    def handler(request):
        seen_paths.append(request.url.raw_path.decode())
        return httpx.Response(200, json={"results": [{"id": "one-piece"}]})

    playback = PlaybackResolver(
        store, [], SourcePriorityRegistry(DEFAULT_STREAMING_BACKENDS),
        settings=settings, transport=httpx.MockTransport(handler),
    )
    streaming = StreamingService(playback)

    data = asyncio.run(streaming.search("one piece", page=2))

    assert data["source"] == "gogoanime"
    assert seen_paths == ["/anime/gogoanime/search/one%20piece?page=2"]
