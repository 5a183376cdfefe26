import asyncio

import httpx

from sources import (
    KodikResolver, SibnetResolver, build_link_resolvers, is_adaptive_url
)
from sources.base import absolute_url

SIBNET_SEARCH = """
<html><body>
  <div class="video-item">
    <a href="/video111-Other_Show"><span class="video-title">Other Show 1 серия</span></a>
  </div>
  <div class="video-item">
    <a href="/video222-Frieren"><span class="video-title">Frieren 1 серия</span></a>
  </div>
</body></html>
"""


def _kodik_transport(search_results, list_results, seen):
    def handler(request):
        seen.append(request)
        if request.url.path == "/search":
            return httpx.Response(200, json={"results": search_results})
        if request.url.path == "/list":
            return httpx.Response(200, json={"results": list_results})
        return httpx.Response(404)
    return httpx.MockTransport(handler)


def test_is_adaptive_url():
    assert is_adaptive_url("https://cdn.example/hls/master.m3u8")
    assert is_adaptive_url("https://cdn.example/hls/MASTER.M3U8?token=1")
    assert not is_adaptive_url("https://cdn.example/video.mp4")


def test_absolute_url():
    assert absolute_url("https://video.sibnet.ru", "//cdn.sibnet.ru/a.mp4") == "https://cdn.sibnet.ru/a.mp4"
    assert absolute_url("https://video.sibnet.ru", "/v/a.mp4") == "https://video.sibnet.ru/v/a.mp4"
    assert absolute_url("https://video.sibnet.ru", "https://x.test/a") == "https://x.test/a"


def test_kodik_without_key_makes_no_request():
    seen = []
    resolver = KodikResolver(api_key=None, transport=_kodik_transport([], [], seen))

    assert asyncio.run(resolver.resolve("Frieren", 1)) is None
    assert seen == []


def test_kodik_finds_episode():
    seen = []
    transport = _kodik_transport(
        [
            {"title": "Ванпанчмен", "title_orig": "One Punch Man", "shikimori_id": "30276"},
            {"title": "Провожающая в последний путь Фрирен", "title_orig": "Sousou no Frieren",
             "shikimori_id": "52991"},
        ],
        [{"link": "//kodik.info/seria/1/abc/720p", "quality": "WEB-DLRip 720p"}],
        seen,
    )
    resolver = KodikResolver(api_key="token", transport=transport)

    candidate = asyncio.run(resolver.resolve("Sousou no Frieren", 3))

    assert candidate.url == "https://kodik.info/seria/1/abc/720p"
    assert candidate.quality == "WEB-DLRip 720p"
    assert candidate.is_adaptive is False
    list_request = seen[1]
    assert list_request.url.params["shikimori_id"] == "52991"
    assert list_request.url.params["episode"] == "3"
    assert list_request.url.params["token"] == "token"


def test_kodik_no_matching_title():
    seen = []
    transport = _kodik_transport([{"title": "X", "title_orig": "Y", "shikimori_id": "1"}], [], seen)
    resolver = KodikResolver(api_key="token", transport=transport)

    assert asyncio.run(resolver.resolve("Frieren", 1)) is None
    assert len(seen) == 1


def test_kodik_server_error_is_soft():
    resolver = KodikResolver(
        api_key="token",
        transport=httpx.MockTransport(lambda request: httpx.Response(502)),
    )

    assert asyncio.run(resolver.resolve("Frieren", 1)) is None


def test_sibnet_reads_video_source():
    seen = []

    def handler(request):
        seen.append(request)
        if request.url.path == "/search.php":
            return httpx.Response(200, text=SIBNET_SEARCH)
        if request.url.path == "/video222-Frieren":
            return httpx.Response(200, text='<video><source src="/v/abc.mp4"></video>')
        return httpx.Response(404)

    resolver = SibnetResolver(transport=httpx.MockTransport(handler))

    candidate = asyncio.run(resolver.resolve("Frieren", 1))

    assert candidate.url == "https://video.sibnet.ru/v/abc.mp4"
    assert candidate.quality == "720p"
    assert seen[0].url.params["str"] == "Frieren 1 серия"


def test_sibnet_falls_back_to_page_url():
    def handler(request):
        if request.url.path == "/search.php":
            return httpx.Response(200, text=SIBNET_SEARCH)
        return httpx.Response(200, text="<html><div id='player'></div></html>")

    resolver = SibnetResolver(transport=httpx.MockTransport(handler))

    candidate = asyncio.run(resolver.resolve("Frieren", 1))

    assert candidate.url == "https://video.sibnet.ru/video222-Frieren"


def test_sibnet_no_match():
    resolver = SibnetResolver(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text=SIBNET_SEARCH))
    )

    assert asyncio.run(resolver.resolve("Mushishi", 1)) is None


def test_sibnet_network_error_is_soft():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    resolver = SibnetResolver(transport=httpx.MockTransport(handler))

    assert asyncio.run(resolver.resolve("Frieren", 1)) is None


def test_build_link_resolvers():
    resolvers = build_link_resolvers(["sibnet", "kodik", "unknown"], kodik_api_key="k")

    assert [r.id for r in resolvers] == ["sibnet", "kodik"]
    assert resolvers[1].api_key == "k"
