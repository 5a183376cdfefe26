"""
================================================================================
AnimeNegus - Base Link Resolver
================================================================================
Abstract base class for playback link resolvers.

A resolver has exactly one job:
  resolve(title, episode) -> PlaybackCandidate or None

Each resolver implements _find() against its own API or HTML. resolve() is
fail-soft: network errors, bad status codes and unparseable pages are logged
and turned into None, so the caller can run every resolver at once without
guarding each one.
================================================================================
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlparse
import asyncio
import logging

import httpx

from animenegus_app.errors import ProviderUnavailable

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def is_adaptive_url(url: str) -> bool:
    """HLS playlists (.m3u8) are adaptive streams."""
    return urlparse(url).path.lower().endswith('.m3u8')


def absolute_url(base_url: str, link: str) -> str:
    if link.startswith('//'):
        return f"https:{link}"
    if link.startswith('http'):
        return link
    return f"{base_url.rstrip('/')}/{link.lstrip('/')}"


@dataclass
class PlaybackCandidate:
    """One playable URL found by a resolver."""
    url: str
    quality: Optional[str] = None
    is_adaptive: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "quality": self.quality,
            "is_adaptive": self.is_adaptive,
        }


class BaseLinkResolver(ABC):
    """
    Base class for playback link resolvers.

    Subclasses set id/name/base_url and implement _find().
    """

    id: str = "base"
    name: str = "Base Resolver"
    base_url: str = ""

    timeout: float = 15.0
    user_agent: str = BROWSER_USER_AGENT

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._client_loop = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client for the running event loop."""
        loop = asyncio.get_running_loop()
        if self._client is None or self._client.is_closed or self._client_loop is not loop:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={'User-Agent': self.user_agent},
                follow_redirects=True,
                transport=self._transport,
            )
            self._client_loop = loop
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """
        GET a URL.

        Raises:
            ProviderUnavailable: Transport error or non-2xx status
        """
        client = await self._get_client()
        try:
            response = await client.get(url, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderUnavailable(self.id, f"HTTP {e.response.status_code} from {url}")
        except httpx.RequestError as e:
            raise ProviderUnavailable(self.id, f"{type(e).__name__}: {e}")
        return response

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = await self._get(url, params)
        try:
            return response.json()
        except ValueError as e:
            raise ProviderUnavailable(self.id, f"invalid JSON: {e}")

    async def resolve(self, title: str, episode: int) -> Optional[PlaybackCandidate]:
        """Find a playback URL for one episode. Never raises."""
        try:
            candidate = await self._find(title, episode)
        except ProviderUnavailable as e:
            logger.warning(f"[{self.id}] resolve '{title}' #{episode} failed: {e.reason}")
            return None
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error(f"[{self.id}] unparseable response for '{title}' #{episode}: {e!r}")
            return None

        if candidate:
            logger.info(f"[{self.id}] found episode {episode} of '{title}'")
        return candidate

    @abstractmethod
    async def _find(self, title: str, episode: int) -> Optional[PlaybackCandidate]:
        """Look up one episode. May raise ProviderUnavailable."""
        pass

    def __repr__(self):
        return f"<{self.__class__.__name__}(id='{self.id}')>"
