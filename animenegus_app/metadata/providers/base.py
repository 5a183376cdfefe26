"""
================================================================================
AnimeNegus - Base Metadata Provider
================================================================================
Abstract base class for all external catalog API providers.

Providers implement search, detail and ranking operations for:
  - MyAnimeList (REST, API v2)
  - AniList (GraphQL)
  - Kitsu (JSON:API)

Every public operation is fail-soft: transport and parse failures are caught
here and turned into an empty PagedResult (or None for get_by_id). Concrete
providers only implement the _fetch_* hooks and map_to_canonical().
================================================================================
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Dict, List, Optional, TypeVar
import re
import time
import asyncio
import logging
from datetime import date

import httpx

from ...errors import ProviderUnavailable
from ..models import CatalogItem, PagedResult, SearchFilters, Season


logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimiter:
    """
    Minimum-interval rate limiter for API requests.

    Prevents exceeding provider rate limits:
      - MyAnimeList: 60/min (conservative, no published limit)
      - AniList: 90/min
      - Kitsu: 60/min (conservative)
    """

    def __init__(self, requests_per_minute: int):
        self.requests_per_minute = requests_per_minute
        self.min_interval = 60.0 / requests_per_minute  # Seconds between requests
        self.last_request = 0.0
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop = None

    def _get_lock(self) -> asyncio.Lock:
        # asyncio.Lock is bound to the loop it is first awaited on
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    async def acquire(self):
        """Wait until a request slot is available."""
        async with self._get_lock():
            now = time.monotonic()
            time_since_last = now - self.last_request

            if time_since_last < self.min_interval:
                wait_time = self.min_interval - time_since_last
                logger.debug(f"Rate limit: waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)

            self.last_request = time.monotonic()


def parse_partial_date(value: Optional[str]) -> Optional[date]:
    """Parse 'YYYY', 'YYYY-MM' or 'YYYY-MM-DD' into a date (missing parts = 1)."""
    if not value:
        return None
    parts = str(value).split('T')[0].split('-')
    try:
        numbers = [int(p) for p in parts[:3]]
    except ValueError:
        return None
    return date_from_parts(*numbers)


def date_from_parts(year: Optional[int], month: Optional[int] = None,
                    day: Optional[int] = None) -> Optional[date]:
    if not year:
        return None
    try:
        return date(year, month or 1, day or 1)
    except ValueError:
        return None


def strip_html(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    text = re.sub(r'<br\s*/?>', '\n', text, flags=re.IGNORECASE)
    text = re.sub(r'<[^>]+>', '', text)
    return text.strip() or None


class BaseMetadataProvider(ABC):
    """
    Abstract base class for catalog providers.

    All providers must implement:
      - _fetch_search(), _fetch_by_id()
      - _fetch_seasonal(), _fetch_ongoing(), _fetch_upcoming(), _fetch_popular()
      - map_to_canonical(): provider-native record -> CatalogItem

    The base class handles:
      - Rate limiting
      - Retries on 429 / 5xx / network errors
      - Converting ProviderUnavailable into empty results
    """

    # Provider identification
    id: str = "base"
    name: str = "Base Provider"

    # API configuration
    base_url: str = ""

    # Rate limiting (requests per minute)
    rate_limit: int = 60

    # Request timeout (seconds)
    timeout: float = 10.0

    # Retry configuration
    max_retries: int = 3
    retry_delay: float = 1.0

    user_agent: str = "AnimeNegus/1.0"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self.rate_limiter = RateLimiter(self.rate_limit)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._client_loop = None

    def _headers(self) -> Dict[str, str]:
        return {
            'User-Agent': self.user_agent,
            'Accept': 'application/json'
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client for the running event loop."""
        loop = asyncio.get_running_loop()
        if self._client is None or self._client.is_closed or self._client_loop is not loop:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self._headers(),
                transport=self._transport,
            )
            self._client_loop = loop
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        url: str,
        **kwargs
    ) -> Any:
        """
        Make rate-limited HTTP request with retries.

        Returns:
            Decoded JSON body

        Raises:
            ProviderUnavailable: On request failure after retries or a non-JSON body
        """
        client = await self._get_client()
        last_error = "no attempt made"

        for attempt in range(self.max_retries):
            try:
                await self.rate_limiter.acquire()

                response = await client.request(method, url, **kwargs)
                response.raise_for_status()

                return response.json()

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                last_error = f"HTTP {status}"
                if status == 429:  # Rate limited
                    wait_time = self.retry_delay * (2 ** attempt)  # Exponential backoff
                    logger.warning(f"{self.id}: Rate limited (429), waiting {wait_time}s")
                    await asyncio.sleep(wait_time)
                    continue
                if status >= 500 and attempt < self.max_retries - 1:
                    logger.warning(
                        f"{self.id}: Server error ({status}), "
                        f"retry {attempt + 1}/{self.max_retries}"
                    )
                    await asyncio.sleep(self.retry_delay)
                    continue
                raise ProviderUnavailable(self.id, last_error)

            except httpx.RequestError as e:
                last_error = f"{type(e).__name__}: {e}"
                if attempt < self.max_retries - 1:
                    logger.warning(
                        f"{self.id}: Request error ({e}), "
                        f"retry {attempt + 1}/{self.max_retries}"
                    )
                    await asyncio.sleep(self.retry_delay)
                    continue
                raise ProviderUnavailable(self.id, last_error)

            except ValueError as e:
                raise ProviderUnavailable(self.id, f"invalid JSON: {e}")

        raise ProviderUnavailable(self.id, f"max retries exceeded ({last_error})")

    # =========================================================================
    # FAIL-SOFT PUBLIC API
    # =========================================================================

    async def _fail_soft(self, operation: str, call: Awaitable[T], default: T) -> T:
        try:
            return await call
        except ProviderUnavailable as e:
            logger.warning(f"{self.id}: {operation} failed: {e.reason}")
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error(f"{self.id}: {operation} returned an unparseable payload: {e!r}")
        return default

    async def search(
        self,
        query: str,
        page: int = 1,
        page_size: int = 20,
        filters: Optional[SearchFilters] = None
    ) -> PagedResult:
        """Search titles. Never raises; failures yield an empty page."""
        return await self._fail_soft(
            f"search '{query}'",
            self._fetch_search(query, page, page_size, filters or SearchFilters()),
            PagedResult.empty(),
        )

    async def get_by_id(self, external_id: str) -> Optional[CatalogItem]:
        """Fetch one title by this provider's id. None if missing or unavailable."""
        return await self._fail_soft(
            f"get_by_id '{external_id}'",
            self._fetch_by_id(str(external_id)),
            None,
        )

    async def list_seasonal(self, year: int, season: Season,
                            page: int = 1, page_size: int = 20) -> PagedResult:
        return await self._fail_soft(
            f"list_seasonal {year}/{season.value}",
            self._fetch_seasonal(year, season, page, page_size),
            PagedResult.empty(),
        )

    async def list_ongoing(self, page: int = 1, page_size: int = 20) -> PagedResult:
        return await self._fail_soft(
            "list_ongoing", self._fetch_ongoing(page, page_size), PagedResult.empty()
        )

    async def list_upcoming(self, page: int = 1, page_size: int = 20) -> PagedResult:
        return await self._fail_soft(
            "list_upcoming", self._fetch_upcoming(page, page_size), PagedResult.empty()
        )

    async def list_popular(self, page: int = 1, page_size: int = 20) -> PagedResult:
        return await self._fail_soft(
            "list_popular", self._fetch_popular(page, page_size), PagedResult.empty()
        )

    # =========================================================================
    # ABSTRACT METHODS (must be implemented by providers)
    # =========================================================================

    @abstractmethod
    async def _fetch_search(self, query: str, page: int, page_size: int,
                            filters: SearchFilters) -> PagedResult:
        pass

    @abstractmethod
    async def _fetch_by_id(self, external_id: str) -> Optional[CatalogItem]:
        pass

    @abstractmethod
    async def _fetch_seasonal(self, year: int, season: Season,
                              page: int, page_size: int) -> PagedResult:
        pass

    @abstractmethod
    async def _fetch_ongoing(self, page: int, page_size: int) -> PagedResult:
        pass

    @abstractmethod
    async def _fetch_upcoming(self, page: int, page_size: int) -> PagedResult:
        pass

    @abstractmethod
    async def _fetch_popular(self, page: int, page_size: int) -> PagedResult:
        pass

    @abstractmethod
    def map_to_canonical(self, native: Dict[str, Any]) -> CatalogItem:
        """
        Map a provider-native record to a partial CatalogItem.

        Must be pure: no I/O, no clock, same input gives the same output.
        """
        pass

    # =========================================================================
    # UTILITY METHODS
    # =========================================================================

    def _map_all(self, natives: List[Dict[str, Any]]) -> List[CatalogItem]:
        return [self.map_to_canonical(native) for native in natives]

    def __repr__(self):
        return f"<{self.__class__.__name__}(id='{self.id}', rate_limit={self.rate_limit}/min)>"
