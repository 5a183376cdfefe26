"""
Error types for the aggregation layer.

ProviderUnavailable never leaves a provider client; it is converted into an
empty result at the client boundary. NotFound, TitleNotFound and
AllSourcesExhausted are surfaced to callers (404 / 404 / 500).
"""

from typing import Optional


class AnimeNegusError(Exception):
    """Base class for all errors raised by the aggregation layer."""


class ProviderUnavailable(AnimeNegusError):
    """Transport or parse failure inside one provider or resolver client."""

    def __init__(self, provider_id: str, reason: str):
        self.provider_id = provider_id
        self.reason = reason
        super().__init__(f"{provider_id} unavailable: {reason}")


class NotFound(AnimeNegusError):
    """No catalog record exists for the requested id."""

    def __init__(self, record_id: str, message: Optional[str] = None):
        self.record_id = record_id
        super().__init__(message or f"Catalog record '{record_id}' not found")


class TitleNotFound(NotFound):
    """Playback resolution was requested for a title the store does not know."""

    def __init__(self, title_id: str):
        super().__init__(title_id, f"Title '{title_id}' not found")


class AllSourcesExhausted(AnimeNegusError):
    """Every ranked backend failed for a listing or resolution call."""

    def __init__(self, path: str, tried: Optional[list] = None):
        self.path = path
        self.tried = list(tried or [])
        super().__init__(
            f"Failed to fetch data for path [{path}] from all available sources"
        )
