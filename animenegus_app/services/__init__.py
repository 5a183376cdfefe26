"""
AnimeNegus Services Module

Provides the services behind the HTTP API:
- PlaybackResolver: cache-first episode links and ranked backend fallback
- StreamingService: gateway listings built on the ranked fallback loop
"""

from .playback_service import PlaybackResolver, has_payload
from .streaming_service import StreamingService, FALLBACK_GENRES

__all__ = ['PlaybackResolver', 'StreamingService', 'has_payload', 'FALLBACK_GENRES']
