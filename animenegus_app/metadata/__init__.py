"""
Catalog metadata: canonical shapes, providers and the aggregator.

Import the aggregator from animenegus_app.metadata.aggregator directly; this
package only re-exports the data models.
"""

from .models import (
    CatalogItem, CatalogKind, LifecycleStatus, PagedResult,
    PlaybackLinkItem, SearchFilters, Season,
)

__all__ = [
    'CatalogItem', 'CatalogKind', 'LifecycleStatus', 'PagedResult',
    'PlaybackLinkItem', 'SearchFilters', 'Season',
]
