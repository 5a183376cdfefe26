"""
================================================================================
AnimeNegus - Search Package
================================================================================
Result merging for catalog search and listings.

Components:
  - deduplicator.py - Merges store and provider results (id, then exact title)
================================================================================
"""

from .deduplicator import CatalogDeduplicator, MergedEntry

__all__ = ['CatalogDeduplicator', 'MergedEntry']
