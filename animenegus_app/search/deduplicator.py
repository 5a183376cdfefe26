"""
================================================================================
AnimeNegus - Search Result Deduplicator
================================================================================
Merges store matches with provider results into one duplicate-free list.

Problem:
  User searches "Naruto" -> the store has it, MAL has it, AniList has it,
  Kitsu has it. Without merging the same show appears four times.

Rules:
  1. Store items come first and always win (they carry a stable internal id)
  2. Remote items already reconciled to a stored row carry that row's id and
     are dropped when the id was already kept
  3. Remote items without an id are dropped when their title exactly equals
     a title already kept
  4. Otherwise first seen wins; remote input order is provider-config order

Title matching is exact string equality. Localized or alternate spellings of
the same show are not merged.
================================================================================
"""

from dataclasses import dataclass
from typing import Iterable, List, Set
import logging

from ..metadata.models import CatalogItem

logger = logging.getLogger(__name__)


@dataclass
class MergedEntry:
    """One surviving item and whether it came from the store."""
    item: CatalogItem
    from_store: bool


class CatalogDeduplicator:
    """Deterministic merge of local and remote catalog items."""

    def deduplicate(
        self,
        local: Iterable[CatalogItem],
        remote: Iterable[CatalogItem]
    ) -> List[MergedEntry]:
        """
        Merge local and remote items.

        Args:
            local: Store items (highest precedence)
            remote: Provider items flattened in provider-config order

        Returns:
            Surviving entries, local first, then remote in input order
        """
        merged: List[MergedEntry] = []
        seen_ids: Set[str] = set()
        seen_titles: Set[str] = set()
        dropped = 0

        for item in local:
            if item.id in seen_ids:
                continue
            seen_ids.add(item.id)
            if item.title:
                seen_titles.add(item.title)
            merged.append(MergedEntry(item=item, from_store=True))

        for item in remote:
            if item.id:
                if item.id in seen_ids:
                    dropped += 1
                    continue
                seen_ids.add(item.id)
            elif item.title and item.title in seen_titles:
                dropped += 1
                continue

            if item.title:
                seen_titles.add(item.title)
            merged.append(MergedEntry(item=item, from_store=False))

        if dropped:
            logger.debug(f"Deduplicated {dropped} remote items, {len(merged)} remain")
        return merged
