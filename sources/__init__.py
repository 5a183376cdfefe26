"""
================================================================================
AnimeNegus - Source Registry
================================================================================
Priority-ordered list of named playback backends.

HOW FALLBACK ORDERING WORKS:
  1. Callers ask ordered_names() for the enabled backends, lowest priority first
  2. A caller may name a preferred backend; it is moved to the front
  3. A backend that fails is reported with report_failure()
  4. Its priority becomes (highest priority of any entry) + 1, so it sinks
     to the end of the list. It is never disabled.
  5. Priorities live in memory only and reset on restart

Writes are serialised by a lock. Reads use the current immutable snapshot
and never block.
================================================================================
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import httpx

from .base import BaseLinkResolver, PlaybackCandidate, is_adaptive_url
from .kodik import KodikResolver
from .sibnet import SibnetResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceEntry:
    """One backend: lower priority is tried first."""
    name: str
    priority: int
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "priority": self.priority, "enabled": self.enabled}


EntrySpec = Union[SourceEntry, Tuple[str, int, bool], Tuple[str, int]]


class SourcePriorityRegistry:
    """
    Ordered, adaptive backend list.

    Usage:
        registry = SourcePriorityRegistry([("gogoanime", 1, True), ("zoro", 2, True)])
        registry.ordered_names()            # ['gogoanime', 'zoro']
        registry.report_failure("gogoanime")
        registry.ordered_names()            # ['zoro', 'gogoanime']
    """

    def __init__(self, entries: Iterable[EntrySpec]):
        parsed = [e if isinstance(e, SourceEntry) else SourceEntry(*e) for e in entries]
        self._lock = threading.Lock()
        self._entries: Tuple[SourceEntry, ...] = self._sorted(parsed)

    @classmethod
    def from_names(cls, names: Iterable[str]) -> "SourcePriorityRegistry":
        """Enabled entries with priorities 1..n in the given order."""
        return cls(SourceEntry(name, index + 1) for index, name in enumerate(names))

    @staticmethod
    def _sorted(entries: Iterable[SourceEntry]) -> Tuple[SourceEntry, ...]:
        # sorted() is stable: equal priorities keep their previous order
        return tuple(sorted(entries, key=lambda e: e.priority))

    def entries(self) -> List[SourceEntry]:
        """All entries, enabled or not, in priority order."""
        return list(self._entries)

    def ordered_names(self, preferred: Optional[str] = None) -> List[str]:
        """Enabled backend names in try order, preferred first when enabled."""
        names = [e.name for e in self._entries if e.enabled]
        if preferred and preferred in names:
            names.remove(preferred)
            names.insert(0, preferred)
        return names

    def report_failure(self, name: str) -> None:
        """Push a backend behind every other entry."""
        with self._lock:
            entries = self._entries
            if not any(e.name == name for e in entries):
                logger.warning(f"Failure reported for unknown source '{name}'")
                return
            lowest = max(e.priority for e in entries) + 1
            self._entries = self._sorted(
                replace(e, priority=lowest) if e.name == name else e for e in entries
            )
        logger.warning(f"Source [{name}] failed, priority lowered to {lowest}")

    def __len__(self):
        return len(self._entries)

    def __repr__(self):
        order = ", ".join(f"{e.name}:{e.priority}" for e in self._entries)
        return f"<SourcePriorityRegistry [{order}]>"


# =============================================================================
# LINK RESOLVERS
# =============================================================================

RESOLVER_CLASSES = {
    KodikResolver.id: KodikResolver,
    SibnetResolver.id: SibnetResolver,
}


def build_link_resolvers(
    names: Iterable[str],
    kodik_api_key: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> List[BaseLinkResolver]:
    """Instantiate the named resolvers in the given order."""
    resolvers: List[BaseLinkResolver] = []
    for name in names:
        if name == KodikResolver.id:
            resolvers.append(KodikResolver(kodik_api_key, transport=transport))
        elif name in RESOLVER_CLASSES:
            resolvers.append(RESOLVER_CLASSES[name](transport=transport))
        else:
            logger.warning(f"Unknown link resolver '{name}' in configuration, skipping")
    return resolvers


__all__ = [
    'SourceEntry', 'SourcePriorityRegistry', 'BaseLinkResolver', 'PlaybackCandidate',
    'KodikResolver', 'SibnetResolver', 'RESOLVER_CLASSES', 'build_link_resolvers',
    'is_adaptive_url',
]
