"""
================================================================================
AnimeNegus - Canonical Store
================================================================================
SQLAlchemy-backed store for catalog records, genres and playback links.

All methods are synchronous and open their own transaction. Async callers
run them through asyncio.to_thread. Rows never leave a session: every method
returns plain dataclasses (CatalogItem, PlaybackLinkItem).

USAGE:
    from animenegus_app.store import CanonicalStore
    from animenegus_app.database import create_db_engine, make_session_factory

    store = CanonicalStore(make_session_factory(create_db_engine()))
    items, total = store.search_catalog("naruto", page=1, page_size=20)
================================================================================
"""

import logging
from typing import List, Optional, Sequence, Tuple

from datetime import date

from sqlalchemy import extract, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session, sessionmaker

from .database import session_scope
from .models import CatalogRecord, Genre, PlaybackLink, utcnow
from .metadata.models import (
    CatalogItem, CatalogKind, LifecycleStatus, PlaybackLinkItem, SearchFilters, Season
)

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Unknown Title"

# Columns copied from an incoming CatalogItem on sync (None never overwrites)
SYNC_FIELDS = (
    'title', 'alternate_title', 'synopsis', 'episode_count',
    'episode_duration_minutes', 'cover_image_url', 'average_score', 'release_date',
)


def _escape_like(value: str) -> str:
    return value.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


def _enum_or_unknown(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        return enum_cls.UNKNOWN


def record_to_item(record: CatalogRecord) -> CatalogItem:
    """Convert an attached CatalogRecord row to a CatalogItem."""
    return CatalogItem(
        id=record.id,
        source=record.external_source,
        external_id=record.external_id,
        title=record.title,
        alternate_title=record.alternate_title,
        synopsis=record.synopsis,
        kind=_enum_or_unknown(CatalogKind, record.kind),
        lifecycle_status=_enum_or_unknown(LifecycleStatus, record.lifecycle_status),
        episode_count=record.episode_count,
        episode_duration_minutes=record.episode_duration_minutes,
        cover_image_url=record.cover_image_url,
        average_score=record.average_score,
        release_date=record.release_date,
        last_synced_at=record.last_synced_at,
        genres=[genre.name for genre in record.genres],
    )


def apply_filters(q: Query, filters: Optional[SearchFilters]) -> Query:
    """
    Restrict a CatalogRecord query by SearchFilters.

    Mirrors SearchFilters.matches(): a record only drops out when a field it
    actually has contradicts a filter.
    """
    if filters is None or filters.is_empty():
        return q

    if filters.genres:
        wanted = [name.lower() for name in filters.genres]
        q = q.filter(or_(
            ~CatalogRecord.genres.any(),
            CatalogRecord.genres.any(func.lower(Genre.name).in_(wanted)),
        ))
    if filters.year:
        q = q.filter(or_(
            CatalogRecord.release_date.is_(None),
            CatalogRecord.release_date.between(date(filters.year, 1, 1), date(filters.year, 12, 31)),
        ))
    if filters.season:
        months = [m for m in range(1, 13) if Season.for_month(m) == filters.season]
        q = q.filter(or_(
            CatalogRecord.release_date.is_(None),
            extract('month', CatalogRecord.release_date).in_(months),
        ))
    if filters.status:
        q = q.filter(CatalogRecord.lifecycle_status.in_(
            [filters.status.value, LifecycleStatus.UNKNOWN.value]
        ))
    return q


def link_to_item(link: PlaybackLink) -> PlaybackLinkItem:
    return PlaybackLinkItem(
        id=link.id,
        title_id=link.catalog_id,
        episode_number=link.episode_number,
        backend_name=link.backend_name,
        url=link.url,
        quality_label=link.quality_label,
        is_adaptive_stream=bool(link.is_adaptive_stream),
        resolved_at=link.resolved_at,
    )


class CanonicalStore:
    """Single source of truth for persisted catalog and playback state."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @property
    def engine(self):
        return self._session_factory.kw.get('bind')

    # =========================================================================
    # CATALOG
    # =========================================================================

    def find_catalog_by_id(self, record_id: str) -> Optional[CatalogItem]:
        with session_scope(self._session_factory) as session:
            record = session.get(CatalogRecord, record_id)
            return record_to_item(record) if record else None

    def find_catalog_by_external_id(self, source: str, external_id: str) -> Optional[CatalogItem]:
        with session_scope(self._session_factory) as session:
            record = self._by_external_id(session, source, external_id)
            return record_to_item(record) if record else None

    def search_catalog(
        self,
        query: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
        filters: Optional[SearchFilters] = None
    ) -> Tuple[List[CatalogItem], int]:
        """
        Page through catalog records ordered by score (highest first).

        With a query, only records whose title or alternate title contains it
        (case-insensitive) are returned. Filters narrow the rows further.

        Returns:
            (items on this page, total matching records)
        """
        page = max(1, page)
        with session_scope(self._session_factory) as session:
            q = session.query(CatalogRecord)
            if query:
                pattern = f"%{_escape_like(query.strip())}%"
                q = q.filter(or_(
                    CatalogRecord.title.ilike(pattern, escape='\\'),
                    CatalogRecord.alternate_title.ilike(pattern, escape='\\'),
                ))
            q = apply_filters(q, filters)
            total = q.count()
            rows = (
                q.order_by(
                    CatalogRecord.average_score.is_(None),
                    CatalogRecord.average_score.desc(),
                    CatalogRecord.title,
                    CatalogRecord.id,
                )
                .offset((page - 1) * page_size)
                .limit(page_size)
                .all()
            )
            return [record_to_item(r) for r in rows], total

    def upsert_catalog(self, item: CatalogItem, genre_names: Sequence[str] = ()) -> CatalogItem:
        """
        Create or update a provider-origin record by (source, external_id).

        Fields missing from the incoming item keep their stored value. Genres
        are connected by name, unknown names are created in the same
        transaction. last_synced_at is always refreshed.

        A unique-constraint conflict means a concurrent writer created the
        same record (or genre) first; the write is retried once as an update.
        """
        if not item.source or not item.external_id:
            raise ValueError("upsert_catalog requires source and external_id")

        try:
            return self._write_catalog(item, genre_names)
        except IntegrityError:
            logger.info(f"Concurrent insert of {item.source}:{item.external_id}, retrying as update")
            return self._write_catalog(item, genre_names)

    def _write_catalog(self, item: CatalogItem, genre_names: Sequence[str]) -> CatalogItem:
        with session_scope(self._session_factory) as session:
            record = self._by_external_id(session, item.source, item.external_id)
            created = record is None
            if created:
                record = CatalogRecord(
                    external_source=item.source,
                    external_id=str(item.external_id),
                    title=item.title or DEFAULT_TITLE,
                    kind=(item.kind or CatalogKind.UNKNOWN).value,
                    lifecycle_status=(item.lifecycle_status or LifecycleStatus.UNKNOWN).value,
                )
                session.add(record)

            for name in SYNC_FIELDS:
                value = getattr(item, name)
                if value is not None:
                    setattr(record, name, value)
            if item.kind is not None:
                record.kind = item.kind.value
            if item.lifecycle_status is not None:
                record.lifecycle_status = item.lifecycle_status.value

            current = {genre.name for genre in record.genres}
            for name in genre_names:
                if name and name not in current:
                    record.genres.append(self._get_or_create_genre(session, name))
                    current.add(name)

            record.last_synced_at = utcnow()
            session.flush()

            if created:
                logger.debug(f"Created catalog record {record.id} for {item.source}:{item.external_id}")
            return record_to_item(record)

    def upsert_genre(self, name: str) -> str:
        """Ensure a genre row exists. Returns the stored name."""
        with session_scope(self._session_factory) as session:
            return self._get_or_create_genre(session, name).name

    # =========================================================================
    # PLAYBACK LINKS
    # =========================================================================

    def find_playback_links(self, title_id: str, episode_number: int) -> List[PlaybackLinkItem]:
        with session_scope(self._session_factory) as session:
            rows = (
                session.query(PlaybackLink)
                .filter_by(catalog_id=title_id, episode_number=episode_number)
                .order_by(PlaybackLink.resolved_at, PlaybackLink.backend_name)
                .all()
            )
            return [link_to_item(row) for row in rows]

    def delete_playback_links(self, title_id: str, episode_number: int) -> int:
        with session_scope(self._session_factory) as session:
            return (
                session.query(PlaybackLink)
                .filter_by(catalog_id=title_id, episode_number=episode_number)
                .delete(synchronize_session=False)
            )

    def insert_playback_link(self, link: PlaybackLinkItem) -> PlaybackLinkItem:
        """Store a link, replacing any existing one for the same backend."""
        try:
            return self._write_link(link)
        except IntegrityError:
            logger.info(
                f"Concurrent insert of {link.backend_name} link for "
                f"{link.title_id} ep {link.episode_number}, retrying as update"
            )
            return self._write_link(link)

    def _write_link(self, link: PlaybackLinkItem) -> PlaybackLinkItem:
        with session_scope(self._session_factory) as session:
            row = self._link_row(session, link.title_id, link.episode_number, link.backend_name)
            if row is None:
                row = PlaybackLink(
                    catalog_id=link.title_id,
                    episode_number=link.episode_number,
                    backend_name=link.backend_name,
                )
                session.add(row)
            row.url = link.url
            row.quality_label = link.quality_label
            row.is_adaptive_stream = link.is_adaptive_stream
            row.resolved_at = link.resolved_at or utcnow()
            session.flush()
            return link_to_item(row)

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _by_external_id(session: Session, source: str, external_id: str) -> Optional[CatalogRecord]:
        return (
            session.query(CatalogRecord)
            .filter_by(external_source=source, external_id=str(external_id))
            .first()
        )

    @staticmethod
    def _link_row(session: Session, title_id: str, episode_number: int,
                  backend_name: str) -> Optional[PlaybackLink]:
        return (
            session.query(PlaybackLink)
            .filter_by(catalog_id=title_id, episode_number=episode_number, backend_name=backend_name)
            .first()
        )

    @staticmethod
    def _get_or_create_genre(session: Session, name: str) -> Genre:
        genre = session.query(Genre).filter_by(name=name).first()
        if genre is None:
            genre = Genre(name=name)
            session.add(genre)
            session.flush()
        return genre
