"""
================================================================================
AnimeNegus - Database Models (Canonical Store)
================================================================================
SQLAlchemy models for the canonical catalog store.

ARCHITECTURE:
  - CatalogRecord: One anime title. Identified by a store-assigned UUID and,
    when it came from a metadata provider, by (external_source, external_id).
    Records without an external id are locally authored.
  - Genre: Unique, case-preserving name. Many-to-many with CatalogRecord.
  - PlaybackLink: A resolved playback URL for one episode of one title from
    one link resolver backend.
================================================================================
"""

from datetime import datetime, timezone
import uuid
import os
from sqlalchemy import (
    Column, String, Integer, DateTime, Date, Boolean, ForeignKey, Text, Float,
    Table, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship, declarative_base, declared_attr
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


# UUID type - use String for SQLite, UUID for PostgreSQL
def UUIDType():
    """Returns appropriate UUID column type for current database."""
    db_url = os.environ.get('DATABASE_URL', '')
    if db_url.startswith('postgres://') or db_url.startswith('postgresql://'):
        return PG_UUID(as_uuid=False)
    return String(36)  # SQLite fallback - stores UUID as string


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo, so we store naive UTC everywhere)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


Base = declarative_base()

# =============================================================================
# MIXINS
# =============================================================================

class TimestampMixin:
    """Adds a created_at timestamp to models."""
    @declared_attr
    def created_at(cls):
        return Column(DateTime, default=utcnow, nullable=False)


# =============================================================================
# CATALOG
# =============================================================================

catalog_genres = Table(
    'catalog_genres',
    Base.metadata,
    Column('catalog_id', UUIDType(), ForeignKey('catalog_records.id', ondelete='CASCADE'), primary_key=True),
    Column('genre_id', Integer, ForeignKey('genres.id', ondelete='CASCADE'), primary_key=True),
)


class Genre(Base):
    """Genre row. Created on demand during sync, never deleted."""
    __tablename__ = 'genres'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False)

    records = relationship("CatalogRecord", secondary=catalog_genres, back_populates="genres")


class CatalogRecord(Base, TimestampMixin):
    """Canonical anime title."""
    __tablename__ = 'catalog_records'

    id = Column(UUIDType(), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Provider identity (NULL for locally authored records)
    external_source = Column(String(50), nullable=True)
    external_id = Column(String(100), nullable=True)

    title = Column(String(500), nullable=False, index=True)
    alternate_title = Column(String(500))
    synopsis = Column(Text)
    kind = Column(String(20), nullable=False, default='UNKNOWN')
    lifecycle_status = Column(String(20), nullable=False, default='UNKNOWN')
    episode_count = Column(Integer)
    episode_duration_minutes = Column(Integer)
    cover_image_url = Column(String(500))
    average_score = Column(Float)
    release_date = Column(Date)
    last_synced_at = Column(DateTime)

    genres = relationship(
        "Genre", secondary=catalog_genres, back_populates="records",
        order_by="Genre.name", lazy="selectin"
    )
    playback_links = relationship("PlaybackLink", back_populates="record", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint('external_source', 'external_id', name='uq_catalog_external'),
        Index('ix_catalog_records_score', 'average_score'),
    )


# =============================================================================
# PLAYBACK
# =============================================================================

class PlaybackLink(Base):
    """Resolved playback URL for (title, episode, backend)."""
    __tablename__ = 'playback_links'

    id = Column(UUIDType(), primary_key=True, default=lambda: str(uuid.uuid4()))
    catalog_id = Column(UUIDType(), ForeignKey('catalog_records.id', ondelete='CASCADE'), nullable=False)
    episode_number = Column(Integer, nullable=False)
    backend_name = Column(String(50), nullable=False)

    url = Column(String(1000), nullable=False)
    quality_label = Column(String(50))
    is_adaptive_stream = Column(Boolean, default=False, nullable=False)
    resolved_at = Column(DateTime, default=utcnow, nullable=False)

    record = relationship("CatalogRecord", back_populates="playback_links")

    __table_args__ = (
        UniqueConstraint('catalog_id', 'episode_number', 'backend_name', name='uq_playback_episode_backend'),
        Index('idx_playback_title_episode', 'catalog_id', 'episode_number'),
    )
