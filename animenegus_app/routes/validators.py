"""Lightweight request validation helpers."""

import re
from typing import Any, Iterable, List, Optional, Tuple

from ..metadata.models import LifecycleStatus, SearchFilters, Season

# Safe characters for backend names (alphanumeric, dash, underscore)
SOURCE_ID_PATTERN = re.compile(r'^[a-zA-Z0-9_-]+$')

# Pagination limits
MAX_PAGE = 1000
MAX_LIMIT = 100
DEFAULT_LIMIT = 20

MAX_QUERY_LENGTH = 200


def validate_pagination(page: Any, limit: Any = None) -> Tuple[int, int, Optional[str]]:
    """
    Validate and sanitize pagination parameters.

    Args:
        page: Page number (1-indexed)
        limit: Items per page (optional)

    Returns:
        Tuple of (sanitized_page, sanitized_limit, error_or_none)
    """
    try:
        page_int = int(page) if page is not None else 1
    except (ValueError, TypeError):
        return 1, DEFAULT_LIMIT, "Invalid page number"

    if page_int < 1:
        page_int = 1
    elif page_int > MAX_PAGE:
        return 1, DEFAULT_LIMIT, f"Page number exceeds maximum ({MAX_PAGE})"

    try:
        limit_int = int(limit) if limit is not None else DEFAULT_LIMIT
    except (ValueError, TypeError):
        limit_int = DEFAULT_LIMIT

    if limit_int < 1:
        limit_int = DEFAULT_LIMIT
    elif limit_int > MAX_LIMIT:
        limit_int = MAX_LIMIT  # Cap at max instead of error

    return page_int, limit_int, None


def validate_source_id(source_id: Optional[str], allowed: Iterable[str]) -> Optional[str]:
    """
    Validate an optional backend name.

    Returns:
        None if valid (or absent), or error message string.
    """
    if not source_id:
        return None
    if not SOURCE_ID_PATTERN.match(source_id):
        return "Invalid source ID format"
    if source_id not in set(allowed):
        return f"Unknown source: {source_id}"
    return None


def sanitize_string(value: Any, max_length: int = 500) -> str:
    """Strip control characters and limit length."""
    if not isinstance(value, str):
        return ""
    result = ''.join(c for c in value if c >= ' ')
    return result.strip()[:max_length]


def parse_season(value: str) -> Tuple[Optional[Season], Optional[str]]:
    try:
        return Season.parse(value), None
    except ValueError:
        return None, f"Invalid season '{value}' (expected winter, spring, summer or fall)"


def parse_filters(args) -> Tuple[SearchFilters, Optional[str]]:
    """
    Build SearchFilters from query args.

    Accepts genres (comma-separated), year, season and status.
    """
    genres: List[str] = [
        sanitize_string(g, 100) for g in (args.get('genres') or '').split(',')
        if sanitize_string(g, 100)
    ]

    year = None
    if args.get('year'):
        try:
            year = int(args['year'])
        except ValueError:
            return SearchFilters(), "Invalid year"
        if not 1900 <= year <= 2100:
            return SearchFilters(), "Year out of range"

    season = None
    if args.get('season'):
        season, error = parse_season(args['season'])
        if error:
            return SearchFilters(), error

    status = None
    if args.get('status'):
        try:
            status = LifecycleStatus(args['status'].strip().upper())
        except ValueError:
            return SearchFilters(), f"Invalid status '{args['status']}'"

    return SearchFilters(genres=genres, year=year, season=season, status=status), None
