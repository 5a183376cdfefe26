"""
================================================================================
AnimeNegus - Catalog API Routes
================================================================================
Flask blueprint for the aggregated catalog.

ENDPOINTS:
  GET /api/catalog/search?q=&page=&limit=&genres=&year=&season=&status=
  GET /api/catalog/popular?page=&limit=
  GET /api/catalog/ongoing?page=&limit=
  GET /api/catalog/upcoming?page=&limit=
  GET /api/catalog/seasonal/<year>/<season>?page=&limit=
  GET /api/catalog/<id>            - internal id or provider:external_id

Listing responses use the {items, total, has_more} envelope.
================================================================================
"""

from flask import Blueprint, jsonify, request
import logging

from ..extensions import run_async
from ..rate_limit import limit_heavy, limit_medium
from . import current_services
from .validators import (
    MAX_QUERY_LENGTH, parse_filters, parse_season, sanitize_string, validate_pagination
)

logger = logging.getLogger(__name__)

catalog_bp = Blueprint('catalog_api', __name__, url_prefix='/api/catalog')


def _pagination():
    return validate_pagination(request.args.get('page'), request.args.get('limit'))


@catalog_bp.route('/search', methods=['GET'])
@limit_heavy
def search_catalog():
    """
    Search the catalog. Without q, returns the store ordered by score.

    Returns:
        {"items": [...], "total": 42, "has_more": true}
    """
    page, limit, error = _pagination()
    if error:
        return jsonify({'error': error}), 400

    query = sanitize_string(request.args.get('q', ''), MAX_QUERY_LENGTH)
    filters, error = parse_filters(request.args)
    if error:
        return jsonify({'error': error}), 400

    aggregator = current_services().aggregator
    result = run_async(aggregator.search(query, page, limit, filters))
    return jsonify(result.to_dict())


@catalog_bp.route('/popular', methods=['GET'])
@limit_medium
def popular():
    page, limit, error = _pagination()
    if error:
        return jsonify({'error': error}), 400
    result = run_async(current_services().aggregator.list_popular(page, limit))
    return jsonify(result.to_dict())


@catalog_bp.route('/ongoing', methods=['GET'])
@limit_medium
def ongoing():
    page, limit, error = _pagination()
    if error:
        return jsonify({'error': error}), 400
    result = run_async(current_services().aggregator.list_ongoing(page, limit))
    return jsonify(result.to_dict())


@catalog_bp.route('/upcoming', methods=['GET'])
@limit_medium
def upcoming():
    page, limit, error = _pagination()
    if error:
        return jsonify({'error': error}), 400
    result = run_async(current_services().aggregator.list_upcoming(page, limit))
    return jsonify(result.to_dict())


@catalog_bp.route('/seasonal/<int:year>/<season>', methods=['GET'])
@limit_medium
def seasonal(year: int, season: str):
    page, limit, error = _pagination()
    if error:
        return jsonify({'error': error}), 400
    parsed, error = parse_season(season)
    if error:
        return jsonify({'error': error}), 400

    result = run_async(current_services().aggregator.list_seasonal(year, parsed, page, limit))
    return jsonify(result.to_dict())


@catalog_bp.route('/<path:record_id>', methods=['GET'])
@limit_medium
def get_record(record_id: str):
    """
    One catalog record. Stale records are refreshed from their provider.

    Raises NotFound (404) when neither the store nor a provider has it.
    """
    record_id = sanitize_string(record_id, 150)
    if not record_id:
        return jsonify({'error': 'Missing id'}), 400
    item = run_async(current_services().aggregator.get_by_id(record_id))
    return jsonify(item.to_dict())
