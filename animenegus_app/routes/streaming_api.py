"""
================================================================================
AnimeNegus - Streaming API Routes
================================================================================
Backend-ranked gateway calls. Each accepts an optional ?source= naming the
preferred backend; the others are tried in priority order when it fails.

ENDPOINTS:
  GET /api/streaming/search?q=&page=&source=
  GET /api/streaming/info/<anime_id>?source=
  GET /api/streaming/watch/<episode_id>?source=
  GET /api/streaming/recent?page=&source=
  GET /api/streaming/top-airing?page=&source=
  GET /api/streaming/popular?page=&source=
  GET /api/streaming/genres?source=
  GET /api/streaming/genre/<genre>?page=&source=
  GET /api/streaming/sources

AllSourcesExhausted is answered with 500 by the app error handler.
================================================================================
"""

from flask import Blueprint, jsonify, request

from ..extensions import run_async
from ..rate_limit import limit_medium
from . import current_services
from .validators import MAX_QUERY_LENGTH, sanitize_string, validate_pagination, validate_source_id

streaming_bp = Blueprint('streaming_api', __name__, url_prefix='/api/streaming')


def _common_args():
    """(page, source, error) from the query string."""
    page, _, error = validate_pagination(request.args.get('page'))
    if error:
        return page, None, error
    source = request.args.get('source') or None
    registry = current_services().streaming_registry
    error = validate_source_id(source, (e.name for e in registry.entries()))
    return page, source, error


@streaming_bp.route('/search', methods=['GET'])
@limit_medium
def search():
    page, source, error = _common_args()
    if error:
        return jsonify({'error': error}), 400
    query = sanitize_string(request.args.get('q', ''), MAX_QUERY_LENGTH)
    if not query:
        return jsonify({'error': 'Query parameter q is required'}), 400
    return jsonify(run_async(current_services().streaming.search(query, page, source)))


@streaming_bp.route('/info/<path:anime_id>', methods=['GET'])
@limit_medium
def info(anime_id: str):
    _, source, error = _common_args()
    if error:
        return jsonify({'error': error}), 400
    return jsonify(run_async(current_services().streaming.info(anime_id, source)))


@streaming_bp.route('/watch/<path:episode_id>', methods=['GET'])
@limit_medium
def watch(episode_id: str):
    _, source, error = _common_args()
    if error:
        return jsonify({'error': error}), 400
    sources = run_async(current_services().streaming.watch(episode_id, source))
    return jsonify({'sources': sources})


@streaming_bp.route('/recent', methods=['GET'])
@limit_medium
def recent():
    page, source, error = _common_args()
    if error:
        return jsonify({'error': error}), 400
    return jsonify(run_async(current_services().streaming.recent_episodes(page, source)))


@streaming_bp.route('/top-airing', methods=['GET'])
@limit_medium
def top_airing():
    page, source, error = _common_args()
    if error:
        return jsonify({'error': error}), 400
    return jsonify(run_async(current_services().streaming.top_airing(page, source)))


@streaming_bp.route('/popular', methods=['GET'])
@limit_medium
def popular():
    page, source, error = _common_args()
    if error:
        return jsonify({'error': error}), 400
    return jsonify(run_async(current_services().streaming.popular(page, source)))


@streaming_bp.route('/genres', methods=['GET'])
@limit_medium
def genres():
    _, source, error = _common_args()
    if error:
        return jsonify({'error': error}), 400
    return jsonify(run_async(current_services().streaming.genres(source)))


@streaming_bp.route('/genre/<genre>', methods=['GET'])
@limit_medium
def by_genre(genre: str):
    page, source, error = _common_args()
    if error:
        return jsonify({'error': error}), 400
    genre = sanitize_string(genre, 100)
    if not genre:
        return jsonify({'error': 'Missing genre'}), 400
    return jsonify(run_async(current_services().streaming.by_genre(genre, page, source)))


@streaming_bp.route('/sources', methods=['GET'])
@limit_medium
def available_sources():
    return jsonify({'sources': current_services().streaming.available_sources()})
