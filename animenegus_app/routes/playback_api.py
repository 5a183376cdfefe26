"""
Playback API Routes

  GET  /api/playback/<title_id>/<episode>          - stored links, resolved on first request
  POST /api/playback/<title_id>/<episode>/refresh  - drop stored links and resolve again
"""

from flask import Blueprint, jsonify

from ..extensions import run_async
from ..rate_limit import limit_heavy, limit_medium
from . import current_services

playback_bp = Blueprint('playback_api', __name__, url_prefix='/api/playback')

MAX_EPISODE = 10000


def _links_response(title_id: str, episode: int, links):
    return jsonify({
        'title_id': title_id,
        'episode': episode,
        'links': [link.to_dict() for link in links],
        'count': len(links),
    })


@playback_bp.route('/<title_id>/<int:episode>', methods=['GET'])
@limit_medium
def resolve_episode(title_id: str, episode: int):
    if not 1 <= episode <= MAX_EPISODE:
        return jsonify({'error': 'Invalid episode number'}), 400
    links = run_async(current_services().playback.resolve_episode(title_id, episode))
    return _links_response(title_id, episode, links)


@playback_bp.route('/<title_id>/<int:episode>/refresh', methods=['POST'])
@limit_heavy
def refresh_episode(title_id: str, episode: int):
    if not 1 <= episode <= MAX_EPISODE:
        return jsonify({'error': 'Invalid episode number'}), 400
    links = run_async(current_services().playback.refresh_episode(title_id, episode))
    return _links_response(title_id, episode, links)
