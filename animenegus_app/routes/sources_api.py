"""
Sources API Routes

  GET /api/sources/backends  - streaming backends and link resolvers with priorities
  GET /api/sources/providers - configured catalog providers
"""

from flask import Blueprint, jsonify

from ..rate_limit import limit_light
from . import current_services

sources_bp = Blueprint('sources_api', __name__, url_prefix='/api/sources')


@sources_bp.route('/backends', methods=['GET'])
@limit_light
def list_backends():
    """
    Returns:
        {
            "items": [{"name": "gogoanime", "priority": 1, "enabled": true}, ...],
            "total": 5,
            "has_more": false,
            "resolvers": [{"name": "kodik", "priority": 1, "enabled": true}, ...]
        }
    """
    services = current_services()
    entries = services.streaming_registry.entries()
    return jsonify({
        'items': [entry.to_dict() for entry in entries],
        'total': len(entries),
        'has_more': False,
        'resolvers': [entry.to_dict() for entry in services.resolver_registry.entries()],
    })


@sources_bp.route('/providers', methods=['GET'])
@limit_light
def list_providers():
    providers = current_services().aggregator.providers
    return jsonify({
        'providers': [
            {
                'id': provider.id,
                'name': provider.name,
                'base_url': provider.base_url,
                'rate_limit': provider.rate_limit,
            }
            for provider in providers
        ],
        'count': len(providers),
    })
