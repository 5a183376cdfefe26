"""
Rate limiting configuration for AnimeNegus API.

Uses Flask-Limiter to protect API endpoints from abuse.

Rate Limit Tiers:
- Heavy: /api/catalog/search, playback refresh (provider fan-out, resolver calls)
- Medium: catalog listings, playback lookups, streaming gateway calls
- Light: /api/sources, /api/health (in-memory reads)
"""

import os
from flask import request, jsonify
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Initialize limiter (will be attached to app in create_app)
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["2000 per day", "500 per hour"],
    storage_uri=os.environ.get("RATELIMIT_STORAGE_URI", "memory://"),
    strategy="fixed-window",
    headers_enabled=True,  # Add X-RateLimit-* headers to responses
)


# ==============================================================================
# RATE LIMIT TIERS
# ==============================================================================

# Heavy operations - every provider or resolver is contacted
HEAVY_LIMIT = "30 per minute"

# Medium operations - store reads with possible upstream calls
MEDIUM_LIMIT = "90 per minute"

# Light operations - fast reads
LIGHT_LIMIT = "240 per minute"


def limit_heavy(f):
    """Apply heavy rate limit to fan-out operations like search."""
    return limiter.limit(HEAVY_LIMIT)(f)


def limit_medium(f):
    return limiter.limit(MEDIUM_LIMIT)(f)


def limit_light(f):
    return limiter.limit(LIGHT_LIMIT)(f)


# ==============================================================================
# ERROR HANDLER
# ==============================================================================

def rate_limit_exceeded_handler(e):
    """JSON 429 with a Retry-After header."""
    retry_after = getattr(e, 'retry_after', None) or 60
    response = jsonify({
        "error": "Rate limit exceeded",
        "message": str(e.description),
        "path": request.path,
        "retry_after": retry_after
    })
    response.status_code = 429
    response.headers['Retry-After'] = str(retry_after)
    return response


# ==============================================================================
# INITIALIZATION
# ==============================================================================

def init_rate_limiting(app):
    """
    Initialize rate limiting for a Flask app.

    Call this in create_app() after app configuration.
    """
    limiter.init_app(app)

    app.errorhandler(429)(rate_limit_exceeded_handler)

    if app.config.get('DISABLE_RATE_LIMITING'):
        limiter.enabled = False

    return limiter
