# Load environment variables FIRST before any other imports
from dotenv import load_dotenv
load_dotenv()

import os
import time
import uuid
from flask import Flask, jsonify, request, g


def create_app(settings=None, services=None):
    """
    Create and configure an instance of the Flask application.

    Args:
        settings: animenegus_app.config.Settings (defaults to the environment)
        services: Prebuilt Services graph (tests pass one backed by fakes)
    """
    app = Flask(__name__, instance_relative_config=True)

    app.json.sort_keys = False
    app.config['DISABLE_RATE_LIMITING'] = (
        os.environ.get('DISABLE_RATE_LIMITING', 'false').lower() in ('true', '1', 'yes')
    )

    # Ensure instance folder exists
    try:
        os.makedirs(app.instance_path)
    except OSError:
        pass

    # =============================================================================
    # LOGGING & REQUEST IDS
    # =============================================================================
    from .log import log, debug_log_event
    from .errors import AllSourcesExhausted, NotFound
    from .database import check_database_connection

    @app.before_request
    def assign_request_id():
        g.request_id = uuid.uuid4().hex[:12]
        g.request_start = time.time()

    @app.after_request
    def debug_request_log(response):
        duration_ms = None
        start_time = getattr(g, 'request_start', None)
        if start_time:
            duration_ms = int((time.time() - start_time) * 1000)
        debug_log_event({
            'event': 'request',
            'request_id': getattr(g, 'request_id', None),
            'method': request.method,
            'path': request.path,
            'query': request.query_string.decode('utf-8', errors='ignore'),
            'status': response.status_code,
            'duration_ms': duration_ms,
            'remote_addr': request.remote_addr,
        })
        return response

    @app.teardown_request
    def debug_exception_log(error=None):
        if not error:
            return
        debug_log_event({
            'event': 'exception',
            'request_id': getattr(g, 'request_id', None),
            'path': request.path if request else None,
            'error_type': error.__class__.__name__,
            'error': str(error)
        })

    # =============================================================================
    # ERROR HANDLERS
    # =============================================================================

    @app.errorhandler(NotFound)
    def handle_not_found(error: NotFound):
        return jsonify({'error': str(error), 'id': error.record_id}), 404

    @app.errorhandler(AllSourcesExhausted)
    def handle_sources_exhausted(error: AllSourcesExhausted):
        log(f"All sources exhausted for path [{error.path}] (tried: {', '.join(error.tried) or 'none'})")
        return jsonify({'error': str(error), 'path': error.path, 'tried': error.tried}), 500

    @app.errorhandler(404)
    def handle_unknown_route(error):
        return jsonify({'error': 'Not found'}), 404

    # =============================================================================
    # RATE LIMITING
    # =============================================================================
    from .rate_limit import init_rate_limiting, limit_light
    init_rate_limiting(app)

    # =============================================================================
    # SERVICES
    # =============================================================================
    from .routes import EXTENSION_KEY

    if services is None:
        from .extensions import build_services
        services = build_services(settings)
    app.extensions[EXTENSION_KEY] = services

    # =============================================================================
    # BLUEPRINTS & ROUTES
    # =============================================================================
    from .routes.catalog_api import catalog_bp
    from .routes.playback_api import playback_bp
    from .routes.streaming_api import streaming_bp
    from .routes.sources_api import sources_bp

    app.register_blueprint(catalog_bp)
    app.register_blueprint(playback_bp)
    app.register_blueprint(streaming_bp)
    app.register_blueprint(sources_bp)

    @app.route('/api/health')
    @limit_light
    def health():
        return jsonify({
            'status': 'ok',
            'database': check_database_connection(services.store.engine),
            'providers': [p.id for p in services.aggregator.providers],
            'backends': services.streaming_registry.ordered_names(),
        })

    app.config['HOST'] = os.environ.get('FLASK_HOST', '127.0.0.1')
    app.config['PORT'] = int(os.environ.get('FLASK_PORT', '5000'))
    app.config['DEBUG'] = os.environ.get('FLASK_DEBUG', 'false').lower() in ('true', '1', 'yes')

    return app

# App instance should be created by the caller (run.py or WSGI entrypoint)
