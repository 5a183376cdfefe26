"""HTTP blueprints. Routes reach the service graph through current_services()."""

from flask import current_app

EXTENSION_KEY = 'animenegus'


def current_services():
    """Services instance registered on the running app by create_app()."""
    return current_app.extensions[EXTENSION_KEY]
