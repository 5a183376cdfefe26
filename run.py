"""Development server entrypoint: python run.py"""
from animenegus_app import create_app

app = create_app()

if __name__ == '__main__':
    # HOST / PORT / DEBUG come from FLASK_HOST, FLASK_PORT and FLASK_DEBUG
    app.run(
        host=app.config.get('HOST', '127.0.0.1'),
        port=app.config.get('PORT', 5000),
        debug=app.config.get('DEBUG', False),
        # The reloader would fork a second background event loop
        use_reloader=False,
    )
