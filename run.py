"""
Application entry point
Starts the scanner station's Flask server
"""
import atexit
import os
import sys
import io

# UTF-8 console output
sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding='utf-8')
sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding='utf-8')

from app import create_app
from app import globals as app_globals

app = create_app()


@atexit.register
def _release_camera():
    if app_globals.scanner_service is not None:
        app_globals.scanner_service.shutdown()


if __name__ == '__main__':
    host = os.getenv('FLASK_HOST', '0.0.0.0')
    port = int(os.getenv('FLASK_PORT', 5000))
    debug = os.getenv('FLASK_DEBUG', 'False').lower() in ('true', '1', 'yes')

    app.logger.info(f"Starting scanner on {host}:{port}")
    app.logger.info(f"Debug mode: {debug}")

    # The reloader would start a second camera and model
    app.run(
        host=host,
        port=port,
        debug=debug,
        threaded=True,
        use_reloader=False,
    )
