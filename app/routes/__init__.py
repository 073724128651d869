"""
Routes package
Registers every blueprint
"""
from .api_enrollment import enrollment_api_bp
from .api_events import events_api_bp
from .api_scan import scan_api_bp
from .api_system import system_api_bp


def register_blueprints(app):
    """Register all blueprints on the Flask app."""
    app.register_blueprint(system_api_bp)
    app.register_blueprint(scan_api_bp)
    app.register_blueprint(events_api_bp)
    app.register_blueprint(enrollment_api_bp)

    app.logger.info("Registered all blueprints")
