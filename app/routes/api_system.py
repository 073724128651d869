"""
API routes for system status
"""
from flask import Blueprint, jsonify
from app import globals as app_globals

system_api_bp = Blueprint('system_api', __name__)


@system_api_bp.route('/status')
def api_system_status():
    """Model readiness, camera state and the active scan session"""
    engine = app_globals.embedding_engine
    scanner = app_globals.scanner_service
    engine_info = engine.describe()
    return jsonify({
        'face_recognition_available': engine_info['ready'],
        'model': engine_info,
        'camera': app_globals.vision_state.status(),
        'scan': scanner.status(),
        'sse_clients': app_globals.event_broadcaster.get_client_count(),
        'enrolling_users': len(app_globals.enrollment_registry),
    })
