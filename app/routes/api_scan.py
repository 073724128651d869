"""
API routes for session scanning
Start/stop face recognition for a teaching session and stream the camera
"""
from flask import Blueprint, Response, current_app, jsonify, stream_with_context

from app import globals as app_globals
from app.utils import error_response
from core.attendance.session_loop import ScanSessionError
from core.inference.engine import InferenceError
from services.backend_client import BackendError

scan_api_bp = Blueprint('scan_api', __name__, url_prefix='/api/scan')


@scan_api_bp.route('/sessions/<int:session_id>/start', methods=['POST'])
def api_start_scan(session_id):
    """Load the session roster and start recognizing faces"""
    try:
        snapshot = app_globals.scanner_service.start_session(session_id)
    except (ScanSessionError, InferenceError, BackendError, ValueError) as exc:
        current_app.logger.warning(f"[Scan] Could not start session {session_id}: {exc}")
        return error_response(exc)

    return jsonify({
        'success': True,
        'message': f'Pemindaian sesi {session_id} dimulai',
        'data': snapshot,
    })


@scan_api_bp.route('/stop', methods=['POST'])
def api_stop_scan():
    snapshot = app_globals.scanner_service.stop_session()
    if snapshot is None:
        return jsonify({'success': True, 'message': 'Tidak ada sesi yang sedang dipindai', 'data': None})
    return jsonify({'success': True, 'message': 'Pemindaian dihentikan', 'data': snapshot})


@scan_api_bp.route('/status')
def api_scan_status():
    """Attendance stats, current recognition and recent check-ins"""
    return jsonify({'success': True, 'data': app_globals.scanner_service.status()})


@scan_api_bp.route('/video_feed')
def api_video_feed():
    scanner = app_globals.scanner_service
    return Response(
        stream_with_context(scanner.generate_frames()),
        mimetype='multipart/x-mixed-replace; boundary=frame'
    )
