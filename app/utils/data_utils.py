"""
Data utilities
Helpers for reading request payloads and shaping JSON errors
"""
from flask import jsonify, request

from core.attendance.session_loop import ScanSessionError
from core.inference.engine import InferenceError
from core.vision.camera_manager import CameraError
from services.backend_client import BackendError
from services.enrollment_service import CaptureRejected, EnrollmentSubmissionError


def get_request_data():
    """Request payload from JSON or form."""
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def error_response(exc, status_code=None):
    """Map a domain exception to a ``{success: false}`` JSON response."""
    payload = {'success': False, 'error': str(exc)}
    if isinstance(exc, CaptureRejected):
        payload['reason'] = exc.reason
        code = 400
    elif isinstance(exc, EnrollmentSubmissionError):
        code = 400
    elif isinstance(exc, ScanSessionError):
        code = exc.status_code
    elif isinstance(exc, InferenceError):
        code = 503
    elif isinstance(exc, CameraError):
        code = 503
    elif isinstance(exc, BackendError):
        if exc.status_code is not None:
            payload['backend_status'] = exc.status_code
        code = 502
    elif isinstance(exc, (IndexError, KeyError)):
        code = 404
    elif isinstance(exc, ValueError):
        code = 400
    else:
        code = 500
    return jsonify(payload), status_code or code
