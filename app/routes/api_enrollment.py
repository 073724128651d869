"""
API routes for face enrollment
A student captures 5-10 photos of their face at the scanner, then submits
them to the backend under their own bearer token
"""
from flask import Blueprint, current_app, g, jsonify, request

from app import globals as app_globals
from app.middleware.auth import student_token_required
from app.utils import error_response, get_request_data
from core.inference.engine import InferenceError
from core.vision.camera_manager import CameraError
from core.vision.pipeline import decode_image
from services.backend_client import BackendError
from services.enrollment_service import CaptureRejected, EnrollmentSubmissionError

enrollment_api_bp = Blueprint('enrollment_api', __name__, url_prefix='/api/enrollment')


def _service():
    return app_globals.enrollment_registry.get(g.user_id)


def _student_client():
    return app_globals.api_client.with_token(g.bearer_token)


def _request_frame():
    """Frame from the posted ``image`` (base64 / data URL / file) or the camera."""
    upload = request.files.get('image') if request.files else None
    if upload is not None and upload.filename:
        return decode_image(upload.read())
    image = get_request_data().get('image')
    if image:
        return decode_image(image)
    return app_globals.vision_state.next_frame().bgr


@enrollment_api_bp.route('/preview', methods=['POST'])
@student_token_required
def api_enrollment_preview():
    """Does the current frame hold exactly one face"""
    try:
        frame = _request_frame()
        result = _service().preview(frame)
    except ValueError as exc:
        return error_response(CaptureRejected(CaptureRejected.INVALID_IMAGE, str(exc)))
    except (InferenceError, CameraError) as exc:
        return error_response(exc)
    return jsonify({'success': True, 'data': result})


@enrollment_api_bp.route('/capture', methods=['POST'])
@student_token_required
def api_enrollment_capture():
    service = _service()
    try:
        upload = request.files.get('image') if request.files else None
        image = get_request_data().get('image')
        if upload is not None and upload.filename:
            sample = service.capture_from_image(upload.read())
        elif image:
            sample = service.capture_from_image(image)
        else:
            sample = service.capture_sample(app_globals.vision_state.next_frame().bgr)
    except CaptureRejected as exc:
        current_app.logger.info(f"[Enrollment] Capture rejected for {g.user_id}: {exc.reason}")
        return error_response(exc)
    except (InferenceError, CameraError) as exc:
        return error_response(exc)

    return jsonify({
        'success': True,
        'message': f'Foto {service.sample_count}/{service.max_samples} tersimpan',
        'data': {
            'captured_at': sample.captured_at.isoformat(),
            **service.describe(),
        },
    })


@enrollment_api_bp.route('/samples', methods=['GET'])
@student_token_required
def api_enrollment_samples():
    return jsonify({'success': True, 'data': _service().describe()})


@enrollment_api_bp.route('/samples/<int:index>', methods=['DELETE'])
@student_token_required
def api_enrollment_remove_sample(index):
    service = _service()
    try:
        service.remove_sample(index)
    except IndexError as exc:
        return error_response(exc)
    return jsonify({'success': True, 'data': service.describe()})


@enrollment_api_bp.route('/submit', methods=['POST'])
@student_token_required
def api_enrollment_submit():
    """Upload photos, then descriptors"""
    service = _service()
    try:
        profile = service.submit(_student_client())
    except (EnrollmentSubmissionError, InferenceError, BackendError) as exc:
        current_app.logger.warning(f"[Enrollment] Submission failed for {g.user_id}: {exc}")
        return error_response(exc)

    app_globals.enrollment_registry.discard(g.user_id)
    return jsonify({
        'success': True,
        'message': 'Data wajah berhasil didaftarkan',
        'data': {
            'user_id': profile.user_id,
            'registered': profile.registered,
            'sample_count': profile.sample_count,
            'trained_at': profile.trained_at.isoformat(),
        },
    })


@enrollment_api_bp.route('/status', methods=['GET'])
@student_token_required
def api_enrollment_status():
    try:
        status = _service().get_status(_student_client())
    except BackendError as exc:
        return error_response(exc)
    return jsonify({'success': True, 'data': status.to_dict()})


@enrollment_api_bp.route('', methods=['DELETE'])
@student_token_required
def api_enrollment_delete():
    """Delete face data so the student can register again"""
    try:
        _service().delete_face_data(_student_client())
    except BackendError as exc:
        return error_response(exc)
    app_globals.enrollment_registry.discard(g.user_id)
    return jsonify({'success': True, 'message': 'Data wajah dihapus'})
