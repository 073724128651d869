"""
Authentication middleware
The scanner does not own user accounts: enrollment requests carry the
student's backend bearer token, which is forwarded as-is.
"""
from functools import wraps

from flask import g, jsonify, request


def extract_bearer_token():
    """Bearer token from the Authorization header, or None."""
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def extract_user_id():
    """Enrolling user id from the X-User-Id header."""
    raw = (request.headers.get('X-User-Id') or '').strip()
    if not raw:
        return None
    return int(raw) if raw.isdigit() else raw


def student_token_required(view):
    """Reject requests without a bearer token and user id; expose them on ``g``."""

    @wraps(view)
    def wrapped(*args, **kwargs):
        token = extract_bearer_token()
        if not token:
            return jsonify({'success': False, 'error': 'Token tidak ditemukan'}), 401
        user_id = extract_user_id()
        if user_id is None:
            return jsonify({'success': False, 'error': 'Header X-User-Id wajib diisi'}), 400
        g.bearer_token = token
        g.user_id = user_id
        return view(*args, **kwargs)

    return wrapped
