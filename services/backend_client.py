"""
REST client for the practicum backend.

Every response uses the ``{success, message, data}`` envelope; ``data`` is
returned and anything else is raised as BackendError.
"""

import time
from typing import Any, Dict, List, Optional

import requests

from core.attendance.models import FaceStatus
from logging_config import api_logger


class BackendError(RuntimeError):
    """Raised when the backend rejects a request or cannot be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class PracticumApiClient:
    """Thin wrapper over the endpoints the face attendance core needs."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or '').rstrip('/')
        self.timeout = timeout
        self._token = token or None
        self._session = session or requests.Session()

    def set_token(self, token: Optional[str]):
        self._token = token or None

    def with_token(self, token: Optional[str]) -> 'PracticumApiClient':
        """Client sharing this connection pool but acting as another user."""
        return PracticumApiClient(self.base_url, token=token, timeout=self.timeout, session=self._session)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    def request(self, method: str, endpoint: str, json_body: Optional[Dict[str, Any]] = None) -> Any:
        headers = {'Content-Type': 'application/json', 'Accept': 'application/json'}
        if self._token:
            headers['Authorization'] = f'Bearer {self._token}'

        url = f'{self.base_url}{endpoint}'
        api_logger.log_request(method, endpoint)
        started = time.monotonic()
        try:
            response = self._session.request(method, url, json=json_body, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            api_logger.log_error(endpoint, str(exc))
            raise BackendError(f'Backend unreachable: {exc}') from exc

        api_logger.log_response(endpoint, response.status_code, time.monotonic() - started)
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not response.ok:
            message = (payload or {}).get('message') if isinstance(payload, dict) else None
            message = message or f'Request failed ({response.status_code})'
            api_logger.log_error(endpoint, message, response.status_code)
            raise BackendError(message, status_code=response.status_code, payload=payload)
        if not isinstance(payload, dict):
            raise BackendError('Malformed backend response', status_code=response.status_code)
        if payload.get('success') is False:
            message = payload.get('message') or 'Request failed'
            api_logger.log_error(endpoint, message, response.status_code)
            raise BackendError(message, status_code=response.status_code, payload=payload)
        return payload.get('data')

    # ------------------------------------------------------------------
    # Teaching / scan session
    # ------------------------------------------------------------------
    def get_session_roster(self, session_id: int) -> Dict[str, Any]:
        return self.request('GET', f'/api/teaching/sessions/{session_id}/roster') or {}

    def get_session_face_descriptors(self, session_id: int) -> List[Dict[str, Any]]:
        data = self.request('GET', f'/api/teaching/sessions/{session_id}/face-descriptors') or {}
        if isinstance(data, dict):
            return data.get('faceDescriptors') or []
        return list(data)

    def mark_face_attendance(
        self,
        session_id: int,
        student_id,
        confidence: float,
        image: Optional[str],
        device_info: str,
    ) -> Dict[str, Any]:
        return self.request('POST', f'/api/teaching/sessions/{session_id}/face-attendance', {
            'student_id': student_id,
            'confidence': round(float(confidence), 4),
            'image': image,
            'device_info': device_info,
        }) or {}

    # ------------------------------------------------------------------
    # Enrollment (acts on the token's owner)
    # ------------------------------------------------------------------
    def upload_face_images(self, images: List[str]) -> Any:
        return self.request('POST', '/api/student/face/images', {'images': images})

    def save_face_descriptors(self, descriptors: List[List[float]]) -> Any:
        return self.request('POST', '/api/student/face/descriptors', {'descriptors': descriptors})

    def get_face_status(self) -> FaceStatus:
        return FaceStatus.from_payload(self.request('GET', '/api/student/face/status'))

    def delete_face_data(self) -> Any:
        return self.request('DELETE', '/api/student/face')
