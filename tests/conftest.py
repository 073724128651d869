"""Shared fakes: virtual-clock scheduler, scripted engine, camera and backend."""
import itertools
from datetime import datetime

import numpy as np
import pytest

from core.attendance.models import BoundingBox, FaceStatus
from core.inference.engine import DetectedFace, ProviderNotReadyError
from core.vision.pipeline import VisionFrame, encode_jpeg
from services.backend_client import BackendError

DIMENSION = 4

EMBEDDINGS = {
    1: np.array([1.0, 0.0, 0.0, 0.0]),
    2: np.array([0.0, 1.0, 0.0, 0.0]),
    3: np.array([0.0, 0.0, 1.0, 0.0]),
    'stranger': np.array([0.0, 0.0, 0.0, 1.0]),
}


def make_face(key, x=10, y=10):
    return DetectedFace(
        box=BoundingBox(x=x, y=y, width=40, height=40),
        embedding=EMBEDDINGS[key].copy(),
        detection_confidence=0.99,
    )


class ManualScheduler:
    """Scheduler driven by ``advance_to``; ticks due at the same time run before timers."""

    def __init__(self, start=0.0):
        self.clock = start
        self.stopped = False
        self._interval = None
        self._timers = {}
        self._seq = itertools.count()

    def now(self):
        return self.clock

    def start_interval(self, interval_seconds, callback):
        if self._interval is not None:
            raise RuntimeError("Interval already running")
        self.stopped = False
        self._interval = {'every': interval_seconds, 'callback': callback, 'next': self.clock}

    def interval_running(self):
        return self._interval is not None

    def call_later(self, key, delay_seconds, callback):
        self._timers[key] = (self.clock + delay_seconds, next(self._seq), callback)

    def cancel(self, key):
        return self._timers.pop(key, None) is not None

    def cancel_all(self):
        self._timers.clear()

    def pending_keys(self):
        return list(self._timers)

    def stop(self, timeout=None):
        self.stopped = True
        self._interval = None
        self._timers.clear()

    def _next_due(self):
        candidates = []
        if self._interval is not None:
            candidates.append((self._interval['next'], 0, -1, None))
        for key, (due, seq, _) in self._timers.items():
            candidates.append((due, 1, seq, key))
        return min(candidates, key=lambda item: item[:3]) if candidates else None

    def advance_to(self, target):
        while True:
            item = self._next_due()
            if item is None or item[0] > target + 1e-9:
                break
            due, kind, _, key = item
            self.clock = due
            if kind == 0:
                self._interval['next'] += self._interval['every']
                self._interval['callback']()
            else:
                _, _, callback = self._timers.pop(key)
                callback()
        self.clock = max(self.clock, target)


class ScriptedEngine:
    """Returns the faces scripted for the scheduler's current time."""

    def __init__(self, script=None, clock=None, ready=True):
        self.script = script or (lambda now: [])
        self.clock = clock or (lambda: 0.0)
        self.ready = ready
        self.last_error = None if ready else 'model missing'
        self.calls = 0
        self.fail_at = set()

    def is_ready(self):
        return self.ready

    def describe(self):
        return {'provider': 'scripted', 'ready': self.ready, 'error': self.last_error}

    def detect_faces(self, frame):
        if not self.ready:
            raise ProviderNotReadyError(self.last_error)
        self.calls += 1
        now = self.clock()
        if now in self.fail_at:
            raise RuntimeError('detector crashed')
        return [make_face(key, x=10 + 60 * idx) for idx, key in enumerate(self.script(now))]


class FakeFrameSource:
    def __init__(self, height=120, width=160):
        self.shape = (height, width, 3)
        self.reads = 0
        self.stopped = False

    def next_frame(self):
        self.reads += 1
        return VisionFrame(
            frame_id=f'frame-{self.reads}',
            timestamp=datetime.now(),
            bgr=np.full(self.shape, 80, dtype=np.uint8),
        )

    def status(self):
        return {'enabled': True, 'opened': True, 'source': 'fake'}

    def stop(self):
        self.stopped = True

    def placeholder_frame(self, message='Camera disabled'):
        return encode_jpeg(np.zeros((10, 10, 3), dtype=np.uint8))


class FakeBackendClient:
    """In-memory practicum backend."""

    def __init__(self, roster=None, descriptors=None):
        self.roster = roster if roster is not None else {
            'session': {'id': 7, 'topic': 'Praktikum Jaringan'},
            'class': {'name': 'TI-3A'},
            'roster': [
                {'student_id': 1, 'student_name': 'Andi', 'attendance': None},
                {'student_id': 2, 'student_name': 'Budi', 'attendance': None},
                {'student_id': 3, 'student_name': 'Citra', 'attendance': {'status': 'HADIR'}},
                {'student_id': 4, 'student_name': 'Dewi', 'attendance': None},
            ],
        }
        self.descriptors = descriptors if descriptors is not None else [
            {'userId': 1, 'name': 'Andi', 'nim': '2101', 'descriptors': [EMBEDDINGS[1].tolist()]},
            {'userId': 2, 'name': 'Budi', 'nim': '2102', 'descriptors': [EMBEDDINGS[2].tolist()]},
            {'userId': 3, 'name': 'Citra', 'nim': '2103', 'descriptors': [EMBEDDINGS[3].tolist()]},
        ]
        self.marks = []
        self.uploaded_images = []
        self.saved_descriptors = []
        self.deleted = 0
        self.fail_marks = 0
        self.fail_roster = False
        self.fail_upload = False
        self.token = None
        self.calls = []
        self.face_status = FaceStatus(registered=False)

    def with_token(self, token):
        self.token = token
        return self

    def get_session_roster(self, session_id):
        self.calls.append(('roster', session_id))
        if self.fail_roster:
            raise BackendError('Session not found', status_code=404)
        return self.roster

    def get_session_face_descriptors(self, session_id):
        self.calls.append(('descriptors', session_id))
        return self.descriptors

    def mark_face_attendance(self, session_id, student_id, confidence, image, device_info):
        self.calls.append(('mark', student_id))
        if self.fail_marks:
            self.fail_marks -= 1
            raise BackendError('Gateway timeout', status_code=504)
        self.marks.append({
            'session_id': session_id,
            'student_id': student_id,
            'confidence': confidence,
            'image': image,
            'device_info': device_info,
        })
        return {'status': 'HADIR'}

    def upload_face_images(self, images):
        self.calls.append(('upload', len(images)))
        if self.fail_upload:
            raise BackendError('Upload failed', status_code=500)
        self.uploaded_images.extend(images)
        return {'count': len(images)}

    def save_face_descriptors(self, descriptors):
        self.calls.append(('save', len(descriptors)))
        self.saved_descriptors.extend(descriptors)
        self.face_status = FaceStatus(registered=True, sample_count=len(descriptors))
        return {'count': len(descriptors)}

    def get_face_status(self):
        self.calls.append(('status', None))
        return self.face_status

    def delete_face_data(self):
        self.calls.append(('delete', None))
        self.deleted += 1
        self.face_status = FaceStatus(registered=False)
        return None


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def backend():
    return FakeBackendClient()


@pytest.fixture
def frame_source():
    return FakeFrameSource()
