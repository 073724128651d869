"""
Scanner Service - owns the scan session running on this station
Only one teaching session is scanned at a time
"""
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional

from core.attendance.scheduler import RecognitionScheduler
from core.attendance.session_loop import ScanSessionError, SessionRecognitionLoop
from core.inference.matcher import FaceMatcher
from core.vision.camera_manager import CameraError
from core.vision.pipeline import encode_jpeg


@dataclass
class ScannerSettings:
    interval_seconds: float = 0.5
    confirm_seconds: float = 2.0
    match_threshold: float = 0.6
    distance_metric: str = 'euclidean'
    present_status: str = 'HADIR'
    device_info: str = 'face-attendance-scanner'
    jpeg_quality: int = 85
    recent_limit: int = 10

    @classmethod
    def from_config(cls, config) -> 'ScannerSettings':
        return cls(
            interval_seconds=config.DETECTION_INTERVAL_MS / 1000.0,
            confirm_seconds=config.AUTO_MARK_DELAY_MS / 1000.0,
            match_threshold=config.FACE_MATCH_THRESHOLD,
            distance_metric=config.FACE_DISTANCE_METRIC,
            present_status=config.ATTENDANCE_PRESENT_STATUS,
            device_info=config.SCANNER_DEVICE_INFO,
            jpeg_quality=config.EVIDENCE_JPEG_QUALITY,
            recent_limit=config.RECENT_RECOGNITIONS_LIMIT,
        )


class ScannerService:
    """Starts, stops and reports on the active SessionRecognitionLoop"""

    def __init__(
        self,
        *,
        engine,
        client,
        vision,
        broadcaster=None,
        settings: Optional[ScannerSettings] = None,
        scheduler_factory: Optional[Callable[[int], RecognitionScheduler]] = None,
        logger=None,
    ):
        self.engine = engine
        self.client = client
        self.vision = vision
        self.broadcaster = broadcaster
        self.settings = settings or ScannerSettings()
        self.scheduler_factory = scheduler_factory or (
            lambda session_id: RecognitionScheduler(name=f"session-{session_id}")
        )
        self.logger = logger
        self._loop: Optional[SessionRecognitionLoop] = None
        # Session whose roster is being fetched; the lock is not held meanwhile
        self._starting: Optional[int] = None
        self._cancel_start = False
        self._lock = threading.Lock()

    def _build_loop(self, session_id: int) -> SessionRecognitionLoop:
        settings = self.settings
        return SessionRecognitionLoop(
            session_id,
            engine=self.engine,
            frame_source=self.vision,
            client=self.client,
            matcher=FaceMatcher(settings.match_threshold, settings.distance_metric),
            scheduler=self.scheduler_factory(session_id),
            broadcaster=self.broadcaster.broadcast_event if self.broadcaster else None,
            interval_seconds=settings.interval_seconds,
            confirm_seconds=settings.confirm_seconds,
            present_status=settings.present_status,
            device_info=settings.device_info,
            jpeg_quality=settings.jpeg_quality,
            recent_limit=settings.recent_limit,
            logger=self.logger,
        )

    # ------------------------------------------------------------------
    # Session control
    # ------------------------------------------------------------------
    def start_session(self, session_id: int) -> Dict[str, Any]:
        with self._lock:
            current = self._loop
            if current is not None and current.active:
                if current.session_id == session_id:
                    raise ScanSessionError(f"Session {session_id} is already being scanned")
                raise ScanSessionError(f"Session {current.session_id} is being scanned; stop it first")
            if self._starting is not None:
                raise ScanSessionError(f"Session {self._starting} is starting")
            self._starting = session_id
            self._cancel_start = False

        try:
            loop = self._build_loop(session_id)
            loop.start()
        except Exception:
            with self._lock:
                self._starting = None
            raise

        with self._lock:
            self._starting = None
            self._loop = loop
            cancelled = self._cancel_start
        if cancelled:
            loop.stop()
            if self.logger:
                self.logger.info(f"[Scanner] Session {session_id} was stopped while starting")
            return loop.snapshot()

        if self.logger:
            self.logger.info(f"[Scanner] Session {session_id} scanning started")
        return loop.snapshot()

    def stop_session(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            if self._starting is not None:
                self._cancel_start = True
            loop = self._loop
        if loop is None:
            return None
        loop.stop()
        if self.logger:
            self.logger.info(f"[Scanner] Session {loop.session_id} scanning stopped")
        return loop.snapshot()

    def shutdown(self):
        self.stop_session()
        self.vision.stop()

    @property
    def active_loop(self) -> Optional[SessionRecognitionLoop]:
        with self._lock:
            loop = self._loop
        if loop is not None and loop.active:
            return loop
        return None

    def status(self) -> Dict[str, Any]:
        with self._lock:
            loop = self._loop
            starting = self._starting
        if loop is None:
            idle = {'running': False, 'session_id': None}
            if starting is not None:
                idle['starting'] = starting
            return idle
        return loop.snapshot()

    # ------------------------------------------------------------------
    # Video feed
    # ------------------------------------------------------------------
    def render_frame(self) -> bytes:
        """One JPEG of the live camera with the latest recognitions drawn on it"""
        frame = self.vision.next_frame().bgr
        loop = self.active_loop
        if loop is not None:
            frame = loop.annotate(frame)
        return encode_jpeg(frame, self.settings.jpeg_quality)

    def generate_frames(self, frame_delay: float = 0.05, max_frames: Optional[int] = None) -> Iterator[bytes]:
        sent = 0
        while max_frames is None or sent < max_frames:
            try:
                jpeg = self.render_frame()
            except CameraError as exc:
                if self.logger:
                    self.logger.warning(f"[Camera] Camera unavailable: {exc}")
                jpeg = self.vision.placeholder_frame("Kamera tidak tersedia")
                if jpeg is None:
                    break
                time.sleep(0.5)
            except ValueError as exc:
                if self.logger:
                    self.logger.error(f"[Camera] Could not encode frame: {exc}")
                time.sleep(0.2)
                continue
            yield (b'--frame\r\n'
                   b'Content-Type: image/jpeg\r\n\r\n' + jpeg + b'\r\n')
            sent += 1
            time.sleep(frame_delay)
