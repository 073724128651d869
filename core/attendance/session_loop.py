"""
Session recognition loop.

Every detection tick grabs a frame, embeds the faces in it, matches them
against the session roster and feeds the matched labels into the
AttendanceStateManager. A label recognized without interruption for the
confirmation delay is written to the backend once, with the latest frame
attached as evidence.
"""
from __future__ import annotations

import logging
import threading
from collections import Counter, deque
from datetime import datetime
from functools import partial
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Tuple

import numpy as np

from core.inference.engine import DetectedFace, ProviderNotReadyError
from core.inference.matcher import NO_MATCH, FaceMatcher, LabeledDescriptorSet, MatchResult
from core.vision.overlay import draw_recognitions
from core.vision.pipeline import frame_to_data_url
from logging_config import face_recognition_logger
from services.backend_client import BackendError

from .models import (
    STATUS_ALREADY_MARKED,
    STATUS_CONFIRMED,
    STATUS_MARKING,
    STATUS_UNKNOWN,
    STATUS_WRITE_FAILED,
    AttendanceMark,
    Label,
    RecognitionEvent,
    RosterEntry,
)
from .scheduler import RecognitionScheduler
from .state_manager import AttendanceStateManager

EventSink = Callable[[Dict[str, Any]], None]


class ScanSessionError(RuntimeError):
    """Raised when a scan session cannot be started."""

    def __init__(self, message: str, status_code: int = 409):
        super().__init__(message)
        self.status_code = status_code


def normalize_label(value: Any) -> Optional[Label]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    return text or None


def _drop_mismatched_dimensions(students: Dict[Label, Dict[str, Any]], logger: logging.Logger) -> None:
    sizes = Counter(
        descriptor.size for record in students.values() for descriptor in record["descriptors"]
    )
    if len(sizes) < 2:
        return
    expected = sizes.most_common(1)[0][0]
    for label, record in students.items():
        kept = [descriptor for descriptor in record["descriptors"] if descriptor.size == expected]
        dropped = len(record["descriptors"]) - len(kept)
        if dropped:
            logger.warning(
                "[Scan] Ignoring %d face descriptor(s) of student %s: expected %d values",
                dropped,
                label,
                expected,
            )
            record["descriptors"] = kept


def build_roster_entries(
    roster_data: Optional[Dict[str, Any]],
    descriptor_items: Iterable[Dict[str, Any]],
    present_status: str = "HADIR",
    logger: Optional[logging.Logger] = None,
) -> List[RosterEntry]:
    """Join the session roster with the enrolled face descriptors.

    Students listed only in the descriptor payload are still included so they
    can be recognized; students without descriptors stay in the roster for
    the attendance totals. Descriptors whose length differs from the most
    common one are dropped with a warning.
    """
    students: Dict[Label, Dict[str, Any]] = {}
    order: List[Label] = []

    for row in (roster_data or {}).get("roster") or []:
        label = normalize_label(row.get("student_id") or row.get("id"))
        if label is None:
            continue
        attendance = row.get("attendance") or {}
        students[label] = {
            "name": row.get("student_name") or row.get("name") or str(label),
            "identifier": row.get("nim") or row.get("student_email"),
            "present": attendance.get("status") == present_status,
            "descriptors": [],
        }
        order.append(label)

    for item in descriptor_items or []:
        label = normalize_label(item.get("userId") or item.get("user_id"))
        if label is None:
            continue
        record = students.get(label)
        if record is None:
            record = {
                "name": item.get("name") or str(label),
                "identifier": item.get("nim") or item.get("identifier"),
                "present": False,
                "descriptors": [],
            }
            students[label] = record
            order.append(label)
        elif not record.get("identifier"):
            record["identifier"] = item.get("nim") or item.get("identifier")
        for descriptor in item.get("descriptors") or []:
            if descriptor:
                record["descriptors"].append(np.asarray(descriptor, dtype="float64"))

    _drop_mismatched_dimensions(students, logger or logging.getLogger(__name__))

    return [
        RosterEntry(
            user_id=label,
            name=students[label]["name"],
            identifier=students[label]["identifier"],
            descriptors=tuple(students[label]["descriptors"]),
            already_present=students[label]["present"],
        )
        for label in order
    ]


class SessionRecognitionLoop:
    """Runs recognition ticks for one teaching session."""

    def __init__(
        self,
        session_id: int,
        *,
        engine,
        frame_source,
        client,
        matcher: Optional[FaceMatcher] = None,
        scheduler: Optional[RecognitionScheduler] = None,
        broadcaster: Optional[EventSink] = None,
        interval_seconds: float = 0.5,
        confirm_seconds: float = 2.0,
        present_status: str = "HADIR",
        device_info: str = "face-attendance-scanner",
        jpeg_quality: int = 85,
        recent_limit: int = 10,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.session_id = session_id
        self._engine = engine
        self._frame_source = frame_source
        self._client = client
        self._matcher = matcher or FaceMatcher()
        self._scheduler = scheduler or RecognitionScheduler(name=f"session-{session_id}")
        self._broadcaster = broadcaster
        self._interval_seconds = interval_seconds
        self._present_status = present_status
        self._device_info = device_info
        self._jpeg_quality = jpeg_quality
        self._logger = logger or logging.getLogger(__name__)

        self._state = AttendanceStateManager(confirm_seconds=confirm_seconds, logger=self._logger)
        self._lock = threading.RLock()
        # Held for the whole duration of a backend write
        self._sink_lock = threading.Lock()
        self._tick_guard = threading.Lock()

        self._active = False
        self._loaded = False
        self._session_info: Dict[str, Any] = {}
        self._roster: Dict[Label, RosterEntry] = {}
        self._descriptors = LabeledDescriptorSet()
        self._last_frame: Optional[np.ndarray] = None
        self._last_events: List[RecognitionEvent] = []
        self._current: Optional[Dict[str, Any]] = None
        self._recent: Deque[Dict[str, Any]] = deque(maxlen=max(1, recent_limit))
        self._just_confirmed: set = set()
        self._last_message: Optional[Dict[str, Any]] = None
        self._tick_count = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def load_roster(self) -> List[RosterEntry]:
        """Fetch the roster and enrolled descriptors for this session."""
        roster_data = self._client.get_session_roster(self.session_id)
        descriptor_items = self._client.get_session_face_descriptors(self.session_id)
        entries = build_roster_entries(roster_data, descriptor_items, self._present_status, self._logger)
        descriptors = LabeledDescriptorSet.from_roster(entries)

        with self._lock:
            self._session_info = {
                "session": (roster_data or {}).get("session"),
                "class": (roster_data or {}).get("class"),
            }
            self._roster = {entry.user_id: entry for entry in entries}
            self._descriptors = descriptors
            self._state.load_present(entry.user_id for entry in entries if entry.already_present)
            self._loaded = True

        self._logger.info(
            "[Scan] Session %s roster loaded: %d students, %d with face data, %d already present",
            self.session_id,
            len(entries),
            len(descriptors),
            len(self._state.present_labels()),
        )
        return entries

    def start(self) -> None:
        if not self._engine.is_ready():
            raise ProviderNotReadyError(self._engine.last_error or "Face model is still loading")
        with self._lock:
            if self._active:
                raise ScanSessionError(f"Session {self.session_id} is already being scanned")
        if not self._loaded:
            self.load_roster()
        with self._lock:
            if self._descriptors.is_empty():
                raise ScanSessionError("No student in this session has registered face data", status_code=400)
            self._active = True
        self._scheduler.start_interval(self._interval_seconds, self.tick)
        self._logger.info("[Scan] Recognition started for session %s", self.session_id)
        self._emit("scan_started", {"session_id": self.session_id, "enrolled": len(self._descriptors)})

    def stop(self) -> None:
        with self._lock:
            was_active = self._active
            self._active = False
        self._scheduler.stop()
        with self._lock:
            self._state.clear_pending()
            self._current = None
        # Wait for a write that was already in flight
        with self._sink_lock:
            pass
        if was_active:
            self._logger.info("[Scan] Recognition stopped for session %s", self.session_id)
            self._emit("scan_stopped", {"session_id": self.session_id})

    @property
    def active(self) -> bool:
        return self._active

    @property
    def state(self) -> AttendanceStateManager:
        return self._state

    # ------------------------------------------------------------------
    # Detection tick
    # ------------------------------------------------------------------
    def tick(self) -> List[RecognitionEvent]:
        if not self._tick_guard.acquire(blocking=False):
            self._logger.debug("[Scan] Previous tick still running, skipping")
            return []
        try:
            return self._run_tick()
        finally:
            self._tick_guard.release()

    def _run_tick(self) -> List[RecognitionEvent]:
        if not self._active:
            return []
        now = self._scheduler.now()

        frame: Optional[np.ndarray] = None
        faces: List[DetectedFace] = []
        try:
            frame = self._frame_source.next_frame().bgr
            faces = self._engine.detect_faces(frame)
            face_recognition_logger.log_face_detected(len(faces), getattr(frame, "shape", None))
        except Exception as exc:
            face_recognition_logger.log_recognition_error(f"Tick failed for session {self.session_id}: {exc}")
            faces = []

        matches: List[Tuple[DetectedFace, MatchResult]] = []
        for face in faces:
            try:
                result = self._matcher.match(face.embedding, self._descriptors)
            except ValueError as exc:
                face_recognition_logger.log_recognition_error(str(exc))
                result = NO_MATCH
            matches.append((face, result))

        with self._lock:
            if not self._active:
                return []
            confidences: Dict[Label, float] = {}
            for _, result in matches:
                if result.matched:
                    confidences[result.label] = max(confidences.get(result.label, 0.0), result.confidence)

            transition = self._state.observe_tick(confidences, now)
            for label in transition.cancelled:
                self._scheduler.cancel(self._timer_key(label))
            for entry in transition.started:
                self._scheduler.call_later(
                    self._timer_key(entry.label),
                    self._state.confirm_seconds,
                    partial(self.confirm, entry.label, entry.generation),
                )

            blocked = set(transition.blocked)
            events = [self._build_event(face, result, now, blocked) for face, result in matches]
            if frame is not None:
                self._last_frame = frame
            self._last_events = events
            self._tick_count += 1
            matched = [event for event in events if event.matched]
            self._current = max(matched, key=lambda event: event.confidence).to_dict() if matched else None

        for entry in transition.started:
            student = self._roster.get(entry.label)
            face_recognition_logger.log_face_recognized(
                student.name if student else entry.label, entry.confidence, entry.label
            )
        for event in events:
            if event.matched:
                self._emit("face_recognized", event.to_dict())
        return events

    def _build_event(
        self,
        face: DetectedFace,
        result: MatchResult,
        now: float,
        blocked: set,
    ) -> RecognitionEvent:
        if not result.matched:
            return RecognitionEvent(
                label=None,
                distance=result.distance,
                confidence=result.confidence,
                box=face.box,
                timestamp=now,
                status=STATUS_UNKNOWN,
            )
        label = result.label
        student = self._roster.get(label)
        if label in self._just_confirmed:
            self._just_confirmed.discard(label)
            status = STATUS_CONFIRMED
        elif self._state.is_present(label):
            status = STATUS_ALREADY_MARKED
        elif label in blocked:
            status = STATUS_WRITE_FAILED
        else:
            status = STATUS_MARKING
        return RecognitionEvent(
            label=label,
            distance=result.distance,
            confidence=result.confidence,
            box=face.box,
            timestamp=now,
            status=status,
            name=student.name if student else str(label),
            progress=self._state.progress(label, now),
        )

    @staticmethod
    def _timer_key(label: Label) -> Tuple[str, Label]:
        return ("confirm", label)

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------
    def confirm(self, label: Label, generation: int) -> bool:
        """Commit a candidate whose confirmation delay elapsed.

        Returns True only when this call performed a successful write.
        """
        with self._lock:
            if not self._active:
                return False
            entry = self._state.begin_commit(label, generation)
            if entry is None:
                return False
            frame = self._last_frame
            student = self._roster.get(label)

        name = student.name if student else str(label)
        evidence: Optional[str] = None
        if frame is not None:
            try:
                evidence = frame_to_data_url(frame, self._jpeg_quality)
            except ValueError as exc:
                self._logger.warning("[Scan] Could not encode evidence frame for %s: %s", label, exc)
        if evidence is None:
            self._finish_failed(label, name, "Failed to capture evidence frame")
            return False

        error: Optional[str] = None
        with self._sink_lock:
            if not self._active:
                self._state.abandon_commit(label)
                return False
            try:
                self._client.mark_face_attendance(
                    self.session_id, label, entry.confidence, evidence, self._device_info
                )
            except BackendError as exc:
                error = str(exc)
            except Exception as exc:
                self._logger.exception("[Scan] Unexpected error writing attendance for %s", label)
                error = str(exc) or exc.__class__.__name__

        if error is not None:
            self._finish_failed(label, name, error)
            return False

        mark = AttendanceMark(
            session_id=self.session_id,
            student_id=label,
            status=self._present_status,
            confidence=entry.confidence,
            evidence_frame=evidence,
            device_info=self._device_info,
        )
        with self._lock:
            self._state.complete_commit(label)
            self._just_confirmed.add(label)
            record = {
                "student_id": label,
                "name": name,
                "confidence": round(entry.confidence, 4),
                "status": STATUS_CONFIRMED,
                "timestamp": mark.committed_at.isoformat(),
            }
            self._recent.appendleft(record)
            self._last_message = {"type": "success", "text": f"{name} berhasil diabsen"}
        face_recognition_logger.log_attendance_marked(name, label, entry.confidence)
        self._emit("attendance_marked", record)
        return True

    def _finish_failed(self, label: Label, name: str, error: str) -> None:
        with self._lock:
            self._state.fail_commit(label)
            self._last_message = {"type": "error", "text": f"Gagal absen {name}: {error}"}
        face_recognition_logger.log_attendance_failed(name, label, error)
        self._emit("attendance_failed", {"student_id": label, "name": name, "error": error})

    # ------------------------------------------------------------------
    # Operator view
    # ------------------------------------------------------------------
    def annotate(self, frame: np.ndarray) -> np.ndarray:
        with self._lock:
            events = list(self._last_events)
        return draw_recognitions(frame, events)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            total = len(self._roster)
            present = len(self._state.present_labels())
            return {
                "session_id": self.session_id,
                "running": self._active,
                "session": self._session_info.get("session"),
                "class": self._session_info.get("class"),
                "stats": {
                    "total": total,
                    "enrolled": len(self._descriptors),
                    "present": present,
                    "absent": max(0, total - present),
                },
                "pending": [str(label) for label in self._state.pending_labels()],
                "current_recognition": self._current,
                "recent": list(self._recent),
                "message": self._last_message,
                "ticks": self._tick_count,
                "updated_at": datetime.now().isoformat(),
            }

    def _emit(self, event_type: str, data: Dict[str, Any]) -> None:
        if self._broadcaster is None:
            return
        try:
            self._broadcaster({"type": event_type, "data": data})
        except Exception:
            self._logger.exception("[Scan] Failed to broadcast %s", event_type)


__all__ = [
    "ScanSessionError",
    "SessionRecognitionLoop",
    "build_roster_entries",
    "normalize_label",
]
