"""Value objects shared by enrollment, matching and the recognition loop."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np

Label = Union[int, str]

STATUS_MARKING = "marking"
STATUS_ALREADY_MARKED = "already_marked"
STATUS_CONFIRMED = "confirmed"
STATUS_UNKNOWN = "unknown"
STATUS_WRITE_FAILED = "write_failed"


@dataclass(frozen=True)
class BoundingBox:
    x: int
    y: int
    width: int
    height: int

    def corners(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.x + self.width, self.y + self.height)

    def to_dict(self) -> Dict[str, int]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class FaceSample:
    """One captured enrollment photo and the embedding derived from it."""

    user_id: Label
    embedding: np.ndarray
    captured_at: datetime
    image_jpeg: bytes = b""

    def descriptor(self) -> list:
        return [float(v) for v in self.embedding]


@dataclass(frozen=True)
class EnrollmentProfile:
    user_id: Label
    samples: Tuple[FaceSample, ...]
    trained_at: datetime
    registered: bool = True

    @property
    def sample_count(self) -> int:
        return len(self.samples)


@dataclass(frozen=True)
class FaceStatus:
    registered: bool
    sample_count: int = 0
    trained_at: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "FaceStatus":
        payload = payload or {}
        return cls(
            registered=bool(payload.get("registered")),
            sample_count=int(payload.get("sample_count") or payload.get("sampleCount") or 0),
            trained_at=payload.get("trained_at") or payload.get("trainedAt"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "registered": self.registered,
            "sample_count": self.sample_count,
            "trained_at": self.trained_at,
        }


@dataclass(frozen=True)
class RosterEntry:
    user_id: Label
    name: str
    identifier: Optional[str] = None
    descriptors: Tuple[np.ndarray, ...] = ()
    already_present: bool = False

    @property
    def enrolled(self) -> bool:
        return bool(self.descriptors)


@dataclass(frozen=True)
class RecognitionEvent:
    """Outcome of one tick for one detected face."""

    label: Optional[Label]
    distance: float
    confidence: float
    box: Optional[BoundingBox]
    timestamp: float
    status: str = STATUS_UNKNOWN
    name: Optional[str] = None
    progress: float = 0.0

    @property
    def matched(self) -> bool:
        return self.label is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "student_id": self.label,
            "name": self.name,
            "confidence": round(self.confidence, 4),
            "distance": round(self.distance, 4),
            "status": self.status,
            "progress": round(self.progress, 3),
            "box": self.box.to_dict() if self.box else None,
        }


@dataclass
class PendingConfirmation:
    label: Label
    first_seen: float
    generation: int
    still_present: bool = True
    last_seen: float = 0.0
    confidence: float = 0.0

    def elapsed(self, now: float) -> float:
        return max(0.0, now - self.first_seen)


@dataclass(frozen=True)
class AttendanceMark:
    session_id: int
    student_id: Label
    status: str
    confidence: float
    evidence_frame: Optional[str]
    device_info: str
    committed_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "student_id": self.student_id,
            "status": self.status,
            "confidence": round(self.confidence, 4),
            "device_info": self.device_info,
            "committed_at": self.committed_at.isoformat(),
        }
