"""Vision pipeline that normalizes frames before AI inference."""
from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Union

import cv2
import numpy as np

from .camera_manager import CameraManager


@dataclass
class VisionFrame:
    frame_id: str
    timestamp: datetime
    bgr: np.ndarray
    metadata: Dict[str, Any] = field(default_factory=dict)


def encode_jpeg(frame: np.ndarray, quality: int = 85) -> bytes:
    ret, buf = cv2.imencode('.jpg', frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ret:
        raise ValueError("Unable to encode frame as JPEG")
    return buf.tobytes()


def jpeg_data_url(jpeg: bytes) -> str:
    return 'data:image/jpeg;base64,' + base64.b64encode(jpeg).decode('ascii')


def frame_to_data_url(frame: np.ndarray, quality: int = 85) -> str:
    return jpeg_data_url(encode_jpeg(frame, quality))


def decode_image(payload: Union[bytes, str]) -> np.ndarray:
    """Decode raw image bytes, a base64 string or a ``data:`` URL into BGR."""
    if isinstance(payload, str):
        text = payload.strip()
        if ',' in text and text.startswith('data:'):
            text = text.split(',', 1)[1]
        try:
            payload = base64.b64decode(text, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("Invalid base64 image payload") from exc
    if not payload:
        raise ValueError("Empty image payload")
    buffer = np.frombuffer(payload, np.uint8)
    frame = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if frame is None:
        raise ValueError("Unsupported or corrupt image data")
    return frame


class VisionPipeline:
    """Combines CameraManager with frame bookkeeping."""

    def __init__(self, camera: CameraManager):
        self.camera = camera
        self.frame_counter = 0

    def _next_id(self) -> str:
        self.frame_counter += 1
        return f"frame-{self.frame_counter}"

    def next_frame(self) -> VisionFrame:
        frame = self.camera.read()
        return VisionFrame(
            frame_id=self._next_id(),
            timestamp=datetime.utcnow(),
            bgr=frame,
            metadata={
                "size": frame.shape,
                "source": "camera",
            },
        )

    @staticmethod
    def placeholder(message: str = "Camera disabled") -> Optional[bytes]:
        h, w = 480, 640
        img = np.zeros((h, w, 3), dtype=np.uint8)
        img[:] = (30, 30, 30)
        font = cv2.FONT_HERSHEY_SIMPLEX
        scale = 0.8
        thickness = 2
        text_size, _ = cv2.getTextSize(message, font, scale, thickness)
        text_w, text_h = text_size
        x = max(10, (w - text_w) // 2)
        y = max(30, (h - text_h) // 2)
        cv2.putText(img, message, (x, y), font, scale, (200, 200, 200), thickness, cv2.LINE_AA)
        try:
            return encode_jpeg(img, 85)
        except ValueError:
            return None
