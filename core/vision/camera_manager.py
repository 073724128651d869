"""The scanner station's camera.

One physical camera feeds the recognition ticks, the MJPEG operator view and
enrollment captures. It is opened lazily on the first read and released when
the station disables it or shuts down.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional, Protocol, Union

import cv2
import numpy as np


logger = logging.getLogger(__name__)

CameraSource = Union[int, str]


class CameraError(RuntimeError):
    """No frame could be obtained from the station camera."""


def parse_camera_source(value: Union[int, str, None]) -> CameraSource:
    """Device indexes come from the environment as strings; URLs stay as-is."""
    if value is None or value == "":
        return 0
    if isinstance(value, int):
        return value
    text = str(value).strip()
    return int(text) if text.isdigit() else text


class CameraProvider(Protocol):
    def open(self, source: CameraSource) -> cv2.VideoCapture:
        ...


class DefaultCameraProvider:
    """Opens a local device index or a stream URL through OpenCV."""

    def open(self, source: CameraSource) -> cv2.VideoCapture:
        capture = cv2.VideoCapture(source)
        if not capture or not capture.isOpened():
            raise CameraError(f"Kamera {source} tidak dapat dibuka")
        return capture


@dataclass
class CameraConfig:
    source: CameraSource = 0
    width: Optional[int] = None
    height: Optional[int] = None
    # Frames discarded right after opening
    warmup_frames: int = 3
    buffer_size: Optional[int] = 2
    # Flip horizontally
    mirror: bool = False

    def __post_init__(self) -> None:
        self.source = parse_camera_source(self.source)


class CameraManager:
    """Lazily opened capture with a single reopen on a dropped read."""

    def __init__(self, config: CameraConfig, provider: Optional[CameraProvider] = None):
        self.config = config
        self.provider = provider or DefaultCameraProvider()
        self._capture: Optional[cv2.VideoCapture] = None
        self._enabled = True

    def open(self) -> cv2.VideoCapture:
        if self._capture is not None and self._capture.isOpened():
            return self._capture
        capture = self.provider.open(self.config.source)
        self._apply_settings(capture)
        self._discard_warmup_frames(capture)
        self._capture = capture
        return capture

    def _apply_settings(self, capture: cv2.VideoCapture) -> None:
        config = self.config
        try:
            if config.width:
                capture.set(cv2.CAP_PROP_FRAME_WIDTH, config.width)
            if config.height:
                capture.set(cv2.CAP_PROP_FRAME_HEIGHT, config.height)
            if config.buffer_size is not None and hasattr(cv2, "CAP_PROP_BUFFERSIZE"):
                capture.set(cv2.CAP_PROP_BUFFERSIZE, config.buffer_size)
            logger.info(
                "[Camera] Source %s opened at %sx%s, %.1f fps",
                config.source,
                int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)),
                int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)),
                capture.get(cv2.CAP_PROP_FPS) or 0,
            )
        except cv2.error as exc:
            logger.warning("[Camera] Could not apply capture settings: %s", exc)

    def _discard_warmup_frames(self, capture: cv2.VideoCapture) -> None:
        count = max(0, self.config.warmup_frames)
        good = 0
        for _ in range(count):
            ok, _frame = capture.read()
            good += int(bool(ok))
            time.sleep(0.05)
        if count:
            logger.debug("[Camera] Warmup read %d/%d frames", good, count)

    def release(self) -> None:
        capture, self._capture = self._capture, None
        if capture is not None:
            capture.release()

    def _grab(self) -> Optional[np.ndarray]:
        ok, frame = self.open().read()
        return frame if ok and frame is not None else None

    def read(self) -> np.ndarray:
        if not self._enabled:
            raise CameraError("Camera disabled")
        frame = self._grab()
        if frame is None:
            # Reopen once before giving up
            logger.warning("[Camera] Read failed on source %s, reopening", self.config.source)
            self.release()
            frame = self._grab()
        if frame is None:
            raise CameraError("Unable to read frame from camera")
        if self.config.mirror:
            frame = cv2.flip(frame, 1)
        return frame

    def set_enabled(self, value: bool) -> None:
        self._enabled = bool(value)
        if not self._enabled:
            self.release()

    def is_enabled(self) -> bool:
        return self._enabled

    def get_capture(self) -> Optional[cv2.VideoCapture]:
        return self._capture
