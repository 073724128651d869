"""Thread-safe camera lifecycle shared by scanning and enrollment capture."""
from __future__ import annotations

import logging
import threading
from typing import Optional

from .camera_manager import CameraConfig, CameraManager, CameraError, CameraProvider
from .pipeline import VisionPipeline, VisionFrame


VisionStateConfig = CameraConfig


class VisionPipelineState:
    """Owns CameraManager + VisionPipeline; frame reads are serialized."""

    def __init__(
        self,
        *,
        config: VisionStateConfig,
        provider: Optional[CameraProvider] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._config = config
        self._provider = provider
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._camera_manager: Optional[CameraManager] = None
        self._pipeline: Optional[VisionPipeline] = None
        self._enabled = True

    # ------------------------------------------------------------------
    # Internal helpers
    def _get_or_create_manager(self) -> CameraManager:
        if self._camera_manager is None:
            self._camera_manager = CameraManager(self._config, provider=self._provider)
        return self._camera_manager

    def _get_or_create_pipeline(self) -> VisionPipeline:
        manager = self._get_or_create_manager()
        if self._pipeline is None:
            self._pipeline = VisionPipeline(manager)
        return self._pipeline

    def _shutdown_locked(self) -> None:
        manager = self._camera_manager
        if manager is not None:
            manager.release()
        self._pipeline = None
        self._camera_manager = None

    # ------------------------------------------------------------------
    # Public API
    def set_enabled(self, enabled: bool) -> None:
        with self._lock:
            self._enabled = bool(enabled)
            if not self._enabled:
                self._shutdown_locked()

    def is_enabled(self) -> bool:
        return self._enabled

    def ensure_ready(self) -> Optional[VisionPipeline]:
        with self._lock:
            if not self._enabled:
                return None
            manager = self._get_or_create_manager()
            manager.set_enabled(True)
            manager.open()
            return self._get_or_create_pipeline()

    def next_frame(self) -> VisionFrame:
        with self._lock:
            pipeline = self.ensure_ready()
            if pipeline is None:
                raise CameraError("Camera disabled")
            return pipeline.next_frame()

    def stop(self) -> None:
        with self._lock:
            self._shutdown_locked()

    def status(self) -> dict:
        with self._lock:
            capture = None
            if self._camera_manager:
                capture = self._camera_manager.get_capture()
            opened = bool(capture and getattr(capture, "isOpened", lambda: False)())
            return {
                "enabled": self._enabled,
                "opened": opened,
                "source": str(self._config.source),
            }

    def placeholder_frame(self, message: str = "Camera disabled") -> Optional[bytes]:
        return VisionPipeline.placeholder(message)
