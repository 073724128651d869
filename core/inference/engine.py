"""Face detection / embedding engine.

The embedding model is treated as a capability: given a frame it yields zero
or more faces, each with a bounding box and a fixed-length embedding. The
engine owns the one-time model load and refuses detection until it is ready,
so routes and the recognition loop can treat inference as a stateful service
instead of importing DeepFace themselves.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from core.attendance.models import BoundingBox


class InferenceError(RuntimeError):
    """Raised when the provider cannot complete a detection."""


class ProviderInitializationError(InferenceError):
    """Raised when the model could not be loaded."""


class ProviderNotReadyError(InferenceError):
    """Raised when detection is requested before initialization finished."""


@dataclass
class DetectedFace:
    box: BoundingBox
    embedding: np.ndarray
    detection_confidence: float = 0.0


def l2_normalize(vector: np.ndarray, eps: float = 1e-10) -> np.ndarray:
    norm = float(np.linalg.norm(vector))
    if norm < eps:
        return vector
    return vector / norm


class EmbeddingProvider:
    """Protocol-ish base class for duck-typed providers."""

    name: str = "provider"

    def warmup(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def detect_faces(self, frame: np.ndarray) -> List[DetectedFace]:  # pragma: no cover - interface
        raise NotImplementedError


class DeepFaceProvider(EmbeddingProvider):
    name = "deepface"

    def __init__(
        self,
        *,
        model_name: str = "Facenet",
        detector_backend: str = "opencv",
        min_detection_confidence: float = 0.0,
        normalize: bool = True,
        deepface_module: Any = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._model_name = model_name
        self._detector_backend = detector_backend
        self._min_confidence = min_detection_confidence
        self._normalize = normalize
        self._deepface = deepface_module
        self._logger = logger or logging.getLogger(__name__)

    @property
    def model_name(self) -> str:
        return self._model_name

    def warmup(self) -> None:
        if self._deepface is None:
            # Heavy import (TensorFlow) deferred until the model is needed
            from deepface import DeepFace

            self._deepface = DeepFace
        self._deepface.build_model(model_name=self._model_name)
        self._logger.info(
            "[Inference] DeepFace model %s ready (detector=%s)",
            self._model_name,
            self._detector_backend,
        )

    def detect_faces(self, frame: np.ndarray) -> List[DetectedFace]:
        if self._deepface is None:
            raise InferenceError("DeepFace module not loaded")
        representations = self._deepface.represent(
            img_path=frame,
            model_name=self._model_name,
            detector_backend=self._detector_backend,
            enforce_detection=False,
            align=True,
        )
        faces: List[DetectedFace] = []
        for rep in representations or []:
            # Without enforce_detection DeepFace falls back to the whole frame
            # with confidence 0 when nothing was detected
            confidence = float(rep.get("face_confidence") or 0.0)
            if confidence <= self._min_confidence:
                continue
            area = rep.get("facial_area") or {}
            embedding = np.asarray(rep.get("embedding") or [], dtype="float32")
            if embedding.size == 0:
                continue
            if self._normalize:
                embedding = l2_normalize(embedding)
            faces.append(
                DetectedFace(
                    box=BoundingBox(
                        x=int(area.get("x", 0)),
                        y=int(area.get("y", 0)),
                        width=int(area.get("w", 0)),
                        height=int(area.get("h", 0)),
                    ),
                    embedding=embedding,
                    detection_confidence=confidence,
                )
            )
        return faces


class EmbeddingEngine:
    """Gates every detection behind one successful provider warmup."""

    def __init__(self, provider: EmbeddingProvider, *, logger: Optional[logging.Logger] = None) -> None:
        self._provider = provider
        self._logger = logger or logging.getLogger(__name__)
        self._ready = threading.Event()
        self._lock = threading.RLock()
        self._last_error: Optional[str] = None
        self._init_thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------
    def initialize(self) -> None:
        with self._lock:
            if self._ready.is_set():
                return
            try:
                self._provider.warmup()
            except Exception as exc:
                self._last_error = str(exc) or exc.__class__.__name__
                self._logger.error("[Inference] Provider %s failed to load: %s", self._provider.name, exc)
                raise ProviderInitializationError(self._last_error) from exc
            self._last_error = None
            self._ready.set()
        self._logger.info("[Inference] Provider %s ready", self._provider.name)

    def start_background_initialization(
        self, on_error: Optional[Callable[[str], None]] = None
    ) -> threading.Thread:
        """Load the model off the request path; failures stay in ``last_error``
        and are passed to ``on_error``."""

        def _run() -> None:
            try:
                self.initialize()
            except ProviderInitializationError as exc:
                if on_error is not None:
                    on_error(str(exc))

        with self._lock:
            if self._init_thread is None or not self._init_thread.is_alive():
                self._init_thread = threading.Thread(target=_run, name="embedding-init", daemon=True)
                self._init_thread.start()
            return self._init_thread

    def is_ready(self) -> bool:
        return self._ready.is_set()

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        return self._ready.wait(timeout)

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------
    def detect_faces(self, frame: np.ndarray) -> List[DetectedFace]:
        if not self._ready.is_set():
            raise ProviderNotReadyError(self._last_error or "Face model is still loading")
        try:
            return self._provider.detect_faces(frame)
        except InferenceError:
            raise
        except Exception as exc:
            raise InferenceError(f"{self._provider.name} failed to detect faces: {exc}") from exc

    def describe(self) -> Dict[str, Any]:
        return {
            "provider": self._provider.name,
            "ready": self.is_ready(),
            "error": self._last_error,
        }


__all__ = [
    "DeepFaceProvider",
    "DetectedFace",
    "EmbeddingEngine",
    "EmbeddingProvider",
    "InferenceError",
    "ProviderInitializationError",
    "ProviderNotReadyError",
    "l2_normalize",
]
