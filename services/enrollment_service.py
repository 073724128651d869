"""
Face enrollment for a single student.

Samples are captured one at a time (from the scanner camera or an uploaded
image), each holding exactly one face. Submitting re-embeds every sample,
uploads the raw photos and then stores the descriptors that could be
extracted.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

import numpy as np

from core.attendance.models import EnrollmentProfile, FaceSample, FaceStatus, Label
from core.inference.engine import InferenceError, ProviderNotReadyError
from core.vision.pipeline import decode_image, encode_jpeg, jpeg_data_url

logger = logging.getLogger(__name__)


class CaptureRejected(ValueError):
    """A single capture was refused; previously captured samples are untouched."""

    NO_FACE = 'no_face'
    MULTIPLE_FACES = 'multiple_faces'
    NO_EMBEDDING = 'no_embedding'
    LIMIT_REACHED = 'limit_reached'
    INVALID_IMAGE = 'invalid_image'

    MESSAGES = {
        NO_FACE: 'Wajah tidak terdeteksi. Pastikan wajah terlihat jelas.',
        MULTIPLE_FACES: 'Terdeteksi lebih dari satu wajah. Pastikan hanya satu wajah di kamera.',
        NO_EMBEDDING: 'Gagal mengekstrak fitur wajah. Coba lagi.',
        LIMIT_REACHED: 'Jumlah foto maksimum sudah tercapai.',
        INVALID_IMAGE: 'Gambar tidak valid.',
    }

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or self.MESSAGES.get(reason, reason))


class EnrollmentSubmissionError(RuntimeError):
    """Submission refused; the captured samples are kept for another attempt."""


class EnrollmentService:
    def __init__(
        self,
        user_id: Label,
        *,
        engine,
        min_samples: int = 5,
        max_samples: int = 10,
        jpeg_quality: int = 85,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.user_id = user_id
        self.min_samples = max(1, int(min_samples))
        self.max_samples = max(self.min_samples, int(max_samples))
        self._engine = engine
        self._jpeg_quality = jpeg_quality
        self._clock = clock
        self._samples: List[FaceSample] = []
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------
    def preview(self, frame: np.ndarray) -> Dict[str, Any]:
        """Live check telling the user whether exactly one face is visible."""
        faces = self._engine.detect_faces(frame)
        count = len(faces)
        if count == 0:
            message = CaptureRejected.MESSAGES[CaptureRejected.NO_FACE]
        elif count > 1:
            message = CaptureRejected.MESSAGES[CaptureRejected.MULTIPLE_FACES]
        else:
            message = 'Wajah terdeteksi. Siap mengambil foto.'
        return {
            'face_count': count,
            'ready': count == 1,
            'message': message,
            'boxes': [face.box.to_dict() for face in faces],
        }

    def capture_sample(self, frame: np.ndarray) -> FaceSample:
        with self._lock:
            if len(self._samples) >= self.max_samples:
                raise CaptureRejected(CaptureRejected.LIMIT_REACHED)

        embedding = self._single_embedding(frame)
        try:
            image_jpeg = encode_jpeg(frame, self._jpeg_quality)
        except ValueError as exc:
            raise CaptureRejected(CaptureRejected.INVALID_IMAGE, str(exc)) from exc

        sample = FaceSample(
            user_id=self.user_id,
            embedding=embedding,
            captured_at=self._clock(),
            image_jpeg=image_jpeg,
        )
        with self._lock:
            if len(self._samples) >= self.max_samples:
                raise CaptureRejected(CaptureRejected.LIMIT_REACHED)
            self._samples.append(sample)
            count = len(self._samples)
        logger.info("[Enrollment] User %s captured sample %d/%d", self.user_id, count, self.max_samples)
        return sample

    def capture_from_image(self, payload: Union[bytes, str]) -> FaceSample:
        try:
            frame = decode_image(payload)
        except ValueError as exc:
            raise CaptureRejected(CaptureRejected.INVALID_IMAGE, str(exc)) from exc
        return self.capture_sample(frame)

    def _single_embedding(self, frame: np.ndarray) -> np.ndarray:
        faces = self._engine.detect_faces(frame)
        if not faces:
            raise CaptureRejected(CaptureRejected.NO_FACE)
        if len(faces) > 1:
            raise CaptureRejected(CaptureRejected.MULTIPLE_FACES)
        embedding = faces[0].embedding
        if embedding is None or np.asarray(embedding).size == 0:
            raise CaptureRejected(CaptureRejected.NO_EMBEDDING)
        return np.asarray(embedding, dtype='float64')

    # ------------------------------------------------------------------
    # Local samples
    # ------------------------------------------------------------------
    def samples(self) -> List[FaceSample]:
        with self._lock:
            return list(self._samples)

    @property
    def sample_count(self) -> int:
        with self._lock:
            return len(self._samples)

    def can_submit(self) -> bool:
        return self.sample_count >= self.min_samples

    def remove_sample(self, index: int) -> FaceSample:
        with self._lock:
            if index < 0 or index >= len(self._samples):
                raise IndexError(f'No sample at index {index}')
            return self._samples.pop(index)

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()

    def describe(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'user_id': self.user_id,
                'count': len(self._samples),
                'min_samples': self.min_samples,
                'max_samples': self.max_samples,
                'can_submit': len(self._samples) >= self.min_samples,
                'samples': [
                    {'index': idx, 'captured_at': sample.captured_at.isoformat()}
                    for idx, sample in enumerate(self._samples)
                ],
            }

    # ------------------------------------------------------------------
    # Backend
    # ------------------------------------------------------------------
    def submit(self, client) -> EnrollmentProfile:
        """Two-phase submission: raw photos first, then the descriptors.

        ``client`` must act on behalf of the enrolling student. Any
        BackendError propagates with the samples still held locally.
        """
        samples = self.samples()
        if len(samples) < self.min_samples:
            raise EnrollmentSubmissionError(
                f'Minimal {self.min_samples} foto diperlukan, baru {len(samples)} foto.'
            )

        descriptors: List[List[float]] = []
        for idx, sample in enumerate(samples):
            try:
                embedding = self._single_embedding(decode_image(sample.image_jpeg))
            except ProviderNotReadyError:
                raise
            except (CaptureRejected, InferenceError, ValueError) as exc:
                logger.warning("[Enrollment] Sample %d of user %s skipped: %s", idx, self.user_id, exc)
                continue
            descriptors.append([float(v) for v in embedding])

        if not descriptors:
            raise EnrollmentSubmissionError(
                'Tidak ada wajah yang dapat diproses. Silakan ambil foto ulang.'
            )

        images = [jpeg_data_url(sample.image_jpeg) for sample in samples]
        client.upload_face_images(images)
        logger.info("[Enrollment] User %s uploaded %d images", self.user_id, len(images))
        client.save_face_descriptors(descriptors)
        logger.info(
            "[Enrollment] User %s saved %d/%d descriptors", self.user_id, len(descriptors), len(samples)
        )

        submitted = {id(sample) for sample in samples}
        with self._lock:
            self._samples[:] = [sample for sample in self._samples if id(sample) not in submitted]
        return EnrollmentProfile(
            user_id=self.user_id,
            samples=tuple(samples),
            trained_at=self._clock(),
        )

    def get_status(self, client) -> FaceStatus:
        return client.get_face_status()

    def delete_face_data(self, client) -> None:
        client.delete_face_data()
        self.clear()
        logger.info("[Enrollment] Face data of user %s deleted", self.user_id)


class EnrollmentRegistry:
    """One EnrollmentService per enrolling user."""

    def __init__(self, factory: Callable[[Label], EnrollmentService]):
        self._factory = factory
        self._services: Dict[Label, EnrollmentService] = {}
        self._lock = threading.Lock()

    def get(self, user_id: Label) -> EnrollmentService:
        with self._lock:
            service = self._services.get(user_id)
            if service is None:
                service = self._factory(user_id)
                self._services[user_id] = service
            return service

    def discard(self, user_id: Label) -> None:
        with self._lock:
            self._services.pop(user_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._services)
