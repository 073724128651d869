import numpy as np
import pytest

from core.inference.engine import (
    DeepFaceProvider,
    EmbeddingEngine,
    InferenceError,
    ProviderInitializationError,
    ProviderNotReadyError,
)


class FakeDeepFace:
    def __init__(self, representations=None, fail_build=False):
        self.representations = representations or []
        self.fail_build = fail_build
        self.built = []
        self.represent_kwargs = None

    def build_model(self, model_name):
        if self.fail_build:
            raise OSError('weights download failed')
        self.built.append(model_name)

    def represent(self, **kwargs):
        self.represent_kwargs = kwargs
        return self.representations


def test_provider_filters_fallback_region_and_normalizes():
    deepface = FakeDeepFace([
        {'embedding': [3.0, 4.0], 'facial_area': {'x': 5, 'y': 6, 'w': 20, 'h': 30}, 'face_confidence': 0.97},
        {'embedding': [1.0, 1.0], 'facial_area': {'x': 0, 'y': 0, 'w': 100, 'h': 100}, 'face_confidence': 0},
    ])
    provider = DeepFaceProvider(model_name='Facenet', detector_backend='opencv', deepface_module=deepface)
    provider.warmup()

    faces = provider.detect_faces(np.zeros((100, 100, 3), dtype=np.uint8))

    assert deepface.built == ['Facenet']
    assert deepface.represent_kwargs['enforce_detection'] is False
    assert deepface.represent_kwargs['detector_backend'] == 'opencv'
    assert len(faces) == 1
    face = faces[0]
    assert face.box.to_dict() == {'x': 5, 'y': 6, 'width': 20, 'height': 30}
    assert list(face.embedding) == pytest.approx([0.6, 0.8])
    assert face.detection_confidence == pytest.approx(0.97)


def test_provider_keeps_raw_embedding_when_normalization_disabled():
    deepface = FakeDeepFace([
        {'embedding': [3.0, 4.0], 'facial_area': {'x': 0, 'y': 0, 'w': 1, 'h': 1}, 'face_confidence': 0.9},
    ])
    provider = DeepFaceProvider(normalize=False, deepface_module=deepface)

    faces = provider.detect_faces(np.zeros((10, 10, 3), dtype=np.uint8))

    assert list(faces[0].embedding) == pytest.approx([3.0, 4.0])


def test_engine_refuses_detection_before_warmup():
    engine = EmbeddingEngine(DeepFaceProvider(deepface_module=FakeDeepFace()))

    with pytest.raises(ProviderNotReadyError):
        engine.detect_faces(np.zeros((10, 10, 3), dtype=np.uint8))
    assert not engine.is_ready()


def test_engine_records_initialization_failure():
    engine = EmbeddingEngine(DeepFaceProvider(deepface_module=FakeDeepFace(fail_build=True)))

    with pytest.raises(ProviderInitializationError):
        engine.initialize()

    assert not engine.is_ready()
    assert 'weights download failed' in engine.last_error
    assert engine.describe()['error'] == engine.last_error
    with pytest.raises(ProviderNotReadyError):
        engine.detect_faces(np.zeros((10, 10, 3), dtype=np.uint8))


def test_background_initialization_sets_ready():
    engine = EmbeddingEngine(DeepFaceProvider(deepface_module=FakeDeepFace()))

    thread = engine.start_background_initialization()
    thread.join(5.0)

    assert engine.wait_ready(1.0)
    assert engine.describe() == {'provider': 'deepface', 'ready': True, 'error': None}


def test_background_initialization_failure_is_reported():
    engine = EmbeddingEngine(DeepFaceProvider(deepface_module=FakeDeepFace(fail_build=True)))
    errors = []

    engine.start_background_initialization(on_error=errors.append).join(5.0)

    assert not engine.is_ready()
    assert engine.last_error
    assert errors == [engine.last_error]


def test_provider_errors_are_wrapped():
    class BrokenDeepFace(FakeDeepFace):
        def represent(self, **kwargs):
            raise ValueError('bad frame')

    engine = EmbeddingEngine(DeepFaceProvider(deepface_module=BrokenDeepFace()))
    engine.initialize()

    with pytest.raises(InferenceError, match='bad frame'):
        engine.detect_faces(np.zeros((10, 10, 3), dtype=np.uint8))
