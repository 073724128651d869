"""
App package initialization
Builds the Flask application for the face attendance scanner station
"""
from flask import Flask
import os
import config
from logging_config import setup_logging
from app import globals as app_globals
from app.models import ScannerService, ScannerSettings, get_event_broadcaster
from core.inference.engine import DeepFaceProvider, EmbeddingEngine
from core.vision.camera_manager import parse_camera_source
from core.vision.state import VisionPipelineState, VisionStateConfig
from services.backend_client import PracticumApiClient
from services.enrollment_service import EnrollmentRegistry, EnrollmentService


def _init_embedding_engine(app, broadcaster):
    """DeepFace provider wrapped in an engine that loads in the background"""
    provider = DeepFaceProvider(
        model_name=config.FACE_MODEL_NAME,
        detector_backend=config.FACE_DETECTOR_BACKEND,
        min_detection_confidence=config.FACE_DETECTION_MIN_CONFIDENCE,
        normalize=config.FACE_EMBEDDING_NORMALIZE,
        logger=app.logger,
    )
    engine = EmbeddingEngine(provider, logger=app.logger)
    engine.start_background_initialization(
        on_error=lambda error: broadcaster.broadcast_system_message(
            f"Model wajah gagal dimuat: {error}", level="error"
        )
    )
    app.logger.info(f"[STARTUP] Loading DeepFace model {config.FACE_MODEL_NAME} in the background")
    return engine


def _init_vision_state(app, camera_provider=None):
    vision_config = VisionStateConfig(
        source=parse_camera_source(config.CAMERA_SOURCE),
        width=config.CAMERA_WIDTH,
        height=config.CAMERA_HEIGHT,
        warmup_frames=config.CAMERA_WARMUP_FRAMES,
        buffer_size=config.CAMERA_BUFFER_SIZE,
        mirror=config.CAMERA_MIRROR,
    )
    return VisionPipelineState(config=vision_config, provider=camera_provider, logger=app.logger)


def create_app(
    config_overrides=None,
    *,
    engine=None,
    client=None,
    vision=None,
    camera_provider=None,
    broadcaster=None,
    scheduler_factory=None,
):
    """Factory function for the Flask application.

    Every collaborator can be injected; anything left out is built from
    ``config``.
    """
    app = Flask(__name__)

    app.config['SECRET_KEY'] = config.SECRET_KEY
    app.config['MAX_CONTENT_LENGTH'] = config.MAX_CONTENT_LENGTH
    app.config['LOG_LEVEL'] = config.LOG_LEVEL
    app.config['LOG_DIR'] = config.LOG_DIR
    if config_overrides:
        app.config.update(config_overrides)

    setup_logging(app, log_level=app.config['LOG_LEVEL'], log_dir=app.config['LOG_DIR'])
    app.logger.info(f"[STARTUP] Working directory: {os.getcwd()}")
    app.logger.info(f"[STARTUP] Backend: {config.BACKEND_API_URL}")

    # 1. SSE
    if broadcaster is None:
        broadcaster = get_event_broadcaster(logger=app.logger)
    app_globals.event_broadcaster = broadcaster

    # 2. Embedding engine
    if engine is None:
        engine = _init_embedding_engine(app, broadcaster)
    app_globals.embedding_engine = engine

    # 3. Backend client authenticated as the scanner device
    if client is None:
        client = PracticumApiClient(
            config.BACKEND_API_URL,
            token=config.BACKEND_API_TOKEN,
            timeout=config.BACKEND_TIMEOUT,
        )
    app_globals.api_client = client

    # 4. Camera
    if vision is None:
        vision = _init_vision_state(app, camera_provider)
    app_globals.vision_state = vision

    # 5. Scan sessions
    app_globals.scanner_service = ScannerService(
        engine=engine,
        client=client,
        vision=vision,
        broadcaster=broadcaster,
        settings=ScannerSettings.from_config(config),
        scheduler_factory=scheduler_factory,
        logger=app.logger,
    )

    # 6. Enrollment
    app_globals.enrollment_registry = EnrollmentRegistry(
        lambda user_id: EnrollmentService(
            user_id,
            engine=engine,
            min_samples=config.MIN_FACE_SAMPLES,
            max_samples=config.MAX_FACE_SAMPLES,
            jpeg_quality=config.EVIDENCE_JPEG_QUALITY,
        )
    )
    app.logger.info("[STARTUP] All services initialized")

    from app.routes import register_blueprints
    register_blueprints(app)

    return app
