# config.py - Configuration and constants for the face attendance scanner

import os
import platform

from dotenv import load_dotenv

load_dotenv()

# Flask app configuration
SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB

# Practicum REST backend
BACKEND_API_URL = os.getenv('BACKEND_API_URL', 'https://practicum-sys-be.vercel.app').rstrip('/')
BACKEND_API_TOKEN = os.getenv('BACKEND_API_TOKEN', '')
BACKEND_TIMEOUT = max(1.0, float(os.getenv('BACKEND_TIMEOUT', '10')))

# Camera configuration (index or stream URL)
CAMERA_SOURCE = os.getenv('CAMERA_SOURCE', '0')
CAMERA_WIDTH = int(os.getenv('CAMERA_WIDTH', '1280'))
CAMERA_HEIGHT = int(os.getenv('CAMERA_HEIGHT', '720'))
CAMERA_WARMUP_FRAMES = int(os.getenv('CAMERA_WARMUP_FRAMES', '3'))
CAMERA_BUFFER_SIZE = int(os.getenv('CAMERA_BUFFER_SIZE', '2'))
CAMERA_MIRROR = os.getenv('CAMERA_MIRROR', '1') == '1'

# Embedding model (DeepFace)
FACE_MODEL_NAME = os.getenv('FACE_MODEL_NAME', 'Facenet')
FACE_DETECTOR_BACKEND = os.getenv('FACE_DETECTOR_BACKEND', 'opencv')
FACE_DETECTION_MIN_CONFIDENCE = float(os.getenv('FACE_DETECTION_MIN_CONFIDENCE', '0.0'))
FACE_EMBEDDING_NORMALIZE = os.getenv('FACE_EMBEDDING_NORMALIZE', '1') == '1'

# Matching
FACE_DISTANCE_METRIC = os.getenv('FACE_DISTANCE_METRIC', 'euclidean')
FACE_MATCH_THRESHOLD = min(1.0, max(0.0, float(os.getenv('FACE_MATCH_THRESHOLD', '0.6'))))

# Recognition loop timing
DETECTION_INTERVAL_MS = max(100, int(os.getenv('DETECTION_INTERVAL_MS', '500')))
AUTO_MARK_DELAY_MS = max(0, int(os.getenv('AUTO_MARK_DELAY_MS', '2000')))
RECENT_RECOGNITIONS_LIMIT = max(1, int(os.getenv('RECENT_RECOGNITIONS_LIMIT', '10')))

# Enrollment
MIN_FACE_SAMPLES = max(1, int(os.getenv('MIN_FACE_SAMPLES', '5')))
MAX_FACE_SAMPLES = max(MIN_FACE_SAMPLES, int(os.getenv('MAX_FACE_SAMPLES', '10')))

# Attendance
ATTENDANCE_PRESENT_STATUS = os.getenv('ATTENDANCE_PRESENT_STATUS', 'HADIR')
EVIDENCE_JPEG_QUALITY = min(100, max(10, int(os.getenv('EVIDENCE_JPEG_QUALITY', '85'))))
SCANNER_DEVICE_INFO = os.getenv(
    'SCANNER_DEVICE_INFO',
    f'face-attendance-scanner ({platform.system()} {platform.node()})',
)

# Logging
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_DIR = os.getenv('LOG_DIR', 'logs')
