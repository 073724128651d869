"""
Logging setup for the face attendance scanner
"""

import logging
import logging.handlers
from datetime import datetime
from pathlib import Path


def setup_logging(app=None, log_level='INFO', log_dir='logs', max_log_size=10*1024*1024, backup_count=5):
    """
    Configure root logging for the scanner.

    Args:
        app: Flask app instance (optional, its logger follows the same level)
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_dir: directory for the rotating log files
        max_log_size: maximum size of one log file (bytes)
        backup_count: number of rotated files to keep
    """

    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    level = getattr(logging, str(log_level).upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / 'face_attendance.log',
        maxBytes=max_log_size,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / 'errors.log',
        maxBytes=max_log_size,
        backupCount=backup_count,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Drop handlers from a previous setup (app factory may run more than once)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(error_handler)

    logging.getLogger('face_recognition').setLevel(level)
    logging.getLogger('api').setLevel(level)

    if app is not None:
        app.logger.setLevel(level)
        app.logger.info("=" * 50)
        app.logger.info("FACE ATTENDANCE SCANNER STARTUP")
        app.logger.info(f"Timestamp: {datetime.now().isoformat()}")
        app.logger.info(f"Log Level: {logging.getLevelName(level)}")
        app.logger.info(f"Log Directory: {log_dir.absolute()}")
        app.logger.info("=" * 50)


class FaceRecognitionLogger:
    """Logger for recognition and attendance events"""

    def __init__(self):
        self.logger = logging.getLogger('face_recognition')

    def log_face_detected(self, face_count, frame_size):
        self.logger.debug(f"Face detected - Count: {face_count}, Frame: {frame_size}")

    def log_face_recognized(self, name, confidence, student_id=None):
        student_info = f", Student ID: {student_id}" if student_id is not None else ""
        self.logger.info(f"Face recognized - Name: {name}, Confidence: {confidence:.3f}{student_info}")

    def log_attendance_marked(self, name, student_id, confidence=None):
        confidence_info = f", Confidence: {confidence:.3f}" if confidence is not None else ""
        self.logger.info(f"Attendance marked - Name: {name}, Student ID: {student_id}{confidence_info}")

    def log_attendance_failed(self, name, student_id, error_message):
        self.logger.warning(f"Attendance write failed - Name: {name}, Student ID: {student_id}, Error: {error_message}")

    def log_recognition_error(self, error_message):
        self.logger.error(f"Recognition error - {error_message}")


class APILogger:
    """Logger for calls to the practicum backend"""

    def __init__(self):
        self.logger = logging.getLogger('api')

    def log_request(self, method, endpoint):
        self.logger.info(f"API Request - {method} {endpoint}")

    def log_response(self, endpoint, status_code, duration=None):
        duration_info = f", Duration: {duration:.3f}s" if duration is not None else ""
        self.logger.info(f"API Response - {endpoint}, Status: {status_code}{duration_info}")

    def log_error(self, endpoint, error_message, status_code=None):
        self.logger.error(f"API Error - {endpoint}, Status: {status_code}, Error: {error_message}")


# Shared logger instances
face_recognition_logger = FaceRecognitionLogger()
api_logger = APILogger()
