"""
Global state module
Service singletons are assigned by create_app() and read by the blueprints
"""

# Embedding engine (DeepFace), warmed up in the background at startup
embedding_engine = None

# REST client for the practicum backend, authenticated as the scanner device
api_client = None

# Shared camera used by scanning and enrollment preview
vision_state = None

# Active scan session
scanner_service = None

# One EnrollmentService per enrolling student
enrollment_registry = None

# SSE fan-out
event_broadcaster = None
