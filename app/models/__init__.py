"""
Models Package - Business logic models
Stateful services kept out of the Flask routes
"""

from .event_broadcaster import EventBroadcaster, get_event_broadcaster
from .scanner_service import ScannerService, ScannerSettings

__all__ = [
    'EventBroadcaster',
    'get_event_broadcaster',
    'ScannerService',
    'ScannerSettings',
]
