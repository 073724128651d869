"""
Event Broadcaster - Server-Sent Events (SSE)
Pushes recognition and attendance events to connected operator screens
"""
import queue
import threading
import json
from typing import List, Dict, Any
from datetime import datetime


class EventBroadcaster:
    """Fan-out of SSE events to one bounded queue per client"""

    def __init__(self, logger=None, queue_size: int = 50):
        self.clients: List[queue.Queue] = []
        self.clients_lock = threading.Lock()
        self.logger = logger
        self.queue_size = queue_size

    def add_client(self) -> queue.Queue:
        client_queue = queue.Queue(maxsize=self.queue_size)

        with self.clients_lock:
            self.clients.append(client_queue)
            total = len(self.clients)

        if self.logger:
            self.logger.info(f"[SSE] New client connected. Total: {total}")

        return client_queue

    def remove_client(self, client_queue: queue.Queue):
        with self.clients_lock:
            if client_queue in self.clients:
                self.clients.remove(client_queue)

                if self.logger:
                    self.logger.info(f"[SSE] Client disconnected. Remaining: {len(self.clients)}")

    def broadcast_event(self, event_data: Dict[str, Any]):
        """
        Broadcast an event to every client

        Args:
            event_data: Dictionary with
                - type: event type (e.g. 'face_recognized', 'attendance_marked')
                - data: event payload
                - timestamp: optional, filled in when missing
        """
        if 'timestamp' not in event_data:
            event_data['timestamp'] = datetime.now().isoformat()

        message = self.format_sse_message(event_data)

        stale_clients = []

        with self.clients_lock:
            for client_queue in self.clients:
                try:
                    client_queue.put_nowait(message)
                except queue.Full:
                    # Client stopped reading
                    stale_clients.append(client_queue)
                    if self.logger:
                        self.logger.warning("[SSE] Client queue full, marking for removal")

        for client_queue in stale_clients:
            self.remove_client(client_queue)

        if self.logger and self.clients:
            self.logger.debug(
                f"[SSE] Broadcast {event_data.get('type', 'unknown')} to {len(self.clients)} clients"
            )

    @staticmethod
    def format_sse_message(event_data: Dict[str, Any]) -> str:
        event_type = event_data.get('type', 'message')

        # SSE format: event: type\ndata: json\n\n
        message_lines = [
            f"event: {event_type}",
            f"data: {json.dumps(event_data, default=str)}",
            "",
            "",
        ]

        return "\n".join(message_lines)

    def broadcast_system_message(self, message: str, level: str = 'info'):
        self.broadcast_event({
            'type': 'system_message',
            'data': {
                'message': message,
                'level': level,  # 'info', 'warning', 'error', 'success'
            }
        })

    def get_client_count(self) -> int:
        with self.clients_lock:
            return len(self.clients)


# Singleton instance
_broadcaster_instance = None
_broadcaster_lock = threading.Lock()


def get_event_broadcaster(logger=None) -> EventBroadcaster:
    """Get singleton instance of EventBroadcaster"""
    global _broadcaster_instance

    if _broadcaster_instance is None:
        with _broadcaster_lock:
            if _broadcaster_instance is None:
                _broadcaster_instance = EventBroadcaster(logger=logger)

    return _broadcaster_instance
