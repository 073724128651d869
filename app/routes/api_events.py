"""
API routes for Server-Sent Events (SSE)
Real-time recognition and attendance events for the operator screen
"""
from flask import Blueprint, Response, stream_with_context
import json
import queue
from app import globals as app_globals

events_api_bp = Blueprint('events_api', __name__, url_prefix='/api/events')

HEARTBEAT_SECONDS = 30


@events_api_bp.route('/stream')
def api_events_stream():
    """Server-Sent Events stream"""
    broadcaster = app_globals.event_broadcaster
    client_queue = broadcaster.add_client()
    initial_status = app_globals.scanner_service.status()

    def event_stream():
        try:
            yield f"data: {json.dumps({'type': 'connected', 'data': initial_status}, default=str)}\n\n"

            while True:
                try:
                    yield client_queue.get(timeout=HEARTBEAT_SECONDS)
                except queue.Empty:
                    # Keep the connection open
                    yield f"data: {json.dumps({'type': 'heartbeat'})}\n\n"
        finally:
            broadcaster.remove_client(client_queue)

    return Response(stream_with_context(event_stream()), mimetype='text/event-stream')
