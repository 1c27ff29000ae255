# Overview: Kiosk session state (current card) and its server-sent-events stream.

import json
import queue

from flask import Blueprint, Response, current_app, jsonify, request, stream_with_context

from ..errors import StoreError
from ..realtime import change_feed, kiosk_topic
from ..services import kiosk_service

kiosk_bp = Blueprint("kiosk", __name__, url_prefix="/api/kiosk")


@kiosk_bp.get("/<int:kiosk_id>/status")
def get_status_route(kiosk_id: int):
    status = kiosk_service.get_status(kiosk_id)
    return jsonify({"status": status.to_dict()}), 200


@kiosk_bp.put("/<int:kiosk_id>/status")
def set_status_route(kiosk_id: int):
    """
    Card-reader relay writes the presented card here. Body: {"current_uid": str | null}
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or "current_uid" not in data:
        return jsonify({"error": "current_uid required (null for removal)"}), 400
    try:
        status = kiosk_service.set_current_uid(kiosk_id, data.get("current_uid"))
        return jsonify({"status": status.to_dict()}), 200
    except StoreError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update kiosk status")
        return jsonify({"error": "Internal server error"}), 500


@kiosk_bp.get("/<int:kiosk_id>/events")
def events_route(kiosk_id: int):
    """Server-sent events: one `data:` line per session-state change, comments as heartbeat."""
    heartbeat = float(current_app.config.get("REALTIME_HEARTBEAT_SECONDS", 15.0))
    channel, events = change_feed.listen(kiosk_topic(kiosk_id))

    def _stream():
        try:
            yield ": subscribed\n\n"
            while True:
                try:
                    payload = events.get(timeout=heartbeat)
                except queue.Empty:
                    yield ": keepalive\n\n"
                    continue
                yield f"data: {json.dumps(payload)}\n\n"
        finally:
            channel.unsubscribe()

    return Response(
        stream_with_context(_stream()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
