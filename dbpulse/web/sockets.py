"""SocketIO event handlers."""

import logging

from flask import request
from flask_socketio import emit

from dbpulse import live_hub
from dbpulse.core.errors import DbPulseError
from dbpulse.database.connection import SERVERS, check_server_status, server_status

logger = logging.getLogger(__name__)


def _error(event: str, exc: Exception, **context) -> None:
    emit("error", {"event": event, "error": str(exc), **context})


def _required(data, *keys):
    if not isinstance(data, dict):
        raise ValueError("Payload must be an object")
    missing = [key for key in keys if data.get(key) in (None, "")]
    if missing:
        raise ValueError(f"Missing field(s): {', '.join(missing)}")
    return [data[key] for key in keys]


def handle_connect():
    emit("response", {"data": "Connected to server"})
    for server_id in SERVERS:
        emit("server_status_update", {"server_id": server_id, "status": server_status.get(server_id, {})})


def handle_disconnect(reason=None):
    try:
        dropped = live_hub.drop_client(request.sid)
        logger.debug(f"Client {request.sid} disconnected, dropped {dropped} subscription(s)")
    except Exception:
        logger.error(f"Failed to drop subscriptions for {request.sid}", exc_info=True)


def handle_subscribe(data):
    try:
        channel, server_id, metric = _required(data, "channel", "server_id", "metric")
        live_hub.subscribe(
            request.sid,
            channel,
            server_id,
            metric,
            interval_ms=data.get("interval_ms"),
            enabled=bool(data.get("enabled", True)),
            limit=data.get("limit"),
        )
    except (ValueError, DbPulseError) as exc:
        _error("subscribe", exc, channel=data.get("channel") if isinstance(data, dict) else None)
        return
    emit("subscribed", {"channel": channel, "server_id": server_id, "metric": metric})


def handle_set_live(data):
    try:
        (channel,) = _required(data, "channel")
        live_hub.set_live(request.sid, channel, bool(data.get("enabled", True)))
    except (ValueError, DbPulseError) as exc:
        _error("set_live", exc)


def handle_refetch(data):
    try:
        (channel,) = _required(data, "channel")
        live_hub.refetch(request.sid, channel)
    except (ValueError, DbPulseError) as exc:
        _error("refetch", exc)


def handle_unsubscribe(data):
    try:
        (channel,) = _required(data, "channel")
    except ValueError as exc:
        _error("unsubscribe", exc)
        return
    live_hub.unsubscribe(request.sid, channel)
    emit("unsubscribed", {"channel": channel})


def handle_explain(data):
    try:
        server_id, query = _required(data, "server_id", "query")
        request_id = live_hub.explain(request.sid, server_id, query, bool(data.get("analyze", False)))
    except ValueError as exc:
        _error("explain", exc)
        return
    emit("plan_pending", {"server_id": server_id, "request": request_id})


def handle_check_status(server_id):
    if server_id in SERVERS:
        check_server_status(server_id)
        emit(
            "server_status_update",
            {"server_id": server_id, "status": server_status[server_id]},
        )


def register_socket_handlers(socketio) -> None:
    """Attach the handlers to ``socketio``; call after every ``init_app``."""
    socketio.on_event("connect", handle_connect)
    socketio.on_event("disconnect", handle_disconnect)
    socketio.on_event("subscribe", handle_subscribe)
    socketio.on_event("set_live", handle_set_live)
    socketio.on_event("refetch", handle_refetch)
    socketio.on_event("unsubscribe", handle_unsubscribe)
    socketio.on_event("explain", handle_explain)
    socketio.on_event("check_status", handle_check_status)
