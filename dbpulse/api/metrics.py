import logging

from flask import Blueprint, jsonify, request

from dbpulse.core.errors import BackendError, ServerNotFoundError
from dbpulse.services.bridge import metric_command, resolve

logger = logging.getLogger(__name__)

metrics_bp = Blueprint("metrics", __name__)


def _collect(server_id: str, metric: str, limit=None):
    try:
        command, kwargs = metric_command(metric, limit)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 404

    try:
        return jsonify(resolve(command)(server_id, **kwargs))
    except ServerNotFoundError as exc:
        return jsonify({"error": str(exc)}), 404
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    except BackendError as exc:
        return jsonify({"error": str(exc)}), 500
    except Exception as exc:
        logger.error(f"Collecting {metric} for {server_id} failed", exc_info=True)
        return jsonify({"error": str(exc)}), 500


@metrics_bp.route("/servers/<server_id>/metrics/<metric>")
def get_metric(server_id: str, metric: str):
    limit = request.args.get("limit", type=int)
    return _collect(server_id, metric, limit)


@metrics_bp.route("/servers/<server_id>/settings")
def get_settings(server_id: str):
    return _collect(server_id, "settings")


@metrics_bp.route("/servers/<server_id>/hardware")
def get_hardware(server_id: str):
    return _collect(server_id, "hardware")


@metrics_bp.route("/servers/<server_id>/issues")
def get_issues(server_id: str):
    return _collect(server_id, "issues")
