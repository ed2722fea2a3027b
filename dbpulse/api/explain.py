from flask import Blueprint, jsonify, request

from dbpulse.core.errors import BackendError, MalformedPlanError, ServerNotFoundError
from dbpulse.services.bridge import resolve

explain_bp = Blueprint("explain", __name__)


@explain_bp.route("/servers/<server_id>/explain", methods=["POST"])
def explain(server_id: str):
    data = request.get_json(silent=True) or {}
    query = data.get("query")
    if not isinstance(query, str) or not query.strip():
        return jsonify({"error": "Query is required"}), 400

    try:
        plan = resolve("analyze_plan")(server_id, query, bool(data.get("analyze", False)))
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    except MalformedPlanError as exc:
        return jsonify({"error": str(exc), "path": exc.path}), 422
    except ServerNotFoundError as exc:
        return jsonify({"error": str(exc)}), 404
    except BackendError as exc:
        return jsonify({"error": str(exc)}), 500

    return jsonify(plan)
