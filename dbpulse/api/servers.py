from flask import Blueprint, jsonify, request

from dbpulse.core.errors import BackendError, ServerNotFoundError
from dbpulse.database.connection import (
    add_server,
    get_server_info,
    list_servers,
    parse_server_config,
    reconnect_server,
    remove_server,
    test_connection,
)

servers_bp = Blueprint("servers", __name__)


@servers_bp.route("/servers")
def get_servers():
    return jsonify(list_servers())


@servers_bp.route("/servers", methods=["POST"])
def create_server():
    try:
        config = parse_server_config(request.get_json(silent=True) or {})
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    try:
        server_id = add_server(config)
    except BackendError as exc:
        return jsonify({"error": str(exc)}), 500

    return jsonify({"id": server_id, "server": get_server_info(server_id)}), 201


@servers_bp.route("/servers/test", methods=["POST"])
def api_test_connection():
    try:
        config = parse_server_config(request.get_json(silent=True) or {})
    except ValueError as exc:
        return jsonify({"success": False, "message": str(exc)}), 400
    return jsonify(test_connection(config))


@servers_bp.route("/servers/<server_id>")
def get_server(server_id: str):
    info = get_server_info(server_id)
    if info is None:
        return jsonify({"error": f"Server {server_id} not found"}), 404
    return jsonify(info)


@servers_bp.route("/servers/<server_id>", methods=["DELETE"])
def delete_server(server_id: str):
    name = remove_server(server_id)
    if name is None:
        return jsonify({"error": f"Server {server_id} not found"}), 404
    return jsonify({"success": True, "name": name})


@servers_bp.route("/servers/<server_id>/reconnect", methods=["POST"])
def api_reconnect_server(server_id: str):
    try:
        return jsonify(reconnect_server(server_id))
    except ServerNotFoundError as exc:
        return jsonify({"error": str(exc)}), 404
    except BackendError as exc:
        return jsonify({"error": str(exc)}), 500
