import pytest

from dbpulse.api import servers as servers_api
from dbpulse.core.errors import BackendError, MalformedPlanError, ServerNotFoundError
from dbpulse.services import bridge

SERVER_FORM = {"name": "Primary", "host": "db", "port": 5432, "database": "app", "username": "monitor", "password": "pw"}


def test_get_server(client, registered_server):
    response = client.get(f"/api/servers/{registered_server}")
    assert response.status_code == 200
    body = response.get_json()
    assert body["id"] == registered_server
    assert "password" not in body


def test_get_unknown_server(client):
    response = client.get("/api/servers/ghost")
    assert response.status_code == 404
    assert response.get_json() == {"error": "Server ghost not found"}


def test_create_server_validates_payload(client):
    response = client.post("/api/servers", json={"name": "x"})
    assert response.status_code == 400
    assert "Missing required field" in response.get_json()["error"]


def test_create_server(client, monkeypatch, registered_server):
    monkeypatch.setattr(servers_api, "add_server", lambda config: registered_server)
    response = client.post("/api/servers", json=SERVER_FORM)
    assert response.status_code == 201
    assert response.get_json()["id"] == registered_server


def test_create_server_backend_failure(client, monkeypatch):
    def refuse(config):
        raise BackendError("Failed to get connection from pool: refused")

    monkeypatch.setattr(servers_api, "add_server", refuse)
    response = client.post("/api/servers", json=SERVER_FORM)
    assert response.status_code == 500
    assert response.get_json()["error"] == "Failed to get connection from pool: refused"


def test_test_connection(client, monkeypatch):
    monkeypatch.setattr(
        servers_api,
        "test_connection",
        lambda config: {"success": True, "message": "Connection successful", "postgres_version": "PostgreSQL 16"},
    )
    response = client.post("/api/servers/test", json=SERVER_FORM)
    assert response.get_json()["success"] is True


def test_delete_server(client, monkeypatch, registered_server):
    monkeypatch.setattr("dbpulse.database.storage.delete_server", lambda server_id: True)
    assert client.delete(f"/api/servers/{registered_server}").get_json() == {"success": True, "name": "Primary"}
    assert client.delete(f"/api/servers/{registered_server}").status_code == 404


def test_reconnect_unknown_server(client):
    assert client.post("/api/servers/ghost/reconnect").status_code == 404


def test_metric_endpoint_passes_limit(client, monkeypatch):
    seen = {}

    def get_top_queries(server_id, limit=None):
        seen.update(server_id=server_id, limit=limit)
        return [{"query": "SELECT 1", "calls": 10}]

    monkeypatch.setitem(bridge.COMMANDS, "get_top_queries", get_top_queries)
    response = client.get("/api/servers/srv1/metrics/top_queries?limit=3")

    assert response.status_code == 200
    assert response.get_json() == [{"query": "SELECT 1", "calls": 10}]
    assert seen == {"server_id": "srv1", "limit": 3}


@pytest.mark.parametrize(
    "exc, status",
    [
        (ServerNotFoundError("srv1"), 404),
        (BackendError("pg_stat_statements extension is not installed"), 500),
    ],
)
def test_metric_endpoint_errors(client, monkeypatch, exc, status):
    def failing(server_id, limit=None):
        raise exc

    monkeypatch.setitem(bridge.COMMANDS, "get_top_queries", failing)
    response = client.get("/api/servers/srv1/metrics/top_queries")
    assert response.status_code == status
    assert response.get_json()["error"] == str(exc)


def test_unknown_metric(client):
    assert client.get("/api/servers/srv1/metrics/cpu_temperature").status_code == 404


def test_settings_hardware_and_issues_routes(client, monkeypatch):
    monkeypatch.setitem(bridge.COMMANDS, "get_all_settings", lambda server_id: [{"name": "work_mem"}])
    monkeypatch.setitem(bridge.COMMANDS, "get_hardware_info", lambda server_id: {"cpu_cores": 4})
    monkeypatch.setitem(bridge.COMMANDS, "get_issues", lambda server_id: {"configuration": [], "performance": []})

    assert client.get("/api/servers/srv1/settings").get_json() == [{"name": "work_mem"}]
    assert client.get("/api/servers/srv1/hardware").get_json() == {"cpu_cores": 4}
    assert client.get("/api/servers/srv1/issues").get_json() == {"configuration": [], "performance": []}


def test_explain_requires_query(client):
    assert client.post("/api/servers/srv1/explain", json={}).status_code == 400


def test_explain_returns_rendered_plan(client, monkeypatch):
    calls = []

    def analyze_plan(server_id, query, analyze):
        calls.append((server_id, query, analyze))
        return {"mode": "EXPLAIN ANALYZE", "rows": []}

    monkeypatch.setitem(bridge.COMMANDS, "analyze_plan", analyze_plan)
    response = client.post("/api/servers/srv1/explain", json={"query": "SELECT 1", "analyze": True})

    assert response.status_code == 200
    assert response.get_json()["mode"] == "EXPLAIN ANALYZE"
    assert calls == [("srv1", "SELECT 1", True)]


def test_explain_malformed_plan_is_422(client, monkeypatch):
    def analyze_plan(server_id, query, analyze):
        raise MalformedPlanError("missing root node", "Plan")

    monkeypatch.setitem(bridge.COMMANDS, "analyze_plan", analyze_plan)
    response = client.post("/api/servers/srv1/explain", json={"query": "SELECT 1"})
    assert response.status_code == 422
    assert response.get_json() == {"error": "Plan: missing root node", "path": "Plan"}


def test_explain_rejects_multiple_statements(client, registered_server):
    response = client.post(f"/api/servers/{registered_server}/explain", json={"query": "SELECT 1; DROP TABLE x"})
    assert response.status_code == 400
    assert response.get_json()["error"] == "Only a single statement can be explained"
