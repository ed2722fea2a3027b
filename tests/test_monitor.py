from types import SimpleNamespace

from dbpulse.database import connection
from dbpulse.services.bridge import BackendBridge
from dbpulse.services.monitor import start_monitor
from dbpulse.web.live import LiveHub
from tests.conftest import Recorder, wait_for


def _fake_ping(results):
    def check_server_status(server_id):
        is_up = results.get(server_id, True)
        connection.server_status[server_id] = {"connected": is_up, "error": None if is_up else "down", "last_check": "now"}
        return is_up

    return check_server_status


def test_monitor_broadcasts_status_of_every_server(registered_server):
    recorder = Recorder()
    hub = LiveHub(BackendBridge({"check_server_status": _fake_ping({registered_server: False})}), call_timeout=2)
    hub.init_app(SimpleNamespace(config={}), recorder)
    monitor = start_monitor(hub, interval_ms=1000)
    try:
        assert wait_for(lambda: recorder.of("server_status_update"))
        update = recorder.of("server_status_update")[0]
        assert update["server_id"] == registered_server
        assert update["status"]["connected"] is False
    finally:
        monitor.stop()
        hub.stop()


def test_monitor_follows_registry_changes(registered_server, monkeypatch):
    recorder = Recorder()
    hub = LiveHub(BackendBridge({"check_server_status": _fake_ping({})}), call_timeout=2)
    hub.init_app(SimpleNamespace(config={}), recorder)
    monitor = start_monitor(hub, interval_ms=1000)
    try:
        connection.register_server(
            {"id": "srv2", "name": "Replica", "host": "h", "port": 5432, "database": "d", "username": "u"},
            persist=False,
        )
        assert wait_for(lambda: any(u["server_id"] == "srv2" for u in recorder.of("server_status_update")))
        assert set(monitor.handles) == {registered_server, "srv2"}

        monkeypatch.setattr("dbpulse.database.storage.delete_server", lambda server_id: True)
        connection.remove_server("srv2")
        assert set(monitor.handles) == {registered_server}
    finally:
        monitor.stop()
        hub.stop()
