import threading
import time

import pytest

from dbpulse import create_app
from dbpulse.database import connection


@pytest.fixture(autouse=True)
def clean_registry():
    connection.SERVERS.clear()
    connection.engines.clear()
    connection.server_status.clear()
    yield
    connection.SERVERS.clear()
    connection.engines.clear()
    connection.server_status.clear()


@pytest.fixture
def app(tmp_path):
    app = create_app({"DATA_DIR": str(tmp_path), "TESTING": True})
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def registered_server():
    """A server present in the registry without any real connection behind it."""
    connection.register_server(
        {
            "id": "srv1",
            "name": "Primary",
            "host": "db.internal",
            "port": 5432,
            "database": "app",
            "username": "monitor",
            "password": "s3cret",
            "use_ssl": False,
        },
        persist=False,
        postgres_version="PostgreSQL 16.2",
    )
    return "srv1"


def plan_node(node_type="Seq Scan", cost=100.0, rows=100, children=None, **extra):
    node = {
        "Node Type": node_type,
        "Startup Cost": 0.0,
        "Total Cost": cost,
        "Plan Rows": rows,
        "Plan Width": 8,
    }
    if children:
        node["Plans"] = children
    node.update(extra)
    return node


def measured(total_time, rows, loops=1, **extra):
    return {
        "Actual Startup Time": 0.01,
        "Actual Total Time": total_time,
        "Actual Rows": rows,
        "Actual Loops": loops,
        **extra,
    }


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class Recorder:
    """Stands in for ``socketio.emit`` and keeps every emitted event."""

    def __init__(self):
        self.events = []
        self.lock = threading.Lock()

    def emit(self, event, payload, to=None):
        with self.lock:
            self.events.append((event, payload, to))

    def of(self, event, to=None):
        with self.lock:
            return [payload for name, payload, sid in self.events if name == event and (to is None or sid == to)]
