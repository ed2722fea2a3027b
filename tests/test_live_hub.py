import threading
import time
from types import SimpleNamespace

import pytest

from dbpulse.services.bridge import BackendBridge
from dbpulse.web.live import LiveHub
from tests.conftest import Recorder, wait_for


@pytest.fixture
def commands():
    calls = []

    def get_locks(server_id):
        calls.append(server_id)
        return [{"server": server_id, "call": len(calls)}]

    return {"get_locks": get_locks, "calls": calls}


@pytest.fixture
def hub(commands):
    recorder = Recorder()
    hub = LiveHub(BackendBridge({name: fn for name, fn in commands.items() if name != "calls"}), call_timeout=2)
    hub.init_app(SimpleNamespace(config={"REFRESH_INTERVAL_MS": 20, "HUB_CALL_TIMEOUT": 2}), recorder)
    hub.start()
    hub.recorder = recorder
    yield hub
    hub.stop()


def _settled(hub, sid):
    return [payload for payload in hub.recorder.of("metrics_update", to=sid) if payload["state"] == "settled"]


def test_subscribe_pushes_updates_to_the_subscriber(hub):
    hub.subscribe("sid-1", "locks", "srv-a", "locks")

    assert wait_for(lambda: _settled(hub, "sid-1"))
    update = _settled(hub, "sid-1")[0]
    assert update["channel"] == "locks"
    assert update["server_id"] == "srv-a"
    assert update["metric"] == "locks"
    assert update["data"][0]["server"] == "srv-a"
    assert update["error"] is None
    assert hub.recorder.of("metrics_update", to="sid-2") == []


def test_resubscribing_a_channel_switches_server(hub):
    hub.subscribe("sid-1", "locks", "srv-a", "locks", interval_ms=1000)
    assert wait_for(lambda: _settled(hub, "sid-1"))

    hub.subscribe("sid-1", "locks", "srv-b", "locks", interval_ms=1000)
    assert wait_for(lambda: _settled(hub, "sid-1")[-1]["server_id"] == "srv-b")
    assert len(hub.channels) == 1


def test_pausing_stops_fetches(hub, commands):
    hub.subscribe("sid-1", "locks", "srv-a", "locks", interval_ms=20)
    assert wait_for(lambda: len(commands["calls"]) >= 2)

    hub.set_live("sid-1", "locks", False)
    time.sleep(0.05)
    paused_at = len(commands["calls"])
    time.sleep(0.1)
    assert len(commands["calls"]) == paused_at
    assert _settled(hub, "sid-1")[-1]["live"] is True

    hub.refetch("sid-1", "locks")
    assert wait_for(lambda: len(commands["calls"]) == paused_at + 1)


def test_disconnect_disposes_client_channels(hub, commands):
    hub.subscribe("sid-1", "a", "srv-a", "locks", interval_ms=20)
    hub.subscribe("sid-1", "b", "srv-b", "locks", interval_ms=20)
    hub.subscribe("sid-2", "a", "srv-a", "locks", interval_ms=1000)

    assert hub.drop_client("sid-1") == 2
    assert list(hub.channels) == [("sid-2", "a")]
    assert hub.unsubscribe("sid-2", "a") is True
    assert hub.unsubscribe("sid-2", "a") is False


def test_unknown_metric_and_channel_are_rejected(hub):
    with pytest.raises(ValueError, match="Unknown metric"):
        hub.subscribe("sid-1", "x", "srv-a", "cpu_temperature")
    with pytest.raises(ValueError, match="Unknown channel"):
        hub.set_live("sid-1", "missing", True)


def test_only_latest_plan_request_is_delivered():
    release_first = threading.Event()

    def analyze_plan(server_id, query, analyze):
        if query == "SELECT slow":
            release_first.wait(2)
        return {"query": query}

    recorder = Recorder()
    hub = LiveHub(BackendBridge({"analyze_plan": analyze_plan}), call_timeout=2)
    hub.init_app(SimpleNamespace(config={}), recorder)
    hub.start()
    try:
        first = hub.explain("sid-1", "srv-a", "SELECT slow")
        second = hub.explain("sid-1", "srv-a", "SELECT fast")
        assert second > first

        assert wait_for(lambda: recorder.of("plan_result"))
        release_first.set()
        time.sleep(0.1)

        results = recorder.of("plan_result", to="sid-1")
        assert [result["plan"]["query"] for result in results] == ["SELECT fast"]
        assert results[0]["request"] == second
    finally:
        hub.stop()


def test_plan_errors_are_reported():
    def analyze_plan(server_id, query, analyze):
        raise RuntimeError("relation \"nope\" does not exist")

    recorder = Recorder()
    hub = LiveHub(BackendBridge({"analyze_plan": analyze_plan}), call_timeout=2)
    hub.init_app(SimpleNamespace(config={}), recorder)
    hub.start()
    try:
        hub.explain("sid-1", "srv-a", "SELECT * FROM nope")
        assert wait_for(lambda: recorder.of("plan_error"))
        assert recorder.of("plan_error")[0]["error"] == 'relation "nope" does not exist'
    finally:
        hub.stop()
