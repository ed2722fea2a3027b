"""Periodic status checks for every registered server."""

from __future__ import annotations

import logging
from typing import Dict

from dbpulse.core.telemetry import get_meter
from dbpulse.database import connection
from dbpulse.refresh import RefreshHandle, RefreshOptions, RefreshSnapshot, RefreshState

logger = logging.getLogger(__name__)

# OpenTelemetry Metrics
meter = get_meter()
server_ping_counter = meter.create_counter(
    "db_pulse.ping.count",
    description="Number of server pings performed",
)
server_failure_counter = meter.create_counter(
    "db_pulse.ping.failures",
    description="Number of server ping failures",
)


class ServerStatusMonitor:
    """
    Keeps one refresh subscription per registered server.  Each settled
    ping is broadcast to every client as ``server_status_update``.
    """

    def __init__(self, hub, interval_ms: int = 5000):
        self.hub = hub
        self.interval_ms = interval_ms
        self.handles: Dict[str, RefreshHandle] = {}

    def start(self) -> None:
        connection.on_registry_change(self._on_registry_change)
        for server_id in list(connection.SERVERS):
            self.hub.run(self._watch, server_id)

    def stop(self) -> None:
        connection.remove_registry_listener(self._on_registry_change)
        if self.hub.running:
            self.hub.run(self._unwatch_all)

    def _on_registry_change(self, event: str, server_id: str) -> None:
        if not self.hub.running:
            return
        if event == "added":
            self.hub.run(self._watch, server_id)
        elif event == "removed":
            self.hub.run(self._unwatch, server_id)

    def _watch(self, server_id: str) -> None:
        if server_id in self.handles:
            # re-registered (edited) server: check it again right away
            self.handles[server_id].refetch_now()
            return
        self.handles[server_id] = self.hub.scheduler.start(
            server_id,
            self.hub.bridge.fetcher("check_server_status"),
            RefreshOptions(interval_ms=self.interval_ms),
            on_update=self._on_update,
        )

    def _unwatch(self, server_id: str) -> None:
        handle = self.handles.pop(server_id, None)
        if handle is not None:
            self.hub.scheduler.dispose(handle)

    def _unwatch_all(self) -> None:
        for server_id in list(self.handles):
            self._unwatch(server_id)

    def _on_update(self, snapshot: RefreshSnapshot) -> None:
        if snapshot.state != RefreshState.SETTLED:
            return
        server_id = snapshot.subject_key
        is_up = snapshot.error is None and bool(snapshot.data)

        labels = {"server_id": server_id}
        server_ping_counter.add(1, labels)
        if not is_up:
            server_failure_counter.add(1, labels)

        status = connection.server_status.get(server_id)
        if status is None:
            return
        self.hub.emit("server_status_update", {"server_id": server_id, "status": status})


def start_monitor(hub, interval_ms: int = 5000) -> ServerStatusMonitor:
    """Start watching every registered server on the live hub and return the monitor."""
    hub.start()
    monitor = ServerStatusMonitor(hub, interval_ms=interval_ms)
    monitor.start()
    return monitor
