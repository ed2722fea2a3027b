"""Error types shared across the dashboard."""

from __future__ import annotations


class DbPulseError(Exception):
    """Base class for every error raised by db-pulse."""


class BackendError(DbPulseError):
    """A call to a monitored server failed.

    The message is shown to the operator verbatim, so it is kept as the
    human-readable cause (``"Failed to query locks: ..."``).
    """


class ServerNotFoundError(BackendError):
    """No server is registered under the requested id."""

    def __init__(self, server_id: str):
        super().__init__(f"Server {server_id} not found")
        self.server_id = server_id


class MalformedPlanError(DbPulseError):
    """A raw execution plan is missing its root or a required estimate field."""

    def __init__(self, message: str, path: str = "Plan"):
        super().__init__(f"{path}: {message}")
        self.path = path


class SchedulerMisuseError(RuntimeError):
    """The refresh scheduler was used outside of its required setup."""
