"""
Asynchronous boundary between the refresh loop and the blocking backend.

Collectors are plain synchronous functions (SQLAlchemy + psycopg2).  The
bridge looks them up by command name and runs them in the event loop's
default executor, so a slow server never blocks the loop.  Every failure
reaches the caller as a :class:`BackendError` carrying the readable cause.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

from opentelemetry.trace import Status, StatusCode

from dbpulse.core.errors import BackendError, DbPulseError
from dbpulse.core.telemetry import bridge_instruments, get_tracer
from dbpulse.database import connection, metrics, settings
from dbpulse.services import explain, issues

logger = logging.getLogger(__name__)

COMMANDS: Dict[str, Callable[..., Any]] = {
    "test_connection": connection.test_connection,
    "check_server_status": connection.check_server_status,
    "get_database_stats": metrics.get_database_stats,
    "get_top_queries": metrics.get_top_queries,
    "get_active_queries": metrics.get_active_queries,
    "get_table_stats": metrics.get_table_stats,
    "get_index_stats": metrics.get_index_stats,
    "get_locks": metrics.get_locks,
    "get_bgwriter_stats": metrics.get_bgwriter_stats,
    "get_database_sizes": metrics.get_database_sizes,
    "get_dashboard_summary": metrics.get_dashboard_summary,
    "get_all_settings": settings.get_all_settings,
    "get_hardware_info": settings.get_hardware_info,
    "analyze_configuration": issues.analyze_configuration,
    "detect_performance_issues": issues.detect_performance_issues,
    "get_issues": issues.get_issues,
    "explain_query": explain.explain_query,
    "analyze_plan": explain.analyze_plan,
}

# Metric name (as used by REST paths and socket channels) -> (command, accepts ``limit``)
METRICS: Dict[str, Tuple[str, bool]] = {
    "database_stats": ("get_database_stats", False),
    "top_queries": ("get_top_queries", True),
    "active_queries": ("get_active_queries", False),
    "table_stats": ("get_table_stats", True),
    "index_stats": ("get_index_stats", True),
    "locks": ("get_locks", False),
    "bgwriter": ("get_bgwriter_stats", False),
    "database_sizes": ("get_database_sizes", False),
    "summary": ("get_dashboard_summary", False),
    "settings": ("get_all_settings", False),
    "hardware": ("get_hardware_info", False),
    "issues": ("get_issues", False),
}


def resolve(command: str) -> Callable[..., Any]:
    try:
        return COMMANDS[command]
    except KeyError:
        raise ValueError(f"Unknown backend command: {command}") from None


def metric_command(metric: str, limit: Optional[int] = None) -> Tuple[str, Dict[str, Any]]:
    """Map a metric name to ``(command, kwargs)``; ``limit`` is dropped where unsupported."""
    try:
        command, accepts_limit = METRICS[metric]
    except KeyError:
        raise ValueError(f"Unknown metric: {metric}") from None
    kwargs: Dict[str, Any] = {}
    if accepts_limit and limit is not None:
        kwargs["limit"] = limit
    return command, kwargs


class BackendBridge:
    """Runs named backend commands off the event loop."""

    def __init__(self, commands: Optional[Dict[str, Callable[..., Any]]] = None):
        self._commands = commands

    def _lookup(self, command: str) -> Callable[..., Any]:
        if self._commands is None:
            return resolve(command)
        try:
            return self._commands[command]
        except KeyError:
            raise ValueError(f"Unknown backend command: {command}") from None

    async def invoke(self, command: str, **kwargs: Any) -> Any:
        fn = self._lookup(command)
        calls, failures, duration = bridge_instruments()
        labels = {"command": command}
        calls.add(1, labels)

        loop = asyncio.get_running_loop()
        started = time.perf_counter()
        with get_tracer().start_as_current_span(f"bridge.{command}") as span:
            span.set_attribute("db_pulse.server_id", str(kwargs.get("server_id", "")))
            try:
                return await loop.run_in_executor(None, functools.partial(fn, **kwargs))
            except DbPulseError as exc:
                failures.add(1, labels)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                raise
            except Exception as exc:
                failures.add(1, labels)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                logger.warning(f"Backend command {command} failed", exc_info=True)
                raise BackendError(str(exc)) from exc
            finally:
                duration.record((time.perf_counter() - started) * 1000, labels)

    def fetcher(self, command: str, **kwargs: Any) -> Callable[[Hashable], Any]:
        """A refresh fetch function that calls *command* for its subject key (the server id)."""

        async def fetch(server_id: Hashable) -> Any:
            return await self.invoke(command, server_id=server_id, **kwargs)

        fetch.__name__ = f"fetch_{command}"
        return fetch
