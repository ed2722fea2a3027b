"""
Activity logging for operator actions against monitored servers.

Adding or removing a server and running ``EXPLAIN ANALYZE`` (which really
executes the statement) are recorded as structured JSON lines so they can be
shipped to a log collector next to the application logs.
"""

import logging
import sys
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

activity_logger = logging.getLogger("dbpulse.activity")
activity_logger.setLevel(logging.INFO)

# Activity lines are emitted once, as JSON, never through the root logger
activity_logger.propagate = False

log_handler = logging.StreamHandler(sys.stdout)
formatter = jsonlogger.JsonFormatter(
    fmt="%(asctime)s %(levelname)s %(name)s %(message)s", datefmt="%Y-%m-%dT%H:%M:%S%z"
)
log_handler.setFormatter(formatter)
activity_logger.addHandler(log_handler)


def log_activity(
    action: str,
    server_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    status: str = "success",
) -> None:
    """
    Log a structured activity event.

    :param action: The action performed (e.g., "add_server", "explain_analyze")
    :param server_id: The server the action targeted, if any
    :param details: Additional context (never includes passwords)
    :param status: "success" or "failure"
    """
    event_data = {
        "event_type": "activity",
        "action": action,
        "server_id": server_id,
        "status": status,
        "details": details or {},
    }

    message = f"{action} on server {server_id or '-'}: {status}"
    activity_logger.info(message, extra=event_data)
