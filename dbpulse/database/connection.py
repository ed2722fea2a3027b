"""
Server connection management.

Keeps the runtime inventory of monitored PostgreSQL servers (registry, engine
cache, status tracking), builds engines, tests connections and persists saved
servers through :mod:`dbpulse.database.storage`.
"""

from __future__ import annotations

import logging
import random
import string
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.pool import NullPool

from dbpulse.core.audit import log_activity
from dbpulse.core.errors import BackendError, ServerNotFoundError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Runtime stores  (populated from SQLite on startup via load_saved_servers)
# ---------------------------------------------------------------------------

# { server_id: { name, host, port, database, username, password, use_ssl, postgres_version } }
SERVERS: Dict[str, Dict[str, Any]] = {}

# Cached SQLAlchemy Engine instances
engines: Dict[str, Engine] = {}

# { server_id: { connected, last_check, error } }
server_status: Dict[str, Dict[str, Any]] = {}

# Called with ("added" | "removed", server_id) whenever the inventory changes
_registry_listeners: List[Callable[[str, str], None]] = []

REQUIRED_FIELDS = ("name", "host", "database", "username")
DEFAULT_PORT = 5432

# 16 connections per monitored server at most
POOL_SIZE = 4
POOL_MAX_OVERFLOW = 12


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def generate_server_id() -> str:
    """Generate a random 12-char id for a new server."""
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=12))


def parse_server_config(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate and normalise a server form payload.

    Raises ``ValueError`` naming the first problem found.
    """
    missing = [key for key in REQUIRED_FIELDS if not str(data.get(key) or "").strip()]
    if missing:
        raise ValueError(f"Missing required field(s): {', '.join(missing)}")

    try:
        port = int(data.get("port") or DEFAULT_PORT)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid port: {data.get('port')!r}") from None
    if not 0 < port < 65536:
        raise ValueError(f"Invalid port: {port}")

    return {
        "id": (data.get("id") or "").strip() or None,
        "name": data["name"].strip(),
        "host": data["host"].strip(),
        "port": port,
        "database": data["database"].strip(),
        "username": data["username"].strip(),
        "password": data.get("password") or "",
        "use_ssl": bool(data.get("use_ssl", False)),
    }


def build_connection_url(config: Dict[str, Any]) -> URL:
    return URL.create(
        "postgresql+psycopg2",
        username=config["username"],
        password=config.get("password") or None,
        host=config["host"],
        port=config.get("port", DEFAULT_PORT),
        database=config["database"],
    )


def _connect_args(config: Dict[str, Any]) -> Dict[str, Any]:
    from dbpulse.core.config import Config

    connect_args: Dict[str, Any] = {
        "connect_timeout": Config.CONNECT_TIMEOUT,
        "application_name": "db-pulse",
    }
    if config.get("use_ssl") or Config.ENFORCE_DB_SSL:
        connect_args["sslmode"] = "require"
    if Config.SSL_CA_BUNDLE:
        connect_args["sslrootcert"] = Config.SSL_CA_BUNDLE
    return connect_args


def _create_engine(config: Dict[str, Any], *, pooled: bool = True) -> Engine:
    """Create an engine for *config*; pooled engines are what the collectors use."""
    kwargs: Dict[str, Any] = {"echo": False, "connect_args": _connect_args(config)}
    if pooled:
        kwargs.update(pool_size=POOL_SIZE, max_overflow=POOL_MAX_OVERFLOW, pool_pre_ping=True, pool_recycle=1800)
    else:
        kwargs["poolclass"] = NullPool

    engine = create_engine(build_connection_url(config), **kwargs)
    SQLAlchemyInstrumentor().instrument(engine=engine)
    return engine


def _dispose_engine(server_id: str) -> None:
    engine = engines.pop(server_id, None)
    if engine is not None:
        try:
            engine.dispose()
        except Exception:
            logger.warning(f"Failed to dispose engine for {server_id}", exc_info=True)


def _fetch_version(engine: Engine) -> str:
    with engine.connect() as conn:
        return conn.execute(text("SELECT version()")).scalar_one()


def _public_info(server_id: str, entry: Dict[str, Any]) -> Dict[str, Any]:
    status = server_status.get(server_id, {})
    return {
        "id": server_id,
        "name": entry["name"],
        "host": entry["host"],
        "port": entry["port"],
        "database": entry["database"],
        "username": entry["username"],
        "use_ssl": entry.get("use_ssl", False),
        "connected": bool(status.get("connected")),
        "postgres_version": entry.get("postgres_version"),
        "status": status,
    }


def _notify(event: str, server_id: str) -> None:
    for listener in list(_registry_listeners):
        try:
            listener(event, server_id)
        except Exception:
            logger.error(f"Registry listener failed for {event} {server_id}", exc_info=True)


def on_registry_change(listener: Callable[[str, str], None]) -> None:
    _registry_listeners.append(listener)


def remove_registry_listener(listener: Callable[[str, str], None]) -> None:
    if listener in _registry_listeners:
        _registry_listeners.remove(listener)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def test_connection(config: Dict[str, Any]) -> Dict[str, Any]:
    """Try to reach the server.  Never raises; returns {success, message, postgres_version}."""
    try:
        engine = _create_engine(config, pooled=False)
        try:
            version = _fetch_version(engine)
        finally:
            engine.dispose()
        return {"success": True, "message": "Connection successful", "postgres_version": version}
    except Exception as exc:
        return {"success": False, "message": f"Connection failed: {exc}", "postgres_version": None}


def get_engine(server_id: str) -> Engine:
    """Return (or lazily create) the cached engine for *server_id*."""
    if server_id not in engines:
        entry = SERVERS.get(server_id)
        if entry is None:
            raise ServerNotFoundError(server_id)
        try:
            engines[server_id] = _create_engine(entry)
        except Exception as exc:
            logger.error(f"Error creating engine for {server_id}", exc_info=True)
            raise BackendError(f"Failed to create pool: {exc}") from exc
    return engines[server_id]


def check_server_status(server_id: str) -> bool:
    """Ping the server and update ``server_status``."""
    if server_id not in SERVERS:
        raise ServerNotFoundError(server_id)

    try:
        engine = get_engine(server_id)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        server_status[server_id] = {
            "connected": True,
            "error": None,
            "last_check": datetime.now().isoformat(),
        }
        return True
    except Exception as exc:
        server_status[server_id] = {
            "connected": False,
            "error": str(exc),
            "last_check": datetime.now().isoformat(),
        }
        # Drop the pool so it gets recreated next time (DNS changes, stale sockets)
        _dispose_engine(server_id)
        return False


def register_server(config: Dict[str, Any], *, persist: bool = True, postgres_version: Optional[str] = None) -> str:
    """Put *config* into the runtime registry (and the encrypted store).  Returns the id."""
    server_id = config.get("id") or generate_server_id()
    SERVERS[server_id] = {
        "name": config["name"],
        "host": config["host"],
        "port": config["port"],
        "database": config["database"],
        "username": config["username"],
        "password": config.get("password", ""),
        "use_ssl": config.get("use_ssl", False),
        "postgres_version": postgres_version,
    }
    server_status.setdefault(server_id, {"connected": False, "last_check": None, "error": None})

    if persist:
        from dbpulse.database.storage import save_server

        save_server(server_id, SERVERS[server_id])

    _notify("added", server_id)
    return server_id


def add_server(config: Dict[str, Any]) -> str:
    """
    Connect to a new server, then register and persist it.

    Raises ``BackendError`` when the server cannot be reached; nothing is
    registered in that case.
    """
    engine = _create_engine(config)
    try:
        version = _fetch_version(engine)
    except Exception as exc:
        engine.dispose()
        log_activity("add_server", config.get("id"), {"host": config["host"]}, status="failure")
        raise BackendError(f"Failed to get connection from pool: {exc}") from exc

    old_id = config.get("id")
    if old_id:
        _dispose_engine(old_id)

    server_id = register_server(config, postgres_version=version)
    engines[server_id] = engine
    server_status[server_id] = {"connected": True, "error": None, "last_check": datetime.now().isoformat()}
    log_activity("add_server", server_id, {"host": config["host"], "database": config["database"]})
    return server_id


def remove_server(server_id: str) -> Optional[str]:
    """
    Remove a server from the registry **and** from persistent storage.

    Returns the display name if found, else *None*.
    """
    entry = SERVERS.pop(server_id, None)
    if entry is None:
        return None

    server_status.pop(server_id, None)
    _dispose_engine(server_id)

    try:
        from dbpulse.database.storage import delete_server

        delete_server(server_id)
    except Exception:
        logger.warning(f"Failed to delete persisted server {server_id}", exc_info=True)

    _notify("removed", server_id)
    log_activity("remove_server", server_id, {"name": entry["name"]})
    return entry["name"]


def reconnect_server(server_id: str) -> Dict[str, Any]:
    """Drop the pool and connect again.  Raises ``BackendError`` on failure."""
    entry = SERVERS.get(server_id)
    if entry is None:
        raise ServerNotFoundError(server_id)

    _dispose_engine(server_id)
    try:
        entry["postgres_version"] = _fetch_version(get_engine(server_id))
    except BackendError:
        raise
    except Exception as exc:
        server_status[server_id] = {"connected": False, "error": str(exc), "last_check": datetime.now().isoformat()}
        _dispose_engine(server_id)
        log_activity("reconnect_server", server_id, status="failure")
        raise BackendError(f"Failed to reconnect: {exc}") from exc

    server_status[server_id] = {"connected": True, "error": None, "last_check": datetime.now().isoformat()}
    log_activity("reconnect_server", server_id)
    return _public_info(server_id, entry)


def get_server_info(server_id: str) -> Optional[Dict[str, Any]]:
    entry = SERVERS.get(server_id)
    if entry is None:
        return None
    return _public_info(server_id, entry)


def list_servers() -> List[Dict[str, Any]]:
    servers = [_public_info(server_id, entry) for server_id, entry in SERVERS.items()]
    servers.sort(key=lambda info: info["name"].lower())
    return servers


def load_saved_servers() -> int:
    """
    Load servers from the encrypted SQLite store into the runtime registry.
    Connections are opened lazily on first use.

    Returns the number of servers loaded.
    """
    from dbpulse.database.storage import load_all_servers

    count = 0
    for row in load_all_servers():
        register_server(row, persist=False)
        count += 1

    if count:
        logger.info(f"Loaded {count} saved server(s).")
    return count
