"""
SQLite-backed persistent storage for saved PostgreSQL servers.

Connection details (host, port, database, username, password) are stored
encrypted.  The display name and SSL flag are stored in plaintext.

Schema::

    saved_servers(
        server_id     TEXT PRIMARY KEY,
        name          TEXT NOT NULL,
        host_enc      TEXT NOT NULL,
        port_enc      TEXT NOT NULL,
        database_enc  TEXT NOT NULL,
        username_enc  TEXT NOT NULL,
        password_enc  TEXT,
        use_ssl       INTEGER NOT NULL DEFAULT 0,
        created_at    TEXT NOT NULL
    )
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

from cryptography.fernet import InvalidToken

from dbpulse.core.crypto import decrypt, decrypt_optional, encrypt, encrypt_optional

logger = logging.getLogger(__name__)

_db_path: Path | None = None

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS saved_servers (
    server_id       TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    host_enc        TEXT NOT NULL,
    port_enc        TEXT NOT NULL,
    database_enc    TEXT NOT NULL,
    username_enc    TEXT NOT NULL,
    password_enc    TEXT,
    use_ssl         INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT NOT NULL
)
"""


def init_storage(data_dir: str | Path) -> None:
    """Create the data directory and initialize the SQLite schema."""
    global _db_path
    data_dir = Path(data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)
    _db_path = data_dir / "servers.db"

    with _get_conn() as conn:
        conn.execute(_CREATE_TABLE)


def _get_conn() -> sqlite3.Connection:
    if _db_path is None:
        raise RuntimeError("Storage not initialised, call init_storage() first.")
    return sqlite3.connect(str(_db_path))


# ------------------------------------------------------------------
# Write operations
# ------------------------------------------------------------------


def save_server(server_id: str, config: Dict[str, Any]) -> None:
    """Encrypt the connection details and insert/replace into SQLite."""
    with _get_conn() as conn:
        conn.execute(
            """
            INSERT OR REPLACE INTO saved_servers
                (server_id, name, host_enc, port_enc, database_enc,
                 username_enc, password_enc, use_ssl, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                server_id,
                config["name"],
                encrypt(config["host"]),
                encrypt(str(config["port"])),
                encrypt(config["database"]),
                encrypt(config["username"]),
                encrypt_optional(config.get("password")),
                1 if config.get("use_ssl") else 0,
                datetime.now().isoformat(),
            ),
        )


def delete_server(server_id: str) -> bool:
    """Remove a saved server.  Returns True if a row was deleted."""
    with _get_conn() as conn:
        cur = conn.execute("DELETE FROM saved_servers WHERE server_id = ?", (server_id,))
        return cur.rowcount > 0


# ------------------------------------------------------------------
# Read operations
# ------------------------------------------------------------------


def load_all_servers() -> List[Dict[str, Any]]:
    """
    Read every saved server and decrypt it into a dict ready for
    ``connection.register_server()``.

    Rows that cannot be decrypted (key changed?) are skipped.
    """
    with _get_conn() as conn:
        conn.row_factory = sqlite3.Row
        rows = conn.execute("SELECT * FROM saved_servers ORDER BY created_at").fetchall()

    results: List[Dict[str, Any]] = []
    for row in rows:
        try:
            results.append(
                {
                    "id": row["server_id"],
                    "name": row["name"],
                    "host": decrypt(row["host_enc"]),
                    "port": int(decrypt(row["port_enc"])),
                    "database": decrypt(row["database_enc"]),
                    "username": decrypt(row["username_enc"]),
                    "password": decrypt_optional(row["password_enc"]),
                    "use_ssl": bool(row["use_ssl"]),
                }
            )
        except (InvalidToken, ValueError):
            logger.warning(f"Skipping server {row['server_id']}: decryption failed")

    return results
