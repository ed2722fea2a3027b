"""Server configuration (``pg_settings``) and a rough hardware estimate."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from sqlalchemy import text

from dbpulse.core.errors import BackendError
from dbpulse.database.connection import get_engine

logger = logging.getLogger(__name__)

# Used when shared_buffers cannot be read
DEFAULT_MEMORY_MB = 8192

SETTINGS_SQL = """
    SELECT
        name,
        setting,
        unit,
        category,
        short_desc,
        source,
        min_val,
        max_val
    FROM pg_settings
    ORDER BY category, name
"""

BACKENDS_SQL = "SELECT count(*) FROM pg_stat_activity WHERE state IS NOT NULL"

SHARED_BUFFERS_MB_SQL = "SELECT setting::bigint * 8 / 1024 FROM pg_settings WHERE name = 'shared_buffers'"


def get_all_settings(server_id: str) -> List[Dict[str, Any]]:
    engine = get_engine(server_id)
    try:
        with engine.connect() as conn:
            return [dict(row) for row in conn.execute(text(SETTINGS_SQL)).mappings()]
    except Exception as exc:
        raise BackendError(f"Failed to query settings: {exc}") from exc


def get_hardware_info(server_id: str) -> Dict[str, Any]:
    """
    Estimate the host's resources from inside PostgreSQL.

    PostgreSQL does not expose CPU or RAM, so: cores = active backends (at
    least 1), memory = 4x shared_buffers.
    """
    engine = get_engine(server_id)
    with engine.connect() as conn:
        try:
            version = conn.execute(text("SELECT version()")).scalar_one()
        except Exception as exc:
            raise BackendError(f"Failed to get version: {exc}") from exc

        try:
            backends = conn.execute(text(BACKENDS_SQL)).scalar_one()
        except Exception as exc:
            raise BackendError(f"Failed to get CPU info: {exc}") from exc

        try:
            shared_buffers_mb = conn.execute(text(SHARED_BUFFERS_MB_SQL)).scalar()
        except Exception:
            logger.debug(f"Could not read shared_buffers on {server_id}", exc_info=True)
            conn.rollback()
            shared_buffers_mb = None

    total_memory_mb = int(shared_buffers_mb) * 4 if shared_buffers_mb is not None else DEFAULT_MEMORY_MB

    return {
        "cpu_cores": max(int(backends), 1),
        "total_memory_mb": total_memory_mb,
        "postgres_version": version,
        "os_type": "Linux",
    }
