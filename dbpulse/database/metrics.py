"""
Metric collectors for a monitored PostgreSQL server.

Every collector takes a ``server_id`` and returns plain JSON-ready data (lists
of dicts, or a dict).  Numeric columns are cast in SQL so that no ``Decimal``
or timestamp objects leak into the socket payloads.  Failures surface as
:class:`BackendError` with a ``"Failed to query <what>: <cause>"`` message.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import text

from dbpulse.core.config import Config
from dbpulse.core.errors import BackendError
from dbpulse.database.connection import get_engine

logger = logging.getLogger(__name__)

DATABASE_STATS_SQL = """
    SELECT
        datname,
        numbackends,
        xact_commit::bigint AS xact_commit,
        xact_rollback::bigint AS xact_rollback,
        blks_read::bigint AS blks_read,
        blks_hit::bigint AS blks_hit,
        tup_returned::bigint AS tup_returned,
        tup_fetched::bigint AS tup_fetched,
        tup_inserted::bigint AS tup_inserted,
        tup_updated::bigint AS tup_updated,
        tup_deleted::bigint AS tup_deleted,
        conflicts::bigint AS conflicts,
        temp_files::bigint AS temp_files,
        temp_bytes::bigint AS temp_bytes,
        deadlocks::bigint AS deadlocks
    FROM pg_stat_database
    WHERE datname NOT IN ('template0', 'template1')
"""

STATEMENTS_EXTENSION_SQL = "SELECT 1 FROM pg_extension WHERE extname = 'pg_stat_statements'"

TOP_QUERIES_SQL = """
    SELECT
        query,
        calls::bigint AS calls,
        total_exec_time::float8 AS total_exec_time,
        mean_exec_time::float8 AS mean_exec_time,
        min_exec_time::float8 AS min_exec_time,
        max_exec_time::float8 AS max_exec_time,
        rows::bigint AS rows,
        shared_blks_hit::bigint AS shared_blks_hit,
        shared_blks_read::bigint AS shared_blks_read
    FROM pg_stat_statements
    ORDER BY total_exec_time DESC
    LIMIT :limit
"""

ACTIVE_QUERIES_SQL = """
    SELECT
        pid,
        usename::text AS usename,
        application_name,
        client_addr::text AS client_addr,
        backend_start::text AS backend_start,
        state,
        query,
        wait_event_type,
        wait_event
    FROM pg_stat_activity
    WHERE state != 'idle'
    AND pid != pg_backend_pid()
"""

TABLE_STATS_SQL = """
    SELECT
        schemaname::text AS schemaname,
        relname::text AS relname,
        seq_scan::bigint AS seq_scan,
        seq_tup_read::bigint AS seq_tup_read,
        idx_scan::bigint AS idx_scan,
        idx_tup_fetch::bigint AS idx_tup_fetch,
        n_tup_ins::bigint AS n_tup_ins,
        n_tup_upd::bigint AS n_tup_upd,
        n_tup_del::bigint AS n_tup_del,
        n_live_tup::bigint AS n_live_tup,
        n_dead_tup::bigint AS n_dead_tup,
        last_vacuum::text AS last_vacuum,
        last_autovacuum::text AS last_autovacuum
    FROM pg_stat_user_tables
    ORDER BY seq_tup_read DESC
    LIMIT :limit
"""

INDEX_STATS_SQL = """
    SELECT
        schemaname::text AS schemaname,
        relname::text AS tablename,
        indexrelname::text AS indexname,
        idx_scan::bigint AS idx_scan,
        idx_tup_read::bigint AS idx_tup_read,
        idx_tup_fetch::bigint AS idx_tup_fetch
    FROM pg_stat_user_indexes
    ORDER BY idx_scan DESC
    LIMIT :limit
"""

LOCKS_SQL = """
    SELECT
        l.locktype,
        d.datname::text AS database,
        l.relation::regclass::text AS relation,
        l.pid,
        l.mode,
        l.granted
    FROM pg_locks l
    LEFT JOIN pg_database d ON d.oid = l.database
    WHERE l.pid != pg_backend_pid()
"""

BGWRITER_SQL = """
    SELECT
        checkpoints_timed::bigint AS checkpoints_timed,
        checkpoints_req::bigint AS checkpoints_req,
        checkpoint_write_time::float8 AS checkpoint_write_time,
        checkpoint_sync_time::float8 AS checkpoint_sync_time,
        buffers_checkpoint::bigint AS buffers_checkpoint,
        buffers_clean::bigint AS buffers_clean,
        maxwritten_clean::bigint AS maxwritten_clean,
        buffers_backend::bigint AS buffers_backend,
        buffers_alloc::bigint AS buffers_alloc
    FROM pg_stat_bgwriter
"""

# PostgreSQL 17 moved the checkpoint counters to pg_stat_checkpointer
BGWRITER_PG17_SQL = """
    SELECT
        c.num_timed::bigint AS checkpoints_timed,
        c.num_requested::bigint AS checkpoints_req,
        c.write_time::float8 AS checkpoint_write_time,
        c.sync_time::float8 AS checkpoint_sync_time,
        c.buffers_written::bigint AS buffers_checkpoint,
        b.buffers_clean::bigint AS buffers_clean,
        b.maxwritten_clean::bigint AS maxwritten_clean,
        NULL::bigint AS buffers_backend,
        b.buffers_alloc::bigint AS buffers_alloc
    FROM pg_stat_bgwriter b, pg_stat_checkpointer c
"""

DATABASE_SIZES_SQL = """
    SELECT
        datname AS database_name,
        pg_database_size(datname) AS size_bytes,
        pg_size_pretty(pg_database_size(datname)) AS size_pretty
    FROM pg_database
    WHERE datname NOT IN ('template0', 'template1')
    ORDER BY pg_database_size(datname) DESC
"""


def _fetch_all(server_id: str, what: str, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    engine = get_engine(server_id)
    try:
        with engine.connect() as conn:
            result = conn.execute(text(sql), params or {})
            return [dict(row) for row in result.mappings()]
    except Exception as exc:
        logger.debug(f"Query for {what} failed on {server_id}", exc_info=True)
        raise BackendError(f"Failed to query {what}: {exc}") from exc


def _limit(limit: Optional[int]) -> int:
    if limit is None:
        return Config.TOP_QUERY_LIMIT
    limit = int(limit)
    if limit < 1:
        raise ValueError(f"limit must be positive, got {limit}")
    return limit


# ---------------------------------------------------------------------------
# Collectors
# ---------------------------------------------------------------------------


def get_database_stats(server_id: str) -> List[Dict[str, Any]]:
    return _fetch_all(server_id, "database stats", DATABASE_STATS_SQL)


def get_top_queries(server_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Slowest statements by total execution time.  Needs ``pg_stat_statements``."""
    installed = _fetch_all(server_id, "pg_stat_statements availability", STATEMENTS_EXTENSION_SQL)
    if not installed:
        raise BackendError("pg_stat_statements extension is not installed")
    return _fetch_all(server_id, "pg_stat_statements", TOP_QUERIES_SQL, {"limit": _limit(limit)})


def get_active_queries(server_id: str) -> List[Dict[str, Any]]:
    return _fetch_all(server_id, "active queries", ACTIVE_QUERIES_SQL)


def get_table_stats(server_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    return _fetch_all(server_id, "table stats", TABLE_STATS_SQL, {"limit": _limit(limit)})


def get_index_stats(server_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    return _fetch_all(server_id, "index stats", INDEX_STATS_SQL, {"limit": _limit(limit)})


def get_locks(server_id: str) -> List[Dict[str, Any]]:
    return _fetch_all(server_id, "locks", LOCKS_SQL)


def get_bgwriter_stats(server_id: str) -> Dict[str, Any]:
    version = _fetch_all(server_id, "server version", "SELECT current_setting('server_version_num')::int AS num")
    sql = BGWRITER_PG17_SQL if version and version[0]["num"] >= 170000 else BGWRITER_SQL
    rows = _fetch_all(server_id, "bgwriter stats", sql)
    if not rows:
        raise BackendError("Failed to query bgwriter stats: no rows returned")
    return rows[0]


def get_database_sizes(server_id: str) -> List[Dict[str, Any]]:
    return _fetch_all(server_id, "database sizes", DATABASE_SIZES_SQL)


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


def summarize(database_stats: List[Dict[str, Any]], database_sizes: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Fold per-database counters into the dashboard header figures.

    ``transactions`` is the cumulative commit + rollback count; the cache hit
    ratio is a percentage rounded to two decimals (0 when nothing was read).
    """
    connections = sum(row["numbackends"] or 0 for row in database_stats)
    commits = sum(row["xact_commit"] or 0 for row in database_stats)
    rollbacks = sum(row["xact_rollback"] or 0 for row in database_stats)
    blks_hit = sum(row["blks_hit"] or 0 for row in database_stats)
    blks_read = sum(row["blks_read"] or 0 for row in database_stats)

    total_blocks = blks_hit + blks_read
    cache_hit_ratio = round(blks_hit / total_blocks * 100, 2) if total_blocks > 0 else 0.0

    return {
        "connections": connections,
        "transactions": commits + rollbacks,
        "cache_hit_ratio": cache_hit_ratio,
        "database_size": database_sizes[0]["size_pretty"] if database_sizes else "0 B",
    }


def get_dashboard_summary(server_id: str) -> Dict[str, Any]:
    return summarize(get_database_stats(server_id), get_database_sizes(server_id))
