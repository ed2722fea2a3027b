"""
Configuration advice and performance issue detection.

The configuration rules are pure functions over a ``pg_settings`` value and
the hardware estimate from :func:`dbpulse.database.settings.get_hardware_info`;
the performance checks query the server's statistics views.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import text

from dbpulse.database.connection import get_engine
from dbpulse.database.settings import get_all_settings, get_hardware_info

logger = logging.getLogger(__name__)

CACHE_HIT_THRESHOLD = 90.0


class Severity(str, Enum):
    CRITICAL = "Critical"
    WARNING = "Warning"
    INFO = "Info"


@dataclass
class ConfigIssue:
    parameter: str
    current_value: str
    recommended_value: str
    severity: Severity
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data


@dataclass
class PerformanceIssue:
    issue_type: str
    severity: Severity
    description: str
    recommendation: str
    details: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data


# ---------------------------------------------------------------------------
# Configuration rules
# ---------------------------------------------------------------------------


def _as_int(value: str) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def check_shared_buffers(setting: str, hardware: Dict[str, Any]) -> List[ConfigIssue]:
    """``setting`` is in 8kB blocks.  Recommended: 25% of RAM, capped at 8GB."""
    blocks = _as_int(setting)
    if blocks is None:
        return []
    current_mb = blocks * 8 // 1024
    recommended_mb = int(min(hardware["total_memory_mb"] * 0.25, 8192.0))
    if current_mb >= recommended_mb // 2:
        return []
    return [
        ConfigIssue(
            parameter="shared_buffers",
            current_value=f"{current_mb}MB",
            recommended_value=f"{recommended_mb}MB",
            severity=Severity.WARNING,
            reason="shared_buffers is too low. Recommended: 25% of RAM (max 8GB)",
        )
    ]


def check_effective_cache_size(setting: str, hardware: Dict[str, Any]) -> List[ConfigIssue]:
    blocks = _as_int(setting)
    if blocks is None:
        return []
    current_mb = blocks * 8 // 1024
    recommended_mb = int(hardware["total_memory_mb"] * 0.75)
    if current_mb >= recommended_mb // 2:
        return []
    return [
        ConfigIssue(
            parameter="effective_cache_size",
            current_value=f"{current_mb}MB",
            recommended_value=f"{recommended_mb}MB",
            severity=Severity.INFO,
            reason="effective_cache_size is low. Recommended: 50-75% of total RAM",
        )
    ]


def check_work_mem(setting: str, hardware: Dict[str, Any]) -> List[ConfigIssue]:
    kb = _as_int(setting)
    if kb is None:
        return []
    current_mb = kb // 1024
    if current_mb >= 4:
        return []
    return [
        ConfigIssue(
            parameter="work_mem",
            current_value=f"{current_mb}MB",
            recommended_value="10-50MB",
            severity=Severity.INFO,
            reason="work_mem is very low, may affect sort and hash operations",
        )
    ]


def check_max_connections(setting: str, hardware: Dict[str, Any]) -> List[ConfigIssue]:
    max_conn = _as_int(setting)
    if max_conn is None:
        return []
    recommended = min(hardware["cpu_cores"] * 50, 200)
    if max_conn <= recommended * 2:
        return []
    return [
        ConfigIssue(
            parameter="max_connections",
            current_value=str(max_conn),
            recommended_value=str(recommended),
            severity=Severity.WARNING,
            reason="max_connections is very high, may cause resource exhaustion",
        )
    ]


CONFIG_RULES = {
    "shared_buffers": check_shared_buffers,
    "effective_cache_size": check_effective_cache_size,
    "work_mem": check_work_mem,
    "max_connections": check_max_connections,
}


def evaluate_configuration(settings: List[Dict[str, Any]], hardware: Dict[str, Any]) -> List[ConfigIssue]:
    by_name = {row["name"]: row["setting"] for row in settings}
    issues: List[ConfigIssue] = []
    for name, rule in CONFIG_RULES.items():
        if name in by_name:
            issues.extend(rule(by_name[name], hardware))
    return issues


def analyze_configuration(server_id: str) -> List[Dict[str, Any]]:
    settings = get_all_settings(server_id)
    hardware = get_hardware_info(server_id)
    return [issue.to_dict() for issue in evaluate_configuration(settings, hardware)]


# ---------------------------------------------------------------------------
# Performance checks
# ---------------------------------------------------------------------------

CACHE_HIT_SQL = """
    SELECT
        (sum(blks_hit)::float8 / NULLIF(sum(blks_hit + blks_read), 0) * 100) AS cache_hit_ratio
    FROM pg_stat_database
"""

SEQ_SCAN_SQL = """
    SELECT schemaname::text, relname::text, seq_scan::bigint, seq_tup_read::bigint
    FROM pg_stat_user_tables
    WHERE seq_scan > 1000 AND seq_tup_read > 100000
    ORDER BY seq_tup_read DESC
    LIMIT 5
"""

UNUSED_INDEX_SQL = """
    SELECT schemaname::text, relname::text, indexrelname::text
    FROM pg_stat_user_indexes
    WHERE idx_scan = 0 AND indexrelname NOT LIKE '%\\_pkey'
    LIMIT 10
"""


def cache_hit_issue(ratio: Optional[float]) -> Optional[PerformanceIssue]:
    if ratio is None or ratio >= CACHE_HIT_THRESHOLD:
        return None
    return PerformanceIssue(
        issue_type="Low Cache Hit Ratio",
        severity=Severity.CRITICAL,
        description=f"Cache hit ratio is {ratio:.2f}%, should be > 90%",
        recommendation="Increase shared_buffers or investigate query patterns",
    )


def seq_scan_issue(schema: str, table: str, seq_scan: int) -> PerformanceIssue:
    return PerformanceIssue(
        issue_type="High Sequential Scans",
        severity=Severity.WARNING,
        description=f"Table {schema}.{table} has {seq_scan} sequential scans",
        recommendation="Consider adding indexes to reduce sequential scans",
        details=f"Table: {schema}.{table}",
    )


def unused_index_issue(schema: str, table: str, index: str) -> PerformanceIssue:
    return PerformanceIssue(
        issue_type="Unused Index",
        severity=Severity.INFO,
        description=f"Index {index} on {schema}.{table} is never used",
        recommendation="Consider dropping unused indexes to improve write performance",
        details=f"Index: {index}",
    )


def detect_performance_issues(server_id: str) -> List[Dict[str, Any]]:
    """
    Run each check independently; a check that fails is logged and skipped
    so the others still report.
    """
    engine = get_engine(server_id)
    issues: List[PerformanceIssue] = []

    with engine.connect() as conn:
        try:
            issue = cache_hit_issue(conn.execute(text(CACHE_HIT_SQL)).scalar())
            if issue:
                issues.append(issue)
        except Exception:
            logger.warning(f"Cache hit check failed on {server_id}", exc_info=True)
            conn.rollback()

        try:
            for schema, table, seq_scan, _ in conn.execute(text(SEQ_SCAN_SQL)):
                issues.append(seq_scan_issue(schema, table, seq_scan))
        except Exception:
            logger.warning(f"Sequential scan check failed on {server_id}", exc_info=True)
            conn.rollback()

        try:
            for schema, table, index in conn.execute(text(UNUSED_INDEX_SQL)):
                issues.append(unused_index_issue(schema, table, index))
        except Exception:
            logger.warning(f"Unused index check failed on {server_id}", exc_info=True)
            conn.rollback()

    return [issue.to_dict() for issue in issues]


def get_issues(server_id: str) -> Dict[str, List[Dict[str, Any]]]:
    return {
        "configuration": analyze_configuration(server_id),
        "performance": detect_performance_issues(server_id),
    }
