"""
Fetch execution plans from a monitored server.

``EXPLAIN ANALYZE`` really executes the statement, so every explain runs in a
transaction that is rolled back afterwards, whatever the statement was.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

from sqlalchemy import text

from dbpulse.analysis import normalize, render_plan
from dbpulse.core.audit import log_activity
from dbpulse.core.errors import BackendError
from dbpulse.database.connection import get_engine

logger = logging.getLogger(__name__)


def clean_statement(query: str) -> str:
    """
    Strip whitespace and trailing semicolons; reject empty input and
    anything that still contains a statement separator.
    """
    statement = (query or "").strip().rstrip(";").strip()
    if not statement:
        raise ValueError("Query is empty")
    if ";" in statement:
        raise ValueError("Only a single statement can be explained")
    return statement


def explain_sql(statement: str, analyze: bool) -> str:
    options = "FORMAT JSON, ANALYZE, BUFFERS" if analyze else "FORMAT JSON"
    return f"EXPLAIN ({options}) {statement}"


def explain_query(server_id: str, query: str, analyze: bool = False) -> List[Dict[str, Any]]:
    """
    Return PostgreSQL's raw ``EXPLAIN (FORMAT JSON)`` document with the
    statement attached as ``"Query Text"``.
    """
    statement = clean_statement(query)
    engine = get_engine(server_id)

    try:
        with engine.connect() as conn:
            try:
                raw = conn.execute(text(explain_sql(statement, analyze))).scalar_one()
            finally:
                conn.rollback()
    except Exception as exc:
        if analyze:
            log_activity("explain_analyze", server_id, {"query": statement[:200]}, status="failure")
        raise BackendError(f"Failed to explain query: {exc}") from exc

    if analyze:
        log_activity("explain_analyze", server_id, {"query": statement[:200]})

    # psycopg2 decodes json columns; text comes back when the driver is told not to
    document = json.loads(raw) if isinstance(raw, str) else raw
    if isinstance(document, list) and document and isinstance(document[0], dict):
        document[0]["Query Text"] = statement
    return document


def analyze_plan(server_id: str, query: str, analyze: bool = False) -> Dict[str, Any]:
    """Explain, normalize and render in one go.  Raises ``MalformedPlanError`` on a bad plan."""
    raw = explain_query(server_id, query, analyze)
    return render_plan(normalize(raw))
