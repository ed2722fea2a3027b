"""
Turn a raw PostgreSQL ``EXPLAIN (FORMAT JSON)`` document into a :class:`Plan`.

Accepted inputs are the list PostgreSQL returns (``[{"Plan": ...}]``), the
inner document itself, or its JSON text.  Estimate fields are mandatory on
every node; the ``Actual *`` group is optional and taken all-or-nothing.
Normalization is atomic: it either returns a complete model or raises
:class:`MalformedPlanError`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from numbers import Real
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from dbpulse.analysis.formatting import format_rows
from dbpulse.analysis.metrics import row_mismatch
from dbpulse.analysis.model import ActualStats, BufferCounters, Conditions, Plan, PlanNode
from dbpulse.core.errors import MalformedPlanError

logger = logging.getLogger(__name__)

REQUIRED_ESTIMATE_FIELDS = ("Startup Cost", "Total Cost", "Plan Rows", "Plan Width")
ACTUAL_FIELDS = ("Actual Startup Time", "Actual Total Time", "Actual Rows", "Actual Loops")

_BUFFER_FIELDS = {
    "shared_hit": "Shared Hit Blocks",
    "shared_read": "Shared Read Blocks",
    "shared_dirtied": "Shared Dirtied Blocks",
    "shared_written": "Shared Written Blocks",
    "temp_read": "Temp Read Blocks",
    "temp_written": "Temp Written Blocks",
}

# Thresholds for the node-level warnings
SEQ_SCAN_ROW_THRESHOLD = 10_000
FILTER_WASTE_RATIO = 10
FILTER_WASTE_MIN_ROWS = 1_000


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _number(raw: Mapping[str, Any], key: str, path: str) -> float:
    if key not in raw or raw[key] is None:
        raise MalformedPlanError(f"missing required field '{key}'", path)
    value = raw[key]
    if not _is_number(value):
        raise MalformedPlanError(f"field '{key}' must be numeric, got {value!r}", path)
    return value


def _optional_int(raw: Mapping[str, Any], key: str) -> Optional[int]:
    value = raw.get(key)
    return int(value) if _is_number(value) else None


def _optional_str(raw: Mapping[str, Any], key: str) -> Optional[str]:
    value = raw.get(key)
    return str(value) if value is not None else None


def _warning_list(raw: Mapping[str, Any], path: str) -> List[str]:
    value = raw.get("Warnings")
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise MalformedPlanError("'Warnings' must be a list of strings", path)
    return [str(item) for item in value]


def _actual_stats(raw: Mapping[str, Any], path: str) -> Optional[ActualStats]:
    present = [key for key in ACTUAL_FIELDS if _is_number(raw.get(key))]
    if len(present) != len(ACTUAL_FIELDS):
        if present:
            logger.debug("Ignoring incomplete actual stats at %s (have %s)", path, present)
        return None
    return ActualStats(
        startup_time=float(raw["Actual Startup Time"]),
        total_time=float(raw["Actual Total Time"]),
        rows=int(raw["Actual Rows"]),
        loops=int(raw["Actual Loops"]),
    )


def _buffers(raw: Mapping[str, Any]) -> Optional[BufferCounters]:
    if not any(key in raw for key in _BUFFER_FIELDS.values()):
        return None
    return BufferCounters(**{attr: _optional_int(raw, key) or 0 for attr, key in _BUFFER_FIELDS.items()})


def _derived_warnings(node: PlanNode) -> List[str]:
    warnings = []
    rows = node.actual_rows if node.actual is not None else node.plan_rows

    if node.node_type == "Seq Scan" and rows > SEQ_SCAN_ROW_THRESHOLD:
        target = node.relation_name or "table"
        warnings.append(f"Sequential scan on {target} reads {format_rows(rows)} rows; consider an index")

    if node.sort_space_type == "Disk":
        used = f" ({node.sort_space_used} kB)" if node.sort_space_used is not None else ""
        warnings.append(f"Sort spilled to disk{used}; consider raising work_mem")

    if node.hash_batches is not None and node.hash_batches > 1:
        warnings.append(f"Hash split into {node.hash_batches} batches; consider raising work_mem")

    removed = node.rows_removed_by_filter
    if node.actual is not None and removed is not None and removed >= FILTER_WASTE_MIN_ROWS:
        if removed >= FILTER_WASTE_RATIO * max(node.actual.rows, 1):
            warnings.append(
                f"Filter discarded {format_rows(removed)} rows to return {format_rows(node.actual.rows)}"
            )

    if node.workers_planned is not None and node.workers_launched is not None:
        if node.workers_launched < node.workers_planned:
            warnings.append(f"Only {node.workers_launched} of {node.workers_planned} parallel workers launched")

    return warnings


def _sort_keys(raw: Mapping[str, Any], path: str) -> Tuple[str, ...]:
    value = raw.get("Sort Key")
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not all(isinstance(key, str) for key in value):
        raise MalformedPlanError("'Sort Key' must be a list of strings", path)
    return tuple(value)


def _check_node(raw: Any, path: str, on_path: Set[int]) -> List[Any]:
    """Validate the fields every node needs; returns the raw children."""
    if not isinstance(raw, Mapping):
        raise MalformedPlanError("plan node must be an object", path)
    if id(raw) in on_path:
        raise MalformedPlanError("plan node is its own ancestor", path)

    node_type = raw.get("Node Type")
    if not isinstance(node_type, str) or not node_type:
        raise MalformedPlanError("missing required field 'Node Type'", path)
    for key in REQUIRED_ESTIMATE_FIELDS:
        _number(raw, key, path)

    raw_children = raw.get("Plans") or []
    if not isinstance(raw_children, list):
        raise MalformedPlanError("'Plans' must be a list", path)
    return raw_children


def _build_node(raw: Mapping[str, Any], path: str, children: Tuple[PlanNode, ...]) -> PlanNode:
    node = PlanNode(
        node_type=raw["Node Type"],
        startup_cost=float(raw["Startup Cost"]),
        total_cost=float(raw["Total Cost"]),
        plan_rows=int(raw["Plan Rows"]),
        plan_width=int(raw["Plan Width"]),
        relation_name=_optional_str(raw, "Relation Name"),
        index_name=_optional_str(raw, "Index Name"),
        schema=_optional_str(raw, "Schema"),
        alias=_optional_str(raw, "Alias"),
        join_type=_optional_str(raw, "Join Type"),
        actual=_actual_stats(raw, path),
        conditions=Conditions(
            filter=_optional_str(raw, "Filter"),
            index_cond=_optional_str(raw, "Index Cond"),
            recheck_cond=_optional_str(raw, "Recheck Cond"),
            hash_cond=_optional_str(raw, "Hash Cond"),
            merge_cond=_optional_str(raw, "Merge Cond"),
            join_filter=_optional_str(raw, "Join Filter"),
        ),
        rows_removed_by_filter=_optional_int(raw, "Rows Removed by Filter"),
        sort_keys=_sort_keys(raw, path),
        sort_method=_optional_str(raw, "Sort Method"),
        sort_space_type=_optional_str(raw, "Sort Space Type"),
        sort_space_used=_optional_int(raw, "Sort Space Used"),
        hash_batches=_optional_int(raw, "Hash Batches"),
        buffers=_buffers(raw),
        workers_planned=_optional_int(raw, "Workers Planned"),
        workers_launched=_optional_int(raw, "Workers Launched"),
        children=children,
    )
    warnings = _warning_list(raw, path) + _derived_warnings(node)
    if not warnings:
        return node

    return replace(node, warnings=tuple(warnings))


def _build_tree(raw_root: Any, root_path: str) -> PlanNode:
    """Build bottom-up with an explicit stack so plan depth is not bound by recursion."""
    on_path: Set[int] = set()
    # frame: [raw, path, raw_children, built_children]
    stack: List[list] = [[raw_root, root_path, _check_node(raw_root, root_path, on_path), []]]
    on_path.add(id(raw_root))

    while True:
        raw, path, raw_children, built = stack[-1]
        index = len(built)
        if index < len(raw_children):
            child = raw_children[index]
            child_path = f"{path}.Plans[{index}]"
            stack.append([child, child_path, _check_node(child, child_path, on_path), []])
            on_path.add(id(child))
            continue

        stack.pop()
        on_path.discard(id(raw))
        node = _build_node(raw, path, tuple(built))
        if not stack:
            return node
        stack[-1][3].append(node)


def _unwrap(raw_plan: Any) -> Dict[str, Any]:
    if isinstance(raw_plan, (str, bytes)):
        try:
            raw_plan = json.loads(raw_plan)
        except ValueError as exc:
            raise MalformedPlanError(f"plan is not valid JSON: {exc}", "$") from exc

    if isinstance(raw_plan, list):
        if not raw_plan:
            raise MalformedPlanError("plan document is empty", "$")
        raw_plan = raw_plan[0]

    if not isinstance(raw_plan, Mapping):
        raise MalformedPlanError("plan document must be an object", "$")
    return raw_plan


def missing_statistics_notice(mismatched: int) -> str:
    return (
        f"Row estimates are off by more than 10x on {mismatched} node(s); "
        "table statistics may be stale, consider running ANALYZE"
    )


def normalize(raw_plan: Any, query: Optional[str] = None) -> Plan:
    """
    Build a :class:`Plan` from a raw plan document.

    *query* overrides the document's ``"Query Text"``.  The input is never
    modified.
    """
    document = _unwrap(raw_plan)

    if document.get("Plan") is None:
        raise MalformedPlanError("missing root node", "Plan")
    root = _build_tree(document["Plan"], "Plan")

    planning_time = document.get("Planning Time")
    execution_time = document.get("Execution Time")

    node_warnings = [warning for _, node in root.walk() for warning in node.warnings]
    plan_warnings = _warning_list(document, "$")
    mismatched = sum(1 for _, node in root.walk() if row_mismatch(node))
    if mismatched:
        plan_warnings.append(missing_statistics_notice(mismatched))

    return Plan(
        query=query if query is not None else str(document.get("Query Text") or ""),
        root=root,
        planning_time=float(planning_time) if _is_number(planning_time) else None,
        execution_time=float(execution_time) if _is_number(execution_time) else None,
        warnings=tuple(node_warnings + plan_warnings),
    )
