"""
Flatten a normalized :class:`Plan` into display rows.

The result is plain JSON-ready data: one header block and one row per node in
depth-first order.  Each row carries only the node's own warnings; children are
emitted after their parent with ``depth + 1``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from dbpulse.analysis.formatting import format_cost, format_rows, format_time
from dbpulse.analysis.metrics import PlanMetrics, clamp_share, derive_metrics, row_mismatch
from dbpulse.analysis.model import Plan, PlanNode

SCAN_NODES = {"Seq Scan", "Bitmap Heap Scan", "Tid Scan", "Foreign Scan"}
INDEX_NODES = {"Index Scan", "Index Only Scan", "Bitmap Index Scan"}
JOIN_NODES = {"Nested Loop", "Hash Join", "Merge Join"}


def node_category(node_type: str) -> str:
    """Colour bucket used by the legend: seq-scan / index / join / other."""
    if node_type == "Seq Scan":
        return "seq_scan"
    if node_type in INDEX_NODES:
        return "index"
    if node_type in SCAN_NODES:
        return "scan"
    if node_type in JOIN_NODES:
        return "join"
    return "other"


def _buffer_labels(node: PlanNode) -> Optional[Dict[str, str]]:
    if node.buffers is None:
        return None
    labels = {"hit": format_rows(node.buffers.shared_hit)}
    if node.buffers.shared_read > 0:
        labels["read"] = f"+{format_rows(node.buffers.shared_read)}"
    return labels


def _render_row(node: PlanNode, depth: int, metrics: PlanMetrics, measured: bool) -> Dict[str, Any]:
    cost_share = metrics.cost_share(node)
    time_share = metrics.time_share(node) if measured else None
    details = [f"{label}: {text}" for label, text in node.conditions.lines()]
    if node.sort_keys:
        details.append(f"Sort Key: {', '.join(node.sort_keys)}")

    return {
        "depth": depth,
        "node_type": node.node_type,
        "join_type": node.join_type,
        "category": node_category(node.node_type),
        "object": node.object_name or "-",
        "cost": format_cost(node.total_cost),
        "cost_share": cost_share,
        "cost_bar": clamp_share(cost_share),
        "rows": format_rows(node.actual_rows if measured else node.plan_rows),
        "loops": node.actual_loops if measured and (node.actual_loops or 0) > 1 else None,
        "row_mismatch": row_mismatch(node),
        "time": format_time(node.actual_total_time) if measured else None,
        "time_share": time_share,
        "time_bar": clamp_share(time_share) if measured else None,
        "buffers": _buffer_labels(node) if measured else None,
        "details": details,
        "warnings": list(node.warnings),
        "has_children": bool(node.children),
    }


def render_rows(plan: Plan, metrics: Optional[PlanMetrics] = None) -> List[Dict[str, Any]]:
    metrics = metrics or derive_metrics(plan)
    return [_render_row(node, depth, metrics, plan.is_measured) for depth, node in plan.root.walk()]


def render_plan(plan: Plan) -> Dict[str, Any]:
    metrics = derive_metrics(plan)
    return {
        "mode": "EXPLAIN ANALYZE" if plan.is_measured else "EXPLAIN",
        "query": plan.query,
        "summary": {
            "total_cost": format_cost(plan.total_cost),
            "planning_time": format_time(plan.planning_time) if plan.planning_time is not None else None,
            "execution_time": format_time(plan.execution_time) if plan.execution_time is not None else None,
            "warning_count": len(plan.warnings),
        },
        "max_cost": metrics.max_cost,
        "max_time": metrics.max_time,
        "warnings": list(plan.warnings),
        "rows": render_rows(plan, metrics),
    }
