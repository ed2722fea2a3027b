"""Root-relative comparison metrics for rendering plan nodes side by side."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from dbpulse.analysis.model import Plan, PlanNode

# Planner misestimation heuristic: actual/estimated row ratio outside (0.1, 10)
ROW_MISMATCH_HIGH = 10
ROW_MISMATCH_LOW = 0.1


def _loops(node: PlanNode) -> int:
    return max(node.actual_loops or 0, 1)


@dataclass(frozen=True)
class PlanMetrics:
    max_cost: float
    max_time: Optional[float] = None

    def cost_share(self, node: PlanNode) -> float:
        return cost_share(node, self.max_cost)

    def time_share(self, node: PlanNode) -> Optional[float]:
        return time_share(node, self.max_time)


def derive_metrics(plan: Plan) -> PlanMetrics:
    """
    ``max_cost`` is the root's total cost: the root accumulates the cost of its
    whole subtree, so it is the natural 100% for cost bars.  ``max_time`` is the
    root's wall-clock time across its loops and only exists for measured plans.
    """
    root = plan.root
    max_time = None
    if plan.is_measured and root.actual is not None:
        max_time = root.actual.total_time * _loops(root)
    return PlanMetrics(max_cost=root.total_cost, max_time=max_time)


def cost_share(node: PlanNode, max_cost: float) -> float:
    """Percentage of *max_cost*, unclamped (values above 100 signal an anomaly)."""
    if max_cost <= 0:
        return 0.0
    return node.total_cost / max_cost * 100


def time_share(node: PlanNode, max_time: Optional[float]) -> Optional[float]:
    """Percentage of *max_time* spent in *node*; None for estimate-only plans."""
    if max_time is None or node.actual is None:
        return None
    if max_time <= 0:
        return 0.0
    return node.actual.total_time * _loops(node) / max_time * 100


def clamp_share(share: Optional[float]) -> float:
    """Bar width for a share: clamped to [0, 100], missing shares draw empty."""
    if share is None:
        return 0.0
    return min(max(share, 0.0), 100.0)


def row_ratio(node: PlanNode) -> Optional[float]:
    if node.actual is None or node.plan_rows <= 0:
        return None
    return node.actual.rows / node.plan_rows


def row_mismatch(node: PlanNode) -> bool:
    """True when actual rows differ from the estimate by more than 10x either way."""
    ratio = row_ratio(node)
    if ratio is None:
        return False
    return ratio > ROW_MISMATCH_HIGH or ratio < ROW_MISMATCH_LOW
