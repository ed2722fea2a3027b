from .formatting import format_cost, format_rows, format_time
from .metrics import PlanMetrics, clamp_share, cost_share, derive_metrics, row_mismatch, time_share
from .model import ActualStats, BufferCounters, Conditions, Plan, PlanNode
from .normalize import normalize
from .render import render_plan, render_rows

__all__ = [
    "ActualStats",
    "BufferCounters",
    "Conditions",
    "Plan",
    "PlanMetrics",
    "PlanNode",
    "clamp_share",
    "cost_share",
    "derive_metrics",
    "format_cost",
    "format_rows",
    "format_time",
    "normalize",
    "render_plan",
    "render_rows",
    "row_mismatch",
    "time_share",
]
