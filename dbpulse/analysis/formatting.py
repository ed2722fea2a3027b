"""Display formatting for plan numbers.

Every helper takes a single value and renders ``None`` as ``"-"``.  The unit
thresholds are fixed so the rendered strings stay comparable between plans.
"""

from __future__ import annotations

from typing import Optional, Union

Number = Union[int, float]

MISSING = "-"


def format_time(ms: Optional[Number]) -> str:
    """Format a duration given in milliseconds (µs / ms / s)."""
    if ms is None:
        return MISSING
    if ms < 1:
        return f"{ms * 1000:.2f} µs"
    if ms < 1000:
        return f"{ms:.2f} ms"
    return f"{ms / 1000:.2f} s"


def format_cost(cost: Optional[Number]) -> str:
    if cost is None:
        return MISSING
    if cost < 1000:
        return f"{cost:.2f}"
    if cost < 1_000_000:
        return f"{cost / 1000:.1f}K"
    return f"{cost / 1_000_000:.1f}M"


def format_rows(rows: Optional[Number]) -> str:
    """Same tiers as :func:`format_cost`, without decimals below 1000."""
    if rows is None:
        return MISSING
    if rows < 1000:
        return f"{rows:.0f}"
    if rows < 1_000_000:
        return f"{rows / 1000:.1f}K"
    return f"{rows / 1_000_000:.1f}M"
