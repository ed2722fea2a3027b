"""
Normalized execution-plan model.

Instances are built by :func:`dbpulse.analysis.normalize.normalize` and are
never mutated afterwards; every container field is a tuple.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Optional, Tuple


@dataclass(frozen=True)
class ActualStats:
    """Measured execution numbers of one node (per loop, as reported)."""

    startup_time: float
    total_time: float
    rows: int
    loops: int


@dataclass(frozen=True)
class BufferCounters:
    shared_hit: int = 0
    shared_read: int = 0
    shared_dirtied: int = 0
    shared_written: int = 0
    temp_read: int = 0
    temp_written: int = 0


@dataclass(frozen=True)
class Conditions:
    """Free-form predicate text attached to a node."""

    filter: Optional[str] = None
    index_cond: Optional[str] = None
    recheck_cond: Optional[str] = None
    hash_cond: Optional[str] = None
    merge_cond: Optional[str] = None
    join_filter: Optional[str] = None

    def lines(self) -> Tuple[Tuple[str, str], ...]:
        labelled = (
            ("Filter", self.filter),
            ("Index Cond", self.index_cond),
            ("Recheck Cond", self.recheck_cond),
            ("Hash Cond", self.hash_cond),
            ("Merge Cond", self.merge_cond),
            ("Join Filter", self.join_filter),
        )
        return tuple((label, text) for label, text in labelled if text)


@dataclass(frozen=True)
class PlanNode:
    node_type: str
    startup_cost: float
    total_cost: float
    plan_rows: int
    plan_width: int
    relation_name: Optional[str] = None
    index_name: Optional[str] = None
    schema: Optional[str] = None
    alias: Optional[str] = None
    join_type: Optional[str] = None
    actual: Optional[ActualStats] = None
    conditions: Conditions = field(default_factory=Conditions)
    rows_removed_by_filter: Optional[int] = None
    sort_keys: Tuple[str, ...] = ()
    sort_method: Optional[str] = None
    sort_space_type: Optional[str] = None
    sort_space_used: Optional[int] = None
    hash_batches: Optional[int] = None
    buffers: Optional[BufferCounters] = None
    workers_planned: Optional[int] = None
    workers_launched: Optional[int] = None
    children: Tuple["PlanNode", ...] = ()
    warnings: Tuple[str, ...] = ()

    @property
    def object_name(self) -> Optional[str]:
        return self.relation_name or self.index_name

    @property
    def actual_startup_time(self) -> Optional[float]:
        return self.actual.startup_time if self.actual else None

    @property
    def actual_total_time(self) -> Optional[float]:
        return self.actual.total_time if self.actual else None

    @property
    def actual_rows(self) -> Optional[int]:
        return self.actual.rows if self.actual else None

    @property
    def actual_loops(self) -> Optional[int]:
        return self.actual.loops if self.actual else None

    def walk(self) -> Iterator[Tuple[int, "PlanNode"]]:
        """Yield ``(depth, node)`` depth-first, children in input order."""
        stack = [(0, self)]
        while stack:
            depth, node = stack.pop()
            yield depth, node
            for child in reversed(node.children):
                stack.append((depth + 1, child))


@dataclass(frozen=True)
class Plan:
    query: str
    root: PlanNode
    planning_time: Optional[float] = None
    execution_time: Optional[float] = None
    warnings: Tuple[str, ...] = ()

    @property
    def total_cost(self) -> float:
        return self.root.total_cost

    @property
    def is_measured(self) -> bool:
        """True for ``EXPLAIN ANALYZE`` output, False for estimate-only plans."""
        return self.execution_time is not None

    def nodes(self) -> Iterator[PlanNode]:
        for _, node in self.root.walk():
            yield node
