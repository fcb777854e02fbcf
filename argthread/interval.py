"""Time intervals on branches that form the hidden states of the threading HMM."""

from __future__ import annotations

import functools
import math
from dataclasses import dataclass, field

from argthread.branch import Branch


class Interval:
    """A time window ``[lb, ub]`` on a branch, born at bin ``start_pos``."""

    def __init__(self, branch, lb, ub, start_pos):
        if lb > ub:
            raise ValueError("interval lower bound exceeds its upper bound")
        if branch.lower_node.time > lb or branch.upper_node.time < ub:
            raise ValueError("interval does not lie within its branch")
        self.branch = branch
        self.lb = lb
        self.ub = ub
        self.start_pos = start_pos
        self.weight = 0.0
        self.time = 0.0
        self.source_pos = 0
        self.node = None
        self.reduction = 1.0
        self.source_weights: list[float] = []
        self.source_intervals: list[Interval] = []
        self.intervals: list[Interval] = []

    def __repr__(self) -> str:
        return (
            f"Interval(branch={self.branch!r}, lb={self.lb!r}, ub={self.ub!r}, "
            f"start_pos={self.start_pos!r})"
        )

    def assign_time(self, t) -> None:
        """Set the representative time, which must lie inside the interval."""
        if not self.lb <= t <= self.ub:
            raise ValueError(f"time {t!r} lies outside [{self.lb!r}, {self.ub!r}]")
        self.time = t

    def fill_time(self) -> None:
        """Set the time to the median of a unit-rate exponential within the interval."""
        lb, ub = self.lb, self.ub
        if math.isinf(ub):
            self.time = lb + math.log(2)
        elif abs(lb - ub) < 1e-3:
            self.time = 0.5 * (lb + ub)
        else:
            lq = 1 - math.exp(-lb)
            uq = 1 - math.exp(-ub)
            if uq - lq < 1e-3:
                self.time = 0.5 * (lb + ub)
            else:
                q = 0.5 * (lq + uq)
                self.time = -math.log(1 - q)

    def full(self, t) -> bool:
        """Whether the interval covers its whole branch above cut time ``t``."""
        if self.lb < t:
            raise ValueError("interval starts below the cut time")
        return (
            self.lb == max(t, self.branch.lower_node.time)
            and self.ub == self.branch.upper_node.time
        )


@functools.total_ordering
@dataclass(frozen=True)
class IntervalInfo:
    """Hashable description of an interval, used to merge transferred mass."""

    branch: Branch = field(default_factory=Branch)
    lb: float = 0.0
    ub: float = 0.0
    time: float = field(default=0.0, compare=False)
    seed_pos: float = 0.0

    def __post_init__(self) -> None:
        if self.lb > self.ub:
            raise ValueError("interval lower bound exceeds its upper bound")
        if self.branch.lower_node is not None and (
            self.lb < self.branch.lower_node.time
            or self.ub > self.branch.upper_node.time
        ):
            raise ValueError("interval does not lie within its branch")

    def __lt__(self, other):
        if not isinstance(other, IntervalInfo):
            return NotImplemented
        if self.seed_pos != other.seed_pos:
            return self.seed_pos < other.seed_pos
        if self.branch != other.branch:
            return self.branch < other.branch
        if self.ub != other.ub:
            return self.ub < other.ub
        return self.lb < other.lb