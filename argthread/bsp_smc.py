"""Branch sequence sampler whose intervals carry their own weight and time."""

from __future__ import annotations

import math
import random
from bisect import bisect_right

from argthread.coalescent import CoalescentCalculator
from argthread.interval import Interval, IntervalInfo
from argthread.transfer import (
    TransferTable,
    add_new_branches,
    process_source_interval,
    process_target_interval,
    simplify_joining_branches,
)


class SMCBSP:
    """Forward pass and traceback over joining-branch intervals under the SMC."""

    def __init__(self, emission=None, cutoff=0.0, check_points=(), rng=None):
        self.emission = emission
        self.cutoff = cutoff
        self.check_points = set(check_points)
        self.rng = rng if rng is not None else random.Random()

        self.cut_time = 0.0
        self.rhos: list[float] = []
        self.recomb_sums: list[float] = []
        self.weight_sums: list[float] = []

        self.curr_index = 0
        self.state_spaces: dict[int, list[Interval]] = {}
        self._breakpoints: list[int] = []
        self.curr_intervals: list[Interval] = []
        self.temp_intervals: list[Interval] = []
        self.temp: list[float] = []

        self.cc: CoalescentCalculator | None = None
        self.table = TransferTable()

        self.prev_rho = -1.0
        self.prev_theta = -1.0
        self.prev_node = None

        self.dim = 0
        self.weight_sum = 0.0
        self.recomb_probs: list[float] = []
        self.recomb_weights: list[float] = []
        self.null_emit_probs: list[float] = []
        self.mut_emit_probs: list[float] = []
        self.sample_index = -1
        self.forward_probs: list[list[float]] = []

        self.states_change = False
        self.valid_branches: set = set()

    # -- forward pass -------------------------------------------------------

    def start(self, branches, t) -> None:
        """Initialise the state space from the branches of the first tree."""
        self.cut_time = t
        self.curr_index = 0
        live = [b for b in sorted(branches) if b.upper_node.time > t]
        self.valid_branches.update(live)
        self.cc = CoalescentCalculator(t)
        self.cc.compute(self.valid_branches)
        self.temp = []
        for branch in live:
            lb = max(branch.lower_node.time, t)
            ub = branch.upper_node.time
            self.curr_intervals.append(Interval(branch, lb, ub, self.curr_index))
            self.temp.append(self.cc.weight(lb, ub))
        if not self.curr_intervals:
            raise ValueError("no branch lies above the cut time")
        self.forward_probs.append(self.temp)
        self._compute_interval_info()
        self.weight_sums.append(0.0)
        self._set_dimensions()
        self._record_state_space()
        self.temp = []

    def forward(self, rho) -> None:
        """Advance one bin without a change of tree."""
        self.rhos.append(rho)
        self._compute_recomb_probs(rho)
        self._compute_recomb_weights(rho)
        self.prev_rho = rho
        self.curr_index += 1
        prev_row = self.forward_probs[self.curr_index - 1]
        recomb_sum = sum(rp * fp for rp, fp in zip(self.recomb_probs, prev_row))
        self.forward_probs.append(
            [
                fp * (1 - rp) + recomb_sum * rw
                for fp, rp, rw in zip(prev_row, self.recomb_probs, self.recomb_weights)
            ]
        )
        self.recomb_sums.append(recomb_sum)
        self.weight_sums.append(self.weight_sum)

    def transfer(self, r) -> None:
        """Advance one bin across the recombination ``r``."""
        self.rhos.append(0.0)
        self.prev_rho = -1.0
        self.prev_theta = -1.0
        self.recomb_sums.append(0.0)
        self.weight_sums.append(0.0)
        self._sanity_check(r)
        self.curr_index += 1
        self.table.clear()
        self.temp = []
        self.temp_intervals = []
        self._update_states(r.deleted_branches, r.inserted_branches)
        prev_row = self.forward_probs[self.curr_index - 1]
        for interval, p in zip(self.curr_intervals, prev_row):
            self._process_interval(r, interval, p)
        add_new_branches(r, self.cut_time, self.table)
        self._generate_intervals()
        self._set_dimensions()
        self._record_state_space()

    def recomb_prob(self, rho, t) -> float:
        """Probability of a recombination on a lineage joining at time ``t``."""
        span = t - self.cut_time
        return rho * span * math.exp(-rho * span)

    def null_emit(self, theta, query_node) -> None:
        """Apply the emission of a bin without mutations and renormalise."""
        self._require_emission()
        if not (theta == self.prev_theta and query_node is self.prev_node):
            self.null_emit_probs = [
                self.emission.null_emit(interval.branch, interval.time, theta, query_node)
                for interval in self.curr_intervals
            ]
        self.prev_theta = theta
        self.prev_node = query_node
        self._emit_with(self.null_emit_probs)

    def mut_emit(self, theta, bin_size, mut_set, query_node) -> None:
        """Apply the emission of a bin holding ``mut_set`` and renormalise."""
        self._require_emission()
        self.mut_emit_probs = [
            self.emission.mut_emit(
                interval.branch, interval.time, theta, bin_size, mut_set, query_node
            )
            for interval in self.curr_intervals
        ]
        self._emit_with(self.mut_emit_probs)

    # -- traceback ----------------------------------------------------------

    def sample_joining_branches(self, start_index, coordinates) -> dict:
        """Sample joining branches backwards; keys are positions from ``coordinates``."""
        self.prev_rho = -1.0
        joining: dict = {}
        x = self.curr_index
        interval = self._sample_curr_interval(x)
        joining[coordinates[x + start_index + 1]] = interval.branch
        while x >= 0:
            x = self._trace_back(interval, x)
            joining[coordinates[x + start_index]] = interval.branch
            if x == 0:
                break
            if x == interval.start_pos:
                x -= 1
                interval = self._sample_source_interval(interval, x)
            else:
                x -= 1
                interval = self._sample_prev_interval(x)
        return simplify_joining_branches(joining)

    # -- reporting and checks -----------------------------------------------

    def write_forward_probs(self, filename) -> None:
        """Write each row of forward probabilities on one line."""
        with open(filename, "w", encoding="utf-8") as handle:
            for row in self.forward_probs:
                handle.write(" ".join(f"{v:g}" for v in row) + "\n")

    def check_recomb_sums(self) -> None:
        """Recompute every stored recombination sum; raise if one disagrees."""
        for i in range(len(self.rhos) - 1):
            intervals = self._state_space(i)
            rho = self.rhos[i]
            expected = sum(
                self.recomb_prob(rho, interval.time) * fp
                for interval, fp in zip(intervals, self.forward_probs[i])
            )
            stored = self.recomb_sums[i]
            if not math.isclose(expected, stored, rel_tol=1e-12, abs_tol=1e-300):
                raise RuntimeError(
                    f"recombination sum at step {i} is {stored!r}, expected {expected!r}"
                )

    def avg_num_states(self) -> float:
        """Average number of states per bin, weighted by the spans between changes."""
        count = 0.0
        span = 0
        for prev_key, key in zip(self._breakpoints, self._breakpoints[1:]):
            count += len(self.state_spaces[key]) * (key - prev_key)
            span = key
        if span == 0:
            return math.nan
        return count / span

    def check_intervals(self) -> None:
        """Raise unless the current intervals match the valid branches exactly."""
        full_branches = set()
        for interval in self.curr_intervals:
            if interval.full(self.cut_time):
                full_branches.add(interval.branch)
            if interval.branch not in self.valid_branches:
                raise RuntimeError("an interval lies on a branch that is not valid")
        missing = self.valid_branches - full_branches
        if missing:
            raise RuntimeError("a valid branch has no full interval")

    # -- internals ----------------------------------------------------------

    def _require_emission(self) -> None:
        if self.emission is None:
            raise RuntimeError("no emission model set")

    def _emit_with(self, probs) -> None:
        row = self.forward_probs[self.curr_index]
        row[:] = [fp * e for fp, e in zip(row, probs)]
        total = sum(row)
        if not total > 0:
            raise ValueError("emission left no probability mass")
        row[:] = [fp / total for fp in row]

    def _record_state_space(self) -> None:
        self.state_spaces[self.curr_index] = self.curr_intervals
        if not self._breakpoints or self._breakpoints[-1] != self.curr_index:
            self._breakpoints.append(self.curr_index)

    def _set_dimensions(self) -> None:
        self.dim = len(self.curr_intervals)
        self.recomb_probs = [0.0] * self.dim
        self.recomb_weights = [0.0] * self.dim
        self.null_emit_probs = [0.0] * self.dim
        self.mut_emit_probs = [0.0] * self.dim

    def _compute_recomb_probs(self, rho) -> None:
        if self.prev_rho == rho:
            return
        self.recomb_probs = [
            self.recomb_prob(rho, interval.time) for interval in self.curr_intervals
        ]

    def _compute_recomb_weights(self, rho) -> None:
        if self.prev_rho == rho:
            return
        for i, interval in enumerate(self.curr_intervals):
            if interval.full(self.cut_time):
                self.recomb_weights[i] = self.recomb_probs[i] * interval.weight
        self.weight_sum = sum(self.recomb_weights)
        if self.weight_sum == 0:
            raise ValueError("no recombination weight on any full interval")
        self.recomb_weights = [w / self.weight_sum for w in self.recomb_weights]

    def _compute_interval_info(self) -> None:
        if self.states_change:
            self.cc.compute(self.valid_branches)
        self.states_change = False
        for interval in self.curr_intervals:
            interval.weight = self.cc.weight(interval.lb, interval.ub)
            interval.assign_time(self.cc.time(interval.lb, interval.ub))

    def _sanity_check(self, r) -> None:
        row = self.forward_probs[self.curr_index]
        join_time = r.inserted_node.time
        for i, interval in enumerate(self.curr_intervals):
            if (
                interval.lb == interval.ub == join_time
                and interval.branch != r.target_branch
            ):
                row[i] = 0.0

    def _update_states(self, deletions, insertions) -> None:
        for branch in deletions:
            if branch.upper_node.time > self.cut_time:
                if branch not in self.valid_branches:
                    raise ValueError("deleted branch is not in the current state space")
                self.valid_branches.discard(branch)
            self.states_change = True
        for branch in insertions:
            if branch.upper_node.time > self.cut_time:
                self.valid_branches.add(branch)
            self.states_change = True

    def _process_interval(self, r, interval, p) -> None:
        if interval.branch == r.source_branch:
            process_source_interval(r, interval, p, self.cc, self.table)
        elif interval.branch == r.target_branch:
            process_target_interval(
                r, interval, p, self.cc, self.cut_time, self.check_points, self.table
            )
        else:
            branch = r.merging_branch if r.affect(interval.branch) else interval.branch
            self.table.add(IntervalInfo(branch, interval.lb, interval.ub), interval, p)

    def _generate_intervals(self) -> None:
        for info, weights, sources in self.table.items():
            branch = info.branch
            p = sum(weights)
            if math.isnan(p):
                raise ValueError("transferred probability is not a number")
            is_full = (
                info.lb == max(self.cut_time, branch.lower_node.time)
                and info.ub == branch.upper_node.time
            )
            if is_full or p >= self.cutoff:
                interval = Interval(branch, info.lb, info.ub, self.curr_index)
                if weights:
                    interval.source_weights = list(weights)
                    interval.source_intervals = list(sources)
                self.temp_intervals.append(interval)
                self.temp.append(p)
        self.forward_probs.append(self.temp)
        self.curr_intervals = self.temp_intervals
        self._compute_interval_info()

    def _breakpoint(self, x) -> int:
        i = bisect_right(self._breakpoints, x) - 1
        if i < 0:
            raise IndexError(f"no state space recorded at or before {x}")
        return self._breakpoints[i]

    def _state_space(self, x) -> list[Interval]:
        return self.state_spaces[self._breakpoint(x)]

    @staticmethod
    def _index_of(interval, intervals) -> int:
        for i, candidate in enumerate(intervals):
            if candidate is interval:
                return i
        raise ValueError("interval is not in the state space")

    def _sample_curr_interval(self, x) -> Interval:
        intervals = self._state_space(x)
        row = self.forward_probs[x]
        w = sum(row) * self.rng.random()
        for i, interval in enumerate(intervals):
            w -= row[i]
            if w <= 0:
                self.sample_index = i
                return interval
        raise RuntimeError("sampling the current interval failed")

    def _sample_prev_interval(self, x) -> Interval:
        intervals = self._state_space(x)
        rho = self.rhos[x]
        row = self.forward_probs[x]
        w = self.recomb_sums[x] * self.rng.random()
        for i, interval in enumerate(intervals):
            w -= self.recomb_prob(rho, interval.time) * row[i]
            if w <= 0:
                self.sample_index = i
                return interval
        raise RuntimeError("sampling the previous interval failed")

    def _sample_source_interval(self, interval, x) -> Interval:
        prev_intervals = self._state_space(x)
        weights = interval.source_weights
        w = sum(weights) * self.rng.random()
        for weight, source in zip(weights, interval.source_intervals):
            w -= weight
            if w <= 0:
                self.sample_index = self._index_of(source, prev_intervals)
                return source
        raise RuntimeError("sampling the source interval failed")

    def _trace_back(self, interval, x) -> int:
        if not interval.full(self.cut_time):
            return interval.start_pos
        p = self.rng.random()
        q = 1.0
        while x > interval.start_pos:
            recomb_sum = self.recomb_sums[x - 1]
            weight_sum = self.weight_sums[x]
            if recomb_sum == 0:
                shrinkage = 1.0
            else:
                rp = self.recomb_prob(self.rhos[x - 1], interval.time)
                non_recomb = (1 - rp) * self.forward_probs[x - 1][self.sample_index]
                total = non_recomb + recomb_sum * interval.weight * rp / weight_sum
                shrinkage = non_recomb / total
            q *= shrinkage
            if p >= q:
                return x
            x -= 1
        return interval.start_pos