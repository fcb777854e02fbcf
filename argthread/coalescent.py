"""Coalescence probabilities against a set of branches above a cut time."""

from __future__ import annotations

import math
from bisect import bisect_left, bisect_right
from collections import defaultdict
from itertools import pairwise


class CoalescentCalculator:
    """Piecewise-exponential coalescence distribution for a lineage joining branches."""

    def __init__(self, cut_time):
        self.cut_time = cut_time
        self.min_time = math.nan
        self.max_time = math.nan
        self.rate_changes: dict[float, int] = {}
        self.rates: dict[float, int] = {}
        self._times: list[float] = []
        self._cum_probs: list[float] = []
        self._quantiles: list[tuple[float, float]] = []

    def compute(self, branches) -> None:
        """Build the rate profile and cumulative probabilities from ``branches``."""
        changes: defaultdict[float, int] = defaultdict(int)
        for branch in branches:
            lb = max(self.cut_time, branch.lower_node.time)
            ub = branch.upper_node.time
            changes[lb] += 1
            changes[ub] -= 1
        if not changes:
            raise ValueError("at least one branch is needed")
        self.rate_changes = dict(sorted(changes.items()))
        times = list(self.rate_changes)
        self.min_time = times[0]
        self.max_time = times[-1]

        rates: dict[float, int] = {}
        current = 0
        for t in times:
            current += self.rate_changes[t]
            rates[t] = current
        self.rates = rates

        cum_probs = [0.0]
        cum = 0.0
        prev_prob = 1.0
        for t0, t1 in pairwise(times):
            rate = rates[t0]
            if rate > 0:
                next_prob = prev_prob * math.exp(-rate * (t1 - t0))
                cum += (prev_prob - next_prob) / rate
            else:
                next_prob = prev_prob
            cum_probs.append(cum)
            prev_prob = next_prob
        self._times = times
        self._cum_probs = cum_probs
        self._quantiles = sorted(zip(cum_probs, times))

    def _require_computed(self) -> None:
        if not self._times:
            raise RuntimeError("compute() must be called first")

    def weight(self, lb, ub) -> float:
        """Probability mass of coalescing between ``lb`` and ``ub``."""
        return self.prob(ub) - self.prob(lb)

    def time(self, lb, ub) -> float:
        """Representative (median) coalescence time within ``[lb, ub]``."""
        lq = self.prob(lb)
        uq = self.prob(ub)
        if math.isinf(ub):
            return lb + math.log(2)
        if ub - lb < 1e-3 or uq - lq < 1e-3:
            return 0.5 * (lb + ub)
        return self.quantile(0.5 * (lq + uq))

    def prob(self, x) -> float:
        """Cumulative coalescence probability up to time ``x``."""
        self._require_computed()
        x = min(max(x, self.min_time), self.max_time)
        i = bisect_left(self._times, x)
        if i < len(self._times) and self._times[i] == x:
            return self._cum_probs[i]
        lower_time = self._times[i - 1]
        base_prob = self._cum_probs[i - 1]
        rate = self.rates[lower_time]
        if rate == 0:
            return base_prob
        delta_t = self._times[i] - lower_time
        delta_p = self._cum_probs[i] - base_prob
        new_delta_t = x - lower_time
        return base_prob + delta_p * math.expm1(-rate * new_delta_t) / math.expm1(
            -rate * delta_t
        )

    def quantile(self, p) -> float:
        """Time at which the cumulative coalescence probability reaches ``p``."""
        self._require_computed()
        i = bisect_right(self._quantiles, (p, -1.0))
        if i == 0 or i == len(self._quantiles):
            raise ValueError(f"probability {p!r} is outside the distribution")
        lower_prob, lower_time = self._quantiles[i - 1]
        upper_prob, upper_time = self._quantiles[i]
        rate = self.rates[lower_time]
        delta_p = upper_prob - lower_prob
        if rate == 0 or delta_p == 0:
            raise ValueError(f"probability {p!r} falls in a segment with no mass")
        delta_t = upper_time - lower_time
        fraction = 1 - (p - lower_prob) / delta_p * (1 - math.exp(-rate * delta_t))
        return lower_time - math.log(fraction) / rate