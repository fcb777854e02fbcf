"""Emission models for threading a lineage onto a branch of a local tree."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod


def _segment_lengths(branch, time, node):
    ll = time - branch.lower_node.time
    lu = branch.upper_node.time - time
    l0 = time - node.time
    return ll, lu, l0


class Emission(ABC):
    """Probability of the observed data given a joining branch and time."""

    @abstractmethod
    def null_emit(self, branch, time, theta, node) -> float:
        """Emission probability of a bin without mutations."""

    @abstractmethod
    def mut_emit(self, branch, time, theta, bin_size, mut_set, node) -> float:
        """Emission probability of a bin holding the mutations in ``mut_set``."""

    @abstractmethod
    def emit(self, branch, time, theta, bin_size, emissions, node) -> float:
        """Emission probability from precomputed state differences."""


class BinaryEmission(Emission):
    """Emission counting unordered state changes on the three joined segments."""

    def __init__(self):
        self.num_unmapped: dict[float, float] = {}
        self.penalty = 0.1
        self.diff: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)

    def null_emit(self, branch, time, theta, node) -> float:
        ll, lu, l0 = _segment_lengths(branch, time, node)
        emit_prob = self.calculate_prob(theta, 1, ll, lu, l0, 0, 0, 0)
        if math.isinf(lu):
            old_prob = 1.0
        else:
            old_prob = self.segment_prob(theta * (ll + lu), 1, 0)
        return emit_prob / old_prob

    def mut_emit(self, branch, time, theta, bin_size, mut_set, node) -> float:
        ll, lu, l0 = _segment_lengths(branch, time, node)
        dl, du, d0, dold = self.get_diff(mut_set, branch, node)
        emit_prob = self.calculate_prob(
            theta, bin_size, ll, lu, l0, int(dl), int(du), int(d0)
        )
        old_prob = self.segment_prob(theta * (ll + lu), bin_size, int(dold))
        return emit_prob / old_prob

    def emit(self, branch, time, theta, bin_size, emissions, node) -> float:
        ll, lu, l0 = _segment_lengths(branch, time, node)
        emit_prob = self.calculate_prob(
            theta,
            bin_size,
            ll,
            lu,
            l0,
            int(emissions[0]),
            int(emissions[1]),
            int(emissions[2]),
        )
        old_prob = self.segment_prob(theta * (ll + lu), bin_size, int(emissions[3]))
        return emit_prob / old_prob

    def calculate_prob(self, theta, bin_size, ll, lu, l0, sl, su, s0) -> float:
        """Joint probability over the lower, upper and query segments."""
        prob = self.segment_prob(ll * theta, bin_size, sl)
        if not math.isinf(lu):
            prob *= self.segment_prob(lu * theta, bin_size, su)
        prob *= self.segment_prob(l0 * theta, bin_size, s0)
        return prob

    def segment_prob(self, theta, bin_size, s) -> float:
        """Poisson-style probability of ``s`` mutations on one segment."""
        if math.isinf(theta):
            return 1.0
        unit_theta = theta / bin_size
        return math.exp(-theta) * unit_theta**s

    def get_diff(self, mut_set, branch, node):
        """Count state changes on each segment over the sites in ``mut_set``."""
        dl = du = d0 = dold = 0.0
        for x in sorted(mut_set):
            sl = branch.lower_node.get_state(x)
            su = branch.upper_node.get_state(x)
            s0 = node.get_state(x)
            sm = 1.0 if sl + su + s0 > 1.5 else 0.0
            dl += abs(sm - sl)
            du += abs(sm - su)
            d0 += abs(sm - s0)
            dold += abs(sl - su)
        self.diff = (dl, du, d0, dold)
        return self.diff


class PolarEmission(Emission):
    """Emission that keeps the direction of mutations and rewards ancestral roots."""

    def __init__(self):
        self.penalty = 0.01
        self.ancestral_prob = 0.5
        self.root_reward = 1.0
        self.diff: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)

    def null_emit(self, branch, time, theta, node) -> float:
        ll, lu, l0 = _segment_lengths(branch, time, node)
        if not math.isinf(lu):
            return self.segment_null_prob(theta * l0)
        return self.segment_null_prob(theta * (ll + l0))

    def mut_emit(self, branch, time, theta, bin_size, mut_set, node) -> float:
        ll, lu, l0 = _segment_lengths(branch, time, node)
        emit_prob = 1.0
        old_prob = 1.0
        for m in sorted(mut_set):
            dl, du, d0, dold = self.get_diff(m, branch, node)
            emit_prob *= self.mut_prob(
                theta, bin_size, ll, lu, l0, int(dl), int(du), int(d0)
            )
            old_prob *= self.segment_mut_prob(theta * (ll + lu), bin_size, int(dold))
        if not math.isinf(lu):
            emit_prob *= self.segment_null_prob(theta * l0)
        else:
            emit_prob *= self.segment_null_prob(theta * (l0 + ll))
        emit_prob /= old_prob
        emit_prob *= self.root_reward
        return max(emit_prob, 1e-20)

    def emit(self, branch, time, theta, bin_size, emissions, node) -> float:
        ll, lu, l0 = _segment_lengths(branch, time, node)
        emit_prob = self.mut_prob(
            theta,
            bin_size,
            ll,
            lu,
            l0,
            int(emissions[0]),
            int(emissions[1]),
            int(emissions[2]),
        )
        old_prob = self.segment_mut_prob(theta * (ll + lu), bin_size, int(emissions[3]))
        emit_prob *= self.null_prob(theta, ll, lu, l0)
        old_prob *= self.segment_null_prob(theta * (ll + lu))
        return emit_prob / old_prob

    def mut_prob(self, theta, bin_size, ll, lu, l0, sl, su, s0) -> float:
        """Mutation term over the three segments, penalising query-side changes."""
        prob = self.segment_mut_prob(ll * theta, bin_size, sl)
        prob *= self.segment_mut_prob(lu * theta, bin_size, su)
        prob *= self.segment_mut_prob(l0 * theta, bin_size, s0)
        if s0 >= 1:
            prob *= self.penalty
        return prob

    def null_prob(self, theta, ll, lu, l0) -> float:
        """Probability of no mutation on any of the three segments."""
        prob = self.segment_null_prob(ll * theta)
        if not math.isinf(lu):
            prob *= self.segment_null_prob(lu * theta)
        prob *= self.segment_null_prob(l0 * theta)
        return prob

    def segment_mut_prob(self, theta, bin_size, s) -> float:
        """Rate factor for ``|s|`` mutations on one segment."""
        if math.isinf(theta):
            return 1.0
        unit_theta = theta / bin_size
        return unit_theta ** abs(s)

    def segment_null_prob(self, theta) -> float:
        """Probability of no mutation on a segment with mutation mass ``theta``."""
        if math.isinf(theta):
            return 1.0
        return math.exp(-theta)

    def get_diff(self, m, branch, node):
        """Signed state differences at site ``m``; also sets ``root_reward``."""
        sl = branch.lower_node.get_state(m)
        su = branch.upper_node.get_state(m)
        s0 = node.get_state(m)
        sm = 1.0 if sl + su + s0 > 1.5 else 0.0
        if branch.upper_node.index == -1 and sm == 0 and sl == 1:
            self.root_reward = self.ancestral_prob / (1 - self.ancestral_prob)
        else:
            self.root_reward = 1.0
        self.diff = (sl - sm, sm - su, s0 - sm, sl - su)
        return self.diff