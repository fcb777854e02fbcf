"""Moving hidden-state mass across a recombination in the threading HMM."""

from __future__ import annotations

from collections.abc import Iterator, Mapping

from argthread.branch import Branch
from argthread.interval import Interval, IntervalInfo

_NO_BRANCH = Branch()


class TransferTable:
    """Collects the weights and source intervals that flow into each new interval."""

    def __init__(self):
        self._entries: dict[IntervalInfo, tuple[list[float], list[Interval]]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, info) -> bool:
        return info in self._entries

    def add(self, info, prev_interval, weight) -> None:
        """Record that ``weight`` of ``prev_interval`` moves into ``info``."""
        weights, intervals = self._entries.setdefault(info, ([], []))
        weights.append(weight)
        intervals.append(prev_interval)

    def add_empty(self, info) -> None:
        """Make sure ``info`` is present, without adding any mass to it."""
        self._entries.setdefault(info, ([], []))

    def clear(self) -> None:
        """Forget every entry."""
        self._entries.clear()

    def items(self) -> list[tuple[IntervalInfo, list[float], list[Interval]]]:
        """Entries as ``(info, weights, source_intervals)``, ordered by ``info``."""
        return [
            (info, weights, intervals)
            for info, (weights, intervals) in sorted(
                self._entries.items(), key=lambda entry: entry[0]
            )
        ]

    def __iter__(self) -> Iterator[tuple[IntervalInfo, list[float], list[Interval]]]:
        return iter(self.items())


def overwrite_prob(r, lb, ub, cc, cut_time, check_points) -> float:
    """Probability that mass on the target branch moves onto the recombined branch."""
    if r.pos in check_points:
        return 0.0
    join_time = r.inserted_node.time
    p1 = cc.weight(lb, ub)
    p2 = cc.weight(max(cut_time, r.start_time), join_time)
    if p1 == 0 and p2 == 0:
        return 1.0
    return p2 / (p1 + p2)


def process_source_interval(r, interval, p, cc, table) -> None:
    """Split the mass ``p`` of an interval on the source branch of ``r``."""
    point_time = r.source_branch.upper_node.time
    break_time = r.start_time
    if interval.ub <= break_time:
        info = IntervalInfo(r.recombined_branch, interval.lb, interval.ub)
        table.add(info, interval, p)
    elif interval.lb >= break_time:
        info = IntervalInfo(r.merging_branch, point_time, point_time)
        table.add(info, interval, p)
    else:
        w1 = cc.weight(interval.lb, break_time)
        w2 = cc.weight(break_time, interval.ub)
        if w1 == 0 and w2 == 0:
            w1, w2 = 1.0, 0.0
        else:
            w1 = w1 / (w1 + w2)
            w2 = 1 - w1
        table.add(
            IntervalInfo(r.recombined_branch, interval.lb, break_time),
            interval,
            w1 * p,
        )
        table.add(
            IntervalInfo(r.merging_branch, point_time, point_time),
            interval,
            w2 * p,
        )


def process_target_interval(r, interval, p, cc, cut_time, check_points, table) -> None:
    """Split the mass ``p`` of an interval on the target branch of ``r``."""
    join_time = r.inserted_node.time
    recombined_lb = max(cut_time, r.start_time)
    recombined_ub = r.recombined_branch.upper_node.time
    if interval.lb == interval.ub == join_time:
        info = IntervalInfo(r.recombined_branch, recombined_lb, recombined_ub)
        table.add(info, interval, p)
    elif interval.lb >= join_time:
        info = IntervalInfo(r.upper_transfer_branch, interval.lb, interval.ub)
        table.add(info, interval, p)
    elif interval.ub <= join_time:
        info = IntervalInfo(r.lower_transfer_branch, interval.lb, interval.ub)
        table.add(info, interval, p)
    else:
        w0 = overwrite_prob(r, interval.lb, interval.ub, cc, cut_time, check_points)
        w1 = cc.weight(interval.lb, join_time)
        w2 = cc.weight(join_time, interval.ub)
        if w1 + w2 == 0:
            w0, w1, w2 = 1.0, 0.0, 0.0
        else:
            w1 = w1 / (w1 + w2)
            w2 = 1 - w1
            w1 *= 1 - w0
            w2 *= 1 - w0
        table.add(
            IntervalInfo(r.lower_transfer_branch, interval.lb, join_time),
            interval,
            w1 * p,
        )
        table.add(
            IntervalInfo(r.upper_transfer_branch, join_time, interval.ub),
            interval,
            w2 * p,
        )
        table.add(
            IntervalInfo(r.recombined_branch, recombined_lb, recombined_ub),
            interval,
            w0 * p,
        )


def add_new_branches(r, cut_time, table) -> None:
    """Ensure full intervals exist for the merging and recombined branches of ``r``."""
    for branch in (r.merging_branch, r.recombined_branch):
        if branch != _NO_BRANCH and branch.upper_node.time > cut_time:
            lb = max(cut_time, branch.lower_node.time)
            table.add_empty(IntervalInfo(branch, lb, branch.upper_node.time))


def simplify_joining_branches(joining_branches: Mapping) -> dict:
    """Keep only the positions where the joining branch changes, plus the last one."""
    if not joining_branches:
        raise ValueError("no joining branches to simplify")
    ordered = sorted(joining_branches.items(), key=lambda item: item[0])
    first_pos, current = ordered[0]
    simplified = {first_pos: current}
    for pos, branch in ordered:
        if branch != current:
            simplified[pos] = branch
            current = branch
    last_pos, last_branch = ordered[-1]
    simplified[last_pos] = last_branch
    return dict(sorted(simplified.items(), key=lambda item: item[0]))