import math
from types import SimpleNamespace

import pytest

from argthread.branch import Branch
from argthread.coalescent import CoalescentCalculator
from argthread.interval import Interval, IntervalInfo
from argthread.node import Node
from argthread.transfer import (
    TransferTable,
    add_new_branches,
    overwrite_prob,
    process_source_interval,
    process_target_interval,
    simplify_joining_branches,
)

CUT_TIME = 0.2


def _node(time, index):
    n = Node(time)
    n.index = index
    return n


@pytest.fixture
def world():
    s0 = _node(0.0, 1)
    s1 = _node(0.0, 2)
    s2 = _node(0.0, 3)
    n1 = _node(1.0, 4)
    n2 = _node(2.0, 5)
    n3 = _node(1.5, 6)
    root = _node(math.inf, -1)
    before = {
        Branch(s0, n1),
        Branch(s1, n1),
        Branch(n1, n2),
        Branch(s2, n2),
        Branch(n2, root),
    }
    r = SimpleNamespace(
        pos=10.0,
        start_time=0.5,
        source_branch=Branch(s0, n1),
        target_branch=Branch(s2, n2),
        inserted_node=n3,
        deleted_node=n1,
        recombined_branch=Branch(s0, n3),
        merging_branch=Branch(s1, n2),
        lower_transfer_branch=Branch(s2, n3),
        upper_transfer_branch=Branch(n3, n2),
    )
    cc = CoalescentCalculator(CUT_TIME)
    cc.compute(before)
    return SimpleNamespace(r=r, cc=cc, nodes=(s0, s1, s2, n1, n2, n3, root))


def test_table_accumulates_same_key(world):
    r = world.r
    info = IntervalInfo(r.merging_branch, 1.0, 1.0)
    a = Interval(r.source_branch, 0.2, 1.0, 0)
    b = Interval(r.source_branch, 0.2, 0.5, 0)
    table = TransferTable()
    table.add(info, a, 0.25)
    table.add(info, b, 0.5)
    [(key, weights, intervals)] = table.items()
    assert key == info
    assert weights == [0.25, 0.5]
    assert intervals[0] is a and intervals[1] is b


def test_table_add_empty_and_clear(world):
    r = world.r
    info = IntervalInfo(r.recombined_branch, 0.2, 1.5)
    table = TransferTable()
    table.add_empty(info)
    table.add_empty(info)
    assert len(table) == 1
    assert info in table
    assert table.items() == [(info, [], [])]
    table.clear()
    assert len(table) == 0


def test_table_items_are_sorted(world):
    r = world.r
    high = IntervalInfo(r.upper_transfer_branch, 1.5, 2.0)
    low = IntervalInfo(r.recombined_branch, 0.2, 1.5)
    table = TransferTable()
    table.add_empty(high)
    table.add_empty(low)
    keys = [info for info, _, _ in table.items()]
    assert keys == sorted(keys)
    assert keys[0] == low


def test_source_below_break_goes_to_recombined(world):
    r = world.r
    interval = Interval(r.source_branch, 0.2, 0.4, 0)
    table = TransferTable()
    process_source_interval(r, interval, 0.7, world.cc, table)
    [(info, weights, intervals)] = table.items()
    assert info == IntervalInfo(r.recombined_branch, 0.2, 0.4)
    assert weights == [0.7]
    assert intervals == [interval]


def test_source_above_break_goes_to_merging_point(world):
    r = world.r
    interval = Interval(r.source_branch, 0.6, 1.0, 0)
    table = TransferTable()
    process_source_interval(r, interval, 0.3, world.cc, table)
    [(info, weights, _)] = table.items()
    point = r.source_branch.upper_node.time
    assert info == IntervalInfo(r.merging_branch, point, point)
    assert weights == [0.3]


def test_source_split_conserves_mass(world):
    r = world.r
    interval = Interval(r.source_branch, 0.2, 1.0, 0)
    table = TransferTable()
    process_source_interval(r, interval, 0.8, world.cc, table)
    entries = {info: weights for info, weights, _ in table.items()}
    assert IntervalInfo(r.recombined_branch, 0.2, r.start_time) in entries
    assert sum(w for ws in entries.values() for w in ws) == pytest.approx(0.8)
    assert all(w > 0 for ws in entries.values() for w in ws)


def test_target_point_at_join_moves_to_recombined(world):
    r = world.r
    join = r.inserted_node.time
    interval = Interval(r.target_branch, join, join, 0)
    table = TransferTable()
    process_target_interval(r, interval, 0.4, world.cc, CUT_TIME, set(), table)
    [(info, weights, _)] = table.items()
    assert info == IntervalInfo(
        r.recombined_branch, r.start_time, r.recombined_branch.upper_node.time
    )
    assert weights == [0.4]


def test_target_above_join_goes_up(world):
    r = world.r
    interval = Interval(r.target_branch, 1.6, 2.0, 0)
    table = TransferTable()
    process_target_interval(r, interval, 0.4, world.cc, CUT_TIME, set(), table)
    [(info, _, _)] = table.items()
    assert info == IntervalInfo(r.upper_transfer_branch, 1.6, 2.0)


def test_target_below_join_goes_down(world):
    r = world.r
    interval = Interval(r.target_branch, 0.2, 1.0, 0)
    table = TransferTable()
    process_target_interval(r, interval, 0.4, world.cc, CUT_TIME, set(), table)
    [(info, _, _)] = table.items()
    assert info == IntervalInfo(r.lower_transfer_branch, 0.2, 1.0)


def test_target_split_conserves_mass(world):
    r = world.r
    interval = Interval(r.target_branch, 0.2, 2.0, 0)
    table = TransferTable()
    process_target_interval(r, interval, 0.9, world.cc, CUT_TIME, set(), table)
    items = table.items()
    assert len(items) == 3
    total = sum(w for _, ws, _ in items for w in ws)
    assert total == pytest.approx(0.9)


def test_target_split_at_check_point_skips_overwrite(world):
    r = world.r
    interval = Interval(r.target_branch, 0.2, 2.0, 0)
    table = TransferTable()
    process_target_interval(r, interval, 0.9, world.cc, CUT_TIME, {r.pos}, table)
    entries = {info: weights for info, weights, _ in table.items()}
    recombined = IntervalInfo(
        r.recombined_branch, r.start_time, r.recombined_branch.upper_node.time
    )
    assert entries[recombined] == [0.0]


def test_overwrite_prob_zero_at_check_point(world):
    r = world.r
    assert overwrite_prob(r, 0.2, 2.0, world.cc, CUT_TIME, {r.pos}) == 0.0


def test_overwrite_prob_is_a_probability(world):
    r = world.r
    p = overwrite_prob(r, 0.2, 2.0, world.cc, CUT_TIME, set())
    assert 0.0 < p < 1.0


def test_overwrite_prob_without_mass_is_one(world):
    r = world.r
    join = r.inserted_node.time
    degenerate = SimpleNamespace(pos=r.pos, start_time=join, inserted_node=r.inserted_node)
    assert overwrite_prob(degenerate, 1.0, 1.0, world.cc, CUT_TIME, set()) == 1.0


def test_add_new_branches_adds_both(world):
    r = world.r
    table = TransferTable()
    add_new_branches(r, CUT_TIME, table)
    assert IntervalInfo(r.merging_branch, CUT_TIME, 2.0) in table
    assert IntervalInfo(r.recombined_branch, CUT_TIME, 1.5) in table
    assert all(ws == [] for _, ws, _ in table.items())


def test_add_new_branches_skips_branches_below_cut(world):
    r = world.r
    table = TransferTable()
    add_new_branches(r, 1.6, table)
    assert len(table) == 1
    assert IntervalInfo(r.merging_branch, 1.6, 2.0) in table


def test_add_new_branches_skips_missing_branch(world):
    r = SimpleNamespace(merging_branch=Branch(), recombined_branch=Branch())
    table = TransferTable()
    add_new_branches(r, CUT_TIME, table)
    assert len(table) == 0


def test_simplify_keeps_changes_and_end(world):
    r = world.r
    a, b = r.source_branch, r.target_branch
    result = simplify_joining_branches({3.0: b, 0.0: a, 1.0: a, 2.0: b, 4.0: b})
    assert list(result.items()) == [(0.0, a), (2.0, b), (4.0, b)]


def test_simplify_single_entry(world):
    a = world.r.source_branch
    assert simplify_joining_branches({5.0: a}) == {5.0: a}


def test_simplify_empty_raises():
    with pytest.raises(ValueError):
        simplify_joining_branches({})