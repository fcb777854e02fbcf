import math
import random

import pytest

from argthread.branch import Branch
from argthread.bsp_smc import SMCBSP
from argthread.emission import PolarEmission
from argthread.node import Node

CUT = 0.5


def _node(time, index):
    n = Node(time)
    n.index = index
    return n


class _Recombination:
    def __init__(self, **kwargs):
        self.__dict__.update(kwargs)

    def affect(self, branch):
        return branch in (self.source_sister_branch, self.source_parent_branch)


def _world():
    a, b, c = _node(0.0, 0), _node(0.0, 1), _node(0.0, 2)
    n1, n2, n3 = _node(1.0, 3), _node(2.0, 4), _node(1.5, 5)
    root = _node(math.inf, -1)
    tree1 = {
        Branch(a, n1),
        Branch(b, n1),
        Branch(n1, n2),
        Branch(c, n2),
        Branch(n2, root),
    }
    tree2 = {
        Branch(a, n2),
        Branch(b, n3),
        Branch(c, n3),
        Branch(n3, n2),
        Branch(n2, root),
    }
    r = _Recombination(
        pos=5.0,
        start_time=0.8,
        deleted_node=n1,
        inserted_node=n3,
        source_branch=Branch(b, n1),
        source_sister_branch=Branch(a, n1),
        source_parent_branch=Branch(n1, n2),
        merging_branch=Branch(a, n2),
        target_branch=Branch(c, n2),
        recombined_branch=Branch(b, n3),
        lower_transfer_branch=Branch(c, n3),
        upper_transfer_branch=Branch(n3, n2),
        deleted_branches={Branch(a, n1), Branch(b, n1), Branch(n1, n2), Branch(c, n2)},
        inserted_branches={Branch(a, n2), Branch(b, n3), Branch(c, n3), Branch(n3, n2)},
    )
    nodes = {"a": a, "b": b, "c": c, "n1": n1, "n2": n2, "n3": n3, "root": root}
    return tree1, tree2, r, nodes


def _started(seed=0, emission=None):
    tree1, tree2, r, nodes = _world()
    bsp = SMCBSP(emission=emission, rng=random.Random(seed))
    bsp.start(tree1, CUT)
    return bsp, tree1, tree2, r, nodes


def test_start_creates_one_interval_per_branch_with_unit_mass():
    bsp, tree1, *_ = _started()
    assert {i.branch for i in bsp.curr_intervals} == tree1
    assert len(bsp.forward_probs) == 1
    assert math.isclose(sum(bsp.forward_probs[0]), 1.0, rel_tol=1e-9)
    for interval in bsp.curr_intervals:
        assert interval.lb <= interval.time <= interval.ub


def test_start_without_live_branch_raises():
    tree1, *_ = _world()
    bsp = SMCBSP()
    with pytest.raises(ValueError):
        bsp.start(tree1, math.inf)


def test_recomb_prob_vanishes_at_cut_time_and_for_zero_rho():
    bsp, *_ = _started()
    assert bsp.recomb_prob(1.0, CUT) == 0.0
    assert bsp.recomb_prob(0.0, 3.0) == 0.0
    assert bsp.recomb_prob(1.0, 1.5) > 0.0


def test_forward_conserves_mass():
    bsp, *_ = _started()
    before = sum(bsp.forward_probs[0])
    bsp.forward(0.3)
    bsp.forward(0.3)
    assert len(bsp.forward_probs) == 3
    assert math.isclose(sum(bsp.forward_probs[2]), before, rel_tol=1e-9)
    assert len(bsp.recomb_sums) == 2
    assert all(s > 0 for s in bsp.recomb_sums)


def test_check_recomb_sums_detects_corruption():
    bsp, *_ = _started()
    bsp.forward(0.2)
    bsp.forward(0.2)
    bsp.forward(0.2)
    bsp.recomb_sums[0] *= 2
    with pytest.raises(RuntimeError):
        bsp.check_recomb_sums()


def test_null_emit_requires_emission():
    bsp, _, _, _, nodes = _started()
    with pytest.raises(RuntimeError):
        bsp.null_emit(0.1, _node(0.0, 9))


def test_null_emit_normalises_row():
    bsp, *_ = _started(emission=PolarEmission())
    bsp.forward(0.1)
    bsp.null_emit(0.5, _node(0.0, 9))
    row = bsp.forward_probs[1]
    assert math.isclose(sum(row), 1.0, rel_tol=1e-12)
    assert all(v >= 0 for v in row)


def test_mut_emit_scales_by_emission():
    emission = PolarEmission()
    bsp, _, _, _, nodes = _started(emission=emission)
    query = _node(0.0, 9)
    query.write_state(10.0, 1)
    nodes["a"].write_state(10.0, 1)
    before = list(bsp.forward_probs[0])
    bsp.mut_emit(0.5, 1.0, {10.0}, query)
    after = bsp.forward_probs[0]
    assert math.isclose(sum(after), 1.0, rel_tol=1e-12)
    e = [
        emission.mut_emit(i.branch, i.time, 0.5, 1.0, {10.0}, query)
        for i in bsp.curr_intervals
    ]
    ratio_after = after[0] / after[1]
    ratio_expected = before[0] * e[0] / (before[1] * e[1])
    assert math.isclose(ratio_after, ratio_expected, rel_tol=1e-9)


def test_transfer_conserves_mass_and_matches_new_tree():
    bsp, _, tree2, r, _ = _started()
    bsp.forward(0.2)
    before = sum(bsp.forward_probs[1])
    bsp.transfer(r)
    assert math.isclose(sum(bsp.forward_probs[2]), before, rel_tol=1e-9)
    assert bsp.valid_branches == tree2
    full = {i.branch for i in bsp.curr_intervals if i.full(CUT)}
    assert full == tree2
    assert all(i.start_pos == 2 for i in bsp.curr_intervals)


def test_check_intervals_rejects_unknown_valid_branch():
    bsp, _, _, _, nodes = _started()
    bsp.valid_branches.add(Branch(nodes["c"], nodes["n3"]))
    with pytest.raises(RuntimeError):
        bsp.check_intervals()


def test_transfer_rejects_deleting_unknown_branch():
    bsp, _, _, r, nodes = _started()
    bsp.valid_branches.discard(Branch(nodes["a"], nodes["n1"]))
    with pytest.raises(ValueError):
        bsp.transfer(r)


def test_avg_num_states_without_transfer_is_nan():
    bsp, *_ = _started()
    bsp.forward(0.1)
    value = bsp.avg_num_states()
    assert str(value) == "nan"
    assert len(bsp.forward_probs) == 2


def test_avg_num_states_after_transfer_counts_new_states():
    bsp, _, _, r, _ = _started()
    bsp.forward(0.1)
    bsp.transfer(r)
    assert bsp.avg_num_states() == len(bsp.state_spaces[2])


@pytest.mark.parametrize("seed", range(8))
def test_sample_joining_branches_without_recombination(seed):
    bsp, tree1, *_ = _started(seed=seed)
    for _ in range(3):
        bsp.forward(0.3)
    coordinates = [0.0, 1.0, 2.0, 3.0, 4.0]
    joining = bsp.sample_joining_branches(0, coordinates)
    keys = list(joining)
    assert keys == sorted(keys)
    assert keys[0] == 0.0
    assert keys[-1] == 4.0
    assert set(keys) <= set(coordinates)
    assert set(joining.values()) <= tree1


@pytest.mark.parametrize("seed", range(8))
def test_sample_joining_branches_across_recombination(seed):
    bsp, tree1, tree2, r, _ = _started(seed=seed)
    bsp.forward(0.3)
    bsp.transfer(r)
    bsp.forward(0.3)
    coordinates = [0.0, 2.0, 5.0, 7.0, 9.0]
    joining = bsp.sample_joining_branches(0, coordinates)
    assert min(joining) == 0.0
    assert max(joining) == 9.0
    for pos, branch in joining.items():
        if pos < 5.0:
            assert branch in tree1
        elif pos < 9.0:
            assert branch in tree2
    consecutive = list(joining.values())[:-1]
    assert all(x != y for x, y in zip(consecutive, consecutive[1:]))


def test_write_forward_probs_round_trip(tmp_path):
    bsp, *_ = _started()
    bsp.forward(0.2)
    path = tmp_path / "fp.txt"
    bsp.write_forward_probs(path)
    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == len(bsp.forward_probs)
    for line, row in zip(lines, bsp.forward_probs):
        values = [float(v) for v in line.split()]
        assert len(values) == len(row)
        for v, expected in zip(values, row):
            assert math.isclose(v, expected, rel_tol=1e-5)