# argthread

Building blocks for threading a new lineage onto an ancestral recombination
graph (ARG): a branch-sequence hidden Markov model that runs along the genome,
and the coalescent and mutation-emission models it relies on. There are no
third-party dependencies.

## Modules

- `argthread.node` — `Node`: a time, an integer `index` and a sparse record of
  derived states by site (`add_mutation`, `get_state`, `write_state`,
  `read_mutation` for a whitespace-separated file of positions). Nodes order by
  time, then index; comparing two distinct nodes with equal time and index
  raises `ValueError`.
- `argthread.branch` — `Branch(lower_node, upper_node)`: a frozen, hashable,
  ordered edge. `Branch()` is the empty branch. The lower node must be strictly
  younger than the upper node, otherwise `ValueError`. `length()` gives the
  time it spans.
- `argthread.coalescent` — `CoalescentCalculator(cut_time)`: after
  `compute(branches)`, gives the cumulative coalescence probability `prob(x)`,
  the mass `weight(lb, ub)` of a time range, a representative time
  `time(lb, ub)` (the median, or the midpoint for narrow ranges, or
  `lb + log 2` when `ub` is infinite) and `quantile(p)`.
- `argthread.emission` — the abstract `Emission` with `null_emit`, `mut_emit`
  and `emit`, and two models: `BinaryEmission`, which counts state changes on
  the lower, upper and query segments, and `PolarEmission`, which keeps the
  direction of each change, penalises changes on the query segment and
  rewards an ancestral state at the root.
- `argthread.interval` — `Interval`, a time range on a branch that is one HMM
  state (`assign_time`, `fill_time`, `full`), and `IntervalInfo`, its hashable,
  ordered key.
- `argthread.transfer` — carrying HMM mass across a recombination:
  `TransferTable` and the functions `overwrite_prob`,
  `process_source_interval`, `process_target_interval`, `add_new_branches` and
  `simplify_joining_branches`.
- `argthread.bsp` — `BSP` and `argthread.bsp_smc` — `SMCBSP`: the forward pass
  (`start`, `forward`, `transfer`, `null_emit`, `mut_emit`) and stochastic
  traceback (`sample_joining_branches`), plus `avg_num_states` and
  `write_forward_probs`. `BSP` keeps per-step times and weights, prunes
  partial states at `cutoff` and also has `write_recomb_weight_sums`; `SMCBSP`
  stores time and weight on each interval and has the consistency checks
  `check_recomb_sums` and `check_intervals`, which raise `RuntimeError`.
  Both take an `Emission`, a `cutoff`, a set of `check_points` and a
  `random.Random` for reproducible sampling.

## Installation

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
from argthread.node import Node
from argthread.branch import Branch
from argthread.coalescent import CoalescentCalculator

root = Node(float("inf"))
a, b = Node(0.0), Node(0.0)
top = Node(1.0)
branches = {Branch(a, top), Branch(b, top), Branch(top, root)}

cc = CoalescentCalculator(0.0)
cc.compute(branches)
print(cc.weight(0.0, 1.0), cc.time(0.0, 1.0))
```

Times are in coalescent units. A node's state at a site is 1 if it carries the
derived allele there and 0 otherwise. The root node is expected to have
`index == -1`.

## What the package does not do

There is no ARG container here: nothing builds, stores, reads or writes a full
graph, samples recombinations, or normalises times, and there is no command
to run. The recombination objects passed to `BSP.transfer` and
`SMCBSP.transfer` come from the caller. They need the attributes `pos`,
`start_time`, `inserted_node`, `deleted_branches`, `inserted_branches`,
`source_branch`, `target_branch`, `recombined_branch`, `merging_branch`,
`lower_transfer_branch` and `upper_transfer_branch`; `BSP` also reads
`source_sister_branch` and `source_parent_branch`, and `SMCBSP` calls
`affect(branch)`.