"""Nodes, branches, coalescent and emission models, and branch-sequence HMMs for threading a lineage onto an ARG."""

__version__ = "0.1.0"
__all__ = [
    "branch",
    "bsp",
    "bsp_smc",
    "coalescent",
    "emission",
    "interval",
    "node",
    "transfer",
]