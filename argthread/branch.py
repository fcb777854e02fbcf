"""Branches between two nodes of an ancestral recombination graph."""

from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import Optional

from argthread.node import Node


def _node_less(a: Optional[Node], b: Optional[Node]) -> bool:
    if a is b:
        return False
    if a is None:
        return True
    if b is None:
        return False
    return a < b


@functools.total_ordering
@dataclass(frozen=True)
class Branch:
    """An edge from ``lower_node`` up to ``upper_node``; both ``None`` means no branch."""

    lower_node: Optional[Node] = None
    upper_node: Optional[Node] = None

    def __post_init__(self) -> None:
        if self.lower_node is None and self.upper_node is None:
            return
        if self.lower_node is None or self.upper_node is None:
            raise ValueError("a branch needs both a lower and an upper node")
        if not self.lower_node.time < self.upper_node.time:
            raise ValueError("the lower node must be younger than the upper node")

    def length(self) -> float:
        """Time spanned by the branch."""
        if self.lower_node is None or self.upper_node is None:
            raise ValueError("the empty branch has no length")
        return self.upper_node.time - self.lower_node.time

    def __lt__(self, other):
        if not isinstance(other, Branch):
            return NotImplemented
        if _node_less(self.upper_node, other.upper_node):
            return True
        if _node_less(other.upper_node, self.upper_node):
            return False
        return _node_less(self.lower_node, other.lower_node)