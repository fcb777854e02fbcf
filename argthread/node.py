"""Nodes of an ancestral recombination graph."""

from __future__ import annotations

import os


class Node:
    """A graph node with a coalescence time, an index and allele states by site."""

    def __init__(self, time):
        self.time = float(time)
        self.index = 0
        self.mutation_sites: dict[float, float] = {}

    def __repr__(self) -> str:
        return f"Node(time={self.time!r}, index={self.index!r})"

    def __lt__(self, other):
        if not isinstance(other, Node):
            return NotImplemented
        if self.time != other.time:
            return self.time < other.time
        if self.index != other.index:
            return self.index < other.index
        if self is not other:
            raise ValueError(
                "bad comparison: distinct nodes share the same time and index"
            )
        return False

    def add_mutation(self, pos) -> None:
        """Mark the derived allele at ``pos``."""
        self.mutation_sites[pos] = 1.0

    def get_state(self, pos) -> float:
        """Return the allele state at ``pos`` (0 unless a derived allele is recorded)."""
        return self.mutation_sites.get(pos, 0.0)

    def write_state(self, pos, state) -> None:
        """Set the state at ``pos``; only the values 0 and 1 have an effect."""
        if state == 0:
            self.mutation_sites.pop(pos, None)
        elif state == 1:
            self.mutation_sites[pos] = 1.0

    def read_mutation(self, filename: str | os.PathLike) -> None:
        """Read whitespace-separated mutation positions, stopping at the first non-number."""
        with open(filename, encoding="utf-8") as handle:
            for token in handle.read().split():
                try:
                    pos = float(token)
                except ValueError:
                    break
                self.add_mutation(pos)