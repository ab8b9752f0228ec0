"""
Utility functions shared by graph builders and searchers.

- Sampling: pick a random subset of candidates with a task-local generator
- Top-k selection: turn raw (similarity, node) scores into a NeighborList

Randomized helpers never touch global random state. They take the numpy
Generator of the task they run in.
"""

import heapq
import math
from typing import List, Sequence, TypeVar

import numpy as np

from knngraphs.graph import Node, NeighborList

T = TypeVar("T")


def sample(items: Sequence[T], count: int, rng: np.random.Generator) -> List[T]:
    """
    Draw up to count distinct items uniformly at random.

    Args:
        items: Population to sample from
        count: Number of items wanted (all items are returned if count >= len)
        rng: Random generator of the calling task

    Returns:
        List of sampled items (order is random)

    Example:
        >>> rng = np.random.default_rng(0)
        >>> len(sample(list(range(100)), 5, rng))
        5
    """
    if count <= 0 or len(items) == 0:
        return []

    if count >= len(items):
        return list(items)

    indices = rng.choice(len(items), size=count, replace=False)
    return [items[i] for i in indices]


def sample_size(rho: float, k: int) -> int:
    """Number of candidates kept when sampling a fraction rho of k entries."""
    return max(1, int(math.ceil(rho * k)))


def select_top_k(
    owner: Node, candidates: Sequence[Node], similarities: Sequence[float], k: int
) -> NeighborList:
    """
    Build the NeighborList of owner from scored candidates.

    Only the k + 1 best candidates are inserted (one extra slot in case the
    owner itself is among them). Candidates are inserted best first, so among
    equal similarities the earliest candidate wins, as with one-by-one
    insertion.

    Args:
        owner: Node the list belongs to
        candidates: Candidate neighbors
        similarities: Similarity of each candidate (parallel to candidates)
        k: Size of the NeighborList

    Returns:
        NeighborList with at most k entries
    """
    neighbors = NeighborList(k, owner)
    best = heapq.nlargest(
        k + 1, range(len(similarities)), key=similarities.__getitem__
    )
    for index in best:
        neighbors.add(candidates[index], similarities[index])
    return neighbors
