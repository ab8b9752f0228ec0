"""
Balanced graph partitioning.

Approximate search walks the graph inside each partition, so it works best
when nodes connected by an edge live in the same partition. The partitioner
starts from a uniformly random assignment and then, for a number of rounds:
1. Every node counts in which partition its neighbors currently are
2. A node proposes to move to the partition holding the strict majority of its
   neighbors (ties keep the node where it is)
3. Moves are applied in decreasing order of gain, as long as the target
   partition stays below ceil(balance_factor * n / P) nodes

Neighbor lists are never modified: edges crossing partitions keep pointing at
global node ids.
"""

import logging
import math
import time
from collections import Counter
from typing import Dict, Iterator, List, Optional, Tuple

from knngraphs.graph import DistributedGraph, NeighborList

logger = logging.getLogger(__name__)


class GraphPartitioner:
    """Rearranges a DistributedGraph into a fixed number of partitions."""

    DEFAULT_BALANCE_FACTOR = 1.2

    def __init__(
        self,
        partitions: int,
        iterations: int = 5,
        balance_factor: float = DEFAULT_BALANCE_FACTOR,
    ) -> None:
        """
        Initialize the partitioner.

        Args:
            partitions: Number of partitions of the result (>= 1)
            iterations: Balancing rounds (0 = random assignment only)
            balance_factor: Maximum partition size, as a multiple of n / partitions
        """
        _validate(partitions, iterations)
        if balance_factor < 1.0:
            raise ValueError(f"balance_factor must be >= 1.0, got {balance_factor}")

        self.partitions = partitions
        self.iterations = iterations
        self.balance_factor = balance_factor

        # Accepted moves per round of the last call
        self.history: List[int] = []

    def partition(
        self,
        graph: DistributedGraph,
        partition_count: Optional[int] = None,
        iterations: Optional[int] = None,
    ) -> DistributedGraph:
        """
        Partition a graph.

        Args:
            graph: Graph to partition (left unchanged)
            partition_count: Override the number of partitions for this call
            iterations: Override the number of balancing rounds for this call

        Returns:
            New DistributedGraph with exactly partition_count partitions
        """
        count = partition_count if partition_count is not None else self.partitions
        rounds = iterations if iterations is not None else self.iterations
        _validate(count, rounds)

        start = time.time()
        self.history = []

        current = (
            graph.collection
            .map_partitions(
                lambda index, items, rng: ((int(rng.integers(count)), pair) for pair in items)
            )
            .partition_by(lambda assigned: assigned[0], count)
            .map(lambda assigned: assigned[1])
            .materialize()
        )

        n = current.count()
        capacity = int(math.ceil(self.balance_factor * n / count)) if n else 0

        for iteration in range(rounds):
            # Synchronization point: every task reads the same assignment
            assignment = {
                node.id: index
                for index, items in enumerate(current.partitions())
                for node, _ in items
            }

            def propose(index: int, items, rng) -> Iterator[Tuple[int, float, str, int, int]]:
                for node, neighbors in items:
                    move = _majority_move(index, neighbors, assignment)
                    if move is not None:
                        target, gain = move
                        # Random key orders moves of equal gain
                        yield gain, float(rng.random()), node.id, index, target

            proposals = current.map_partitions(propose).collect()
            proposals.sort(key=lambda proposal: (-proposal[0], proposal[1]))

            sizes = [len(items) for items in current.partitions()]
            accepted: Dict[str, int] = {}
            for _, _, node_id, source, target in proposals:
                if sizes[target] + 1 > capacity:
                    continue
                sizes[target] += 1
                sizes[source] -= 1
                accepted[node_id] = target

            self.history.append(len(accepted))
            logger.debug(
                f"Partitioning round {iteration + 1}: {len(accepted)} of "
                f"{len(proposals)} proposed moves accepted"
            )

            if not accepted:
                break

            current = current.partition_by(
                lambda pair: accepted.get(pair[0].id, assignment[pair[0].id]), count
            ).materialize()

        logger.info(
            f"Partitioned {n} nodes into {count} partitions "
            f"({len(self.history)} rounds) in {time.time() - start:.2f}s"
        )
        return DistributedGraph(current)


def _majority_move(
    current: int, neighbors: NeighborList, assignment: Dict[str, int]
) -> Optional[Tuple[int, int]]:
    """
    Partition holding the strict majority of a node's neighbors.

    Returns:
        (target partition, gain) or None if the node should stay
    """
    counts = Counter(
        assignment[neighbor.node.id]
        for neighbor in neighbors
        if neighbor.node.id in assignment
    )
    if not counts:
        return None

    ranked = counts.most_common(2)
    target, best = ranked[0]
    if len(ranked) > 1 and ranked[1][1] == best:
        return None

    if target == current:
        return None

    return target, best - counts.get(current, 0)


def _validate(partitions: int, iterations: int) -> None:
    if partitions < 1:
        raise ValueError(f"partition count must be >= 1, got {partitions}")
    if iterations < 0:
        raise ValueError(f"iterations must be >= 0, got {iterations}")
