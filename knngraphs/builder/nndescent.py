"""
NN-Descent: approximate k-NN graph construction by iterative refinement.

Based on Dong, Charikar & Li, "Efficient k-nearest neighbor graph construction
for generic similarity measures" (WWW 2011). The key insight: a neighbor of a
neighbor is likely to be a neighbor too.

Each round runs as bulk-synchronous steps over the partitioned graph:
1. Every node samples up to rho * k of its new entries and flags them old
2. Every node sends itself to its neighbors (reverse edges) and collects its
   own neighbors (forward edges), each edge tagged new or old
3. For every node, new and old candidates are paired ("local join"): new
   with new, and new with old. Two old candidates were already compared in
   an earlier round and are skipped
4. Each pair is proposed to both endpoints; proposals are merged into the
   NeighborLists and successful insertions are counted

Entries inserted in a round are new, so once the lists stop changing, rounds
compute no similarities.

The loop stops after max_iterations rounds, or earlier when fewer than
delta * n * k insertions happened in a round.
"""

import logging
import time
from typing import Iterator, List, Tuple

from knngraphs.builder.base import GraphBuilder
from knngraphs.graph import DistributedGraph, NeighborList, Node
from knngraphs.parallel import PartitionedCollection
from knngraphs.statistics import StatisticsContainer
from knngraphs.utils import sample, sample_size

logger = logging.getLogger(__name__)

_FORWARD = 0
_REVERSE = 1


class NNDescent(GraphBuilder):
    """
    Approximate k-NN graph builder.

    Attributes set by a build:
        iterations: Number of rounds actually run
        history: Number of NeighborList changes in each round
    """

    def __init__(
        self,
        k: int = 10,
        similarity=None,
        max_iterations: int = 10,
        rho: float = 0.5,
        delta: float = 0.001,
        context=None,
    ) -> None:
        """
        Initialize NN-Descent.

        Args:
            k: Number of neighbors per node
            similarity: Function similarity(a, b) -> float on node values
            max_iterations: Maximum number of refinement rounds (>= 1)
            rho: Fraction of forward/reverse neighbors sampled per round (0 < rho <= 1)
            delta: Early termination threshold, as a fraction of n * k changes
            context: Execution context
        """
        super().__init__(k=k, similarity=similarity, context=context)

        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        if not 0.0 < rho <= 1.0:
            raise ValueError(f"rho must be in (0, 1], got {rho}")
        if not 0.0 <= delta < 1.0:
            raise ValueError(f"delta must be in [0, 1), got {delta}")

        self.max_iterations = max_iterations
        self.rho = rho
        self.delta = delta

        self.iterations = 0
        self.history: List[int] = []

    def _compute_graph(self, nodes: PartitionedCollection) -> DistributedGraph:
        nodes = nodes.materialize()
        n = nodes.count()

        self.iterations = 0
        self.history = []

        graph = self._initialize(nodes, n)
        if n <= 1:
            return DistributedGraph(graph)

        threshold = self.delta * n * self.k

        for iteration in range(self.max_iterations):
            start = time.time()
            graph, changes = self._iterate(graph)
            self.iterations = iteration + 1
            self.history.append(changes)

            logger.debug(
                f"NNDescent round {self.iterations}: {changes} changes "
                f"(threshold {threshold:.1f}) in {time.time() - start:.2f}s"
            )

            if changes < threshold:
                break
        else:
            logger.info(
                f"NNDescent stopped after {self.max_iterations} rounds without "
                f"reaching delta={self.delta}"
            )

        return DistributedGraph(graph)

    def _initialize(self, nodes: PartitionedCollection, n: int) -> PartitionedCollection:
        """Give every node k random neighbors."""
        k = self.k
        similarity = self.similarity
        statistics = self.statistics
        # Read by every partition task
        all_nodes = nodes.collect()

        def random_lists(index: int, items: Iterator[Node], rng) -> List[Tuple[Node, NeighborList]]:
            computed = 0
            result = []
            for node in items:
                neighbors = NeighborList(k, node)
                for other in sample(all_nodes, k + 1, rng):
                    if other.id == node.id or neighbors.is_full():
                        continue
                    neighbors.add(other, similarity(node.value, other.value))
                    computed += 1
                result.append((node, neighbors))
            statistics.add(StatisticsContainer(computed_similarities=computed))
            return result

        return nodes.map_partitions(random_lists).materialize()

    def _iterate(self, graph: PartitionedCollection) -> Tuple[PartitionedCollection, int]:
        """Run one round. Returns the new graph and the number of changes."""
        similarity = self.similarity
        statistics = self.statistics
        samples = sample_size(self.rho, self.k)

        def mark(index: int, items, rng) -> Iterator[Tuple[Node, NeighborList, List[Node]]]:
            for node, neighbors in items:
                fresh = [neighbor.node for neighbor in neighbors if neighbor.new]
                picked = sample(fresh, samples, rng)
                yield node, neighbors.mark_old({other.id for other in picked}), picked

        # Sampled new entries are flagged old before they are joined
        marked = graph.map_partitions(mark).materialize()

        def edges(entry) -> Iterator[Tuple[Node, Tuple[int, Node, bool]]]:
            node, neighbors, picked = entry
            picked_ids = {other.id for other in picked}
            for other in picked:
                yield node, (_FORWARD, other, True)
                yield other, (_REVERSE, node, True)
            for neighbor in neighbors:
                if not neighbor.new and neighbor.node.id not in picked_ids:
                    yield node, (_FORWARD, neighbor.node, False)
                    yield neighbor.node, (_REVERSE, node, False)

        candidates = marked.flat_map(edges).group_by_key()

        def local_join(index: int, items, rng) -> Iterator[Tuple[Node, Tuple[Node, float]]]:
            computed = 0
            for node, tagged in items:
                fresh = [o for d, o, new in tagged if new and d == _FORWARD]
                fresh += sample([o for d, o, new in tagged if new and d == _REVERSE], samples, rng)
                old = [o for d, o, new in tagged if not new and d == _FORWARD]
                old += sample([o for d, o, new in tagged if not new and d == _REVERSE], samples, rng)

                new_pool = {other.id: other for other in fresh if other.id != node.id}
                old_pool = {
                    other.id: other
                    for other in old
                    if other.id != node.id and other.id not in new_pool
                }
                new_members = list(new_pool.values())
                old_members = list(old_pool.values())

                # new x new and new x old: old pairs were joined in an earlier round
                for i, first in enumerate(new_members):
                    for second in new_members[i + 1:] + old_members:
                        score = similarity(first.value, second.value)
                        computed += 1
                        yield first, (second, score)
                        yield second, (first, score)

            statistics.add(StatisticsContainer(computed_similarities=computed))

        proposals = candidates.map_partitions(local_join)
        lists = marked.map(lambda entry: (entry[0], entry[1]))

        merged = (
            lists.map_values(lambda neighbors: (True, neighbors))
            .union(proposals.map_values(lambda proposal: (False, proposal)))
            .group_by_key(graph.num_partitions)
            .map_values(_apply_proposals)
            .filter(lambda pair: pair[1] is not None)
            .materialize()
        )

        changes = sum(changes for _, (_, changes) in merged.collect())
        return merged.map_values(lambda result: result[0]).materialize(), changes


def _apply_proposals(values: List[Tuple[bool, object]]):
    """Insert the proposals received by a node into a copy of its list."""
    current = None
    proposals = []
    for is_list, value in values:
        if is_list:
            current = value
        else:
            proposals.append(value)

    # Proposals for nodes that are not in the graph are dropped
    if current is None:
        return None

    updated = current.copy()
    changes = 0
    for other, score in proposals:
        if updated.add(other, score):
            changes += 1
    return updated, changes
