"""
Nearest-neighbor search on a partitioned k-NN graph.

ApproximateSearch runs a bounded greedy walk inside every partition:
1. Score a random sample of the partition's nodes (seeds)
2. Starting from the best seed, keep a frontier of the `expansion` most
   similar nodes; each hop scores the neighbors of the frontier nodes
3. Stop a walk when no neighbor improves the frontier or after `jumps` hops,
   then restart from the next best seed
4. Stop the partition when its similarity budget is spent

Neighbors stored in another partition are scored (their value travels with the
neighbor list) but cannot be expanded. The best candidates of every partition
are merged into the final NeighborList.

The budget of a partition is max(speedup * k, partition_size / speedup)
similarities: speedup is the expected gain over an exhaustive scan.

ExhaustiveSearch compares the query with every node and is used as ground
truth when measuring the accuracy of ApproximateSearch.
"""

import logging
import math
from typing import Callable, Dict, List, Optional, Tuple, Union

import numpy as np

from knngraphs.config import KNNGraphConfig
from knngraphs.graph import DistributedGraph, NeighborList, Node
from knngraphs.parallel import PartitionedCollection
from knngraphs.partitioner import GraphPartitioner
from knngraphs.statistics import StatisticsAccumulator, StatisticsContainer
from knngraphs.utils import sample

logger = logging.getLogger(__name__)

Similarity = Callable[[object, object], float]


class _LocalGraph:
    """Neighbor lists of one partition, indexed by node id."""

    def __init__(self, items: List[Tuple[Node, NeighborList]]) -> None:
        self.nodes = [node for node, _ in items]
        self.neighbors: Dict[str, NeighborList] = {
            node.id: neighbors for node, neighbors in items
        }

    def __len__(self) -> int:
        return len(self.nodes)


class ApproximateSearch:
    """
    Approximate k-NN search on a partitioned graph.

    The graph is partitioned once, at construction, so that connected nodes
    tend to share a partition.
    """

    DEFAULT_SPEEDUP = 4.0
    DEFAULT_JUMPS = 10
    DEFAULT_EXPANSION = 3

    # Share of the budget spent on random seeds
    SEED_FRACTION = 0.5

    def __init__(
        self,
        graph: DistributedGraph,
        partitioning_iterations: int,
        partitions: int,
        similarity: Similarity,
        balance_factor: float = GraphPartitioner.DEFAULT_BALANCE_FACTOR,
        speedup: float = DEFAULT_SPEEDUP,
        jumps: int = DEFAULT_JUMPS,
        expansion: int = DEFAULT_EXPANSION,
    ) -> None:
        """
        Partition the graph and prepare it for search.

        Args:
            graph: k-NN graph produced by a builder
            partitioning_iterations: Balancing rounds (0 = random partitions)
            partitions: Number of partitions
            similarity: Similarity used to compare the query with node values
            balance_factor: Maximum partition size, as a multiple of n / partitions
            speedup: Default speedup of search()
            jumps: Default jumps of search()
            expansion: Default expansion of search()
        """
        if not callable(similarity):
            raise ValueError("similarity must be a callable similarity(a, b) -> float")
        _validate_walk(speedup, jumps, expansion)

        self.similarity = similarity
        self.speedup = speedup
        self.jumps = jumps
        self.expansion = expansion
        self.partitioner = GraphPartitioner(
            partitions, partitioning_iterations, balance_factor
        )
        self.graph = self.partitioner.partition(graph)

        self._local_graphs = self.graph.collection.map_partitions(
            lambda index, items, rng: [_LocalGraph(list(items))]
        ).materialize()

    @classmethod
    def from_config(
        cls, graph: DistributedGraph, config: KNNGraphConfig, similarity: Similarity
    ) -> "ApproximateSearch":
        """Search with the partitioning and search defaults of a KNNGraphConfig."""
        return cls(
            graph,
            config.partitioning_iterations,
            config.partitions,
            similarity,
            balance_factor=config.balance_factor,
            speedup=config.search_speedup,
            jumps=config.search_jumps,
            expansion=config.search_expansion,
        )

    def get_graph(self) -> DistributedGraph:
        """The partitioned graph searched by this instance."""
        return self.graph

    def search(
        self,
        query: Node,
        k: int = 1,
        speedup: Optional[float] = None,
        jumps: Optional[int] = None,
        expansion: Optional[int] = None,
        stats: Optional[StatisticsAccumulator] = None,
    ) -> NeighborList:
        """
        Search the k nodes most similar to the query.

        Args:
            query: Query node (a graph node with the same id is never returned)
            k: Number of results
            speedup: Budget divider (budget = partition size / speedup),
                     defaults to the value given at construction
            jumps: Maximum hops of a single walk (same default rule)
            expansion: Width of the walk frontier (same default rule)
            stats: Accumulator receiving the statistics of every partition

        Returns:
            NeighborList of up to k results, most similar first
        """
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        speedup = self.speedup if speedup is None else speedup
        jumps = self.jumps if jumps is None else jumps
        expansion = self.expansion if expansion is None else expansion
        _validate_walk(speedup, jumps, expansion)

        similarity = self.similarity

        def search_partition(index: int, items, rng) -> List[NeighborList]:
            results = []
            for local in items:
                found, local_stats = _walk(
                    local, query, k, speedup, jumps, expansion, similarity, rng
                )
                if stats is not None:
                    stats.add(local_stats)
                results.append(found)
            return results

        partials = self._local_graphs.map_partitions(search_partition).collect()

        result = NeighborList(k, query)
        for found in partials:
            result.add_all(found)

        logger.debug(f"Search {query.id!r}: {len(result)} results from {len(partials)} partitions")
        return result


def _validate_walk(speedup: float, jumps: int, expansion: int) -> None:
    if speedup <= 0:
        raise ValueError(f"speedup must be positive, got {speedup}")
    if jumps < 1:
        raise ValueError(f"jumps must be >= 1, got {jumps}")
    if expansion < 1:
        raise ValueError(f"expansion must be >= 1, got {expansion}")


def _walk(
    local: _LocalGraph,
    query: Node,
    k: int,
    speedup: float,
    jumps: int,
    expansion: int,
    similarity: Similarity,
    rng: np.random.Generator,
) -> Tuple[NeighborList, StatisticsContainer]:
    """Greedy walks inside one partition, within its similarity budget."""
    stats = StatisticsContainer()
    results = NeighborList(k, query)

    if len(local) == 0:
        return results, stats

    budget = max(int(math.ceil(speedup * k)), int(math.ceil(len(local) / speedup)))
    scored = set()

    def score(node: Node) -> float:
        value = similarity(query.value, node.value)
        stats.search_similarities += 1
        scored.add(node.id)
        results.add(node, value)
        return value

    seed_count = min(len(local), max(expansion, int(math.ceil(budget * ApproximateSearch.SEED_FRACTION))))
    seeds = NeighborList(seed_count, query)
    for node in sample(local.nodes, seed_count, rng):
        seeds.add(node, score(node))

    expanded = set()

    for seed in seeds:
        if stats.search_similarities >= budget:
            break
        if seed.node.id in expanded:
            continue

        stats.search_restarts += 1
        frontier = NeighborList(expansion, query)
        frontier.add(seed.node, seed.similarity)

        for _ in range(jumps):
            pending = [n.node for n in frontier if n.node.id not in expanded]
            if not pending:
                break

            improved = False
            for current in pending:
                if stats.search_similarities >= budget:
                    break
                expanded.add(current.id)
                stats.search_visited += 1

                for neighbor in local.neighbors[current.id]:
                    if stats.search_similarities >= budget:
                        break
                    if neighbor.node.id in scored:
                        continue

                    value = score(neighbor.node)
                    if neighbor.node.id not in local.neighbors:
                        stats.search_cross_partition += 1
                        continue

                    # Only local nodes can be expanded later
                    if frontier.add(neighbor.node, value):
                        improved = True

            if not improved or stats.search_similarities >= budget:
                break

    return results, stats


class ExhaustiveSearch:
    """
    Exact k-NN search by scanning every node.

    Ignores the graph edges. Cost is one similarity per node, so it is meant
    for validation, not for serving queries.
    """

    def __init__(
        self,
        graph: Union[DistributedGraph, PartitionedCollection],
        similarity: Similarity,
    ) -> None:
        """
        Args:
            graph: DistributedGraph, or PartitionedCollection of Nodes
            similarity: Similarity used to compare the query with node values
        """
        if not callable(similarity):
            raise ValueError("similarity must be a callable similarity(a, b) -> float")

        if isinstance(graph, DistributedGraph):
            self.nodes = graph.nodes().materialize()
        else:
            self.nodes = graph.materialize()

        self.similarity = similarity

    def search(self, query: Node, k: int = 1) -> NeighborList:
        """
        Find the k nodes most similar to the query.

        Args:
            query: Query node (a node with the same id is never returned)
            k: Number of results

        Returns:
            NeighborList of the true top-k nodes
        """
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")

        similarity = self.similarity

        def scan(index: int, items, rng) -> List[NeighborList]:
            found = NeighborList(k, query)
            for node in items:
                found.add(node, similarity(query.value, node.value))
            return [found]

        result = NeighborList(k, query)
        for found in self.nodes.map_partitions(scan).collect():
            result.add_all(found)
        return result
