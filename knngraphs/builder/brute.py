"""
Exact k-NN graph construction.

Every partition is paired with every partition (itself included). For each
pair of blocks, every node of the left block is compared with every node of the
right block and keeps its k best candidates. The partial lists of a node are
then merged across blocks with the NeighborList insertion policy.

Cost: n * n similarities (each node is also scored against itself, then
rejected by id). Brute is the reference builder for small and
medium datasets and the ground truth for approximate builders.
"""

import logging
from typing import Iterator, List, Tuple

from knngraphs.builder.base import GraphBuilder
from knngraphs.graph import DistributedGraph, NeighborList, Node
from knngraphs.parallel import PartitionedCollection
from knngraphs.statistics import StatisticsContainer
from knngraphs.utils import select_top_k

logger = logging.getLogger(__name__)


class Brute(GraphBuilder):
    """
    Builds the exact k-NN graph by comparing all pairs of nodes.

    A node never appears in its own NeighborList, even if the similarity of a
    value with itself is the highest one: nodes are excluded by id.
    """

    def _compute_graph(self, nodes: PartitionedCollection) -> DistributedGraph:
        k = self.k
        similarity = self.similarity

        def block_neighbors(
            blocks: Tuple[List[Node], List[Node]]
        ) -> Iterator[Tuple[Node, NeighborList]]:
            left, right = blocks
            values = [other.value for other in right]
            for node in left:
                value = node.value
                similarities = [similarity(value, other) for other in values]
                yield node, select_top_k(node, right, similarities, k)

        blocks = nodes.materialize().glom().materialize()
        partial = blocks.cartesian(blocks).flat_map(block_neighbors)
        graph = partial.reduce_by_key(NeighborList.merge, nodes.num_partitions)

        n = nodes.count()
        self.statistics.add(StatisticsContainer(computed_similarities=n * n))
        logger.debug(f"Brute: {n * n} similarities over {blocks.num_partitions ** 2} blocks")

        return DistributedGraph(graph)
