"""
Common interface of the k-NN graph builders.

A builder turns a partitioned collection of Nodes into a DistributedGraph
mapping every node to its (approximate) k most similar nodes. Builders are
selected at construction time and share one small interface:

- compute_graph(nodes): distributed build on the builder's ExecutionContext
- build_local(nodes): same algorithm on a single inline partition, used to run
  an inner builder inside one LSH bucket
"""

import copy
import logging
import time
from typing import Callable, Dict, Iterable, Optional, Union

import numpy as np

from knngraphs.graph import DistributedGraph, NeighborList, Node
from knngraphs.parallel import ExecutionContext, PartitionedCollection, get_default_context
from knngraphs.statistics import StatisticsAccumulator

logger = logging.getLogger(__name__)

Similarity = Callable[[object, object], float]


class GraphBuilder:
    """
    Base class for graph builders.

    Subclasses implement _compute_graph(nodes), which receives a
    PartitionedCollection of Nodes and returns a DistributedGraph.
    """

    def __init__(
        self,
        k: int = 10,
        similarity: Optional[Similarity] = None,
        context: Optional[ExecutionContext] = None,
    ) -> None:
        """
        Initialize the builder.

        Args:
            k: Number of neighbors per node (must be >= 1)
            similarity: Function similarity(a, b) -> float on node values
            context: Execution context (default: the shared default context)
        """
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        if similarity is not None and not callable(similarity):
            raise ValueError("similarity must be a callable similarity(a, b) -> float")

        self.k = k
        self.similarity = similarity
        self.context = context
        self.statistics = StatisticsAccumulator()

    def compute_graph(
        self, nodes: Union[PartitionedCollection, Iterable[Node]]
    ) -> DistributedGraph:
        """
        Build the k-NN graph of the given nodes.

        Args:
            nodes: PartitionedCollection of Nodes, or any iterable of Nodes
                   (distributed on the builder's context)

        Returns:
            Materialized DistributedGraph
        """
        self._check_similarity()
        collection = self._as_collection(nodes)

        start = time.time()
        logger.info(
            f"{type(self).__name__}: building graph (k={self.k}, "
            f"partitions={collection.num_partitions})"
        )

        graph = self._compute_graph(collection).materialize()

        logger.info(
            f"{type(self).__name__}: built graph of {graph.size()} nodes "
            f"in {time.time() - start:.2f}s"
        )
        return graph

    def build_local(
        self, nodes: Iterable[Node], rng: Optional[np.random.Generator] = None
    ) -> Dict[Node, NeighborList]:
        """
        Build the graph of a small set of nodes in the calling thread.

        Args:
            nodes: Nodes to connect
            rng: Random generator of the calling task (seeds the local run)

        Returns:
            Mapping from node to its NeighborList
        """
        self._check_similarity()
        seed = int(rng.integers(2**63)) if rng is not None else None
        local = ExecutionContext(workers=1, default_partitions=1, seed=seed)
        return self._compute_graph(local.parallelize(nodes, 1)).collect()

    def configured(self, k: int, similarity: Similarity) -> "GraphBuilder":
        """Copy of this builder with another k and similarity."""
        builder = copy.copy(self)
        builder.k = k
        builder.similarity = similarity
        builder.statistics = StatisticsAccumulator()
        return builder

    def _compute_graph(self, nodes: PartitionedCollection) -> DistributedGraph:
        raise NotImplementedError

    def _check_similarity(self) -> None:
        if self.similarity is None:
            raise ValueError(f"{type(self).__name__}: no similarity function set")

    def _as_collection(
        self, nodes: Union[PartitionedCollection, Iterable[Node]]
    ) -> PartitionedCollection:
        if isinstance(nodes, PartitionedCollection):
            return nodes
        context = self.context or get_default_context()
        return context.parallelize(nodes)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(k={self.k})"
