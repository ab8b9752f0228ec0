"""
LSH-bucketed graph construction.

Locality-sensitive hashing routes similar vectors to the same bucket with high
probability. The graph is built in three steps:
1. Hash every node to one bucket per stage (independent hash tables)
2. Build a small graph inside every (stage, bucket) group with an inner builder
   (NNDescent by default), all groups in parallel
3. Merge the per-stage NeighborLists of every node into one top-k list

Hash functions are SuperBit (Ji et al., "Super-Bit Locality-Sensitive Hashing",
NIPS 2012): random Gaussian hyperplanes, orthogonalized in batches, which
estimate the angle between vectors with lower variance than plain random
projections. They target cosine similarity, the default similarity here.

More stages reduce the chance that two similar items never share a bucket;
more buckets make buckets (and inner builds) smaller.
"""

import logging
import math
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import numpy.typing as npt

from knngraphs.builder.base import GraphBuilder
from knngraphs.builder.nndescent import NNDescent
from knngraphs.graph import DistributedGraph, NeighborList, Node
from knngraphs.parallel import PartitionedCollection
from knngraphs.similarity import cosine_similarity

logger = logging.getLogger(__name__)

Vector = npt.NDArray[np.float64]


class SuperBitHasher:
    """
    Hashes vectors to one bucket per stage with SuperBit signatures.

    Each stage owns ceil(log2(buckets)) hyperplanes. The signs of the
    projections form a bit signature, which is mapped to a bucket id.
    """

    def __init__(self, dim: int, stages: int, buckets: int, rng: np.random.Generator) -> None:
        """
        Generate the hash functions.

        Args:
            dim: Dimensionality of the input vectors
            stages: Number of independent hash tables
            buckets: Number of buckets per stage
            rng: Random generator used to draw the hyperplanes
        """
        if dim < 1:
            raise ValueError(f"dim must be >= 1, got {dim}")
        if stages < 1:
            raise ValueError(f"stages must be >= 1, got {stages}")
        if buckets < 1:
            raise ValueError(f"buckets must be >= 1, got {buckets}")

        self.dim = dim
        self.stages = stages
        self.buckets = buckets
        self.bits = max(1, int(math.ceil(math.log2(buckets))))

        planes = _superbit_hyperplanes(dim, stages * self.bits, rng)
        # Shape: (stages, bits, dim)
        self.hyperplanes = planes.reshape(stages, self.bits, dim)
        self._weights = 1 << np.arange(self.bits, dtype=np.int64)

    def hash(self, value: Union[Vector, Dict[int, float]]) -> List[int]:
        """
        Compute the bucket of a vector in every stage.

        Args:
            value: Dense vector of length dim, or sparse dict {index: value}

        Returns:
            List of bucket ids, one per stage
        """
        projections = self._project(value)
        signatures = (projections > 0).astype(np.int64) @ self._weights
        return [int(signature) % self.buckets for signature in signatures]

    def _project(self, value: Union[Vector, Dict[int, float]]) -> npt.NDArray[np.float64]:
        if isinstance(value, dict):
            if not value:
                return np.zeros((self.stages, self.bits))
            indices = np.fromiter(value.keys(), dtype=np.int64, count=len(value))
            if indices.min() < 0 or indices.max() >= self.dim:
                raise ValueError(
                    f"Sparse vector index out of range for dim {self.dim}"
                )
            weights = np.fromiter(value.values(), dtype=np.float64, count=len(value))
            return self.hyperplanes[:, :, indices] @ weights

        vector = np.asarray(value, dtype=np.float64).ravel()
        if len(vector) != self.dim:
            raise ValueError(
                f"Vector dimension {len(vector)} doesn't match hasher dimension {self.dim}"
            )
        return self.hyperplanes @ vector


def _superbit_hyperplanes(dim: int, count: int, rng: np.random.Generator) -> npt.NDArray[np.float64]:
    """
    Draw count hyperplanes of dimension dim.

    Hyperplanes are orthogonalized in batches of at most dim vectors
    (QR decomposition of a Gaussian matrix).
    """
    planes = []
    remaining = count
    while remaining > 0:
        batch = min(dim, remaining)
        gaussian = rng.standard_normal((dim, batch))
        orthonormal, _ = np.linalg.qr(gaussian)
        planes.append(orthonormal.T)
        remaining -= batch
    return np.vstack(planes)


class LSHSuperBit(GraphBuilder):
    """
    Graph builder that splits the dataset into LSH buckets.

    Example:
        >>> inner = NNDescent(delta=0.01, rho=0.5, max_iterations=10)
        >>> builder = LSHSuperBit(k=10, stages=2, buckets=10, dim=dim, inner_builder=inner)
        >>> graph = builder.compute_graph(nodes)
    """

    def __init__(
        self,
        k: int = 10,
        similarity=cosine_similarity,
        stages: int = 2,
        buckets: int = 10,
        dim: Optional[int] = None,
        inner_builder: Optional[GraphBuilder] = None,
        context=None,
    ) -> None:
        """
        Initialize the LSH builder.

        Args:
            k: Number of neighbors per node
            similarity: Similarity on node values (default: cosine similarity)
            stages: Number of hash tables (>= 1)
            buckets: Buckets per hash table (>= 1)
            dim: Dimensionality of the vectors, required for hashing (>= 1)
            inner_builder: Builder used inside each bucket (default: NNDescent)
            context: Execution context
        """
        super().__init__(k=k, similarity=similarity, context=context)

        if dim is None or dim < 1:
            raise ValueError(f"dim must be >= 1 for LSH hashing, got {dim}")
        if stages < 1:
            raise ValueError(f"stages must be >= 1, got {stages}")
        if buckets < 1:
            raise ValueError(f"buckets must be >= 1, got {buckets}")
        if inner_builder is not None and not isinstance(inner_builder, GraphBuilder):
            raise ValueError("inner_builder must be a GraphBuilder")

        self.stages = stages
        self.buckets = buckets
        self.dim = dim
        self.inner_builder = (
            inner_builder
            if inner_builder is not None
            else NNDescent(delta=0.01, rho=0.5, max_iterations=10)
        )
    def _compute_graph(self, nodes: PartitionedCollection) -> DistributedGraph:
        hasher = SuperBitHasher(self.dim, self.stages, self.buckets, nodes.context.rng())
        inner_builder = self.inner_builder
        k = self.k
        similarity = self.similarity
        statistics = self.statistics

        def bucket_keys(node: Node) -> List[Tuple[Tuple[int, int], Node]]:
            return [
                ((stage, bucket), node)
                for stage, bucket in enumerate(hasher.hash(node.value))
            ]

        groups = nodes.flat_map(bucket_keys).group_by_key().materialize()

        if logger.isEnabledFor(logging.DEBUG):
            sizes = [len(members) for _, members in groups.collect()]
            if sizes:
                logger.debug(
                    f"LSH: {len(sizes)} non-empty buckets, largest {max(sizes)}, "
                    f"mean {np.mean(sizes):.1f}"
                )

        def build_buckets(index: int, items, rng) -> List[Tuple[Node, NeighborList]]:
            # One copy per task: builders keep per-build state
            inner = inner_builder.configured(k, similarity)
            result = []
            for _, members in items:
                result.extend(inner.build_local(members, rng).items())
            statistics.add(inner.statistics.value)
            return result

        partial = groups.map_partitions(build_buckets)
        merged = partial.reduce_by_key(NeighborList.merge, nodes.num_partitions)

        return DistributedGraph(merged)
