"""
knngraphs - Partitioned k-NN graph construction and search

Builds approximate k-nearest-neighbor graphs over large datasets with a
caller-supplied similarity function, partitions them across workers, and
answers nearest-neighbor queries with bounded greedy walks on the graph.
"""

__version__ = "0.1.0"

from knngraphs.graph import Node, Neighbor, NeighborList, DistributedGraph
from knngraphs.parallel import ExecutionContext, PartitionedCollection
from knngraphs.statistics import StatisticsContainer, StatisticsAccumulator
from knngraphs.builder import (
    GraphBuilder,
    Brute,
    NNDescent,
    LSHSuperBit,
    create_builder,
)
from knngraphs.partitioner import GraphPartitioner
from knngraphs.search import ApproximateSearch, ExhaustiveSearch
from knngraphs.config import (
    KNNGraphConfig,
    get_default_config,
    get_brute_config,
    get_lsh_config,
)

__all__ = [
    "Node",
    "Neighbor",
    "NeighborList",
    "DistributedGraph",
    "ExecutionContext",
    "PartitionedCollection",
    "StatisticsContainer",
    "StatisticsAccumulator",
    "GraphBuilder",
    "Brute",
    "NNDescent",
    "LSHSuperBit",
    "create_builder",
    "GraphPartitioner",
    "ApproximateSearch",
    "ExhaustiveSearch",
    "KNNGraphConfig",
    "get_default_config",
    "get_brute_config",
    "get_lsh_config",
]
