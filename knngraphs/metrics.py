"""
Metrics for evaluating approximate graphs and search results.

This module provides functions to:
- Count the neighbors two NeighborLists have in common
- Compute recall of a search result against the exact result
- Compute the quality of an approximate graph against the exact graph
"""

from typing import Dict, Union

from knngraphs.graph import DistributedGraph, NeighborList, Node

GraphLike = Union[DistributedGraph, Dict[Node, NeighborList]]


def count_commons(approximate: NeighborList, exact: NeighborList) -> int:
    """
    Number of node ids present in both lists.

    Example:
        >>> count_commons(approximate_result, exhaustive_result)
        1  # The top-1 result was found
    """
    return approximate.count_commons(exact)


def recall(approximate: NeighborList, exact: NeighborList) -> float:
    """
    Fraction of the exact neighbors that were retrieved.

    Args:
        approximate: Result of an approximate builder or search
        exact: Ground truth (Brute graph or ExhaustiveSearch result)

    Returns:
        Recall between 0.0 and 1.0 (1.0 when exact is empty)
    """
    if len(exact) == 0:
        return 1.0
    return approximate.count_commons(exact) / len(exact)


def graph_recall(approximate: GraphLike, exact: GraphLike) -> float:
    """
    Mean recall of the neighbor lists of an approximate graph.

    Nodes of the exact graph missing from the approximate graph count as
    zero recall.

    Args:
        approximate: Graph built by an approximate builder
        exact: Graph built by Brute on the same nodes

    Returns:
        Mean recall over the nodes of the exact graph (0.0 for an empty graph)

    Example:
        >>> graph_recall(nndescent_graph, brute_graph)
        0.93  # 93% of the true neighbors were found
    """
    approximate = _as_dict(approximate)
    exact = _as_dict(exact)

    if not exact:
        return 0.0

    total = 0.0
    for node, neighbors in exact.items():
        found = approximate.get(node)
        if found is not None:
            total += recall(found, neighbors)

    return total / len(exact)


def _as_dict(graph: GraphLike) -> Dict[Node, NeighborList]:
    if isinstance(graph, DistributedGraph):
        return graph.collect()
    return graph
