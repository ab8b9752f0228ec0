"""
k-NN graph data structures.

This module defines the core data structures for storing a k-NN graph:
- Node: An item (id + opaque value). Equality and hashing use the id only.
- Neighbor: A (node, similarity) pair
- NeighborList: Bounded, sorted top-k container of neighbors for one node
- DistributedGraph: Partitioned mapping from Node to NeighborList

NeighborList is the building block used by every builder and searcher. It keeps
at most k entries sorted by decreasing similarity, never holds the same node id
twice and never holds its own owner node.
"""

from bisect import bisect_right
from typing import Any, Dict, Iterable, Iterator, List, Optional

from knngraphs.parallel import PartitionedCollection


class Node:
    """
    A single item of the dataset.

    Two nodes with the same id are the same node, whatever their value. This
    lets a query node built from scratch be compared with graph nodes by id.
    """

    __slots__ = ("id", "value")

    def __init__(self, node_id: str, value: Any = None) -> None:
        """
        Create a new node.

        Args:
            node_id: Unique identifier for this node
            value: Payload (vector, string, number...) given to the similarity
        """
        self.id = node_id
        self.value = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Node):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"Node(id={self.id!r}, value={self.value!r})"


class Neighbor:
    """
    A node together with its similarity to the owner of a NeighborList.

    The new flag is set on insertion and cleared once NN-Descent has used
    the entry in a local join.
    """

    __slots__ = ("node", "similarity", "new")

    def __init__(self, node: Node, similarity: float, new: bool = True) -> None:
        self.node = node
        self.similarity = float(similarity)
        self.new = new

    def __lt__(self, other: "Neighbor") -> bool:
        # Higher similarity sorts first
        return self.similarity > other.similarity

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Neighbor):
            return NotImplemented
        return self.node == other.node and self.similarity == other.similarity

    def __hash__(self) -> int:
        return hash((self.node.id, self.similarity))

    def __repr__(self) -> str:
        return f"Neighbor(id={self.node.id!r}, similarity={self.similarity:.4f})"


class NeighborList:
    """
    Bounded list of the k most similar neighbors of a node.

    Entries are kept sorted by decreasing similarity. Insertion policy:
    - a node with the owner's id, or an id already present, is rejected
    - if the list is not full, the neighbor is inserted at its sorted position
      (after existing entries with the same similarity)
    - if the list is full, the neighbor replaces the last entry only if its
      similarity is strictly higher
    """

    def __init__(self, k: int, owner: Optional[Node] = None) -> None:
        """
        Create an empty neighbor list.

        Args:
            k: Maximum number of neighbors to keep (must be >= 1)
            owner: Node this list belongs to (never admitted as a neighbor)
        """
        if k < 1:
            raise ValueError(f"NeighborList size k must be >= 1, got {k}")

        self.k = k
        self.owner = owner

        self._neighbors: List[Neighbor] = []
        # Negated similarities, ascending, parallel to _neighbors (for bisect)
        self._keys: List[float] = []
        self._ids = set()

    def add(self, node: Node, similarity: float) -> bool:
        """
        Try to insert a node.

        Args:
            node: Candidate neighbor
            similarity: Similarity between the owner and the candidate

        Returns:
            True if the list changed
        """
        if self.owner is not None and node.id == self.owner.id:
            return False

        if node.id in self._ids:
            return False

        similarity = float(similarity)

        if len(self._neighbors) >= self.k:
            if similarity <= self._neighbors[-1].similarity:
                return False
            removed = self._neighbors.pop()
            self._keys.pop()
            self._ids.discard(removed.node.id)

        position = bisect_right(self._keys, -similarity)
        self._keys.insert(position, -similarity)
        self._neighbors.insert(position, Neighbor(node, similarity))
        self._ids.add(node.id)
        return True

    def add_neighbor(self, neighbor: Neighbor) -> bool:
        """Insert an existing Neighbor (same policy as add)."""
        return self.add(neighbor.node, neighbor.similarity)

    def add_all(self, neighbors: Iterable[Neighbor]) -> int:
        """
        Insert several neighbors in order.

        Returns:
            Number of insertions that changed the list
        """
        changes = 0
        for neighbor in neighbors:
            if self.add(neighbor.node, neighbor.similarity):
                changes += 1
        return changes

    def merge(self, other: "NeighborList") -> "NeighborList":
        """
        Combine two lists for the same owner into a new list.

        The result keeps this list's capacity and owner.
        """
        merged = self.copy()
        merged.add_all(other)
        return merged

    def copy(self) -> "NeighborList":
        """Shallow copy (nodes are shared, containers are not)."""
        duplicate = NeighborList(self.k, self.owner)
        duplicate._neighbors = list(self._neighbors)
        duplicate._keys = list(self._keys)
        duplicate._ids = set(self._ids)
        return duplicate

    def mark_old(self, node_ids) -> "NeighborList":
        """
        Copy of this list with the given entries flagged as not new.

        Entries are rebuilt rather than modified, so lists sharing Neighbor
        objects with this one are left unchanged.
        """
        marked = self.copy()
        marked._neighbors = [
            Neighbor(n.node, n.similarity, new=False) if n.node.id in node_ids else n
            for n in self._neighbors
        ]
        return marked

    def count_commons(self, other: "NeighborList") -> int:
        """
        Count node ids present in both lists.

        This is the accuracy measure used to compare an approximate result
        with an exact one.
        """
        return len(self._ids & other._ids)

    def contains(self, node: Node) -> bool:
        """Check whether a node (by id) is in the list."""
        return node.id in self._ids

    def is_full(self) -> bool:
        return len(self._neighbors) >= self.k

    def min_similarity(self) -> float:
        """Similarity of the last entry, or -inf when the list is empty."""
        if not self._neighbors:
            return float("-inf")
        return self._neighbors[-1].similarity

    def ids(self) -> List[str]:
        """Neighbor ids, most similar first."""
        return [neighbor.node.id for neighbor in self._neighbors]

    def nodes(self) -> List[Node]:
        return [neighbor.node for neighbor in self._neighbors]

    def __contains__(self, node: object) -> bool:
        if isinstance(node, Node):
            return node.id in self._ids
        return node in self._ids

    def __len__(self) -> int:
        return len(self._neighbors)

    def __iter__(self) -> Iterator[Neighbor]:
        return iter(self._neighbors)

    def __getitem__(self, index: int) -> Neighbor:
        return self._neighbors[index]

    def __repr__(self) -> str:
        entries = ", ".join(
            f"{n.node.id}:{n.similarity:.3f}" for n in self._neighbors
        )
        return f"NeighborList(k={self.k}, [{entries}])"


class DistributedGraph:
    """
    A k-NN graph split into disjoint partitions.

    Wraps a PartitionedCollection of (Node, NeighborList) pairs. Graphs are
    values: every transformation (partitioning, rebuilding) produces a new
    DistributedGraph and leaves the previous one untouched.
    """

    def __init__(self, collection: PartitionedCollection) -> None:
        """
        Wrap a collection of (Node, NeighborList) pairs.

        Args:
            collection: Partitioned (node, neighbor list) pairs
        """
        self.collection = collection

    @property
    def context(self):
        return self.collection.context

    @property
    def num_partitions(self) -> int:
        return self.collection.num_partitions

    def partitions(self) -> List[Dict[Node, NeighborList]]:
        """
        Materialize the graph and return one mapping per partition.

        Returns:
            List of {node: neighbor_list} dictionaries, one per partition
        """
        return [dict(items) for items in self.collection.partitions()]

    def materialize(self) -> "DistributedGraph":
        """Force evaluation of pending transformations (synchronization point)."""
        self.collection.materialize()
        return self

    def collect(self) -> Dict[Node, NeighborList]:
        """Gather the whole graph into a single mapping."""
        return self.collection.collect_as_map()

    def nodes(self) -> PartitionedCollection:
        """Nodes of the graph, keeping the current partitioning."""
        return self.collection.map(lambda pair: pair[0])

    def size(self) -> int:
        """Number of nodes in the graph."""
        return self.collection.count()

    def edge_count(self) -> int:
        """Total number of (node, neighbor) entries."""
        return sum(
            len(neighbors)
            for items in self.collection.partitions()
            for _, neighbors in items
        )

    def get(self, node_id: str) -> Optional[NeighborList]:
        """
        Look up the neighbor list of a node by id.

        Args:
            node_id: Id of the node

        Returns:
            The NeighborList, or None if the node is not in the graph
        """
        for items in self.collection.partitions():
            for node, neighbors in items:
                if node.id == node_id:
                    return neighbors
        return None

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"DistributedGraph(partitions={self.num_partitions})"
