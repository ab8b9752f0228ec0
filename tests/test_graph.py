"""
Tests for k-NN graph data structures.

These tests verify the graph containers work correctly:
- Node identity (by id, not by value)
- NeighborList insertion policy, ordering and bounds
- Self-neighbor rejection
- DistributedGraph views over partitions
"""

import pytest
from knngraphs import ExecutionContext, Node, Neighbor, NeighborList, DistributedGraph


def test_node_equality_uses_id_only():
    """Two nodes with the same id are equal whatever their value"""
    a = Node("1", 3.0)
    b = Node("1", 42.0)
    c = Node("2", 3.0)

    assert a == b
    assert hash(a) == hash(b)
    assert a != c
    assert len({a, b, c}) == 2


def test_neighbor_ordering():
    """Neighbors sort by decreasing similarity"""
    low = Neighbor(Node("a"), 0.1)
    high = Neighbor(Node("b"), 0.9)

    assert sorted([low, high]) == [high, low]


def test_create_empty_list():
    """A new list is empty"""
    neighbors = NeighborList(k=5)

    assert len(neighbors) == 0
    assert not neighbors.is_full()
    assert neighbors.min_similarity() == float("-inf")


def test_invalid_k():
    """k must be at least 1"""
    with pytest.raises(ValueError):
        NeighborList(k=0)


def test_list_stays_sorted():
    """Entries are kept in decreasing similarity order"""
    neighbors = NeighborList(k=5)
    for i, similarity in enumerate([0.3, 0.9, 0.1, 0.5, 0.7]):
        neighbors.add(Node(str(i)), similarity)

    similarities = [n.similarity for n in neighbors]
    assert similarities == [0.9, 0.7, 0.5, 0.3, 0.1]
    assert neighbors.ids() == ["1", "4", "3", "0", "2"]


def test_list_is_bounded():
    """A full list keeps only the k best entries"""
    neighbors = NeighborList(k=3)
    for i in range(10):
        neighbors.add(Node(str(i)), i / 10)

    assert len(neighbors) == 3
    assert neighbors.ids() == ["9", "8", "7"]


def test_full_list_rejects_worse_entry():
    """When full, a lower similarity does not change the list"""
    neighbors = NeighborList(k=2)
    neighbors.add(Node("a"), 0.8)
    neighbors.add(Node("b"), 0.6)

    assert neighbors.add(Node("c"), 0.5) is False
    assert neighbors.ids() == ["a", "b"]


def test_full_list_keeps_existing_entry_on_tie():
    """Ties with the last entry keep the entry that arrived first"""
    neighbors = NeighborList(k=2)
    neighbors.add(Node("a"), 0.8)
    neighbors.add(Node("b"), 0.6)

    assert neighbors.add(Node("c"), 0.6) is False
    assert neighbors.ids() == ["a", "b"]


def test_equal_similarities_keep_arrival_order():
    """A new entry goes after existing entries with the same similarity"""
    neighbors = NeighborList(k=5)
    neighbors.add(Node("a"), 0.5)
    neighbors.add(Node("b"), 0.5)
    neighbors.add(Node("c"), 0.9)

    assert neighbors.ids() == ["c", "a", "b"]


def test_strictly_better_entry_replaces_last():
    """A strictly better entry evicts the lowest one"""
    neighbors = NeighborList(k=2)
    neighbors.add(Node("a"), 0.8)
    neighbors.add(Node("b"), 0.6)

    assert neighbors.add(Node("c"), 0.7) is True
    assert neighbors.ids() == ["a", "c"]
    assert not neighbors.contains(Node("b"))


def test_duplicate_ids_rejected():
    """The same node id is never stored twice"""
    neighbors = NeighborList(k=5)
    neighbors.add(Node("a", 1.0), 0.5)

    assert neighbors.add(Node("a", 2.0), 0.9) is False
    assert len(neighbors) == 1
    assert neighbors[0].similarity == 0.5


def test_owner_is_never_a_neighbor():
    """The owner node is rejected even with the highest similarity"""
    owner = Node("me", 1.0)
    neighbors = NeighborList(k=3, owner=owner)

    assert neighbors.add(Node("me", 99.0), 1e9) is False
    assert neighbors.add(Node("other", 2.0), 0.1) is True
    assert neighbors.ids() == ["other"]


def test_count_commons():
    """count_commons counts shared node ids"""
    first = NeighborList(k=3)
    second = NeighborList(k=3)
    for node_id in ["a", "b", "c"]:
        first.add(Node(node_id), 0.5)
    for node_id in ["b", "c", "d"]:
        second.add(Node(node_id), 0.1)

    assert first.count_commons(second) == 2
    assert second.count_commons(first) == 2


def test_merge_keeps_best_entries():
    """Merging two lists keeps the top-k of both"""
    owner = Node("o")
    first = NeighborList(k=3, owner=owner)
    second = NeighborList(k=3, owner=owner)
    first.add(Node("a"), 0.9)
    first.add(Node("b"), 0.2)
    second.add(Node("c"), 0.8)
    second.add(Node("a"), 0.9)
    second.add(Node("d"), 0.5)

    merged = first.merge(second)

    assert merged.ids() == ["a", "c", "d"]
    assert merged.owner == owner
    # Inputs are left unchanged
    assert first.ids() == ["a", "b"]


def test_copy_is_independent():
    """Changes to a copy do not affect the original"""
    original = NeighborList(k=3)
    original.add(Node("a"), 0.5)

    duplicate = original.copy()
    duplicate.add(Node("b"), 0.7)

    assert len(original) == 1
    assert len(duplicate) == 2


def test_add_all_counts_changes():
    """add_all returns the number of successful insertions"""
    neighbors = NeighborList(k=2, owner=Node("x"))
    changes = neighbors.add_all(
        [Neighbor(Node("a"), 0.5), Neighbor(Node("x"), 0.9), Neighbor(Node("a"), 0.7)]
    )

    assert changes == 1


def test_new_entries_and_mark_old():
    """Inserted entries are new; mark_old flags a copy and leaves the source"""
    neighbors = NeighborList(k=3)
    neighbors.add(Node("a"), 0.9)
    neighbors.add(Node("b"), 0.5)

    marked = neighbors.mark_old({"a"})

    assert all(n.new for n in neighbors)
    assert [n.new for n in marked] == [False, True]
    assert marked.ids() == neighbors.ids()


def test_add_neighbor():
    neighbors = NeighborList(k=2)

    assert neighbors.add_neighbor(Neighbor(Node("a"), 0.4)) is True
    assert "a" in neighbors
    assert Node("a") in neighbors


def _small_graph(context):
    nodes = [Node(str(i), float(i)) for i in range(6)]
    pairs = []
    for node in nodes:
        neighbors = NeighborList(k=2, owner=node)
        for other in nodes:
            neighbors.add(other, 1.0 / (1 + abs(node.value - other.value)))
        pairs.append((node, neighbors))
    return DistributedGraph(context.parallelize(pairs, 3))


def test_distributed_graph_partitions():
    """partitions() returns one mapping per partition"""
    with ExecutionContext(workers=2, seed=1) as context:
        graph = _small_graph(context)

        partitions = graph.partitions()

        assert graph.num_partitions == 3
        assert len(partitions) == 3
        assert sum(len(p) for p in partitions) == 6
        assert all(isinstance(p, dict) for p in partitions)


def test_distributed_graph_collect_and_get():
    """The graph can be gathered and queried by node id"""
    with ExecutionContext(workers=2, seed=1) as context:
        graph = _small_graph(context)

        collected = graph.collect()

        assert graph.size() == 6
        assert graph.edge_count() == 12
        assert graph.get("0").ids() == ["1", "2"]
        assert graph.get("missing") is None
        assert collected[Node("5")].ids() == ["4", "3"]


def test_distributed_graph_nodes():
    """nodes() keeps the partitioning of the graph"""
    with ExecutionContext(workers=2, seed=1) as context:
        graph = _small_graph(context)

        nodes = graph.nodes()

        assert nodes.num_partitions == 3
        assert sorted(node.id for node in nodes.collect()) == [str(i) for i in range(6)]
