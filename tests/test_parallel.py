"""
Tests for the partitioned execution substrate.

These tests verify:
- Splitting items into partitions
- Lazy narrow transformations and materialization
- Shuffles: group_by_key, reduce_by_key, join, partition_by
- Failure propagation and per-task random sources
"""

import threading

import pytest
from knngraphs import ExecutionContext, PartitionedCollection


def test_parallelize_splits_into_partitions(context):
    """Items are split into contiguous, balanced partitions"""
    collection = context.parallelize(range(10), 3)

    partitions = collection.partitions()

    assert collection.num_partitions == 3
    assert [len(p) for p in partitions] == [3, 3, 4]
    assert collection.collect() == list(range(10))


def test_parallelize_more_partitions_than_items(context):
    """Empty partitions are allowed"""
    collection = context.parallelize([1, 2], 5)

    assert collection.num_partitions == 5
    assert collection.count() == 2
    assert not collection.is_empty()
    assert context.parallelize([], 3).is_empty()


def test_parallelize_uses_default_partitions(context):
    collection = context.parallelize(range(100))

    assert collection.num_partitions == context.default_partitions


def test_invalid_context():
    with pytest.raises(ValueError):
        ExecutionContext(workers=0)
    with pytest.raises(ValueError):
        ExecutionContext(default_partitions=0)


def test_narrow_transformations_are_lazy(context):
    """map does not run until the collection is materialized"""
    calls = []

    def record(x):
        calls.append(x)
        return x * 2

    collection = context.parallelize(range(4), 2).map(record)
    assert calls == []

    assert sorted(collection.collect()) == [0, 2, 4, 6]
    assert len(calls) == 4

    # A materialized collection is not evaluated again
    collection.collect()
    assert len(calls) == 4


def test_map_flat_map_filter(context):
    collection = (
        context.parallelize(range(6), 3)
        .flat_map(lambda x: [x, x])
        .filter(lambda x: x % 2 == 0)
        .map(lambda x: x + 1)
    )

    assert collection.collect() == [1, 1, 3, 3, 5, 5]


def test_map_partitions_receives_index(context):
    collection = context.parallelize(range(6), 3).map_partitions(
        lambda index, items, rng: [(index, sum(items))]
    )

    assert collection.collect() == [(0, 1), (1, 5), (2, 9)]


def test_glom(context):
    collection = context.parallelize(range(4), 2).glom()

    assert collection.collect() == [[0, 1], [2, 3]]


def test_group_by_key(context):
    pairs = [("a", 1), ("b", 2), ("a", 3), ("c", 4), ("b", 5)]
    grouped = context.parallelize(pairs, 3).group_by_key().collect_as_map()

    assert sorted(grouped["a"]) == [1, 3]
    assert sorted(grouped["b"]) == [2, 5]
    assert grouped["c"] == [4]


def test_reduce_by_key(context):
    pairs = [(i % 3, i) for i in range(30)]
    reduced = context.parallelize(pairs, 4).reduce_by_key(lambda a, b: a + b)

    assert reduced.collect_as_map() == {0: 135, 1: 145, 2: 155}
    assert reduced.num_partitions == 4


def test_join(context):
    left = context.parallelize([("a", 1), ("b", 2), ("c", 3)], 2)
    right = context.parallelize([("a", "x"), ("c", "y"), ("c", "z"), ("d", "w")], 2)

    joined = sorted(left.join(right).collect())

    assert joined == [("a", (1, "x")), ("c", (3, "y")), ("c", (3, "z"))]


def test_partition_by(context):
    collection = context.parallelize(range(10), 2).partition_by(lambda x: x % 3, 3)

    partitions = collection.partitions()

    assert collection.num_partitions == 3
    assert sorted(partitions[0]) == [0, 3, 6, 9]
    assert sorted(partitions[1]) == [1, 4, 7]
    assert sorted(partitions[2]) == [2, 5, 8]


def test_union_and_cartesian(context):
    left = context.parallelize([1, 2], 2)
    right = context.parallelize(["a", "b", "c"], 1)

    assert sorted(left.union(left).collect()) == [1, 1, 2, 2]

    pairs = left.cartesian(right)
    assert pairs.num_partitions == 2
    assert sorted(pairs.collect()) == [
        (1, "a"), (1, "b"), (1, "c"), (2, "a"), (2, "b"), (2, "c")
    ]


def test_task_failure_aborts_step(context):
    """An exception in one partition is raised to the caller"""

    def fail_on_three(x):
        if x == 3:
            raise RuntimeError("boom")
        return x

    collection = context.parallelize(range(8), 4).map(fail_on_three)

    with pytest.raises(RuntimeError, match="boom"):
        collection.collect()


def test_tasks_get_independent_random_sources(context):
    """Each partition task draws from its own generator"""
    draws = (
        context.parallelize(range(4), 4)
        .map_partitions(lambda index, items, rng: [float(rng.random())])
        .collect()
    )

    assert len(set(draws)) == 4


def test_same_seed_same_draws():
    """Contexts with the same seed produce the same random streams"""

    def draws(seed):
        with ExecutionContext(workers=2, seed=seed) as context:
            return (
                context.parallelize(range(2), 2)
                .map_partitions(lambda index, items, rng: [int(rng.integers(1000000))])
                .collect()
            )

    assert draws(3) == draws(3)


def test_tasks_run_on_worker_threads():
    with ExecutionContext(workers=3, seed=0) as context:
        names = (
            context.parallelize(range(3), 3)
            .map_partitions(lambda index, items, rng: [threading.current_thread().name])
            .collect()
        )

    assert all(name.startswith("knngraphs") for name in names)


def test_nested_steps_run_inline():
    """A step started inside a task does not deadlock the pool"""
    with ExecutionContext(workers=2, seed=0) as context:

        def inner_sum(index, items, rng):
            inner = context.parallelize(list(items), 2).map(lambda x: x * 10)
            return [sum(inner.collect())]

        totals = context.parallelize(range(8), 4).map_partitions(inner_sum).collect()

    assert sum(totals) == 280


def test_single_worker_runs_inline():
    context = ExecutionContext(workers=1, seed=0)
    collection = context.parallelize(range(5), 2).map(lambda x: x + 1)

    assert collection.collect() == [1, 2, 3, 4, 5]
    assert isinstance(collection, PartitionedCollection)
