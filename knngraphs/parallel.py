"""
Partitioned, parallel execution substrate.

Work is expressed as transformations over a PartitionedCollection. Narrow
transformations (map, flat_map, filter, map_partitions...) are lazy: they are
composed into a per-partition pipeline and run only when the collection is
materialized. Wide transformations (group_by_key, reduce_by_key, join,
partition_by) first materialize their parent, then shuffle items between
partitions. Every materialization is a hard barrier: all partitions finish the
current step before the next one starts.

Partitions never share mutable state during a step. Each task receives its own
numpy random Generator, spawned from the context's SeedSequence.
"""

import logging
import os
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)

# task(index, input, rng) -> result
Task = Callable[[int, Any, np.random.Generator], Any]
# stage(index, iterator, rng) -> iterable
Stage = Callable[[int, Iterator, np.random.Generator], Iterable]

_task_state = threading.local()


class ExecutionContext:
    """
    Pool of workers that runs one task per partition.

    Tasks run on a ThreadPoolExecutor. A task started from inside another task
    (for example an inner graph builder running inside a bucket) is executed
    inline on the calling worker, so nested steps never wait on the pool they
    are occupying.
    """

    def __init__(
        self,
        workers: Optional[int] = None,
        default_partitions: Optional[int] = None,
        seed: Optional[int] = None,
    ) -> None:
        """
        Initialize the execution context.

        Args:
            workers: Number of worker threads (default: number of CPUs, 1 = inline)
            default_partitions: Partition count used by parallelize (default: workers)
            seed: Seed of the SeedSequence all per-task random sources derive from
        """
        if workers is not None and workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        if default_partitions is not None and default_partitions < 1:
            raise ValueError(
                f"default_partitions must be >= 1, got {default_partitions}"
            )

        self.workers = workers if workers is not None else (os.cpu_count() or 1)
        self.default_partitions = (
            default_partitions if default_partitions is not None else self.workers
        )

        self._seed_sequence = np.random.SeedSequence(seed)
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None

    def spawn_rngs(self, count: int) -> List[np.random.Generator]:
        """Create independent random generators, one per task."""
        with self._lock:
            children = self._seed_sequence.spawn(count)
        return [np.random.default_rng(child) for child in children]

    def rng(self) -> np.random.Generator:
        """A fresh random generator for driver-side decisions."""
        return self.spawn_rngs(1)[0]

    def run(self, task: Task, inputs: Sequence[Any]) -> List[Any]:
        """
        Run task(index, input, rng) for every input and wait for all of them.

        The first exception raised by a task is re-raised here and the tasks
        that have not started yet are cancelled.

        Args:
            task: Function applied to each input
            inputs: One input per task (usually one partition each)

        Returns:
            Task results, in input order
        """
        rngs = self.spawn_rngs(len(inputs))

        if self.workers == 1 or len(inputs) <= 1 or getattr(_task_state, "active", False):
            return [_call(task, i, item, rngs[i]) for i, item in enumerate(inputs)]

        executor = self._get_executor()
        futures = [
            executor.submit(_call, task, i, item, rngs[i])
            for i, item in enumerate(inputs)
        ]
        try:
            return [future.result() for future in futures]
        except BaseException:
            for future in futures:
                future.cancel()
            raise

    def parallelize(
        self, items: Iterable[Any], num_partitions: Optional[int] = None
    ) -> "PartitionedCollection":
        """
        Split items into contiguous partitions.

        Args:
            items: Items to distribute
            num_partitions: Number of partitions (default: default_partitions)

        Returns:
            A materialized PartitionedCollection
        """
        if num_partitions is None:
            num_partitions = self.default_partitions
        if num_partitions < 1:
            raise ValueError(f"num_partitions must be >= 1, got {num_partitions}")

        items = list(items)
        n = len(items)
        partitions = [
            items[i * n // num_partitions:(i + 1) * n // num_partitions]
            for i in range(num_partitions)
        ]
        return PartitionedCollection(self, partitions)

    def close(self) -> None:
        """Shut down the worker pool."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.workers, thread_name_prefix="knngraphs"
                )
                logger.debug(f"Started worker pool with {self.workers} threads")
            return self._executor

    def __enter__(self) -> "ExecutionContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"ExecutionContext(workers={self.workers}, "
            f"default_partitions={self.default_partitions})"
        )


def _call(task: Task, index: int, item: Any, rng: np.random.Generator) -> Any:
    previous = getattr(_task_state, "active", False)
    _task_state.active = True
    try:
        return task(index, item, rng)
    finally:
        _task_state.active = previous


_default_context: Optional[ExecutionContext] = None
_default_lock = threading.Lock()


def get_default_context() -> ExecutionContext:
    """Shared context used when a component is created without one."""
    global _default_context
    with _default_lock:
        if _default_context is None:
            _default_context = ExecutionContext()
        return _default_context


class PartitionedCollection:
    """
    A collection split into partitions, processed in parallel.

    Holds source partitions plus an optional pipeline of pending narrow
    transformations. Results of materialize() are kept, so a materialized
    collection is evaluated only once.
    """

    def __init__(
        self,
        context: ExecutionContext,
        partitions: List[List[Any]],
        pipeline: Optional[Stage] = None,
    ) -> None:
        self.context = context
        self._source = partitions
        self._pipeline = pipeline
        self._materialized: Optional[List[List[Any]]] = (
            partitions if pipeline is None else None
        )

    @property
    def num_partitions(self) -> int:
        return len(self._source)

    # ------------------------------------------------------------------
    # Narrow (lazy) transformations
    # ------------------------------------------------------------------

    def map(self, fn: Callable[[Any], Any]) -> "PartitionedCollection":
        return self._derive(lambda index, items, rng: map(fn, items))

    def flat_map(self, fn: Callable[[Any], Iterable]) -> "PartitionedCollection":
        return self._derive(
            lambda index, items, rng: (out for item in items for out in fn(item))
        )

    def filter(self, fn: Callable[[Any], bool]) -> "PartitionedCollection":
        return self._derive(lambda index, items, rng: filter(fn, items))

    def map_values(self, fn: Callable[[Any], Any]) -> "PartitionedCollection":
        """Apply fn to the value of every (key, value) pair."""
        return self._derive(
            lambda index, items, rng: ((key, fn(value)) for key, value in items)
        )

    def map_partitions(self, fn: Stage) -> "PartitionedCollection":
        """
        Apply fn(index, iterator, rng) to every partition.

        The rng argument is the random source of the task running the partition.
        """
        return self._derive(fn)

    def glom(self) -> "PartitionedCollection":
        """Turn every partition into a single item: the list of its items."""
        return self._derive(lambda index, items, rng: [list(items)])

    # ------------------------------------------------------------------
    # Wide transformations (materialize the parent, then shuffle)
    # ------------------------------------------------------------------

    def partition_by(
        self, target: Callable[[Any], int], num_partitions: int
    ) -> "PartitionedCollection":
        """
        Move every item to the partition given by target(item).

        Args:
            target: Function returning a partition index in [0, num_partitions)
            num_partitions: Number of partitions of the result
        """
        if num_partitions < 1:
            raise ValueError(f"num_partitions must be >= 1, got {num_partitions}")
        return self._shuffle(target, num_partitions)

    def group_by_key(
        self, num_partitions: Optional[int] = None
    ) -> "PartitionedCollection":
        """Group (key, value) pairs into (key, [values])."""
        num_partitions = num_partitions or self.num_partitions

        def combine(items: List[Any]) -> List[Any]:
            groups: Dict[Any, List[Any]] = defaultdict(list)
            for key, value in items:
                groups[key].append(value)
            return list(groups.items())

        return self._shuffle(
            lambda pair: hash(pair[0]) % num_partitions, num_partitions, combine
        )

    def reduce_by_key(
        self,
        fn: Callable[[Any, Any], Any],
        num_partitions: Optional[int] = None,
    ) -> "PartitionedCollection":
        """
        Merge the values of each key with an associative function.

        Values are combined inside each partition before the shuffle, so only
        one value per key and partition crosses partition boundaries.
        """
        num_partitions = num_partitions or self.num_partitions

        def reduce_items(items: Iterable[Any]) -> List[Any]:
            reduced: Dict[Any, Any] = {}
            for key, value in items:
                if key in reduced:
                    reduced[key] = fn(reduced[key], value)
                else:
                    reduced[key] = value
            return list(reduced.items())

        combined = self.map_partitions(lambda index, items, rng: reduce_items(items))
        return combined._shuffle(
            lambda pair: hash(pair[0]) % num_partitions, num_partitions, reduce_items
        )

    def join(
        self, other: "PartitionedCollection", num_partitions: Optional[int] = None
    ) -> "PartitionedCollection":
        """Inner join of two (key, value) collections into (key, (left, right))."""
        num_partitions = num_partitions or max(self.num_partitions, other.num_partitions)
        tagged = self.map_values(lambda value: (0, value)).union(
            other.map_values(lambda value: (1, value))
        )

        def combine(items: List[Any]) -> List[Any]:
            left: Dict[Any, List[Any]] = defaultdict(list)
            right: Dict[Any, List[Any]] = defaultdict(list)
            for key, (side, value) in items:
                (left if side == 0 else right)[key].append(value)
            return [
                (key, (left_value, right_value))
                for key, left_values in left.items()
                if key in right
                for left_value in left_values
                for right_value in right[key]
            ]

        return tagged._shuffle(
            lambda pair: hash(pair[0]) % num_partitions, num_partitions, combine
        )

    def union(self, other: "PartitionedCollection") -> "PartitionedCollection":
        """Concatenate the partitions of two collections."""
        return PartitionedCollection(
            self.context, list(self.partitions()) + list(other.partitions())
        )

    def cartesian(self, other: "PartitionedCollection") -> "PartitionedCollection":
        """
        All (a, b) pairs with a in self and b in other.

        The result has one partition per (left partition, right partition)
        couple. Pairs are generated lazily when the partition is processed.
        """
        blocks = [
            [(left, right)]
            for left in self.partitions()
            for right in other.partitions()
        ]
        return PartitionedCollection(
            self.context,
            blocks,
            lambda index, items, rng: (
                (a, b) for left, right in items for a in left for b in right
            ),
        )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def materialize(self) -> "PartitionedCollection":
        """Run pending transformations on every partition (barrier)."""
        if self._materialized is None:
            pipeline = self._pipeline
            self._materialized = self.context.run(
                lambda index, items, rng: list(pipeline(index, iter(items), rng)),
                self._source,
            )
        return self

    cache = materialize

    def partitions(self) -> List[List[Any]]:
        """Materialized partitions (must not be modified by callers)."""
        self.materialize()
        return self._materialized

    def collect(self) -> List[Any]:
        return [item for items in self.partitions() for item in items]

    def collect_as_map(self) -> Dict[Any, Any]:
        return dict(self.collect())

    def count(self) -> int:
        return sum(len(items) for items in self.partitions())

    def is_empty(self) -> bool:
        return self.count() == 0

    # ------------------------------------------------------------------

    def _derive(self, stage: Stage) -> "PartitionedCollection":
        if self._materialized is not None:
            return PartitionedCollection(self.context, self._materialized, stage)

        parent = self._pipeline

        def pipeline(index: int, items: Iterator, rng: np.random.Generator) -> Iterable:
            return stage(index, iter(parent(index, items, rng)), rng)

        return PartitionedCollection(self.context, self._source, pipeline)

    def _shuffle(
        self,
        target: Callable[[Any], int],
        num_partitions: int,
        combine: Optional[Callable[[List[Any]], List[Any]]] = None,
    ) -> "PartitionedCollection":
        def scatter(index: int, items: List[Any], rng) -> List[List[Any]]:
            buckets: List[List[Any]] = [[] for _ in range(num_partitions)]
            for item in items:
                buckets[target(item)].append(item)
            return buckets

        scattered = self.context.run(scatter, self.partitions())

        def gather(index: int, _: Any, rng) -> List[Any]:
            items = [item for buckets in scattered for item in buckets[index]]
            return combine(items) if combine is not None else items

        gathered = self.context.run(gather, [None] * num_partitions)
        return PartitionedCollection(self.context, gathered)

    def __repr__(self) -> str:
        state = "materialized" if self._materialized is not None else "pending"
        return f"PartitionedCollection(partitions={self.num_partitions}, {state})"
