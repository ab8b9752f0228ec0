"""Search and build statistics.

StatisticsContainer is a plain value: merging two containers sums every
counter, which is associative and commutative, so partial statistics coming
from partitions can be combined in any order.

StatisticsAccumulator is the only object written concurrently by partition
tasks. It holds a running total behind a lock.
"""

import threading
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict


@dataclass
class StatisticsContainer:
    """Counters collected while building or searching a graph.

    Attributes:
        search_similarities: Similarities computed by search walks
        search_restarts: Walks started (first walk included)
        search_visited: Nodes whose neighbor list was expanded
        search_cross_partition: Neighbors scored that live in another partition
        computed_similarities: Similarities computed by graph builders
    """

    search_similarities: int = 0
    search_restarts: int = 0
    search_visited: int = 0
    search_cross_partition: int = 0
    computed_similarities: int = 0

    def merge(self, other: "StatisticsContainer") -> "StatisticsContainer":
        """Field-wise sum of two containers (new value)."""
        return StatisticsContainer(
            **{
                field.name: getattr(self, field.name) + getattr(other, field.name)
                for field in fields(self)
            }
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def __repr__(self) -> str:
        return (
            f"StatisticsContainer(similarities={self.search_similarities}, "
            f"restarts={self.search_restarts}, visited={self.search_visited}, "
            f"cross_partition={self.search_cross_partition}, "
            f"computed={self.computed_similarities})"
        )


class StatisticsAccumulator:
    """Thread-safe running total of StatisticsContainer values."""

    def __init__(self, initial: StatisticsContainer = None) -> None:
        self._value = initial if initial is not None else StatisticsContainer()
        self._lock = threading.Lock()

    def add(self, stats: StatisticsContainer) -> None:
        """Merge a partial result into the total."""
        with self._lock:
            self._value = self._value.merge(stats)

    @property
    def value(self) -> StatisticsContainer:
        with self._lock:
            return self._value

    def reset(self) -> None:
        with self._lock:
            self._value = StatisticsContainer()

    def __repr__(self) -> str:
        return f"StatisticsAccumulator({self.value!r})"
