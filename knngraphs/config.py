"""Configuration system for k-NN graph building and search.

Usage:
    from knngraphs import KNNGraphConfig, create_builder

    # Default config (NNDescent, k=10)
    config = KNNGraphConfig()

    # Custom config
    config = KNNGraphConfig(builder="brute", k=20)
    builder = create_builder(config, similarity)

    # From file
    config = KNNGraphConfig.from_json("my_config.json")
"""

from typing import Any, Dict, Optional
import json
from dataclasses import dataclass, asdict

BUILDERS = ["brute", "nndescent", "lsh"]


@dataclass
class KNNGraphConfig:
    """Configuration for graph building, partitioning and search.

    Builder selection:
        builder: "brute", "nndescent" or "lsh"
        inner_builder: Builder used inside LSH buckets ("brute" or "nndescent")

    Graph:
        k: Neighbors per node

    NNDescent:
        max_iterations: Maximum number of refinement rounds
        rho: Fraction of neighbors sampled per round
        delta: Early termination threshold (fraction of n * k changes)

    LSH:
        stages: Number of hash tables
        buckets: Buckets per hash table
        dim: Vector dimensionality (required when builder == "lsh")

    Partitioning and search:
        partitions: Number of partitions of the searchable graph
        partitioning_iterations: Balancing rounds (0 = random assignment)
        balance_factor: Max partition size as a multiple of n / partitions
        search_speedup, search_jumps, search_expansion: Search defaults

    Execution:
        workers: Worker threads (None = number of CPUs)
        seed: Seed for all random sources (None = not reproducible)
    """

    # Builder selection
    builder: str = "nndescent"
    inner_builder: str = "nndescent"

    # Graph
    k: int = 10

    # NNDescent
    max_iterations: int = 10
    rho: float = 0.5
    delta: float = 0.001

    # LSH
    stages: int = 2
    buckets: int = 10
    dim: Optional[int] = None

    # Partitioning
    partitions: int = 8
    partitioning_iterations: int = 5
    balance_factor: float = 1.2

    # Search
    search_speedup: float = 4.0
    search_jumps: int = 10
    search_expansion: int = 3

    # Execution
    workers: Optional[int] = None
    seed: Optional[int] = None

    # Metadata
    config_name: str = "default"

    def __post_init__(self):
        """Validate configuration."""
        if self.builder not in BUILDERS:
            raise ValueError(f"builder must be one of {BUILDERS}")

        if self.inner_builder not in ["brute", "nndescent"]:
            raise ValueError("inner_builder must be 'brute' or 'nndescent'")

        if self.k < 1:
            raise ValueError("k must be >= 1")

        if self.max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")

        if not 0.0 < self.rho <= 1.0:
            raise ValueError("rho must be in (0.0, 1.0]")

        if not 0.0 <= self.delta < 1.0:
            raise ValueError("delta must be in [0.0, 1.0)")

        if self.stages < 1 or self.buckets < 1:
            raise ValueError("stages and buckets must be >= 1")

        if self.dim is not None and self.dim < 1:
            raise ValueError("dim must be >= 1")

        if self.builder == "lsh" and self.dim is None:
            raise ValueError("dim is required by the lsh builder")

        if self.partitions < 1:
            raise ValueError("partitions must be >= 1")

        if self.partitioning_iterations < 0:
            raise ValueError("partitioning_iterations must be >= 0")

        if self.balance_factor < 1.0:
            raise ValueError("balance_factor must be >= 1.0")

        if self.search_speedup <= 0.0:
            raise ValueError("search_speedup must be positive")

        if self.search_jumps < 1 or self.search_expansion < 1:
            raise ValueError("search_jumps and search_expansion must be >= 1")

        if self.workers is not None and self.workers < 1:
            raise ValueError("workers must be >= 1")

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return asdict(self)

    def to_json(self, filepath: str) -> None:
        """Save configuration to JSON file."""
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'KNNGraphConfig':
        """Load configuration from dictionary."""
        return cls(**config_dict)

    @classmethod
    def from_json(cls, filepath: str) -> 'KNNGraphConfig':
        """Load configuration from JSON file."""
        with open(filepath, 'r') as f:
            config_dict = json.load(f)
        return cls.from_dict(config_dict)

    def __repr__(self) -> str:
        """String representation."""
        builder = self.builder
        if self.builder == "lsh":
            builder = f"lsh[{self.inner_builder}, stages={self.stages}, buckets={self.buckets}]"

        return (
            f"KNNGraphConfig("
            f"{self.config_name}, "
            f"{builder}, "
            f"k={self.k})"
        )


# Preset configurations

def get_default_config() -> KNNGraphConfig:
    """Default configuration: NNDescent, k=10."""
    return KNNGraphConfig(config_name="default")


def get_brute_config() -> KNNGraphConfig:
    """Exact graph. Quadratic cost, use for small datasets and ground truth."""
    return KNNGraphConfig(config_name="brute", builder="brute")


def get_lsh_config(dim: int) -> KNNGraphConfig:
    """LSH buckets with NNDescent inside each bucket.

    Args:
        dim: Dimensionality of the (possibly sparse) input vectors

    Note: Tuned for text shingle vectors, 2 stages of 10 buckets, with a
    lighter NNDescent (delta=0.01) inside buckets.
    """
    return KNNGraphConfig(
        config_name="lsh",
        builder="lsh",
        inner_builder="nndescent",
        dim=dim,
        stages=2,
        buckets=10,
        delta=0.01,
        rho=0.5,
        max_iterations=10,
    )
