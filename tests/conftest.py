"""
Pytest configuration and shared fixtures for knngraphs tests
"""

import pytest
import numpy as np
from typing import List

from knngraphs import ExecutionContext, Node

WORDS = [
    "free", "winner", "cash", "prize", "offer", "click", "now", "urgent",
    "account", "bank", "loan", "credit", "viagra", "cheap", "pills", "casino",
    "bonus", "claim", "limited", "deal", "money", "reply", "stop", "call",
    "mobile", "ringtone", "txt", "week", "guaranteed", "selected",
]

TEMPLATES = [
    "Congratulations you have been {0} for a {1} {2}",
    "URGENT {0} your {1} now to {2}",
    "Get {0} {1} today only {2}",
    "{0} {1} {2} reply YES to claim",
    "Dear customer your {0} {1} is waiting {2}",
    "You won a {0} {1} call {2} now",
]


def point_similarity(value1: float, value2: float) -> float:
    """Similarity of two 1D points (1 for identical points, towards 0 when far)."""
    return 1.0 / (1 + abs(value1 - value2))


def string_similarity(s1: str, s2: str) -> float:
    """Jaccard index of the character 3-gram sets of two strings."""
    grams1 = {s1[i:i + 3] for i in range(max(1, len(s1) - 2))}
    grams2 = {s2[i:i + 3] for i in range(max(1, len(s2) - 2))}
    union = grams1 | grams2
    if not union:
        return 0.0
    return len(grams1 & grams2) / len(union)


class GaussianPoints:
    """1D points drawn from 3 Gaussian clusters with medium overlap."""

    def __init__(self, seed: int = 42) -> None:
        self.rng = np.random.default_rng(seed)
        self.centers = [0.0, 10.0, 20.0]
        self.stddev = 3.0

    def next(self) -> float:
        center = self.centers[self.rng.integers(len(self.centers))]
        return float(self.rng.normal(center, self.stddev))

    def nodes(self, count: int, start: int = 0) -> List[Node]:
        return [Node(str(start + i), self.next()) for i in range(count)]


def make_spam_texts(count: int = 700, seed: int = 7) -> List[str]:
    """Unique short spam-like messages."""
    rng = np.random.default_rng(seed)
    texts = []
    seen = set()
    while len(texts) < count:
        template = TEMPLATES[rng.integers(len(TEMPLATES))]
        words = [WORDS[i] for i in rng.integers(len(WORDS), size=3)]
        text = template.format(*words) + f" {rng.integers(1000)}"
        if text not in seen:
            seen.add(text)
            texts.append(text)
    return texts


@pytest.fixture
def context():
    """Execution context with a few workers and a fixed seed."""
    with ExecutionContext(workers=4, default_partitions=4, seed=42) as ctx:
        yield ctx


@pytest.fixture
def gaussian_points() -> GaussianPoints:
    return GaussianPoints(seed=42)


@pytest.fixture(scope="module")
def spam_nodes() -> List[Node]:
    """Synthetic spam corpus as nodes."""
    return [Node(str(i), text) for i, text in enumerate(make_spam_texts())]


@pytest.fixture
def sample_vectors() -> np.ndarray:
    """Vectors drawn around 3 directions in 16 dimensions."""
    rng = np.random.default_rng(42)
    directions = rng.normal(size=(3, 16))
    labels = rng.integers(3, size=300)
    return directions[labels] * 5 + rng.normal(size=(300, 16))
