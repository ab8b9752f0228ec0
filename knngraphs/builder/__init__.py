"""
k-NN graph builders.

Components:
- Brute: exact graph, compares all pairs of nodes
- NNDescent: approximate graph by iterative neighbor-of-neighbor refinement
- LSHSuperBit: LSH buckets with an inner builder run inside each bucket

create_builder selects and configures a builder from a KNNGraphConfig.
"""

from typing import Optional

from knngraphs.builder.base import GraphBuilder, Similarity
from knngraphs.builder.brute import Brute
from knngraphs.builder.nndescent import NNDescent
from knngraphs.builder.lsh import LSHSuperBit, SuperBitHasher
from knngraphs.config import KNNGraphConfig
from knngraphs.parallel import ExecutionContext


def create_builder(
    config: KNNGraphConfig,
    similarity: Optional[Similarity] = None,
    context: Optional[ExecutionContext] = None,
) -> GraphBuilder:
    """
    Create the builder described by a configuration.

    Args:
        config: Configuration (config.builder selects the variant)
        similarity: Similarity on node values (LSH defaults to cosine similarity)
        context: Execution context shared by the builder (default: a new context
                 when config sets workers or seed, else the shared default)

    Returns:
        A configured GraphBuilder
    """
    if context is None and (config.workers is not None or config.seed is not None):
        context = ExecutionContext(workers=config.workers, seed=config.seed)

    if config.builder == "brute":
        return Brute(k=config.k, similarity=similarity, context=context)

    if config.builder == "nndescent":
        return _nndescent(config, similarity, context)

    if config.inner_builder == "brute":
        inner = Brute(k=config.k)
    else:
        inner = _nndescent(config, None, None)

    kwargs = {"similarity": similarity} if similarity is not None else {}
    return LSHSuperBit(
        k=config.k,
        stages=config.stages,
        buckets=config.buckets,
        dim=config.dim,
        inner_builder=inner,
        context=context,
        **kwargs,
    )


def _nndescent(config: KNNGraphConfig, similarity, context) -> NNDescent:
    return NNDescent(
        k=config.k,
        similarity=similarity,
        max_iterations=config.max_iterations,
        rho=config.rho,
        delta=config.delta,
        context=context,
    )


__all__ = [
    "GraphBuilder",
    "Brute",
    "NNDescent",
    "LSHSuperBit",
    "SuperBitHasher",
    "create_builder",
]
