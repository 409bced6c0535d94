"""
Pipeline
========

Ordered chain of layers sharing tensors:
- Setup in order, checking that consecutive stages agree on shapes
- Forward pass in order
- Backward pass in reverse order (chain rule)
- Timing of forward + backward iterations

A stage's top may be the next stage's bottom, and a layer such as dropout
may use the same tensor as bottom and top (in place).
"""

import time

import numpy as np
from tqdm import tqdm

from .exceptions import ShapeMismatchError
from .utils import get_logger

logger = get_logger()


class Pipeline:
    """
    Chain of (layer, bottom, top) stages.

    Args:
        stages: List of (layer, bottom_list, top_list) tuples

    Example:
        >>> param = LayerParameter(kernel_size=3, stride=2)
        >>> pipeline = Pipeline([
        ...     (PoolingLayer(param), [bottom], [top]),
        ...     (DropoutLayer(param), [top], [top]),
        ... ])
        >>> pipeline.setup(ctx)
        >>> pipeline.forward(ctx)
        >>> pipeline.backward(ctx)
    """

    def __init__(self, stages):
        self.stages = [(layer, list(bottom), list(top)) for layer, bottom, top in stages]

    @property
    def layers(self):
        return [layer for layer, _, _ in self.stages]

    def setup(self, ctx):
        """Set up every stage in order."""
        for i, (layer, bottom, top) in enumerate(self.stages):
            layer.setup(bottom, top, ctx)
            if i + 1 < len(self.stages):
                self._check_chain(i, top, self.stages[i + 1][1])

    def _check_chain(self, i, top, next_bottom):
        for produced, consumed in zip(top, next_bottom):
            if produced is not consumed and produced.shape != consumed.shape:
                raise ShapeMismatchError(
                    f"Stage {i} ({self.stages[i][0]!r}) produces {produced.shape} "
                    f"but stage {i + 1} ({self.stages[i + 1][0]!r}) consumes {consumed.shape}"
                )

    def forward(self, ctx):
        """Run every stage's forward pass in order."""
        for layer, bottom, top in self.stages:
            layer.forward(bottom, top, ctx)

    def backward(self, ctx):
        """Run every stage's backward pass in reverse order."""
        for layer, bottom, top in reversed(self.stages):
            layer.backward(top, True, bottom, ctx)

    def tensors(self):
        """Distinct tensors touched by the pipeline, in first-use order."""
        seen = []
        for _, bottom, top in self.stages:
            for tensor in bottom + top:
                if not any(tensor is t for t in seen):
                    seen.append(tensor)
        return seen

    def zero_diffs(self):
        """Reset every gradient plane; backward passes accumulate into them."""
        for tensor in self.tensors():
            tensor.zero_diff()

    def __repr__(self):
        return " -> ".join(repr(layer) for layer in self.layers)


def benchmark_pipeline(pipeline, ctx, n_runs=100, n_warmup=5, progress=False):
    """
    Benchmark forward + backward time.

    Args:
        pipeline: Pipeline that has been set up
        ctx: ExecutionContext for the passes
        n_runs: Number of timed iterations
        n_warmup: Untimed iterations run first
        progress: Show a tqdm progress bar

    Returns:
        Dictionary with timing statistics
    """
    for _ in range(n_warmup):
        _run_iteration(pipeline, ctx)

    times = []
    for _ in tqdm(range(n_runs), desc=f"{ctx.backend.value} benchmark", disable=not progress):
        start = time.perf_counter()
        _run_iteration(pipeline, ctx)
        end = time.perf_counter()
        times.append(end - start)

    times = np.array(times) * 1000  # Convert to ms

    stats = {
        'mean_ms': float(np.mean(times)),
        'std_ms': float(np.std(times)),
        'min_ms': float(np.min(times)),
        'max_ms': float(np.max(times)),
        'n_runs': n_runs,
    }
    logger.info(f"{pipeline!r} on {ctx.backend.value}: {stats['mean_ms']:.3f} ms/iter "
                f"(std {stats['std_ms']:.3f} ms)")
    return stats


def _run_iteration(pipeline, ctx):
    pipeline.zero_diffs()
    pipeline.forward(ctx)
    pipeline.backward(ctx)
    # Reading back forces queued device work to finish before the clock stops
    pipeline.tensors()[0].cpu_diff()
