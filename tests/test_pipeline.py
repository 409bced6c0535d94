"""
Tests for Pipeline
==================

Stage ordering, shape checks between stages and the benchmark helper.
"""

import numpy as np
import pytest

from helpers import constant_tensor, distinct_values, make_tensor

from pooldrop.config import LayerParameter
from pooldrop.context import ExecutionContext, Phase
from pooldrop.exceptions import ShapeMismatchError
from pooldrop.layers import DropoutLayer, PoolingLayer
from pooldrop.pipeline import Pipeline, benchmark_pipeline
from pooldrop.tensor import Tensor
from pooldrop.utils import blob_sum


def pool_dropout(bottom, top, param=None):
    param = param or LayerParameter(kernel_size=3, stride=2)
    return Pipeline([
        (PoolingLayer(param), [bottom], [top]),
        (DropoutLayer(param), [top], [top]),
    ])


class TestPipeline:
    """Tests for pooling -> dropout composition."""

    def test_setup_resizes_shared_tensor(self, train_ctx):
        bottom, top = constant_tensor((2, 3, 6, 5)), Tensor()
        pool_dropout(bottom, top).setup(train_ctx)

        assert top.shape == (2, 3, 3, 2)

    def test_forward_backward(self, train_ctx):
        bottom, top = constant_tensor((2, 3, 6, 5)), Tensor()
        pipeline = pool_dropout(bottom, top)
        pipeline.setup(train_ctx)
        pipeline.forward(train_ctx)
        dropout = pipeline.layers[1]

        kept = int(dropout.mask.cpu_data().sum())
        assert blob_sum(top) == pytest.approx(kept * dropout.scale)

        top.mutable_cpu_diff()[...] = 1.0
        pipeline.backward(train_ctx)

        assert blob_sum(bottom, diff=True) == pytest.approx(kept * dropout.scale)

    def test_backward_matches_manual_chain(self, train_ctx):
        """Pipeline.backward is dropout backward followed by pooling backward."""
        x = distinct_values((2, 3, 6, 5), seed=21)
        grad = np.random.default_rng(22).standard_normal((2, 3, 3, 2))
        seed = train_ctx.seed

        bottom, top = make_tensor(x), Tensor(dtype=np.float64)
        pipeline = pool_dropout(bottom, top)
        pipeline.setup(train_ctx)
        pipeline.forward(train_ctx)
        top.mutable_cpu_diff()[...] = grad
        pipeline.backward(train_ctx)
        via_pipeline = bottom.cpu_diff().copy()

        train_ctx.reseed(seed)
        bottom2, top2 = make_tensor(x), Tensor(dtype=np.float64)
        param = LayerParameter(kernel_size=3, stride=2)
        pool, dropout = PoolingLayer(param), DropoutLayer(param)
        pool.setup([bottom2], [top2], train_ctx)
        dropout.setup([top2], [top2], train_ctx)
        pool.forward([bottom2], [top2], train_ctx)
        dropout.forward([top2], [top2], train_ctx)
        top2.mutable_cpu_diff()[...] = grad
        dropout.backward([top2], True, [top2], train_ctx)
        pool.backward([top2], True, [bottom2], train_ctx)

        np.testing.assert_allclose(via_pipeline, bottom2.cpu_diff())

    def test_inference_pipeline_is_pooling(self, test_ctx):
        x = distinct_values((1, 2, 6, 5), seed=23)
        bottom, top = make_tensor(x), Tensor(dtype=np.float64)
        pipeline = pool_dropout(bottom, top)
        pipeline.setup(test_ctx)
        pipeline.forward(test_ctx)

        pooled, reference = Tensor(dtype=np.float64), make_tensor(x)
        pool = PoolingLayer(LayerParameter(kernel_size=3, stride=2))
        pool.setup([reference], [pooled], test_ctx)
        pool.forward([reference], [pooled], test_ctx)

        np.testing.assert_array_equal(top.cpu_data(), pooled.cpu_data())

    def test_chained_shape_mismatch(self, train_ctx):
        """A stage that consumes a tensor of another shape is rejected."""
        bottom, top, other = constant_tensor((2, 3, 6, 5)), Tensor(), Tensor(2, 3, 4, 4)
        param = LayerParameter(kernel_size=3, stride=2)
        pipeline = Pipeline([
            (PoolingLayer(param), [bottom], [top]),
            (DropoutLayer(param), [other], [other]),
        ])

        with pytest.raises(ShapeMismatchError):
            pipeline.setup(train_ctx)

    def test_zero_diffs(self, train_ctx):
        bottom, top = constant_tensor((2, 3, 6, 5)), Tensor()
        pipeline = pool_dropout(bottom, top)
        pipeline.setup(train_ctx)
        pipeline.forward(train_ctx)
        top.mutable_cpu_diff()[...] = 1.0
        pipeline.backward(train_ctx)
        pipeline.zero_diffs()

        assert len(pipeline.tensors()) == 2
        assert blob_sum(bottom, diff=True) == 0
        assert blob_sum(top, diff=True) == 0

    def test_repr(self):
        assert "PoolingLayer" in repr(pool_dropout(Tensor(), Tensor()))


class TestBenchmark:
    """Tests for benchmark_pipeline."""

    def test_benchmark_stats(self, backend):
        ctx = ExecutionContext(backend=backend, phase=Phase.TRAIN, seed=1)
        bottom, top = constant_tensor((2, 3, 6, 5)), Tensor()
        pipeline = pool_dropout(bottom, top)
        pipeline.setup(ctx)

        stats = benchmark_pipeline(pipeline, ctx, n_runs=3, n_warmup=1)

        assert stats['n_runs'] == 3
        assert 0 <= stats['min_ms'] <= stats['mean_ms'] <= stats['max_ms']
