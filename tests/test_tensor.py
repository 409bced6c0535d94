"""
Tests for Tensor and SyncedMemory
=================================

Shape bookkeeping and host/device coherence.
"""

import numpy as np
import pytest
import torch

from pooldrop.context import ExecutionContext
from pooldrop.exceptions import ShapeMismatchError
from pooldrop.synced_memory import Head, SyncedMemory
from pooldrop.tensor import Tensor


@pytest.fixture
def device():
    return ExecutionContext().torch_device


class TestSyncedMemory:
    """Tests for head-state transitions."""

    def test_fresh_memory_reads_zeros(self, device):
        mem = SyncedMemory((2, 3))
        assert mem.head is Head.UNINITIALIZED
        np.testing.assert_array_equal(mem.cpu_data(), np.zeros((2, 3)))
        assert mem.head is Head.HEAD_AT_CPU

        mem = SyncedMemory((2, 3))
        assert torch.count_nonzero(mem.gpu_data(device)) == 0
        assert mem.head is Head.HEAD_AT_GPU

    def test_cpu_write_reaches_gpu(self, device):
        mem = SyncedMemory((2, 2), np.float64)
        mem.mutable_cpu_data()[...] = [[1, 2], [3, 4]]
        gpu = mem.gpu_data(device)

        assert mem.head is Head.SYNCED
        assert gpu.dtype == torch.float64
        np.testing.assert_array_equal(gpu.cpu().numpy(), [[1, 2], [3, 4]])

    def test_gpu_write_reaches_cpu(self, device):
        mem = SyncedMemory((3,), np.float32)
        mem.mutable_gpu_data(device).fill_(2.5)
        assert mem.head is Head.HEAD_AT_GPU

        np.testing.assert_array_equal(mem.cpu_data(), [2.5, 2.5, 2.5])
        assert mem.head is Head.SYNCED

    def test_copies_do_not_alias(self, device):
        """Writing one side without marking it leaves the other side alone."""
        mem = SyncedMemory((2,), np.float64)
        mem.mutable_cpu_data()[...] = 1.0
        gpu = mem.gpu_data(device)
        mem.mutable_cpu_data()[...] = 7.0

        assert float(gpu.sum()) == 2.0
        np.testing.assert_array_equal(mem.gpu_data(device).cpu().numpy(), [7.0, 7.0])

    def test_round_trip_keeps_dtype(self, device):
        for dtype in (np.int64, np.bool_, np.float32):
            mem = SyncedMemory((4,), dtype)
            mem.mutable_gpu_data(device)
            assert mem.cpu_data().dtype == np.dtype(dtype)


class TestTensor:
    """Tests for Tensor."""

    def test_shape_accessors(self):
        t = Tensor(2, 3, 6, 5)

        assert t.shape == (2, 3, 6, 5)
        assert (t.num, t.channels, t.height, t.width) == (2, 3, 6, 5)
        assert t.count == 180
        assert t.cpu_data().shape == t.cpu_diff().shape == (2, 3, 6, 5)

    def test_default_dtype(self):
        assert Tensor(1, 1, 1, 1).cpu_data().dtype == np.float32
        assert Tensor(1, 1, 1, 1, dtype=np.float64).cpu_diff().dtype == np.float64

    def test_reshape_same_shape_keeps_contents(self):
        t = Tensor(1, 2, 2, 2)
        t.mutable_cpu_data()[...] = 4.0
        t.reshape(1, 2, 2, 2)

        assert np.all(t.cpu_data() == 4.0)

    def test_reshape_new_shape_reallocates(self):
        t = Tensor(1, 2, 2, 2)
        t.mutable_cpu_data()[...] = 4.0
        t.reshape(2, 2, 2, 2)

        assert t.count == 16
        assert np.all(t.cpu_data() == 0.0)
        assert np.all(t.cpu_diff() == 0.0)

    def test_negative_shape(self):
        with pytest.raises(ShapeMismatchError):
            Tensor(1, -1, 2, 2)

    def test_reshape_like(self):
        t = Tensor()
        t.reshape_like(Tensor(2, 3, 4, 5))
        assert t.shape == (2, 3, 4, 5)

    def test_zero_diff(self, device):
        t = Tensor(1, 1, 2, 2)
        t.mutable_gpu_diff(device).fill_(3.0)
        t.zero_diff()

        assert np.all(t.cpu_diff() == 0.0)
        assert float(t.gpu_diff(device).sum()) == 0.0

    def test_data_and_diff_are_separate(self):
        t = Tensor(1, 1, 2, 2)
        t.mutable_cpu_data()[...] = 1.0

        assert np.all(t.cpu_diff() == 0.0)
