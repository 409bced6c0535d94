"""Shared fixtures for pooldrop tests."""

import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from pooldrop.context import Backend, ExecutionContext, Phase


@pytest.fixture(params=[Backend.CPU, Backend.GPU], ids=lambda b: b.value)
def backend(request):
    return request.param


@pytest.fixture(params=[np.float32, np.float64], ids=lambda d: np.dtype(d).name)
def dtype(request):
    return request.param


@pytest.fixture
def train_ctx(backend):
    return ExecutionContext(backend=backend, phase=Phase.TRAIN, seed=1703)


@pytest.fixture
def test_ctx(backend):
    return ExecutionContext(backend=backend, phase=Phase.TEST, seed=1703)
