"""Tensor builders shared by the tests."""

import numpy as np

from pooldrop.config import FillerParameter
from pooldrop.fillers import ConstantFiller
from pooldrop.tensor import Tensor


def make_tensor(values, dtype=np.float64):
    """Tensor holding a copy of a 4-D array."""
    values = np.asarray(values, dtype=dtype)
    tensor = Tensor(*values.shape, dtype=dtype)
    tensor.mutable_cpu_data()[...] = values
    return tensor


def constant_tensor(shape, value=1.0, dtype=np.float64):
    tensor = Tensor(*shape, dtype=dtype)
    ConstantFiller(FillerParameter(value=value)).fill(tensor)
    return tensor


def distinct_values(shape, seed=0, spacing=0.1):
    """Random permutation of evenly spaced values: no ties, no near-ties."""
    count = int(np.prod(shape))
    return np.random.default_rng(seed).permutation(count).reshape(shape) * spacing
