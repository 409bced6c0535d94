"""
Tensor
======

4-D (num, channels, height, width) container with two planes of identical
shape: `data` for values and `diff` for gradients. Each plane is a
SyncedMemory, so layers read and write whichever side their backend needs.
"""

import numpy as np

from .exceptions import ShapeMismatchError
from .synced_memory import SyncedMemory


class Tensor:
    """
    Paired value/gradient buffers.

    Args:
        num: Batch size
        channels: Number of channels
        height: Spatial height
        width: Spatial width
        dtype: np.float32 or np.float64

    Example:
        >>> t = Tensor(2, 3, 6, 5)
        >>> t.count
        180
    """

    def __init__(self, num=0, channels=0, height=0, width=0, dtype=np.float32):
        self.dtype = np.dtype(dtype)
        self._shape = None
        self.data = None
        self.diff = None
        self.reshape(num, channels, height, width)

    def reshape(self, num, channels, height, width):
        """
        Resize the tensor.

        Reshaping to the current shape keeps the contents. Any other shape
        reallocates both planes, which then read as zeros.
        """
        shape = (int(num), int(channels), int(height), int(width))
        if any(d < 0 for d in shape):
            raise ShapeMismatchError(f"Tensor dimensions must be non-negative, got {shape}")
        if shape == self._shape:
            return
        self._shape = shape
        self.data = SyncedMemory(shape, self.dtype)
        self.diff = SyncedMemory(shape, self.dtype)

    def reshape_like(self, other):
        self.reshape(*other.shape)

    @property
    def shape(self):
        return self._shape

    @property
    def num(self):
        return self._shape[0]

    @property
    def channels(self):
        return self._shape[1]

    @property
    def height(self):
        return self._shape[2]

    @property
    def width(self):
        return self._shape[3]

    @property
    def count(self):
        return int(np.prod(self._shape))

    def cpu_data(self):
        return self.data.cpu_data()

    def mutable_cpu_data(self):
        return self.data.mutable_cpu_data()

    def cpu_diff(self):
        return self.diff.cpu_data()

    def mutable_cpu_diff(self):
        return self.diff.mutable_cpu_data()

    def gpu_data(self, device):
        return self.data.gpu_data(device)

    def mutable_gpu_data(self, device):
        return self.data.mutable_gpu_data(device)

    def gpu_diff(self, device):
        return self.diff.gpu_data(device)

    def mutable_gpu_diff(self, device):
        return self.diff.mutable_gpu_data(device)

    def zero_diff(self):
        """Reset the gradient plane to zeros."""
        self.mutable_cpu_diff().fill(0)

    def __repr__(self):
        return f"Tensor{self._shape}"
