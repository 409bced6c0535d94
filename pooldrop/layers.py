"""
Layers
======

The two layer primitives of this package and their shared base.

Layers implemented:
- PoolingLayer: max (or average) pooling over clipped square windows
- DropoutLayer: inverted dropout, usually applied in place

Every layer is driven through setup(), forward() and backward(), each taking
lists of Tensors and an ExecutionContext. The context's backend picks the
NumPy (CPU) or torch (GPU) implementation.
"""

import math

import numpy as np

from .config import PoolMethod
from .context import Backend, Phase
from .exceptions import ConfigurationError, PreconditionViolation, ShapeMismatchError
from .pytorch import kernels
from .synced_memory import SyncedMemory
from .utils import get_logger

logger = get_logger()


class Layer:
    """
    Base class for all layers.

    Subclasses implement setup() and the four backend-specific passes
    (_forward_cpu, _forward_gpu, _backward_cpu, _backward_gpu). The base
    checks that exactly one bottom and one top tensor are given, that the
    bottom still has the shape setup() saw, and dispatches on ctx.backend.
    """

    def __init__(self, param):
        self.layer_param = param
        self.bottom_shape = None

    def setup(self, bottom, top, ctx):
        """Validate configuration, infer the top shape and allocate state."""
        raise NotImplementedError

    def forward(self, bottom, top, ctx):
        """Compute top data from bottom data."""
        self._check_blob_counts(bottom, top)
        self._check_setup_shape(bottom)
        if ctx.backend is Backend.GPU:
            self._forward_gpu(bottom, top, ctx)
        else:
            self._forward_cpu(bottom, top, ctx)

    def backward(self, top, propagate_down, bottom, ctx):
        """
        Compute bottom gradients from top gradients.

        With propagate_down false the bottom gradients are left untouched.
        """
        self._check_blob_counts(bottom, top)
        if not propagate_down:
            return
        if ctx.backend is Backend.GPU:
            self._backward_gpu(top, bottom, ctx)
        else:
            self._backward_cpu(top, bottom, ctx)

    def _forward_cpu(self, bottom, top, ctx):
        raise NotImplementedError

    def _forward_gpu(self, bottom, top, ctx):
        raise NotImplementedError

    def _backward_cpu(self, top, bottom, ctx):
        raise NotImplementedError

    def _backward_gpu(self, top, bottom, ctx):
        raise NotImplementedError

    def _check_setup_shape(self, bottom):
        if self.bottom_shape is None:
            raise PreconditionViolation(f"{self!r} forward needs setup() first")
        if bottom[0].shape != self.bottom_shape:
            raise ShapeMismatchError(
                f"{self!r} was set up for a {self.bottom_shape} bottom, got {bottom[0].shape}; "
                f"call setup() again after reshaping"
            )

    def _check_blob_counts(self, bottom, top):
        if len(bottom) != 1:
            raise ShapeMismatchError(
                f"{type(self).__name__} takes exactly one bottom tensor, got {len(bottom)}"
            )
        if len(top) != 1:
            raise ShapeMismatchError(
                f"{type(self).__name__} takes exactly one top tensor, got {len(top)}"
            )


def pooled_size(size, kernel_size, stride):
    """
    Number of pooling windows along one axis.

    Ceiling division keeps a partial trailing window, as long as it still
    starts inside the input. A kernel larger than the input is rejected
    whatever the stride.

    Example:
        >>> pooled_size(6, 3, 2), pooled_size(5, 3, 2)
        (3, 2)
    """
    if kernel_size > size:
        raise ShapeMismatchError(f"kernel_size {kernel_size} exceeds input size {size}")
    pooled = int(math.ceil((size - kernel_size) / stride)) + 1
    if (pooled - 1) * stride >= size:
        pooled -= 1
    return pooled


class PoolingLayer(Layer):
    """
    Pooling Layer.

    Reduces each (kernel_size x kernel_size) window of every channel to a
    single value. Windows that run past the bottom or right edge are
    clipped, not padded.

    Args:
        param: LayerParameter with kernel_size, stride and pool

    Output shape: (batch, channels, pooled_height, pooled_width)

    Where:
        pooled = ceil((size - kernel_size) / stride) + 1

    kernel_size may not exceed the input height or width, for any stride.

    Max pooling records, per output cell, the flat index h * width + w of
    the maximum within its input plane; equal maxima resolve to the first in
    row-major window order. Backward routes each output gradient to that
    index only. Average pooling divides by the clipped window area.

    backward() adds into bottom.diff, so gradients from overlapping windows
    and from repeated calls accumulate. Zero the bottom gradients between
    iterations.
    """

    def __init__(self, param):
        super().__init__(param)
        self.kernel_size = None
        self.stride = None
        self.pool = None
        self.pooled_height = None
        self.pooled_width = None
        self.max_idx = None
        self._forward_shape = None

    def setup(self, bottom, top, ctx):
        self._check_blob_counts(bottom, top)
        param = self.layer_param

        if param.kernel_size is None or param.kernel_size <= 0:
            raise ConfigurationError(f"kernel_size must be positive, got {param.kernel_size}")
        if param.stride <= 0:
            raise ConfigurationError(f"stride must be positive, got {param.stride}")
        if not isinstance(param.pool, PoolMethod):
            raise ConfigurationError(f"Unknown pooling method: {param.pool}")

        x = bottom[0]
        if x.count == 0:
            raise ShapeMismatchError(f"PoolingLayer bottom is empty: {x.shape}")

        self.kernel_size = param.kernel_size
        self.stride = param.stride
        self.pool = param.pool
        self.pooled_height = pooled_size(x.height, self.kernel_size, self.stride)
        self.pooled_width = pooled_size(x.width, self.kernel_size, self.stride)

        top[0].reshape(x.num, x.channels, self.pooled_height, self.pooled_width)
        if self.pool is PoolMethod.MAX:
            self.max_idx = SyncedMemory(top[0].shape, np.int64)
        self.bottom_shape = x.shape
        self._forward_shape = None

        logger.debug(f"{self!r} setup: {x.shape} -> {top[0].shape}")

    def _forward_cpu(self, bottom, top, ctx):
        x = bottom[0].cpu_data()
        if self.pool is PoolMethod.MAX:
            output, max_idx = self._max_pool_cpu(x)
            self.max_idx.mutable_cpu_data()[...] = max_idx
        else:
            output = self._ave_pool_cpu(x)
        top[0].mutable_cpu_data()[...] = output
        self._forward_shape = bottom[0].shape

    def _forward_gpu(self, bottom, top, ctx):
        device = ctx.torch_device
        x = bottom[0].gpu_data(device)
        if self.pool is PoolMethod.MAX:
            output, max_idx = kernels.max_pool_forward(
                x, self.kernel_size, self.stride, self.pooled_height, self.pooled_width)
            self.max_idx.mutable_gpu_data(device).copy_(max_idx)
        else:
            output = kernels.ave_pool_forward(
                x, self.kernel_size, self.stride, self.pooled_height, self.pooled_width)
        top[0].mutable_gpu_data(device).copy_(output)
        self._forward_shape = bottom[0].shape

    def _max_pool_cpu(self, x):
        """
        Max pooling using stride tricks.

        Returns:
            output: Max values, shape (batch, channels, pooled_h, pooled_w)
            max_idx: Flat plane index of each maximum, same shape
        """
        batch_size, channels, h_in, w_in = x.shape
        k, s = self.kernel_size, self.stride
        h_out, w_out = self.pooled_height, self.pooled_width

        # -inf padding never wins: every window starts inside the input
        windows = self._windows(x, -np.inf)
        windows_flat = windows.reshape(batch_size, channels, h_out, w_out, -1)

        # np.argmax returns the first maximum in row-major window order
        local = np.argmax(windows_flat, axis=-1)
        output = np.take_along_axis(windows_flat, local[..., np.newaxis], axis=-1)[..., 0]

        h_grid = np.arange(h_out).reshape(1, 1, h_out, 1) * s
        w_grid = np.arange(w_out).reshape(1, 1, 1, w_out) * s
        abs_h = h_grid + local // k
        abs_w = w_grid + local % k

        return output, abs_h * w_in + abs_w

    def _ave_pool_cpu(self, x):
        # Zero padding adds nothing to the window sums
        windows = self._windows(x, 0)
        return windows.sum(axis=(4, 5)) / self._window_area(x.shape[2], x.shape[3], x.dtype)

    def _windows(self, x, fill_value):
        """
        View of every pooling window using stride tricks.

        The trailing edge is padded with fill_value so clipped windows can
        share one view. Returns shape (batch, channels, pooled_h, pooled_w, k, k).
        """
        batch_size, channels, h_in, w_in = x.shape
        k, s = self.kernel_size, self.stride
        h_out, w_out = self.pooled_height, self.pooled_width

        pad_h = max(0, (h_out - 1) * s + k - h_in)
        pad_w = max(0, (w_out - 1) * s + k - w_in)
        x = np.pad(x, ((0, 0), (0, 0), (0, pad_h), (0, pad_w)), constant_values=fill_value)

        shape = (batch_size, channels, h_out, w_out, k, k)
        strides = (
            x.strides[0],           # batch
            x.strides[1],           # channel
            x.strides[2] * s,       # output height (strided)
            x.strides[3] * s,       # output width (strided)
            x.strides[2],           # pool height
            x.strides[3]            # pool width
        )
        return np.lib.stride_tricks.as_strided(x, shape=shape, strides=strides, writeable=False)

    def _window_area(self, h_in, w_in, dtype):
        """Clipped area of every window, shape (pooled_h, pooled_w)."""
        starts_h = np.arange(self.pooled_height) * self.stride
        starts_w = np.arange(self.pooled_width) * self.stride
        extent_h = np.minimum(starts_h + self.kernel_size, h_in) - starts_h
        extent_w = np.minimum(starts_w + self.kernel_size, w_in) - starts_w
        return np.outer(extent_h, extent_w).astype(dtype)

    def _check_forward_done(self, bottom):
        if self._forward_shape is None or self._forward_shape != bottom[0].shape:
            raise PreconditionViolation(
                f"{self!r} backward needs a forward pass on a {bottom[0].shape} bottom first"
            )

    def _backward_cpu(self, top, bottom, ctx):
        self._check_forward_done(bottom)
        top_diff = top[0].cpu_diff()
        bottom_diff = bottom[0].mutable_cpu_diff()

        if self.pool is PoolMethod.AVE:
            self._ave_backward_cpu(top_diff, bottom_diff)
            return

        max_idx = self.max_idx.cpu_data()
        batch_size, channels = top_diff.shape[:2]
        plane = bottom_diff.reshape(batch_size, channels, -1)

        b_idx = np.arange(batch_size).reshape(batch_size, 1, 1, 1)
        c_idx = np.arange(channels).reshape(1, channels, 1, 1)

        # np.add.at accumulates repeated indices from overlapping windows
        np.add.at(plane, (b_idx, c_idx, max_idx), top_diff)

    def _ave_backward_cpu(self, top_diff, bottom_diff):
        """Distribute each output gradient equally over its clipped window."""
        batch_size, channels, h_in, w_in = bottom_diff.shape
        k, s = self.kernel_size, self.stride
        h_out, w_out = self.pooled_height, self.pooled_width

        share = top_diff / self._window_area(h_in, w_in, top_diff.dtype)

        # Positions past the input land in the padding and are dropped
        padded = np.zeros((batch_size, channels,
                           max(h_in, (h_out - 1) * s + k), max(w_in, (w_out - 1) * s + k)),
                          dtype=bottom_diff.dtype)
        offsets = np.arange(k)
        abs_h = (np.arange(h_out) * s).reshape(1, 1, h_out, 1, 1, 1) + offsets.reshape(1, 1, 1, 1, k, 1)
        abs_w = (np.arange(w_out) * s).reshape(1, 1, 1, w_out, 1, 1) + offsets.reshape(1, 1, 1, 1, 1, k)
        b_idx = np.arange(batch_size).reshape(batch_size, 1, 1, 1, 1, 1)
        c_idx = np.arange(channels).reshape(1, channels, 1, 1, 1, 1)

        np.add.at(padded, (b_idx, c_idx, abs_h, abs_w), share[..., np.newaxis, np.newaxis])
        bottom_diff += padded[:, :, :h_in, :w_in]

    def _backward_gpu(self, top, bottom, ctx):
        self._check_forward_done(bottom)
        device = ctx.torch_device
        top_diff = top[0].gpu_diff(device)
        bottom_diff = bottom[0].mutable_gpu_diff(device)

        if self.pool is PoolMethod.AVE:
            kernels.ave_pool_backward(top_diff, self.kernel_size, self.stride, bottom_diff)
        else:
            kernels.max_pool_backward(top_diff, self.max_idx.gpu_data(device), bottom_diff)

    def __repr__(self):
        return (f"PoolingLayer(pool={self.layer_param.pool.value}, "
                f"kernel_size={self.layer_param.kernel_size}, stride={self.layer_param.stride})")


class DropoutLayer(Layer):
    """
    Dropout Layer for regularization.

    Randomly sets activations to zero during training.
    Uses "inverted dropout": scales remaining activations by
    1 / (1 - dropout_ratio) so inference is a plain pass-through.

    Args:
        param: LayerParameter with dropout_ratio in [0, 1)

    Bottom and top may be the same Tensor (in-place). The keep/drop mask is
    drawn on the host from ctx's generator in row-major order, so both
    backends see the same mask for the same seed. backward() in the training
    phase reuses the mask of the preceding forward().
    """

    def __init__(self, param):
        super().__init__(param)
        self.threshold = None
        self.scale = None
        self.mask = None
        self._mask_shape = None

    def setup(self, bottom, top, ctx):
        self._check_blob_counts(bottom, top)
        ratio = self.layer_param.dropout_ratio
        if not 0.0 <= ratio < 1.0:
            raise ConfigurationError(f"dropout_ratio must be in [0, 1), got {ratio}")

        x = bottom[0]
        if x.count == 0:
            raise ShapeMismatchError(f"DropoutLayer bottom is empty: {x.shape}")

        self.threshold = ratio
        self.scale = 1.0 / (1.0 - ratio)
        top[0].reshape_like(x)
        self.mask = SyncedMemory(x.shape, np.bool_)
        self.bottom_shape = x.shape
        self._mask_shape = None

        logger.debug(f"{self!r} setup: {x.shape}, in_place={bottom[0] is top[0]}")

    def _draw_mask(self, bottom, ctx):
        keep = ctx.bernoulli(bottom[0].shape, 1.0 - self.threshold)
        self.mask.mutable_cpu_data()[...] = keep
        self._mask_shape = bottom[0].shape

    def _forward_cpu(self, bottom, top, ctx):
        if ctx.phase is Phase.TEST:
            self._mask_shape = None
            if bottom[0] is not top[0]:
                top[0].mutable_cpu_data()[...] = bottom[0].cpu_data()
            return

        self._draw_mask(bottom, ctx)
        # Right-hand side is evaluated before the in-place write
        top[0].mutable_cpu_data()[...] = bottom[0].cpu_data() * self.mask.cpu_data() * self.scale

    def _forward_gpu(self, bottom, top, ctx):
        device = ctx.torch_device
        if ctx.phase is Phase.TEST:
            self._mask_shape = None
            if bottom[0] is not top[0]:
                top[0].mutable_gpu_data(device).copy_(bottom[0].gpu_data(device))
            return

        self._draw_mask(bottom, ctx)
        x = bottom[0].gpu_data(device)
        kernels.dropout_forward(x, self.mask.gpu_data(device), self.scale,
                                top[0].mutable_gpu_data(device))

    def _check_mask(self, bottom):
        if self._mask_shape is None or self._mask_shape != bottom[0].shape:
            raise PreconditionViolation(
                f"{self!r} training backward needs a training forward pass "
                f"on a {bottom[0].shape} bottom first"
            )

    def _backward_cpu(self, top, bottom, ctx):
        if ctx.phase is Phase.TEST:
            if bottom[0] is not top[0]:
                bottom[0].mutable_cpu_diff()[...] = top[0].cpu_diff()
            return

        self._check_mask(bottom)
        bottom[0].mutable_cpu_diff()[...] = top[0].cpu_diff() * self.mask.cpu_data() * self.scale

    def _backward_gpu(self, top, bottom, ctx):
        device = ctx.torch_device
        if ctx.phase is Phase.TEST:
            if bottom[0] is not top[0]:
                bottom[0].mutable_gpu_diff(device).copy_(top[0].gpu_diff(device))
            return

        self._check_mask(bottom)
        top_diff = top[0].gpu_diff(device)
        kernels.dropout_backward(top_diff, self.mask.gpu_data(device), self.scale,
                                 bottom[0].mutable_gpu_diff(device))

    def __repr__(self):
        return f"DropoutLayer(dropout_ratio={self.layer_param.dropout_ratio})"
