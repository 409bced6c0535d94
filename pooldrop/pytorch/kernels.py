"""
PyTorch Kernels
===============

GPU-backend passes for the pooling and dropout layers.

These mirror the NumPy paths in pooldrop.layers and must agree with them:
pooling windows are clipped at the input edge (never zero padded) and equal
maxima resolve to the first one in row-major window order.
"""

import torch
import torch.nn.functional as F


def window_extent(size, pooled, kernel_size, stride, device=None):
    """Length of each clipped window along one axis, shape (pooled,)."""
    starts = torch.arange(pooled, device=device) * stride
    return torch.clamp(starts + kernel_size, max=size) - starts


def max_pool_forward(x, kernel_size, stride, pooled_height, pooled_width):
    """
    Max pooling over clipped windows.

    Args:
        x: Input, shape (batch, channels, height, width)
        kernel_size: Window edge length
        stride: Step between windows
        pooled_height: Output height
        pooled_width: Output width

    Returns:
        output: Shape (batch, channels, pooled_height, pooled_width)
        argmax: int64, same shape, flat index h * width + w of each maximum
    """
    n, c, h, w = x.shape
    k, s = kernel_size, stride

    # -inf padding never wins: every window starts inside the input
    windows = _padded_windows(x, k, s, pooled_height, pooled_width, float('-inf'))
    windows_flat = windows.reshape(n, c, pooled_height, pooled_width, k * k)

    # torch.argmax returns the first maximal index
    local = torch.argmax(windows_flat, dim=-1)
    output = torch.gather(windows_flat, -1, local.unsqueeze(-1)).squeeze(-1)

    rows = torch.arange(pooled_height, device=x.device).view(1, 1, -1, 1) * s
    cols = torch.arange(pooled_width, device=x.device).view(1, 1, 1, -1) * s
    abs_h = rows + torch.div(local, k, rounding_mode='floor')
    abs_w = cols + local % k

    return output, abs_h * w + abs_w


def max_pool_backward(top_diff, argmax, bottom_diff):
    """
    Scatter-add each output gradient onto its recorded maximum.

    `bottom_diff` is updated in place; overlapping windows accumulate.
    """
    n, c = top_diff.shape[:2]
    plane = bottom_diff.view(n, c, -1)
    plane.scatter_add_(2, argmax.reshape(n, c, -1), top_diff.reshape(n, c, -1))


def ave_pool_forward(x, kernel_size, stride, pooled_height, pooled_width):
    """Mean over each clipped window; zero padding adds nothing to the sums."""
    windows = _padded_windows(x, kernel_size, stride, pooled_height, pooled_width, 0.0)
    area = _window_area(x.shape[2:], pooled_height, pooled_width, kernel_size, stride, x)
    return windows.sum(dim=(-2, -1)) / area


def ave_pool_backward(top_diff, kernel_size, stride, bottom_diff):
    """Spread each output gradient evenly over its clipped window, in place."""
    n, c, h, w = bottom_diff.shape
    pooled_height, pooled_width = top_diff.shape[2:]
    k, s = kernel_size, stride
    padded_h = max(h, (pooled_height - 1) * s + k)
    padded_w = max(w, (pooled_width - 1) * s + k)

    area = _window_area((h, w), pooled_height, pooled_width, k, s, top_diff)
    share = (top_diff / area)[..., None, None].expand(n, c, pooled_height, pooled_width, k, k)

    offsets = torch.arange(k, device=top_diff.device)
    rows = torch.arange(pooled_height, device=top_diff.device) * s
    cols = torch.arange(pooled_width, device=top_diff.device) * s
    abs_h = (rows.view(-1, 1, 1, 1) + offsets.view(1, 1, -1, 1))
    abs_w = (cols.view(1, -1, 1, 1) + offsets.view(1, 1, 1, -1))
    index = (abs_h * padded_w + abs_w).expand(n, c, -1, -1, -1, -1)

    padded = top_diff.new_zeros((n, c, padded_h, padded_w))
    padded.view(n, c, -1).scatter_add_(2, index.reshape(n, c, -1), share.reshape(n, c, -1))
    bottom_diff += padded[:, :, :h, :w]


def _padded_windows(x, kernel_size, stride, pooled_height, pooled_width, value):
    """(batch, channels, pooled_h, pooled_w, k, k) view, trailing edge filled with `value`."""
    h, w = x.shape[2:]
    k, s = kernel_size, stride
    pad_h = max(0, (pooled_height - 1) * s + k - h)
    pad_w = max(0, (pooled_width - 1) * s + k - w)
    if pad_h or pad_w:
        x = F.pad(x, (0, pad_w, 0, pad_h), value=value)
    return x.unfold(2, k, s).unfold(3, k, s)[:, :, :pooled_height, :pooled_width]


def _window_area(size, pooled_height, pooled_width, kernel_size, stride, like):
    """Clipped area of every window, shape (pooled_h, pooled_w), dtype of `like`."""
    extent_h = window_extent(size[0], pooled_height, kernel_size, stride, like.device)
    extent_w = window_extent(size[1], pooled_width, kernel_size, stride, like.device)
    return torch.outer(extent_h, extent_w).to(like.dtype)


def dropout_forward(x, mask, scale, out):
    """out = x * mask * scale; safe when `out` is `x`."""
    out.copy_(x * mask * scale)


def dropout_backward(top_diff, mask, scale, bottom_diff):
    """bottom_diff = top_diff * mask * scale; safe in place."""
    bottom_diff.copy_(top_diff * mask * scale)
