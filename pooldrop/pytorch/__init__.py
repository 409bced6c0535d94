"""
PyTorch Backend
===============

Tensor kernels for the GPU (parallel) backend. Each output cell is computed
by an independent tensor op, on CUDA when available.
"""

from .kernels import (max_pool_forward, max_pool_backward,
                      ave_pool_forward, ave_pool_backward,
                      dropout_forward, dropout_backward)

__all__ = [
    'max_pool_forward', 'max_pool_backward',
    'ave_pool_forward', 'ave_pool_backward',
    'dropout_forward', 'dropout_backward',
]
