"""
pooldrop
========

Max pooling and dropout layers with paired forward/backward passes on a
sequential NumPy backend and a parallel PyTorch backend.

This library provides:
- Tensor with data/diff planes kept in sync between NumPy and torch
- PoolingLayer (max and average) with clipped windows
- DropoutLayer (inverted dropout, in place)
- Explicit ExecutionContext for backend, phase and random seed
- Pipeline composition and numerical gradient checking
"""

from .config import LayerParameter, FillerParameter, PoolMethod
from .context import Backend, Phase, ExecutionContext
from .exceptions import (PoolDropError, ConfigurationError,
                         ShapeMismatchError, PreconditionViolation)
from .fillers import ConstantFiller, UniformFiller, GaussianFiller, get_filler
from .gradient_check import GradientChecker
from .layers import Layer, PoolingLayer, DropoutLayer, pooled_size
from .pipeline import Pipeline, benchmark_pipeline
from .synced_memory import SyncedMemory
from .tensor import Tensor
from .utils import blob_sum, get_logger

__version__ = "1.0.0"
__all__ = [
    # Configuration
    'LayerParameter', 'FillerParameter', 'PoolMethod',
    'Backend', 'Phase', 'ExecutionContext',
    # Errors
    'PoolDropError', 'ConfigurationError', 'ShapeMismatchError', 'PreconditionViolation',
    # Tensors
    'SyncedMemory', 'Tensor',
    'ConstantFiller', 'UniformFiller', 'GaussianFiller', 'get_filler',
    # Layers
    'Layer', 'PoolingLayer', 'DropoutLayer', 'pooled_size',
    'Pipeline', 'benchmark_pipeline',
    # Utilities
    'GradientChecker', 'blob_sum', 'get_logger',
]
