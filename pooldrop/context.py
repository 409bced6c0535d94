"""Execution context.

An ExecutionContext selects the backend (sequential NumPy or parallel
torch), the phase (training or inference) and owns the seeded random
generator used by dropout. It is passed explicitly into every
setup/forward/backward call, so independent pipelines can run side by side
in one process.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

import numpy as np
import torch

from .exceptions import ConfigurationError
from .utils import get_logger, warn_once


class Backend(Enum):
    """Execution substrate for a pass."""

    CPU = "cpu"  # Sequential, NumPy
    GPU = "gpu"  # Parallel, torch (CUDA when available)


class Phase(Enum):
    """Network phase; only dropout behaves differently."""

    TRAIN = "train"
    TEST = "test"


@dataclass
class ExecutionContext:
    """Backend, phase and random state for a pass.

    Attributes:
        backend: Backend used by layer passes.
        phase: TRAIN applies dropout, TEST passes values through.
        seed: Seed for the random generator. None draws fresh entropy.
        device: torch device string for the GPU backend. Defaults to "cuda"
            when available, otherwise the torch CPU device.

    Example:
        >>> ctx = ExecutionContext(backend=Backend.GPU, phase=Phase.TRAIN, seed=1703)
        >>> ctx.bernoulli((2, 3), 0.5).shape
        (2, 3)
    """

    backend: Backend = Backend.CPU
    phase: Phase = Phase.TRAIN
    seed: Optional[int] = None
    device: Optional[str] = None
    _rng: np.random.Generator = field(init=False, repr=False, compare=False)
    _torch_device: Optional[torch.device] = field(
        default=None, init=False, repr=False, compare=False
    )

    def __post_init__(self):
        self._rng = np.random.default_rng(self.seed)

    @classmethod
    def from_env(cls):
        """
        Build a context from POOLDROP_BACKEND, POOLDROP_PHASE, POOLDROP_SEED
        and POOLDROP_DEVICE.
        """
        backend = _parse_enum(Backend, "POOLDROP_BACKEND", "cpu")
        phase = _parse_enum(Phase, "POOLDROP_PHASE", "train")

        seed = os.environ.get("POOLDROP_SEED")
        if seed is not None:
            try:
                seed = int(seed)
            except ValueError:
                raise ConfigurationError(
                    f"POOLDROP_SEED must be an integer, got {seed!r}"
                ) from None

        device = os.environ.get("POOLDROP_DEVICE") or None
        return cls(backend=backend, phase=phase, seed=seed, device=device)

    @property
    def rng(self):
        return self._rng

    @property
    def torch_device(self):
        """torch.device used for GPU-backend tensors."""
        if self._torch_device is None:
            self._torch_device = _resolve_device(self.device)
        return self._torch_device

    def reseed(self, seed):
        """Restart the random stream from `seed`."""
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def bernoulli(self, shape: Tuple[int, ...], p: float) -> np.ndarray:
        """
        Draw a boolean array that is True with probability `p`.

        One uniform is drawn per element in row-major order, so the sequence
        depends only on the seed and the element count.
        """
        count = int(np.prod(shape))
        return (self._rng.random(count) < p).reshape(shape)


def _parse_enum(enum_cls, env_var, default):
    raw = os.environ.get(env_var, default).strip().lower()
    try:
        return enum_cls(raw)
    except ValueError:
        valid = ", ".join(member.value for member in enum_cls)
        raise ConfigurationError(
            f"{env_var}={raw!r} is not one of: {valid}"
        ) from None


def _resolve_device(requested):
    if requested is not None:
        try:
            device = torch.device(requested)
        except RuntimeError as e:
            raise ConfigurationError(f"Invalid torch device {requested!r}: {e}") from e
        if device.type == "cuda" and not torch.cuda.is_available():
            warn_once(
                "cuda-fallback",
                f"Device {requested!r} requested but CUDA is not available, "
                f"using the torch CPU device",
            )
            return torch.device("cpu")
        return device

    if torch.cuda.is_available():
        return torch.device("cuda")
    get_logger().debug("CUDA not available, GPU backend runs on the torch CPU device")
    return torch.device("cpu")
