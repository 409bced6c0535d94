"""
Fillers
=======

Seed tensor values before a pass. Random fillers draw from the context's
generator so a fixed seed reproduces the same input.
"""

from .exceptions import ConfigurationError


class Filler:
    """Base class for fillers."""

    def __init__(self, param):
        self.filler_param = param

    def fill(self, tensor, ctx=None):
        raise NotImplementedError


class ConstantFiller(Filler):
    """Set every value to `param.value`."""

    def fill(self, tensor, ctx=None):
        tensor.mutable_cpu_data().fill(self.filler_param.value)


class UniformFiller(Filler):
    """Draw values uniformly from [param.min, param.max)."""

    def fill(self, tensor, ctx=None):
        if ctx is None:
            raise ConfigurationError("UniformFiller needs an ExecutionContext for its random draws")
        p = self.filler_param
        if p.max < p.min:
            raise ConfigurationError(f"UniformFiller max ({p.max}) is below min ({p.min})")
        tensor.mutable_cpu_data()[...] = ctx.rng.uniform(p.min, p.max, size=tensor.shape)


class GaussianFiller(Filler):
    """Draw values from N(param.mean, param.std**2)."""

    def fill(self, tensor, ctx=None):
        if ctx is None:
            raise ConfigurationError("GaussianFiller needs an ExecutionContext for its random draws")
        p = self.filler_param
        if p.std < 0:
            raise ConfigurationError(f"GaussianFiller std must be non-negative, got {p.std}")
        tensor.mutable_cpu_data()[...] = ctx.rng.normal(p.mean, p.std, size=tensor.shape)


_FILLERS = {
    'constant': ConstantFiller,
    'uniform': UniformFiller,
    'gaussian': GaussianFiller,
}


def get_filler(param):
    """
    Get filler by its configured type.

    Args:
        param: FillerParameter

    Returns:
        Filler instance
    """
    filler_type = param.type.lower()
    if filler_type not in _FILLERS:
        raise ConfigurationError(
            f"Unknown filler type: {param.type}. Available: {list(_FILLERS.keys())}"
        )
    return _FILLERS[filler_type](param)
