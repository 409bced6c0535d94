"""Custom exceptions for pooldrop.

All errors are raised synchronously from Setup, Forward or Backward and are
never retried; there is no I/O in this package, so every failure is
deterministic given the same configuration and input.
"""


class PoolDropError(Exception):
    """Base exception for all pooldrop errors."""

    pass


class ConfigurationError(PoolDropError, ValueError):
    """Invalid layer, filler or execution configuration.

    Raised for a non-positive kernel_size or stride, a dropout_ratio outside
    [0, 1), an unknown filler type or an unparsable environment setting.
    """

    pass


class ShapeMismatchError(PoolDropError, ValueError):
    """Tensors do not have the shape or arity a layer expects.

    Raised when a layer receives the wrong number of tensors, an empty
    input, a window larger than its input, or when chained stages disagree
    on the shape of the tensor they share.
    """

    pass


class PreconditionViolation(PoolDropError, RuntimeError):
    """A pass was invoked out of order.

    Backward reads state recorded by the most recent Forward (max indices,
    dropout mask). Calling it without a matching Forward raises this error
    instead of computing with stale state.
    """

    pass
