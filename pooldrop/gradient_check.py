"""
Gradient Checking
=================

Verify a layer's backward pass against a numerical approximation.

Method: Centered finite differences
    f'(x) ≈ (f(x + ε) - f(x - ε)) / (2ε)

The scalar objective is the top projected onto a fixed random direction g:
    f(x) = sum(forward(x) * g)
so the analytical gradient is backward() run with top.diff = g.
"""

import numpy as np


class GradientChecker:
    """
    Finite-difference checker for Layer.backward.

    Args:
        stepsize: Perturbation ε applied to each bottom value
        threshold: Allowed error, relative to max(|analytical|, |numerical|, 1)
        seed: Seed for the projection direction and for reseeding the
            context before every forward, so a dropout mask stays fixed

    Kinks matter: if two values in one max-pooling window are closer than
    2ε the numerical gradient is meaningless there. Use well-separated
    inputs.
    """

    def __init__(self, stepsize=1e-3, threshold=1e-3, seed=1701):
        self.stepsize = stepsize
        self.threshold = threshold
        self.seed = seed

    def check_gradient(self, layer, bottom, top, ctx):
        """
        Set up `layer` and compare analytical against numerical gradients.

        Returns:
            (analytical, numerical) float64 arrays shaped like bottom[0]

        Raises:
            AssertionError: naming the first index that disagrees
        """
        if bottom[0] is top[0]:
            raise ValueError("Gradient checking needs separate bottom and top tensors")

        layer.setup(bottom, top, ctx)
        self._forward(layer, bottom, top, ctx)

        direction = np.random.default_rng(self.seed).standard_normal(top[0].shape)
        bottom[0].zero_diff()
        top[0].mutable_cpu_diff()[...] = direction
        layer.backward(top, True, bottom, ctx)
        analytical = bottom[0].cpu_diff().astype(np.float64)

        def objective():
            self._forward(layer, bottom, top, ctx)
            return float(np.sum(top[0].cpu_data().astype(np.float64) * direction))

        numerical = self.numerical_gradient(objective, bottom[0])
        self.assert_close(analytical, numerical)
        return analytical, numerical

    def numerical_gradient(self, f, tensor):
        """
        Compute numerical gradient of `f` w.r.t. the tensor's data.

        Args:
            f: Callable returning a scalar, reading tensor's data
            tensor: Tensor whose values are perturbed in place and restored

        Returns:
            Numerical gradient, same shape as the tensor
        """
        grad = np.zeros(tensor.shape, dtype=np.float64)
        for idx in np.ndindex(*tensor.shape):
            original = tensor.cpu_data()[idx]

            tensor.mutable_cpu_data()[idx] = original + self.stepsize
            loss_plus = f()

            tensor.mutable_cpu_data()[idx] = original - self.stepsize
            loss_minus = f()

            # Restore
            tensor.mutable_cpu_data()[idx] = original

            grad[idx] = (loss_plus - loss_minus) / (2 * self.stepsize)
        return grad

    def assert_close(self, analytical, numerical):
        scale = np.maximum(np.maximum(np.abs(analytical), np.abs(numerical)), 1.0)
        bad = np.abs(analytical - numerical) > self.threshold * scale
        if np.any(bad):
            idx = tuple(int(i) for i in np.argwhere(bad)[0])
            raise AssertionError(
                f"Gradient mismatch at {idx}: analytical {analytical[idx]:.6g}, "
                f"numerical {numerical[idx]:.6g} ({int(bad.sum())} of {bad.size} elements differ)"
            )

    def _forward(self, layer, bottom, top, ctx):
        ctx.reseed(self.seed)
        layer.forward(bottom, top, ctx)
