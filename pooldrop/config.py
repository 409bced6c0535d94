"""Layer and filler configuration.

Both parameter objects are frozen dataclasses: a layer reads its parameter
once in setup() and never mutates it.

Example:
    >>> from pooldrop.config import LayerParameter
    >>> param = LayerParameter(kernel_size=3, stride=2)
    >>> param.dropout_ratio
    0.5
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PoolMethod(Enum):
    """Reduction applied to each pooling window."""

    MAX = "max"
    AVE = "ave"


@dataclass(frozen=True)
class LayerParameter:
    """Configuration shared by the pooling and dropout layers.

    Attributes:
        kernel_size: Edge length of the square pooling window. Required by
            PoolingLayer.
        stride: Step between consecutive pooling windows.
        pool: Reduction used by PoolingLayer.
        dropout_ratio: Probability in [0, 1) that DropoutLayer zeroes an
            activation during training.
    """

    kernel_size: Optional[int] = None
    stride: int = 1
    pool: PoolMethod = PoolMethod.MAX
    dropout_ratio: float = 0.5


@dataclass(frozen=True)
class FillerParameter:
    """Configuration for tensor fillers.

    Attributes:
        type: One of "constant", "uniform", "gaussian".
        value: Constant fill value.
        min: Lower bound for uniform fills.
        max: Upper bound for uniform fills.
        mean: Mean for gaussian fills.
        std: Standard deviation for gaussian fills.
    """

    type: str = "constant"
    value: float = 0.0
    min: float = 0.0
    max: float = 1.0
    mean: float = 0.0
    std: float = 1.0
