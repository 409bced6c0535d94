"""
Utility Functions
=================

Helpers shared across the package:
- Package logger configured from the environment
- Tensor reductions used by tests and the benchmark
"""

import logging
import os
import sys
import threading

import numpy as np

_logger = None
_logger_lock = threading.Lock()
_warned_once = set()

_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def get_logger():
    """
    Get the pooldrop logger.

    The level is read once from POOLDROP_LOG_LEVEL (DEBUG, INFO, WARNING,
    ERROR or CRITICAL). Default is WARNING.
    """
    global _logger
    if _logger is None:
        with _logger_lock:
            if _logger is not None:
                return _logger

            logger = logging.getLogger("pooldrop")
            level_name = os.environ.get("POOLDROP_LOG_LEVEL", "WARNING").upper()
            if level_name not in _VALID_LEVELS:
                print(
                    f"Warning: Invalid POOLDROP_LOG_LEVEL='{level_name}'. "
                    f"Valid values: {', '.join(sorted(_VALID_LEVELS))}. "
                    f"Defaulting to WARNING.",
                    file=sys.stderr,
                )
                level_name = "WARNING"
            logger.setLevel(getattr(logging, level_name))

            if not logger.handlers:
                handler = logging.StreamHandler()
                handler.setFormatter(
                    logging.Formatter("%(name)s - %(levelname)s - %(message)s")
                )
                logger.addHandler(handler)
            _logger = logger

    return _logger


def warn_once(key, message):
    """Log `message` at WARNING the first time `key` is seen, DEBUG afterwards."""
    with _logger_lock:
        first = key not in _warned_once
        _warned_once.add(key)
    get_logger().log(logging.WARNING if first else logging.DEBUG, message)


def blob_sum(tensor, diff=False):
    """
    Sum of a tensor's data (or diff) plane, read from the CPU side.

    Accumulates in float64 so float32 tensors compare exactly against
    integer counts.
    """
    values = tensor.cpu_diff() if diff else tensor.cpu_data()
    return float(np.sum(values, dtype=np.float64))
