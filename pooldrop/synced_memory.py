"""
Synced Memory
=============

A single buffer that lives on the host as a NumPy array and on the compute
device as a torch tensor. Each side is allocated on first use and copied
from the other side only when the other side holds newer contents.

Head states:
    UNINITIALIZED  nothing allocated yet, reads as zeros
    HEAD_AT_CPU    NumPy copy is current, torch copy is stale
    HEAD_AT_GPU    torch copy is current, NumPy copy is stale
    SYNCED         both copies hold the same contents
"""

from enum import Enum

import numpy as np
import torch


class Head(Enum):
    UNINITIALIZED = "uninitialized"
    HEAD_AT_CPU = "cpu"
    HEAD_AT_GPU = "gpu"
    SYNCED = "synced"


def torch_dtype(dtype):
    """torch dtype matching a NumPy dtype."""
    return torch.from_numpy(np.empty(0, dtype=dtype)).dtype


class SyncedMemory:
    """
    Buffer kept coherent between NumPy and torch.

    Args:
        shape: Buffer shape
        dtype: NumPy dtype of the buffer

    Read accessors (cpu_data, gpu_data) sync the requested side and leave
    the head SYNCED. Mutable accessors additionally mark the requested side
    as the only current copy, so the next read on the other side copies.
    """

    def __init__(self, shape, dtype=np.float32):
        self.shape = tuple(int(d) for d in shape)
        self.dtype = np.dtype(dtype)
        self.head = Head.UNINITIALIZED
        self._cpu = None
        self._gpu = None

    @property
    def count(self):
        return int(np.prod(self.shape))

    def _to_cpu(self):
        if self.head is Head.UNINITIALIZED:
            self._cpu = np.zeros(self.shape, dtype=self.dtype)
            self.head = Head.HEAD_AT_CPU
        elif self.head is Head.HEAD_AT_GPU:
            if self._cpu is None:
                self._cpu = np.empty(self.shape, dtype=self.dtype)
            self._cpu[...] = self._gpu.detach().cpu().numpy()
            self.head = Head.SYNCED

    def _to_gpu(self, device):
        if self.head is Head.UNINITIALIZED:
            self._gpu = torch.zeros(self.shape, dtype=torch_dtype(self.dtype), device=device)
            self.head = Head.HEAD_AT_GPU
        elif self.head is Head.HEAD_AT_CPU:
            # torch.tensor always copies, so the two sides never alias
            self._gpu = torch.tensor(self._cpu, device=device)
            self.head = Head.SYNCED
        elif self._gpu.device != device:
            self._gpu = self._gpu.to(device)

    def cpu_data(self):
        """Current contents as a NumPy array (do not write to it)."""
        self._to_cpu()
        return self._cpu

    def mutable_cpu_data(self):
        """NumPy array to write into; marks the host copy as current."""
        self._to_cpu()
        self.head = Head.HEAD_AT_CPU
        return self._cpu

    def gpu_data(self, device):
        """Current contents as a torch tensor on `device` (do not write to it)."""
        self._to_gpu(device)
        return self._gpu

    def mutable_gpu_data(self, device):
        """torch tensor to write into; marks the device copy as current."""
        self._to_gpu(device)
        self.head = Head.HEAD_AT_GPU
        return self._gpu

    def __repr__(self):
        return f"SyncedMemory(shape={self.shape}, dtype={self.dtype}, head={self.head.value})"
