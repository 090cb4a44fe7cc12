# pyblockfem.fem
"""
Cell kernels and the block-aware dispatch engine.
"""
from .kernels import CellKernel, KernelKind, KernelCache, kernel_cache, apply_broadcast
from .dispatch import evaluate

__all__ = ['CellKernel', 'KernelKind', 'KernelCache', 'kernel_cache', 'apply_broadcast', 'evaluate']
