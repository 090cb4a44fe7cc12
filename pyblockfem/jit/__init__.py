# pyblockfem/jit/__init__.py
"""Numba kernels used by the per-cell reductions."""
from .numba_helpers import weighted_point_sum

__all__ = ["weighted_point_sum"]
