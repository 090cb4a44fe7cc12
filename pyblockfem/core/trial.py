"""pyblockfem.core.trial
Move test-role basis values into the trial role.

A test basis evaluated at the quadrature points is a matrix ``(n_qp, n_dofs)``.
Seen through a :class:`TrialView` the same storage reads as
``(n_qp, 1, n_dofs)``, so the leading-axis broadcast of a test array
``(n_qp, n_test)`` against it yields the outer combination
``(n_qp, n_test, n_trial)``.
"""
from __future__ import annotations

import numbers
from typing import Tuple

import numpy as np
from numpy.lib.mixins import NDArrayOperatorsMixin

from pyblockfem.core.blockarray import BlockBuilder, BlockCellArray
from pyblockfem.core.blockedrange import BlockedRange


class TrialView(NDArrayOperatorsMixin):
    """Rank-3 view ``(n, 1, m)`` of a rank-2 array ``(n, m)``.

    The view holds a reference to ``matrix``; reads and writes go straight to
    it and nothing is ever copied.
    """
    __slots__ = ("matrix",)
    __array_priority__ = 10_000

    def __init__(self, matrix: np.ndarray):
        if not isinstance(matrix, np.ndarray):
            raise TypeError(f"TrialView wraps an ndarray, got {type(matrix)}.")
        if matrix.ndim != 2:
            raise ValueError(f"TrialView needs a rank-2 array, got shape {matrix.shape}.")
        self.matrix = matrix

    @classmethod
    def empty(cls, shape: Tuple[int, int, int], dtype=float) -> "TrialView":
        """Allocate the backing matrix for a requested ``(n, 1, m)`` shape."""
        n, one, m = shape
        if one != 1:
            raise ValueError(f"TrialView shape must have a singleton middle axis, got {shape}.")
        return cls(np.empty((n, m), dtype=dtype))

    # ---------- shape ----------
    @property
    def shape(self) -> Tuple[int, int, int]:
        n, m = self.matrix.shape
        return (n, 1, m)

    @property
    def ndim(self) -> int:
        return 3

    @property
    def size(self) -> int:
        return self.matrix.size

    @property
    def dtype(self):
        return self.matrix.dtype

    def __len__(self) -> int:
        return self.matrix.shape[0]

    def view(self) -> np.ndarray:
        """Plain ndarray view ``matrix[:, None, :]`` on the same memory."""
        return self.matrix[:, np.newaxis, :]

    # ---------- NumPy interop ----------
    def __array__(self, dtype=None, copy=None):
        v = self.view()
        if dtype is not None and np.dtype(dtype) != v.dtype:
            return v.astype(dtype)
        return v.copy() if copy else v

    def __array_ufunc__(self, ufunc, method, *inputs, **kwargs):
        args = tuple(x.view() if isinstance(x, TrialView) else x for x in inputs)
        out = kwargs.get("out")
        if out:
            kwargs["out"] = tuple(x.view() if isinstance(x, TrialView) else x for x in out)
        result = getattr(ufunc, method)(*args, **kwargs)
        # in-place operators (t += x) keep the wrapper
        if out and len(out) == 1 and isinstance(out[0], TrialView):
            return out[0]
        return result

    # ---------- indexing ----------
    def __getitem__(self, key):
        if isinstance(key, numbers.Integral):
            # linear index: row-major order is the same for (n,m) and (n,1,m)
            return self.matrix.flat[self._flat(key)]
        return self.view()[key]

    def __setitem__(self, key, value):
        if isinstance(key, numbers.Integral):
            self.matrix.flat[self._flat(key)] = value
            return
        self.view()[key] = value

    def _flat(self, key: int) -> int:
        size = self.matrix.size
        k = int(key) + size if key < 0 else int(key)
        if not 0 <= k < size:
            raise IndexError(f"index {key} is out of bounds for TrialView of size {size}")
        return k

    def __repr__(self) -> str:
        return f"TrialView(shape={self.shape}, dtype={self.dtype})"


def _trialize_blocks(a: BlockCellArray) -> BlockCellArray:
    """Test-role block array ``(0, f)`` -> trial-role ``(0, 0, f)``."""
    if a.ndim != 2:
        raise ValueError(f"Only rank-2 (test-role) block arrays can be moved to the trial role, "
                         f"got rank {a.ndim}.")
    ax0, ax1 = a.axes
    builder = BlockBuilder((ax0, BlockedRange.single(1), ax1))
    for (i, j), blk in a.stored():
        builder.add((i, 0, j), as_trial(np.asarray(blk)))
    return builder.freeze()


def as_trial(a):
    """Reinterpret test-role values as trial-role values.

    * ``ndarray`` of shape ``(n, m)``     -> :class:`TrialView` ``(n, 1, m)``
    * rank-2 :class:`BlockCellArray`      -> rank-3 trial-role block array
    * ``ndarray`` of shape ``(c, n, m)``  -> lazy sequence, one view per cell
    * any other per-cell sequence          -> lazy sequence of the above
    """
    if isinstance(a, BlockCellArray):
        return _trialize_blocks(a)
    if isinstance(a, np.ndarray):
        if a.ndim == 2:
            return TrialView(a)
        if a.ndim != 3:
            raise ValueError(f"as_trial expects a (n, m) matrix or a (cells, n, m) stack, "
                             f"got shape {a.shape}.")
    from pyblockfem.cells.sequence import LazyCellMap
    return LazyCellMap(as_trial, a)
