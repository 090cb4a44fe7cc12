"""pyblockfem.cells.sequence
Finite, restartable, pull-based per-cell sequences.

Anything with ``len`` and integer indexing counts as a per-cell sequence
(lists, tuples, stacked ndarrays, the classes below).  Nothing here
materializes a whole sequence; values are computed when a cell is pulled.
"""
from __future__ import annotations

import logging
from typing import Any, Callable

from pyblockfem.fem.dispatch import evaluate
from pyblockfem.fem.kernels import CellKernel, kernel_cache
from pyblockfem.integration.reduction import IntegrationKernel, integrate

logger = logging.getLogger(__name__)


class Fill:
    """The same value on every one of ``length`` cells."""
    __slots__ = ("value", "length")

    def __init__(self, value: Any, length: int):
        if length < 0:
            raise ValueError(f"Fill length must be non-negative, got {length}.")
        self.value = value
        self.length = int(length)

    def __len__(self) -> int:
        return self.length

    def __getitem__(self, i: int):
        if not -self.length <= i < self.length:
            raise IndexError(f"cell {i} out of range for {self.length} cells")
        return self.value

    def __iter__(self):
        for _ in range(self.length):
            yield self.value

    def __repr__(self) -> str:
        return f"Fill({type(self.value).__name__}, length={self.length})"


def _common_length(sequences) -> int:
    lengths = {len(s) for s in sequences}
    if len(lengths) != 1:
        raise ValueError(f"Per-cell sequences have different lengths: {sorted(lengths)}.")
    return lengths.pop()


class LazyCellMap:
    """``func`` applied cell by cell to one or more sequences."""

    def __init__(self, func: Callable, *sequences):
        if not sequences:
            raise ValueError("LazyCellMap needs at least one sequence.")
        self.func = func
        self.sequences = sequences
        self.length = _common_length(sequences)

    def __len__(self) -> int:
        return self.length

    def __getitem__(self, i: int):
        if not -self.length <= i < self.length:
            raise IndexError(f"cell {i} out of range for {self.length} cells")
        i = i % self.length
        return self.func(*(s[i] for s in self.sequences))

    def __iter__(self):
        for cells in zip(*self.sequences):
            yield self.func(*cells)

    def __repr__(self) -> str:
        name = getattr(self.func, "__name__", type(self.func).__name__)
        return f"LazyCellMap({name}, cells={self.length})"


class KernelCellMap(LazyCellMap):
    """Lazy :func:`~pyblockfem.fem.dispatch.evaluate` over cells.

    Every iteration pass owns one scratch cache; random access runs uncached.
    """

    def __init__(self, kernel: CellKernel, *sequences):
        super().__init__(lambda *cells: evaluate(kernel, *cells), *sequences)
        self.kernel = kernel

    def __iter__(self):
        cache = kernel_cache(self.kernel)
        for cells in zip(*self.sequences):
            yield evaluate(self.kernel, *cells, cache=cache)
        logger.debug(f"KernelCellMap pass of {self.kernel!r}: {self.length} cells, "
                     f"{len(cache.children)} cached block plans")

    def __repr__(self) -> str:
        return f"KernelCellMap({self.kernel!r}, cells={self.length})"


def apply_kernel(kernel: CellKernel, *sequences) -> KernelCellMap:
    """Lazily evaluate ``kernel`` on every cell of the given sequences."""
    return KernelCellMap(kernel, *sequences)


def integrate_cells(integrands, weights, jacobians, kernel: IntegrationKernel | None = None) -> LazyCellMap:
    """Lazy per-cell :func:`~pyblockfem.integration.reduction.integrate`."""
    kernel = IntegrationKernel() if kernel is None else kernel
    return LazyCellMap(lambda f, w, j: integrate(f, w, j, kernel=kernel),
                       integrands, weights, jacobians)
