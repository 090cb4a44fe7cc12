"""pyblockfem.integration.quadrature
Tensor-product Gauss rules on the reference cell [-1, 1]^dim.

These are convenience rules for callers and tests that need per-cell weights
to feed :func:`pyblockfem.integration.reduction.integrate`; a full FE space
normally supplies its own.
"""
from functools import lru_cache

import numpy as np
from numpy.polynomial.legendre import leggauss

from pyblockfem.cells.sequence import Fill


def gauss_legendre(npts: int):
    """``npts`` Gauss-Legendre points and weights on [-1, 1]."""
    if npts < 1:
        raise ValueError(f"A Gauss rule needs at least one point, got {npts}.")
    return leggauss(npts)


@lru_cache(maxsize=None)
def line_rule(npts: int, a: float = -1.0, b: float = 1.0):
    """Gauss-Legendre nodes and weights mapped to [a, b]."""
    xi, w = gauss_legendre(int(npts))
    half = 0.5 * (b - a)
    return a + half * (xi + 1.0), half * w


@lru_cache(maxsize=None)
def tensor_rule(npts: int, dim: int):
    """``npts**dim`` points on [-1, 1]^dim as ``(pts (n, dim), wts (n,))``.

    Points are ordered with the last coordinate running fastest.
    """
    if dim < 1:
        raise ValueError(f"dim must be positive, got {dim}.")
    xi, wi = gauss_legendre(npts)
    grids = np.meshgrid(*([xi] * dim), indexing="ij")
    pts = np.stack([g.ravel() for g in grids], axis=-1)
    wts = wi
    for _ in range(dim - 1):
        wts = np.multiply.outer(wts, wi).ravel()
    return pts, wts


def quad_rule(npts: int):
    """Square rule, ``tensor_rule(npts, 2)``."""
    return tensor_rule(npts, 2)


def cell_weights(npts: int, ncells: int, dim: int = 2) -> Fill:
    """The reference weights of :func:`tensor_rule` repeated on ``ncells`` cells."""
    _, wts = tensor_rule(npts, dim)
    return Fill(wts, ncells)
