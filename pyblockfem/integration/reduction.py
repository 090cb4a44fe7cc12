"""pyblockfem.integration.reduction
Integration of per-cell integrands: contract the leading quadrature-point
axis against weights and Jacobians.

For a block integrand the reduction runs on each stored block, the first
coordinate of every block id is dropped and the first axis descriptor goes
with it::

    (0, f1, f2) -> (f1, f2)      local matrix blocks
    (0, f)      -> (f,)          local vector blocks
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from pyblockfem.core.blockarray import BlockBuilder, BlockCellArray
from pyblockfem.jit.numba_helpers import weighted_point_sum

logger = logging.getLogger(__name__)


def jacobian_measure(jacobians, n_qp: int) -> np.ndarray:
    """Volume factor per point.

    ``(n_qp,)``          values are taken as ``det J`` already
    ``(n_qp, d, d)``     ``|det J|``
    ``(n_qp, d, D)``     ``sqrt(det(J J^T))`` (embedded cells, d < D)
    scalar               the same factor at every point
    """
    J = np.asarray(jacobians)
    if J.ndim == 0:
        return np.full(n_qp, J, dtype=np.result_type(J, float))
    if J.shape[0] != n_qp:
        raise ValueError(f"Got Jacobians for {J.shape[0]} points, expected {n_qp}.")
    if J.ndim == 1:
        return J
    if J.ndim == 3:
        d1, d2 = J.shape[1:]
        if d1 == d2:
            return np.abs(np.linalg.det(J))
        G = J @ np.swapaxes(J, 1, 2) if d1 < d2 else np.swapaxes(J, 1, 2) @ J
        return np.sqrt(np.linalg.det(G))
    raise ValueError(f"Unsupported Jacobian array of shape {J.shape}.")


@dataclass(frozen=True, slots=True)
class IntegrationKernel:
    """Weighted point sum ``sum_q f[q, ...] * w[q] * meas(J[q])``."""

    def __call__(self, f, weights, jacobians) -> np.ndarray:
        f = np.asarray(f)
        if f.ndim == 0:
            raise ValueError("Cannot integrate a scalar; the leading axis must hold the points.")
        n_qp = f.shape[0]
        w = np.asarray(weights)
        if w.shape != (n_qp,):
            raise ValueError(f"Got {w.shape} weights for an integrand with {n_qp} points.")
        dV = w * jacobian_measure(jacobians, n_qp)
        dtype = np.result_type(f.dtype, dV.dtype, np.float64)
        m = int(np.prod(f.shape[1:], dtype=np.int64))
        values = np.ascontiguousarray(f.reshape(n_qp, m), dtype=dtype)
        out = weighted_point_sum(values, np.ascontiguousarray(dV, dtype=dtype))
        return out.reshape(f.shape[1:])


def integrate(f, weights, jacobians, kernel: IntegrationKernel | None = None):
    """Integrate one cell's integrand (dense array or block array)."""
    kernel = IntegrationKernel() if kernel is None else kernel
    if not isinstance(f, BlockCellArray):
        return kernel(f, weights, jacobians)
    if f.ndim < 2:
        raise ValueError(f"Block integrands need a point axis plus at least one dof axis, "
                         f"got rank {f.ndim}.")
    if f.axes[0].nblocks != 1:
        raise ValueError(f"The quadrature-point axis must carry a single block, got {f.axes[0]!r}.")
    builder = BlockBuilder(f.axes[1:])
    for I, fI in f.stored():
        builder.add(I[1:], kernel(fI, weights, jacobians))
    out = builder.freeze()
    logger.debug(f"integrate: rank {f.ndim} -> {out.ndim}, blocks {list(out.blockids)}")
    return out
