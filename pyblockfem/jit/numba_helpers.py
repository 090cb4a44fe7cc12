import numba
import numpy as np


@numba.njit(cache=True)
def weighted_point_sum(values, dV):
    """
    Contract the point axis: values (n_qp, m) weighted by dV (n_qp,) -> (m,).
    Both arrays must share a dtype (float64 or complex128).
    """
    n_qp, m = values.shape
    if dV.shape[0] != n_qp:
        raise ValueError("weighted_point_sum: point counts do not match")
    out = np.zeros(m, dtype=values.dtype)
    for q in range(n_qp):
        wq = dV[q]
        for c in range(m):
            out[c] += values[q, c] * wq
    return out
