"""pyblockfem.fem.dispatch
Apply cell kernels to dense and block-sparse per-cell arrays.

:func:`evaluate` is the single entry point.  Dense operands go through the
kernel's broadcast default; block arrays are routed to a merge rule chosen
from the kernel's :class:`~pyblockfem.fem.kernels.KernelKind`:

=====================  ===============================================
operands               rule
=====================  ===============================================
block                  unary: kernel on every stored block
block, plain           kernel on every stored block with the plain operand
block, block (rank r)  GENERAL/OUTER: union, zero-filled
                       ADDITIVE: union, one-sided blocks passed through
                       SUBTRACTIVE: as ADDITIVE, ``0 - b`` negated
block(2), block(3)     test x trial outer rule (either order)
=====================  ===============================================

NONLINEAR kernels never see block arrays; densify with
:meth:`BlockCellArray.to_dense` first.
"""
from __future__ import annotations

import logging
from typing import Optional

from pyblockfem.core.blockarray import BlockBuilder, BlockCellArray
from pyblockfem.fem.kernels import CellKernel, KernelCache, KernelKind, call_kernel
from pyblockfem.utils.env import debug_dispatch

logger = logging.getLogger(__name__)


def evaluate(kernel: CellKernel, *operands, cache: Optional[KernelCache] = None):
    """Evaluate ``kernel`` on the operands of one cell."""
    if not isinstance(kernel, CellKernel):
        raise TypeError(f"evaluate expects a CellKernel, got {type(kernel)}.")
    blocked = [n for n, o in enumerate(operands) if isinstance(o, BlockCellArray)]
    if not blocked:
        return call_kernel(kernel, cache, None, *operands)
    if len(blocked) == 1:
        if len(operands) == 1:
            return unary_rule(kernel, operands[0], cache=cache)
        return plain_operand_rule(kernel, operands, blocked[0], cache=cache)
    if len(operands) == 2:
        return binary_rule(kernel, operands[0], operands[1], cache=cache)
    raise NotImplementedError(f"{kernel!r}: at most two block-array operands are supported, "
                              f"got {len(blocked)} among {len(operands)} operands.")


def _require_block_safe(kernel: CellKernel, what: str):
    if kernel.kind is KernelKind.NONLINEAR:
        raise NotImplementedError(f"{kernel!r} is nonlinear and cannot be applied {what}; "
                                  f"convert the block arrays with to_dense() first.")


def _trace(msg: str):
    if debug_dispatch():
        logger.debug(msg)


# ------------------------------------------------------------------
# one block operand
# ------------------------------------------------------------------
def unary_rule(kernel: CellKernel, a: BlockCellArray, cache: Optional[KernelCache] = None) -> BlockCellArray:
    """Kernel on every stored block; ids and axes are kept."""
    _require_block_safe(kernel, "blockwise")
    builder = BlockBuilder(a.axes)
    for I, aI in a.stored():
        builder.add(I, call_kernel(kernel, cache, I, aI))
    return builder.freeze()


def plain_operand_rule(kernel: CellKernel, operands, position: int,
                       cache: Optional[KernelCache] = None) -> BlockCellArray:
    """Kernel on every stored block of ``operands[position]`` with the plain
    operands (numbers or per-point arrays) left in place.

    Assumes the kernel is linear in the block operand.
    """
    _require_block_safe(kernel, "to a block array and a plain operand")
    a = operands[position]
    args = list(operands)
    builder = BlockBuilder(a.axes)
    for I, aI in a.stored():
        args[position] = aI
        builder.add(I, call_kernel(kernel, cache, I, *args))
    return builder.freeze()


# ------------------------------------------------------------------
# two block operands
# ------------------------------------------------------------------
def binary_rule(kernel: CellKernel, a: BlockCellArray, b: BlockCellArray,
                cache: Optional[KernelCache] = None) -> BlockCellArray:
    """Select and run the merge rule for two block arrays."""
    kind = kernel.kind
    _trace(f"binary_rule: {kernel!r} on ranks ({a.ndim}, {b.ndim}), "
           f"stored {len(a)} and {len(b)} blocks")
    if a.ndim == b.ndim:
        if a.blocks_per_axis != b.blocks_per_axis:
            raise ValueError(f"Block lattices differ: {a.blocks_per_axis} vs {b.blocks_per_axis}.")
        if kind is KernelKind.ADDITIVE:
            return _merge(kernel, a, b, cache, negate_b=False)
        if kind is KernelKind.SUBTRACTIVE:
            return _merge(kernel, a, b, cache, negate_b=True)
        _require_block_safe(kernel, "to two block arrays")
        return _merge_general(kernel, a, b, cache)
    if (a.ndim, b.ndim) in ((2, 3), (3, 2)):
        if kind not in (KernelKind.OUTER, KernelKind.GENERAL):
            raise NotImplementedError(f"{kernel!r} cannot combine a test-role and a trial-role "
                                      f"block array; only product-like kernels can.")
        return outer_rule(kernel, a, b, cache)
    raise ValueError(f"Cannot combine block arrays of rank {a.ndim} and {b.ndim}; expected equal "
                     f"ranks or a rank-2 test / rank-3 trial pair.")


def _merge_general(kernel, a, b, cache) -> BlockCellArray:
    builder = BlockBuilder(a.axes)
    for I in a.lattice():
        if a.is_nonzero_block(I) or b.is_nonzero_block(I):
            builder.add(I, call_kernel(kernel, cache, I, a.block(I), b.block(I)))
    return builder.freeze()


def _merge(kernel, a, b, cache, negate_b: bool) -> BlockCellArray:
    """Union of stored blocks for ``a + b`` / ``a - b``; one-sided blocks skip the kernel."""
    builder = BlockBuilder(a.axes)
    for I in a.lattice():
        in_a, in_b = a.is_nonzero_block(I), b.is_nonzero_block(I)
        if in_a and in_b:
            builder.add(I, call_kernel(kernel, cache, I, a.block(I), b.block(I)))
        elif in_a:
            builder.add(I, a.block(I))
        elif in_b:
            bI = b.block(I)
            builder.add(I, call_kernel(kernel, cache, ("neg", I), bI) if negate_b else bI)
    return builder.freeze()


def outer_rule(kernel: CellKernel, a: BlockCellArray, b: BlockCellArray,
               cache: Optional[KernelCache] = None) -> BlockCellArray:
    """Test ``(0, f1)`` x trial ``(0, 0, f2)`` -> integrand ``(0, f1, f2)``.

    The kernel always receives ``(test_block, trial_block)``.  Pairs where
    either side is not stored produce no block.
    """
    test, trial = (a, b) if a.ndim == 2 else (b, a)
    if test.axes[0].nblocks != 1 or trial.axes[0].nblocks != 1:
        raise ValueError("The quadrature-point axis must carry a single block, got "
                         f"{test.axes[0]!r} and {trial.axes[0]!r}.")
    if trial.axes[1].nblocks != 1 or len(trial.axes[1]) != 1:
        raise ValueError(f"Trial-role array must have a singleton middle axis, got {trial.axes[1]!r}.")
    if len(test.axes[0]) != len(trial.axes[0]):
        raise ValueError(f"Point counts differ: {len(test.axes[0])} (test) vs "
                         f"{len(trial.axes[0])} (trial).")
    builder = BlockBuilder((test.axes[0], test.axes[1], trial.axes[2]))
    for f1 in range(test.axes[1].nblocks):
        I1 = (0, f1)
        if not test.is_nonzero_block(I1):
            continue
        for f2 in range(trial.axes[2].nblocks):
            I2 = (0, 0, f2)
            if trial.is_nonzero_block(I2):
                builder.add((0, f1, f2),
                            call_kernel(kernel, cache, (0, f1, f2), test.block(I1), trial.block(I2)))
    out = builder.freeze()
    _trace(f"outer_rule: {kernel!r} produced {list(out.blockids)}")
    return out
