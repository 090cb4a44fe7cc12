"""pyblockfem.fem.kernels
Cell kernels: an operator plus the algebraic category that tells the
dispatch engine which block-merge rule is valid for it.

The default (dense) application broadcasts the operands aligned on their
LEADING axis, i.e. lower-rank operands get trailing singleton axes:

    test  (n_qp, n_test)         -> (n_qp, n_test, 1)
    trial (n_qp, 1, n_trial)     -> (n_qp, 1, n_trial)
    op(test, trial)              -> (n_qp, n_test, n_trial)

A per-point coefficient ``(n_qp,)`` therefore scales every dof column.
"""
from __future__ import annotations

import logging
import operator
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class KernelKind(str, Enum):
    GENERAL = "general"          # op(0, 0) == 0; no other identity is exploited
    ADDITIVE = "additive"        # x + 0 == x
    SUBTRACTIVE = "subtractive"  # x - 0 == x, 0 - x == -x
    OUTER = "outer"              # product-like: test x trial combination
    NONLINEAR = "nonlinear"      # op(0, 0) may be nonzero; dense only


_KIND_OF: Dict[Callable, KernelKind] = {
    np.add: KernelKind.ADDITIVE,
    operator.add: KernelKind.ADDITIVE,
    np.subtract: KernelKind.SUBTRACTIVE,
    operator.sub: KernelKind.SUBTRACTIVE,
    np.multiply: KernelKind.OUTER,
    operator.mul: KernelKind.OUTER,
}

# one-operand form of binary operators (used for 0 - x and +x)
_UNARY_FORM: Dict[Callable, Callable] = {
    np.subtract: np.negative,
    operator.sub: operator.neg,
    np.add: np.positive,
    operator.add: operator.pos,
}


def _kind_of(op) -> KernelKind:
    try:
        return _KIND_OF.get(op, KernelKind.GENERAL)
    except TypeError:  # unhashable callable
        return KernelKind.GENERAL


@dataclass(frozen=True, slots=True)
class CellKernel:
    """Stateless descriptor of a pointwise operation on per-cell arrays.

    ``kind`` is inferred for the NumPy/`operator` arithmetic functions and
    defaults to :attr:`KernelKind.GENERAL` otherwise; pass it explicitly for
    custom callables.
    """
    op: Callable
    kind: Optional[KernelKind] = None
    name: str = ""

    def __post_init__(self):
        if not callable(self.op):
            raise TypeError(f"CellKernel needs a callable, got {type(self.op)}.")
        kind = _kind_of(self.op) if self.kind is None else KernelKind(self.kind)
        object.__setattr__(self, "kind", kind)
        if not self.name:
            object.__setattr__(self, "name", getattr(self.op, "__name__", repr(self.op)))

    def unary_op(self) -> Callable:
        """Operator used when the kernel is applied to a single operand."""
        try:
            form = _UNARY_FORM.get(self.op)
        except TypeError:
            form = None
        if form is not None:
            return form
        if self.kind is KernelKind.SUBTRACTIVE:
            return lambda x: self.op(np.zeros_like(x), x)
        return self.op

    def __repr__(self) -> str:
        return f"CellKernel({self.name}, kind={self.kind.value})"


# ------------------------------------------------------------------
# leading-axis broadcasting
# ------------------------------------------------------------------
def _padded_shapes(shapes: Tuple[Tuple[int, ...], ...]) -> Tuple[Optional[Tuple[int, ...]], ...]:
    nd = max((len(s) for s in shapes), default=0)
    return tuple(None if len(s) in (0, nd) else s + (1,) * (nd - len(s)) for s in shapes)


def _reshaped(args, padded):
    return tuple(a if p is None else np.reshape(np.asarray(a), p) for a, p in zip(args, padded))


def broadcast_operands(*args) -> Tuple[Any, ...]:
    """Append trailing singleton axes so every operand has the same rank."""
    shapes = tuple(np.shape(a) for a in args)
    return _reshaped(args, _padded_shapes(shapes))


def apply_broadcast(kernel: CellKernel, *args):
    """Default dense application of ``kernel`` with leading-axis broadcasting."""
    fn = kernel.unary_op() if len(args) == 1 else kernel.op
    return fn(*broadcast_operands(*args))


# ------------------------------------------------------------------
# scratch cache
# ------------------------------------------------------------------
class KernelCache:
    """Scratch state reused while one kernel runs over many cells.

    Remembers the broadcast plan computed for the last operand shapes, per
    block coordinate when the operands are block arrays.  Results are always
    freshly allocated, so no output of one cell aliases another's.

    A cache serves one sequential pass; concurrent workers need their own.
    """
    __slots__ = ("shapes", "padded", "hits", "misses", "children")

    def __init__(self):
        self.shapes: Optional[Tuple[Tuple[int, ...], ...]] = None
        self.padded: Tuple = ()
        self.hits = 0
        self.misses = 0
        self.children: Dict[Hashable, "KernelCache"] = {}

    def child(self, key: Hashable) -> "KernelCache":
        sub = self.children.get(key)
        if sub is None:
            sub = self.children[key] = KernelCache()
        return sub

    def apply(self, kernel: CellKernel, *args):
        shapes = tuple(np.shape(a) for a in args)
        if shapes == self.shapes:
            self.hits += 1
        else:
            self.misses += 1
            self.shapes = shapes
            self.padded = _padded_shapes(shapes)
        fn = kernel.unary_op() if len(args) == 1 else kernel.op
        return fn(*_reshaped(args, self.padded))


def kernel_cache(kernel: CellKernel, *operands) -> KernelCache:
    """Create the scratch cache for a pass of ``kernel`` over cells."""
    cache = KernelCache()
    if operands:
        logger.debug(f"kernel_cache: {kernel!r} for operand types "
                     f"{[type(o).__name__ for o in operands]}")
    return cache


def call_kernel(kernel: CellKernel, cache: Optional[KernelCache], key: Hashable, *args):
    """Apply ``kernel`` densely, through ``cache.child(key)`` when a cache is given."""
    if cache is None:
        return apply_broadcast(kernel, *args)
    return cache.child(key).apply(kernel, *args)
