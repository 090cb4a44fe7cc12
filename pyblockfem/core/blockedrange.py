"""pyblockfem.core.blockedrange
Partition of one array axis into consecutive per-field sub-ranges.
"""
from __future__ import annotations

from dataclasses import dataclass
from itertools import accumulate
from typing import Tuple, Sequence

import numpy as np


@dataclass(frozen=True, slots=True)
class BlockedRange:
    """One axis split into blocks of the given lengths.

    A zero length marks a field that is not active on this cell; such a
    block is structurally empty.

    >>> r = BlockedRange((3, 0, 2))
    >>> r.nblocks, len(r), r.block_slice(2)
    (3, 5, slice(3, 5, None))
    """
    lengths: Tuple[int, ...]

    def __post_init__(self):
        lengths = tuple(int(n) for n in self.lengths)
        if any(n < 0 for n in lengths):
            raise ValueError(f"BlockedRange lengths must be non-negative, got {lengths}.")
        object.__setattr__(self, "lengths", lengths)

    @classmethod
    def single(cls, n: int) -> "BlockedRange":
        """An axis that is not partitioned (one block of length n)."""
        return cls((n,))

    @property
    def nblocks(self) -> int:
        return len(self.lengths)

    @property
    def offsets(self) -> Tuple[int, ...]:
        """Start index of every block; one extra entry holds the total length."""
        return (0,) + tuple(accumulate(self.lengths))

    def __len__(self) -> int:
        return sum(self.lengths)

    def block_length(self, i: int) -> int:
        return self.lengths[i]

    def block_slice(self, i: int) -> slice:
        start = self.offsets[i]
        return slice(start, start + self.lengths[i])

    def is_nonzero(self, i: int) -> bool:
        return self.lengths[i] > 0

    def __repr__(self) -> str:
        return f"BlockedRange({list(self.lengths)})"


# ------------------------------------------------------------------
# helpers over tuples of axes
# ------------------------------------------------------------------
def as_axes(axes: Sequence) -> Tuple[BlockedRange, ...]:
    """Coerce a sequence of BlockedRange or length tuples into axes."""
    out = []
    for ax in axes:
        if isinstance(ax, BlockedRange):
            out.append(ax)
        elif isinstance(ax, (int, np.integer)):
            out.append(BlockedRange.single(int(ax)))
        else:
            out.append(BlockedRange(tuple(ax)))
    return tuple(out)


def blocks_per_axis(axes: Sequence[BlockedRange]) -> Tuple[int, ...]:
    """Number of potential blocks along each axis (the block lattice size)."""
    return tuple(ax.nblocks for ax in axes)


def block_shape(axes: Sequence[BlockedRange], blockid: Sequence[int]) -> Tuple[int, ...]:
    """Shape of the block at ``blockid``: the product of its sub-range lengths."""
    if len(blockid) != len(axes):
        raise ValueError(f"Block id {tuple(blockid)} has {len(blockid)} coordinates, "
                         f"expected {len(axes)}.")
    return tuple(ax.block_length(i) for ax, i in zip(axes, blockid))
